"""
Composite scoring: weighted 0–100 heuristics over derived signals.

Modules
-------
composite : normalize_components() + score() — pure functions, no DB or I/O.
"""
