"""
Signal aggregation: event log -> running state -> derived signals.

Modules
-------
aggregator : apply() pure fold, load_state()/dump_state() persistence helpers.
derive     : derive_signals() — the ten threshold-classified project signals.
"""
