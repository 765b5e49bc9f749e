"""
Event log import.

Modules:
    loader — Validate a JSON event export and append it to the event log.
"""
