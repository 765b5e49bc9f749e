"""
Project Pulse monitoring package.

Modules:
    process_log — Append-only start/finish/fail/warn log for every bracketed process.
"""
