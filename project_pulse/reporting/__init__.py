"""
Project Pulse reporting package.

Modules:
    reporter — CSV + JSON writers for forecasts and recommendations.
    export   — Parquet export of snapshot history for offline analysis.
"""
