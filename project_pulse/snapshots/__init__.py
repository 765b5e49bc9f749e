"""
Snapshot layer.

  - ``builder``  — freezes one project-day and derives case outcomes.
"""
