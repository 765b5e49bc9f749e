"""
Recommendation layer.

  - ``rules``       — per-category triggers producing candidates
  - ``gate``        — evidence quality gate (visible / hidden)
  - ``templates``   — deterministic message templates
  - ``llm_client``  — optional HTTP drafting via a chat completions endpoint
  - ``generator``   — gate, sort and draft into ``Recommendation`` objects
"""
