"""
Similar-case ranking.

Similarity formula (clamped to [0, 1])
--------------------------------------
    similarity = vector_weight  × 1 / (1 + euclid(source, candidate))
               + event_weight   × jaccard(source bigrams, candidate bigrams)
               + context_weight × context_match

``context_match`` adds 0.4 for the same budget bucket, 0.3 for the same
project type and 0.3 for the same stage bucket (weights configurable).

The source project itself is never a candidate. Results are ordered by
descending similarity with a stable sort, so equal scores keep candidate
order (project id order from the repository). ``top_k`` is clamped to
``[1, max_top_k]``.

All functions here are pure.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from project_pulse.config import SimilarityConfig
from project_pulse.models.snapshot import CaseOutcome, CaseSignature, SimilarCase


@dataclass
class CandidateCase:
    """A same-tenant signature with the data the ranker attaches to results."""

    signature: CaseSignature
    project_name: Optional[str] = None
    outcomes: list[CaseOutcome] = field(default_factory=list)


def euclidean_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Distance over the longer length; missing coordinates count as 0."""
    n = max(len(a), len(b))
    total = 0.0
    for i in range(n):
        left = a[i] if i < len(a) else 0.0
        right = b[i] if i < len(b) else 0.0
        total += (left - right) ** 2
    return math.sqrt(total)


def jaccard_similarity(left: Iterable[str], right: Iterable[str]) -> float:
    """Set Jaccard index; 0 when both sets are empty."""
    a, b = set(left), set(right)
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def context_similarity(
    left: dict[str, str],
    right: dict[str, str],
    weights: dict[str, float],
) -> float:
    score = 0.0
    for key, weight in weights.items():
        if left.get(key) and left.get(key) == right.get(key):
            score += weight
    return max(0.0, min(1.0, score))


def select_shared_patterns(
    source_bigrams: Sequence[str],
    candidate_bigrams: Sequence[str],
    limit: int = 5,
) -> list[str]:
    """First ``limit`` distinct candidate bigrams also seen in the source."""
    source = set(source_bigrams)
    shared: list[str] = []
    for bigram in candidate_bigrams:
        if bigram in source and bigram not in shared:
            shared.append(bigram)
            if len(shared) >= limit:
                break
    return shared


def clamp_top_k(top_k: Optional[int], config: SimilarityConfig) -> int:
    k = config.default_top_k if top_k is None else int(top_k)
    return max(1, min(config.max_top_k, k))


def rank_similar_cases(
    source: CaseSignature,
    candidates: Iterable[CandidateCase],
    top_k: Optional[int] = None,
    config: Optional[SimilarityConfig] = None,
) -> list[SimilarCase]:
    """Rank candidates against ``source``.

    Args:
        source:     Signature of the project being compared.
        candidates: Same-tenant, same-window candidate cases.
        top_k:      Result count, clamped to ``[1, max_top_k]``.
        config:     Blend weights and limits.

    Returns:
        Up to ``top_k`` ``SimilarCase`` objects, most similar first.
    """
    cfg = config or SimilarityConfig()
    k = clamp_top_k(top_k, cfg)

    scored: list[SimilarCase] = []
    for cand in candidates:
        sig = cand.signature
        if sig.project_id == source.project_id:
            continue
        ts_score = 1.0 / (1.0 + euclidean_distance(source.signature_vector, sig.signature_vector))
        seq_score = jaccard_similarity(source.event_bigrams, sig.event_bigrams)
        ctx_score = context_similarity(source.context, sig.context, cfg.context_weights)
        similarity = (
            cfg.vector_weight * ts_score
            + cfg.event_weight * seq_score
            + cfg.context_weight * ctx_score
        )
        scored.append(
            SimilarCase(
                case_project_id=sig.project_id,
                case_project_name=cand.project_name,
                similarity_score=round(max(0.0, min(1.0, similarity)), 4),
                why_similar=(
                    f"time_series={ts_score:.3f}, event_sequence={seq_score:.3f}, "
                    f"context={ctx_score:.3f}"
                ),
                key_shared_patterns=select_shared_patterns(
                    source.event_bigrams, sig.event_bigrams, cfg.shared_patterns_limit
                ),
                outcomes_seen=list(cand.outcomes),
            )
        )

    scored.sort(key=lambda c: c.similarity_score, reverse=True)
    return scored[:k]
