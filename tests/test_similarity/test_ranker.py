"""
Tests for project_pulse/similarity/ranker.py and signature.py.

What we test
------------
ranker:
  - euclidean_distance pads the shorter vector with zeros.
  - jaccard_similarity is 0 for two empty sets.
  - context_similarity sums the weights of matching, non-empty keys.
  - rank_similar_cases orders by similarity (stable on ties), never returns
    the source project, clamps top_k and carries candidate outcomes.

signature:
  - vector_from_snapshots produces 14 bounded values.
  - build_event_bigrams skips blanks; classifiers map keywords to buckets.
"""

from __future__ import annotations

from datetime import date

import pytest

from project_pulse.config import SimilarityConfig
from project_pulse.models.snapshot import CaseSignature, Snapshot, SnapshotSignal
from project_pulse.similarity.ranker import (
    CandidateCase,
    clamp_top_k,
    context_similarity,
    euclidean_distance,
    jaccard_similarity,
    rank_similar_cases,
)
from project_pulse.similarity.signature import (
    SIGNATURE_DIMENSIONS,
    budget_bucket,
    build_event_bigrams,
    project_type_from_name,
    stage_bucket,
    vector_from_snapshots,
)

AS_OF = date(2026, 2, 17)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _sig(
    project_id: str,
    vector: list[float] | None = None,
    bigrams: list[str] | None = None,
    context: dict[str, str] | None = None,
) -> CaseSignature:
    return CaseSignature(
        project_id=project_id,
        window_days=14,
        as_of=AS_OF,
        signature_vector=vector if vector is not None else [0.0] * SIGNATURE_DIMENSIONS,
        event_bigrams=bigrams or [],
        context=context or {},
    )


def _snapshot(day: int, **signals: float) -> Snapshot:
    return Snapshot(
        project_id="p-1",
        snapshot_date=date(2026, 2, day),
        signals={
            k: SnapshotSignal(value=v, status="ok", normalized_risk=0.0)
            for k, v in signals.items()
        },
        scores={"risk": 50.0, "project_health": 60.0},
        aggregates={"events_7d": 10},
    )


# ── Primitives ────────────────────────────────────────────────────────────────

class TestPrimitives:
    def test_euclidean_pads_shorter(self):
        assert euclidean_distance([3.0], [0.0, 4.0]) == pytest.approx(5.0)

    def test_jaccard(self):
        assert jaccard_similarity(["a", "b"], ["b", "c"]) == pytest.approx(1 / 3)
        assert jaccard_similarity([], []) == 0.0

    def test_context_similarity(self):
        weights = {"budget_bucket": 0.4, "project_type": 0.3, "stage_bucket": 0.3}
        left = {"budget_bucket": "md", "project_type": "delivery", "stage_bucket": ""}
        right = {"budget_bucket": "md", "project_type": "support", "stage_bucket": ""}
        assert context_similarity(left, right, weights) == pytest.approx(0.4)

    def test_clamp_top_k(self):
        cfg = SimilarityConfig()
        assert clamp_top_k(None, cfg) == cfg.default_top_k
        assert clamp_top_k(0, cfg) == 1
        assert clamp_top_k(500, cfg) == cfg.max_top_k


# ── rank_similar_cases ────────────────────────────────────────────────────────

class TestRanking:
    def test_orders_by_similarity(self):
        source = _sig("p-1", bigrams=["a>b"])
        near = CandidateCase(_sig("p-2", bigrams=["a>b"]), "Near")
        far = CandidateCase(_sig("p-3", vector=[1.0] * SIGNATURE_DIMENSIONS), "Far")
        ranked = rank_similar_cases(source, [far, near])
        assert [c.case_project_id for c in ranked] == ["p-2", "p-3"]
        assert ranked[0].case_project_name == "Near"
        assert ranked[0].key_shared_patterns == ["a>b"]
        # identical vector (0.6) plus identical bigrams (0.3)
        assert ranked[0].similarity_score == pytest.approx(0.9)

    def test_source_never_returned(self):
        source = _sig("p-1")
        ranked = rank_similar_cases(source, [CandidateCase(_sig("p-1")), CandidateCase(_sig("p-2"))])
        assert [c.case_project_id for c in ranked] == ["p-2"]

    def test_ties_keep_candidate_order(self):
        source = _sig("p-1")
        cands = [CandidateCase(_sig(pid)) for pid in ("p-2", "p-3", "p-4")]
        assert [c.case_project_id for c in rank_similar_cases(source, cands)] == ["p-2", "p-3", "p-4"]

    def test_top_k(self):
        source = _sig("p-1")
        cands = [CandidateCase(_sig(f"p-{i}")) for i in range(2, 10)]
        assert len(rank_similar_cases(source, cands, top_k=3)) == 3

    def test_outcomes_attached(self, sample_outcome):
        ranked = rank_similar_cases(
            _sig("p-1"), [CandidateCase(_sig("p-2"), outcomes=[sample_outcome])]
        )
        assert ranked[0].outcomes_seen == [sample_outcome]

    def test_why_similar_breakdown(self):
        ranked = rank_similar_cases(_sig("p-1"), [CandidateCase(_sig("p-2"))])
        assert ranked[0].why_similar.startswith("time_series=1.000")


# ── Signature building ────────────────────────────────────────────────────────

class TestSignature:
    def test_vector_dimensions_and_bounds(self):
        snaps = [
            _snapshot(10, waiting_on_client_days=1.0, scope_creep_rate=0.1),
            _snapshot(12, waiting_on_client_days=20.0, scope_creep_rate=2.0, budget_burn_rate=3.0),
        ]
        vector, features = vector_from_snapshots(snaps)
        assert len(vector) == SIGNATURE_DIMENSIONS
        assert all(0.0 <= v <= 1.0 for v in vector[:11])
        assert all(-1.0 <= v <= 1.0 for v in vector[11:])
        assert features["waiting_delta"] == pytest.approx(19.0)

    def test_single_snapshot_has_zero_deltas(self):
        vector, _ = vector_from_snapshots([_snapshot(10, waiting_on_client_days=3.5)])
        assert vector[0] == pytest.approx(0.5)
        assert vector[11:] == [0.0, 0.0, 0.0]

    def test_bigrams(self):
        assert build_event_bigrams(["a", "", "b", " c "]) == ["a>b", "b>c"]
        assert build_event_bigrams(["a"]) == []

    def test_buckets(self):
        assert budget_bucket(None) == "xs"
        assert budget_bucket(75_000) == "md"
        assert budget_bucket(250_000) == "xl"
        assert project_type_from_name("ERP Migration phase 2") == "migration"
        assert project_type_from_name("Website") == "delivery"
        assert stage_bucket("Closed Won") == "won"
        assert stage_bucket(None) == "discovery"
