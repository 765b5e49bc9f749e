"""
Case similarity engine: signature persistence and tenant-scoped lookup.

``SimilarityEngine`` owns the DB side of similarity:

  - ``build_signature``     — window snapshots + event log -> CaseSignature (upserted)
  - ``find_similar_cases``  — lazily builds the source signature, loads same-tenant
                              candidates with their recent outcomes, ranks them
  - ``rebuild_signatures``  — rebuilds every configured window for one project

Similarity never crosses tenants: candidates are restricted to projects with
the source project's ``account_id``.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional

from project_pulse.config import VALID_WINDOWS, AppConfig
from project_pulse.db.repositories.event_repo import EventRepository
from project_pulse.db.repositories.project_repo import ProjectRepository
from project_pulse.db.repositories.snapshot_repo import CaseSignatureRepository, SnapshotRepository
from project_pulse.errors import InvalidWindowError
from project_pulse.models.snapshot import CaseSignature, SimilarCase
from project_pulse.similarity.ranker import CandidateCase, rank_similar_cases
from project_pulse.similarity.signature import (
    build_context,
    build_event_bigrams,
    signature_hash,
    vector_from_snapshots,
)
from project_pulse.utils.time_utils import day_bounds, utcnow, window_dates

logger = logging.getLogger(__name__)


def validate_window(window_days: object) -> int:
    """Return ``window_days`` as an int or raise ``InvalidWindowError``."""
    if isinstance(window_days, bool) or not isinstance(window_days, int):
        raise InvalidWindowError(window_days)
    if window_days not in VALID_WINDOWS:
        raise InvalidWindowError(window_days)
    return window_days


@dataclass
class SignatureRebuildResult:
    """Per-window outcome of ``rebuild_signatures``."""

    project_id: str
    built: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)


class SimilarityEngine:
    """Builds signatures and finds similar past cases.

    Args:
        conn:   Open SQLite connection.
        config: Application config (similarity blend and limits).
    """

    def __init__(self, conn: sqlite3.Connection, config: Optional[AppConfig] = None) -> None:
        self.conn = conn
        self.config = config or AppConfig()
        self._projects = ProjectRepository(conn)
        self._snapshots = SnapshotRepository(conn)
        self._signatures = CaseSignatureRepository(conn)
        self._events = EventRepository(conn)

    def build_signature(
        self,
        project_id: str,
        window_days: int,
        as_of: Optional[date] = None,
    ) -> Optional[CaseSignature]:
        """Build and upsert the signature for one window.

        Returns:
            The signature, or ``None`` when the window holds no snapshots.

        Raises:
            InvalidWindowError:   ``window_days`` not in {7, 14, 30}.
            ProjectNotFoundError: Project is not registered.
        """
        window_days = validate_window(window_days)
        project = self._projects.require_project(project_id)
        as_of = as_of or utcnow().date()
        start, end = window_dates(as_of, window_days)

        snapshots = self._snapshots.list_snapshots(project_id, start, end)
        if not snapshots:
            logger.info(
                "No snapshots for %s in %s..%s; signature (window=%d) skipped.",
                project_id, start, end, window_days,
            )
            return None

        events = self._events.events_between(project_id, *day_bounds(start, end))
        bigrams = build_event_bigrams(e.event_type for e in events)
        vector, features = vector_from_snapshots(snapshots)
        features["signature_hash"] = signature_hash(vector, bigrams)
        features["snapshots"] = len(snapshots)

        signature = CaseSignature(
            project_id=project_id,
            window_days=window_days,
            as_of=as_of,
            signature_vector=vector,
            event_bigrams=bigrams,
            context=build_context(project.name, snapshots),
            features=features,
        )
        self._signatures.upsert_signature(signature)
        logger.debug(
            "Signature %s window=%d | snapshots=%d | bigrams=%d",
            project_id, window_days, len(snapshots), len(bigrams),
        )
        return signature

    def find_similar_cases(
        self,
        project_id: str,
        window_days: Optional[int] = None,
        top_k: Optional[int] = None,
        as_of: Optional[date] = None,
    ) -> list[SimilarCase]:
        """Rank same-tenant projects by similarity to ``project_id``.

        The source signature is built on demand when none is stored.
        Returns an empty list when no signature can be built.

        Raises:
            InvalidWindowError:   ``window_days`` not in {7, 14, 30}.
            ProjectNotFoundError: Project is not registered.
        """
        window = validate_window(
            window_days if window_days is not None else self.config.pipeline.default_window_days
        )
        project = self._projects.require_project(project_id)

        source = self._signatures.get_signature(project_id, window)
        if source is None:
            source = self.build_signature(project_id, window, as_of)
        if source is None:
            return []

        per_candidate = self.config.similarity.outcomes_per_candidate
        candidates = [
            CandidateCase(
                signature=sig,
                project_name=name,
                outcomes=self._snapshots.list_outcomes(sig.project_id, limit=per_candidate),
            )
            for sig, name in self._signatures.list_candidates(project.account_id, window, project_id)
        ]
        return rank_similar_cases(source, candidates, top_k, self.config.similarity)

    def rebuild_signatures(
        self,
        project_id: str,
        windows: Optional[Iterable[int]] = None,
        as_of: Optional[date] = None,
    ) -> SignatureRebuildResult:
        """Rebuild each window's signature; windows without snapshots are skipped."""
        result = SignatureRebuildResult(project_id=project_id)
        for window in windows or self.config.pipeline.similarity_windows:
            if self.build_signature(project_id, window, as_of) is None:
                result.skipped.append(window)
            else:
                result.built.append(window)
        return result
