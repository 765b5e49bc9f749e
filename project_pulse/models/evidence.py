"""
Evidence references — the pointers that make every output auditable.

An ``EvidenceRef`` names exactly one upstream artefact (message, issue,
CRM record, document, knowledge chunk) plus optional provenance columns.
Signals, scores, forecasts and recommendations all carry lists of them.

Lists are merged with ``dedupe_evidence()``: order-preserving, unique by the
full ref tuple, capped. That single helper is the merge policy for evidence
everywhere in the system.
"""

from __future__ import annotations

from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, model_validator

from project_pulse.taxonomy.event_taxonomy import EvidenceKind

_ID_FIELDS: tuple[str, ...] = tuple(k.value for k in EvidenceKind)


class EvidenceRef(BaseModel):
    """Pointer to one upstream artefact.

    Attributes:
        message_id:      Messaging system message id.
        linear_issue_id: Task tracker issue id.
        attio_record_id: CRM record id.
        doc_url:         Document URL.
        rag_chunk_id:    Knowledge index chunk id.
        source_table:    Optional table the ref was lifted from.
        source_pk:       Optional primary key in ``source_table``.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    message_id: Optional[str] = None
    linear_issue_id: Optional[str] = None
    attio_record_id: Optional[str] = None
    doc_url: Optional[str] = None
    rag_chunk_id: Optional[str] = None
    source_table: Optional[str] = None
    source_pk: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def coerce_ids(cls, data: object) -> object:
        # Upstream ids arrive as ints as often as strings.
        if isinstance(data, dict):
            return {
                k: (str(v) if isinstance(v, (int, float)) and not isinstance(v, bool) else v)
                for k, v in data.items()
            }
        return data

    @model_validator(mode="after")
    def exactly_one_identifier(self) -> "EvidenceRef":
        present = [f for f in _ID_FIELDS if getattr(self, f)]
        if len(present) != 1:
            raise ValueError(
                f"EvidenceRef must carry exactly one of {list(_ID_FIELDS)}, got {present or 'none'}."
            )
        return self

    @property
    def kind(self) -> EvidenceKind:
        """Which identifier field this ref carries."""
        for f in _ID_FIELDS:
            if getattr(self, f):
                return EvidenceKind(f)
        raise AssertionError("unreachable: validated ref without identifier")

    @property
    def identifier(self) -> str:
        return str(getattr(self, self.kind.value))

    def key(self) -> tuple[Optional[str], ...]:
        """Identity tuple used for deduplication."""
        return (
            self.message_id,
            self.linear_issue_id,
            self.attio_record_id,
            self.doc_url,
            self.rag_chunk_id,
            self.source_table,
            self.source_pk,
        )

    def link(self) -> str:
        """Openable link for this ref (scheme per upstream system)."""
        if self.message_id:
            return f"chatwoot://message/{self.message_id}"
        if self.linear_issue_id:
            return f"linear://issue/{self.linear_issue_id}"
        if self.attio_record_id:
            return f"attio://record/{self.attio_record_id}"
        if self.doc_url:
            return self.doc_url
        return f"rag://chunk/{self.rag_chunk_id}"


def dedupe_evidence(
    refs: Iterable[EvidenceRef],
    cap: Optional[int] = None,
) -> list[EvidenceRef]:
    """Order-preserving dedupe of evidence refs, truncated to ``cap`` items."""
    seen: set[tuple[Optional[str], ...]] = set()
    out: list[EvidenceRef] = []
    for ref in refs:
        k = ref.key()
        if k in seen:
            continue
        seen.add(k)
        out.append(ref)
        if cap is not None and len(out) >= cap:
            break
    return out


def evidence_kinds(refs: Iterable[EvidenceRef]) -> set[EvidenceKind]:
    """Distinct identifier kinds present in ``refs``."""
    return {r.kind for r in refs}
