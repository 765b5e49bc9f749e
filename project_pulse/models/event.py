"""
Event log records and their typed payloads.

``Event`` is one append-only row of the project event log. Its ``payload``
is stored as a raw dict so the log can hold event types this version does
not yet understand; ``Event.typed_payload()`` parses it into the closed
union of per-type payload models.

Anything that does not parse (unknown type, or a payload that fails its
schema) becomes an ``UnknownPayload``. The aggregator ignores those apart
from advancing its cursor.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    ValidationError,
    field_validator,
)

from project_pulse.models.evidence import EvidenceRef
from project_pulse.taxonomy.event_taxonomy import EventType
from project_pulse.utils.time_utils import ensure_utc, parse_ts

logger = logging.getLogger(__name__)

UtcTimestamp = Annotated[Optional[datetime], BeforeValidator(parse_ts)]


def _lower(v: Any) -> Any:
    return v.strip().lower() if isinstance(v, str) else v


def _str_id(v: Any) -> Any:
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(v)
    return v


LowerStr = Annotated[Optional[str], BeforeValidator(_lower)]
IdStr = Annotated[Optional[str], BeforeValidator(_str_id)]


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


# ── Per-type payloads ─────────────────────────────────────────────────────────


class MessageSentPayload(_Payload):
    """``sender`` is ``client``, ``team``, ``agent`` or ``pm``."""

    event_type: Literal["message_sent"] = "message_sent"
    sender: LowerStr = None
    sentiment_score: Optional[float] = None

    @field_validator("sentiment_score")
    @classmethod
    def clamp_sentiment(cls, v: Optional[float]) -> Optional[float]:
        if v is None:
            return None
        return max(-1.0, min(1.0, v))


class DecisionMadePayload(_Payload):
    event_type: Literal["decision_made"] = "decision_made"
    summary: Optional[str] = None


class AgreementCreatedPayload(_Payload):
    event_type: Literal["agreement_created"] = "agreement_created"
    agreement_id: IdStr = None
    title: Optional[str] = None
    due_at: UtcTimestamp = None


class ApprovalApprovedPayload(_Payload):
    event_type: Literal["approval_approved"] = "approval_approved"
    agreement_id: IdStr = None


class StageStartedPayload(_Payload):
    event_type: Literal["stage_started"] = "stage_started"
    stage_id: IdStr = None
    stage_name: Optional[str] = None
    due_at: UtcTimestamp = None
    approval_pending: bool = False


class StageCompletedPayload(_Payload):
    event_type: Literal["stage_completed"] = "stage_completed"
    stage_id: IdStr = None


class TaskCreatedPayload(_Payload):
    event_type: Literal["task_created"] = "task_created"
    task_id: IdStr = None


class TaskBlockedPayload(_Payload):
    event_type: Literal["task_blocked"] = "task_blocked"
    task_id: IdStr = None
    blocker_id: IdStr = None

    @property
    def blocker_key(self) -> Optional[str]:
        return self.blocker_id or self.task_id


class BlockerResolvedPayload(_Payload):
    event_type: Literal["blocker_resolved"] = "blocker_resolved"
    task_id: IdStr = None
    blocker_id: IdStr = None

    @property
    def blocker_key(self) -> Optional[str]:
        return self.blocker_id or self.task_id


class DealUpdatedPayload(_Payload):
    event_type: Literal["deal_updated"] = "deal_updated"
    deal_id: IdStr = None
    stage: LowerStr = None
    amount: Optional[float] = None


class OfferCreatedPayload(_Payload):
    event_type: Literal["offer_created"] = "offer_created"
    offer_id: IdStr = None
    amount: Optional[float] = None


class FinanceEntryCreatedPayload(_Payload):
    """``entry_type`` routes ``abs(amount)`` to budget, cost or revenue."""

    event_type: Literal["finance_entry_created"] = "finance_entry_created"
    entry_type: LowerStr = None
    amount: float = 0.0


class RiskDetectedPayload(_Payload):
    event_type: Literal["risk_detected"] = "risk_detected"
    risk_type: LowerStr = None
    severity: Optional[int] = None


class ScopeChangeRequestedPayload(_Payload):
    event_type: Literal["scope_change_requested"] = "scope_change_requested"
    summary: Optional[str] = None
    estimated_hours: Optional[float] = None


class NeedDetectedPayload(_Payload):
    event_type: Literal["need_detected"] = "need_detected"
    need: Optional[str] = None


class UnknownPayload(_Payload):
    """Fallback for unrecognised event types or unparseable payloads."""

    event_type: str
    raw: dict[str, Any] = {}


EventPayload = Union[
    MessageSentPayload,
    DecisionMadePayload,
    AgreementCreatedPayload,
    ApprovalApprovedPayload,
    StageStartedPayload,
    StageCompletedPayload,
    TaskCreatedPayload,
    TaskBlockedPayload,
    BlockerResolvedPayload,
    DealUpdatedPayload,
    OfferCreatedPayload,
    FinanceEntryCreatedPayload,
    RiskDetectedPayload,
    ScopeChangeRequestedPayload,
    NeedDetectedPayload,
    UnknownPayload,
]

PAYLOAD_MODELS: dict[str, type[_Payload]] = {
    EventType.MESSAGE_SENT: MessageSentPayload,
    EventType.DECISION_MADE: DecisionMadePayload,
    EventType.AGREEMENT_CREATED: AgreementCreatedPayload,
    EventType.APPROVAL_APPROVED: ApprovalApprovedPayload,
    EventType.STAGE_STARTED: StageStartedPayload,
    EventType.STAGE_COMPLETED: StageCompletedPayload,
    EventType.TASK_CREATED: TaskCreatedPayload,
    EventType.TASK_BLOCKED: TaskBlockedPayload,
    EventType.BLOCKER_RESOLVED: BlockerResolvedPayload,
    EventType.DEAL_UPDATED: DealUpdatedPayload,
    EventType.OFFER_CREATED: OfferCreatedPayload,
    EventType.FINANCE_ENTRY_CREATED: FinanceEntryCreatedPayload,
    EventType.RISK_DETECTED: RiskDetectedPayload,
    EventType.SCOPE_CHANGE_REQUESTED: ScopeChangeRequestedPayload,
    EventType.NEED_DETECTED: NeedDetectedPayload,
}


def parse_payload(event_type: str, raw: Optional[dict[str, Any]]) -> EventPayload:
    """Parse a raw payload dict into its typed model.

    Args:
        event_type: The event's type string.
        raw:        Raw payload dict from the log (``None`` treated as ``{}``).

    Returns:
        A typed payload, or ``UnknownPayload`` when the type is unknown or
        the payload fails validation.
    """
    raw = raw or {}
    model = PAYLOAD_MODELS.get(event_type)
    if model is None:
        return UnknownPayload(event_type=event_type, raw=raw)
    data = {k: v for k, v in raw.items() if k != "event_type"}
    try:
        return model.model_validate(data)  # type: ignore[return-value]
    except ValidationError as exc:
        logger.warning(
            "Payload for event_type=%s failed validation; treating as unknown: %s",
            event_type, exc.errors(include_url=False),
        )
        return UnknownPayload(event_type=event_type, raw=raw)


class Event(BaseModel):
    """One row of the append-only project event log.

    Attributes:
        id:            Monotonic log id; defines apply order.
        project_id:    Owning project.
        event_type:    Type string (may be outside ``EventType``).
        event_ts:      When the event happened (UTC).
        payload:       Raw payload dict.
        evidence_refs: Pointers to the artefacts that back this event.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    project_id: str
    event_type: str
    event_ts: datetime
    payload: dict[str, Any] = {}
    evidence_refs: list[EvidenceRef] = []

    @field_validator("event_ts", mode="before")
    @classmethod
    def parse_event_ts(cls, v: Any) -> Any:
        parsed = parse_ts(v)
        return parsed if parsed is not None else v

    @field_validator("event_ts")
    @classmethod
    def utc_event_ts(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def typed_payload(self) -> EventPayload:
        return parse_payload(self.event_type, self.payload)
