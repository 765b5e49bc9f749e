"""
Risk, recommendation and process-log taxonomy.

This module has NO imports from any other ``project_pulse`` package.
"""

from enum import StrEnum


class RiskType(StrEnum):
    """Risk types shared by case outcomes and forecasts."""

    DELIVERY = "delivery_risk"
    FINANCE = "finance_risk"
    CLIENT = "client_risk"
    SCOPE = "scope_risk"


class RecommendationCategory(StrEnum):
    """Recommendation catalogue, in tie-break order."""

    WAITING_ON_CLIENT = "waiting_on_client"
    """Nudge the client: a reply or approval is overdue."""

    SCOPE_CREEP_CHANGE_REQUEST = "scope_creep_change_request"
    """Formalise out-of-scope asks as a change request."""

    DELIVERY_RISK = "delivery_risk"
    """Unblock delivery before the stage slips further."""

    FINANCE_RISK = "finance_risk"
    """Review burn and margin with finance."""

    UPSELL_OPPORTUNITY = "upsell_opportunity"
    """Offer an extension while the account is healthy and has needs."""

    WINBACK = "winback"
    """Similar past cases churned; run a retention play now."""


class RecommendationStatus(StrEnum):
    """Lifecycle of a recommendation; only explicit transitions change it."""

    NEW = "new"
    ACKNOWLEDGED = "acknowledged"
    DONE = "done"
    DISMISSED = "dismissed"


TERMINAL_STATUSES: frozenset[str] = frozenset(
    {RecommendationStatus.DONE, RecommendationStatus.DISMISSED}
)


class FeedbackValue(StrEnum):
    """User feedback on a recommendation."""

    HELPFUL = "helpful"
    NOT_HELPFUL = "not_helpful"
    UNKNOWN = "unknown"


class GateStatus(StrEnum):
    """Evidence gate outcome."""

    VISIBLE = "visible"
    HIDDEN = "hidden"


class GateReason(StrEnum):
    """Why the evidence gate hid a candidate."""

    INSUFFICIENT_EVIDENCE = "insufficient_evidence"
    PRIMARY_SOURCE_MISSING = "primary_source_missing"
    LOW_EVIDENCE_QUALITY = "low_evidence_quality"


class ProcessPhase(StrEnum):
    """Process run log entry kinds."""

    START = "start"
    FINISH = "finish"
    FAIL = "fail"
    WARN = "warn"
