"""
Event taxonomy for the project event log.

Two dimensions describe every logged event:
  - ``EventType``    — the *what*: which business fact was recorded?
  - ``EvidenceKind`` — the *where*: which upstream system can a human open
    to verify it?

Usage example::

    from project_pulse.taxonomy.event_taxonomy import EventType

    if event.event_type == EventType.TASK_BLOCKED:
        ...

This module has NO imports from any other ``project_pulse`` package.
"""

from enum import StrEnum


class EventType(StrEnum):
    """Closed vocabulary of event types the aggregator understands.

    Event types outside this set are accepted into the log but are ignored
    by the aggregator (they only advance the cursor).
    """

    # ── Communication ─────────────────────────────────────────────────────────
    MESSAGE_SENT = "message_sent"
    """A message between the client and the team; carries sender and sentiment."""

    DECISION_MADE = "decision_made"
    """A recorded decision; counts toward activity only."""

    NEED_DETECTED = "need_detected"
    """A client need surfaced in conversation; feeds upsell likelihood."""

    # ── Delivery ──────────────────────────────────────────────────────────────
    STAGE_STARTED = "stage_started"
    """A delivery stage began; may carry a due date and an approval request."""

    STAGE_COMPLETED = "stage_completed"
    """The active delivery stage finished."""

    TASK_CREATED = "task_created"
    """A task was created; counts toward activity only."""

    TASK_BLOCKED = "task_blocked"
    """A task became blocked; opens a blocker."""

    BLOCKER_RESOLVED = "blocker_resolved"
    """A previously opened blocker was cleared."""

    SCOPE_CHANGE_REQUESTED = "scope_change_requested"
    """The client asked for work outside the agreed scope."""

    # ── Agreements ────────────────────────────────────────────────────────────
    AGREEMENT_CREATED = "agreement_created"
    """A commitment awaiting client approval, optionally with a due date."""

    APPROVAL_APPROVED = "approval_approved"
    """The client approved an agreement or a pending stage approval."""

    # ── Commercial ────────────────────────────────────────────────────────────
    DEAL_UPDATED = "deal_updated"
    """CRM deal stage or amount changed."""

    OFFER_CREATED = "offer_created"
    """A commercial offer was sent to the client."""

    FINANCE_ENTRY_CREATED = "finance_entry_created"
    """A budget, cost or revenue line was booked."""

    RISK_DETECTED = "risk_detected"
    """An upstream system flagged a risk explicitly."""


class EvidenceKind(StrEnum):
    """Identifier kinds an ``EvidenceRef`` may carry (exactly one per ref)."""

    MESSAGE = "message_id"
    """Chat or email message in the messaging system."""

    ISSUE = "linear_issue_id"
    """Issue in the task tracker."""

    CRM_RECORD = "attio_record_id"
    """Record in the CRM (deals, companies)."""

    DOCUMENT = "doc_url"
    """Link to a document (contract, invoice, spreadsheet)."""

    RAG_CHUNK = "rag_chunk_id"
    """Indexed knowledge chunk."""
