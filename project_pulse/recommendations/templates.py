"""
Deterministic message templates for recommendation drafts.

Each recommendation category maps to one template key. ``render_template``
substitutes ``{{name}}`` placeholders; unknown placeholders are left as is
so a missing variable is visible in the draft rather than silently blank.
"""

from __future__ import annotations

import re
from typing import Any

WAITING_FOLLOW_UP = "waiting_on_client_follow_up"
SCOPE_CHANGE_REQUEST = "scope_creep_change_request"
DELIVERY_ESCALATION = "delivery_risk_escalation"
FINANCE_REVIEW = "finance_risk_review"
UPSELL_PITCH = "upsell_offer_pitch"
WINBACK_OUTREACH = "winback_outreach"

TEMPLATE_LIBRARY: dict[str, str] = {
    WAITING_FOLLOW_UP: "\n".join([
        "Subject: Approval needed for {{stage_name}}",
        "",
        "Hi {{client_name}},",
        "",
        "We have been waiting on your confirmation for \"{{stage_name}}\" for {{waiting_days}} days.",
        "To keep the deadline, could you pick one of these options:",
        "1) Approve the current version;",
        "2) Send your change comments;",
        "3) Join a 15-minute call to settle it.",
        "",
        "Thanks! We are ready to move on as soon as we hear from you.",
    ]),
    SCOPE_CHANGE_REQUEST: "\n".join([
        "Subject: Capturing scope changes (change request)",
        "",
        "Hi {{client_name}},",
        "",
        "Over the last week we logged {{out_of_scope_count}} request(s) outside the agreed scope.",
        "To keep timelines and budget transparent we suggest a change request covering:",
        "- a description of the changes;",
        "- the impact on timelines;",
        "- the impact on budget;",
        "- an updated delivery plan.",
        "",
        "Once confirmed we will update the roadmap right away.",
    ]),
    DELIVERY_ESCALATION: "\n".join([
        "Subject: Delivery risk escalation for {{project_name}}",
        "",
        "Team,",
        "",
        "A delivery risk has been detected:",
        "- open blockers: {{blockers_count}};",
        "- average blocker age: {{blockers_age_days}} days;",
        "- stage overdue by: {{stage_overdue_days}} days.",
        "",
        "Suggested actions:",
        "1) Re-scope the next 48 hours with an owner per blocker;",
        "2) Re-plan the critical path;",
        "3) Escalate external dependencies to the client or partners.",
    ]),
    FINANCE_REVIEW: "\n".join([
        "Subject: Financial risk: margin review",
        "",
        "Hi {{client_name}},",
        "",
        "Our numbers show a deviation from the financial plan:",
        "- burn rate: {{burn_rate}}x of plan;",
        "- margin risk: {{margin_risk_pct}}%.",
        "",
        "We suggest a 30-minute sync to agree on:",
        "1) prioritising the remaining scope;",
        "2) options to reduce cost;",
        "3) an updated financial baseline.",
    ]),
    UPSELL_PITCH: "\n".join([
        "Subject: Extending the value of the project",
        "",
        "Hi {{client_name}},",
        "",
        "Looking at current work we see room to extend the engagement:",
        "- identified need: {{need_signal}};",
        "- expected effect: {{expected_value}}.",
        "",
        "We can send a compact offer with Base / Plus / Pro options and an ROI estimate.",
    ]),
    WINBACK_OUTREACH: "\n".join([
        "Subject: Checking in on {{project_name}}",
        "",
        "Hi {{client_name}},",
        "",
        "We want to make sure the project keeps delivering the value you expect.",
        "Could we book 20 minutes this week to review priorities and what would help most right now?",
        "",
        "We will come with a short summary of progress and options for the next phase.",
    ]),
}

_TOKEN = re.compile(r"\{\{\s*([a-zA-Z0-9_]+)\s*\}\}")


def _sanitize(value: Any) -> str:
    return str("" if value is None else value).replace("\r", "").strip()


def render_template(template_key: str, variables: dict[str, Any]) -> str:
    """Render ``template_key`` with ``variables``; ``""`` for an unknown key."""
    body = TEMPLATE_LIBRARY.get(template_key, "")
    if not body:
        return ""

    def substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        return _sanitize(variables[name]) if name in variables else match.group(0)

    return _TOKEN.sub(substitute, body)
