from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from app.core.errors import ValidationError


IN_PERSON_TEMPLATE_ID = "in_person_speaking"
VIRTUAL_TEMPLATE_ID = "virtual_speaking"
VIRTUAL_EVENT_MARKERS = ("virtual", "webinar", "online")
DRAFT_FOOTER = "\n---\n\n**Contract Status:** DRAFT - Not yet sent for signatures"

_PLACEHOLDER_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")


@dataclass(frozen=True, slots=True)
class ContractTemplate:
    id: str
    name: str
    sections: tuple[tuple[str, str], ...]


_COMMON_OPENING = (
    (
        "Parties",
        "This Speaker Engagement Agreement ({{contract_number}}) is entered into on {{agreement_date}} between "
        "**{{client_company}}** (\"Client\"), represented by {{client_signer_name}}, and **{{speaker_name}}** "
        "(\"Speaker\").",
    ),
)

_COMMON_CLOSING = (
    (
        "Compensation",
        "Client agrees to pay a speaker fee of **{{speaker_fee}}**. Total amount due under this agreement: "
        "**{{total_amount}}**.\n\nPayment terms: {{payment_terms}}.",
    ),
    (
        "Cancellation",
        "Cancellation by Client within 30 days of the event obliges Client to pay the full fee. "
        "If Speaker cancels, any deposit is refunded in full and the agency will propose a replacement speaker.",
    ),
    ("Additional Terms", "{{additional_terms}}"),
    (
        "Signatures",
        "Client: {{client_signer_name}}, {{client_signer_title}}\n\nSpeaker: {{speaker_name}}",
    ),
)

TEMPLATES: dict[str, ContractTemplate] = {
    IN_PERSON_TEMPLATE_ID: ContractTemplate(
        id=IN_PERSON_TEMPLATE_ID,
        name="In-person speaking engagement",
        sections=(
            *_COMMON_OPENING,
            (
                "Engagement",
                "Speaker will appear in person at **{{event_title}}** on {{event_date}} at {{event_location}} "
                "({{event_type}}), for an expected audience of {{attendee_count}}.",
            ),
            (
                "Travel and Logistics",
                "Client provides ground transportation between airport, hotel and venue, and a green room on the day "
                "of the event. Travel arrangements follow the terms agreed in the firm offer.",
            ),
            *_COMMON_CLOSING,
        ),
    ),
    VIRTUAL_TEMPLATE_ID: ContractTemplate(
        id=VIRTUAL_TEMPLATE_ID,
        name="Virtual speaking engagement",
        sections=(
            *_COMMON_OPENING,
            (
                "Engagement",
                "Speaker will deliver a virtual presentation for **{{event_title}}** on {{event_date}} "
                "({{event_type}}), hosted at {{event_location}}, for an expected audience of {{attendee_count}}.",
            ),
            (
                "Technical Requirements",
                "Client provides the streaming platform and a technical rehearsal no later than 48 hours before "
                "the event. Recording requires Speaker's written consent.",
            ),
            *_COMMON_CLOSING,
        ),
    ),
}


def select_template_id(event_type: str | None) -> str:
    kind = (event_type or "").lower()
    if any(marker in kind for marker in VIRTUAL_EVENT_MARKERS):
        return VIRTUAL_TEMPLATE_ID
    return IN_PERSON_TEMPLATE_ID


def get_template(template_id: str) -> ContractTemplate:
    template = TEMPLATES.get(template_id)
    if template is None:
        raise ValidationError(f"unknown contract template: {template_id}", field="template_id")
    return template


def substitute(text: str, variables: dict[str, Any]) -> str:
    def _replace(match: re.Match[str]) -> str:
        value = variables.get(match.group(1))
        return "TBD" if value in (None, "") else str(value)

    return _PLACEHOLDER_RE.sub(_replace, text)


def render(template_id: str, title: str, variables: dict[str, Any]) -> str:
    template = get_template(template_id)
    parts = [f"# {title}"]
    for index, (heading, body) in enumerate(template.sections, start=1):
        parts.append(f"## {index}. {heading}\n\n{substitute(body, variables)}")
    return "\n\n".join(parts) + "\n"
