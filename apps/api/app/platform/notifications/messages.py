from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any


NOTIFICATION_KINDS = (
    "new_deal",
    "deal_won",
    "firm_offer_invite",
    "firm_offer_submitted",
    "contract_signing_request",
    "contract_completed",
)


def format_money(value: Any, fallback: str = "As discussed") -> str:
    if value in (None, ""):
        return fallback
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return str(value)
    if amount <= 0:
        return fallback
    return f"${amount:,.2f}"


def _line(label: str, value: Any) -> str:
    return f"{label}: {value if value not in (None, '') else 'TBD'}"


def render(kind: str, payload: dict[str, Any]) -> tuple[str, str]:
    """Return (subject, plain-text body) for a lifecycle notification."""

    if kind == "new_deal":
        subject = f"New deal: {payload.get('event_title') or 'Untitled event'}"
        body = "\n".join(
            [
                "A new deal was added to the pipeline.",
                _line("Client", payload.get("client_name")),
                _line("Company", payload.get("company")),
                _line("Event date", payload.get("event_date")),
                _line("Value", format_money(payload.get("deal_value"), fallback="TBD")),
                _line("Source", payload.get("source")),
            ]
        )
        return subject, body

    if kind == "deal_won":
        subject = f"Deal won: {payload.get('event_title') or 'Untitled event'}"
        lines = [
            f"{payload.get('client_name')} confirmed the booking.",
            _line("Value", format_money(payload.get("deal_value"), fallback="TBD")),
            _line("Event date", payload.get("event_date")),
        ]
        if payload.get("project_id"):
            lines.append(_line("Project", payload.get("project_id")))
        return subject, "\n".join(lines)

    if kind == "firm_offer_invite":
        event_name = payload.get("event_name") or "Speaking engagement"
        subject = f"Speaking opportunity: {event_name}"
        body = "\n".join(
            [
                f"Hi {payload.get('speaker_name') or 'there'},",
                "",
                "We have a firm offer for you to review.",
                _line("Event", event_name),
                _line("Organization", payload.get("company_name")),
                _line("Date", payload.get("event_date")),
                _line("Location", payload.get("event_location")),
                _line("Program", payload.get("program_type")),
                _line("Fee", format_money(payload.get("speaker_fee"))),
                "",
                f"Review and respond: {payload.get('review_url')}",
            ]
        )
        return subject, body

    if kind == "firm_offer_submitted":
        subject = f"Firm offer submitted: {payload.get('event_name') or 'Untitled event'}"
        body = "\n".join(
            [
                "A client completed the firm offer sheet.",
                _line("Organization", payload.get("company_name")),
                _line("Firm offer", payload.get("firm_offer_id")),
            ]
        )
        return subject, body

    if kind == "contract_signing_request":
        subject = f"Please sign contract {payload.get('contract_number')}"
        body = "\n".join(
            [
                f"Hi {payload.get('recipient_name') or 'there'},",
                "",
                f"The agreement for {payload.get('event_title')} is ready for your signature.",
                _line("Event date", payload.get("event_date")),
                _line("Amount", format_money(payload.get("total_amount"))),
                "",
                f"Sign here: {payload.get('signing_url')}",
            ]
        )
        return subject, body

    if kind == "contract_completed":
        subject = f"Contract {payload.get('contract_number')} fully executed"
        body = "\n".join(
            [
                f"Hi {payload.get('recipient_name') or 'there'},",
                "",
                f"All parties have signed the agreement for {payload.get('event_title')}.",
                _line("Event date", payload.get("event_date")),
                _line("Amount", format_money(payload.get("total_amount"))),
            ]
        )
        return subject, body

    raise ValueError(f"unknown notification kind: {kind}")
