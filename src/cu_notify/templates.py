"""Email bodies for the two unlock notifications (plain text + HTML)."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from html import escape

from config.settings import settings
from src.cu_common.credits import credits_to_display


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    text: str
    html: str

    def to_payload(self) -> dict[str, str]:
        return {"to": self.to, "subject": self.subject, "text": self.text, "html": self.html}


def _format_date(value: datetime | None) -> str:
    return value.strftime("%d %b %Y") if value else "no expiry"


def _html(paragraphs: list[str]) -> str:
    body = "".join(f"<p>{escape(p)}</p>" for p in paragraphs)
    return f'<div style="font-family:Arial,sans-serif;font-size:14px">{body}</div>'


def athlete_unlocked(
    to: str,
    athlete_name: str,
    operator_name: str,
    expires_at: datetime | None,
) -> EmailMessage:
    greeting = f"Hi {athlete_name}," if athlete_name else "Hi,"
    who = operator_name or "An operator"
    paragraphs = [
        greeting,
        f"{who} has unlocked your contact details.",
        f"Access is valid until: {_format_date(expires_at)}.",
        f"The {settings.EMAIL_FROM_NAME} team",
    ]
    return EmailMessage(
        to=to,
        subject="Your contact details were unlocked",
        text="\n\n".join(paragraphs),
        html=_html(paragraphs),
    )


def operator_unlock_confirmed(
    to: str,
    operator_name: str,
    athlete_name: str,
    credits_spent: Decimal,
    balance: Decimal | None,
    expires_at: datetime | None,
) -> EmailMessage:
    greeting = f"Hi {operator_name}," if operator_name else "Hi,"
    paragraphs = [
        greeting,
        f"You unlocked the contact details of {athlete_name or 'an athlete'}.",
        f"Credits spent: {credits_to_display(credits_spent)}.",
    ]
    if balance is not None:
        paragraphs.append(f"Remaining balance: {credits_to_display(balance)}.")
    paragraphs += [
        f"Access is valid until: {_format_date(expires_at)}.",
        f"The {settings.EMAIL_FROM_NAME} team",
    ]
    return EmailMessage(
        to=to,
        subject="Contact unlock confirmed",
        text="\n\n".join(paragraphs),
        html=_html(paragraphs),
    )
