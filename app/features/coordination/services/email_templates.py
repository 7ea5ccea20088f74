"""
Email bodies for coordination notifications.

Payloads are plain dicts built by the façade after commit; every value that
ends up in HTML is escaped here.
"""

from dataclasses import dataclass
from datetime import date, time
from enum import Enum
from html import escape
from typing import Any
from urllib.parse import urlencode

from app.config import settings


class NotificationKind(str, Enum):
    PROPOSAL_INVITATION = "proposal_invitation"
    RESPONSE_RECEIVED = "response_received"
    RESPONSE_CONFIRMATION = "response_confirmation"
    PROPOSAL_CANCELLED = "proposal_cancelled"
    GROUP_INVITATION = "group_invitation"


@dataclass(slots=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


_ANSWER_TEXT = {
    "yes": "accepted the meeting invitation",
    "no": "declined the meeting invitation",
    "alternate": "proposed an alternate time",
}

_CONTAINER_STYLE = (
    "font-family: Arial, sans-serif; line-height: 1.6; color: #333; "
    "max-width: 600px; margin: 20px auto; padding: 20px;"
)
_BUTTON_STYLE = (
    "display: inline-block; padding: 12px 30px; margin: 5px; text-decoration: none; "
    "border-radius: 6px; font-weight: 600; color: white; background-color: {color};"
)


def response_links(token: str) -> dict[str, str]:
    """One-click yes/no links and the alternate-time form link for a token."""
    base = settings.response_link_base()
    return {
        "yes": f"{base}?{urlencode({'token': token, 'response': 'yes'})}",
        "no": f"{base}?{urlencode({'token': token, 'response': 'no'})}",
        "alternate": f"{settings.alternate_form_base()}?{urlencode({'token': token})}",
    }


def format_date(value: date | str) -> str:
    if isinstance(value, date):
        return value.strftime("%A, %B %d, %Y")
    return str(value)


def format_time(start: time | str, end: time | str | None = None) -> str:
    def _fmt(t: time | str) -> str:
        return t.strftime("%H:%M") if isinstance(t, time) else str(t)

    return f"{_fmt(start)} - {_fmt(end)}" if end else _fmt(start)


def _meeting_details(payload: dict[str, Any]) -> str:
    lines = [f"<p><strong>Title:</strong> {escape(payload['title'])}</p>"]
    if payload.get("description"):
        lines.append(f"<p><strong>Description:</strong> {escape(payload['description'])}</p>")
    lines.append(f"<p><strong>Date:</strong> {escape(format_date(payload['proposed_date']))}</p>")
    lines.append(
        "<p><strong>Time:</strong> "
        f"{escape(format_time(payload['start_time'], payload.get('end_time')))}</p>"
    )
    return "\n".join(lines)


def _wrap(heading: str, body: str) -> str:
    return (
        "<!DOCTYPE html><html><head><meta charset=\"UTF-8\"></head><body>"
        f"<div style=\"{_CONTAINER_STYLE}\"><h2>{escape(heading)}</h2>{body}"
        "<p style=\"font-size: 12px; color: #6b7280;\">Sent via Blue Moon Scheduler. "
        "This is an automated message.</p></div></body></html>"
    )


def _render_invitation(payload: dict[str, Any]) -> RenderedEmail:
    links = response_links(payload["token"])
    organizer = payload.get("organizer_name") or "Someone"
    context = f" for <strong>{escape(payload['group_name'])}</strong>" if payload.get("group_name") else ""
    buttons = "".join(
        f"<a href=\"{escape(links[key])}\" style=\"{_BUTTON_STYLE.format(color=color)}\">{label}</a>"
        for key, label, color in (
            ("yes", "Yes, I can attend", "#10b981"),
            ("no", "No, I can't attend", "#ef4444"),
            ("alternate", "Propose another time", "#f59e0b"),
        )
    )
    body = (
        f"<p><strong>{escape(organizer)}</strong> has proposed a meeting time{context}.</p>"
        f"{_meeting_details(payload)}<p>Can you make it?</p><div>{buttons}</div>"
        "<p style=\"font-size: 13px; color: #6b7280;\">Each link works once. "
        "Your response will be shared with the organizer.</p>"
    )
    text = (
        f"{organizer} has proposed a meeting: {payload['title']}\n"
        f"Date: {format_date(payload['proposed_date'])}\n"
        f"Time: {format_time(payload['start_time'], payload.get('end_time'))}\n\n"
        f"Yes: {links['yes']}\nNo: {links['no']}\nPropose another time: {links['alternate']}\n"
    )
    return RenderedEmail(
        subject=f"Meeting Proposal: {payload['title']}", html=_wrap("Meeting Time Proposal", body), text=text
    )


def _render_response_received(payload: dict[str, Any]) -> RenderedEmail:
    who = payload.get("respondent_name") or payload["respondent_email"]
    action = _ANSWER_TEXT.get(payload["answer"], "responded")
    extra = ""
    text_extra = ""
    if payload.get("alternate_date"):
        alt = (
            f"{format_date(payload['alternate_date'])} at "
            f"{format_time(payload['alternate_start_time'])}"
        )
        extra = f"<p><strong>Suggested:</strong> {escape(alt)}</p>"
        text_extra = f"Suggested: {alt}\n"
        if payload.get("alternate_message"):
            extra += f"<p><strong>Message:</strong> {escape(payload['alternate_message'])}</p>"
            text_extra += f"Message: {payload['alternate_message']}\n"
    progress = f"{payload['responded_count']} of {payload['expected_responses']} responses received."
    body = f"<p>{escape(who)} {action}.</p>{extra}{_meeting_details(payload)}<p>{progress}</p>"
    text = f"{who} {action}.\n{text_extra}{progress}\n"
    return RenderedEmail(
        subject=f"Response to {payload['title']}: {payload['answer']}",
        html=_wrap("New Response", body),
        text=text,
    )


def _render_response_confirmation(payload: dict[str, Any]) -> RenderedEmail:
    action = _ANSWER_TEXT.get(payload["answer"], "responded")
    body = (
        f"<p>Hi {escape(payload.get('recipient_name') or '')},</p>"
        f"<p>You {action}.</p>{_meeting_details(payload)}"
        "<p>The organizer has been notified of your response.</p>"
    )
    return RenderedEmail(
        subject=f"Response Confirmed: {payload['title']}",
        html=_wrap("Response Confirmed", body),
        text=f"You {action}: {payload['title']}\n",
    )


def _render_cancelled(payload: dict[str, Any]) -> RenderedEmail:
    body = f"<p>This meeting proposal has been cancelled by the organizer.</p>{_meeting_details(payload)}"
    return RenderedEmail(
        subject=f"Cancelled: {payload['title']}",
        html=_wrap("Meeting Proposal Cancelled", body),
        text=f"The meeting proposal '{payload['title']}' was cancelled.\n",
    )


def _render_group_invitation(payload: dict[str, Any]) -> RenderedEmail:
    inviter = payload.get("inviter_name") or "Someone"
    group = payload["group_name"]
    link = settings.invitations_page_url()
    body = (
        f"<p>Hi {escape(payload.get('recipient_name') or '')},</p>"
        f"<p><strong>{escape(inviter)}</strong> invited you to join "
        f"<strong>{escape(group)}</strong> as {escape(payload.get('role') or 'member')}.</p>"
        f"<p><a href=\"{escape(link)}\" style=\"{_BUTTON_STYLE.format(color='#2563eb')}\">"
        "View invitation</a></p>"
        "<p style=\"font-size: 13px; color: #6b7280;\">You only join the group if you accept.</p>"
    )
    return RenderedEmail(
        subject=f"Invitation to join {group}",
        html=_wrap("Group Invitation", body),
        text=f"{inviter} invited you to join {group}.\nAccept or decline: {link}\n",
    )


_RENDERERS = {
    NotificationKind.PROPOSAL_INVITATION: _render_invitation,
    NotificationKind.RESPONSE_RECEIVED: _render_response_received,
    NotificationKind.RESPONSE_CONFIRMATION: _render_response_confirmation,
    NotificationKind.PROPOSAL_CANCELLED: _render_cancelled,
    NotificationKind.GROUP_INVITATION: _render_group_invitation,
}


def render(kind: NotificationKind | str, payload: dict[str, Any]) -> RenderedEmail:
    return _RENDERERS[NotificationKind(kind)](payload)
