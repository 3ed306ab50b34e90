"""Service helpers for composing, sending and logging automation emails."""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from html import escape
from typing import Any

from sqlalchemy.orm import Session

from helpdesk.core.config import settings
from helpdesk.models.email_log import EmailLog
from helpdesk.models.enums import EmailKind

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE = (
    "Ticket {ticket_id} ({subject}) was updated by an automation rule.\n\n"
    "Status: {status}\nPriority: {priority}\n\n{link}"
)


class _TemplateValues(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def ticket_link(ticket_id: str) -> str:
    return f"{settings.FRONTEND_BASE_URL.rstrip('/')}/tickets/{ticket_id}"


def _wrap_email_html(*, title: str, intro: str, content: str, footer: str) -> str:
    return f"""\
<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <title>{escape(title)}</title>
  </head>
  <body style="margin:0;padding:0;background:#f3f6f8;font-family:Arial,sans-serif;color:#0f172a;">
    <table role="presentation" width="100%" cellpadding="0" cellspacing="0" style="padding:24px 12px;">
      <tr>
        <td align="center">
          <table role="presentation" width="100%" cellpadding="0" cellspacing="0" style="max-width:620px;background:#ffffff;border-radius:14px;border:1px solid #e2e8f0;">
            <tr>
              <td style="padding:20px 24px;background:#1d4ed8;color:#ffffff;">
                <h1 style="margin:0;font-size:20px;line-height:1.3;">{escape(title)}</h1>
              </td>
            </tr>
            <tr>
              <td style="padding:24px;">
                <p style="margin:0 0 14px;font-size:15px;line-height:1.6;">{escape(intro)}</p>
                {content}
              </td>
            </tr>
            <tr>
              <td style="padding:16px 24px;background:#f8fafc;border-top:1px solid #e2e8f0;">
                <p style="margin:0;font-size:12px;line-height:1.6;color:#475569;">{escape(footer)}</p>
              </td>
            </tr>
          </table>
        </td>
      </tr>
    </table>
  </body>
</html>
"""


def _cta_button(label: str, href: str) -> str:
    return (
        '<p style="margin:20px 0;">'
        f'<a href="{escape(href, quote=True)}" '
        'style="display:inline-block;background:#1d4ed8;color:#ffffff;text-decoration:none;'
        'padding:12px 18px;border-radius:8px;font-weight:600;font-size:14px;">'
        f"{escape(label)}</a></p>"
    )


def render_ticket_template(template: str | None, ticket: Any) -> str:
    """Fill {ticket_id}, {subject}, {status}, {priority} and {link}; unknown placeholders stay as-is."""
    status = getattr(ticket.status, "value", ticket.status)
    priority = getattr(ticket.priority, "value", ticket.priority)
    values = _TemplateValues(
        ticket_id=ticket.id,
        subject=ticket.subject,
        status=status,
        priority=priority,
        link=ticket_link(ticket.id),
    )
    return (template or DEFAULT_TEMPLATE).format_map(values)


def build_automation_email(ticket: Any, *, subject: str | None, template: str | None) -> tuple[str, str, str]:
    final_subject = subject or f"[{ticket.id}] {ticket.subject}"
    body = render_ticket_template(template, ticket)
    paragraphs = "".join(
        f'<p style="margin:0 0 12px;font-size:14px;color:#334155;line-height:1.6;">{escape(chunk)}</p>'
        for chunk in body.split("\n\n")
        if chunk.strip()
    )
    html_body = _wrap_email_html(
        title=final_subject,
        intro=f"Update on ticket {ticket.id}",
        content=paragraphs + _cta_button("Open ticket", ticket_link(ticket.id)),
        footer="This message was sent automatically by a helpdesk automation rule.",
    )
    return final_subject, body, html_body


def send_email(to: str, subject: str, body: str, *, html_body: str | None = None) -> bool:
    if not settings.SMTP_HOST:
        logger.info("SMTP not configured; skipping send to %s", to)
        return False
    if not settings.SMTP_FROM:
        logger.warning("SMTP_FROM not configured; skipping send to %s", to)
        return False

    message = EmailMessage()
    message["From"] = settings.SMTP_FROM
    message["To"] = to
    message["Subject"] = subject
    message.set_content(body)
    if html_body:
        message.add_alternative(html_body, subtype="html")

    try:
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30) as server:
            server.ehlo()
            if settings.SMTP_TLS:
                server.starttls()
                server.ehlo()
            if settings.SMTP_USER:
                server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
            server.send_message(message)
        logger.info("Email sent: %s", to)
        return True
    except (smtplib.SMTPException, OSError):
        logger.exception("Email send failed: %s", to)
        return False


def log_email(
    db: Session,
    to: str,
    subject: str,
    body: str,
    *,
    kind: EmailKind = EmailKind.automation,
    delivered: bool,
    ticket_id: str | None = None,
) -> EmailLog:
    record = EmailLog(to=to, subject=subject, body=body, kind=kind, delivered=delivered, ticket_id=ticket_id)
    db.add(record)
    db.flush()
    logger.info("Email logged: %s (%s, delivered=%s)", to, kind.value, delivered)
    return record
