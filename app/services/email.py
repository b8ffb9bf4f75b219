from __future__ import annotations

import html
import logging
import smtplib
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage
from email.utils import parseaddr
from typing import Optional

import httpx

from app.core.config import get_settings

logger = logging.getLogger(__name__)

EAT = timezone(timedelta(hours=3), name="EAT")
PROVIDER_TIMEOUT_SECONDS = 15
DEFAULT_SENDER_NAME = "Lifetime Technology"


@dataclass
class OutgoingEmail:
    sender: str
    to: str
    subject: str
    html: str


def _strip_quotes(value: str) -> str:
    # Env vars are often pasted with surrounding quotes; providers reject them.
    v = (value or "").strip()
    if len(v) >= 2 and v[0] == v[-1] and v[0] in {'"', "'"}:
        v = v[1:-1].strip()
    return v


def split_sender(value: str) -> tuple[Optional[str], str]:
    """Split ``Name <addr>`` or a bare address into (name, address)."""
    raw = _strip_quotes(value)
    name, address = parseaddr(raw)
    if not address.strip():
        return None, raw
    return (name.strip() or None), address.strip()


def format_ksh(amount) -> str:
    return f"KSh {int(amount or 0):,}"


def build_order_subject(order: dict) -> str:
    return f"New Order Received - {order.get('order_number') or 'Order'} - {format_ksh(order.get('amount'))}"


def _row(label: str, value: str) -> str:
    return f'<p style="margin:0 0 6px;"><strong>{label}:</strong> {value}</p>'


def build_order_email_html(order: dict) -> str:
    e = {key: html.escape(str(value)) if value is not None else "" for key, value in order.items()}
    placed_at = datetime.now(EAT).strftime("%d %b %Y, %H:%M")

    rows = [_row("Order Number", e["order_number"]), _row("Date", f"{placed_at} (EAT)")]
    if order.get("mpesa_receipt_number"):
        rows.append(
            _row("M-Pesa Receipt", f'<span style="color:#006B3C;font-weight:700;">{e["mpesa_receipt_number"]}</span>')
        )
    customer = [
        _row("Name", e["customer_name"]),
        _row("Phone", f'<a href="tel:{e["phone_number"]}">{e["phone_number"]}</a>'),
    ]
    if order.get("email"):
        customer.append(_row("Email", f'<a href="mailto:{e["email"]}">{e["email"]}</a>'))
    if order.get("delivery_address"):
        customer.append(_row("Delivery Address", e["delivery_address"]))

    # Inline styles only; most mail clients drop <style> blocks.
    return "\n".join(
        [
            '<div style="font-family: Arial, sans-serif; line-height: 1.6; color: #0f172a;">',
            '<h2 style="margin: 0 0 8px;">New order received</h2>',
            *rows,
            '<h3 style="margin: 16px 0 6px;">Customer</h3>',
            *customer,
            '<h3 style="margin: 16px 0 6px;">Item</h3>',
            f'<p style="margin:0 0 6px;">{e["product_name"]} &times; 1</p>',
            _row("Payment Method", e["payment_method"]),
            f'<p style="margin:12px 0 0; font-size: 20px;"><strong>Total: {format_ksh(order.get("amount"))}</strong></p>',
            "</div>",
        ]
    )


def _deliver_console(message: OutgoingEmail, settings) -> None:
    logger.info("[email][console] to=%s subject=%s", message.to, message.subject)


def _deliver_resend(message: OutgoingEmail, settings) -> None:
    if not settings.resend_api_key:
        raise ValueError("RESEND_API_KEY is required when EMAIL_PROVIDER=resend")
    _post_json(
        "Resend",
        "https://api.resend.com/emails",
        headers={"Authorization": f"Bearer {settings.resend_api_key}"},
        payload={"from": message.sender, "to": [message.to], "subject": message.subject, "html": message.html},
    )


def _deliver_brevo(message: OutgoingEmail, settings) -> None:
    if not settings.brevo_api_key:
        raise ValueError("BREVO_API_KEY is required when EMAIL_PROVIDER=brevo")
    name, address = split_sender(message.sender)
    if not address:
        raise ValueError("EMAIL_FROM is required when EMAIL_PROVIDER=brevo")
    _post_json(
        "Brevo",
        "https://api.brevo.com/v3/smtp/email",
        headers={"api-key": settings.brevo_api_key, "Accept": "application/json"},
        payload={
            "sender": {"name": name or DEFAULT_SENDER_NAME, "email": address},
            "to": [{"email": message.to}],
            "subject": message.subject,
            "htmlContent": message.html,
        },
    )


def _deliver_smtp(message: OutgoingEmail, settings) -> None:
    if not settings.smtp_host:
        raise ValueError("SMTP_HOST is required when EMAIL_PROVIDER=smtp")

    mime = EmailMessage()
    mime["From"] = message.sender
    mime["To"] = message.to
    mime["Subject"] = message.subject
    mime.set_content("Use an HTML-capable email client to view this message.")
    mime.add_alternative(message.html, subtype="html")

    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=PROVIDER_TIMEOUT_SECONDS) as server:
        server.ehlo()
        if settings.smtp_use_tls:
            server.starttls()
            server.ehlo()
        if settings.smtp_username and settings.smtp_password:
            server.login(settings.smtp_username, settings.smtp_password)
        server.send_message(mime)


def _post_json(provider: str, url: str, *, headers: dict, payload: dict) -> None:
    with httpx.Client(timeout=PROVIDER_TIMEOUT_SECONDS) as client:
        res = client.post(url, json=payload, headers={**headers, "Content-Type": "application/json"})
    if res.status_code >= 400:
        raise RuntimeError(f"{provider} error: {res.status_code} {res.text}")


_DELIVERY = {
    "console": _deliver_console,
    "resend": _deliver_resend,
    "brevo": _deliver_brevo,
    "smtp": _deliver_smtp,
}


def send_order_notification(order: dict) -> None:
    settings = get_settings()
    provider = (settings.email_provider or "console").strip().lower()
    deliver = _DELIVERY.get(provider)
    if deliver is None:
        raise ValueError(f"Unsupported EMAIL_PROVIDER: {settings.email_provider}")

    message = OutgoingEmail(
        sender=_strip_quotes(settings.email_from),
        to=(settings.order_notification_email or "").strip(),
        subject=build_order_subject(order),
        html=build_order_email_html(order),
    )
    deliver(message, settings)


def notify_new_order(order: dict) -> None:
    """Background task: a lost notification must never undo or fail the order."""
    try:
        send_order_notification(order)
    except Exception:
        logger.exception("Order notification failed order=%s", order.get("order_number"))
