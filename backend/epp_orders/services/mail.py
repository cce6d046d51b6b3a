# Overview: Email delivery for approval notifications; pluggable providers with explicit results.

"""
Notification Delivery

WHY: Approvers and employees are told about approval requests and outcomes by
email. Delivery is a side effect: it happens after the state change has been
committed and can never undo it.

DESIGN:
- Every send returns a DeliveryResult (ok or failed). Nothing here raises to
  the caller; providers raise NotificationDeliveryError and the sender turns
  it into a failed result that the caller logs.
- Providers are swappable via EMAIL_PROVIDER:
    outbox: keeps messages in memory and logs them (default, used in tests)
    smtp:   sends through an SMTP relay
- Bodies are plain text.
"""

from __future__ import annotations

import logging
import smtplib
import uuid
from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from email.message import EmailMessage
from enum import Enum
from typing import Any

from flask import current_app

from ..errors import NotificationDeliveryError
from ..time_utils import utcnow, to_utc_z

logger = logging.getLogger(__name__)

_EXTENSION_KEY = "epp_notifier"


class EmailProvider(str, Enum):
    OUTBOX = "outbox"
    SMTP = "smtp"


@dataclass
class MailMessage:
    to: list[str]
    subject: str
    text_body: str
    from_address: str = "noreply@epp-orders.local"
    reply_to: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DeliveryResult:
    """Outcome of one notification attempt."""
    success: bool
    recipient: str | None
    subject: str
    provider: str
    message_id: str | None = None
    error: str | None = None
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def ok(self) -> bool:
        return self.success

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = to_utc_z(self.timestamp)
        return data


# =============================================================================
# PROVIDERS
# =============================================================================

class OutboxEmailProvider:
    """
    Keeps sent messages in memory and logs them.

    Used for development and tests; tests read `sent` to assert who was told what.
    """
    name = EmailProvider.OUTBOX.value

    def __init__(self):
        self.sent: list[dict[str, Any]] = []

    def send(self, message: MailMessage) -> str:
        message_id = f"outbox_{uuid.uuid4().hex[:12]}"
        record = message.to_dict()
        record["message_id"] = message_id
        record["sent_at"] = to_utc_z(utcnow())
        self.sent.append(record)
        logger.info("[OUTBOX EMAIL] To: %s | Subject: %s | ID: %s", ", ".join(message.to), message.subject, message_id)
        return message_id

    def clear(self) -> None:
        self.sent.clear()


class SmtpEmailProvider:
    name = EmailProvider.SMTP.value

    def __init__(
        self,
        *,
        host: str,
        port: int,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: int = 10,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def send(self, message: MailMessage) -> str:
        email = EmailMessage()
        email["From"] = message.from_address
        email["To"] = ", ".join(message.to)
        email["Subject"] = message.subject
        if message.reply_to:
            email["Reply-To"] = message.reply_to
        message_id = f"<{uuid.uuid4().hex}@epp-orders>"
        email["Message-ID"] = message_id
        email.set_content(message.text_body)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password or "")
                smtp.send_message(email)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationDeliveryError(f"SMTP delivery to {message.to} failed: {exc}") from exc
        return message_id


def build_provider(config) -> OutboxEmailProvider | SmtpEmailProvider:
    provider = EmailProvider(str(config.get("EMAIL_PROVIDER", "outbox")).lower())
    if provider == EmailProvider.SMTP:
        return SmtpEmailProvider(
            host=config.get("SMTP_HOST", "localhost"),
            port=int(config.get("SMTP_PORT", 587)),
            username=config.get("SMTP_USERNAME"),
            password=config.get("SMTP_PASSWORD"),
            use_tls=bool(config.get("SMTP_USE_TLS", True)),
            timeout=int(config.get("SMTP_TIMEOUT", 10)),
        )
    return OutboxEmailProvider()


# =============================================================================
# FORMATTING
# =============================================================================

def format_cents(cents: int | None) -> str:
    cents = int(cents or 0)
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100:,}.{cents % 100:02d}"


def _format_date(value: date | datetime | None) -> str:
    if value is None:
        return "-"
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M UTC")
    return value.isoformat()


def _installment_lines(installments: list[dict] | None) -> list[str]:
    if not installments:
        return []
    lines = ["", "Installment schedule:"]
    for inst in installments:
        lines.append(
            f"  #{inst.get('installment_number')}: {format_cents(inst.get('amount_cents'))} "
            f"(cut-off {_format_date(inst.get('cut_off_date'))}, "
            f"payment {_format_date(inst.get('scheduled_date'))})"
        )
    return lines


# =============================================================================
# SENDER (Flask extension)
# =============================================================================

class NotificationSender:
    """
    Sends the four approval notifications through the app's configured provider.

    Usage:
        notifier.init_app(app)
        result = notifier.send_order_rejected(...)
        if not result.ok:
            logger.warning(...)
    """

    def __init__(self, app=None):
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        app.extensions[_EXTENSION_KEY] = build_provider(app.config)

    @property
    def provider(self):
        return current_app.extensions[_EXTENSION_KEY]

    def set_provider(self, provider) -> None:
        """Swap the provider for the current app (tests, alternate transports)."""
        current_app.extensions[_EXTENSION_KEY] = provider

    def send(self, to: str | None, subject: str, text_body: str) -> DeliveryResult:
        provider = self.provider
        provider_name = getattr(provider, "name", type(provider).__name__)

        if not to or "@" not in to:
            return DeliveryResult(
                success=False,
                recipient=to,
                subject=subject,
                provider=provider_name,
                error=f"invalid recipient address: {to!r}",
            )

        message = MailMessage(
            to=[to],
            subject=subject,
            text_body=text_body,
            from_address=current_app.config.get("EMAIL_FROM_ADDRESS", "noreply@epp-orders.local"),
        )
        try:
            message_id = provider.send(message)
        except NotificationDeliveryError as exc:
            return DeliveryResult(
                success=False,
                recipient=to,
                subject=subject,
                provider=provider_name,
                error=str(exc),
            )
        return DeliveryResult(
            success=True,
            recipient=to,
            subject=subject,
            provider=provider_name,
            message_id=message_id,
        )

    def send_approval_request(
        self,
        *,
        to: str | None,
        approver_name: str,
        employee_name: str,
        order_number: str,
        order_total_cents: int,
        approval_level: int,
        approver_role: str,
        order_date: date | datetime | None = None,
        notes: str | None = None,
        installments: list[dict] | None = None,
    ) -> DeliveryResult:
        lines = [
            f"Hello {approver_name},",
            "",
            f"{employee_name} submitted order {order_number} and it needs your approval.",
            "",
            f"Order total: {format_cents(order_total_cents)}",
            f"Order date: {_format_date(order_date)}",
            f"Approval level: {approval_level} ({approver_role})",
        ]
        if notes:
            lines.append(f"Notes: {notes}")
        lines.extend(_installment_lines(installments))
        return self.send(to, f"Approval Required: Order {order_number}", "\n".join(lines))

    def send_next_approval_notification(
        self,
        *,
        to: str | None,
        approver_name: str,
        employee_name: str,
        order_number: str,
        order_total_cents: int,
        previous_approver: str | None,
        approval_level: int,
        approver_role: str,
    ) -> DeliveryResult:
        body = "\n".join([
            f"Hello {approver_name},",
            "",
            f"Order {order_number} from {employee_name} was approved by {previous_approver or 'the previous approver'}",
            "and now needs your approval.",
            "",
            f"Order total: {format_cents(order_total_cents)}",
            f"Approval level: {approval_level} ({approver_role})",
        ])
        return self.send(to, f"Approval Required (Level {approval_level}): Order {order_number}", body)

    def send_order_approved(
        self,
        *,
        to: str | None,
        employee_name: str,
        order_number: str,
        order_total_cents: int,
        approved_by: str,
        approved_at: datetime | None,
    ) -> DeliveryResult:
        body = "\n".join([
            f"Hello {employee_name},",
            "",
            f"Your order {order_number} has been approved.",
            "",
            f"Order total: {format_cents(order_total_cents)}",
            f"Approved by: {approved_by}",
            f"Approved at: {_format_date(approved_at)}",
        ])
        return self.send(to, f"Order Approved: {order_number}", body)

    def send_order_rejected(
        self,
        *,
        to: str | None,
        employee_name: str,
        order_number: str,
        order_total_cents: int,
        rejected_by: str | None,
        rejected_at: datetime | None,
        rejection_reason: str,
    ) -> DeliveryResult:
        body = "\n".join([
            f"Hello {employee_name},",
            "",
            f"Your order {order_number} has been rejected.",
            "",
            f"Order total: {format_cents(order_total_cents)}",
            f"Rejected by: {rejected_by or '-'}",
            f"Rejected at: {_format_date(rejected_at)}",
            f"Reason: {rejection_reason}",
        ])
        return self.send(to, f"Order Rejected: {order_number}", body)
