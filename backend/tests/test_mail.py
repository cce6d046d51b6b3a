"""
Notification sender tests (outbox provider).
"""

from epp_orders.errors import NotificationDeliveryError
from epp_orders.extensions import notifier
from epp_orders.services.mail import (
    OutboxEmailProvider,
    SmtpEmailProvider,
    build_provider,
    format_cents,
)


def test_format_cents():
    assert format_cents(0) == "0.00"
    assert format_cents(5) == "0.05"
    assert format_cents(123456789) == "1,234,567.89"
    assert format_cents(-150) == "-1.50"
    assert format_cents(None) == "0.00"


def test_build_provider_from_config():
    assert isinstance(build_provider({"EMAIL_PROVIDER": "outbox"}), OutboxEmailProvider)
    smtp = build_provider({"EMAIL_PROVIDER": "SMTP", "SMTP_HOST": "mail.local", "SMTP_PORT": "2525"})
    assert isinstance(smtp, SmtpEmailProvider)
    assert smtp.host == "mail.local"
    assert smtp.port == 2525


def test_approval_request_goes_to_outbox(outbox):
    result = notifier.send_approval_request(
        to="manager@example.com",
        approver_name="Manager",
        employee_name="Jane Employee",
        order_number="ORD-20260110-A0001",
        order_total_cents=110000,
        approval_level=1,
        approver_role="MANAGER",
        installments=[{
            "installment_number": 1,
            "amount_cents": 55000,
            "cut_off_date": None,
            "scheduled_date": None,
        }],
    )

    assert result.ok
    assert result.provider == "outbox"
    assert result.message_id == outbox.sent[0]["message_id"]
    message = outbox.sent[0]
    assert message["to"] == ["manager@example.com"]
    assert message["subject"] == "Approval Required: Order ORD-20260110-A0001"
    assert "Order total: 1,100.00" in message["text_body"]
    assert "#1: 550.00" in message["text_body"]
    assert result.to_dict()["timestamp"].endswith("Z")


def test_invalid_recipient_is_a_failed_result(outbox):
    for address in (None, "", "not-an-email"):
        result = notifier.send(address, "Subject", "Body")
        assert not result.ok
        assert "invalid recipient" in result.error
    assert outbox.sent == []


def test_provider_failure_is_a_failed_result(app):
    class BrokenProvider:
        name = "broken"

        def send(self, message):
            raise NotificationDeliveryError("connection refused")

    notifier.set_provider(BrokenProvider())
    result = notifier.send_order_rejected(
        to="jane@example.com",
        employee_name="Jane",
        order_number="ORD-1",
        order_total_cents=100,
        rejected_by=None,
        rejected_at=None,
        rejection_reason="Order rejected",
    )

    assert not result.ok
    assert result.provider == "broken"
    assert result.error == "connection refused"
