"""Tests for the InvoicePaid receipt handler."""

import logging
from decimal import Decimal
from unittest.mock import Mock

import pytest

from clients.email_client import EmailGatewayClient, EmailGatewayError
from core.config import BillingConfig
from core.handlers.invoice_payment_handler import handle_invoice_paid
from core.models import PaymentCreate

pytestmark = pytest.mark.usefixtures("as_org")


@pytest.fixture
def email_client(event_bus, repository):
    email_client = Mock(spec=EmailGatewayClient)
    event_bus.subscribe("InvoicePaid", handle_invoice_paid(repository, email_client))
    return email_client


def _pay(payment_service, invoice, amount):
    return payment_service.record_payment(PaymentCreate(invoice_id=invoice.id, amount=Decimal(amount)))


class TestHandleInvoicePaid:

    def test_full_payment_sends_receipt(self, payment_service, sent_invoice, email_client):
        _pay(payment_service, sent_invoice, "100")

        email_client.send_email.assert_called_once()
        kwargs = email_client.send_email.call_args.kwargs
        assert kwargs["to"] == "jane@client.test"
        assert kwargs["subject"] == "Payment received"
        assert "EUR 100.00" in kwargs["body"]
        assert sent_invoice.number in kwargs["body"]

    def test_uses_configured_sender(self, event_bus, repository, payment_service, sent_invoice):
        system_client = Mock(spec=EmailGatewayClient)
        event_bus.subscribe(
            "InvoicePaid",
            handle_invoice_paid(repository, system_client, BillingConfig(notification_sender="system")),
        )

        _pay(payment_service, sent_invoice, "100")

        assert system_client.send_email.call_args.kwargs["sender"] == "system"

    def test_partial_payment_sends_nothing(self, payment_service, sent_invoice, email_client):
        _pay(payment_service, sent_invoice, "40")

        email_client.send_email.assert_not_called()

    def test_receipt_sent_once_when_completed_in_steps(self, payment_service, sent_invoice, email_client):
        _pay(payment_service, sent_invoice, "40")
        _pay(payment_service, sent_invoice, "60")

        assert email_client.send_email.call_count == 1

    def test_missing_email_is_logged(self, payment_service, repository, sent_invoice, client_record, email_client, caplog):
        repository.clients[client_record.id] = repository.clients[client_record.id].model_copy(update={"email": None})

        with caplog.at_level(logging.WARNING, logger="core.handlers.invoice_payment_handler"):
            paid = _pay(payment_service, sent_invoice, "100")

        assert paid.paid_at is not None
        email_client.send_email.assert_not_called()
        assert "receipt" in caplog.text

    def test_gateway_failure_is_logged(self, payment_service, sent_invoice, email_client, caplog):
        email_client.send_email.side_effect = EmailGatewayError("Connection failed")

        with caplog.at_level(logging.ERROR, logger="core.handlers.invoice_payment_handler"):
            _pay(payment_service, sent_invoice, "100")

        assert "Failed to send receipt" in caplog.text
