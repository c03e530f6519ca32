"""
Email gateway client for outgoing quote and invoice mail.

Requests are JSON, signed with HMAC-SHA256 over the exact bytes sent
(X-Signature) and authenticated with an API key (X-API-Key). Quote and
invoice PDFs travel base64-encoded inside the signed payload.
"""

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass

import requests

logger = logging.getLogger(__name__)

SENDERS = ("billing", "system")

# Gateway rejects larger payloads
MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024


class EmailGatewayError(Exception):
    """Raised when email gateway request fails."""


@dataclass(frozen=True)
class EmailAttachment:
    """A file attached to an outgoing email."""

    filename: str
    content: bytes
    content_type: str = "application/pdf"

    def to_payload(self) -> dict:
        return {
            "filename": self.filename,
            "content_type": self.content_type,
            "content": base64.b64encode(self.content).decode("ascii"),
        }


def sign_payload(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class EmailGatewayClient:
    """Sends billing mail through the HTTP email gateway."""

    def __init__(self, gateway_url: str, api_key: str, hmac_secret: str, timeout: float = 10):
        """
        Args:
            gateway_url: Full URL to the email gateway endpoint
            api_key: API key for X-API-Key header
            hmac_secret: Secret for HMAC-SHA256 signature
            timeout: Seconds to wait for the gateway

        Raises:
            ValueError: If any credential is empty
        """
        for name, value in (("gateway_url", gateway_url), ("api_key", api_key), ("hmac_secret", hmac_secret)):
            if not value:
                raise ValueError(f"{name} is required")

        self.gateway_url = gateway_url
        self.hmac_secret = hmac_secret
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "X-API-Key": api_key,
        })

    def _post(self, payload: dict) -> dict:
        body = json.dumps(payload, separators=(",", ":")).encode("utf-8")

        try:
            response = self.session.post(
                self.gateway_url,
                data=body,
                headers={"X-Signature": sign_payload(self.hmac_secret, body)},
                timeout=self.timeout,
            )
        except (requests.exceptions.RequestException, ConnectionError) as e:
            logger.error(f"Email gateway connection failed: {e}")
            raise EmailGatewayError(f"Connection failed: {e}") from e

        try:
            result = response.json()
        except ValueError as e:
            logger.error(f"Email gateway returned invalid JSON: {response.text[:200]}")
            raise EmailGatewayError("Invalid response from gateway") from e

        if response.status_code != 200 or not result.get("success"):
            message = result.get("message", "Unknown error")
            logger.error(f"Email gateway error ({response.status_code}): {message}")
            raise EmailGatewayError(f"Gateway error: {message}")

        return result

    def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        sender: str = "system",
        attachments: list[EmailAttachment] | None = None,
        reply_to: str | None = None,
    ) -> None:
        """
        Send a plain text email, optionally with attachments.

        Args:
            to: Recipient email address
            subject: Email subject line
            body: Plain text email body
            sender: Sender identity - "billing" or "system" (default: "system")
            attachments: Files to attach
            reply_to: Address replies should go to (the organization's own)

        Raises:
            ValueError: If sender is invalid or attachments are too large
            EmailGatewayError: On gateway failure
        """
        if sender not in SENDERS:
            raise ValueError(f"sender must be one of {', '.join(SENDERS)}, got '{sender}'")

        attachments = attachments or []
        size = sum(len(a.content) for a in attachments)
        if size > MAX_ATTACHMENT_BYTES:
            raise ValueError(f"Attachments total {size} bytes, limit is {MAX_ATTACHMENT_BYTES}")

        payload = {
            "type": "custom",
            "email": to,
            "subject": subject,
            "body": body,
            "sender": sender,
        }
        if reply_to:
            payload["reply_to"] = reply_to
        if attachments:
            payload["attachments"] = [a.to_payload() for a in attachments]

        self._post(payload)
        logger.info(f"Email sent to {to}: {subject} ({len(attachments)} attachment(s))")
