"""Payment gateway port (abstract interface).

Defines the contract that every payment gateway adapter implements, so the
order engine and the reconciliation worker never depend on a concrete
provider. FakeGateway serves development and tests; ClickPesaGateway talks
to the ClickPesa webshop API.

Webhooks from every adapter share the ClickPesa notification shape::

    {
        "status": "SUCCESS" | "PROCESSING" | "FAILED" | "CANCELED",
        "paymentReference": "<gateway's own payment id>",
        "orderReference": "<reference we sent at initiation>",
        "collectedAmount": "14700",
        "collectedCurrency": "TZS",
        "message": "Payment received"
    }

``orderReference`` is generated per payment attempt and is what this
service stores as the payment's external transaction id.
"""

import hashlib
import hmac
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class GatewayOutcome(Enum):
    COMPLETED = "completed"
    PROCESSING = "processing"
    FAILED = "failed"
    CANCELLED = "cancelled"


WIRE_STATUSES = {
    "SUCCESS": GatewayOutcome.COMPLETED,
    "SUCCESSFUL": GatewayOutcome.COMPLETED,
    "COMPLETED": GatewayOutcome.COMPLETED,
    "PROCESSING": GatewayOutcome.PROCESSING,
    "PENDING": GatewayOutcome.PROCESSING,
    "FAILED": GatewayOutcome.FAILED,
    "CANCELED": GatewayOutcome.CANCELLED,
    "CANCELLED": GatewayOutcome.CANCELLED,
}


class GatewayError(Exception):
    """Base class for gateway failures."""


class GatewayUnavailableError(GatewayError):
    """Transient failure (timeout, connection error, 5xx). Safe to retry."""


class GatewayRejectedError(GatewayError):
    """Permanent failure (invalid number, declined, 4xx). Never retried."""


class MalformedWebhookError(GatewayError):
    """A signed webhook whose body could not be understood."""


@dataclass(frozen=True)
class PaymentRequest:
    """What the engine asks the gateway to collect."""

    order_id: str
    order_number: str
    amount: float
    currency: str
    line_items: tuple = ()
    delivery_fee: float = 0.0
    tax: float = 0.0


@dataclass(frozen=True)
class InitiationResult:
    """Result of a successful initiation."""

    external_transaction_id: str
    checkout_reference: str | None = None


@dataclass(frozen=True)
class WebhookNotification:
    """A gateway notification normalized to this service's vocabulary."""

    external_transaction_id: str
    outcome: GatewayOutcome
    gateway_status: str
    amount: float | None = None
    currency: str | None = None
    gateway_reference: str | None = None
    message: str | None = None
    occurred_at: datetime | None = None

    @property
    def dedupe_key(self) -> str:
        return f"{self.external_transaction_id}:{self.gateway_status}"


def compute_signature(secret: str, raw_payload: bytes | str) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    if isinstance(raw_payload, str):
        raw_payload = raw_payload.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), raw_payload, hashlib.sha256).hexdigest()


def signature_matches(secret: str, raw_payload: bytes | str, signature: str | None) -> bool:
    if not secret or not signature:
        return False
    return hmac.compare_digest(compute_signature(secret, raw_payload), signature)


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    name = "abstract"

    @abstractmethod
    def initiate(self, request: PaymentRequest, method: str, customer_contact: str) -> InitiationResult:
        """Start collecting a payment.

        Raises ``GatewayUnavailableError`` for transient failures and
        ``GatewayRejectedError`` for permanent ones.
        """
        ...

    @abstractmethod
    def verify_signature(self, raw_payload: bytes | str, signature_header: str | None) -> bool:
        """Verify that a webhook body is authentically from the gateway."""
        ...

    @abstractmethod
    def query_status(self, external_transaction_id: str) -> GatewayOutcome | None:
        """Ask the gateway for a payment's current status.

        Returns ``None`` when the gateway cannot give a conclusive answer.
        """
        ...

    def parse_webhook(self, raw_payload: bytes | str) -> WebhookNotification:
        """Normalize a webhook body. Raises ``MalformedWebhookError``."""
        try:
            payload = json.loads(raw_payload)
        except (TypeError, ValueError) as exc:
            raise MalformedWebhookError(f"Webhook body is not JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise MalformedWebhookError("Webhook body is not an object")

        reference = payload.get("orderReference")
        status = str(payload.get("status") or "").upper()
        if not reference:
            raise MalformedWebhookError("Webhook has no orderReference")
        if status not in WIRE_STATUSES:
            raise MalformedWebhookError(f"Unknown webhook status {status!r}")

        amount = payload.get("collectedAmount")
        try:
            amount = float(amount) if amount not in (None, "") else None
        except (TypeError, ValueError) as exc:
            raise MalformedWebhookError(f"Unreadable collectedAmount {amount!r}") from exc

        occurred_at = payload.get("timestamp")
        if occurred_at:
            try:
                occurred_at = datetime.fromisoformat(str(occurred_at))
            except ValueError:
                occurred_at = None

        return WebhookNotification(
            external_transaction_id=str(reference),
            outcome=WIRE_STATUSES[status],
            gateway_status=status,
            amount=amount,
            currency=payload.get("collectedCurrency"),
            gateway_reference=payload.get("paymentReference"),
            message=payload.get("message"),
            occurred_at=occurred_at or None,
        )
