"""Configurable fake payment gateway for development and testing.

Simulates ClickPesa without any external calls. It can be told to succeed,
to reject every initiation, or to be unavailable for the next N calls, and
it signs webhooks with the same HMAC scheme the real adapter verifies, so
tests can drive the whole reconciliation path with realistic payloads.
"""

import json
from datetime import datetime
from uuid import uuid4

from grocery.config import get_settings
from grocery.payment.gateway.port import (
    GatewayOutcome,
    GatewayRejectedError,
    GatewayUnavailableError,
    InitiationResult,
    PaymentGateway,
    PaymentRequest,
    compute_signature,
    signature_matches,
)

_WIRE_STATUS = {
    GatewayOutcome.COMPLETED: "SUCCESS",
    GatewayOutcome.PROCESSING: "PROCESSING",
    GatewayOutcome.FAILED: "FAILED",
    GatewayOutcome.CANCELLED: "CANCELED",
}


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    name = "fake"

    def __init__(self, secret: str | None = None) -> None:
        self.secret = secret or get_settings().webhook_secret
        self.should_succeed: bool = True
        self.failure_reason: str = "Subscriber number is not registered for mobile money"
        self.unavailable_times: int = 0
        self.calls: list[dict] = []
        self.statuses: dict[str, GatewayOutcome] = {}

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Subscriber number is not registered for mobile money",
        unavailable_times: int = 0,
    ) -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.unavailable_times = unavailable_times

    def initiate(self, request: PaymentRequest, method: str, customer_contact: str) -> InitiationResult:
        self.calls.append(
            {
                "method": "initiate",
                "order_id": request.order_id,
                "amount": request.amount,
                "currency": request.currency,
                "delivery_fee": request.delivery_fee,
                "tax": request.tax,
                "payment_method": method,
                "customer_contact": customer_contact,
            }
        )

        if self.unavailable_times > 0:
            self.unavailable_times -= 1
            raise GatewayUnavailableError("Gateway timed out")
        if not self.should_succeed:
            raise GatewayRejectedError(self.failure_reason)

        reference = f"CP_{uuid4().hex[:16]}"
        return InitiationResult(
            external_transaction_id=reference,
            checkout_reference=f"https://checkout.fake/{reference}",
        )

    def verify_signature(self, raw_payload: bytes | str, signature_header: str | None) -> bool:
        return signature_matches(self.secret, raw_payload, signature_header)

    def query_status(self, external_transaction_id: str) -> GatewayOutcome | None:
        self.calls.append({"method": "query_status", "external_transaction_id": external_transaction_id})
        outcome = self.statuses.get(external_transaction_id)
        if outcome in (None, GatewayOutcome.PROCESSING):
            return None
        return outcome

    # -------------------------------------------------------------------
    # Test helpers
    # -------------------------------------------------------------------
    def sign(self, raw_payload: bytes | str) -> str:
        return compute_signature(self.secret, raw_payload)

    def build_webhook(
        self,
        external_transaction_id: str,
        outcome: GatewayOutcome,
        amount: float,
        currency: str = "TZS",
        message: str = "",
        timestamp: datetime | None = None,
    ) -> tuple[bytes, str]:
        """Return a raw webhook body and its valid signature."""
        payload = {
            "status": _WIRE_STATUS[outcome],
            "paymentReference": f"PAY_{external_transaction_id}",
            "orderReference": external_transaction_id,
            "collectedAmount": str(amount),
            "collectedCurrency": currency,
            "message": message,
        }
        if timestamp is not None:
            payload["timestamp"] = timestamp.isoformat()
        body = json.dumps(payload).encode("utf-8")
        return body, self.sign(body)
