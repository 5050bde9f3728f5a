"""ClickPesa payment gateway adapter.

Creates hosted checkout links through the ClickPesa webshop API and checks
webhook signatures with the shared HMAC secret. Every request carries an
explicit timeout; timeouts, connection failures and 5xx responses surface
as ``GatewayUnavailableError`` so the caller can retry, while 4xx responses
are permanent ``GatewayRejectedError``.
"""

import time
from uuid import uuid4

import httpx
import structlog

from grocery.config import Settings, get_settings
from grocery.payment.gateway.port import (
    WIRE_STATUSES,
    GatewayOutcome,
    GatewayRejectedError,
    GatewayUnavailableError,
    InitiationResult,
    PaymentGateway,
    PaymentRequest,
    signature_matches,
)

logger = structlog.get_logger(__name__)


def _cents(amount: float) -> int:
    return round(amount * 100)


def _item(name: str, price: float, quantity: int = 1, product_type: str = "PRODUCT") -> dict:
    return {
        "name": name,
        "product_type": product_type,
        "unit": f"{quantity} pc(s)",
        "price": _cents(price),
        "quantity": quantity,
    }


def _order_items(request: PaymentRequest) -> list[dict]:
    """Checkout lines whose prices add up to exactly what is collected.

    ClickPesa charges the sum of the order items, so the delivery fee and tax
    are sent as lines of their own. When the lines still do not add up (a
    discount, or rounding), a single line for the whole order is sent instead.
    """
    items = [_item(line["name"], line["unit_price"], line["quantity"]) for line in request.line_items]
    if request.tax:
        items.append(_item("Tax", request.tax, product_type="FEE"))
    if request.delivery_fee:
        items.append(_item("Delivery fee", request.delivery_fee, product_type="FEE"))

    if sum(item["price"] * item["quantity"] for item in items) != _cents(request.amount):
        return [_item(f"Order {request.order_number}", request.amount)]
    return items


class ClickPesaGateway(PaymentGateway):
    name = "clickpesa"

    def __init__(self, settings: Settings | None = None, transport: httpx.BaseTransport | None = None) -> None:
        self.settings = settings or get_settings()
        self._client = httpx.Client(
            base_url=self.settings.clickpesa_base_url,
            timeout=self.settings.gateway_timeout_seconds,
            transport=transport,
            headers={
                "Authorization": f"Bearer {self.settings.clickpesa_api_key}",
                "X-Merchant-ID": self.settings.clickpesa_merchant_id,
                "Content-Type": "application/json",
            },
        )

    def _post(self, path: str, payload: dict) -> httpx.Response:
        try:
            response = self._client.post(path, json=payload)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise GatewayUnavailableError(f"ClickPesa unreachable: {exc.__class__.__name__}") from exc

        if response.status_code >= 500:
            raise GatewayUnavailableError(f"ClickPesa returned {response.status_code}")
        if response.status_code >= 400:
            logger.warning(
                "ClickPesa rejected request",
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise GatewayRejectedError(f"ClickPesa rejected request with {response.status_code}")
        return response

    def initiate(self, request: PaymentRequest, method: str, customer_contact: str) -> InitiationResult:
        reference = f"CP_{int(time.time() * 1000)}_{uuid4().hex[:9]}"
        payload = {
            "orderItems": _order_items(request),
            "amount": _cents(request.amount),
            "currency": request.currency,
            "orderReference": reference,
            "merchantId": self.settings.clickpesa_merchant_id,
            "callbackURL": self.settings.clickpesa_callback_url or None,
            "paymentMethod": method,
            "customerPhone": customer_contact,
        }
        response = self._post("/webshop/generate-checkout-url", payload)

        # The checkout endpoint answers with the bare URL string
        try:
            body = response.json()
        except ValueError:
            body = response.text
        checkout_url = body.get("checkoutUrl") if isinstance(body, dict) else str(body)

        logger.info("ClickPesa checkout created", order_id=request.order_id, reference=reference)
        return InitiationResult(external_transaction_id=reference, checkout_reference=checkout_url)

    def verify_signature(self, raw_payload: bytes | str, signature_header: str | None) -> bool:
        return signature_matches(self.settings.webhook_secret, raw_payload, signature_header)

    def query_status(self, external_transaction_id: str) -> GatewayOutcome | None:
        try:
            response = self._client.get(f"/webshop/payments/{external_transaction_id}")
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            logger.warning("ClickPesa status query failed", reference=external_transaction_id, error=str(exc))
            return None

        if response.status_code != 200:
            logger.warning(
                "ClickPesa status query unanswered",
                reference=external_transaction_id,
                status_code=response.status_code,
            )
            return None

        try:
            status = str(response.json().get("status") or "").upper()
        except (ValueError, AttributeError):
            return None
        outcome = WIRE_STATUSES.get(status)
        if outcome is GatewayOutcome.PROCESSING:
            return None
        return outcome
