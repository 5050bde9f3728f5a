"""Payment gateway factory.

Provides get_gateway() / set_gateway() to swap implementations:
- FakeGateway for development and testing
- ClickPesaGateway for production (selected with GROCERY_GATEWAY=clickpesa)
"""

from grocery.config import get_settings
from grocery.payment.gateway.clickpesa_adapter import ClickPesaGateway
from grocery.payment.gateway.fake_adapter import FakeGateway
from grocery.payment.gateway.port import (
    GatewayError,
    GatewayOutcome,
    GatewayRejectedError,
    GatewayUnavailableError,
    InitiationResult,
    MalformedWebhookError,
    PaymentGateway,
    PaymentRequest,
    WebhookNotification,
)

_current_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway. Defaults to the configured adapter."""
    global _current_gateway
    if _current_gateway is None:
        if get_settings().gateway == "clickpesa":
            _current_gateway = ClickPesaGateway()
        else:
            _current_gateway = FakeGateway()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to default gateway."""
    global _current_gateway
    _current_gateway = None


__all__ = [
    "ClickPesaGateway",
    "FakeGateway",
    "GatewayError",
    "GatewayOutcome",
    "GatewayRejectedError",
    "GatewayUnavailableError",
    "InitiationResult",
    "MalformedWebhookError",
    "PaymentGateway",
    "PaymentRequest",
    "WebhookNotification",
    "get_gateway",
    "reset_gateway",
    "set_gateway",
]
