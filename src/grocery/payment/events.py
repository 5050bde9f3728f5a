"""Domain events for the Payment aggregate."""

from protean.fields import DateTime, Float, Identifier, String

from grocery.domain import grocery


@grocery.event(part_of="Payment")
class PaymentInitiated:
    """A payment attempt was created for an order."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    amount = Float(required=True)
    currency = String(required=True)
    method = String(required=True)
    external_transaction_id = String()
    initiated_at = DateTime(required=True)


@grocery.event(part_of="Payment")
class PaymentCompleted:
    """The gateway confirmed that the money was collected."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    amount = Float(required=True)
    currency = String(required=True)
    external_transaction_id = String()
    completed_at = DateTime(required=True)


@grocery.event(part_of="Payment")
class PaymentFailed:
    """The payment attempt failed, was rejected or timed out."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    reason = String(required=True)
    kind = String(required=True)
    failed_at = DateTime(required=True)


@grocery.event(part_of="Payment")
class PaymentCancelled:
    """The payment attempt was abandoned, by the customer or by an order cancellation."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    reason = String(required=True)
    cancelled_at = DateTime(required=True)
