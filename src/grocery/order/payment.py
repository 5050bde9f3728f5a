"""Order payment — commands and handler.

Attempts and outcomes update the Payment and its Order inside one unit of
work, so ``Order.payment_status`` never disagrees with the payment that
drove it. The engine holds the order lock around every call.
"""

from enum import Enum

import structlog
from protean import handle
from protean.fields import Float, Identifier, String, Text
from protean.utils.globals import current_domain

from grocery.domain import grocery
from grocery.order.order import Order, OrderPaymentStatus, OrderStatus
from grocery.payment.gateway.port import GatewayOutcome
from grocery.payment.payment import FailureKind, Payment, PaymentMethod, PaymentStatus

logger = structlog.get_logger(__name__)


class ApplyResult(Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    ANOMALY = "anomaly"
    IGNORED = "ignored"


_CLOSING_STATUS = {
    GatewayOutcome.FAILED: PaymentStatus.FAILED,
    GatewayOutcome.CANCELLED: PaymentStatus.CANCELLED,
}


@grocery.command(part_of="Order")
class StartPaymentAttempt:
    """Record the outcome of asking the gateway to collect an order's total."""

    order_id = Identifier(required=True)
    amount = Float(required=True)
    currency = String(required=True, max_length=3)
    method = String(required=True, max_length=50)
    external_transaction_id = String(max_length=255)
    checkout_reference = String(max_length=1000)
    failure_reason = String(max_length=500)
    failure_kind = String(max_length=50)
    actor = String(required=True, max_length=100)


@grocery.command(part_of="Order")
class ApplyPaymentOutcome:
    """Apply a conclusive or intermediate gateway outcome to one payment."""

    order_id = Identifier(required=True)
    payment_id = Identifier(required=True)
    outcome = String(required=True, max_length=50, choices=GatewayOutcome)
    failure_reason = String(max_length=500)
    failure_kind = String(max_length=50)
    raw_payload = Text()
    gateway_reference = String(max_length=255)
    actor = String(required=True, max_length=100)


@grocery.command(part_of="Order")
class HoldPaymentForReview:
    order_id = Identifier(required=True)
    payment_id = Identifier(required=True)
    reason = String(required=True, max_length=500)
    actor = String(required=True, max_length=100)


@grocery.command_handler(part_of=Order)
class OrderPaymentHandler:
    @handle(StartPaymentAttempt)
    def start_payment_attempt(self, command):
        order_repo = current_domain.repository_for(Order)
        payment_repo = current_domain.repository_for(Payment)
        order = order_repo.get(command.order_id)

        payment = Payment.create(
            order_id=str(order.id),
            amount=command.amount,
            currency=command.currency,
            method=command.method,
            external_transaction_id=command.external_transaction_id,
            checkout_reference=command.checkout_reference,
        )

        if order.status != OrderStatus.PENDING.value:
            # Cancelled while the gateway call was in flight
            payment.cancel(f"Order already {order.status}")
            payment_repo.add(payment)
            logger.warning(
                "Payment attempt recorded against a non-pending order",
                order_id=str(order.id),
                order_status=order.status,
                payment_id=str(payment.id),
            )
            return str(payment.id)

        if command.failure_reason:
            kind = FailureKind(command.failure_kind or FailureKind.PERMANENT.value)
            payment.mark_failed(command.failure_reason, kind)
            order.record_payment_failed()
        elif command.method == PaymentMethod.CASH_ON_DELIVERY.value:
            payment.mark_completed()
            order.confirm_payment(command.actor, notes="Cash on delivery")
        else:
            order.record_payment_pending()

        payment_repo.add(payment)
        order_repo.add(order)
        return str(payment.id)

    @handle(ApplyPaymentOutcome)
    def apply_payment_outcome(self, command):
        order_repo = current_domain.repository_for(Order)
        payment_repo = current_domain.repository_for(Payment)
        order = order_repo.get(command.order_id)
        payment = payment_repo.get(command.payment_id)
        outcome = GatewayOutcome(command.outcome)
        log = logger.bind(order_id=str(order.id), payment_id=str(payment.id), outcome=outcome.value)

        if outcome is GatewayOutcome.COMPLETED:
            if payment.status == PaymentStatus.COMPLETED.value:
                return ApplyResult.DUPLICATE.value
            if not payment.is_open():
                log.error("Completion reported for a closed payment", payment_status=payment.status)
                return ApplyResult.ANOMALY.value
            if order.status != OrderStatus.PENDING.value:
                log.error("Completion reported for an order that is no longer pending", order_status=order.status)
                return ApplyResult.ANOMALY.value
            if order.payment_status == OrderPaymentStatus.COMPLETED.value:
                log.error("Second payment completed for an already paid order")
                return ApplyResult.ANOMALY.value
            if payment.held_for_review:
                log.error("Completion reported for a payment held for review", review_reason=payment.review_reason)
                return ApplyResult.ANOMALY.value

            payment.mark_completed(raw_payload=command.raw_payload, gateway_reference=command.gateway_reference)
            order.confirm_payment(command.actor)

        elif outcome is GatewayOutcome.PROCESSING:
            if payment.status == PaymentStatus.PROCESSING.value:
                return ApplyResult.DUPLICATE.value
            if not payment.is_open():
                return ApplyResult.IGNORED.value
            payment.mark_processing(raw_payload=command.raw_payload)
            if order.status == OrderStatus.PENDING.value:
                order.record_payment_processing()

        else:
            if not payment.is_open():
                if payment.status == _CLOSING_STATUS[outcome].value:
                    return ApplyResult.DUPLICATE.value
                if payment.status == PaymentStatus.COMPLETED.value:
                    log.error("Failure reported for a completed payment")
                    return ApplyResult.ANOMALY.value
                return ApplyResult.IGNORED.value

            reason = command.failure_reason or "Payment was not completed"
            if outcome is GatewayOutcome.FAILED:
                kind = FailureKind(command.failure_kind or FailureKind.GATEWAY.value)
                payment.mark_failed(reason, kind, raw_payload=command.raw_payload)
            else:
                payment.cancel(reason, raw_payload=command.raw_payload)

            if order.status == OrderStatus.PENDING.value:
                order.record_payment_failed()
                order.cancel(reason, command.actor)

        payment_repo.add(payment)
        order_repo.add(order)
        return ApplyResult.APPLIED.value

    @handle(HoldPaymentForReview)
    def hold_payment_for_review(self, command):
        payment_repo = current_domain.repository_for(Payment)
        payment = payment_repo.get(command.payment_id)
        if payment.held_for_review:
            return False
        payment.hold_for_review(command.reason)
        payment_repo.add(payment)
        logger.warning(
            "Payment held for review",
            order_id=str(command.order_id),
            payment_id=str(payment.id),
            reason=command.reason,
            actor=command.actor,
        )
        return True
