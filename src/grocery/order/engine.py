"""OrderEngine — the only writer of ``Order.status`` and ``Order.payment_status``.

Every transition runs under the order's lock and passes the status the
engine just read as ``expected_status``, so two callers racing on one order
are decided one after the other and the loser sees the winner's result.

Gateway calls are made without holding any lock. Their outcome is recorded
afterwards, under the lock, and a cancellation that slipped in meanwhile
wins: the fresh payment attempt is recorded as cancelled.
"""

import json
from dataclasses import dataclass
from uuid import uuid4

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from grocery.catalog import UnknownProductError, get_catalog
from grocery.config import get_settings
from grocery.exceptions import IllegalTransitionError
from grocery.inventory.ledger import InventoryLedger, ledger
from grocery.locks import order_locks
from grocery.order.cancellation import CancelOrder, MarkInventoryReleased
from grocery.order.order import Order, OrderPaymentStatus, OrderStatus
from grocery.order.payment import ApplyPaymentOutcome, ApplyResult, HoldPaymentForReview, StartPaymentAttempt
from grocery.order.placement import PlaceOrder
from grocery.order.pricing import generate_order_number, price_order
from grocery.order.progress import AdvanceOrderStatus
from grocery.order.validation import normalize_phone, validate_checkout
from grocery.payment.gateway import (
    GatewayOutcome,
    GatewayRejectedError,
    GatewayUnavailableError,
    PaymentRequest,
    get_gateway,
)
from grocery.payment.payment import FailureKind, Payment, PaymentMethod

logger = structlog.get_logger(__name__)

SYSTEM_ACTOR = "system"


@dataclass(frozen=True)
class PaymentAttemptOutcome:
    external_transaction_id: str | None = None
    checkout_reference: str | None = None
    failure_reason: str | None = None
    failure_kind: FailureKind | None = None


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        "Gateway unavailable, retrying initiation",
        attempt=retry_state.attempt_number,
        error=str(retry_state.outcome.exception()) if retry_state.outcome else None,
    )


class OrderEngine:
    def __init__(self, inventory: InventoryLedger | None = None) -> None:
        self.inventory = inventory or ledger

    # -------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------
    def create_order(
        self,
        customer_id: str,
        line_items: list[dict],
        delivery: dict,
        payment_method: str,
        actor: str,
        discount: float = 0.0,
    ) -> Order:
        """Validate, price, reserve and place an order, then start its payment.

        ``line_items`` are ``{"product_id", "quantity"}`` dicts; names and
        prices come from the catalogue. ``delivery`` carries ``address``,
        ``phone``, and optionally ``date`` (a ``datetime.date``),
        ``time_window`` and ``notes``.

        Reservation is all-or-nothing: if any line cannot be reserved, every
        line already reserved is released and the error propagates.
        """
        validate_checkout(line_items, delivery, payment_method)
        lines = self._snapshot_lines(line_items)
        pricing = price_order([line["subtotal"] for line in lines], discount=discount)

        order_id = str(uuid4())
        order_number = generate_order_number()
        log = logger.bind(order_id=order_id, order_number=order_number, customer_id=str(customer_id))

        reserved: list[dict] = []
        try:
            for line in lines:
                self.inventory.reserve(
                    line["product_id"],
                    line["quantity"],
                    reason=f"Order {order_number}",
                    actor=actor,
                    order_id=order_id,
                )
                reserved.append(line)

            with order_locks.hold(order_id):
                current_domain.process(
                    PlaceOrder(
                        order_id=order_id,
                        order_number=order_number,
                        customer_id=customer_id,
                        items=json.dumps(lines),
                        pricing=json.dumps(pricing.as_dict()),
                        delivery=json.dumps(self._delivery_payload(delivery)),
                        payment_method=payment_method,
                        actor=actor,
                    ),
                    asynchronous=False,
                )
        except Exception:
            log.warning("Order placement failed, releasing reservations", reserved_lines=len(reserved))
            for line in reserved:
                self.inventory.release(
                    line["product_id"],
                    line["quantity"],
                    reason=f"Placement of {order_number} failed",
                    actor=actor,
                    order_id=order_id,
                )
            raise

        log.info("Order placed", total=pricing.total, payment_method=payment_method)

        if payment_method == PaymentMethod.CASH_ON_DELIVERY.value:
            self._record_attempt(order_id, PaymentAttemptOutcome(), actor)
        else:
            self._start_gateway_payment(order_id, normalize_phone(delivery["phone"]), actor)

        return self.get(order_id)

    def _snapshot_lines(self, line_items: list[dict]) -> list[dict]:
        catalog = get_catalog()
        lines = []
        unknown = []
        for item in line_items:
            try:
                product = catalog.lookup(item["product_id"])
            except UnknownProductError:
                unknown.append(str(item["product_id"]))
                continue
            quantity = item["quantity"]
            lines.append(
                {
                    "product_id": product.product_id,
                    "name": product.name,
                    "unit_price": product.unit_price,
                    "quantity": quantity,
                    "subtotal": round(product.unit_price * quantity, 2),
                }
            )
        if unknown:
            raise ValidationError({"line_items": [f"Unknown product {product_id}" for product_id in unknown]})
        return lines

    def _delivery_payload(self, delivery: dict) -> dict:
        return {
            "address": delivery["address"].strip(),
            "phone": normalize_phone(delivery["phone"]),
            "date": delivery["date"].isoformat() if delivery.get("date") else None,
            "time_window": delivery.get("time_window"),
            "notes": delivery.get("notes"),
        }

    # -------------------------------------------------------------------
    # Payment initiation
    # -------------------------------------------------------------------
    def _initiate_with_retry(self, request: PaymentRequest, method: str, contact: str):
        settings = get_settings()
        retrying = Retrying(
            stop=stop_after_attempt(settings.gateway_retry_attempts),
            wait=wait_exponential(
                multiplier=settings.gateway_retry_wait_seconds,
                max=settings.gateway_retry_max_wait_seconds,
            ),
            retry=retry_if_exception_type(GatewayUnavailableError),
            before_sleep=_log_retry,
            reraise=True,
        )
        return retrying(get_gateway().initiate, request, method, contact)

    def _start_gateway_payment(self, order_id: str, contact: str, actor: str) -> str:
        order = self.get(order_id)
        request = PaymentRequest(
            order_id=order_id,
            order_number=order.order_number,
            amount=order.total_amount,
            currency=order.currency,
            line_items=tuple(
                {"name": item.name, "unit_price": item.unit_price, "quantity": item.quantity}
                for item in order.line_items
            ),
            delivery_fee=order.delivery_fee or 0.0,
            tax=order.tax or 0.0,
        )

        try:
            result = self._initiate_with_retry(request, order.payment_method, contact)
            attempt = PaymentAttemptOutcome(
                external_transaction_id=result.external_transaction_id,
                checkout_reference=result.checkout_reference,
            )
        except GatewayUnavailableError as exc:
            logger.error("Gateway unavailable after retries", order_id=order_id, error=str(exc))
            attempt = PaymentAttemptOutcome(
                failure_reason="Payment service unavailable, please try again",
                failure_kind=FailureKind.TRANSIENT,
            )
        except GatewayRejectedError as exc:
            logger.warning("Gateway rejected payment initiation", order_id=order_id, error=str(exc))
            attempt = PaymentAttemptOutcome(failure_reason=str(exc), failure_kind=FailureKind.PERMANENT)

        return self._record_attempt(order_id, attempt, actor)

    def _record_attempt(self, order_id: str, attempt: PaymentAttemptOutcome, actor: str) -> str:
        with order_locks.hold(order_id):
            order = self.get(order_id)
            return current_domain.process(
                StartPaymentAttempt(
                    order_id=order_id,
                    amount=order.total_amount,
                    currency=order.currency,
                    method=order.payment_method,
                    external_transaction_id=attempt.external_transaction_id,
                    checkout_reference=attempt.checkout_reference,
                    failure_reason=attempt.failure_reason,
                    failure_kind=attempt.failure_kind.value if attempt.failure_kind else None,
                    actor=actor,
                ),
                asynchronous=False,
            )

    def retry_payment(self, order_id: str, actor: str, phone: str | None = None) -> Order:
        """Start a fresh payment attempt for a pending order whose last attempt failed."""
        order = self.get(order_id)
        if order.status != OrderStatus.PENDING.value or order.payment_status != OrderPaymentStatus.FAILED.value:
            raise IllegalTransitionError("order payment", order.payment_status, OrderPaymentStatus.PENDING.value)
        if order.payment_method == PaymentMethod.CASH_ON_DELIVERY.value:
            raise IllegalTransitionError("order payment", order.payment_status, OrderPaymentStatus.PENDING.value)

        contact = normalize_phone(phone) if phone else order.delivery_phone
        logger.info("Retrying payment", order_id=order_id, actor=actor)
        self._start_gateway_payment(order_id, contact, actor)
        return self.get(order_id)

    # -------------------------------------------------------------------
    # Payment results
    # -------------------------------------------------------------------
    def apply_payment_result(
        self,
        order_id: str,
        external_transaction_id: str,
        outcome: GatewayOutcome,
        actor: str = "gateway",
        raw_payload: str | None = None,
        gateway_reference: str | None = None,
        failure_reason: str | None = None,
        failure_kind: FailureKind | None = None,
    ) -> str:
        """Apply a gateway outcome to the payment with this external id.

        Idempotent: a redelivered outcome returns ``duplicate`` and changes
        nothing. A completion that arrives after the order was cancelled or
        the payment expired is an ``anomaly`` and is never applied.
        """
        with order_locks.hold(order_id):
            payment = current_domain.repository_for(Payment).find_by_external_transaction_id(external_transaction_id)
            if payment is None or str(payment.order_id) != str(order_id):
                logger.error(
                    "No payment with this external id for the order",
                    order_id=str(order_id),
                    external_transaction_id=external_transaction_id,
                )
                return ApplyResult.ANOMALY.value

            result = current_domain.process(
                ApplyPaymentOutcome(
                    order_id=order_id,
                    payment_id=str(payment.id),
                    outcome=outcome.value,
                    failure_reason=failure_reason,
                    failure_kind=failure_kind.value if failure_kind else None,
                    raw_payload=raw_payload,
                    gateway_reference=gateway_reference,
                    actor=actor,
                ),
                asynchronous=False,
            )
            self._release_if_cancelled(order_id, actor)

        logger.info(
            "Payment result processed",
            order_id=str(order_id),
            external_transaction_id=external_transaction_id,
            outcome=outcome.value,
            result=result,
        )
        return result

    def hold_payment(self, order_id: str, external_transaction_id: str, reason: str, actor: str) -> bool:
        """Hold an open payment for review. Returns False when there is nothing to hold."""
        with order_locks.hold(order_id):
            payment = current_domain.repository_for(Payment).find_by_external_transaction_id(external_transaction_id)
            if payment is None or str(payment.order_id) != str(order_id) or not payment.is_open():
                return False
            return current_domain.process(
                HoldPaymentForReview(order_id=order_id, payment_id=str(payment.id), reason=reason, actor=actor),
                asynchronous=False,
            )

    def expire_payment(self, payment_id: str, actor: str = "reconciliation-sweep") -> str:
        """Give up on a payment that outlived the timeout: fail it and cancel a pending order."""
        payment = current_domain.repository_for(Payment).get(payment_id)
        with order_locks.hold(str(payment.order_id)):
            result = current_domain.process(
                ApplyPaymentOutcome(
                    order_id=str(payment.order_id),
                    payment_id=str(payment.id),
                    outcome=GatewayOutcome.FAILED.value,
                    failure_reason="Payment timed out",
                    failure_kind=FailureKind.TIMEOUT.value,
                    actor=actor,
                ),
                asynchronous=False,
            )
            self._release_if_cancelled(str(payment.order_id), actor)

        logger.warning("Payment expired", payment_id=str(payment_id), order_id=str(payment.order_id), result=result)
        return result

    # -------------------------------------------------------------------
    # Status progression
    # -------------------------------------------------------------------
    def advance_status(
        self,
        order_id: str,
        new_status: str,
        actor: str,
        notes: str | None = None,
        delivery_id: str | None = None,
    ) -> Order:
        with order_locks.hold(order_id):
            order = self.get(order_id)
            current_domain.process(
                AdvanceOrderStatus(
                    order_id=order_id,
                    expected_status=order.status,
                    target_status=new_status,
                    actor=actor,
                    notes=notes,
                    delivery_id=delivery_id,
                ),
                asynchronous=False,
            )
            logger.info("Order status advanced", order_id=str(order_id), from_status=order.status, to_status=new_status)
            return self.get(order_id)

    # -------------------------------------------------------------------
    # Cancellation and compensation
    # -------------------------------------------------------------------
    def cancel_order(self, order_id: str, reason: str, actor: str) -> Order:
        with order_locks.hold(order_id):
            order = self.get(order_id)
            current_domain.process(
                CancelOrder(
                    order_id=order_id,
                    expected_status=order.status,
                    reason=reason,
                    actor=actor,
                ),
                asynchronous=False,
            )
            logger.info("Order cancelled", order_id=str(order_id), previous_status=order.status, actor=actor)
            self.release_inventory(order_id, actor)
            return self.get(order_id)

    def release_inventory(self, order_id: str, actor: str = SYSTEM_ACTOR) -> int:
        """Return everything a cancelled order still holds. Safe to repeat."""
        with order_locks.hold(order_id):
            order = self.get(order_id)
            if not order.inventory_reserved:
                return 0
            if order.status != OrderStatus.CANCELLED.value:
                raise IllegalTransitionError("order inventory", order.status, "released")

            released = 0
            for item in order.line_items:
                released += self.inventory.release_for_order(
                    str(order.id),
                    str(item.product_id),
                    item.quantity,
                    reason=f"Order {order.order_number} cancelled",
                    actor=actor,
                )
            current_domain.process(MarkInventoryReleased(order_id=order_id), asynchronous=False)

        logger.info("Order inventory released", order_id=str(order_id), units=released)
        return released

    def _release_if_cancelled(self, order_id: str, actor: str) -> None:
        order = self.get(order_id)
        if order.status == OrderStatus.CANCELLED.value and order.inventory_reserved:
            self.release_inventory(order_id, actor)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get(self, order_id: str) -> Order:
        return current_domain.repository_for(Order).get(str(order_id))


order_engine = OrderEngine()
