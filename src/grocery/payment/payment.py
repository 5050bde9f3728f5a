"""Payment aggregate (CQRS) — one attempt to collect an order's total.

An order may accumulate several attempts (a rejected first try, then a
retry), but at most one of them ever reaches COMPLETED. A completed payment
is immutable: every later transition is refused.

State Machine:
    PENDING → PROCESSING → COMPLETED
    {PENDING, PROCESSING} → FAILED | CANCELLED
    PENDING → COMPLETED (cash on delivery, or a gateway that skips PROCESSING)

An open payment whose gateway report disagrees with its amount or currency
is held for review: it is neither completed nor expired automatically.
"""

from datetime import UTC, datetime
from enum import Enum

from protean.fields import Boolean, DateTime, Float, Identifier, String, Text

from grocery.domain import grocery
from grocery.exceptions import IllegalTransitionError
from grocery.payment.events import (
    PaymentCancelled,
    PaymentCompleted,
    PaymentFailed,
    PaymentInitiated,
)
from grocery.utils.time import utc


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class PaymentStatus(Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


class PaymentMethod(Enum):
    MPESA = "mpesa"
    AIRTEL_MONEY = "airtel_money"
    TIGO_PESA = "tigo_pesa"
    CARD = "card"
    CASH_ON_DELIVERY = "cash_on_delivery"


class FailureKind(Enum):
    TRANSIENT = "Transient"
    PERMANENT = "Permanent"
    TIMEOUT = "Timeout"
    GATEWAY = "Gateway"


_VALID_TRANSITIONS = {
    PaymentStatus.PENDING: {
        PaymentStatus.PROCESSING,
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    },
    PaymentStatus.PROCESSING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED},
    PaymentStatus.COMPLETED: set(),  # Terminal, immutable
    PaymentStatus.FAILED: set(),  # Terminal
    PaymentStatus.CANCELLED: set(),  # Terminal
}

OPEN_STATUSES = {PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value}


# ---------------------------------------------------------------------------
# Aggregate Root (CQRS)
# ---------------------------------------------------------------------------
@grocery.aggregate
class Payment:
    order_id = Identifier(required=True)
    amount = Float(required=True, min_value=0.0)
    currency = String(max_length=3, default="TZS")
    method = String(max_length=50, choices=PaymentMethod, required=True)
    status = String(
        max_length=50,
        choices=PaymentStatus,
        default=PaymentStatus.PENDING.value,
    )
    external_transaction_id = String(max_length=255)
    checkout_reference = String(max_length=1000)
    gateway_reference = String(max_length=255)
    failure_reason = String(max_length=500)
    failure_kind = String(max_length=50, choices=FailureKind)
    raw_payload = Text()
    # Set when the gateway reported a different amount or currency
    held_for_review = Boolean(default=False)
    review_reason = String(max_length=500)
    initiated_at = DateTime()
    completed_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        order_id: str,
        amount: float,
        currency: str,
        method: str,
        external_transaction_id: str | None = None,
        checkout_reference: str | None = None,
    ):
        now = datetime.now(UTC)
        payment = cls(
            order_id=order_id,
            amount=amount,
            currency=currency,
            method=method,
            status=PaymentStatus.PENDING.value,
            external_transaction_id=external_transaction_id,
            checkout_reference=checkout_reference,
            initiated_at=now,
            updated_at=now,
        )
        payment.raise_(
            PaymentInitiated(
                payment_id=str(payment.id),
                order_id=order_id,
                amount=amount,
                currency=currency,
                method=method,
                external_transaction_id=external_transaction_id,
                initiated_at=now,
            )
        )
        return payment

    # -------------------------------------------------------------------
    # State transition helper
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status: PaymentStatus) -> None:
        current = PaymentStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise IllegalTransitionError("payment", current.value, target_status.value)

    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def is_stale(self, now: datetime, timeout_minutes: int) -> bool:
        """True when the attempt has been open longer than the payment timeout."""
        if not self.is_open() or self.initiated_at is None:
            return False
        age = utc(now) - utc(self.initiated_at)
        return age.total_seconds() >= timeout_minutes * 60

    def hold_for_review(self, reason: str) -> None:
        """Keep an open payment away from automatic completion and expiry."""
        if not self.is_open():
            raise IllegalTransitionError("payment", self.status, "held for review")
        self.held_for_review = True
        self.review_reason = reason
        self.updated_at = datetime.now(UTC)

    # -------------------------------------------------------------------
    # Payment lifecycle
    # -------------------------------------------------------------------
    def mark_processing(self, raw_payload: str | None = None) -> None:
        if self.status == PaymentStatus.PROCESSING.value:
            return
        self._assert_can_transition(PaymentStatus.PROCESSING)
        self.status = PaymentStatus.PROCESSING.value
        if raw_payload is not None:
            self.raw_payload = raw_payload
        self.updated_at = datetime.now(UTC)

    def mark_completed(self, raw_payload: str | None = None, gateway_reference: str | None = None) -> None:
        self._assert_can_transition(PaymentStatus.COMPLETED)
        now = datetime.now(UTC)
        self.status = PaymentStatus.COMPLETED.value
        if raw_payload is not None:
            self.raw_payload = raw_payload
        if gateway_reference:
            self.gateway_reference = gateway_reference
        self.completed_at = now
        self.updated_at = now
        self.raise_(
            PaymentCompleted(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                amount=self.amount,
                currency=self.currency,
                external_transaction_id=self.external_transaction_id,
                completed_at=now,
            )
        )

    def mark_failed(self, reason: str, kind: FailureKind, raw_payload: str | None = None) -> None:
        self._assert_can_transition(PaymentStatus.FAILED)
        now = datetime.now(UTC)
        self.status = PaymentStatus.FAILED.value
        self.failure_reason = reason
        self.failure_kind = kind.value
        if raw_payload is not None:
            self.raw_payload = raw_payload
        self.updated_at = now
        self.raise_(
            PaymentFailed(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                reason=reason,
                kind=kind.value,
                failed_at=now,
            )
        )

    def cancel(self, reason: str, raw_payload: str | None = None) -> None:
        self._assert_can_transition(PaymentStatus.CANCELLED)
        now = datetime.now(UTC)
        self.status = PaymentStatus.CANCELLED.value
        self.failure_reason = reason
        if raw_payload is not None:
            self.raw_payload = raw_payload
        self.updated_at = now
        self.raise_(
            PaymentCancelled(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                reason=reason,
                cancelled_at=now,
            )
        )


@grocery.repository(part_of=Payment)
class PaymentRepository:
    def find_by_external_transaction_id(self, external_transaction_id: str) -> Payment | None:
        if not external_transaction_id:
            return None
        results = self._dao.query.filter(external_transaction_id=str(external_transaction_id)).all().items
        return results[0] if results else None

    def for_order(self, order_id: str) -> list[Payment]:
        """All attempts for an order, oldest first."""
        results = self._dao.query.filter(order_id=str(order_id)).all().items
        return sorted(results, key=lambda p: utc(p.initiated_at))

    def open_payments(self) -> list[Payment]:
        results = []
        for status in sorted(OPEN_STATUSES):
            results.extend(self._dao.query.filter(status=status).all().items)
        return results
