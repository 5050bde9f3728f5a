"""ReconciliationWorker — webhook intake and the periodic sweep.

Webhook protocol:
    1. Verify the signature. Unverified bodies are rejected and never stored.
    2. Parse, then durably record a WebhookReceipt. A redelivery with the
       same dedupe key is recorded as a duplicate and goes no further.
    3. Find the payment by external transaction id (none: orphan).
    4. Compare amount and currency on completions. A mismatch is escalated
       and the payment is held for review.
    5. Apply the outcome through the OrderEngine and resolve the receipt.

Once a receipt exists the webhook is acknowledged, whatever happened next:
failures are recorded on the receipt and picked up again by the sweep.

Sweep:
    1. Orphan receipts whose payment has since been recorded are applied.
       A webhook can overtake the write of the payment it reports on.
    2. Open payments older than the payment timeout are re-queried at the
       gateway; a conclusive answer is applied, otherwise the payment expires.
       Payments held for review are skipped.
    3. Pending orders older than the timeout with no open payment are cancelled.
    4. Cancelled orders still holding stock release it.
    5. RECEIVED and FAILED receipts are re-applied, up to a bounded number
       of attempts.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import structlog
from protean.utils.globals import current_domain

from grocery.config import get_settings
from grocery.exceptions import InvalidSignatureError
from grocery.locks import payment_locks
from grocery.order.engine import OrderEngine, order_engine
from grocery.order.order import Order, OrderStatus
from grocery.order.payment import ApplyResult
from grocery.payment.gateway import GatewayError, GatewayOutcome, MalformedWebhookError, get_gateway
from grocery.payment.payment import Payment
from grocery.reconciliation.intake import RecordWebhookReceipt, ResolveWebhookReceipt
from grocery.reconciliation.receipt import ReceiptOutcome, WebhookReceipt
from grocery.utils.time import utc

logger = structlog.get_logger(__name__)

SWEEP_ACTOR = "reconciliation-sweep"
WEBHOOK_ACTOR = "gateway-webhook"

_RESULT_OUTCOMES = {
    ApplyResult.APPLIED.value: ReceiptOutcome.APPLIED,
    ApplyResult.DUPLICATE.value: ReceiptOutcome.DUPLICATE,
    ApplyResult.ANOMALY.value: ReceiptOutcome.ANOMALY,
    ApplyResult.IGNORED.value: ReceiptOutcome.IGNORED,
}


@dataclass(frozen=True)
class WebhookAck:
    receipt_id: str
    outcome: str


@dataclass
class SweepReport:
    orphans_adopted: int = 0
    payments_requeried: int = 0
    payments_applied: int = 0
    payments_expired: int = 0
    payments_held: int = 0
    orders_cancelled: int = 0
    inventory_released: int = 0
    receipts_retried: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "orphans_adopted": self.orphans_adopted,
            "payments_requeried": self.payments_requeried,
            "payments_applied": self.payments_applied,
            "payments_expired": self.payments_expired,
            "payments_held": self.payments_held,
            "orders_cancelled": self.orders_cancelled,
            "inventory_released": self.inventory_released,
            "receipts_retried": self.receipts_retried,
            "errors": list(self.errors),
        }


def _decode(raw_body: bytes | str) -> str:
    if isinstance(raw_body, bytes):
        return raw_body.decode("utf-8", errors="replace")
    return raw_body


class ReconciliationWorker:
    def __init__(self, orders: OrderEngine | None = None) -> None:
        self.orders = orders or order_engine

    # -------------------------------------------------------------------
    # Webhook intake
    # -------------------------------------------------------------------
    def handle_webhook(self, raw_body: bytes | str, signature: str | None) -> WebhookAck:
        gateway = get_gateway()
        if not gateway.verify_signature(raw_body, signature):
            logger.warning("Webhook rejected: invalid signature", body_length=len(raw_body or b""))
            raise InvalidSignatureError("Invalid webhook signature")

        raw_text = _decode(raw_body)
        try:
            notification = gateway.parse_webhook(raw_body)
        except MalformedWebhookError as exc:
            receipt_id = current_domain.process(
                RecordWebhookReceipt(
                    raw_payload=raw_text,
                    outcome=ReceiptOutcome.MALFORMED.value,
                    error=str(exc),
                ),
                asynchronous=False,
            )
            logger.error("Signed webhook could not be parsed", receipt_id=receipt_id, error=str(exc))
            return WebhookAck(receipt_id=receipt_id, outcome=ReceiptOutcome.MALFORMED.value)

        repo = current_domain.repository_for(WebhookReceipt)
        with payment_locks.hold(notification.external_transaction_id):
            original = repo.find_by_dedupe_key(notification.dedupe_key)
            receipt_id = current_domain.process(
                RecordWebhookReceipt(
                    raw_payload=raw_text,
                    dedupe_key=notification.dedupe_key,
                    external_transaction_id=notification.external_transaction_id,
                    gateway_status=notification.gateway_status,
                    outcome_hint=notification.outcome.value,
                    amount=notification.amount,
                    currency=notification.currency,
                    gateway_reference=notification.gateway_reference,
                    gateway_timestamp=notification.occurred_at,
                    outcome=(ReceiptOutcome.DUPLICATE if original else ReceiptOutcome.RECEIVED).value,
                ),
                asynchronous=False,
            )

        if original is not None:
            logger.info(
                "Duplicate webhook acknowledged",
                receipt_id=receipt_id,
                original_receipt_id=str(original.id),
                external_transaction_id=notification.external_transaction_id,
            )
            return WebhookAck(receipt_id=receipt_id, outcome=ReceiptOutcome.DUPLICATE.value)

        outcome = self.process_receipt(receipt_id)
        return WebhookAck(receipt_id=receipt_id, outcome=outcome.value)

    def process_receipt(self, receipt_id: str, actor: str = WEBHOOK_ACTOR) -> ReceiptOutcome:
        """Apply a recorded receipt. Never raises for business failures."""
        receipt = current_domain.repository_for(WebhookReceipt).get(receipt_id)
        log = logger.bind(receipt_id=str(receipt_id), external_transaction_id=receipt.external_transaction_id)

        payment = current_domain.repository_for(Payment).find_by_external_transaction_id(
            receipt.external_transaction_id
        )
        if payment is None:
            log.warning("Webhook for an unknown payment")
            return self._resolve(receipt_id, ReceiptOutcome.ORPHAN, error="No payment with this external id")

        outcome = GatewayOutcome(receipt.outcome_hint)
        if outcome is GatewayOutcome.COMPLETED and not self._amount_matches(receipt, payment):
            log.error(
                "Webhook amount does not match payment",
                order_id=str(payment.order_id),
                expected_amount=payment.amount,
                expected_currency=payment.currency,
                reported_amount=receipt.amount,
                reported_currency=receipt.currency,
            )
            error = f"Expected {payment.amount} {payment.currency}, got {receipt.amount} {receipt.currency}"
            try:
                self.orders.hold_payment(str(payment.order_id), receipt.external_transaction_id, error, actor)
            except Exception as exc:
                log.exception("Payment could not be held for review", order_id=str(payment.order_id))
                return self._resolve(receipt_id, ReceiptOutcome.FAILED, error=str(exc), order_id=str(payment.order_id))
            return self._resolve(receipt_id, ReceiptOutcome.AMOUNT_MISMATCH, error=error, order_id=str(payment.order_id))

        failure_reason = None
        if outcome is not GatewayOutcome.COMPLETED:
            failure_reason = f"Gateway reported {receipt.gateway_status}"
        try:
            result = self.orders.apply_payment_result(
                str(payment.order_id),
                receipt.external_transaction_id,
                outcome,
                actor=actor,
                raw_payload=receipt.raw_payload,
                gateway_reference=receipt.gateway_reference,
                failure_reason=failure_reason,
            )
        except Exception as exc:
            log.exception("Webhook could not be applied", order_id=str(payment.order_id))
            return self._resolve(receipt_id, ReceiptOutcome.FAILED, error=str(exc), order_id=str(payment.order_id))

        return self._resolve(receipt_id, _RESULT_OUTCOMES[result], order_id=str(payment.order_id))

    def _amount_matches(self, receipt: WebhookReceipt, payment: Payment) -> bool:
        if receipt.amount is None or round(receipt.amount, 2) != round(payment.amount, 2):
            return False
        return (receipt.currency or "").upper() == (payment.currency or "").upper()

    def _resolve(
        self,
        receipt_id: str,
        outcome: ReceiptOutcome,
        error: str | None = None,
        order_id: str | None = None,
    ) -> ReceiptOutcome:
        current_domain.process(
            ResolveWebhookReceipt(receipt_id=receipt_id, outcome=outcome.value, error=error, order_id=order_id),
            asynchronous=False,
        )
        return outcome

    # -------------------------------------------------------------------
    # Sweep
    # -------------------------------------------------------------------
    def sweep(self, now: datetime | None = None) -> SweepReport:
        now = utc(now) if now else datetime.now(UTC)
        settings = get_settings()
        report = SweepReport()

        self._sweep_orphans(report)
        self._sweep_stale_payments(now, settings.payment_timeout_minutes, report)
        self._sweep_abandoned_orders(now, settings.payment_timeout_minutes, report)
        self._sweep_unreleased_inventory(report)
        self._sweep_receipts(settings.receipt_max_attempts, report)

        logger.info("Reconciliation sweep finished", as_of=now.isoformat(), **report.as_dict())
        return report

    def _sweep_orphans(self, report: SweepReport) -> None:
        payment_repo = current_domain.repository_for(Payment)
        for receipt in current_domain.repository_for(WebhookReceipt).orphans():
            if payment_repo.find_by_external_transaction_id(receipt.external_transaction_id) is None:
                continue
            outcome = self.process_receipt(str(receipt.id), actor=SWEEP_ACTOR)
            report.orphans_adopted += 1
            logger.info(
                "Orphan webhook matched a payment recorded after it",
                receipt_id=str(receipt.id),
                external_transaction_id=receipt.external_transaction_id,
                outcome=outcome.value,
            )

    def _sweep_stale_payments(self, now: datetime, timeout_minutes: int, report: SweepReport) -> None:
        gateway = get_gateway()
        for payment in current_domain.repository_for(Payment).open_payments():
            if not payment.is_stale(now, timeout_minutes):
                continue
            if payment.held_for_review:
                report.payments_held += 1
                continue
            try:
                outcome = None
                if payment.external_transaction_id:
                    report.payments_requeried += 1
                    try:
                        outcome = gateway.query_status(payment.external_transaction_id)
                    except GatewayError as exc:
                        logger.warning(
                            "Gateway status query failed",
                            payment_id=str(payment.id),
                            error=str(exc),
                        )

                if outcome is not None:
                    self.orders.apply_payment_result(
                        str(payment.order_id),
                        payment.external_transaction_id,
                        outcome,
                        actor=SWEEP_ACTOR,
                        failure_reason=f"Gateway reported {outcome.value} on status query",
                    )
                    report.payments_applied += 1
                else:
                    self.orders.expire_payment(str(payment.id), actor=SWEEP_ACTOR)
                    report.payments_expired += 1
            except Exception as exc:
                logger.exception("Stale payment could not be reconciled", payment_id=str(payment.id))
                report.errors.append(f"payment {payment.id}: {exc}")

    def _sweep_abandoned_orders(self, now: datetime, timeout_minutes: int, report: SweepReport) -> None:
        cutoff = now - timedelta(minutes=timeout_minutes)
        payment_repo = current_domain.repository_for(Payment)
        for order in current_domain.repository_for(Order).with_status(OrderStatus.PENDING.value):
            if utc(order.created_at) > cutoff:
                continue
            if any(p.is_open() for p in payment_repo.for_order(str(order.id))):
                continue
            try:
                self.orders.cancel_order(str(order.id), "Payment not completed in time", SWEEP_ACTOR)
                report.orders_cancelled += 1
            except Exception as exc:
                logger.exception("Abandoned order could not be cancelled", order_id=str(order.id))
                report.errors.append(f"order {order.id}: {exc}")

    def _sweep_unreleased_inventory(self, report: SweepReport) -> None:
        repo = current_domain.repository_for(Order)
        for order in repo.holding_inventory(OrderStatus.CANCELLED.value):
            try:
                self.orders.release_inventory(str(order.id), SWEEP_ACTOR)
                report.inventory_released += 1
            except Exception as exc:
                logger.exception("Inventory release failed", order_id=str(order.id))
                report.errors.append(f"inventory {order.id}: {exc}")

    def _sweep_receipts(self, max_attempts: int, report: SweepReport) -> None:
        for receipt in current_domain.repository_for(WebhookReceipt).retryable():
            if not receipt.is_retryable(max_attempts):
                continue
            report.receipts_retried += 1
            self.process_receipt(str(receipt.id), actor=SWEEP_ACTOR)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def anomalies(self) -> list[WebhookReceipt]:
        return current_domain.repository_for(WebhookReceipt).escalated()


reconciliation_worker = ReconciliationWorker()
