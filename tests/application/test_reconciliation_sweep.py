"""Periodic sweep: stale payments, abandoned orders, unreleased stock and receipt retries."""

from datetime import UTC, datetime, timedelta

from grocery.inventory.ledger import ledger
from grocery.order.engine import order_engine
from grocery.order.order import Order, OrderPaymentStatus, OrderStatus
from grocery.order.payment import ApplyResult
from grocery.payment.gateway import GatewayOutcome
from grocery.payment.payment import FailureKind, Payment, PaymentStatus
from grocery.reconciliation.intake import RecordWebhookReceipt
from grocery.reconciliation.receipt import ReceiptOutcome, WebhookReceipt
from grocery.reconciliation.worker import reconciliation_worker
from protean import current_domain


def _later(minutes=16):
    return datetime.now(UTC) + timedelta(minutes=minutes)


def _payment_for(order):
    return current_domain.repository_for(Payment).for_order(str(order.id))[-1]


class TestStalePayments:
    def test_fresh_payments_are_left_alone(self, place_order, gateway):
        order = place_order()

        report = reconciliation_worker.sweep()

        assert report.payments_requeried == 0
        assert report.payments_expired == 0
        assert order_engine.get(str(order.id)).status == OrderStatus.PENDING.value

    def test_inconclusive_gateway_expires_payment(self, place_order, gateway):
        order = place_order()

        report = reconciliation_worker.sweep(now=_later())

        assert report.payments_requeried == 1
        assert report.payments_expired == 1
        payment = _payment_for(order)
        assert payment.status == PaymentStatus.FAILED.value
        assert payment.failure_kind == FailureKind.TIMEOUT.value
        order = order_engine.get(str(order.id))
        assert order.status == OrderStatus.CANCELLED.value
        assert order.cancelled_by == "reconciliation-sweep"
        assert ledger.quantity("rice-5kg") == 20

    def test_gateway_answer_is_applied(self, place_order, gateway):
        order = place_order()
        gateway.statuses[_payment_for(order).external_transaction_id] = GatewayOutcome.COMPLETED

        report = reconciliation_worker.sweep(now=_later())

        assert report.payments_applied == 1
        assert report.payments_expired == 0
        order = order_engine.get(str(order.id))
        assert order.status == OrderStatus.CONFIRMED.value
        assert order.payment_status == OrderPaymentStatus.COMPLETED.value

    def test_late_success_after_expiry_is_an_anomaly(self, place_order, gateway):
        order = place_order()
        ext = _payment_for(order).external_transaction_id
        reconciliation_worker.sweep(now=_later())

        body, signature = gateway.build_webhook(ext, GatewayOutcome.COMPLETED, 14700.0)
        ack = reconciliation_worker.handle_webhook(body, signature)

        assert ack.outcome == ReceiptOutcome.ANOMALY.value
        order = order_engine.get(str(order.id))
        assert order.status == OrderStatus.CANCELLED.value
        assert order.payment_status == OrderPaymentStatus.FAILED.value
        assert ledger.quantity("rice-5kg") == 20

    def test_payment_with_mismatched_webhook_is_not_completed_by_requery(self, place_order, gateway):
        order = place_order()
        ext = _payment_for(order).external_transaction_id
        body, signature = gateway.build_webhook(ext, GatewayOutcome.COMPLETED, 100.0)
        assert reconciliation_worker.handle_webhook(body, signature).outcome == ReceiptOutcome.AMOUNT_MISMATCH.value
        gateway.statuses[ext] = GatewayOutcome.COMPLETED

        report = reconciliation_worker.sweep(now=_later())

        assert report.payments_held == 1
        assert report.payments_applied == 0
        assert report.payments_expired == 0
        payment = _payment_for(order)
        assert payment.held_for_review is True
        assert payment.status != PaymentStatus.COMPLETED.value
        order = order_engine.get(str(order.id))
        assert order.status == OrderStatus.PENDING.value
        assert order.payment_status != OrderPaymentStatus.COMPLETED.value
        assert ledger.quantity("rice-5kg") == 19

    def test_held_payment_rejects_a_later_completion(self, place_order, gateway):
        order = place_order()
        ext = _payment_for(order).external_transaction_id
        body, signature = gateway.build_webhook(ext, GatewayOutcome.COMPLETED, 100.0)
        reconciliation_worker.handle_webhook(body, signature)

        result = order_engine.apply_payment_result(str(order.id), ext, GatewayOutcome.COMPLETED, actor="ops")

        assert result == ApplyResult.ANOMALY.value
        assert _payment_for(order).review_reason == "Expected 14700.0 TZS, got 100.0 TZS"
        assert order_engine.get(str(order.id)).status == OrderStatus.PENDING.value

        assert ledger.quantity("rice-5kg") == 20

    def test_sweep_is_idempotent(self, place_order, gateway):
        place_order()
        reconciliation_worker.sweep(now=_later())

        report = reconciliation_worker.sweep(now=_later(30))

        assert report.as_dict() == {
            "orphans_adopted": 0,
            "payments_requeried": 0,
            "payments_applied": 0,
            "payments_expired": 0,
            "payments_held": 0,
            "orders_cancelled": 0,
            "inventory_released": 0,
            "receipts_retried": 0,
            "errors": [],
        }


class TestAbandonedOrders:
    def test_pending_order_with_failed_payment_is_cancelled(self, place_order, gateway):
        gateway.configure(should_succeed=False)
        order = place_order()

        report = reconciliation_worker.sweep(now=_later())

        assert report.orders_cancelled == 1
        order = order_engine.get(str(order.id))
        assert order.status == OrderStatus.CANCELLED.value
        assert order.cancellation_reason == "Payment not completed in time"
        assert ledger.quantity("tomatoes-1kg") == 20

    def test_recent_failed_order_still_awaits_retry(self, place_order, gateway):
        gateway.configure(should_succeed=False)
        order = place_order()

        report = reconciliation_worker.sweep(now=_later(5))

        assert report.orders_cancelled == 0
        assert order_engine.get(str(order.id)).status == OrderStatus.PENDING.value

    def test_cash_on_delivery_orders_are_untouched(self, place_order, gateway):
        order = place_order(payment_method="cash_on_delivery")

        reconciliation_worker.sweep(now=_later(120))

        assert order_engine.get(str(order.id)).status == OrderStatus.CONFIRMED.value


class TestUnreleasedInventory:
    def test_cancelled_order_still_holding_stock_is_released(self, place_order):
        order = place_order()
        # Simulate a crash between cancellation and release
        repo = current_domain.repository_for(Order)
        stored = repo.get(str(order.id))
        stored.cancel("Customer request", "cust-001")
        repo.add(stored)
        assert ledger.quantity("rice-5kg") == 19

        report = reconciliation_worker.sweep()

        assert report.inventory_released == 1
        assert ledger.quantity("rice-5kg") == 20
        assert order_engine.get(str(order.id)).inventory_reserved is False


class TestReceiptRetries:
    def _record_unprocessed(self, gateway, ext, amount, outcome=ReceiptOutcome.RECEIVED):
        body, _ = gateway.build_webhook(ext, GatewayOutcome.COMPLETED, amount)
        return current_domain.process(
            RecordWebhookReceipt(
                raw_payload=body.decode(),
                dedupe_key=f"{ext}:SUCCESS",
                external_transaction_id=ext,
                gateway_status="SUCCESS",
                outcome_hint=GatewayOutcome.COMPLETED.value,
                amount=amount,
                currency="TZS",
                gateway_reference=f"PAY_{ext}",
                outcome=outcome.value,
            ),
            asynchronous=False,
        )

    def test_received_receipt_is_applied_by_sweep(self, place_order, gateway):
        order = place_order()
        receipt_id = self._record_unprocessed(gateway, _payment_for(order).external_transaction_id, 14700.0)

        report = reconciliation_worker.sweep()

        assert report.receipts_retried == 1
        receipt = current_domain.repository_for(WebhookReceipt).get(receipt_id)
        assert receipt.outcome == ReceiptOutcome.APPLIED.value
        assert order_engine.get(str(order.id)).status == OrderStatus.CONFIRMED.value

    def test_exhausted_receipts_are_not_retried(self, place_order, gateway):
        order = place_order()
        receipt_id = self._record_unprocessed(gateway, _payment_for(order).external_transaction_id, 14700.0)
        repo = current_domain.repository_for(WebhookReceipt)
        receipt = repo.get(receipt_id)
        receipt.outcome = ReceiptOutcome.FAILED.value
        receipt.attempts = 5
        repo.add(receipt)

        report = reconciliation_worker.sweep()

        assert report.receipts_retried == 0
        assert order_engine.get(str(order.id)).status == OrderStatus.PENDING.value

    def test_orphan_is_applied_once_its_payment_exists(self, place_order, gateway):
        order = place_order()
        ext = _payment_for(order).external_transaction_id
        # Webhook recorded while the payment write was still in flight
        receipt_id = self._record_unprocessed(gateway, ext, 14700.0, outcome=ReceiptOutcome.ORPHAN)

        report = reconciliation_worker.sweep()

        assert report.orphans_adopted == 1
        receipt = current_domain.repository_for(WebhookReceipt).get(receipt_id)
        assert receipt.outcome == ReceiptOutcome.APPLIED.value
        assert receipt.order_id == str(order.id)
        order = order_engine.get(str(order.id))
        assert order.status == OrderStatus.CONFIRMED.value
        assert order.payment_status == OrderPaymentStatus.COMPLETED.value

    def test_adopted_orphan_is_not_expired_by_the_same_sweep(self, place_order, gateway):
        order = place_order()
        ext = _payment_for(order).external_transaction_id
        self._record_unprocessed(gateway, ext, 14700.0, outcome=ReceiptOutcome.ORPHAN)

        report = reconciliation_worker.sweep(now=_later())

        assert report.orphans_adopted == 1
        assert report.payments_expired == 0
        assert order_engine.get(str(order.id)).status == OrderStatus.CONFIRMED.value

    def test_orphan_without_a_payment_stays_escalated(self, gateway):
        receipt_id = self._record_unprocessed(gateway, "CP_unknown", 14700.0, outcome=ReceiptOutcome.ORPHAN)

        report = reconciliation_worker.sweep()

        assert report.orphans_adopted == 0
        receipt = current_domain.repository_for(WebhookReceipt).get(receipt_id)
        assert receipt.outcome == ReceiptOutcome.ORPHAN.value
