"""Application tests for OrderEngine — checkout, payment initiation, progression and cancellation."""

import pytest
from grocery.exceptions import IllegalTransitionError, InsufficientStockError
from grocery.inventory.ledger import ledger
from grocery.order.engine import order_engine
from grocery.order.order import Order, OrderPaymentStatus, OrderStatus
from grocery.payment.gateway import GatewayOutcome
from grocery.payment.payment import FailureKind, Payment, PaymentStatus
from protean import current_domain
from protean.exceptions import ValidationError


def _payments(order_id):
    return current_domain.repository_for(Payment).for_order(order_id)


class TestCreateOrder:
    def test_places_pending_order_with_prices_from_catalogue(self, place_order):
        order = place_order()

        assert order.status == OrderStatus.PENDING.value
        assert order.payment_status == OrderPaymentStatus.PENDING.value
        assert order.subtotal == 11700.0
        assert order.delivery_fee == 3000.0
        assert order.total_amount == 14700.0
        assert order.order_number.startswith("FG")
        assert {item.name for item in order.line_items} == {"Tomatoes 1kg", "Kilombero Rice 5kg"}

    def test_reserves_inventory(self, place_order):
        place_order()
        assert ledger.quantity("tomatoes-1kg") == 18
        assert ledger.quantity("rice-5kg") == 19

    def test_initiates_gateway_payment(self, place_order, gateway):
        order = place_order()

        payments = _payments(str(order.id))
        assert len(payments) == 1
        assert payments[0].status == PaymentStatus.PENDING.value
        assert payments[0].amount == 14700.0
        assert payments[0].external_transaction_id.startswith("CP_")
        assert payments[0].checkout_reference.startswith("https://checkout.fake/")
        assert gateway.calls[0]["customer_contact"] == "+255712345678"
        assert gateway.calls[0]["delivery_fee"] == 3000.0
        assert gateway.calls[0]["tax"] == 0.0

    def test_price_snapshot_survives_catalogue_change(self, place_order, catalog):
        order = place_order()
        catalog.add_product("rice-5kg", "Kilombero Rice 5kg", 9900.0)

        stored = order_engine.get(str(order.id))
        rice = next(item for item in stored.line_items if item.product_id == "rice-5kg")
        assert rice.unit_price == 6700.0
        assert stored.total_amount == 14700.0

    def test_unknown_product_rejected(self, place_order):
        with pytest.raises(ValidationError) as exc:
            place_order(line_items=[{"product_id": "caviar", "quantity": 1}])
        assert "line_items" in exc.value.messages

    def test_invalid_input_reserves_nothing(self, place_order, delivery_info):
        delivery_info["phone"] = "12345"
        with pytest.raises(ValidationError):
            place_order()
        assert ledger.quantity("rice-5kg") == 20
        assert current_domain.repository_for(Order).with_status(OrderStatus.PENDING.value) == []


class TestAllOrNothingReservation:
    def test_short_line_releases_earlier_lines(self, place_order, stock):
        # Only 1 tray of eggs left; the rice line is reserved first
        ledger.reserve("eggs-tray", 19, reason="shrinkage", actor="warehouse")

        with pytest.raises(InsufficientStockError):
            place_order(
                line_items=[
                    {"product_id": "rice-5kg", "quantity": 3},
                    {"product_id": "eggs-tray", "quantity": 2},
                ]
            )

        assert ledger.quantity("rice-5kg") == 20
        assert ledger.quantity("eggs-tray") == 1
        assert current_domain.repository_for(Order).with_status(OrderStatus.PENDING.value) == []

    def test_compensating_movements_are_logged(self, place_order):
        ledger.reserve("eggs-tray", 20, reason="shrinkage", actor="warehouse")
        with pytest.raises(InsufficientStockError):
            place_order(
                line_items=[
                    {"product_id": "rice-5kg", "quantity": 3},
                    {"product_id": "eggs-tray", "quantity": 1},
                ]
            )
        assert [m.delta for m in ledger.movements("rice-5kg")] == [20, -3, 3]


class TestCashOnDelivery:
    def test_confirmed_immediately(self, place_order, gateway):
        order = place_order(payment_method="cash_on_delivery")

        assert order.status == OrderStatus.CONFIRMED.value
        assert order.payment_status == OrderPaymentStatus.COMPLETED.value
        assert gateway.calls == []
        payments = _payments(str(order.id))
        assert len(payments) == 1
        assert payments[0].status == PaymentStatus.COMPLETED.value

    def test_no_payment_retry(self, place_order):
        order = place_order(payment_method="cash_on_delivery")
        with pytest.raises(IllegalTransitionError):
            order_engine.retry_payment(str(order.id), "cust-001")


class TestGatewayFailures:
    def test_transient_failure_is_retried(self, place_order, gateway):
        gateway.configure(unavailable_times=2)
        order = place_order()

        initiations = [c for c in gateway.calls if c["method"] == "initiate"]
        assert len(initiations) == 3
        assert order.payment_status == OrderPaymentStatus.PENDING.value
        assert _payments(str(order.id))[0].status == PaymentStatus.PENDING.value

    def test_gateway_down_after_retries(self, place_order, gateway):
        gateway.configure(unavailable_times=10)
        order = place_order()

        assert len(gateway.calls) == 3
        assert order.status == OrderStatus.PENDING.value
        assert order.payment_status == OrderPaymentStatus.FAILED.value
        payment = _payments(str(order.id))[0]
        assert payment.status == PaymentStatus.FAILED.value
        assert payment.failure_kind == FailureKind.TRANSIENT.value

    def test_permanent_rejection_not_retried(self, place_order, gateway):
        gateway.configure(should_succeed=False, failure_reason="Number not registered")
        order = place_order()

        assert len(gateway.calls) == 1
        assert order.payment_status == OrderPaymentStatus.FAILED.value
        payment = _payments(str(order.id))[0]
        assert payment.failure_kind == FailureKind.PERMANENT.value
        assert payment.failure_reason == "Number not registered"

    def test_retry_payment_after_failure(self, place_order, gateway):
        gateway.configure(should_succeed=False)
        order = place_order()
        gateway.configure(should_succeed=True)

        order = order_engine.retry_payment(str(order.id), "cust-001", phone="0754000111")

        assert order.payment_status == OrderPaymentStatus.PENDING.value
        payments = _payments(str(order.id))
        assert [p.status for p in payments] == [PaymentStatus.FAILED.value, PaymentStatus.PENDING.value]
        assert gateway.calls[-1]["customer_contact"] == "0754000111"

    def test_retry_requires_failed_payment(self, place_order):
        order = place_order()
        with pytest.raises(IllegalTransitionError):
            order_engine.retry_payment(str(order.id), "cust-001")


class TestAdvanceStatus:
    def _confirmed(self, place_order):
        return place_order(payment_method="cash_on_delivery")

    def test_admin_path(self, place_order):
        order = self._confirmed(place_order)
        order = order_engine.advance_status(str(order.id), OrderStatus.PREPARING.value, "admin-1")
        order = order_engine.advance_status(str(order.id), OrderStatus.READY_FOR_PICKUP.value, "admin-1")

        assert order.status == OrderStatus.READY_FOR_PICKUP.value
        latest = max(order.status_history, key=lambda change: change.changed_at)
        assert latest.actor == "admin-1"

    def test_out_for_delivery_requires_a_delivery(self, place_order):
        order = self._confirmed(place_order)
        order_engine.advance_status(str(order.id), OrderStatus.PREPARING.value, "admin-1")
        order_engine.advance_status(str(order.id), OrderStatus.READY_FOR_PICKUP.value, "admin-1")

        with pytest.raises(IllegalTransitionError):
            order_engine.advance_status(str(order.id), OrderStatus.OUT_FOR_DELIVERY.value, "admin-1")
        with pytest.raises(IllegalTransitionError):
            order_engine.advance_status(
                str(order.id), OrderStatus.OUT_FOR_DELIVERY.value, "admin-1", delivery_id="no-such-delivery"
            )

    def test_cannot_confirm_through_admin(self, place_order):
        order = place_order()
        with pytest.raises(IllegalTransitionError):
            order_engine.advance_status(str(order.id), OrderStatus.CONFIRMED.value, "admin-1")

    def test_unpaid_order_cannot_be_prepared(self, place_order):
        order = place_order()
        with pytest.raises(IllegalTransitionError):
            order_engine.advance_status(str(order.id), OrderStatus.PREPARING.value, "admin-1")


class TestCancelOrder:
    def test_cancel_pending_releases_stock_and_payment(self, place_order):
        order = place_order()
        order = order_engine.cancel_order(str(order.id), "Customer request", "cust-001")

        assert order.status == OrderStatus.CANCELLED.value
        assert order.inventory_reserved is False
        assert ledger.quantity("tomatoes-1kg") == 20
        assert ledger.quantity("rice-5kg") == 20
        assert _payments(str(order.id))[0].status == PaymentStatus.CANCELLED.value

    def test_cancel_preparing_order(self, place_order):
        order = place_order(payment_method="cash_on_delivery")
        order_engine.advance_status(str(order.id), OrderStatus.PREPARING.value, "admin-1")

        order = order_engine.cancel_order(str(order.id), "Out of stock on shelf", "admin-1")

        assert order.status == OrderStatus.CANCELLED.value
        assert ledger.quantity("rice-5kg") == 20

    def test_cancel_twice_is_rejected_and_releases_once(self, place_order):
        order = place_order()
        order_engine.cancel_order(str(order.id), "Customer request", "cust-001")
        with pytest.raises(IllegalTransitionError):
            order_engine.cancel_order(str(order.id), "Again", "cust-001")
        assert ledger.quantity("rice-5kg") == 20

    def test_release_inventory_is_idempotent(self, place_order):
        order = place_order()
        order_engine.cancel_order(str(order.id), "Customer request", "cust-001")
        assert order_engine.release_inventory(str(order.id), "sweep") == 0
        assert ledger.quantity("tomatoes-1kg") == 20

    def test_release_refused_for_live_order(self, place_order):
        order = place_order()
        with pytest.raises(IllegalTransitionError):
            order_engine.release_inventory(str(order.id), "sweep")


class TestApplyPaymentResult:
    def test_completion_confirms(self, place_order):
        order = place_order()
        payment = _payments(str(order.id))[0]

        result = order_engine.apply_payment_result(
            str(order.id), payment.external_transaction_id, GatewayOutcome.COMPLETED
        )

        assert result == "applied"
        order = order_engine.get(str(order.id))
        assert order.status == OrderStatus.CONFIRMED.value
        assert order.payment_status == OrderPaymentStatus.COMPLETED.value

    def test_redelivered_completion_is_duplicate(self, place_order):
        order = place_order()
        ext = _payments(str(order.id))[0].external_transaction_id

        order_engine.apply_payment_result(str(order.id), ext, GatewayOutcome.COMPLETED)
        again = order_engine.apply_payment_result(str(order.id), ext, GatewayOutcome.COMPLETED)

        assert again == "duplicate"
        order = order_engine.get(str(order.id))
        assert [h.to_status for h in order.status_history].count(OrderStatus.CONFIRMED.value) == 1

    def test_failure_cancels_and_releases(self, place_order):
        order = place_order()
        ext = _payments(str(order.id))[0].external_transaction_id

        result = order_engine.apply_payment_result(
            str(order.id), ext, GatewayOutcome.FAILED, failure_reason="Insufficient balance"
        )

        assert result == "applied"
        order = order_engine.get(str(order.id))
        assert order.status == OrderStatus.CANCELLED.value
        assert order.payment_status == OrderPaymentStatus.FAILED.value
        assert order.inventory_reserved is False
        assert ledger.quantity("rice-5kg") == 20

    def test_processing_is_recorded(self, place_order):
        order = place_order()
        ext = _payments(str(order.id))[0].external_transaction_id

        assert order_engine.apply_payment_result(str(order.id), ext, GatewayOutcome.PROCESSING) == "applied"
        assert order_engine.apply_payment_result(str(order.id), ext, GatewayOutcome.PROCESSING) == "duplicate"
        assert order_engine.get(str(order.id)).payment_status == OrderPaymentStatus.PROCESSING.value

    def test_completion_after_cancellation_is_anomaly(self, place_order):
        order = place_order()
        ext = _payments(str(order.id))[0].external_transaction_id
        order_engine.cancel_order(str(order.id), "Customer request", "cust-001")

        result = order_engine.apply_payment_result(str(order.id), ext, GatewayOutcome.COMPLETED)

        assert result == "anomaly"
        order = order_engine.get(str(order.id))
        assert order.status == OrderStatus.CANCELLED.value
        assert order.payment_status != OrderPaymentStatus.COMPLETED.value

    def test_unknown_external_id_is_anomaly(self, place_order):
        order = place_order()
        assert order_engine.apply_payment_result(str(order.id), "CP_nope", GatewayOutcome.COMPLETED) == "anomaly"

    def test_expire_payment(self, place_order):
        order = place_order()
        payment = _payments(str(order.id))[0]

        order_engine.expire_payment(str(payment.id))

        payment = current_domain.repository_for(Payment).get(str(payment.id))
        assert payment.status == PaymentStatus.FAILED.value
        assert payment.failure_kind == FailureKind.TIMEOUT.value
        order = order_engine.get(str(order.id))
        assert order.status == OrderStatus.CANCELLED.value
        assert ledger.quantity("rice-5kg") == 20
