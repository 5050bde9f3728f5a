"""Races on a single order are decided one caller at a time."""

import threading

import pytest
from grocery.domain import grocery
from grocery.exceptions import LockTimeoutError
from grocery.inventory.ledger import ledger
from grocery.locks import KeyedLocks
from grocery.order.engine import order_engine
from grocery.order.order import OrderPaymentStatus, OrderStatus
from grocery.payment.gateway import GatewayOutcome
from grocery.payment.payment import Payment
from protean import current_domain


def _run_together(*targets):
    """Start every target at the same moment; collect results or exceptions."""
    barrier = threading.Barrier(len(targets))
    results = [None] * len(targets)

    def _runner(index, target):
        with grocery.domain_context():
            barrier.wait()
            try:
                results[index] = target()
            except Exception as exc:
                results[index] = exc

    threads = [threading.Thread(target=_runner, args=(i, t)) for i, t in enumerate(targets)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)
    return results


class TestCancelVersusPayment:
    @pytest.mark.parametrize("attempt", range(5))
    def test_exactly_one_outcome_wins(self, place_order, attempt):
        order = place_order()
        order_id = str(order.id)
        ext = current_domain.repository_for(Payment).for_order(order_id)[0].external_transaction_id

        cancel_result, payment_result = _run_together(
            lambda: order_engine.cancel_order(order_id, "Customer request", "cust-001"),
            lambda: order_engine.apply_payment_result(order_id, ext, GatewayOutcome.COMPLETED),
        )

        # Confirmed orders may still be cancelled, so either way the order ends cancelled
        assert not isinstance(cancel_result, Exception)
        assert cancel_result.status == OrderStatus.CANCELLED.value
        assert payment_result in ("applied", "anomaly")

        order = order_engine.get(order_id)
        assert order.status == OrderStatus.CANCELLED.value
        assert order.inventory_reserved is False
        assert ledger.quantity("rice-5kg") == 20

        statuses = [h.to_status for h in order.status_history]
        if payment_result == "applied":
            assert order.payment_status == OrderPaymentStatus.COMPLETED.value
            assert OrderStatus.CONFIRMED.value in statuses
        else:
            assert order.payment_status != OrderPaymentStatus.COMPLETED.value
            assert OrderStatus.CONFIRMED.value not in statuses

    def test_duplicate_completions_apply_once(self, place_order):
        order = place_order()
        order_id = str(order.id)
        ext = current_domain.repository_for(Payment).for_order(order_id)[0].external_transaction_id

        results = _run_together(
            *[lambda: order_engine.apply_payment_result(order_id, ext, GatewayOutcome.COMPLETED) for _ in range(4)]
        )

        assert sorted(results) == ["applied", "duplicate", "duplicate", "duplicate"]
        order = order_engine.get(order_id)
        assert [h.to_status for h in order.status_history].count(OrderStatus.CONFIRMED.value) == 1


class TestKeyedLocks:
    def test_reentrant_for_the_same_thread(self):
        locks = KeyedLocks("test", timeout=0.1)
        with locks.hold("ord-1"):
            with locks.hold("ord-1"):
                assert len(locks) == 1
            assert len(locks) == 1
        assert len(locks) == 0

    def test_released_keys_are_forgotten(self):
        locks = KeyedLocks("test", timeout=0.1)
        for number in range(100):
            with locks.hold(f"ord-{number}"):
                pass
        assert len(locks) == 0

    def test_failing_body_still_forgets_the_key(self):
        locks = KeyedLocks("test", timeout=0.1)
        with pytest.raises(RuntimeError):
            with locks.hold("ord-1"):
                raise RuntimeError("boom")
        assert len(locks) == 0

    def test_times_out_when_held_elsewhere(self):
        locks = KeyedLocks("test", timeout=0.05)
        held = threading.Event()
        release = threading.Event()

        def _holder():
            with locks.hold("ord-1"):
                held.set()
                release.wait(2)

        thread = threading.Thread(target=_holder)
        thread.start()
        held.wait(2)
        try:
            with pytest.raises(LockTimeoutError):
                with locks.hold("ord-1"):
                    pass
            assert len(locks) == 1
            # Other keys are independent
            with locks.hold("ord-2"):
                pass
        finally:
            release.set()
            thread.join()
        assert len(locks) == 0
