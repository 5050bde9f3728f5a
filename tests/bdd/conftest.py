"""Shared BDD fixtures and step definitions for the grocery lifecycle."""

from datetime import UTC, datetime, timedelta

import pytest
from grocery.delivery.engine import delivery_engine
from grocery.inventory.ledger import ledger
from grocery.order.engine import order_engine
from grocery.payment.gateway import GatewayOutcome
from grocery.payment.payment import Payment
from grocery.reconciliation.worker import reconciliation_worker
from protean import current_domain
from pytest_bdd import given, parsers, then, when

_OUTCOMES = {
    "confirms": GatewayOutcome.COMPLETED,
    "fails": GatewayOutcome.FAILED,
    "cancels": GatewayOutcome.CANCELLED,
}


@pytest.fixture()
def story():
    """Mutable scenario state shared between steps."""
    return {"order_id": None, "delivery_id": None, "acks": []}


def _external_id(order_id):
    return current_domain.repository_for(Payment).for_order(order_id)[-1].external_transaction_id


# ---------------------------------------------------------------------------
# Given
# ---------------------------------------------------------------------------
@given(parsers.cfparse("the store has {quantity:d} units of each product"))
def _(stock, quantity):
    for product_id in ("tomatoes-1kg", "rice-5kg", "milk-1l", "eggs-tray"):
        shortfall = quantity - ledger.quantity(product_id)
        if shortfall > 0:
            stock(product_id, shortfall)
        assert ledger.quantity(product_id) >= quantity


@given(
    parsers.cfparse('a customer checks out {tomatoes:d} "tomatoes-1kg" and {rice:d} "rice-5kg" paying with "{method}"')
)
def _(story, place_order, tomatoes, rice, method):
    order = place_order(
        payment_method=method,
        line_items=[
            {"product_id": "tomatoes-1kg", "quantity": tomatoes},
            {"product_id": "rice-5kg", "quantity": rice},
        ],
    )
    story["order_id"] = str(order.id)


@given("the payment gateway is down")
def _(gateway):
    gateway.configure(unavailable_times=100)


# ---------------------------------------------------------------------------
# When
# ---------------------------------------------------------------------------
@when(parsers.cfparse("the gateway {verb} the payment"))
def _(story, gateway, verb):
    order = order_engine.get(story["order_id"])
    body, signature = gateway.build_webhook(_external_id(story["order_id"]), _OUTCOMES[verb], order.total_amount)
    story["acks"].append(reconciliation_worker.handle_webhook(body, signature))


@when("the gateway sends the same confirmation again")
def _(story, gateway):
    order = order_engine.get(story["order_id"])
    body, signature = gateway.build_webhook(
        _external_id(story["order_id"]), GatewayOutcome.COMPLETED, order.total_amount
    )
    story["acks"].append(reconciliation_worker.handle_webhook(body, signature))


@when(parsers.cfparse("the reconciliation sweep runs {minutes:d} minutes later"))
def _(story, minutes):
    story["report"] = reconciliation_worker.sweep(now=datetime.now(UTC) + timedelta(minutes=minutes))


@when(parsers.cfparse('the store moves the order to "{status}"'))
def _(story, status):
    order_engine.advance_status(story["order_id"], status, "store-admin")


@when("the customer cancels the order")
def _(story):
    order_engine.cancel_order(story["order_id"], "Changed my mind", "cust-001")


@when(parsers.cfparse('courier "{name}" is assigned'))
def _(story, name):
    delivery = delivery_engine.assign_courier(story["order_id"], f"courier-{name.lower()}", name, "dispatch")
    story["delivery_id"] = str(delivery.id)


@when("the courier picks up the order")
def _(story):
    delivery_engine.mark_picked_up(story["delivery_id"], "courier")


@when(parsers.cfparse("the courier reports location {latitude:g}, {longitude:g} from {minutes:d} minutes ago"))
def _(story, latitude, longitude, minutes):
    recorded_at = datetime.now(UTC) - timedelta(minutes=minutes)
    delivery_engine.record_location(story["delivery_id"], latitude, longitude, recorded_at=recorded_at)


@when("the courier delivers the order")
def _(story):
    delivery_engine.mark_delivered(story["delivery_id"], "courier", proof_of_delivery="photo.jpg")


# ---------------------------------------------------------------------------
# Then
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the order is "{status}"'))
def _(story, status):
    assert order_engine.get(story["order_id"]).status == status


@then(parsers.cfparse('the order payment is "{payment_status}"'))
def _(story, payment_status):
    assert order_engine.get(story["order_id"]).payment_status == payment_status


@then(parsers.cfparse("the order total is {total:g} TZS"))
def _(story, total):
    assert order_engine.get(story["order_id"]).total_amount == total


@then(parsers.cfparse('the delivery is "{status}"'))
def _(story, status):
    assert delivery_engine.get(story["delivery_id"]).status == status


@then(parsers.cfparse("the courier is at {latitude:g}, {longitude:g}"))
def _(story, latitude, longitude):
    current = delivery_engine.current_location(story["delivery_id"])
    assert (current.latitude, current.longitude) == (latitude, longitude)


@then(parsers.cfparse("{count:d} locations are on record"))
def _(story, count):
    assert len(delivery_engine.location_history(story["delivery_id"])) == count


@then(parsers.cfparse('the stock of "{product_id}" is {quantity:d}'))
def _(product_id, quantity):
    assert ledger.quantity(product_id) == quantity


@then(parsers.cfparse('the last webhook was recorded as "{outcome}"'))
def _(story, outcome):
    assert story["acks"][-1].outcome == outcome


@then(parsers.cfparse("{count:d} receipt needs attention"))
def _(count):
    assert len(reconciliation_worker.anomalies()) == count
