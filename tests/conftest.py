import os
from datetime import date, timedelta
from pathlib import Path

import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    """Pytest hook to run before collecting tests.

    Fetch and activate the domain by pushing the associated domain_context. The activated domain can then be referred to elsewhere as `current_domain`
    """
    os.environ["PROTEAN_ENV"] = session.config.option.env
    os.environ["GROCERY_GATEWAY"] = "fake"
    os.environ["GROCERY_GATEWAY_RETRY_WAIT_SECONDS"] = "0"
    os.environ["GROCERY_GATEWAY_RETRY_MAX_WAIT_SECONDS"] = "0"
    os.environ["GROCERY_LOCK_TIMEOUT_SECONDS"] = "5"

    from grocery.domain import grocery

    grocery.init()
    grocery.domain_context().push()


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = Path(item.fspath)

        if "/domain/" in str(test_path):
            item.add_marker(pytest.mark.domain)
        elif "/application/" in str(test_path):
            item.add_marker(pytest.mark.application)
        elif "/integration/" in str(test_path):
            item.add_marker(pytest.mark.integration)
            # Integration tests are often slower
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)


@pytest.fixture(scope="session")
def grocery_bed():
    from grocery.domain import grocery
    from protean.integrations.pytest import DomainFixture

    bed = DomainFixture(grocery)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(grocery_bed):
    with grocery_bed.domain_context():
        yield


@pytest.fixture(autouse=True)
def run_around_tests():
    """Fixture to automatically cleanup infrastructure after every test"""
    from grocery.catalog import reset_catalog
    from grocery.config import get_settings
    from grocery.payment.gateway import reset_gateway

    get_settings.cache_clear()
    reset_gateway()
    reset_catalog()

    yield

    from protean import current_domain

    # Clear all databases
    for _, provider in current_domain.providers.items():
        provider._data_reset()

    # Drain event stores
    current_domain.event_store.store._data_reset()

    reset_gateway()
    reset_catalog()
    get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Shared grocery fixtures
# ---------------------------------------------------------------------------
PRODUCTS = {
    "tomatoes-1kg": ("Tomatoes 1kg", 2500.0),
    "rice-5kg": ("Kilombero Rice 5kg", 6700.0),
    "milk-1l": ("Fresh Milk 1L", 2000.0),
    "eggs-tray": ("Eggs Tray (30)", 12000.0),
}


@pytest.fixture()
def gateway():
    from grocery.payment.gateway import FakeGateway, set_gateway

    fake = FakeGateway()
    set_gateway(fake)
    return fake


@pytest.fixture()
def catalog():
    from grocery.catalog import InMemoryCatalog, set_catalog

    memory = InMemoryCatalog()
    for product_id, (name, price) in PRODUCTS.items():
        memory.add_product(product_id, name, price)
    set_catalog(memory)
    return memory


@pytest.fixture()
def stock(catalog):
    """Restock helper: ``stock("rice-5kg", 10)``."""
    from grocery.inventory.ledger import ledger

    def _stock(product_id: str, quantity: int) -> int:
        ledger.restock(product_id, quantity, actor="warehouse")
        return ledger.quantity(product_id)

    for product_id in PRODUCTS:
        _stock(product_id, 20)
    return _stock


@pytest.fixture()
def delivery_info():
    return {
        "address": "Plot 12, Msasani Peninsula, Dar es Salaam",
        "phone": "+255712345678",
        "date": date.today() + timedelta(days=1),
        "time_window": "09:00-12:00",
        "notes": "Call on arrival",
    }


@pytest.fixture()
def basket():
    """2 x tomatoes (5,000) + 1 x rice (6,700) = 11,700 TZS."""
    return [
        {"product_id": "tomatoes-1kg", "quantity": 2},
        {"product_id": "rice-5kg", "quantity": 1},
    ]


@pytest.fixture()
def place_order(gateway, stock, basket, delivery_info):
    from grocery.order.engine import order_engine

    def _place(payment_method: str = "mpesa", line_items=None, customer_id: str = "cust-001"):
        return order_engine.create_order(
            customer_id=customer_id,
            line_items=line_items or basket,
            delivery=delivery_info,
            payment_method=payment_method,
            actor=customer_id,
        )

    return _place
