"""Product catalogue factory.

Provides get_catalog() / set_catalog() so the storefront's catalogue service
can be plugged in. Defaults to an InMemoryCatalog, seeded from
GROCERY_CATALOG_FILE when that is set.
"""

from grocery.catalog.memory_adapter import InMemoryCatalog
from grocery.catalog.port import ProductCatalog, ProductSnapshot, UnknownProductError
from grocery.config import get_settings

_current_catalog: ProductCatalog | None = None


def get_catalog() -> ProductCatalog:
    """Return the current product catalogue."""
    global _current_catalog
    if _current_catalog is None:
        catalog_file = get_settings().catalog_file
        _current_catalog = InMemoryCatalog.from_file(catalog_file) if catalog_file else InMemoryCatalog()
    return _current_catalog


def set_catalog(catalog: ProductCatalog) -> None:
    """Override the active product catalogue (useful for tests)."""
    global _current_catalog
    _current_catalog = catalog


def reset_catalog() -> None:
    """Reset to default catalogue."""
    global _current_catalog
    _current_catalog = None


__all__ = [
    "InMemoryCatalog",
    "ProductCatalog",
    "ProductSnapshot",
    "UnknownProductError",
    "get_catalog",
    "reset_catalog",
    "set_catalog",
]
