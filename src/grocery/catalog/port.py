"""Product catalogue port.

The storefront's catalogue lives outside this service. The engines only need
the current display name and unit price of a product at the moment an order
is placed, and they snapshot both onto the order line.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class ProductSnapshot:
    product_id: str
    name: str
    unit_price: float


class UnknownProductError(LookupError):
    """The catalogue has no product with this id."""


class ProductCatalog(ABC):
    """Abstract catalogue lookup."""

    @abstractmethod
    def lookup(self, product_id: str) -> ProductSnapshot:
        """Return the current name and price, or raise ``UnknownProductError``."""
        ...
