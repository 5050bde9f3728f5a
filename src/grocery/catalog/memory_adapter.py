"""In-process product catalogue for development and testing."""

import json
from pathlib import Path

from grocery.catalog.port import ProductCatalog, ProductSnapshot, UnknownProductError


class InMemoryCatalog(ProductCatalog):
    def __init__(self) -> None:
        self.products: dict[str, ProductSnapshot] = {}

    @classmethod
    def from_file(cls, path: str | Path) -> "InMemoryCatalog":
        """Load ``[{"product_id", "name", "unit_price"}, ...]`` from a JSON file."""
        catalog = cls()
        for row in json.loads(Path(path).read_text(encoding="utf-8")):
            catalog.add_product(row["product_id"], row["name"], row["unit_price"])
        return catalog

    def add_product(self, product_id: str, name: str, unit_price: float) -> ProductSnapshot:
        snapshot = ProductSnapshot(product_id=str(product_id), name=name, unit_price=float(unit_price))
        self.products[snapshot.product_id] = snapshot
        return snapshot

    def lookup(self, product_id: str) -> ProductSnapshot:
        try:
            return self.products[str(product_id)]
        except KeyError:
            raise UnknownProductError(str(product_id)) from None
