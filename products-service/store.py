"""
Product storage.

Handlers never touch a module-level list directly: they receive a
``ProductStore`` through the ``get_store`` dependency in ``main``.
``InMemoryProductStore`` keeps records in insertion order and is what the
service runs on; a persistent backend only needs the same five methods.
"""
from typing import Iterable, List, Optional, Protocol

from models import Product


class ProductStore(Protocol):
    def list(self) -> List[Product]: ...

    def get(self, product_id: str) -> Optional[Product]: ...

    def insert(self, product: Product) -> Product: ...

    def update(self, product_id: str, product: Product) -> Optional[Product]: ...

    def delete(self, product_id: str) -> Optional[Product]: ...

    def __len__(self) -> int: ...


class InMemoryProductStore:
    """Process-local list of products, ordered by insertion."""

    def __init__(self, products: Optional[Iterable[Product]] = None):
        self._products: List[Product] = []
        for product in products or []:
            self.insert(product)

    def __len__(self) -> int:
        return len(self._products)

    def _index(self, product_id: str) -> int:
        for idx, product in enumerate(self._products):
            if product.id == product_id:
                return idx
        return -1

    def list(self) -> List[Product]:
        return list(self._products)

    def get(self, product_id: str) -> Optional[Product]:
        idx = self._index(product_id)
        return self._products[idx] if idx != -1 else None

    def insert(self, product: Product) -> Product:
        if self._index(product.id) != -1:
            raise ValueError(f"Product id {product.id} already exists")
        self._products.append(product)
        return product

    def update(self, product_id: str, product: Product) -> Optional[Product]:
        """Replace every field of the stored record; the id never changes."""
        idx = self._index(product_id)
        if idx == -1:
            return None
        updated = product.model_copy(update={"id": product_id})
        self._products[idx] = updated
        return updated

    def delete(self, product_id: str) -> Optional[Product]:
        idx = self._index(product_id)
        if idx == -1:
            return None
        return self._products.pop(idx)
