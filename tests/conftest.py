from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator

import pytest

import catalogsync.db.session as db_session_module
from catalogsync.core.config import Settings, get_settings
from catalogsync.db.init_db import initialize_database
from catalogsync.sync.dispatcher import CatalogApiError


@dataclass
class FakeProduct:
    id: int
    retailer_id: str
    name: str = "Product"
    price: int = 1000
    deleted: bool = False
    visible: bool = True


class FakeProductSource:
    def __init__(self, products: list[FakeProduct] | None = None):
        self.products = {product.id: product for product in products or []}
        self.lookups: list[int] = []
        self.broken_ids: set[int] = set()

    def get_by_id(self, product_id: int) -> FakeProduct | None:
        self.lookups.append(product_id)
        if product_id in self.broken_ids:
            raise RuntimeError(f"storage backend crashed while loading {product_id}")
        return self.products.get(product_id)

    def should_be_deleted(self, product: FakeProduct) -> bool:
        return product.deleted

    def should_be_synced(self, product: FakeProduct) -> bool:
        return product.visible

    def to_update_record(self, product: FakeProduct) -> dict[str, Any]:
        return {
            "id": f"internal-{product.id}",
            "retailer_id": product.retailer_id,
            "title": product.name,
            "price": product.price,
        }


class FakeCatalogApi:
    def __init__(self, *, handles: list[Any] | None = None, failures: int = 0):
        self.calls: list[tuple[str, list[dict[str, Any]]]] = []
        self._handles = list(handles or [])
        self.failures = failures

    def send(self, catalog_id: str, operations: list[dict[str, Any]]) -> dict[str, Any]:
        self.calls.append((catalog_id, list(operations)))
        if self.failures > 0:
            self.failures -= 1
            raise CatalogApiError("simulated network error")
        if self._handles:
            return {"handles": self._handles.pop(0)}
        return {"handles": [f"handle-{len(self.calls)}"]}


def make_products(count: int) -> list[FakeProduct]:
    return [FakeProduct(id=index, retailer_id=f"sku-{index}") for index in range(1, count + 1)]


@pytest.fixture
def configure(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Callable[..., Settings]]:
    def _configure(**overrides: Any) -> Settings:
        env = {
            "STATE_ROOT": (tmp_path / "state").as_posix(),
            "CATALOG_ID": "catalog-1",
            "ACCESS_TOKEN": "token",
            "DISPATCH_FAILURE_POLICY": "advance",
            "DISPATCH_MAX_ATTEMPTS": "1",
            "TIME_LIMIT_SECONDS": "600",
            "MEMORY_LIMIT_MIB": str(1024 * 1024),
        }
        env.update({key.upper(): str(value) for key, value in overrides.items()})
        for key, value in env.items():
            monkeypatch.setenv(f"CATALOGSYNC_{key}", value)

        get_settings.cache_clear()
        db_session_module.reset_session_state()
        initialize_database()
        return get_settings()

    yield _configure
    get_settings.cache_clear()
    db_session_module.reset_session_state()
