from __future__ import annotations

from typing import Any, Protocol


class ProductSource(Protocol):
    """Read side of the shop catalog, as seen by the sync job."""

    def get_by_id(self, product_id: int) -> Any | None: ...

    def should_be_deleted(self, product: Any) -> bool: ...

    def should_be_synced(self, product: Any) -> bool: ...

    def to_update_record(self, product: Any) -> dict[str, Any]:
        """Wire record for the product; must carry a ``retailer_id`` field."""
        ...


class AttributeNormalizer(Protocol):
    def normalize(self, product: Any) -> None: ...


class NullAttributeNormalizer:
    def normalize(self, product: Any) -> None:
        return None
