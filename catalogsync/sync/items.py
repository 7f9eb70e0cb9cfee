from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from catalogsync.db.models import SyncMethod
from catalogsync.sync.hooks import RequestFilters, SyncRequest
from catalogsync.sync.products import AttributeNormalizer, NullAttributeNormalizer, ProductSource

logger = logging.getLogger(__name__)


class InvalidOperationError(RuntimeError):
    pass


class ItemError(RuntimeError):
    """An item that cannot be synced; the rest of the batch carries on."""


class ProductNotFoundError(ItemError):
    pass


class ItemDataError(ItemError):
    pass


class OutcomeKind(str, Enum):
    OPERATION = "operation"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class ItemOutcome:
    item_key: str
    kind: OutcomeKind
    request: SyncRequest | None = None
    error: ItemError | None = None

    @classmethod
    def operation(cls, item_key: str, request: SyncRequest) -> "ItemOutcome":
        return cls(item_key=item_key, kind=OutcomeKind.OPERATION, request=request)

    @classmethod
    def skipped(cls, item_key: str) -> "ItemOutcome":
        return cls(item_key=item_key, kind=OutcomeKind.SKIPPED)

    @classmethod
    def failed(cls, item_key: str, error: ItemError) -> "ItemOutcome":
        return cls(item_key=item_key, kind=OutcomeKind.FAILED, error=error)


class ItemProcessor:
    def __init__(
        self,
        product_source: ProductSource,
        *,
        key_prefix: str = "p-",
        normalizer: AttributeNormalizer | None = None,
        filters: RequestFilters | None = None,
    ):
        self._products = product_source
        self._key_prefix = key_prefix
        self._normalizer = normalizer or NullAttributeNormalizer()
        self._filters = filters or RequestFilters()

    def _strip_prefix(self, item_key: str) -> str:
        return item_key.removeprefix(self._key_prefix)

    def _parse_method(self, method: Any) -> SyncMethod:
        try:
            return SyncMethod(method)
        except ValueError as exc:
            raise InvalidOperationError(f"Invalid sync request method: {method}") from exc

    def process(self, item_key: str, method: Any) -> ItemOutcome:
        """Resolve one queue entry, folding recoverable item errors into the outcome.

        ``InvalidOperationError`` is not folded: an unknown method means the job
        data is corrupt.
        """
        try:
            request = self.process_item(item_key, method)
        except ItemError as exc:
            return ItemOutcome.failed(item_key, exc)
        if not request:
            return ItemOutcome.skipped(item_key)
        return ItemOutcome.operation(item_key, request)

    def process_item(self, item_key: str, method: Any) -> SyncRequest | None:
        sync_method = self._parse_method(method)
        if sync_method == SyncMethod.UPDATE:
            return self._process_update(item_key)
        return self._process_delete(item_key)

    def _process_update(self, item_key: str) -> SyncRequest | None:
        raw_id = self._strip_prefix(item_key)
        try:
            product_id = int(raw_id)
        except ValueError as exc:
            raise ProductNotFoundError(f"No product found with ID equal to {raw_id!r}.") from exc

        product = self._products.get_by_id(product_id)
        if product is None:
            raise ProductNotFoundError(f"No product found with ID equal to {product_id}.")

        self._normalizer.normalize(product)

        if self._products.should_be_deleted(product) or not self._products.should_be_synced(product):
            logger.debug("Product %s is not eligible for sync, skipping", product_id)
            return None

        record = dict(self._products.to_update_record(product))
        retailer_id = record.pop("retailer_id", None)
        if retailer_id in (None, ""):
            raise ItemDataError(f"Product {product_id} has no retailer_id in its wire record.")
        # the batch API identifies items by retailer id
        record["id"] = retailer_id

        request: SyncRequest = {"method": SyncMethod.UPDATE.value, "data": record}
        return self._filters.apply_update(request, product)

    def _process_delete(self, item_key: str) -> SyncRequest:
        retailer_id = self._strip_prefix(item_key)
        request: SyncRequest = {"method": SyncMethod.DELETE.value, "data": {"id": retailer_id}}
        return self._filters.apply_delete(request, item_key)
