from catalogsync.sync.dispatcher import BatchDispatcher, CatalogApi, CatalogApiError, DispatchError, GraphCatalogApi
from catalogsync.sync.hooks import RequestFilters
from catalogsync.sync.items import (
    InvalidOperationError,
    ItemError,
    ItemOutcome,
    ItemProcessor,
    OutcomeKind,
    ProductNotFoundError,
)
from catalogsync.sync.products import AttributeNormalizer, NullAttributeNormalizer, ProductSource

__all__ = [
    "AttributeNormalizer",
    "BatchDispatcher",
    "CatalogApi",
    "CatalogApiError",
    "DispatchError",
    "GraphCatalogApi",
    "InvalidOperationError",
    "ItemError",
    "ItemOutcome",
    "ItemProcessor",
    "NullAttributeNormalizer",
    "OutcomeKind",
    "ProductNotFoundError",
    "ProductSource",
    "RequestFilters",
]
