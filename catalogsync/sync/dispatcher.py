from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol, Sequence

import httpx

from catalogsync.core.config import Settings
from catalogsync.sync.hooks import SyncRequest

logger = logging.getLogger(__name__)


class CatalogApiError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DispatchError(RuntimeError):
    def __init__(self, catalog_id: str | None, cause: BaseException | str):
        self.catalog_id = catalog_id
        self.cause = cause
        super().__init__(f"Batch dispatch to catalog {catalog_id or '<unset>'} failed: {cause}")


class CatalogApi(Protocol):
    def send(self, catalog_id: str, operations: Sequence[SyncRequest]) -> Mapping[str, Any]:
        """Send one batch; raise ``CatalogApiError`` on any failure."""
        ...


class GraphCatalogApi:
    """Catalog batch endpoint of the Graph API."""

    def __init__(
        self,
        *,
        base_url: str,
        api_version: str,
        access_token: str | None,
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self._access_token = access_token
        self._client = httpx.Client(
            base_url=f"{base_url.rstrip('/')}/{api_version}",
            timeout=timeout_seconds,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, *, transport: httpx.BaseTransport | None = None) -> "GraphCatalogApi":
        token = settings.access_token.get_secret_value() if settings.access_token is not None else None
        return cls(
            base_url=settings.graph_api_base_url,
            api_version=settings.graph_api_version,
            access_token=token,
            timeout_seconds=settings.http_timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "GraphCatalogApi":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def send(self, catalog_id: str, operations: Sequence[SyncRequest]) -> Mapping[str, Any]:
        if not self._access_token:
            raise CatalogApiError("No access token configured for the catalog API")

        body = {
            "access_token": self._access_token,
            "allow_upsert": True,
            "item_type": "PRODUCT_ITEM",
            "requests": [
                {"method": str(operation["method"]).upper(), "data": operation["data"]} for operation in operations
            ],
        }
        try:
            response = self._client.post(f"/{catalog_id}/items_batch", json=body)
        except httpx.HTTPError as exc:
            raise CatalogApiError(f"Catalog API request failed: {exc}") from exc
        except (TypeError, ValueError) as exc:
            # raised while encoding the body, e.g. a Decimal left in a record
            raise CatalogApiError(f"Catalog API request could not be encoded: {exc}") from exc

        if response.status_code >= 400:
            raise CatalogApiError(
                f"Catalog API returned HTTP {response.status_code}: {self._error_detail(response)}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise CatalogApiError("Catalog API returned a non-JSON body", status_code=response.status_code) from exc
        if not isinstance(payload, dict):
            raise CatalogApiError("Catalog API returned an unexpected payload", status_code=response.status_code)
        return payload

    def _error_detail(self, response: httpx.Response) -> str:
        try:
            error = response.json().get("error", {})
        except (ValueError, AttributeError):
            return response.text[:200]
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        return response.text[:200]


class BatchDispatcher:
    def __init__(self, api: CatalogApi, *, max_attempts: int = 1):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._api = api
        self._max_attempts = max_attempts

    def send_item_updates(self, catalog_id: str | None, operations: Sequence[SyncRequest]) -> list[Any]:
        if not operations:
            raise ValueError("operations cannot be empty")
        if not catalog_id:
            raise DispatchError(catalog_id, "no product catalog is configured")

        last_error: CatalogApiError | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                response = self._api.send(catalog_id, list(operations))
            except CatalogApiError as exc:
                last_error = exc
                logger.warning(
                    "Batch dispatch attempt %d/%d to catalog %s failed: %s",
                    attempt,
                    self._max_attempts,
                    catalog_id,
                    exc,
                )
                continue
            except Exception as exc:
                # adapters outside this module may fail in their own ways; those are not retried
                logger.error("Batch dispatch to catalog %s failed unexpectedly: %s", catalog_id, exc)
                raise DispatchError(catalog_id, exc) from exc
            handles = response.get("handles")
            return list(handles) if isinstance(handles, list) else []

        assert last_error is not None
        raise DispatchError(catalog_id, last_error) from last_error
