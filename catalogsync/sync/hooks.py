from __future__ import annotations

from typing import Any, Callable

SyncRequest = dict[str, Any]
UpdateRequestFilter = Callable[[SyncRequest, Any], SyncRequest]
DeleteRequestFilter = Callable[[SyncRequest, str], SyncRequest]


class RequestFilters:
    """Ordered filters applied to each outbound request before it is batched.

    Update filters receive ``(request, product)``; delete filters receive
    ``(request, item_key)`` with the still-prefixed key. Each filter returns
    the request to pass on.
    """

    def __init__(self) -> None:
        self._update_filters: list[UpdateRequestFilter] = []
        self._delete_filters: list[DeleteRequestFilter] = []

    def add_update_filter(self, func: UpdateRequestFilter) -> UpdateRequestFilter:
        self._update_filters.append(func)
        return func

    def add_delete_filter(self, func: DeleteRequestFilter) -> DeleteRequestFilter:
        self._delete_filters.append(func)
        return func

    def apply_update(self, request: SyncRequest, product: Any) -> SyncRequest:
        for func in self._update_filters:
            request = func(request, product)
        return request

    def apply_delete(self, request: SyncRequest, item_key: str) -> SyncRequest:
        for func in self._delete_filters:
            request = func(request, item_key)
        return request
