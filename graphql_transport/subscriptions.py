"""Registry of active subscriptions keyed by locally generated ids."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

_LOGGER = logging.getLogger(__name__)

NextCallback = Callable[[Any], Awaitable[None] | None]
ErrorCallback = Callable[[Exception], Awaitable[None] | None]
CompleteCallback = Callable[[], Awaitable[None] | None]


@dataclass(slots=True)
class Subscription:
    """One active subscribe() call."""

    id: str
    query: str
    variables: Mapping[str, Any] | None = None
    on_next: NextCallback | None = None
    on_error: ErrorCallback | None = None
    on_complete: CompleteCallback | None = None


async def invoke_callback(
    callback: Callable[..., Awaitable[None] | None] | None,
    *args: Any,
) -> None:
    """Run a sync or async subscriber callback, logging anything it raises."""
    if callback is None:
        return
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception as err:
        _LOGGER.exception("Subscription callback error: %s", err)


class SubscriptionRegistry:
    """Map of subscription id to caller callbacks.

    Ids come from a monotonic counter and are never reused while the entry
    is live.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._last_id = 0

    def add(
        self,
        query: str,
        variables: Mapping[str, Any] | None = None,
        *,
        on_next: NextCallback | None = None,
        on_error: ErrorCallback | None = None,
        on_complete: CompleteCallback | None = None,
    ) -> Subscription:
        """Allocate the next id and register a subscription under it."""
        self._last_id += 1
        subscription = Subscription(
            id=str(self._last_id),
            query=query,
            variables=variables,
            on_next=on_next,
            on_error=on_error,
            on_complete=on_complete,
        )
        self._subscriptions[subscription.id] = subscription
        return subscription

    def get(self, subscription_id: str | None) -> Subscription | None:
        if subscription_id is None:
            return None
        return self._subscriptions.get(subscription_id)

    def remove(self, subscription_id: str) -> Subscription | None:
        return self._subscriptions.pop(subscription_id, None)

    def clear(self) -> None:
        """Drop every entry without notifying subscribers."""
        self._subscriptions.clear()

    def __contains__(self, subscription_id: object) -> bool:
        return subscription_id in self._subscriptions

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __iter__(self) -> Iterator[Subscription]:
        return iter(list(self._subscriptions.values()))
