"""Optimistic-then-authoritative state cells and stale-response guards."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Awaitable, Generic, TypeVar

from app.tracker.store import StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Reconciled(Generic[T]):
    """A value updated in two phases.

    Phase 1 (``propose``) is local and immediate. Phase 2 (``confirm``)
    installs the authoritative value, replacing whatever was proposed;
    there is no merge.
    """

    def __init__(self, value: T) -> None:
        self.value = value
        self.authoritative = False

    def propose(self, value: T) -> T:
        self.value = value
        self.authoritative = False
        return value

    def confirm(self, value: T) -> T:
        self.value = value
        self.authoritative = True
        return value

    async def settle(self, fetch: Awaitable[T]) -> T:
        """Await the authoritative value and replace; keep the current value on store failure."""
        try:
            value = await fetch
        except StoreError as exc:
            logger.error("Reconcile fetch failed (%s); keeping local value: %s", exc.table, exc)
            return self.value
        return self.confirm(value)


class RequestSequencer:
    """Monotonic request numbers per fetch scope.

    A response is applied only if its number is still the latest issued
    for that scope; anything older was superseded (user/month switch).
    """

    def __init__(self) -> None:
        self._latest: dict[str, int] = defaultdict(int)

    def begin(self, scope: str) -> int:
        self._latest[scope] += 1
        return self._latest[scope]

    def invalidate(self, *scopes: str) -> None:
        for scope in scopes:
            self._latest[scope] += 1

    def is_current(self, scope: str, token: int) -> bool:
        current = self._latest[scope] == token
        if not current:
            logger.debug("Discarding stale %s response #%d (latest #%d)", scope, token, self._latest[scope])
        return current
