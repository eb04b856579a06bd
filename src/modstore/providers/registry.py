from __future__ import annotations

import logging
import threading
from collections.abc import Iterator

from .base import ProviderFactory

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Append-only, ordered set of provider factories.

    Lookup by locator returns the first registered factory whose predicate
    matches, so registration order is the tie-break.
    """

    def __init__(self) -> None:
        self._factories: list[ProviderFactory] = []
        self._lock = threading.Lock()

    def register(self, factory: ProviderFactory) -> ProviderFactory:
        with self._lock:
            if any(existing.id == factory.id for existing in self._factories):
                raise ValueError(f"provider factory already registered: {factory.id}")
            self._factories.append(factory)
        logger.debug("provider registered id=%s", factory.id)
        return factory

    def get(self, provider_id: str) -> ProviderFactory | None:
        for factory in self:
            if factory.id == provider_id:
                return factory
        return None

    def find(self, locator: str) -> ProviderFactory | None:
        for factory in self:
            if factory.can_provide(locator):
                return factory
        return None

    def __iter__(self) -> Iterator[ProviderFactory]:
        with self._lock:
            snapshot = list(self._factories)
        return iter(snapshot)

    def __len__(self) -> int:
        with self._lock:
            return len(self._factories)

    def __contains__(self, provider_id: object) -> bool:
        return isinstance(provider_id, str) and self.get(provider_id) is not None
