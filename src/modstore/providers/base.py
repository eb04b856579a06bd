from __future__ import annotations

import queue
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from modstore.errors import ConfigurationError
from modstore.schemas import FetchProgress, ModInfo, ModResolution, ModResponse, ModSpecification
from modstore.storage import BlobCache, ProviderCache


class ModProvider(Protocol):
    """Backend able to resolve and fetch mods for the locators it claims.

    ``resolve_mod``, ``fetch_mod``, ``update_cache`` and ``check`` may touch the
    network. The remaining methods answer from ``cache`` only.
    """

    def resolve_mod(
        self, spec: ModSpecification, update: bool, cache: ProviderCache
    ) -> ModResponse:
        ...

    def fetch_mod(
        self,
        resolution: ModResolution,
        update: bool,
        cache: ProviderCache,
        blob_cache: BlobCache,
        progress: queue.Queue[FetchProgress] | None = None,
    ) -> Path:
        ...

    def update_cache(self, cache: ProviderCache) -> None:
        ...

    def check(self) -> None:
        """Raise if the provider is misconfigured or unreachable."""

    def get_mod_info(self, spec: ModSpecification, cache: ProviderCache) -> ModInfo | None:
        ...

    def is_pinned(self, spec: ModSpecification, cache: ProviderCache) -> bool:
        ...

    def get_version_name(self, spec: ModSpecification, cache: ProviderCache) -> str | None:
        ...


@dataclass(frozen=True, slots=True)
class ProviderParameter:
    id: str
    name: str
    description: str
    link: str | None = None


@dataclass(frozen=True, slots=True)
class ProviderFactory:
    id: str
    new: Callable[[Mapping[str, str]], ModProvider] = field(repr=False)
    can_provide: Callable[[str], bool] = field(repr=False)
    parameters: tuple[ProviderParameter, ...] = ()

    def is_satisfied_by(self, parameters: Mapping[str, str]) -> bool:
        return all(parameter.id in parameters for parameter in self.parameters)


def require_parameter(provider_id: str, parameters: Mapping[str, str], key: str) -> str:
    value = (parameters.get(key) or "").strip()
    if not value:
        raise ConfigurationError(provider_id, key)
    return value


def emit_progress(
    progress: queue.Queue[FetchProgress] | None, event: FetchProgress
) -> None:
    if progress is not None:
        progress.put(event)


def parse_content_length(raw: str | None) -> int | None:
    """Return a non-negative ``Content-Length`` value, or None when absent or malformed."""
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value >= 0 else None
