from __future__ import annotations

import logging
import queue
from collections.abc import Mapping
from pathlib import Path

from modstore.errors import ResolutionError
from modstore.schemas import (
    FetchProgress,
    ModInfo,
    ModResolution,
    ModResponse,
    ModSpecification,
    Resolve,
    UnresolvableStatus,
)
from modstore.storage import BlobCache, ProviderCache

from .base import ProviderFactory

FILE_PROVIDER_ID = "file"

logger = logging.getLogger(__name__)


class FileProvider:
    """Serves mods that are already on the local filesystem. Never copies."""

    @classmethod
    def from_parameters(cls, parameters: Mapping[str, str]) -> FileProvider:
        _ = parameters
        return cls()

    def resolve_mod(
        self, spec: ModSpecification, update: bool, cache: ProviderCache
    ) -> ModResponse:
        _ = update, cache
        info = self._build_info(spec)
        if info is None:
            raise ResolutionError(spec, "could not determine file name")
        return Resolve(info)

    def fetch_mod(
        self,
        resolution: ModResolution,
        update: bool,
        cache: ProviderCache,
        blob_cache: BlobCache,
        progress: queue.Queue[FetchProgress] | None = None,
    ) -> Path:
        _ = update, cache, blob_cache, progress
        return Path(resolution.url)

    def update_cache(self, cache: ProviderCache) -> None:
        _ = cache

    def check(self) -> None:
        return None

    def get_mod_info(self, spec: ModSpecification, cache: ProviderCache) -> ModInfo | None:
        _ = cache
        return self._build_info(spec)

    def is_pinned(self, spec: ModSpecification, cache: ProviderCache) -> bool:
        _ = spec, cache
        return True

    def get_version_name(self, spec: ModSpecification, cache: ProviderCache) -> str | None:
        _ = spec, cache
        return "latest"

    @staticmethod
    def _build_info(spec: ModSpecification) -> ModInfo | None:
        file_name = Path(spec.url).name
        if not file_name:
            logger.warning("file provider cannot name locator=%s", spec.url)
            return None
        return ModInfo(
            provider=FILE_PROVIDER_ID,
            name=file_name,
            spec=spec,
            versions=[spec],
            status=UnresolvableStatus(name=file_name),
        )


def _can_provide(locator: str) -> bool:
    try:
        return Path(locator).exists()
    except (OSError, ValueError):
        return False


FILE_PROVIDER_FACTORY = ProviderFactory(
    id=FILE_PROVIDER_ID,
    new=FileProvider.from_parameters,
    can_provide=_can_provide,
)
