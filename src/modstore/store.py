from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Iterable, Mapping
from functools import partial
from pathlib import Path

from .concurrency import DEFAULT_WINDOW, run_ordered, run_unordered
from .config import StoreConfig
from .errors import NoProviderError, RedirectLoopError, ResolutionError
from .providers import ModProvider, ProviderFactory, ProviderRegistry, default_registry
from .schemas import FetchProgress, ModInfo, ModResolution, ModSpecification, Redirect, Resolve
from .storage import BlobCache, ProviderCache

CACHE_DOCUMENT_NAME = "cache.json"
BLOB_DIRECTORY_NAME = "blobs"
DEFAULT_MAX_REDIRECTS = 16

logger = logging.getLogger(__name__)


class ModStore:
    """Resolves mod specifications through pluggable providers and fetches them.

    Providers are constructed for every registered factory whose required
    parameters are present in ``parameters[factory.id]``; the rest can be added
    later with ``add_provider``. The provider cache document is loaded from
    ``<cache_path>/cache.json`` and written back immediately; fetched bytes go
    to ``<cache_path>/blobs``.
    """

    def __init__(
        self,
        cache_path: str | Path,
        parameters: Mapping[str, Mapping[str, str]] | None = None,
        *,
        registry: ProviderRegistry | None = None,
        concurrency: int = DEFAULT_WINDOW,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if max_redirects < 1:
            raise ValueError("max_redirects must be >= 1")

        self.registry = registry if registry is not None else default_registry()
        self.concurrency = concurrency
        self.max_redirects = max_redirects

        self._providers: dict[str, ModProvider] = {}
        self._providers_lock = threading.Lock()
        parameters = parameters or {}
        for factory in self.registry:
            provider_parameters = dict(parameters.get(factory.id, {}))
            if not factory.is_satisfied_by(provider_parameters):
                logger.info("provider not configured id=%s reason=missing_parameters", factory.id)
                continue
            self._providers[factory.id] = factory.new(provider_parameters)

        cache_path = Path(cache_path)
        self.cache = ProviderCache.load(cache_path / CACHE_DOCUMENT_NAME)
        self.cache.save()
        self.blob_cache = BlobCache(cache_path / BLOB_DIRECTORY_NAME)

    @classmethod
    def from_config(
        cls, config: StoreConfig, *, registry: ProviderRegistry | None = None
    ) -> ModStore:
        return cls(
            config.cache_path,
            config.providers,
            registry=registry,
            concurrency=config.concurrency,
            max_redirects=config.max_redirects,
        )

    def get_provider_factories(self) -> list[ProviderFactory]:
        return list(self.registry)

    def add_provider(self, factory: ProviderFactory, parameters: Mapping[str, str]) -> None:
        provider = factory.new(dict(parameters))
        self._install_provider(factory, provider)

    def add_provider_checked(self, factory: ProviderFactory, parameters: Mapping[str, str]) -> None:
        provider = factory.new(dict(parameters))
        provider.check()
        self._install_provider(factory, provider)

    def get_provider(self, locator: str) -> ModProvider:
        factory = self.registry.find(locator)
        if factory is None:
            raise NoProviderError(locator)
        with self._providers_lock:
            provider = self._providers.get(factory.id)
        if provider is None:
            raise NoProviderError(locator, factory)
        return provider

    def resolve_mods(
        self, specs: Iterable[ModSpecification], update: bool = False
    ) -> dict[ModSpecification, ModInfo]:
        """Resolve ``specs`` and their transitive dependencies.

        The result has one entry per distinct input spec and per discovered
        dependency, keyed by the spec as requested (before any redirect). A dependency
        naming a spec that another entry already resolved to shares that
        entry's info instead of being resolved again. Any failure aborts the
        whole batch. A provider whose suggested dependencies never settle makes
        this loop forever.
        """
        pending = list(dict.fromkeys(specs))
        results: dict[ModSpecification, ModInfo] = {}
        by_precise: dict[ModSpecification, ModInfo] = {}

        resolve_pass = 0
        while pending:
            resolve_pass += 1
            logger.info("resolve pass=%d pending=%d", resolve_pass, len(pending))
            resolved = run_unordered(
                [partial(self.resolve_mod, spec, update) for spec in pending],
                width=self.concurrency,
            )
            for original, info in resolved:
                by_precise.setdefault(info.spec, info)
                by_precise.setdefault(original, info)
                results[original] = info

            discovered: dict[ModSpecification, None] = {}
            for info in list(results.values()):
                for dependency in info.suggested_dependencies:
                    known = by_precise.get(dependency)
                    if known is None:
                        discovered[dependency] = None
                    else:
                        results.setdefault(dependency, known)
            pending = list(discovered)

        logger.info("resolve done mods=%d passes=%d", len(results), resolve_pass)
        return results

    def resolve_mod(
        self, spec: ModSpecification, update: bool = False
    ) -> tuple[ModSpecification, ModInfo]:
        current = spec
        visited = {spec}
        for _ in range(self.max_redirects + 1):
            response = self.get_provider(current.url).resolve_mod(current, update, self.cache)
            if isinstance(response, Resolve):
                return spec, response.info
            if not isinstance(response, Redirect):
                raise ResolutionError(current, f"unexpected provider response {response!r}")

            target = response.spec
            if target in visited:
                raise RedirectLoopError(spec, f"redirect cycle through {target.url!r}")
            logger.debug("resolve redirect from=%s to=%s", current.url, target.url)
            visited.add(target)
            current = target

        raise RedirectLoopError(spec, f"more than {self.max_redirects} redirects")

    def fetch_mods(
        self,
        resolutions: Iterable[ModResolution],
        update: bool = False,
        progress: queue.Queue[FetchProgress] | None = None,
    ) -> list[Path]:
        """Fetch every resolution; paths come back in completion order."""
        return run_unordered(
            [partial(self.fetch_mod, resolution, update, progress) for resolution in resolutions],
            width=self.concurrency,
        )

    def fetch_mods_ordered(
        self,
        resolutions: Iterable[ModResolution],
        update: bool = False,
        progress: queue.Queue[FetchProgress] | None = None,
    ) -> list[Path]:
        """Fetch every resolution; ``paths[i]`` belongs to ``resolutions[i]``."""
        return run_ordered(
            [partial(self.fetch_mod, resolution, update, progress) for resolution in resolutions],
            width=self.concurrency,
        )

    def fetch_mod(
        self,
        resolution: ModResolution,
        update: bool = False,
        progress: queue.Queue[FetchProgress] | None = None,
    ) -> Path:
        provider = self.get_provider(resolution.url)
        return provider.fetch_mod(resolution, update, self.cache, self.blob_cache, progress)

    def update_cache(self) -> None:
        # Providers share one cache document; run them one at a time.
        with self._providers_lock:
            providers = [
                (factory.id, self._providers[factory.id])
                for factory in self.registry
                if factory.id in self._providers
            ]
        for provider_id, provider in providers:
            logger.info("updating cache provider=%s", provider_id)
            provider.update_cache(self.cache)

    def get_mod_info(self, spec: ModSpecification) -> ModInfo | None:
        try:
            provider = self.get_provider(spec.url)
        except NoProviderError:
            return None
        return provider.get_mod_info(spec, self.cache)

    def is_pinned(self, spec: ModSpecification) -> bool:
        return self.get_provider(spec.url).is_pinned(spec, self.cache)

    def get_version_name(self, spec: ModSpecification) -> str | None:
        return self.get_provider(spec.url).get_version_name(spec, self.cache)

    def save(self) -> None:
        self.cache.save()

    def _install_provider(self, factory: ProviderFactory, provider: ModProvider) -> None:
        with self._providers_lock:
            self._providers[factory.id] = provider
        logger.info("provider configured id=%s", factory.id)
