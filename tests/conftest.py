from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable
from pathlib import Path

import pytest
import requests

from modstore import (
    ModInfo,
    ModResolution,
    ModSpecification,
    ModStore,
    Redirect,
    ResolutionError,
    ResolvableStatus,
    Resolve,
)
from modstore.providers import ProviderFactory, ProviderRegistry


class FakeResponse:
    def __init__(
        self,
        *,
        status_code: int = 200,
        payload: object | None = None,
        content: bytes = b"",
        headers: dict[str, str] | None = None,
    ) -> None:
        self.status_code = status_code
        self._payload = payload
        self.content = content if payload is None else json.dumps(payload).encode("utf-8")
        self.headers = dict(headers or {})
        self.closed = False

    def raise_for_status(self) -> None:
        if self.status_code < 400:
            return
        error = requests.HTTPError(f"{self.status_code} error")
        error.response = self  # type: ignore[assignment]
        raise error

    def json(self) -> object:
        return self._payload

    def iter_content(self, chunk_size: int = 1) -> list[bytes]:
        return [
            self.content[index : index + chunk_size]
            for index in range(0, len(self.content), chunk_size)
        ]

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> FakeResponse:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class FakeSession:
    """Serves queued responses per URL; the last queued response repeats."""

    def __init__(self, routes: dict[str, FakeResponse | list[FakeResponse]]) -> None:
        self.routes = {
            url: list(value) if isinstance(value, list) else [value]
            for url, value in routes.items()
        }
        self.headers: dict[str, str] = {}
        self.calls: list[tuple[str, dict[str, object]]] = []
        self._lock = threading.Lock()

    def get(
        self,
        url: str,
        *,
        params: dict[str, object] | None = None,
        timeout: float | None = None,
        stream: bool = False,
    ) -> FakeResponse:
        _ = timeout, stream
        with self._lock:
            self.calls.append((url, dict(params or {})))
            queued = self.routes.get(url)
            if not queued:
                raise requests.ConnectionError(f"no route for {url}")
            if len(queued) > 1:
                return queued.pop(0)
            return queued[0]


class GraphProvider:
    """In-memory provider for ``fake://`` locators.

    ``redirects`` maps a locator to the locator it redirects to, ``dependencies``
    maps a locator to the locators it suggests, ``failures`` lists locators that
    raise. Fetches return ``/mods/<name>`` after an optional per-name hook.
    """

    def __init__(
        self,
        *,
        redirects: dict[str, str] | None = None,
        dependencies: dict[str, list[str]] | None = None,
        failures: set[str] | None = None,
        delay_seconds: float = 0.0,
        fetch_hooks: dict[str, Callable[[], None]] | None = None,
    ) -> None:
        self.redirects = redirects or {}
        self.dependencies = dependencies or {}
        self.failures = failures or set()
        self.delay_seconds = delay_seconds
        self.fetch_hooks = fetch_hooks or {}
        self.resolve_calls: list[str] = []
        self.fetch_completions: list[str] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def resolve_mod(self, spec, update, cache):
        _ = update, cache
        with self._lock:
            self.resolve_calls.append(spec.url)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay_seconds:
                time.sleep(self.delay_seconds)
            if spec.url in self.failures:
                raise ResolutionError(spec, "backend exploded")
            if spec.url in self.redirects:
                return Redirect(ModSpecification(url=self.redirects[spec.url]))
            return Resolve(
                ModInfo(
                    provider="fake",
                    name=spec.url.removeprefix("fake://"),
                    spec=spec,
                    versions=[spec],
                    status=ResolvableStatus(resolution=ModResolution(url=spec.url)),
                    suggested_dependencies=[
                        ModSpecification(url=url) for url in self.dependencies.get(spec.url, [])
                    ],
                )
            )
        finally:
            with self._lock:
                self.active -= 1

    def fetch_mod(self, resolution, update, cache, blob_cache, progress=None):
        _ = update, cache, blob_cache, progress
        name = resolution.url.removeprefix("fake://")
        hook = self.fetch_hooks.get(name)
        if hook is not None:
            hook()
        if resolution.url in self.failures:
            raise ResolutionError(resolution.url, "fetch exploded")
        with self._lock:
            self.fetch_completions.append(name)
        return Path("/mods") / name

    def update_cache(self, cache) -> None:
        _ = cache

    def check(self) -> None:
        return None

    def get_mod_info(self, spec, cache):
        _ = cache
        return None

    def is_pinned(self, spec, cache) -> bool:
        _ = cache
        return spec.url not in self.redirects

    def get_version_name(self, spec, cache):
        _ = spec, cache
        return "fake"


def fake_factory(provider: GraphProvider, *, provider_id: str = "fake") -> ProviderFactory:
    return ProviderFactory(
        id=provider_id,
        new=lambda parameters: provider,
        can_provide=lambda locator: locator.startswith("fake://"),
    )


def specs(*urls: str) -> list[ModSpecification]:
    return [ModSpecification(url=url) for url in urls]


@pytest.fixture
def make_store(tmp_path) -> Callable[..., ModStore]:
    def _make(provider: GraphProvider, **kwargs: object) -> ModStore:
        registry = ProviderRegistry()
        registry.register(fake_factory(provider))
        return ModStore(tmp_path / "cache", registry=registry, **kwargs)

    return _make
