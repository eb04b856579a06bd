from __future__ import annotations

import logging
import queue
import re
from collections.abc import Mapping
from pathlib import Path
from urllib.parse import unquote, urlsplit

import requests
from pydantic import BaseModel, ConfigDict, Field

from modstore.errors import FetchError
from modstore.schemas import (
    BlobRef,
    Complete,
    FetchProgress,
    ModInfo,
    ModResolution,
    ModResponse,
    ModSpecification,
    Progress,
    ResolvableStatus,
    Resolve,
)
from modstore.storage import BlobCache, ProviderCache

from .base import ProviderFactory, emit_progress, parse_content_length

HTTP_PROVIDER_ID = "http"

_URL_RE = re.compile(r"^https?://(?P<hostname>[^/]+)(/|$)")
_EXCLUDED_HOSTS = frozenset({"mod.io", "drg.mod.io", "drg.old.mod.io"})
_ALLOWED_CONTENT_TYPES = frozenset({"application/zip", "application/octet-stream"})
_CHUNK_SIZE = 64 * 1024

logger = logging.getLogger(__name__)


class HttpProviderCache(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url_blobs: dict[str, BlobRef] = Field(default_factory=dict)


class HttpProvider:
    """Downloads mods from plain HTTP(S) URLs."""

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        timeout_seconds: float = 60.0,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self.session = session or requests.Session()
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_parameters(cls, parameters: Mapping[str, str]) -> HttpProvider:
        _ = parameters
        return cls()

    def resolve_mod(
        self, spec: ModSpecification, update: bool, cache: ProviderCache
    ) -> ModResponse:
        _ = update, cache
        return Resolve(self._build_info(spec))

    def fetch_mod(
        self,
        resolution: ModResolution,
        update: bool,
        cache: ProviderCache,
        blob_cache: BlobCache,
        progress: queue.Queue[FetchProgress] | None = None,
    ) -> Path:
        url = resolution.url
        if not update:
            with cache.read(HTTP_PROVIDER_ID, HttpProviderCache) as section:
                ref = section.url_blobs.get(url) if section is not None else None
            path = blob_cache.get_path(ref) if ref is not None else None
            if path is not None:
                logger.info("http fetch cache hit url=%s", url)
                emit_progress(progress, Complete(resolution=resolution))
                return path

        logger.info("http fetch downloading url=%s", url)
        data = self._download(resolution, progress)
        try:
            ref = blob_cache.write(data)
        except OSError as exc:
            raise FetchError(resolution, f"could not store blob: {exc}") from exc
        path = blob_cache.get_path(ref)
        if path is None:
            raise FetchError(resolution, f"blob {ref} vanished after write")

        with cache.write(HTTP_PROVIDER_ID, HttpProviderCache) as section:
            section.url_blobs[url] = ref

        emit_progress(progress, Complete(resolution=resolution))
        return path

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

    def _download(
        self,
        resolution: ModResolution,
        progress: queue.Queue[FetchProgress] | None,
    ) -> bytes:
        try:
            response = self.session.get(
                resolution.url,
                timeout=self.timeout_seconds,
                stream=True,
            )
        except requests.RequestException as exc:
            raise FetchError(resolution, str(exc)) from exc

        with response:
            try:
                response.raise_for_status()
            except requests.RequestException as exc:
                raise FetchError(resolution, str(exc)) from exc

            content_type = response.headers.get("Content-Type")
            if content_type is not None:
                mime = content_type.split(";", 1)[0].strip().lower()
                if mime not in _ALLOWED_CONTENT_TYPES:
                    raise FetchError(resolution, f"unexpected content-type: {content_type}")

            size = parse_content_length(response.headers.get("Content-Length"))
            chunks: list[bytes] = []
            received = 0
            try:
                for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                    if not chunk:
                        continue
                    chunks.append(chunk)
                    received += len(chunk)
                    emit_progress(
                        progress,
                        Progress(resolution=resolution, progress=received, size=size or received),
                    )
            except requests.RequestException as exc:
                raise FetchError(resolution, str(exc)) from exc

        return b"".join(chunks)

    @staticmethod
    def _build_info(spec: ModSpecification) -> ModInfo:
        return ModInfo(
            provider=HTTP_PROVIDER_ID,
            name=_display_name(spec.url),
            spec=spec,
            versions=[spec],
            status=ResolvableStatus(resolution=ModResolution(url=spec.url)),
        )


def _display_name(url: str) -> str:
    path = urlsplit(url).path
    name = unquote(path.rstrip("/").rsplit("/", 1)[-1])
    return name or url


def _can_provide(locator: str) -> bool:
    match = _URL_RE.match(locator)
    if match is None:
        return False
    return match.group("hostname") not in _EXCLUDED_HOSTS


HTTP_PROVIDER_FACTORY = ProviderFactory(
    id=HTTP_PROVIDER_ID,
    new=HttpProvider.from_parameters,
    can_provide=_can_provide,
)
