from __future__ import annotations

import logging
import queue
import re
import time
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any

import requests
from pydantic import BaseModel, ConfigDict, Field

from modstore.errors import ConfigurationError, FetchError, ResolutionError
from modstore.schemas import (
    BlobRef,
    Complete,
    FetchProgress,
    ModInfo,
    ModResolution,
    ModResponse,
    ModSpecification,
    Progress,
    Redirect,
    ResolvableStatus,
    Resolve,
)
from modstore.storage import BlobCache, ProviderCache

from .base import (
    ProviderFactory,
    ProviderParameter,
    emit_progress,
    parse_content_length,
    require_parameter,
)

MODIO_PROVIDER_ID = "modio"
MODIO_API_BASE = "https://api.mod.io/v1"
MODIO_DRG_ID = 2475
REQUIRED_BY_ALL_TAG = "RequiredByAll"

_MOD_RE = re.compile(
    r"^https://mod\.io/g/drg/m/(?P<name_id>[^/#]+)"
    r"(?:#(?P<mod_id>\d+)(?:/(?P<modfile_id>\d+))?)?$"
)
_PAGE_LIMIT = 100
_CHUNK_SIZE = 64 * 1024
_API_ERRORS = (requests.RequestException, KeyError, TypeError, ValueError)

logger = logging.getLogger(__name__)


def format_spec(name_id: str, mod_id: int, modfile_id: int | None = None) -> ModSpecification:
    url = f"https://mod.io/g/drg/m/{name_id}#{mod_id}"
    if modfile_id is not None:
        url = f"{url}/{modfile_id}"
    return ModSpecification(url=url)


class ModioFile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    date_added: int = 0
    version: str | None = None
    changelog: str | None = None


class ModioMod(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name_id: str
    name: str
    latest_modfile: int | None = None
    modfiles: list[ModioFile] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)


class ModioDependency(BaseModel):
    model_config = ConfigDict(extra="ignore")

    mod_id: int
    name_id: str


class ModioCache(BaseModel):
    model_config = ConfigDict(extra="ignore")

    mod_id_map: dict[str, int] = Field(default_factory=dict)
    modfile_blobs: dict[int, BlobRef] = Field(default_factory=dict)
    dependencies: dict[int, list[ModioDependency]] = Field(default_factory=dict)
    mods: dict[int, ModioMod] = Field(default_factory=dict)


class ModioClient:
    """Minimal mod.io REST client.

    Rate limiting is handled here: a 429 response carrying ``Retry-After`` is
    retried after the advertised delay, up to ``max_attempts`` requests.
    """

    def __init__(
        self,
        *,
        oauth_token: str,
        game_id: int = MODIO_DRG_ID,
        api_base: str = MODIO_API_BASE,
        timeout_seconds: float = 30.0,
        max_attempts: int = 5,
        session: requests.Session | None = None,
    ) -> None:
        if not oauth_token.strip():
            raise ValueError("mod.io OAuth token is empty.")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0.")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1.")

        self.game_id = game_id
        self.api_base = api_base.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {oauth_token.strip()}",
                "Accept": "application/json",
            }
        )
        self._request_count = 0

    def get_mod(self, mod_id: int) -> ModioMod:
        payload = self._get_json(f"/games/{self.game_id}/mods/{mod_id}")
        files = list(self._paginate(f"/games/{self.game_id}/mods/{mod_id}/files"))
        return _build_mod(payload, files)

    def search_mods(self, params: Mapping[str, Any]) -> list[dict[str, Any]]:
        return list(self._paginate(f"/games/{self.game_id}/mods", params=params))

    def get_dependencies(self, mod_id: int) -> list[ModioDependency]:
        rows = self._paginate(f"/games/{self.game_id}/mods/{mod_id}/dependencies")
        return [
            ModioDependency(
                mod_id=int(row["mod_id"]),
                name_id=str(row.get("name_id") or row["mod_id"]),
            )
            for row in rows
        ]

    def get_download_url(self, mod_id: int, modfile_id: int) -> str:
        payload = self._get_json(f"/games/{self.game_id}/mods/{mod_id}/files/{modfile_id}")
        download = payload.get("download")
        if not isinstance(download, dict) or not download.get("binary_url"):
            raise ValueError(f"modfile {modfile_id} has no download url")
        return str(download["binary_url"])

    def open_download(self, url: str) -> requests.Response:
        response = self._request(url, stream=True)
        try:
            response.raise_for_status()
        except requests.RequestException:
            response.close()
            raise
        return response

    def _paginate(
        self, path: str, *, params: Mapping[str, Any] | None = None
    ) -> Iterator[dict[str, Any]]:
        offset = 0
        while True:
            page = self._get_json(
                path,
                params={**(params or {}), "_offset": offset, "_limit": _PAGE_LIMIT},
            )
            rows = page.get("data")
            if not isinstance(rows, list):
                raise ValueError(f"mod.io response for {path} has no data list")
            yield from (row for row in rows if isinstance(row, dict))

            offset += len(rows)
            total = page.get("result_total")
            if not rows or not isinstance(total, int) or offset >= total:
                return

    def _get_json(self, path: str, *, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        response = self._request(f"{self.api_base}{path}", params=params)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"mod.io response for {path} is not an object")
        return payload

    def _request(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        stream: bool = False,
    ) -> requests.Response:
        attempt = 0
        while True:
            attempt += 1
            self._request_count += 1
            logger.debug("modio request n=%d url=%s", self._request_count, url)
            response = self.session.get(
                url,
                params=params,
                timeout=self.timeout_seconds,
                stream=stream,
            )
            delay = _retry_after_seconds(response)
            if delay is None or attempt >= self.max_attempts:
                return response

            logger.warning(
                "modio rate limited, retrying after=%ss attempt=%d url=%s",
                delay,
                attempt,
                url,
            )
            response.close()
            time.sleep(delay)


class ModioProvider:
    def __init__(self, client: ModioClient) -> None:
        self.client = client

    @classmethod
    def from_parameters(cls, parameters: Mapping[str, str]) -> ModioProvider:
        token = require_parameter(MODIO_PROVIDER_ID, parameters, "oauth")
        return cls(ModioClient(oauth_token=token))

    def resolve_mod(
        self, spec: ModSpecification, update: bool, cache: ProviderCache
    ) -> ModResponse:
        match = _MOD_RE.match(spec.url)
        if match is None:
            raise ResolutionError(spec, "invalid mod.io URL")

        try:
            if match.group("mod_id") and match.group("modfile_id"):
                return self._resolve_pinned(spec, int(match.group("mod_id")), update, cache)
            if match.group("mod_id"):
                return self._resolve_latest(spec, int(match.group("mod_id")), update, cache)
            return self._resolve_name(spec, match.group("name_id"), update, cache)
        except _API_ERRORS as exc:
            raise ResolutionError(spec, str(exc)) from exc

    def fetch_mod(
        self,
        resolution: ModResolution,
        update: bool,
        cache: ProviderCache,
        blob_cache: BlobCache,
        progress: queue.Queue[FetchProgress] | None = None,
    ) -> Path:
        match = _MOD_RE.match(resolution.url)
        if match is None:
            raise FetchError(resolution, "invalid mod.io URL")
        if not (match.group("mod_id") and match.group("modfile_id")):
            raise FetchError(resolution, "download URL must be fully specified")

        mod_id = int(match.group("mod_id"))
        modfile_id = int(match.group("modfile_id"))

        if not update:
            with cache.read(MODIO_PROVIDER_ID, ModioCache) as section:
                ref = section.modfile_blobs.get(modfile_id) if section is not None else None
            path = blob_cache.get_path(ref) if ref is not None else None
            if path is not None:
                logger.info("modio fetch cache hit modfile_id=%d", modfile_id)
                emit_progress(progress, Complete(resolution=resolution))
                return path

        logger.info("modio fetch downloading url=%s", resolution.url)
        try:
            download_url = self.client.get_download_url(mod_id, modfile_id)
            data = self._download(resolution, download_url, progress)
        except _API_ERRORS as exc:
            raise FetchError(resolution, str(exc)) from exc

        try:
            ref = blob_cache.write(data)
        except OSError as exc:
            raise FetchError(resolution, f"could not store blob: {exc}") from exc
        path = blob_cache.get_path(ref)
        if path is None:
            raise FetchError(resolution, f"blob {ref} vanished after write")

        with cache.write(MODIO_PROVIDER_ID, ModioCache) as section:
            section.modfile_blobs[modfile_id] = ref

        emit_progress(progress, Complete(resolution=resolution))
        return path

    def update_cache(self, cache: ProviderCache) -> None:
        with cache.read(MODIO_PROVIDER_ID, ModioCache) as section:
            mod_ids = sorted(section.mods) if section is not None else []

        logger.info("modio update_cache mods=%d", len(mod_ids))
        for mod_id in mod_ids:
            try:
                mod = self.client.get_mod(mod_id)
                deps = self.client.get_dependencies(mod_id)
            except _API_ERRORS as exc:
                raise ResolutionError(f"modio mod {mod_id}", str(exc)) from exc
            self._store_mod(cache, mod_id, mod)
            with cache.write(MODIO_PROVIDER_ID, ModioCache) as section:
                section.dependencies[mod_id] = deps

    def check(self) -> None:
        try:
            self.client.search_mods({"id": 0})
        except _API_ERRORS as exc:
            raise ConfigurationError(
                MODIO_PROVIDER_ID, "oauth", f"mod.io check failed: {exc}"
            ) from exc

    def get_mod_info(self, spec: ModSpecification, cache: ProviderCache) -> ModInfo | None:
        match = _MOD_RE.match(spec.url)
        if match is None:
            return None

        with cache.read(MODIO_PROVIDER_ID, ModioCache) as section:
            if section is None:
                return None
            mod_id = _lookup_mod_id(match, section)
            if mod_id is None:
                return None
            mod = section.mods.get(mod_id)
            deps = section.dependencies.get(mod_id)
            if mod is None or deps is None:
                return None
            return _build_info(spec.url, mod_id, mod, deps)

    def is_pinned(self, spec: ModSpecification, cache: ProviderCache) -> bool:
        _ = cache
        match = _MOD_RE.match(spec.url)
        return match is not None and match.group("modfile_id") is not None

    def get_version_name(self, spec: ModSpecification, cache: ProviderCache) -> str | None:
        match = _MOD_RE.match(spec.url)
        if match is None:
            return None

        with cache.read(MODIO_PROVIDER_ID, ModioCache) as section:
            if section is None:
                return None
            mod_id = _lookup_mod_id(match, section)
            mod = section.mods.get(mod_id) if mod_id is not None else None
            if mod is None:
                return None

            raw_file_id = match.group("modfile_id")
            if raw_file_id is None:
                return "latest"
            file_id = int(raw_file_id)
            modfile = next((f for f in mod.modfiles if f.id == file_id), None)
            if modfile is not None and modfile.version:
                return f"{modfile.id} - {modfile.version}"
            return raw_file_id

    def _resolve_pinned(
        self, spec: ModSpecification, mod_id: int, update: bool, cache: ProviderCache
    ) -> ModResponse:
        mod = self._get_mod(mod_id, update, cache)

        deps = None if update else self._cached_dependencies(cache, mod_id)
        if deps is None:
            deps = self.client.get_dependencies(mod_id)
            with cache.write(MODIO_PROVIDER_ID, ModioCache) as section:
                section.dependencies[mod_id] = deps

        return Resolve(_build_info(spec.url, mod_id, mod, deps))

    def _resolve_latest(
        self, spec: ModSpecification, mod_id: int, update: bool, cache: ProviderCache
    ) -> ModResponse:
        mod = self._get_mod(mod_id, update, cache)
        if mod.latest_modfile is None:
            raise ResolutionError(spec, "mod does not have an associated modfile")
        return Redirect(format_spec(mod.name_id, mod_id, mod.latest_modfile))

    def _resolve_name(
        self, spec: ModSpecification, name_id: str, update: bool, cache: ProviderCache
    ) -> ModResponse:
        mod_id = None if update else self._cached_mod_id(cache, name_id)
        if mod_id is not None:
            mod = self._get_mod(mod_id, update, cache)
        else:
            found = self.client.search_mods({"name_id": name_id, "visible-in": "0,1"})
            if len(found) > 1:
                raise ResolutionError(spec, f"multiple mods returned for name_id {name_id}")
            if not found:
                raise ResolutionError(spec, f"no mods returned for name_id {name_id}")
            mod_id = int(found[0]["id"])
            mod = self.client.get_mod(mod_id)
            self._store_mod(cache, mod_id, mod)

        if mod.latest_modfile is None:
            raise ResolutionError(spec, "mod does not have an associated modfile")
        return Redirect(format_spec(name_id, mod_id, mod.latest_modfile))

    def _get_mod(self, mod_id: int, update: bool, cache: ProviderCache) -> ModioMod:
        if not update:
            with cache.read(MODIO_PROVIDER_ID, ModioCache) as section:
                cached = section.mods.get(mod_id) if section is not None else None
                if cached is not None:
                    return cached.model_copy(deep=True)

        mod = self.client.get_mod(mod_id)
        self._store_mod(cache, mod_id, mod)
        return mod

    @staticmethod
    def _store_mod(cache: ProviderCache, mod_id: int, mod: ModioMod) -> None:
        with cache.write(MODIO_PROVIDER_ID, ModioCache) as section:
            section.mods[mod_id] = mod.model_copy(deep=True)
            section.mod_id_map[mod.name_id] = mod_id

    @staticmethod
    def _cached_mod_id(cache: ProviderCache, name_id: str) -> int | None:
        with cache.read(MODIO_PROVIDER_ID, ModioCache) as section:
            return section.mod_id_map.get(name_id) if section is not None else None

    @staticmethod
    def _cached_dependencies(cache: ProviderCache, mod_id: int) -> list[ModioDependency] | None:
        with cache.read(MODIO_PROVIDER_ID, ModioCache) as section:
            if section is None or mod_id not in section.dependencies:
                return None
            return [dep.model_copy() for dep in section.dependencies[mod_id]]

    def _download(
        self,
        resolution: ModResolution,
        url: str,
        progress: queue.Queue[FetchProgress] | None,
    ) -> bytes:
        response = self.client.open_download(url)
        with response:
            size = parse_content_length(response.headers.get("Content-Length"))
            chunks: list[bytes] = []
            received = 0
            for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                if not chunk:
                    continue
                chunks.append(chunk)
                received += len(chunk)
                emit_progress(
                    progress,
                    Progress(resolution=resolution, progress=received, size=size or received),
                )
        return b"".join(chunks)


def _build_mod(payload: dict[str, Any], files: list[dict[str, Any]]) -> ModioMod:
    modfile = payload.get("modfile")
    latest = modfile.get("id") if isinstance(modfile, dict) else None
    tags = payload.get("tags") or []
    return ModioMod(
        name_id=payload["name_id"],
        name=payload["name"],
        latest_modfile=latest,
        modfiles=[ModioFile.model_validate(row) for row in files],
        tags=sorted({str(tag["name"]) for tag in tags if isinstance(tag, dict) and tag.get("name")}),
    )


def _build_info(
    url: str, mod_id: int, mod: ModioMod, deps: list[ModioDependency]
) -> ModInfo:
    return ModInfo(
        provider=MODIO_PROVIDER_ID,
        name=mod.name,
        spec=format_spec(mod.name_id, mod_id),
        versions=[format_spec(mod.name_id, mod_id, modfile.id) for modfile in mod.modfiles],
        status=ResolvableStatus(resolution=ModResolution(url=url)),
        suggested_require=REQUIRED_BY_ALL_TAG in mod.tags,
        suggested_dependencies=[format_spec(dep.name_id, dep.mod_id) for dep in deps],
    )


def _lookup_mod_id(match: re.Match[str], section: ModioCache) -> int | None:
    if match.group("mod_id"):
        return int(match.group("mod_id"))
    return section.mod_id_map.get(match.group("name_id"))


def _retry_after_seconds(response: requests.Response) -> float | None:
    if response.status_code != 429:
        return None
    raw = response.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return max(float(raw), 0.0)
    except ValueError:
        return None


MODIO_PROVIDER_FACTORY = ProviderFactory(
    id=MODIO_PROVIDER_ID,
    new=ModioProvider.from_parameters,
    can_provide=lambda locator: _MOD_RE.match(locator) is not None,
    parameters=(
        ProviderParameter(
            id="oauth",
            name="OAuth Token",
            description="mod.io OAuth token. Obtain from https://mod.io/me/access",
            link="https://mod.io/me/access",
        ),
    ),
)
