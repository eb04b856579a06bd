from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from .locks import ReadWriteLock

logger = logging.getLogger(__name__)

CORRUPT_SUFFIX = ".corrupt"
TSection = TypeVar("TSection", bound=BaseModel)


class ProviderCache:
    """Shared JSON document holding one private section per provider id.

    A section stays as raw JSON until its owner asks for it with a pydantic model
    class; from then on the live model instance is kept and dumped on save.
    Sections nobody asked for are written back untouched.

    Access is guarded by a read/write lock. Hold it only for the synchronous
    body of a ``read``/``write`` block, never across a network call.
    """

    def __init__(self, path: str | Path | None = None, sections: dict[str, Any] | None = None) -> None:
        self.path = Path(path) if path is not None else None
        self._sections: dict[str, Any] = dict(sections or {})
        self._lock = ReadWriteLock()
        self._parse_lock = threading.Lock()
        self._save_lock = threading.Lock()

    @classmethod
    def load(cls, path: str | Path) -> ProviderCache:
        path = Path(path)
        if not path.exists():
            logger.info("provider_cache load path=%s reason=not_found", path)
            return cls(path)

        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except OSError:
            logger.warning("provider_cache unreadable, starting empty path=%s", path, exc_info=True)
            return cls(path)
        except ValueError:
            logger.warning("provider_cache is not valid JSON path=%s", path, exc_info=True)
            _set_aside(path)
            return cls(path)

        if not isinstance(payload, dict):
            logger.warning("provider_cache root is not an object path=%s", path)
            _set_aside(path)
            return cls(path)

        logger.info("provider_cache load path=%s sections=%d", path, len(payload))
        return cls(path, payload)

    @property
    def provider_ids(self) -> list[str]:
        with self._lock.read():
            return list(self._sections)

    @contextmanager
    def read(self, provider_id: str, model_cls: type[TSection]) -> Iterator[TSection | None]:
        """Yield the live section, or None when absent or not a ``model_cls``.

        The yielded object must not be mutated.
        """
        with self._lock.read():
            yield self._typed_section(provider_id, model_cls)

    def get(self, provider_id: str, model_cls: type[TSection]) -> TSection | None:
        """Return a detached copy of the section, or None."""
        with self.read(provider_id, model_cls) as section:
            if section is None:
                return None
            return section.model_copy(deep=True)

    @contextmanager
    def write(self, provider_id: str, model_cls: type[TSection]) -> Iterator[TSection]:
        """Yield the section for mutation, default-constructing it when needed."""
        with self._lock.write():
            section = self._typed_section(provider_id, model_cls)
            if section is None:
                if provider_id in self._sections:
                    logger.warning(
                        "provider_cache replacing incompatible section provider=%s",
                        provider_id,
                    )
                section = model_cls()
                self._sections[provider_id] = section
            yield section

    def save(self) -> None:
        if self.path is None:
            raise ValueError("provider cache has no path to save to")

        with self._lock.read():
            document = {
                provider_id: (
                    value.model_dump(mode="json") if isinstance(value, BaseModel) else value
                )
                for provider_id, value in self._sections.items()
            }
        body = json.dumps(document, ensure_ascii=False, indent=2, sort_keys=True)

        with self._save_lock:
            _atomic_write_text(self.path, body)
        logger.info("provider_cache save path=%s sections=%d", self.path, len(document))

    def _typed_section(self, provider_id: str, model_cls: type[TSection]) -> TSection | None:
        with self._parse_lock:
            value = self._sections.get(provider_id)
            if value is None:
                return None
            if isinstance(value, model_cls):
                return value
            if isinstance(value, BaseModel):
                return None

            try:
                parsed = model_cls.model_validate(value)
            except ValidationError:
                logger.warning(
                    "provider_cache section does not match model provider=%s model=%s",
                    provider_id,
                    model_cls.__name__,
                )
                return None
            self._sections[provider_id] = parsed
            return parsed


def _atomic_write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fp:
            fp.write(content)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            logger.warning("provider_cache failed to remove temp file path=%s", tmp)
        raise


def _set_aside(path: Path) -> Path:
    target = path.with_name(f"{path.name}{CORRUPT_SUFFIX}")
    os.replace(path, target)
    logger.warning("provider_cache moved aside, starting empty path=%s moved_to=%s", path, target)
    return target
