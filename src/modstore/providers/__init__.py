"""Pluggable mod providers and the registry that selects them."""

from __future__ import annotations

import threading

from .base import ModProvider, ProviderFactory, ProviderParameter
from .file import FILE_PROVIDER_FACTORY, FileProvider
from .http import HTTP_PROVIDER_FACTORY, HttpProvider
from .modio import MODIO_PROVIDER_FACTORY, ModioProvider
from .registry import ProviderRegistry

BUILTIN_FACTORIES: tuple[ProviderFactory, ...] = (
    FILE_PROVIDER_FACTORY,
    MODIO_PROVIDER_FACTORY,
    HTTP_PROVIDER_FACTORY,
)

_default_registry: ProviderRegistry | None = None
_default_registry_lock = threading.Lock()


def register_builtin_providers(registry: ProviderRegistry) -> ProviderRegistry:
    for factory in BUILTIN_FACTORIES:
        registry.register(factory)
    return registry


def default_registry() -> ProviderRegistry:
    """Process-wide registry, populated with the builtin providers on first use."""
    global _default_registry
    with _default_registry_lock:
        if _default_registry is None:
            _default_registry = register_builtin_providers(ProviderRegistry())
        return _default_registry


__all__ = [
    "BUILTIN_FACTORIES",
    "FileProvider",
    "HttpProvider",
    "ModProvider",
    "ModioProvider",
    "ProviderFactory",
    "ProviderParameter",
    "ProviderRegistry",
    "default_registry",
    "register_builtin_providers",
]
