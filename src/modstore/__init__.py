"""Mod resolution, dependency closure and content-addressed fetching."""

from .config import StoreConfig, load_config
from .errors import (
    ConfigurationError,
    FetchError,
    ModStoreError,
    NoProviderError,
    RedirectLoopError,
    ResolutionError,
)
from .schemas import (
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
    UnresolvableStatus,
)
from .store import ModStore

__all__ = [
    "BlobRef",
    "Complete",
    "ConfigurationError",
    "FetchError",
    "FetchProgress",
    "ModInfo",
    "ModResolution",
    "ModResponse",
    "ModSpecification",
    "ModStore",
    "ModStoreError",
    "NoProviderError",
    "Progress",
    "Redirect",
    "RedirectLoopError",
    "ResolutionError",
    "ResolvableStatus",
    "Resolve",
    "StoreConfig",
    "UnresolvableStatus",
    "load_config",
]
