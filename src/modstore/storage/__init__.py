"""Storage layer: content-addressed blobs + per-provider cache document."""

from .blob_cache import BlobCache
from .locks import ReadWriteLock
from .provider_cache import ProviderCache

__all__ = ["BlobCache", "ProviderCache", "ReadWriteLock"]
