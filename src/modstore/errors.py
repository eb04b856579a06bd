from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modstore.providers.base import ProviderFactory
    from modstore.schemas import ModResolution, ModSpecification


class ModStoreError(Exception):
    """Base class for every error raised by modstore."""


class NoProviderError(ModStoreError):
    """No provider claims a locator, or the claiming provider is not configured.

    ``factory`` is ``None`` when nothing matched. Otherwise it is the matched
    descriptor, so a caller can prompt for its parameters and retry.
    """

    def __init__(self, locator: str, factory: ProviderFactory | None = None) -> None:
        self.locator = locator
        self.factory = factory
        if factory is None:
            message = f"could not find mod provider for {locator!r}"
        else:
            message = f"mod provider {factory.id!r} for {locator!r} is not configured"
        super().__init__(message)


class ResolutionError(ModStoreError):
    def __init__(self, spec: ModSpecification | str, message: str) -> None:
        self.spec = spec
        locator = spec if isinstance(spec, str) else spec.url
        super().__init__(f"failed to resolve {locator!r}: {message}")


class RedirectLoopError(ResolutionError):
    pass


class FetchError(ModStoreError):
    def __init__(self, resolution: ModResolution | str, message: str) -> None:
        self.resolution = resolution
        locator = resolution if isinstance(resolution, str) else resolution.url
        super().__init__(f"failed to fetch {locator!r}: {message}")


class ConfigurationError(ModStoreError, ValueError):
    def __init__(self, provider_id: str, parameter: str, message: str | None = None) -> None:
        self.provider_id = provider_id
        self.parameter = parameter
        super().__init__(
            message or f"provider {provider_id!r} is missing required parameter {parameter!r}"
        )
