from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator

_DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")


class DTOBase(BaseModel):
    model_config = ConfigDict(extra="forbid")


class _FrozenDTO(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class ModSpecification(_FrozenDTO):
    """Locator naming a requested mod. May be imprecise, e.g. "latest of X"."""

    url: str

    def __str__(self) -> str:
        return self.url


class ModResolution(_FrozenDTO):
    """Precise, fetchable locator produced by resolving a specification."""

    url: str

    def __str__(self) -> str:
        return self.url


class ResolvableStatus(_FrozenDTO):
    kind: Literal["resolvable"] = "resolvable"
    resolution: ModResolution


class UnresolvableStatus(_FrozenDTO):
    kind: Literal["unresolvable"] = "unresolvable"
    name: str


ModStatus = Annotated[
    Union[ResolvableStatus, UnresolvableStatus],
    Field(discriminator="kind"),
]


class ModInfo(DTOBase):
    provider: str
    name: str
    spec: ModSpecification
    versions: list[ModSpecification] = Field(default_factory=list)
    status: ModStatus
    suggested_require: bool = False
    suggested_dependencies: list[ModSpecification] = Field(default_factory=list)

    @property
    def resolution(self) -> ModResolution | None:
        if isinstance(self.status, ResolvableStatus):
            return self.status.resolution
        return None


class BlobRef(RootModel[str]):
    """Content address of stored bytes: lowercase hex SHA-256."""

    model_config = ConfigDict(frozen=True)

    @field_validator("root")
    @classmethod
    def validate_digest(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not _DIGEST_RE.match(normalized):
            raise ValueError(f"invalid blob digest: {value!r}")
        return normalized

    @property
    def digest(self) -> str:
        return self.root

    def __str__(self) -> str:
        return self.root


@dataclass(frozen=True, slots=True)
class Resolve:
    info: ModInfo


@dataclass(frozen=True, slots=True)
class Redirect:
    spec: ModSpecification


ModResponse = Union[Resolve, Redirect]


@dataclass(frozen=True, slots=True)
class Progress:
    resolution: ModResolution
    progress: int
    size: int


@dataclass(frozen=True, slots=True)
class Complete:
    resolution: ModResolution


FetchProgress = Union[Progress, Complete]
