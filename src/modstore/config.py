from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class StoreConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    cache_path: Path
    concurrency: int = Field(default=5, ge=1)
    max_redirects: int = Field(default=16, ge=1)
    providers: dict[str, dict[str, str]] = Field(default_factory=dict)

    @field_validator("providers")
    @classmethod
    def strip_parameter_values(cls, value: dict[str, dict[str, str]]) -> dict[str, dict[str, str]]:
        cleaned: dict[str, dict[str, str]] = {}
        for provider_id, parameters in value.items():
            normalized_id = provider_id.strip()
            if not normalized_id:
                raise ValueError("providers keys must not be empty")
            cleaned[normalized_id] = {
                key.strip(): raw.strip() for key, raw in parameters.items() if raw.strip()
            }
        return cleaned


def load_config(payload: Mapping[str, Any]) -> StoreConfig:
    try:
        return StoreConfig.model_validate(dict(payload))
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc
