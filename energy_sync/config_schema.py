from __future__ import annotations

from typing import Dict, Optional

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, ValidationError, field_validator, model_validator


class ConfigModel(BaseModel):
    """Schema for energy client settings."""

    model_config = ConfigDict(extra="allow")

    stream_base_url: AnyHttpUrl
    signer_url: Optional[AnyHttpUrl] = None
    bonus_url: Optional[str] = None
    max_retries: int = 5
    base_delay: float = 1.0
    max_delay: float = 30.0
    harvest_ttl: float = 30.0
    burn_ttl: float = 60.0
    burn_safety_bound: float = 1_000_000_000
    base_capacity: float = 100_000_000

    @field_validator("max_retries")
    @classmethod
    def _retries_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("max_retries must be >= 0")
        return value

    @field_validator("base_delay", "max_delay", "harvest_ttl", "burn_ttl", "burn_safety_bound", "base_capacity")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("bonus_url")
    @classmethod
    def _bonus_template(cls, value: Optional[str]) -> Optional[str]:
        if value and not value.startswith(("http://", "https://")):
            raise ValueError("bonus_url must be an http(s) URL template")
        return value

    @model_validator(mode="after")
    def _delay_order(self) -> "ConfigModel":
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must not be smaller than base_delay")
        return self


def validate_config(data: Dict[str, object]) -> Dict[str, object]:
    """Validate ``data`` against :class:`ConfigModel`.

    Returns the validated data with type normalization applied.
    Raises ``ValueError`` on validation errors.
    """
    try:
        model = ConfigModel(**data)
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc
    return model.model_dump(mode="json")


__all__ = ["ConfigModel", "validate_config"]
