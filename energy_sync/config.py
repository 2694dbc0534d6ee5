from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass
from typing import Optional

from .config_schema import validate_config

DEFAULT_STREAM_URL = "http://localhost:3000/api/v1/energy/stream"
DEFAULT_BURN_CONTRACT = "SP2ZNGJ85ENDY6QRHQ5P2D4FXKGZWCKTB2T0Z55KS.hooter-farm-x10"
DEFAULT_REWARD_ISSUER = "SP2ZNGJ85ENDY6QRHQ5P2D4FXKGZWCKTB2T0Z55KS.hooter-farm"
DEFAULT_ENERGY_TOKEN = "SP2ZNGJ85ENDY6QRHQ5P2D4FXKGZWCKTB2T0Z55KS.energy::energy"
DEFAULT_REWARD_TOKEN = "SP2ZNGJ85ENDY6QRHQ5P2D4FXKGZWCKTB2T0Z55KS.hooter-the-owl::hooter"


@dataclass
class Config:
    """Runtime configuration values populated from environment or dict settings."""

    stream_base_url: str = DEFAULT_STREAM_URL
    signer_url: Optional[str] = None
    bonus_url: Optional[str] = None
    max_retries: int = 5
    base_delay: float = 1.0
    max_delay: float = 30.0
    harvest_ttl: float = 30.0
    burn_ttl: float = 60.0
    burn_safety_bound: float = 1_000_000_000
    base_capacity: float = 100_000_000
    burn_contract: str = DEFAULT_BURN_CONTRACT
    reward_issuer: str = DEFAULT_REWARD_ISSUER
    energy_token: str = DEFAULT_ENERGY_TOKEN
    reward_token: str = DEFAULT_REWARD_TOKEN

    _logger = logging.getLogger(__name__)

    @classmethod
    def from_env(cls, cfg: dict | None = None) -> "Config":
        """Create a Config instance using environment variables and optional dict.

        Environment variables take precedence over ``cfg`` entries, which take
        precedence over the dataclass defaults.  The merged values are checked
        with :func:`validate_config`.
        """
        cfg = cfg or {}
        env = os.getenv
        defaults = cls()

        def pick(var: str, key: str):
            value = env(var)
            if value not in (None, ""):
                return value
            value = cfg.get(key)
            return getattr(defaults, key) if value is None else value

        merged = {
            "stream_base_url": pick("ENERGY_STREAM_URL", "stream_base_url"),
            "signer_url": pick("ENERGY_SIGNER_URL", "signer_url"),
            "bonus_url": pick("ENERGY_BONUS_URL", "bonus_url"),
            "max_retries": int(pick("ENERGY_STREAM_MAX_RETRIES", "max_retries")),
            "base_delay": float(pick("ENERGY_STREAM_BASE_DELAY", "base_delay")),
            "max_delay": float(pick("ENERGY_STREAM_MAX_DELAY", "max_delay")),
            "harvest_ttl": float(pick("ENERGY_HARVEST_TTL", "harvest_ttl")),
            "burn_ttl": float(pick("ENERGY_BURN_TTL", "burn_ttl")),
            "burn_safety_bound": float(pick("ENERGY_BURN_SAFETY_BOUND", "burn_safety_bound")),
            "base_capacity": float(pick("ENERGY_BASE_CAPACITY", "base_capacity")),
            "burn_contract": str(pick("ENERGY_BURN_CONTRACT", "burn_contract")),
            "reward_issuer": str(pick("ENERGY_REWARD_ISSUER", "reward_issuer")),
            "energy_token": str(pick("ENERGY_TOKEN", "energy_token")),
            "reward_token": str(pick("ENERGY_REWARD_TOKEN", "reward_token")),
        }
        validate_config(merged)
        cls._logger.debug("energy config %s", merged)
        return cls(**merged)

    def stream_url(self, subject: str) -> str:
        return f"{self.stream_base_url.rstrip('/')}/{subject}"

    def to_dict(self) -> dict:
        return asdict(self)


__all__ = ["Config"]
