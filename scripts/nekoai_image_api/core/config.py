"""Client configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from .errors import DEFAULT_RETRY_STATUS_CODES, ConfigurationError
from .router import HEADERS


@dataclass(frozen=True)
class RetryConfig:
    enabled: bool = True
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    retry_status_codes: Tuple[int, ...] = DEFAULT_RETRY_STATUS_CODES


@dataclass
class ClientOptions:
    token: str
    timeout: float = 30.0
    host: Optional[str] = None
    retry: RetryConfig = field(default_factory=RetryConfig)
    vibe_cache_size: Optional[int] = None
    user_agent: str = HEADERS["User-Agent"]

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "ClientOptions":
        env = os.environ if environ is None else environ
        token = overrides.pop("token", None) or env.get("NOVELAI_TOKEN")
        if not token:
            raise ConfigurationError("NOVELAI_TOKEN not set. Add it to your environment or .env.")
        options = cls(token=token)
        if env.get("NEKOAI_HOST"):
            options.host = env["NEKOAI_HOST"]
        if env.get("NEKOAI_TIMEOUT"):
            options.timeout = _parse_float("NEKOAI_TIMEOUT", env["NEKOAI_TIMEOUT"])
        if env.get("NEKOAI_MAX_RETRIES"):
            retries = int(_parse_float("NEKOAI_MAX_RETRIES", env["NEKOAI_MAX_RETRIES"]))
            options.retry = RetryConfig(enabled=retries > 0, max_retries=retries)
        if env.get("NEKOAI_VIBE_CACHE_SIZE"):
            options.vibe_cache_size = int(_parse_float("NEKOAI_VIBE_CACHE_SIZE", env["NEKOAI_VIBE_CACHE_SIZE"]))
        for key, value in overrides.items():
            if value is None:
                continue
            if not hasattr(options, key):
                raise ConfigurationError(f"Unknown client option '{key}'")
            setattr(options, key, value)
        return options


def _parse_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be numeric, got '{value}'") from exc
