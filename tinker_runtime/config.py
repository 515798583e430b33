"""Client configuration and tenant identity.

Config Schema:
- base_url: Service root URL (scheme and host required)
- api_key: Credential sent as ``x-api-key``
- timeout: Per-request HTTP timeout in seconds
- max_retries: Additional attempts the executor may make
- retry_budget: Elapsed seconds the executor may spend retrying one call
- user_metadata: Opaque mapping forwarded by callers
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from tinker_runtime.exceptions import ConfigurationError
from tinker_runtime.resilience.constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_RETRY_BUDGET,
)

__all__ = [
    "DEFAULT_BASE_URL",
    "API_KEY_ENV",
    "BASE_URL_ENV",
    "Config",
    "PoolType",
    "TenantKey",
    "normalize_base_url",
]

DEFAULT_BASE_URL = "https://tinker.thinkingmachines.dev/services/tinker-prod"
API_KEY_ENV = "TINKER_API_KEY"
BASE_URL_ENV = "TINKER_BASE_URL"

_DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_base_url(url: str) -> str:
    """Reduce a URL to ``scheme://host[:port]``.

    The host is lowercased, default ports are dropped and the path, query and
    fragment are discarded.

    Raises:
        ConfigurationError: If the URL has no scheme or no host
    """
    if not isinstance(url, str) or not url.strip():
        raise ConfigurationError("base_url must be a non-empty string", key="base_url")

    parts = urlsplit(url.strip())
    if not parts.scheme or not parts.hostname:
        raise ConfigurationError(
            f"Invalid base_url '{url}': scheme and host are required", key="base_url"
        )

    try:
        port = parts.port
    except ValueError as exc:
        raise ConfigurationError(f"Invalid port in base_url '{url}'", key="base_url") from exc

    scheme = parts.scheme.lower()
    host = parts.hostname.lower()
    if ":" in host:
        host = f"[{host}]"
    if port is not None and _DEFAULT_PORTS.get(scheme) != port:
        return f"{scheme}://{host}:{port}"
    return f"{scheme}://{host}"


@dataclass(frozen=True)
class TenantKey:
    """Identity under which rate-limit state and connection pools are shared."""

    base_url: str
    api_key: str

    @classmethod
    def of(cls, base_url: str, api_key: str) -> "TenantKey":
        return cls(normalize_base_url(base_url), api_key)

    def __repr__(self) -> str:
        masked = f"{self.api_key[:4]}***" if self.api_key else ""
        return f"TenantKey(base_url={self.base_url!r}, api_key={masked!r})"


class PoolType(str, Enum):
    """Connection pool partitions; each gets its own pooled client per tenant."""

    DEFAULT = "default"
    FUTURES = "futures"
    SAMPLING = "sampling"
    TRAINING = "training"
    SESSION = "session"
    TELEMETRY = "telemetry"

    @classmethod
    def choices(cls) -> List[str]:
        return [member.value for member in cls]

    @classmethod
    def normalize(cls, raw: Any) -> "PoolType":
        if isinstance(raw, cls):
            return raw
        if raw is None:
            return cls.DEFAULT
        candidate = str(raw).strip().lower()
        for member in cls:
            if member.value == candidate:
                return member
        raise ValueError(
            f"Invalid PoolType '{raw}'. Valid options: {', '.join(cls.choices())}"
        )


class Config(BaseModel):
    """Immutable client configuration.

    Direct construction raises ``pydantic.ValidationError`` on bad input;
    ``from_dict`` and ``from_env`` convert that into ``ConfigurationError``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    base_url: str = DEFAULT_BASE_URL
    api_key: str
    timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    retry_budget: float = Field(default=DEFAULT_RETRY_BUDGET, gt=0)
    user_metadata: Optional[Dict[str, Any]] = None

    @field_validator("base_url")
    @classmethod
    def _check_base_url(cls, value: str) -> str:
        try:
            normalize_base_url(value)
        except ConfigurationError as exc:
            raise ValueError(exc.message) from exc
        return value.strip().rstrip("/")

    @field_validator("api_key")
    @classmethod
    def _check_api_key(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("api_key must be a non-empty string")
        return value.strip()

    @property
    def tenant_key(self) -> TenantKey:
        return TenantKey.of(self.base_url, self.api_key)

    @property
    def normalized_base_url(self) -> str:
        return normalize_base_url(self.base_url)

    def url_for(self, path: str) -> str:
        """Join a request path onto the configured base URL (path included)."""
        return f"{self.base_url}/{path.lstrip('/')}"

    def default_headers(self) -> Dict[str, str]:
        return {
            "content-type": "application/json",
            "accept": "application/json",
            "x-api-key": self.api_key,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Config":
        """Build a Config, reporting problems as ``ConfigurationError``."""
        try:
            return cls(**dict(data))
        except ValidationError as exc:
            first = exc.errors()[0]
            loc = first.get("loc") or ("config",)
            key = str(loc[0])
            raise ConfigurationError(f"{key}: {first.get('msg')}", key=key) from exc

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        **overrides: Any,
    ) -> "Config":
        """Resolve ``TINKER_API_KEY`` / ``TINKER_BASE_URL`` once, then validate.

        Explicit keyword overrides win over the environment.
        """
        env = os.environ if env is None else env
        data: Dict[str, Any] = {}
        if env.get(API_KEY_ENV):
            data["api_key"] = env[API_KEY_ENV]
        if env.get(BASE_URL_ENV):
            data["base_url"] = env[BASE_URL_ENV]
        data.update({k: v for k, v in overrides.items() if v is not None})
        if "api_key" not in data:
            raise ConfigurationError(
                f"api_key is required (pass it explicitly or set {API_KEY_ENV})",
                key="api_key",
            )
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()
