"""Connection configuration for the ArangoDB cluster client."""

from __future__ import annotations

import os
from typing import Any

from pydantic import Field, field_validator

from ..database.arango.load_balancing import LoadBalancingStrategy
from .config_base import BaseConfig

DEFAULT_URL = "http://127.0.0.1:8529"
DEFAULT_ARANGO_VERSION = 31100


class ClientConfig(BaseConfig):
    """
    Settings consumed by :class:`~arangoclient.database.arango.Connection`.

    ``url`` accepts a single coordinator URL or a list of them. Credentials
    are either ``username``/``password`` (Basic) or ``token`` (Bearer).
    """

    url: str | list[str] = Field(default=DEFAULT_URL, description="Coordinator URL or URLs")
    database_name: str = Field(default="_system", min_length=1, description="Database name")

    username: str | None = Field(default=None, description="Basic auth username")
    password: str | None = Field(default=None, exclude=True, description="Basic auth password")
    token: str | None = Field(default=None, exclude=True, description="Bearer token")

    load_balancing_strategy: LoadBalancingStrategy = Field(
        default=LoadBalancingStrategy.NONE,
        description="How requests are spread over coordinators",
    )
    max_retries: int | None = Field(
        default=None,
        ge=0,
        description="Network retries per request (None = one per additional host)",
    )
    pool_size: int | None = Field(
        default=None,
        ge=1,
        description="Maximum concurrent requests (None = 3 per host for ROUND_ROBIN, else 3)",
    )
    retry_on_conflict: int = Field(
        default=0,
        ge=0,
        description="Default write-write conflict retries per request",
    )
    response_queue_time_samples: int = Field(
        default=10,
        description="Queue time samples kept (negative = unbounded)",
    )
    precapture_stack_traces: bool = Field(
        default=False,
        description="Attach the caller's stack to request errors",
    )
    arango_version: int = Field(default=DEFAULT_ARANGO_VERSION, ge=30000)
    headers: dict[str, str] = Field(default_factory=dict, description="Extra headers for every request")

    connect_timeout: float = Field(default=5.0, gt=0)
    read_timeout: float = Field(default=30.0, gt=0)
    write_timeout: float = Field(default=30.0, gt=0)
    http2: bool = Field(default=True, description="Negotiate HTTP/2 where available")

    @field_validator("load_balancing_strategy", mode="before")
    @classmethod
    def _upper_strategy(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.upper()
        return value

    @property
    def urls(self) -> list[str]:
        if isinstance(self.url, str):
            return [self.url]
        return list(self.url)

    @property
    def strategy(self) -> LoadBalancingStrategy:
        return LoadBalancingStrategy.parse(self.load_balancing_strategy)

    def validate_semantics(self) -> list[str]:
        errors = []

        urls = self.urls
        if not urls:
            errors.append("At least one coordinator URL is required")
        if self.strategy is LoadBalancingStrategy.NONE and len(urls) > 1:
            errors.append(
                f"Load balancing strategy NONE accepts a single URL, got {len(urls)}"
            )
        if self.token and (self.username or self.password):
            errors.append("Configure either a bearer token or username/password, not both")
        if self.password and not self.username:
            errors.append("Password given without a username")

        return errors


def _parse_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _parse_int(value: str | None) -> int | None:
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError:
        return None


def resolve_client_config(**explicit: Any) -> ClientConfig:
    """Resolve configuration from explicit keyword values and the environment.

    Recognized environment variables: ``ARANGO_URL`` (comma separated),
    ``ARANGO_DATABASE``, ``ARANGO_USERNAME``, ``ARANGO_PASSWORD``,
    ``ARANGO_TOKEN``, ``ARANGO_LOAD_BALANCING``, ``ARANGO_MAX_RETRIES``,
    ``ARANGO_RETRY_ON_CONFLICT``, ``ARANGO_CONNECT_TIMEOUT``,
    ``ARANGO_READ_TIMEOUT`` and ``ARANGO_WRITE_TIMEOUT``.

    Raises:
        ConfigValidationError: If the resolved values are invalid
    """

    env = os.environ
    data: dict[str, Any] = {}

    if env_url := env.get("ARANGO_URL"):
        urls = [url.strip() for url in env_url.split(",") if url.strip()]
        data["url"] = urls[0] if len(urls) == 1 else urls
    if database := env.get("ARANGO_DATABASE"):
        data["database_name"] = database
    if token := env.get("ARANGO_TOKEN"):
        data["token"] = token
    elif password := env.get("ARANGO_PASSWORD"):
        data["password"] = password
        data["username"] = env.get("ARANGO_USERNAME", "root")
    if strategy := env.get("ARANGO_LOAD_BALANCING"):
        data["load_balancing_strategy"] = strategy
    if (max_retries := _parse_int(env.get("ARANGO_MAX_RETRIES"))) is not None:
        data["max_retries"] = max_retries
    if (retry_on_conflict := _parse_int(env.get("ARANGO_RETRY_ON_CONFLICT"))) is not None:
        data["retry_on_conflict"] = retry_on_conflict

    data["connect_timeout"] = _parse_float(env.get("ARANGO_CONNECT_TIMEOUT"), 5.0)
    data["read_timeout"] = _parse_float(env.get("ARANGO_READ_TIMEOUT"), 30.0)
    data["write_timeout"] = _parse_float(env.get("ARANGO_WRITE_TIMEOUT"), 30.0)

    # Explicit credentials replace environment credentials as a whole.
    if any(key in explicit for key in ("token", "username", "password")):
        for key in ("token", "username", "password"):
            data.pop(key, None)

    data.update({key: value for key, value in explicit.items() if value is not None})
    return ClientConfig.from_dict(data)


__all__ = ["DEFAULT_URL", "ClientConfig", "resolve_client_config"]
