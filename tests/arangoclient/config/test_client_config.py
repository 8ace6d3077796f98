"""Unit tests for arangoclient.config module."""

import json
import os

import pytest

from arangoclient.config import (
    DEFAULT_URL,
    ClientConfig,
    ConfigError,
    ConfigValidationError,
    resolve_client_config,
)
from arangoclient.database.arango.load_balancing import LoadBalancingStrategy


@pytest.fixture
def clean_env(monkeypatch):
    """Remove all ARANGO-related environment variables."""
    for key in list(os.environ.keys()):
        if key.startswith("ARANGO"):
            monkeypatch.delenv(key, raising=False)
    yield monkeypatch


class TestClientConfigDefaults:
    """Tests for ClientConfig defaults and schema validation."""

    def test_default_values(self) -> None:
        config = ClientConfig()
        assert config.urls == [DEFAULT_URL]
        assert config.database_name == "_system"
        assert config.strategy is LoadBalancingStrategy.NONE
        assert config.max_retries is None
        assert config.pool_size is None
        assert config.retry_on_conflict == 0
        assert config.response_queue_time_samples == 10
        assert config.precapture_stack_traces is False
        assert config.arango_version == 31100

    def test_strategy_is_case_insensitive(self) -> None:
        config = ClientConfig(url=["http://a:8529", "http://b:8529"], load_balancing_strategy="round_robin")
        assert config.strategy is LoadBalancingStrategy.ROUND_ROBIN

    def test_unknown_strategy_rejected(self) -> None:
        with pytest.raises(ConfigValidationError):
            ClientConfig.from_dict({"load_balancing_strategy": "LEAST_CONN"})

    def test_extra_fields_forbidden(self) -> None:
        with pytest.raises(ConfigValidationError, match="Failed to create from dict"):
            ClientConfig.from_dict({"hosts": ["http://a:8529"]})

    def test_dump_holds_only_client_settings(self) -> None:
        data = ClientConfig().to_dict()
        assert not {"config_version", "created_at", "source"} & data.keys()
        with pytest.raises(ConfigValidationError):
            ClientConfig.from_dict({"source": "environment"})

    def test_negative_retries_rejected(self) -> None:
        with pytest.raises(ConfigValidationError):
            ClientConfig.from_dict({"max_retries": -1})

    def test_secrets_not_serialized(self) -> None:
        config = ClientConfig(username="root", password="secret")
        data = config.to_dict()
        assert data["username"] == "root"
        assert "password" not in data
        assert "secret" not in config.to_json()


class TestClientConfigSemantics:
    """Tests for ClientConfig.validate_semantics."""

    def test_valid_cluster_config(self) -> None:
        config = ClientConfig.from_dict(
            {"url": ["http://a:8529", "http://b:8529"], "load_balancing_strategy": "ROUND_ROBIN"}
        )
        assert config.validate_semantics() == []

    def test_none_with_multiple_urls(self) -> None:
        with pytest.raises(ConfigValidationError, match="NONE accepts a single URL"):
            ClientConfig.from_dict({"url": ["http://a:8529", "http://b:8529"]})

    def test_empty_url_list(self) -> None:
        with pytest.raises(ConfigValidationError, match="At least one coordinator URL"):
            ClientConfig.from_dict({"url": []})

    def test_token_and_password_conflict(self) -> None:
        with pytest.raises(ConfigValidationError) as exc_info:
            ClientConfig.from_dict({"token": "jwt", "username": "root", "password": "pw"})
        assert any("bearer token" in error for error in exc_info.value.errors)

    def test_password_without_username(self) -> None:
        with pytest.raises(ConfigValidationError, match="without a username"):
            ClientConfig.from_dict({"password": "pw"})

    def test_validation_error_is_config_error(self) -> None:
        assert issubclass(ConfigValidationError, ConfigError)


class TestClientConfigJson:
    """Tests for JSON loading."""

    def test_from_json(self) -> None:
        config = ClientConfig.from_json(json.dumps({"url": "http://db:8529", "database_name": "app"}))
        assert config.urls == ["http://db:8529"]
        assert config.database_name == "app"

    def test_from_json_invalid_json(self) -> None:
        with pytest.raises(ConfigValidationError, match="Invalid JSON"):
            ClientConfig.from_json("{not json")


class TestResolveClientConfig:
    """Tests for resolve_client_config."""

    def test_defaults_without_environment(self, clean_env) -> None:
        config = resolve_client_config()
        assert config.urls == [DEFAULT_URL]
        assert config.database_name == "_system"
        assert config.username is None

    def test_reads_environment(self, clean_env) -> None:
        clean_env.setenv("ARANGO_URL", "http://a:8529, http://b:8529")
        clean_env.setenv("ARANGO_LOAD_BALANCING", "round_robin")
        clean_env.setenv("ARANGO_DATABASE", "app")
        clean_env.setenv("ARANGO_PASSWORD", "pw")
        clean_env.setenv("ARANGO_MAX_RETRIES", "4")
        clean_env.setenv("ARANGO_RETRY_ON_CONFLICT", "2")
        clean_env.setenv("ARANGO_READ_TIMEOUT", "12.5")

        config = resolve_client_config()

        assert config.urls == ["http://a:8529", "http://b:8529"]
        assert config.strategy is LoadBalancingStrategy.ROUND_ROBIN
        assert config.database_name == "app"
        assert config.username == "root"
        assert config.password == "pw"
        assert config.max_retries == 4
        assert config.retry_on_conflict == 2
        assert config.read_timeout == 12.5

    def test_invalid_numbers_fall_back(self, clean_env) -> None:
        clean_env.setenv("ARANGO_MAX_RETRIES", "many")
        clean_env.setenv("ARANGO_CONNECT_TIMEOUT", "soon")

        config = resolve_client_config()

        assert config.max_retries is None
        assert config.connect_timeout == 5.0

    def test_explicit_values_override_environment(self, clean_env) -> None:
        clean_env.setenv("ARANGO_DATABASE", "app")
        config = resolve_client_config(database_name="override", retry_on_conflict=1)
        assert config.database_name == "override"
        assert config.retry_on_conflict == 1

    def test_explicit_token_replaces_environment_credentials(self, clean_env) -> None:
        """Mixing an explicit token with env username/password must not fail validation."""
        clean_env.setenv("ARANGO_USERNAME", "root")
        clean_env.setenv("ARANGO_PASSWORD", "pw")

        config = resolve_client_config(token="jwt")

        assert config.token == "jwt"
        assert config.username is None
        assert config.password is None
