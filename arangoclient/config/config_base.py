"""
Base Configuration Classes
==========================

Pydantic-based configuration models with validation and serialization.
Explicit values take precedence over environment values, which take
precedence over defaults.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

T = TypeVar('T', bound='BaseConfig')


class ConfigError(Exception):
    """Configuration-related errors."""
    pass


class ConfigValidationError(ConfigError):
    """Configuration validation errors."""

    def __init__(self, message: str, errors: list[str]):
        self.errors = errors
        super().__init__(f"{message}: {'; '.join(errors)}")


class BaseConfig(BaseModel, ABC):
    """
    Abstract base for all configuration models.

    Provides Pydantic validation and serialization.
    Subclasses implement validate_semantics() for domain-specific rules.
    """

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
        use_enum_values=True,
        arbitrary_types_allowed=False,
    )

    @abstractmethod
    def validate_semantics(self) -> list[str]:
        """
        Validate semantic consistency beyond schema validation.

        Returns:
            List of validation error messages (empty if valid)
        """
        pass

    def validate_full(self) -> None:
        """
        Perform semantic validation (schema validation runs at __init__).

        Raises:
            ConfigValidationError: If validation fails
        """
        semantic_errors = self.validate_semantics()
        if semantic_errors:
            raise ConfigValidationError("Semantic validation failed", semantic_errors)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)

    def to_json(self, indent: int = 2) -> str:
        return self.model_dump_json(exclude_none=True, indent=indent)

    @classmethod
    def from_dict(cls: type[T], data: dict[str, Any]) -> T:
        """
        Create configuration from dictionary.

        Args:
            data: Configuration data

        Returns:
            Configuration instance

        Raises:
            ConfigValidationError: If validation fails
        """
        try:
            instance = cls(**data)
        except ValidationError as e:
            raise ConfigValidationError(
                "Failed to create from dict",
                [f"{err['loc']}: {err['msg']}" for err in e.errors()]
            ) from e
        instance.validate_full()
        return instance

    @classmethod
    def from_json(cls: type[T], json_str: str) -> T:
        """
        Create configuration from JSON string.

        Raises:
            ConfigValidationError: If the JSON is malformed or validation fails
        """
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise ConfigValidationError("Invalid JSON format", [str(e)]) from e
        return cls.from_dict(data)
