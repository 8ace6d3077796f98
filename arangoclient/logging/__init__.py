"""Structured logging setup."""

from .logging import LogManager

__all__ = ["LogManager"]
