"""Host selection strategies."""

from __future__ import annotations

import random
from dataclasses import dataclass
from enum import Enum

from .errors import ConfigurationError


class LoadBalancingStrategy(str, Enum):
    """How requests are spread over the coordinators in the pool."""

    NONE = "NONE"
    ROUND_ROBIN = "ROUND_ROBIN"
    ONE_RANDOM = "ONE_RANDOM"
    ACTIVE_FAILOVER = "ACTIVE_FAILOVER"

    @classmethod
    def parse(cls, value: str | LoadBalancingStrategy) -> LoadBalancingStrategy:
        try:
            return cls(value.upper() if isinstance(value, str) else value)
        except ValueError as exc:
            choices = ", ".join(member.value for member in cls)
            raise ConfigurationError(f"Unknown load balancing strategy {value!r}, expected one of: {choices}") from exc


@dataclass
class LoadBalancingState:
    """Mutable selection state owned by one connection."""

    cursor: int = 0
    fixed_index: int | None = None
    dirty_cursor: int | None = None


class LoadBalancer:
    """Picks the pool index that serves the next request.

    :meth:`select_host` contains no suspension point, so concurrent tasks
    sharing one balancer can never interleave a read and its increment.
    """

    def __init__(
        self,
        strategy: LoadBalancingStrategy = LoadBalancingStrategy.NONE,
        state: LoadBalancingState | None = None,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self.strategy = LoadBalancingStrategy.parse(strategy)
        self.state = state or LoadBalancingState()
        self._rng = rng or random.Random()

    def validate_pool_size(self, size: int) -> None:
        if self.strategy is LoadBalancingStrategy.NONE and size > 1:
            raise ConfigurationError(
                f"Load balancing strategy NONE accepts a single URL, got {size}; "
                "use ROUND_ROBIN, ONE_RANDOM or ACTIVE_FAILOVER for multiple hosts"
            )

    def select_host(self, pool_size: int) -> int:
        if pool_size < 1:
            raise ConfigurationError("No hosts configured")

        if self.strategy is LoadBalancingStrategy.ROUND_ROBIN:
            index = self.state.cursor % pool_size
            self.state.cursor = (index + 1) % pool_size
            return index

        if self.strategy is LoadBalancingStrategy.ONE_RANDOM:
            if self.state.fixed_index is None:
                self.state.fixed_index = self._rng.randrange(pool_size)
            return self.state.fixed_index % pool_size

        return 0

    def select_dirty_host(self, pool_size: int) -> int:
        """Index for a request that allows dirty reads.

        Dirty reads rotate over every host, followers included, whatever
        the strategy. Under ONE_RANDOM the rotation starts at a random host.
        """
        if pool_size < 1:
            raise ConfigurationError("No hosts configured")
        if self.state.dirty_cursor is None:
            self.state.dirty_cursor = (
                self._rng.randrange(pool_size) if self.strategy is LoadBalancingStrategy.ONE_RANDOM else 0
            )
        index = self.state.dirty_cursor % pool_size
        self.state.dirty_cursor = (index + 1) % pool_size
        return index

    def failover_index(self, failed_index: int, pool_size: int) -> int:
        """Index a request moves to after a network failure on ``failed_index``."""
        if pool_size < 1:
            raise ConfigurationError("No hosts configured")
        return (failed_index + 1) % pool_size


__all__ = ["LoadBalancer", "LoadBalancingState", "LoadBalancingStrategy"]
