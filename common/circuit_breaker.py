"""
Circuit breaker shared by every ledger query of one reconciler.

After `failure_threshold` consecutive failures the breaker opens and calls
fail fast with CircuitBreakerException; once `reset_timeout` has passed a
trial call is let through (half-open) and `success_threshold` successes close
it again.
"""
import asyncio
import functools
import inspect
import time
from enum import Enum
from typing import Awaitable, Callable, Any
from dataclasses import dataclass
import logging

logger = logging.getLogger(__name__)

class CircuitState(Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"

@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout: float = 60.0
    success_threshold: int = 3
    timeout: float = 10.0  # per call, seconds

class CircuitBreakerException(Exception):
    """Raised instead of calling through while the circuit is open"""
    pass

class CircuitBreaker:
    def __init__(self, name: str, config: CircuitBreakerConfig):
        self.name = name
        self.config = config
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.opened_at = 0.0

    def _move_to(self, state: CircuitState) -> None:
        if state is self.state:
            return
        logger.warning(f"Circuit breaker {self.name}: {self.state.value} -> {state.value}")
        self.state = state
        self.success_count = 0
        if state is CircuitState.OPEN:
            self.opened_at = time.monotonic()
        elif state is CircuitState.CLOSED:
            self.failure_count = 0

    def _invoke(self, func: Callable, *args, **kwargs) -> Awaitable:
        if inspect.iscoroutinefunction(func):
            return func(*args, **kwargs)
        # Blocking clients (requests) must not stall the event loop
        loop = asyncio.get_running_loop()
        return loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        if (self.state is CircuitState.OPEN
                and time.monotonic() - self.opened_at >= self.config.reset_timeout):
            self._move_to(CircuitState.HALF_OPEN)
        if self.state is CircuitState.OPEN:
            raise CircuitBreakerException(f"Circuit breaker {self.name} is open")

        try:
            result = await asyncio.wait_for(self._invoke(func, *args, **kwargs), self.config.timeout)
        except Exception:
            self.failure_count += 1
            if self.state is CircuitState.HALF_OPEN or self.failure_count >= self.config.failure_threshold:
                self._move_to(CircuitState.OPEN)
            raise

        if self.state is CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.config.success_threshold:
                self._move_to(CircuitState.CLOSED)
        else:
            self.failure_count = 0
        return result

    def get_state(self) -> dict:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
        }

LEDGER_CB_CONFIG = CircuitBreakerConfig(
    failure_threshold=5,
    reset_timeout=30.0,
    success_threshold=2,
    timeout=15.0
)
