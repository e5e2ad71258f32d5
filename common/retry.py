"""
Exponential backoff for one-off calls that must eventually succeed (startup)
"""
import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Tuple, Type, TypeVar
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")

@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: bool = True
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)

    def delay(self, attempt: int) -> float:
        """Sleep before attempt `attempt + 1`: doubles each time, capped, optionally jittered"""
        delay = min(self.base_delay * 2 ** (attempt - 1), self.max_delay)
        return delay * random.uniform(0.5, 1.0) if self.jitter else delay

async def retry_async(func: Callable[..., Awaitable[T]], policy: RetryPolicy, *args, **kwargs) -> T:
    """Await `func` until it succeeds; errors outside `policy.retry_on` propagate at once"""
    name = getattr(func, "__qualname__", repr(func))
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await func(*args, **kwargs)
        except policy.retry_on as e:
            if attempt == policy.max_attempts:
                logger.error(f"Giving up on {name} after {attempt} attempts: {e}")
                raise
            delay = policy.delay(attempt)
            logger.warning(f"Attempt {attempt}/{policy.max_attempts} of {name} failed: {e}. Retrying in {delay:.2f}s")
            await asyncio.sleep(delay)
    raise RuntimeError("max_attempts must be at least 1")
