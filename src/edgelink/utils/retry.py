from __future__ import annotations
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

T = TypeVar("T")

@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 1.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")

def with_retries(
    fn: Callable[[], T],
    policy: RetryPolicy,
    *,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    give_up_on: Tuple[Type[BaseException], ...] = (),
    sleep: Callable[[float], None] = time.sleep,
    on_failure: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """
    Call fn until it returns, at most policy.attempts times.
    No delay before the first attempt; the delay doubles per retry, capped
    at max_delay_s. Errors outside retry_on, and errors in give_up_on even
    when retry_on matches them, propagate immediately.
    """
    last_exc: BaseException | None = None
    delay = policy.base_delay_s
    for attempt in range(1, policy.attempts + 1):
        if attempt > 1:
            sleep(delay)
            delay = min(policy.max_delay_s, delay * 2)
        try:
            return fn()
        except give_up_on:
            raise
        except retry_on as e:
            last_exc = e
            if on_failure is not None:
                on_failure(attempt, e)
    assert last_exc is not None
    raise last_exc
