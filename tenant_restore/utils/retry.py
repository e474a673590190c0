from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryOutcome(Generic[T]):
    succeeded: bool
    attempts: int
    value: T | None = None
    last_error: Exception | None = None


def run_with_fixed_delay(
    *,
    operation: Callable[[], T],
    max_attempts: int,
    delay_seconds: float,
    sleep_fn: Callable[[float], None] = time.sleep,
    on_failure: Callable[[int, Exception], None] | None = None,
) -> RetryOutcome[T]:
    """Sleep ``delay_seconds`` before every attempt, up to ``max_attempts`` attempts."""
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        sleep_fn(delay_seconds)
        try:
            value = operation()
        except Exception as error:  # noqa: BLE001
            last_error = error
            if on_failure is not None:
                on_failure(attempt, error)
            continue
        return RetryOutcome(succeeded=True, attempts=attempt, value=value)

    return RetryOutcome(
        succeeded=False,
        attempts=max_attempts,
        last_error=last_error,
    )
