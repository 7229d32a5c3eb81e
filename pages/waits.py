"""Bounded polling used by page objects while an element settles.

A `WaitPolicy` re-evaluates a condition at a fixed interval until it returns
a truthy value or the time budget is spent. Transient errors raised by the
condition are retried like a falsy result; anything else propagates on the
first occurrence.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, TypeVar

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_delay,
    wait_fixed,
)

from pages.errors import TRANSIENT_ERRORS, ElementNotFoundError

T = TypeVar("T")

DEFAULT_WAIT_TIMEOUT_S = 100.0
VISIBILITY_POLL_S = 1.0
INVISIBILITY_POLL_S = 0.01


def _falsy(value: object) -> bool:
    return not value


@dataclass(frozen=True)
class WaitPolicy:
    """Timeout, poll interval and the error classes swallowed while polling."""

    timeout_s: float
    poll_interval_s: float
    ignored: tuple[type[BaseException], ...] = TRANSIENT_ERRORS

    def until(self, condition: Callable[[], T], description: str = "condition") -> T:
        """Return the first truthy result of `condition`.

        Raises ElementNotFoundError once `timeout_s` has elapsed without one.
        """
        retrying = Retrying(
            stop=stop_after_delay(self.timeout_s),
            wait=wait_fixed(self.poll_interval_s),
            retry=retry_if_exception_type(self.ignored) | retry_if_result(_falsy),
        )
        try:
            return retrying(condition)
        except RetryError as exc:
            raise ElementNotFoundError(
                f"Timed out after {self.timeout_s}s waiting for {description}"
            ) from exc


VISIBILITY_POLICY = WaitPolicy(timeout_s=DEFAULT_WAIT_TIMEOUT_S, poll_interval_s=VISIBILITY_POLL_S)
INVISIBILITY_POLICY = WaitPolicy(
    timeout_s=DEFAULT_WAIT_TIMEOUT_S, poll_interval_s=INVISIBILITY_POLL_S
)
