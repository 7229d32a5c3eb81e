"""Transient element errors and translation of raw Playwright failures.

Playwright reports every driver failure as `Error` (or its `TimeoutError`
subclass) and only the message tells a detached node apart from anything
else. The wait helpers need typed signals, so interactions run inside
`driver_errors()` which re-raises the two transient conditions as the
classes below and lets every other error through untouched.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

# Lower-cased fragments of Playwright messages raised for handles whose node is gone.
STALE_MESSAGE_MARKERS = (
    "not attached to the dom",
    "element is detached",
    "execution context was destroyed",
    "jshandle is disposed",
)


class StaleElementError(PlaywrightError):
    """The referenced DOM node was replaced or removed after it was resolved."""


class ElementNotFoundError(PlaywrightTimeoutError):
    """An element did not reach the expected state before the wait ran out."""


TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (ElementNotFoundError, StaleElementError)


def is_stale_error(exc: BaseException) -> bool:
    if isinstance(exc, StaleElementError):
        return True
    if not isinstance(exc, PlaywrightError):
        return False
    message = (getattr(exc, "message", None) or str(exc)).lower()
    return any(marker in message for marker in STALE_MESSAGE_MARKERS)


@contextmanager
def driver_errors() -> Iterator[None]:
    """Translate Playwright timeouts and detached-node errors into transient classes."""
    try:
        yield
    except (ElementNotFoundError, StaleElementError):
        raise
    except PlaywrightTimeoutError as exc:
        raise ElementNotFoundError(str(exc)) from exc
    except PlaywrightError as exc:
        if is_stale_error(exc):
            raise StaleElementError(str(exc)) from exc
        raise
