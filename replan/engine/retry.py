"""Retry controller for migrations.

Runs an operation with bounded, exponential backoff. Every failure is
classified first; only errors that are both `retryable` and listed in the
config's `retryable_kinds` are retried. Attempt counting starts at 1, so
`max_retries=3` means at most three calls in total.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random_exponential,
)

from replan.models.errors import MigrationCancelled, MigrationError
from replan.models.migration import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

Classifier = Callable[[BaseException], MigrationError]


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a running batch."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; returns True if cancelled meanwhile."""
        return self._event.wait(seconds)


@dataclass
class RetryOutcome(Generic[T]):
    """Result of RetryController.run."""

    success: bool
    attempts: int
    value: Optional[T] = None
    error: Optional[MigrationError] = None


def compute_backoff_delay(attempt: int, config: RetryConfig) -> float:
    """Delay in seconds after failed attempt number `attempt` (1-based), without jitter."""
    delay_ms = config.base_delay_ms * (config.backoff_multiplier ** (attempt - 1))
    return min(delay_ms, config.max_delay_ms) / 1000.0


class RetryController:
    """Executes operations with classified, bounded exponential backoff."""

    def __init__(self, sleep: Optional[Callable[[float], None]] = None):
        """Create a controller.

        Args:
            sleep: Replacement for the backoff sleep (tests pass a recorder). When
                omitted, backoff waits on the cancellation token if one is given.
        """
        self._sleep = sleep

    def _wait_strategy(self, config: RetryConfig):
        multiplier = config.base_delay_ms / 1000.0
        max_delay = config.max_delay_ms / 1000.0
        if config.jitter:
            return wait_random_exponential(multiplier=multiplier, max=max_delay, exp_base=config.backoff_multiplier)
        return wait_exponential(multiplier=multiplier, max=max_delay, exp_base=config.backoff_multiplier)

    def _sleeper(self, cancel_token: Optional[CancellationToken]) -> Callable[[float], None]:
        def sleep(seconds: float) -> None:
            if cancel_token is not None and cancel_token.cancelled:
                raise MigrationCancelled("Cancelled before retry")
            if self._sleep is not None:
                self._sleep(seconds)
                interrupted = cancel_token is not None and cancel_token.cancelled
            elif cancel_token is not None:
                interrupted = cancel_token.wait(seconds)
            else:
                time.sleep(seconds)
                interrupted = False
            if interrupted:
                raise MigrationCancelled("Cancelled while waiting to retry")
        return sleep

    @staticmethod
    def _log_before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"Attempt {retry_state.attempt_number} failed ({type(exc).__name__}: {exc}); "
            f"retrying in {delay:.2f}s"
        )

    def run(
        self,
        operation: Callable[[], T],
        classify: Classifier,
        config: Optional[RetryConfig] = None,
        on_attempt: Optional[Callable[[int], None]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> RetryOutcome[T]:
        """Run `operation` until it succeeds, fails non-retryably, or attempts run out.

        Args:
            operation: Zero-argument callable doing the work
            classify: Maps a raised exception to a MigrationError
            config: Backoff settings (defaults to RetryConfig())
            on_attempt: Called with the 1-based attempt number before each try
            cancel_token: Interrupts the backoff sleep when cancelled

        Returns:
            RetryOutcome with the value on success or the last classified error

        Raises:
            MigrationCancelled: if `cancel_token` fires during a backoff sleep
        """
        config = config or RetryConfig()
        attempts = 0

        def attempt() -> T:
            nonlocal attempts
            attempts += 1
            if on_attempt is not None:
                on_attempt(attempts)
            return operation()

        def should_retry(exc: BaseException) -> bool:
            if not isinstance(exc, Exception) or isinstance(exc, MigrationCancelled):
                return False
            error = classify(exc)
            return error.retryable and error.kind in config.retryable_kinds

        retrying = Retrying(
            stop=stop_after_attempt(config.max_retries),
            wait=self._wait_strategy(config),
            retry=retry_if_exception(should_retry),
            sleep=self._sleeper(cancel_token),
            before_sleep=self._log_before_sleep,
            reraise=True,
        )

        try:
            value = retrying(attempt)
        except MigrationCancelled:
            raise
        except Exception as exc:
            error = classify(exc)
            if attempts > 1:
                logger.warning(f"Giving up after {attempts} attempts: {error.kind.value}: {error.message}")
            return RetryOutcome(success=False, attempts=attempts, error=error)

        return RetryOutcome(success=True, attempts=attempts, value=value)
