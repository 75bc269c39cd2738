#!/usr/bin/env python3
import random
import time
from typing import Callable, Optional, TypeVar

from ai_relay.config.schemas import RetryConfig
from ai_relay.logger import as_relay_logger
from ..cancellation import CancellationToken, check_canceled
from ..errors import Canceled, TransportError

T = TypeVar('T')


class RetryPolicy:
    """
    Exponential backoff for transient transport failures.

    Transient means network errors, HTTP 429 and HTTP 5xx. Anything else
    (including other 4xx) is raised on the first attempt. Attempts run
    strictly one after another; the backoff sleep is the only blocking point
    and is interrupted by the caller's cancellation token.
    """

    def __init__(self, config: Optional[RetryConfig] = None, logger=None, random_fn: Callable[[], float] = random.random):
        self.config = config or RetryConfig()
        self.logger = as_relay_logger(logger, __name__)
        self._random = random_fn

    @property
    def max_attempts(self) -> int:
        return self.config.max_attempts if self.config.enabled else 1

    def compute_delay(self, attempt: int) -> float:
        """Delay after failed `attempt` (1-based): initial * multiplier^(attempt-1), capped."""
        cfg = self.config
        delay = cfg.initial_delay * (cfg.backoff_multiplier ** max(0, attempt - 1))
        delay = max(0.0, min(cfg.max_delay, delay))
        if cfg.jitter:
            # Scale into [delay/2, delay]
            delay *= 0.5 + self._random() * 0.5
        return delay

    def is_retryable(self, error: Exception) -> bool:
        return isinstance(error, TransportError) and error.is_transient

    def execute_with_retry(
        self,
        fn: Callable[[int], T],
        cancel_token: Optional[CancellationToken] = None,
        **log_context
    ) -> T:
        """
        Run `fn(attempt)` until it succeeds or retries are exhausted.

        Args:
            fn: One attempt; receives the 1-based attempt number and raises
                TransportError on failure
            cancel_token: Checked before every attempt and every backoff sleep
            **log_context: Extra keyword context for debug logs (method, path, ...)

        Returns:
            The first successful result

        Raises:
            TransportError: Last attempt's error, or a non-transient error
            Canceled: The token fired before an attempt or during a sleep
        """
        max_attempts = self.max_attempts

        for attempt in range(1, max_attempts + 1):
            check_canceled(cancel_token)

            try:
                result = fn(attempt)
            except TransportError as e:
                if not self.is_retryable(e):
                    self.logger.debug(
                        "Transport error not retryable, raising",
                        attempt=attempt,
                        status_code=e.http_code,
                        request_id=e.request_id,
                        error=str(e),
                        **log_context
                    )
                    raise

                if attempt >= max_attempts:
                    self.logger.debug(
                        f"Transport error on final attempt {attempt}/{max_attempts}, raising",
                        attempt=attempt,
                        max_attempts=max_attempts,
                        status_code=e.http_code,
                        request_id=e.request_id,
                        error=str(e),
                        **log_context
                    )
                    raise

                delay = self.compute_delay(attempt)
                label = f"HTTP {e.http_code}" if e.http_code is not None else "Network error"
                self.logger.debug(
                    f"{label}, retrying in {delay:.2f}s",
                    attempt=attempt,
                    max_attempts=max_attempts,
                    status_code=e.http_code,
                    delay_seconds=delay,
                    error=str(e),
                    **log_context
                )
                self._sleep(delay, cancel_token)
                continue

            if attempt > 1:
                self.logger.debug(
                    f"Request succeeded after {attempt} attempts",
                    attempt=attempt,
                    **log_context
                )
            return result

        # max_attempts >= 1, so the loop always returns or raises
        raise AssertionError("retry loop exited without a result")

    def _sleep(self, delay: float, cancel_token: Optional[CancellationToken]):
        if cancel_token is None:
            time.sleep(delay)
            return

        check_canceled(cancel_token)
        if cancel_token.wait(delay):
            raise Canceled(cancel_token.reason or "Operation was canceled during retry backoff.")
