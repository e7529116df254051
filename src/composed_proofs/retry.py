"""
ZK-PRET Composed Proofs - Retry Controller
Version: 1.0
Purpose: Run one component invocation under a backoff policy and a timeout
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .models import BackoffStrategy, ComponentStatus, RetryPolicy, ToolExecutionOutcome, ToolStatus

logger = logging.getLogger(__name__)

Attempt = Callable[[], Awaitable[ToolExecutionOutcome]]
RetryCallback = Callable[[int, float, str, Optional[str]], None]


def calculate_backoff_delay(policy: RetryPolicy, retry_number: int) -> float:
    """
    Delay before the given retry (1-based).

    FIXED: d, LINEAR: d * n, EXPONENTIAL: d * 2^(n-1)
    """
    base = policy.backoff_delay_seconds
    if policy.backoff_strategy == BackoffStrategy.LINEAR:
        return base * retry_number
    if policy.backoff_strategy == BackoffStrategy.EXPONENTIAL:
        return base * (2 ** (retry_number - 1))
    return base


@dataclass
class RetryOutcome:
    """Final outcome after all attempts"""

    status: ComponentStatus
    retry_count: int
    elapsed_ms: int
    outcome: Optional[ToolExecutionOutcome] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def zk_proof_generated(self) -> bool:
        return bool(self.outcome and self.outcome.zk_proof_generated)


class RetryController:
    """
    Wraps a single component invocation with retries.

    - An ERROR outcome (or an exception from the attempt) is a failure. Its
      kind is the outcome's error_kind, or the exception class name.
    - A kind outside ``retryable_errors`` (when that list is set) stops
      immediately without consuming a retry.
    - PASS and FAIL are final; FAIL is a verdict and is never retried.
    - A timeout on any attempt yields TIMEOUT and stops retrying.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    def is_retryable(self, error_kind: Optional[str]) -> bool:
        if self.policy.retryable_errors is None:
            return True
        return error_kind in self.policy.retryable_errors

    async def run(
        self,
        component_id: str,
        attempt: Attempt,
        timeout_seconds: Optional[float] = None,
        on_retry: Optional[RetryCallback] = None,
    ) -> RetryOutcome:
        started = time.perf_counter()
        retries = 0
        last_error: Optional[str] = None
        last_kind: Optional[str] = None
        last_outcome: Optional[ToolExecutionOutcome] = None

        def elapsed() -> int:
            return int((time.perf_counter() - started) * 1000)

        while True:
            try:
                if timeout_seconds is not None:
                    outcome = await asyncio.wait_for(attempt(), timeout=timeout_seconds)
                else:
                    outcome = await attempt()
            except asyncio.TimeoutError:
                logger.warning(
                    f"Component {component_id} timed out after {timeout_seconds}s "
                    f"(attempt {retries + 1})"
                )
                return RetryOutcome(
                    status=ComponentStatus.TIMEOUT,
                    retry_count=retries,
                    elapsed_ms=elapsed(),
                    error=f"Timed out after {timeout_seconds}s",
                    error_kind="TIMEOUT",
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                outcome = ToolExecutionOutcome(
                    status=ToolStatus.ERROR, error=str(e), error_kind=type(e).__name__
                )

            if outcome.status != ToolStatus.ERROR:
                return RetryOutcome(
                    status=ComponentStatus(outcome.status.value),
                    retry_count=retries,
                    elapsed_ms=elapsed(),
                    outcome=outcome,
                    error=outcome.error,
                    error_kind=outcome.error_kind,
                )

            last_outcome = outcome
            last_error = outcome.error or "Unknown execution error"
            last_kind = outcome.error_kind
            logger.warning(
                f"Component {component_id} attempt {retries + 1} failed "
                f"[{last_kind}]: {last_error}"
            )

            if not self.is_retryable(last_kind):
                logger.info(f"Error kind {last_kind} is not retryable for {component_id}")
                break
            if retries >= self.policy.max_retries:
                break

            retries += 1
            delay = calculate_backoff_delay(self.policy, retries)
            if on_retry is not None:
                on_retry(retries, delay, last_error, last_kind)
            if delay > 0:
                await self._sleep(delay)

        return RetryOutcome(
            status=ComponentStatus.ERROR,
            retry_count=retries,
            elapsed_ms=elapsed(),
            outcome=last_outcome,
            error=last_error,
            error_kind=last_kind,
        )
