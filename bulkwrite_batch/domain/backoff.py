"""
Pure retry backoff evaluation.

Attempt 1 waits the base delay; every later attempt doubles it, capped at
``max_delay``.  Attempt n therefore waits ``min(base * 2**(n-1), max)``,
which is ``base * 2**attempt`` for the successor of attempt ``attempt``.

Architecture: bulkwrite_batch/domain.  ZERO I/O.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from bulkwrite_kernel.exceptions import InvalidRetryBudgetError

# 2**64 times any sane base delay is far past every cap
_MAX_EXPONENT = 64


def compute_retry_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay in seconds before retry attempt number ``attempt``."""
    if isinstance(attempt, bool) or not isinstance(attempt, int) or attempt < 1:
        raise InvalidRetryBudgetError(None, attempt)
    if base_delay < 0 or max_delay < 0:
        raise ValueError(
            f"Delays must be non-negative: base={base_delay}, max={max_delay}"
        )
    exponent = attempt - 1
    if exponent >= _MAX_EXPONENT:
        return float(max_delay)
    return float(min(base_delay * (2 ** exponent), max_delay))


def compute_scheduled_for(now: datetime, delay_seconds: float) -> datetime:
    return now + timedelta(seconds=delay_seconds)
