"""Bounded retry policy for queued uploads.

Retries are not done in a loop around the request. A failed item goes back
to pending and is reconsidered on a later drain pass, which is itself
rate limited by the processor interval. This module only decides when an
item has used up its budget.
"""

from __future__ import annotations

from dataclasses import dataclass

from mediaqueue.core.config import DEFAULT_MAX_RETRIES


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget shared by the pre-attempt check and the failure path.

    retry_count counts failed attempts. An item is exhausted once it has
    failed more than max_retries times, so it gets max_retries + 1 attempts
    in total (initial + retries).

    Attributes:
        max_retries: Retries allowed after the initial attempt.
    """

    max_retries: int = DEFAULT_MAX_RETRIES

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

    @property
    def max_attempts(self) -> int:
        """Total attempts an item can get."""
        return self.max_retries + 1

    def is_exhausted(self, retry_count: int | None) -> bool:
        """Check whether an item may not be attempted again."""
        return (retry_count or 0) > self.max_retries

    def exhausted_reason(self, retry_count: int | None, last_error: str | None = None) -> str:
        """Human-readable failure reason for an exhausted item."""
        reason = f"Upload failed after {retry_count or 0} attempts"
        if last_error:
            reason = f"{reason}: {last_error}"
        return reason
