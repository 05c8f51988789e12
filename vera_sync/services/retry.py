# vera_sync/services/retry.py
"""
Bounded retry policy for failed Sourcify submissions.

A submission rejected by the Sourcify server is stored as `failed` together
with the number of attempts made so far. The push-forward pass resubmits it
only while `attempts < max_attempts` and once the backoff for the last
attempt has elapsed.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_s: float = 300.0
    backoff_factor: float = 2.0
    max_delay_s: float = 86400.0

    def delay_for(self, attempts: int) -> float:
        """Seconds to wait after the `attempts`-th attempt before trying again."""
        if attempts <= 0:
            return 0.0
        delay = self.base_delay_s * (self.backoff_factor ** (attempts - 1))
        return min(delay, self.max_delay_s)

    def next_attempt_at(self, attempts: int, last_attempt_at: datetime) -> datetime:
        return last_attempt_at + timedelta(seconds=self.delay_for(attempts))

    def can_retry(self, attempts: int, last_attempt_at: Optional[datetime], now: datetime) -> bool:
        if attempts >= self.max_attempts:
            return False
        if last_attempt_at is None:
            return True
        return now >= self.next_attempt_at(attempts, last_attempt_at)

    def latest_eligible_update(self, attempts: int, now: datetime) -> datetime:
        """Newest `updated_at` a row with `attempts` attempts may have and still be due."""
        return now - timedelta(seconds=self.delay_for(attempts))
