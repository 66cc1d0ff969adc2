"""Retry policy for model-loading responses.

Pure and stateless: it never sleeps or touches timers, it only tells the
lifecycle manager whether to schedule another attempt and after how long.
"""

from dataclasses import dataclass

from .registry import ModalityProfile


@dataclass(frozen=True)
class Retry:
    delay_seconds: float


@dataclass(frozen=True)
class Stop:
    pass


RetryDecision = Retry | Stop


class RetryPolicy:
    """Decide retry/stop from the attempt count and the server's wait hint."""

    def __init__(self, fallback_delay_seconds: float):
        if fallback_delay_seconds <= 0:
            raise ValueError("fallback_delay_seconds must be positive")
        self.fallback_delay_seconds = fallback_delay_seconds

    @classmethod
    def for_profile(cls, profile: ModalityProfile) -> "RetryPolicy":
        return cls(profile.fallback_delay_seconds)

    def decide(
        self,
        attempt: int,
        max_retries: int,
        server_hint: float | None = None,
    ) -> RetryDecision:
        if attempt >= max_retries:
            return Stop()
        if server_hint is not None and server_hint > 0:
            return Retry(delay_seconds=server_hint)
        return Retry(delay_seconds=self.fallback_delay_seconds)
