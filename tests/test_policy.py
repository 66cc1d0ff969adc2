import pytest

from genstudio.tasks.models import Modality
from genstudio.tasks.policy import Retry, RetryPolicy, Stop
from genstudio.tasks.registry import registry


class TestRetryPolicy:
    @pytest.mark.parametrize(
        ("attempt", "max_retries", "hint", "expected"),
        [
            (0, 5, 20.0, Retry(20.0)),
            (0, 5, None, Retry(7.0)),
            (0, 5, 0.0, Retry(7.0)),
            (0, 5, -3.0, Retry(7.0)),
            (4, 5, 1.5, Retry(1.5)),
            (5, 5, 20.0, Stop()),
            (6, 5, None, Stop()),
            (0, 0, 20.0, Stop()),
        ],
    )
    def test_decide(self, attempt: int, max_retries: int, hint, expected) -> None:
        assert RetryPolicy(7.0).decide(attempt, max_retries, hint) == expected

    def test_stops_exactly_at_max_retries(self) -> None:
        policy = RetryPolicy(5.0)
        decisions = [policy.decide(attempt, 3) for attempt in range(5)]

        assert [isinstance(d, Retry) for d in decisions] == [True, True, True, False, False]

    def test_non_positive_fallback_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(0)
        with pytest.raises(ValueError):
            RetryPolicy(-1.0)

    @pytest.mark.parametrize(
        ("modality", "fallback"),
        [
            (Modality.IMAGE, 20.0),
            (Modality.VIDEO, 60.0),
            (Modality.AUDIO_TTS, 5.0),
            (Modality.AUDIO_STT, 5.0),
            (Modality.TEXT, 5.0),
        ],
    )
    def test_for_profile_uses_modality_fallback(self, modality: Modality, fallback: float) -> None:
        policy = RetryPolicy.for_profile(registry.get(modality))

        assert policy.decide(0, 1) == Retry(fallback)
