"""Tests for the retry delay policy."""

import pytest

from core.exponential_backoff import ErrorType, ExponentialBackoff, classify_status


def make_backoff(fake_sleep, **config):
    options = {"base": 2.0, "max_attempts": 5, "jitter_min_seconds": 1.0, "jitter_max_seconds": 1.0}
    options.update(config)
    return ExponentialBackoff(options, sleep=fake_sleep)


def test_rate_limit_delay_uses_fixed_floor_instead_of_jitter(fake_sleep):
    backoff = make_backoff(fake_sleep)
    assert backoff.calculate_delay(3, ErrorType.RATE_LIMIT) == pytest.approx(13.0)


def test_challenge_delay_is_doubled(fake_sleep):
    backoff = make_backoff(fake_sleep)
    standard = backoff.calculate_delay(2, ErrorType.HTTP_5XX)
    assert standard == pytest.approx(5.0)
    assert backoff.calculate_delay(2, ErrorType.CHALLENGE) == pytest.approx(10.0)


def test_network_delay_has_minimum(fake_sleep):
    backoff = make_backoff(fake_sleep, network_min_delay_seconds=10.0)
    assert backoff.calculate_delay(1, ErrorType.NETWORK) == pytest.approx(10.0)


def test_delay_is_capped(fake_sleep):
    backoff = make_backoff(fake_sleep, max_delay_seconds=30.0)
    assert backoff.calculate_delay(10, ErrorType.HTTP_5XX) == pytest.approx(30.0)


def test_attempt_ceiling_counts_total_attempts(fake_sleep):
    backoff = make_backoff(fake_sleep)
    assert backoff.should_retry(4, ErrorType.HTTP_5XX)
    assert not backoff.should_retry(5, ErrorType.HTTP_5XX)


def test_fatal_errors_are_never_retried(fake_sleep):
    backoff = make_backoff(fake_sleep)
    assert not backoff.should_retry(1, ErrorType.FATAL)


@pytest.mark.parametrize(
    "status, expected",
    [
        (429, ErrorType.RATE_LIMIT),
        (503, ErrorType.RATE_LIMIT),
        (502, ErrorType.HTTP_5XX),
        (524, ErrorType.HTTP_5XX),
        (404, ErrorType.FATAL),
    ],
)
def test_classify_status(status, expected):
    assert classify_status(status) == expected


@pytest.mark.asyncio
async def test_wait_with_backoff_sleeps_and_tracks(fake_sleep):
    backoff = make_backoff(fake_sleep)
    waited = await backoff.wait_with_backoff("https://example.com/a", 1, ErrorType.RATE_LIMIT)

    assert waited == pytest.approx(7.0)
    assert fake_sleep.delays == [pytest.approx(7.0)]
    assert backoff.get_global_statistics()["total_retries"] == 1


def test_success_drops_retry_state(fake_sleep):
    backoff = make_backoff(fake_sleep)
    backoff.track_failure("https://shop.example.com/a", ErrorType.HTTP_5XX)
    backoff.track_failure("https://shop.example.com/b", ErrorType.NETWORK)

    backoff.track_success("https://shop.example.com/a")

    assert list(backoff.retry_states) == ["https://shop.example.com/b"]
    assert backoff.get_global_statistics()["total_identifiers"] == 1


def test_retry_state_is_capped(fake_sleep):
    backoff = make_backoff(fake_sleep, max_tracked_identifiers=2)
    for name in ("a", "b", "c"):
        backoff.track_failure(name, ErrorType.HTTP_5XX)

    assert list(backoff.retry_states) == ["b", "c"]
