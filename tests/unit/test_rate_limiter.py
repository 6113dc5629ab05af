import pytest

from echo_ai.core.errors import RateLimitExceeded
from echo_ai.core.rate_limiter import RateLimiter, SlidingWindow


def test_window_admits_up_to_limit_then_rejects(clock):
    window = SlidingWindow(3, 5, clock=clock)
    assert [window.allow("u") for _ in range(4)] == [True, True, True, False]
    assert window.count("u") == 3


def test_window_rejection_does_not_extend_lockout(clock):
    window = SlidingWindow(2, 10, clock=clock)
    window.allow("u")
    clock.advance(4)
    window.allow("u")
    clock.advance(1)
    for _ in range(5):
        assert window.allow("u") is False
    assert window.retry_after("u") == pytest.approx(5)
    clock.advance(5)
    assert window.allow("u") is True


def test_window_boundary_timestamp_leaves_window(clock):
    window = SlidingWindow(1, 5, clock=clock)
    assert window.allow("u")
    clock.advance(4.5)
    assert not window.allow("u")
    clock.advance(0.5)
    assert window.allow("u")


def test_window_keys_are_independent(clock):
    window = SlidingWindow(1, 60, clock=clock)
    assert window.allow("a")
    assert window.allow("b")
    assert window.retry_after("c") == 0.0


def test_window_rejects_bad_arguments():
    with pytest.raises(ValueError):
        SlidingWindow(0, 5)
    with pytest.raises(ValueError):
        SlidingWindow(1, 0)


def test_limiter_uses_user_action_subject_key(limiter):
    assert RateLimiter.subject_key("42", "knowledge_rating") == "42-knowledge_rating"
    for _ in range(5):
        assert limiter.allow("42", "knowledge_rating")
    assert not limiter.allow("42", "knowledge_rating")
    assert limiter.allow("43", "knowledge_rating")


def test_check_is_atomic_across_windows(clock):
    limiter = RateLimiter({"burst": (3, 5), "sustained": (4, 60)}, clock=clock)
    for _ in range(3):
        limiter.check("u", "burst", "sustained")
    with pytest.raises(RateLimitExceeded) as exc:
        limiter.check("u", "burst", "sustained")
    assert exc.value.action == "burst"
    # The rejected call recorded nothing in the sustained window
    clock.advance(6)
    limiter.check("u", "burst", "sustained")
    with pytest.raises(RateLimitExceeded) as exc:
        limiter.check("u", "burst", "sustained")
    assert exc.value.action == "sustained"
    assert exc.value.wait_seconds == pytest.approx(54)
    assert exc.value.wait_seconds_rounded == 54


def test_check_unknown_action_raises_key_error(limiter):
    with pytest.raises(KeyError):
        limiter.check("u", "nope")
