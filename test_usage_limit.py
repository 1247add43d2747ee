"""
Daily usage quota: counting, day rollover, limits per caller type and the
bypass switch.
"""

from datetime import date

from nexsupply.usage_limit import (
    ANONYMOUS_DAILY_LIMIT,
    AUTHENTICATED_DAILY_LIMIT,
    BYPASS_ENV_VAR,
    UsageLimiter,
    day_key,
)


class FakeCalendar:
    def __init__(self, day):
        self.day = day

    def __call__(self):
        return self.day


def test_day_key_is_yyyymmdd():
    assert day_key(date(2024, 12, 25)) == 20241225
    assert day_key(date(2025, 1, 3)) == 20250103


def test_first_call_counts_one_and_every_call_increments(monkeypatch):
    monkeypatch.delenv(BYPASS_ENV_VAR, raising=False)
    limiter = UsageLimiter(today=FakeCalendar(date(2024, 5, 1)))

    counts = [limiter.increment_usage("1.2.3.4-curl", False).count for _ in range(4)]

    assert counts == [1, 2, 3, 4]


def test_anonymous_second_call_exceeds_limit(monkeypatch):
    monkeypatch.delenv(BYPASS_ENV_VAR, raising=False)
    limiter = UsageLimiter()

    first = limiter.increment_usage("anon", False)
    second = limiter.increment_usage("anon", False)

    assert first.limit == ANONYMOUS_DAILY_LIMIT == 1
    assert not first.exceeded
    assert second.exceeded


def test_authenticated_limit_is_five(monkeypatch):
    monkeypatch.delenv(BYPASS_ENV_VAR, raising=False)
    limiter = UsageLimiter()

    results = [limiter.increment_usage("buyer@example.com", True) for _ in range(6)]

    assert all(r.limit == AUTHENTICATED_DAILY_LIMIT == 5 for r in results)
    assert [r.exceeded for r in results] == [False] * 5 + [True]


def test_new_day_resets_count(monkeypatch):
    monkeypatch.delenv(BYPASS_ENV_VAR, raising=False)
    calendar = FakeCalendar(date(2024, 5, 1))
    limiter = UsageLimiter(today=calendar)

    limiter.increment_usage("anon", False)
    limiter.increment_usage("anon", False)
    calendar.day = date(2024, 5, 2)

    assert limiter.increment_usage("anon", False).count == 1


def test_identifiers_are_counted_separately(monkeypatch):
    monkeypatch.delenv(BYPASS_ENV_VAR, raising=False)
    limiter = UsageLimiter()

    limiter.increment_usage("a", False)
    limiter.increment_usage("a", False)

    assert limiter.increment_usage("b", False).count == 1


def test_bypass_returns_zero_and_leaves_state_alone(monkeypatch):
    limiter = UsageLimiter()
    monkeypatch.delenv(BYPASS_ENV_VAR, raising=False)
    limiter.increment_usage("anon", False)

    monkeypatch.setenv(BYPASS_ENV_VAR, "true")
    for _ in range(3):
        result = limiter.increment_usage("anon", False)
        assert result.count == 0
        assert result.limit == 1
        assert not result.exceeded

    monkeypatch.delenv(BYPASS_ENV_VAR)
    assert limiter.get_usage("anon", False).count == 1


def test_bypass_requires_exact_true(monkeypatch):
    monkeypatch.setenv(BYPASS_ENV_VAR, "1")
    limiter = UsageLimiter()

    assert limiter.increment_usage("anon", False).count == 1


def test_get_usage_peeks_without_charging(monkeypatch):
    monkeypatch.delenv(BYPASS_ENV_VAR, raising=False)
    calendar = FakeCalendar(date(2024, 5, 1))
    limiter = UsageLimiter(today=calendar)

    assert limiter.get_usage("anon", False).count == 0
    limiter.increment_usage("anon", False)
    assert limiter.get_usage("anon", False).count == 1
    assert limiter.get_usage("anon", False).count == 1

    calendar.day = date(2024, 5, 2)
    assert limiter.get_usage("anon", False).count == 0


def test_reset_clears_all_callers(monkeypatch):
    monkeypatch.delenv(BYPASS_ENV_VAR, raising=False)
    limiter = UsageLimiter()
    limiter.increment_usage("anon", False)

    limiter.reset()

    assert limiter.increment_usage("anon", False).count == 1


def test_check_and_increment_counts_per_key_and_day():
    calendar = FakeCalendar(date(2024, 5, 1))
    limiter = UsageLimiter(today=calendar)

    assert [limiter.check_and_increment("k", 2) for _ in range(3)] == [1, 2, 3]
    assert limiter.check_and_increment("other", 2) == 1

    calendar.day = date(2024, 5, 2)
    assert limiter.check_and_increment("k", 2) == 1
