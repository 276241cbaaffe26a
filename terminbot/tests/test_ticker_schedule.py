from __future__ import annotations

import smtplib
from contextlib import contextmanager
from typing import Iterator
from unittest.mock import MagicMock, patch

import httpx

from terminbot.checker import Checker
from terminbot.config import CheckerSettings, NotifierSettings, Settings
from terminbot.domain import Appointment, BadStatusError, NoSessionCookieError
from terminbot.ticker import Ticker, _next_tick


def _settings(*, interval: int = 5, cooldown: int = 60) -> Settings:
    return Settings(
        check_interval_seconds=interval,
        repeat_interval_seconds=cooldown,
        checker=CheckerSettings(
            cookie_url="https://service.berlin.test/tag.php",
            appointment_url="https://service.berlin.test/day/",
        ),
        notifier=NotifierSettings(
            address="smtp.example.org:587",
            host="smtp.example.org",
            identity="",
            from_addr="bot@example.org",
            to=("me@example.org",),
            subject="Termine",
            username="u",
            password="p",
            msg_url="https://service.berlin.test",
        ),
    )


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@contextmanager
def _fake_time() -> Iterator[_FakeClock]:
    clock = _FakeClock()
    with (
        patch("terminbot.ticker.time.monotonic", clock.monotonic),
        patch("terminbot.ticker.time.sleep", clock.sleep),
    ):
        yield clock


def _checker(clock: _FakeClock, results: list, *, takes: float = 0.0) -> tuple[MagicMock, list[float]]:
    """Checker that returns/raises ``results`` in order and records when it ran."""
    calls: list[float] = []
    outcomes = iter(results)

    def get_appointments():
        calls.append(clock.now)
        clock.now += takes
        outcome = next(outcomes)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    checker = MagicMock()
    checker.get_appointments.side_effect = get_appointments
    return checker, calls


_TWO = [Appointment("12", "August"), Appointment("19", "August")]


def test_notification_is_followed_by_cooldown_then_full_interval() -> None:
    with _fake_time() as clock:
        checker, calls = _checker(clock, [_TWO, []])
        notifier = MagicMock()

        Ticker(_settings(interval=5, cooldown=60), checker=checker, notifier=notifier).run(max_cycles=2)

    notifier.notify.assert_called_once_with(_TWO)
    assert clock.sleeps == [5, 60, 5]
    assert calls == [5, 70]


def test_cooldown_counts_from_notification_completion() -> None:
    with _fake_time() as clock:
        checker, calls = _checker(clock, [_TWO, []])
        notifier = MagicMock()
        notifier.notify.side_effect = lambda appointments: setattr(clock, "now", clock.now + 3)

        Ticker(_settings(interval=5, cooldown=60), checker=checker, notifier=notifier).run(max_cycles=2)

    # tick at 5, mail done at 8, cooldown until 68, next tick at 73
    assert calls == [5, 73]


def test_no_slots_means_no_mail_and_no_cooldown() -> None:
    with _fake_time() as clock:
        checker, calls = _checker(clock, [[], [], []])
        notifier = MagicMock()

        Ticker(_settings(interval=5, cooldown=60), checker=checker, notifier=notifier).run(max_cycles=3)

    notifier.notify.assert_not_called()
    assert calls == [5, 10, 15]
    assert 60 not in clock.sleeps


def test_check_errors_are_logged_and_skip_to_next_tick(caplog) -> None:
    with _fake_time() as clock:
        checker, calls = _checker(clock, [NoSessionCookieError("no cookie"), BadStatusError(500), []])
        notifier = MagicMock()

        Ticker(_settings(interval=5, cooldown=60), checker=checker, notifier=notifier).run(max_cycles=3)

    notifier.notify.assert_not_called()
    assert calls == [5, 10, 15]
    assert "NoSessionCookieError" in caplog.text
    assert "BadStatusError" in caplog.text


def test_failed_notification_still_cools_down(caplog) -> None:
    with _fake_time() as clock:
        checker, calls = _checker(clock, [_TWO, _TWO])
        notifier = MagicMock()
        notifier.notify.side_effect = smtplib.SMTPServerDisconnected("gone")

        Ticker(_settings(interval=5, cooldown=60), checker=checker, notifier=notifier).run(max_cycles=2)

    assert notifier.notify.call_count == 2
    assert calls == [5, 70]
    assert "Could not notify about appointments" in caplog.text


def test_slow_check_keeps_fixed_rate_and_drops_missed_ticks() -> None:
    with _fake_time() as clock:
        checker, calls = _checker(clock, [[], [], []], takes=7)

        Ticker(_settings(interval=5, cooldown=60), checker=checker, notifier=MagicMock()).run(max_cycles=3)

    # first check runs 5..12 so the tick at 10 is missed
    assert calls == [5, 15, 25]


def test_tick_reports_whether_a_notification_was_attempted() -> None:
    checker = MagicMock()
    notifier = MagicMock()
    ticker = Ticker(_settings(), checker=checker, notifier=notifier)

    checker.get_appointments.return_value = []
    assert ticker.tick() is False

    checker.get_appointments.return_value = _TWO
    assert ticker.tick() is True
    notifier.notify.assert_called_once_with(_TWO)


def test_next_tick_skips_whole_intervals() -> None:
    assert _next_tick(5, 5, 7) == 10
    assert _next_tick(5, 5, 10) == 15
    assert _next_tick(5, 5, 23) == 25


def test_unexpected_checker_error_does_not_stop_the_loop(caplog) -> None:
    with _fake_time() as clock:
        checker, calls = _checker(clock, [ValueError("odd page"), _TWO])
        notifier = MagicMock()

        Ticker(_settings(interval=5, cooldown=60), checker=checker, notifier=notifier).run(max_cycles=2)

    assert calls == [5, 10]
    notifier.notify.assert_called_once_with(_TWO)
    assert "Unexpected error while checking appointments" in caplog.text


def test_unexpected_notifier_error_still_cools_down(caplog) -> None:
    with _fake_time() as clock:
        checker, calls = _checker(clock, [_TWO, []])
        notifier = MagicMock()
        notifier.notify.side_effect = ValueError("bad mail")

        Ticker(_settings(interval=5, cooldown=60), checker=checker, notifier=notifier).run(max_cycles=2)

    assert calls == [5, 70]
    assert clock.sleeps == [5, 60, 5]
    assert "Unexpected error while notifying about appointments" in caplog.text


def test_non_ascii_session_cookie_does_not_break_tick() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("tag.php"):
            return httpx.Response(302, headers=[(b"Set-Cookie", "sid=ä".encode("utf-8"))])
        return httpx.Response(200, text='<table><tr><th class="month">Mai</th></tr><tr><td class="buchbar">6</td></tr></table>')

    settings = _settings()
    client = httpx.Client(transport=httpx.MockTransport(handler))
    notifier = MagicMock()
    ticker = Ticker(settings, checker=Checker(settings.checker, client=client), notifier=notifier)

    assert ticker.tick() is True
    notifier.notify.assert_called_once_with([Appointment("6", "Mai")])
