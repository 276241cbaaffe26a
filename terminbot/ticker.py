from __future__ import annotations

import logging
import smtplib
import time
from typing import Protocol, Sequence

from terminbot.checker import Checker
from terminbot.config import Settings
from terminbot.domain import Appointment, CheckError
from terminbot.email_notifier import SmtpNotifier

logger = logging.getLogger(__name__)


class AppointmentSource(Protocol):
    def get_appointments(self) -> list[Appointment]: ...


class Notifier(Protocol):
    def notify(self, appointments: Sequence[Appointment]) -> None: ...


def _next_tick(previous: float, interval: float, now: float) -> float:
    # Fixed-rate schedule; ticks missed while a check was running are dropped.
    deadline = previous + interval
    if deadline <= now:
        deadline += ((now - deadline) // interval + 1) * interval
    return deadline


class Ticker:
    """Polls the checker every interval and mails when something is bookable.

    After every notification attempt, successful or not, the loop sleeps for
    ``repeat_interval_seconds`` so the same free slots don't produce a mail
    on every poll.
    """

    def __init__(
        self,
        settings: Settings,
        checker: AppointmentSource | None = None,
        notifier: Notifier | None = None,
    ):
        self.settings = settings
        # Malformed urls raise here and abort startup, not the loop.
        self.checker = checker if checker is not None else Checker(settings.checker)
        self.notifier = notifier if notifier is not None else SmtpNotifier(settings.notifier)

    def close(self) -> None:
        close = getattr(self.checker, "close", None)
        if close is not None:
            close()

    def tick(self) -> bool:
        """Run one check. Returns True if a notification was attempted."""
        try:
            appointments = self.checker.get_appointments()
        except CheckError as e:
            logger.error("Could not check appointments (%s: %s)", type(e).__name__, e)
            return False
        except Exception:
            # Anything else still only costs this cycle.
            logger.exception("Unexpected error while checking appointments")
            return False

        if not appointments:
            logger.info("No appointments received")
            return False

        logger.info("Found %d appointments", len(appointments))
        try:
            self.notifier.notify(appointments)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Could not notify about appointments (%s: %s)", type(e).__name__, e)
        except Exception:
            logger.exception("Unexpected error while notifying about appointments")

        return True

    def run(self, max_cycles: int | None = None) -> None:
        """Poll until interrupted, or for ``max_cycles`` checks.

        The poll timer restarts after a cooldown instead of running free, so
        the first check after a cooldown comes one full interval later.
        """
        interval = self.settings.check_interval_seconds
        cooldown = self.settings.repeat_interval_seconds
        logger.info("Ticker started. Interval=%ss Cooldown=%ss", interval, cooldown)

        next_tick = time.monotonic() + interval
        cycles = 0
        while max_cycles is None or cycles < max_cycles:
            delay = next_tick - time.monotonic()
            if delay > 0:
                time.sleep(delay)

            notified = self.tick()
            cycles += 1

            if notified:
                if max_cycles is not None and cycles >= max_cycles:
                    break
                # Wait before sending another potential notification
                logger.info("Cooling down for %ss", cooldown)
                time.sleep(cooldown)
                next_tick = time.monotonic() + interval
            else:
                next_tick = _next_tick(next_tick, interval, time.monotonic())
