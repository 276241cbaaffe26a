from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Appointment:
    """A single bookable slot as shown on the portal.

    Both fields are display text taken verbatim from the table cells,
    not validated calendar values.
    """

    day: str
    month: str


@dataclass(frozen=True)
class SessionCookie:
    """Raw Set-Cookie value, replayed unchanged as the Cookie header."""

    value: str

    def __str__(self) -> str:
        return self.value


class CheckError(RuntimeError):
    """Any failure while fetching or parsing the appointment page."""


class FetchError(CheckError):
    """Transport failure: DNS, connect, TLS or timeout."""


class NoSessionCookieError(CheckError):
    pass


class BadStatusError(CheckError):
    def __init__(self, status_code: int):
        super().__init__(f"received non okay status code: {status_code}")
        self.status_code = status_code


class ParseError(CheckError):
    pass
