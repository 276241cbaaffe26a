from __future__ import annotations

import logging

import httpx
from bs4 import BeautifulSoup, ParserRejectedMarkup

from terminbot.config import CheckerSettings
from terminbot.domain import (
    Appointment,
    BadStatusError,
    FetchError,
    NoSessionCookieError,
    ParseError,
    SessionCookie,
)

logger = logging.getLogger(__name__)

# Marker classes used by the portal's calendar tables.
MONTH_CLASS = "month"
BOOKABLE_CLASS = "buchbar"


def _parse_url(name: str, raw: str) -> httpx.URL:
    try:
        url = httpx.URL(raw)
    except httpx.InvalidURL as e:
        raise ValueError(f"could not parse {name}: {raw!r}") from e
    if url.scheme not in {"http", "https"} or not url.host:
        raise ValueError(f"could not parse {name}: {raw!r} (expected absolute http(s) url)")
    return url


def _host_header(url: httpx.URL) -> str:
    # host[:port], the portal virtual-hosts on it
    return url.netloc.decode("ascii")


def parse_appointments(html: str) -> list[Appointment]:
    """Extract bookable days from every calendar table on the page.

    Each table carries its own month label in a ``th.month`` cell; bookable
    days are ``td.buchbar`` cells of the same table. A table without a month
    header still yields its days, with an empty month.
    """
    try:
        soup = BeautifulSoup(html, "html.parser")
    except ParserRejectedMarkup as e:
        raise ParseError(f"could not parse appointment page: {e}") from e

    appointments: list[Appointment] = []
    for table in soup.find_all("table"):
        month = ""
        for th in table.find_all("th", class_=MONTH_CLASS):
            month = th.get_text()

        for td in table.find_all("td", class_=BOOKABLE_CLASS):
            appointments.append(Appointment(day=td.get_text(), month=month))

    return appointments


class Checker:
    """Fetches the appointment calendar using a freshly issued session cookie."""

    def __init__(self, settings: CheckerSettings, client: httpx.Client | None = None):
        self.settings = settings
        self.cookie_url = _parse_url("cookie url", settings.cookie_url)
        self.appointment_url = _parse_url("appointment url", settings.appointment_url)

        self._owns_client = client is None
        if client is None:
            # The cookie comes with the redirect response itself, so don't follow it.
            client = httpx.Client(
                follow_redirects=False,
                timeout=settings.request_timeout_seconds,
            )
        self._client = client

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "Checker":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _get(self, url: httpx.URL, headers: dict[str, str | bytes]) -> httpx.Response:
        try:
            return self._client.get(url, headers=headers, follow_redirects=False)
        except httpx.HTTPError as e:
            raise FetchError(f"could not send request to {url} ({type(e).__name__}: {e})") from e

    def fetch_session_cookie(self) -> SessionCookie:
        response = self._get(self.cookie_url, {"Host": _host_header(self.cookie_url)})

        # Raw header bytes, read as latin-1 so any byte sequence round-trips.
        values = [value for key, value in response.headers.raw if key.lower() == b"set-cookie"]
        if not values or not values[0]:
            raise NoSessionCookieError("could not get cookie from http response")

        return SessionCookie(values[0].decode("latin-1"))

    def fetch_appointment_page(self, cookie: SessionCookie) -> str:
        try:
            raw_cookie = cookie.value.encode("latin-1")
        except UnicodeEncodeError as e:
            raise FetchError(f"could not encode session cookie ({type(e).__name__}: {e})") from e

        # Replay the cookie verbatim; keep the client jar out of it.
        self._client.cookies.clear()
        response = self._get(
            self.appointment_url,
            {
                "Host": _host_header(self.appointment_url),
                "Cookie": raw_cookie,
            },
        )

        if not 200 <= response.status_code < 300:
            raise BadStatusError(response.status_code)

        return response.text

    def get_appointments(self) -> list[Appointment]:
        cookie = self.fetch_session_cookie()
        html = self.fetch_appointment_page(cookie)
        appointments = parse_appointments(html)
        logger.debug("Parsed %d bookable appointments from %s", len(appointments), self.appointment_url)
        return appointments
