from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from dotenv import load_dotenv

DEFAULT_SUBJECT = "New appointments available"


def _parse_recipients(raw: str) -> tuple[str, ...]:
    # MAIL_TO supports a single address or a comma-separated list.
    # Examples:
    #   MAIL_TO=me@example.org
    #   MAIL_TO=me@example.org, partner@example.org
    parts = [p.strip() for p in raw.split(",")]
    parts = [p for p in parts if p]

    seen: set[str] = set()
    result: list[str] = []
    for p in parts:
        if "@" not in p:
            raise RuntimeError(f"Invalid MAIL_TO value: {p!r}. Expected an email address.")

        if p in seen:
            continue
        seen.add(p)
        result.append(p)

    if not result:
        raise RuntimeError("MAIL_TO is empty. Provide at least one recipient.")

    return tuple(result)


def split_address(address: str) -> tuple[str, int]:
    """Split ``host[:port]`` into its parts; the port defaults to 25."""
    host, sep, port = address.rpartition(":")
    if not sep:
        return address, 25
    try:
        return host, int(port)
    except ValueError as e:
        raise RuntimeError(f"Invalid SMTP_ADDRESS value: {address!r}. Expected host:port.") from e


@dataclass(frozen=True)
class CheckerSettings:
    cookie_url: str
    appointment_url: str

    # Upper bound for each HTTP request, so an unresponsive portal can't stall the loop.
    request_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class NotifierSettings:
    address: str  # host:port of the SMTP server
    host: str  # server name used for TLS and auth
    identity: str

    from_addr: str
    to: tuple[str, ...]
    subject: str

    username: str
    password: str

    # Link put into the mail body
    msg_url: str

    timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        # A bad port must fail at startup, not on the first notification.
        split_address(self.address)

    @property
    def server(self) -> tuple[str, int]:
        return split_address(self.address)


@dataclass(frozen=True)
class Settings:
    check_interval_seconds: int
    repeat_interval_seconds: int

    checker: CheckerSettings
    notifier: NotifierSettings


def _get(name: str, overrides: Mapping[str, str]) -> str | None:
    if name in overrides:
        return overrides[name]
    return os.getenv(name)


def _require(name: str, overrides: Mapping[str, str]) -> str:
    value = _get(name, overrides)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _positive_int(name: str, raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid {name} value: {raw!r}. Expected an integer.") from e
    if value < 1:
        raise RuntimeError(f"{name} must be >= 1")
    return value


def load_settings(dotenv_path: str | None = None, overrides: Mapping[str, str] | None = None) -> Settings:
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    # Real environment variables win over the file, CLI overrides win over both.
    load_dotenv(dotenv_path=dotenv_path, override=False)
    overrides = dict(overrides or {})

    check_interval_seconds = _positive_int(
        "CHECK_INTERVAL_SECONDS", _require("CHECK_INTERVAL_SECONDS", overrides)
    )
    repeat_interval_seconds = _positive_int(
        "REPEAT_INTERVAL_SECONDS", _require("REPEAT_INTERVAL_SECONDS", overrides)
    )

    timeout_raw = _get("REQUEST_TIMEOUT_SECONDS", overrides) or "30"
    try:
        request_timeout_seconds = float(timeout_raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid REQUEST_TIMEOUT_SECONDS value: {timeout_raw!r}") from e
    if request_timeout_seconds <= 0:
        raise RuntimeError("REQUEST_TIMEOUT_SECONDS must be > 0")

    address = _require("SMTP_ADDRESS", overrides)
    server_host, _ = split_address(address)
    smtp_host = _get("SMTP_HOST", overrides) or server_host

    return Settings(
        check_interval_seconds=check_interval_seconds,
        repeat_interval_seconds=repeat_interval_seconds,
        checker=CheckerSettings(
            cookie_url=_require("COOKIE_URL", overrides),
            appointment_url=_require("APPOINTMENT_URL", overrides),
            request_timeout_seconds=request_timeout_seconds,
        ),
        notifier=NotifierSettings(
            address=address,
            host=smtp_host,
            identity=_get("SMTP_IDENTITY", overrides) or "",
            from_addr=_require("MAIL_FROM", overrides),
            to=_parse_recipients(_require("MAIL_TO", overrides)),
            subject=_get("MAIL_SUBJECT", overrides) or DEFAULT_SUBJECT,
            username=_require("SMTP_USERNAME", overrides),
            password=_require("SMTP_PASSWORD", overrides),
            msg_url=_require("MSG_URL", overrides),
            timeout_seconds=request_timeout_seconds,
        ),
    )
