"""Service token handling, header construction, and service-account login."""

from __future__ import annotations

from dataclasses import dataclass

import requests

from migration_bot.service.errors import PreconditionError

BUILTIN_HEADERS = {
    "Content-Type": "application/json",
    "Accept-Encoding": "deflate, gzip",
}


@dataclass(frozen=True)
class ServiceAuth:
    token: str | None

    def redacted(self) -> dict[str, str]:
        return {"token": _redact_token(self.token)}


def build_headers(token: str | None, extra_headers: dict[str, str] | None = None) -> dict[str, str]:
    """Merge caller headers with the built-in ones; built-ins and the bearer token win."""

    headers = dict(extra_headers or {})
    headers.update(BUILTIN_HEADERS)
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def login(
    url: str,
    email: str,
    password: str,
    session: requests.Session | None = None,
    timeout_s: float = 15,
) -> str:
    http = session or requests.Session()
    response = http.request(
        method="POST",
        url=f"{url.rstrip('/')}/v1/auth/login",
        headers=dict(BUILTIN_HEADERS),
        json={"email": email, "password": password},
        timeout=timeout_s,
    )
    try:
        payload = response.json() if response.content else {}
    except ValueError:
        payload = {}
    token = _clean(str(payload.get("token") or "")) if isinstance(payload, dict) else None
    if not token:
        raise PreconditionError(
            f"Failed to generate token for user: {email}. "
            "Please check the service account and key.",
            reason_code="login_failed",
        )
    return token


def _clean(token: str | None) -> str | None:
    if token is None:
        return None
    value = token.strip()
    return value or None


def _redact_token(token: str | None) -> str:
    if token is None:
        return "unset"
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}...{token[-4:]}"
