"""Login and registration against the chat HTTP API."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import aiohttp

from reechat.redact import redact_mapping

logger = logging.getLogger(__name__)


class AuthError(Exception):
    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


@dataclass(frozen=True)
class AuthResult:
    token: str
    username: str
    icon: str | None


def _build_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}{path}"


async def _post_json(session: aiohttp.ClientSession, url: str, payload: dict[str, object]) -> dict[str, object]:
    logger.debug("POST %s %s", url, redact_mapping(payload))
    try:
        async with session.post(url, json=payload) as response:
            if response.status == 401:
                raise AuthError("Invalid username or password", status=401)
            if response.status == 409:
                raise AuthError("Username already taken", status=409)
            if response.status >= 400:
                body = (await response.text()).strip()
                raise AuthError(f"Server returned HTTP {response.status}: {body}", status=response.status)
            data = await response.json(content_type=None)
    except aiohttp.ClientError as exc:
        raise AuthError(f"Could not reach server: {exc}") from exc
    except asyncio.TimeoutError as exc:
        raise AuthError("Server did not respond in time") from exc
    except ValueError as exc:
        raise AuthError("Server returned malformed JSON") from exc
    if not isinstance(data, dict) or not data.get("token"):
        raise AuthError("Server response did not include a token")
    return data


async def login(session: aiohttp.ClientSession, api_url: str, username: str, password: str) -> AuthResult:
    data = await _post_json(
        session,
        _build_url(api_url, "/auth/login"),
        {"username": username, "password": password},
    )
    return AuthResult(token=str(data["token"]), username=username, icon=data.get("icon"))


async def register(
    session: aiohttp.ClientSession,
    api_url: str,
    username: str,
    password: str,
    icon: str,
) -> AuthResult:
    data = await _post_json(
        session,
        _build_url(api_url, "/auth/register"),
        {"username": username, "password": password, "icon": icon},
    )
    return AuthResult(token=str(data["token"]), username=username, icon=data.get("icon") or icon)
