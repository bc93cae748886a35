#!/usr/bin/env python3
"""
OAuth endpoint client (id.twitch.tv)

- POST /oauth2/token    : authorization_code + refresh_token grants (form-encoded)
- GET  /oauth2/validate : token introspection

No decision logic here: the CredentialManager decides what a failure means.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Optional

import aiohttp

from twitchapi.errors import TokenRequestError

LOGGER = logging.getLogger(__name__)

TOKEN_URL = "https://id.twitch.tv/oauth2/token"
VALIDATE_URL = "https://id.twitch.tv/oauth2/validate"


@dataclass
class TokenResponse:
    """Successful grant."""
    access_token: str
    refresh_token: Optional[str]
    expires_in: int
    scopes: list[str] = field(default_factory=list)


@dataclass
class ValidationResult:
    """Body of a 200 /oauth2/validate."""
    login: str
    user_id: str
    scopes: list[str]
    expires_in: int


class OAuthClient:
    """aiohttp client for the Twitch token and validate endpoints."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        timeout: float = 10.0,
        token_url: str = TOKEN_URL,
        validate_url: str = VALIDATE_URL,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.token_url = token_url
        self.validate_url = validate_url
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def exchange_code(self, code: str) -> TokenResponse:
        """Trade a one-time authorization code for a token pair."""
        return await self._token_request({
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
        })

    async def refresh(self, refresh_token: str) -> TokenResponse:
        """Trade a refresh token for a new token pair."""
        return await self._token_request({
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })

    async def validate(self, access_token: str) -> Optional[ValidationResult]:
        """
        Introspect an access token.

        Returns:
            ValidationResult, or None when Twitch says the token is invalid (401)

        Raises:
            TokenRequestError: transient failure (network, 5xx) or unexpected status
        """
        try:
            async with self._get_session().get(
                self.validate_url,
                headers={"Authorization": f"OAuth {access_token}"},
            ) as resp:
                text = await resp.text()
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TokenRequestError(None, f"validate unreachable: {e!r}", transient=True) from e

        if status == 401:
            LOGGER.warning("⚠️ Token rejected by /oauth2/validate (401)")
            return None
        if status != 200:
            raise TokenRequestError(status, text, transient=status >= 500)

        data = _decode_json(status, text)
        return ValidationResult(
            login=data.get("login", ""),
            user_id=str(data.get("user_id", "")),
            scopes=list(data.get("scopes") or []),
            expires_in=int(data.get("expires_in", 0)),
        )

    async def _token_request(self, form: dict) -> TokenResponse:
        grant = form.get("grant_type")
        try:
            async with self._get_session().post(self.token_url, data=form) as resp:
                text = await resp.text()
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TokenRequestError(None, f"token endpoint unreachable: {e!r}", transient=True) from e

        if status != 200:
            LOGGER.error(f"❌ Token request ({grant}) failed: {status} - {text}")
            raise TokenRequestError(status, text, transient=status >= 500)

        data = _decode_json(status, text)
        if not data.get("access_token"):
            raise TokenRequestError(status, "response without access_token")

        scopes = data.get("scope") or []
        if isinstance(scopes, str):
            scopes = scopes.split()

        return TokenResponse(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in=int(data.get("expires_in", 0)),
            scopes=list(scopes),
        )


def _decode_json(status: int, text: str) -> dict:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise TokenRequestError(status, f"invalid JSON body: {e}") from e
    if not isinstance(data, dict):
        raise TokenRequestError(status, "unexpected JSON body")
    return data
