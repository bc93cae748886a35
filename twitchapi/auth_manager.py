#!/usr/bin/env python3
"""
CredentialManager
Single owner of the broadcaster's delegated credential (access + refresh token).

Every component that needs a token calls valid_credential(); nobody else
looks at expiry. Decision order:

    1. no access token            -> None (re-authorization required)
    2. expired / inside margin    -> refresh, new token or None
    3. validation due             -> /oauth2/validate, refresh if revoked
    4. current token

Failures talking to the token endpoint are split in two:
    - rejection (4xx)                -> record cleared, operator must re-authorize
    - transient (network, timeout, 5xx) -> record kept, retried on the next call
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Union
from urllib.parse import urlencode

from twitchAPI.type import AuthScope

from database.token_store import EMPTY_RECORD, CredentialRecord, TokenStore
from twitchapi.errors import TokenRequestError
from twitchapi.oauth_client import OAuthClient, TokenResponse

LOGGER = logging.getLogger(__name__)

AUTHORIZE_URL = "https://id.twitch.tv/oauth2/authorize"

# Chat (EventSub receive), redemptions (read + manage the betting reward), subscribers
DEFAULT_SCOPES: list[AuthScope] = [
    AuthScope.CHANNEL_READ_SUBSCRIPTIONS,
    AuthScope.CHANNEL_READ_REDEMPTIONS,
    AuthScope.CHANNEL_MANAGE_REDEMPTIONS,
    AuthScope.USER_READ_EMAIL,
    AuthScope.CHANNEL_MODERATE,
    AuthScope.USER_READ_CHAT,
    AuthScope.CHANNEL_BOT,
]

REFRESH_MARGIN_SECONDS = 300
VALIDATE_INTERVAL_SECONDS = 3600
DEFAULT_TOKEN_TTL = 14400  # used when Twitch omits expires_in


def scope_to_str(scope: Union[AuthScope, str]) -> str:
    return scope.value if isinstance(scope, AuthScope) else str(scope)


def mask_token(token: Optional[str]) -> Optional[str]:
    return f"{token[:5]}..." if token else None


@dataclass
class TokenInfo:
    """Diagnostics view of the credential (never contains the tokens)"""
    has_access_token: bool
    has_refresh_token: bool
    expires_at: Optional[float]
    expires_in: Optional[int]
    needs_reauth: bool
    user_login: str = ""
    user_id: str = ""
    granted_scopes: list[str] = field(default_factory=list)
    missing_scopes: list[str] = field(default_factory=list)


class CredentialManager:
    """
    Owns the CredentialRecord and its TokenStore.

    Constructed once at startup and handed to every collaborator that needs
    a token (SubscriptionRegistrar, TwitchApiService, route handlers).
    """

    def __init__(
        self,
        client_id: str,
        redirect_uri: str,
        store: TokenStore,
        oauth: OAuthClient,
        scopes: Optional[Iterable[Union[AuthScope, str]]] = None,
        refresh_margin: float = REFRESH_MARGIN_SECONDS,
        validate_interval: float = VALIDATE_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if not client_id or not redirect_uri:
            raise ValueError("CredentialManager: client id and redirect URI are required")

        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self.scopes: list[str] = [scope_to_str(s) for s in (scopes or DEFAULT_SCOPES)]
        for scope in self.scopes:
            try:
                AuthScope(scope)
            except ValueError:
                LOGGER.warning(f"⚠️ Unknown scope string: {scope}")
        self.refresh_margin = refresh_margin
        self.validate_interval = validate_interval

        self._store = store
        self._oauth = oauth
        self._clock = clock
        self._lock = asyncio.Lock()

        self._record: CredentialRecord = EMPTY_RECORD
        self._last_validated: Optional[float] = None
        self._user_login = ""
        self._user_id = ""
        self._granted_scopes: list[str] = []

        LOGGER.info(f"CredentialManager initialized ({len(self.scopes)} scopes)")

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def record(self) -> CredentialRecord:
        """Point-in-time copy of the record (frozen dataclass)."""
        return self._record

    def needs_reauth(self) -> bool:
        record = self._record
        return (
            not record.access_token
            or not record.refresh_token
            or record.expires_within(self.refresh_margin, self._clock())
        )

    def missing_scopes(self) -> list[str]:
        """Requested scopes absent from the last validation (empty if never validated)."""
        if not self._granted_scopes:
            return []
        return [s for s in self.scopes if s not in self._granted_scopes]

    def token_info(self) -> TokenInfo:
        record = self._record
        expires_in = None
        if record.access_token and record.expires_at is not None:
            expires_in = int(record.expires_at - self._clock())
        return TokenInfo(
            has_access_token=bool(record.access_token),
            has_refresh_token=bool(record.refresh_token),
            expires_at=record.expires_at,
            expires_in=expires_in,
            needs_reauth=self.needs_reauth(),
            user_login=self._user_login,
            user_id=self._user_id,
            granted_scopes=list(self._granted_scopes),
            missing_scopes=self.missing_scopes(),
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def initialize(self) -> Optional[str]:
        """Load the stored record and run the refresh/validate decision once."""
        self._record = self._store.load()
        self._last_validated = None

        if not self._record.access_token:
            LOGGER.warning("⚠️ No stored access token, authorization required")
            return None

        return await self.valid_credential()

    def authorization_url(self, state: Optional[str] = None) -> str:
        """Build the Twitch authorization redirect. No side effects."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "force_verify": "true",
        }
        if state:
            params["state"] = state
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> bool:
        """
        Exchange a one-time authorization code.

        The previous record is discarded whatever happens: replaced on
        success, cleared on failure.
        """
        async with self._lock:
            LOGGER.info(f"🔐 Exchanging authorization code (redirect URI: {self.redirect_uri})")
            try:
                response = await self._oauth.exchange_code(code)
            except TokenRequestError as e:
                LOGGER.error(f"❌ Code exchange failed: {e}")
                self._clear_locked()
                return False

            self._accept(response, fallback_refresh=None)
            LOGGER.info(f"✅ Code exchange successful (expires in {response.expires_in}s)")
            return True

    async def valid_credential(self) -> Optional[str]:
        """The only way to obtain an access token. None means re-authorization."""
        async with self._lock:
            record = self._record
            if not record.access_token:
                LOGGER.info("No access token available")
                return None

            now = self._clock()
            if not record.expires_within(self.refresh_margin, now) and self._validation_due(now):
                valid = await self._validate_locked()
                if valid is False:
                    LOGGER.warning("⚠️ Token revoked or invalid upstream, refreshing...")
                    return await self._refresh_for_caller()

            if self._record.expires_within(self.refresh_margin, self._clock()):
                LOGGER.info("🔄 Access token expired or expiring soon, refreshing...")
                return await self._refresh_for_caller()

            return self._record.access_token

    async def refresh(self) -> bool:
        async with self._lock:
            return await self._refresh_locked()

    async def clear(self) -> None:
        async with self._lock:
            self._clear_locked()

    async def close(self) -> None:
        await self._oauth.close()

    # ------------------------------------------------------------------
    # Internals (caller holds self._lock)
    # ------------------------------------------------------------------

    def _validation_due(self, now: float) -> bool:
        if self.validate_interval <= 0:
            return False
        return self._last_validated is None or now - self._last_validated >= self.validate_interval

    async def _validate_locked(self) -> Optional[bool]:
        """True: valid, False: invalid, None: could not tell (transient)."""
        try:
            result = await self._oauth.validate(self._record.access_token)
        except TokenRequestError as e:
            LOGGER.warning(f"⚠️ Token validation unavailable ({e}), keeping current token")
            return None

        if result is None:
            return False

        now = self._clock()
        self._last_validated = now
        self._user_login = result.login
        self._user_id = result.user_id
        self._granted_scopes = result.scopes

        if result.expires_in > 0:
            self._replace(CredentialRecord(
                access_token=self._record.access_token,
                refresh_token=self._record.refresh_token,
                expires_at=now + result.expires_in,
            ))

        LOGGER.info(f"✅ Token validated: {result.login} (ID: {result.user_id}, expires in {result.expires_in}s)")
        missing = self.missing_scopes()
        if missing:
            LOGGER.warning(f"⚠️ Missing requested scopes: {missing}")
        return True

    async def _refresh_for_caller(self) -> Optional[str]:
        if not await self._refresh_locked():
            LOGGER.error("❌ Failed to refresh token. Re-authentication required.")
            return None
        if self._record.expires_within(self.refresh_margin, self._clock()):
            LOGGER.warning("⚠️ Refreshed token already inside the refresh margin, not handing it out")
            return None
        return self._record.access_token

    async def _refresh_locked(self) -> bool:
        refresh_token = self._record.refresh_token
        if not refresh_token:
            LOGGER.warning("⚠️ No refresh token available, clearing credential")
            self._clear_locked()
            return False

        LOGGER.info("🔄 Refreshing access token via Twitch OAuth...")
        try:
            response = await self._oauth.refresh(refresh_token)
        except TokenRequestError as e:
            if e.transient:
                LOGGER.warning(f"⚠️ Token endpoint unavailable ({e}), credential kept for a later attempt")
                return False
            LOGGER.error(f"❌ Refresh rejected ({e}), re-authorization required")
            self._clear_locked()
            return False

        self._accept(response, fallback_refresh=refresh_token)
        LOGGER.info(f"✅ Access token refreshed (expires in {response.expires_in}s)")
        return True

    def _accept(self, response: TokenResponse, fallback_refresh: Optional[str]) -> None:
        now = self._clock()
        ttl = response.expires_in or DEFAULT_TOKEN_TTL
        self._replace(CredentialRecord(
            access_token=response.access_token,
            refresh_token=response.refresh_token or fallback_refresh,
            expires_at=now + ttl,
        ))
        # A freshly issued token does not need introspection right away
        self._last_validated = now
        if response.scopes:
            self._granted_scopes = list(response.scopes)

    def _clear_locked(self) -> None:
        LOGGER.info("🧹 Clearing all tokens")
        self._last_validated = None
        self._user_login = ""
        self._user_id = ""
        self._granted_scopes = []
        self._replace(EMPTY_RECORD)

    def _replace(self, record: CredentialRecord) -> None:
        self._record = record
        try:
            self._store.save(record)
        except OSError as e:
            LOGGER.error(f"❌ Error saving credential: {e}")
