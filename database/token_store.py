"""
Credential Store - the single durable artifact of the server.

Layout of the JSON file (token values are Fernet-encrypted):

    {
        "accessToken": "<enc>" | null,
        "refreshToken": "<enc>" | null,
        "expiresAt": 1699123456 | null
    }

The store never decides anything: it reads and writes one record.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from cryptography.fernet import InvalidToken

from database.crypto import TokenEncryptor

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialRecord:
    """Delegated credential. Replaced as a whole, never patched."""
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[float] = None  # epoch seconds

    @property
    def is_empty(self) -> bool:
        return self.access_token is None and self.refresh_token is None

    def expires_within(self, seconds: float, now: float) -> bool:
        """True when the access token is absent, has no expiry or expires in < seconds."""
        if not self.access_token or self.expires_at is None:
            return True
        return now >= self.expires_at - seconds


EMPTY_RECORD = CredentialRecord()


def _parse_expires_at(value: Any) -> Optional[float]:
    """Accept a number or a numeric string; anything else means 'unknown'."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(int(value.strip()))
        except ValueError:
            LOGGER.warning(f"⚠️ Unparseable expiresAt {value!r}, treating token as expired")
    return None


class TokenStore:
    """
    Reads/writes the CredentialRecord to a JSON file.

    Writes go through a temp file + os.replace so a crash mid-write never
    leaves a truncated record behind.
    """

    def __init__(self, token_file: str = "tokens.json", key_file: str = ".deskrat.key"):
        self.token_file = Path(token_file)
        self.encryptor = TokenEncryptor(key_file=key_file)

    def load(self) -> CredentialRecord:
        """Load the record; a missing or unreadable file yields the empty record."""
        if not self.token_file.exists():
            LOGGER.info(f"📭 No credential file at {self.token_file}, authorization required")
            return EMPTY_RECORD

        try:
            data = json.loads(self.token_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            LOGGER.warning(f"⚠️ Could not read {self.token_file}: {e}")
            return EMPTY_RECORD

        if not isinstance(data, dict):
            LOGGER.warning(f"⚠️ Unexpected content in {self.token_file}, ignoring it")
            return EMPTY_RECORD

        try:
            access_token = self._decrypt(data.get("accessToken"))
            refresh_token = self._decrypt(data.get("refreshToken"))
        except (InvalidToken, ValueError):
            LOGGER.warning(
                f"⚠️ Stored credential cannot be decrypted with {self.encryptor.key_file} "
                f"(key {self.encryptor.get_key_fingerprint()})"
            )
            return EMPTY_RECORD

        record = CredentialRecord(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=_parse_expires_at(data.get("expiresAt")),
        )
        LOGGER.info(
            f"✅ Credential loaded (access: {'yes' if record.access_token else 'no'}, "
            f"refresh: {'yes' if record.refresh_token else 'no'}, expiresAt: {record.expires_at})"
        )
        return record

    def save(self, record: CredentialRecord) -> None:
        """Persist the record atomically."""
        payload = {
            "accessToken": self._encrypt(record.access_token),
            "refreshToken": self._encrypt(record.refresh_token),
            "expiresAt": int(record.expires_at) if record.expires_at is not None else None,
        }

        self.token_file.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self.token_file.name}.", dir=str(self.token_file.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.token_file)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        LOGGER.debug(f"💾 Credential saved to {self.token_file}")

    def _encrypt(self, value: Optional[str]) -> Optional[str]:
        return self.encryptor.encrypt(value) if value else None

    def _decrypt(self, value: Any) -> Optional[str]:
        if not value:
            return None
        return self.encryptor.decrypt(str(value))
