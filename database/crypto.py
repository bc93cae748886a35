"""
Credential encryption at rest.

Tokens written to the credential file are encrypted with Fernet
(AES-128-CBC + HMAC-SHA256), so a leaked tokens.json is useless without
the key file that sits next to it.
"""

import base64
import hashlib
import logging
import os
from pathlib import Path
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

LOGGER = logging.getLogger(__name__)


class TokenEncryptor:
    """
    Encrypts/decrypts credential strings with a Fernet key kept on disk.

    The key file is generated on first use with owner-only permissions.
    """

    def __init__(self, key_file: str = ".deskrat.key"):
        self.key_file = Path(key_file)
        self.key: Optional[bytes] = None
        self.fernet: Optional[Fernet] = None

        self._load_or_generate_key()

    def _load_or_generate_key(self):
        """Load the existing key or create a new one."""
        if self.key_file.exists():
            try:
                self.key = self.key_file.read_bytes().strip()
                self.fernet = Fernet(self.key)
                LOGGER.info(f"🔑 Encryption key loaded from {self.key_file}")
            except (OSError, ValueError) as e:
                LOGGER.error(f"❌ Failed to load encryption key: {e}")
                raise
            return

        self.key = Fernet.generate_key()
        self.fernet = Fernet(self.key)

        try:
            self.key_file.parent.mkdir(parents=True, exist_ok=True)
            self.key_file.write_bytes(self.key)
            os.chmod(self.key_file, 0o600)
        except OSError as e:
            LOGGER.error(f"❌ Failed to save encryption key: {e}")
            raise

        LOGGER.info(f"🔑 New encryption key generated and saved to {self.key_file}")
        LOGGER.warning("⚠️ Keep this key file: without it the stored credential cannot be decrypted")

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a token string.

        Returns:
            Base64 text safe to embed in JSON
        """
        if not self.fernet:
            raise RuntimeError("Encryptor not initialized")

        encrypted_bytes = self.fernet.encrypt(plaintext.encode("utf-8"))
        return base64.b64encode(encrypted_bytes).decode("utf-8")

    def decrypt(self, encrypted: str) -> str:
        """
        Decrypt a value produced by encrypt().

        Raises:
            InvalidToken: wrong key or tampered value
        """
        if not self.fernet:
            raise RuntimeError("Encryptor not initialized")

        try:
            encrypted_bytes = base64.b64decode(encrypted.encode("utf-8"))
            return self.fernet.decrypt(encrypted_bytes).decode("utf-8")
        except InvalidToken:
            LOGGER.error("❌ Decryption failed: invalid token or wrong key")
            raise

    def get_key_fingerprint(self) -> str:
        """First 16 hex chars of the key's SHA256, for diagnostics."""
        if not self.key:
            return "NO_KEY"
        return hashlib.sha256(self.key).hexdigest()[:16]
