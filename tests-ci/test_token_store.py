"""
Tests for the encrypted credential file (database/token_store.py)
"""
import json
import os
import stat

import pytest

from database.crypto import TokenEncryptor
from database.token_store import EMPTY_RECORD, CredentialRecord, TokenStore


@pytest.mark.unit
class TestCredentialRecord:
    """Expiry arithmetic on the record"""

    def test_expires_within_margin(self):
        """A token expiring in 4 minutes is inside a 5 minute margin"""
        record = CredentialRecord("a", "r", expires_at=1000.0)
        assert record.expires_within(300, now=760.0)
        assert not record.expires_within(300, now=600.0)

    def test_missing_expiry_counts_as_expired(self):
        """No expiresAt means refresh before use"""
        assert CredentialRecord("a", "r", None).expires_within(300, now=0.0)

    def test_empty_record(self):
        assert EMPTY_RECORD.is_empty
        assert not CredentialRecord("a", None, None).is_empty


@pytest.mark.unit
class TestTokenStore:
    """Load/save of tokens.json"""

    def test_roundtrip(self, token_store):
        """Saved record comes back identical"""
        token_store.save(CredentialRecord("access_123", "refresh_456", 1700003600.0))
        loaded = token_store.load()
        assert loaded.access_token == "access_123"
        assert loaded.refresh_token == "refresh_456"
        assert loaded.expires_at == 1700003600.0

    def test_missing_file_is_empty(self, tmp_path):
        """No file means no credential, not an error"""
        store = TokenStore(str(tmp_path / "nope.json"), str(tmp_path / ".key"))
        assert store.load() == EMPTY_RECORD

    def test_tokens_encrypted_on_disk(self, token_store):
        """Plaintext tokens never hit the file"""
        token_store.save(CredentialRecord("access_plain", "refresh_plain", 1700003600.0))
        raw = token_store.token_file.read_text()
        assert "access_plain" not in raw
        assert "refresh_plain" not in raw
        data = json.loads(raw)
        assert set(data) == {"accessToken", "refreshToken", "expiresAt"}
        assert data["expiresAt"] == 1700003600

    def test_string_expires_at_accepted(self, token_store):
        """expiresAt written as a numeric string still parses"""
        enc = token_store.encryptor
        token_store.token_file.write_text(json.dumps({
            "accessToken": enc.encrypt("a"),
            "refreshToken": enc.encrypt("r"),
            "expiresAt": "1700003600",
        }))
        assert token_store.load().expires_at == 1700003600.0

    def test_garbage_expires_at_means_unknown(self, token_store):
        enc = token_store.encryptor
        token_store.token_file.write_text(json.dumps({
            "accessToken": enc.encrypt("a"),
            "refreshToken": enc.encrypt("r"),
            "expiresAt": "tomorrow",
        }))
        record = token_store.load()
        assert record.access_token == "a"
        assert record.expires_at is None

    def test_invalid_json_is_empty(self, token_store):
        """Corrupted file yields the empty record"""
        token_store.token_file.write_text("{not json")
        assert token_store.load() == EMPTY_RECORD

    def test_non_object_is_empty(self, token_store):
        token_store.token_file.write_text("[1, 2, 3]")
        assert token_store.load() == EMPTY_RECORD

    def test_wrong_key_is_empty(self, tmp_path, token_store):
        """File written with another key cannot be decrypted"""
        token_store.save(CredentialRecord("a", "r", 1.0))
        other = TokenStore(str(token_store.token_file), str(tmp_path / ".other.key"))
        assert other.load() == EMPTY_RECORD

    def test_empty_record_persisted_as_nulls(self, token_store):
        """Clearing writes nulls, reload gives the empty record"""
        token_store.save(CredentialRecord("a", "r", 1.0))
        token_store.save(EMPTY_RECORD)
        data = json.loads(token_store.token_file.read_text())
        assert data == {"accessToken": None, "refreshToken": None, "expiresAt": None}
        assert token_store.load() == EMPTY_RECORD

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    def test_file_mode_owner_only(self, token_store):
        token_store.save(CredentialRecord("a", "r", 1.0))
        mode = stat.S_IMODE(token_store.token_file.stat().st_mode)
        assert mode == 0o600

    def test_no_temp_files_left(self, token_store):
        token_store.save(CredentialRecord("a", "r", 1.0))
        token_store.save(CredentialRecord("b", "r", 2.0))
        leftovers = [p for p in token_store.token_file.parent.iterdir() if p.name.startswith(".tokens.json.")]
        assert leftovers == []


@pytest.mark.unit
class TestTokenEncryptor:
    """Fernet key handling"""

    def test_key_created_and_reused(self, tmp_path):
        key_file = tmp_path / ".deskrat.key"
        first = TokenEncryptor(key_file=str(key_file))
        secret = first.encrypt("hello")
        assert key_file.exists()
        second = TokenEncryptor(key_file=str(key_file))
        assert second.decrypt(secret) == "hello"
