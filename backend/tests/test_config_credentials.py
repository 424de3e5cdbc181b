"""
Unit Tests for settings, credential hashing and JSON logging

Run with: pytest tests/test_config_credentials.py -v
"""

import json
import logging

import pytest
from passlib.hash import sha256_crypt

from config import DEFAULT_PRIVILEGED_PASSWORD, Settings, get_settings
from logging_config import JSONFormatter
from services.credentials import (
    get_crypt_context,
    hash_credential,
    looks_hashed,
    needs_rehash,
    verify_credential,
)


class TestSettings:

    def test_database_url_upgraded_to_asyncpg(self):
        settings = Settings(DATABASE_URL="postgres://u:p@db:5432/portal")
        assert settings.get_database_url() == "postgresql+asyncpg://u:p@db:5432/portal"

        settings = Settings(DATABASE_URL="postgresql://u:p@db/portal")
        assert settings.get_database_url() == "postgresql+asyncpg://u:p@db/portal"

    def test_sqlite_url_untouched(self):
        settings = Settings(DATABASE_URL="sqlite+aiosqlite:///./portal.db")
        assert settings.get_database_url() == "sqlite+aiosqlite:///./portal.db"

    def test_production_validation(self):
        settings = Settings(
            ENVIRONMENT="production",
            DATABASE_URL="sqlite+aiosqlite:///./portal.db",
            PRIVILEGED_PASSWORD=DEFAULT_PRIVILEGED_PASSWORD,
            INTERNAL_API_KEY="",
        )

        errors = settings.validate_production_config()

        assert "DATABASE_URL cannot be SQLite in production" in errors
        assert "PRIVILEGED_PASSWORD must be changed from default value" in errors
        assert "INTERNAL_API_KEY is required in production" in errors

    def test_invalid_production_settings_refused(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")

        with pytest.raises(ValueError):
            get_settings()

    def test_credential_schemes_list(self):
        settings = Settings(CREDENTIAL_SCHEMES=" bcrypt , sha256_crypt ,")
        assert settings.credential_schemes_list == ["bcrypt", "sha256_crypt"]


class TestCredentials:

    def test_hash_and_verify(self):
        hashed = hash_credential("secret123")

        assert hashed != "secret123"
        assert verify_credential("secret123", hashed)
        assert not verify_credential("wrong", hashed)

    def test_unusable_inputs_never_verify(self):
        assert not verify_credential("", hash_credential("secret123"))
        assert not verify_credential("secret123", None)
        assert not verify_credential("secret123", "not-a-hash")

    def test_looks_hashed(self):
        assert looks_hashed(hash_credential("secret123"))
        assert not looks_hashed("secret123")
        assert not looks_hashed(None)

    def test_older_scheme_needs_rehash(self, monkeypatch):
        monkeypatch.setenv("CREDENTIAL_SCHEMES", "pbkdf2_sha256,sha256_crypt")
        get_settings.cache_clear()
        get_crypt_context.cache_clear()
        legacy = sha256_crypt.hash("secret123")

        assert verify_credential("secret123", legacy)
        assert needs_rehash(legacy)
        assert not needs_rehash(hash_credential("secret123"))


class TestJSONLogging:

    def test_extra_fields_are_emitted(self):
        record = logging.LogRecord(
            "services.integrity_log", logging.ERROR, __file__, 1,
            "Integrity event", None, None,
        )
        record.integrity_state = "half_link"

        data = json.loads(JSONFormatter(service_name="portal-core").format(record))

        assert data["level"] == "ERROR"
        assert data["service"] == "portal-core"
        assert data["extra"]["integrity_state"] == "half_link"
