"""Tests for at-rest secret encryption and key migration."""

from __future__ import annotations

import base64

import pytest

from quizguard.core.config_store import ConfigStore, InMemoryConfigBackend
from quizguard.core.encryption import (
    IV_LENGTH,
    EncryptionService,
    derive_fallback_salt,
    get_encryption_service,
)


class TestEncryptDecrypt:
    def test_round_trip(self, encryption):
        secret = "sk-proj-abc123"
        token = encryption.encrypt(secret)
        assert token != secret
        assert encryption.decrypt(token) == secret

    def test_unicode_round_trip(self, encryption):
        assert encryption.decrypt(encryption.encrypt("Schlüssel-ß-✓")) == "Schlüssel-ß-✓"

    def test_fresh_iv_per_call(self, encryption):
        first = encryption.encrypt("same")
        second = encryption.encrypt("same")
        assert first != second
        assert base64.b64decode(first)[:IV_LENGTH] != base64.b64decode(second)[:IV_LENGTH]

    def test_storage_format(self, encryption):
        raw = base64.b64decode(encryption.encrypt("x" * 20))
        # IV plus two AES blocks (20 bytes padded to 32)
        assert len(raw) == IV_LENGTH + 32

    def test_empty_values(self, encryption):
        assert encryption.encrypt("") == ""
        assert encryption.decrypt("") == ""

    def test_different_installations_cannot_decrypt(self, encryption):
        other = EncryptionService("another-install", salt_override="test-salt")
        token = encryption.encrypt("sk-secret")
        assert other.decrypt(token) != "sk-secret"


class TestLegacyPassthrough:
    @pytest.mark.parametrize("value", ["sk-plain-key!", "c2hvcnQ=", "AIzaSy-not_base64"])
    def test_non_ciphertext_returned_unchanged(self, encryption, value):
        assert encryption.decrypt(value) == value

    def test_passthrough_counted(self, encryption):
        assert encryption.legacy_passthroughs == 0
        encryption.decrypt("plain text key")
        encryption.decrypt(encryption.encrypt("real"))
        assert encryption.legacy_passthroughs == 1

    def test_garbage_ciphertext_returned_unchanged(self, encryption):
        garbage = base64.b64encode(b"\x00" * 40).decode()
        assert encryption.decrypt(garbage) == garbage
        assert encryption.legacy_passthroughs == 1


class TestIsEncrypted:
    def test_ciphertext_classified(self, encryption):
        assert encryption.is_encrypted(encryption.encrypt("sk-test")) is True

    @pytest.mark.parametrize("value", ["", "sk-plain", "c2hvcnQ=", base64.b64encode(b"a" * 16).decode()])
    def test_plaintext_classified(self, value):
        assert EncryptionService.is_encrypted(value) is False


class TestSaltSelection:
    def test_override_wins(self):
        service = EncryptionService("id", salt_override="s", installation_secret="p", hostname="h")
        assert service.salt_source == "override"

    def test_installation_secret_second(self):
        service = EncryptionService("id", installation_secret="p", hostname="h")
        assert service.salt_source == "installation_secret"

    def test_fallback_is_deterministic(self):
        a = EncryptionService("id", install_path="/srv/app", hostname="host-a")
        b = EncryptionService("id", install_path="/srv/app", hostname="host-a")
        assert a.salt_source == "fallback"
        assert b.decrypt(a.encrypt("sk-secret")) == "sk-secret"

    def test_fallback_differs_per_host(self):
        assert derive_fallback_salt("id", "/srv/app", "host-a") != derive_fallback_salt("id", "/srv/app", "host-b")

    def test_explicit_fallback_salt_matches_override(self):
        salt = derive_fallback_salt("id", "/srv/app", "host-a")
        fallback = EncryptionService("id", install_path="/srv/app", hostname="host-a")
        explicit = EncryptionService("id", salt_override=salt)
        assert explicit.decrypt(fallback.encrypt("k")) == "k"

    def test_process_wide_service_cached(self):
        assert get_encryption_service() is get_encryption_service()


class TestMigrateApiKeys:
    def test_encrypts_plaintext_keys_once(self, encryption):
        backend = InMemoryConfigBackend(
            {"openai_api_key": "sk-plain", "google_api_key": "", "gwdg_api_key": "gwdg-plain", "other": "x"}
        )
        store = ConfigStore(backend, encryption)

        migrated = encryption.migrate_api_keys(store)

        assert migrated == ["gwdg_api_key", "openai_api_key"]
        assert encryption.is_encrypted(backend.data["openai_api_key"])
        assert encryption.decrypt(backend.data["gwdg_api_key"]) == "gwdg-plain"
        assert backend.data["google_api_key"] == ""
        assert backend.data["other"] == "x"

    def test_second_run_is_noop(self, encryption):
        backend = InMemoryConfigBackend({"openai_api_key": "sk-plain"})
        store = ConfigStore(backend, encryption)
        encryption.migrate_api_keys(store)
        stored = backend.data["openai_api_key"]

        assert encryption.migrate_api_keys(store) == []
        assert backend.data["openai_api_key"] == stored

    def test_nothing_to_migrate_does_not_save(self, encryption):
        saves = []

        class RecordingBackend(InMemoryConfigBackend):
            def upsert(self, items):
                saves.append(items)
                super().upsert(items)

        store = ConfigStore(RecordingBackend({"openai_api_key": encryption.encrypt("sk")}), encryption)
        assert encryption.migrate_api_keys(store) == []
        assert saves == []
