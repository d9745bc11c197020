"""AES-256-CBC encryption for provider API keys stored at rest.

Format: base64(IV + ciphertext)
  - IV: 16 random bytes per encryption
  - Key: 32 bytes, PBKDF2-HMAC-SHA256 (10,000 iterations) of the installation id

Salt priority:
  1. explicit override (ENCRYPTION_SALT)
  2. host-provided installation secret (INSTALLATION_SECRET)
  3. sha256(installation id | install path | hostname), distinct per install

decrypt() never raises: values that are not base64, too short to hold an IV,
or fail to decrypt are returned unchanged so that secrets saved before
encryption was introduced keep working until migrate_api_keys() runs.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import os
import socket
from typing import Any, Protocol

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from quizguard.core.config import settings

logger = logging.getLogger(__name__)

IV_LENGTH = 16
KEY_LENGTH = 32
PBKDF2_ITERATIONS = 10_000

# Config keys holding provider secrets
SECRET_CONFIG_KEYS = ("gwdg_api_key", "google_api_key", "openai_api_key")


class RawConfigAccess(Protocol):
    """The subset of ConfigStore used by the key migration."""

    def load(self) -> None: ...

    def get_raw(self, key: str, default: Any = None) -> Any: ...

    def set_raw(self, key: str, value: Any) -> None: ...

    def save(self) -> bool: ...


def derive_fallback_salt(installation_id: str, install_path: str, hostname: str) -> str:
    """Deterministic installation-specific salt used when nothing is configured."""
    material = f"{installation_id}|{install_path}|{hostname}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class EncryptionService:
    """Symmetric at-rest protection for durable secrets."""

    def __init__(
        self,
        installation_id: str = "default",
        *,
        salt_override: str = "",
        installation_secret: str = "",
        install_path: str = "",
        hostname: str | None = None,
    ):
        self.installation_id = installation_id or "default"
        self.legacy_passthroughs = 0

        if salt_override:
            salt, self.salt_source = salt_override, "override"
        elif installation_secret:
            salt, self.salt_source = installation_secret, "installation_secret"
        else:
            salt = derive_fallback_salt(
                self.installation_id,
                install_path,
                hostname if hostname is not None else socket.gethostname(),
            )
            self.salt_source = "fallback"

        self._key = self._derive_key(self.installation_id, salt)

    @classmethod
    def from_settings(cls) -> EncryptionService:
        return cls(
            settings.installation_id,
            salt_override=settings.encryption_salt,
            installation_secret=settings.installation_secret,
            install_path=settings.install_path,
        )

    @staticmethod
    def _derive_key(installation_id: str, salt: str) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt.encode("utf-8"),
            iterations=PBKDF2_ITERATIONS,
        )
        return kdf.derive(installation_id.encode("utf-8"))

    def encrypt(self, value: str) -> str:
        """Encrypt a string. Empty input returns an empty string."""
        if not value:
            return ""

        iv = os.urandom(IV_LENGTH)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(value.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        return base64.b64encode(iv + ciphertext).decode("ascii")

    def decrypt(self, value: str) -> str:
        """Decrypt a stored value, returning it unchanged if it is not ciphertext."""
        if not value:
            return ""

        try:
            data = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            return self._passthrough(value, "not base64")

        if len(data) < IV_LENGTH:
            return self._passthrough(value, "shorter than IV")

        iv, ciphertext = data[:IV_LENGTH], data[IV_LENGTH:]
        try:
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except ValueError:
            # Covers bad block length, bad padding and UnicodeDecodeError
            return self._passthrough(value, "decryption failed")

    def _passthrough(self, value: str, reason: str) -> str:
        self.legacy_passthroughs += 1
        logger.warning("Stored value could not be decrypted (%s); treating it as legacy plaintext", reason)
        return value

    @staticmethod
    def is_encrypted(value: str) -> bool:
        """Heuristic: valid base64 and longer than an IV. Not cryptographic proof."""
        if not value:
            return False
        try:
            decoded = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            return False
        return len(decoded) > IV_LENGTH

    def migrate_api_keys(self, store: RawConfigAccess, keys: tuple[str, ...] = SECRET_CONFIG_KEYS) -> list[str]:
        """Encrypt any plaintext secrets in the store. Saves once if anything changed.

        Returns the names of the migrated keys.
        """
        store.load()
        migrated: list[str] = []

        for key in keys:
            value = store.get_raw(key)
            if isinstance(value, str) and value and not self.is_encrypted(value):
                store.set_raw(key, self.encrypt(value))
                migrated.append(key)

        if migrated:
            store.save()
            logger.info("Encrypted %d plaintext secret(s): %s", len(migrated), ", ".join(migrated))

        return migrated


_service: EncryptionService | None = None


def get_encryption_service() -> EncryptionService:
    """Process-wide service built from settings (key derivation runs once)."""
    global _service
    if _service is None:
        _service = EncryptionService.from_settings()
        logger.debug("Encryption key derived (salt source: %s)", _service.salt_source)
    return _service
