# src/parley/services/encryption.py
"""Per-conversation encryption for direct message bodies.

Every pair of users shares a symmetric key derived on demand from the
process-wide ``MESSAGE_ENCRYPTION_KEY`` and the sorted pair of user ids, so
the key never has to be stored and both participants resolve the same key
regardless of who sent a given message.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from parley.core.errors import CryptoError
from parley.core.settings import settings

ALGORITHM = "aes-256-gcm"
KEY_LENGTH = 32
IV_LENGTH = 12
AUTH_TAG_LENGTH = 16
PLACEHOLDER_TEXT = "[Encrypted Message]"

_KDF_SALT = b"parley-direct-message-v1"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncryptedBundle:
    """Everything needed to reverse an encryption, as base64 text."""

    ciphertext: str
    iv: str
    auth_tag: str
    algorithm: str = ALGORITHM


@dataclass(frozen=True)
class DecryptOutcome:
    """Result of a decryption attempt that must not raise.

    Exactly one of ``plaintext`` and ``error`` is set, except for the
    ``missing`` outcome (no bundle at all) where both are None.
    """

    plaintext: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.plaintext is not None

    def text_or(self, placeholder: str = PLACEHOLDER_TEXT) -> str:
        """Return the plaintext, "" for a missing bundle, or the placeholder."""
        if self.plaintext is not None:
            return self.plaintext
        if self.error is None:
            return ""
        return placeholder


def _pair_info(user_a: int, user_b: int) -> bytes:
    try:
        low, high = sorted((int(user_a), int(user_b)))
    except (TypeError, ValueError) as err:
        raise CryptoError(f"Cannot derive key for participants {user_a!r}, {user_b!r}") from err
    return f"parley-dm:{low}:{high}".encode()


def _b64decode(field: str, value: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError) as err:
        raise CryptoError(f"Malformed {field} in encrypted bundle") from err


class EncryptionService:
    """Authenticated encryption keyed by participant pair."""

    def __init__(self, master_key: str | None = None) -> None:
        self._master_key = master_key if master_key is not None else settings.message_encryption_key

    def derive_key(self, user_a: int, user_b: int) -> bytes:
        """Derive the symmetric key shared by ``user_a`` and ``user_b``.

        The pair is normalized before derivation, so argument order does not
        matter.

        Raises:
            CryptoError: If no master secret is configured or the ids are unusable.
        """
        if not self._master_key:
            raise CryptoError("Message encryption key is not configured")
        info = _pair_info(user_a, user_b)
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=_KDF_SALT,
            info=info,
        )
        return hkdf.derive(self._master_key.encode("utf-8"))

    def encrypt(self, plaintext: str, user_a: int, user_b: int) -> EncryptedBundle:
        """Encrypt ``plaintext`` for the conversation between two users.

        A fresh random IV is drawn for every call.
        """
        key = self.derive_key(user_a, user_b)
        iv = os.urandom(IV_LENGTH)
        sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), _pair_info(user_a, user_b))
        ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
        return EncryptedBundle(
            ciphertext=base64.b64encode(ciphertext).decode(),
            iv=base64.b64encode(iv).decode(),
            auth_tag=base64.b64encode(tag).decode(),
        )

    def decrypt(self, bundle: EncryptedBundle, user_a: int, user_b: int) -> str:
        """Verify and decrypt a bundle produced by :meth:`encrypt`.

        Raises:
            CryptoError: If the bundle is malformed or fails the integrity check.
        """
        if bundle.algorithm != ALGORITHM:
            raise CryptoError(f"Unsupported algorithm: {bundle.algorithm}")
        ciphertext = _b64decode("ciphertext", bundle.ciphertext)
        iv = _b64decode("iv", bundle.iv)
        tag = _b64decode("auth_tag", bundle.auth_tag)
        if len(iv) != IV_LENGTH:
            raise CryptoError("Invalid IV length")
        if len(tag) != AUTH_TAG_LENGTH:
            raise CryptoError("Invalid authentication tag length")

        key = self.derive_key(user_a, user_b)
        try:
            raw = AESGCM(key).decrypt(iv, ciphertext + tag, _pair_info(user_a, user_b))
        except InvalidTag as err:
            raise CryptoError("Message integrity check failed") from err
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as err:  # pragma: no cover - authenticated data is ours
            raise CryptoError("Decrypted payload is not valid UTF-8") from err

    def try_decrypt(
        self,
        bundle: EncryptedBundle | None,
        user_a: int,
        user_b: int,
    ) -> DecryptOutcome:
        """Decrypt without raising; failures are logged and returned as values."""
        if bundle is None:
            return DecryptOutcome()
        try:
            return DecryptOutcome(plaintext=self.decrypt(bundle, user_a, user_b))
        except CryptoError as err:
            logger.warning(
                "Failed to decrypt message between %s and %s: %s", user_a, user_b, err.detail
            )
            return DecryptOutcome(error=err.detail)


def bundle_from_columns(
    ciphertext: str | None,
    iv: str | None,
    auth_tag: str | None,
    algorithm: str | None,
) -> EncryptedBundle | None:
    """Rebuild a bundle from stored columns, or None when nothing is stored.

    A partially populated bundle is returned as-is with empty parts so the
    decryption attempt fails with ``CryptoError`` instead of being skipped.
    """
    if ciphertext is None:
        return None
    return EncryptedBundle(
        ciphertext=ciphertext,
        iv=iv or "",
        auth_tag=auth_tag or "",
        algorithm=algorithm or ALGORITHM,
    )


def get_encryption_service() -> EncryptionService:
    """Return an encryption service bound to the configured master key."""
    return EncryptionService()
