"""
Encryption of individual secret strings for the local config store.

Secrets are encrypted with AES-256-CBC (PKCS#7 padding) under the machine
key, with a fresh random 16-byte IV per call. The on-disk encoding is:

    base64(iv) ":" base64(ciphertext)

Values that do not have this shape are legacy plaintext written by older
versions and are passed through untouched. Values that have the shape but
fail to decrypt are corrupt and are reported, never reinterpreted.
"""

from __future__ import annotations

import base64
import binascii
import enum
import logging
import os
from dataclasses import dataclass

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from bb_cli.machine_key import KeyProvider, default_key_provider

logger = logging.getLogger(__name__)

IV_LENGTH_BYTES = 16
AES_BLOCK_SIZE_BITS = 128
SEGMENT_SEPARATOR = ":"


class CryptoError(Exception):
    """
    Raised when a secret cannot be encrypted.

    Covers an unavailable source of secure randomness and failures of the
    cipher primitive itself. Not retried: a broken primitive stays broken.
    """


class CorruptSecretError(Exception):
    """
    Raised when a value has the encrypted-secret shape but fails to decrypt.

    Typical causes are a config file copied from another machine or user,
    or a hand-edited / truncated ciphertext. The message tells the user to
    re-authenticate, which overwrites the value.
    """

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail
        super().__init__(
            "Stored credential is invalid or corrupt and cannot be decrypted "
            "on this machine. Run 'bb auth' to re-authenticate."
        )


class DecryptStatus(str, enum.Enum):
    """Possible outcomes of inspecting a stored secret value."""

    LEGACY_PLAINTEXT = "legacy_plaintext"
    DECRYPTED = "decrypted"
    CORRUPT = "corrupt"


@dataclass(frozen=True)
class DecryptOutcome:
    """
    Result of inspecting a stored secret value.

    Exactly one of the following holds:
        - status is LEGACY_PLAINTEXT: the value is not in our format.
        - status is DECRYPTED: plaintext holds the recovered secret.
        - status is CORRUPT: error holds the CorruptSecretError to raise.
    """

    status: DecryptStatus
    plaintext: str | None = None
    error: CorruptSecretError | None = None


def _strict_b64decode(segment: str) -> bytes | None:
    try:
        return base64.b64decode(segment, validate=True)
    except (binascii.Error, ValueError):
        return None


class SecretCipher:
    """
    Encrypts and decrypts secret strings under a machine key.

    Args:
        key_provider: Source of the 32-byte machine key. Defaults to the
            process-wide provider.
    """

    def __init__(self, key_provider: KeyProvider | None = None) -> None:
        self._key_provider = key_provider or default_key_provider

    def _cipher(self, iv: bytes) -> Cipher:
        return Cipher(algorithms.AES(self._key_provider.key()), modes.CBC(iv))

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a secret string.

        Args:
            plaintext: The secret to encrypt.

        Returns:
            The "base64(iv):base64(ciphertext)" encoding. Two calls with the
            same plaintext return different values.

        Raises:
            CryptoError: If secure randomness or the cipher call fails.
        """
        try:
            iv = os.urandom(IV_LENGTH_BYTES)
        except (NotImplementedError, OSError) as randomness_error:
            raise CryptoError(
                f"Secure random source unavailable: {randomness_error}"
            ) from randomness_error

        try:
            padder = padding.PKCS7(AES_BLOCK_SIZE_BITS).padder()
            padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
            encryptor = self._cipher(iv).encryptor()
            ciphertext = encryptor.update(padded) + encryptor.finalize()
        except (ValueError, TypeError) as cipher_error:
            raise CryptoError(f"Failed to encrypt secret: {cipher_error}") from cipher_error

        return (
            base64.b64encode(iv).decode("ascii")
            + SEGMENT_SEPARATOR
            + base64.b64encode(ciphertext).decode("ascii")
        )

    def inspect(self, value: str) -> DecryptOutcome:
        """
        Classify a stored value and decrypt it if it is in our format.

        Args:
            value: The value read from the config document.

        Returns:
            A DecryptOutcome; never raises for malformed input.
        """
        segments = value.split(SEGMENT_SEPARATOR)
        if len(segments) != 2:
            return DecryptOutcome(DecryptStatus.LEGACY_PLAINTEXT)

        iv = _strict_b64decode(segments[0])
        ciphertext = _strict_b64decode(segments[1])
        if iv is None or ciphertext is None or len(iv) != IV_LENGTH_BYTES:
            return DecryptOutcome(DecryptStatus.LEGACY_PLAINTEXT)

        try:
            decryptor = self._cipher(iv).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(AES_BLOCK_SIZE_BITS).unpadder()
            plaintext_bytes = unpadder.update(padded) + unpadder.finalize()
            plaintext = plaintext_bytes.decode("utf-8")
        except ValueError as decrypt_error:
            # UnicodeDecodeError is a ValueError subclass, so a wrong key
            # that happens to yield valid padding still lands here.
            logger.debug("Secret failed to decrypt: %s", type(decrypt_error).__name__)
            return DecryptOutcome(
                DecryptStatus.CORRUPT,
                error=CorruptSecretError(str(decrypt_error)),
            )

        return DecryptOutcome(DecryptStatus.DECRYPTED, plaintext=plaintext)

    def decrypt(self, value: str) -> str | None:
        """
        Decrypt a stored value.

        Args:
            value: The value read from the config document.

        Returns:
            The recovered plaintext, or None when the value is not in the
            encrypted format (legacy plaintext, to be used as-is).

        Raises:
            CorruptSecretError: If the value looks encrypted but cannot be
                decrypted.
        """
        outcome = self.inspect(value)
        if outcome.status is DecryptStatus.CORRUPT:
            raise outcome.error or CorruptSecretError()
        return outcome.plaintext


def encrypt_secret(plaintext: str) -> str:
    """Encrypt with the default machine key. See SecretCipher.encrypt."""
    return SecretCipher().encrypt(plaintext)


def decrypt_secret(value: str) -> str | None:
    """Decrypt with the default machine key. See SecretCipher.decrypt."""
    return SecretCipher().decrypt(value)
