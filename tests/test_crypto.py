"""Tests for secret encryption: format, round-trip, legacy detection and corruption."""

import base64

import pytest

from bb_cli.crypto import (
    CorruptSecretError,
    CryptoError,
    DecryptStatus,
    SecretCipher,
    decrypt_secret,
    encrypt_secret,
)
from bb_cli.machine_key import KeyProvider

GARBAGE_CIPHERTEXT = base64.b64encode(b"GARBAGE_GARBAGE_GARBAGE_GARBAGE_").decode("ascii")


def _corrupt(encrypted: str) -> str:
    iv_segment, _ = encrypted.split(":")
    return f"{iv_segment}:{GARBAGE_CIPHERTEXT}"


class TestEncrypt:
    def test_produces_iv_colon_ciphertext_format(self, cipher):
        encrypted = cipher.encrypt("my-secret-token")

        iv_segment, ciphertext_segment = encrypted.split(":")
        assert len(base64.b64decode(iv_segment, validate=True)) == 16
        assert len(base64.b64decode(ciphertext_segment, validate=True)) % 16 == 0

    def test_does_not_contain_plaintext(self, cipher):
        assert "super-secret" not in cipher.encrypt("super-secret")

    def test_same_plaintext_encrypts_differently(self, cipher):
        """Random IV means the same plaintext encrypts differently each time."""
        first = cipher.encrypt("same-value")
        second = cipher.encrypt("same-value")

        assert first != second
        assert cipher.decrypt(first) == "same-value"
        assert cipher.decrypt(second) == "same-value"


class TestDecrypt:
    @pytest.mark.parametrize(
        "plaintext",
        ["ATATT3xFfGF0supersecrettoken", "", "with:colons:inside", "ünïcødé ✓", "x" * 100],
    )
    def test_round_trip(self, cipher, plaintext):
        assert cipher.decrypt(cipher.encrypt(plaintext)) == plaintext

    @pytest.mark.parametrize(
        "value",
        [
            "plaintexttoken",
            "a:b:c",
            "not-base64!!!:also-not-base64!!!",
            # Valid base64, but an 8-byte IV.
            base64.b64encode(b"12345678").decode() + ":" + GARBAGE_CIPHERTEXT,
            ":",
        ],
    )
    def test_returns_none_for_values_not_in_our_format(self, cipher, value):
        assert cipher.decrypt(value) is None
        assert cipher.inspect(value).status is DecryptStatus.LEGACY_PLAINTEXT

    def test_corrupted_ciphertext_raises(self, cipher):
        corrupted = _corrupt(cipher.encrypt("real-secret"))

        with pytest.raises(CorruptSecretError, match="(?i)invalid or corrupt"):
            cipher.decrypt(corrupted)

    def test_truncated_ciphertext_raises(self, cipher):
        iv_segment, ciphertext_segment = cipher.encrypt("real-secret").split(":")
        truncated = base64.b64decode(ciphertext_segment)[:-3]
        value = f"{iv_segment}:{base64.b64encode(truncated).decode()}"

        with pytest.raises(CorruptSecretError):
            cipher.decrypt(value)

    def test_wrong_machine_key_raises(self, cipher, tmp_path):
        other_machine = tmp_path / "other-machine-id"
        other_machine.write_text("some-other-machine")
        other_cipher = SecretCipher(
            KeyProvider(machine_id_files=(str(other_machine),), use_hardware_lookup=False)
        )

        with pytest.raises(CorruptSecretError):
            other_cipher.decrypt(cipher.encrypt("bound-to-this-machine"))

    def test_error_tells_user_to_reauthenticate(self, cipher):
        with pytest.raises(CorruptSecretError) as excinfo:
            cipher.decrypt(_corrupt(cipher.encrypt("x")))
        assert "bb auth" in str(excinfo.value)


class TestInspect:
    def test_decrypted_outcome_carries_plaintext(self, cipher):
        outcome = cipher.inspect(cipher.encrypt("token"))
        assert outcome.status is DecryptStatus.DECRYPTED
        assert outcome.plaintext == "token"
        assert outcome.error is None

    def test_corrupt_outcome_carries_error_without_raising(self, cipher):
        outcome = cipher.inspect(_corrupt(cipher.encrypt("token")))
        assert outcome.status is DecryptStatus.CORRUPT
        assert outcome.plaintext is None
        assert isinstance(outcome.error, CorruptSecretError)


class TestEncryptFailures:
    @pytest.mark.parametrize(
        "failure",
        [OSError("getrandom failed"), NotImplementedError("no randomness source")],
    )
    def test_missing_randomness_raises_crypto_error(self, cipher, monkeypatch, failure):
        def broken_urandom(length):
            raise failure

        monkeypatch.setattr("bb_cli.crypto.os.urandom", broken_urandom)

        with pytest.raises(CryptoError, match="Secure random source unavailable"):
            cipher.encrypt("token")


def test_module_functions_use_default_machine_key():
    assert decrypt_secret(encrypt_secret("default-key-secret")) == "default-key-secret"
