"""
OpenBlind Backend — Cipher Engine Unit Tests
==============================================

What we test:
    ✅ Round-trip, fresh IV per call, envelope shape
    ✅ Plaintext pass-through on decrypt (legacy compatibility)
    ✅ Fail-open vs fail-closed on wrong key and tampered envelopes
    ✅ Typed results from try_encrypt / try_decrypt
    ✅ Startup refuses missing, placeholder and short keys
    ✅ Blind index determinism and normalization
    ✅ bcrypt hashing helpers
"""

import logging
from unittest.mock import patch

import pytest

from openblind.config import Settings, settings
from openblind.exceptions import CipherConfigurationError, TransformFailure
from openblind.services.cipher import (
    CipherEngine,
    FailMode,
    build_cipher_engine,
    derive_key,
    hash_password,
    verify_password,
)


class TestEnvelope:
    """Encrypt/decrypt behaviour on well-formed input."""

    @pytest.mark.parametrize(
        "plaintext",
        ["Juan Carlos", "Pérez", "+34 600 123 456", "https://cdn.example.org/a.png", "🌍 ñ ü", "x"],
    )
    def test_round_trip(self, cipher, plaintext):
        assert cipher.decrypt(cipher.encrypt(plaintext)) == plaintext

    def test_envelope_shape(self, cipher):
        envelope = cipher.encrypt("Juan Carlos")
        iv_hex, _, body_hex = envelope.partition(":")
        assert len(iv_hex) == 32
        # 16-byte GCM tag follows the ciphertext
        assert len(bytes.fromhex(body_hex)) == len("Juan Carlos".encode()) + 16
        assert cipher.is_encrypted(envelope)

    def test_same_plaintext_gives_different_envelopes(self, cipher):
        first = cipher.encrypt("Ana")
        second = cipher.encrypt("Ana")
        assert first != second
        assert cipher.decrypt(first) == cipher.decrypt(second) == "Ana"

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty_values_returned_as_is(self, cipher, value):
        assert cipher.encrypt(value) == value
        assert cipher.decrypt(value) == value

    def test_self_test_passes(self, cipher):
        assert cipher.self_test() is True


class TestShapeDetection:
    """is_encrypted is a pure shape check."""

    @pytest.mark.parametrize(
        "value",
        [
            "not-an-envelope-string",
            "Juan Carlos",
            "abc:def",
            "0" * 31 + ":abcd",
            "0" * 32 + ":",
            "0" * 32 + ":xyz",
            "0" * 32 + ":ab:cd",
            12345,
            None,
        ],
    )
    def test_non_envelopes(self, value):
        assert CipherEngine.is_encrypted(value) is False

    def test_shape_only_no_decryption(self):
        assert CipherEngine.is_encrypted("a" * 32 + ":" + "b" * 10) is True

    def test_plaintext_passes_through_decrypt(self, cipher):
        assert cipher.decrypt("not-an-envelope-string") == "not-an-envelope-string"


class TestFailurePolicy:
    """Wrong key / tampering under both fail modes."""

    def test_wrong_key_fail_open_returns_input(self, cipher, foreign_cipher, caplog):
        envelope = foreign_cipher.encrypt("Juan Carlos")
        with caplog.at_level(logging.WARNING, logger="openblind.services.cipher"):
            assert cipher.decrypt(envelope) == envelope
        assert "decrypt" in caplog.text
        assert "Juan Carlos" not in caplog.text

    def test_wrong_key_fail_closed_raises(self, closed_cipher, foreign_cipher):
        envelope = foreign_cipher.encrypt("Juan Carlos")
        with pytest.raises(TransformFailure) as exc_info:
            closed_cipher.decrypt(envelope)
        assert exc_info.value.operation == "decrypt"
        assert exc_info.value.reason == "InvalidTag"

    def test_tampered_envelope_detected(self, closed_cipher):
        envelope = closed_cipher.encrypt("Perez")
        last = envelope[-1]
        tampered = envelope[:-1] + ("0" if last != "0" else "1")
        with pytest.raises(TransformFailure):
            closed_cipher.decrypt(tampered)

    def test_try_decrypt_never_raises(self, closed_cipher, foreign_cipher):
        result = closed_cipher.try_decrypt(foreign_cipher.encrypt("Ana"))
        assert result.ok is False
        assert isinstance(result.error, TransformFailure)
        assert result.value.count(":") == 1

    def test_encrypt_failure_fail_open_returns_plaintext(self, cipher):
        with patch.object(cipher, "_aead") as aead:
            aead.encrypt.side_effect = RuntimeError("backend unavailable")
            assert cipher.encrypt("Ana") == "Ana"

    def test_encrypt_failure_fail_closed_raises(self, closed_cipher):
        with patch.object(closed_cipher, "_aead") as aead:
            aead.encrypt.side_effect = RuntimeError("backend unavailable")
            with pytest.raises(TransformFailure) as exc_info:
                closed_cipher.encrypt("Ana")
        assert exc_info.value.operation == "encrypt"

    def test_try_encrypt_reports_failure(self, cipher):
        with patch.object(cipher, "_aead") as aead:
            aead.encrypt.side_effect = RuntimeError("backend unavailable")
            result = cipher.try_encrypt("Ana")
        assert result.ok is False
        assert result.value == "Ana"
        assert result.error.reason == "RuntimeError"


class TestConfiguration:
    """build_cipher_engine refuses unusable keys."""

    @pytest.mark.parametrize(
        "key",
        ["", "   ", "your-32-character-encryption-key!!", "short-key"],
    )
    def test_rejects_bad_keys(self, key):
        config = Settings(encryption_key=key, encryption_kdf_iterations=1000)
        with pytest.raises(CipherConfigurationError):
            build_cipher_engine(config)

    def test_rejects_unsupported_algorithm(self):
        config = Settings(
            encryption_key="a-perfectly-fine-secret",
            encryption_algorithm="aes-256-cbc",
            encryption_kdf_iterations=1000,
        )
        with pytest.raises(CipherConfigurationError):
            build_cipher_engine(config)

    def test_fail_mode_from_settings(self):
        config = Settings(
            encryption_key="a-perfectly-fine-secret",
            encryption_fail_mode="closed",
            encryption_kdf_iterations=1000,
        )
        assert build_cipher_engine(config).fail_mode is FailMode.CLOSED

    def test_invalid_fail_mode_rejected(self):
        with pytest.raises(ValueError):
            Settings(encryption_fail_mode="sometimes")

    def test_derive_key_is_deterministic_and_not_truncated(self):
        salt = settings.encryption_kdf_salt
        long_a = "x" * 40 + "a"
        long_b = "x" * 40 + "b"
        assert derive_key(long_a, salt, 1000) == derive_key(long_a, salt, 1000)
        assert derive_key(long_a, salt, 1000) != derive_key(long_b, salt, 1000)
        assert len(derive_key("short-but-valid!", salt, 1000)) == 32

    def test_derive_key_rejects_empty_secret(self):
        with pytest.raises(CipherConfigurationError):
            derive_key("", "salt", 1000)

    def test_engine_rejects_wrong_key_size(self):
        with pytest.raises(CipherConfigurationError):
            CipherEngine(b"too-short")


class TestBlindIndex:
    def test_normalized_and_deterministic(self, cipher):
        assert cipher.blind_index("  Juan@Example.ORG ") == cipher.blind_index("juan@example.org")

    def test_depends_on_key(self, cipher, foreign_cipher):
        assert cipher.blind_index("juan@example.org") != foreign_cipher.blind_index(
            "juan@example.org"
        )

    def test_does_not_contain_value(self, cipher):
        digest = cipher.blind_index("juan@example.org")
        assert len(digest) == 64
        assert "juan" not in digest


class TestPasswordHashing:
    def test_hash_and_verify(self):
        hashed = hash_password("correct-horse", rounds=4)
        assert hashed != "correct-horse"
        assert verify_password("correct-horse", hashed) is True
        assert verify_password("wrong-horse", hashed) is False

    def test_malformed_hash_never_matches(self):
        assert verify_password("anything", "not-a-bcrypt-hash") is False

    def test_empty_inputs_never_match(self):
        assert verify_password("", hash_password("x", rounds=4)) is False
        assert verify_password("x", "") is False
