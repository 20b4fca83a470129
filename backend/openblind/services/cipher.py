"""
OpenBlind Backend — Cipher Engine
===================================

What:  Reversible field encryption for personally identifiable strings, plus
       one-way password hashing for account credentials.
How:   AES-256-GCM with a fresh 16-byte IV per call, keyed by a 32-byte key
       derived from the operator secret with PBKDF2-HMAC-SHA256.
Who:   Built once by the lifespan handler (`build_cipher_engine`) and injected
       into the profile codec, account service and batch jobs.

Envelope (wire format of every encrypted value):

    hex(iv) ":" hex(ciphertext || tag)
    └─ 32 hex chars ─┘ └─ non-empty hex ─┘

    A string that does not have exactly this shape is plaintext. There is no
    "malformed envelope" state: legacy plaintext and ciphertext coexist in the
    same column and `decrypt` passes plaintext through untouched.

Failure policy:
    try_encrypt / try_decrypt never raise; they return a TransformResult.
    encrypt / decrypt apply the configured FailMode to that result:
        OPEN   → log a warning, return the input unchanged
        CLOSED → raise TransformFailure
    Callers in fail-open mode cannot tell "stored as ciphertext" from "fell
    back to plaintext" without calling is_encrypted() on the output.
"""

import enum
import hashlib
import hmac
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Optional

import bcrypt
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from openblind.config import Settings
from openblind.exceptions import CipherConfigurationError, TransformFailure

logger = logging.getLogger(__name__)

KEY_SIZE = 32
IV_SIZE = 16
ENVELOPE_SEPARATOR = ":"
ENVELOPE_PATTERN = re.compile(r"[0-9a-fA-F]{32}:[0-9a-fA-F]+")

# bcrypt reads at most 72 bytes of input
BCRYPT_MAX_BYTES = 72

_BLIND_INDEX_INFO = b"openblind blind-index v1"


class FailMode(str, enum.Enum):
    """What encrypt/decrypt do when the underlying cipher operation fails."""

    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class TransformResult:
    """
    Outcome of a single encrypt/decrypt call.

    value:  the transformed string on success, the untouched input on failure
    ok:     False only when the cipher itself failed
    error:  the TransformFailure describing the failure, if any
    """

    value: Optional[str]
    ok: bool
    error: Optional[TransformFailure] = None


def derive_key(secret: str, salt: str, iterations: int) -> bytes:
    """
    Derive the 32-byte data key from an operator secret.

    Secrets of any length are normalized by PBKDF2, never truncated or padded.

    Raises:
        CipherConfigurationError: empty secret or salt.
    """
    if not secret:
        raise CipherConfigurationError("ENCRYPTION_KEY is empty")
    if not salt:
        raise CipherConfigurationError("ENCRYPTION_KDF_SALT is empty")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt.encode("utf-8"),
        iterations=iterations,
    )
    return kdf.derive(secret.encode("utf-8"))


class CipherEngine:
    """
    Symmetric field cipher bound to one derived key.

    Instances are immutable after construction and safe to share across
    concurrent requests; AESGCM keeps no per-call state.
    """

    SELF_TEST_SAMPLE = "Hello, World! 🌍"

    def __init__(self, key: bytes, fail_mode: FailMode = FailMode.OPEN):
        if len(key) != KEY_SIZE:
            raise CipherConfigurationError(
                f"Derived key must be exactly {KEY_SIZE} bytes",
                context={"key_size": len(key)},
            )
        self._aead = AESGCM(key)
        self._index_key = HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=None,
            info=_BLIND_INDEX_INFO,
        ).derive(key)
        self.fail_mode = FailMode(fail_mode)

    # ── Shape detection ───────────────────────────────────────────────────

    @staticmethod
    def is_encrypted(value: Any) -> bool:
        """
        Pure shape check against the envelope format; never decrypts.

        A string that merely looks like an envelope is reported as encrypted
        even if it would not decrypt.
        """
        return isinstance(value, str) and ENVELOPE_PATTERN.fullmatch(value) is not None

    # ── Typed transforms ──────────────────────────────────────────────────

    def try_encrypt(self, plaintext: Optional[str]) -> TransformResult:
        """Encrypt without applying the fail policy."""
        if not plaintext or not isinstance(plaintext, str):
            return TransformResult(value=plaintext, ok=True)
        try:
            iv = os.urandom(IV_SIZE)
            ciphertext = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        except Exception as exc:
            return TransformResult(
                value=plaintext,
                ok=False,
                error=TransformFailure("encrypt", reason=type(exc).__name__),
            )
        return TransformResult(value=f"{iv.hex()}{ENVELOPE_SEPARATOR}{ciphertext.hex()}", ok=True)

    def try_decrypt(self, value: Optional[str]) -> TransformResult:
        """Decrypt without applying the fail policy. Plaintext passes through."""
        if not self.is_encrypted(value):
            return TransformResult(value=value, ok=True)
        iv_hex, ciphertext_hex = value.split(ENVELOPE_SEPARATOR)
        try:
            plaintext = self._aead.decrypt(
                bytes.fromhex(iv_hex), bytes.fromhex(ciphertext_hex), None
            )
            return TransformResult(value=plaintext.decode("utf-8"), ok=True)
        except Exception as exc:
            return TransformResult(
                value=value,
                ok=False,
                error=TransformFailure("decrypt", reason=type(exc).__name__),
            )

    # ── Policy-applying transforms ────────────────────────────────────────

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        """Return the envelope for `plaintext`; empty/absent input is returned as-is."""
        return self._resolve(self.try_encrypt(plaintext))

    def decrypt(self, value: Optional[str]) -> Optional[str]:
        """Return the plaintext for an envelope; non-envelope input is returned as-is."""
        return self._resolve(self.try_decrypt(value))

    def _resolve(self, result: TransformResult) -> Optional[str]:
        if result.ok:
            return result.value
        if self.fail_mode is FailMode.CLOSED:
            raise result.error
        # The value itself is never logged
        logger.warning(
            "Field %s failed (%s); returning input unchanged",
            result.error.operation,
            result.error.reason,
            extra={
                "operation": result.error.operation,
                "reason": result.error.reason,
                "fail_mode": self.fail_mode.value,
            },
        )
        return result.value

    # ── Lookup support ────────────────────────────────────────────────────

    def blind_index(self, value: str) -> str:
        """
        Deterministic keyed digest of a normalized value (strip + lowercase).

        Used for equality lookups on encrypted columns such as account email.
        """
        normalized = value.strip().lower().encode("utf-8")
        return hmac.new(self._index_key, normalized, hashlib.sha256).hexdigest()

    def self_test(self) -> bool:
        """Round-trip a fixed sample; False if any step misbehaves."""
        try:
            envelope = self.encrypt(self.SELF_TEST_SAMPLE)
            if not self.is_encrypted(envelope):
                return False
            if self.decrypt(envelope) != self.SELF_TEST_SAMPLE:
                return False
            return self.decrypt("plain-value") == "plain-value"
        except TransformFailure as exc:
            logger.error("Cipher self-test failed: %s", exc.message)
            return False


def build_cipher_engine(config: Settings) -> CipherEngine:
    """
    Build the engine from settings.

    Raises:
        CipherConfigurationError: missing/placeholder/short key or an
        unsupported algorithm. Callers at startup let this propagate.
    """
    config.validate_required_for_production()
    key = derive_key(
        config.encryption_key.strip(),
        config.encryption_kdf_salt,
        config.encryption_kdf_iterations,
    )
    engine = CipherEngine(key, fail_mode=FailMode(config.encryption_fail_mode))
    logger.info(
        "Cipher engine ready (algorithm=%s, fail_mode=%s)",
        config.encryption_algorithm,
        engine.fail_mode.value,
    )
    return engine


# ══════════════════════════════════════════════════════════════════════════
# Password hashing (one-way, unrelated to the envelope scheme)
# ══════════════════════════════════════════════════════════════════════════

def hash_password(plaintext: str, rounds: int = 12) -> str:
    """bcrypt hash of `plaintext`. Blocking; call through asyncio.to_thread."""
    secret = plaintext.encode("utf-8")[:BCRYPT_MAX_BYTES]
    return bcrypt.hashpw(secret, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plaintext: str, hashed: str) -> bool:
    """True if `plaintext` matches `hashed`; malformed hashes never match."""
    if not plaintext or not hashed:
        return False
    secret = plaintext.encode("utf-8")[:BCRYPT_MAX_BYTES]
    try:
        return bcrypt.checkpw(secret, hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False
