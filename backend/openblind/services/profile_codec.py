"""
OpenBlind Backend — Profile Codec
===================================

What:  The mapping between a profile's plaintext view and its stored form.
How:   encode() runs on the way into the store, decode() on the way out.
       Non-sensitive fields pass through both directions untouched.

    plaintext dict ──encode()──▶ stored dict (envelopes) ──▶ ProfileRepository
    UserProfile row ──decode()──▶ plaintext dict

Re-encryption guard:
    A value that already has the envelope shape is stored unchanged, so
    feeding ciphertext back in (e.g. a migration re-run) never double-encrypts.
"""

from typing import Any, Dict, Mapping, Optional

from openblind.models.profile import UserProfile
from openblind.services.cipher import CipherEngine

SENSITIVE_FIELDS = ("given_name", "family_name", "phone", "profile_image_url")

# Result of classify()
STATE_ENCRYPTED = "encrypted"
STATE_UNENCRYPTED = "unencrypted"
STATE_MIXED = "mixed"
STATE_EMPTY = "empty"


class ProfileCodec:
    """Encrypts and decrypts the sensitive columns of a profile."""

    def __init__(self, cipher: CipherEngine):
        self.cipher = cipher

    def encode_field(self, value: Optional[str]) -> Optional[str]:
        if value is None or not isinstance(value, str):
            return value
        trimmed = value.strip()
        if not trimmed or self.cipher.is_encrypted(trimmed):
            return trimmed
        return self.cipher.encrypt(trimmed)

    def decode_field(self, value: Optional[str]) -> Optional[str]:
        return self.cipher.decrypt(value)

    def encode(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        """Copy of `data` with every sensitive key present encoded."""
        encoded = dict(data)
        for name in SENSITIVE_FIELDS:
            if name in encoded:
                encoded[name] = self.encode_field(encoded[name])
        return encoded

    def decode(self, profile: UserProfile) -> Dict[str, Any]:
        """Plaintext view of a stored row; no field is redacted."""
        decoded = {name: self.decode_field(getattr(profile, name)) for name in SENSITIVE_FIELDS}
        decoded.update(
            id=profile.id,
            user_id=profile.user_id,
            birth_date=profile.birth_date,
            preferences=dict(profile.preferences or {}),
            encryption_version=profile.encryption_version,
            last_profile_update=profile.last_profile_update,
            revision=profile.revision,
        )
        return decoded

    def classify(self, profile: UserProfile) -> str:
        """
        Shape check of the present sensitive values.

        Returns "encrypted" if all are envelopes, "unencrypted" if none are,
        "mixed" otherwise, "empty" if no sensitive value is present.
        """
        present = [getattr(profile, name) for name in SENSITIVE_FIELDS]
        present = [v for v in present if v]
        if not present:
            return STATE_EMPTY
        flags = [self.cipher.is_encrypted(v) for v in present]
        if all(flags):
            return STATE_ENCRYPTED
        if not any(flags):
            return STATE_UNENCRYPTED
        return STATE_MIXED

    def unencrypted_fields(self, profile: UserProfile) -> Dict[str, Any]:
        """Present sensitive values that are still plaintext, encoded for write-back."""
        pending = {}
        for name in SENSITIVE_FIELDS:
            value = getattr(profile, name)
            if value and not self.cipher.is_encrypted(value):
                pending[name] = self.encode_field(value)
        return pending
