"""Fernet helpers for encrypting biometric templates with per-profile keys.

Every face profile gets its own randomly generated Fernet key. The raw key
is never stored: a :class:`KeyCustodian` seals it into an opaque reference
before it reaches the database and unseals it when the template has to be
decrypted. The default custodian wraps profile keys with the master keys
configured in ``BIOMETRICS_KEY_ENCRYPTION_KEYS``.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Protocol, Sequence, Union

import numpy as np
from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

BytesLike = Union[bytes, bytearray, memoryview]

# Templates are persisted as little-endian float64 so the byte layout is
# independent of the host platform.
TEMPLATE_DTYPE = np.dtype("<f8")


class BiometricIntegrityError(Exception):
    """Base class for server-side faults in stored biometric material."""


class DecryptionFailure(BiometricIntegrityError):
    """Raised when a stored template cannot be decrypted with its key."""


def _coerce_key_bytes(key: BytesLike | str) -> bytes:
    """Normalise Fernet key material to ``bytes``."""

    if isinstance(key, str):
        return key.encode()
    return bytes(key)


def generate_profile_key() -> bytes:
    """Return a fresh random key for a single face profile."""

    return Fernet.generate_key()


def encode_template(template: np.ndarray | Sequence[float]) -> bytes:
    """Serialise a template vector to its canonical byte layout."""

    array = np.asarray(template, dtype=TEMPLATE_DTYPE)
    if array.ndim != 1 or array.size == 0:
        raise ValueError("Templates must be non-empty one-dimensional vectors.")
    return array.tobytes()


def decode_template(payload: BytesLike) -> np.ndarray:
    """Rebuild a template vector from :func:`encode_template` output."""

    raw = bytes(payload)
    if not raw or len(raw) % TEMPLATE_DTYPE.itemsize:
        raise DecryptionFailure("Decrypted template has an invalid byte length.")
    return np.frombuffer(raw, dtype=TEMPLATE_DTYPE).copy()


def template_digest(payload: BytesLike) -> str:
    """Return the one-way sha256 digest stored next to an encrypted template."""

    return hashlib.sha256(bytes(payload)).hexdigest()


class TemplateCodec:
    """Symmetric encryption of template bytes under a caller-supplied key.

    Fernet generates a random IV for every token and embeds it in the token,
    so a blob can be decrypted with nothing but its key.
    """

    def encrypt(self, plaintext: BytesLike, key: BytesLike | str) -> bytes:
        if not isinstance(plaintext, (bytes, bytearray, memoryview)):
            raise TypeError("encrypt expects a bytes-like object")
        return self._cipher(key).encrypt(bytes(plaintext))

    def decrypt(self, blob: BytesLike, key: BytesLike | str) -> bytes:
        if not isinstance(blob, (bytes, bytearray, memoryview)):
            raise TypeError("decrypt expects a bytes-like object")
        try:
            return self._cipher(key).decrypt(bytes(blob))
        except InvalidToken as exc:
            raise DecryptionFailure("Template ciphertext failed authentication.") from exc

    def decrypt_template(self, blob: BytesLike, key: BytesLike | str) -> np.ndarray:
        return decode_template(self.decrypt(blob, key))

    @staticmethod
    def _cipher(key: BytesLike | str) -> Fernet:
        try:
            return Fernet(_coerce_key_bytes(key))
        except (TypeError, ValueError) as exc:
            raise DecryptionFailure("Profile key material is malformed.") from exc


class KeyCustodian(Protocol):
    """Strategy that keeps per-profile keys out of the database in raw form."""

    def seal(self, raw_key: bytes) -> str:
        """Return the opaque reference persisted on the profile row."""

    def unseal(self, reference: str) -> bytes:
        """Return the raw key for a reference produced by :meth:`seal`."""


@dataclass(slots=True)
class WrappedKeyCustodian:
    """Wrap profile keys with master keys from a Django setting.

    The setting holds a sequence of Fernet keys, newest first. Sealing always
    uses the newest key; unsealing accepts any of them, which lets
    :meth:`rewrap` migrate references during a master-key rotation.
    """

    setting_name: str = "BIOMETRICS_KEY_ENCRYPTION_KEYS"
    keys_override: Sequence[BytesLike | str] | None = None
    _cipher: MultiFernet | None = field(default=None, repr=False)

    def _resolve_keys(self) -> list[bytes]:
        keys = self.keys_override
        if keys is None:
            keys = getattr(settings, self.setting_name, None)
        if not keys:
            raise ImproperlyConfigured(f"{self.setting_name} is not configured.")
        if isinstance(keys, (str, bytes)):
            keys = [keys]
        return [_coerce_key_bytes(key) for key in keys]

    def _get_cipher(self) -> MultiFernet:
        if self._cipher is None:
            try:
                self._cipher = MultiFernet([Fernet(key) for key in self._resolve_keys()])
            except (TypeError, ValueError) as exc:
                raise ImproperlyConfigured(f"{self.setting_name} is invalid.") from exc
        return self._cipher

    def seal(self, raw_key: bytes) -> str:
        return self._get_cipher().encrypt(bytes(raw_key)).decode()

    def unseal(self, reference: str) -> bytes:
        try:
            return self._get_cipher().decrypt(reference.encode())
        except InvalidToken as exc:
            raise DecryptionFailure("Profile key reference could not be unwrapped.") from exc

    def rewrap(self, reference: str) -> str:
        """Re-seal ``reference`` under the newest master key."""

        try:
            return self._get_cipher().rotate(reference.encode()).decode()
        except InvalidToken as exc:
            raise DecryptionFailure("Profile key reference could not be unwrapped.") from exc


__all__ = [
    "BiometricIntegrityError",
    "DecryptionFailure",
    "InvalidToken",
    "KeyCustodian",
    "TEMPLATE_DTYPE",
    "TemplateCodec",
    "WrappedKeyCustodian",
    "decode_template",
    "encode_template",
    "generate_profile_key",
    "template_digest",
]
