"""Shared security helpers for biometric template storage."""

from .crypto import (
    BiometricIntegrityError,
    DecryptionFailure,
    InvalidToken,
    KeyCustodian,
    TemplateCodec,
    WrappedKeyCustodian,
    decode_template,
    encode_template,
    generate_profile_key,
    template_digest,
)

__all__ = [
    "BiometricIntegrityError",
    "DecryptionFailure",
    "InvalidToken",
    "KeyCustodian",
    "TemplateCodec",
    "WrappedKeyCustodian",
    "decode_template",
    "encode_template",
    "generate_profile_key",
    "template_digest",
]
