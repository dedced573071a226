"""Tests for template encryption and key custody."""

from __future__ import annotations

import numpy as np
import pytest
from cryptography.fernet import Fernet
from django.core.exceptions import ImproperlyConfigured

from src.common.crypto import (
    DecryptionFailure,
    TemplateCodec,
    WrappedKeyCustodian,
    decode_template,
    encode_template,
    generate_profile_key,
    template_digest,
)


def test_encrypt_decrypt_round_trips_bytes():
    codec = TemplateCodec()
    key = generate_profile_key()
    payload = b"\x00\x01binary-template\xff"

    token = codec.encrypt(payload, key)

    assert token != payload
    assert codec.decrypt(token, key) == payload


def test_each_encryption_uses_a_fresh_iv():
    codec = TemplateCodec()
    key = generate_profile_key()

    assert codec.encrypt(b"same", key) != codec.encrypt(b"same", key)


def test_decrypt_with_wrong_key_raises_decryption_failure():
    codec = TemplateCodec()
    token = codec.encrypt(b"payload", generate_profile_key())

    with pytest.raises(DecryptionFailure):
        codec.decrypt(token, generate_profile_key())


def test_decrypt_with_malformed_key_raises_decryption_failure():
    codec = TemplateCodec()
    token = codec.encrypt(b"payload", generate_profile_key())

    with pytest.raises(DecryptionFailure):
        codec.decrypt(token, b"not-a-fernet-key")


def test_tampered_ciphertext_is_rejected():
    codec = TemplateCodec()
    key = generate_profile_key()
    token = bytearray(codec.encrypt(b"payload", key))
    token[-5] ^= 0x01

    with pytest.raises(DecryptionFailure):
        codec.decrypt(bytes(token), key)


def test_encrypt_rejects_non_bytes():
    with pytest.raises(TypeError):
        TemplateCodec().encrypt("text", generate_profile_key())


def test_template_encoding_is_little_endian_float64():
    template = np.array([0.5, -1.25, 3.0])

    encoded = encode_template(template)

    assert len(encoded) == 24
    assert encoded == np.array([0.5, -1.25, 3.0], dtype="<f8").tobytes()
    np.testing.assert_array_equal(decode_template(encoded), template)


def test_encode_template_rejects_empty_or_nested_vectors():
    with pytest.raises(ValueError):
        encode_template([])
    with pytest.raises(ValueError):
        encode_template([[1.0, 2.0]])


def test_decode_template_rejects_truncated_payload():
    with pytest.raises(DecryptionFailure):
        decode_template(b"\x00" * 7)


def test_template_digest_is_sha256_hex():
    digest = template_digest(b"abc")

    assert digest == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_template_helpers_round_trip_through_codec():
    codec = TemplateCodec()
    key = generate_profile_key()
    template = np.linspace(-1.0, 1.0, 16)

    restored = codec.decrypt_template(codec.encrypt(encode_template(template), key), key)

    np.testing.assert_array_equal(restored, template)


def test_custodian_seals_and_unseals_profile_keys():
    custodian = WrappedKeyCustodian(keys_override=[Fernet.generate_key()])
    raw_key = generate_profile_key()

    reference = custodian.seal(raw_key)

    assert raw_key.decode() not in reference
    assert custodian.unseal(reference) == raw_key


def test_custodian_rejects_reference_sealed_by_another_master_key():
    sealed = WrappedKeyCustodian(keys_override=[Fernet.generate_key()]).seal(b"profile-key")
    other = WrappedKeyCustodian(keys_override=[Fernet.generate_key()])

    with pytest.raises(DecryptionFailure):
        other.unseal(sealed)


def test_rewrap_moves_reference_to_newest_master_key():
    old_key = Fernet.generate_key()
    new_key = Fernet.generate_key()
    reference = WrappedKeyCustodian(keys_override=[old_key]).seal(b"profile-key")

    rotating = WrappedKeyCustodian(keys_override=[new_key, old_key])
    rewrapped = rotating.rewrap(reference)

    assert WrappedKeyCustodian(keys_override=[new_key]).unseal(rewrapped) == b"profile-key"


def test_custodian_reads_master_keys_from_settings(settings):
    master = Fernet.generate_key()
    settings.BIOMETRICS_KEY_ENCRYPTION_KEYS = (master,)

    custodian = WrappedKeyCustodian()
    reference = custodian.seal(b"profile-key")

    assert WrappedKeyCustodian(keys_override=[master]).unseal(reference) == b"profile-key"


def test_custodian_without_keys_is_improperly_configured(settings):
    settings.BIOMETRICS_KEY_ENCRYPTION_KEYS = ()

    with pytest.raises(ImproperlyConfigured):
        WrappedKeyCustodian().seal(b"profile-key")


def test_custodian_with_invalid_keys_is_improperly_configured():
    with pytest.raises(ImproperlyConfigured):
        WrappedKeyCustodian(keys_override=["not-a-key"]).seal(b"profile-key")
