import base64
import string
from datetime import datetime, timedelta, UTC

import pytest

from app.schemas.schemas import Role
from app.services.errors import (
    BadSignature,
    ExpiredError,
    InvalidInputError,
    MalformedToken,
    TokenExpired,
)
from app.services.token_codec import (
    InvitationTokenCodec,
    format_expires_at,
    parse_expires_at,
)

NOW = datetime(2031, 3, 14, 12, 0, tzinfo=UTC)
LATER = NOW + timedelta(hours=2)
URLSAFE_ALPHABET = string.ascii_letters + string.digits + "-_"


def _raw(token: str) -> bytes:
    return base64.urlsafe_b64decode(token + "=" * (-len(token) % 4))


def _encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def test_sign_then_verify_returns_fields(codec):
    token = codec.sign("INV-abc123", "RM-room01", Role.HOST, LATER)

    payload = codec.verify(token, now=NOW)

    assert payload.invite_id == "INV-abc123"
    assert payload.room_id == "RM-room01"
    assert payload.role == Role.HOST
    assert payload.expires_at == LATER


def test_sign_is_deterministic(codec):
    first = codec.sign("INV-1", "RM-1", Role.PARTICIPANT, LATER)
    second = codec.sign("INV-1", "RM-1", "participant", LATER)
    assert first == second


def test_token_is_url_safe_and_carries_key_id(codec):
    token = codec.sign("INV-1", "RM-1", Role.PARTICIPANT, LATER)

    assert all(ch.isalnum() or ch in "-_" for ch in token)
    fields = _raw(token).split(b":")
    assert len(fields) == 5
    assert fields[4].startswith(b"k1.")


def test_expiry_has_no_delimiter():
    assert ":" not in format_expires_at(LATER)
    assert parse_expires_at(format_expires_at(LATER)) == LATER
    assert parse_expires_at("20310314T140000Z") == LATER


@pytest.mark.parametrize("bad_value", ["INV:1", ""])
def test_sign_rejects_unencodable_fields(codec, bad_value):
    with pytest.raises(InvalidInputError):
        codec.sign(bad_value, "RM-1", Role.PARTICIPANT, LATER)
    with pytest.raises(InvalidInputError):
        codec.sign("INV-1", bad_value, Role.PARTICIPANT, LATER)


def test_sign_rejects_unknown_role(codec):
    with pytest.raises(InvalidInputError):
        codec.sign("INV-1", "RM-1", "cohost", LATER)


def test_every_single_character_change_is_a_bad_signature(codec):
    token = codec.sign("INV-abc", "RM-xyz", Role.PARTICIPANT, LATER)
    raw = _raw(token)

    for index in range(len(raw)):
        original = raw[index : index + 1]
        replacement = b"0" if original != b"0" else b"1"
        if original == b":":
            # Moving a delimiter changes the field layout; still must not verify.
            replacement = b"x"
        tampered = raw[:index] + replacement + raw[index + 1 :]
        with pytest.raises(BadSignature):
            codec.verify(_encode(tampered), now=NOW)


@pytest.mark.parametrize("role", [Role.PARTICIPANT, Role.HOST])
def test_every_token_character_substitution_is_a_bad_signature(codec, role):
    token = codec.sign("INV-abc", "RM-xyz", role, LATER)

    survivors = []
    for index, original in enumerate(token):
        for replacement in URLSAFE_ALPHABET:
            if replacement == original:
                continue
            tampered = token[:index] + replacement + token[index + 1 :]
            try:
                codec.verify(tampered, now=NOW)
            except BadSignature:
                continue
            except Exception as exc:  # noqa: BLE001
                survivors.append((index, original, replacement, type(exc).__name__))
            else:
                survivors.append((index, original, replacement, "verified"))

    assert survivors == []


def test_token_from_another_secret_is_rejected(codec):
    other = InvitationTokenCodec("a-different-secret-0123456789abcdefgh", key_id="k1")
    token = other.sign("INV-1", "RM-1", Role.HOST, LATER)
    with pytest.raises(BadSignature):
        codec.verify(token, now=NOW)


def test_unknown_key_id_is_a_bad_signature(codec):
    rotated = InvitationTokenCodec("next-generation-secret-0123456789abcd", key_id="k2")
    token = rotated.sign("INV-1", "RM-1", Role.HOST, LATER)
    with pytest.raises(BadSignature):
        codec.verify(token, now=NOW)


def test_retired_key_still_verifies_after_rotation(codec):
    old_token = codec.sign("INV-1", "RM-1", Role.PARTICIPANT, LATER)
    rotated = InvitationTokenCodec(
        "next-generation-secret-0123456789abcd",
        key_id="k2",
        retired_keys={"k1": "unit-test-signing-secret-0123456789abcdef"},
    )

    assert rotated.verify(old_token, now=NOW).invite_id == "INV-1"
    assert _raw(rotated.sign("INV-2", "RM-1", Role.HOST, LATER)).split(b":")[4].startswith(
        b"k2."
    )


def test_expired_token_fails_even_with_valid_signature(codec):
    token = codec.sign("INV-1", "RM-1", Role.PARTICIPANT, NOW - timedelta(seconds=1))

    with pytest.raises(TokenExpired) as excinfo:
        codec.verify(token, now=NOW)
    assert isinstance(excinfo.value, ExpiredError)


def test_token_expiring_exactly_now_is_still_valid(codec):
    token = codec.sign("INV-1", "RM-1", Role.PARTICIPANT, NOW)
    assert codec.verify(token, now=NOW).expires_at == NOW


@pytest.mark.parametrize("token", ["", "%%%not-base64%%%", _encode(b"no-delimiters-here")])
def test_undecodable_tokens_are_malformed(codec, token):
    with pytest.raises(MalformedToken):
        codec.verify(token, now=NOW)


def test_missing_field_is_malformed(codec):
    # Correctly signed, but over three fields instead of four.
    payload = b"INV-1:RM-1:" + format_expires_at(LATER).encode("ascii")
    signature = codec._signature(codec._keys["k1"], payload)
    token = _encode(payload + b":k1." + signature)

    with pytest.raises(MalformedToken):
        codec.verify(token, now=NOW)


def test_codec_requires_a_secret():
    with pytest.raises(ValueError):
        InvitationTokenCodec("")
    with pytest.raises(ValueError):
        InvitationTokenCodec("some-secret", key_id="k:1")
