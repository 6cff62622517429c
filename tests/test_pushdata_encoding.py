from __future__ import annotations

import pytest

from bsv_inscribe.errors import EncodingError, SizeLimitExceeded
from bsv_inscribe.script import (
    MAX_INSCRIPTION_PAYLOAD,
    MAX_PUSHDATA4,
    build_data_carrier_script,
    build_inscription_script,
    build_p2pkh_script,
    decode_inscription_script,
    decode_push_data,
    encode_push_data,
    extract_data_carrier,
)

PKH = bytes(range(20))


@pytest.mark.parametrize(
    "length, header",
    [
        (75, b"\x4b"),
        (76, b"\x4c\x4c"),
        (255, b"\x4c\xff"),
        (256, b"\x4d\x00\x01"),
        (65535, b"\x4d\xff\xff"),
        (65536, b"\x4e\x00\x00\x01\x00"),
    ],
)
def test_push_data_tier_boundaries(length: int, header: bytes) -> None:
    data = b"x" * length

    encoded = encode_push_data(data)

    assert encoded[: len(header)] == header
    assert len(encoded) == len(header) + length
    assert decode_push_data(encoded) == (data, len(encoded))


def test_push_data_rejects_oversized_length() -> None:
    class Huge:
        def __len__(self) -> int:
            return MAX_PUSHDATA4 + 1

    with pytest.raises(EncodingError):
        encode_push_data(Huge())  # type: ignore[arg-type]


def test_decode_push_data_detects_truncation() -> None:
    with pytest.raises(EncodingError):
        decode_push_data(b"\x05abc")
    with pytest.raises(EncodingError):
        decode_push_data(b"\x4d\x01")
    with pytest.raises(EncodingError):
        decode_push_data(b"\x76")


def test_inscription_script_layout() -> None:
    script = build_inscription_script(PKH, "text/plain", b"hi")

    expected = (
        "76a914" + PKH.hex() + "88ac"
        + "0063036f726451"
        + "0a" + b"text/plain".hex()
        + "00"
        + "02" + b"hi".hex()
        + "68"
    )
    assert script.hex() == expected


def test_inscription_script_decodes_to_original_fields() -> None:
    payload = b"\x89PNG" + b"\x00" * 300
    script = build_inscription_script(PKH, "image/png", payload)

    decoded = decode_inscription_script(script)

    assert decoded is not None
    pubkey_hash, inscription = decoded
    assert pubkey_hash == PKH
    assert inscription.content_type == "image/png"
    assert inscription.payload == payload


@pytest.mark.parametrize("length", [75, 76, 255, 256, 65535, 65536])
def test_inscription_fields_survive_every_push_tier(length: int) -> None:
    content_type = "x" * length
    payload = bytes(i % 251 for i in range(length))

    decoded = decode_inscription_script(build_inscription_script(PKH, content_type, payload))

    assert decoded is not None
    assert decoded[1].content_type == content_type
    assert decoded[1].payload == payload


def test_foreign_scripts_are_not_inscriptions() -> None:
    assert decode_inscription_script(build_p2pkh_script(PKH)) is None
    assert decode_inscription_script(build_data_carrier_script(b"hello")) is None


def test_malformed_envelope_raises() -> None:
    script = build_inscription_script(PKH, "text/plain", b"hi")

    with pytest.raises(EncodingError):
        decode_inscription_script(script[:-1])


def test_empty_content_type_rejected() -> None:
    with pytest.raises(EncodingError):
        build_inscription_script(PKH, "", b"data")


def test_oversized_payload_rejected_before_building() -> None:
    with pytest.raises(SizeLimitExceeded):
        build_inscription_script(PKH, "application/octet-stream", b"\x00" * (MAX_INSCRIPTION_PAYLOAD + 1))


def test_data_carrier_round_trip() -> None:
    script = build_data_carrier_script(b"\x19\x33payload")

    assert script[:2] == b"\x00\x6a"
    assert extract_data_carrier(script) == b"\x19\x33payload"
    assert extract_data_carrier(build_p2pkh_script(PKH)) is None
