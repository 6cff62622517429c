"""Byte-level script encoding for inscriptions and data-carrier outputs.

Inscription outputs use the ``ord`` envelope behind a P2PKH clause::

    OP_DUP OP_HASH160 <pkh> OP_EQUALVERIFY OP_CHECKSIG
    OP_FALSE OP_IF "ord" OP_1 <content-type> OP_0 <payload> OP_ENDIF

Push-data lengths follow the standard four tiers (direct, PUSHDATA1,
PUSHDATA2, PUSHDATA4) and are little-endian.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .errors import EncodingError, SizeLimitExceeded
from .fees import MAX_TX_SIZE, MIN_TX_OVERHEAD

logger = logging.getLogger(__name__)

OP_0 = 0x00
OP_FALSE = OP_0
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_PUSHDATA4 = 0x4E
OP_1 = 0x51
OP_IF = 0x63
OP_ENDIF = 0x68
OP_RETURN = 0x6A
OP_DUP = 0x76
OP_EQUALVERIFY = 0x88
OP_HASH160 = 0xA9
OP_CHECKSIG = 0xAC

MAX_DIRECT_PUSH = 75
MAX_PUSHDATA1 = 0xFF
MAX_PUSHDATA2 = 0xFFFF
MAX_PUSHDATA4 = 0xFFFFFFFF

ORD_TAG = b"ord"
# OP_FALSE OP_IF <"ord"> OP_1
INSCRIPTION_MARKER = bytes([OP_FALSE, OP_IF, len(ORD_TAG)]) + ORD_TAG + bytes([OP_1])
DATA_CARRIER_PREFIX = bytes([OP_FALSE, OP_RETURN])

MAX_INSCRIPTION_PAYLOAD = MAX_TX_SIZE - MIN_TX_OVERHEAD


@dataclass(frozen=True)
class InscriptionPayload:
    """Content type plus raw content carried by an inscription output."""

    content_type: str
    payload: bytes

    @property
    def size(self) -> int:
        return len(self.payload)

    def text(self, encoding: str = "utf-8") -> str:
        return self.payload.decode(encoding)


def encode_push_data(data: bytes) -> bytes:
    """Return ``data`` prefixed with the smallest valid push-data header."""

    length = len(data)
    if length <= MAX_DIRECT_PUSH:
        header = bytes([length])
    elif length <= MAX_PUSHDATA1:
        header = bytes([OP_PUSHDATA1, length])
    elif length <= MAX_PUSHDATA2:
        header = bytes([OP_PUSHDATA2]) + length.to_bytes(2, "little")
    elif length <= MAX_PUSHDATA4:
        header = bytes([OP_PUSHDATA4]) + length.to_bytes(4, "little")
    else:
        raise EncodingError(f"Push of {length} bytes exceeds the PUSHDATA4 limit")
    return header + bytes(data)


def decode_push_data(script: bytes, offset: int = 0) -> tuple[bytes, int]:
    """Decode one push at ``offset`` and return ``(data, next_offset)``."""

    if offset >= len(script):
        raise EncodingError(f"Expected push data at offset {offset}, found end of script")

    opcode = script[offset]
    cursor = offset + 1
    if opcode <= MAX_DIRECT_PUSH:
        length = opcode
    elif opcode == OP_PUSHDATA1:
        width = 1
        if cursor + width > len(script):
            raise EncodingError("Truncated PUSHDATA1 length")
        length = script[cursor]
        cursor += width
    elif opcode == OP_PUSHDATA2:
        width = 2
        if cursor + width > len(script):
            raise EncodingError("Truncated PUSHDATA2 length")
        length = int.from_bytes(script[cursor : cursor + width], "little")
        cursor += width
    elif opcode == OP_PUSHDATA4:
        width = 4
        if cursor + width > len(script):
            raise EncodingError("Truncated PUSHDATA4 length")
        length = int.from_bytes(script[cursor : cursor + width], "little")
        cursor += width
    else:
        raise EncodingError(f"Opcode 0x{opcode:02x} at offset {offset} is not a data push")

    end = cursor + length
    if end > len(script):
        raise EncodingError(
            f"Push at offset {offset} declares {length} bytes but only {len(script) - cursor} remain"
        )
    return bytes(script[cursor:end]), end


def build_p2pkh_script(pubkey_hash: bytes) -> bytes:
    if len(pubkey_hash) != 20:
        raise EncodingError(f"Public key hash must be 20 bytes, got {len(pubkey_hash)}")
    return bytes([OP_DUP, OP_HASH160, 20]) + pubkey_hash + bytes([OP_EQUALVERIFY, OP_CHECKSIG])


def parse_p2pkh_script(script: bytes) -> bytes | None:
    """Return the 20-byte hash when ``script`` starts with a P2PKH clause."""

    if (
        len(script) >= 25
        and script[0] == OP_DUP
        and script[1] == OP_HASH160
        and script[2] == 20
        and script[23] == OP_EQUALVERIFY
        and script[24] == OP_CHECKSIG
    ):
        return bytes(script[3:23])
    return None


def _encode_content_type(content_type: str) -> bytes:
    if not content_type:
        raise EncodingError("Content type must not be empty")
    try:
        return content_type.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise EncodingError(f"Content type is not UTF-8 representable: {content_type!r}") from exc


def build_inscription_script(pubkey_hash: bytes, content_type: str, payload: bytes) -> bytes:
    """Build the locking script for an inscription output."""

    if len(payload) > MAX_INSCRIPTION_PAYLOAD:
        raise SizeLimitExceeded(len(payload) + MIN_TX_OVERHEAD, MAX_TX_SIZE)

    script = bytearray(build_p2pkh_script(pubkey_hash))
    script += INSCRIPTION_MARKER
    script += encode_push_data(_encode_content_type(content_type))
    script.append(OP_0)
    script += encode_push_data(payload)
    script.append(OP_ENDIF)
    logger.debug(
        "Built inscription script: %s, %d payload bytes, %d script bytes",
        content_type,
        len(payload),
        len(script),
    )
    return bytes(script)


def decode_inscription_script(script: bytes) -> tuple[bytes, InscriptionPayload] | None:
    """Return ``(pubkey_hash, payload)`` or ``None`` for foreign scripts.

    A script that carries the envelope marker but is malformed raises
    :class:`EncodingError`.
    """

    pubkey_hash = parse_p2pkh_script(script)
    if pubkey_hash is None:
        return None
    marker_end = 25 + len(INSCRIPTION_MARKER)
    if bytes(script[25:marker_end]) != INSCRIPTION_MARKER:
        return None

    content_type_raw, cursor = decode_push_data(script, marker_end)
    if cursor >= len(script) or script[cursor] != OP_0:
        raise EncodingError("Missing separator between content type and payload")
    payload, cursor = decode_push_data(script, cursor + 1)
    if cursor >= len(script) or script[cursor] != OP_ENDIF:
        raise EncodingError("Inscription envelope is not terminated by OP_ENDIF")

    try:
        content_type = content_type_raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise EncodingError("Content type is not valid UTF-8") from exc
    return pubkey_hash, InscriptionPayload(content_type=content_type, payload=payload)


def build_data_carrier_script(data: bytes) -> bytes:
    """Return ``OP_FALSE OP_RETURN <data>``."""

    return DATA_CARRIER_PREFIX + encode_push_data(data)


def extract_data_carrier(script: bytes) -> bytes | None:
    """Return the concatenated pushes of a data-carrier script, if it is one."""

    if bytes(script[:2]) == DATA_CARRIER_PREFIX:
        cursor = 2
    elif script[:1] == bytes([OP_RETURN]):
        cursor = 1
    else:
        return None

    chunks = []
    while cursor < len(script):
        try:
            data, cursor = decode_push_data(script, cursor)
        except EncodingError:
            logger.debug("Stopping data-carrier parse at offset %d", cursor)
            break
        chunks.append(data)
    return b"".join(chunks)
