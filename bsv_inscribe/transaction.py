"""Wire-format serialization and signature hashing for BSV transactions."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import List

from .errors import EncodingError

SIGHASH_ALL = 0x01
SIGHASH_FORKID = 0x40
DEFAULT_SIGHASH = SIGHASH_ALL | SIGHASH_FORKID
DEFAULT_SEQUENCE = 0xFFFFFFFF


def double_sha256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def encode_varint(value: int) -> bytes:
    if value < 0:
        raise EncodingError("varint cannot encode negative values")
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    def read(self, size: int) -> bytes:
        end = self.offset + size
        if end > len(self.data):
            raise EncodingError(
                f"Unexpected end of transaction data at offset {self.offset} (wanted {size} bytes)"
            )
        chunk = self.data[self.offset : end]
        self.offset = end
        return chunk

    def read_int(self, size: int) -> int:
        return int.from_bytes(self.read(size), "little")

    def read_varint(self) -> int:
        prefix = self.read_int(1)
        if prefix < 0xFD:
            return prefix
        if prefix == 0xFD:
            return self.read_int(2)
        if prefix == 0xFE:
            return self.read_int(4)
        return self.read_int(8)

    @property
    def exhausted(self) -> bool:
        return self.offset == len(self.data)


@dataclass
class TxInput:
    """Outpoint being spent plus its unlocking script."""

    txid: str
    vout: int
    script_sig: bytes = b""
    sequence: int = DEFAULT_SEQUENCE

    def outpoint(self) -> bytes:
        return bytes.fromhex(self.txid)[::-1] + self.vout.to_bytes(4, "little")

    def serialize(self) -> bytes:
        return (
            self.outpoint()
            + encode_varint(len(self.script_sig))
            + self.script_sig
            + self.sequence.to_bytes(4, "little")
        )


@dataclass
class TxOutput:
    satoshis: int
    script: bytes

    def serialize(self) -> bytes:
        return self.satoshis.to_bytes(8, "little") + encode_varint(len(self.script)) + self.script


@dataclass
class Transaction:
    """Minimal BSV transaction model with serialization and FORKID sighash."""

    inputs: List[TxInput] = field(default_factory=list)
    outputs: List[TxOutput] = field(default_factory=list)
    version: int = 1
    locktime: int = 0

    def serialize(self) -> bytes:
        parts = [self.version.to_bytes(4, "little"), encode_varint(len(self.inputs))]
        parts.extend(tx_in.serialize() for tx_in in self.inputs)
        parts.append(encode_varint(len(self.outputs)))
        parts.extend(tx_out.serialize() for tx_out in self.outputs)
        parts.append(self.locktime.to_bytes(4, "little"))
        return b"".join(parts)

    def to_hex(self) -> str:
        return self.serialize().hex()

    @property
    def txid(self) -> str:
        return double_sha256(self.serialize())[::-1].hex()

    @property
    def size(self) -> int:
        return len(self.serialize())

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Transaction":
        reader = _Reader(raw)
        version = reader.read_int(4)
        inputs = []
        for _ in range(reader.read_varint()):
            txid = reader.read(32)[::-1].hex()
            vout = reader.read_int(4)
            script_sig = reader.read(reader.read_varint())
            sequence = reader.read_int(4)
            inputs.append(TxInput(txid=txid, vout=vout, script_sig=script_sig, sequence=sequence))
        outputs = []
        for _ in range(reader.read_varint()):
            satoshis = reader.read_int(8)
            script = reader.read(reader.read_varint())
            outputs.append(TxOutput(satoshis=satoshis, script=script))
        locktime = reader.read_int(4)
        if not reader.exhausted:
            raise EncodingError("Trailing bytes after transaction locktime")
        return cls(inputs=inputs, outputs=outputs, version=version, locktime=locktime)

    @classmethod
    def from_hex(cls, raw_hex: str) -> "Transaction":
        try:
            raw = bytes.fromhex(raw_hex)
        except ValueError as exc:
            raise EncodingError("Transaction hex is not valid hexadecimal") from exc
        return cls.from_bytes(raw)

    def signature_hash(
        self,
        input_index: int,
        script_code: bytes,
        satoshis: int,
        sighash_type: int = DEFAULT_SIGHASH,
    ) -> bytes:
        """Return the double-SHA256 digest to sign for ``input_index``.

        Uses the BIP143-style preimage required by the BSV replay-protected
        sighash (``SIGHASH_ALL | SIGHASH_FORKID``).
        """

        if not sighash_type & SIGHASH_FORKID:
            raise EncodingError("Only FORKID signature hashes are supported")
        tx_in = self.inputs[input_index]
        hash_prevouts = double_sha256(b"".join(i.outpoint() for i in self.inputs))
        hash_sequence = double_sha256(
            b"".join(i.sequence.to_bytes(4, "little") for i in self.inputs)
        )
        hash_outputs = double_sha256(b"".join(o.serialize() for o in self.outputs))
        preimage = b"".join(
            [
                self.version.to_bytes(4, "little"),
                hash_prevouts,
                hash_sequence,
                tx_in.outpoint(),
                encode_varint(len(script_code)),
                script_code,
                satoshis.to_bytes(8, "little"),
                tx_in.sequence.to_bytes(4, "little"),
                hash_outputs,
                self.locktime.to_bytes(4, "little"),
                sighash_type.to_bytes(4, "little"),
            ]
        )
        return double_sha256(preimage)
