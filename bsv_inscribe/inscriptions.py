"""Scan an address for inscriptions and open the ones we hold keys for."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List

from .bcat import CHUNK_CONTENT_TYPE, MANIFEST_CONTENT_TYPE, ChunkManifest, reconstruct
from .encryption import (
    ENVELOPE_CONTENT_TYPE,
    EncryptionEnvelope,
    KeyHistory,
    decrypt_with_key_material,
)
from .errors import DecryptionError, EncodingError
from .script import decode_inscription_script
from .transaction import Transaction

logger = logging.getLogger(__name__)


@dataclass
class InscriptionRecord:
    txid: str
    vout: int
    timestamp: float
    content_type: str
    payload: bytes
    envelope: EncryptionEnvelope | None = None
    manifest: ChunkManifest | None = None
    content: bytes | None = None
    error: str | None = None

    @property
    def encrypted(self) -> bool:
        return self.envelope is not None and self.envelope.encrypted

    @property
    def level(self) -> int:
        return self.envelope.level if self.envelope is not None else 0

    @property
    def display_type(self) -> str:
        """Content type of the underlying content rather than its wrapper."""

        if self.envelope is not None:
            return self.envelope.original_type
        if self.manifest is not None:
            return self.manifest.content_type
        return self.content_type


def decode_inscriptions(txid: str, timestamp: float, raw_tx: bytes) -> List[InscriptionRecord]:
    """Return every inscription output of ``raw_tx`` except bare chunk parts."""

    try:
        tx = Transaction.from_bytes(raw_tx)
    except EncodingError as exc:
        logger.debug("Skipping undecodable transaction %s: %s", txid, exc)
        return []

    records = []
    for vout, output in enumerate(tx.outputs):
        try:
            decoded = decode_inscription_script(output.script)
        except EncodingError as exc:
            logger.warning("Malformed inscription at %s:%d: %s", txid, vout, exc)
            continue
        if decoded is None:
            continue
        payload = decoded[1]
        if payload.content_type == CHUNK_CONTENT_TYPE:
            continue

        record = InscriptionRecord(
            txid=txid,
            vout=vout,
            timestamp=timestamp,
            content_type=payload.content_type,
            payload=payload.payload,
        )
        if payload.content_type == MANIFEST_CONTENT_TYPE:
            try:
                record.manifest = ChunkManifest.from_bytes(payload.payload)
            except EncodingError as exc:
                record.error = str(exc)
        elif payload.content_type.startswith(ENVELOPE_CONTENT_TYPE):
            envelope = EncryptionEnvelope.from_json(payload.payload)
            if envelope is not None and envelope.encrypted:
                record.envelope = envelope
        if record.envelope is None and record.manifest is None:
            record.content = payload.payload
        records.append(record)
    return records


def open_envelope(envelope: EncryptionEnvelope, key_history: KeyHistory) -> bytes:
    """Try the current key material, then each previous version."""

    for material in (key_history.current,) + key_history.previous:
        try:
            return decrypt_with_key_material(envelope, material)
        except DecryptionError:
            continue
    raise DecryptionError(
        f"None of the {1 + len(key_history.previous)} known keys open this level {envelope.level} content"
    )


class InscriptionReader:
    def __init__(self, ledger: Any, key_history: KeyHistory | None = None) -> None:
        self.ledger = ledger
        self.key_history = key_history

    def list_inscriptions(self, address: str) -> List[InscriptionRecord]:
        """Newest first, with encrypted content opened where a key fits."""

        records: List[InscriptionRecord] = []
        for entry in self.ledger.fetch_history(address):
            raw_tx = self.ledger.fetch_transaction(entry.txid)
            records.extend(decode_inscriptions(entry.txid, entry.timestamp, raw_tx))

        for record in records:
            if record.envelope is None:
                continue
            if self.key_history is None:
                record.error = "No key material loaded"
                continue
            try:
                record.content = open_envelope(record.envelope, self.key_history)
            except DecryptionError as exc:
                record.error = str(exc)
        records.sort(key=lambda record: (-record.timestamp, record.txid, record.vout))
        return records

    def load_chunked(self, manifest: ChunkManifest) -> bytes:
        return reconstruct(manifest, self.ledger.fetch_transaction)

    def fetch_manifest(self, txid: str) -> ChunkManifest:
        for record in decode_inscriptions(txid, 0.0, self.ledger.fetch_transaction(txid)):
            if record.manifest is not None:
                return record.manifest
        raise EncodingError(f"Transaction {txid} does not carry a chunk manifest")
