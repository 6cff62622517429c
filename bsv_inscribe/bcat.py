"""Chunked storage for payloads too large for a single inscription.

A large payload is split into ordered chunks, each inscribed in its own
transaction under :data:`CHUNK_CONTENT_TYPE`. A final manifest inscription
lists the chunk transaction ids in order together with the original content
type, total size and a SHA-256 digest per chunk. Readers rebuild the payload
by fetching the chunks in manifest order.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Sequence

from .errors import EncodingError, NetworkError, ReconstructionError
from .script import build_inscription_script, decode_inscription_script
from .transaction import Transaction

logger = logging.getLogger(__name__)

CHUNK_CONTENT_TYPE = "application/x-bcat-part"
MANIFEST_CONTENT_TYPE = "application/x-bcat-manifest+json"
DEFAULT_CHUNK_SIZE = 2 * 1024 * 1024
DEFAULT_CHUNK_THRESHOLD = DEFAULT_CHUNK_SIZE


def needs_chunking(size: int, threshold: int = DEFAULT_CHUNK_THRESHOLD) -> bool:
    return size > threshold


def split_chunks(payload: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> List[bytes]:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return [payload[offset : offset + chunk_size] for offset in range(0, len(payload), chunk_size)]


def chunk_digest(chunk: bytes) -> str:
    return hashlib.sha256(chunk).hexdigest()


def build_chunk_script(pubkey_hash: bytes, chunk: bytes) -> bytes:
    return build_inscription_script(pubkey_hash, CHUNK_CONTENT_TYPE, chunk)


@dataclass(frozen=True)
class ChunkManifest:
    """Ordered index of the chunk transactions that make up one payload."""

    content_type: str
    total_size: int
    chunk_refs: tuple[str, ...]
    chunk_hashes: tuple[str, ...] | None = None
    preview: bytes | None = None
    filename: str | None = None

    def __post_init__(self) -> None:
        if self.chunk_hashes is not None and len(self.chunk_hashes) != len(self.chunk_refs):
            raise EncodingError("Manifest must record one hash per chunk reference")

    @classmethod
    def for_payload(
        cls,
        content_type: str,
        chunks: Sequence[bytes],
        chunk_refs: Sequence[str],
        *,
        preview: bytes | None = None,
        filename: str | None = None,
    ) -> "ChunkManifest":
        if len(chunks) != len(chunk_refs):
            raise EncodingError("Every chunk needs exactly one transaction reference")
        return cls(
            content_type=content_type,
            total_size=sum(len(chunk) for chunk in chunks),
            chunk_refs=tuple(chunk_refs),
            chunk_hashes=tuple(chunk_digest(chunk) for chunk in chunks),
            preview=preview,
            filename=filename,
        )

    def to_dict(self) -> dict[str, Any]:
        document: dict[str, Any] = {
            "contentType": self.content_type,
            "totalSize": self.total_size,
            "chunkRefs": list(self.chunk_refs),
        }
        if self.chunk_hashes is not None:
            document["chunkHashes"] = list(self.chunk_hashes)
        if self.preview is not None:
            document["preview"] = base64.b64encode(self.preview).decode("ascii")
        if self.filename:
            document["filename"] = self.filename
        return document

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> "ChunkManifest":
        try:
            document = json.loads(raw)
        except (UnicodeDecodeError, ValueError) as exc:
            raise EncodingError("Manifest is not valid JSON") from exc
        if not isinstance(document, dict):
            raise EncodingError("Manifest must be a JSON object")
        try:
            refs = document["chunkRefs"]
            hashes = document.get("chunkHashes")
            preview = document.get("preview")
            return cls(
                content_type=str(document["contentType"]),
                total_size=int(document["totalSize"]),
                chunk_refs=tuple(str(ref) for ref in refs),
                chunk_hashes=tuple(str(h) for h in hashes) if hashes is not None else None,
                preview=base64.b64decode(preview) if preview else None,
                filename=document.get("filename"),
            )
        except (KeyError, TypeError, ValueError, binascii.Error) as exc:
            raise EncodingError(f"Malformed manifest: {exc}") from exc


def extract_chunk(raw_tx: bytes) -> bytes | None:
    """Return the chunk payload carried by a transaction, if any."""

    for output in Transaction.from_bytes(raw_tx).outputs:
        decoded = decode_inscription_script(output.script)
        if decoded is not None and decoded[1].content_type == CHUNK_CONTENT_TYPE:
            return decoded[1].payload
    return None


def reconstruct(manifest: ChunkManifest, fetch_transaction: Callable[[str], bytes]) -> bytes:
    """Fetch every chunk in manifest order and return the joined payload."""

    parts = []
    for index, ref in enumerate(manifest.chunk_refs):
        try:
            raw_tx = fetch_transaction(ref)
        except NetworkError as exc:
            raise ReconstructionError(
                f"Chunk {index} ({ref}) could not be fetched: {exc}", index, ref
            ) from exc
        try:
            chunk = extract_chunk(raw_tx)
        except EncodingError as exc:
            raise ReconstructionError(
                f"Chunk {index} ({ref}) is not a decodable transaction: {exc}", index, ref
            ) from exc
        if chunk is None:
            raise ReconstructionError(f"Chunk {index} ({ref}) carries no chunk data", index, ref)
        if manifest.chunk_hashes is not None and chunk_digest(chunk) != manifest.chunk_hashes[index]:
            raise ReconstructionError(
                f"Chunk {index} ({ref}) does not match the manifest digest", index, ref
            )
        logger.debug("Fetched chunk %d/%d (%d bytes)", index + 1, len(manifest.chunk_refs), len(chunk))
        parts.append(chunk)

    payload = b"".join(parts)
    if len(payload) != manifest.total_size:
        raise ReconstructionError(
            f"Reassembled {len(payload)} bytes but the manifest declares {manifest.total_size}"
        )
    return payload
