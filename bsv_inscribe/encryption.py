"""Level-based symmetric encryption for access-tiered inscriptions.

A single 256-bit root secret (held as 64 hex characters) is sliced into five
prefix segments. Level ``L`` content is encrypted with a key derived from the
first ``floor(64 * L / 5)`` characters, so sharing the segment for a level
grants access to that level only. Keys are derived with PBKDF2-HMAC-SHA256 and
content is sealed with AES-256-GCM under a fresh 12-byte IV for every call.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import ConfigurationError, DecryptionError, EncryptionError, SizeLimitExceeded
from .fees import MIN_TX_OVERHEAD, SAFE_TX_SIZE

logger = logging.getLogger(__name__)

ALGORITHM = "aes-256-gcm"
ENVELOPE_CONTENT_TYPE = "application/json"
KDF_SALT = b"blog-encryption"
KDF_ITERATIONS = 10_000
KEY_LENGTH = 32
IV_SIZE = 12
MAX_LEVEL = 5

LEVEL_LABELS = {
    0: "Public",
    1: "Friends",
    2: "Close Friends",
    3: "Inner Circle",
    4: "Closed Group",
    5: "Completely Private",
}

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")
_VERSION = re.compile(r"^v(\d+)$")


def level_label(level: int) -> str:
    try:
        return LEVEL_LABELS[level]
    except KeyError as exc:
        raise ValueError(f"Unknown encryption level: {level}") from exc


def _check_level(level: int) -> None:
    if not isinstance(level, int) or not 0 <= level <= MAX_LEVEL:
        raise EncryptionError(f"Encryption level must be between 0 and {MAX_LEVEL}, got {level!r}")


@dataclass(frozen=True)
class KeyMaterial:
    """Versioned root secret from which per-level segments are sliced."""

    root_secret: str
    version: str = "v1"
    generated_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if not _HEX_KEY.match(self.root_secret):
            raise EncryptionError("Root secret must be exactly 64 hexadecimal characters")

    @classmethod
    def generate(cls, version: str = "v1") -> "KeyMaterial":
        return cls(root_secret=os.urandom(32).hex(), version=version)

    @classmethod
    def import_key(cls, root_secret: str, version: str = "v1") -> "KeyMaterial":
        """Validate and wrap an externally supplied root secret."""

        candidate = root_secret.strip()
        if not _HEX_KEY.match(candidate):
            raise EncryptionError("Invalid key format. Must be 64 hexadecimal characters.")
        return cls(root_secret=candidate.lower(), version=version)

    def segment(self, level: int) -> str:
        """Return the key segment for ``level`` (1..5)."""

        _check_level(level)
        if level == 0:
            raise EncryptionError("Level 0 content is public and has no key segment")
        return self.root_secret[: len(self.root_secret) * level // MAX_LEVEL]

    def rotate(self) -> "KeyMaterial":
        """Return fresh material with the next version number."""

        match = _VERSION.match(self.version)
        next_version = f"v{int(match.group(1)) + 1}" if match else "v2"
        return KeyMaterial.generate(version=next_version)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.root_secret,
            "version": self.version,
            "generated_at": self.generated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "KeyMaterial":
        return cls(
            root_secret=str(data["key"]),
            version=str(data.get("version", "v1")),
            generated_at=float(data.get("generated_at", time.time())),
        )


@dataclass(frozen=True)
class KeyHistory:
    """Current key material plus everything it replaced, newest first."""

    current: KeyMaterial
    previous: tuple[KeyMaterial, ...] = ()

    @classmethod
    def create(cls) -> "KeyHistory":
        return cls(current=KeyMaterial.generate())

    def rotate(self) -> "KeyHistory":
        rotated = self.current.rotate()
        logger.info("Rotated content key %s -> %s", self.current.version, rotated.version)
        return KeyHistory(current=rotated, previous=(self.current,) + self.previous)

    def import_key(self, root_secret: str) -> "KeyHistory":
        imported = KeyMaterial.import_key(root_secret)
        return KeyHistory(current=imported, previous=(self.current,) + self.previous)

    def find(self, version: str) -> KeyMaterial | None:
        for material in (self.current,) + self.previous:
            if material.version == version:
                return material
        return None


def save_key_history(history: KeyHistory, path: str | Path) -> None:
    target = Path(path).expanduser()
    document = {
        "current": history.current.to_dict(),
        "previous": [material.to_dict() for material in history.previous],
    }
    target.write_text(yaml.safe_dump(document, sort_keys=False))
    os.chmod(target, 0o600)


def load_key_history(path: str | Path) -> KeyHistory:
    source = Path(path).expanduser()
    try:
        document = yaml.safe_load(source.read_text())
    except OSError as exc:
        raise ConfigurationError(f"Unable to read key history {source}: {exc}") from exc
    except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
        raise ConfigurationError(f"Invalid YAML in key history {source}: {exc}") from exc
    if not isinstance(document, dict) or "current" not in document:
        raise ConfigurationError(f"Key history {source} has no 'current' entry")
    try:
        return KeyHistory(
            current=KeyMaterial.from_dict(document["current"]),
            previous=tuple(KeyMaterial.from_dict(item) for item in document.get("previous") or ()),
        )
    except (KeyError, TypeError, ValueError, EncryptionError) as exc:
        raise ConfigurationError(f"Malformed key history {source}: {exc}") from exc


@dataclass(frozen=True)
class EnvelopeMetadata:
    level: int
    iv: str | None = None
    algorithm: str | None = None
    # Set to "base64" when level 0 content was binary.
    encoding: str | None = None

    @property
    def encrypted(self) -> bool:
        return self.level > 0


@dataclass(frozen=True)
class EncryptionEnvelope:
    """JSON wrapper carried as the payload of an encrypted inscription."""

    encrypted: bool
    original_type: str
    data: str
    metadata: EnvelopeMetadata

    @property
    def level(self) -> int:
        return self.metadata.level

    def to_dict(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {"encrypted": self.encrypted, "level": self.metadata.level}
        if self.encrypted:
            metadata["iv"] = self.metadata.iv
            metadata["algorithm"] = self.metadata.algorithm
        elif self.metadata.encoding:
            metadata["encoding"] = self.metadata.encoding
        return {
            "encrypted": self.encrypted,
            "originalType": self.original_type,
            "data": self.data,
            "metadata": metadata,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    def to_bytes(self) -> bytes:
        return self.to_json().encode("utf-8")

    @classmethod
    def from_dict(cls, document: Any) -> "EncryptionEnvelope | None":
        """Return an envelope, or ``None`` when ``document`` is not one."""

        if not isinstance(document, dict):
            return None
        metadata = document.get("metadata")
        if (
            not isinstance(document.get("encrypted"), bool)
            or not isinstance(document.get("data"), str)
            or not isinstance(metadata, dict)
        ):
            return None
        level = metadata.get("level", 0)
        if isinstance(level, bool) or not isinstance(level, int) or not 0 <= level <= MAX_LEVEL:
            return None
        # The flag and the level must agree: only levels 1..5 are encrypted.
        if document["encrypted"] != (level > 0):
            return None
        optional = {name: metadata.get(name) for name in ("iv", "algorithm", "encoding")}
        if any(value is not None and not isinstance(value, str) for value in optional.values()):
            return None
        return cls(
            encrypted=document["encrypted"],
            original_type=str(document.get("originalType", "text/plain")),
            data=document["data"],
            metadata=EnvelopeMetadata(level=level, **optional),
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> "EncryptionEnvelope | None":
        try:
            document = json.loads(raw)
        except (UnicodeDecodeError, ValueError):
            return None
        return cls.from_dict(document)


def derive_encryption_key(segment: str, salt: bytes = KDF_SALT) -> bytes:
    """Derive the AES-256 key for a key segment."""

    if not segment:
        raise EncryptionError("Key segment must not be empty")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return kdf.derive(segment.encode("utf-8"))


def _serialize_content(data: Any) -> bytes:
    if isinstance(data, bytes):
        return data
    if isinstance(data, str):
        return data.encode("utf-8")
    return json.dumps(data, separators=(",", ":")).encode("utf-8")


def encrypt_for_level(
    data: Any,
    level: int,
    key_material: KeyMaterial | None,
    original_type: str = "text/plain",
) -> EncryptionEnvelope:
    """Wrap ``data`` in an envelope encrypted for ``level``.

    Level 0 returns an unencrypted envelope holding the content as text
    (bytes are base64-encoded). Strings are encrypted as UTF-8, bytes as-is,
    anything else as compact JSON.
    """

    _check_level(level)
    if level == 0:
        encoding = None
        if isinstance(data, bytes):
            text = base64.b64encode(data).decode("ascii")
            encoding = "base64"
        elif isinstance(data, str):
            text = data
        else:
            text = json.dumps(data, separators=(",", ":"))
        return EncryptionEnvelope(
            encrypted=False,
            original_type=original_type,
            data=text,
            metadata=EnvelopeMetadata(level=0, encoding=encoding),
        )

    if key_material is None:
        raise EncryptionError(f"No key material available for level {level} encryption")

    key = derive_encryption_key(key_material.segment(level))
    iv = os.urandom(IV_SIZE)
    ciphertext = AESGCM(key).encrypt(iv, _serialize_content(data), None)
    logger.debug("Encrypted %d bytes for level %d (%s)", len(ciphertext), level, key_material.version)
    return EncryptionEnvelope(
        encrypted=True,
        original_type=original_type,
        data=base64.b64encode(ciphertext).decode("ascii"),
        metadata=EnvelopeMetadata(level=level, iv=iv.hex(), algorithm=ALGORITHM),
    )


def decrypt_envelope(envelope: EncryptionEnvelope, segment: str | None) -> bytes:
    """Return the plaintext bytes of ``envelope`` using the given segment."""

    if not envelope.encrypted:
        if envelope.metadata.encoding == "base64":
            try:
                return base64.b64decode(envelope.data, validate=True)
            except (ValueError, binascii.Error) as exc:
                raise DecryptionError("Level 0 content is not valid base64") from exc
        if envelope.metadata.encoding is not None:
            raise DecryptionError(f"Unsupported content encoding: {envelope.metadata.encoding}")
        return envelope.data.encode("utf-8")
    if not segment:
        raise DecryptionError(f"A key segment is required for level {envelope.level} content")
    if envelope.metadata.algorithm not in (None, ALGORITHM):
        raise DecryptionError(f"Unsupported algorithm: {envelope.metadata.algorithm}")

    try:
        iv = bytes.fromhex(envelope.metadata.iv or "")
        ciphertext = base64.b64decode(envelope.data, validate=True)
    except (ValueError, binascii.Error) as exc:
        raise DecryptionError("Envelope IV or ciphertext is malformed") from exc
    if len(iv) != IV_SIZE:
        raise DecryptionError(f"Envelope IV must be {IV_SIZE} bytes")

    try:
        return AESGCM(derive_encryption_key(segment)).decrypt(iv, ciphertext, None)
    except InvalidTag as exc:
        raise DecryptionError(
            f"Failed to decrypt level {envelope.level} content; wrong key or tampered data"
        ) from exc


def decrypt_with_key_material(envelope: EncryptionEnvelope, key_material: KeyMaterial) -> bytes:
    if not envelope.encrypted:
        return decrypt_envelope(envelope, None)
    try:
        segment = key_material.segment(envelope.level)
    except EncryptionError as exc:
        raise DecryptionError(str(exc)) from exc
    return decrypt_envelope(envelope, segment)


def check_envelope_size(envelope: EncryptionEnvelope) -> int:
    """Return the serialized size, raising if it cannot fit in one transaction."""

    size = len(envelope.to_bytes())
    limit = SAFE_TX_SIZE - MIN_TX_OVERHEAD
    if size > limit:
        raise SizeLimitExceeded(size, limit)
    return size
