"""Key custody, Base58Check and address helpers for secp256k1 keys.

:class:`KeyCustody` is the narrow interface the rest of the package uses to
obtain a public key, sign digests and derive ECDH secrets. The
:class:`LocalKeyCustody` implementation keeps the private key in memory only;
nothing in this package writes raw key material to disk.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Protocol

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed,
    decode_dss_signature,
    encode_dss_signature,
)

from .errors import EncodingError
from .transaction import double_sha256

logger = logging.getLogger(__name__)

b58_digits = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"

ADDRESS_VERSIONS = {"main": b"\x00", "test": b"\x6f"}
WIF_VERSIONS = {"main": b"\x80", "test": b"\xef"}

# Order of the secp256k1 group.
SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))."""

    return hashlib.new("ripemd160", hashlib.sha256(data).digest()).digest()


def base58_check_encode(payload: bytes, version: bytes) -> str:
    """Encode bytes into a Base58Check string with the provided version byte."""

    data = version + payload
    address_bytes = data + double_sha256(data)[:4]

    value = int.from_bytes(address_bytes, "big")
    output = []
    while value > 0:
        value, remainder = divmod(value, 58)
        output.append(b58_digits[remainder])
    encoded = "".join(output[::-1])

    leading_zero_count = len(address_bytes) - len(address_bytes.lstrip(b"\x00"))
    return b58_digits[0] * leading_zero_count + encoded


def base58_check_decode(value: str) -> tuple[bytes, bytes]:
    """Decode a Base58Check string into ``(version, payload)``.

    Raises :class:`EncodingError` on invalid characters or a bad checksum.
    """

    number = 0
    for character in value:
        index = b58_digits.find(character)
        if index < 0:
            raise EncodingError(f"Invalid Base58 character: {character}")
        number = number * 58 + index

    body = number.to_bytes((number.bit_length() + 7) // 8, "big")
    padding = len(value) - len(value.lstrip(b58_digits[0]))
    raw = b"\x00" * padding + body
    if len(raw) < 5:
        raise EncodingError("Base58Check string is too short")

    data, checksum = raw[:-4], raw[-4:]
    if double_sha256(data)[:4] != checksum:
        raise EncodingError("Base58Check checksum mismatch")
    return data[:1], data[1:]


def pubkey_to_address(public_key: bytes, network: str = "main") -> str:
    return base58_check_encode(hash160(public_key), ADDRESS_VERSIONS[network])


def address_to_pubkey_hash(address: str) -> bytes:
    version, payload = base58_check_decode(address)
    if version not in ADDRESS_VERSIONS.values() or len(payload) != 20:
        raise EncodingError(f"Not a P2PKH address: {address}")
    return payload


def pubkey_hash_to_address(pubkey_hash: bytes, network: str = "main") -> str:
    return base58_check_encode(pubkey_hash, ADDRESS_VERSIONS[network])


def load_public_key(public_key: bytes | str) -> ec.EllipticCurvePublicKey:
    """Parse a SEC1-encoded (compressed or uncompressed) secp256k1 public key."""

    try:
        raw = bytes.fromhex(public_key) if isinstance(public_key, str) else public_key
        return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), raw)
    except ValueError as exc:
        raise EncodingError("Invalid secp256k1 public key") from exc


def compress_public_key(public_key: ec.EllipticCurvePublicKey) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.CompressedPoint
    )


class KeyCustody(Protocol):
    """What the core needs from whoever holds the private key."""

    network: str

    @property
    def public_key(self) -> bytes: ...

    @property
    def address(self) -> str: ...

    def sign_digest(self, digest: bytes) -> bytes: ...

    def shared_secret(self, peer_public_key: bytes) -> bytes: ...


class LocalKeyCustody:
    """In-memory key custody backed by ``cryptography``'s secp256k1 support."""

    def __init__(self, private_key: ec.EllipticCurvePrivateKey, network: str = "main") -> None:
        if not isinstance(private_key.curve, ec.SECP256K1):
            raise EncodingError("Key custody requires a secp256k1 private key")
        self._private_key = private_key
        self.network = network

    @classmethod
    def generate(cls, network: str = "main") -> "LocalKeyCustody":
        return cls(ec.generate_private_key(ec.SECP256K1()), network=network)

    @classmethod
    def from_secret(cls, secret: bytes, network: str = "main") -> "LocalKeyCustody":
        value = int.from_bytes(secret, "big")
        if not 0 < value < SECP256K1_ORDER:
            raise EncodingError("Private key scalar is out of range")
        return cls(ec.derive_private_key(value, ec.SECP256K1()), network=network)

    @classmethod
    def from_wif(cls, wif: str) -> "LocalKeyCustody":
        version, payload = base58_check_decode(wif.strip())
        networks = {v: k for k, v in WIF_VERSIONS.items()}
        if version not in networks:
            raise EncodingError("Unknown WIF version byte")
        if len(payload) == 33 and payload[-1] == 0x01:
            payload = payload[:-1]
        if len(payload) != 32:
            raise EncodingError("WIF payload must hold a 32-byte key")
        return cls.from_secret(payload, network=networks[version])

    def to_wif(self) -> str:
        secret = self._private_key.private_numbers().private_value.to_bytes(32, "big")
        return base58_check_encode(secret + b"\x01", WIF_VERSIONS[self.network])

    @property
    def public_key(self) -> bytes:
        return compress_public_key(self._private_key.public_key())

    @property
    def pubkey_hash(self) -> bytes:
        return hash160(self.public_key)

    @property
    def address(self) -> str:
        return pubkey_to_address(self.public_key, self.network)

    def sign_digest(self, digest: bytes) -> bytes:
        """Return a low-S DER signature over a 32-byte digest."""

        der = self._private_key.sign(digest, ec.ECDSA(Prehashed(hashes.SHA256())))
        r, s = decode_dss_signature(der)
        if s > SECP256K1_ORDER // 2:
            s = SECP256K1_ORDER - s
        return encode_dss_signature(r, s)

    def shared_secret(self, peer_public_key: bytes) -> bytes:
        """Return the ECDH shared secret (x coordinate) with ``peer_public_key``."""

        return self._private_key.exchange(ec.ECDH(), load_public_key(peer_public_key))


def verify_signature(public_key: bytes, digest: bytes, signature: bytes) -> bool:
    try:
        load_public_key(public_key).verify(
            signature, digest, ec.ECDSA(Prehashed(hashes.SHA256()))
        )
    except InvalidSignature:
        return False
    return True
