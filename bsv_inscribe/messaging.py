"""Pairwise ECDH-encrypted messages carried in data-carrier outputs.

Both parties derive the same AES-256-GCM key from the secp256k1 ECDH shared
secret, so a message can be read back by its sender as well as its
recipient. On chain a message is ``OP_FALSE OP_RETURN <magic || iv || ct>``
alongside a small payment to the recipient.
"""

from __future__ import annotations

import hashlib
import logging
import os
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Iterable, List, Protocol, Sequence

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .contacts import Contact
from .errors import DecryptionError, EncodingError, EncryptionError
from .keys import KeyCustody, hash160, pubkey_hash_to_address, pubkey_to_address
from .script import (
    build_data_carrier_script,
    build_p2pkh_script,
    decode_push_data,
    extract_data_carrier,
    parse_p2pkh_script,
)
from .transaction import Transaction, TxOutput

logger = logging.getLogger(__name__)

MESSAGE_MAGIC = bytes([0x19, 0x33])
MESSAGE_PAYMENT_SATS = 1000
IV_SIZE = 12
PREVIEW_HEX_CHARS = 20


def derive_message_key(custody: KeyCustody, peer_public_key: bytes) -> bytes:
    return hashlib.sha256(custody.shared_secret(peer_public_key)).digest()


def encrypt_message(plaintext: str, key: bytes) -> bytes:
    if not plaintext:
        raise EncryptionError("Message must not be empty")
    iv = os.urandom(IV_SIZE)
    return iv + AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)


def decrypt_message(ciphertext: bytes, key: bytes) -> str:
    if len(ciphertext) <= IV_SIZE:
        raise DecryptionError("Message ciphertext is too short")
    try:
        plaintext = AESGCM(key).decrypt(ciphertext[:IV_SIZE], ciphertext[IV_SIZE:], None)
    except InvalidTag as exc:
        raise DecryptionError("Message did not authenticate with this key") from exc
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecryptionError("Decrypted message is not valid UTF-8") from exc


def build_message_outputs(
    custody: KeyCustody, recipient_public_key: bytes, plaintext: str
) -> List[TxOutput]:
    """Return the data-carrier output and the recipient payment output."""

    key = derive_message_key(custody, recipient_public_key)
    ciphertext = encrypt_message(plaintext, key)
    return [
        TxOutput(satoshis=0, script=build_data_carrier_script(MESSAGE_MAGIC + ciphertext)),
        TxOutput(
            satoshis=MESSAGE_PAYMENT_SATS,
            script=build_p2pkh_script(hash160(recipient_public_key)),
        ),
    ]


def find_message_ciphertext(tx: Transaction) -> bytes | None:
    """Return the ciphertext of the first magic-tagged data carrier, if any."""

    for output in tx.outputs:
        data = extract_data_carrier(output.script)
        if data is not None and data.startswith(MESSAGE_MAGIC) and len(data) > len(MESSAGE_MAGIC):
            return data[len(MESSAGE_MAGIC) :]
    return None


def sender_address(tx: Transaction, network: str = "main") -> str | None:
    """Address of the public key revealed by the first P2PKH input."""

    if not tx.inputs:
        return None
    script_sig = tx.inputs[0].script_sig
    try:
        _, cursor = decode_push_data(script_sig, 0)
        public_key, _ = decode_push_data(script_sig, cursor)
    except EncodingError:
        return None
    if len(public_key) not in (33, 65):
        return None
    return pubkey_to_address(public_key, network)


def recipient_address(tx: Transaction, sender: str | None, network: str = "main") -> str | None:
    """First P2PKH output paying somebody other than ``sender``."""

    fallback = None
    for output in tx.outputs:
        pubkey_hash = parse_p2pkh_script(output.script)
        if pubkey_hash is None:
            continue
        address = pubkey_hash_to_address(pubkey_hash, network)
        if address != sender:
            return address
        fallback = fallback or address
    return fallback


@dataclass
class PeerMessage:
    txid: str
    timestamp: float
    sender: str | None
    recipient: str | None
    ciphertext: str
    plaintext: str | None = None
    is_from_me: bool = False
    contact: Contact | None = None

    @property
    def decrypted(self) -> bool:
        return self.plaintext is not None

    @property
    def contact_name(self) -> str | None:
        return self.contact.display_name if self.contact else None

    @property
    def display_text(self) -> str:
        if self.plaintext is not None:
            return self.plaintext
        return f"[Encrypted: {self.ciphertext[:PREVIEW_HEX_CHARS]}...]"

    def counterparty(self) -> str:
        if self.contact is not None:
            return self.contact.display_name
        other = self.recipient if self.is_from_me else self.sender
        return other or "unknown"


class MessageDecryptor(Protocol):
    contact: Contact

    def try_decrypt(self, ciphertext: bytes) -> str: ...


class ContactDecryptor:
    """Holds the pairwise key for one contact."""

    def __init__(self, custody: KeyCustody, contact: Contact) -> None:
        self.contact = contact
        self._key = derive_message_key(custody, contact.public_key_bytes)

    def try_decrypt(self, ciphertext: bytes) -> str:
        return decrypt_message(ciphertext, self._key)


def build_decryptors(custody: KeyCustody, contacts: Iterable[Contact]) -> List[ContactDecryptor]:
    return [ContactDecryptor(custody, contact) for contact in contacts]


def read_message(
    txid: str,
    timestamp: float,
    raw_tx: bytes,
    my_address: str,
    decryptors: Sequence[MessageDecryptor],
    network: str = "main",
) -> PeerMessage | None:
    """Decode one ledger entry. Returns ``None`` when it is not a message.

    Contacts are tried in directory order and the first one that
    authenticates wins. A message no contact can open is still returned,
    with ``plaintext`` left as ``None``.
    """

    try:
        tx = Transaction.from_bytes(raw_tx)
    except EncodingError as exc:
        logger.debug("Skipping undecodable transaction %s: %s", txid, exc)
        return None
    ciphertext = find_message_ciphertext(tx)
    if ciphertext is None:
        return None

    sender = sender_address(tx, network)
    recipient = recipient_address(tx, sender, network)
    message = PeerMessage(
        txid=txid,
        timestamp=timestamp,
        sender=sender,
        recipient=recipient,
        ciphertext=ciphertext.hex(),
        is_from_me=sender == my_address,
    )
    for decryptor in decryptors:
        try:
            message.plaintext = decryptor.try_decrypt(ciphertext)
        except DecryptionError:
            continue
        message.contact = decryptor.contact
        break
    else:
        logger.debug("No contact could decrypt message %s", txid)
    return message


def sort_messages(messages: Iterable[PeerMessage]) -> List[PeerMessage]:
    """Newest first."""

    return sorted(messages, key=lambda message: (-message.timestamp, message.txid))


def organize_conversations(messages: Iterable[PeerMessage]) -> "OrderedDict[str, List[PeerMessage]]":
    """Group by counterparty, oldest first within a conversation.

    Conversations themselves are ordered by their latest message, newest first.
    """

    grouped: dict[str, List[PeerMessage]] = {}
    for message in messages:
        grouped.setdefault(message.counterparty(), []).append(message)
    for thread in grouped.values():
        thread.sort(key=lambda message: (message.timestamp, message.txid))
    ordered = sorted(grouped.items(), key=lambda item: -item[1][-1].timestamp)
    return OrderedDict(ordered)


class MessageReader:
    """Scan an address history for messages and decrypt what we can."""

    def __init__(self, ledger: Any, custody: KeyCustody, contacts: Sequence[Contact]) -> None:
        self.ledger = ledger
        self.custody = custody
        self.decryptors = build_decryptors(custody, contacts)

    def read_messages(self, address: str | None = None) -> List[PeerMessage]:
        address = address or self.custody.address
        messages = []
        for entry in self.ledger.fetch_history(address):
            raw_tx = self.ledger.fetch_transaction(entry.txid)
            message = read_message(
                entry.txid,
                entry.timestamp,
                raw_tx,
                self.custody.address,
                self.decryptors,
                self.custody.network,
            )
            if message is not None:
                messages.append(message)
        logger.info(
            "Found %d messages (%d decrypted) for %s",
            len(messages),
            sum(1 for message in messages if message.decrypted),
            address,
        )
        return sort_messages(messages)
