from __future__ import annotations

import pytest

from bsv_inscribe.contacts import Contact
from bsv_inscribe.errors import DecryptionError, EncryptionError
from bsv_inscribe.keys import LocalKeyCustody, hash160
from bsv_inscribe.messaging import (
    MESSAGE_MAGIC,
    MESSAGE_PAYMENT_SATS,
    ContactDecryptor,
    PeerMessage,
    build_message_outputs,
    decrypt_message,
    derive_message_key,
    encrypt_message,
    organize_conversations,
    read_message,
    sort_messages,
)
from bsv_inscribe.script import build_p2pkh_script, extract_data_carrier
from bsv_inscribe.transaction import TxOutput
from bsv_inscribe.tx_builder import SpendableOutput, TransactionBuilder


def _contact(custody: LocalKeyCustody, name: str) -> Contact:
    return Contact(public_key=custody.public_key.hex(), display_name=name)


def _message_tx(sender: LocalKeyCustody, recipient: LocalKeyCustody, text: str) -> bytes:
    outputs = build_message_outputs(sender, recipient.public_key, text)
    funding = SpendableOutput(txid="ab" * 32, vout=0, satoshis=5000)
    return TransactionBuilder(sender).assemble([funding], outputs, fee=200).raw


class RecordingDecryptor:
    def __init__(self, custody: LocalKeyCustody, contact: Contact, calls: list[str]) -> None:
        self.contact = contact
        self._inner = ContactDecryptor(custody, contact)
        self._calls = calls

    def try_decrypt(self, ciphertext: bytes) -> str:
        self._calls.append(self.contact.display_name)
        return self._inner.try_decrypt(ciphertext)


def test_shared_key_is_symmetric(alice: LocalKeyCustody, bob: LocalKeyCustody) -> None:
    assert derive_message_key(alice, bob.public_key) == derive_message_key(bob, alice.public_key)


def test_ciphertext_layout(alice: LocalKeyCustody, bob: LocalKeyCustody) -> None:
    outputs = build_message_outputs(alice, bob.public_key, "hi bob")

    carrier = extract_data_carrier(outputs[0].script)
    assert outputs[0].satoshis == 0
    assert carrier.startswith(MESSAGE_MAGIC)
    # iv(12) + plaintext + gcm tag(16)
    assert len(carrier) == len(MESSAGE_MAGIC) + 12 + len("hi bob") + 16
    assert outputs[1] == TxOutput(MESSAGE_PAYMENT_SATS, build_p2pkh_script(hash160(bob.public_key)))


def test_empty_message_rejected() -> None:
    with pytest.raises(EncryptionError):
        encrypt_message("", b"\x00" * 32)


def test_wrong_key_fails_authentication() -> None:
    ciphertext = encrypt_message("hello", b"\x01" * 32)

    with pytest.raises(DecryptionError):
        decrypt_message(ciphertext, b"\x02" * 32)
    with pytest.raises(DecryptionError):
        decrypt_message(b"short", b"\x01" * 32)


def test_recipient_decrypts(alice: LocalKeyCustody, bob: LocalKeyCustody) -> None:
    raw = _message_tx(alice, bob, "meet at noon")
    decryptors = [ContactDecryptor(bob, _contact(alice, "Alice"))]

    message = read_message("tx1", 10.0, raw, bob.address, decryptors)

    assert message.plaintext == "meet at noon"
    assert message.sender == alice.address
    assert message.recipient == bob.address
    assert not message.is_from_me
    assert message.contact_name == "Alice"


def test_sender_reads_own_message(alice: LocalKeyCustody, bob: LocalKeyCustody) -> None:
    raw = _message_tx(alice, bob, "sent by me")
    decryptors = [ContactDecryptor(alice, _contact(bob, "Bob"))]

    message = read_message("tx1", 10.0, raw, alice.address, decryptors)

    assert message.is_from_me
    assert message.plaintext == "sent by me"
    assert message.counterparty() == "Bob"


def test_outsider_sees_placeholder(
    alice: LocalKeyCustody, bob: LocalKeyCustody, carol: LocalKeyCustody
) -> None:
    raw = _message_tx(alice, bob, "private")
    decryptors = [ContactDecryptor(carol, _contact(bob, "Bob"))]

    message = read_message("tx1", 10.0, raw, carol.address, decryptors)

    assert message is not None
    assert not message.decrypted
    assert message.display_text == f"[Encrypted: {message.ciphertext[:20]}...]"
    assert message.counterparty() == alice.address


def test_contacts_tried_in_order_until_success(
    alice: LocalKeyCustody, bob: LocalKeyCustody, carol: LocalKeyCustody
) -> None:
    raw = _message_tx(alice, bob, "ordered")
    calls: list[str] = []
    decryptors = [
        RecordingDecryptor(bob, _contact(carol, "Carol"), calls),
        RecordingDecryptor(bob, _contact(alice, "Alice"), calls),
        RecordingDecryptor(bob, _contact(LocalKeyCustody.generate(), "Dave"), calls),
    ]

    message = read_message("tx1", 10.0, raw, bob.address, decryptors)

    assert calls == ["Carol", "Alice"]
    assert message.contact_name == "Alice"


def test_non_message_transactions_skipped(alice: LocalKeyCustody, bob: LocalKeyCustody) -> None:
    payment = TransactionBuilder(alice).assemble(
        [SpendableOutput(txid="cd" * 32, vout=0, satoshis=5000)],
        [TxOutput(1000, build_p2pkh_script(hash160(bob.public_key)))],
        fee=200,
    )

    assert read_message("tx1", 1.0, payment.raw, bob.address, []) is None
    assert read_message("tx2", 1.0, b"\x00\x01", bob.address, []) is None


def _peer(txid: str, timestamp: float, sender: str, recipient: str, me: str) -> PeerMessage:
    return PeerMessage(
        txid=txid,
        timestamp=timestamp,
        sender=sender,
        recipient=recipient,
        ciphertext="00" * 30,
        plaintext=txid,
        is_from_me=sender == me,
    )


def test_sort_newest_first() -> None:
    messages = [
        _peer("a", 1.0, "x", "me", "me"),
        _peer("b", 3.0, "me", "x", "me"),
        _peer("c", 2.0, "y", "me", "me"),
    ]

    assert [m.txid for m in sort_messages(messages)] == ["b", "c", "a"]


def test_conversations_grouped_by_counterparty() -> None:
    messages = [
        _peer("a", 1.0, "x", "me", "me"),
        _peer("b", 5.0, "me", "x", "me"),
        _peer("c", 3.0, "y", "me", "me"),
        _peer("d", 2.0, "me", "y", "me"),
    ]

    conversations = organize_conversations(messages)

    assert list(conversations) == ["x", "y"]
    assert [m.txid for m in conversations["x"]] == ["a", "b"]
    assert [m.txid for m in conversations["y"]] == ["d", "c"]
