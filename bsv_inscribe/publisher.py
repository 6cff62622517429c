"""Operation boundary for publishing, messaging and reading.

:class:`Publisher` ties the selector, encoder, encryption engine and
assembler together. It runs one operation at a time, enforces a minimum
interval between submissions, and turns every toolkit error into an
:class:`OperationResult` instead of letting it escape to the caller.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterator, List, Sequence

from .bcat import (
    MANIFEST_CONTENT_TYPE,
    ChunkManifest,
    build_chunk_script,
    needs_chunking,
    split_chunks,
)
from .config import InscribeConfig
from .contacts import Contact
from .content import Profile, file_payload, profile_payload, text_payload
from .encryption import (
    ENVELOPE_CONTENT_TYPE,
    KeyHistory,
    check_envelope_size,
    encrypt_for_level,
)
from .errors import (
    CooldownActive,
    EncryptionError,
    InscribeError,
    NetworkError,
    OperationInProgress,
)
from .fees import select_fee_rate
from .inscriptions import InscriptionReader
from .keys import KeyCustody, compress_public_key, hash160, load_public_key
from .messaging import MessageReader, build_message_outputs
from .script import InscriptionPayload, build_inscription_script
from .transaction import TxOutput
from .tx_builder import (
    INSCRIPTION_OUTPUT_SATS,
    AssembledTransaction,
    SpendableOutput,
    SubmissionResult,
    TransactionBuilder,
    UTXOManager,
)

logger = logging.getLogger(__name__)


class OperationState(Enum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"


class OperationGuard:
    """Single-owner state machine: Idle -> InFlight -> Idle."""

    def __init__(self) -> None:
        self.state = OperationState.IDLE
        self.current: str | None = None

    @contextmanager
    def run(self, name: str) -> Iterator[None]:
        if self.state is OperationState.IN_FLIGHT:
            raise OperationInProgress(
                f"Cannot start {name!r} while {self.current!r} is still in flight"
            )
        self.state = OperationState.IN_FLIGHT
        self.current = name
        try:
            yield
        finally:
            self.state = OperationState.IDLE
            self.current = None


class Cooldown:
    """Minimum interval between successful submissions."""

    def __init__(self, interval: float = 5.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.interval = interval
        self._clock = clock
        self._last: float | None = None

    def remaining(self) -> float:
        if self._last is None:
            return 0.0
        return max(0.0, self.interval - (self._clock() - self._last))

    def check(self) -> None:
        remaining = self.remaining()
        if remaining > 0:
            raise CooldownActive(remaining)

    def record(self) -> None:
        self._last = self._clock()


@dataclass
class OperationResult:
    """What an operation reports back to its caller."""

    ok: bool
    txid: str | None = None
    txids: List[str] = field(default_factory=list)
    fee: int = 0
    error: InscribeError | None = None
    raw_hex: str | None = None
    fallback: str | None = None
    data: Any = None

    @property
    def reason(self) -> str | None:
        return type(self.error).__name__ if self.error is not None else None

    def summary(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "txid": self.txid,
            "txids": self.txids,
            "fee_sats": self.fee,
            "reason": self.reason,
            "error": str(self.error) if self.error is not None else None,
            "fallback": self.fallback,
        }


class Publisher:
    """Publish inscriptions and messages for one key."""

    def __init__(
        self,
        custody: KeyCustody,
        ledger: Any,
        submitter: Any = None,
        *,
        config: InscribeConfig | None = None,
        key_history: KeyHistory | None = None,
        contacts: Sequence[Contact] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.custody = custody
        self.ledger = ledger
        self.config = config or InscribeConfig()
        self.key_history = key_history
        self.contacts = list(contacts)
        self.utxos = UTXOManager(ledger, custody.address)
        self.builder = TransactionBuilder(custody, submitter if submitter is not None else ledger)
        self.guard = OperationGuard()
        self.cooldown = Cooldown(self.config.cooldown_seconds, clock)

    @property
    def pubkey_hash(self) -> bytes:
        return hash160(self.custody.public_key)

    def _run(self, name: str, operation: Callable[[], OperationResult], *, submits: bool) -> OperationResult:
        try:
            with self.guard.run(name):
                if submits:
                    self.cooldown.check()
                return operation()
        except InscribeError as exc:
            logger.warning("%s failed: %s", name, exc)
            return OperationResult(ok=False, error=exc)

    def _fee_rate(self) -> float:
        selection = select_fee_rate(
            self.ledger,
            user_fee_rate_per_kb=self.config.fee_rate_per_kb,
            fallback_fee_rate_per_kb=self.config.default_fee_rate_per_kb,
        )
        return selection.fee_rate_per_kb

    def _refresh_funds(self) -> None:
        if self.ledger is not None:
            self.utxos.refresh()

    def _broadcast(
        self, outputs: Sequence[TxOutput], data_size: int, fee_rate: float
    ) -> tuple[AssembledTransaction, SubmissionResult]:
        assembled = self.builder.fund_and_assemble(self.utxos, outputs, data_size, fee_rate)
        submission = self.builder.submit(assembled)
        if submission.ok:
            self.utxos.mark_as_spent(assembled.inputs)
            if assembled.change > 0:
                self.utxos.add(
                    SpendableOutput(
                        txid=assembled.txid,
                        vout=len(assembled.outputs) - 1,
                        satoshis=assembled.change,
                        source_transaction=assembled.raw,
                    )
                )
            self.cooldown.record()
        return assembled, submission

    @staticmethod
    def _failed_submission(submission: SubmissionResult, fee: int, txids: List[str]) -> OperationResult:
        return OperationResult(
            ok=False,
            txids=txids,
            fee=fee,
            error=NetworkError(submission.error or "Broadcast failed"),
            raw_hex=submission.raw_hex,
            fallback=submission.fallback,
        )

    # Publishing -------------------------------------------------------------

    def publish_inscription(
        self,
        payload: InscriptionPayload,
        level: int = 0,
        *,
        preview: bytes | None = None,
        filename: str | None = None,
    ) -> OperationResult:
        """Inscribe ``payload``, encrypting it for ``level`` when above zero.

        Unencrypted payloads above the chunk threshold are split into chunk
        transactions plus a manifest. Encrypted payloads are never chunked.
        """

        return self._run(
            "publish",
            lambda: self._publish(payload, level, preview=preview, filename=filename),
            submits=True,
        )

    def publish_text(self, text: str, level: int = 0) -> OperationResult:
        return self._run(
            "publish",
            lambda: self._publish(text_payload(text), level, preview=None, filename=None),
            submits=True,
        )

    def publish_file(
        self, path: str | Path, level: int = 0, content_type: str | None = None
    ) -> OperationResult:
        return self._run(
            "publish",
            lambda: self._publish(
                file_payload(path, content_type), level, preview=None, filename=Path(path).name
            ),
            submits=True,
        )

    def publish_profile(self, profile: Profile, level: int = 0) -> OperationResult:
        return self._run(
            "publish",
            lambda: self._publish(profile_payload(profile), level, preview=None, filename=None),
            submits=True,
        )

    def _publish(
        self,
        payload: InscriptionPayload,
        level: int,
        *,
        preview: bytes | None,
        filename: str | None,
    ) -> OperationResult:
        if level > 0:
            if self.key_history is None:
                raise EncryptionError(f"Level {level} publishing requires loaded key material")
            envelope = encrypt_for_level(
                payload.payload, level, self.key_history.current, payload.content_type
            )
            check_envelope_size(envelope)
            payload = InscriptionPayload(
                content_type=ENVELOPE_CONTENT_TYPE, payload=envelope.to_bytes()
            )
            logger.info("Encrypted %s content for level %d", envelope.original_type, level)
        elif needs_chunking(payload.size, self.config.chunk_threshold):
            return self._publish_chunked(payload, preview=preview, filename=filename)

        fee_rate = self._fee_rate()
        self._refresh_funds()
        script = build_inscription_script(self.pubkey_hash, payload.content_type, payload.payload)
        assembled, submission = self._broadcast(
            [TxOutput(satoshis=INSCRIPTION_OUTPUT_SATS, script=script)], len(script), fee_rate
        )
        if not submission.ok:
            return self._failed_submission(submission, assembled.fee, [])
        return OperationResult(
            ok=True, txid=submission.txid, txids=[submission.txid], fee=assembled.fee
        )

    def _publish_chunked(
        self,
        payload: InscriptionPayload,
        *,
        preview: bytes | None,
        filename: str | None,
    ) -> OperationResult:
        chunks = split_chunks(payload.payload, self.config.chunk_size)
        logger.info(
            "Splitting %d bytes of %s into %d chunks",
            payload.size,
            payload.content_type,
            len(chunks),
        )
        fee_rate = self._fee_rate()
        self._refresh_funds()

        refs: List[str] = []
        total_fee = 0
        for index, chunk in enumerate(chunks):
            script = build_chunk_script(self.pubkey_hash, chunk)
            assembled, submission = self._broadcast(
                [TxOutput(satoshis=INSCRIPTION_OUTPUT_SATS, script=script)], len(script), fee_rate
            )
            total_fee += assembled.fee
            if not submission.ok:
                logger.error("Chunk %d/%d was not broadcast", index + 1, len(chunks))
                return self._failed_submission(submission, total_fee, refs)
            refs.append(submission.txid)
            logger.info("Chunk %d/%d broadcast as %s", index + 1, len(chunks), submission.txid)

        manifest = ChunkManifest.for_payload(
            payload.content_type, chunks, refs, preview=preview, filename=filename
        )
        manifest_bytes = manifest.to_bytes()
        script = build_inscription_script(self.pubkey_hash, MANIFEST_CONTENT_TYPE, manifest_bytes)
        assembled, submission = self._broadcast(
            [TxOutput(satoshis=INSCRIPTION_OUTPUT_SATS, script=script)], len(script), fee_rate
        )
        total_fee += assembled.fee
        if not submission.ok:
            return self._failed_submission(submission, total_fee, refs)
        return OperationResult(
            ok=True,
            txid=submission.txid,
            txids=refs + [submission.txid],
            fee=total_fee,
            data=manifest,
        )

    # Messaging --------------------------------------------------------------

    def send_message(self, recipient_public_key: bytes | str, text: str) -> OperationResult:
        return self._run(
            "send_message",
            lambda: self._send_message(recipient_public_key, text),
            submits=True,
        )

    def _send_message(self, recipient_public_key: bytes | str, text: str) -> OperationResult:
        recipient = compress_public_key(load_public_key(recipient_public_key))
        outputs = build_message_outputs(self.custody, recipient, text)
        fee_rate = self._fee_rate()
        self._refresh_funds()
        assembled, submission = self._broadcast(outputs, len(outputs[0].script), fee_rate)
        if not submission.ok:
            return self._failed_submission(submission, assembled.fee, [])
        return OperationResult(ok=True, txid=submission.txid, txids=[submission.txid], fee=assembled.fee)

    # Reading ----------------------------------------------------------------

    def read_messages(self) -> OperationResult:
        """``data`` holds the messages, newest first."""

        def operation() -> OperationResult:
            reader = MessageReader(self.ledger, self.custody, self.contacts)
            return OperationResult(ok=True, data=reader.read_messages())

        return self._run("read_messages", operation, submits=False)

    def list_inscriptions(self, address: str | None = None) -> OperationResult:
        def operation() -> OperationResult:
            reader = InscriptionReader(self.ledger, self.key_history)
            return OperationResult(
                ok=True, data=reader.list_inscriptions(address or self.custody.address)
            )

        return self._run("list_inscriptions", operation, submits=False)

    def reconstruct(self, manifest_txid: str) -> OperationResult:
        """``data`` holds the reassembled payload bytes."""

        def operation() -> OperationResult:
            reader = InscriptionReader(self.ledger, self.key_history)
            manifest = reader.fetch_manifest(manifest_txid)
            return OperationResult(ok=True, txid=manifest_txid, data=reader.load_chunked(manifest))

        return self._run("reconstruct", operation, submits=False)
