"""Funds selection, transaction assembly and submission."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Sequence

from .errors import FeeConvergenceError, InsufficientFunds, NetworkError, SizeLimitExceeded
from .fees import FeeEstimate, MAX_TX_SIZE, estimate_transaction_fee, validate_transaction_size
from .keys import KeyCustody, hash160
from .script import build_p2pkh_script, encode_push_data
from .transaction import DEFAULT_SIGHASH, Transaction, TxInput, TxOutput

logger = logging.getLogger(__name__)

MAX_FEE_ITERATIONS = 5
# Outputs holding exactly one satoshi are treated as existing inscriptions.
INSCRIPTION_OUTPUT_SATS = 1
MANUAL_BROADCAST_URL = "https://whatsonchain.com/broadcast"
MANUAL_BROADCAST_HINT = "All broadcast methods failed. Please try manual broadcast."


@dataclass
class SpendableOutput:
    """Unspent output owned by the local key."""

    txid: str
    vout: int
    satoshis: int
    source_transaction: bytes | None = None
    spent: bool = False

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass
class Selection:
    selected: List[SpendableOutput]
    total: int

    @property
    def input_count(self) -> int:
        return len(self.selected)


def select_largest_first(candidates: Iterable[SpendableOutput], target: int) -> Selection:
    """Accumulate the largest outputs until ``target`` is covered.

    Ties on amount are broken by outpoint so the result is deterministic.
    """

    ordered = sorted(candidates, key=lambda utxo: (-utxo.satoshis, utxo.txid, utxo.vout))
    selected: List[SpendableOutput] = []
    total = 0
    for utxo in ordered:
        if total >= target:
            break
        selected.append(utxo)
        total += utxo.satoshis

    if total < target:
        logger.warning("Insufficient funds: need %d sats, have %d sats", target, total)
        raise InsufficientFunds(target, total)
    return Selection(selected=selected, total=total)


class UTXOManager:
    """Local view of the spendable set for one address.

    Outputs are only flagged spent after a successful submission; a failed
    broadcast leaves the set untouched.
    """

    def __init__(
        self,
        ledger: Any = None,
        address: str | None = None,
        *,
        exclude_inscriptions: bool = True,
    ) -> None:
        self.ledger = ledger
        self.address = address
        self.exclude_inscriptions = exclude_inscriptions
        self._outputs: List[SpendableOutput] = []
        self._spent: set[str] = set()

    def load(self, outputs: Iterable[SpendableOutput]) -> None:
        self._outputs = [utxo for utxo in outputs if utxo.outpoint not in self._spent]
        for utxo in self._outputs:
            utxo.spent = False

    def add(self, utxo: SpendableOutput) -> None:
        """Track an output we created ourselves, e.g. unconfirmed change."""

        if utxo.outpoint not in self._spent:
            self._outputs.append(utxo)

    def refresh(self) -> List[SpendableOutput]:
        """Reload unspent outputs from the ledger, dropping locally spent ones."""

        if self.ledger is None or self.address is None:
            raise ValueError("UTXOManager needs a ledger client and an address to refresh")
        self.load(self.ledger.list_unspent(self.address))
        logger.debug("Loaded %d spendable outputs for %s", len(self._outputs), self.address)
        return list(self._outputs)

    def available(self) -> List[SpendableOutput]:
        return [
            utxo
            for utxo in self._outputs
            if not utxo.spent
            and utxo.satoshis > 0
            and not (self.exclude_inscriptions and utxo.satoshis == INSCRIPTION_OUTPUT_SATS)
        ]

    @property
    def balance(self) -> int:
        return sum(utxo.satoshis for utxo in self.available())

    def select_utxos(self, target: int) -> Selection:
        return select_largest_first(self.available(), target)

    def select_for_payload(
        self,
        payment: int,
        data_size: int,
        fee_rate_per_kb: float,
        num_outputs: int,
        buffer: int = 0,
    ) -> tuple[Selection, FeeEstimate]:
        """Select inputs covering ``payment`` plus the fee they themselves imply.

        The fee depends on the input count, so selection is repeated with the
        true count until it stops growing.
        """

        num_inputs = 1
        candidates = self.available()
        for attempt in range(1, MAX_FEE_ITERATIONS + 1):
            estimate = estimate_transaction_fee(num_inputs, num_outputs, data_size, fee_rate_per_kb)
            if not estimate.fits:
                raise SizeLimitExceeded(estimate.estimated_size, MAX_TX_SIZE)
            selection = select_largest_first(candidates, payment + estimate.fee + buffer)
            logger.debug(
                "Fee pass %d: %d inputs assumed, %d selected, fee %d",
                attempt,
                num_inputs,
                selection.input_count,
                estimate.fee,
            )
            if selection.input_count <= num_inputs:
                final = estimate_transaction_fee(
                    selection.input_count, num_outputs, data_size, fee_rate_per_kb
                )
                return selection, final
            num_inputs = selection.input_count
        raise FeeConvergenceError(
            f"Fee estimate did not converge after {MAX_FEE_ITERATIONS} selection passes"
        )

    def mark_as_spent(self, outputs: Iterable[SpendableOutput]) -> None:
        for utxo in outputs:
            utxo.spent = True
            self._spent.add(utxo.outpoint)

    def clear_spent_cache(self) -> None:
        self._spent.clear()
        for utxo in self._outputs:
            utxo.spent = False


@dataclass
class AssembledTransaction:
    inputs: List[SpendableOutput]
    outputs: List[TxOutput]
    fee: int
    transaction: Transaction
    change: int = 0

    @property
    def raw(self) -> bytes:
        return self.transaction.serialize()

    @property
    def raw_hex(self) -> str:
        return self.transaction.to_hex()

    @property
    def txid(self) -> str:
        return self.transaction.txid


@dataclass
class SubmissionResult:
    """Outcome of a single broadcast attempt."""

    ok: bool
    raw_hex: str
    txid: str | None = None
    error: str | None = None
    fallback: str | None = None

    def summary(self) -> str:
        if self.ok:
            return f"Broadcast transaction {self.txid}"
        return f"{self.error}\n{self.fallback}"


def format_broadcast_hint(error: str | None = None) -> str:
    lines = [MANUAL_BROADCAST_HINT]
    if error:
        lines.append(f"Last error: {error}")
    lines.append(f"Paste the raw transaction hex at {MANUAL_BROADCAST_URL}")
    return "\n".join(lines)


class TransactionBuilder:
    """Assemble, sign and submit P2PKH-funded transactions."""

    def __init__(self, custody: KeyCustody, submitter: Any = None) -> None:
        self.custody = custody
        self.submitter = submitter

    @property
    def change_script(self) -> bytes:
        return build_p2pkh_script(hash160(self.custody.public_key))

    def assemble(
        self,
        inputs: Sequence[SpendableOutput],
        outputs: Sequence[TxOutput],
        fee: int,
        change_script: bytes | None = None,
    ) -> AssembledTransaction:
        """Bind inputs and outputs, add change when positive, then sign."""

        if not inputs:
            raise InsufficientFunds(sum(o.satoshis for o in outputs) + fee, 0)
        total_in = sum(utxo.satoshis for utxo in inputs)
        total_out = sum(output.satoshis for output in outputs)
        change = total_in - total_out - fee
        if change < 0:
            raise InsufficientFunds(total_out + fee, total_in)

        tx_outputs = list(outputs)
        if change > 0:
            tx_outputs.append(TxOutput(satoshis=change, script=change_script or self.change_script))

        tx = Transaction(
            inputs=[TxInput(txid=utxo.txid, vout=utxo.vout) for utxo in inputs],
            outputs=tx_outputs,
        )
        self._sign(tx, inputs)
        validate_transaction_size(tx.size)
        logger.info(
            "Assembled transaction %s: %d inputs, %d outputs, fee %d sats, %d bytes",
            tx.txid,
            len(tx.inputs),
            len(tx.outputs),
            fee,
            tx.size,
        )
        return AssembledTransaction(
            inputs=list(inputs),
            outputs=tx_outputs,
            fee=fee,
            transaction=tx,
            change=change,
        )

    def _sign(self, tx: Transaction, inputs: Sequence[SpendableOutput]) -> None:
        public_key = self.custody.public_key
        script_code = build_p2pkh_script(hash160(public_key))
        for index, utxo in enumerate(inputs):
            digest = tx.signature_hash(index, script_code, utxo.satoshis, DEFAULT_SIGHASH)
            signature = self.custody.sign_digest(digest) + bytes([DEFAULT_SIGHASH])
            tx.inputs[index].script_sig = encode_push_data(signature) + encode_push_data(public_key)

    def fund_and_assemble(
        self,
        utxo_manager: UTXOManager,
        outputs: Sequence[TxOutput],
        data_size: int,
        fee_rate_per_kb: float,
    ) -> AssembledTransaction:
        """Select inputs for ``outputs`` (plus change) and assemble the result."""

        payment = sum(output.satoshis for output in outputs)
        selection, estimate = utxo_manager.select_for_payload(
            payment, data_size, fee_rate_per_kb, num_outputs=len(outputs) + 1
        )
        return self.assemble(selection.selected, outputs, estimate.fee)

    def submit(self, assembled: AssembledTransaction, submitter: Any = None) -> SubmissionResult:
        """Broadcast once. Failures return the raw hex for manual submission."""

        target = submitter or self.submitter
        raw_hex = assembled.raw_hex
        if target is None:
            return SubmissionResult(
                ok=False,
                raw_hex=raw_hex,
                error="No submission service configured",
                fallback=format_broadcast_hint(),
            )
        try:
            txid = target.submit(raw_hex)
        except NetworkError as exc:
            logger.error("Broadcast of %s failed: %s", assembled.txid, exc)
            return SubmissionResult(
                ok=False,
                raw_hex=raw_hex,
                error=str(exc),
                fallback=format_broadcast_hint(str(exc)),
            )
        logger.info("Broadcast transaction %s", txid)
        return SubmissionResult(ok=True, raw_hex=raw_hex, txid=txid)
