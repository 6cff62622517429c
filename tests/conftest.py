from __future__ import annotations

import pytest

from bsv_inscribe.errors import NetworkError
from bsv_inscribe.keys import LocalKeyCustody
from bsv_inscribe.script import parse_p2pkh_script
from bsv_inscribe.transaction import Transaction
from bsv_inscribe.tx_builder import SpendableOutput
from bsv_inscribe.woc_client import LedgerEntry


class FakeLedger:
    """In-memory ledger that applies submitted transactions to its UTXO set."""

    def __init__(
        self,
        owner_pkh: bytes,
        utxos: list[SpendableOutput] | None = None,
        *,
        fee_rate: float = 1.0,
        fail_submit: bool = False,
    ) -> None:
        self.owner_pkh = owner_pkh
        self.utxos = list(utxos or [])
        self.fee_rate = fee_rate
        self.fail_submit = fail_submit
        self.transactions: dict[str, bytes] = {}
        self.history: list[LedgerEntry] = []
        self.submitted: list[str] = []

    def list_unspent(self, address: str) -> list[SpendableOutput]:
        return [SpendableOutput(u.txid, u.vout, u.satoshis) for u in self.utxos]

    def fetch_transaction(self, txid: str) -> bytes:
        try:
            return self.transactions[txid]
        except KeyError as exc:
            raise NetworkError(f"unknown transaction {txid}", status_code=404) from exc

    def fetch_history(self, address: str) -> list[LedgerEntry]:
        return list(self.history)

    def estimate_network_fee_rate(self) -> float:
        return self.fee_rate

    def submit(self, raw_hex: str) -> str:
        if self.fail_submit:
            raise NetworkError("broadcast rejected", status_code=500)
        tx = Transaction.from_hex(raw_hex)
        spent = {(tx_in.txid, tx_in.vout) for tx_in in tx.inputs}
        self.utxos = [u for u in self.utxos if (u.txid, u.vout) not in spent]
        for vout, output in enumerate(tx.outputs):
            if len(output.script) == 25 and parse_p2pkh_script(output.script) == self.owner_pkh:
                self.utxos.append(SpendableOutput(tx.txid, vout, output.satoshis))
        self.transactions[tx.txid] = bytes.fromhex(raw_hex)
        self.history.append(LedgerEntry(txid=tx.txid, timestamp=float(len(self.history) + 1)))
        self.submitted.append(tx.txid)
        return tx.txid


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def alice() -> LocalKeyCustody:
    return LocalKeyCustody.from_secret((0xA11CE).to_bytes(32, "big"))


@pytest.fixture
def bob() -> LocalKeyCustody:
    return LocalKeyCustody.from_secret((0xB0B).to_bytes(32, "big"))


@pytest.fixture
def carol() -> LocalKeyCustody:
    return LocalKeyCustody.from_secret((0xCA401).to_bytes(32, "big"))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_ledger():
    return FakeLedger
