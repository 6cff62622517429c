"""HTTP client for the WhatsOnChain BSV API.

The client covers the read paths the toolkit needs (unspent outputs, raw
transactions, address history, fee estimates) plus raw transaction
submission. Every transport problem is surfaced as
:class:`~bsv_inscribe.errors.NetworkError`; no call is retried.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Protocol

import requests
from requests import RequestException, Response

from .config import InscribeConfig, load_config
from .errors import NetworkError
from .tx_builder import SpendableOutput

logger = logging.getLogger(__name__)

DEFAULT_FEE_ESTIMATE = 0.001
_TXID = re.compile(r"^[0-9a-fA-F]{64}$")


@dataclass(frozen=True)
class LedgerEntry:
    """A transaction touching an address, with its best-known timestamp."""

    txid: str
    timestamp: float
    height: int | None = None


class LedgerQueryService(Protocol):
    def list_unspent(self, address: str) -> List[SpendableOutput]: ...

    def fetch_transaction(self, txid: str) -> bytes: ...

    def fetch_history(self, address: str) -> List[LedgerEntry]: ...

    def estimate_network_fee_rate(self) -> float: ...


class LedgerSubmissionService(Protocol):
    def submit(self, raw_hex: str) -> str: ...


class WhatsOnChainClient:
    """Thin ``requests`` wrapper around the WhatsOnChain REST endpoints."""

    def __init__(self, config: InscribeConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self._session = session or requests.Session()
        if config.api_key:
            self._session.headers["woc-api-key"] = config.api_key

    @classmethod
    def from_env(cls) -> "WhatsOnChainClient":
        """Instantiate a client using environment variables or config file."""

        return cls(load_config())

    def _url(self, path: str) -> str:
        return f"{self.config.api_root}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, **kwargs: Any) -> Response:
        url = self._url(path)
        logger.debug("WhatsOnChain %s %s", method, url)
        try:
            response = self._session.request(method, url, timeout=self.config.timeout, **kwargs)
        except RequestException as exc:
            logger.error(
                "WhatsOnChain request failed: %s",
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise NetworkError(
                f"Could not reach {self.config.base_url}; check your connection and BSV_INSCRIBE_BASE_URL"
            ) from exc
        if not response.ok:
            logger.error("WhatsOnChain HTTP %s from %s", response.status_code, response.url)
            logger.debug("WhatsOnChain error body: %s", response.text)
            if response.status_code == 429:
                message = "Rate limited by WhatsOnChain; set BSV_INSCRIBE_API_KEY or wait before retrying"
            else:
                message = f"WhatsOnChain returned HTTP {response.status_code}: {response.text.strip()[:200]}"
            raise NetworkError(message, status_code=response.status_code)
        return response

    def _get_json(self, path: str) -> Any:
        response = self._request("GET", path)
        try:
            return response.json()
        except ValueError as exc:
            logger.debug("WhatsOnChain JSON parse error: %s", response.text, exc_info=True)
            raise NetworkError("WhatsOnChain returned malformed JSON") from exc

    # Query service --------------------------------------------------------

    def fetch_transaction(self, txid: str) -> bytes:
        raw_hex = self._request("GET", f"tx/{txid}/hex").text.strip()
        try:
            return bytes.fromhex(raw_hex)
        except ValueError as exc:
            raise NetworkError(f"WhatsOnChain returned non-hex data for {txid}") from exc

    def list_unspent(self, address: str, *, with_source: bool = False) -> List[SpendableOutput]:
        entries = self._get_json(f"address/{address}/unspent")
        if not isinstance(entries, list):
            raise NetworkError("Unexpected unspent output listing from WhatsOnChain")
        outputs = []
        for entry in entries:
            try:
                utxo = SpendableOutput(
                    txid=str(entry["tx_hash"]),
                    vout=int(entry["tx_pos"]),
                    satoshis=int(entry["value"]),
                )
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed unspent entry: %s", entry)
                continue
            if with_source:
                utxo.source_transaction = self.fetch_transaction(utxo.txid)
            outputs.append(utxo)
        return outputs

    def fetch_transaction_details(self, txid: str) -> Dict[str, Any]:
        details = self._get_json(f"tx/hash/{txid}")
        if not isinstance(details, dict):
            raise NetworkError(f"Unexpected transaction details for {txid}")
        return details

    def fetch_history(self, address: str) -> List[LedgerEntry]:
        """Return address history; timestamps come from per-transaction details."""

        entries = self._get_json(f"address/{address}/history")
        if not isinstance(entries, list):
            raise NetworkError("Unexpected address history from WhatsOnChain")
        history = []
        for entry in entries:
            txid = entry.get("tx_hash") if isinstance(entry, dict) else None
            if not txid:
                continue
            height = entry.get("height")
            details = self.fetch_transaction_details(txid)
            timestamp = details.get("time") or details.get("blocktime") or time.time()
            history.append(
                LedgerEntry(
                    txid=txid,
                    timestamp=float(timestamp),
                    height=int(height) if height and int(height) > 0 else None,
                )
            )
        return history

    def estimate_network_fee_rate(self) -> float:
        """Return the network fee rate in sat/KB (never below 1)."""

        estimates = self._get_json("fee/estimates")
        if not isinstance(estimates, dict):
            raise NetworkError("Unexpected fee estimate payload from WhatsOnChain")
        per_byte = estimates.get("standard") or estimates.get("halfHour") or DEFAULT_FEE_ESTIMATE
        try:
            return max(1.0, round(float(per_byte) * 1000))
        except (TypeError, ValueError) as exc:
            raise NetworkError(f"Unparseable fee estimate: {per_byte!r}") from exc

    # Submission service ---------------------------------------------------

    def submit(self, raw_hex: str) -> str:
        response = self._request("POST", "tx/raw", json={"txhex": raw_hex})
        txid = response.text.strip().strip('"')
        if not _TXID.match(txid):
            raise NetworkError(f"Broadcast was not accepted: {txid[:200]}")
        return txid.lower()
