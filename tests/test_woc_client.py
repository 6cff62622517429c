from __future__ import annotations

import json
from typing import Any

import pytest
import requests

from bsv_inscribe.config import InscribeConfig
from bsv_inscribe.errors import NetworkError
from bsv_inscribe.woc_client import WhatsOnChainClient


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, text: str | None = None) -> None:
        self.status_code = status_code
        self.ok = status_code < 400
        self.url = "https://api.example/test"
        self.text = text if text is not None else json.dumps(body)
        self._body = body

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("no json")
        return self._body


class FakeSession:
    def __init__(self, routes: dict[tuple[str, str], Any]) -> None:
        self.routes = routes
        self.headers: dict[str, str] = {}
        self.calls: list[tuple[str, str, dict]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append((method, url, kwargs))
        path = url.split("/v1/bsv/main/", 1)[1]
        outcome = self.routes[(method, path)]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _client(routes: dict, **config: Any) -> tuple[WhatsOnChainClient, FakeSession]:
    session = FakeSession(routes)
    return WhatsOnChainClient(InscribeConfig(**config), session=session), session


def test_api_key_header_and_timeout() -> None:
    client, session = _client(
        {("GET", "fee/estimates"): FakeResponse(body={"standard": 0.05})},
        api_key="secret",
        timeout=7,
    )

    assert client.estimate_network_fee_rate() == 50
    assert session.headers["woc-api-key"] == "secret"
    assert session.calls[0][2]["timeout"] == 7


def test_fee_estimate_defaults_to_one_sat_per_kb() -> None:
    client, _ = _client({("GET", "fee/estimates"): FakeResponse(body={})})

    assert client.estimate_network_fee_rate() == 1


def test_list_unspent_maps_fields() -> None:
    body = [
        {"tx_hash": "aa" * 32, "tx_pos": 1, "value": 1500, "height": 800000},
        {"tx_hash": "bb" * 32},
    ]
    client, _ = _client({("GET", "address/1abc/unspent"): FakeResponse(body=body)})

    outputs = client.list_unspent("1abc")

    assert len(outputs) == 1
    assert (outputs[0].txid, outputs[0].vout, outputs[0].satoshis) == ("aa" * 32, 1, 1500)


def test_fetch_transaction_decodes_hex() -> None:
    client, _ = _client({("GET", f"tx/{'cc' * 32}/hex"): FakeResponse(text="0100ff\n")})

    assert client.fetch_transaction("cc" * 32) == bytes.fromhex("0100ff")


def test_fetch_history_uses_transaction_time() -> None:
    routes = {
        ("GET", "address/1abc/history"): FakeResponse(
            body=[{"tx_hash": "dd" * 32, "height": 10}, {"tx_hash": "ee" * 32, "height": 0}]
        ),
        ("GET", f"tx/hash/{'dd' * 32}"): FakeResponse(body={"time": 1700000000}),
        ("GET", f"tx/hash/{'ee' * 32}"): FakeResponse(body={"blocktime": 1700000500}),
    }
    client, _ = _client(routes)

    history = client.fetch_history("1abc")

    assert [(e.txid, e.timestamp, e.height) for e in history] == [
        ("dd" * 32, 1700000000.0, 10),
        ("ee" * 32, 1700000500.0, None),
    ]


def test_submit_returns_normalised_txid() -> None:
    client, session = _client({("POST", "tx/raw"): FakeResponse(text=f'"{"AB" * 32}"')})

    assert client.submit("0100") == "ab" * 32
    assert session.calls[0][2]["json"] == {"txhex": "0100"}


def test_submit_rejects_non_txid_body() -> None:
    client, _ = _client({("POST", "tx/raw"): FakeResponse(text="unexpected response")})

    with pytest.raises(NetworkError):
        client.submit("0100")


def test_http_error_carries_status() -> None:
    client, _ = _client({("POST", "tx/raw"): FakeResponse(status_code=400, text="bad-txns-inputs")})

    with pytest.raises(NetworkError) as excinfo:
        client.submit("0100")

    assert excinfo.value.status_code == 400
    assert "bad-txns-inputs" in str(excinfo.value)


def test_rate_limit_message() -> None:
    client, _ = _client({("GET", "fee/estimates"): FakeResponse(status_code=429, text="")})

    with pytest.raises(NetworkError, match="Rate limited"):
        client.estimate_network_fee_rate()


def test_transport_failure_wrapped() -> None:
    client, _ = _client({("GET", "fee/estimates"): requests.ConnectionError("refused")})

    with pytest.raises(NetworkError):
        client.estimate_network_fee_rate()


def test_malformed_json_wrapped() -> None:
    client, _ = _client({("GET", "address/1abc/unspent"): FakeResponse(text="<html>")})

    with pytest.raises(NetworkError, match="malformed JSON"):
        client.list_unspent("1abc")
