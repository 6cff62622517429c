from __future__ import annotations

import json
from pathlib import Path

import pytest

from bsv_inscribe import cli
from bsv_inscribe.encryption import load_key_history

GENERATOR_WIF = "KwDiBf89QgGbjEhKnhXJuH7LrciVrZi3qYjgd9M7rFU73sVHnoWn"


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("bsv_inscribe.config.DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")
    for name in ("BSV_INSCRIBE_FEE_RATE", "BSV_INSCRIBE_NETWORK", cli.ENV_WIF):
        monkeypatch.delenv(name, raising=False)


def test_estimate_fee_prints_json(capsys: pytest.CaptureFixture[str]) -> None:
    cli.main(["--fee-rate", "1", "estimate-fee", "--data-size", "1000"])

    output = json.loads(capsys.readouterr().out)
    assert output["estimated_size"] == 1246
    assert output["fee_sats"] == 2


def test_address_from_environment_wif(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv(cli.ENV_WIF, GENERATOR_WIF)

    cli.main(["address"])

    assert capsys.readouterr().out.strip() == "1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH"


def test_address_from_wif_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    wif_file = tmp_path / "key.wif"
    wif_file.write_text(GENERATOR_WIF + "\n")

    cli.main(["--wif-file", str(wif_file), "address"])

    assert capsys.readouterr().out.strip() == "1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH"


def test_missing_signing_key_exits() -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["address"])

    assert excinfo.value.code == 1


def test_keygen_rotate_and_segments(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "keys.yaml"

    cli.main(["keygen", "--key-history", str(path)])
    cli.main(["rotate-key", "--key-history", str(path)])
    capsys.readouterr()
    cli.main(["show-segments", "--key-history", str(path)])

    history = load_key_history(path)
    assert history.current.version == "v2"
    assert len(history.previous) == 1
    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 5
    assert lines[-1].split()[-1] == history.current.root_secret


def test_keygen_refuses_to_overwrite(tmp_path: Path) -> None:
    path = tmp_path / "keys.yaml"
    cli.main(["keygen", "--key-history", str(path)])

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["keygen", "--key-history", str(path)])

    assert excinfo.value.code == 1


def test_import_key_validates(tmp_path: Path) -> None:
    path = tmp_path / "keys.yaml"

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["import-key", "--key-history", str(path), "--key", "not-a-key"])

    assert excinfo.value.code == 1
    assert not path.exists()

    cli.main(["import-key", "--key-history", str(path), "--key", "ef" * 32])
    assert load_key_history(path).current.root_secret == "ef" * 32


def test_show_segments_requires_keys(tmp_path: Path) -> None:
    with pytest.raises(SystemExit):
        cli.main(["show-segments", "--key-history", str(tmp_path / "none.yaml")])
