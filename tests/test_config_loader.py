from pathlib import Path

import pytest

from bsv_inscribe.config import ConfigurationError, InscribeConfig, load_config


def test_load_config_prefers_environment_over_yaml(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
        ledger:
          network: testnet
          api_key: file_key
          timeout: 10
        publish:
          fee_rate: 2.5
          cooldown_seconds: 8
          chunk_size: 4096
        contacts: ~/contacts.yaml
        """
    )

    env_map = {
        "BSV_INSCRIBE_NETWORK": "mainnet",
        "WOC_API_KEY": "env_key",
        "BSV_INSCRIBE_FEE_RATE": "0.5",
    }

    config = load_config(config_path=config_path, env=env_map)

    assert isinstance(config, InscribeConfig)
    assert config.network == "main"
    assert config.api_key == "env_key"
    assert config.timeout == 10
    assert config.fee_rate_per_kb == 0.5
    assert config.cooldown_seconds == 8
    assert config.chunk_size == 4096
    assert config.chunk_threshold == 4096
    assert config.contacts_path == Path.home() / "contacts.yaml"
    assert config.api_root == "https://api.whatsonchain.com/v1/bsv/main"


def test_load_config_reads_default_path_when_env_missing(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    config_path = tmp_path / "bsv-inscribe.yaml"
    monkeypatch.setattr("bsv_inscribe.config.DEFAULT_CONFIG_PATH", config_path)
    config_path.write_text(
        """
        ledger:
          network: test
          base_url: http://localhost:8080/
        publish:
          default_fee_rate: 3
        """
    )

    config = load_config(env={})

    assert config.network == "test"
    assert config.fee_rate_per_kb is None
    assert config.default_fee_rate_per_kb == 3
    assert config.api_root == "http://localhost:8080/v1/bsv/test"


def test_defaults_without_any_source(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("bsv_inscribe.config.DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")

    config = load_config(env={})

    assert config == InscribeConfig()


def test_overrides_win(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("bsv_inscribe.config.DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")

    config = load_config(
        env={"BSV_INSCRIBE_FEE_RATE": "5"},
        overrides={"fee_rate": 7, "network": "test", "chunk_threshold": 100},
    )

    assert config.fee_rate_per_kb == 7
    assert config.network == "test"
    assert config.chunk_threshold == 100


@pytest.mark.parametrize(
    "env_map",
    [
        {"BSV_INSCRIBE_NETWORK": "regtest"},
        {"BSV_INSCRIBE_FEE_RATE": "fast"},
        {"BSV_INSCRIBE_COOLDOWN_SECONDS": "-1"},
        {"BSV_INSCRIBE_CHUNK_SIZE": "0"},
        {"BSV_INSCRIBE_CHUNK_THRESHOLD": "0"},
        {"BSV_INSCRIBE_CHUNK_SIZE": "8", "BSV_INSCRIBE_CHUNK_THRESHOLD": "0"},
    ],
)
def test_invalid_values_rejected(
    env_map: dict, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr("bsv_inscribe.config.DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")

    with pytest.raises(ConfigurationError):
        load_config(env=env_map)


def test_explicit_path_must_exist(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        load_config(config_path=tmp_path / "missing.yaml", env={})


def test_sections_must_be_mappings(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("publish: [1, 2]\n")

    with pytest.raises(ConfigurationError):
        load_config(config_path=config_path, env={})


@pytest.mark.parametrize("field", ["chunk_size", "chunk_threshold"])
def test_config_rejects_non_positive_chunking(field: str) -> None:
    with pytest.raises(ConfigurationError):
        InscribeConfig(**{field: 0})
    with pytest.raises(ConfigurationError):
        InscribeConfig(**{field: -5})
