"""Shared configuration loader for bsv-inscribe."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

from .errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path.home() / ".bsv-inscribe.yaml"
_CONFIG_PATH_OVERRIDE: Path | None = None

NETWORKS = {"main", "test"}
_NETWORK_ALIASES = {
    "main": "main",
    "mainnet": "main",
    "livenet": "main",
    "test": "test",
    "testnet": "test",
}


@dataclass
class InscribeConfig:
    """Configuration container for ledger access and publishing policy."""

    network: str = "main"
    api_key: str | None = None
    fee_rate_per_kb: float | None = None
    default_fee_rate_per_kb: float = 1.0
    cooldown_seconds: float = 5.0
    chunk_size: int = 2 * 1024 * 1024
    chunk_threshold: int = 2 * 1024 * 1024
    base_url: str = "https://api.whatsonchain.com"
    timeout: float = 30.0
    contacts_path: Path | None = None
    key_history_path: Path | None = None

    def __post_init__(self) -> None:
        for name in ("chunk_size", "chunk_threshold"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")

    @property
    def api_root(self) -> str:
        return f"{self.base_url.rstrip('/')}/v1/bsv/{self.network}"


def set_default_config_path(path: str | Path | None) -> None:
    """Remember a user-supplied config path for future loads."""

    global _CONFIG_PATH_OVERRIDE
    _CONFIG_PATH_OVERRIDE = Path(path).expanduser() if path else None


def _load_config_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigurationError(f"Config file not found: {path}")
        return {}

    try:
        loaded = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Expected {path} to contain a YAML mapping")
    return loaded


def _coerce_network(raw: Any, *, source: str) -> str | None:
    if raw is None:
        return None
    normalized = _NETWORK_ALIASES.get(str(raw).strip().lower())
    if normalized is None:
        raise ConfigurationError(f"Unknown network in {source}: {raw}")
    return normalized


def _coerce_number(raw: Any, *, source: str, kind: type = float) -> Any:
    if raw is None or raw == "":
        return None
    try:
        value = kind(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid {kind.__name__} in {source}: {raw}") from exc
    if value < 0:
        raise ConfigurationError(f"Negative value in {source}: {raw}")
    return value


def _coerce_path(raw: Any) -> Path | None:
    if not raw:
        return None
    return Path(str(raw)).expanduser()


def _first_value(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None:
            return value
    return default


def load_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> InscribeConfig:
    """Load configuration from overrides, environment variables and optional YAML.

    Precedence is overrides, then ``BSV_INSCRIBE_*`` environment variables,
    then the ``ledger``/``publish`` sections of the YAML file, then defaults.
    """

    env_map = os.environ if env is None else env
    explicit_path = config_path is not None or _CONFIG_PATH_OVERRIDE is not None
    path = (
        Path(config_path).expanduser()
        if config_path is not None
        else _CONFIG_PATH_OVERRIDE or DEFAULT_CONFIG_PATH
    )

    file_config = _load_config_file(path, required=explicit_path)
    ledger_section = file_config.get("ledger", {}) or {}
    publish_section = file_config.get("publish", {}) or {}
    for name, section in (("ledger", ledger_section), ("publish", publish_section)):
        if not isinstance(section, dict):
            raise ConfigurationError(f"Expected '{name}' to be a mapping in {path}")

    override_map = dict(overrides or {})
    defaults = InscribeConfig()

    network = _first_value(
        _coerce_network(override_map.get("network"), source="overrides"),
        _coerce_network(env_map.get("BSV_INSCRIBE_NETWORK"), source="environment"),
        _coerce_network(ledger_section.get("network"), source=f"{path} ledger.network"),
        defaults.network,
    )
    api_key = _first_value(
        override_map.get("api_key"),
        env_map.get("BSV_INSCRIBE_API_KEY") or env_map.get("WOC_API_KEY"),
        ledger_section.get("api_key"),
    )
    base_url = _first_value(
        override_map.get("base_url"),
        env_map.get("BSV_INSCRIBE_BASE_URL"),
        ledger_section.get("base_url"),
        defaults.base_url,
    )
    timeout = _first_value(
        _coerce_number(override_map.get("timeout"), source="overrides"),
        _coerce_number(env_map.get("BSV_INSCRIBE_TIMEOUT"), source="environment"),
        _coerce_number(ledger_section.get("timeout"), source=f"{path} ledger.timeout"),
        defaults.timeout,
    )
    fee_rate = _first_value(
        _coerce_number(override_map.get("fee_rate"), source="overrides"),
        _coerce_number(env_map.get("BSV_INSCRIBE_FEE_RATE"), source="environment"),
        _coerce_number(publish_section.get("fee_rate"), source=f"{path} publish.fee_rate"),
    )
    default_fee_rate = _first_value(
        _coerce_number(override_map.get("default_fee_rate"), source="overrides"),
        _coerce_number(env_map.get("BSV_INSCRIBE_DEFAULT_FEE_RATE"), source="environment"),
        _coerce_number(
            publish_section.get("default_fee_rate"), source=f"{path} publish.default_fee_rate"
        ),
        defaults.default_fee_rate_per_kb,
    )
    cooldown = _first_value(
        _coerce_number(override_map.get("cooldown_seconds"), source="overrides"),
        _coerce_number(env_map.get("BSV_INSCRIBE_COOLDOWN_SECONDS"), source="environment"),
        _coerce_number(
            publish_section.get("cooldown_seconds"), source=f"{path} publish.cooldown_seconds"
        ),
        defaults.cooldown_seconds,
    )
    chunk_size = _first_value(
        _coerce_number(override_map.get("chunk_size"), source="overrides", kind=int),
        _coerce_number(env_map.get("BSV_INSCRIBE_CHUNK_SIZE"), source="environment", kind=int),
        _coerce_number(
            publish_section.get("chunk_size"), source=f"{path} publish.chunk_size", kind=int
        ),
        defaults.chunk_size,
    )
    chunk_threshold = _first_value(
        _coerce_number(override_map.get("chunk_threshold"), source="overrides", kind=int),
        _coerce_number(
            env_map.get("BSV_INSCRIBE_CHUNK_THRESHOLD"), source="environment", kind=int
        ),
        _coerce_number(
            publish_section.get("chunk_threshold"),
            source=f"{path} publish.chunk_threshold",
            kind=int,
        ),
        chunk_size,
    )

    contacts_path = _coerce_path(
        _first_value(
            override_map.get("contacts"),
            env_map.get("BSV_INSCRIBE_CONTACTS"),
            file_config.get("contacts"),
        )
    )
    key_history_path = _coerce_path(
        _first_value(
            override_map.get("key_history"),
            env_map.get("BSV_INSCRIBE_KEY_HISTORY"),
            file_config.get("key_history"),
        )
    )

    return InscribeConfig(
        network=network,
        api_key=api_key,
        fee_rate_per_kb=fee_rate,
        default_fee_rate_per_kb=default_fee_rate,
        cooldown_seconds=cooldown,
        chunk_size=chunk_size,
        chunk_threshold=chunk_threshold,
        base_url=base_url,
        timeout=timeout,
        contacts_path=contacts_path,
        key_history_path=key_history_path,
    )
