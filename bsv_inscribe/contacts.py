"""Contact directory: peers that messages can be exchanged with."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List

import yaml

from .errors import ConfigurationError, EncodingError
from .keys import load_public_key, pubkey_to_address

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Contact:
    public_key: str
    display_name: str

    def __post_init__(self) -> None:
        load_public_key(self.public_key)

    @property
    def public_key_bytes(self) -> bytes:
        return bytes.fromhex(self.public_key)

    def address(self, network: str = "main") -> str:
        return pubkey_to_address(self.public_key_bytes, network)


def load_contacts(path: str | Path) -> List[Contact]:
    """Load contacts from YAML, preserving file order.

    The file holds a ``contacts`` list of ``{name, public_key}`` mappings.
    """

    source = Path(path).expanduser()
    try:
        document = yaml.safe_load(source.read_text()) or {}
    except OSError as exc:
        raise ConfigurationError(f"Unable to read contacts file {source}: {exc}") from exc
    except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
        raise ConfigurationError(f"Invalid YAML in contacts file {source}: {exc}") from exc

    entries = document.get("contacts", []) if isinstance(document, dict) else None
    if not isinstance(entries, list):
        raise ConfigurationError(f"Expected {source} to contain a 'contacts' list")

    contacts = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict) or "public_key" not in entry:
            raise ConfigurationError(f"Contact #{index} in {source} has no public_key")
        try:
            contacts.append(
                Contact(
                    public_key=str(entry["public_key"]).strip().lower(),
                    display_name=str(entry.get("name") or entry["public_key"][:12]),
                )
            )
        except EncodingError as exc:
            raise ConfigurationError(f"Contact #{index} in {source}: {exc}") from exc
    logger.debug("Loaded %d contacts from %s", len(contacts), source)
    return contacts
