"""Command-line interface for bsv-inscribe.

Signing keys are read from ``BSV_INSCRIBE_WIF`` or a file passed with
``--wif-file``; nothing here writes a private key to disk.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Sequence

from .config import InscribeConfig, load_config
from .contacts import Contact, load_contacts
from .content import Profile
from .encryption import (
    KeyHistory,
    KeyMaterial,
    level_label,
    load_key_history,
    save_key_history,
)
from .errors import InscribeError
from .fees import estimate_transaction_fee
from .keys import LocalKeyCustody
from .messaging import organize_conversations
from .publisher import OperationResult, Publisher
from .woc_client import WhatsOnChainClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

COMPACT_JSON_SEPARATORS = (",", ":")
ENV_WIF = "BSV_INSCRIBE_WIF"
DEFAULT_KEY_HISTORY_PATH = Path.home() / ".bsv-inscribe-keys.yaml"


class CLIError(RuntimeError):
    """Raised when CLI arguments are invalid."""


def _add_key_history_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--key-history",
        default=None,
        help="YAML file holding content encryption keys (default: config or ~/.bsv-inscribe-keys.yaml)",
    )


def _add_level_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--level",
        type=int,
        default=0,
        choices=range(0, 6),
        help="Encryption level 0 (public) to 5 (completely private)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inscribe content and messages on BSV")
    parser.add_argument("--config", default=None, help="Path to a YAML config file")
    parser.add_argument("--network", default=None, help="main or test")
    parser.add_argument("--fee-rate", type=float, default=None, help="Fee rate in sat/KB")
    parser.add_argument(
        "--wif-file", default=None, help=f"File holding the signing key (default: ${ENV_WIF})"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    estimate_parser = subparsers.add_parser("estimate-fee", help="estimate size and fee")
    estimate_parser.add_argument("--inputs", type=int, default=1)
    estimate_parser.add_argument("--outputs", type=int, default=2)
    estimate_parser.add_argument("--data-size", type=int, required=True, help="Payload bytes")

    subparsers.add_parser("address", help="print the address of the signing key")

    keygen_parser = subparsers.add_parser("keygen", help="create content encryption keys")
    _add_key_history_argument(keygen_parser)
    keygen_parser.add_argument("--force", action="store_true", help="Overwrite an existing file")

    rotate_parser = subparsers.add_parser("rotate-key", help="rotate the content encryption key")
    _add_key_history_argument(rotate_parser)

    import_parser = subparsers.add_parser("import-key", help="import a 64-hex content key")
    _add_key_history_argument(import_parser)
    import_parser.add_argument("--key", required=True, help="64 hexadecimal characters")

    segments_parser = subparsers.add_parser("show-segments", help="print per-level key segments")
    _add_key_history_argument(segments_parser)

    text_parser = subparsers.add_parser("publish-text", help="inscribe a text note")
    text_parser.add_argument("--text", required=True)
    _add_level_argument(text_parser)
    _add_key_history_argument(text_parser)

    file_parser = subparsers.add_parser("publish-file", help="inscribe a file (chunked if large)")
    file_parser.add_argument("path")
    file_parser.add_argument("--content-type", default=None)
    _add_level_argument(file_parser)
    _add_key_history_argument(file_parser)

    profile_parser = subparsers.add_parser("publish-profile", help="inscribe a profile document")
    profile_parser.add_argument("--username", default=None)
    profile_parser.add_argument("--title", default=None)
    profile_parser.add_argument("--bio", default=None)
    profile_parser.add_argument("--avatar", default=None, help="Avatar image path")
    profile_parser.add_argument("--background", default=None, help="Background image path")
    _add_level_argument(profile_parser)
    _add_key_history_argument(profile_parser)

    message_parser = subparsers.add_parser("send-message", help="send an encrypted message")
    message_parser.add_argument("--to", required=True, help="Contact name or public key hex")
    message_parser.add_argument("--text", required=True)
    message_parser.add_argument("--contacts", default=None, help="Contacts YAML file")

    read_parser = subparsers.add_parser("read-messages", help="list messages for the signing key")
    read_parser.add_argument("--contacts", default=None, help="Contacts YAML file")
    read_parser.add_argument(
        "--conversations", action="store_true", help="Group messages by counterparty"
    )

    list_parser = subparsers.add_parser("list-inscriptions", help="list inscriptions")
    list_parser.add_argument("--address", default=None)
    _add_key_history_argument(list_parser)

    rebuild_parser = subparsers.add_parser(
        "reconstruct", help="reassemble a chunked upload from its manifest"
    )
    rebuild_parser.add_argument("manifest_txid")
    rebuild_parser.add_argument("--output", required=True, help="Where to write the payload")

    return parser


def _config_from_args(args: argparse.Namespace) -> InscribeConfig:
    overrides: dict[str, Any] = {}
    if args.network:
        overrides["network"] = args.network
    if args.fee_rate is not None:
        overrides["fee_rate"] = args.fee_rate
    if getattr(args, "contacts", None):
        overrides["contacts"] = args.contacts
    if getattr(args, "key_history", None):
        overrides["key_history"] = args.key_history
    return load_config(config_path=args.config, overrides=overrides)


def _load_custody(args: argparse.Namespace, config: InscribeConfig) -> LocalKeyCustody:
    if args.wif_file:
        wif = Path(args.wif_file).expanduser().read_text().strip()
    else:
        wif = os.environ.get(ENV_WIF, "").strip()
    if not wif:
        raise CLIError(f"No signing key: set {ENV_WIF} or pass --wif-file")
    custody = LocalKeyCustody.from_wif(wif)
    if custody.network != config.network:
        logger.warning(
            "Signing key is for %snet but the configured network is %snet",
            custody.network,
            config.network,
        )
    return custody


def _key_history_path(config: InscribeConfig) -> Path:
    return config.key_history_path or DEFAULT_KEY_HISTORY_PATH


def _load_key_history(config: InscribeConfig, *, required: bool) -> KeyHistory | None:
    path = _key_history_path(config)
    if not path.exists():
        if required:
            raise CLIError(f"No key history at {path}; run 'keygen' first")
        return None
    return load_key_history(path)


def _load_contacts(config: InscribeConfig) -> list[Contact]:
    if config.contacts_path is None:
        return []
    return load_contacts(config.contacts_path)


def _publisher(args: argparse.Namespace, config: InscribeConfig, *, keys_required: bool = False) -> Publisher:
    custody = _load_custody(args, config)
    client = WhatsOnChainClient(config)
    return Publisher(
        custody,
        client,
        config=config,
        key_history=_load_key_history(config, required=keys_required),
        contacts=_load_contacts(config),
    )


def _emit_result(result: OperationResult) -> None:
    print(json.dumps(result.summary(), separators=COMPACT_JSON_SEPARATORS))
    if not result.ok:
        if result.raw_hex:
            print(result.raw_hex)
        raise CLIError(f"{result.reason}: {result.error}")


def cmd_estimate_fee(args: argparse.Namespace, config: InscribeConfig) -> None:
    rate = config.fee_rate_per_kb or config.default_fee_rate_per_kb
    estimate = estimate_transaction_fee(args.inputs, args.outputs, args.data_size, rate)
    print(
        json.dumps(
            {
                "estimated_size": estimate.estimated_size,
                "fee_sats": estimate.fee,
                "remaining_capacity": estimate.remaining_capacity,
                "fee_rate_per_kb": rate,
            },
            separators=COMPACT_JSON_SEPARATORS,
        )
    )


def cmd_keygen(args: argparse.Namespace, config: InscribeConfig) -> None:
    path = _key_history_path(config)
    if path.exists() and not args.force:
        raise CLIError(f"{path} already exists; use rotate-key or --force")
    history = KeyHistory.create()
    save_key_history(history, path)
    print(json.dumps({"path": str(path), "version": history.current.version}))


def cmd_rotate_key(args: argparse.Namespace, config: InscribeConfig) -> None:
    history = _load_key_history(config, required=True)
    rotated = history.rotate()
    save_key_history(rotated, _key_history_path(config))
    print(json.dumps({"version": rotated.current.version, "previous": len(rotated.previous)}))


def cmd_import_key(args: argparse.Namespace, config: InscribeConfig) -> None:
    history = _load_key_history(config, required=False)
    if history is None:
        updated = KeyHistory(current=KeyMaterial.import_key(args.key))
    else:
        updated = history.import_key(args.key)
    save_key_history(updated, _key_history_path(config))
    print(json.dumps({"version": updated.current.version}))


def cmd_show_segments(args: argparse.Namespace, config: InscribeConfig) -> None:
    history = _load_key_history(config, required=True)
    for level in range(1, 6):
        print(f"{level} {level_label(level):<20} {history.current.segment(level)}")


def cmd_read_messages(args: argparse.Namespace, config: InscribeConfig) -> None:
    result = _publisher(args, config).read_messages()
    if not result.ok:
        _emit_result(result)
    if args.conversations:
        for name, thread in organize_conversations(result.data).items():
            print(f"== {name} ({len(thread)})")
            for message in thread:
                direction = ">" if message.is_from_me else "<"
                print(f"  {direction} {message.display_text}")
        return
    for message in result.data:
        sender = "me" if message.is_from_me else (message.contact_name or message.sender)
        print(f"{message.txid} {sender}: {message.display_text}")


def cmd_list_inscriptions(args: argparse.Namespace, config: InscribeConfig) -> None:
    result = _publisher(args, config).list_inscriptions(args.address)
    if not result.ok:
        _emit_result(result)
    for record in result.data:
        entry = {
            "txid": record.txid,
            "vout": record.vout,
            "content_type": record.display_type,
            "level": record.level,
            "size": len(record.content) if record.content is not None else None,
            "chunks": len(record.manifest.chunk_refs) if record.manifest else None,
            "error": record.error,
        }
        print(json.dumps(entry, separators=COMPACT_JSON_SEPARATORS))


def cmd_send_message(args: argparse.Namespace, config: InscribeConfig) -> None:
    publisher = _publisher(args, config)
    recipient = next(
        (contact.public_key for contact in publisher.contacts if contact.display_name == args.to),
        args.to,
    )
    _emit_result(publisher.send_message(recipient, args.text))


def cmd_reconstruct(args: argparse.Namespace, config: InscribeConfig) -> None:
    result = _publisher(args, config).reconstruct(args.manifest_txid)
    if not result.ok:
        _emit_result(result)
    Path(args.output).write_bytes(result.data)
    print(json.dumps({"path": args.output, "size": len(result.data)}))


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = _config_from_args(args)
        if args.command == "estimate-fee":
            cmd_estimate_fee(args, config)
        elif args.command == "address":
            print(_load_custody(args, config).address)
        elif args.command == "keygen":
            cmd_keygen(args, config)
        elif args.command == "rotate-key":
            cmd_rotate_key(args, config)
        elif args.command == "import-key":
            cmd_import_key(args, config)
        elif args.command == "show-segments":
            cmd_show_segments(args, config)
        elif args.command == "publish-text":
            publisher = _publisher(args, config, keys_required=args.level > 0)
            _emit_result(publisher.publish_text(args.text, args.level))
        elif args.command == "publish-file":
            publisher = _publisher(args, config, keys_required=args.level > 0)
            _emit_result(publisher.publish_file(args.path, args.level, args.content_type))
        elif args.command == "publish-profile":
            publisher = _publisher(args, config, keys_required=args.level > 0)
            profile = Profile.from_files(
                username=args.username,
                title=args.title,
                bio=args.bio,
                avatar_path=args.avatar,
                background_path=args.background,
            )
            _emit_result(publisher.publish_profile(profile, args.level))
        elif args.command == "send-message":
            cmd_send_message(args, config)
        elif args.command == "read-messages":
            cmd_read_messages(args, config)
        elif args.command == "list-inscriptions":
            cmd_list_inscriptions(args, config)
        elif args.command == "reconstruct":
            cmd_reconstruct(args, config)
        else:  # pragma: no cover - argparse enforces choices
            raise CLIError(f"Unknown command: {args.command}")
    except KeyboardInterrupt:  # pragma: no cover - interactive use
        logger.info("Interrupted by user")
    except (CLIError, InscribeError, OSError) as exc:
        parser.exit(1, f"error: {exc}\n")


if __name__ == "__main__":
    main(sys.argv[1:])
