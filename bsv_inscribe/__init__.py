"""Inscribe content, tiered-encrypted posts and peer messages on BSV."""

from .bcat import ChunkManifest, reconstruct, split_chunks
from .encryption import (
    EncryptionEnvelope,
    KeyHistory,
    KeyMaterial,
    decrypt_envelope,
    decrypt_with_key_material,
    encrypt_for_level,
)
from .errors import (
    CooldownActive,
    DecryptionError,
    EncodingError,
    EncryptionError,
    InscribeError,
    InsufficientFunds,
    NetworkError,
    ReconstructionError,
    SizeLimitExceeded,
)
from .fees import FeeEstimate, estimate_transaction_fee
from .keys import KeyCustody, LocalKeyCustody
from .messaging import PeerMessage, organize_conversations
from .publisher import OperationResult, Publisher
from .script import InscriptionPayload, build_inscription_script, decode_inscription_script
from .tx_builder import SpendableOutput, TransactionBuilder, UTXOManager

__all__ = [
    "ChunkManifest",
    "reconstruct",
    "split_chunks",
    "EncryptionEnvelope",
    "KeyHistory",
    "KeyMaterial",
    "decrypt_envelope",
    "decrypt_with_key_material",
    "encrypt_for_level",
    "CooldownActive",
    "DecryptionError",
    "EncodingError",
    "EncryptionError",
    "InscribeError",
    "InsufficientFunds",
    "NetworkError",
    "ReconstructionError",
    "SizeLimitExceeded",
    "FeeEstimate",
    "estimate_transaction_fee",
    "KeyCustody",
    "LocalKeyCustody",
    "PeerMessage",
    "organize_conversations",
    "OperationResult",
    "Publisher",
    "InscriptionPayload",
    "build_inscription_script",
    "decode_inscription_script",
    "SpendableOutput",
    "TransactionBuilder",
    "UTXOManager",
]
