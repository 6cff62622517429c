"""Fee estimation and fee-rate selection for BSV inscription transactions.

Fees are expressed in satoshis per kilobyte. Transaction sizes are estimated
from a fixed per-component model rather than from a serialized transaction so
that selection can run before any input is signed.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any

from .errors import NetworkError, SizeLimitExceeded

logger = logging.getLogger(__name__)

MAX_TX_SIZE = 5 * 1024 * 1024
SAFE_TX_SIZE = int(4.95 * 1024 * 1024)
DEFAULT_FEE_RATE_PER_KB = 1.0

TX_FIXED_OVERHEAD = 10
P2PKH_INPUT_SIZE = 148
OUTPUT_SIZE = 34
ENCODING_OVERHEAD = 20

# Smallest transaction the estimator can describe: one input, one output.
MIN_TX_OVERHEAD = TX_FIXED_OVERHEAD + P2PKH_INPUT_SIZE + OUTPUT_SIZE + ENCODING_OVERHEAD


@dataclass(frozen=True)
class FeeEstimate:
    """Result of a size/fee estimate."""

    estimated_size: int
    fee: int
    remaining_capacity: int

    @property
    def fits(self) -> bool:
        return self.remaining_capacity >= 0


def estimate_transaction_size(num_inputs: int, num_outputs: int, data_size: int) -> int:
    """Return the estimated serialized size in bytes."""

    if num_inputs < 0 or num_outputs < 0 or data_size < 0:
        raise ValueError("Input count, output count and data size must be non-negative")
    return (
        TX_FIXED_OVERHEAD
        + P2PKH_INPUT_SIZE * num_inputs
        + OUTPUT_SIZE * num_outputs
        + ENCODING_OVERHEAD
        + data_size
    )


def calculate_fee_sats(size: int, fee_rate_per_kb: float) -> int:
    """Return the ceil'd fee in satoshis, never below one satoshi."""

    return max(1, int(math.ceil(size / 1000 * fee_rate_per_kb)))


def estimate_transaction_fee(
    num_inputs: int,
    num_outputs: int,
    data_size: int,
    fee_rate_per_kb: float = DEFAULT_FEE_RATE_PER_KB,
) -> FeeEstimate:
    """Estimate size, fee and remaining capacity for a transaction shape."""

    size = estimate_transaction_size(num_inputs, num_outputs, data_size)
    return FeeEstimate(
        estimated_size=size,
        fee=calculate_fee_sats(size, fee_rate_per_kb),
        remaining_capacity=MAX_TX_SIZE - size,
    )


def validate_transaction_size(size: int) -> None:
    """Raise :class:`SizeLimitExceeded` when ``size`` is above the hard cap."""

    if size > MAX_TX_SIZE:
        raise SizeLimitExceeded(size, MAX_TX_SIZE)
    if size > SAFE_TX_SIZE:
        logger.warning(
            "Transaction size %d bytes is close to the %d byte limit", size, MAX_TX_SIZE
        )


@dataclass(frozen=True)
class ChunkedFeeEstimate:
    """Aggregate fee for an upload split across several transactions."""

    chunk_count: int
    chunk_fees: tuple[int, ...]
    manifest_fee: int

    @property
    def total_fee(self) -> int:
        return sum(self.chunk_fees) + self.manifest_fee


def estimate_chunked_fees(
    total_size: int,
    chunk_size: int,
    fee_rate_per_kb: float = DEFAULT_FEE_RATE_PER_KB,
    *,
    manifest_size: int = 1024,
) -> ChunkedFeeEstimate:
    """Estimate fees for a chunked upload.

    Each chunk is assumed to spend one input and carry the inscription plus a
    change output. The manifest estimate uses ``manifest_size`` bytes of data.
    """

    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    chunk_fees = []
    remaining = total_size
    while remaining > 0:
        size = min(chunk_size, remaining)
        chunk_fees.append(estimate_transaction_fee(1, 2, size, fee_rate_per_kb).fee)
        remaining -= size
    manifest_fee = estimate_transaction_fee(1, 2, manifest_size, fee_rate_per_kb).fee
    return ChunkedFeeEstimate(
        chunk_count=len(chunk_fees),
        chunk_fees=tuple(chunk_fees),
        manifest_fee=manifest_fee,
    )


@dataclass
class FeeSelectionResult:
    """Container for fee-rate decisions."""

    fee_rate_per_kb: float
    source: str
    estimate: FeeEstimate | None = None

    def with_shape(self, num_inputs: int, num_outputs: int, data_size: int) -> "FeeSelectionResult":
        return FeeSelectionResult(
            fee_rate_per_kb=self.fee_rate_per_kb,
            source=self.source,
            estimate=estimate_transaction_fee(
                num_inputs, num_outputs, data_size, self.fee_rate_per_kb
            ),
        )


def select_fee_rate(
    ledger: Any,
    *,
    user_fee_rate_per_kb: float | None = None,
    fallback_fee_rate_per_kb: float | None = None,
    min_fee_rate_per_kb: float = DEFAULT_FEE_RATE_PER_KB,
) -> FeeSelectionResult:
    """Select a fee rate, preferring explicit input over the network estimate.

    A failed network lookup never fails the operation: the fallback rate is
    used instead.
    """

    fallback = (
        float(fallback_fee_rate_per_kb)
        if fallback_fee_rate_per_kb is not None
        else DEFAULT_FEE_RATE_PER_KB
    )

    if user_fee_rate_per_kb is not None:
        logger.info("Using user-specified fee rate %.3f sat/KB", user_fee_rate_per_kb)
        return FeeSelectionResult(fee_rate_per_kb=float(user_fee_rate_per_kb), source="user")

    if ledger is None:
        return FeeSelectionResult(fee_rate_per_kb=fallback, source="fallback")

    try:
        network_rate = float(ledger.estimate_network_fee_rate())
    except (NetworkError, TypeError, ValueError) as exc:
        logger.warning("Fee rate lookup failed (%s); using fallback %.3f sat/KB", exc, fallback)
        return FeeSelectionResult(fee_rate_per_kb=fallback, source="fallback")

    rate = max(network_rate, min_fee_rate_per_kb)
    logger.debug("Network fee rate %.3f sat/KB (floor %.3f)", network_rate, min_fee_rate_per_kb)
    return FeeSelectionResult(fee_rate_per_kb=rate, source="network")
