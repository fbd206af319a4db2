"""Constants and token metadata for private swap orchestration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

from ...providers.solana import NATIVE_SOL_MINT
from ..resilience.errors import ValidationError


@dataclass(frozen=True)
class TokenMetadata:
    symbol: str
    decimals: int
    name: str
    address: str = ""


SOL_MINT = NATIVE_SOL_MINT
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
WAVE_MINT = "4AGxpKxYnw7g1ofvYDs5Jq2a1ek5kB9jS2NTUaippump"

# Minimal Solana token registry keyed by mint address.
TOKEN_REGISTRY: Dict[str, TokenMetadata] = {
    SOL_MINT: TokenMetadata(symbol="SOL", decimals=9, name="Solana", address=SOL_MINT),
    USDC_MINT: TokenMetadata(symbol="USDC", decimals=6, name="USD Coin", address=USDC_MINT),
    WAVE_MINT: TokenMetadata(symbol="WAVE", decimals=9, name="Wave", address=WAVE_MINT),
}

DEFAULT_SLIPPAGE_BPS = 50
MAX_SLIPPAGE_BPS = 10_000

# Advisory (min, max) seconds per step kind. Display only, never a timeout.
STEP_DURATIONS: Dict[str, Tuple[int, int]] = {
    "deposit": (30, 60),
    "quote": (5, 10),
    "swap": (120, 300),
    "status_poll": (120, 300),
    "withdraw": (30, 60),
}


def resolve_token_metadata(address: str) -> TokenMetadata:
    """Default token resolver backed by the static registry."""
    metadata = TOKEN_REGISTRY.get(address)
    if metadata is None:
        raise ValidationError(f"Unknown token mint: {address}")
    return metadata
