"""Utility functions for handling ticker symbols."""

from integrations.coingecko_client import KNOWN_COIN_IDS

CRYPTO_ASSET_TYPES = frozenset({"crypto", "cryptocurrency"})


def normalize_symbol(symbol: str) -> str:
    """Canonical form used for storage and lookups."""
    return symbol.strip().upper()


def is_crypto_symbol(symbol: str, asset_type: str | None = None) -> bool:
    """Decide whether ``symbol`` should be priced by the crypto oracle.

    An explicit ``asset_type`` wins. Otherwise symbols in the known
    CoinGecko id map, or quoted as ``XXX-USD``, are treated as crypto.
    """
    if asset_type:
        return asset_type.lower() in CRYPTO_ASSET_TYPES
    upper = normalize_symbol(symbol)
    if upper.endswith("-USD"):
        return True
    return upper in KNOWN_COIN_IDS
