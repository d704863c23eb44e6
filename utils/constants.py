"""Supported assets and their fixed decimal precision"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from utils.exceptions import UnsupportedAsset

NATIVE_ASSET = "SOL"
LAMPORTS_PER_SOL = 1_000_000_000


@dataclass(frozen=True)
class AssetInfo:
    symbol: str
    name: str
    decimals: int
    mint: Optional[str] = None  # None for the native asset
    deposit_fee_label: str = "Free"
    withdrawal_fee_label: str = "0.35%"

    @property
    def is_native(self) -> bool:
        return self.mint is None

    def to_dict(self) -> Dict[str, object]:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "mint": self.mint,
            "decimals": self.decimals,
            "depositFee": self.deposit_fee_label,
            "withdrawalFee": self.withdrawal_fee_label,
        }


SUPPORTED_ASSETS: Dict[str, AssetInfo] = {
    "SOL": AssetInfo("SOL", "Solana", 9, withdrawal_fee_label="0.006 SOL + 0.35%"),
    "USDC": AssetInfo("USDC", "USD Coin", 6, mint="EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"),
    "USDT": AssetInfo("USDT", "Tether USD", 6, mint="Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"),
    "ZEC": AssetInfo("ZEC", "Zcash", 8, mint="A7bdiYdS5GjqGFtxf17ppRHtDKPkkRqbKtR27dxvQXaS"),
    "ORE": AssetInfo("ORE", "ORE", 11, mint="oreoU2P8bN6jkk3jbaiVxYnG1dCXcYxwhwyK9jSybcp"),
    "STORE": AssetInfo("STORE", "STORE", 11, mint="sTorERYB6xAZ1SSbwpK3zoK2EEwbBrc7TZAzg1uCGiH"),
}


def is_supported_asset(symbol: Optional[str]) -> bool:
    return bool(symbol) and symbol.upper() in SUPPORTED_ASSETS


def get_asset(symbol: Optional[str]) -> AssetInfo:
    """Look up an asset by symbol (case-insensitive)"""
    if not is_supported_asset(symbol):
        raise UnsupportedAsset(f"Asset {symbol!r} is not supported")
    return SUPPORTED_ASSETS[symbol.upper()]


def get_asset_by_mint(mint: str) -> AssetInfo:
    for asset in SUPPORTED_ASSETS.values():
        if asset.mint == mint:
            return asset
    raise UnsupportedAsset(f"No supported asset with mint {mint}")


def list_assets() -> List[AssetInfo]:
    return list(SUPPORTED_ASSETS.values())
