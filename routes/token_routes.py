"""
Token Routes
Supported asset listing, per-token info and withdrawal fee estimates
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Union

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field

from services.fee_engine import FeeCalculator
from utils.constants import AssetInfo, get_asset, get_asset_by_mint, is_supported_asset, list_assets
from utils.decimal_precision import MonetaryDecimal
from utils.exceptions import InvalidRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tokens", tags=["tokens"])


class FeeEstimateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    asset_type: Optional[str] = Field(None, alias="assetType")
    mint_address: Optional[str] = Field(None, alias="mintAddress")
    # Human amount ("1.25"); kept as a string so no float rounding happens
    amount: Optional[Union[str, int, float]] = None
    base_units: Optional[int] = Field(None, alias="baseUnits")


def _resolve_asset(symbol_or_mint: str) -> AssetInfo:
    if is_supported_asset(symbol_or_mint):
        return get_asset(symbol_or_mint)
    return get_asset_by_mint(symbol_or_mint)


@router.get("")
def get_tokens():
    """Supported assets with their decimals and fee labels"""
    return {"tokens": [asset.to_dict() for asset in list_assets()]}


@router.get("/info/{symbol_or_mint}")
def get_token_info(symbol_or_mint: str):
    asset = _resolve_asset(symbol_or_mint)
    return {**asset.to_dict(), "timestamp": datetime.now(timezone.utc).isoformat()}


@router.post("/fee-estimate")
def estimate_fee(body: FeeEstimateRequest):
    """
    Withdrawal fee estimate for an arbitrary amount.

    Either ``baseUnits`` or a human ``amount`` is required; the asset is
    named by ``assetType`` or ``mintAddress``.
    """
    if not body.asset_type and not body.mint_address:
        raise InvalidRequest("Either assetType or mintAddress must be provided")
    if body.base_units is None and body.amount in (None, ""):
        raise InvalidRequest("Either amount or baseUnits must be provided")

    asset = _resolve_asset(body.asset_type or body.mint_address)
    if body.base_units is not None:
        units = body.base_units
    else:
        units = MonetaryDecimal.to_base_units(str(body.amount), asset.symbol)

    fees = FeeCalculator.compute_fee(units, asset.symbol)
    return {
        "assetType": asset.symbol,
        "mint": asset.mint,
        "amount": units,
        "baseFee": fees.base_fee,
        "percentageFee": fees.percentage_fee,
        "totalFee": fees.total_fee,
        "netAmount": fees.net_amount,
        "display": FeeCalculator.format_fee_estimate(units, asset.symbol),
    }
