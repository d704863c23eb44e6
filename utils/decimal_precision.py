#!/usr/bin/env python3
"""
Decimal Precision Utilities for Asset Amounts
Converts between integer base units and human-readable decimals.

Ledger and fee math only ever see integer base units; these helpers are used
at the presentation boundary (API input of human amounts, display strings).
"""

import logging
from decimal import Decimal, ROUND_FLOOR, InvalidOperation, getcontext
from typing import Union

from utils.constants import get_asset
from utils.exceptions import InvalidAmount

logger = logging.getLogger(__name__)

# Enough digits for 11-decimal assets with very large balances
getcontext().prec = 38


class MonetaryDecimal:
    """Base-unit / decimal conversions using each asset's fixed decimals"""

    @classmethod
    def to_decimal(cls, value: Union[str, int, Decimal], context: str = "amount") -> Decimal:
        """Convert a value to Decimal without passing through float"""
        if isinstance(value, Decimal):
            return value
        if isinstance(value, float):
            # str() keeps the shortest repr, avoiding binary float expansion
            value = str(value)
        try:
            return Decimal(value)
        except (InvalidOperation, TypeError, ValueError) as e:
            logger.error(f"Failed to convert {value!r} to Decimal in context {context}: {e}")
            raise InvalidAmount(f"Invalid {context}: {value!r}")

    @classmethod
    def to_base_units(cls, amount: Union[str, int, Decimal], asset_type: str) -> int:
        """Human amount -> base units, flooring any sub-unit dust"""
        asset = get_asset(asset_type)
        decimal_amount = cls.to_decimal(amount, f"{asset.symbol} amount")
        if not decimal_amount.is_finite():
            raise InvalidAmount(f"Invalid {asset.symbol} amount: {amount!r}")
        scaled = decimal_amount.scaleb(asset.decimals)
        return int(scaled.to_integral_value(rounding=ROUND_FLOOR))

    @classmethod
    def from_base_units(cls, units: int, asset_type: str) -> Decimal:
        asset = get_asset(asset_type)
        return Decimal(int(units)).scaleb(-asset.decimals)

    @classmethod
    def format_amount(cls, units: int, asset_type: str) -> str:
        """Display string with the asset's full precision, e.g. '0.500000000 SOL'"""
        asset = get_asset(asset_type)
        value = cls.from_base_units(units, asset.symbol)
        return f"{value:.{asset.decimals}f} {asset.symbol}"
