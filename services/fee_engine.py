"""
Fee Accounting Engine
Pure fee calculations for payment link deposits and withdrawals.

All amounts are integers in the asset's base units. Rates are Decimal
percentages from Config and every fee is floored, so rounding always favours
the protocol and no unit is created or destroyed.
"""

import logging
from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_FLOOR
from typing import Dict

from config import Config
from utils.constants import NATIVE_ASSET, get_asset
from utils.decimal_precision import MonetaryDecimal
from utils.exceptions import AmountTooSmallForFees, InvalidAmount

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class FeeBreakdown:
    """Withdrawal fee breakdown for a gross amount"""
    base_fee: int
    percentage_fee: int
    total_fee: int
    net_amount: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class DepositSplit:
    """Operator fee and pool remainder for a gross deposit"""
    owner_fee_units: int
    pool_amount_units: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def _require_units(amount_units) -> int:
    # bool is an int subclass; reject it along with floats and strings
    if isinstance(amount_units, bool) or not isinstance(amount_units, int):
        raise InvalidAmount(f"Amount must be an integer number of base units, got {amount_units!r}")
    if amount_units <= 0:
        raise InvalidAmount(f"Amount must be greater than 0, got {amount_units}")
    return amount_units


def _percentage_of(amount_units: int, percentage: Decimal) -> int:
    return int((Decimal(amount_units) * percentage / HUNDRED).to_integral_value(rounding=ROUND_FLOOR))


class FeeCalculator:
    """Handles all fee-related calculations with integer precision"""

    @classmethod
    def withdraw_base_fee(cls, asset_type: str) -> int:
        """
        Fixed relay charge in the asset's own units.

        The relay fee is native-denominated, so only native withdrawals pay it
        out of the amount. SPL withdrawals pay the percentage only; their
        native rent is floated by the relayer account.
        """
        asset = get_asset(asset_type)
        return Config.WITHDRAW_BASE_FEE_LAMPORTS if asset.symbol == NATIVE_ASSET else 0

    @classmethod
    def compute_fee(cls, amount_units: int, asset_type: str) -> FeeBreakdown:
        """
        Calculate the withdrawal fee breakdown for a gross amount.

        Raises:
            InvalidAmount: amount is not a positive integer
            AmountTooSmallForFees: fees would consume the whole amount
        """
        amount_units = _require_units(amount_units)
        base_fee = cls.withdraw_base_fee(asset_type)
        percentage_fee = _percentage_of(amount_units, Config.WITHDRAW_FEE_PERCENTAGE)
        total_fee = base_fee + percentage_fee
        net_amount = amount_units - total_fee

        if net_amount <= 0:
            raise AmountTooSmallForFees(
                f"Amount {amount_units} is too small to cover fees of {total_fee} ({asset_type})",
                amount_units=amount_units,
                total_fee=total_fee,
            )

        return FeeBreakdown(
            base_fee=base_fee,
            percentage_fee=percentage_fee,
            total_fee=total_fee,
            net_amount=net_amount,
        )

    @classmethod
    def compute_deposit_split(cls, gross_amount_units: int) -> DepositSplit:
        """Split a gross deposit into the operator fee and the amount entering the pool"""
        gross_amount_units = _require_units(gross_amount_units)
        owner_fee = _percentage_of(gross_amount_units, Config.OWNER_FEE_PERCENTAGE)
        return DepositSplit(owner_fee_units=owner_fee, pool_amount_units=gross_amount_units - owner_fee)

    @classmethod
    def protocol_deposit_fee(cls, amount_units: int) -> int:
        """Base plus percentage protocol fee charged on a deposit"""
        amount_units = _require_units(amount_units)
        return Config.DEPOSIT_BASE_FEE_LAMPORTS + _percentage_of(amount_units, Config.DEPOSIT_FEE_PERCENTAGE)

    @classmethod
    def format_fee_estimate(cls, amount_units: int, asset_type: str) -> Dict[str, str]:
        """Human-readable fee estimate for display"""
        fees = cls.compute_fee(amount_units, asset_type)
        symbol = get_asset(asset_type).symbol
        return {
            "grossAmount": MonetaryDecimal.format_amount(amount_units, symbol),
            "baseFee": MonetaryDecimal.format_amount(fees.base_fee, symbol),
            "percentageFee": MonetaryDecimal.format_amount(fees.percentage_fee, symbol),
            "totalFee": MonetaryDecimal.format_amount(fees.total_fee, symbol),
            "netAmount": MonetaryDecimal.format_amount(fees.net_amount, symbol),
            "percentageLabel": f"{Config.WITHDRAW_FEE_PERCENTAGE.normalize()}%",
        }
