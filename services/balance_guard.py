#!/usr/bin/env python3
"""
BalanceGuard: Operator Account Preflight Check

Verifies that an operator-controlled funding account can cover a deposit or
withdrawal relay plus every fee before anything spends from it.

Requirements (native asset, lamports):
- deposit:  amount + protocol base fee + protocol percentage fee
            + network fee estimate + safety buffer
- withdraw: amount + safety buffer
            (withdrawal fees come out of the withdrawn amount itself)

For SPL-like assets the token balance covers the token-denominated part and
the native components (network fee, safety buffer) are checked against the
account's native balance when the caller supplies it.

The guard is read-only: it never mutates state and has no shared state, so
it may run with unlimited concurrency.
"""

import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Union

from config import Config
from services.fee_engine import FeeCalculator
from utils.constants import get_asset
from utils.decimal_precision import MonetaryDecimal
from utils.exceptions import InsufficientBalance, InvalidAmount

logger = logging.getLogger(__name__)


class BalanceOperation(Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


@dataclass
class BalanceRequirement:
    """Normalized requirement computed for one operation"""
    asset_type: str
    operation: str
    amount: int
    protocol_fee: int
    network_fee: int
    safety_buffer: int
    required: int
    available: int
    native_required: int = 0
    native_available: Optional[int] = None

    @property
    def shortfall(self) -> int:
        return max(0, self.required - self.available)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["shortfall"] = self.shortfall
        return data


class BalanceProvider(Protocol):
    """Protocol for account-balance lookups (RPC client, cache, test double)"""

    def get_balance(self, account: str, asset_type: str) -> int:
        """Current balance of ``account`` in the asset's base units"""
        ...


class BalanceGuard:
    """Preflight balance assertions for operator-funded operations"""

    def __init__(
        self,
        network_fee_lamports: Optional[int] = None,
        safety_buffer_lamports: Optional[int] = None,
    ):
        self.network_fee_lamports = (
            Config.NETWORK_FEE_ESTIMATE_LAMPORTS if network_fee_lamports is None else network_fee_lamports
        )
        self.safety_buffer_lamports = (
            Config.SAFETY_BUFFER_LAMPORTS if safety_buffer_lamports is None else safety_buffer_lamports
        )

    @staticmethod
    def _normalize_operation(operation: Union[str, BalanceOperation]) -> BalanceOperation:
        if isinstance(operation, BalanceOperation):
            return operation
        try:
            return BalanceOperation(str(operation).lower())
        except ValueError:
            raise ValueError(f"Unknown balance operation {operation!r}; expected 'deposit' or 'withdraw'")

    def required_balance(
        self,
        account_balance_units: int,
        operation_amount_units: int,
        asset_type: str,
        operation: Union[str, BalanceOperation],
        native_balance_lamports: Optional[int] = None,
    ) -> BalanceRequirement:
        """Compute what the account must hold for the operation (no assertion)"""
        op = self._normalize_operation(operation)
        asset = get_asset(asset_type)
        if isinstance(operation_amount_units, bool) or not isinstance(operation_amount_units, int) \
                or operation_amount_units <= 0:
            raise InvalidAmount(f"Operation amount must be a positive integer, got {operation_amount_units!r}")
        if account_balance_units < 0:
            raise ValueError("Account balance cannot be negative")

        protocol_fee = FeeCalculator.protocol_deposit_fee(operation_amount_units) if op == BalanceOperation.DEPOSIT else 0
        network_fee = self.network_fee_lamports if op == BalanceOperation.DEPOSIT else 0
        native_overhead = network_fee + self.safety_buffer_lamports

        if asset.is_native:
            required = operation_amount_units + protocol_fee + native_overhead
            native_required = 0
        else:
            required = operation_amount_units + protocol_fee
            native_required = native_overhead

        return BalanceRequirement(
            asset_type=asset.symbol,
            operation=op.value,
            amount=operation_amount_units,
            protocol_fee=protocol_fee,
            network_fee=network_fee,
            safety_buffer=self.safety_buffer_lamports,
            required=required,
            available=account_balance_units,
            native_required=native_required,
            native_available=native_balance_lamports,
        )

    def assert_sufficient_balance(
        self,
        account_balance_units: int,
        operation_amount_units: int,
        asset_type: str,
        operation: Union[str, BalanceOperation],
        native_balance_lamports: Optional[int] = None,
    ) -> BalanceRequirement:
        """
        Raise InsufficientBalance when the account cannot cover the operation.

        Returns the computed requirement when the check passes.
        """
        requirement = self.required_balance(
            account_balance_units, operation_amount_units, asset_type, operation, native_balance_lamports
        )

        if requirement.available < requirement.required:
            logger.warning(
                f"🚫 BALANCE_GUARD: {requirement.operation} of {requirement.amount} {requirement.asset_type} blocked - "
                f"required {requirement.required}, available {requirement.available}"
            )
            raise InsufficientBalance(
                f"Operator balance too low. Required: {MonetaryDecimal.format_amount(requirement.required, requirement.asset_type)}, "
                f"Available: {MonetaryDecimal.format_amount(requirement.available, requirement.asset_type)}",
                required=requirement.required,
                available=requirement.available,
            )

        if native_balance_lamports is not None and native_balance_lamports < requirement.native_required:
            logger.warning(
                f"🚫 BALANCE_GUARD: native fee float too low for {requirement.asset_type} {requirement.operation} - "
                f"required {requirement.native_required}, available {native_balance_lamports}"
            )
            raise InsufficientBalance(
                f"Operator SOL balance too low to pay network fees. Required: {requirement.native_required} lamports, "
                f"Available: {native_balance_lamports} lamports",
                required=requirement.native_required,
                available=native_balance_lamports,
            )

        logger.debug(f"✅ BALANCE_GUARD: {requirement.operation} check passed ({requirement.required}/{requirement.available})")
        return requirement

    def check_account(
        self,
        provider: BalanceProvider,
        account: str,
        operation_amount_units: int,
        asset_type: str,
        operation: Union[str, BalanceOperation],
    ) -> BalanceRequirement:
        """Look up the account balance(s) then assert"""
        asset = get_asset(asset_type)
        balance = provider.get_balance(account, asset.symbol)
        native_balance = None if asset.is_native else provider.get_balance(account, "SOL")
        return self.assert_sufficient_balance(balance, operation_amount_units, asset.symbol, operation, native_balance)
