"""Configuration management for the payment link ledger"""

import os
import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, Any

logger = logging.getLogger(__name__)


def _validate_percentage(env_var: str, default: str, min_val: float = 0.0, max_val: float = 50.0) -> Decimal:
    """Validate a fee percentage with bounds checking"""
    value_str = os.getenv(env_var, default)
    try:
        percentage = Decimal(value_str)
    except (InvalidOperation, TypeError) as e:
        logger.error(f"❌ Invalid {env_var} value '{value_str}': {e}. Using default {default}%")
        return Decimal(default)

    if percentage < Decimal(str(min_val)):
        logger.error(f"❌ {env_var}={percentage}% is below minimum {min_val}%. Using default {default}%")
        return Decimal(default)

    if percentage > Decimal(str(max_val)):
        logger.error(f"❌ {env_var}={percentage}% exceeds maximum {max_val}%. Using default {default}%")
        return Decimal(default)

    return percentage


def _validate_int(env_var: str, default: int, min_val: int = 0) -> int:
    """Read a non-negative integer (base units, counts) from the environment"""
    value_str = os.getenv(env_var)
    if value_str is None or value_str.strip() == "":
        return default
    try:
        value = int(value_str.replace("_", ""))
    except ValueError:
        logger.error(f"❌ Invalid {env_var} value '{value_str}'. Using default {default}")
        return default

    if value < min_val:
        logger.error(f"❌ {env_var}={value} is below minimum {min_val}. Using default {default}")
        return default
    return value


class Config:
    """Application configuration"""

    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"

    PLATFORM_NAME = os.getenv("PLATFORM_NAME", "ShadowPay")

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./payment_links.db")
    DATABASE_ECHO = os.getenv("DATABASE_ECHO", "false").lower() == "true"
    # Seconds a SQLite writer waits for a competing writer before failing
    SQLITE_BUSY_TIMEOUT = _validate_int("SQLITE_BUSY_TIMEOUT", 30, min_val=1)

    # HTTP server
    PORT = _validate_int("PORT", 3001, min_val=1)
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Network
    SOLANA_NETWORK = os.getenv("SOLANA_NETWORK", "mainnet-beta")
    OPERATOR_ADDRESS = os.getenv("OPERATOR_ADDRESS") or os.getenv("OPERATOR_PUBKEY")

    # Withdrawal fees charged by the shielded-pool relayer (taken from the withdrawn amount)
    WITHDRAW_BASE_FEE_LAMPORTS = _validate_int("WITHDRAW_BASE_FEE_LAMPORTS", 6_000_000)  # 0.006 SOL
    WITHDRAW_FEE_PERCENTAGE = _validate_percentage("WITHDRAW_FEE_PERCENTAGE", "0.35", 0.0, 10.0)

    # Operator fee taken from the gross deposit before the remainder enters the pool
    OWNER_FEE_PERCENTAGE = _validate_percentage("OWNER_FEE_PERCENTAGE", "1.0", 0.0, 20.0)

    # Deposit-side protocol fees (the pool currently charges none)
    DEPOSIT_BASE_FEE_LAMPORTS = _validate_int("DEPOSIT_BASE_FEE_LAMPORTS", 0)
    DEPOSIT_FEE_PERCENTAGE = _validate_percentage("DEPOSIT_FEE_PERCENTAGE", "0", 0.0, 10.0)

    # Operator account protection
    NETWORK_FEE_ESTIMATE_LAMPORTS = _validate_int("NETWORK_FEE_ESTIMATE_LAMPORTS", 5_000)
    SAFETY_BUFFER_LAMPORTS = _validate_int("SAFETY_BUFFER_LAMPORTS", 10_000_000)  # 0.01 SOL

    # Non-custodial spend key encryption
    # Changing the salt invalidates every previously encrypted spend key
    KEY_DERIVATION_SALT = os.getenv("KEY_DERIVATION_SALT", "shadowpay-v1-encryption")
    KEY_DERIVATION_ITERATIONS = _validate_int("KEY_DERIVATION_ITERATIONS", 100_000, min_val=100_000)

    # Query limits
    LINK_HISTORY_LIMIT = _validate_int("LINK_HISTORY_LIMIT", 100, min_val=1)

    @staticmethod
    def public_fee_config() -> Dict[str, Any]:
        """Fee structure exposed to clients (no secrets)"""
        return {
            "network": Config.SOLANA_NETWORK,
            "operatorAddress": Config.OPERATOR_ADDRESS or "NOT_CONFIGURED",
            "fees": {
                "depositFeeLamports": Config.DEPOSIT_BASE_FEE_LAMPORTS,
                "depositFeePercent": str(Config.DEPOSIT_FEE_PERCENTAGE),
                "ownerFeePercent": str(Config.OWNER_FEE_PERCENTAGE),
                "withdrawBaseFeeLamports": Config.WITHDRAW_BASE_FEE_LAMPORTS,
                "withdrawFeePercent": str(Config.WITHDRAW_FEE_PERCENTAGE),
                "note": "Withdrawal fees are charged when the recipient claims the link",
            },
        }

    @staticmethod
    def log_environment_config():
        """Log current environment configuration for debugging"""
        logger.info("🔧 Payment Link Configuration:")
        logger.info(f"   Environment: {Config.ENVIRONMENT.upper()}")
        logger.info(f"   Network: {Config.SOLANA_NETWORK}")
        # Never log credentials embedded in the URL
        logger.info(f"   Database: {Config.DATABASE_URL.split('@')[-1]}")
        logger.info(
            f"   Withdraw fee: {Config.WITHDRAW_BASE_FEE_LAMPORTS} lamports + {Config.WITHDRAW_FEE_PERCENTAGE}%"
        )
        logger.info(f"   Owner fee: {Config.OWNER_FEE_PERCENTAGE}%")
        if not Config.OPERATOR_ADDRESS:
            logger.warning("⚠️ OPERATOR_ADDRESS not configured")
