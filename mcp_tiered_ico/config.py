import os
import logging
from typing import Optional
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from dotenv import load_dotenv

from mcp_tiered_ico.errors import ConfigurationError

"""
Configuration Management for the Tiered ICO Server

This module loads settings from environment variables (optionally through a .env
file) with defaults matching the reference deployment, and validates them at
import time so a misconfigured server fails before accepting any contribution.

Environment Variables:
    TOKEN_NAME: Display name of the issued token
    TOKEN_SYMBOL: Ticker of the issued token
    TOKEN_DECIMALS: Decimal places of the issued token (0-18)
    CONTRIBUTION_DECIMALS: Decimal places of the contributed currency (0-18)
    ISSUER_WALLET_SEED: Comma-separated seed bytes for the issuer (owner) wallet
    DEFAULT_RATE_TO_TARGET: Tokens per contributed unit below the base target
    DEFAULT_RATE_TO_CAP: Tokens per contributed unit between base target and cap
    DEFAULT_BASE_TARGET: Base target in whole contribution units
    DEFAULT_CAP: Sale cap in whole contribution units
    DEFAULT_DURATION_DAYS: Sale duration in days
    TIMELOCK_RELEASE_DELAY_DAYS: Days after which locked tokens may be released
    RATE_LIMIT_PER_MINUTE: Deposits allowed per contributor per minute
    HOLDING_ADDRESS: Default address receiving forwarded contributions
    SALE_STATE_DIR: Directory holding persisted sale deployments
"""

logger = logging.getLogger(__name__)

load_dotenv()


def _get_env_str(key: str, default: str, required: bool = False) -> str:
    """Get environment variable as string with validation."""
    value = os.getenv(key, default)
    if required and not value:
        raise ConfigurationError(f"Required environment variable {key} is not set")
    return value


def _get_env_int(key: str, default: int, min_val: Optional[int] = None, max_val: Optional[int] = None) -> int:
    """Get environment variable as integer with validation."""
    try:
        value = int(os.getenv(key, str(default)))
    except ValueError:
        raise ConfigurationError(f"Environment variable {key} must be a valid integer")
    if min_val is not None and value < min_val:
        raise ConfigurationError(f"Environment variable {key} must be >= {min_val}")
    if max_val is not None and value > max_val:
        raise ConfigurationError(f"Environment variable {key} must be <= {max_val}")
    return value


def _get_env_pubkey(key: str, default: str) -> Pubkey:
    """Get environment variable as Pubkey with validation."""
    try:
        value = os.getenv(key, default)
        return Pubkey.from_string(value)
    except Exception as e:
        raise ConfigurationError(f"Environment variable {key} must be a valid public key: {e}")


def _load_issuer_wallet() -> Keypair:
    """Load the issuer wallet from environment with validation."""
    seed_str = os.getenv("ISSUER_WALLET_SEED", ",".join(["1"] * 32))

    try:
        seed_parts = [x.strip() for x in seed_str.split(",")]
        if len(seed_parts) != 32:
            raise ValueError(f"ISSUER_WALLET_SEED must contain exactly 32 comma-separated integers, got {len(seed_parts)}")

        wallet = Keypair.from_seed(bytes([int(x) for x in seed_parts]))
        logger.info(f"Successfully loaded issuer wallet: {wallet.pubkey()}")
        return wallet

    except (ValueError, TypeError) as e:
        logger.warning(f"Error loading ISSUER_WALLET_SEED: {e}. Using a default insecure seed for development.")
        return Keypair.from_seed(bytes([1] * 32))


# The all-zero public key stands in for the null address.
ZERO_ADDRESS = Pubkey.default()

# Fixed share of tier-one issuance reserved for the issuer in the timelock.
LOCKED_BONUS_PERCENT = 10

SECONDS_PER_DAY = 24 * 60 * 60

try:
    # --- Token Configuration ---
    TOKEN_NAME = _get_env_str("TOKEN_NAME", "ESG Token", required=True)
    TOKEN_SYMBOL = _get_env_str("TOKEN_SYMBOL", "ESG", required=True)
    TOKEN_DECIMALS = _get_env_int("TOKEN_DECIMALS", 3, min_val=0, max_val=18)
    CONTRIBUTION_DECIMALS = _get_env_int("CONTRIBUTION_DECIMALS", 18, min_val=0, max_val=18)

    # --- Issuer Wallet ---
    ISSUER_WALLET = _load_issuer_wallet()
    DEFAULT_HOLDING_ADDRESS = _get_env_pubkey("HOLDING_ADDRESS", str(ISSUER_WALLET.pubkey()))

    # --- Default Sale Parameters (whole units) ---
    DEFAULT_RATE_TO_TARGET = _get_env_int("DEFAULT_RATE_TO_TARGET", 300, min_val=1)
    DEFAULT_RATE_TO_CAP = _get_env_int("DEFAULT_RATE_TO_CAP", 100, min_val=1)
    DEFAULT_BASE_TARGET = _get_env_int("DEFAULT_BASE_TARGET", 18620, min_val=1)
    DEFAULT_CAP = _get_env_int("DEFAULT_CAP", 172414, min_val=1)
    DEFAULT_DURATION_DAYS = _get_env_int("DEFAULT_DURATION_DAYS", 31, min_val=1)
    TIMELOCK_RELEASE_DELAY_DAYS = _get_env_int("TIMELOCK_RELEASE_DELAY_DAYS", 365, min_val=0)

    # --- Rate Limiting ---
    RATE_LIMIT_PER_MINUTE = _get_env_int("RATE_LIMIT_PER_MINUTE", 10, min_val=1, max_val=1000)

    # --- Directories ---
    SALE_STATE_DIR = _get_env_str("SALE_STATE_DIR", "sale_states")

    logger.info("Configuration loaded successfully")

except ConfigurationError as e:
    logger.error(f"Configuration error: {e}")
    raise
except Exception as e:
    logger.error(f"Unexpected error loading configuration: {e}")
    raise ConfigurationError(f"Failed to load configuration: {e}")
