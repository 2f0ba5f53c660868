"""
Tiered ICO Server - MCP Server Implementation

This module exposes the tiered sale engine as MCP tools. Each tool call maps to one
engine operation, which either commits entirely or is rolled back; the tool then
persists the deployment and reports the outcome as a user-facing string.

Tools:
- create_sale: deploy a ledger/timelock/engine bundle and set the sale parameters
- get_sale_info: current parameters, state, supply cap plan and balances
- compute_supply_cap / start_sale / close_sale: issuer lifecycle transitions
- record_payment: credit funds received for a contributor
- deposit: contribute funds and receive tokens at the tiered rates
- get_token_balance: token balance of an address
- release_locked_tokens: release the timelocked allocation to its beneficiary

Security Features:
- Input validation and size limits on every argument
- Deposit rate limiting per contributor address
- Error messages never include stack traces or internal state

License: MIT-0
"""

import json
import time

from pydantic import Field, ValidationError
from solders.pubkey import Pubkey

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.utilities.logging import get_logger

from mcp_tiered_ico import rate_limiter
from mcp_tiered_ico import sale_manager
from mcp_tiered_ico.config import SECONDS_PER_DAY, TIMELOCK_RELEASE_DELAY_DAYS
from mcp_tiered_ico.errors import RateLimitExceededError, SaleError
from mcp_tiered_ico.errors import ValidationError as SaleValidationError
from mcp_tiered_ico.schemas import SaleConfigModel

# Constants
MAX_SALE_ID_LENGTH = 100
MAX_CONFIG_JSON_LENGTH = 10000
MAX_CONTRIBUTION_AMOUNT = 2**256 - 1

logger = get_logger(__name__)

# --- Server Setup ---
mcp = FastMCP(name="Tiered ICO Server")


# --- Helper Functions ---

def validate_sale_id(sale_id: str) -> None:
    if not sale_id or not isinstance(sale_id, str):
        raise ValueError("Sale ID must be a non-empty string")
    if len(sale_id) > MAX_SALE_ID_LENGTH:
        raise ValueError("Sale ID is too long")


def parse_address(value: str, name: str) -> Pubkey:
    if not value or not isinstance(value, str):
        raise ValueError(f"{name} must be a non-empty base58 address")
    try:
        return Pubkey.from_string(value)
    except ValueError:
        raise ValueError(f"{name} is not a valid address")


def validate_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValueError("Amount must be a positive integer")
    if amount > MAX_CONTRIBUTION_AMOUNT:
        raise ValueError("Amount is too large")


def lookup_sale(sale_id: str) -> sale_manager.SaleDeployment:
    validate_sale_id(sale_id)
    deployment = sale_manager.get_sale(sale_id)
    if deployment is None:
        raise LookupError(f"Sale with id {sale_id} not found.")
    return deployment


def format_token_amount(amount: int, decimals: int, symbol: str) -> str:
    """Format token amount with proper decimal places and symbol."""
    token_amount_ui = amount / (10 ** decimals)
    return f"{token_amount_ui:.{decimals}f} {symbol}"


def log_operation_error(operation: str, sale_id: str, error: Exception, duration: float) -> None:
    """Log operation error with structured information."""
    logger.error(f"{operation} failed for sale '{sale_id}': {error}, duration: {duration:.3f}s")


def handle_error(operation: str, sale_id: str, error: Exception, start_time: float) -> str:
    """Maps an exception raised by a tool to the message returned to the client."""
    duration = time.time() - start_time
    if isinstance(error, RateLimitExceededError):
        return str(error)
    if isinstance(error, LookupError):
        logger.warning(str(error))
        return str(error)
    if isinstance(error, (SaleError, SaleValidationError)):
        log_operation_error(operation, sale_id, error, duration)
        return f"Error: {type(error).__name__}: {error}"
    if isinstance(error, ValueError):
        log_operation_error(operation, sale_id, error, duration)
        return f"Error: {error}"
    logger.exception(f"Unexpected error during {operation} for sale '{sale_id}': {error}")
    return "An unexpected server error occurred"


# --- MCP Tools ---

@mcp.tool()
async def create_sale(context: Context, config_json: str = Field(..., description="The sale configuration as a JSON string.")) -> str:
    """Deploys a new sale from a JSON configuration and sets its parameters."""
    start_time = time.time()
    sale_id = "<unknown>"
    try:
        if not config_json or not isinstance(config_json, str):
            raise ValueError("Configuration JSON must be a non-empty string")
        if len(config_json) > MAX_CONFIG_JSON_LENGTH:
            raise ValueError("Configuration JSON is too large (max 10KB)")

        sale_config = SaleConfigModel.model_validate(json.loads(config_json))
        sale = sale_config.sale
        sale_id = sale.sale_id
        validate_sale_id(sale_id)
        release_time = sale_config.timelock.release_time
        if release_time is None:
            release_time = int(time.time()) + TIMELOCK_RELEASE_DELAY_DAYS * SECONDS_PER_DAY

        deployment = sale_manager.deploy_sale(
            sale_id,
            owner=sale.owner,
            token_name=sale_config.token.name,
            token_symbol=sale_config.token.symbol,
            token_decimals=sale_config.token.decimals,
            timelock_beneficiary=sale_config.timelock.beneficiary,
            timelock_release_time=release_time,
            contribution_decimals=sale_config.contribution_decimals,
        )
        try:
            deployment.engine.set_parameters(
                sale.owner,
                deployment.ledger.address,
                sale.rate_to_target,
                sale.rate_to_cap,
                sale.base_target,
                sale.cap,
                sale.holding_address,
                sale.duration_days,
            )
        except SaleError:
            del sale_manager.sales[sale_id]
            raise

        sale_manager.save_sale(sale_id)
        logger.info(f"Sale '{sale_id}' created successfully")
        return f"Sale '{sale_id}' created successfully. Token ledger: {deployment.ledger.address}"

    except json.JSONDecodeError as e:
        logger.error(f"Error decoding JSON for create_sale request: {e}")
        return "Error: Invalid JSON format provided. Please check your JSON syntax."
    except ValidationError as e:
        logger.error(f"Invalid sale configuration provided to create_sale: {e}")
        return f"Error: Invalid sale configuration - {e}"
    except Exception as e:
        return handle_error("Sale creation", sale_id, e, start_time)


@mcp.tool()
async def get_sale_info(context: Context, sale_id: str = Field(..., description="The sale ID.")) -> str:
    """Get parameters, state, supply cap plan and balances of a sale."""
    start_time = time.time()
    try:
        deployment = lookup_sale(sale_id)
        engine = deployment.engine
        now = int(time.time())
        info = deployment.to_record().model_dump(mode="json")
        info["status"] = {
            "phase": engine.phase_at(now).value,
            "ended": engine.ended(now),
            "cap_remaining": engine.cap_remaining(),
            "supply_cap_remaining": deployment.ledger.supply_cap_remaining(),
            "holding_balance": (
                deployment.treasury.balance_of(engine.parameters.holding_address) if engine.parameters else 0
            ),
        }
        return json.dumps(info, indent=2)
    except Exception as e:
        return handle_error("Sale info", sale_id, e, start_time)


@mcp.tool()
async def compute_supply_cap(
    context: Context,
    sale_id: str = Field(..., description="The sale ID."),
    caller: str = Field(..., description="Address of the owner or controller."),
) -> str:
    """Derives the sale's supply cap and authorizes it on the token ledger."""
    start_time = time.time()
    try:
        deployment = lookup_sale(sale_id)
        plan = deployment.engine.compute_supply_cap(parse_address(caller, "Caller"))
        sale_manager.save_sale(sale_id)
        ledger = deployment.ledger
        return (f"Supply cap for sale '{sale_id}' set to "
                f"{format_token_amount(plan.total_cap, ledger.decimals, ledger.symbol)} "
                f"(locked bonus {format_token_amount(plan.locked_bonus, ledger.decimals, ledger.symbol)}).")
    except Exception as e:
        return handle_error("Supply cap computation", sale_id, e, start_time)


@mcp.tool()
async def start_sale(
    context: Context,
    sale_id: str = Field(..., description="The sale ID."),
    caller: str = Field(..., description="Address of the owner."),
) -> str:
    """Opens the sale for contributions."""
    start_time = time.time()
    try:
        deployment = lookup_sale(sale_id)
        deployment.engine.start(parse_address(caller, "Caller"), now=int(time.time()))
        sale_manager.save_sale(sale_id)
        return f"Sale '{sale_id}' started. Contributions accepted until {deployment.engine.end_time}."
    except Exception as e:
        return handle_error("Sale start", sale_id, e, start_time)


@mcp.tool()
async def record_payment(
    context: Context,
    sale_id: str = Field(..., description="The sale ID."),
    caller: str = Field(..., description="Address of the owner."),
    payer: str = Field(..., description="Address whose funds were received."),
    amount: int = Field(..., description="Amount received, in smallest contribution units."),
) -> str:
    """Credits funds received for a contributor so they can be deposited."""
    start_time = time.time()
    try:
        deployment = lookup_sale(sale_id)
        validate_amount(amount)
        deployment.engine.gate.require_owner(parse_address(caller, "Caller"), "record_payment")
        payer_key = parse_address(payer, "Payer")
        deployment.treasury.credit(payer_key, amount)
        sale_manager.save_sale(sale_id)
        return f"Recorded payment of {amount} units for {payer_key} in sale '{sale_id}'."
    except Exception as e:
        return handle_error("Payment recording", sale_id, e, start_time)


@mcp.tool()
async def deposit(
    context: Context,
    sale_id: str = Field(..., description="The sale ID."),
    sender: str = Field(..., description="Address whose funds are contributed."),
    beneficiary: str = Field(..., description="Address receiving the tokens."),
    amount: int = Field(..., description="Contribution in smallest contribution units."),
) -> str:
    """
    Contributes funds to a sale and mints tokens at the tiered rates.

    A contribution that crosses the base target is split: the part up to the base
    target is priced at the target rate and the rest at the cap rate. A
    contribution that would take the total past the cap is rejected entirely.

    Example:
        >>> await deposit(context=ctx, sale_id="main_sale", sender="9xQe...",
        ...               beneficiary="9xQe...", amount=10**18)
        "Successfully contributed 1.000000000000000000 units to sale 'main_sale'..."
    """
    start_time = time.time()
    try:
        deployment = lookup_sale(sale_id)
        validate_amount(amount)
        sender_key = parse_address(sender, "Sender")
        beneficiary_key = parse_address(beneficiary, "Beneficiary")

        if not rate_limiter.check_rate_limit(str(sender_key)):
            raise RateLimitExceededError(f"Rate limit exceeded for contributor: {sender_key}")

        engine = deployment.engine
        record = engine.deposit(sender_key, beneficiary_key, amount, now=int(time.time()))
        sale_manager.save_sale(sale_id)

        ledger = deployment.ledger
        decimals = engine.contribution_decimals
        tiers = ", ".join(f"{p.contributed} @ {p.rate}" for p in record.portions)
        logger.info(f"Deposit completed for sale '{sale_id}': amount={amount}, issuance={record.issuance}, "
                    f"tiers=[{tiers}], duration={time.time() - start_time:.3f}s")
        return (f"Successfully contributed {amount / 10 ** decimals:.{decimals}f} units to sale '{sale_id}'. "
                f"Issued {format_token_amount(record.issuance, ledger.decimals, ledger.symbol)} "
                f"to {beneficiary_key} (tiers: {tiers}).")
    except Exception as e:
        return handle_error("Deposit", sale_id, e, start_time)


@mcp.tool()
async def close_sale(
    context: Context,
    sale_id: str = Field(..., description="The sale ID."),
    caller: str = Field(..., description="Address of the owner."),
) -> str:
    """Ends the sale and mints the locked bonus into the timelock."""
    start_time = time.time()
    try:
        deployment = lookup_sale(sale_id)
        deployment.engine.close(parse_address(caller, "Caller"))
        sale_manager.save_sale(sale_id)
        return f"Sale '{sale_id}' closed. Total contributed: {deployment.engine.total_contributed} units."
    except Exception as e:
        return handle_error("Sale close", sale_id, e, start_time)


@mcp.tool()
async def get_token_balance(
    context: Context,
    sale_id: str = Field(..., description="The sale ID."),
    address: str = Field(..., description="Address to query."),
) -> str:
    """Gets the token balance of an address."""
    start_time = time.time()
    try:
        ledger = lookup_sale(sale_id).ledger
        balance = ledger.balance_of(parse_address(address, "Address"))
        return f"Balance of {address}: {format_token_amount(balance, ledger.decimals, ledger.symbol)}"
    except Exception as e:
        return handle_error("Balance query", sale_id, e, start_time)


@mcp.tool()
async def release_locked_tokens(context: Context, sale_id: str = Field(..., description="The sale ID.")) -> str:
    """Releases the timelocked allocation to its beneficiary once the release time has passed."""
    start_time = time.time()
    try:
        deployment = lookup_sale(sale_id)
        timelock = deployment.timelock
        released = timelock.release(int(time.time()))
        sale_manager.save_sale(sale_id)
        ledger = deployment.ledger
        return (f"Released {format_token_amount(released, ledger.decimals, ledger.symbol)} "
                f"to {timelock.beneficiary}.")
    except Exception as e:
        return handle_error("Locked token release", sale_id, e, start_time)


# --- Main Execution ---
if __name__ == "__main__":
    logger.info(f"Starting Tiered ICO MCP Server with {len(sale_manager.sales)} sale(s) loaded...")
    try:
        mcp.run(transport="stdio")
    except KeyboardInterrupt:
        logger.info("Server shutdown requested by user")
    finally:
        logger.info("Tiered ICO MCP Server stopped.")
