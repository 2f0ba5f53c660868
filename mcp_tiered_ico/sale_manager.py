import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from pydantic import ValidationError
from solders.pubkey import Pubkey

from mcp_tiered_ico.config import CONTRIBUTION_DECIMALS, SALE_STATE_DIR
from mcp_tiered_ico.errors import ValidationError as SaleValidationError
from mcp_tiered_ico.ledger import TokenLedger
from mcp_tiered_ico.sale_engine import SaleEngine
from mcp_tiered_ico.schemas import DeploymentRecord
from mcp_tiered_ico.timelock import TokenTimelock
from mcp_tiered_ico.treasury import Treasury
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

# Determine the absolute path to the directory containing this file
MODULE_DIR = Path(__file__).parent.resolve()

# Relative SALE_STATE_DIR values resolve against the package directory
STATE_PATH = MODULE_DIR / SALE_STATE_DIR


@dataclass
class SaleDeployment:
    """A sale engine wired to its own ledger, timelock and treasury."""
    sale_id: str
    ledger: TokenLedger
    treasury: Treasury
    timelock: TokenTimelock
    engine: SaleEngine

    def to_record(self) -> DeploymentRecord:
        return DeploymentRecord(
            sale_id=self.sale_id,
            ledger=self.ledger.snapshot(),
            treasury=self.treasury.snapshot(),
            timelock=self.timelock.snapshot(),
            sale=self.engine.snapshot(),
        )


# In-memory registry of deployed sales
sales: Dict[str, SaleDeployment] = {}


def deploy_sale(
    sale_id: str,
    owner: Pubkey,
    token_name: str,
    token_symbol: str,
    token_decimals: int,
    timelock_beneficiary: Pubkey,
    timelock_release_time: int,
    contribution_decimals: int = CONTRIBUTION_DECIMALS,
) -> SaleDeployment:
    """
    Creates a ledger, timelock, treasury and engine for a new sale and wires them:
    the engine becomes the ledger's controller and the timelock its locked-token
    holder.

    Raises:
        ValidationError: If a sale with this id is already registered.
    """
    if sale_id in sales:
        raise SaleValidationError(f"Sale '{sale_id}' already exists")

    ledger = TokenLedger(owner, token_name, token_symbol, token_decimals)
    treasury = Treasury()
    timelock = TokenTimelock(ledger, timelock_beneficiary, timelock_release_time)
    engine = SaleEngine(owner, ledger, treasury, contribution_decimals)

    ledger.set_controller(owner, engine.address)
    ledger.set_timelock(owner, timelock.address)

    deployment = SaleDeployment(sale_id, ledger, treasury, timelock, engine)
    sales[sale_id] = deployment
    logger.info(f"Deployed sale '{sale_id}': ledger={ledger.address}, engine={engine.address}, timelock={timelock.address}")
    return deployment


def get_sale(sale_id: str) -> Optional[SaleDeployment]:
    """Retrieves a deployed sale by its ID."""
    return sales.get(sale_id)


def restore_deployment(record: DeploymentRecord) -> SaleDeployment:
    """Rebuilds a deployment from its persisted record."""
    ledger = TokenLedger.from_record(record.ledger)
    treasury = Treasury()
    treasury.restore(record.treasury)
    timelock = TokenTimelock.from_record(record.timelock, ledger)
    engine = SaleEngine.from_record(record.sale, ledger, treasury)
    return SaleDeployment(record.sale_id, ledger, treasury, timelock, engine)


def save_sale(sale_id: str, state_path: Optional[Path] = None) -> bool:
    """Writes the deployment's current record to <state_path>/<sale_id>.json."""
    deployment = sales.get(sale_id)
    if deployment is None:
        logger.error(f"Cannot save unknown sale '{sale_id}'")
        return False

    state_path = Path(state_path or STATE_PATH)
    state_path.mkdir(parents=True, exist_ok=True)
    file_path = state_path / f"{sale_id}.json"
    try:
        with open(file_path, "w") as f:
            json.dump(deployment.to_record().model_dump(mode="json"), f, indent=4)
        logger.info(f"Successfully saved sale state to {file_path}")
        return True
    except OSError as e:
        logger.error(f"Error saving sale state to {file_path}: {e}")
        return False


def load_sales_from_state_files(state_path: Optional[Path] = None) -> Dict[str, SaleDeployment]:
    """
    Loads persisted deployments from JSON files in the state directory.

    Args:
        state_path: Directory to read; defaults to STATE_PATH.

    Returns:
        A dictionary mapping sale_id to the restored SaleDeployment.
    """
    loaded: Dict[str, SaleDeployment] = {}
    state_path = Path(state_path or STATE_PATH)

    if not state_path.is_dir():
        logger.warning(f"Sale state directory not found: {state_path}. No sales loaded.")
        return loaded

    logger.info(f"Loading sale state from: {state_path.resolve()}")

    for file_path in sorted(state_path.glob("*.json")):
        try:
            with open(file_path, "r") as f:
                record = DeploymentRecord.model_validate(json.load(f))

            if record.sale_id != file_path.stem:
                logger.warning(f"Sale ID mismatch in {file_path}: expected '{file_path.stem}', found '{record.sale_id}'. Skipping.")
                continue

            loaded[record.sale_id] = restore_deployment(record)
            logger.info(f"Successfully loaded sale: {record.sale_id}")

        except json.JSONDecodeError:
            logger.error(f"Error decoding JSON from file: {file_path}")
        except ValidationError as e:
            logger.error(f"Invalid sale state in file {file_path}: {e}")
        except ValueError as e:
            logger.error(f"Malformed address in sale state file {file_path}: {e}")

    logger.info(f"Finished loading sales. Total loaded: {len(loaded)}")
    return loaded


# --- Initial Load ---
# Load persisted sales when the module is imported
sales.update(load_sales_from_state_files())
