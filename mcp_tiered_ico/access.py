"""Owner / controller authorization checks shared by the engine and the ledger."""
from typing import Optional

from solders.pubkey import Pubkey

from mcp_tiered_ico.config import ZERO_ADDRESS
from mcp_tiered_ico.errors import InvalidParameter, Unauthorized
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


class AccessGate:
    """Binary authorization: the owner, optionally plus one designated controller."""

    def __init__(self, owner: Pubkey, controller: Optional[Pubkey] = None):
        if owner == ZERO_ADDRESS:
            raise InvalidParameter("Owner cannot be the zero address")
        self.owner = owner
        self.controller = controller

    def is_owner(self, caller: Pubkey) -> bool:
        return caller == self.owner

    def is_owner_or_controller(self, caller: Pubkey) -> bool:
        return self.is_owner(caller) or (self.controller is not None and caller == self.controller)

    def require_owner(self, caller: Pubkey, action: str) -> None:
        if not self.is_owner(caller):
            logger.warning(f"Unauthorized {action} attempt by {caller}")
            raise Unauthorized(f"{action} is restricted to the owner")

    def require_owner_or_controller(self, caller: Pubkey, action: str) -> None:
        if not self.is_owner_or_controller(caller):
            logger.warning(f"Unauthorized {action} attempt by {caller}")
            raise Unauthorized(f"{action} is restricted to the owner or controller")

    def set_controller(self, caller: Pubkey, controller: Pubkey) -> None:
        self.require_owner(caller, "set_controller")
        if controller == ZERO_ADDRESS:
            raise InvalidParameter("Controller cannot be the zero address")
        self.controller = controller
        logger.info(f"Controller set to {controller}")
