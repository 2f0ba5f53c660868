"""
Native funds bookkeeping.

Tracks balances of the contributed currency (in its smallest denomination) per
address. The sale engine pulls each contribution from the contributor and forwards
it to the holding address through this object; it stands in for the host chain's
native value transfer.
"""
from typing import Dict

from solders.pubkey import Pubkey

from mcp_tiered_ico import safe_math
from mcp_tiered_ico.config import ZERO_ADDRESS
from mcp_tiered_ico.errors import InsufficientFundsError, InvalidAddress, InvalidParameter
from mcp_tiered_ico.schemas import TreasuryRecord
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


class Treasury:

    def __init__(self):
        self._balances: Dict[Pubkey, int] = {}

    def balance_of(self, address: Pubkey) -> int:
        return self._balances.get(address, 0)

    def credit(self, address: Pubkey, amount: int) -> None:
        """Records funds received by address from outside the sale."""
        if address == ZERO_ADDRESS:
            raise InvalidAddress("Cannot credit the zero address")
        if amount <= 0:
            raise InvalidParameter("Credited amount must be positive")
        self._balances[address] = safe_math.add(self.balance_of(address), amount)
        logger.debug(f"Credited {amount} to {address}")

    def transfer(self, sender: Pubkey, to: Pubkey, amount: int) -> None:
        if to == ZERO_ADDRESS:
            raise InvalidAddress("Cannot transfer funds to the zero address")
        available = self.balance_of(sender)
        if available < amount:
            raise InsufficientFundsError(
                f"Insufficient funds for {sender}: required {amount}, available {available}"
            )
        self._balances[sender] = safe_math.sub(available, amount)
        self._balances[to] = safe_math.add(self.balance_of(to), amount)
        logger.debug(f"Transferred {amount} from {sender} to {to}")

    def snapshot(self) -> TreasuryRecord:
        return TreasuryRecord(balances={str(k): v for k, v in self._balances.items()})

    def restore(self, record: TreasuryRecord) -> None:
        self._balances = {Pubkey.from_string(k): v for k, v in record.balances.items()}
