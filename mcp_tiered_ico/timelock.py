"""Holding contract for the issuer's locked token allocation."""
from typing import Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from mcp_tiered_ico.config import ZERO_ADDRESS
from mcp_tiered_ico.errors import InvalidParameter, NotReady
from mcp_tiered_ico.ledger import TokenLedger
from mcp_tiered_ico.schemas import TimelockRecord
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


class TokenTimelock:
    """Holds tokens on the ledger and releases all of them to one beneficiary at release_time."""

    def __init__(self, ledger: TokenLedger, beneficiary: Pubkey, release_time: int, address: Optional[Pubkey] = None):
        if ledger is None:
            raise InvalidParameter("Timelock requires a token ledger")
        if beneficiary is None or beneficiary == ZERO_ADDRESS:
            raise InvalidParameter("Timelock beneficiary cannot be the zero address")
        self.address = address or Keypair().pubkey()
        self.ledger = ledger
        self.beneficiary = beneficiary
        self.release_time = release_time
        self.released = False

    def balance(self) -> int:
        return self.ledger.balance_of(self.address)

    def release(self, now: int) -> int:
        """Moves the held balance to the beneficiary and returns the amount released."""
        if now < self.release_time:
            raise NotReady(f"Tokens are locked until {self.release_time}")
        amount = self.balance()
        if amount <= 0:
            raise InvalidParameter("Timelock holds no tokens to release")
        self.ledger.transfer(self.address, self.beneficiary, amount)
        self.released = True
        logger.info(f"Released {amount} {self.ledger.symbol} units to {self.beneficiary}")
        return amount

    def snapshot(self) -> TimelockRecord:
        return TimelockRecord(
            address=self.address,
            beneficiary=self.beneficiary,
            release_time=self.release_time,
            released=self.released,
        )

    @classmethod
    def from_record(cls, record: TimelockRecord, ledger: TokenLedger) -> "TokenTimelock":
        timelock = cls(ledger, record.beneficiary, record.release_time, address=record.address)
        timelock.released = record.released
        return timelock
