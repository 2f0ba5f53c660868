"""
Token Ledger

Balance and supply bookkeeping for the issued token. The sale engine is registered
as the ledger's controller and mints through it; the ledger never calls back into
the engine.

Key Features:
- Supply ceiling: nothing can be minted until a ceiling is set, and total supply
  never exceeds it
- Locked minting: tokens reserved for the issuer are minted straight into the
  registered timelock address
- Transfers, allowances and delegated transfers in token base units
- Account freezing by the owner

All amounts are token base units (whole tokens × 10^decimals).
"""
from typing import Dict, Optional, Set

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from mcp_tiered_ico import safe_math
from mcp_tiered_ico.access import AccessGate
from mcp_tiered_ico.config import ZERO_ADDRESS
from mcp_tiered_ico.errors import (
    AccountFrozen,
    CapExceeded,
    InsufficientBalance,
    InvalidAddress,
    InvalidParameter,
    TimelockNotSet,
)
from mcp_tiered_ico.schemas import LedgerRecord
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


class TokenLedger:

    def __init__(self, owner: Pubkey, name: str, symbol: str, decimals: int, address: Optional[Pubkey] = None):
        self.address = address or Keypair().pubkey()
        self.name = name
        self.symbol = symbol
        self.decimals = decimals
        self.gate = AccessGate(owner)
        self.timelock: Optional[Pubkey] = None
        self.supply_cap = 0
        self._total_supply = 0
        self._balances: Dict[Pubkey, int] = {}
        self._allowances: Dict[Pubkey, Dict[Pubkey, int]] = {}
        self._frozen: Set[Pubkey] = set()

    # --- Administration ---

    @property
    def controller(self) -> Optional[Pubkey]:
        return self.gate.controller

    @property
    def controller_set(self) -> bool:
        return self.gate.controller is not None

    @property
    def parameters_set(self) -> bool:
        return self.timelock is not None

    def set_controller(self, caller: Pubkey, controller: Pubkey) -> None:
        self.gate.set_controller(caller, controller)

    def set_timelock(self, caller: Pubkey, timelock: Pubkey) -> None:
        self.gate.require_owner(caller, "set_timelock")
        if timelock == ZERO_ADDRESS:
            raise InvalidParameter("Timelock cannot be the zero address")
        self.timelock = timelock
        logger.info(f"Timelock for {self.symbol} set to {timelock}")

    def set_supply_cap_ceiling(self, caller: Pubkey, amount: int) -> None:
        self.gate.require_owner_or_controller(caller, "set_supply_cap_ceiling")
        if amount <= 0:
            raise InvalidParameter("Supply cap must be positive")
        if amount < self._total_supply:
            raise CapExceeded(f"Supply cap {amount} is below current supply {self._total_supply}")
        self.supply_cap = amount
        logger.info(f"Supply cap for {self.symbol} set to {amount}")

    def freeze_account(self, caller: Pubkey, address: Pubkey, frozen: bool) -> None:
        self.gate.require_owner(caller, "freeze_account")
        if frozen:
            self._frozen.add(address)
        else:
            self._frozen.discard(address)
        logger.info(f"Account {address} {'frozen' if frozen else 'unfrozen'}")

    def is_frozen(self, address: Pubkey) -> bool:
        return address in self._frozen

    # --- Supply ---

    def total_supply(self) -> int:
        return self._total_supply

    def supply_cap_remaining(self) -> int:
        return safe_math.sub(self.supply_cap, self._total_supply)

    def mint(self, caller: Pubkey, beneficiary: Pubkey, amount: int) -> None:
        self.gate.require_owner_or_controller(caller, "mint")
        if beneficiary == ZERO_ADDRESS:
            raise InvalidAddress("Cannot mint to the zero address")
        if amount <= 0:
            raise InvalidParameter("Minted amount must be positive")
        new_supply = safe_math.add(self._total_supply, amount)
        if new_supply > self.supply_cap:
            raise CapExceeded(
                f"Minting {amount} would exceed the supply cap "
                f"({self.supply_cap_remaining()} remaining)"
            )
        self._total_supply = new_supply
        self._balances[beneficiary] = safe_math.add(self.balance_of(beneficiary), amount)
        logger.debug(f"Minted {amount} {self.symbol} units to {beneficiary}")

    def mint_locked(self, caller: Pubkey, amount: int) -> None:
        if self.timelock is None:
            raise TimelockNotSet("Timelock address has not been set")
        self.mint(caller, self.timelock, amount)

    # --- Balances ---

    def balance_of(self, address: Pubkey) -> int:
        return self._balances.get(address, 0)

    def transfer(self, sender: Pubkey, to: Pubkey, amount: int) -> None:
        if self.is_frozen(sender):
            raise AccountFrozen(f"Account {sender} is frozen")
        if to == ZERO_ADDRESS:
            raise InvalidAddress("Cannot transfer to the zero address")
        balance = self.balance_of(sender)
        if balance < amount:
            raise InsufficientBalance(f"Balance {balance} is below transfer amount {amount}")
        self._balances[sender] = safe_math.sub(balance, amount)
        self._balances[to] = safe_math.add(self.balance_of(to), amount)
        logger.debug(f"Transferred {amount} {self.symbol} units from {sender} to {to}")

    def approve(self, holder: Pubkey, spender: Pubkey, amount: int) -> None:
        if spender == ZERO_ADDRESS:
            raise InvalidAddress("Cannot approve the zero address")
        self._allowances.setdefault(holder, {})[spender] = amount

    def allowance(self, holder: Pubkey, spender: Pubkey) -> int:
        return self._allowances.get(holder, {}).get(spender, 0)

    def transfer_from(self, spender: Pubkey, holder: Pubkey, to: Pubkey, amount: int) -> None:
        allowed = self.allowance(holder, spender)
        if allowed < amount:
            raise InsufficientBalance(f"Allowance {allowed} is below transfer amount {amount}")
        self.transfer(holder, to, amount)
        self._allowances[holder][spender] = safe_math.sub(allowed, amount)

    # --- Snapshots ---

    def snapshot(self) -> LedgerRecord:
        return LedgerRecord(
            address=self.address,
            owner=self.gate.owner,
            name=self.name,
            symbol=self.symbol,
            decimals=self.decimals,
            controller=self.gate.controller,
            timelock=self.timelock,
            supply_cap=self.supply_cap,
            total_supply=self._total_supply,
            balances={str(k): v for k, v in self._balances.items()},
            allowances={
                str(holder): {str(spender): v for spender, v in spenders.items()}
                for holder, spenders in self._allowances.items()
            },
            frozen=sorted(str(a) for a in self._frozen),
        )

    def restore(self, record: LedgerRecord) -> None:
        self.gate.controller = record.controller
        self.timelock = record.timelock
        self.supply_cap = record.supply_cap
        self._total_supply = record.total_supply
        self._balances = {Pubkey.from_string(k): v for k, v in record.balances.items()}
        self._allowances = {
            Pubkey.from_string(holder): {Pubkey.from_string(s): v for s, v in spenders.items()}
            for holder, spenders in record.allowances.items()
        }
        self._frozen = {Pubkey.from_string(a) for a in record.frozen}

    @classmethod
    def from_record(cls, record: LedgerRecord) -> "TokenLedger":
        ledger = cls(record.owner, record.name, record.symbol, record.decimals, address=record.address)
        ledger.restore(record)
        return ledger
