"""
Tiered Sale Engine

This module implements the contribution-to-issuance engine: the sale lifecycle,
the one-time parameterization, the supply cap precomputation and tiered deposit
processing.

Lifecycle:
    uninitialized --set_parameters--> parameterized
    parameterized --compute_supply_cap--> parameterized (plan attached)
    parameterized --start--> started
    started --deposit--> started (until the end time or the cap is reached)
    started --end time or cap reached--> ended (as reported by phase)
    started --close--> ended

    A sale that ended on time or cap still accepts close(), which mints the
    locked bonus.

Atomicity:
    Every mutating operation runs inside _atomic(), which snapshots the engine,
    ledger and treasury on entry and restores all three if anything raises. A
    deposit is therefore either fully credited (counters, minted tokens and
    forwarded funds) or leaves no trace.

Ordering:
    deposit() commits total_contributed and total_issued before calling the
    ledger or moving funds, so any external call observes the updated totals.

Time:
    Operations that depend on time accept an explicit `now` (Unix seconds) and
    otherwise read the injected clock. Nothing runs in the background; the end of
    the sale is evaluated lazily by ended().
"""
import time
from contextlib import contextmanager
from typing import Callable, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from mcp_tiered_ico import pricing
from mcp_tiered_ico import safe_math
from mcp_tiered_ico.access import AccessGate
from mcp_tiered_ico.config import SECONDS_PER_DAY, ZERO_ADDRESS
from mcp_tiered_ico.errors import (
    AlreadyComputed,
    AlreadyInitialized,
    CapExceeded,
    InvalidParameter,
    NotReady,
    SaleClosed,
    SaleNotStarted,
)
from mcp_tiered_ico.ledger import TokenLedger
from mcp_tiered_ico.schemas import (
    ContributionRecord,
    Phase,
    SaleParameters,
    SaleRecord,
    SaleState,
    SupplyCapPlan,
)
from mcp_tiered_ico.treasury import Treasury
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


def _require_positive(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidParameter(f"{name} must be a positive integer, got {value!r}")
    return value


def _require_address(name: str, value: Optional[Pubkey]) -> Pubkey:
    if value is None or value == ZERO_ADDRESS:
        raise InvalidParameter(f"{name} cannot be the zero address")
    return value


class SaleEngine:
    """One capped, two-tier sale bound to a token ledger and a treasury."""

    def __init__(
        self,
        owner: Pubkey,
        ledger: TokenLedger,
        treasury: Treasury,
        contribution_decimals: int = 18,
        address: Optional[Pubkey] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.address = address or Keypair().pubkey()
        self.gate = AccessGate(owner)
        self.ledger = ledger
        self.treasury = treasury
        self.contribution_decimals = contribution_decimals
        self._clock = clock
        self._parameters: Optional[SaleParameters] = None
        self._plan: Optional[SupplyCapPlan] = None
        self._state = SaleState()

    # --- Read-only queries ---

    @property
    def owner(self) -> Pubkey:
        return self.gate.owner

    @property
    def parameters(self) -> Optional[SaleParameters]:
        return self._parameters

    @property
    def supply_cap_plan(self) -> Optional[SupplyCapPlan]:
        return self._plan

    @property
    def phase(self) -> Phase:
        return self.phase_at()

    def phase_at(self, now: Optional[int] = None) -> Phase:
        """Lifecycle phase at `now`; a started sale past its end time or cap reports ended."""
        if self._state.phase == Phase.started and self.ended(now):
            return Phase.ended
        return self._state.phase

    @property
    def start_time(self) -> int:
        return self._state.start_time

    @property
    def end_time(self) -> int:
        return self._state.end_time

    @property
    def total_contributed(self) -> int:
        return self._state.total_contributed

    @property
    def total_issued(self) -> int:
        """Whole tokens issued to contributors; the ledger holds the base units."""
        return self._state.total_issued

    @property
    def rate_to_target(self) -> int:
        return self._parameters.rate_to_target if self._parameters else 0

    @property
    def rate_to_cap(self) -> int:
        return self._parameters.rate_to_cap if self._parameters else 0

    def cap_remaining(self) -> int:
        if self._parameters is None:
            return 0
        return safe_math.sub(self._parameters.cap, self._state.total_contributed)

    def ended(self, now: Optional[int] = None) -> bool:
        """True once the end time has passed or the cap is reached; False before the start."""
        if self._state.phase == Phase.ended:
            return True
        if self._state.phase != Phase.started:
            return False
        return self._now(now) >= self._state.end_time or self._state.total_contributed >= self._parameters.cap

    # --- Administration ---

    def set_controller(self, caller: Pubkey, controller: Pubkey) -> None:
        self.gate.set_controller(caller, controller)

    def set_parameters(
        self,
        caller: Pubkey,
        token: Pubkey,
        rate_to_target: int,
        rate_to_cap: int,
        base_target: int,
        cap: int,
        holding_address: Pubkey,
        duration_days: int,
    ) -> SaleParameters:
        """
        Accepts the sale configuration exactly once.

        Args:
            caller: Must be the owner.
            token: Address of the ledger this engine mints through.
            rate_to_target: Tokens per contributed unit up to the base target.
            rate_to_cap: Tokens per contributed unit from the base target to the cap.
            base_target: Tier boundary, in whole contribution units.
            cap: Maximum cumulative contribution, in whole contribution units.
            holding_address: Receives every forwarded contribution.
            duration_days: Sale length, counted from start().

        Raises:
            Unauthorized, AlreadyInitialized, InvalidParameter
        """
        self.gate.require_owner(caller, "set_parameters")
        if self._state.phase != Phase.uninitialized:
            raise AlreadyInitialized("Sale parameters have already been set")

        _require_address("token", token)
        _require_address("holding_address", holding_address)
        for name, value in (
            ("rate_to_target", rate_to_target),
            ("rate_to_cap", rate_to_cap),
            ("base_target", base_target),
            ("cap", cap),
            ("duration_days", duration_days),
        ):
            _require_positive(name, value)
        if token != self.ledger.address:
            raise InvalidParameter(f"Token {token} is not the ledger bound to this sale")

        unit = 10**self.contribution_decimals
        base_target_units = safe_math.mul(base_target, unit)
        cap_units = safe_math.mul(cap, unit)
        if cap_units <= base_target_units:
            raise InvalidParameter("cap must be greater than base_target")

        with self._atomic("set_parameters"):
            self._parameters = SaleParameters(
                token=token,
                rate_to_target=rate_to_target,
                rate_to_cap=rate_to_cap,
                base_target=base_target_units,
                cap=cap_units,
                holding_address=holding_address,
                duration_days=duration_days,
                token_decimals=self.ledger.decimals,
                contribution_decimals=self.contribution_decimals,
            )
            self._state.phase = Phase.parameterized

        logger.info(
            f"Sale {self.address} parameterized: rates {rate_to_target}/{rate_to_cap}, "
            f"base target {base_target}, cap {cap}, {duration_days} days"
        )
        return self._parameters

    def compute_supply_cap(self, caller: Pubkey) -> SupplyCapPlan:
        """Derives the supply cap plan and authorizes it as the ledger's ceiling."""
        self.gate.require_owner_or_controller(caller, "compute_supply_cap")
        if self._plan is not None:
            raise AlreadyComputed("Supply cap has already been computed")
        if self._state.phase != Phase.parameterized:
            raise NotReady("Sale parameters must be set before computing the supply cap")

        with self._atomic("compute_supply_cap"):
            self._plan = pricing.compute_supply_cap_plan(self._parameters)
            self.ledger.set_supply_cap_ceiling(self.address, self._plan.total_cap)

        logger.info(f"Supply cap for sale {self.address} set to {self._plan.total_cap} token units")
        return self._plan

    def start(self, caller: Pubkey, now: Optional[int] = None) -> None:
        self.gate.require_owner(caller, "start")
        if self._state.phase in (Phase.started, Phase.ended):
            raise AlreadyInitialized("Sale has already been started")
        if self._plan is None:
            raise NotReady("Supply cap must be computed before the sale starts")
        if not (self.ledger.controller_set and self.ledger.parameters_set):
            raise NotReady("Token ledger needs its controller and timelock set before the sale starts")

        now = self._now(now)
        with self._atomic("start"):
            duration = safe_math.mul(self._parameters.duration_days, SECONDS_PER_DAY)
            self._state.start_time = now
            self._state.end_time = safe_math.add(now, duration)
            self._state.phase = Phase.started

        logger.info(f"Sale {self.address} started at {self._state.start_time}, ends at {self._state.end_time}")

    def close(self, caller: Pubkey) -> None:
        """Ends the sale and mints the locked bonus into the timelock."""
        self.gate.require_owner(caller, "close")
        if self._state.phase == Phase.ended:
            raise SaleClosed("Sale is already closed")
        if self._state.phase != Phase.started:
            raise SaleNotStarted("Sale has not started")

        with self._atomic("close"):
            self._state.phase = Phase.ended
            if self._plan.locked_bonus > 0:
                self.ledger.mint_locked(self.address, self._plan.locked_bonus)

        logger.info(
            f"Sale {self.address} closed: contributed={self._state.total_contributed}, "
            f"issued={self._state.total_issued}, locked_bonus={self._plan.locked_bonus}"
        )

    # --- Contributions ---

    def deposit(self, sender: Pubkey, beneficiary: Pubkey, amount: int, now: Optional[int] = None) -> ContributionRecord:
        """
        Converts a contribution into minted tokens.

        The contribution is priced against the tiers (split at the base target when
        it straddles it), the totals are committed, tokens are minted to the
        beneficiary and the contributed funds are forwarded from the sender to the
        holding address.

        Args:
            sender: Address whose funds are contributed.
            beneficiary: Address receiving the minted tokens.
            amount: Contribution in smallest contribution units.
            now: Unix timestamp of the call; defaults to the engine clock.

        Returns:
            ContributionRecord describing the tier portions and total issuance.

        Raises:
            SaleNotStarted: Before start().
            SaleClosed: After close(), the end time, or once the cap is reached.
            InvalidParameter: Non-positive amount, or too small to issue a token unit.
            CapExceeded: The contribution would take the total past the cap, or the
                ledger's supply ceiling would be breached.
            InvalidAddress: The beneficiary is the zero address.
            InsufficientFundsError: The sender cannot cover the amount.
        """
        if self._state.phase.rank < Phase.started.rank:
            raise SaleNotStarted("Sale has not started")
        if self.ended(now):
            raise SaleClosed("Sale has ended")
        _require_positive("amount", amount)

        params = self._parameters
        before = self._state.total_contributed
        after = safe_math.add(before, amount)
        if after > params.cap:
            raise CapExceeded(
                f"Contribution of {amount} exceeds the remaining cap of {safe_math.sub(params.cap, before)}"
            )

        portions = pricing.price_contribution(params, before, amount)
        issuance = pricing.total_issuance(portions, params)
        if issuance == 0:
            raise InvalidParameter(f"Contribution of {amount} is too small to issue any tokens")

        with self._atomic("deposit"):
            self._state.total_contributed = after
            self._state.total_issued = safe_math.add(
                self._state.total_issued, pricing.whole_issuance(portions, params)
            )
            self.ledger.mint(self.address, beneficiary, issuance)
            self.treasury.transfer(sender, params.holding_address, amount)

        logger.info(
            f"Deposit of {amount} from {sender} issued {issuance} token units to {beneficiary} "
            f"across {len(portions)} tier(s); total contributed {after}"
        )
        return ContributionRecord(
            contributor=sender,
            beneficiary=beneficiary,
            amount=amount,
            issuance=issuance,
            portions=portions,
        )

    # --- Internals ---

    def _now(self, now: Optional[int]) -> int:
        return int(self._clock()) if now is None else now

    @contextmanager
    def _atomic(self, operation: str):
        state = self._state.model_copy()
        parameters, plan = self._parameters, self._plan
        ledger_record = self.ledger.snapshot()
        treasury_record = self.treasury.snapshot()
        try:
            yield
        except Exception as e:
            self._state = state
            self._parameters, self._plan = parameters, plan
            self.ledger.restore(ledger_record)
            self.treasury.restore(treasury_record)
            logger.warning(f"{operation} on sale {self.address} rolled back: {e}")
            raise

    # --- Snapshots ---

    def snapshot(self) -> SaleRecord:
        return SaleRecord(
            address=self.address,
            owner=self.gate.owner,
            controller=self.gate.controller,
            contribution_decimals=self.contribution_decimals,
            parameters=self._parameters,
            state=self._state.model_copy(),
            plan=self._plan,
        )

    @classmethod
    def from_record(
        cls,
        record: SaleRecord,
        ledger: TokenLedger,
        treasury: Treasury,
        clock: Callable[[], float] = time.time,
    ) -> "SaleEngine":
        engine = cls(
            record.owner, ledger, treasury, record.contribution_decimals, address=record.address, clock=clock
        )
        engine.gate.controller = record.controller
        engine._parameters = record.parameters
        engine._plan = record.plan
        engine._state = record.state.model_copy()
        return engine
