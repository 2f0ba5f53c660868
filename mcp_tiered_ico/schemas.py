"""
Pydantic Data Models and Validation Schemas

This module defines the data models shared by the sale engine, its collaborators and
the MCP server. Engine-owned records (parameters, state, supply cap plan) are the
entities persisted for a sale; collaborator records (ledger, treasury, timelock) are
persisted alongside them so a deployment can be restored as a whole.

Key Components:
- Phase Enum: lifecycle stages of a sale
- SaleParameters: issuer-set configuration, frozen once accepted
- SaleState: mutable counters and timestamps
- SupplyCapPlan: issuance ceiling derived from the tiers
- ContributionRecord / TierPortion: result of a single deposit
- LedgerRecord / TreasuryRecord / TimelockRecord / SaleRecord: snapshots used for
  rollback and persistence
- SaleConfigModel: JSON configuration accepted by the server's create_sale tool

Addresses are solders Pubkey values. They serialize to base58 strings in JSON mode
and are parsed back from strings on validation.
"""
from enum import Enum
from typing import Annotated, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer
from solders.pubkey import Pubkey

from mcp_tiered_ico.config import (
    CONTRIBUTION_DECIMALS,
    DEFAULT_BASE_TARGET,
    DEFAULT_CAP,
    DEFAULT_DURATION_DAYS,
    DEFAULT_HOLDING_ADDRESS,
    DEFAULT_RATE_TO_CAP,
    DEFAULT_RATE_TO_TARGET,
    ISSUER_WALLET,
    TOKEN_DECIMALS,
    TOKEN_NAME,
    TOKEN_SYMBOL,
)


def _to_pubkey(value):
    if isinstance(value, str):
        return Pubkey.from_string(value)
    return value


Address = Annotated[
    Pubkey,
    BeforeValidator(_to_pubkey),
    PlainSerializer(str, return_type=str, when_used="json"),
]


class Phase(str, Enum):
    uninitialized = "uninitialized"
    parameterized = "parameterized"
    started = "started"
    ended = "ended"

    @property
    def rank(self) -> int:
        return list(Phase).index(self)


class SaleParameters(BaseModel):
    """Issuer-set sale configuration. base_target and cap are in smallest contribution units."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    token: Address
    rate_to_target: int
    rate_to_cap: int
    base_target: int
    cap: int
    holding_address: Address
    duration_days: int
    token_decimals: int
    contribution_decimals: int


class SaleState(BaseModel):
    phase: Phase = Phase.uninitialized
    start_time: int = 0
    end_time: int = 0
    total_contributed: int = 0
    total_issued: int = 0  # whole tokens


class SupplyCapPlan(BaseModel):
    """Issuance ceiling in token base units."""
    model_config = ConfigDict(frozen=True)

    tier1_issuance: int
    tier2_issuance: int
    locked_bonus: int
    total_cap: int


class TierPortion(BaseModel):
    rate: int
    contributed: int
    issued: int


class ContributionRecord(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    contributor: Address
    beneficiary: Address
    amount: int
    issuance: int
    portions: List[TierPortion] = Field(default_factory=list)


# --- Snapshots ---

class LedgerRecord(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    address: Address
    owner: Address
    name: str
    symbol: str
    decimals: int
    controller: Optional[Address] = None
    timelock: Optional[Address] = None
    supply_cap: int = 0
    total_supply: int = 0
    balances: Dict[str, int] = Field(default_factory=dict)
    allowances: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    frozen: List[str] = Field(default_factory=list)


class TreasuryRecord(BaseModel):
    balances: Dict[str, int] = Field(default_factory=dict)


class TimelockRecord(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    address: Address
    beneficiary: Address
    release_time: int
    released: bool = False


class SaleRecord(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    address: Address
    owner: Address
    controller: Optional[Address] = None
    contribution_decimals: int = 18
    parameters: Optional[SaleParameters] = None
    state: SaleState = Field(default_factory=SaleState)
    plan: Optional[SupplyCapPlan] = None


class DeploymentRecord(BaseModel):
    """Everything needed to rebuild one sale deployment."""
    sale_id: str
    ledger: LedgerRecord
    treasury: TreasuryRecord
    timelock: TimelockRecord
    sale: SaleRecord


# --- Server configuration input ---
# Omitted fields fall back to the environment-driven defaults in config.

class TokenConfig(BaseModel):
    name: str = TOKEN_NAME
    symbol: str = TOKEN_SYMBOL
    decimals: int = Field(TOKEN_DECIMALS, ge=0, le=18)


class SaleConfig(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    sale_id: str
    owner: Address = Field(default_factory=ISSUER_WALLET.pubkey)
    rate_to_target: int = DEFAULT_RATE_TO_TARGET
    rate_to_cap: int = DEFAULT_RATE_TO_CAP
    base_target: int = DEFAULT_BASE_TARGET
    cap: int = DEFAULT_CAP
    holding_address: Address = DEFAULT_HOLDING_ADDRESS
    duration_days: int = DEFAULT_DURATION_DAYS


class TimelockConfig(BaseModel):
    """release_time defaults to TIMELOCK_RELEASE_DELAY_DAYS after deployment."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    beneficiary: Address = Field(default_factory=ISSUER_WALLET.pubkey)
    release_time: Optional[int] = None


class SaleConfigModel(BaseModel):
    token: TokenConfig = Field(default_factory=TokenConfig)
    sale: SaleConfig
    timelock: TimelockConfig = Field(default_factory=TimelockConfig)
    contribution_decimals: int = Field(CONTRIBUTION_DECIMALS, ge=0, le=18)
