"""
Tiered Token Pricing Engine

This module converts contributions into token issuance for a two-tier sale and
derives the sale's total supply ceiling from the same tiers.

Tier Structure:
- Tier 1: contributions up to the base target are priced at rate_to_target
- Tier 2: contributions between the base target and the cap are priced at rate_to_cap
- Locked bonus: a fixed percentage of tier-1 issuance reserved for the issuer

Price Calculation Process:
1. Take the cumulative contribution before this deposit
2. Split the deposit at the base target if it straddles it
3. Price each portion at its tier's rate
4. Sum the weighted portions
5. Convert once from contribution units to token base units

All arithmetic goes through safe_math, so an overflow anywhere aborts the
calculation instead of producing a wrapped or truncated issuance.
"""
from typing import List, Tuple

from mcp_tiered_ico import safe_math
from mcp_tiered_ico.config import LOCKED_BONUS_PERCENT
from mcp_tiered_ico.errors import InvalidParameter
from mcp_tiered_ico.schemas import SaleParameters, SupplyCapPlan, TierPortion
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


def issuance_for(contributed: int, rate: int, params: SaleParameters) -> int:
    """
    Tokens issued for a contribution priced at a single rate.

    Args:
        contributed: Contribution in smallest contribution units.
        rate: Whole tokens per whole contributed unit.
        params: Sale parameters carrying both decimal scales.

    Returns:
        Issuance in token base units, rounded down.
    """
    return safe_math.scale(
        safe_math.mul(contributed, rate),
        params.contribution_decimals,
        params.token_decimals,
    )


def split_contribution(before: int, amount: int, base_target: int) -> List[Tuple[int, bool]]:
    """
    Splits a contribution at the base target.

    Returns:
        (portion, in_first_tier) pairs with non-zero portions, in tier order.
    """
    after = safe_math.add(before, amount)
    if after <= base_target:
        return [(amount, True)]
    if before >= base_target:
        return [(amount, False)]
    first = safe_math.sub(base_target, before)
    return [(first, True), (safe_math.sub(amount, first), False)]


def price_contribution(params: SaleParameters, before: int, amount: int) -> List[TierPortion]:
    """
    Prices a contribution against the tiers given the cumulative total before it.

    Raises:
        InvalidParameter: If the amount is not positive.
        ArithmeticOverflow: If any intermediate value leaves the uint256 range.
    """
    if amount <= 0:
        raise InvalidParameter("Contribution amount must be positive")

    portions = []
    for contributed, in_first_tier in split_contribution(before, amount, params.base_target):
        rate = params.rate_to_target if in_first_tier else params.rate_to_cap
        portions.append(TierPortion(rate=rate, contributed=contributed, issued=issuance_for(contributed, rate, params)))

    if len(portions) > 1:
        logger.debug(f"Contribution of {amount} crosses base target at cumulative {params.base_target}")
    return portions


def weighted_contribution(portions: List[TierPortion]) -> int:
    """Sum of portion × rate, still in smallest contribution units."""
    total = 0
    for portion in portions:
        total = safe_math.add(total, safe_math.mul(portion.contributed, portion.rate))
    return total


def total_issuance(portions: List[TierPortion], params: SaleParameters) -> int:
    """
    Issuance of a priced contribution in token base units.

    The tiers are combined before the single conversion to token units, so a
    straddling deposit is rounded down once rather than once per portion. The
    per-portion `issued` values are informational and may sum to less.
    """
    return safe_math.scale(
        weighted_contribution(portions),
        params.contribution_decimals,
        params.token_decimals,
    )


def whole_issuance(portions: List[TierPortion], params: SaleParameters) -> int:
    """Issuance of a priced contribution in whole tokens, rounded down."""
    return safe_math.div(weighted_contribution(portions), 10**params.contribution_decimals)


def compute_supply_cap_plan(params: SaleParameters) -> SupplyCapPlan:
    """Derives the supply ceiling: both tiers fully sold plus the locked bonus."""
    tier1 = issuance_for(params.base_target, params.rate_to_target, params)
    tier2 = issuance_for(safe_math.sub(params.cap, params.base_target), params.rate_to_cap, params)
    locked_bonus = safe_math.percent(tier1, LOCKED_BONUS_PERCENT)
    total_cap = safe_math.add(safe_math.add(tier1, tier2), locked_bonus)

    logger.debug(f"Supply cap plan: tier1={tier1}, tier2={tier2}, locked_bonus={locked_bonus}, total={total_cap}")
    return SupplyCapPlan(
        tier1_issuance=tier1,
        tier2_issuance=tier2,
        locked_bonus=locked_bonus,
        total_cap=total_cap,
    )
