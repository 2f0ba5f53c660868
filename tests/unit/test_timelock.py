import pytest
from solders.keypair import Keypair

from mcp_tiered_ico.config import ZERO_ADDRESS
from mcp_tiered_ico.errors import InvalidParameter, NotReady
from mcp_tiered_ico.timelock import TokenTimelock

RELEASE_TIME = 1710000000 + 365 * 24 * 60 * 60


@pytest.fixture
def funded_timelock(ledger, owner, timelock):
    ledger.set_supply_cap_ceiling(owner, 10_000)
    ledger.mint_locked(owner, 600)
    return timelock


def test_constructor_validation(ledger, beneficiary):
    with pytest.raises(InvalidParameter):
        TokenTimelock(None, beneficiary, RELEASE_TIME)
    with pytest.raises(InvalidParameter):
        TokenTimelock(ledger, ZERO_ADDRESS, RELEASE_TIME)


def test_release_before_time(funded_timelock):
    with pytest.raises(NotReady):
        funded_timelock.release(RELEASE_TIME - 1)
    assert funded_timelock.balance() == 600


def test_release_moves_everything_to_beneficiary(funded_timelock, ledger, beneficiary):
    released = funded_timelock.release(RELEASE_TIME)

    assert released == 600
    assert funded_timelock.released is True
    assert funded_timelock.balance() == 0
    assert ledger.balance_of(beneficiary) == 600


def test_release_with_nothing_held(timelock):
    with pytest.raises(InvalidParameter):
        timelock.release(RELEASE_TIME)


def test_snapshot_round_trip(funded_timelock, ledger):
    restored = TokenTimelock.from_record(funded_timelock.snapshot(), ledger)

    assert restored.address == funded_timelock.address
    assert restored.beneficiary == funded_timelock.beneficiary
    assert restored.release_time == RELEASE_TIME
    assert restored.balance() == 600


def test_independent_timelocks_hold_separate_balances(ledger, owner, timelock):
    other = TokenTimelock(ledger, Keypair().pubkey(), RELEASE_TIME)
    ledger.set_supply_cap_ceiling(owner, 10_000)
    ledger.mint_locked(owner, 50)

    assert timelock.balance() == 50
    assert other.balance() == 0
