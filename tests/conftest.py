import pytest
from solders.keypair import Keypair

from mcp_tiered_ico import rate_limiter
from mcp_tiered_ico import sale_manager
from mcp_tiered_ico.ledger import TokenLedger
from mcp_tiered_ico.sale_engine import SaleEngine
from mcp_tiered_ico.timelock import TokenTimelock
from mcp_tiered_ico.treasury import Treasury

WEI = 10**18
NOW = 1710000000
DAY = 24 * 60 * 60
RELEASE_TIME = NOW + 365 * DAY


@pytest.fixture
def owner():
    return Keypair().pubkey()


@pytest.fixture
def stranger():
    return Keypair().pubkey()


@pytest.fixture
def contributor():
    return Keypair().pubkey()


@pytest.fixture
def holding():
    return Keypair().pubkey()


@pytest.fixture
def beneficiary():
    return Keypair().pubkey()


@pytest.fixture
def ledger(owner):
    return TokenLedger(owner, "ESG Token", "ESG", 3)


@pytest.fixture
def treasury():
    return Treasury()


@pytest.fixture
def timelock(ledger, owner, beneficiary):
    timelock = TokenTimelock(ledger, beneficiary, RELEASE_TIME)
    ledger.set_timelock(owner, timelock.address)
    return timelock


@pytest.fixture
def engine(owner, ledger, treasury, timelock):
    engine = SaleEngine(owner, ledger, treasury, clock=lambda: NOW)
    ledger.set_controller(owner, engine.address)
    return engine


@pytest.fixture
def configure_sale(engine, owner, ledger, holding):
    """Returns a function that parameterizes the engine (whole units) and optionally computes the cap and starts it."""
    def _configure(rate_to_target=300, rate_to_cap=100, base_target=10000, cap=150000,
                   duration_days=31, compute_cap=True, start=True):
        engine.set_parameters(owner, ledger.address, rate_to_target, rate_to_cap, base_target, cap, holding, duration_days)
        if compute_cap:
            engine.compute_supply_cap(owner)
        if start:
            engine.start(owner, now=NOW)
        return engine
    return _configure


@pytest.fixture
def funded(treasury, contributor):
    """Credits the contributor with enough funds for any test deposit."""
    treasury.credit(contributor, 1_000_000 * WEI)
    return contributor


@pytest.fixture
def clean_registry(tmp_path, monkeypatch):
    monkeypatch.setattr(sale_manager, "STATE_PATH", tmp_path)
    sale_manager.sales.clear()
    rate_limiter.reset()
    yield tmp_path
    sale_manager.sales.clear()
    rate_limiter.reset()
