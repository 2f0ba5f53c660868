import json
from unittest.mock import MagicMock, patch

import pytest
from solders.keypair import Keypair

from mcp_tiered_ico import rate_limiter
from mcp_tiered_ico import sale_manager
from mcp_tiered_ico import server

WEI = 10**18
NOW = 1710000000
DAY = 24 * 60 * 60
RELEASE_TIME = NOW + 365 * DAY

OWNER = str(Keypair().pubkey())
HOLDING = str(Keypair().pubkey())
BENEFICIARY = str(Keypair().pubkey())
CONTRIBUTOR = str(Keypair().pubkey())


def sale_config(sale_id="main_sale", base_target=2, cap=5, **overrides):
    config = {
        "token": {"name": "ESG Token", "symbol": "ESG", "decimals": 3},
        "sale": {
            "sale_id": sale_id,
            "owner": OWNER,
            "rate_to_target": 300,
            "rate_to_cap": 100,
            "base_target": base_target,
            "cap": cap,
            "holding_address": HOLDING,
            "duration_days": 31,
        },
        "timelock": {"beneficiary": BENEFICIARY, "release_time": RELEASE_TIME},
    }
    config["sale"].update(overrides)
    return json.dumps(config)


async def open_sale(context, sale_id="main_sale"):
    """Creates, caps and starts a sale, then funds the contributor."""
    result = await server.create_sale(context=context, config_json=sale_config(sale_id))
    assert result.startswith(f"Sale '{sale_id}' created successfully")
    await server.compute_supply_cap(context=context, sale_id=sale_id, caller=OWNER)
    await server.start_sale(context=context, sale_id=sale_id, caller=OWNER)
    await server.record_payment(context=context, sale_id=sale_id, caller=OWNER, payer=CONTRIBUTOR, amount=10 * WEI)


@pytest.fixture(autouse=True)
def registry(clean_registry):
    yield clean_registry


@pytest.mark.asyncio
async def test_create_sale_and_get_info():
    mock_context = MagicMock()
    with patch("time.time", return_value=NOW):
        result = await server.create_sale(context=mock_context, config_json=sale_config())
        info = json.loads(await server.get_sale_info(context=mock_context, sale_id="main_sale"))

    assert "Token ledger:" in result
    assert info["sale_id"] == "main_sale"
    assert info["sale"]["state"]["phase"] == "parameterized"
    assert info["status"]["phase"] == "parameterized"
    assert info["sale"]["parameters"]["base_target"] == 2 * WEI
    assert info["sale"]["parameters"]["holding_address"] == HOLDING
    assert info["status"]["ended"] is False
    assert info["status"]["cap_remaining"] == 5 * WEI


@pytest.mark.asyncio
async def test_create_sale_persists_state(registry):
    mock_context = MagicMock()
    with patch("time.time", return_value=NOW):
        await server.create_sale(context=mock_context, config_json=sale_config())

    assert (registry / "main_sale.json").exists()


@pytest.mark.asyncio
async def test_create_sale_uses_configured_defaults():
    mock_context = MagicMock()
    config = json.dumps({"sale": {"sale_id": "default_sale", "owner": OWNER}})
    with patch("time.time", return_value=NOW):
        result = await server.create_sale(context=mock_context, config_json=config)

    assert result.startswith("Sale 'default_sale' created successfully")
    deployment = sale_manager.get_sale("default_sale")
    assert deployment.engine.rate_to_target == 300
    assert deployment.engine.parameters.base_target == 18620 * WEI
    assert deployment.timelock.release_time == RELEASE_TIME


@pytest.mark.asyncio
async def test_create_sale_invalid_json():
    result = await server.create_sale(context=MagicMock(), config_json="{invalid")
    assert result == "Error: Invalid JSON format provided. Please check your JSON syntax."


@pytest.mark.asyncio
async def test_create_sale_invalid_config():
    result = await server.create_sale(context=MagicMock(), config_json=json.dumps({"sale": {"owner": OWNER}}))
    assert result.startswith("Error: Invalid sale configuration")


@pytest.mark.asyncio
async def test_create_sale_rejected_parameters_leave_no_sale():
    mock_context = MagicMock()
    with patch("time.time", return_value=NOW):
        result = await server.create_sale(context=mock_context, config_json=sale_config(base_target=5, cap=5))

    assert result.startswith("Error: InvalidParameter")
    assert sale_manager.get_sale("main_sale") is None


@pytest.mark.asyncio
async def test_create_duplicate_sale():
    mock_context = MagicMock()
    with patch("time.time", return_value=NOW):
        await server.create_sale(context=mock_context, config_json=sale_config())
        result = await server.create_sale(context=mock_context, config_json=sale_config())

    assert result.startswith("Error: ValidationError")


@pytest.mark.asyncio
async def test_unknown_sale():
    result = await server.get_sale_info(context=MagicMock(), sale_id="missing_sale")
    assert result == "Sale with id missing_sale not found."


@pytest.mark.asyncio
async def test_supply_cap_and_start():
    mock_context = MagicMock()
    with patch("time.time", return_value=NOW):
        await server.create_sale(context=mock_context, config_json=sale_config())
        cap_result = await server.compute_supply_cap(context=mock_context, sale_id="main_sale", caller=OWNER)
        start_result = await server.start_sale(context=mock_context, sale_id="main_sale", caller=OWNER)

    # 2 * 300 + 3 * 100 tokens plus a 60 token locked bonus
    assert "960.000 ESG" in cap_result
    assert "locked bonus 60.000 ESG" in cap_result
    assert start_result == f"Sale 'main_sale' started. Contributions accepted until {NOW + 31 * DAY}."


@pytest.mark.asyncio
async def test_start_by_non_owner():
    mock_context = MagicMock()
    with patch("time.time", return_value=NOW):
        await server.create_sale(context=mock_context, config_json=sale_config())
        await server.compute_supply_cap(context=mock_context, sale_id="main_sale", caller=OWNER)
        result = await server.start_sale(context=mock_context, sale_id="main_sale", caller=CONTRIBUTOR)

    assert result.startswith("Error: Unauthorized")
    assert sale_manager.get_sale("main_sale").engine.phase.value == "parameterized"


@pytest.mark.asyncio
async def test_deposit_before_start():
    mock_context = MagicMock()
    with patch("time.time", return_value=NOW):
        await server.create_sale(context=mock_context, config_json=sale_config())
        result = await server.deposit(
            context=mock_context, sale_id="main_sale", sender=CONTRIBUTOR, beneficiary=CONTRIBUTOR, amount=WEI
        )

    assert result.startswith("Error: SaleNotStarted")


@pytest.mark.asyncio
async def test_successful_deposits_across_tiers():
    mock_context = MagicMock()
    with patch("time.time", return_value=NOW):
        await open_sale(mock_context)
        first = await server.deposit(
            context=mock_context, sale_id="main_sale", sender=CONTRIBUTOR, beneficiary=BENEFICIARY, amount=WEI
        )
        second = await server.deposit(
            context=mock_context, sale_id="main_sale", sender=CONTRIBUTOR, beneficiary=BENEFICIARY,
            amount=2 * WEI,
        )
        balance = await server.get_token_balance(context=mock_context, sale_id="main_sale", address=BENEFICIARY)

    assert first.startswith("Successfully contributed 1.000000000000000000 units to sale 'main_sale'.")
    assert f"Issued 300.000 ESG to {BENEFICIARY}" in first
    assert f"Issued 400.000 ESG to {BENEFICIARY}" in second
    assert f"tiers: {WEI} @ 300, {WEI} @ 100" in second
    assert balance == f"Balance of {BENEFICIARY}: 700.000 ESG"

    engine = sale_manager.get_sale("main_sale").engine
    assert engine.total_contributed == 3 * WEI
    assert sale_manager.get_sale("main_sale").treasury.balance_of(engine.parameters.holding_address) == 3 * WEI


@pytest.mark.asyncio
async def test_deposit_over_cap_changes_nothing():
    mock_context = MagicMock()
    with patch("time.time", return_value=NOW):
        await open_sale(mock_context)
        result = await server.deposit(
            context=mock_context, sale_id="main_sale", sender=CONTRIBUTOR, beneficiary=CONTRIBUTOR,
            amount=5 * WEI + 1,
        )

    assert result.startswith("Error: CapExceeded")
    deployment = sale_manager.get_sale("main_sale")
    assert deployment.engine.total_contributed == 0
    assert deployment.ledger.total_supply() == 0
    assert deployment.treasury.balance_of(deployment.engine.parameters.holding_address) == 0


@pytest.mark.asyncio
async def test_deposit_without_funds():
    mock_context = MagicMock()
    sender = str(Keypair().pubkey())
    with patch("time.time", return_value=NOW):
        await open_sale(mock_context)
        result = await server.deposit(
            context=mock_context, sale_id="main_sale", sender=sender, beneficiary=sender, amount=WEI
        )

    assert result.startswith("Error: InsufficientFundsError")
    assert sale_manager.get_sale("main_sale").engine.total_contributed == 0


@pytest.mark.asyncio
async def test_deposit_after_end_time():
    mock_context = MagicMock()
    with patch("time.time", return_value=NOW):
        await open_sale(mock_context)
    with patch("time.time", return_value=NOW + 31 * DAY):
        result = await server.deposit(
            context=mock_context, sale_id="main_sale", sender=CONTRIBUTOR, beneficiary=CONTRIBUTOR, amount=WEI
        )
        info = json.loads(await server.get_sale_info(context=mock_context, sale_id="main_sale"))

    assert result.startswith("Error: SaleClosed")
    assert info["status"]["phase"] == "ended"
    assert info["sale"]["state"]["phase"] == "started"


@pytest.mark.asyncio
async def test_deposit_input_validation():
    mock_context = MagicMock()
    with patch("time.time", return_value=NOW):
        await open_sale(mock_context)
        bad_amount = await server.deposit(
            context=mock_context, sale_id="main_sale", sender=CONTRIBUTOR, beneficiary=CONTRIBUTOR, amount=0
        )
        bad_address = await server.deposit(
            context=mock_context, sale_id="main_sale", sender="not-an-address", beneficiary=CONTRIBUTOR,
            amount=WEI,
        )

    assert bad_amount == "Error: Amount must be a positive integer"
    assert bad_address == "Error: Sender is not a valid address"


@pytest.mark.asyncio
async def test_deposit_rate_limited():
    mock_context = MagicMock()
    with patch("time.time", return_value=NOW):
        await open_sale(mock_context)
        with patch.object(rate_limiter, "check_rate_limit", return_value=False):
            result = await server.deposit(
                context=mock_context, sale_id="main_sale", sender=CONTRIBUTOR, beneficiary=CONTRIBUTOR,
                amount=WEI,
            )

    assert result == f"Rate limit exceeded for contributor: {CONTRIBUTOR}"
    assert sale_manager.get_sale("main_sale").engine.total_contributed == 0


@pytest.mark.asyncio
async def test_record_payment_requires_owner():
    mock_context = MagicMock()
    with patch("time.time", return_value=NOW):
        await server.create_sale(context=mock_context, config_json=sale_config())
        result = await server.record_payment(
            context=mock_context, sale_id="main_sale", caller=CONTRIBUTOR, payer=CONTRIBUTOR, amount=WEI
        )

    assert result.startswith("Error: Unauthorized")


@pytest.mark.asyncio
async def test_close_and_release_locked_tokens():
    mock_context = MagicMock()
    with patch("time.time", return_value=NOW):
        await open_sale(mock_context)
        await server.deposit(
            context=mock_context, sale_id="main_sale", sender=CONTRIBUTOR, beneficiary=CONTRIBUTOR, amount=WEI
        )
        close_result = await server.close_sale(context=mock_context, sale_id="main_sale", caller=OWNER)
        early = await server.release_locked_tokens(context=mock_context, sale_id="main_sale")
        late_deposit = await server.deposit(
            context=mock_context, sale_id="main_sale", sender=CONTRIBUTOR, beneficiary=CONTRIBUTOR, amount=WEI
        )

    assert close_result == f"Sale 'main_sale' closed. Total contributed: {WEI} units."
    assert early.startswith("Error: NotReady")
    assert late_deposit.startswith("Error: SaleClosed")

    with patch("time.time", return_value=RELEASE_TIME):
        released = await server.release_locked_tokens(context=mock_context, sale_id="main_sale")
        balance = await server.get_token_balance(context=mock_context, sale_id="main_sale", address=BENEFICIARY)

    assert released == f"Released 60.000 ESG to {BENEFICIARY}."
    assert balance == f"Balance of {BENEFICIARY}: 60.000 ESG"


@pytest.mark.asyncio
async def test_unexpected_error_is_hidden():
    mock_context = MagicMock()
    with patch("time.time", return_value=NOW):
        await open_sale(mock_context)
        with patch.object(sale_manager, "get_sale", side_effect=RuntimeError("boom")):
            result = await server.get_sale_info(context=mock_context, sale_id="main_sale")

    assert result == "An unexpected server error occurred"
