"""Tests for the reference data cache."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from topstepx_mcp.cache import RefreshStatus, extract_list
from topstepx_mcp.errors import RequestError

from conftest import ACCOUNTS, contract_payload, contract_search

CONTRACTS = {
    "MES": [contract_payload("MES"), contract_payload("MES", "CON.F.US.MES.H26")],
    "MNQ": [contract_payload("MNQ")],
    "GC": [contract_payload("GC")],
}


@pytest.fixture
def populated_api(api):
    api.on("/Account/search", {"accounts": ACCOUNTS, "success": True, "errorCode": 0})
    api.on("/Contract/search", contract_search(CONTRACTS))
    return api


def test_extract_list_accepts_both_shapes():
    assert extract_list([1], "bars") == [1]
    assert extract_list({"bars": [2], "success": True}, "bars") == [2]
    assert extract_list({"success": True}, "bars") == []
    assert extract_list(None, "bars") == []


# ==========================================
# refresh()
# ==========================================

@pytest.mark.asyncio
async def test_refresh_loads_accounts_and_common_contracts(cache, populated_api):
    outcome = await cache.refresh()

    assert outcome.status == RefreshStatus.SUCCESS
    assert outcome.accounts_loaded == 2
    assert outcome.contracts_loaded == 2
    assert outcome.errors == {}
    assert list(cache.accounts) == [1001, 1002]
    assert cache.accounts[1001].can_trade is True
    assert cache.contracts["MES"].id == "CON.F.US.MES.Z25"
    assert cache.symbol_to_contract_id == {
        "MES": "CON.F.US.MES.Z25",
        "MNQ": "CON.F.US.MNQ.Z25",
    }
    assert populated_api.calls_to("/Account/search") == [{"onlyActiveAccounts": True}]
    assert populated_api.calls_to("/Contract/search") == [
        {"searchText": "MES", "live": False},
        {"searchText": "MNQ", "live": False},
    ]


@pytest.mark.asyncio
async def test_per_symbol_failure_does_not_abort_refresh(cache, populated_api):
    def search(body):
        if body["searchText"] == "MES":
            return RequestError("Contract search failed")
        return CONTRACTS[body["searchText"]]
    populated_api.on("/Contract/search", search)

    outcome = await cache.refresh()

    assert outcome.status == RefreshStatus.PARTIAL
    assert outcome.errors == {"MES": "Contract search failed"}
    assert outcome.contracts_loaded == 1
    assert "MES" not in cache.contracts
    assert "MNQ" in cache.contracts
    assert len(cache.accounts) == 2


@pytest.mark.asyncio
async def test_symbol_without_match_is_reported(cache, populated_api):
    populated_api.on("/Contract/search", contract_search({"MNQ": CONTRACTS["MNQ"]}))

    outcome = await cache.refresh()

    assert outcome.status == RefreshStatus.PARTIAL
    assert outcome.errors == {"MES": "No matching contract"}


@pytest.mark.asyncio
async def test_account_failure_keeps_previous_snapshot(cache, populated_api):
    await cache.refresh()
    populated_api.on("/Account/search", RequestError("Gateway timeout", status_code=504))

    outcome = await cache.refresh()

    assert outcome.status == RefreshStatus.PARTIAL
    assert outcome.account_error == "Gateway timeout"
    assert outcome.accounts_loaded == 0
    assert list(cache.accounts) == [1001, 1002]


@pytest.mark.asyncio
async def test_successful_refresh_replaces_accounts(cache, populated_api):
    await cache.refresh()
    populated_api.on("/Account/search", {"accounts": [ACCOUNTS[1]], "success": True})

    await cache.refresh()

    assert list(cache.accounts) == [1002]


@pytest.mark.asyncio
async def test_refresh_never_raises(cache, api):
    api.on("/Account/search", RequestError("down"))
    api.on("/Contract/search", RequestError("down"))

    outcome = await cache.refresh()

    assert outcome.status == RefreshStatus.FAILED
    assert set(outcome.errors) == {"MES", "MNQ"}
    assert cache.accounts == {}
    assert cache.contracts == {}
    assert cache.last_outcome is outcome


@pytest.mark.asyncio
async def test_malformed_account_is_logged_not_raised(cache, populated_api):
    populated_api.on("/Account/search", {"accounts": [{"name": "no id"}]})

    outcome = await cache.refresh()

    assert outcome.account_error is not None
    assert cache.accounts == {}


@pytest.mark.asyncio
async def test_refresh_keeps_lazily_loaded_symbols(cache, populated_api):
    await cache.lookup_contract("GC")

    await cache.refresh()

    assert "GC" in cache.contracts
    assert cache.symbol_to_contract_id["GC"] == "CON.F.US.GC.Z25"


# ==========================================
# lookup_contract()
# ==========================================

@pytest.mark.asyncio
async def test_cached_symbol_does_not_hit_api(cache, populated_api):
    await cache.refresh()
    searches = len(populated_api.calls_to("/Contract/search"))

    first = await cache.lookup_contract("MES")
    second = await cache.lookup_contract("MES")

    assert first is second
    assert len(populated_api.calls_to("/Contract/search")) == searches


@pytest.mark.asyncio
async def test_uncached_symbol_is_searched_once_and_cached(cache, populated_api):
    contract = await cache.lookup_contract("MES")
    again = await cache.lookup_contract("MES")

    assert contract.id == "CON.F.US.MES.Z25"  # first match wins
    assert again is contract
    assert populated_api.calls_to("/Contract/search") == [{"searchText": "MES", "live": False}]
    assert cache.symbol_to_contract_id["MES"] == "CON.F.US.MES.Z25"


@pytest.mark.asyncio
async def test_lookup_normalizes_symbol(cache, populated_api):
    contract = await cache.lookup_contract(" mnq ")

    assert contract.symbol == "MNQ"
    assert "MNQ" in cache.contracts


@pytest.mark.asyncio
async def test_unknown_symbol_returns_none(cache, populated_api):
    assert await cache.lookup_contract("XYZ") is None
    assert "XYZ" not in cache.contracts


@pytest.mark.asyncio
async def test_lookup_propagates_gateway_errors(cache, api):
    api.on("/Contract/search", RequestError("Unauthorized", status_code=401))

    with pytest.raises(RequestError):
        await cache.lookup_contract("MES")


# ==========================================
# Accounts
# ==========================================

def test_default_account_id_empty(cache):
    assert cache.default_account_id() is None


@pytest.mark.asyncio
async def test_default_account_id_is_first_returned(cache, populated_api):
    await cache.refresh()

    assert cache.default_account_id() == 1001
    assert cache.default_account_id() == 1001


@pytest.mark.asyncio
async def test_positions_and_orders_are_placeholders(cache, mock_gateway):
    # Known gap: no position/order endpoint is wired up yet
    assert await cache.get_positions() == []
    assert await cache.get_positions(1001) == []
    assert await cache.get_orders(1001, only_open=False) == []
    mock_gateway.request.assert_not_called()


# ==========================================
# Periodic refresh
# ==========================================

@pytest.mark.asyncio
async def test_auto_refresh_runs_until_stopped(cache):
    with patch.object(cache, "refresh", AsyncMock()) as refresh:
        task = cache.start_auto_refresh(0.01)
        await asyncio.sleep(0.05)
        cache.stop_auto_refresh()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert refresh.await_count >= 1


@pytest.mark.asyncio
async def test_auto_refresh_survives_unexpected_error(cache):
    calls = []

    def fail_first():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("boom")

    refresh = AsyncMock(side_effect=fail_first)
    with patch.object(cache, "refresh", refresh):
        task = cache.start_auto_refresh(0.01)
        await asyncio.sleep(0.05)

        assert not task.done()
        assert refresh.await_count >= 2
        cache.stop_auto_refresh()
        with pytest.raises(asyncio.CancelledError):
            await task
