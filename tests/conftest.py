"""Shared fixtures for the TopstepX MCP server tests."""

import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from unittest.mock import Mock, AsyncMock

import pytest

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from topstepx_mcp.cache import ReferenceDataCache
from topstepx_mcp.config import Settings
from topstepx_mcp.tools import ToolDispatcher

API_URL = "https://api.test/api"

ACCOUNTS = [
    {"id": 1001, "name": "50K Combine", "balance": 50000.0,
     "canTrade": True, "isVisible": True, "simulated": True},
    {"id": 1002, "name": "Express Funded", "balance": 25000.0,
     "canTrade": False, "isVisible": True, "simulated": False},
]


def contract_payload(symbol: str, contract_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": contract_id or f"CON.F.US.{symbol}.Z25",
        "symbol": symbol,
        "name": f"{symbol}Z5",
        "exchange": "CME",
        "tickSize": 0.25,
        "pointValue": 5.0,
        "minQuantity": 1,
        "maxQuantity": 100,
        "tradingHours": "17:00-16:00 CT",
        "activeContract": True,
    }


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 3, 3, 14, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeApi:
    """
    Stand-in for the gateway's remote side.

    Routes map a path to a payload, an exception, or a callable taking the
    request body and returning either.
    """

    def __init__(self):
        self.routes: Dict[str, Any] = {}
        self.calls: List[Tuple[str, str, Optional[Dict[str, Any]]]] = []

    def on(self, path: str, result: Any) -> None:
        self.routes[path] = result

    async def handle(self, method: str, path: str,
                     body: Optional[Dict[str, Any]] = None) -> Any:
        self.calls.append((method, path, body))
        if path not in self.routes:
            raise AssertionError(f"Unexpected call: {method} {path}")
        result = self.routes[path]
        if callable(result):
            result = result(body)
        if isinstance(result, Exception):
            raise result
        return result

    def calls_to(self, path: str) -> List[Optional[Dict[str, Any]]]:
        return [body for _, p, body in self.calls if p == path]


def contract_search(contracts: Dict[str, List[Dict[str, Any]]]) -> Callable:
    return lambda body: contracts.get(body["searchText"], [])


@pytest.fixture
def settings():
    return Settings(
        username="trader",
        api_key="key-1234567890",
        api_url=API_URL,
        common_symbols=("MES", "MNQ"),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def mock_gateway(api):
    gateway = Mock()
    gateway.request = AsyncMock(side_effect=api.handle)
    return gateway


@pytest.fixture
def cache(mock_gateway):
    return ReferenceDataCache(mock_gateway, ("MES", "MNQ"))


@pytest.fixture
def dispatcher(mock_gateway, cache, clock):
    return ToolDispatcher(mock_gateway, cache, clock=clock)


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: requires live TopstepX credentials")
