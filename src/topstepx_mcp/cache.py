"""
Reference Data Cache
====================
In-memory accounts and contracts, loaded at startup, refreshed on a fixed
interval, with read-through lookup for symbols outside the common list.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError

from .config import COMMON_SYMBOLS, DEFAULT_REFRESH_INTERVAL
from .errors import TopstepXError
from .gateway import Gateway
from .models import Account, Contract, Order, Position

logger = logging.getLogger("topstepx-mcp.cache")

ContractId = Union[int, str]


def extract_list(payload: Any, key: str) -> List[Any]:
    """Return the result list from either a bare list or ``{key: [...]}``."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get(key), list):
        return payload[key]
    return []


class RefreshStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class RefreshOutcome:
    """What a refresh cycle managed to load and which parts failed."""
    status: RefreshStatus
    accounts_loaded: int = 0
    contracts_loaded: int = 0
    account_error: Optional[str] = None
    errors: Dict[str, str] = field(default_factory=dict)


class ReferenceDataCache:
    """Accounts by id, contracts by symbol, and the symbol -> contract id view."""

    def __init__(self, gateway: Gateway, symbols: Sequence[str] = COMMON_SYMBOLS):
        self.gateway = gateway
        self.symbols = tuple(symbols)
        self.accounts: Dict[int, Account] = {}
        self.contracts: Dict[str, Contract] = {}
        self.symbol_to_contract_id: Dict[str, ContractId] = {}
        self.last_outcome: Optional[RefreshOutcome] = None
        self._refresh_task: Optional[asyncio.Task] = None

    # ==========================================
    # Refresh
    # ==========================================

    async def refresh(self) -> RefreshOutcome:
        """
        Reload accounts and the common contracts. Never raises.

        The account map is replaced only when /Account/search succeeds.
        Common symbols are replaced by this cycle's results, so a symbol
        whose search failed drops out; lazily loaded symbols are kept.
        """
        logger.info("Refreshing TopstepX reference data...")
        account_error = await self._load_accounts()
        errors = await self._load_contracts()

        loaded = len(self.symbols) - len(errors)
        if account_error is None and not errors:
            status = RefreshStatus.SUCCESS
        elif account_error is not None and loaded == 0:
            status = RefreshStatus.FAILED
        else:
            status = RefreshStatus.PARTIAL

        outcome = RefreshOutcome(
            status=status,
            accounts_loaded=0 if account_error else len(self.accounts),
            contracts_loaded=loaded,
            account_error=account_error,
            errors=errors,
        )
        self.last_outcome = outcome
        logger.info(
            f"Reference data refresh {status.value}: "
            f"{outcome.accounts_loaded} accounts, {loaded}/{len(self.symbols)} contracts"
        )
        return outcome

    async def _load_accounts(self) -> Optional[str]:
        try:
            response = await self.gateway.request(
                "POST", "/Account/search", {"onlyActiveAccounts": True}
            )
            accounts = [Account.model_validate(a) for a in extract_list(response, "accounts")]
        except (TopstepXError, PydanticValidationError) as e:
            logger.error(f"Failed to load accounts: {e}")
            return str(e)

        if not accounts:
            logger.warning("No accounts found in response")
        self.accounts = {account.id: account for account in accounts}
        logger.info(f"Loaded {len(accounts)} accounts")
        return None

    async def _load_contracts(self) -> Dict[str, str]:
        contracts: Dict[str, Contract] = {}
        errors: Dict[str, str] = {}

        for symbol in self.symbols:
            try:
                contract = await self._search_first(symbol)
            except (TopstepXError, PydanticValidationError) as e:
                logger.warning(f"Failed to load contract {symbol}: {e}")
                errors[symbol] = str(e)
                continue
            if contract is None:
                logger.warning(f"No contract found for {symbol}")
                errors[symbol] = "No matching contract"
                continue
            contracts[symbol] = contract
            logger.debug(f"Loaded contract: {symbol} (ID: {contract.id})")

        for symbol, contract in self.contracts.items():
            if symbol not in self.symbols:
                contracts[symbol] = contract

        self.contracts = contracts
        self.symbol_to_contract_id = {s: c.id for s, c in contracts.items()}
        return errors

    # ==========================================
    # Lookups
    # ==========================================

    async def _search_first(self, symbol: str) -> Optional[Contract]:
        response = await self.gateway.request(
            "POST", "/Contract/search", {"searchText": symbol, "live": False}
        )
        matches = extract_list(response, "contracts")
        if not matches:
            return None
        return Contract.model_validate(matches[0])

    async def lookup_contract(self, symbol: str) -> Optional[Contract]:
        """
        Resolve a symbol to a contract.

        Cached symbols never hit the API. Anything else is searched once and
        the first match is cached. Gateway errors propagate.
        """
        symbol = symbol.strip().upper()
        cached = self.contracts.get(symbol)
        if cached is not None:
            return cached

        contract = await self._search_first(symbol)
        if contract is None:
            return None
        self.contracts[symbol] = contract
        self.symbol_to_contract_id[symbol] = contract.id
        return contract

    def default_account_id(self) -> Optional[int]:
        """Id of the first account in the order the API returned them."""
        for account_id in self.accounts:
            return account_id
        return None

    def get_account(self, account_id: int) -> Optional[Account]:
        return self.accounts.get(account_id)

    def accounts_list(self) -> List[Account]:
        return list(self.accounts.values())

    def contracts_list(self) -> List[Contract]:
        return list(self.contracts.values())

    # TODO: wire to /Position/searchOpen and /Order/search once their
    # request and response shapes are confirmed.
    async def get_positions(self, account_id: Optional[int] = None) -> List[Position]:
        logger.warning("Position lookup is not implemented; returning no positions")
        return []

    async def get_orders(self, account_id: Optional[int] = None,
                         only_open: bool = True) -> List[Order]:
        logger.warning("Order lookup is not implemented; returning no orders")
        return []

    # ==========================================
    # Periodic refresh
    # ==========================================

    def start_auto_refresh(self, interval: float = DEFAULT_REFRESH_INTERVAL) -> asyncio.Task:
        """Run ``refresh()`` in the background, ``interval`` seconds after each cycle ends."""
        self.stop_auto_refresh()
        self._refresh_task = asyncio.create_task(self._refresh_loop(interval))
        logger.info(f"Reference data refresh scheduled every {interval:g}s")
        return self._refresh_task

    def stop_auto_refresh(self) -> None:
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            self._refresh_task = None

    async def _refresh_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.refresh()
            except Exception as e:
                logger.error(f"Reference data refresh failed: {e}", exc_info=True)
