"""
Tool Dispatcher
===============
MCP tool definitions and the handlers behind them. Each handler validates
its arguments, resolves symbols and default accounts through the cache,
calls the gateway and reshapes the result.

Every outcome is a JSON-ready dict: ``{"success": True, ...}`` on success,
``{"error": "...", "isError": True}`` otherwise.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar

import mcp.types as types
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .cache import ReferenceDataCache, extract_list
from .errors import NotFoundError, TopstepXError, ValidationError
from .gateway import Gateway
from .models import (
    AccountSummaryInput, BarsInput, BarType, CancelOrderInput, ClosePositionInput,
    Contract, ContractDetailsInput, ListOrdersInput, ListPositionsInput,
    MarketDataInput, ModifyOrderInput, NoArgsInput, OrderSide, OrderType,
    PlaceOrderInput, PRICE_ORDER_TYPES, SearchContractsInput, STOP_ORDER_TYPES,
    TimeInForce,
)
from .session import utc_now

logger = logging.getLogger("topstepx-mcp.tools")

InputT = TypeVar("InputT", bound=BaseModel)
ToolResult = Dict[str, Any]

_SYMBOL = {
    "type": "string",
    "description": "The contract symbol (e.g., MES, MNQ)"
}

_ACCOUNT_ID = {
    "type": "integer",
    "description": "The account ID (optional, the default account is used if omitted)"
}

# ==========================================
# Tool Definitions
# ==========================================

TOOLS: List[types.Tool] = [
    types.Tool(
        name="get_accounts",
        description="Get list of available trading accounts",
        inputSchema={
            "type": "object",
            "properties": {}
        }
    ),
    types.Tool(
        name="get_contract_details",
        description="Get detailed information about a specific contract by symbol",
        inputSchema={
            "type": "object",
            "properties": {
                "symbol": _SYMBOL
            },
            "required": ["symbol"]
        }
    ),
    types.Tool(
        name="search_contracts",
        description="Search for contracts by text",
        inputSchema={
            "type": "object",
            "properties": {
                "searchText": {
                    "type": "string",
                    "description": "Text to search for in contract symbols or names"
                },
                "limit": {
                    "type": "integer",
                    "default": 10,
                    "minimum": 1,
                    "maximum": 100,
                    "description": "Maximum number of results to return"
                }
            },
            "required": ["searchText"]
        }
    ),
    types.Tool(
        name="get_common_contracts",
        description="Get list of commonly traded contracts (MES, MNQ, etc.)",
        inputSchema={
            "type": "object",
            "properties": {}
        }
    ),
    types.Tool(
        name="list_positions",
        description="List all open positions",
        inputSchema={
            "type": "object",
            "properties": {
                "accountId": {
                    "type": "integer",
                    "description": "The account ID (optional, all accounts if omitted)"
                }
            }
        }
    ),
    types.Tool(
        name="place_order",
        description="Place a new order. Limit and StopLimit orders need a price; "
                    "Stop and StopLimit orders need a stopPrice.",
        inputSchema={
            "type": "object",
            "properties": {
                "symbol": _SYMBOL,
                "side": {
                    "type": "string",
                    "enum": [s.value for s in OrderSide],
                    "description": "Order side"
                },
                "quantity": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Number of contracts"
                },
                "orderType": {
                    "type": "string",
                    "enum": [t.value for t in OrderType],
                    "default": OrderType.MARKET.value,
                    "description": "Type of order"
                },
                "price": {
                    "type": "number",
                    "description": "Limit price (Limit and StopLimit orders)"
                },
                "stopPrice": {
                    "type": "number",
                    "description": "Stop trigger price (Stop and StopLimit orders)"
                },
                "accountId": _ACCOUNT_ID,
                "timeInForce": {
                    "type": "string",
                    "enum": [t.value for t in TimeInForce],
                    "default": TimeInForce.DAY.value,
                    "description": "Time in force"
                }
            },
            "required": ["symbol", "side", "quantity"]
        }
    ),
    types.Tool(
        name="close_position",
        description="Close an existing position",
        inputSchema={
            "type": "object",
            "properties": {
                "symbol": {
                    "type": "string",
                    "description": "The contract symbol to close"
                },
                "accountId": _ACCOUNT_ID,
                "quantity": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Quantity to close (optional, closes the entire position if omitted)"
                }
            },
            "required": ["symbol"]
        }
    ),
    types.Tool(
        name="modify_order",
        description="Modify an existing order",
        inputSchema={
            "type": "object",
            "properties": {
                "orderId": {
                    "type": "integer",
                    "description": "The order ID to modify"
                },
                "quantity": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "New quantity"
                },
                "price": {
                    "type": "number",
                    "description": "New price for Limit orders"
                },
                "stopPrice": {
                    "type": "number",
                    "description": "New stop price for Stop orders"
                }
            },
            "required": ["orderId"]
        }
    ),
    types.Tool(
        name="cancel_order",
        description="Cancel an existing order",
        inputSchema={
            "type": "object",
            "properties": {
                "orderId": {
                    "type": "integer",
                    "description": "The order ID to cancel"
                }
            },
            "required": ["orderId"]
        }
    ),
    types.Tool(
        name="list_orders",
        description="List orders",
        inputSchema={
            "type": "object",
            "properties": {
                "accountId": {
                    "type": "integer",
                    "description": "The account ID (optional)"
                },
                "onlyOpen": {
                    "type": "boolean",
                    "default": True,
                    "description": "Only show open orders"
                }
            }
        }
    ),
    types.Tool(
        name="get_account_summary",
        description="Get account summary including balance and P&L",
        inputSchema={
            "type": "object",
            "properties": {
                "accountId": _ACCOUNT_ID
            }
        }
    ),
    types.Tool(
        name="get_market_data",
        description="Get latest market data (most recent 1-minute bar) for a contract",
        inputSchema={
            "type": "object",
            "properties": {
                "symbol": _SYMBOL
            },
            "required": ["symbol"]
        }
    ),
    types.Tool(
        name="get_bars",
        description="Get historical bar data for a contract",
        inputSchema={
            "type": "object",
            "properties": {
                "symbol": _SYMBOL,
                "startTime": {
                    "type": "string",
                    "description": "Start time in ISO 8601 format"
                },
                "endTime": {
                    "type": "string",
                    "description": "End time in ISO 8601 format"
                },
                "barType": {
                    "type": "string",
                    "enum": [b.value for b in BarType],
                    "default": BarType.ONE_MINUTE.value,
                    "description": "Bar granularity"
                }
            },
            "required": ["symbol", "startTime", "endTime"]
        }
    ),
]

# ==========================================
# Result helpers
# ==========================================

def success_result(**payload: Any) -> ToolResult:
    return {"success": True, **payload}

def error_result(message: str) -> ToolResult:
    return {"error": message, "isError": True}

def format_validation_error(e: PydanticValidationError) -> str:
    problems = []
    for err in e.errors():
        location = ".".join(str(part) for part in err["loc"])
        message = err["msg"]
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        problems.append(f"{location}: {message}" if location else message)
    return "Invalid arguments: " + "; ".join(problems)

def parse_arguments(model: Type[InputT], arguments: Optional[Dict[str, Any]]) -> InputT:
    """Validate raw tool arguments against an input model."""
    try:
        return model.model_validate(arguments or {})
    except PydanticValidationError as e:
        raise ValidationError(format_validation_error(e)) from e

# ==========================================
# Dispatcher
# ==========================================

class ToolDispatcher:
    """Maps tool names to handlers; every call ends in a result dict."""

    def __init__(self, gateway: Gateway, cache: ReferenceDataCache,
                 clock: Callable[[], datetime] = utc_now):
        self.gateway = gateway
        self.cache = cache
        self._clock = clock
        self.handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[ToolResult]]] = {
            "get_accounts": self.get_accounts,
            "get_contract_details": self.get_contract_details,
            "search_contracts": self.search_contracts,
            "get_common_contracts": self.get_common_contracts,
            "list_positions": self.list_positions,
            "place_order": self.place_order,
            "close_position": self.close_position,
            "modify_order": self.modify_order,
            "cancel_order": self.cancel_order,
            "list_orders": self.list_orders,
            "get_account_summary": self.get_account_summary,
            "get_market_data": self.get_market_data,
            "get_bars": self.get_bars,
        }

    async def call(self, name: str, arguments: Optional[Dict[str, Any]]) -> ToolResult:
        """Run a tool by name. Errors come back as ``isError`` results, never raised."""
        handler = self.handlers.get(name)
        if handler is None:
            return error_result(f"Unknown tool: {name}")

        try:
            return await handler(arguments or {})
        except TopstepXError as e:
            logger.warning(f"Tool {name} failed: {e}")
            return error_result(str(e))
        except Exception as e:
            logger.error(f"Error in tool {name}: {e}", exc_info=True)
            return error_result(f"Failed to {name.replace('_', ' ')}: {e}")

    # ------------------------------------------
    # Resolution helpers
    # ------------------------------------------

    async def _resolve_contract(self, symbol: str) -> Contract:
        contract = await self.cache.lookup_contract(symbol)
        if contract is None:
            raise NotFoundError(f"Contract not found: {symbol}")
        return contract

    def _resolve_account_id(self, account_id: Optional[int]) -> int:
        if account_id is not None:
            return account_id
        default = self.cache.default_account_id()
        if default is None:
            raise NotFoundError("No account ID provided and no default account available")
        return default

    # ------------------------------------------
    # Accounts and contracts
    # ------------------------------------------

    async def get_accounts(self, arguments: Dict[str, Any]) -> ToolResult:
        parse_arguments(NoArgsInput, arguments)
        accounts = [a.to_json() for a in self.cache.accounts_list()]
        return success_result(accounts=accounts, count=len(accounts))

    async def get_contract_details(self, arguments: Dict[str, Any]) -> ToolResult:
        params = parse_arguments(ContractDetailsInput, arguments)
        contract = await self._resolve_contract(params.symbol)
        return success_result(contract=contract.to_json())

    async def search_contracts(self, arguments: Dict[str, Any]) -> ToolResult:
        params = parse_arguments(SearchContractsInput, arguments)
        response = await self.gateway.request(
            "POST", "/Contract/search", {"searchText": params.search_text, "live": False}
        )
        contracts = extract_list(response, "contracts")
        return success_result(contracts=contracts[:params.limit], count=len(contracts))

    async def get_common_contracts(self, arguments: Dict[str, Any]) -> ToolResult:
        parse_arguments(NoArgsInput, arguments)
        return success_result(
            contracts=[c.to_json() for c in self.cache.contracts_list()],
            symbols=list(self.cache.contracts),
        )

    # ------------------------------------------
    # Positions
    # ------------------------------------------

    async def list_positions(self, arguments: Dict[str, Any]) -> ToolResult:
        params = parse_arguments(ListPositionsInput, arguments)
        positions = await self.cache.get_positions(params.account_id)
        return success_result(
            positions=[p.to_json() for p in positions],
            count=len(positions),
        )

    async def close_position(self, arguments: Dict[str, Any]) -> ToolResult:
        params = parse_arguments(ClosePositionInput, arguments)
        await self._resolve_contract(params.symbol)

        positions = await self.cache.get_positions(params.account_id)
        position = next((p for p in positions if p.symbol == params.symbol), None)
        if position is None:
            raise NotFoundError(f"No open position found for {params.symbol}")

        response = await self.gateway.request("POST", "/Position/close-partial", {
            "positionId": position.id,
            "quantity": params.quantity or position.quantity,
        })
        return success_result(closedPosition=response)

    # ------------------------------------------
    # Orders
    # ------------------------------------------

    async def place_order(self, arguments: Dict[str, Any]) -> ToolResult:
        """
        Place an order on the resolved contract.

        Price requirements are checked by ``PlaceOrderInput`` before the
        contract is resolved, so an incomplete order never reaches the API.
        """
        params = parse_arguments(PlaceOrderInput, arguments)
        contract = await self._resolve_contract(params.symbol)
        account_id = self._resolve_account_id(params.account_id)

        body: Dict[str, Any] = {
            "accountId": account_id,
            "contractId": contract.id,
            "side": params.side.value,
            "orderType": params.order_type.value,
            "quantity": params.quantity,
            "timeInForce": params.time_in_force.value,
        }
        if params.order_type in PRICE_ORDER_TYPES:
            body["price"] = params.price
        if params.order_type in STOP_ORDER_TYPES:
            body["stopPrice"] = params.stop_price

        logger.info(
            f"Placing {params.order_type.value} {params.side.value} {params.quantity} "
            f"{params.symbol} on account {account_id}"
        )
        response = await self.gateway.request("POST", "/Order/place", body)
        return success_result(order=response)

    async def modify_order(self, arguments: Dict[str, Any]) -> ToolResult:
        params = parse_arguments(ModifyOrderInput, arguments)
        body: Dict[str, Any] = {"orderId": params.order_id}
        if params.quantity is not None:
            body["quantity"] = params.quantity
        if params.price is not None:
            body["price"] = params.price
        if params.stop_price is not None:
            body["stopPrice"] = params.stop_price

        response = await self.gateway.request("POST", "/Order/modify", body)
        return success_result(order=response)

    async def cancel_order(self, arguments: Dict[str, Any]) -> ToolResult:
        params = parse_arguments(CancelOrderInput, arguments)
        response = await self.gateway.request(
            "POST", "/Order/cancel", {"orderId": params.order_id}
        )
        return success_result(cancelled=response)

    async def list_orders(self, arguments: Dict[str, Any]) -> ToolResult:
        params = parse_arguments(ListOrdersInput, arguments)
        orders = await self.cache.get_orders(params.account_id, params.only_open)
        return success_result(orders=[o.to_json() for o in orders], count=len(orders))

    async def get_account_summary(self, arguments: Dict[str, Any]) -> ToolResult:
        params = parse_arguments(AccountSummaryInput, arguments)
        account_id = self._resolve_account_id(params.account_id)
        account = self.cache.get_account(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")

        positions = await self.cache.get_positions(account_id)
        open_orders = await self.cache.get_orders(account_id, True)
        unrealized = sum(p.unrealized_pnl for p in positions)
        realized = sum(p.realized_pnl for p in positions)

        return success_result(
            account=account.to_json(),
            positions={
                "count": len(positions),
                "totalUnrealizedPnl": unrealized,
                "totalRealizedPnl": realized,
            },
            openOrders=len(open_orders),
            summary={
                "balance": account.balance,
                "canTrade": account.can_trade,
                "totalPnl": unrealized + realized,
            },
        )

    # ------------------------------------------
    # Market data
    # ------------------------------------------

    async def _retrieve_bars(self, contract: Contract, start: str, end: str,
                             bar_type: BarType) -> List[Any]:
        response = await self.gateway.request("POST", "/MarketData/retrieve-bars", {
            "contractId": contract.id,
            "startTime": start,
            "endTime": end,
            "barType": bar_type.value,
        })
        return extract_list(response, "bars")

    async def get_market_data(self, arguments: Dict[str, Any]) -> ToolResult:
        params = parse_arguments(MarketDataInput, arguments)
        contract = await self._resolve_contract(params.symbol)

        end = self._clock()
        start = end - timedelta(minutes=1)
        bars = await self._retrieve_bars(
            contract, start.isoformat(), end.isoformat(), BarType.ONE_MINUTE
        )
        if not bars:
            raise NotFoundError(f"No market data available for {params.symbol}")

        return success_result(
            symbol=params.symbol,
            contract={"id": contract.id, "name": contract.name},
            latestBar=bars[-1],
            timestamp=self._clock().isoformat(),
        )

    async def get_bars(self, arguments: Dict[str, Any]) -> ToolResult:
        params = parse_arguments(BarsInput, arguments)
        contract = await self._resolve_contract(params.symbol)
        bars = await self._retrieve_bars(
            contract, params.start_time, params.end_time, params.bar_type
        )
        return success_result(
            symbol=params.symbol,
            barType=params.bar_type.value,
            bars=bars,
            count=len(bars),
        )
