"""
Data models for the TopstepX MCP server.

Remote models mirror the REST payloads: they accept camelCase JSON, expose
snake_case attributes, keep unknown fields and dump back to camelCase.
Tool input models validate the arguments of each MCP tool.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

# ==========================================
# Enumerations
# ==========================================

class OrderSide(str, Enum):
    """Order side."""
    BUY = "Buy"
    SELL = "Sell"

class OrderType(str, Enum):
    """Order types accepted by /Order/place."""
    MARKET = "Market"
    LIMIT = "Limit"
    STOP = "Stop"
    STOP_LIMIT = "StopLimit"

class TimeInForce(str, Enum):
    """Time in force."""
    DAY = "Day"
    GTC = "GTC"
    IOC = "IOC"
    FOK = "FOK"

class BarType(str, Enum):
    """Bar granularity for /MarketData/retrieve-bars."""
    ONE_MINUTE = "1min"
    FIVE_MINUTES = "5min"
    FIFTEEN_MINUTES = "15min"
    THIRTY_MINUTES = "30min"
    ONE_HOUR = "1hour"
    FOUR_HOURS = "4hour"
    ONE_DAY = "1day"

PRICE_ORDER_TYPES = (OrderType.LIMIT, OrderType.STOP_LIMIT)
STOP_ORDER_TYPES = (OrderType.STOP, OrderType.STOP_LIMIT)

# ==========================================
# Remote Models
# ==========================================

class RemoteModel(BaseModel):
    """Base for payloads returned by the REST API."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

class Account(RemoteModel):
    id: int
    name: str = ""
    balance: float = 0.0
    can_trade: bool = False
    is_visible: bool = True
    simulated: bool = False

class Contract(RemoteModel):
    id: Union[int, str]
    symbol: Optional[str] = None
    name: str = ""
    exchange: Optional[str] = None
    tick_size: Optional[float] = None
    point_value: Optional[float] = None
    min_quantity: Optional[int] = None
    max_quantity: Optional[int] = None
    trading_hours: Optional[str] = None

class Position(RemoteModel):
    id: int
    account_id: int
    contract_id: Union[int, str]
    symbol: str
    quantity: int
    side: OrderSide
    average_price: float
    unrealized_pnl: float = 0.0
    realized_pnl: float = 0.0
    open_time: Optional[str] = None

class Order(RemoteModel):
    id: int
    account_id: int
    contract_id: Union[int, str]
    symbol: Optional[str] = None
    side: OrderSide
    order_type: OrderType
    quantity: int
    price: Optional[float] = None
    stop_price: Optional[float] = None
    status: str
    filled_quantity: int = 0
    average_filled_price: Optional[float] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

class Bar(RemoteModel):
    timestamp: Optional[str] = None
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    close: Optional[float] = None
    volume: Optional[float] = None

# ==========================================
# Tool Input Models
# ==========================================

def _parse_timestamp(value: str) -> datetime:
    # fromisoformat rejects a trailing Z before Python 3.11
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)

class ToolInput(BaseModel):
    """Base input model: camelCase arguments, surrounding whitespace stripped."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

class SymbolInput(ToolInput):
    symbol: str = Field(
        ...,
        description="Contract symbol (e.g., 'MES', 'MNQ')",
        min_length=1,
        max_length=32
    )

    @field_validator("symbol")
    @classmethod
    def upper_symbol(cls, v: str) -> str:
        return v.upper()

class AccountInput(ToolInput):
    account_id: Optional[int] = Field(
        default=None,
        description="Account ID. None uses the default account",
        gt=0
    )

class NoArgsInput(ToolInput):
    pass

class ContractDetailsInput(SymbolInput):
    pass

class SearchContractsInput(ToolInput):
    search_text: str = Field(
        ...,
        description="Text to search for in contract symbols or names",
        min_length=1
    )
    limit: int = Field(
        default=10,
        description="Maximum number of results to return",
        ge=1,
        le=100
    )

class ListPositionsInput(AccountInput):
    pass

class PlaceOrderInput(SymbolInput, AccountInput):
    side: OrderSide = Field(..., description="Order side: Buy or Sell")
    quantity: int = Field(..., description="Number of contracts", gt=0)
    order_type: OrderType = Field(default=OrderType.MARKET, description="Order type")
    price: Optional[float] = Field(default=None, description="Limit price", gt=0)
    stop_price: Optional[float] = Field(default=None, description="Stop trigger price", gt=0)
    time_in_force: TimeInForce = Field(default=TimeInForce.DAY, description="Time in force")

    @model_validator(mode="after")
    def check_prices(self) -> "PlaceOrderInput":
        if self.order_type in PRICE_ORDER_TYPES and self.price is None:
            raise ValueError(f"price is required for {self.order_type.value} orders")
        if self.order_type in STOP_ORDER_TYPES and self.stop_price is None:
            raise ValueError(f"stopPrice is required for {self.order_type.value} orders")
        return self

class ClosePositionInput(SymbolInput, AccountInput):
    quantity: Optional[int] = Field(
        default=None,
        description="Quantity to close. None closes the whole position",
        gt=0
    )

class ModifyOrderInput(ToolInput):
    order_id: int = Field(..., description="Order ID to modify", gt=0)
    quantity: Optional[int] = Field(default=None, description="New quantity", gt=0)
    price: Optional[float] = Field(default=None, description="New limit price", gt=0)
    stop_price: Optional[float] = Field(default=None, description="New stop price", gt=0)

class CancelOrderInput(ToolInput):
    order_id: int = Field(..., description="Order ID to cancel", gt=0)

class ListOrdersInput(AccountInput):
    only_open: bool = Field(default=True, description="Only show open orders")

class AccountSummaryInput(AccountInput):
    pass

class MarketDataInput(SymbolInput):
    pass

class BarsInput(SymbolInput):
    start_time: str = Field(..., description="Start time in ISO 8601 format", min_length=1)
    end_time: str = Field(..., description="End time in ISO 8601 format", min_length=1)
    bar_type: BarType = Field(default=BarType.ONE_MINUTE, description="Bar granularity")

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_timestamp(cls, v: str) -> str:
        try:
            _parse_timestamp(v)
        except ValueError:
            raise ValueError(f"'{v}' is not an ISO 8601 timestamp") from None
        return v

    @model_validator(mode="after")
    def check_range(self) -> "BarsInput":
        start = _parse_timestamp(self.start_time)
        end = _parse_timestamp(self.end_time)
        if (start.tzinfo is None) == (end.tzinfo is None) and end < start:
            raise ValueError("endTime must not be before startTime")
        return self
