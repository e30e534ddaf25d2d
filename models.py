# models.py
from pydantic import BaseModel
from typing import Any, List, Literal, Optional, Union
from dataclasses import dataclass

# --- Core values ---

@dataclass(frozen=True)
class PricePoint:
    timestamp: int   # epoch milliseconds
    price: float

@dataclass(frozen=True)
class TrendResult:
    slope: float      # price units per second
    intercept: float

# --- Decoded feed events (what a feed connector yields) ---

@dataclass(frozen=True)
class TickerNotification:
    channel: str
    mark_price: float
    timestamp: int

@dataclass(frozen=True)
class RpcResult:
    id: int
    result: List[str]

@dataclass(frozen=True)
class RpcErrorEvent:
    id: Optional[int]
    code: int
    message: str
    reason: Optional[str] = None
    param: Optional[str] = None

@dataclass(frozen=True)
class UnrecognizedMessage:
    raw: str

@dataclass(frozen=True)
class MalformedMessage:
    raw: str
    error: str

FeedEvent = Union[TickerNotification, RpcResult, RpcErrorEvent, UnrecognizedMessage, MalformedMessage]

# --- JSON-RPC wire models (Deribit API v2) ---

class SubscribeParams(BaseModel):
    channels: List[str]

class RpcRequest(BaseModel):
    jsonrpc: Literal["2.0"] = "2.0"
    id: int
    method: str
    params: SubscribeParams

class TickerData(BaseModel):
    mark_price: float
    timestamp: int

class NotificationParams(BaseModel):
    channel: str
    data: TickerData

class RpcErrorData(BaseModel):
    reason: Optional[str] = None
    param: Optional[str] = None

class RpcError(BaseModel):
    code: int
    message: str
    data: Optional[RpcErrorData] = None

# Inbound frame: a notification, a result or an error. Unknown keys are ignored.
# params is only validated as NotificationParams for "subscription" frames.
class FeedMessage(BaseModel):
    jsonrpc: Optional[str] = None
    id: Optional[int] = None
    method: Optional[str] = None
    params: Optional[Any] = None
    result: Optional[List[str]] = None
    error: Optional[RpcError] = None

# --- HTTP response models ---

class TrendReportResponse(BaseModel):
    instrument: str
    window_seconds: int
    size: int
    status: Literal["collecting", "trending"]
    current_price: Optional[float] = None
    direction: Optional[Literal["UP", "DOWN", "FLAT"]] = None
    slope: Optional[float] = None
    extrapolated_price: Optional[float] = None

class HealthResponse(BaseModel):
    status: str
    window_size: int
    feed: str
    tracker: str = "running"
