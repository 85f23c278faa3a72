"""
Pydantic schemas for the signal API.

Wire names are camelCase (``stopLoss``, ``profitPercent``); Python attributes
stay snake_case. Request payloads are validated through ``parse_payload`` so
that every failure maps to a single machine-readable reason.
"""
import math
from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from signalhub.core.exceptions import SignalValidationError
from signalhub.models.signal import Direction, SignalStatus

PayloadT = TypeVar("PayloadT", bound="SignalPayload")


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ---------- Request Schemas ----------

class SignalPayload(CamelModel):
    """Base for request bodies; maps field names to error codes."""

    error_codes: ClassVar[Dict[str, str]] = {}

    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


def _check_number(value: Any) -> Any:
    if isinstance(value, bool):
        raise ValueError("must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError("must be a finite number")
    return value


def _check_finite(value: Optional[Decimal]) -> Optional[Decimal]:
    if value is not None and not value.is_finite():
        raise ValueError("must be a finite number")
    return value


class SignalIngest(SignalPayload):
    """New signal from a producer or an administrator."""

    pair: str
    action: Direction
    entry: Decimal
    stop_loss: Decimal
    take_profit: Decimal
    confidence: Optional[int] = None
    risk: Optional[Decimal] = None
    reasoning: Optional[str] = None
    source: Optional[str] = None
    timestamp: Optional[datetime] = None

    error_codes: ClassVar[Dict[str, str]] = {
        "pair": "missing_field",
        "action": "invalid_direction",
        "entry": "invalid_price",
        "stopLoss": "invalid_price",
        "takeProfit": "invalid_price",
        "confidence": "invalid_field",
        "risk": "invalid_field",
        "timestamp": "invalid_timestamp",
    }

    @field_validator("pair")
    @classmethod
    def pair_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("pair must not be empty")
        return value

    @field_validator("action", mode="before")
    @classmethod
    def normalize_action(cls, value: Any) -> Any:
        if not isinstance(value, str):
            raise ValueError("action must be LONG or SHORT")
        return value.strip().upper()

    @field_validator("entry", "stop_loss", "take_profit", "risk", mode="before")
    @classmethod
    def prices_are_numbers(cls, value: Any) -> Any:
        return _check_number(value)

    @field_validator("entry", "stop_loss", "take_profit", "risk")
    @classmethod
    def prices_are_finite(cls, value: Optional[Decimal]) -> Optional[Decimal]:
        return _check_finite(value)

    @field_validator("confidence", "risk", "reasoning", "source", "timestamp", mode="before")
    @classmethod
    def optional_blank(cls, value: Any) -> Any:
        return cls._blank_to_none(value)


class SignalStatusUpdate(SignalPayload):
    """Lifecycle patch: close, cancel or correct a signal."""

    status: Optional[SignalStatus] = None
    close_price: Optional[Decimal] = None
    profit: Optional[Decimal] = None
    profit_percent: Optional[Decimal] = None
    closed_at: Optional[datetime] = None

    error_codes: ClassVar[Dict[str, str]] = {
        "status": "invalid_status",
        "closePrice": "invalid_price",
        "profit": "invalid_price",
        "profitPercent": "invalid_price",
        "closedAt": "invalid_timestamp",
    }

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value: Any) -> Any:
        value = cls._blank_to_none(value)
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("status must be a string")
        return value.strip().upper()

    @field_validator("close_price", "profit", "profit_percent", mode="before")
    @classmethod
    def numbers_only(cls, value: Any) -> Any:
        return _check_number(cls._blank_to_none(value))

    @field_validator("close_price", "profit", "profit_percent")
    @classmethod
    def finite_only(cls, value: Optional[Decimal]) -> Optional[Decimal]:
        return _check_finite(value)

    @field_validator("closed_at", mode="before")
    @classmethod
    def optional_timestamp(cls, value: Any) -> Any:
        return cls._blank_to_none(value)


def parse_payload(model: Type[PayloadT], payload: Any) -> PayloadT:
    """Validate a request body, raising SignalValidationError on the first problem."""
    if not isinstance(payload, dict):
        raise SignalValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        error = exc.errors()[0]
        loc = error.get("loc") or ()
        field_name = str(loc[0]) if loc else None
        if error.get("type") == "missing":
            code = "missing_field"
            message = f"Missing required field: {field_name}"
        else:
            code = model.error_codes.get(field_name, "invalid_field")
            message = f"Invalid value for {field_name}: {error.get('msg')}"
        raise SignalValidationError(message, code=code, field=field_name) from exc


# ---------- Response Schemas ----------

class SignalRead(CamelModel):
    id: str
    pair: str
    action: str
    entry: float
    stop_loss: float
    take_profit: float
    confidence: Optional[int]
    risk: Optional[float]
    reasoning: Optional[str]
    status: str
    source: str
    created_at: datetime
    closed_at: Optional[datetime]
    close_price: Optional[float]
    profit: Optional[float]
    profit_percent: Optional[float]


class SignalStatistics(CamelModel):
    total_signals: int
    active_signals: int
    closed_signals: int
    winning_signals: int
    losing_signals: int
    win_rate: float
    total_profit: float
    total_profit_percent: float
    average_profit: float


class IngestResponse(CamelModel):
    success: bool = True
    signal_id: str
    message: str
    signal: SignalRead


class SignalResponse(CamelModel):
    success: bool = True
    signal: SignalRead


class SignalUpdateResponse(SignalResponse):
    message: str = "Signal updated successfully"


class ActiveSignalsResponse(CamelModel):
    success: bool = True
    count: int
    signals: List[SignalRead]


class SignalHistoryResponse(ActiveSignalsResponse):
    limit: int
    offset: int


class AdminSignalListResponse(SignalHistoryResponse):
    pairs: List[str]


class StatisticsResponse(CamelModel):
    success: bool = True
    timeframe: str
    statistics: SignalStatistics


def signal_payload(signal: Any) -> Dict[str, Any]:
    """JSON-ready camelCase dict of a stored signal, as pushed to viewers."""
    return SignalRead.model_validate(signal).model_dump(mode="json", by_alias=True)
