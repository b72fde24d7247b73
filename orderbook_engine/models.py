"""Orders, trades and order-book snapshots with their JSON wire form."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping

_ZERO = Decimal(0)


class Side(str, Enum):
    """Which side of the book an order rests on."""

    BID = "BID"
    ASK = "ASK"


class OrderKind(str, Enum):
    """How an order is priced."""

    LIMIT = "LIMIT"
    MARKET = "MARKET"


class OrderStatus(str, Enum):
    """Status values written to the order store."""

    FILLED = "FILLED"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    CLOSE = "CLOSE"


def _decimal_text(value: Decimal) -> str:
    """Plain notation with trailing fractional zeros removed."""
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in ("", "-0"):
        return "0"
    return text


def _dumps(data: Any) -> str:
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def _loads_object(text: str | bytes) -> dict:
    data = json.loads(text, parse_float=Decimal)
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    return data


def _str_field(data: Mapping[str, Any], name: str) -> str:
    value = data.get(name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string")
    return value


def _int_field(data: Mapping[str, Any], name: str) -> int:
    value = data.get(name)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer")
    return value


def _decimal_field(data: Mapping[str, Any], name: str) -> Decimal:
    value = data.get(name)
    if value is None:
        return _ZERO
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a decimal number")
    if isinstance(value, float):
        value = repr(value)
    if isinstance(value, (str, int, Decimal)):
        try:
            result = Decimal(value)
        except InvalidOperation as exc:
            raise ValueError(f"{name} is not a decimal number: {value!r}") from exc
        if not result.is_finite():
            raise ValueError(f"{name} must be finite")
        return result
    raise ValueError(f"{name} must be a decimal number")


@dataclass(frozen=True)
class Order:
    """An order as submitted and as stored in the book."""

    order_id: str = ""
    user_id: int = 0
    order_type: str = ""
    order_kind: str = ""
    price: Decimal = _ZERO
    amount: Decimal = _ZERO
    timestamp: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "user_id": self.user_id,
            "order_type": str(Side(self.order_type).value) if self.order_type in Side._value2member_map_ else self.order_type,
            "order_kind": str(OrderKind(self.order_kind).value) if self.order_kind in OrderKind._value2member_map_ else self.order_kind,
            "price": _decimal_text(self.price),
            "amount": _decimal_text(self.amount),
            "timestamp": self.timestamp,
        }

    def to_json(self) -> str:
        return _dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Order:
        """Build an order; missing fields take their zero values."""
        return cls(
            order_id=_str_field(data, "order_id"),
            user_id=_int_field(data, "user_id"),
            order_type=_str_field(data, "order_type"),
            order_kind=_str_field(data, "order_kind"),
            price=_decimal_field(data, "price"),
            amount=_decimal_field(data, "amount"),
            timestamp=_int_field(data, "timestamp"),
        )

    @classmethod
    def from_json(cls, text: str | bytes) -> Order:
        return cls.from_dict(_loads_object(text))


@dataclass(frozen=True)
class Trade:
    """A fill between a bid order and an ask order."""

    trade_id: str
    bid_order_id: str
    ask_order_id: str
    price: Decimal
    amount: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "trade_id": self.trade_id,
            "bid_order_id": self.bid_order_id,
            "ask_order_id": self.ask_order_id,
            "price": _decimal_text(self.price),
            "amount": _decimal_text(self.amount),
        }

    def to_json(self) -> str:
        return _dumps(self.to_dict())

    @classmethod
    def from_json(cls, text: str | bytes) -> Trade:
        data = _loads_object(text)
        return cls(
            trade_id=_str_field(data, "trade_id"),
            bid_order_id=_str_field(data, "bid_order_id"),
            ask_order_id=_str_field(data, "ask_order_id"),
            price=_decimal_field(data, "price"),
            amount=_decimal_field(data, "amount"),
        )


@dataclass(frozen=True)
class OrderBookLevel:
    """Total amount resting at one price."""

    price: Decimal
    amount: Decimal

    def to_dict(self) -> dict[str, str]:
        return {"price": _decimal_text(self.price), "amount": _decimal_text(self.amount)}


@dataclass(frozen=True)
class OrderBookSnapshot:
    """Aggregated view of both sides of a pair's book."""

    pair: str
    bids: list[OrderBookLevel] = field(default_factory=list)
    asks: list[OrderBookLevel] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """An empty side is written as null."""
        return {
            "pair": self.pair,
            "bids": [level.to_dict() for level in self.bids] or None,
            "asks": [level.to_dict() for level in self.asks] or None,
        }

    def to_json(self) -> str:
        return _dumps(self.to_dict())