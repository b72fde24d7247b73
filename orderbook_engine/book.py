"""Redis-backed order book and order/trade channels."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, localcontext

import redis

from .models import Order, Side, Trade

log = logging.getLogger(__name__)

DEFAULT_REDIS_ADDR = "127.0.0.1:6380"
DEFAULT_REDIS_DB = 1
PRICE_PRECISION = Decimal(100_000_000)
MAX_PRICE = Decimal(1_000_000)
ORDERS_CHANNEL = "incoming_orders"
TRADES_CHANNEL = "completed_trades"

_EIGHT_PLACES = Decimal("1e-8")


def _round8(value: Decimal) -> Decimal:
    """Round half away from zero to eight decimal places."""
    if not value.is_finite() or value.adjusted() > 60:
        return value
    with localcontext() as ctx:
        ctx.prec = 100
        return value.quantize(_EIGHT_PLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class RedisSettings:
    """Where the Redis server lives."""

    addr: str = DEFAULT_REDIS_ADDR
    password: str = ""
    db: int = DEFAULT_REDIS_DB

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> RedisSettings:
        """Read REDIS_ADDR, REDIS_PASSWORD and REDIS_DB."""
        if env is None:
            env = os.environ
        addr = env.get("REDIS_ADDR", "")
        addr = addr.removeprefix("http://").removeprefix("https://")
        if not addr:
            addr = DEFAULT_REDIS_ADDR
        db_text = env.get("REDIS_DB", "")
        db = DEFAULT_REDIS_DB
        if db_text:
            try:
                db = int(db_text)
            except ValueError:
                log.warning("invalid Redis database number %r, using default", db_text)
        return cls(addr=addr, password=env.get("REDIS_PASSWORD", ""), db=db)


def connect(settings: RedisSettings) -> redis.Redis:
    """Open a client and check the server answers."""
    host, sep, port_text = settings.addr.rpartition(":")
    if not sep:
        host, port = settings.addr, 6379
    else:
        port = int(port_text)
    log.info("connecting to Redis at %s, database %d", settings.addr, settings.db)
    password = settings.password or None
    client = redis.Redis(
        host=host, port=port, password=password, db=settings.db, decode_responses=True
    )
    client.ping()
    return client


def book_key(side: str, pair: str) -> str:
    """Sorted-set key for one side of a pair; anything but ASK is a bid."""
    return ("asks:" if side == Side.ASK else "bids:") + pair


class OrderBook:
    """Orders kept in Redis sorted sets scored by price."""

    def __init__(self, client) -> None:
        self._client = client

    def __enter__(self) -> OrderBook:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def init(self, pair: str) -> None:
        """Empty both sides of the pair's book."""
        self._client.delete(book_key(Side.BID, pair), book_key(Side.ASK, pair))

    def submit_order(self, order: Order) -> None:
        text = order.to_json()
        log.info("publishing order to %s: %s", ORDERS_CHANNEL, text)
        self._client.publish(ORDERS_CHANNEL, text)

    def add_order(self, order: Order, pair: str) -> None:
        """Place an order on its side; the price must lie in (0, 1000000]."""
        key = book_key(order.order_type, pair)
        price = _round8(order.price)
        if price <= 0 or price > MAX_PRICE:
            log.warning("invalid price: %s", price)
            raise ValueError(f"price out of range: {price}")
        score = price * PRICE_PRECISION
        log.info(
            "adding order to %s, price %s, rounded %s, timestamp %s, score %s",
            key, order.price, price, order.timestamp, score,
        )
        self._client.zadd(key, {order.to_json(): float(score)})

    def best_order(self, key: str) -> tuple[Order, Decimal] | None:
        """The lowest-scored order on a side and its price, or None if empty."""
        entries = self._client.zrange(key, 0, 0, withscores=True)
        if not entries:
            return None
        member, score = entries[0]
        order = Order.from_json(member)
        score_value = Decimal(repr(float(score)))
        price = score_value.to_integral_value(rounding=ROUND_FLOOR) / PRICE_PRECISION
        log.debug("best order %s, score %s, price %s", order, score_value, price)
        return order, price

    def remove_order(self, key: str, order: Order) -> None:
        self._client.zrem(key, order.to_json())

    def orders_at_price(self, key: str, price: Decimal) -> list[Order]:
        """Orders on a side whose price rounds to exactly this price."""
        bound = format(price * PRICE_PRECISION, "f")
        entries = self._client.zrangebyscore(key, bound, bound, withscores=True)
        orders = []
        for member, _score in entries:
            try:
                order = Order.from_json(member)
            except ValueError as exc:
                log.warning("skipping unreadable order: %s", exc)
                continue
            if _round8(order.price) == price:
                orders.append(order)
        return orders

    def publish_trade(self, trade: Trade) -> None:
        text = trade.to_json()
        log.info("publishing trade to %s: %s", TRADES_CHANNEL, text)
        self._client.publish(TRADES_CHANNEL, text)

    def subscribe_orders(self, channel: str) -> Iterator[Order]:
        """Yield orders published on a channel, skipping unreadable messages."""
        pubsub = self._client.pubsub()
        try:
            pubsub.subscribe(channel)
            log.info("subscribed to %s", channel)
            for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                data = message.get("data")
                try:
                    order = Order.from_json(data)
                except ValueError as exc:
                    log.warning("cannot read order %r: %s", data, exc)
                    continue
                yield order
        finally:
            pubsub.close()

    def all_orders(self, key: str) -> list[Order]:
        """Every readable order on a side, lowest score first."""
        orders = []
        for member, _score in self._client.zrange(key, 0, -1, withscores=True):
            try:
                orders.append(Order.from_json(member))
            except ValueError as exc:
                log.warning("skipping unreadable order: %s", exc)
        return orders

    def close(self) -> None:
        self._client.close()