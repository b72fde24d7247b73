from decimal import Decimal
from unittest.mock import patch

import pytest

from orderbook_engine.book import (
    DEFAULT_REDIS_ADDR,
    DEFAULT_REDIS_DB,
    OrderBook,
    RedisSettings,
    book_key,
    connect,
)
from orderbook_engine.models import Order, Trade

PAIR = "BTC_USDT"


class FakePubSub:
    def __init__(self, messages):
        self._messages = messages
        self.channels = []
        self.closed = False

    def subscribe(self, *channels):
        self.channels.extend(channels)

    def listen(self):
        for channel in self.channels:
            yield {"type": "subscribe", "channel": channel, "data": 1}
        for channel, data in self._messages:
            if channel in self.channels:
                yield {"type": "message", "channel": channel, "data": data}

    def close(self):
        self.closed = True


class FakeRedis:
    def __init__(self):
        self.zsets = {}
        self.published = []
        self.incoming = []
        self.pubsubs = []
        self.closed = False

    def delete(self, *names):
        return sum(1 for name in names if self.zsets.pop(name, None) is not None)

    def publish(self, channel, message):
        self.published.append((channel, message))
        return 0

    def zadd(self, name, mapping):
        self.zsets.setdefault(name, {}).update(mapping)
        return len(mapping)

    def _sorted(self, name):
        return sorted(self.zsets.get(name, {}).items(), key=lambda kv: (kv[1], kv[0]))

    def zrange(self, name, start, end, withscores=False):
        stop = None if end == -1 else end + 1
        items = self._sorted(name)[start:stop]
        return items if withscores else [member for member, _ in items]

    def zrangebyscore(self, name, min, max, withscores=False):
        low, high = float(min), float(max)
        items = [(m, s) for m, s in self._sorted(name) if low <= s <= high]
        return items if withscores else [member for member, _ in items]

    def zrem(self, name, *values):
        zset = self.zsets.get(name, {})
        return sum(1 for value in values if zset.pop(value, None) is not None)

    def pubsub(self):
        pubsub = FakePubSub(self.incoming)
        self.pubsubs.append(pubsub)
        return pubsub

    def close(self):
        self.closed = True


def make_order(order_id, side, price, amount="1", timestamp=1):
    return Order(order_id, 1, side, "LIMIT", Decimal(price), Decimal(amount), timestamp)


@pytest.fixture
def fake():
    return FakeRedis()


@pytest.fixture
def book(fake):
    return OrderBook(fake)


def test_settings_defaults_from_empty_env():
    settings = RedisSettings.from_env({})
    assert settings == RedisSettings(DEFAULT_REDIS_ADDR, "", DEFAULT_REDIS_DB)


def test_settings_strip_scheme_and_read_values():
    settings = RedisSettings.from_env(
        {"REDIS_ADDR": "https://cache:6379", "REDIS_DB": "2", "REDIS_PASSWORD": "password"}
    )
    assert settings.addr == "cache:6379"
    assert settings.db == 2
    assert settings.password == "password"


def test_settings_invalid_db_falls_back():
    assert RedisSettings.from_env({"REDIS_DB": "many"}).db == DEFAULT_REDIS_DB


def test_connect_builds_client_and_pings():
    with patch("orderbook_engine.book.redis.Redis") as redis_cls:
        client = connect(RedisSettings("cachehost:6390", "", 3))
    redis_cls.assert_called_once_with(
        host="cachehost", port=6390, password=None, db=3, decode_responses=True
    )
    client.ping.assert_called_once_with()
    assert client is redis_cls.return_value


def test_book_key():
    assert book_key("ASK", PAIR) == "asks:" + PAIR
    assert book_key("BID", PAIR) == "bids:" + PAIR
    assert book_key("OTHER", PAIR) == "bids:" + PAIR


def test_init_clears_both_sides(book, fake):
    bid = make_order("b", "BID", "10")
    ask = make_order("a", "ASK", "11")
    book.add_order(bid, PAIR)
    book.add_order(ask, PAIR)
    assert book.all_orders("bids:" + PAIR) == [bid]
    assert book.all_orders("asks:" + PAIR) == [ask]
    book.init(PAIR)
    assert book.all_orders("bids:" + PAIR) == []
    assert book.all_orders("asks:" + PAIR) == []
    assert book.best_order("bids:" + PAIR) is None
    assert book.best_order("asks:" + PAIR) is None
    assert fake.zsets == {}


def test_submit_order_publishes_json(book, fake):
    order = make_order("o1", "BID", "10")
    book.submit_order(order)
    assert fake.published == [("incoming_orders", order.to_json())]


def test_publish_trade(book, fake):
    trade = Trade("t1", "b", "a", Decimal("10"), Decimal("1"))
    book.publish_trade(trade)
    assert fake.published == [("completed_trades", trade.to_json())]


def test_add_order_goes_to_its_side(book, fake):
    order = make_order("a1", "ASK", "100.5")
    book.add_order(order, PAIR)
    assert list(fake.zsets["asks:" + PAIR]) == [order.to_json()]
    assert "bids:" + PAIR not in fake.zsets


@pytest.mark.parametrize("price", ["0", "-1", "1000000.01"])
def test_add_order_rejects_out_of_range_price(book, fake, price):
    with pytest.raises(ValueError):
        book.add_order(make_order("x", "BID", price), PAIR)
    assert fake.zsets == {}


def test_add_order_accepts_price_rounding_to_limit(book, fake):
    book.add_order(make_order("x", "BID", "1000000.000000004"), PAIR)
    assert len(fake.zsets["bids:" + PAIR]) == 1


def test_best_order_empty(book):
    assert book.best_order("asks:" + PAIR) is None


def test_best_order_is_lowest_price(book):
    high = make_order("a1", "ASK", "101")
    low = make_order("a2", "ASK", "100.5")
    book.add_order(high, PAIR)
    book.add_order(low, PAIR)
    order, price = book.best_order("asks:" + PAIR)
    assert order == low
    assert price == Decimal("100.5")


def test_remove_order(book, fake):
    order = make_order("a1", "ASK", "100")
    book.add_order(order, PAIR)
    book.remove_order("asks:" + PAIR, order)
    assert fake.zsets["asks:" + PAIR] == {}


def test_orders_at_price_filters_by_price(book):
    first = make_order("a1", "ASK", "100", timestamp=2)
    second = make_order("a2", "ASK", "100", amount="3", timestamp=1)
    other = make_order("a3", "ASK", "101")
    for order in (first, second, other):
        book.add_order(order, PAIR)
    found = book.orders_at_price("asks:" + PAIR, Decimal("100"))
    assert sorted(o.order_id for o in found) == ["a1", "a2"]


def test_orders_at_price_uses_rounded_price(book):
    order = make_order("a1", "ASK", "100.123456789")
    book.add_order(order, PAIR)
    found = book.orders_at_price("asks:" + PAIR, Decimal("100.12345679"))
    assert found == [order]


def test_all_orders_skips_unreadable(book, fake):
    order = make_order("b1", "BID", "50")
    book.add_order(order, PAIR)
    fake.zsets["bids:" + PAIR]["garbage"] = 1.0
    assert book.all_orders("bids:" + PAIR) == [order]


def test_subscribe_orders_yields_valid_orders(book, fake):
    order = make_order("o1", "BID", "10")
    fake.incoming.extend(
        [
            ("incoming_orders", order.to_json()),
            ("incoming_orders", "not json"),
            ("other", order.to_json()),
        ]
    )
    assert list(book.subscribe_orders("incoming_orders")) == [order]
    assert fake.pubsubs[0].channels == ["incoming_orders"]
    assert fake.pubsubs[0].closed is True


def test_close_and_context_manager(fake):
    with OrderBook(fake) as book:
        book.init(PAIR)
    assert fake.closed is True