# orderbook-engine

This package is an order book and matching engine for trading pairs. Resting
orders are stored in Redis sorted sets and scored by price. New orders are
published on a Redis channel. Each fill is published on a second channel and
also recorded in a `Ledger`.

## Modules

### `orderbook_engine.models`

- `Order` is a frozen dataclass with the fields `order_id`, `user_id`,
  `order_type`, `order_kind`, `price`, `amount` and `timestamp`.
- `Trade` holds `trade_id`, `bid_order_id`, `ask_order_id`, `price` and
  `amount`.
- `OrderBookLevel` holds a `price` and the total `amount` resting at that price.
- `OrderBookSnapshot` holds a `pair` plus lists of `bids` and `asks` levels.
- `Side` (`BID`, `ASK`), `OrderKind` (`LIMIT`, `MARKET`) and `OrderStatus`
  (`FILLED`, `PARTIALLY_FILLED`, `CLOSE`) are string enums.

Prices and amounts are `decimal.Decimal`.

`to_dict()` and `to_json()` write prices and amounts as plain decimal strings
with trailing zeros removed. The JSON output is compact.

`Order.from_dict`, `Order.from_json` and `Trade.from_json` accept numbers or
numeric strings. A missing field becomes its zero value. A malformed field
raises `ValueError`.

In a snapshot's JSON, an empty side is written as `null`.

### `orderbook_engine.book`

- `RedisSettings.from_env(env)` reads `REDIS_ADDR`, `REDIS_PASSWORD` and
  `REDIS_DB`. It reads from the mapping you pass, or from `os.environ` if you
  pass `None`.
- `connect(settings)` opens a `redis.Redis` client with `decode_responses=True`
  and pings the server. An address with no port uses port 6379.

The settings defaults are:

| Variable         | Default          |
|------------------|------------------|
| `REDIS_ADDR`     | `127.0.0.1:6380` |
| `REDIS_PASSWORD` | empty            |
| `REDIS_DB`       | `1`              |

A leading `http://` or `https://` on the address is dropped. If `REDIS_DB` is
not an integer, the default is used and a warning is logged.

`book_key(side, pair)` returns `asks:<pair>` for `ASK` and `bids:<pair>` for
anything else.

`OrderBook(client)` wraps a Redis client. It can be used as a context manager,
and `close()` closes the client. Its methods are:

- `init(pair)` empties both sides of the pair.
- `submit_order(order)` publishes the order's JSON on `incoming_orders`
  (`ORDERS_CHANNEL`).
- `add_order(order, pair)` puts the order on its side. The score is the price
  rounded half away from zero to 8 decimal places, multiplied by 10^8. If the
  rounded price is not greater than 0 or is above 1,000,000, it raises
  `ValueError`.
- `best_order(key)` returns `(order, price)` for the lowest-scored entry, or
  `None` if that side is empty.
- `orders_at_price(key, price)` returns the orders whose rounded price equals
  `price`.
- `remove_order(key, order)` removes an order from a side.
- `all_orders(key)` returns every readable order on a side.
- `publish_trade(trade)` publishes the trade's JSON on `completed_trades`
  (`TRADES_CHANNEL`).
- `subscribe_orders(channel)` is a generator. It yields each order published
  on the channel and skips messages that cannot be read.

### `orderbook_engine.matching`

`match_limit(book, ledger, pair, order)` and
`match_market(book, ledger, pair, order)` walk the opposite side of the book,
starting at the best price. Within each price level, resting orders fill in
timestamp order. Each trade is priced at the resting order's price.

For every fill, the trade is saved to the ledger and published. The resting
order is then removed. Any remainder of the resting order goes back on the
book with status `PARTIALLY_FILLED`. A resting order that is used up is
marked `FILLED`.

- **Limit order.** Matching stops when the best opposite price no longer
  crosses the order's price. If the order is fully filled, it is marked
  `FILLED`. Otherwise its old entry is removed and the remainder is placed on
  its own side. If some of it was filled, it is marked `PARTIALLY_FILLED`.
- **Market order.** The order takes whatever the opposite side holds. It is
  marked `FILLED` if fully filled, `PARTIALLY_FILLED` if partly filled, and
  `CLOSE` if nothing was filled. The unfilled remainder is dropped and is
  never placed on the book.

`Ledger` is a dataclass with two fields:

- `trades`, a list;
- `statuses`, a dict of order id to `OrderStatus`.

Its methods are `save_trade(trade)`, `set_status(order_id, status)` and the
context manager `transaction()`. If the `transaction()` block raises, status
changes made inside it are rolled back. Saved trades are kept either way.

### `orderbook_engine.snapshot`

`order_book_snapshot(book, pair)` adds up the resting amount at each price.
Bids are listed highest price first and asks lowest price first. A side that
raises a Redis error is reported as empty.

`Broadcaster` keeps a set of websockets through `register(ws)` and
`unregister(ws)`, and supports `len()` and `in`. The coroutine
`broadcast(snapshot)` sends the snapshot's JSON to every client with
`send_str`. A client that fails with `OSError` or `RuntimeError` is closed
and removed.

### `orderbook_engine.api`

`validate_order(payload, now=None)` accepts a mapping, JSON text or bytes. It
returns an `Order` and assigns the missing values:

- a missing `order_id` becomes a UUID4;
- a zero or missing `timestamp` becomes `now`, or the current Unix time if
  `now` is `None`.

It raises `OrderRejected` (a `ValueError`) in any of these cases:

- the format is invalid;
- the type is not `BID` or `ASK`;
- the kind is not `LIMIT` or `MARKET`;
- the order is a limit order whose price is 0 or less;
- the amount is 0 or less.

`create_app(book, user_exists, broadcaster)` builds an aiohttp `Application`
with two routes.

`POST /orders` validates the body. If validation fails, it answers 400 with
the rejection reason. It then calls `user_exists(order.user_id)`; if that is
false or raises, it answers 400 `user does not exist`. Next it calls
`book.submit_order` in a worker thread; if that fails, it answers 500. On
success it returns:

```json
{"message": "order submitted", "order_id": "..."}
```

`GET /ws/orderbook` opens a websocket and registers it with the broadcaster
until the client disconnects. No snapshot is sent when a client connects.

## Example

```python
from orderbook_engine.api import OrderRejected, validate_order
from orderbook_engine.book import ORDERS_CHANNEL, OrderBook, RedisSettings, connect
from orderbook_engine.matching import Ledger, match_limit, match_market
from orderbook_engine.models import OrderKind

try:
    order = validate_order(
        {"user_id": 7, "order_type": "BID", "order_kind": "LIMIT",
         "price": "25000.5", "amount": "0.1"},
        now=1_700_000_000,
    )
except OrderRejected as exc:
    print("rejected:", exc)

ledger = Ledger()
with OrderBook(connect(RedisSettings.from_env())) as book:
    book.init("BTC_USDT")
    for incoming in book.subscribe_orders(ORDERS_CHANNEL):
        if incoming.order_kind == OrderKind.MARKET:
            match_market(book, ledger, "BTC_USDT", incoming)
        else:
            match_limit(book, ledger, "BTC_USDT", incoming)
```

## What this package does not do

- It has no command and no entry point that starts a service. You must run
  the aiohttp application, the order-consuming loop and any snapshot
  broadcasting yourself.
- `Ledger` keeps trades and statuses in memory only. It has no database
  storage, and it does not record orders when they arrive.
- It has no user store. User checks are done by the `user_exists` callable
  that you pass to `create_app`.