"""Redis-backed order book with price-time priority matching, snapshots and an aiohttp front end."""

__version__ = "0.1.0"