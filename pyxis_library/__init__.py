"""Pyxis Library - catalog mirror and lending core.

This package contains:
- Remote catalog crawling (services/catalog_fetcher.py, services/ingestion.py)
- SQLite record store (database.py)
- Reservation state machine (reservations.py)
- Request-handling facade (library.py), HTTP API (api.py) and CLI (main.py)
"""

__version__ = "1.0.0"
