"""Pyxis Library - Services Package

This package contains the remote catalog integration:
- HTTP client abstraction
- Catalog search fetcher
- Ingestion scheduler
"""
