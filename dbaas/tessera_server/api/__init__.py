"""
API module for Tessera server.

This module provides the external interface: a FastAPI application that
exposes the version engine over HTTP.

Invariants:
    - Every workspace operation requires an authenticated owner
    - Writes go through the version engine, never directly to a store

How to change safely:
    - Add new routes, don't change the semantics of existing ones
    - Keep the SDK client in sync
"""

from .http_server import create_app

__all__ = [
    "create_app",
]
