"""
Tessera Test Suite.

This package contains:
- unit/: Unit tests (in-memory, temp directories, mock transports)
- integration/: Integration tests (SQLite, in-process HTTP server)
"""
