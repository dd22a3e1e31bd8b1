"""
Tessera CLI - edit a design locally, version it, and sync it to a store.

Commands:
    init, dev, undo, redo, history, checkpoint, login, logout, whoami

Invariants:
    - Every change is recorded in the local store before it is synced
    - Remote writes are guarded by the last known workspace version
"""

__version__ = "0.1.0"
