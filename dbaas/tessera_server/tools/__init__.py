"""
CLI tools for Tessera administration.

This module provides command-line tools for:
- replay: Materialize historical versions and verify stored state

Invariants:
    - Tools work offline (no running server required)
    - Tools never modify workspace history
"""

from .replay import ReplayTool

__all__ = ["ReplayTool"]
