"""
Utilities package for syncpg.

Exports shared helpers for cross-cutting concerns. Keep this package free of
driver or TLS logic.
"""

from syncpg.utils.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
]
