"""
Infrastructure package for syncpg.

Exports the execution engine and connection establishment.
"""

from syncpg.infrastructure.connect import build_conninfo, open_connection
from syncpg.infrastructure.runtime import Lease, Runtime

__all__ = ["Lease", "Runtime", "build_conninfo", "open_connection"]
