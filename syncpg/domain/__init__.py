"""
Domain package for syncpg.

Contains the value types returned to callers.
"""

from syncpg.domain.messages import CommandComplete, SimpleQueryMessage, SimpleQueryRow

__all__ = ["CommandComplete", "SimpleQueryMessage", "SimpleQueryRow"]
