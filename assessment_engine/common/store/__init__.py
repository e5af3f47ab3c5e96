"""
Entity stores for the assessment engine.
"""

from .base import Store
from .memory import MemoryStore
from .sql import SQLAlchemyStore

__all__ = [
    'Store',
    'MemoryStore',
    'SQLAlchemyStore',
]
