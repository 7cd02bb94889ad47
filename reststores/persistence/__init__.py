"""
Persistence backends for reststores.
"""

from .base import BaseBackend, PersistenceBackend, QueryResult, Record
from .memory import InMemoryBackend, matches

__all__ = [
    "BaseBackend",
    "InMemoryBackend",
    "PersistenceBackend",
    "QueryResult",
    "Record",
    "matches",
]
