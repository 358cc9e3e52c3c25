"""
Database integration module for the Paper Trading Engine

Key-value persistence of accounts, positions and order logs.
"""

from .store import KeyValueStore, InMemoryStore, PostgresStore, create_store

__all__ = [
    'KeyValueStore',
    'InMemoryStore',
    'PostgresStore',
    'create_store'
]
