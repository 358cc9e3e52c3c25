"""
Key-value persistence for accounts and order logs

The engine only depends on save(key, entity) / load(key). Two stores are
provided:
- InMemoryStore: process-local, used by default and in tests
- PostgresStore: durable JSONB table backed by a psycopg connection pool
"""

import copy
import json
import logging
import threading
from typing import Any, Dict, Optional

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

logger = logging.getLogger(__name__)


class KeyValueStore:
    """Persistence contract consumed by the trading engine"""

    def save(self, key: str, entity: Any) -> None:
        raise NotImplementedError

    def save_many(self, entities: Dict[str, Any]) -> None:
        """Save several entities; stores that support it do so atomically"""
        for key, entity in entities.items():
            self.save(key, entity)

    def load(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def close(self) -> None:
        pass


class InMemoryStore(KeyValueStore):
    """Dictionary-backed store; entities are stored as JSON-safe deep copies"""

    def __init__(self):
        self._data: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def save(self, key: str, entity: Any) -> None:
        self.save_many({key: entity})

    def save_many(self, entities: Dict[str, Any]) -> None:
        # Round-trip through JSON so only serializable state is accepted
        payloads = {key: json.loads(json.dumps(entity)) for key, entity in entities.items()}
        with self._lock:
            self._data.update(payloads)

    def load(self, key: str) -> Optional[Any]:
        with self._lock:
            entity = self._data.get(key)
            return copy.deepcopy(entity) if entity is not None else None

    def keys(self):
        with self._lock:
            return list(self._data.keys())


class PostgresStore(KeyValueStore):
    """PostgreSQL JSONB key-value store"""

    TABLE_NAME = "paper_trading_entities"
    UPSERT_SQL = f"""
        INSERT INTO {TABLE_NAME} (key, value, updated_at)
        VALUES (%s, %s, now())
        ON CONFLICT (key) DO UPDATE
        SET value = EXCLUDED.value, updated_at = EXCLUDED.updated_at
    """

    def __init__(self, database_url: str, min_size: int = 1, max_size: int = 5):
        """
        Initialize PostgreSQL store

        Args:
            database_url: PostgreSQL connection string
            min_size: Minimum pool size
            max_size: Maximum pool size
        """
        self.database_url = database_url
        self.pool = ConnectionPool(
            database_url,
            min_size=min_size,
            max_size=max_size,
            kwargs={'row_factory': dict_row},
            open=False
        )
        self._initialized = False

    def initialize(self) -> None:
        """Open the pool and create the entity table if needed"""
        if self._initialized:
            return
        try:
            self.pool.open()
            with self.pool.connection() as conn:
                conn.execute(f"""
                    CREATE TABLE IF NOT EXISTS {self.TABLE_NAME} (
                        key TEXT PRIMARY KEY,
                        value JSONB NOT NULL,
                        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                """)
            self._initialized = True
            logger.info("PostgreSQL store initialized")
        except psycopg.Error as e:
            logger.error(f"Failed to initialize PostgreSQL store: {e}")
            raise

    def save(self, key: str, entity: Any) -> None:
        self.save_many({key: entity})

    def save_many(self, entities: Dict[str, Any]) -> None:
        self.initialize()
        # One connection block is one transaction: all rows commit or none do
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.executemany(self.UPSERT_SQL, [(key, Jsonb(entity)) for key, entity in entities.items()])

    def load(self, key: str) -> Optional[Any]:
        self.initialize()
        with self.pool.connection() as conn:
            row = conn.execute(
                f"SELECT value FROM {self.TABLE_NAME} WHERE key = %s", (key,)
            ).fetchone()
        return row['value'] if row else None

    def close(self) -> None:
        if self._initialized:
            self.pool.close()
            self._initialized = False
            logger.info("PostgreSQL store closed")


def create_store(database_url: Optional[str] = None) -> KeyValueStore:
    """PostgreSQL store when a database URL is configured, in-memory otherwise"""
    if database_url:
        return PostgresStore(database_url)
    logger.info("No database_url configured, using in-memory store")
    return InMemoryStore()
