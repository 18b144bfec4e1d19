"""SQLite database for the embedding server.

Tables:
- embeddings: standalone texts with their normalized vectors
- documents: uploaded markdown documents
- chunks: document chunks with vectors, cascading on document delete

Vectors are stored as JSON arrays of floats.
"""
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union
import structlog

from embedding_server import config

logger = structlog.get_logger()

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS embeddings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        text TEXT NOT NULL,
        embedding_json TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS documents (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        file_name TEXT NOT NULL,
        file_size INTEGER NOT NULL,
        title TEXT,
        content TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chunks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        document_id INTEGER NOT NULL
            REFERENCES documents(id) ON DELETE CASCADE,
        chunk_index INTEGER NOT NULL,
        text TEXT NOT NULL,
        embedding_json TEXT NOT NULL,
        start_offset INTEGER NOT NULL,
        end_offset INTEGER NOT NULL,
        token_count INTEGER NOT NULL,
        heading_context TEXT,
        created_at TEXT NOT NULL,
        UNIQUE(document_id, chunk_index)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_chunks_document_id
    ON chunks(document_id)
    """,
]


class Database:
    """Owns a single SQLite connection with an explicit init/close lifecycle."""

    def __init__(self, path: Union[str, Path, None] = None):
        """Create the database handle (no connection is opened yet).

        Args:
            path: SQLite file path or ":memory:" (default from config)
        """
        self.path = str(path or config.DB_PATH)
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._conn

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def init(self) -> None:
        """Open the connection and create the schema if needed."""
        if self._conn is not None:
            return

        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(self.path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")

        try:
            for statement in SCHEMA:
                conn.execute(statement)
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            conn.close()
            logger.error("database_init_failed", error=str(e), db_path=self.path)
            raise

        self._conn = conn
        logger.info("database_initialized", db_path=self.path)

    def close(self) -> None:
        """Close the connection. Safe to call twice."""
        if self._conn is None:
            return
        self._conn.close()
        self._conn = None
        logger.info("database_closed", db_path=self.path)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """Run statements in one transaction, rolling back on any error."""
        conn = self.connection
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error("database_transaction_failed", error=str(e))
            raise
        finally:
            cursor.close()

    def ping(self) -> bool:
        """Check the connection answers a trivial query."""
        try:
            self.connection.execute("SELECT 1").fetchone()
            return True
        except (sqlite3.Error, RuntimeError) as e:
            logger.warning("database_ping_failed", error=str(e))
            return False
