"""
Database Infrastructure for SOSTrack

Provides SQLite database management, connection pooling, migrations,
and transaction management for the durable tracking state.
"""

import sqlite3
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import List, Tuple
from dataclasses import dataclass


@dataclass
class Migration:
    """Database migration definition"""
    version: int
    name: str
    sql: str


class PersistenceError(Exception):
    """Local durable store could not be read or written"""
    pass


class ConnectionPool:
    """Simple SQLite connection pool"""

    def __init__(self, database_path: str, max_connections: int = 4):
        self.database_path = database_path
        self.max_connections = max_connections
        self.connections = []
        self.in_use = set()
        self.lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def get_connection(self) -> sqlite3.Connection:
        """Get a connection from the pool"""
        with self.lock:
            for conn in self.connections:
                if conn not in self.in_use:
                    self.in_use.add(conn)
                    return conn

            if len(self.connections) < self.max_connections:
                try:
                    conn = sqlite3.connect(
                        self.database_path,
                        check_same_thread=False,
                        timeout=30.0,
                        isolation_level=None
                    )
                    conn.row_factory = sqlite3.Row
                    conn.execute("PRAGMA journal_mode = WAL")
                    conn.execute("PRAGMA synchronous = FULL")
                except sqlite3.Error as e:
                    raise PersistenceError(f"Cannot open database {self.database_path}: {e}") from e
                self.connections.append(conn)
                self.in_use.add(conn)
                return conn

            raise PersistenceError("Connection pool exhausted")

    def return_connection(self, conn: sqlite3.Connection):
        """Return a connection to the pool"""
        with self.lock:
            self.in_use.discard(conn)

    def close_all(self):
        """Close all connections in the pool"""
        with self.lock:
            for conn in self.connections:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    self.logger.warning(f"Error closing connection: {e}")
            self.connections.clear()
            self.in_use.clear()


class DatabaseManager:
    """
    Manages SQLite database operations, migrations, and connection pooling
    """

    def __init__(self, database_path: str, max_connections: int = 4):
        self.database_path = Path(database_path)
        self.logger = logging.getLogger(__name__)
        self.migrations = self._get_migrations()

        try:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create database directory: {e}") from e

        self.pool = ConnectionPool(str(self.database_path), max_connections)
        self._initialize_database()

    @contextmanager
    def get_connection(self):
        """Context manager for database connections"""
        conn = self.pool.get_connection()
        try:
            yield conn
        finally:
            self.pool.return_connection(conn)

    @contextmanager
    def transaction(self):
        """Context manager for database transactions"""
        with self.get_connection() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(conn)
                raise PersistenceError(f"Transaction failed: {e}") from e
            except BaseException:
                self._rollback(conn)
                raise

    def _rollback(self, conn: sqlite3.Connection):
        if conn.in_transaction:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error as e:
                self.logger.warning(f"Rollback failed: {e}")

    def _initialize_database(self):
        """Initialize database with schema and migrations"""
        self.logger.info(f"Initializing database at {self.database_path}")

        with self.transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS migrations (
                    version INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    applied_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)

        self._run_migrations()

    def _get_migrations(self) -> List[Migration]:
        """Get all database migrations"""
        return [
            Migration(
                version=1,
                name="tracking_session",
                sql="""
                CREATE TABLE IF NOT EXISTS tracking_session (
                    slot INTEGER PRIMARY KEY CHECK (slot = 1),
                    sos_id TEXT NOT NULL,
                    sos_token TEXT NOT NULL,
                    identity_token TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    saved_at DATETIME NOT NULL
                )
                """
            )
        ]

    def _run_migrations(self):
        """Run pending database migrations"""
        rows = self.execute_query("SELECT MAX(version) FROM migrations")
        current_version = rows[0][0] if rows and rows[0][0] is not None else 0

        for migration in self.migrations:
            if migration.version > current_version:
                self.logger.info(f"Running migration {migration.version}: {migration.name}")

                with self.transaction() as conn:
                    conn.execute(migration.sql)
                    conn.execute(
                        "INSERT INTO migrations (version, name) VALUES (?, ?)",
                        (migration.version, migration.name)
                    )

                self.logger.info(f"Migration {migration.version} completed successfully")

    def execute_query(self, query: str, params: Tuple = ()) -> List[sqlite3.Row]:
        """Execute a SELECT query and return results"""
        with self.get_connection() as conn:
            try:
                return conn.execute(query, params).fetchall()
            except sqlite3.Error as e:
                raise PersistenceError(f"Query failed: {e}") from e

    def execute_update(self, query: str, params: Tuple = ()) -> int:
        """Execute an INSERT/UPDATE/DELETE query and return affected rows"""
        with self.transaction() as conn:
            cursor = conn.execute(query, params)
            return cursor.rowcount

    def close(self):
        """Close all database connections"""
        self.pool.close_all()


def initialize_database(database_path: str, max_connections: int = 4) -> DatabaseManager:
    """Open the session database, creating it and applying migrations as needed"""
    return DatabaseManager(database_path, max_connections)
