"""MariaDB/MySQL database operations implementation."""
import time
from typing import Any, Dict, Iterator, List, Optional

import mysql.connector
import sqlparse
from mysql.connector import Error

from bulkimport.core.config import DatabaseConfig
from bulkimport.core.exceptions import ConfigError, DatabaseError
from bulkimport.core.logging import get_logger
from bulkimport.domain.interfaces import DatabaseInterface

logger = get_logger(__name__)

# Session variables widened while an import holds the connection
TIMEOUT_VARIABLES = ("net_read_timeout", "net_write_timeout", "wait_timeout")

# Largest value the server accepts for the variables above (one year)
UNLIMITED_TIMEOUT = 31536000

class MariaDB(DatabaseInterface):
    """Implementation of MariaDB database operations."""

    def __init__(self, config: DatabaseConfig, name: str = ""):
        """Initialize the MariaDB connection.

        Args:
            config: Connection settings
            name: Connection name used in log messages
        """
        self.name = name or config.host
        self._config = {
            'host': config.host,
            'port': config.port,
            'user': config.user,
            'password': config.password,
            'use_pure': config.use_pure,
            'charset': config.charset,
            'allow_local_infile': config.allow_local_infile,
            # Let a partially read source query be discarded on close
            'consume_results': True,
        }
        if config.database:
            self._config['database'] = config.database

        self.logger = logger
        self.statement_logging = True

        # Retry settings
        self.max_retries = 3
        self.retry_backoff_factor = 1.5  # Each retry will wait 1.5 times longer

        # Rows fetched per round trip by iterate_query
        self.fetch_size = 1000

        self._connection = None
        self._cursor = None

    @property
    def config(self) -> Dict[str, Any]:
        return self._config

    @property
    def connection(self):
        """Get the underlying mysql.connector connection."""
        return self._connection

    def connect(self) -> None:
        """Connect to the server with retry logic.

        Uses exponential backoff for connection retries.

        Raises:
            DatabaseError: If connection fails after all retries
        """
        if self._connection and self._connection.is_connected():
            return

        self.logger.info(f"Connecting to {self.name} at {self._config.get('host')}:{self._config.get('port')}")

        retry_count = 0
        last_error = None

        while retry_count <= self.max_retries:
            try:
                self._connection = mysql.connector.connect(**self._config)
                self._cursor = self._connection.cursor(dictionary=True, buffered=True)
                self._connection.autocommit = True

                database_name = self._config.get('database', '')
                if database_name:
                    self.logger.info(f"Connected to database: {database_name}")
                else:
                    self.logger.info("Connected to server (no database selected)")
                return

            except Error as e:
                retry_count += 1
                last_error = str(e)

                if retry_count <= self.max_retries:
                    wait_time = self.retry_backoff_factor ** (retry_count - 1)
                    self.logger.warning(
                        f"Connection attempt {retry_count} failed: {str(e)}. "
                        f"Retrying in {wait_time:.1f} seconds..."
                    )
                    time.sleep(wait_time)
                else:
                    self.logger.error(f"Failed to connect to {self.name} after {self.max_retries} attempts: {str(e)}")

        raise DatabaseError(f"Failed to connect to {self.name}: {last_error}")

    def disconnect(self) -> None:
        """Disconnect from the database."""
        try:
            if self._cursor:
                self._cursor.close()
            if self._connection and self._connection.is_connected():
                self._connection.close()
                logger.info(f"Disconnected from {self.name}")
        except Error as e:
            logger.warning(f"Error during disconnect: {str(e)}")
        finally:
            self._connection = None
            self._cursor = None

    def _ensure_connected(self) -> None:
        """Ensure database connection is active."""
        if not self._connection or not self._connection.is_connected():
            self.connect()

    def _log_statement(self, sql: str) -> None:
        if self.statement_logging:
            self.logger.debug(f"[{self.name}] Executing SQL:\n{sqlparse.format(sql, reindent=True)}")

    def execute(self, sql: str) -> int:
        """Execute a SQL statement and return the number of affected rows.

        Raises:
            DatabaseError: If execution fails
        """
        self._ensure_connected()
        self._log_statement(sql)
        try:
            self._cursor.execute(sql)
            return self._cursor.rowcount
        except Error as e:
            self.logger.error(f"Error executing SQL on {self.name}: {str(e)}")
            raise DatabaseError(f"Error executing SQL: {str(e)}") from e

    def execute_query(self, query: str) -> List[Dict[str, Any]]:
        """Execute a query and return all rows as dictionaries.

        Raises:
            DatabaseError: If query execution fails
        """
        self._ensure_connected()
        self._log_statement(query)
        try:
            self._cursor.execute(query)
            return self._cursor.fetchall() or []
        except Error as e:
            self.logger.error(f"Error executing query on {self.name}: {str(e)}")
            raise DatabaseError(f"Error executing query: {str(e)}") from e

    def iterate_query(self, query: str) -> Iterator[Dict[str, Any]]:
        """Execute a query and yield rows without buffering the whole result.

        Raises:
            DatabaseError: If the query fails
        """
        self._ensure_connected()
        self._log_statement(query)
        cursor = self._connection.cursor(dictionary=True, buffered=False)
        try:
            cursor.execute(query)
            while True:
                rows = cursor.fetchmany(self.fetch_size)
                if not rows:
                    break
                for row in rows:
                    yield row
        except Error as e:
            self.logger.error(f"Error reading rows on {self.name}: {str(e)}")
            raise DatabaseError(f"Error reading rows: {str(e)}") from e
        finally:
            cursor.close()

    def get_timeouts(self) -> Dict[str, Any]:
        """Read the network timeout variables of the current session."""
        columns = ", ".join(f"@@SESSION.{name} AS {name}" for name in TIMEOUT_VARIABLES)
        rows = self.execute_query(f"SELECT {columns}")
        return dict(rows[0]) if rows else {}

    def set_timeouts(self, values: Dict[str, Any]) -> None:
        """Assign network timeout variables of the current session."""
        if not values:
            return
        unknown = [name for name in values if name not in TIMEOUT_VARIABLES]
        if unknown:
            raise DatabaseError(f"Unsupported timeout variables: {', '.join(unknown)}")
        assignments = ", ".join(f"SESSION {name} = {int(value)}" for name, value in values.items())
        self.execute(f"SET {assignments}")

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()

class ConnectionRegistry:
    """Named connections shared by the import service."""

    def __init__(
        self,
        configs: Optional[Dict[str, DatabaseConfig]] = None,
        connections: Optional[Dict[str, DatabaseInterface]] = None
    ):
        self._configs = dict(configs or {})
        self._connections: Dict[str, DatabaseInterface] = dict(connections or {})

    def register(self, name: str, connection: DatabaseInterface) -> None:
        self._connections[name] = connection

    def names(self) -> List[str]:
        return sorted(set(self._configs) | set(self._connections))

    def get_connection(self, name: str) -> DatabaseInterface:
        """Return the connection registered under a name, connecting on first use.

        Raises:
            ConfigError: If no connection is configured under that name
        """
        connection = self._connections.get(name)
        if connection is None:
            config = self._configs.get(name)
            if config is None:
                raise ConfigError(f'Connection "{name}" does not exist.')
            connection = MariaDB(config, name=name)
            self._connections[name] = connection
        connection.connect()
        return connection

    def close_all(self) -> None:
        for connection in self._connections.values():
            connection.disconnect()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close_all()
