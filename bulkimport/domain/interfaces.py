"""Abstract interfaces for the bulk import tool."""
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Sequence

class DatabaseInterface(ABC):
    """Interface for database operations."""

    # When false, executed statements are not written to the log
    statement_logging: bool = True

    @abstractmethod
    def connect(self) -> None:
        """Connect to the database."""
        # Implementation contract: Establish connection to database with configured parameters
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Disconnect from the database."""
        # Implementation contract: Close connection and release resources
        pass

    @abstractmethod
    def execute(self, sql: str) -> int:
        """Execute a SQL statement and return the number of affected rows."""
        pass

    @abstractmethod
    def execute_query(self, query: str) -> List[Dict[str, Any]]:
        """Execute a SQL query and return results."""
        # Implementation contract: Execute arbitrary SQL and return results as dictionaries
        pass

    @abstractmethod
    def iterate_query(self, query: str) -> Iterator[Dict[str, Any]]:
        """Execute a query and yield its rows one at a time."""
        # Implementation contract: Rows are ordered field name -> value mappings,
        # fetched lazily; every call runs the query again
        pass

    @abstractmethod
    def get_timeouts(self) -> Dict[str, Any]:
        """Get the current network timeout settings of the session."""
        pass

    @abstractmethod
    def set_timeouts(self, values: Dict[str, Any]) -> None:
        """Apply network timeout settings to the session."""
        pass

class RecordWriterInterface(ABC):
    """Interface for writers producing one delimited record per call."""

    @abstractmethod
    def open(self) -> None:
        """Open the destination for writing."""
        pass

    @abstractmethod
    def write(self, values: Sequence[Any]) -> None:
        """Append one record."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Flush and release the destination."""
        pass

    @property
    @abstractmethod
    def default_mime_type(self) -> str:
        """Content type of the produced file."""
        pass

    @property
    @abstractmethod
    def format(self) -> str:
        """Short format name of the produced file."""
        pass
