"""Custom exceptions for the bulk import tool."""

class ConfigError(Exception):
    """Configuration error."""
    # Raised when an import job or the settings file is invalid
    # e.g., empty names, duplicate target names, unknown index fields,
    # table name too long, malformed default value for a column type
    pass

class DataError(Exception):
    """Source data error."""
    # Raised when a source value cannot be staged for its target column
    # e.g., null value for a non-nullable field, unparsable date
    def __init__(self, message: str, field_name: str = None, value=None):
        super().__init__(message)
        self.field_name = field_name
        self.value = value

class DatabaseError(Exception):
    """Database operation error."""
    # Raised for database connection issues or SQL execution failures
    # Wraps underlying database adapter exceptions with contextual information
    pass

class StorageError(Exception):
    """Storage operation error."""
    # Raised when the staging file cannot be created, written or removed
    pass

class ImportError(Exception):
    """Import operation error."""
    # Raised when the import sequence is used out of order
    # e.g., writing to a staging writer that is not open
    pass
