"""SQL statements used by the import pipeline.

Every function here is pure: it builds statement text and never touches a
connection, so the generated SQL can be inspected or printed on its own.
"""
import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Union

from bulkimport.core.exceptions import ConfigError
from bulkimport.domain.models import (
    DuplicateStrategy, FieldType, ImportJob, IndexKind, STRING_TYPES, TableDefinition, TableField, TEMPORAL_TYPES
)
from bulkimport.services.conversion import TEMPORAL_FORMATS, UTC, parse_timestamp

DEFAULT_COLLATION = "utf8_unicode_ci"

# Charsets LOAD DATA INFILE can not read
FORBIDDEN_LOAD_DATA_CHARSETS = ("ucs2", "utf16", "utf16le", "utf32")

# Result column names
ROW_COUNT_COLUMN = "inserted"
COUNT_COLUMN = "result"
COLLATION_COLUMN = "collation_name"
SCHEMA_CHARSET_COLUMN = "DEFAULT_CHARACTER_SET_NAME"
SCHEMA_COLLATION_COLUMN = "DEFAULT_COLLATION_NAME"

_COLLATION_PATTERN = re.compile(r'^([^_]+)(?:_.+)?$')

# Backslash is part of the table, so a single translate pass never escapes twice.
# Other control characters (form feed, ESC, BEL, VT) have no escape sequence
# in a server literal and are kept as raw bytes.
_LITERAL_ESCAPES = str.maketrans({
    "\\": "\\\\",
    "\r": "\\r",
    "\n": "\\n",
    "\t": "\\t",
    "\0": "\\0",
    "\x1a": "\\Z",
    "'": "\\'",
})

_INDEX_KEYWORDS = {
    IndexKind.PRIMARY: "UNIQUE INDEX",
    IndexKind.UNIQUE: "UNIQUE INDEX",
    IndexKind.NORMAL: "INDEX",
    IndexKind.FULLTEXT: "FULLTEXT INDEX",
}

_DUPLICATE_KEYWORDS = {
    DuplicateStrategy.REPLACE.value: "REPLACE",
    DuplicateStrategy.IGNORE.value: "IGNORE",
}

def quote_identifier(name: str) -> str:
    """Quote a schema, table or column name with backticks."""
    return "`" + name.replace("`", "``") + "`"

def join_schema_and_table(table_name: str, schema_name: Optional[str] = None) -> str:
    """Quoted table name, qualified by its schema when one is given."""
    if schema_name is None:
        return quote_identifier(table_name)
    return quote_identifier(schema_name) + "." + quote_identifier(table_name)

def escape_literal(value: str) -> str:
    """Escape text for use inside a single-quoted SQL literal."""
    return value.translate(_LITERAL_ESCAPES)

def quote_literal(value: str) -> str:
    return "'" + escape_literal(value) + "'"

def get_charset_from_collation(collation: str) -> str:
    """Character set a collation belongs to, e.g. utf8 for utf8_unicode_ci.

    Raises:
        ConfigError: If the collation is not of the form <charset>[_<suffix>]
    """
    match = _COLLATION_PATTERN.match(collation or "")
    if match is None:
        raise ConfigError(f'Collation format "{collation}" is not recognized has valid.')
    return match.group(1)

def column_type(table_field: TableField) -> str:
    """Physical column type of a table field.

    Raises:
        ConfigError: If a string field has no length or the type is unknown
    """
    field_type = _field_type(table_field)
    if field_type == FieldType.INTEGER:
        return "BIGINT(20)"
    if field_type == FieldType.STRING:
        if table_field.length is None:
            raise ConfigError(f"You must define a length before for {table_field.name}.")
        return f"VARCHAR({table_field.length})"
    if field_type == FieldType.TEXT:
        return "LONGTEXT"
    if field_type == FieldType.BLOB:
        return "LONGBLOB"
    if field_type == FieldType.FLOAT:
        return "DOUBLE"
    if field_type == FieldType.DATE:
        return "DATE"
    if field_type == FieldType.DATETIME:
        return "DATETIME"
    if field_type == FieldType.TIME:
        return "TIME"
    if field_type == FieldType.BOOLEAN:
        return "TINYINT(1)"
    raise ConfigError(f"Unsupported field type {field_type.value}")

def _field_type(table_field: TableField) -> FieldType:
    try:
        return FieldType(table_field.type)
    except ValueError:
        raise ConfigError(f'Unsupported type "{table_field.type}" for field "{table_field.name}"')

def _not_a(table_field: TableField, expected: str) -> ConfigError:
    return ConfigError(f'Default value for target field "{table_field.name}" is not a "{expected}".')

def resolve_default(table_field: TableField) -> Any:
    """Consolidated default value of a column.

    An explicit default is checked against the column type. Without one, a
    nullable column has no default and a NOT NULL column gets the zero value
    of its type; temporal columns have no zero value and stay without one.

    Returns:
        float, int, str or an aware datetime; None when there is no value

    Raises:
        ConfigError: If the explicit default does not fit the column type
    """
    default = table_field.default
    field_type = _field_type(table_field)

    if default is None:
        if table_field.nullable:
            return None
        if field_type == FieldType.FLOAT:
            return 0.0
        if field_type == FieldType.INTEGER:
            return 0
        if field_type in TEMPORAL_TYPES:
            return None
        return ""

    if field_type == FieldType.FLOAT:
        if isinstance(default, str):
            try:
                return float(default)
            except ValueError:
                raise _not_a(table_field, "float")
        if isinstance(default, bool) or not isinstance(default, (int, float, Decimal)):
            raise _not_a(table_field, "float")
        return float(default)

    if field_type == FieldType.INTEGER:
        if isinstance(default, str):
            try:
                number = float(default)
            except ValueError:
                raise _not_a(table_field, "integer")
            if not number.is_integer():
                raise _not_a(table_field, "integer")
            return int(number)
        if isinstance(default, bool) or not isinstance(default, int):
            raise _not_a(table_field, "integer")
        return default

    if field_type in TEMPORAL_TYPES:
        if isinstance(default, bool) or not isinstance(default, (str, int, datetime, date)):
            raise ConfigError(
                f'Default value for target field "{table_field.name}" is not supported, '
                f'please provide a datetime, "string" or "integer".'
            )
        try:
            moment = parse_timestamp(default, UTC)
        except ValueError:
            raise ConfigError(f'Default value for target field "{table_field.name}" is not a valid date.')
        if moment is None:
            raise ConfigError(f'Default value for target field "{table_field.name}" is a zero date.')
        return moment

    if field_type == FieldType.BOOLEAN:
        if isinstance(default, bool):
            return int(default)
        if not isinstance(default, str):
            raise _not_a(table_field, "string")
        if default.strip() and not default.strip().lstrip("+-").isdigit():
            raise ConfigError(f'Default value for target field "{table_field.name}" is not a boolean.')
        return default

    if field_type in STRING_TYPES:
        if not isinstance(default, str):
            raise _not_a(table_field, "string")
        return default

    raise ConfigError(f'Unsupported type "{field_type.value}" for field "{table_field.name}"')

def render_default(table_field: TableField) -> str:
    """Literal used in the DEFAULT clause of a column."""
    value = resolve_default(table_field)
    if value is None:
        return "NULL"

    field_type = _field_type(table_field)
    if field_type in TEMPORAL_TYPES:
        return "'" + value.strftime(TEMPORAL_FORMATS[field_type]) + "'"
    if field_type == FieldType.INTEGER:
        return str(int(value))
    if field_type == FieldType.FLOAT:
        return repr(float(value))
    if field_type == FieldType.BOOLEAN:
        text = str(value).strip()
        return str(int(text)) if text else "0"
    escaped = value.replace("\\", "\\\\").replace("'", "\\'").replace('"', '\\"')
    return "'" + escaped + "'"

def create_table_statement(definition: TableDefinition) -> str:
    """CREATE TABLE statement without indexes.

    Raises:
        ConfigError: If the definition has no field
    """
    if not definition.fields:
        raise ConfigError("You must define at least one field!")

    columns = []
    for table_field in definition.fields.values():
        parts = [quote_identifier(table_field.name), column_type(table_field)]
        if table_field.signed is not None:
            parts.append("UNSIGNED")
        parts.append("NULL" if table_field.nullable else "NOT NULL")
        parts.append("DEFAULT " + render_default(table_field))
        columns.append(" ".join(parts))

    return (
        f"CREATE TABLE {join_schema_and_table(definition.name, definition.schema)}({','.join(columns)})"
        f"DEFAULT COLLATE {definition.collation} ENGINE {definition.engine}"
    )

def drop_table_statement(definition: TableDefinition, error_if_not_exists: bool = False) -> str:
    condition = "" if error_if_not_exists else "IF EXISTS "
    return f"DROP TABLE {condition}{join_schema_and_table(definition.name, definition.schema)}"

def add_index_statements(definition: TableDefinition) -> List[str]:
    """One ALTER TABLE ... ADD statement per index of the definition.

    Raises:
        ConfigError: If an index has no field
    """
    begin = f"ALTER TABLE {join_schema_and_table(definition.name, definition.schema)} ADD "
    statements = []
    for index in definition.indexes.values():
        if not index.fields:
            raise ConfigError(f"Index {index.name} define without fields.")
        keyword = _INDEX_KEYWORDS[IndexKind(index.kind)]
        fields = ",".join(
            quote_identifier(name) + (f"({length})" if length else "")
            for name, length in index.fields.items()
        )
        statements.append(f"{begin}{keyword} {quote_identifier(index.name)}({fields})")
    return statements

def bulk_load_statement(
    file_path: str,
    table_name: str,
    schema: Optional[str] = None,
    charset: Optional[str] = None,
    duplicate_strategy: Union[str, DuplicateStrategy, None] = None,
    delimiter: str = ",",
    enclosure: str = '"',
    escape_char: str = "\\",
    ignore_lines: int = 0,
    columns: Optional[Iterable[str]] = None,
    local: bool = False,
) -> str:
    """LOAD DATA INFILE statement reading a staging file into a table.

    Args:
        file_path: Path of the file, as seen by the server (or client if local)
        table_name: Target table
        schema: Schema of the target table
        charset: Character set of the file
        duplicate_strategy: "replace" or "ignore" (any case); anything else fails on duplicates
        delimiter: Field terminator
        enclosure: Field enclosure
        escape_char: Escape character
        ignore_lines: Number of leading lines to skip
        columns: Target columns in file order
        local: Read the file from the client side

    Raises:
        ConfigError: If the charset can not be used by LOAD DATA
    """
    if charset is not None and charset in FORBIDDEN_LOAD_DATA_CHARSETS:
        raise ConfigError(f'Collation inside charge "{charset}" is not supported for load data.')

    strategy = getattr(duplicate_strategy, "value", duplicate_strategy)
    keyword = _DUPLICATE_KEYWORDS.get(str(strategy).lower()) if strategy is not None else None

    parts = ["LOAD DATA"]
    parts.append(("LOCAL INFILE " if local else "INFILE ") + quote_literal(file_path))
    if keyword is not None:
        parts.append(keyword)
    parts.append("INTO TABLE " + join_schema_and_table(table_name, schema))
    if charset is not None:
        parts.append("CHARACTER SET " + charset)
    parts.append("FIELDS")
    parts.append("TERMINATED BY " + quote_literal(delimiter))
    parts.append("ENCLOSED BY " + quote_literal(enclosure))
    parts.append("ESCAPED BY " + quote_literal(escape_char))
    parts.append("LINES")
    parts.append("STARTING BY ''")
    parts.append("TERMINATED BY '\\n'")
    if ignore_lines and int(ignore_lines) > 0:
        parts.append(f"IGNORE {int(ignore_lines)} LINES")
    column_names = list(columns or [])
    if column_names:
        parts.append("(" + ",".join(quote_identifier(name) for name in column_names) + ")")
    return " ".join(parts)

def source_select_statement(job: ImportJob) -> str:
    """SELECT reading the plain fields of a job from its source table.

    A field select override is used verbatim and aliased to the source name.

    Raises:
        ConfigError: If the job has no plain field
    """
    if not job.fields:
        raise ConfigError(f"You must define at least on field for source table {job.source_table}")

    columns = []
    for import_field in job.fields.values():
        quoted = quote_identifier(import_field.source_name)
        if import_field.select is None:
            columns.append(quoted)
        else:
            columns.append(f"{import_field.select} {quoted}")

    sql = f"SELECT {','.join(columns)} FROM {join_schema_and_table(job.source_table, job.schema_source)}"
    if job.sql_condition:
        sql += " " + job.sql_condition
    return sql

def lock_table_write_statement(table_name: str, schema: Optional[str] = None) -> str:
    return f"LOCK TABLES {join_schema_and_table(table_name, schema)} WRITE"

def lock_table_read_statement(table_name: str, schema: Optional[str] = None) -> str:
    return f"LOCK TABLES {join_schema_and_table(table_name, schema)} READ"

def unlock_tables_statement() -> str:
    return "UNLOCK TABLES"

def disable_keys_statement(table_name: str, schema: Optional[str] = None) -> str:
    return f"ALTER TABLE {join_schema_and_table(table_name, schema)} DISABLE KEYS"

def enable_keys_statement(table_name: str, schema: Optional[str] = None) -> str:
    return f"ALTER TABLE {join_schema_and_table(table_name, schema)} ENABLE KEYS"

def row_count_statement() -> str:
    return f"SELECT ROW_COUNT() {ROW_COUNT_COLUMN}"

def current_schema_statement() -> str:
    return "SELECT DATABASE()"

def count_rows_statement(table_name: str, schema: Optional[str] = None, column: Optional[str] = None) -> str:
    counted = "*" if column is None else quote_identifier(column)
    return f"SELECT COUNT({counted}) {COUNT_COLUMN} FROM {join_schema_and_table(table_name, schema)}"

def table_collation_statement(table_name: str, schema: str) -> str:
    return (
        f"SELECT TABLE_COLLATION {COLLATION_COLUMN} FROM INFORMATION_SCHEMA.TABLES "
        f"WHERE TABLE_NAME={quote_literal(table_name)} AND TABLE_SCHEMA={quote_literal(schema)}"
    )

def alter_table_collation_statement(
    table_name: str, schema: Optional[str] = None, collation: Optional[str] = None
) -> str:
    """Convert a table to a collation, utf8_unicode_ci when none is given."""
    if collation is None:
        collation = DEFAULT_COLLATION
    charset = get_charset_from_collation(collation)
    return (
        f"ALTER TABLE {join_schema_and_table(table_name, schema)} "
        f"CONVERT TO CHARACTER SET {charset} COLLATE {collation}"
    )

def _schema_information_statement(column: str, schema: str) -> str:
    return (
        f"SELECT {quote_identifier(column)} FROM information_schema.SCHEMATA "
        f"WHERE schema_name = {quote_literal(schema)}"
    )

def schema_default_charset_statement(schema: str) -> str:
    return _schema_information_statement(SCHEMA_CHARSET_COLUMN, schema)

def schema_default_collation_statement(schema: str) -> str:
    return _schema_information_statement(SCHEMA_COLLATION_COLUMN, schema)
