"""Domain models for the bulk import tool."""
import copy
import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from bulkimport.core.exceptions import ConfigError

class FieldType(str, Enum):
    """Logical column types supported by an import."""
    INTEGER = "integer"    # BIGINT
    STRING = "string"      # VARCHAR(length)
    TEXT = "text"          # LONGTEXT
    BLOB = "blob"          # LONGBLOB
    FLOAT = "float"        # DOUBLE
    DATE = "date"
    DATETIME = "datetime"
    TIME = "time"
    BOOLEAN = "boolean"    # TINYINT(1)

TEMPORAL_TYPES = (FieldType.DATE, FieldType.DATETIME, FieldType.TIME)
STRING_TYPES = (FieldType.STRING, FieldType.TEXT, FieldType.BLOB)
NUMERIC_TYPES = (FieldType.INTEGER, FieldType.FLOAT)

class IndexKind(str, Enum):
    """Index kinds an import can create on the target table."""
    PRIMARY = "primary"
    UNIQUE = "unique"
    NORMAL = "index"
    FULLTEXT = "fulltext"

class DuplicateStrategy(str, Enum):
    """What LOAD DATA does with rows colliding on a unique key."""
    REPLACE = "replace"
    IGNORE = "ignore"

DEFAULT_DELIMITER = ","
DEFAULT_ENCLOSURE = '"'
DEFAULT_ESCAPE_CHAR = "\\"

# Callback signatures
RowCallback = Callable[[Dict[str, Any]], Any]
LineCleaningCallback = Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]
LineValidationCallback = Callable[[Dict[str, Any]], bool]
JobCallback = Callable[["ImportJob"], None]

def _field_type(value: Union[str, FieldType], name: str) -> FieldType:
    try:
        return FieldType(value)
    except ValueError:
        raise ConfigError(f'Unsupported type "{value}" for field "{name}"')

def _index_kind(value: Union[str, IndexKind], name: str) -> IndexKind:
    try:
        return IndexKind(value)
    except ValueError:
        raise ConfigError(f'Unsupported type "{value}" for index "{name}"')

def _check_formatting_char(value: Optional[str], option: str, allow_empty: bool = True) -> None:
    if value is None:
        return
    if not isinstance(value, str) or len(value) > 1 or (not allow_empty and value == ""):
        raise ConfigError(f"Formatting option {option} must be a single character, got {value!r}")

@dataclass
class _FieldAttributes:
    """Attributes shared by plain and calculated fields."""
    target_name: str
    type: FieldType
    nullable: bool
    signed: Optional[bool] = None
    length: Optional[int] = None
    default: Any = None

    def _validate_attributes(self) -> None:
        if not self.target_name:
            raise ConfigError("Field target name can not be empty.")
        self.type = _field_type(self.type, self.target_name)
        if self.length is not None:
            if isinstance(self.length, bool) or not isinstance(self.length, int) or self.length <= 0:
                raise ConfigError(f'Length of field "{self.target_name}" must be a positive integer.')

@dataclass
class ImportField(_FieldAttributes):
    """A target column copied from one source column."""
    source_name: str = ""
    cleaning: Optional[Callable[[Any], Any]] = None  # applied before type conversion
    select: Optional[str] = None                     # raw SQL replacing the column reference

    def __init__(
        self,
        source_name: str,
        type: Union[str, FieldType],
        nullable: bool,
        target_name: Optional[str] = None,
        signed: Optional[bool] = None,
        length: Optional[int] = None,
        default: Any = None,
        cleaning: Optional[Callable[[Any], Any]] = None,
        select: Optional[str] = None,
    ):
        if not source_name:
            raise ConfigError("Name for source field can not be empty.")
        self.source_name = source_name
        self.target_name = source_name if target_name is None else target_name
        self.type = type
        self.nullable = nullable
        self.signed = signed
        self.length = length
        self.default = default
        self.cleaning = cleaning
        self.select = select
        self._validate_attributes()

    def resolve_value(self, row: Dict[str, Any]) -> Any:
        """Read the raw value of this field from a source row."""
        value = row[self.source_name]
        if self.cleaning is not None:
            value = self.cleaning(value)
        return value

@dataclass
class CalculatedField(_FieldAttributes):
    """A target column computed from the whole source row."""
    compute: Optional[RowCallback] = None

    def __init__(
        self,
        target_name: str,
        type: Union[str, FieldType],
        nullable: bool,
        compute: RowCallback,
        signed: Optional[bool] = None,
        length: Optional[int] = None,
        default: Any = None,
    ):
        if not callable(compute):
            raise ConfigError(f'Calculated field "{target_name}" needs a callable.')
        self.target_name = target_name
        self.type = type
        self.nullable = nullable
        self.compute = compute
        self.signed = signed
        self.length = length
        self.default = default
        self._validate_attributes()

    def resolve_value(self, row: Dict[str, Any]) -> Any:
        """Compute the raw value of this field from a source row."""
        return self.compute(row)

@dataclass
class ImportIndex:
    """Index declared on an import, referencing fields by origin name."""
    name: str
    kind: IndexKind
    fields: Dict[str, int] = field(default_factory=dict)  # origin name -> prefix length (0 = whole column)

    def __post_init__(self):
        if not self.name:
            raise ConfigError("Index name can not be empty.")
        self.kind = _index_kind(self.kind, self.name)

    def add_field(self, origin_name: str, length: int = 0) -> None:
        if self.has_field(origin_name):
            raise ConfigError(f'Field with origin name "{origin_name}" is already defined in index "{self.name}".')
        self.fields[origin_name] = int(length or 0)

    def has_field(self, origin_name: str) -> bool:
        return origin_name in self.fields

    def remove_field(self, origin_name: str) -> None:
        self.fields.pop(origin_name, None)

@dataclass
class ImportJob:
    """Definition of one source table to target table import."""
    source_connection: str
    source_table: str
    target_connection: str
    fields: Dict[str, ImportField] = field(default_factory=dict)                # by source name
    calculated_fields: Dict[str, CalculatedField] = field(default_factory=dict)  # by target name
    indexes: Dict[str, ImportIndex] = field(default_factory=dict)
    collation: Optional[str] = None
    engine: Optional[str] = None
    table_name: Optional[str] = None
    schema_target: Optional[str] = None
    schema_source: Optional[str] = None
    erase_existing: bool = True
    sql_condition: Optional[str] = None
    formatting_delimiter: Optional[str] = None
    formatting_enclosure: Optional[str] = None
    formatting_escape_char: Optional[str] = None
    duplicate_strategy: Optional[str] = None
    disable_keys: bool = False
    callback_before: Optional[JobCallback] = None
    callback_after: Optional[JobCallback] = None
    callback_line_cleaning: Optional[LineCleaningCallback] = None
    callback_line_validation: Optional[LineValidationCallback] = None
    _order_target_fields: Optional[List[str]] = field(default=None, repr=False)

    def __post_init__(self):
        if not self.source_connection:
            raise ConfigError("Name for source connection can not be empty.")
        if not self.source_table:
            raise ConfigError("Name for source table can not be empty.")
        if not self.target_connection:
            raise ConfigError("Name for target connection can not be empty.")
        self.validate_formatting()

    # Plain fields

    def add_field(self, import_field: ImportField) -> None:
        if self.has_field(import_field.source_name):
            raise ConfigError(f'A field with name "{import_field.source_name}" already exist.')
        self.fields[import_field.source_name] = import_field

    def get_field(self, source_name: str) -> ImportField:
        if not self.has_field(source_name):
            raise ConfigError(f'Field "{source_name}" does not exist.')
        return self.fields[source_name]

    def has_field(self, source_name: str) -> bool:
        return source_name in self.fields

    def remove_field(self, source_name: str) -> None:
        self.fields.pop(source_name, None)

    def remove_all_fields(self) -> None:
        self.fields = {}

    # Calculated fields

    def add_calculated_field(self, calculated: CalculatedField) -> None:
        if self.has_calculated_field(calculated.target_name):
            raise ConfigError(f'A calculated field with name "{calculated.target_name}" already exist.')
        self.calculated_fields[calculated.target_name] = calculated

    def get_calculated_field(self, target_name: str) -> Optional[CalculatedField]:
        return self.calculated_fields.get(target_name)

    def has_calculated_field(self, target_name: str) -> bool:
        return target_name in self.calculated_fields

    def remove_calculated_field(self, target_name: str) -> None:
        self.calculated_fields.pop(target_name, None)

    def remove_all_calculated_fields(self) -> None:
        self.calculated_fields = {}

    # Indexes

    def add_index(self, index: ImportIndex) -> None:
        if self.has_index(index.name):
            raise ConfigError(f'An index with name "{index.name}" already exist.')
        self.indexes[index.name] = index

    def get_index(self, name: str) -> Optional[ImportIndex]:
        return self.indexes.get(name)

    def has_index(self, name: str) -> bool:
        return name in self.indexes

    def remove_index(self, name: str) -> None:
        self.indexes.pop(name, None)

    def remove_all_indexes(self) -> None:
        self.indexes = {}

    # Target names and ordering

    def fields_target_name(self) -> List[str]:
        """Target names of plain then calculated fields, in declaration order.

        Raises:
            ConfigError: If two fields share a target name
        """
        names: Dict[str, bool] = {}
        for import_field in self.fields.values():
            if import_field.target_name in names:
                raise ConfigError(f'Target name "{import_field.target_name}" is used by more than one field.')
            names[import_field.target_name] = True
        for calculated in self.calculated_fields.values():
            if calculated.target_name in names:
                raise ConfigError(
                    f'Calculated field "{calculated.target_name}" duplicates the target name of a normal field.'
                )
            names[calculated.target_name] = True
        return list(names)

    def set_order_target_fields(self, *target_names: str) -> None:
        self._order_target_fields = list(target_names)

    def reset_order_target_fields(self) -> None:
        self._order_target_fields = None

    @property
    def order_target_fields(self) -> List[str]:
        """Explicit column order, or declaration order when none was set."""
        if self._order_target_fields is None:
            return self.fields_target_name()
        return list(self._order_target_fields)

    def missing_from_order(self) -> List[str]:
        """Target names absent from the effective field order."""
        order = set(self.order_target_fields)
        return [name for name in self.fields_target_name() if name not in order]

    def fields_from_target_names(self, target_names: List[str]) -> Dict[str, Union[ImportField, CalculatedField]]:
        """Map each requested target name to its plain or calculated field."""
        by_target: Dict[str, Union[ImportField, CalculatedField]] = {}
        for import_field in self.fields.values():
            by_target[import_field.target_name] = import_field
        for calculated in self.calculated_fields.values():
            if calculated.target_name in by_target:
                raise ConfigError(
                    f'Field "{calculated.target_name}" was defined twice inside normal field and calculated field.'
                )
            by_target[calculated.target_name] = calculated

        result = {}
        for name in target_names:
            if name not in by_target:
                raise ConfigError(f'You define an order for fields with a non-existing field "{name}".')
            result[name] = by_target[name]
        return result

    # Formatting

    def validate_formatting(self) -> None:
        _check_formatting_char(self.formatting_delimiter, "delimiter", allow_empty=False)
        _check_formatting_char(self.formatting_enclosure, "enclosure")
        _check_formatting_char(self.formatting_escape_char, "escape_char")

    @property
    def delimiter(self) -> str:
        return DEFAULT_DELIMITER if self.formatting_delimiter is None else self.formatting_delimiter

    @property
    def enclosure(self) -> str:
        return DEFAULT_ENCLOSURE if self.formatting_enclosure is None else self.formatting_enclosure

    @property
    def escape_char(self) -> str:
        return DEFAULT_ESCAPE_CHAR if self.formatting_escape_char is None else self.formatting_escape_char

    def snapshot(self) -> "ImportJob":
        """Copy the job so later changes to it do not reach a running import."""
        job = copy.copy(self)
        job.fields = {name: dataclasses.replace(f) for name, f in self.fields.items()}
        job.calculated_fields = {name: dataclasses.replace(f) for name, f in self.calculated_fields.items()}
        job.indexes = {
            name: ImportIndex(index.name, index.kind, dict(index.fields))
            for name, index in self.indexes.items()
        }
        if self._order_target_fields is not None:
            job._order_target_fields = list(self._order_target_fields)
        return job

@dataclass
class TableField:
    """Physical column of a target table."""
    name: str
    type: FieldType
    nullable: bool
    length: Optional[int] = None
    signed: Optional[bool] = None
    default: Any = None

@dataclass
class TableIndex:
    """Physical index of a target table, referencing columns by target name."""
    name: str
    kind: IndexKind
    fields: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self):
        if not self.name:
            raise ConfigError("Index name can not be empty.")
        self.kind = _index_kind(self.kind, self.name)

    def add_field_name(self, field_name: str, length: int = 0) -> None:
        if field_name in self.fields:
            raise ConfigError(f'Index "{self.name}" already contains field "{field_name}".')
        self.fields[field_name] = length

    @property
    def field_names(self) -> List[str]:
        return list(self.fields)

@dataclass
class TableDefinition:
    """Target table derived from an import job."""
    name: str
    collation: str
    engine: str
    schema: Optional[str] = None
    fields: Dict[str, TableField] = field(default_factory=dict)
    indexes: Dict[str, TableIndex] = field(default_factory=dict)

    def add_field(self, table_field: TableField) -> None:
        if table_field.name in self.fields:
            raise ConfigError(f'A field with name "{table_field.name}" already exist.')
        self.fields[table_field.name] = table_field

    def get_field(self, name: str) -> TableField:
        if name not in self.fields:
            raise ConfigError(f'Field with name "{name}" does not exist.')
        return self.fields[name]

    def add_index(self, index: TableIndex) -> None:
        if index.name in self.indexes:
            raise ConfigError(f'An index with name "{index.name}" already exist.')
        self.indexes[index.name] = index

@dataclass
class ImportResult:
    """Outcome of one successful import run."""
    job: ImportJob
    table: TableDefinition
    temp_file: str
    target_table: str = ""
    lines_created: int = 0
    lines_inserted: int = 0
    select_sql: str = ""
    duration: float = 0.0
