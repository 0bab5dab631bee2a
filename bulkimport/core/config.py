"""Configuration management for the bulk import tool."""
import os
import re
import sys
from pathlib import Path
from typing import Dict, Any, Optional, List, Union
import yaml
from dataclasses import dataclass, field, asdict

from bulkimport.core.exceptions import ConfigError

# Set up the default configuration locations
DEFAULT_CONFIG_FILE = "config/config.yaml"
DEFAULT_CONFIG_DIRS = [
    ".",
    "~/.bulkimport",
    "/etc/bulkimport",
]

DEFAULT_TABLE_PREFIX = "_tmp_import_"
DEFAULT_COLLATION = "utf8_unicode_ci"
DEFAULT_ENGINE = "MyISAM"
DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

FIELD_TYPES = ("integer", "string", "text", "blob", "float", "date", "datetime", "time", "boolean")
INDEX_TYPES = ("primary", "unique", "index", "fulltext")

_TEMP_PREFIX_PATTERN = re.compile(r'^[0-9a-z_]+$', re.IGNORECASE)

@dataclass
class DatabaseConfig:
    """Database connection configuration."""
    host: str = "localhost"
    port: int = 3306
    user: str = "root"
    password: str = ""
    database: str = ""  # Optional, no schema selected when empty
    use_pure: bool = True
    charset: str = "utf8mb4"
    allow_local_infile: bool = False  # Required for LOAD DATA LOCAL INFILE

@dataclass
class FormattingConfig:
    """Staging file formatting defaults; empty values fall back to the job defaults."""
    delimiter: Optional[str] = None
    enclosure: Optional[str] = None
    escape_char: Optional[str] = None

@dataclass
class TempFileConfig:
    """Location and naming of staging files."""
    directory: str
    prefix: str
    formatting: FormattingConfig = field(default_factory=FormattingConfig)

@dataclass
class FieldConfig:
    """Known source field of an aliased table."""
    name: str
    type: str
    nullable: bool
    signed: Optional[bool] = None
    length: Optional[int] = None
    default: Any = None
    select: Optional[str] = None

@dataclass
class IndexConfig:
    """Known index of an aliased table."""
    type: str
    fields: List[Dict[str, Any]] = field(default_factory=list)  # [{'field': origin, 'length': n}]

@dataclass
class TableConfig:
    """Known source table of an aliased connection."""
    fields: Dict[str, FieldConfig] = field(default_factory=dict)  # by origin name
    indexes: Dict[str, IndexConfig] = field(default_factory=dict)
    collation: Optional[str] = None

@dataclass
class ImportSettings:
    """Import operation configuration."""
    temp_file: TempFileConfig
    table_prefix: str = DEFAULT_TABLE_PREFIX
    default_collation: str = DEFAULT_COLLATION
    default_engine: str = DEFAULT_ENGINE
    load_data_local: bool = False
    alias: Dict[str, Dict[str, TableConfig]] = field(default_factory=dict)  # connection -> table -> config

    def get_table(self, connection: str, table: str) -> TableConfig:
        """Get the configuration of a known source table.

        Raises:
            ConfigError: If the connection or the table is not configured
        """
        tables = self.alias.get(connection)
        if tables is None:
            raise ConfigError(f'No configuration for connection "{connection}".')
        table_config = tables.get(table)
        if table_config is None:
            raise ConfigError(f'No configuration for table "{table}" inside connection "{connection}".')
        return table_config

@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: str = ""
    format: str = DEFAULT_LOG_FORMAT

@dataclass
class Config:
    """Main configuration class."""
    connections: Dict[str, DatabaseConfig]
    import_: ImportSettings
    logging: LoggingConfig

def get_default_config_path() -> Path:
    """Get the default configuration file path.

    First checks for a config file in the same directory as the executable,
    then falls back to the bundled config file.
    """
    if getattr(sys, 'frozen', False):
        exe_dir = Path(sys.executable).parent
    else:
        exe_dir = Path(__file__).parent.parent.parent

    return exe_dir / "config" / "config.yaml"

def load_config(config_file: Optional[Union[Path, str]] = None) -> Config:
    """Load configuration from a file.

    Args:
        config_file: Path to the configuration file

    Returns:
        Config object with loaded settings

    Raises:
        ConfigError: If configuration is invalid or missing required fields
    """
    if config_file is None:
        config_file = _find_config_file()
        if config_file is None:
            raise ConfigError("No configuration file found in the default locations")

    if isinstance(config_file, str):
        config_file = Path(config_file)

    if not config_file.exists():
        raise ConfigError(f"Configuration file not found: {config_file}")

    try:
        with open(config_file, 'r') as f:
            config_dict = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_file}: {str(e)}")

    return parse_config(config_dict)

def parse_config(config_dict: Dict[str, Any]) -> Config:
    """Build a Config from an already parsed document.

    Raises:
        ConfigError: If a section is invalid
    """
    if not isinstance(config_dict, dict):
        raise ConfigError("Configuration root must be a mapping")

    connections = {
        name: _parse_connection(name, options or {})
        for name, options in (config_dict.get('connections') or {}).items()
    }

    import_ = parse_import_settings(config_dict.get('import') or {})

    logging_config = config_dict.get('logging') or {}
    logging = LoggingConfig(
        level=str(logging_config.get('level', 'INFO')).upper(),
        file=logging_config.get('file', ''),
        format=logging_config.get('format', DEFAULT_LOG_FORMAT)
    )

    return Config(connections=connections, import_=import_, logging=logging)

def _parse_connection(name: str, db_config: Dict[str, Any]) -> DatabaseConfig:
    if not isinstance(db_config, dict):
        raise ConfigError(f'Connection "{name}" must be a mapping')
    return DatabaseConfig(
        host=db_config.get('host', 'localhost'),
        port=int(db_config.get('port', 3306)),
        user=db_config.get('user', 'root'),
        password=db_config.get('password', '') or '',
        database=db_config.get('database', '') or '',
        use_pure=db_config.get('use_pure', True),
        charset=db_config.get('charset', 'utf8mb4'),
        allow_local_infile=db_config.get('allow_local_infile', False)
    )

def parse_import_settings(import_config: Dict[str, Any]) -> ImportSettings:
    """Validate and normalise the `import` section.

    Raises:
        ConfigError: If a value breaks one of the section rules
    """
    temp_config = import_config.get('temp_file')
    if not isinstance(temp_config, dict):
        raise ConfigError('Option "import.temp_file" is required')

    directory = temp_config.get('directory')
    if not directory or not isinstance(directory, str):
        raise ConfigError('Option "import.temp_file.directory" is required')
    if not directory.endswith(os.sep):
        raise ConfigError(f'Your OS need an end directory with {os.sep}')

    prefix = temp_config.get('prefix')
    if not isinstance(prefix, str) or not _TEMP_PREFIX_PATTERN.match(prefix):
        raise ConfigError(
            'Prefix for option "temp_file" can not be empty and must contain only alphanumeric and underscore'
        )

    formatting_config = temp_config.get('formatting') or {}
    formatting = FormattingConfig(
        delimiter=_formatting_char(formatting_config, 'delimiter'),
        enclosure=_formatting_char(formatting_config, 'enclosure'),
        escape_char=_formatting_char(formatting_config, 'escape_char')
    )

    table_prefix = import_config.get('table_prefix', DEFAULT_TABLE_PREFIX)
    if not table_prefix:
        raise ConfigError('Option "import.table_prefix" can not be empty')

    alias = {}
    for connection, connection_config in (import_config.get('alias') or {}).items():
        tables = (connection_config or {}).get('tables') or {}
        alias[connection] = {
            table: _parse_table(connection, table, table_config or {})
            for table, table_config in tables.items()
        }

    return ImportSettings(
        temp_file=TempFileConfig(directory=directory, prefix=prefix, formatting=formatting),
        table_prefix=table_prefix,
        default_collation=import_config.get('default_collation', DEFAULT_COLLATION),
        default_engine=import_config.get('default_engine', DEFAULT_ENGINE),
        load_data_local=bool(import_config.get('load_data_local', False)),
        alias=alias
    )

def _formatting_char(formatting_config: Dict[str, Any], option: str) -> Optional[str]:
    value = formatting_config.get(option)
    if value is None or value == "":
        return None
    if not isinstance(value, str) or len(value) > 1:
        raise ConfigError(f'Option "{option}" must contain 0 or 1 character.')
    return value

def _parse_table(connection: str, table: str, table_config: Dict[str, Any]) -> TableConfig:
    fields_config = table_config.get('fields') or {}
    if not fields_config:
        raise ConfigError(f'Table "{table}" of connection "{connection}" must declare at least one field')

    fields = {origin: _parse_field(origin, options or {}) for origin, options in fields_config.items()}
    indexes = {
        name: _parse_index(name, options or {})
        for name, options in (table_config.get('indexes') or {}).items()
    }
    return TableConfig(fields=fields, indexes=indexes, collation=table_config.get('collation'))

def _parse_field(origin: str, options: Dict[str, Any]) -> FieldConfig:
    """Validate one aliased field.

    Integer and float fields must say whether they are signed, string fields
    must carry a length, and no other type may define either option.
    """
    name = options.get('name')
    if not name:
        raise ConfigError(f'Field "{origin}" needs a non-empty "name"')

    field_type = options.get('type')
    if field_type not in FIELD_TYPES:
        raise ConfigError(f'Field "{name}" has unsupported type "{field_type}", expected one of {", ".join(FIELD_TYPES)}')

    if 'nullable' not in options or not isinstance(options['nullable'], bool):
        raise ConfigError(f'Field "{name}" must define "nullable" as a boolean')

    signed = options.get('signed')
    length = options.get('length')

    if field_type in ("integer", "float"):
        if signed is None:
            raise ConfigError(
                f'Field "{name}" defined as "integer" or "float", you must define "signed" configuration.'
            )
    elif signed is not None:
        raise ConfigError(
            f'Field "{name}" define with configuration "signed" which is forbidden in that case, please remove it.'
        )

    if field_type == "string":
        if length is None:
            raise ConfigError(f'Field "{name}" defined as string, you must define "length" configuration.')
        if isinstance(length, bool) or not isinstance(length, int) or not 1 <= length <= 255:
            raise ConfigError(f'Field "{name}" must define a "length" between 1 and 255.')
    elif length is not None:
        raise ConfigError(
            f'Field "{name}" define with configuration "length" which is forbidden in that case, please remove it.'
        )

    return FieldConfig(
        name=name,
        type=field_type,
        nullable=options['nullable'],
        signed=signed,
        length=length,
        default=options.get('default'),
        select=options.get('select')
    )

def _parse_index(name: str, options: Dict[str, Any]) -> IndexConfig:
    index_type = options.get('type')
    if index_type not in INDEX_TYPES:
        raise ConfigError(f'Index "{name}" has unsupported type "{index_type}", expected one of {", ".join(INDEX_TYPES)}')
    if 'fields' not in options:
        raise ConfigError(f'Index "{name}" must define "fields"')
    return IndexConfig(type=index_type, fields=normalize_index_fields(name, options['fields']))

def normalize_index_fields(name: str, value: Any) -> List[Dict[str, Any]]:
    """Normalise the accepted shapes of index fields to [{'field', 'length'}].

    Accepts a single field name, a list of names, a list of
    {field, length} mappings, or a {field: length} mapping.
    """
    if isinstance(value, str):
        value = [value]

    if isinstance(value, dict):
        entries = [{'field': key, 'length': length} for key, length in value.items()]
    elif isinstance(value, list):
        entries = []
        for entry in value:
            if isinstance(entry, str):
                entries.append({'field': entry})
            elif isinstance(entry, dict):
                entries.append(dict(entry))
            else:
                raise ConfigError(f'Index "{name}" has an invalid field entry {entry!r}')
    else:
        raise ConfigError(f'Index "{name}" fields must be a string, a list or a mapping')

    result = []
    for entry in entries:
        field_name = entry.get('field')
        if not field_name or not isinstance(field_name, str):
            raise ConfigError(f'Index "{name}" has a field entry without "field"')
        length = entry.get('length', 0)
        if length is None:
            length = 0
        if isinstance(length, bool) or not isinstance(length, int) or length < 0:
            raise ConfigError(f'Index "{name}" has an invalid length for field "{field_name}"')
        result.append({'field': field_name, 'length': length})
    return result

def _find_config_file() -> Optional[Path]:
    """Find the configuration file in the default locations.

    Returns:
        Path to the configuration file, or None if not found
    """
    if os.path.exists(DEFAULT_CONFIG_FILE):
        return Path(DEFAULT_CONFIG_FILE)

    for directory in DEFAULT_CONFIG_DIRS:
        expanded_dir = os.path.expanduser(directory)
        config_path = os.path.join(expanded_dir, "config.yaml")
        if os.path.exists(config_path):
            return Path(config_path)

    default_path = get_default_config_path()
    if default_path.exists():
        return default_path

    return None

def config_to_dict(config: Config) -> Dict[str, Any]:
    """Convert a configuration object to a dictionary.

    Passwords are left out.
    """
    connections = {}
    for name, database in config.connections.items():
        section = asdict(database)
        section.pop('password', None)
        connections[name] = section

    import_section = asdict(config.import_)
    import_section.pop('alias', None)
    import_section['aliased_tables'] = {
        connection: sorted(tables) for connection, tables in config.import_.alias.items()
    }

    return {
        'connections': connections,
        'import': import_section,
        'logging': asdict(config.logging)
    }
