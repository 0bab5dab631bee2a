"""Global logging configuration for the application."""
import logging
import sys
from pathlib import Path
from typing import Any, Dict

def setup_logging(config) -> None:
    """Set up global logging configuration.

    Args:
        config: Logging configuration (level, file, format)
    """
    # Create formatters for different output destinations
    detailed_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s\n'
        '  Location: %(pathname)s:%(lineno)d\n'
        '  Function: %(funcName)s'
    )

    simple_formatter = logging.Formatter(config.format)

    handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(simple_formatter)
    handlers.append(console_handler)

    # Add file handler with detailed format if file path is specified
    if config.file:
        log_file = Path(config.file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(detailed_formatter)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(config.level)

    # Remove any existing handlers to avoid duplicate log entries
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    for handler in handlers:
        root_logger.addHandler(handler)

    # mysql.connector is chatty at DEBUG
    logging.getLogger("mysql.connector").setLevel(max(root_logger.level, logging.INFO))

    root_logger.debug("Logging system initialized")
    root_logger.debug(f"Log level: {config.level}")
    if config.file:
        root_logger.debug(f"Log file: {config.file}")

    # Register global exception handler to ensure exceptions are logged
    sys.excepthook = _global_exception_handler

def _global_exception_handler(exc_type, exc_value, exc_traceback):
    """Global exception handler to ensure all unhandled exceptions are logged."""
    if not issubclass(exc_type, KeyboardInterrupt):
        logger = get_logger("exception_handler")
        logger.error(
            "Unhandled exception",
            exc_info=(exc_type, exc_value, exc_traceback)
        )

    sys.__excepthook__(exc_type, exc_value, exc_traceback)

def get_logger(name: str = None) -> logging.Logger:
    """Get a logger instance with the specified name.

    This is the preferred way to get a logger in this application.
    The logger will inherit the root logger's configuration.

    Args:
        name: The name for the logger. If None, returns the root logger.

    Returns:
        A configured logger instance
    """
    return logging.getLogger(name) if name else logging.getLogger()

def log_config(config: Dict[str, Any]) -> None:
    """Log configuration settings.

    Args:
        config: Configuration dictionary, as built by config_to_dict
    """
    logger = get_logger(__name__)

    # Passwords are never part of the dictionary
    for name, db_config in config.get('connections', {}).items():
        logger.info(f"Connection {name}:")
        logger.info(f"  Host: {db_config.get('host', 'localhost')}")
        logger.info(f"  Port: {db_config.get('port', 3306)}")
        logger.info(f"  Database: {db_config.get('database', '')}")
        logger.info(f"  Local Infile: {db_config.get('allow_local_infile', False)}")

    import_config = config.get('import', {})
    temp_file = import_config.get('temp_file', {})
    logger.info("Import Configuration:")
    logger.info(f"  Temp Directory: {temp_file.get('directory', '')}")
    logger.info(f"  Temp Prefix: {temp_file.get('prefix', '')}")
    logger.info(f"  Formatting: {temp_file.get('formatting', {})}")
    logger.info(f"  Table Prefix: {import_config.get('table_prefix', '')}")
    logger.info(f"  Default Collation: {import_config.get('default_collation', '')}")
    logger.info(f"  Default Engine: {import_config.get('default_engine', '')}")
    logger.info(f"  Load Data Local: {import_config.get('load_data_local', False)}")
    for connection, tables in import_config.get('aliased_tables', {}).items():
        logger.info(f"  Known tables on {connection}: {', '.join(tables)}")

    logging_config = config.get('logging', {})
    logger.info("Logging Configuration:")
    logger.info(f"  Level: {logging_config.get('level', 'INFO')}")
    logger.info(f"  File: {logging_config.get('file', '')}")
