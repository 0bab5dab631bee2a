"""Main entry point for the bulk import tool."""
import argparse
import logging
import signal
import sys
from typing import List, Optional

from bulkimport.core.config import Config, config_to_dict, load_config
from bulkimport.core.exceptions import ConfigError, DataError, DatabaseError, StorageError, ImportError
from bulkimport.core.logging import setup_logging, log_config
from bulkimport.domain.models import DuplicateStrategy, ImportJob
from bulkimport.infrastructure.mariadb import ConnectionRegistry
from bulkimport.services import sql
from bulkimport.services.import_ import ImportService
from bulkimport.ui.console import show_result, show_statements

# Global registry to access in signal handler
registry = None

def signal_handler(sig, frame):
    """Handle SIGINT (Ctrl+C) signal for graceful exit."""
    print("\nReceived interrupt signal. Cleaning up and exiting gracefully...")
    logging.info("Received interrupt signal. Performing cleanup before exit.")

    if registry is not None:
        logging.info("Closing database connections")
        registry.close_all()

    sys.exit(130)

def _add_job_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("source_connection", help="Connection name to read from")
    parser.add_argument("source_table", help="Configured source table")
    parser.add_argument("target_connection", help="Connection name to load into")
    parser.add_argument("--fields", nargs="+", help="Origin field names to import (default: every configured field)")
    parser.add_argument("--table-name", help="Target table name (default: derived from source table and fields)")
    parser.add_argument("--target-schema", help="Schema of the target table")
    parser.add_argument("--source-schema", help="Schema of the source table")
    parser.add_argument("--keep-existing", action="store_true", help="Load into the existing table instead of recreating it")
    parser.add_argument("--disable-keys", action="store_true", help="Disable keys of the target table during the load")
    parser.add_argument(
        "--duplicate-strategy",
        choices=[strategy.value for strategy in DuplicateStrategy],
        help="What to do with rows colliding on a unique key"
    )
    parser.add_argument("--where", help="Raw SQL appended to the source SELECT, e.g. \"WHERE id > 10\"")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output")

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Bulk table import through LOAD DATA INFILE")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    import_parser = subparsers.add_parser("import", help="Import a source table into a target table")
    _add_job_arguments(import_parser)

    statements_parser = subparsers.add_parser(
        "statements", help="Print the statements an import would run, without connecting"
    )
    _add_job_arguments(statements_parser)

    # Global options
    parser.add_argument("--config", help="Path to configuration file")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    return args

def build_job(service: ImportService, args: argparse.Namespace) -> ImportJob:
    """Create the job described by the command line."""
    fields = args.fields
    if not fields:
        table_config = service.get_table_configuration(args.source_connection, args.source_table)
        fields = list(table_config.fields)

    job = service.create_job(args.source_connection, args.source_table, args.target_connection, fields)
    job.table_name = args.table_name
    job.schema_target = args.target_schema
    job.schema_source = args.source_schema
    job.erase_existing = not args.keep_existing
    job.disable_keys = args.disable_keys
    job.duplicate_strategy = args.duplicate_strategy
    job.sql_condition = args.where
    return job

def run_command(args: argparse.Namespace, config: Config) -> int:
    global registry

    registry = ConnectionRegistry(config.connections)
    with registry:
        service = ImportService(config.import_, registry)
        job = build_job(service, args)

        if args.command == "statements":
            statements = [sql.source_select_statement(job)] + service.build_statements(job)
            show_statements(statements)
            return 0

        logging.info("Starting import process")
        result = service.run(job)
        show_result(result)
        return 0

def main(argv: Optional[List[str]] = None) -> int:
    """Run the bulk import tool.

    Returns:
        int: Exit code
    """
    try:
        signal.signal(signal.SIGINT, signal_handler)

        args = parse_args(argv)

        config = load_config(args.config)

        if getattr(args, 'verbose', False):
            config.logging.level = 'DEBUG'
        setup_logging(config.logging)

        log_config(config_to_dict(config))

        return run_command(args, config)

    except ConfigError as e:
        logging.error(f"Configuration error: {str(e)}")
        return 1
    except DataError as e:
        logging.error(f"Data error: {str(e)}")
        return 1
    except DatabaseError as e:
        logging.error(f"Database error: {str(e)}")
        return 1
    except StorageError as e:
        logging.error(f"Storage error: {str(e)}")
        return 1
    except ImportError as e:
        logging.error(f"Import error: {str(e)}")
        return 1
    except Exception as e:
        logging.exception(f"Unexpected error: {str(e)}")
        return 1

if __name__ == "__main__":
    sys.exit(main())
