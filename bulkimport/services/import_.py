"""Import service moving a source table into a target table through LOAD DATA."""
import time
from contextlib import closing, contextmanager
from datetime import tzinfo
from typing import Iterable, Iterator, List, Optional

from bulkimport.core.config import FieldConfig, ImportSettings, TableConfig
from bulkimport.core.exceptions import ConfigError, DatabaseError
from bulkimport.core.logging import get_logger
from bulkimport.domain.interfaces import DatabaseInterface
from bulkimport.domain.models import ImportField, ImportIndex, ImportJob, ImportResult, TableDefinition
from bulkimport.infrastructure.mariadb import ConnectionRegistry, UNLIMITED_TIMEOUT
from bulkimport.infrastructure.storage import create_directory, delete_file, file_size
from bulkimport.services import sql
from bulkimport.services.conversion import UTC
from bulkimport.services.definition import prepare_table_definition
from bulkimport.services.writer import ImportWriter

logger = get_logger(__name__)

@contextmanager
def suspended_session(*connections: DatabaseInterface) -> Iterator[None]:
    """Silence statement logging and lift network timeouts for the block.

    The previous state of every connection is restored on exit, whether or
    not the block raised.
    """
    saved = []
    try:
        for connection in connections:
            if any(connection is known for known, _, _ in saved):
                continue
            timeouts = connection.get_timeouts()
            saved.append((connection, connection.statement_logging, timeouts))
            connection.statement_logging = False
            connection.set_timeouts({name: UNLIMITED_TIMEOUT for name in timeouts})
        yield
    finally:
        for connection, statement_logging, timeouts in reversed(saved):
            try:
                connection.set_timeouts(timeouts)
            except DatabaseError as e:
                logger.warning(f"Could not restore timeouts: {str(e)}")
            finally:
                connection.statement_logging = statement_logging

class ImportService:
    """Service running import jobs and building them from configuration."""

    def __init__(self, settings: ImportSettings, registry: ConnectionRegistry, zone: tzinfo = UTC):
        """Initialize the ImportService.

        Args:
            settings: The `import` configuration section
            registry: Connections by name
            zone: Zone used to read naive temporal values
        """
        self.settings = settings
        self.registry = registry
        self.zone = zone
        self.logger = logger

    # Jobs from configuration

    def get_table_configuration(self, connection: str, table: str) -> TableConfig:
        """Configuration of a known source table.

        Raises:
            ConfigError: If the connection or the table is unknown
        """
        return self.settings.get_table(connection, table)

    def create_job(
        self,
        source_connection: str,
        source_table: str,
        target_connection: str,
        origin_fields: Iterable[str],
    ) -> ImportJob:
        """Build a job importing the given configured fields of a source table.

        Indexes of the table whose fields are all selected are attached.

        Raises:
            ConfigError: If a field name is not a string or is not configured
        """
        job = ImportJob(source_connection, source_table, target_connection)
        table_config = self.get_table_configuration(source_connection, source_table)
        job.collation = table_config.collation

        for origin_name in origin_fields:
            if not isinstance(origin_name, str):
                raise ConfigError("Field list must define only string.")
            job.add_field(self.create_field(source_connection, source_table, origin_name))

        self.update_job_indexes(job)
        return job

    def create_field(
        self,
        source_connection: str,
        source_table: str,
        origin_name: str,
        type: Optional[str] = None,
        nullable: Optional[bool] = None,
    ) -> ImportField:
        """Build a field from configuration, optionally overriding type and nullability.

        Raises:
            ConfigError: If the connection, table or field is not configured
        """
        table_config = self.get_table_configuration(source_connection, source_table)
        field_config: Optional[FieldConfig] = table_config.fields.get(origin_name)
        if field_config is None:
            raise ConfigError(
                f'No field "{origin_name}" inside table "{source_table}" for connection "{source_connection}".'
            )

        return ImportField(
            source_name=origin_name,
            type=field_config.type if type is None else type,
            nullable=field_config.nullable if nullable is None else nullable,
            target_name=field_config.name,
            signed=field_config.signed,
            length=field_config.length,
            default=field_config.default,
            select=field_config.select,
        )

    def update_job_indexes(self, job: ImportJob, keep_unknown: bool = True) -> None:
        """Attach configured indexes whose fields are all selected by the job.

        Args:
            job: Job to update
            keep_unknown: Keep job indexes that configuration does not know
        """
        table_config = self.get_table_configuration(job.source_connection, job.source_table)
        registered = set(job.fields)

        for name in list(job.indexes):
            if name not in table_config.indexes and not keep_unknown:
                job.remove_index(name)

        for name, index_config in table_config.indexes.items():
            if job.has_index(name) or not index_config.fields:
                continue
            if not all(entry['field'] in registered for entry in index_config.fields):
                continue
            index = ImportIndex(name, index_config.type)
            for entry in index_config.fields:
                index.add_field(entry['field'], entry['length'])
            job.add_index(index)

    # Target table

    def prepare_table_definition(self, job: ImportJob) -> TableDefinition:
        return prepare_table_definition(
            job,
            table_prefix=self.settings.table_prefix,
            default_collation=self.settings.default_collation,
            default_engine=self.settings.default_engine,
        )

    def drop_table(self, connection: DatabaseInterface, definition: TableDefinition, error_if_not_exists: bool = False) -> None:
        connection.execute(sql.drop_table_statement(definition, error_if_not_exists))

    def create_table(self, connection: DatabaseInterface, definition: TableDefinition) -> None:
        """Create the table structure, without its indexes."""
        connection.execute(sql.create_table_statement(definition))

    def update_table_indexes(self, connection: DatabaseInterface, definition: TableDefinition) -> None:
        for statement in sql.add_index_statements(definition):
            connection.execute(statement)

    def temp_file_path(self, definition: TableDefinition) -> str:
        temp_file = self.settings.temp_file
        return f"{temp_file.directory}{temp_file.prefix}{definition.name}"

    def build_statements(self, job: ImportJob) -> List[str]:
        """Statements a run of the job would send to the target, in order."""
        job = self._resolve_formatting(job.snapshot())
        definition = self.prepare_table_definition(job)
        statements = []
        if job.erase_existing:
            statements.append(sql.drop_table_statement(definition))
            statements.append(sql.create_table_statement(definition))
        statements.append(sql.lock_table_write_statement(definition.name, definition.schema))
        if job.disable_keys:
            statements.append(sql.disable_keys_statement(definition.name, definition.schema))
        statements.append(self._bulk_load_statement(job, definition, self.temp_file_path(definition)))
        if job.disable_keys:
            statements.append(sql.enable_keys_statement(definition.name, definition.schema))
        statements.append(sql.unlock_tables_statement())
        if job.erase_existing:
            statements.extend(sql.add_index_statements(definition))
        return statements

    # Run

    def run(self, job: ImportJob) -> ImportResult:
        """Run an import job.

        Args:
            job: Job to run; it is copied first, the caller's object is never changed

        Returns:
            ImportResult with staged and inserted line counts

        Raises:
            ConfigError: If the job definition is invalid
            DataError: If a source value can not be staged
            DatabaseError: If a statement fails
            StorageError: If the staging file can not be written
        """
        start_time = time.time()
        job = self._resolve_formatting(job.snapshot())

        source = self.registry.get_connection(job.source_connection)
        target = self.registry.get_connection(job.target_connection)

        with suspended_session(source, target):
            if job.callback_before is not None:
                job.callback_before(job)

            definition = self.prepare_table_definition(job)
            select_sql = sql.source_select_statement(job)
            target_table = sql.join_schema_and_table(definition.name, definition.schema)
            self.logger.info(f"Importing {job.source_connection}.{job.source_table} into {target_table}")

            if job.erase_existing:
                self.drop_table(target, definition)
                self.create_table(target, definition)
                self.logger.info(f"Recreated table {target_table}")

            temp_file = self._prepare_temp_file(definition)
            lines_created = self._stage(job, source, select_sql, temp_file)
            self.logger.info(f"Staged {lines_created} lines into {temp_file} ({file_size(temp_file)} bytes)")

            lines_inserted = self._load(job, target, definition, temp_file)
            self.logger.info(f"Loaded {lines_inserted} rows into {target_table}")

            if job.erase_existing and definition.indexes:
                self.update_table_indexes(target, definition)
                self.logger.info(f"Created {len(definition.indexes)} indexes on {target_table}")

            if job.callback_after is not None:
                job.callback_after(job)

        duration = time.time() - start_time
        self.logger.info(f"Import of {job.source_table} completed in {duration:.2f} seconds")

        return ImportResult(
            job=job,
            table=definition,
            target_table=target_table,
            temp_file=temp_file,
            lines_created=lines_created,
            lines_inserted=lines_inserted,
            select_sql=select_sql,
            duration=duration,
        )

    def _resolve_formatting(self, job: ImportJob) -> ImportJob:
        formatting = self.settings.temp_file.formatting
        if job.formatting_delimiter is None:
            job.formatting_delimiter = formatting.delimiter
        if job.formatting_enclosure is None:
            job.formatting_enclosure = formatting.enclosure
        if job.formatting_escape_char is None:
            job.formatting_escape_char = formatting.escape_char
        job.validate_formatting()
        return job

    def _prepare_temp_file(self, definition: TableDefinition) -> str:
        create_directory(self.settings.temp_file.directory)
        temp_file = self.temp_file_path(definition)
        delete_file(temp_file)
        return temp_file

    def _stage(self, job: ImportJob, source: DatabaseInterface, select_sql: str, temp_file: str) -> int:
        writer = ImportWriter(job, temp_file, zone=self.zone)
        writer.open()
        try:
            with closing(source.iterate_query(select_sql)) as rows:
                writer.write_all(rows)
        finally:
            writer.close()
        return writer.lines_created

    def _bulk_load_statement(self, job: ImportJob, definition: TableDefinition, temp_file: str) -> str:
        return sql.bulk_load_statement(
            temp_file,
            definition.name,
            schema=definition.schema,
            charset=sql.get_charset_from_collation(definition.collation),
            duplicate_strategy=job.duplicate_strategy,
            delimiter=job.delimiter,
            enclosure=job.enclosure,
            escape_char=job.escape_char,
            ignore_lines=1,
            columns=job.order_target_fields,
            local=self.settings.load_data_local,
        )

    def _load(self, job: ImportJob, target: DatabaseInterface, definition: TableDefinition, temp_file: str) -> int:
        """Load the staging file under a write lock and return the inserted row count."""
        load_sql = self._bulk_load_statement(job, definition, temp_file)

        target.execute(sql.lock_table_write_statement(definition.name, definition.schema))
        try:
            rows = self._load_locked(job, target, definition, load_sql)
        except Exception:
            self._execute_after_failure(target, sql.unlock_tables_statement())
            raise
        target.execute(sql.unlock_tables_statement())

        if not rows:
            return 0
        return int(rows[0].get(sql.ROW_COUNT_COLUMN) or 0)

    def _load_locked(self, job: ImportJob, target: DatabaseInterface, definition: TableDefinition, load_sql: str) -> List[dict]:
        if job.disable_keys:
            target.execute(sql.disable_keys_statement(definition.name, definition.schema))
        try:
            target.execute(load_sql)
            rows = target.execute_query(sql.row_count_statement())
        except Exception:
            if job.disable_keys:
                self._execute_after_failure(target, sql.enable_keys_statement(definition.name, definition.schema))
            raise
        if job.disable_keys:
            target.execute(sql.enable_keys_statement(definition.name, definition.schema))
        return rows

    def _execute_after_failure(self, target: DatabaseInterface, statement: str) -> None:
        """Run a cleanup statement while another error propagates, logging its own failure."""
        try:
            target.execute(statement)
        except DatabaseError as e:
            self.logger.warning(f"Cleanup statement {statement} failed: {str(e)}")
