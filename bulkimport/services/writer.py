"""Staging writer turning source rows into the file loaded by LOAD DATA."""
from datetime import tzinfo
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from bulkimport.core.exceptions import ConfigError, ImportError
from bulkimport.core.logging import get_logger
from bulkimport.domain.interfaces import RecordWriterInterface
from bulkimport.domain.models import ImportJob
from bulkimport.infrastructure.storage import DelimitedFileWriter, Verbatim, null_token
from bulkimport.services.conversion import UTC, convert

logger = get_logger(__name__)

class WriterState(Enum):
    UNOPENED = "unopened"
    OPEN = "open"
    CLOSED = "closed"

class ImportWriter:
    """Writes the rows of one import job to its staging file.

    The first record is the header: the target column order. Each row then
    goes through value resolution, type conversion, line cleaning and line
    validation, in that order. `lines_created` counts only the records
    actually written.
    """

    def __init__(
        self,
        job: ImportJob,
        file_path: str,
        record_writer: Optional[RecordWriterInterface] = None,
        zone: tzinfo = UTC,
    ):
        """Initialize the writer.

        Args:
            job: Import job; a copy is kept so later changes do not apply
            file_path: Destination of the staging file
            record_writer: Writer for delimited records, a DelimitedFileWriter by default
            zone: Zone used to read naive temporal values
        """
        self.job = job.snapshot()
        self.file_path = file_path
        self.zone = zone

        self.fields_order = self.job.order_target_fields
        self.fields_target = self.job.fields_from_target_names(self.fields_order)

        self._writer = record_writer or DelimitedFileWriter(
            file_path,
            delimiter=self.job.delimiter,
            enclosure=self.job.enclosure,
            escape_char=self.job.escape_char,
            terminator="\n",
        )
        self.null_value = Verbatim(null_token(self.job.escape_char))

        self.callback_line_cleaning = self.job.callback_line_cleaning
        self.callback_line_validation = self.job.callback_line_validation

        self.lines_created = 0
        self.state = WriterState.UNOPENED

    @property
    def default_mime_type(self) -> str:
        return self._writer.default_mime_type

    @property
    def format(self) -> str:
        return self._writer.format

    def open(self) -> None:
        """Open the staging file and write the header record.

        Raises:
            ImportError: If the writer was already opened
        """
        if self.state is not WriterState.UNOPENED:
            raise ImportError(f"Writer for {self.file_path} can only be opened once (state: {self.state.value})")
        self._writer.open()
        self.state = WriterState.OPEN
        self._writer.write(list(self.fields_order))

    def write(self, row: Dict[str, Any]) -> bool:
        """Stage one source row.

        Returns:
            True if the row was written, False if line validation rejected it

        Raises:
            ImportError: If the writer is not open
            ConfigError: If line cleaning returns something other than a
                mapping of known columns
            DataError: If a value can not be converted
        """
        if self.state is not WriterState.OPEN:
            raise ImportError(f"Writer for {self.file_path} is not open (state: {self.state.value})")

        record = {}
        for target_name in self.fields_order:
            import_field = self.fields_target[target_name]
            record[target_name] = convert(import_field.resolve_value(row), import_field, self.zone)

        if self.callback_line_cleaning is not None:
            changes = self.callback_line_cleaning(record)
            if changes is not None:
                if not isinstance(changes, dict):
                    raise ConfigError("Line cleaning callback must return a mapping or None.")
                unknown = [name for name in changes if name not in record]
                if unknown:
                    raise ConfigError(f'Columns "{";".join(unknown)}" are unknown.')
                record.update(changes)

        if self.callback_line_validation is not None and not self.callback_line_validation(record):
            return False

        values = [self.null_value if value is None else value for value in record.values()]
        self._writer.write(values)
        self.lines_created += 1
        return True

    def write_all(self, rows: Iterable[Dict[str, Any]]) -> int:
        """Stage every row of an iterable and return the number written."""
        for row in rows:
            self.write(row)
        return self.lines_created

    def close(self) -> None:
        """Flush and close the staging file.

        Raises:
            ImportError: If the writer was never opened
        """
        if self.state is WriterState.CLOSED:
            return
        if self.state is WriterState.UNOPENED:
            raise ImportError(f"Writer for {self.file_path} was never opened")
        self._writer.close()
        self.state = WriterState.CLOSED
        logger.debug(f"Staged {self.lines_created} lines into {self.file_path}")

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
