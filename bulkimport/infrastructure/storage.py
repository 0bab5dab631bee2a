"""File storage operations implementation."""
import os
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from bulkimport.core.exceptions import StorageError
from bulkimport.core.logging import get_logger
from bulkimport.domain.interfaces import RecordWriterInterface

logger = get_logger(__name__)

class Verbatim(str):
    """Value written to a record exactly as given, never enclosed or escaped."""
    pass

def null_token(escape_char: str) -> str:
    """Marker LOAD DATA reads back as NULL for the given escape character."""
    return escape_char + "N" if escape_char else "NULL"

class DelimitedFileWriter(RecordWriterInterface):
    """Writes one delimited record per call in the format read by LOAD DATA.

    A value is enclosed only when it contains the delimiter, the enclosure,
    the escape character, whitespace or a line break, or is the word NULL.
    Inside a value the escape character and the enclosure are escaped, and
    CR, LF and NUL are written as escape sequences. None is written as the
    NULL marker.
    """

    def __init__(
        self,
        filename: Union[str, Path],
        delimiter: str = ",",
        enclosure: str = '"',
        escape_char: str = "\\",
        terminator: str = "\n",
        encoding: str = "utf-8",
    ):
        if len(delimiter) != 1:
            raise StorageError(f"Delimiter must be a single character, got {delimiter!r}")
        self.filename = str(filename)
        self.delimiter = delimiter
        self.enclosure = enclosure
        self.escape_char = escape_char
        self.terminator = terminator
        self.encoding = encoding
        self._file = None

    @property
    def default_mime_type(self) -> str:
        return "text/csv"

    @property
    def format(self) -> str:
        return "csv"

    @property
    def is_open(self) -> bool:
        return self._file is not None

    def open(self) -> None:
        """Open the file for writing, truncating it.

        Raises:
            StorageError: If the file is already open or can not be created
        """
        if self._file is not None:
            raise StorageError(f"File {self.filename} is already open")
        try:
            # surrogateescape restores bytes that were not valid UTF-8 in the source
            self._file = open(self.filename, "w", encoding=self.encoding, errors="surrogateescape", newline="")
        except OSError as e:
            raise StorageError(f"Failed to open {self.filename} for writing: {str(e)}")

    def write(self, values: Sequence[Any]) -> None:
        """Append one record.

        Raises:
            StorageError: If the file is not open or the write fails
        """
        if self._file is None:
            raise StorageError(f"File {self.filename} is not open")
        line = self.delimiter.join(self.format_value(value) for value in values) + self.terminator
        try:
            self._file.write(line)
        except OSError as e:
            raise StorageError(f"Failed to write to {self.filename}: {str(e)}")

    def close(self) -> None:
        if self._file is None:
            return
        try:
            self._file.close()
        except OSError as e:
            raise StorageError(f"Failed to close {self.filename}: {str(e)}")
        finally:
            self._file = None

    def format_value(self, value: Any) -> str:
        if isinstance(value, Verbatim):
            return str(value)
        if value is None:
            return null_token(self.escape_char)
        if isinstance(value, bool):
            text = "1" if value else "0"
        elif isinstance(value, (bytes, bytearray)):
            text = bytes(value).decode(self.encoding, "surrogateescape")
        else:
            text = str(value)
        return self._quote(text)

    def _needs_enclosure(self, text: str) -> bool:
        # LOAD DATA reads a bare NULL word as SQL NULL when an enclosure is set
        if text == "NULL":
            return True
        specials = (self.delimiter, self.enclosure, self.escape_char, " ", "\t", "\r", "\n", "\0")
        return any(char and char in text for char in specials)

    def _quote(self, text: str) -> str:
        escape = self.escape_char
        enclosure = self.enclosure
        enclose = bool(enclosure) and self._needs_enclosure(text)

        if escape:
            text = text.replace(escape, escape + escape)
            text = text.replace("\0", escape + "0").replace("\r", escape + "r").replace("\n", escape + "n")
            if enclose:
                text = text.replace(enclosure, escape + enclosure)
            elif not enclosure:
                text = text.replace(self.delimiter, escape + self.delimiter)
        elif enclose:
            text = text.replace(enclosure, enclosure + enclosure)

        if enclose:
            return enclosure + text + enclosure
        return text

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

def create_directory(directory: Union[str, Path]) -> None:
    """Create a directory if it doesn't exist.

    Raises:
        StorageError: If creation fails
    """
    try:
        os.makedirs(directory, exist_ok=True)
    except OSError as e:
        raise StorageError(f"Failed to create directory {directory}: {str(e)}")

def delete_file(file_path: Union[str, Path]) -> bool:
    """Delete a file, ignoring a missing one.

    Returns:
        True if a file was removed

    Raises:
        StorageError: If deletion fails
    """
    try:
        os.remove(file_path)
    except FileNotFoundError:
        return False
    except OSError as e:
        raise StorageError(f"Failed to delete file {file_path}: {str(e)}")
    logger.debug(f"Removed stale file {file_path}")
    return True

def file_size(file_path: Union[str, Path]) -> Optional[int]:
    """Size of a file in bytes, None when it does not exist."""
    try:
        return os.path.getsize(file_path)
    except OSError:
        return None
