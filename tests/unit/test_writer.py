from __future__ import annotations

from typing import Any, List

import pytest

from bulkimport.core.exceptions import ConfigError, DataError, ImportError
from bulkimport.domain.interfaces import RecordWriterInterface
from bulkimport.domain.models import CalculatedField, ImportField, ImportJob
from bulkimport.infrastructure.storage import Verbatim
from bulkimport.services.writer import ImportWriter, WriterState


class ListWriter(RecordWriterInterface):
    """Record writer keeping records in memory."""

    def __init__(self):
        self.records: List[List[Any]] = []
        self.opened = False
        self.closed = False

    @property
    def default_mime_type(self) -> str:
        return "text/plain"

    @property
    def format(self) -> str:
        return "list"

    def open(self) -> None:
        self.opened = True

    def write(self, values) -> None:
        self.records.append(list(values))

    def close(self) -> None:
        self.closed = True


def _job(**options) -> ImportJob:
    job = ImportJob("source", "users", "target", **options)
    job.add_field(ImportField("id", "integer", False, target_name="user_id"))
    job.add_field(ImportField("name", "string", True, length=10, cleaning=lambda value: value and value.strip()))
    job.add_calculated_field(CalculatedField("id_twice", "integer", False, compute=lambda row: int(row["id"]) * 2))
    return job


def _writer(job: ImportJob) -> tuple:
    records = ListWriter()
    return ImportWriter(job, "/unused", record_writer=records), records


def test_header_then_converted_rows():
    """The header is the column order; values are resolved, cleaned and converted."""
    writer, records = _writer(_job())
    with writer:
        assert writer.write({"id": "3", "name": "  ab "}) is True

    assert records.records == [["user_id", "name", "id_twice"], [3, "ab", 6]]
    assert records.opened and records.closed
    assert writer.lines_created == 1
    assert writer.state is WriterState.CLOSED


def test_null_values_use_the_escape_null_marker():
    writer, records = _writer(_job(formatting_escape_char="|"))
    with writer:
        writer.write({"id": 1, "name": None})

    value = records.records[1][1]
    assert value == "|N"
    assert isinstance(value, Verbatim)


def test_columns_follow_explicit_order():
    job = _job()
    job.set_order_target_fields("id_twice", "name", "user_id")
    writer, records = _writer(job)
    with writer:
        writer.write({"id": 2, "name": "x"})

    assert records.records == [["id_twice", "name", "user_id"], [4, "x", 2]]


def test_line_cleaning_overrides_columns():
    job = _job()
    job.callback_line_cleaning = lambda record: {"name": record["name"].upper()}
    writer, records = _writer(job)
    with writer:
        writer.write({"id": 1, "name": "ab"})

    assert records.records[1] == [1, "AB", 2]


@pytest.mark.parametrize("result", [["name"], {"ghost": 1}])
def test_line_cleaning_must_return_known_columns(result):
    job = _job()
    job.callback_line_cleaning = lambda record: result
    writer, _ = _writer(job)
    writer.open()
    with pytest.raises(ConfigError):
        writer.write({"id": 1, "name": "ab"})


def test_line_validation_skips_rows_without_counting_them():
    """Rejected rows are neither written nor counted."""
    job = _job()
    job.callback_line_validation = lambda record: record["user_id"] % 2 == 0
    writer, records = _writer(job)
    with writer:
        written = writer.write_all({"id": i, "name": str(i)} for i in range(1, 6))

    assert written == 2
    assert writer.lines_created == 2
    assert [record[0] for record in records.records[1:]] == [2, 4]


def test_conversion_errors_propagate():
    writer, _ = _writer(_job())
    writer.open()
    with pytest.raises(DataError):
        writer.write({"id": None, "name": "ab"})
    assert writer.lines_created == 0


def test_state_machine():
    writer, _ = _writer(_job())

    with pytest.raises(ImportError):
        writer.write({"id": 1, "name": "a"})
    with pytest.raises(ImportError):
        writer.close()

    writer.open()
    with pytest.raises(ImportError):
        writer.open()

    writer.close()
    writer.close()
    with pytest.raises(ImportError):
        writer.write({"id": 1, "name": "a"})
    with pytest.raises(ImportError):
        writer.open()


def test_job_changes_after_creation_are_ignored():
    job = _job()
    writer, records = _writer(job)
    job.add_field(ImportField("email", "string", True, length=50))
    job.set_order_target_fields("name")

    with writer:
        writer.write({"id": 1, "name": "a"})

    assert records.records[0] == ["user_id", "name", "id_twice"]


def test_default_file_writer(tmp_path):
    """Without an injected writer the staging file is written in LOAD DATA format."""
    path = tmp_path / "stage"
    job = _job()
    writer = ImportWriter(job, str(path))
    assert writer.default_mime_type == "text/csv"
    assert writer.format == "csv"

    with writer:
        writer.write({"id": 1, "name": "a b"})
        writer.write({"id": 2, "name": None})

    assert path.read_text() == 'user_id,name,id_twice\n1,"a b",2\n2,\\N,4\n'


def test_null_word_is_staged_as_text(tmp_path):
    """A string spelled NULL stays distinguishable from the NULL marker."""
    path = tmp_path / "stage"
    writer = ImportWriter(_job(), str(path))

    with writer:
        writer.write({"id": 1, "name": "NULL"})
        writer.write({"id": 2, "name": None})

    assert path.read_text().splitlines()[1:] == ['1,"NULL",2', "2,\\N,4"]
