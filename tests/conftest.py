# Shared pytest fixtures
from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import pytest

from bulkimport.core.config import ImportSettings, parse_import_settings
from bulkimport.core.exceptions import DatabaseError
from bulkimport.domain.interfaces import DatabaseInterface
from bulkimport.domain.models import ImportField, ImportJob
from bulkimport.infrastructure.mariadb import ConnectionRegistry
from bulkimport.services.import_ import ImportService


class FakeDatabase(DatabaseInterface):
    """In-memory connection recording statements.

    Source rows are served from `rows`; LOAD DATA reads the staging file and
    reports its data lines as inserted rows.
    """

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None):
        self.rows = list(rows or [])
        self.statements: List[str] = []
        self.logging_seen: List[bool] = []
        self.timeouts = {"net_read_timeout": 30, "net_write_timeout": 60, "wait_timeout": 28800}
        self.timeout_history: List[Dict[str, Any]] = []
        self.fail_on: Tuple[str, ...] = ()
        self.connected = False
        self.row_count = -1
        self.loaded_lines: List[str] = []
        self.statement_logging = True
        self.open_results = 0

    def connect(self) -> None:
        self.connected = True

    def disconnect(self) -> None:
        self.connected = False

    def _record(self, sql: str) -> None:
        self.statements.append(sql)
        self.logging_seen.append(self.statement_logging)
        if any(part in sql for part in self.fail_on):
            raise DatabaseError(f"Simulated failure on: {sql}")

    def execute(self, sql: str) -> int:
        self._record(sql)
        if sql.startswith("LOAD DATA"):
            return self._load(sql)
        return 0

    def _load(self, sql: str) -> int:
        path = re.sub(r"\\(.)", r"\1", re.search(r"INFILE '((?:[^'\\]|\\.)*)'", sql).group(1))
        ignore = re.search(r"IGNORE (\d+) LINES", sql)
        with open(path, encoding="utf-8", errors="surrogateescape", newline="") as f:
            lines = f.read().split("\n")
        if lines and lines[-1] == "":
            lines.pop()
        skip = int(ignore.group(1)) if ignore else 0
        self.loaded_lines = lines[skip:]
        self.row_count = len(self.loaded_lines)
        return self.row_count

    def execute_query(self, query: str) -> List[Dict[str, Any]]:
        self._record(query)
        if query.startswith("SELECT ROW_COUNT()"):
            return [{"inserted": self.row_count}]
        return []

    def iterate_query(self, query: str) -> Iterator[Dict[str, Any]]:
        self._record(query)
        self.open_results += 1
        try:
            for row in self.rows:
                yield dict(row)
        finally:
            self.open_results -= 1

    def get_timeouts(self) -> Dict[str, Any]:
        return dict(self.timeouts)

    def set_timeouts(self, values: Dict[str, Any]) -> None:
        self.timeout_history.append(dict(values))
        self.timeouts.update(values)

    def count(self, prefix: str) -> int:
        return sum(1 for statement in self.statements if statement.startswith(prefix))

    def index_of(self, prefix: str) -> int:
        for position, statement in enumerate(self.statements):
            if statement.startswith(prefix):
                return position
        raise AssertionError(f"No statement starting with {prefix!r} in {self.statements}")


def alias_config() -> Dict[str, Any]:
    return {
        "source": {
            "tables": {
                "users": {
                    "collation": "utf8mb4_unicode_ci",
                    "fields": {
                        "id": {"name": "user_id", "type": "integer", "nullable": False, "signed": False},
                        "name": {"name": "user_name", "type": "string", "length": 10, "nullable": True},
                        "email": {"name": "email", "type": "string", "length": 100, "nullable": True},
                        "born": {"name": "born_on", "type": "date", "nullable": True},
                    },
                    "indexes": {
                        "pk_user": {"type": "primary", "fields": "id"},
                        "idx_name_email": {"type": "index", "fields": {"name": 5, "email": 0}},
                    },
                }
            }
        }
    }


@pytest.fixture()
def staging_dir(tmp_path: Path) -> Path:
    return tmp_path / "staging"


@pytest.fixture()
def import_section(staging_dir: Path) -> Dict[str, Any]:
    return {
        "temp_file": {
            "directory": str(staging_dir) + os.sep,
            "prefix": "stage_",
            "formatting": {"delimiter": ",", "enclosure": '"', "escape_char": "\\"},
        },
        "table_prefix": "_tmp_import_",
        "alias": alias_config(),
    }


@pytest.fixture()
def settings(import_section: Dict[str, Any]) -> ImportSettings:
    return parse_import_settings(import_section)


@pytest.fixture()
def fake_database():
    return FakeDatabase


@pytest.fixture()
def source_db() -> FakeDatabase:
    return FakeDatabase(rows=[{"id": 1, "name": "ab"}, {"id": 2, "name": None}])


@pytest.fixture()
def target_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture()
def registry(source_db: FakeDatabase, target_db: FakeDatabase) -> ConnectionRegistry:
    return ConnectionRegistry(connections={"source": source_db, "target": target_db})


@pytest.fixture()
def service(settings: ImportSettings, registry: ConnectionRegistry) -> ImportService:
    return ImportService(settings, registry)


@pytest.fixture()
def simple_job() -> ImportJob:
    job = ImportJob("source", "users", "target")
    job.add_field(ImportField("id", "integer", False))
    job.add_field(ImportField("name", "string", True, length=10))
    job.table_name = "imported_users"
    return job
