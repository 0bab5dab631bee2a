from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest
import yaml

from bulkimport import main as cli
from bulkimport.core.config import LoggingConfig
from bulkimport.core.logging import setup_logging


@pytest.fixture(autouse=True)
def isolated_process_state(monkeypatch):
    """Keep root logger handlers, excepthook and SIGINT handler as they were."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    monkeypatch.setattr(cli.signal, "signal", lambda *args: None)
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture()
def config_file(tmp_path: Path, import_section) -> Path:
    document = {
        "connections": {"source": {"host": "db1"}, "target": {"host": "db2"}},
        "import": import_section,
        "logging": {"level": "WARNING"},
    }
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(document))
    return path


def test_parse_args_for_import():
    args = cli.parse_args([
        "--config", "c.yaml", "import", "source", "users", "target",
        "--fields", "id", "name", "--keep-existing", "--duplicate-strategy", "ignore",
    ])
    assert args.command == "import"
    assert args.config == "c.yaml"
    assert args.fields == ["id", "name"]
    assert args.keep_existing is True
    assert args.disable_keys is False
    assert args.duplicate_strategy == "ignore"


def test_statements_command_prints_sql_without_connecting(config_file, capsys, monkeypatch):
    """The statements command never opens a connection."""
    def refuse(*args, **kwargs):
        raise AssertionError("no connection expected")

    monkeypatch.setattr(cli.ConnectionRegistry, "get_connection", refuse)

    exit_code = cli.main([
        "--config", str(config_file), "statements", "source", "users", "target",
        "--fields", "id", "name", "--table-name", "imported_users", "--disable-keys",
    ])

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "SELECT" in out
    assert "LOAD" in out and "INFILE" in out
    assert "DISABLE KEYS" in out
    assert "UNLOCK TABLES" in out


def test_import_command_runs_the_job(config_file, capsys, monkeypatch, registry, target_db):
    monkeypatch.setattr(cli, "ConnectionRegistry", lambda configs: registry)

    exit_code = cli.main([
        "--config", str(config_file), "import", "source", "users", "target",
        "--fields", "id", "name", "--table-name", "imported_users",
    ])

    assert exit_code == 0
    assert target_db.count("LOAD DATA") == 1
    assert "Rows Inserted" in capsys.readouterr().out


def test_configuration_error_exits_with_one(tmp_path):
    assert cli.main(["--config", str(tmp_path / "missing.yaml"), "statements", "a", "b", "c"]) == 1


def test_unknown_field_exits_with_one(config_file):
    exit_code = cli.main([
        "--config", str(config_file), "statements", "source", "users", "target", "--fields", "ghost",
    ])
    assert exit_code == 1


def test_data_error_exits_with_one(config_file, monkeypatch, registry, source_db):
    source_db.rows = [{"id": None, "name": "x"}]
    monkeypatch.setattr(cli, "ConnectionRegistry", lambda configs: registry)

    exit_code = cli.main([
        "--config", str(config_file), "import", "source", "users", "target", "--fields", "id", "name",
    ])
    assert exit_code == 1


def test_setup_logging_writes_detailed_file(tmp_path):
    log_file = tmp_path / "logs" / "run.log"
    setup_logging(LoggingConfig(level="DEBUG", file=str(log_file)))

    logging.getLogger("bulkimport.test").info("hello")
    for handler in logging.getLogger().handlers:
        handler.flush()

    content = log_file.read_text()
    assert "hello" in content
    assert "Location:" in content
    assert logging.getLogger("mysql.connector").level == logging.INFO
