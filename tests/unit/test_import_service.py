from __future__ import annotations

import pytest

from bulkimport.core.exceptions import ConfigError, DatabaseError
from bulkimport.domain.models import FieldType, ImportIndex, IndexKind
from bulkimport.infrastructure.mariadb import UNLIMITED_TIMEOUT
from bulkimport.services.import_ import suspended_session


def test_create_job_from_configuration(service):
    """Fields come from the alias; indexes are attached when all their fields are selected."""
    job = service.create_job("source", "users", "target", ["id", "name"])

    assert list(job.fields) == ["id", "name"]
    assert job.get_field("id").target_name == "user_id"
    assert job.get_field("id").signed is False
    assert job.get_field("name").length == 10
    assert job.collation == "utf8mb4_unicode_ci"
    assert list(job.indexes) == ["pk_user"]
    assert job.get_index("pk_user").fields == {"id": 0}


def test_create_job_attaches_multi_field_index(service):
    job = service.create_job("source", "users", "target", ["id", "name", "email"])
    assert job.get_index("idx_name_email").fields == {"name": 5, "email": 0}
    assert job.get_index("idx_name_email").kind is IndexKind.NORMAL


@pytest.mark.parametrize(
    "connection, table, fields",
    [
        ("source", "users", ["id", 5]),
        ("source", "users", ["ghost"]),
        ("source", "orders", ["id"]),
        ("elsewhere", "users", ["id"]),
    ],
)
def test_create_job_rejects_unknown_configuration(service, connection, table, fields):
    with pytest.raises(ConfigError):
        service.create_job(connection, table, "target", fields)


def test_create_field_overrides(service):
    field = service.create_field("source", "users", "born", type="datetime", nullable=False)
    assert field.target_name == "born_on"
    assert field.type is FieldType.DATETIME
    assert field.nullable is False

    with pytest.raises(ConfigError):
        service.create_field("source", "users", "born", type="timestamp")


def test_update_job_indexes_keeps_or_drops_unknown_indexes(service):
    job = service.create_job("source", "users", "target", ["id"])
    job.add_index(ImportIndex("custom", "index", {"id": 0}))

    service.update_job_indexes(job)
    assert set(job.indexes) == {"pk_user", "custom"}

    service.update_job_indexes(job, keep_unknown=False)
    assert set(job.indexes) == {"pk_user"}


def test_table_operations_send_statements(service, target_db, simple_job):
    simple_job.add_index(ImportIndex("pk", "primary", {"id": 0}))
    definition = service.prepare_table_definition(simple_job)

    service.drop_table(target_db, definition)
    service.create_table(target_db, definition)
    service.update_table_indexes(target_db, definition)

    assert target_db.statements == [
        "DROP TABLE IF EXISTS `imported_users`",
        "CREATE TABLE `imported_users`(`id` BIGINT(20) NOT NULL DEFAULT 0,`name` VARCHAR(10) NULL DEFAULT NULL)"
        "DEFAULT COLLATE utf8_unicode_ci ENGINE MyISAM",
        "ALTER TABLE `imported_users` ADD UNIQUE INDEX `pk`(`id`)",
    ]


def test_temp_file_path(service, simple_job, staging_dir):
    definition = service.prepare_table_definition(simple_job)
    assert service.temp_file_path(definition) == str(staging_dir / "stage_imported_users")


def test_build_statements_order(service, simple_job):
    """Schema changes, then the locked load, then the indexes."""
    simple_job.disable_keys = True
    simple_job.duplicate_strategy = "replace"
    simple_job.add_index(ImportIndex("pk", "primary", {"id": 0}))

    statements = service.build_statements(simple_job)

    assert [statement.split(" ")[0] for statement in statements] == [
        "DROP", "CREATE", "LOCK", "ALTER", "LOAD", "ALTER", "UNLOCK", "ALTER"
    ]
    assert statements[3].endswith("DISABLE KEYS")
    assert " REPLACE INTO TABLE `imported_users` CHARACTER SET utf8 " in statements[4]
    assert statements[4].endswith("IGNORE 1 LINES (`id`,`name`)")
    assert statements[5].endswith("ENABLE KEYS")
    assert statements[7].startswith("ALTER TABLE `imported_users` ADD UNIQUE INDEX")
    assert simple_job.formatting_delimiter is None


def test_build_statements_keeping_existing_table(service, simple_job):
    simple_job.erase_existing = False
    simple_job.add_index(ImportIndex("pk", "primary", {"id": 0}))

    statements = service.build_statements(simple_job)

    assert [statement.split(" ")[0] for statement in statements] == ["LOCK", "LOAD", "UNLOCK"]


def test_suspended_session_restores_state(fake_database):
    """Logging and timeouts are restored once, even when the block fails."""
    first, second = fake_database(), fake_database()
    second.statement_logging = False
    original = dict(first.timeouts)

    with pytest.raises(RuntimeError):
        with suspended_session(first, second, first):
            assert first.statement_logging is False
            assert set(first.timeouts.values()) == {UNLIMITED_TIMEOUT}
            raise RuntimeError("boom")

    assert first.statement_logging is True
    assert second.statement_logging is False
    assert first.timeouts == original
    assert len(first.timeout_history) == 2


def test_suspended_session_survives_restore_failure(fake_database):
    class FailingRestore(fake_database):
        def set_timeouts(self, values):
            super().set_timeouts(values)
            if len(self.timeout_history) > 1:
                raise DatabaseError("gone")

    connection = FailingRestore()
    with suspended_session(connection):
        pass

    assert connection.statement_logging is True
