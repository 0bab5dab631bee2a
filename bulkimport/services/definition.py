"""Derivation of the target table from an import job."""
import hashlib

from bulkimport.core.config import DEFAULT_COLLATION, DEFAULT_ENGINE, DEFAULT_TABLE_PREFIX
from bulkimport.core.exceptions import ConfigError
from bulkimport.domain.models import ImportJob, TableDefinition, TableField, TableIndex

MAX_TABLE_NAME_LENGTH = 64
MAX_TABLE_PREFIX_LENGTH = 32

def derive_table_name(job: ImportJob, table_prefix: str = DEFAULT_TABLE_PREFIX) -> str:
    """Target table name: the explicit one, or the prefix plus a hash of the source.

    Raises:
        ConfigError: If the prefix or the name is too long, or the job has no field
    """
    table_name = job.table_name
    if table_name is None:
        if len(table_prefix) > MAX_TABLE_PREFIX_LENGTH:
            raise ConfigError(f"Table prefix length is over {MAX_TABLE_PREFIX_LENGTH}.")
        target_names = job.fields_target_name()
        if not target_names:
            raise ConfigError("Table name require field define in configuration.")
        digest = hashlib.md5((job.source_table + "-".join(target_names)).encode("utf-8")).hexdigest()
        table_name = table_prefix + digest
    if len(table_name) > MAX_TABLE_NAME_LENGTH:
        raise ConfigError(f"Table name length is over {MAX_TABLE_NAME_LENGTH}.")
    return table_name

def prepare_table_definition(
    job: ImportJob,
    table_prefix: str = DEFAULT_TABLE_PREFIX,
    default_collation: str = DEFAULT_COLLATION,
    default_engine: str = DEFAULT_ENGINE,
) -> TableDefinition:
    """Build the target table of a job.

    Columns follow the effective field order. Index fields are given by
    origin name: the source name of a plain field or the target name of a
    calculated field; the table index stores the target name.

    Raises:
        ConfigError: On duplicate target names, an incomplete or unknown
            field order, or an index field that resolves to no field or to two
    """
    job.fields_target_name()

    definition = TableDefinition(
        name=derive_table_name(job, table_prefix),
        collation=job.collation or default_collation,
        engine=job.engine or default_engine,
        schema=job.schema_target,
    )

    order = job.order_target_fields
    by_target = job.fields_from_target_names(order)

    missing = job.missing_from_order()
    if missing:
        raise ConfigError(f"Some fields are missing inside order definition, please add : {'; '.join(missing)}")

    for target_name in order:
        source = by_target[target_name]
        definition.add_field(TableField(
            name=target_name,
            type=source.type,
            nullable=source.nullable,
            length=source.length,
            signed=source.signed,
            default=source.default,
        ))

    for index in job.indexes.values():
        table_index = TableIndex(index.name, index.kind)
        for origin_name, length in index.fields.items():
            plain = job.fields.get(origin_name)
            calculated = job.calculated_fields.get(origin_name)
            if plain is not None and calculated is not None:
                raise ConfigError(
                    f'Field "{origin_name}" of index "{index.name}" matches both a field and a calculated field.'
                )
            resolved = plain if plain is not None else calculated
            if resolved is None:
                raise ConfigError(f'No find field named "{origin_name}" for index "{index.name}".')
            table_index.add_field_name(resolved.target_name, length)
        definition.add_index(table_index)

    return definition
