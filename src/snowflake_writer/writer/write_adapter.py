"""
Statement-level operations against a Snowflake connection.

SnowflakeWriteAdapter executes what SnowflakeQueryBuilder generates and interprets the results
(primary keys, table info, column types). The load orchestration that strings these operations
together lives in SnowflakeWriter.
"""

import json
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from ..config.models import ColumnConfig, ExportConfig
from ..errors import ConfigurationError
from ..logger import CredentialRedactingAdapter, get_logger
from .query_builder import SnowflakeQueryBuilder, indexed_active_items
from .strategies import WriteStrategy, create_write_strategy, read_manifest
from .strategies.base import manifest_path

MAX_IDENTIFIER_LENGTH = 255
MAX_RUN_TOKEN_LENGTH = 64
STAGE_NAME_PREFIX = 'db-writer'
TOKEN_LENGTH = 13
RUN_SUFFIX_TOKEN_LENGTH = 8


class Connection(Protocol):
    """What the writer needs from a database connection"""

    def execute(self, sql: str) -> None: ...

    def fetch_all(self, sql: str) -> List[Dict[str, Any]]: ...


class SnowflakeWriteAdapter:
    def __init__(
        self,
        connection: Connection,
        query_builder: SnowflakeQueryBuilder,
        logger: Optional[CredentialRedactingAdapter] = None,
        strategy_factory: Callable[[Dict[str, Any]], WriteStrategy] = create_write_strategy,
    ):
        self.connection = connection
        self.query_builder = query_builder
        self.logger = logger or get_logger(__name__)
        self.strategy_factory = strategy_factory

    @property
    def schema(self) -> str:
        return self.query_builder.schema

    def generate_tmp_name(self, table_name: str, run_id: Optional[str] = None) -> str:
        """
        Staging table name for `table_name`, unique per run and at most MAX_IDENTIFIER_LENGTH long.

        The suffix is `_temp_<run id>_<random>` (or `_temp_<random>` without a run id), so a retry with
        the same run id never reuses a staging table left behind by an interrupted attempt. The table
        name is truncated, never the suffix.
        """
        if run_id:
            token = f'{_sanitize_run_id(run_id, "_")[:MAX_RUN_TOKEN_LENGTH]}_{_random_token(RUN_SUFFIX_TOKEN_LENGTH)}'
        else:
            token = _random_token(TOKEN_LENGTH)
        suffix = f'_temp_{token}'
        return table_name[: MAX_IDENTIFIER_LENGTH - len(suffix)] + suffix

    def generate_stage_name(self, run_id: Optional[str] = None) -> str:
        token = _sanitize_run_id(run_id, '-') if run_id else _random_token(TOKEN_LENGTH)
        return f'{STAGE_NAME_PREFIX}-{token}'[:MAX_IDENTIFIER_LENGTH].rstrip('-')

    def create(
        self,
        table_name: str,
        is_temporary: bool,
        items: Sequence[ColumnConfig],
        primary_key: Optional[Sequence[str]] = None,
    ) -> None:
        self.logger.info(f'Creating {"temporary " if is_temporary else ""}table "{table_name}"')
        self.connection.execute(self.query_builder.create_table_statement(table_name, is_temporary, items, primary_key))

    def drop(self, table_name: str) -> None:
        self.logger.info(f'Dropping table "{table_name}"')
        self.connection.execute(self.query_builder.drop_table_statement(table_name))

    def table_exists(self, table_name: str) -> bool:
        return len(self.connection.fetch_all(self.query_builder.table_exists_statement(table_name))) > 0

    def write_data(self, table_name: str, export_config: ExportConfig) -> int:
        """Bulk-load the export's source data into `table_name`. Returns the number of rows loaded."""
        self.logger.info(f'Writing data to table "{table_name}"')

        table_file_path = export_config.table_file_path
        if not manifest_path(table_file_path).exists() and Path(table_file_path).is_file():
            return self._write_via_user_stage(table_name, export_config)

        write_strategy = self.strategy_factory(read_manifest(table_file_path))
        stage_name = self.generate_stage_name(export_config.run_id)

        self.logger.info(f'Dropping stage "{stage_name}"')
        self.connection.execute(self.query_builder.drop_stage_statement(stage_name))

        self.logger.info(f'Creating stage "{stage_name}"')
        self.connection.execute(write_strategy.generate_create_stage_command(stage_name))

        rows_loaded = 0
        try:
            items = indexed_active_items(export_config.items)
            commands = write_strategy.generate_copy_commands(
                self.query_builder.table_name_with_schema(table_name), stage_name, items
            )
            for command in commands:
                rows_loaded += _rows_loaded(self.connection.fetch_all(command))
        finally:
            self.connection.execute(self.query_builder.drop_stage_statement(stage_name))

        self.logger.info(f'Loaded {rows_loaded} rows into "{table_name}"')
        return rows_loaded

    def _write_via_user_stage(self, table_name: str, export_config: ExportConfig) -> int:
        """Upload a local CSV into the user stage with PUT and copy it into `table_name`"""
        self.logger.info(f'No manifest found, uploading local file "{export_config.table_file_path}"')
        for statement in self.query_builder.put_file_statements(export_config.table_file_path, table_name):
            self.connection.execute(statement)

        try:
            result = self.connection.fetch_all(
                self.query_builder.copy_into_table_statement(table_name, export_config.items)
            )
        finally:
            self.connection.execute(self.query_builder.remove_user_stage_statement(table_name))

        rows_loaded = _rows_loaded(result)
        self.logger.info(f'Loaded {rows_loaded} rows into "{table_name}"')
        return rows_loaded

    def upsert(self, export_config: ExportConfig, stage_table_name: str) -> None:
        self.logger.info(f'Upserting data to table "{export_config.db_name}"')
        if export_config.has_primary_key:
            self.add_primary_key_if_missing(export_config.primary_key, export_config.db_name)
            self.check_primary_key(export_config.primary_key, export_config.db_name)

            update = self.query_builder.upsert_update_rows_statement(export_config, stage_table_name)
            if update:
                self.connection.execute(update)
            self.connection.execute(self.query_builder.upsert_delete_rows_statement(export_config, stage_table_name))

        self.connection.execute(self.query_builder.upsert_insert_rows_statement(export_config, stage_table_name))

    def swap_table(self, table_name: str, staging_table_name: str) -> None:
        self.logger.info(f'Swapping table "{staging_table_name}" with "{table_name}"')
        self.connection.execute(self.query_builder.swap_table_statement(staging_table_name, table_name))

    def get_table_info(self, table_name: str) -> List[Dict[str, Any]]:
        """Column name, type, nullability and key flags of an existing table"""
        rows = self.connection.fetch_all(self.query_builder.table_info_statement(table_name))
        return [
            {
                'name': row['name'],
                'type': row['type'],
                'nullable': row.get('null?') == 'Y',
                'primary_key': row.get('primary key') == 'Y',
                'unique_key': row.get('unique key') == 'Y',
            }
            for row in rows
        ]

    def get_primary_keys(self, table_name: str) -> List[str]:
        return [column['name'] for column in self.get_table_info(table_name) if column['primary_key']]

    def add_primary_key_if_missing(self, primary_key: Sequence[str], table_name: str) -> None:
        if self.get_primary_keys(table_name):
            return

        self.logger.info(f'Adding primary key ({", ".join(primary_key)}) to table "{table_name}"')
        self.connection.execute(self.query_builder.add_primary_key_statement(table_name, primary_key))

    def check_primary_key(self, primary_key: Sequence[str], table_name: str) -> None:
        primary_keys_in_db = sorted(self.get_primary_keys(table_name))
        configured = sorted(primary_key)

        if primary_keys_in_db != configured:
            raise ConfigurationError(
                'Primary key(s) in configuration does NOT match with keys in DB table.\n'
                f'Keys in configuration: {",".join(configured)}\n'
                f'Keys in DB table: {",".join(primary_keys_in_db)}'
            )

    def add_unique_key_if_missing(self, table_name: str, column: str) -> None:
        table_info = self.get_table_info(table_name)
        has_unique = any(info['unique_key'] for info in table_info if info['name'] == column)
        has_primary_key = any(info['primary_key'] for info in table_info)
        if has_unique or has_primary_key:
            return

        self.logger.info(f'Adding unique key to table "{table_name}" on column "{column}"')
        self.connection.execute(self.query_builder.add_unique_key_statement(table_name, column))

    def add_foreign_key(self, table_name: str, column: str, ref_table: str, ref_column: str) -> None:
        self.logger.info(
            f'Creating foreign key from table "{table_name}" column "{column}" to table "{ref_table}" column "{ref_column}"'
        )
        self.connection.execute(self.query_builder.add_foreign_key_statement(table_name, column, ref_table, ref_column))

    def is_same_type_columns(self, source_table: str, source_column: str, target_table: str, target_column: str) -> bool:
        source = self._get_column_data_type(source_table, source_column)
        target = self._get_column_data_type(target_table, target_column)
        return all(source.get(key) == target.get(key) for key in ('type', 'length', 'nullable'))

    def _get_column_data_type(self, table_name: str, column: str) -> Dict[str, Any]:
        columns = self.connection.fetch_all(self.query_builder.describe_table_columns_statement(table_name))
        matching = [row for row in columns if row['column_name'] == column]
        if not matching:
            raise ConfigurationError(f"Column '{column}' in table '{table_name}' not found")
        return json.loads(matching[0]['data_type'])


def _rows_loaded(result: List[Dict[str, Any]]) -> int:
    return sum(int(row.get('rows_loaded') or 0) for row in result or [])


def _random_token(length: int) -> str:
    return uuid.uuid4().hex[:length]


def _sanitize_run_id(run_id: str, separator: str) -> str:
    return run_id.replace('.', separator)
