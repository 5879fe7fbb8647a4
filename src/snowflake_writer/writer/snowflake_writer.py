"""
Load orchestration for the Snowflake writer.

SnowflakeWriter validates the session (warehouse and schema), then loads each table through a
staging table:

- full load: stage, swap the staging table with the target, drop the staging table
- incremental load: stage, verify the primary key, merge into the target, drop the staging table

The staging table is dropped on every exit path. Tables are loaded one at a time in declaration
order; foreign keys are created only after every table has been loaded.
"""

import time
from typing import Dict, List, Optional, Tuple

from ..config.models import DatabaseConfig, ExportConfig, WriterConfig
from ..errors import OBJECT_DOES_NOT_EXIST, ConfigurationError, ExecutionError, UserError, map_execution_error
from ..logger import CredentialRedactingAdapter, get_logger
from .connection import SnowflakeConnectionFactory
from .query_builder import SnowflakeQueryBuilder
from .quoting import quote_identifier
from .types import LoadResult, LoadState
from .write_adapter import Connection, SnowflakeWriteAdapter


class SnowflakeWriter:
    """
    Loads ExportConfigs into Snowflake.

    Usage:
        with SnowflakeWriter(database_config) as writer:
            results = writer.run(writer_config)
    """

    def __init__(
        self,
        database_config: DatabaseConfig,
        logger: Optional[CredentialRedactingAdapter] = None,
        connection: Optional[Connection] = None,
        connection_factory: Optional[SnowflakeConnectionFactory] = None,
    ) -> None:
        self.database_config = database_config
        self.logger = logger or get_logger(self.__class__.__name__)
        self.connection_factory = connection_factory or SnowflakeConnectionFactory()
        self.connection: Optional[Connection] = connection
        self.query_builder = SnowflakeQueryBuilder(database_config)
        self.adapter: Optional[SnowflakeWriteAdapter] = None
        self.states: Dict[str, LoadState] = {}
        self._is_connected = False

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    def connect(self) -> None:
        """Open the connection (unless one was injected) and validate warehouse and schema"""
        if self._is_connected:
            return

        if self.connection is None:
            self.connection = self.connection_factory.create(self.database_config, self.logger)

        self.validate_and_set_warehouse()
        self.validate_and_set_schema()

        self.adapter = SnowflakeWriteAdapter(self.connection, self.query_builder, self.logger)
        self._is_connected = True

    def disconnect(self) -> None:
        if self.connection is not None and hasattr(self.connection, 'close'):
            self.connection.close()
        self.connection = None
        self.adapter = None
        self._is_connected = False

    def __enter__(self) -> 'SnowflakeWriter':
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()

    def test_connection(self) -> None:
        self.connect()
        self.connection.fetch_all('SELECT 1')
        self.logger.info('Connection test succeeded')

    def validate_and_set_warehouse(self) -> None:
        warehouse = self.database_config.warehouse
        self.logger.info(f'Validating warehouse "{warehouse}"')
        if warehouse is None:
            warehouse = self.get_user_default_warehouse()

        if warehouse is None:
            raise ConfigurationError('Snowflake user has no "DEFAULT_WAREHOUSE" specified. Set "warehouse" parameter.')

        try:
            self.connection.execute(f'USE WAREHOUSE {quote_identifier(warehouse)}')
        except ExecutionError as e:
            mapped = map_execution_error(e, OBJECT_DOES_NOT_EXIST, f'Invalid warehouse "{warehouse}" specified')
            if mapped is e:
                raise
            raise mapped from e

    def validate_and_set_schema(self) -> None:
        schema = self.database_config.schema
        self.logger.info(f'Validating schema "{schema}"')
        try:
            self.connection.execute(
                f'USE SCHEMA {quote_identifier(self.database_config.database)}.{quote_identifier(schema)}'
            )
        except ExecutionError as e:
            mapped = map_execution_error(e, OBJECT_DOES_NOT_EXIST, f'Invalid schema "{schema}" specified')
            if mapped is e:
                raise
            raise mapped from e

    def get_current_user(self) -> str:
        return self.connection.fetch_all('SELECT CURRENT_USER')[0]['CURRENT_USER']

    def get_user_default_warehouse(self) -> Optional[str]:
        rows = self.connection.fetch_all(f'DESC USER {quote_identifier(self.get_current_user())}')
        default_warehouse = [row for row in rows if row.get('property') == 'DEFAULT_WAREHOUSE']
        if len(default_warehouse) != 1:
            return None

        value = default_warehouse[0].get('value')
        return None if value in (None, '', 'null') else value

    def run(self, writer_config: WriterConfig) -> List[LoadResult]:
        """
        Load every exported table, then create foreign keys when the configuration holds several tables.

        Stops at the first failed table. Tables loaded before the failure stay loaded.
        """
        self.connect()

        results: List[LoadResult] = []
        exported = []
        for export_config in writer_config.tables:
            if not export_config.export:
                self.logger.info(f'Table "{export_config.db_name}" is not exported, skipping')
                continue

            result = self.load_table(export_config)
            results.append(result)
            if not result.success:
                return results
            exported.append(export_config)

        if writer_config.multi_table:
            fk_result = self._try_create_foreign_keys(exported)
            if fk_result is not None:
                results.append(fk_result)

        return results

    def load_table(self, export_config: ExportConfig) -> LoadResult:
        """Load one table, reporting failure in the result instead of raising"""
        start_time = time.time()
        try:
            rows_loaded = self.write(export_config)
            return LoadResult(
                table_name=export_config.db_name,
                success=True,
                rows_loaded=rows_loaded,
                duration=time.time() - start_time,
                incremental=export_config.incremental,
                state=self.states[export_config.db_name],
                metadata=self._get_table_metadata(export_config),
            )
        except Exception as e:
            self.logger.error(f'Failed to load table "{export_config.db_name}": {e}')
            return LoadResult(
                table_name=export_config.db_name,
                success=False,
                duration=time.time() - start_time,
                incremental=export_config.incremental,
                state=self.states.get(export_config.db_name, LoadState.FAILED),
                error=str(e),
                error_type=type(e).__name__,
                metadata={**self._get_table_metadata(export_config), 'user_error': isinstance(e, UserError)},
            )

    def write(self, export_config: ExportConfig) -> int:
        """Load one table, raising on failure. Returns the number of rows loaded."""
        self.connect()
        self._transition(export_config, LoadState.IDLE)
        if export_config.incremental:
            return self.write_incremental(export_config)
        return self.write_full(export_config)

    def write_full(self, export_config: ExportConfig) -> int:
        stage_table_name = self.adapter.generate_tmp_name(export_config.db_name, export_config.run_id)
        primary_key = export_config.primary_key

        try:
            # SWAP WITH does not accept temporary tables
            self.adapter.create(stage_table_name, False, export_config.items, primary_key)
            self._transition(export_config, LoadState.STAGING_CREATED)

            self.adapter.create(export_config.db_name, False, export_config.items, primary_key)
            rows_loaded = self.adapter.write_data(stage_table_name, export_config)
            self._transition(export_config, LoadState.DATA_LOADED)

            self.adapter.swap_table(export_config.db_name, stage_table_name)
            self._transition(export_config, LoadState.SWAPPED)
        except Exception:
            self._transition(export_config, LoadState.FAILED)
            raise
        finally:
            self._cleanup(export_config, stage_table_name)

        self._transition(export_config, LoadState.DONE)
        return rows_loaded

    def write_incremental(self, export_config: ExportConfig) -> int:
        stage_table_name = self.adapter.generate_tmp_name(export_config.db_name, export_config.run_id)
        primary_key = export_config.primary_key

        try:
            self.adapter.create(stage_table_name, True, export_config.items, primary_key)
            self._transition(export_config, LoadState.STAGING_CREATED)

            rows_loaded = self.adapter.write_data(stage_table_name, export_config)
            self._transition(export_config, LoadState.DATA_LOADED)

            self.adapter.create(export_config.db_name, False, export_config.items, primary_key)
            self.adapter.upsert(export_config, stage_table_name)
            self._transition(export_config, LoadState.MERGED)
        except Exception:
            self._transition(export_config, LoadState.FAILED)
            raise
        finally:
            self._cleanup(export_config, stage_table_name)

        self._transition(export_config, LoadState.DONE)
        return rows_loaded

    def create_foreign_keys(self, export_configs: List[ExportConfig]) -> None:
        """Add the configured foreign keys. Runs after every table in the batch has been loaded."""
        self.connect()
        by_table_id = {export_config.table_id: export_config for export_config in export_configs}

        for export_config in export_configs:
            for item in export_config.items:
                if item.is_ignored or not item.has_foreign_key:
                    continue

                ref_table, ref_column = self._resolve_reference(by_table_id, item.foreign_key_table, item.foreign_key_column)
                if not self.adapter.is_same_type_columns(export_config.db_name, item.db_name, ref_table, ref_column):
                    raise ConfigurationError(
                        f'Foreign key column "{item.db_name}" in table "{export_config.db_name}" has different type '
                        f'than column "{ref_column}" in table "{ref_table}"'
                    )

                self.adapter.add_unique_key_if_missing(ref_table, ref_column)
                self.adapter.add_foreign_key(export_config.db_name, item.db_name, ref_table, ref_column)

    def _try_create_foreign_keys(self, export_configs: List[ExportConfig]) -> Optional[LoadResult]:
        if not any(item.has_foreign_key for export_config in export_configs for item in export_config.items):
            return None

        start_time = time.time()
        try:
            self.create_foreign_keys(export_configs)
            return None
        except Exception as e:
            self.logger.error(f'Failed to create foreign keys: {e}')
            return LoadResult(
                table_name=', '.join(export_config.db_name for export_config in export_configs),
                success=False,
                duration=time.time() - start_time,
                state=LoadState.FAILED,
                error=str(e),
                error_type=type(e).__name__,
                metadata={'phase': 'foreign_keys', 'user_error': isinstance(e, UserError)},
            )

    @staticmethod
    def _resolve_reference(by_table_id: Dict[str, ExportConfig], table: str, column: str) -> Tuple[str, str]:
        """Map a referenced table id and source column name to their Snowflake names"""
        referenced = by_table_id.get(table)
        if referenced is None:
            return table, column

        for item in referenced.items:
            if item.name == column:
                return referenced.db_name, item.db_name
        return referenced.db_name, column

    def _cleanup(self, export_config: ExportConfig, stage_table_name: str) -> None:
        try:
            self.adapter.drop(stage_table_name)
        except Exception as e:
            self.logger.error(f'Failed to drop staging table "{stage_table_name}": {e}')
            return

        if not self.states[export_config.db_name].is_terminal:
            self._transition(export_config, LoadState.CLEANED_UP)

    def _transition(self, export_config: ExportConfig, state: LoadState) -> None:
        previous = self.states.get(export_config.db_name)
        self.states[export_config.db_name] = state
        self.logger.debug(f'Table "{export_config.db_name}": {previous.value if previous else "-"} -> {state.value}')

    def _get_table_metadata(self, export_config: ExportConfig) -> Dict[str, object]:
        return {
            'database': self.database_config.database,
            'schema': self.database_config.schema,
            'warehouse': self.database_config.warehouse,
            'table_id': export_config.table_id,
        }
