# tests/unit/test_snowflake_writer.py
"""
Unit tests for the SnowflakeWriter load orchestration.
Statements are recorded by a fake connection; no Snowflake account is needed.
"""

import json
from dataclasses import replace

import pytest

from snowflake_writer.config import ColumnConfig, ExportConfig, WriterConfig
from snowflake_writer.errors import ConfigurationError, ExecutionError
from snowflake_writer.writer import LoadState, SnowflakeWriter, write_adapter
from tests.fixtures.fake_connection import describe_rows

STAGING = 'users_temp_123_456_0f1e2d3c'


@pytest.fixture(autouse=True)
def fixed_staging_token(monkeypatch):
    monkeypatch.setattr(write_adapter, '_random_token', lambda length: '0f1e2d3c'[:length])


@pytest.fixture
def writer(database_config, fake_connection):
    return SnowflakeWriter(database_config, connection=fake_connection)


@pytest.fixture
def staged_export(full_export, s3_manifest, write_manifest, fake_connection):
    write_manifest(full_export.table_file_path, s3_manifest)
    fake_connection.respond(r'^COPY INTO', [{'rows_loaded': 3}])
    return full_export


def _orders_export(database_config, tmp_path):
    return ExportConfig(
        table_id='in.c-test.orders',
        db_name='orders',
        items=(
            ColumnConfig(name='id', db_name='id', type='integer', nullable=False),
            ColumnConfig(
                name='user_id',
                db_name='user_id',
                type='integer',
                foreign_key_table='in.c-test.users',
                foreign_key_column='id',
            ),
        ),
        table_file_path=str(tmp_path / 'in' / 'tables' / 'orders.csv'),
        database_config=database_config,
        primary_key=('id',),
    )


@pytest.mark.unit
class TestPreflight:
    def test_uses_configured_warehouse_and_schema(self, writer, fake_connection):
        writer.connect()

        assert fake_connection.statements == ['USE WAREHOUSE "test_warehouse"', 'USE SCHEMA "test_database"."PUBLIC"']
        assert writer.is_connected

    def test_invalid_warehouse(self, writer, fake_connection):
        fake_connection.fail_on(r'^USE WAREHOUSE', 'Object does not exist, or operation cannot be performed.')

        with pytest.raises(ConfigurationError, match='Invalid warehouse "test_warehouse" specified'):
            writer.connect()

    def test_invalid_schema(self, writer, fake_connection):
        fake_connection.fail_on(r'^USE SCHEMA', 'Object does not exist, or operation cannot be performed.')

        with pytest.raises(ConfigurationError, match='Invalid schema "PUBLIC" specified'):
            writer.connect()

    def test_other_errors_are_not_remapped(self, writer, fake_connection):
        fake_connection.fail_on(r'^USE WAREHOUSE', 'Insufficient privileges')

        with pytest.raises(ExecutionError, match='Insufficient privileges'):
            writer.connect()

    def test_default_warehouse(self, database_config, fake_connection):
        fake_connection.respond(r'^SELECT CURRENT_USER', [{'CURRENT_USER': 'test_user'}])
        fake_connection.respond(
            r'^DESC USER "test_user"',
            [{'property': 'NAME', 'value': 'test_user'}, {'property': 'DEFAULT_WAREHOUSE', 'value': 'WH_DEFAULT'}],
        )
        writer = SnowflakeWriter(replace(database_config, warehouse=None), connection=fake_connection)

        writer.connect()

        assert 'USE WAREHOUSE "WH_DEFAULT"' in fake_connection.statements

    def test_no_warehouse_at_all(self, database_config, fake_connection):
        fake_connection.respond(r'^SELECT CURRENT_USER', [{'CURRENT_USER': 'test_user'}])
        fake_connection.respond(r'^DESC USER', [{'property': 'DEFAULT_WAREHOUSE', 'value': 'null'}])
        writer = SnowflakeWriter(replace(database_config, warehouse=None), connection=fake_connection)

        with pytest.raises(ConfigurationError, match='DEFAULT_WAREHOUSE'):
            writer.connect()

    def test_connection(self, writer, fake_connection):
        writer.test_connection()
        assert fake_connection.statements[-1] == 'SELECT 1'

    def test_context_manager_closes_connection(self, writer, fake_connection):
        with writer:
            assert writer.is_connected

        assert fake_connection.closed
        assert not writer.is_connected


@pytest.mark.unit
class TestFullLoad:
    def test_statement_order(self, writer, fake_connection, staged_export):
        rows_loaded = writer.write(staged_export)

        assert rows_loaded == 3
        statements = fake_connection.statements[2:]
        assert statements[0].startswith(f'CREATE TABLE IF NOT EXISTS "{STAGING}"')
        assert statements[1].startswith('CREATE TABLE IF NOT EXISTS "users"')
        assert fake_connection.index_of(rf'^COPY INTO "PUBLIC"."{STAGING}"') is not None
        assert statements[-2] == f'ALTER TABLE "PUBLIC"."{STAGING}" SWAP WITH "PUBLIC"."users"'
        assert statements[-1] == f'DROP TABLE IF EXISTS "PUBLIC"."{STAGING}"'
        assert writer.states['users'] == LoadState.DONE

    def test_staging_is_not_temporary(self, writer, fake_connection, staged_export):
        writer.write(staged_export)
        assert fake_connection.matching(r'TEMPORARY') == []

    def test_staging_and_target_share_definition(self, writer, fake_connection, staged_export):
        writer.write(staged_export)

        creates = fake_connection.matching(r'^CREATE TABLE')
        assert creates[0].split(' (', 1)[1] == creates[1].split(' (', 1)[1]

    def test_failure_drops_staging_and_keeps_target(self, writer, fake_connection, staged_export):
        fake_connection.fail_on(r'^COPY INTO', 'Numeric value is not recognized')

        result = writer.load_table(staged_export)

        assert not result.success
        assert result.error_type == 'ExecutionError'
        assert 'Numeric value is not recognized' in result.error
        assert result.state == LoadState.FAILED
        assert result.metadata['user_error'] is False
        assert fake_connection.matching(r'SWAP WITH') == []
        assert fake_connection.statements[-1] == f'DROP TABLE IF EXISTS "PUBLIC"."{STAGING}"'

    def test_cleanup_failure_does_not_mask_error(self, writer, fake_connection, staged_export):
        fake_connection.fail_on(r'^COPY INTO', 'copy failed')
        fake_connection.fail_on(r'^DROP TABLE', 'drop failed')

        with pytest.raises(ExecutionError, match='copy failed'):
            writer.write(staged_export)

    def test_missing_manifest_is_user_error(self, writer, full_export):
        result = writer.load_table(full_export)

        assert not result.success
        assert result.error_type == 'DataSourceError'
        assert result.metadata['user_error'] is True


@pytest.mark.unit
class TestIncrementalLoad:
    def test_statement_order(self, writer, fake_connection, staged_export):
        export = replace(staged_export, incremental=True)
        fake_connection.respond(r'^DESCRIBE TABLE', describe_rows(['id', 'name', 'glasses'], ('id',)))

        result = writer.load_table(export)

        assert result.success
        assert result.incremental
        assert result.rows_loaded == 3
        create_staging = fake_connection.index_of(rf'^CREATE TEMPORARY TABLE "{STAGING}"')
        copy = fake_connection.index_of(r'^COPY INTO')
        create_target = fake_connection.index_of(r'^CREATE TABLE IF NOT EXISTS "users"')
        insert = fake_connection.index_of(r'^INSERT INTO "PUBLIC"."users"')
        drop = fake_connection.index_of(rf'^DROP TABLE IF EXISTS "PUBLIC"."{STAGING}"')
        assert create_staging < copy < create_target < insert < drop
        assert fake_connection.matching(r'SWAP WITH') == []

    def test_primary_key_mismatch(self, writer, fake_connection, staged_export):
        export = replace(staged_export, incremental=True)
        fake_connection.respond(r'^DESCRIBE TABLE', describe_rows(['id', 'name', 'glasses'], ('name',)))

        result = writer.load_table(export)

        assert not result.success
        assert result.error_type == 'ConfigurationError'
        assert result.metadata['user_error'] is True
        assert fake_connection.matching(r'^(UPDATE|DELETE|INSERT)') == []
        assert fake_connection.statements[-1] == f'DROP TABLE IF EXISTS "PUBLIC"."{STAGING}"'


@pytest.mark.unit
class TestRun:
    def test_skips_tables_not_exported(self, writer, fake_connection, staged_export):
        skipped = replace(staged_export, table_id='in.c-test.skipped', db_name='skipped', export=False)

        results = writer.run(WriterConfig(database=writer.database_config, tables=[skipped, staged_export]))

        assert [result.table_name for result in results] == ['users']
        assert fake_connection.matching(r'"skipped"') == []

    def test_stops_at_first_failure(self, writer, fake_connection, database_config, staged_export, tmp_path):
        orders = _orders_export(database_config, tmp_path)
        failing = replace(staged_export, table_id='in.c-test.broken', db_name='broken')
        fake_connection.fail_on(r'^CREATE TABLE IF NOT EXISTS "broken_temp', 'Table creation failed')

        results = writer.run(WriterConfig(database=database_config, tables=[failing, orders], multi_table=True))

        assert len(results) == 1
        assert not results[0].success
        assert fake_connection.matching(r'"orders"') == []

    def test_foreign_keys_after_all_loads(self, writer, fake_connection, database_config, staged_export, s3_manifest,
                                          write_manifest, tmp_path):
        orders = _orders_export(database_config, tmp_path)
        write_manifest(orders.table_file_path, s3_manifest)
        fake_connection.respond(r'^DESCRIBE TABLE', describe_rows(['id', 'name', 'glasses'], ('id',)))
        fake_connection.respond(
            r'^SHOW COLUMNS IN TABLE "PUBLIC"."orders"',
            [{'column_name': 'user_id', 'data_type': json.dumps({'type': 'FIXED', 'nullable': True})}],
        )
        fake_connection.respond(
            r'^SHOW COLUMNS IN TABLE "PUBLIC"."users"',
            [{'column_name': 'id', 'data_type': json.dumps({'type': 'FIXED', 'nullable': True})}],
        )

        results = writer.run(WriterConfig(database=database_config, tables=[orders, staged_export], multi_table=True))

        assert all(result.success for result in results)
        foreign_key = fake_connection.index_of(r'ADD FOREIGN KEY')
        assert fake_connection.statements[foreign_key] == (
            'ALTER TABLE "PUBLIC"."orders" ADD FOREIGN KEY("user_id") REFERENCES "PUBLIC"."users"("id")'
        )
        last_swap = max(i for i, sql in enumerate(fake_connection.statements) if 'SWAP WITH' in sql)
        assert foreign_key > last_swap

    def test_foreign_key_type_mismatch(self, writer, fake_connection, database_config, staged_export, s3_manifest,
                                       write_manifest, tmp_path):
        orders = _orders_export(database_config, tmp_path)
        write_manifest(orders.table_file_path, s3_manifest)
        fake_connection.respond(
            r'^SHOW COLUMNS IN TABLE "PUBLIC"."orders"',
            [{'column_name': 'user_id', 'data_type': json.dumps({'type': 'TEXT', 'length': 10, 'nullable': True})}],
        )
        fake_connection.respond(
            r'^SHOW COLUMNS IN TABLE "PUBLIC"."users"',
            [{'column_name': 'id', 'data_type': json.dumps({'type': 'FIXED', 'nullable': False})}],
        )

        results = writer.run(WriterConfig(database=database_config, tables=[staged_export, orders], multi_table=True))

        assert [result.success for result in results] == [True, True, False]
        assert results[-1].metadata['phase'] == 'foreign_keys'
        assert fake_connection.matching(r'ADD FOREIGN KEY') == []

    def test_single_table_skips_foreign_keys(self, writer, fake_connection, database_config, tmp_path, s3_manifest,
                                             write_manifest):
        orders = _orders_export(database_config, tmp_path)
        write_manifest(orders.table_file_path, s3_manifest)
        fake_connection.respond(r'^COPY INTO', [{'rows_loaded': 1}])

        results = writer.run(WriterConfig(database=database_config, tables=[orders]))

        assert results[0].success
        assert fake_connection.matching(r'^SHOW COLUMNS') == []
