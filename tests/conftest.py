# tests/conftest.py
"""
Shared pytest configuration and fixtures for the Snowflake writer test suite.
"""

import json
import logging
import os
from pathlib import Path

import pytest

from snowflake_writer.config import ColumnConfig, DatabaseConfig, ExportConfig
from tests.fixtures.fake_connection import FakeConnection

logging.basicConfig(level=logging.INFO)


# Shared configuration fixtures
@pytest.fixture(scope='session')
def snowflake_config():
    """Snowflake configuration from environment or defaults"""
    config = {
        'host': os.getenv('SNOWFLAKE_HOST', 'test_account.snowflakecomputing.com'),
        'port': int(os.getenv('SNOWFLAKE_PORT', '443')),
        'user': os.getenv('SNOWFLAKE_USER', 'test_user'),
        'warehouse': os.getenv('SNOWFLAKE_WAREHOUSE', 'test_warehouse'),
        'database': os.getenv('SNOWFLAKE_DATABASE', 'test_database'),
        'schema': os.getenv('SNOWFLAKE_SCHEMA', 'PUBLIC'),
        '#password': os.getenv('SNOWFLAKE_PASSWORD', 'test_password'),
    }

    # Add optional parameters if they exist
    if os.getenv('SNOWFLAKE_PRIVATE_KEY'):
        config['#keyPair'] = os.getenv('SNOWFLAKE_PRIVATE_KEY')
    if os.getenv('SNOWFLAKE_ROLE'):
        config['role'] = os.getenv('SNOWFLAKE_ROLE')

    return config


@pytest.fixture
def database_config():
    return DatabaseConfig(
        host='test_account.snowflakecomputing.com',
        database='test_database',
        schema='PUBLIC',
        user='test_user',
        password='test_password',
        warehouse='test_warehouse',
        run_id='123.456',
    )


@pytest.fixture
def sample_items():
    """Columns of a small table, with one ignored column in the middle"""
    return (
        ColumnConfig(name='id', db_name='id', type='integer', nullable=False),
        ColumnConfig(name='note', db_name='note', type='ignore'),
        ColumnConfig(name='name', db_name='name', type='varchar', size='255'),
        ColumnConfig(name='glasses', db_name='glasses', type='varchar', size='255'),
    )


@pytest.fixture
def full_export(database_config, sample_items, tmp_path):
    return ExportConfig(
        table_id='in.c-test.users',
        db_name='users',
        items=sample_items,
        table_file_path=str(tmp_path / 'in' / 'tables' / 'users.csv'),
        database_config=database_config,
        primary_key=('id',),
    )


@pytest.fixture
def incremental_export(full_export):
    from dataclasses import replace

    return replace(full_export, incremental=True)


@pytest.fixture
def s3_manifest():
    return {
        's3': {
            'isSliced': False,
            'region': 'us-east-1',
            'bucket': 'test-bucket',
            'key': 'exports/users.csv.gz',
            'credentials': {
                'access_key_id': 'AKIAEXAMPLE',
                'secret_access_key': 'secret/key',
                'session_token': 'session-token',
            },
        }
    }


@pytest.fixture
def abs_manifest():
    return {
        'abs': {
            'is_sliced': False,
            'region': 'westeurope',
            'container': 'exports',
            'name': 'users.csv.gz',
            'credentials': {
                'sas_connection_string': (
                    'BlobEndpoint=https://account.blob.core.windows.net;SharedAccessSignature=sv=2017&sig=abc'
                ),
                'expiration': '2030-01-01T00:00:00+0000',
            },
        }
    }


@pytest.fixture
def write_manifest():
    """Write `manifest` next to the export's CSV and return the CSV path"""

    def _write(table_file_path: str, manifest: dict) -> str:
        path = Path(table_file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        Path(f'{table_file_path}.manifest').write_text(json.dumps(manifest))
        return table_file_path

    return _write


@pytest.fixture
def fake_connection():
    return FakeConnection()


def pytest_configure(config):
    """Configure custom pytest markers"""
    config.addinivalue_line('markers', 'unit: Unit tests (fast, no external dependencies)')
    config.addinivalue_line('markers', 'integration: Integration tests (require databases)')
    config.addinivalue_line('markers', 'snowflake: Tests requiring Snowflake')
