"""Snowflake writer - loads staged CSV tables into Snowflake with full or incremental semantics."""

from snowflake_writer.config import ColumnConfig, DatabaseConfig, ExportConfig, WriterConfig, load_writer_config
from snowflake_writer.errors import ConfigurationError, DataSourceError, ExecutionError, UserError, WriterError
from snowflake_writer.writer import LoadResult, LoadState, SnowflakeWriter

__version__ = '0.1.0'

__all__ = [
    'ColumnConfig',
    'ConfigurationError',
    'DataSourceError',
    'DatabaseConfig',
    'ExecutionError',
    'ExportConfig',
    'LoadResult',
    'LoadState',
    'SnowflakeWriter',
    'UserError',
    'WriterConfig',
    'WriterError',
    'load_writer_config',
]
