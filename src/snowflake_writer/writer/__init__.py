from .query_builder import SnowflakeQueryBuilder
from .snowflake_writer import SnowflakeWriter
from .types import LoadResult, LoadState
from .write_adapter import SnowflakeWriteAdapter

__all__ = ['LoadResult', 'LoadState', 'SnowflakeQueryBuilder', 'SnowflakeWriteAdapter', 'SnowflakeWriter']
