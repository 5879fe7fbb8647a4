"""Exception hierarchy for the Snowflake writer.

User errors (bad configuration, unreadable input) are reported to the caller
as-is and never retried. Everything the database returns while executing
generated SQL surfaces as ExecutionError unless a known pattern is remapped.
"""

import re
from typing import Optional


class WriterError(Exception):
    """Base exception for all writer errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class UserError(WriterError):
    """Error caused by the configuration or the input data, not by the writer."""

    pass


class ConfigurationError(UserError):
    """Invalid or missing warehouse, schema, primary key or manifest reference."""

    pass


class DataSourceError(UserError):
    """Manifest or sliced-part listing is missing or unreadable."""

    pass


class ExecutionError(WriterError):
    """Statement failed on the Snowflake side.

    Attributes:
        sql: The statement that failed, when known
        errno: Driver error number, when known
    """

    def __init__(self, message: str, sql: Optional[str] = None, errno: Optional[int] = None):
        self.sql = sql
        self.errno = errno
        super().__init__(message)


OBJECT_DOES_NOT_EXIST = re.compile(r'Object does not exist', re.IGNORECASE | re.UNICODE)


def map_execution_error(error: ExecutionError, pattern: re.Pattern, message: str) -> WriterError:
    """
    Remap an execution error to a ConfigurationError when its message matches a known pattern.

    Returns the original error unchanged otherwise, so callers can simply `raise map_execution_error(...)`.
    """
    if pattern.search(str(error)):
        return ConfigurationError(message)
    return error
