import json
from typing import Any, Dict, List, Optional

import snowflake.connector
from snowflake.connector import DictCursor
from snowflake.connector import SnowflakeConnection as DriverConnection
from snowflake.connector.errors import Error as DriverError

from ..config.models import DatabaseConfig
from ..errors import ConfigurationError, ExecutionError
from ..logger import CredentialRedactingAdapter, get_logger
from . import quoting

SNOWFLAKE_APPLICATION = 'Keboola_Connection'
LOGIN_TIMEOUT = 30


class SnowflakeConnection:
    """
    Thin statement-level wrapper over a snowflake-connector-python connection.

    The writer only ever needs to execute a statement, fetch rows as dictionaries and quote
    values; driver errors are surfaced as ExecutionError.
    """

    def __init__(self, connection: DriverConnection, logger: Optional[CredentialRedactingAdapter] = None):
        self._connection = connection
        self.logger = logger or get_logger(__name__)

    def execute(self, sql: str) -> None:
        self._run(sql)

    def fetch_all(self, sql: str) -> List[Dict[str, Any]]:
        return self._run(sql, fetch=True)

    def quote(self, value: str) -> str:
        return quoting.quote(value)

    def quote_identifier(self, value: str) -> str:
        return quoting.quote_identifier(value)

    def close(self) -> None:
        if not self._connection.is_closed():
            self._connection.close()
            self.logger.info('Closed Snowflake connection')

    def _run(self, sql: str, fetch: bool = False) -> Optional[List[Dict[str, Any]]]:
        self.logger.debug(f'Executing query: {sql}')
        cursor = self._connection.cursor(DictCursor)
        try:
            cursor.execute(sql)
            return cursor.fetchall() if fetch else None
        except DriverError as e:
            raise ExecutionError(str(e), sql=sql, errno=getattr(e, 'errno', None)) from e
        finally:
            cursor.close()


class SnowflakeConnectionFactory:
    """Creates connections from a DatabaseConfig"""

    def create(
        self, database_config: DatabaseConfig, logger: Optional[CredentialRedactingAdapter] = None
    ) -> SnowflakeConnection:
        logger = logger or get_logger(__name__)
        try:
            connection = snowflake.connector.connect(**self.connection_params(database_config))
        except DriverError as e:
            raise ExecutionError(f'Failed to connect to Snowflake: {e}', errno=getattr(e, 'errno', None)) from e

        logger.info(f'Connected to Snowflake account "{database_config.account}" as "{database_config.user}"')
        return SnowflakeConnection(connection, logger)

    def connection_params(self, database_config: DatabaseConfig) -> Dict[str, Any]:
        conn_params: Dict[str, Any] = {
            'account': database_config.account,
            'host': database_config.host,
            'port': database_config.port,
            'user': database_config.user,
            'database': database_config.database,
            'schema': database_config.schema,
            'application': SNOWFLAKE_APPLICATION,
            'client_session_keep_alive': True,
            'login_timeout': LOGIN_TIMEOUT,
        }

        # Add authentication parameters
        if database_config.private_key:
            conn_params['private_key'] = load_private_key(
                database_config.private_key, database_config.private_key_passphrase
            )
        else:
            conn_params['password'] = database_config.password

        # Optional parameters
        if database_config.warehouse:
            conn_params['warehouse'] = database_config.warehouse
        if database_config.role:
            conn_params['role'] = database_config.role
        if database_config.run_id:
            conn_params['session_parameters'] = {'QUERY_TAG': query_tag(database_config.run_id)}

        return conn_params


def query_tag(run_id: str) -> str:
    return json.dumps({'runId': run_id}, separators=(',', ':'))


def load_private_key(private_key: str, passphrase: Optional[str] = None) -> Any:
    """Parse a PEM private key; the connector requires a key object, not a string"""
    from cryptography.hazmat.backends import default_backend
    from cryptography.hazmat.primitives import serialization

    try:
        return serialization.load_pem_private_key(
            private_key.encode('utf-8'),
            password=passphrase.encode('utf-8') if passphrase else None,
            backend=default_backend(),
        )
    except (ValueError, TypeError) as e:
        raise ConfigurationError(
            f'Failed to parse private key: {e}. '
            'Ensure the key is in PKCS#8 PEM format (unencrypted or with passphrase).'
        ) from e


def escape_password(password: str) -> str:
    """Escape a password for an ODBC connection string: values containing ';' are wrapped in braces"""
    if ';' in password:
        return '{' + password.replace('}', '}}') + '}'
    return password


def build_connection_string(database_config: DatabaseConfig) -> str:
    """
    ODBC DSN equivalent of `SnowflakeConnectionFactory.connection_params`.

    The writer itself connects through `snowflake.connector` keyword arguments, which need no escaping.
    This DSN is for ODBC-based clients (pyodbc, BI tools) pointed at the same database config, where a
    password containing `;` would otherwise end the `pwd` attribute early.
    """
    options = [
        'Driver=SnowflakeDSIIDriver',
        f'Server={database_config.host}',
        f'Port={database_config.port}',
        'Tracing=0',
        f'Login_timeout={LOGIN_TIMEOUT}',
        f'Database={quoting.quote_identifier(database_config.database)}',
        f'Schema={quoting.quote_identifier(database_config.schema)}',
        f'application={SNOWFLAKE_APPLICATION}',
        'CLIENT_SESSION_KEEP_ALIVE=TRUE',
    ]
    if database_config.warehouse:
        options.append(f'Warehouse={quoting.quote_identifier(database_config.warehouse)}')
    options.append(f'uid={database_config.user}')
    if database_config.password:
        options.append(f'pwd={escape_password(database_config.password)}')
    return ';'.join(options)
