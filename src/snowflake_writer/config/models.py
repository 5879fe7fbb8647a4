"""
Validated configuration value objects.

Every object is built once from the raw (already JSON-decoded) configuration through its
`from_dict` constructor and is immutable afterwards. Validation lives in free functions so the
same rules can be applied to objects built directly in code.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ConfigurationError

IGNORE_TYPE = 'ignore'


@dataclass(frozen=True)
class ColumnConfig:
    """One column of the exported table"""

    name: str
    db_name: str
    type: str
    size: Optional[str] = None
    nullable: bool = True
    default: Optional[str] = None
    foreign_key_table: Optional[str] = None
    foreign_key_column: Optional[str] = None

    def __post_init__(self):
        validate_foreign_key(self)

    @property
    def is_ignored(self) -> bool:
        return self.type.lower() == IGNORE_TYPE

    @property
    def has_foreign_key(self) -> bool:
        return self.foreign_key_table is not None and self.foreign_key_column is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ColumnConfig':
        missing = [key for key in ('name', 'dbName', 'type') if not data.get(key)]
        if missing:
            raise ConfigurationError(f'Column configuration is missing required field(s): {", ".join(missing)}')

        size = data.get('size')
        nullable = data.get('nullable')
        default = data.get('default')
        return cls(
            name=str(data['name']),
            db_name=str(data['dbName']),
            type=str(data['type']),
            size=str(size) if size not in (None, '') else None,
            nullable=True if nullable is None else bool(nullable),
            default=str(default) if default is not None else None,
            foreign_key_table=data.get('foreignKeyTable') or None,
            foreign_key_column=data.get('foreignKeyColumn') or None,
        )


@dataclass(frozen=True)
class DatabaseConfig:
    """Snowflake connection and target location"""

    host: str
    database: str
    schema: str
    user: str
    password: Optional[str] = None
    port: int = 443
    warehouse: Optional[str] = None
    run_id: Optional[str] = None
    private_key: Optional[str] = None
    private_key_passphrase: Optional[str] = None
    role: Optional[str] = None

    def __post_init__(self):
        missing = [name for name in ('host', 'database', 'schema', 'user') if not getattr(self, name)]
        if missing:
            raise ConfigurationError(f'Database configuration is missing required field(s): {", ".join(missing)}')
        if not self.password and not self.private_key:
            raise ConfigurationError('Either "#password" or "#keyPair" must be set in database configuration.')

    @property
    def account(self) -> str:
        """Account identifier, i.e. the host without the snowflakecomputing.com suffix"""
        return self.host.split('.snowflakecomputing.com')[0]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DatabaseConfig':
        run_id = data.get('runId') or os.getenv('KBC_RUNID')
        port = data.get('port')
        try:
            return cls(
                host=data.get('host', ''),
                port=int(port) if port not in (None, '') else 443,
                database=data.get('database', ''),
                schema=data.get('schema', ''),
                user=data.get('user', ''),
                password=data.get('#password') or data.get('password') or None,
                warehouse=data.get('warehouse') or None,
                run_id=run_id or None,
                private_key=data.get('#keyPair') or None,
                private_key_passphrase=data.get('#keyPairPassphrase') or None,
                role=data.get('role') or None,
            )
        except ValueError as e:
            raise ConfigurationError(f'Invalid database configuration: {e}') from e


@dataclass(frozen=True)
class ExportConfig:
    """A single table load: where the data comes from and how it lands in Snowflake"""

    table_id: str
    db_name: str
    items: Tuple[ColumnConfig, ...]
    table_file_path: str
    database_config: DatabaseConfig
    primary_key: Optional[Tuple[str, ...]] = None
    incremental: bool = False
    export: bool = True

    def __post_init__(self):
        validate_items(self.items)
        if self.primary_key:
            validate_primary_key(self.primary_key, self.items)

    @property
    def has_primary_key(self) -> bool:
        return bool(self.primary_key)

    @property
    def active_items(self) -> List[ColumnConfig]:
        """Columns that are materialized in Snowflake"""
        return [item for item in self.items if not item.is_ignored]

    @property
    def run_id(self) -> Optional[str]:
        return self.database_config.run_id

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        input_mapping: List[Dict[str, Any]],
        database_config: DatabaseConfig,
        data_dir: str,
    ) -> 'ExportConfig':
        missing = [key for key in ('tableId', 'dbName', 'items') if not data.get(key)]
        if missing:
            raise ConfigurationError(f'Table configuration is missing required field(s): {", ".join(missing)}')

        mapping = [entry for entry in input_mapping if entry.get('source') == data['tableId']]
        if not mapping:
            raise ConfigurationError(f'Table "{data["tableId"]}" in storage input mapping cannot be found.')

        table_file_path = str(Path(data_dir) / 'in' / 'tables' / mapping[0].get('destination', data['tableId']))
        primary_key = data.get('primaryKey') or None

        return cls(
            table_id=data['tableId'],
            db_name=data['dbName'],
            items=tuple(ColumnConfig.from_dict(item) for item in data['items']),
            table_file_path=table_file_path,
            database_config=database_config,
            primary_key=tuple(primary_key) if primary_key else None,
            incremental=bool(data.get('incremental', False)),
            export=bool(data.get('export', True)),
        )


@dataclass
class WriterConfig:
    """Everything a run needs: one database and the tables to export into it"""

    database: DatabaseConfig
    tables: List[ExportConfig] = field(default_factory=list)
    multi_table: bool = False


def validate_foreign_key(column: ColumnConfig) -> None:
    if (column.foreign_key_table is None) != (column.foreign_key_column is None):
        raise ConfigurationError(
            f'Column "{column.name}" must set both "foreignKeyTable" and "foreignKeyColumn", or neither.'
        )


def validate_items(items: Tuple[ColumnConfig, ...]) -> None:
    if not any(not item.is_ignored for item in items):
        raise ConfigurationError('At least one item must be defined and cannot be ignored.')


def validate_primary_key(primary_key: Tuple[str, ...], items: Tuple[ColumnConfig, ...]) -> None:
    db_names = {item.db_name for item in items if not item.is_ignored}
    unknown = [column for column in primary_key if column not in db_names]
    if unknown:
        raise ConfigurationError(
            f'Primary key column(s) {", ".join(unknown)} not found in the exported (non-ignored) columns.'
        )
