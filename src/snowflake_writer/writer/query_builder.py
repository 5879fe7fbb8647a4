"""
SQL text generation for the Snowflake writer.

The builder is pure: it turns configuration objects into statements and never talks to the
database. Every identifier and literal goes through the quoting helpers.
"""

from typing import List, Optional, Sequence, Tuple

from ..config.models import ColumnConfig, DatabaseConfig, ExportConfig
from .quoting import quote, quote_identifier, quote_many_identifiers

TYPES_WITH_SIZE = {
    'number',
    'decimal',
    'numeric',
    'char',
    'character',
    'varchar',
    'string',
    'text',
    'binary',
}

CSV_FORMAT_OPTIONS = [
    f'FIELD_DELIMITER = {quote(",")}',
    f'FIELD_OPTIONALLY_ENCLOSED_BY = {quote(chr(34))}',
    f'ESCAPE_UNENCLOSED_FIELD = {quote(chr(92))}',
]


class SnowflakeQueryBuilder:
    """Builds every statement the writer executes, scoped to one database and schema"""

    def __init__(self, database_config: DatabaseConfig):
        self.database_config = database_config

    @property
    def schema(self) -> str:
        return self.database_config.schema

    def table_name_with_schema(self, table_name: str) -> str:
        return f'{quote_identifier(self.schema)}.{quote_identifier(table_name)}'

    def create_table_statement(
        self,
        table_name: str,
        is_temporary: bool,
        items: Sequence[ColumnConfig],
        primary_key: Optional[Sequence[str]] = None,
    ) -> str:
        return 'CREATE {temporary}TABLE{if_not_exists} {table} ({definition})'.format(
            temporary='TEMPORARY ' if is_temporary else '',
            if_not_exists='' if is_temporary else ' IF NOT EXISTS',
            table=quote_identifier(table_name),
            definition=self._items_sql_definition(items, primary_key),
        )

    def table_exists_statement(self, table_name: str) -> str:
        return (
            'SELECT * FROM INFORMATION_SCHEMA.TABLES '
            f'WHERE TABLE_NAME = {quote(table_name)} '
            f'AND TABLE_SCHEMA = {quote(self.schema)} '
            f'AND TABLE_CATALOG = {quote(self.database_config.database)}'
        )

    def add_primary_key_statement(self, table_name: str, primary_key: Sequence[str]) -> str:
        return f'ALTER TABLE {self.table_name_with_schema(table_name)} ADD {self._primary_key_sql_definition(primary_key)}'

    def add_unique_key_statement(self, table_name: str, column: str) -> str:
        return f'ALTER TABLE {self.table_name_with_schema(table_name)} ADD UNIQUE ({quote_identifier(column)})'

    def add_foreign_key_statement(self, table_name: str, column: str, ref_table: str, ref_column: str) -> str:
        return 'ALTER TABLE {table} ADD FOREIGN KEY({column}) REFERENCES {ref_table}({ref_column})'.format(
            table=self.table_name_with_schema(table_name),
            column=quote_identifier(column),
            ref_table=self.table_name_with_schema(ref_table),
            ref_column=quote_identifier(ref_column),
        )

    def put_file_statements(self, table_file_path: str, tmp_table_name: str) -> List[str]:
        """Session setup followed by the PUT of a local file into the user stage"""
        statements = []
        database = self.database_config.database
        if self.database_config.warehouse:
            statements.append(f'USE WAREHOUSE {quote_identifier(self.database_config.warehouse)}')
        statements.append(f'USE DATABASE {quote_identifier(database)}')
        statements.append(f'USE SCHEMA {quote_identifier(database)}.{quote_identifier(self.schema)}')
        local_file = quote('file://' + table_file_path)
        statements.append(f'PUT {local_file} {_user_stage_path(tmp_table_name)} OVERWRITE = TRUE')
        return statements

    def remove_user_stage_statement(self, tmp_table_name: str) -> str:
        return f'REMOVE {_user_stage_path(tmp_table_name)}'

    def copy_into_table_statement(self, tmp_table_name: str, items: Sequence[ColumnConfig]) -> str:
        csv_options = [
            'SKIP_HEADER = 1',
            *CSV_FORMAT_OPTIONS,
            f'COMPRESSION = {quote("GZIP")}',
            "NULL_IF = ('')",
        ]
        indexed_items = indexed_active_items(items)
        columns = quote_many_identifiers(indexed_items, lambda entry: entry[1].db_name)
        transformations = column_transformations(indexed_items)
        return (
            f'COPY INTO {self.table_name_with_schema(tmp_table_name)}({", ".join(columns)}) '
            f'FROM (SELECT {", ".join(transformations)} FROM {_user_stage_path(tmp_table_name)} t) '
            f'FILE_FORMAT = (TYPE=CSV {" ".join(csv_options)})'
        )

    def upsert_update_rows_statement(self, export_config: ExportConfig, stage_table_name: str) -> Optional[str]:
        """UPDATE target rows that share a primary key with a staged row. None when every column is a key."""
        source = self.table_name_with_schema(stage_table_name)
        target = self.table_name_with_schema(export_config.db_name)
        primary_key = export_config.primary_key or ()

        columns = [item.db_name for item in export_config.active_items if item.db_name not in primary_key]
        if not columns:
            return None

        values_clause = ', '.join(f'{quote_identifier(column)} = {source}.{quote_identifier(column)}' for column in columns)
        return f'UPDATE {target} SET {values_clause} FROM {source} WHERE {self._join_clause(target, source, primary_key)}'

    def upsert_delete_rows_statement(self, export_config: ExportConfig, stage_table_name: str) -> str:
        """DELETE staged rows already merged into the target by the update"""
        source = self.table_name_with_schema(stage_table_name)
        target = self.table_name_with_schema(export_config.db_name)
        join_clause = self._join_clause(target, source, export_config.primary_key or ())
        return f'DELETE FROM {source} USING {target} WHERE {join_clause}'

    def upsert_insert_rows_statement(self, export_config: ExportConfig, stage_table_name: str) -> str:
        columns = ', '.join(quote_many_identifiers(export_config.active_items, lambda item: item.db_name))
        return 'INSERT INTO {target} ({columns}) SELECT {columns} FROM {source}'.format(
            target=self.table_name_with_schema(export_config.db_name),
            columns=columns,
            source=self.table_name_with_schema(stage_table_name),
        )

    def swap_table_statement(self, table_name: str, other_table_name: str) -> str:
        return f'ALTER TABLE {self.table_name_with_schema(table_name)} SWAP WITH {self.table_name_with_schema(other_table_name)}'

    def table_info_statement(self, table_name: str) -> str:
        return f'DESCRIBE TABLE {self.table_name_with_schema(table_name)}'

    def describe_table_columns_statement(self, table_name: str) -> str:
        return f'SHOW COLUMNS IN TABLE {self.table_name_with_schema(table_name)}'

    def drop_table_statement(self, table_name: str) -> str:
        return f'DROP TABLE IF EXISTS {self.table_name_with_schema(table_name)}'

    def drop_stage_statement(self, stage_name: str) -> str:
        return f'DROP STAGE IF EXISTS {quote_identifier(stage_name)}'

    def _items_sql_definition(self, items: Sequence[ColumnConfig], primary_key: Optional[Sequence[str]]) -> str:
        definitions = [self._column_sql_definition(item) for item in _active(items)]
        if primary_key:
            definitions.append(self._primary_key_sql_definition(primary_key))
        return ', '.join(definitions)

    @staticmethod
    def _column_sql_definition(item: ColumnConfig) -> str:
        column_type = item.type.upper()
        parts = [quote_identifier(item.db_name)]
        if item.size and item.type.lower() in TYPES_WITH_SIZE:
            parts.append(f'{column_type}({item.size})')
        else:
            parts.append(column_type)
        parts.append('NULL' if item.nullable else 'NOT NULL')
        if item.default is not None and column_type != 'TEXT':
            parts.append(f'DEFAULT CAST({quote(item.default)} AS {column_type})')
        return ' '.join(parts)

    @staticmethod
    def _primary_key_sql_definition(primary_key: Sequence[str]) -> str:
        return f'PRIMARY KEY({", ".join(quote_many_identifiers(primary_key))})'

    @staticmethod
    def _join_clause(target: str, source: str, primary_key: Sequence[str]) -> str:
        return ' AND '.join(
            f'{target}.{quote_identifier(column)} = {source}.{quote_identifier(column)}' for column in primary_key
        )


def _active(items: Sequence[ColumnConfig]) -> List[ColumnConfig]:
    return [item for item in items if not item.is_ignored]


def _user_stage_path(tmp_table_name: str) -> str:
    return quote(f'@~/{tmp_table_name}')


def indexed_active_items(items: Sequence[ColumnConfig]) -> List[Tuple[int, ColumnConfig]]:
    """Non-ignored columns paired with their position in the source CSV"""
    return [(index, item) for index, item in enumerate(items) if not item.is_ignored]


def column_transformations(items: Sequence[Tuple[int, ColumnConfig]]) -> List[str]:
    """
    Positional selects for each exported column.

    `items` pairs every column with its position in the source CSV, so ignored columns that were
    filtered out still shift the `$N` index of the columns after them.
    """
    transformations = []
    for index, item in items:
        position = index + 1
        if item.nullable:
            transformations.append(f"IFF(t.${position} = '', null, t.${position})")
        else:
            transformations.append(f't.${position}')
    return transformations
