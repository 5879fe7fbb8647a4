"""CLI for the Snowflake writer."""

import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from snowflake_writer.config import load_writer_config
from snowflake_writer.errors import UserError, WriterError
from snowflake_writer.writer import LoadResult, SnowflakeWriter

app = typer.Typer(name='snowflake-writer', help='Load staged tables into Snowflake')
console = Console()

EXIT_USER_ERROR = 1
EXIT_APPLICATION_ERROR = 2


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)


def _exit_code(error: Exception) -> int:
    return EXIT_USER_ERROR if isinstance(error, UserError) else EXIT_APPLICATION_ERROR


def _print_results(results: List[LoadResult]) -> None:
    table = Table(title='Loaded tables')
    table.add_column('Table', style='cyan')
    table.add_column('Mode')
    table.add_column('Rows', justify='right')
    table.add_column('Duration', justify='right')
    table.add_column('Status')

    for result in results:
        table.add_row(
            result.table_name,
            'incremental' if result.incremental else 'full',
            str(result.rows_loaded),
            f'{result.duration:.2f}s',
            '[green]✓[/green]' if result.success else '[red]✗[/red]',
        )

    console.print(table)


@app.command()
def run(
    data_dir: Optional[Path] = typer.Option(None, '--data-dir', help='Data directory (default: $KBC_DATADIR or .)'),
    config: Optional[Path] = typer.Option(None, '--config', help='Configuration file (default: <data-dir>/config.json)'),
    verbose: bool = typer.Option(False, '--verbose', '-v', help='Log every executed statement'),
):
    """Load every configured table into Snowflake."""
    _configure_logging(verbose)

    try:
        writer_config = load_writer_config(
            str(data_dir) if data_dir else None, str(config) if config else None
        )
        with SnowflakeWriter(writer_config.database) as writer:
            results = writer.run(writer_config)
    except WriterError as e:
        console.print(f'[bold red]Error:[/bold red] {e}')
        sys.exit(_exit_code(e))
    except Exception as e:
        console.print(f'[bold red]Unexpected error:[/bold red] {e}')
        sys.exit(EXIT_APPLICATION_ERROR)

    if not results:
        console.print('[yellow]No tables to export[/yellow]')
        return

    _print_results(results)

    failed = [result for result in results if not result.success]
    if failed:
        for result in failed:
            console.print(f'[bold red]Error:[/bold red] {result.error}')
        sys.exit(EXIT_USER_ERROR if failed[0].metadata.get('user_error') else EXIT_APPLICATION_ERROR)

    console.print(f'\n[bold green]✓ Loaded {sum(result.rows_loaded for result in results)} rows[/bold green]')


@app.command('test-connection')
def test_connection(
    data_dir: Optional[Path] = typer.Option(None, '--data-dir', help='Data directory (default: $KBC_DATADIR or .)'),
    config: Optional[Path] = typer.Option(None, '--config', help='Configuration file (default: <data-dir>/config.json)'),
):
    """Check credentials, warehouse and schema without loading anything."""
    _configure_logging(False)

    try:
        writer_config = load_writer_config(
            str(data_dir) if data_dir else None, str(config) if config else None
        )
        with SnowflakeWriter(writer_config.database) as writer:
            writer.test_connection()
    except WriterError as e:
        console.print(f'[bold red]Error:[/bold red] {e}')
        sys.exit(_exit_code(e))
    except Exception as e:
        console.print(f'[bold red]Unexpected error:[/bold red] {e}')
        sys.exit(EXIT_APPLICATION_ERROR)

    console.print('[bold green]✓ Connection successful[/bold green]')


def main():
    app()


if __name__ == '__main__':
    main()
