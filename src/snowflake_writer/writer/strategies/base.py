"""
Shared pieces of the staging strategies: the strategy interface, CSV stage options, file chunking
and manifest parsing.
"""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Protocol, Sequence, Tuple

from ...config.models import ColumnConfig
from ...errors import DataSourceError
from ..query_builder import CSV_FORMAT_OPTIONS
from ..quoting import quote_identifier

FILE_STORAGE_S3 = 's3'
FILE_STORAGE_ABS = 'abs'
SLICED_FILES_CHUNK_SIZE = 1000
MANIFEST_SUFFIX = '.manifest'


class WriteStrategy(Protocol):
    """Turns a staging manifest into Snowflake stage and COPY INTO commands"""

    def generate_create_stage_command(self, stage_name: str) -> str: ...

    def generate_copy_commands(
        self, table_name: str, stage_name: str, items: Sequence[Tuple[int, ColumnConfig]]
    ) -> Iterator[str]: ...


def stage_file_format(is_sliced: bool) -> str:
    options = list(CSV_FORMAT_OPTIONS)
    # sliced files never carry a header row
    if not is_sliced:
        options.append('SKIP_HEADER = 1')
    return f'FILE_FORMAT = (TYPE=CSV {" ".join(options)})'


def quoted_column_names(items: Sequence[Tuple[int, ColumnConfig]]) -> List[str]:
    return [quote_identifier(item.db_name) for _, item in items]


def chunked(entries: List[str], size: int = SLICED_FILES_CHUNK_SIZE) -> Iterable[List[str]]:
    for start in range(0, len(entries), size):
        yield entries[start : start + size]


def parse_sliced_manifest(body: bytes, source: str) -> List[str]:
    """Extract part URLs from a manifest of sliced files"""
    try:
        manifest = json.loads(body)
        return [entry['url'] for entry in manifest['entries']]
    except (ValueError, KeyError, TypeError) as e:
        raise DataSourceError(f'Load error: manifest file "{source}" is not readable: {e}') from e


def manifest_path(table_file_path: str) -> Path:
    return Path(f'{table_file_path}{MANIFEST_SUFFIX}')


def read_manifest(table_file_path: str) -> Dict[str, Any]:
    """Load the sidecar manifest that describes where the table data physically lives"""
    path = manifest_path(table_file_path)
    try:
        with open(path, 'r') as f:
            manifest = json.load(f)
    except FileNotFoundError as e:
        raise DataSourceError(f'Manifest file "{path}" was not found.') from e
    except (OSError, ValueError) as e:
        raise DataSourceError(f'Manifest file "{path}" is not readable: {e}') from e

    if not isinstance(manifest, dict):
        raise DataSourceError(f'Manifest file "{path}" must contain a JSON object.')
    return manifest
