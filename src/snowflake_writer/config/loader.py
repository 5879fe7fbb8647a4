import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from ..errors import ConfigurationError
from .models import DatabaseConfig, ExportConfig, WriterConfig

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = 'config.json'


def resolve_data_dir(data_dir: Optional[str] = None) -> str:
    """Data directory from the argument, then KBC_DATADIR, then the current directory"""
    return data_dir or os.getenv('KBC_DATADIR') or '.'


def load_raw_config(data_dir: str, config_file: Optional[str] = None) -> Dict[str, Any]:
    """Read and decode the JSON configuration document"""
    config_path = Path(config_file) if config_file else Path(data_dir) / CONFIG_FILE_NAME
    if not config_path.exists():
        raise ConfigurationError(f'Configuration file "{config_path}" does not exist.')

    try:
        with open(config_path, 'r') as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f'Configuration file "{config_path}" is not valid JSON: {e}') from e

    if not isinstance(raw, dict):
        raise ConfigurationError(f'Configuration file "{config_path}" must contain a JSON object.')

    logger.debug(f'Loaded configuration from {config_path}')
    return raw


def writer_config_from_dict(raw: Dict[str, Any], data_dir: str) -> WriterConfig:
    """
    Build a validated WriterConfig from a raw configuration document.

    Two layouts are accepted:
    - multi-table: `parameters.tables` holds a list of table definitions sharing `parameters.db`
    - single row: the table definition sits directly in `parameters`
    """
    parameters = raw.get('parameters')
    if not isinstance(parameters, dict):
        raise ConfigurationError('Configuration is missing the "parameters" section.')
    if not isinstance(parameters.get('db'), dict):
        raise ConfigurationError('Configuration is missing the "parameters.db" section.')

    input_mapping = raw.get('storage', {}).get('input', {}).get('tables', [])
    database_config = DatabaseConfig.from_dict(parameters['db'])

    if 'tables' in parameters:
        tables = [
            ExportConfig.from_dict(table, input_mapping, database_config, data_dir) for table in parameters['tables']
        ]
        return WriterConfig(database=database_config, tables=tables, multi_table=True)

    table = ExportConfig.from_dict(parameters, input_mapping, database_config, data_dir)
    return WriterConfig(database=database_config, tables=[table], multi_table=False)


def load_writer_config(data_dir: Optional[str] = None, config_file: Optional[str] = None) -> WriterConfig:
    data_dir = resolve_data_dir(data_dir)
    return writer_config_from_dict(load_raw_config(data_dir, config_file), data_dir)
