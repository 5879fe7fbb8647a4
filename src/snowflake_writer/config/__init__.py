from .loader import load_writer_config, writer_config_from_dict
from .models import ColumnConfig, DatabaseConfig, ExportConfig, WriterConfig

__all__ = [
    'ColumnConfig',
    'DatabaseConfig',
    'ExportConfig',
    'WriterConfig',
    'load_writer_config',
    'writer_config_from_dict',
]
