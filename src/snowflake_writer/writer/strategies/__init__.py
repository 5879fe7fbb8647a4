"""
Staging strategies: one per cloud storage backend the input data can live on.
"""

import logging
from typing import Any, Dict

from ...errors import ConfigurationError
from .abs_strategy import AbsWriteStrategy
from .base import FILE_STORAGE_ABS, FILE_STORAGE_S3, SLICED_FILES_CHUNK_SIZE, WriteStrategy, read_manifest
from .s3_strategy import S3WriteStrategy

logger = logging.getLogger(__name__)


def create_write_strategy(manifest: Dict[str, Any]) -> WriteStrategy:
    """Select the strategy matching the storage key present in the manifest"""
    if manifest.get(FILE_STORAGE_S3):
        logger.info('Using S3 write strategy')
        return S3WriteStrategy(manifest[FILE_STORAGE_S3])
    if manifest.get(FILE_STORAGE_ABS):
        logger.info('Using ABS write strategy')
        return AbsWriteStrategy(manifest[FILE_STORAGE_ABS])
    raise ConfigurationError('Unknown input adapter')


__all__ = [
    'AbsWriteStrategy',
    'S3WriteStrategy',
    'WriteStrategy',
    'SLICED_FILES_CHUNK_SIZE',
    'create_write_strategy',
    'read_manifest',
]
