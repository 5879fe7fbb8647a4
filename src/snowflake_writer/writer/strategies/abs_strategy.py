import logging
import re
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from azure.core.exceptions import AzureError
from azure.storage.blob import BlobServiceClient

from ...config.models import ColumnConfig
from ...errors import ConfigurationError, DataSourceError
from ..query_builder import column_transformations
from ..quoting import quote, quote_identifier
from .base import chunked, parse_sliced_manifest, quoted_column_names, stage_file_format

logger = logging.getLogger(__name__)

SAS_CONNECTION_STRING = re.compile(r'BlobEndpoint=https?://(.+);SharedAccessSignature=(.+)')


class AbsWriteStrategy:
    """Stages data exported to an Azure Blob Storage container with a SAS token"""

    def __init__(self, abs_info: Dict[str, Any], client: Optional[BlobServiceClient] = None):
        try:
            connection_string = abs_info['credentials']['sas_connection_string']
            self.is_sliced = bool(abs_info['is_sliced'])
            self.container = abs_info['container']
            self.name = abs_info['name']
        except (KeyError, TypeError) as e:
            raise ConfigurationError(f'Invalid ABS manifest: missing {e}') from e

        match = SAS_CONNECTION_STRING.search(connection_string)
        if not match:
            raise ConfigurationError('Invalid ABS manifest: malformed SAS connection string.')
        self.connection_endpoint = match.group(1).rstrip('/')
        self.connection_access_signature = match.group(2)
        self._client = client

    @property
    def container_url(self) -> str:
        return f'https://{self.connection_endpoint}/{self.container}'

    def generate_create_stage_command(self, stage_name: str) -> str:
        return (
            f'CREATE OR REPLACE STAGE {quote_identifier(stage_name)} '
            f'{stage_file_format(self.is_sliced)} '
            f'URL = {quote(f"azure://{self.connection_endpoint}/{self.container}")} '
            f'CREDENTIALS = (AZURE_SAS_TOKEN = {quote(self.connection_access_signature)})'
        )

    def generate_copy_commands(
        self, table_name: str, stage_name: str, items: Sequence[Tuple[int, ColumnConfig]]
    ) -> Iterator[str]:
        prefix = f'{self.container_url}/'
        for files in chunked(self.get_manifest_entries()):
            quoted_files = [quote(entry.replace(prefix, '', 1) if entry.startswith(prefix) else entry) for entry in files]
            yield (
                f'COPY INTO {table_name}({", ".join(quoted_column_names(items))}) '
                f'FROM (SELECT {", ".join(column_transformations(items))} '
                f'FROM {quote("@" + quote_identifier(stage_name) + "/")} t) '
                f'FILES = ({",".join(quoted_files)})'
            )

    def get_manifest_entries(self) -> List[str]:
        if not self.is_sliced:
            return [f'{self.container_url}/{self.name}']

        try:
            blob = self._get_client().get_blob_client(container=self.container, blob=self.name)
            body = blob.download_blob().readall()
        except AzureError as e:
            raise DataSourceError('Load error: manifest file was not found.') from e

        entries = [url.replace('azure://', 'https://', 1) for url in parse_sliced_manifest(body, self.name)]
        logger.info(f'Resolved {len(entries)} sliced file(s) from {self.container_url}/{self.name}')
        return entries

    def _get_client(self) -> BlobServiceClient:
        if self._client is None:
            self._client = BlobServiceClient(
                account_url=f'https://{self.connection_endpoint}',
                credential=self.connection_access_signature,
            )
        return self._client
