import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ...config.models import ColumnConfig
from ...errors import ConfigurationError, DataSourceError
from ..query_builder import column_transformations
from ..quoting import quote, quote_identifier
from .base import chunked, parse_sliced_manifest, quoted_column_names, stage_file_format

logger = logging.getLogger(__name__)


class S3WriteStrategy:
    """Stages data exported to an S3 bucket with short-lived AWS credentials"""

    def __init__(self, s3_info: Dict[str, Any], client: Optional[Any] = None):
        try:
            credentials = s3_info['credentials']
            self.is_sliced = bool(s3_info['isSliced'])
            self.region = s3_info['region']
            self.bucket = s3_info['bucket']
            self.key = s3_info['key']
            self.access_key_id = credentials['access_key_id']
            self.secret_access_key = credentials['secret_access_key']
            self.session_token = credentials['session_token']
        except (KeyError, TypeError) as e:
            raise ConfigurationError(f'Invalid S3 manifest: missing {e}') from e
        self._client = client

    @property
    def s3_prefix(self) -> str:
        return f's3://{self.bucket}'

    def generate_create_stage_command(self, stage_name: str) -> str:
        return (
            f'CREATE OR REPLACE STAGE {quote_identifier(stage_name)} '
            f'{stage_file_format(self.is_sliced)} '
            f'URL = {quote(self.s3_prefix)} '
            f'CREDENTIALS = (AWS_KEY_ID = {quote(self.access_key_id)} '
            f'AWS_SECRET_KEY = {quote(self.secret_access_key)} '
            f'AWS_TOKEN = {quote(self.session_token)})'
        )

    def generate_copy_commands(
        self, table_name: str, stage_name: str, items: Sequence[Tuple[int, ColumnConfig]]
    ) -> Iterator[str]:
        prefix = f'{self.s3_prefix}/'
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
            return [f'{self.s3_prefix}/{self.key}']

        key = self.key.lstrip('/')
        try:
            response = self._get_client().get_object(Bucket=self.bucket, Key=key)
            body = response['Body'].read()
        except (ClientError, BotoCoreError) as e:
            raise DataSourceError(f'Load error: {e}') from e

        entries = parse_sliced_manifest(body, f'{self.s3_prefix}/{key}')
        logger.info(f'Resolved {len(entries)} sliced file(s) from {self.s3_prefix}/{key}')
        return entries

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = boto3.client(
                's3',
                region_name=self.region,
                aws_access_key_id=self.access_key_id,
                aws_secret_access_key=self.secret_access_key,
                aws_session_token=self.session_token,
            )
        return self._client
