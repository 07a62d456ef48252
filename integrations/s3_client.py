import logging
from itertools import islice
from typing import Dict, Iterator, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from core.errors import BlobNotFound, ListingError, StorageError
from core.models import StorageBlob
from integrations.storage import StorageProvider

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def _is_not_found(error: ClientError) -> bool:
    return str(error.response.get("Error", {}).get("Code")) in NOT_FOUND_CODES


class S3Storage(StorageProvider):
    """Statement blobs kept in an S3 (or S3-compatible) bucket."""

    name = "s3"

    def __init__(
        self,
        bucket: str,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        timeout: float = 30.0,
        client=None,
    ):
        self.bucket = bucket
        if client is None:
            client = boto3.client(
                "s3",
                region_name=region,
                endpoint_url=endpoint_url,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                config=Config(
                    connect_timeout=timeout,
                    read_timeout=timeout,
                    retries={"max_attempts": 3},
                    # S3-compatible endpoints generally need path-style addressing
                    s3={"addressing_style": "path" if endpoint_url else "auto"},
                ),
            )
        self.client = client

    def is_configured(self) -> bool:
        return bool(self.bucket)

    def list(self, prefix: str, limit: int, offset: int = 0) -> List[Dict]:
        folder = prefix.strip("/") + "/"
        paginator = self.client.get_paginator("list_objects_v2")
        try:
            objects = (
                obj
                for page in paginator.paginate(Bucket=self.bucket, Prefix=folder, Delimiter="/")
                for obj in page.get("Contents", [])
                if obj["Key"] != folder
            )
            return [
                {
                    "name": obj["Key"][len(folder):],
                    "size": obj.get("Size"),
                    "last_modified": obj.get("LastModified"),
                }
                for obj in islice(objects, offset, offset + limit)
            ]
        except (ClientError, BotoCoreError) as e:
            raise ListingError(prefix, str(e)) from e

    def list_tree(self, prefix: str) -> Iterator[StorageBlob]:
        paginator = self.client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix.strip("/") + "/"):
                for obj in page.get("Contents", []):
                    if obj["Key"].endswith("/"):
                        continue
                    yield StorageBlob(path=obj["Key"], size=obj.get("Size"), last_modified=obj.get("LastModified"))
        except (ClientError, BotoCoreError) as e:
            raise ListingError(prefix, str(e)) from e

    def download(self, path: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=path)
            return response["Body"].read()
        except ClientError as e:
            if _is_not_found(e):
                raise BlobNotFound(path) from e
            raise StorageError(f"Failed to download {path}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to download {path}: {e}") from e

    def exists(self, path: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=path)
        except ClientError as e:
            if _is_not_found(e):
                return False
            raise StorageError(f"Failed to probe {path}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to probe {path}: {e}") from e
        return True

    def delete(self, path: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=path)
            logger.info(f"Deleted {path} from s3://{self.bucket}")
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to delete {path}: {e}") from e
