"""
S3 blob store for snapshots.
"""

from typing import Any, Iterable, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from streamstate.core.errors import TransportError
from streamstate.transport.base import BlobStore
from streamstate.utils.logging import get_logger

logger = get_logger(__name__)

DELETE_BATCH_SIZE = 1000


def create_s3_client(
    region: Optional[str] = None,
    endpoint_url: Optional[str] = None,
) -> Any:
    """
    Build an S3 client.

    Path-style addressing keeps S3-compatible stores (MinIO, localstack)
    working with the same configuration.
    """
    session = boto3.session.Session()
    return session.client(
        "s3",
        region_name=region,
        endpoint_url=endpoint_url,
        config=BotoConfig(s3={"addressing_style": "path"}),
    )


class S3BlobStore(BlobStore):
    """
    Blob store backed by one S3 bucket.

    Attributes:
        bucket: Bucket name
    """

    def __init__(self, bucket: str, client: Any = None, **client_kwargs: Any):
        """
        Initialize S3 blob store.

        Args:
            bucket: Bucket holding the snapshots
            client: boto3 S3 client (created from client_kwargs if None)
            **client_kwargs: Passed to create_s3_client
        """
        self.bucket = bucket
        self._client = client or create_s3_client(**client_kwargs)

        logger.info("Initialized S3 blob store", bucket=bucket)

    def put(self, name: str, data: bytes) -> None:
        try:
            self._client.put_object(Bucket=self.bucket, Key=name, Body=data)
        except (BotoCoreError, ClientError) as e:
            raise TransportError(f"Failed to upload s3://{self.bucket}/{name}: {e}") from e

        logger.info("Uploaded blob to s3", bucket=self.bucket, key=name, size=len(data))

    def get(self, name: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=name)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as e:
            raise TransportError(f"Failed to download s3://{self.bucket}/{name}: {e}") from e

    def list(self, prefix: str = "") -> List[str]:
        names: List[str] = []
        kwargs = {"Bucket": self.bucket, "Prefix": prefix}

        try:
            while True:
                response = self._client.list_objects_v2(**kwargs)
                names.extend(item["Key"] for item in response.get("Contents", []))

                if not response.get("IsTruncated"):
                    break
                kwargs["ContinuationToken"] = response["NextContinuationToken"]
        except (BotoCoreError, ClientError) as e:
            raise TransportError(f"Failed to list s3://{self.bucket}/{prefix}: {e}") from e

        return sorted(names)

    def delete(self, names: Iterable[str]) -> None:
        keys = list(names)

        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start : start + DELETE_BATCH_SIZE]
            try:
                self._client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except (BotoCoreError, ClientError) as e:
                raise TransportError(f"Failed to delete from s3://{self.bucket}: {e}") from e

        if keys:
            logger.info("Deleted blobs from s3", bucket=self.bucket, count=len(keys))
