import asyncio
import logging
from typing import Any, Optional
from urllib.parse import unquote_plus

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class ObjectStoreError(Exception):
    pass


class ObjectStore:
    """Reads raw stored emails (as written by SES receipt rules) from S3."""

    def __init__(self, region_name: Optional[str] = None, client: Any = None) -> None:
        self.region_name = region_name
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("s3", region_name=self.region_name)
        return self._client

    def get_object_bytes(self, bucket: str, key: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=bucket, Key=key)
            body = response["Body"]
            try:
                return body.read()
            finally:
                body.close()
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStoreError(f"failed to read s3://{bucket}/{key}: {exc}") from exc

    async def fetch(self, bucket: str, key: str) -> bytes:
        logger.info("Fetching stored message", extra={"event": "s3_object_fetch", "bucket": bucket, "key": key})
        return await asyncio.to_thread(self.get_object_bytes, bucket, key)


def object_locations(payload: dict[str, Any]) -> list[tuple[str, str]]:
    """Extract (bucket, key) pairs from an S3 event notification payload.

    Keys arrive URL-encoded in notifications.
    """
    locations = []
    for record in payload.get("Records") or []:
        s3 = record.get("s3") or {}
        bucket = (s3.get("bucket") or {}).get("name") or ""
        key = (s3.get("object") or {}).get("key") or ""
        locations.append((bucket, unquote_plus(key)))
    return locations
