"""S3-backed asset store."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from assets import SelectedFile
from errors import ClientRejected, ServerError
from upload_config import _read_int_env

logger = logging.getLogger(__name__)

CONTENT_TYPE_TO_FORMAT = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


def sanitize_filename(filename: str) -> str:
    """Sanitize filename for safer storage keys."""
    clean_name = re.sub(r"[^a-zA-Z0-9_.-]", "_", filename)
    return clean_name or f"image_{uuid.uuid4().hex}.jpg"


class S3AssetStore:
    """Stores each upload as one S3 object; the object key is the remote id."""

    def __init__(
        self,
        bucket: str,
        s3_client: Any = None,
        region: Optional[str] = None,
        public_base_url: Optional[str] = None,
        key_prefix: str = "assets",
    ) -> None:
        self.bucket = bucket
        self.region = region
        self.key_prefix = key_prefix.strip("/")
        if public_base_url:
            self.public_base_url = public_base_url.rstrip("/")
        elif region:
            self.public_base_url = f"https://{bucket}.s3.{region}.amazonaws.com"
        else:
            self.public_base_url = f"https://{bucket}.s3.amazonaws.com"
        self.s3_client = s3_client

    @classmethod
    def from_env(cls) -> Optional["S3AssetStore"]:
        bucket = os.getenv("S3_ASSETS_BUCKET", "").strip()
        if not bucket:
            return None

        region = os.getenv("AWS_REGION", "").strip() or None
        access_key = os.getenv("AWS_ACCESS_KEY_ID", "").strip() or None
        secret_key = os.getenv("AWS_SECRET_ACCESS_KEY", "").strip() or None
        # Retries are driven by the uploader.
        client = boto3.client(
            "s3",
            region_name=region,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            config=Config(
                retries={
                    "max_attempts": _read_int_env("S3_MAX_ATTEMPTS", default=1, min_value=1, max_value=5),
                    "mode": "standard",
                },
                connect_timeout=_read_int_env("S3_CONNECT_TIMEOUT_SECONDS", default=3, min_value=1, max_value=30),
                read_timeout=_read_int_env("S3_READ_TIMEOUT_SECONDS", default=12, min_value=1, max_value=120),
            ),
        )
        return cls(
            bucket,
            s3_client=client,
            region=region,
            public_base_url=os.getenv("S3_PUBLIC_BASE_URL", "").strip() or None,
        )

    def build_key(self, file_name: str) -> str:
        object_prefix = datetime.now(timezone.utc).strftime("%Y/%m/%d")
        object_token = uuid.uuid4().hex
        return f"{self.key_prefix}/{object_prefix}/{object_token}_{sanitize_filename(file_name)}"

    def _put(self, key: str, file: SelectedFile) -> None:
        try:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=file.data,
                ContentType=file.content_type,
            )
        except ClientError as exc:
            error = exc.response.get("Error", {})
            status = int(exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0)
            message = f"S3 upload failed for {file.name}: {error.get('Code', 'ClientError')}"
            if 400 <= status < 500:
                raise ClientRejected(message, status_code=status) from exc
            raise ServerError(message, status_code=status or None) from exc
        except BotoCoreError as exc:
            raise ServerError(f"S3 upload failed for {file.name}: {exc}") from exc

    async def upload(self, file: SelectedFile) -> Dict[str, Any]:
        key = self.build_key(file.name)
        await asyncio.to_thread(self._put, key, file)
        return {
            "url": f"{self.public_base_url}/{key}",
            "remoteId": key,
            "format": CONTENT_TYPE_TO_FORMAT.get(file.content_type.lower()),
            "size": file.size,
        }

    async def delete(self, remote_id: str) -> None:
        await asyncio.to_thread(self.s3_client.delete_object, Bucket=self.bucket, Key=remote_id)

    def health_snapshot(self) -> Dict[str, Any]:
        """Return non-sensitive store readiness flags."""
        return {
            "backend": "s3",
            "bucket": self.bucket,
            "region": self.region,
            "public_base_url": self.public_base_url,
        }
