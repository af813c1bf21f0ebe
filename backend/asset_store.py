"""HTTP client for the storefront's image upload endpoint."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import httpx

from assets import SelectedFile
from errors import ClientRejected, InvalidResponse, ServerError, UploadTimeout

logger = logging.getLogger(__name__)


def _error_text(response: httpx.Response) -> Optional[str]:
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict):
        message = data.get("error") or data.get("message")
        return str(message) if message else None
    return None


class HttpAssetStore:
    """Multipart POST to upload, DELETE ``?publicId=`` to remove."""

    def __init__(
        self,
        endpoint: str,
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds
        self._client = httpx.AsyncClient(
            timeout=timeout_seconds,
            transport=transport,
            headers=headers,
        )

    @classmethod
    def from_env(cls) -> Optional["HttpAssetStore"]:
        endpoint = os.getenv("ASSET_STORE_URL", "").strip()
        if not endpoint:
            return None
        raw_timeout = os.getenv("ASSET_STORE_TIMEOUT_SECONDS", "30").strip()
        try:
            timeout = max(1.0, float(raw_timeout))
        except ValueError:
            logger.warning("Invalid ASSET_STORE_TIMEOUT_SECONDS=%r. Using default=30", raw_timeout)
            timeout = 30.0
        return cls(endpoint, timeout_seconds=timeout)

    async def upload(self, file: SelectedFile) -> Dict[str, Any]:
        files = {"image": (file.name, file.data, file.content_type)}
        try:
            response = await self._client.post(self.endpoint, files=files)
        except httpx.TimeoutException as exc:
            raise UploadTimeout(f"Upload timeout for {file.name}") from exc
        except httpx.HTTPError as exc:
            raise ServerError(f"Network error uploading {file.name}: {exc}") from exc

        status = response.status_code
        if 400 <= status < 500:
            message = _error_text(response) or f"Upload failed for {file.name}: {response.reason_phrase}"
            raise ClientRejected(message, status_code=status)
        if status >= 300 or status < 200:
            message = _error_text(response) or f"Upload failed for {file.name}: HTTP {status}"
            raise ServerError(message, status_code=status)

        try:
            payload = response.json()
        except ValueError as exc:
            raise InvalidResponse(f"Invalid response for {file.name}: body is not JSON", status) from exc
        if not isinstance(payload, dict):
            raise InvalidResponse(f"Invalid response for {file.name}: missing required fields", status)
        return payload

    async def delete(self, remote_id: str) -> None:
        response = await self._client.delete(self.endpoint, params={"publicId": remote_id})
        response.raise_for_status()

    async def aclose(self) -> None:
        await self._client.aclose()

    def health_snapshot(self) -> Dict[str, Any]:
        return {"backend": "http", "endpoint": self.endpoint, "timeout_seconds": self.timeout_seconds}
