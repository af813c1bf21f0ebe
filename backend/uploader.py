"""Single-file upload with timeout, retry, and exponential backoff."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from assets import Asset, SelectedFile, asset_from_payload
from errors import InvalidResponse, UploadError, UploadFailed, UploadTimeout

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class RemoteStore(Protocol):
    """Where bytes go. ``upload`` returns the store's JSON payload."""

    async def upload(self, file: SelectedFile) -> Dict[str, Any]: ...

    async def delete(self, remote_id: str) -> None: ...


class Uploader:
    def __init__(
        self,
        store: RemoteStore,
        max_attempts: int = 3,
        request_timeout_seconds: float = 30.0,
        backoff_base_seconds: float = 1.0,
        sleep: Optional[Sleeper] = None,
    ) -> None:
        self.store = store
        self.max_attempts = max(1, max_attempts)
        self.request_timeout_seconds = request_timeout_seconds
        self.backoff_base_seconds = backoff_base_seconds
        self._sleep = sleep or asyncio.sleep

    def backoff_delay(self, attempt: int) -> float:
        return (2 ** attempt) * self.backoff_base_seconds

    async def upload(self, file: SelectedFile, max_attempts: Optional[int] = None) -> Asset:
        """Upload ``file`` and return the resulting asset (not yet primary).

        Retries timeouts, 5xx and transport errors; 4xx and malformed success
        responses fail immediately.
        """
        attempts_allowed = max(1, max_attempts or self.max_attempts)
        last_error = f"Failed to upload {file.name}"

        for attempt in range(1, attempts_allowed + 1):
            try:
                payload = await self._attempt(file)
                asset = asset_from_payload(payload, file.name)
                if asset is None:
                    raise InvalidResponse(f"Invalid response for {file.name}: missing required fields")
                logger.info("uploaded file=%s attempt=%s url=%s", file.name, attempt, asset.url)
                return asset
            except UploadError as exc:
                last_error = exc.message
                if not exc.retryable:
                    logger.warning(
                        "upload rejected file=%s attempt=%s status=%s error=%s",
                        file.name,
                        attempt,
                        exc.status_code,
                        exc.message,
                    )
                    raise UploadFailed(file.name, last_error, attempt) from exc
                if attempt == attempts_allowed:
                    if isinstance(exc, UploadTimeout):
                        last_error = f"Upload timeout for {file.name} after {attempts_allowed} attempts"
                    raise UploadFailed(file.name, last_error, attempt) from exc

                delay = self.backoff_delay(attempt)
                logger.warning(
                    "upload retry file=%s attempt=%s/%s delay_s=%.1f error=%s",
                    file.name,
                    attempt,
                    attempts_allowed,
                    delay,
                    exc.message,
                )
                await self._sleep(delay)

        raise UploadFailed(file.name, last_error, attempts_allowed)

    async def _attempt(self, file: SelectedFile) -> Dict[str, Any]:
        try:
            return await asyncio.wait_for(self.store.upload(file), timeout=self.request_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise UploadTimeout(
                f"Upload of {file.name} timed out after {self.request_timeout_seconds:g}s"
            ) from exc
