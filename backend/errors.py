"""Error types for the asset upload pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class AssetUploadError(Exception):
    """Base class for upload pipeline failures."""


@dataclass(frozen=True)
class ValidationError:
    """A rejected file selection. Returned as data, never raised."""

    kind: str
    file_name: str
    message: str

    MISSING_FILE = "missing_file"
    UNSUPPORTED_TYPE = "unsupported_type"
    TOO_LARGE = "too_large"
    TOO_SMALL = "too_small"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    DUPLICATE_NAME = "duplicate_name"

    def __str__(self) -> str:
        return self.message


class CompressionError(AssetUploadError):
    """Raised when a single file cannot be decoded or re-encoded."""

    def __init__(self, file_name: str, reason: str) -> None:
        super().__init__(f"Failed to compress {file_name}: {reason}")
        self.file_name = file_name
        self.reason = reason


class UploadError(AssetUploadError):
    """One failed upload attempt, classified for the retry loop."""

    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class UploadTimeout(UploadError):
    retryable = True


class ServerError(UploadError):
    """5xx responses and transport failures."""

    retryable = True


class ClientRejected(UploadError):
    """4xx responses: bad file, bad auth, and similar."""


class InvalidResponse(UploadError):
    """2xx response without the url/id pair."""


class UploadFailed(AssetUploadError):
    """Raised by the uploader after exhausting attempts or on a terminal error."""

    def __init__(self, file_name: str, last_error: str, attempts: int) -> None:
        super().__init__(last_error)
        self.file_name = file_name
        self.last_error = last_error
        self.attempts = attempts


class NothingToUploadError(AssetUploadError):
    """Raised when no file in a batch survived validation and compression."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("No images could be processed")
        self.errors = list(errors)


class AssetNotFoundError(AssetUploadError, LookupError):
    def __init__(self, url: str) -> None:
        super().__init__(f"Image not found: {url}")
        self.url = url
