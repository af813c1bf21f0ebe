"""Value types shared by the upload stages."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class SelectedFile:
    """A file handle the caller has already resolved to bytes."""

    name: str
    content_type: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def media_type(self) -> str:
        """Content type trimmed and lower-cased."""
        return (self.content_type or "").strip().lower()


@dataclass
class Asset:
    """One uploaded image known to an asset set."""

    url: str
    remote_id: str
    is_primary: bool = False
    source_file_name: str = ""
    width: Optional[int] = None
    height: Optional[int] = None
    encoded_format: Optional[str] = None
    byte_size: Optional[int] = None
    uploaded_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Asset":
        """Rebuild an asset from persisted entity state."""
        return cls(
            url=str(data["url"]),
            remote_id=str(data.get("remote_id") or data.get("publicId") or ""),
            is_primary=bool(data.get("is_primary", data.get("isThumbnail", False))),
            source_file_name=str(data.get("source_file_name") or data.get("fileName") or ""),
            width=_optional_int(data.get("width")),
            height=_optional_int(data.get("height")),
            encoded_format=data.get("encoded_format") or data.get("format"),
            byte_size=_optional_int(data.get("byte_size", data.get("size"))),
            uploaded_at=data.get("uploaded_at") or data.get("uploadedAt"),
        )


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def asset_from_payload(payload: Dict[str, Any], file_name: str) -> Optional[Asset]:
    """Build an asset from a store response, or None when url/id are missing.

    Extra fields in the payload are ignored.
    """
    url = payload.get("imageUrl") or payload.get("url")
    remote_id = payload.get("publicId") or payload.get("remoteId")
    if not url or not remote_id:
        return None

    return Asset(
        url=str(url),
        remote_id=str(remote_id),
        source_file_name=file_name,
        width=_optional_int(payload.get("width")),
        height=_optional_int(payload.get("height")),
        encoded_format=payload.get("format"),
        byte_size=_optional_int(payload.get("size")),
        uploaded_at=datetime.now(timezone.utc).isoformat(),
    )
