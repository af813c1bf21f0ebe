"""Per-screen upload limits and their environment overrides."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Dict, Tuple

logger = logging.getLogger(__name__)

MIB = 1024 * 1024
KIB = 1024


def _read_int_env(name: str, default: int, min_value: int, max_value: int) -> int:
    """Return bounded integer env value with safe fallback."""
    raw = (os.getenv(name, str(default)) or "").strip()
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid integer for %s=%r. Using default=%s", name, raw, default)
        return default
    return max(min_value, min(max_value, value))


@dataclass(frozen=True)
class UploadConfig:
    """Limits for one asset set. Banner screens hold one image, galleries many."""

    max_assets: int
    max_bytes_per_file: int
    min_bytes_per_file: int = KIB
    max_retries: int = 3
    request_timeout_ms: int = 30_000
    downscale_bounds: Tuple[int, int] = (1200, 1200)
    replace_mode: bool = False
    compress_threshold_bytes: int = MIB
    check_duplicate_names: bool = False
    backoff_base_seconds: float = 1.0

    @property
    def request_timeout_seconds(self) -> float:
        return self.request_timeout_ms / 1000.0

    def limits_snapshot(self) -> Dict[str, object]:
        return {
            "max_assets": self.max_assets,
            "max_file_size_mb": round(self.max_bytes_per_file / MIB, 2),
            "min_file_size_kb": round(self.min_bytes_per_file / KIB, 2),
            "max_retries": self.max_retries,
            "request_timeout_ms": self.request_timeout_ms,
            "downscale_bounds": list(self.downscale_bounds),
            "replace_mode": self.replace_mode,
        }


BANNER = UploadConfig(
    max_assets=1,
    max_bytes_per_file=10 * MIB,
    downscale_bounds=(1920, 1080),
    replace_mode=True,
    compress_threshold_bytes=2 * MIB,
)

GALLERY = UploadConfig(
    max_assets=10,
    max_bytes_per_file=5 * MIB,
    downscale_bounds=(1200, 1200),
    compress_threshold_bytes=MIB,
    check_duplicate_names=True,
)


def load_profiles() -> Dict[str, UploadConfig]:
    """Build the named profiles, applying environment overrides."""
    max_retries = _read_int_env("UPLOAD_MAX_RETRIES", default=3, min_value=1, max_value=10)
    timeout_ms = _read_int_env(
        "UPLOAD_REQUEST_TIMEOUT_MS", default=30_000, min_value=1_000, max_value=300_000
    )

    banner = replace(
        BANNER,
        max_bytes_per_file=_read_int_env("BANNER_MAX_FILE_SIZE_MB", 10, 1, 100) * MIB,
        max_retries=max_retries,
        request_timeout_ms=timeout_ms,
    )
    gallery = replace(
        GALLERY,
        max_assets=_read_int_env("GALLERY_MAX_ASSETS", 10, 1, 100),
        max_bytes_per_file=_read_int_env("GALLERY_MAX_FILE_SIZE_MB", 5, 1, 100) * MIB,
        max_retries=max_retries,
        request_timeout_ms=timeout_ms,
    )
    return {"banner": banner, "gallery": gallery}
