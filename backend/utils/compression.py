"""Conditional downscale and JPEG re-encode of oversized images."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Tuple

from assets import SelectedFile
from errors import CompressionError
from utils.image_codec import ImageCodec, OpenCvImageCodec

logger = logging.getLogger(__name__)

MIB = 1024 * 1024
OUTPUT_CONTENT_TYPE = "image/jpeg"


def choose_quality(original_size: int) -> float:
    """Tier re-encode quality by how large the original was."""
    if original_size >= 3 * MIB:
        return 0.6
    if original_size >= 2 * MIB:
        return 0.7
    return 0.8


def fit_within(width: int, height: int, max_width: int, max_height: int) -> Tuple[int, int]:
    """Scale down to fit the bound, preserving aspect ratio. Never upscales."""
    if width <= max_width and height <= max_height:
        return width, height

    ratio = min(max_width / float(width), max_height / float(height))
    return max(1, int(width * ratio)), max(1, int(height * ratio))


class Compressor:
    def __init__(
        self,
        threshold_bytes: int,
        bounds: Tuple[int, int],
        codec: Optional[ImageCodec] = None,
    ) -> None:
        self.threshold_bytes = threshold_bytes
        self.max_width, self.max_height = bounds
        self.codec = codec or OpenCvImageCodec()

    def needs_compression(self, file: SelectedFile) -> bool:
        if file.size <= self.threshold_bytes:
            return False
        # GIFs keep their animation.
        return file.media_type != "image/gif"

    async def compress(self, file: SelectedFile) -> SelectedFile:
        if not self.needs_compression(file):
            return file
        return await asyncio.to_thread(self._reencode, file)

    def _reencode(self, file: SelectedFile) -> SelectedFile:
        try:
            image = self.codec.decode(file.data)
            width, height = self.codec.dimensions(image)
            target = fit_within(width, height, self.max_width, self.max_height)
            if target != (width, height):
                image = self.codec.resize(image, *target)
            encoded = self.codec.encode(image, "jpeg", choose_quality(file.size))
        except Exception as exc:
            raise CompressionError(file.name, str(exc)) from exc

        logger.info(
            "compressed file=%s original_bytes=%s output_bytes=%s size=%sx%s",
            file.name,
            file.size,
            len(encoded),
            *target,
        )
        return SelectedFile(name=file.name, content_type=OUTPUT_CONTENT_TYPE, data=encoded)
