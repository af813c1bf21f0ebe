"""Raster decode/resize/encode backed by OpenCV, with Pillow as a decode fallback."""

from __future__ import annotations

from io import BytesIO
from typing import Protocol, Tuple

import cv2
import numpy as np
from PIL import Image

ENCODE_EXTENSIONS = {
    "jpeg": ".jpg",
    "jpg": ".jpg",
    "png": ".png",
    "webp": ".webp",
}


class ImageCodec(Protocol):
    def decode(self, raw_bytes: bytes) -> np.ndarray: ...

    def dimensions(self, image: np.ndarray) -> Tuple[int, int]: ...

    def resize(self, image: np.ndarray, width: int, height: int) -> np.ndarray: ...

    def encode(self, image: np.ndarray, image_format: str, quality: float) -> bytes: ...


class OpenCvImageCodec:
    """Default codec. Images are BGR arrays."""

    def decode(self, raw_bytes: bytes) -> np.ndarray:
        """Decode image bytes to an OpenCV BGR array."""
        arr = np.frombuffer(raw_bytes, dtype=np.uint8)
        image = cv2.imdecode(arr, cv2.IMREAD_COLOR)
        if image is not None:
            return image

        # Fallback decoder for images that OpenCV fails to parse directly.
        try:
            with Image.open(BytesIO(raw_bytes)) as pil_img:
                rgb = pil_img.convert("RGB")
            return cv2.cvtColor(np.array(rgb), cv2.COLOR_RGB2BGR)
        except Exception as exc:
            raise ValueError("Failed to decode image bytes.") from exc

    def dimensions(self, image: np.ndarray) -> Tuple[int, int]:
        height, width = image.shape[:2]
        return int(width), int(height)

    def resize(self, image: np.ndarray, width: int, height: int) -> np.ndarray:
        return cv2.resize(image, (width, height), interpolation=cv2.INTER_AREA)

    def encode(self, image: np.ndarray, image_format: str, quality: float) -> bytes:
        """Encode to ``image_format``; quality is a 0..1 fraction."""
        ext = ENCODE_EXTENSIONS.get(image_format.lower())
        if ext is None:
            raise ValueError(f"Unsupported output format: {image_format}")

        params: list[int] = []
        level = max(1, min(100, int(round(quality * 100))))
        if ext == ".jpg":
            params = [int(cv2.IMWRITE_JPEG_QUALITY), level]
        elif ext == ".webp":
            params = [int(cv2.IMWRITE_WEBP_QUALITY), level]

        success, encoded = cv2.imencode(ext, image, params)
        if not success:
            raise ValueError(f"Failed to encode image as {image_format}.")
        return encoded.tobytes()
