import cv2
import numpy as np
import pytest

from assets import SelectedFile
from conftest import MIB, make_file
from errors import CompressionError
from utils.compression import Compressor, choose_quality, fit_within
from utils.image_codec import OpenCvImageCodec


def noise_png(width: int, height: int) -> bytes:
    rng = np.random.default_rng(7)
    pixels = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
    ok, encoded = cv2.imencode(".png", pixels)
    assert ok
    return encoded.tobytes()


class CountingCodec(OpenCvImageCodec):
    def __init__(self) -> None:
        self.decoded = 0

    def decode(self, raw_bytes):
        self.decoded += 1
        return super().decode(raw_bytes)


def test_fit_within_preserves_aspect_ratio():
    assert fit_within(3840, 2160, 1920, 1080) == (1920, 1080)
    assert fit_within(4000, 1000, 1200, 1200) == (1200, 300)
    assert fit_within(1000, 3000, 1200, 1200) == (400, 1200)


def test_fit_within_never_upscales():
    assert fit_within(640, 480, 1920, 1080) == (640, 480)


@pytest.mark.parametrize(
    "size, quality",
    [(4 * MIB, 0.6), (3 * MIB, 0.6), (2 * MIB, 0.7), (2 * MIB - 1, 0.8), (100, 0.8)],
)
def test_quality_tiers(size, quality):
    assert choose_quality(size) == quality


@pytest.mark.asyncio
async def test_small_files_pass_through_untouched():
    codec = CountingCodec()
    compressor = Compressor(threshold_bytes=MIB, bounds=(100, 100), codec=codec)
    original = make_file("small.png", content_type="image/png")

    assert await compressor.compress(original) is original
    assert codec.decoded == 0


@pytest.mark.asyncio
async def test_gifs_are_never_reencoded():
    compressor = Compressor(threshold_bytes=1024, bounds=(100, 100))
    gif = make_file("anim.gif", size=3 * MIB, content_type="image/gif")

    assert await compressor.compress(gif) is gif

    padded = make_file("loop.gif", size=3 * MIB, content_type=" Image/GIF ")
    assert await compressor.compress(padded) is padded


@pytest.mark.asyncio
async def test_large_image_is_downscaled_and_reencoded_as_jpeg():
    data = noise_png(400, 200)
    compressor = Compressor(threshold_bytes=1024, bounds=(100, 100))
    source = SelectedFile(name="wide.png", content_type="image/png", data=data)

    result = await compressor.compress(source)

    assert result.name == "wide.png"
    assert result.content_type == "image/jpeg"
    decoded = cv2.imdecode(np.frombuffer(result.data, dtype=np.uint8), cv2.IMREAD_COLOR)
    assert decoded.shape[:2] == (50, 100)


@pytest.mark.asyncio
async def test_undecodable_file_raises_compression_error():
    compressor = Compressor(threshold_bytes=1024, bounds=(100, 100))
    broken = make_file("broken.jpg", size=4096)

    with pytest.raises(CompressionError) as excinfo:
        await compressor.compress(broken)

    assert excinfo.value.file_name == "broken.jpg"
    assert str(excinfo.value).startswith("Failed to compress broken.jpg")
