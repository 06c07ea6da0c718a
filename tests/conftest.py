import io
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pytest
from PIL import Image

from imgshrink.compression.types import ImageFormat, SourceImage


@dataclass(frozen=True)
class EncodeCall:
    format: ImageFormat
    quality: Optional[float]
    width: int
    height: int


class FakeCodec:
    """
    Codec stand-in whose pixel buffers are just (width, height) tuples

    Encoded sizes come from size_fn(format, quality, width, height) so tests
    can script exactly when a target is met.
    """

    def __init__(self, size_fn):
        self.size_fn = size_fn
        self.encodes = []
        self.resizes = []

    def decode(self, data, name='image'):
        raise NotImplementedError("FakeCodec works on prebuilt SourceImages")

    def resize(self, pixels, width, height, smoothing=True):
        self.resizes.append((width, height, smoothing))
        return (width, height)

    def encode(self, pixels, image_format, quality=None):
        width, height = pixels
        self.encodes.append(EncodeCall(image_format, quality, width, height))
        return b'x' * int(self.size_fn(image_format, quality, width, height))


def make_source(size_bytes, width=1000, height=800, image_format=ImageFormat.JPEG, name=None):
    """SourceImage for FakeCodec runs; pixels are the (width, height) tuple"""
    name = name or f"photo.{image_format.extension if image_format else 'bin'}"
    return SourceImage(
        name=name,
        data=b'\0' * size_bytes,
        media_type=image_format.mime_type if image_format else None,
        pixels=(width, height),
        width=width,
        height=height,
        format=image_format,
    )


def make_image_bytes(width=64, height=48, fmt='PNG', mode='RGB', seed=0, **save_kwargs):
    """Encoded noise image; noise keeps encoders from shrinking it to nothing"""
    rng = np.random.default_rng(seed)
    channels = {'RGB': 3, 'RGBA': 4, 'L': 1}[mode]
    pixels = rng.integers(0, 256, size=(height, width, channels), dtype=np.uint8)
    if channels == 1:
        pixels = pixels[:, :, 0]
    image = Image.fromarray(pixels)
    buffer = io.BytesIO()
    image.save(buffer, format=fmt, **save_kwargs)
    return buffer.getvalue()


@pytest.fixture
def png_bytes():
    return make_image_bytes(64, 48, 'PNG')


@pytest.fixture
def jpeg_bytes():
    return make_image_bytes(64, 48, 'JPEG', quality=95)


@pytest.fixture
def rgba_png_bytes():
    return make_image_bytes(32, 32, 'PNG', mode='RGBA')
