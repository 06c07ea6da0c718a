"""
Pixel codec used by the compression controller.

The controller only talks to the ImageCodec protocol; PillowCodec is the
implementation used everywhere outside of tests.
"""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from PIL import Image, ImageOps, UnidentifiedImageError

from imgshrink.compression.errors import DecodeError
from imgshrink.compression.types import ImageFormat

logger = logging.getLogger(__name__)

# Alpha is flattened onto this colour when encoding to JPEG
JPEG_BACKGROUND = (255, 255, 255)

# Formats whose encoders take a quality parameter
LOSSY_FORMATS = (ImageFormat.JPEG, ImageFormat.WEBP)


@dataclass(frozen=True)
class DecodedImage:
    pixels: Any
    width: int
    height: int
    format: Optional[ImageFormat]


class ImageCodec(Protocol):
    def decode(self, data: bytes, name: str = 'image') -> DecodedImage:
        ...

    def resize(self, pixels: Any, width: int, height: int, smoothing: bool = True) -> Any:
        ...

    def encode(self, pixels: Any, image_format: ImageFormat, quality: Optional[float] = None) -> bytes:
        ...


def to_pil_quality(quality: Optional[float], default: int = 75) -> int:
    """Map a 0.0-1.0 quality onto Pillow's 1-100 scale"""
    if quality is None:
        return default
    return max(1, min(100, int(round(quality * 100))))


def _has_alpha(image: Image.Image) -> bool:
    return image.mode in ('RGBA', 'LA', 'PA') or (image.mode == 'P' and 'transparency' in image.info)


def _flatten_for_jpeg(image: Image.Image) -> Image.Image:
    if _has_alpha(image):
        rgba = image.convert('RGBA')
        background = Image.new('RGB', rgba.size, JPEG_BACKGROUND)
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    if image.mode not in ('RGB', 'L', 'CMYK'):
        return image.convert('RGB')
    return image


class PillowCodec:
    """ImageCodec backed by Pillow"""

    def decode(self, data: bytes, name: str = 'image') -> DecodedImage:
        """
        Decode raw bytes into a pixel buffer

        Args:
            data: Encoded image bytes
            name: Name used in error messages

        Returns:
            DecodedImage with EXIF orientation already applied

        Raises:
            DecodeError: if the bytes are empty, truncated or not an image
        """
        if not data:
            raise DecodeError(name, "empty input")
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as e:
            raise DecodeError(name, str(e)) from e

        image_format = ImageFormat.from_pil(image.format)
        image = ImageOps.exif_transpose(image)
        width, height = image.size
        return DecodedImage(pixels=image, width=width, height=height, format=image_format)

    def resize(self, pixels: Image.Image, width: int, height: int, smoothing: bool = True) -> Image.Image:
        """Resize to exactly width x height; smoothing selects Lanczos over nearest-neighbour"""
        if pixels.size == (width, height) and smoothing:
            return pixels
        if pixels.mode == 'P':
            pixels = pixels.convert('RGBA')
        resample = Image.LANCZOS if smoothing else Image.NEAREST
        return pixels.resize((width, height), resample)

    def encode(self, pixels: Image.Image, image_format: ImageFormat, quality: Optional[float] = None) -> bytes:
        """
        Encode a pixel buffer

        Args:
            pixels: PIL image
            image_format: Target format
            quality: 0.0-1.0, ignored by lossless formats (they use maximum effort instead)

        Returns:
            bytes: The encoded image
        """
        buffer = io.BytesIO()
        if image_format is ImageFormat.JPEG:
            _flatten_for_jpeg(pixels).save(
                buffer, format='JPEG', quality=to_pil_quality(quality), optimize=True, progressive=True
            )
        elif image_format is ImageFormat.WEBP:
            image = pixels if pixels.mode in ('RGB', 'RGBA') else pixels.convert('RGBA' if _has_alpha(pixels) else 'RGB')
            image.save(buffer, format='WEBP', quality=to_pil_quality(quality), method=6)
        elif image_format is ImageFormat.PNG:
            image = pixels
            if pixels.mode not in ('1', 'L', 'LA', 'I', 'I;16', 'P', 'RGB', 'RGBA'):
                image = pixels.convert('RGBA' if _has_alpha(pixels) else 'RGB')
            image.save(buffer, format='PNG', optimize=True, compress_level=9)
        elif image_format is ImageFormat.TIFF:
            pixels.save(buffer, format='TIFF', compression='tiff_deflate')
        else:
            raise ValueError(f"Encoding to {image_format.value} is not supported")

        data = buffer.getvalue()
        logger.debug(f"Encoded {pixels.size[0]}x{pixels.size[1]} as {image_format.value} "
                     f"(quality={quality}) -> {len(data)} bytes")
        return data