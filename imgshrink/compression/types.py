from __future__ import annotations

import math
import mimetypes
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from imgshrink.compression.errors import InvalidTarget

KB = 1024
MB = 1024 * 1024

# Default working bounds for web use
DEFAULT_MAX_WIDTH = 1920
DEFAULT_MAX_HEIGHT = 1080

DEFAULT_QUALITY = 0.8


class ImageFormat(Enum):
    """Container formats the codec knows about, keyed by Pillow format name"""
    JPEG = 'JPEG'
    PNG = 'PNG'
    WEBP = 'WEBP'
    GIF = 'GIF'
    BMP = 'BMP'
    TIFF = 'TIFF'

    @classmethod
    def from_pil(cls, name: Optional[str]) -> Optional['ImageFormat']:
        if not name:
            return None
        try:
            return cls(name.upper())
        except ValueError:
            return None

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self]

    @property
    def mime_type(self) -> str:
        return f"image/{self.value.lower()}"


_EXTENSIONS = {
    ImageFormat.JPEG: 'jpg',
    ImageFormat.PNG: 'png',
    ImageFormat.WEBP: 'webp',
    ImageFormat.GIF: 'gif',
    ImageFormat.BMP: 'bmp',
    ImageFormat.TIFF: 'tiff',
}


class OutputFormat(Enum):
    ORIGINAL = 'original'
    JPEG = 'jpeg'
    PNG = 'png'
    WEBP = 'webp'

    @property
    def image_format(self) -> Optional[ImageFormat]:
        """Concrete format to encode to, or None to keep the source format"""
        if self is OutputFormat.ORIGINAL:
            return None
        return ImageFormat(self.value.upper())


class Method(Enum):
    QUALITY = 'quality'
    TARGET_SIZE = 'targetSize'


@dataclass(frozen=True)
class ImageUpload:
    """Undecoded input, as it arrives from disk or an HTTP form"""
    name: str
    data: bytes
    media_type: Optional[str] = None

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class SourceImage:
    """
    A decoded source image.

    Fields:
        name: Original file name
        data: Raw source bytes
        media_type: Declared media type (e.g. "image/png"), guessed from the name when absent
        pixels: Decoded pixel buffer (a PIL image for the Pillow codec)
        width: Width in pixels
        height: Height in pixels
        format: Detected container format, None when the codec does not know it
    """
    name: str
    data: bytes = field(repr=False)
    media_type: Optional[str]
    pixels: Any = field(repr=False, compare=False)
    width: int
    height: int
    format: Optional[ImageFormat]

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @classmethod
    def from_bytes(cls, name: str, data: bytes, codec, media_type: Optional[str] = None) -> 'SourceImage':
        """
        Decode raw bytes into a SourceImage

        Raises:
            DecodeError: if the codec cannot decode the bytes
        """
        decoded = codec.decode(data, name=name)
        if media_type is None:
            media_type = mimetypes.guess_type(name)[0]
        return cls(
            name=name,
            data=data,
            media_type=media_type,
            pixels=decoded.pixels,
            width=decoded.width,
            height=decoded.height,
            format=decoded.format,
        )

    @classmethod
    def from_upload(cls, upload: ImageUpload, codec) -> 'SourceImage':
        return cls.from_bytes(upload.name, upload.data, codec, media_type=upload.media_type)


@dataclass(frozen=True)
class CompressionRequest:
    """
    What to do with every image of a run.

    Fields:
        method: Flat quality or iterative target-size search
        quality: Encoder quality in 0.0-1.0
        target_size_bytes: Byte budget, required for Method.TARGET_SIZE
        output_format: Requested output format
        max_width: Working width bound
        max_height: Working height bound
    """
    method: Method = Method.QUALITY
    quality: float = DEFAULT_QUALITY
    target_size_bytes: Optional[int] = None
    output_format: OutputFormat = OutputFormat.ORIGINAL
    max_width: int = DEFAULT_MAX_WIDTH
    max_height: int = DEFAULT_MAX_HEIGHT

    def __post_init__(self):
        if not 0.0 <= self.quality <= 1.0:
            raise ValueError(f"quality must be within 0.0-1.0, got {self.quality}")
        if self.max_width < 1 or self.max_height < 1:
            raise ValueError(f"max bounds must be positive, got {self.max_width}x{self.max_height}")
        if self.method is Method.TARGET_SIZE:
            if self.target_size_bytes is None or self.target_size_bytes <= 0:
                raise InvalidTarget(self.target_size_bytes)
        elif self.target_size_bytes is not None:
            raise ValueError("target_size_bytes is only valid with the targetSize method")

    @property
    def target_size_kb(self) -> Optional[float]:
        if self.target_size_bytes is None:
            return None
        return self.target_size_bytes / KB

    @classmethod
    def from_options(
        cls,
        method: str = 'quality',
        quality: float = 80,
        max_file_size_kb: Optional[float] = None,
        output_format: str = 'original',
        max_width: Optional[int] = None,
        max_height: Optional[int] = None,
    ) -> 'CompressionRequest':
        """
        Build a request from caller-facing options

        Args:
            method: "quality" or "targetSize" ("size" is accepted as an alias)
            quality: Quality as a percentage (0-100)
            max_file_size_kb: Target size in KB, used with the targetSize method
            output_format: "original", "jpeg", "png" or "webp"
            max_width: Maximum working width (defaults to 1920)
            max_height: Maximum working height (defaults to 1080)

        Raises:
            InvalidTarget: targetSize method with a missing, non-finite or non-positive size
            ValueError: for unknown method/format names or out-of-range quality
        """
        if method == 'size':
            method = Method.TARGET_SIZE.value
        parsed_method = Method(method)
        parsed_format = OutputFormat(output_format.lower())

        target_size_bytes = None
        if parsed_method is Method.TARGET_SIZE:
            if max_file_size_kb is None or not math.isfinite(max_file_size_kb) or max_file_size_kb <= 0:
                raise InvalidTarget(max_file_size_kb)
            target_size_bytes = int(max_file_size_kb * KB)

        return cls(
            method=parsed_method,
            quality=float(quality) / 100,
            target_size_bytes=target_size_bytes,
            output_format=parsed_format,
            max_width=max_width or DEFAULT_MAX_WIDTH,
            max_height=max_height or DEFAULT_MAX_HEIGHT,
        )
