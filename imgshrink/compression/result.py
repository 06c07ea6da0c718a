from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Optional

from imgshrink.compression.types import ImageFormat, SourceImage
from imgshrink.utils.common import change_file_extension


def savings_percent(original_size: int, compressed_size: int) -> float:
    """(original - compressed) / original * 100, negative when the output grew"""
    if original_size <= 0:
        return 0.0
    return (original_size - compressed_size) / original_size * 100


@dataclass(frozen=True)
class CompressionResult:
    """
    Output of one compression run.

    Always created through build(), so compressed_size_bytes and
    savings_percent agree with data.
    """
    data: bytes = field(repr=False)
    filename: str
    original_name: str
    format: Optional[ImageFormat]
    width: int
    height: int
    original_size_bytes: int
    compressed_size_bytes: int
    savings_percent: float
    note: Optional[str] = None

    @classmethod
    def build(
        cls,
        source: SourceImage,
        data: bytes,
        image_format: Optional[ImageFormat],
        width: int,
        height: int,
        note: Optional[str] = None,
    ) -> 'CompressionResult':
        """
        Create a result for source from the chosen output bytes

        The filename keeps the source name when the format did not change and
        swaps the extension otherwise.
        """
        if image_format is None or image_format == source.format:
            filename = source.name
        else:
            filename = change_file_extension(source.name, image_format.extension)

        return cls(
            data=data,
            filename=filename,
            original_name=source.name,
            format=image_format,
            width=width,
            height=height,
            original_size_bytes=source.size_bytes,
            compressed_size_bytes=len(data),
            savings_percent=savings_percent(source.size_bytes, len(data)),
            note=note,
        )

    @classmethod
    def keep_original(cls, source: SourceImage, note: str) -> 'CompressionResult':
        """Result that hands back the untouched source bytes"""
        return cls.build(source, source.data, source.format, source.width, source.height, note=note)

    @property
    def mime_type(self) -> Optional[str]:
        return self.format.mime_type if self.format else None

    def to_dict(self, include_data: bool = False) -> dict:
        """JSON-friendly summary; savings are rounded to one decimal as shown to users"""
        summary = {
            "name": self.filename,
            "originalName": self.original_name,
            "originalSize": self.original_size_bytes,
            "compressedSize": self.compressed_size_bytes,
            "savings": f"{self.savings_percent:.1f}",
            "format": self.format.value.lower() if self.format else None,
            "width": self.width,
            "height": self.height,
            "note": self.note,
        }
        if include_data:
            summary["data"] = base64.b64encode(self.data).decode('ascii')
        return summary
