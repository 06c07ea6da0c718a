from dataclasses import dataclass
from typing import Tuple

from imgshrink.compression.types import DEFAULT_MAX_HEIGHT, DEFAULT_MAX_WIDTH


@dataclass(frozen=True)
class DimensionPlanner:
    """
    Working dimensions for an image under a maximum-bounds policy.

    Images that already fit are left alone (no upscaling, ever); larger ones
    are scaled down preserving aspect ratio.
    """
    max_width: int = DEFAULT_MAX_WIDTH
    max_height: int = DEFAULT_MAX_HEIGHT

    def plan(self, original_width: int, original_height: int) -> Tuple[int, int]:
        """
        Compute target dimensions

        Args:
            original_width: Source width in pixels
            original_height: Source height in pixels

        Returns:
            tuple: (width, height), each rounded and at least 1
        """
        if original_width <= self.max_width and original_height <= self.max_height:
            return original_width, original_height

        aspect_ratio = original_width / original_height
        scale = min(self.max_width / original_width, self.max_height / original_height)
        width = original_width * scale
        height = original_height * scale

        # Clamp each axis again in case float error pushed one over the bound
        if width > self.max_width:
            width = self.max_width
            height = width / aspect_ratio
        if height > self.max_height:
            height = self.max_height
            width = height * aspect_ratio

        return max(1, min(self.max_width, round(width))), max(1, min(self.max_height, round(height)))
