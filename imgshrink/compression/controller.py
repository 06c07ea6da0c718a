"""
Size-targeting compression controller.

Given a decoded source image and a CompressionRequest, decide how to re-encode
it (quality step-down, dimension down-scaling, format substitution) and return
exactly one CompressionResult. Every search is a bounded loop of encode
attempts; an unreachable target ends in a best-effort result with a note,
never an exception.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from imgshrink.compression.codec import ImageCodec, PillowCodec
from imgshrink.compression.errors import InvalidTarget
from imgshrink.compression.planner import DimensionPlanner
from imgshrink.compression.result import CompressionResult, savings_percent
from imgshrink.compression.types import (
    MB,
    CompressionRequest,
    ImageFormat,
    Method,
    OutputFormat,
    SourceImage,
)

logger = logging.getLogger(__name__)

# Quality mode
JPEG_RETRY_QUALITY = 0.5

# Target-size mode, lossy formats
SIZE_MODE_START_QUALITY = 0.7
QUALITY_DECAY = 0.8
QUALITY_FLOOR = 0.1
MAX_SIZE_ATTEMPTS = 10

# Target-size mode, lossless formats
SCALE_LADDER = tuple(step / 10 for step in range(10, 2, -1))  # 1.0 .. 0.3
LOSSY_SUBSTITUTION_FACTOR = 0.8
LOSSY_SUBSTITUTION_MIN_ORIGINAL = MB

# Lossless re-encode without a target
DOWNSCALE_MIN_ORIGINAL = 2 * MB
DOWNSCALE_FACTOR = 0.8

# Lossless-to-lossy advisor
ADVISOR_MIN_SAVINGS = 10.0
ADVISOR_LARGE_ORIGINAL = MB
ADVISOR_QUALITY_CAP = 0.8
ADVISOR_MARGIN = 5.0


class FormatCapability(Enum):
    LOSSY = 'lossy'          # quality-parametrized
    LOSSLESS = 'lossless'    # effort-parametrized, shrinks only with fewer pixels


@dataclass(frozen=True)
class FormatTraits:
    capability: FormatCapability
    quality_cap: Optional[float] = None


FORMAT_TRAITS: Dict[ImageFormat, FormatTraits] = {
    ImageFormat.JPEG: FormatTraits(FormatCapability.LOSSY, quality_cap=0.8),
    ImageFormat.WEBP: FormatTraits(FormatCapability.LOSSY, quality_cap=0.75),
    ImageFormat.PNG: FormatTraits(FormatCapability.LOSSLESS),
}

# Sources in formats we cannot re-encode natively are written as PNG
FALLBACK_FORMAT = ImageFormat.PNG


@dataclass(frozen=True)
class CompressionAttempt:
    """One encode inside a search loop"""
    data: bytes
    format: ImageFormat
    width: int
    height: int
    quality: Optional[float] = None
    scale: float = 1.0

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class _Run:
    """Everything one compression run needs, fixed before the first attempt"""
    source: SourceImage
    request: CompressionRequest
    working: Any
    width: int
    height: int
    output_format: ImageFormat
    traits: FormatTraits

    @property
    def target_kb(self) -> str:
        return f"{self.request.target_size_kb:g}"


def resolve_output_format(source: SourceImage, request: CompressionRequest) -> ImageFormat:
    """Requested format, or the source format when "original" was asked for"""
    image_format = request.output_format.image_format or source.format
    if image_format not in FORMAT_TRAITS:
        return FALLBACK_FORMAT
    return image_format


class SizeTargetingController:
    """
    Runs the encode search for one image at a time.

    The controller keeps no per-run state, so one instance can be shared by
    concurrent workers.
    """

    def __init__(self, codec: Optional[ImageCodec] = None):
        self.codec = codec or PillowCodec()
        self._strategies: Dict[Tuple[FormatCapability, Method], Callable[[_Run], CompressionResult]] = {
            (FormatCapability.LOSSY, Method.QUALITY): self._lossy_quality,
            (FormatCapability.LOSSY, Method.TARGET_SIZE): self._lossy_target_size,
            (FormatCapability.LOSSLESS, Method.QUALITY): self._lossless_quality,
            (FormatCapability.LOSSLESS, Method.TARGET_SIZE): self._lossless_target_size,
        }

    def compress(self, source: SourceImage, request: CompressionRequest) -> CompressionResult:
        """
        Compress a single image

        Args:
            source: Decoded source image
            request: Method, quality, byte budget, output format and bounds

        Returns:
            CompressionResult: always exactly one, possibly a best-effort one

        Raises:
            InvalidTarget: target-size request without a positive byte budget
        """
        if request.method is Method.TARGET_SIZE and (request.target_size_bytes or 0) <= 0:
            raise InvalidTarget(request.target_size_bytes)

        planner = DimensionPlanner(request.max_width, request.max_height)
        width, height = planner.plan(source.width, source.height)
        output_format = resolve_output_format(source, request)
        traits = FORMAT_TRAITS[output_format]

        run = _Run(
            source=source,
            request=request,
            working=self.codec.resize(source.pixels, width, height),
            width=width,
            height=height,
            output_format=output_format,
            traits=traits,
        )
        result = self._strategies[(traits.capability, request.method)](run)

        logger.info(f"{source.name}: {result.original_size_bytes} -> {result.compressed_size_bytes} bytes "
                    f"({result.savings_percent:.1f}% saved) {result.note or ''}".rstrip())
        return result

    # ---- Encoding helpers ----
    def _encode(self, pixels, image_format: ImageFormat, width: int, height: int,
                quality: Optional[float] = None, scale: float = 1.0) -> CompressionAttempt:
        data = self.codec.encode(pixels, image_format, quality)
        logger.debug(f"Attempt {image_format.value} {width}x{height} quality={quality} scale={scale:.1f} "
                     f"-> {len(data)} bytes")
        return CompressionAttempt(data=data, format=image_format, width=width, height=height,
                                  quality=quality, scale=scale)

    def _encode_scaled(self, run: _Run, scale: float, smoothing: bool = True) -> CompressionAttempt:
        width = max(1, round(run.width * scale))
        height = max(1, round(run.height * scale))
        pixels = self.codec.resize(run.working, width, height, smoothing=smoothing)
        return self._encode(pixels, run.output_format, width, height, scale=scale)

    @staticmethod
    def _result(run: _Run, attempt: CompressionAttempt, note: Optional[str] = None) -> CompressionResult:
        return CompressionResult.build(run.source, attempt.data, attempt.format,
                                       attempt.width, attempt.height, note=note)

    # ---- Lossy formats ----
    def _lossy_quality(self, run: _Run) -> CompressionResult:
        quality = min(run.request.quality, run.traits.quality_cap)
        attempt = self._encode(run.working, run.output_format, run.width, run.height, quality)

        # Re-encoding overhead can make the output bigger than the source; one retry only
        if attempt.size >= run.source.size_bytes and run.output_format is ImageFormat.JPEG:
            attempt = self._encode(run.working, run.output_format, run.width, run.height, JPEG_RETRY_QUALITY)
            return self._result(run, attempt, note=f"Re-encoded at {JPEG_RETRY_QUALITY:.0%} quality")

        return self._result(run, attempt)

    def _lossy_target_size(self, run: _Run) -> CompressionResult:
        target = run.request.target_size_bytes
        quality = SIZE_MODE_START_QUALITY

        if run.source.size_bytes <= target:
            attempt = self._encode(run.working, run.output_format, run.width, run.height, quality)
            if attempt.size < run.source.size_bytes:
                return self._result(run, attempt, note=f"Already within {run.target_kb} KB target, no scaling needed")
            return CompressionResult.keep_original(
                run.source, note=f"Original kept, already within {run.target_kb} KB target, no scaling needed"
            )

        attempt = None
        for _ in range(MAX_SIZE_ATTEMPTS):
            attempt = self._encode(run.working, run.output_format, run.width, run.height, quality)
            if attempt.size <= target:
                return self._result(run, attempt, note=f"Compressed to target size ({run.target_kb} KB)")
            if quality <= QUALITY_FLOOR:
                return self._result(
                    run, attempt,
                    note=f"Minimum quality reached ({quality:.0%}), target {run.target_kb} KB not met",
                )
            quality *= QUALITY_DECAY

        return self._result(run, attempt, note=f"Best compression achieved (target: {run.target_kb} KB)")

    # ---- Lossless formats ----
    def _lossless_reencode(self, run: _Run) -> CompressionResult:
        """
        Try the lossless re-encode strategies and keep the smallest one

        Candidates are measured, not assumed: the unmodified re-encode, the
        re-encode with smoothing disabled (only meaningful when the working
        buffer was resampled) and, for large originals, a 20% downscale.
        """
        candidates: List[Tuple[str, CompressionAttempt]] = [
            ('optimized', self._encode(run.working, run.output_format, run.width, run.height)),
        ]
        if (run.width, run.height) != (run.source.width, run.source.height):
            pixels = self.codec.resize(run.source.pixels, run.width, run.height, smoothing=False)
            candidates.append(('reduced_smoothing',
                               self._encode(pixels, run.output_format, run.width, run.height)))
        if run.source.size_bytes > DOWNSCALE_MIN_ORIGINAL:
            candidates.append(('smaller_dimensions', self._encode_scaled(run, DOWNSCALE_FACTOR)))

        smaller = [(name, attempt) for name, attempt in candidates if attempt.size < run.source.size_bytes]
        if not smaller:
            return CompressionResult.keep_original(
                run.source, note="Original file kept (PNG compression would increase size)"
            )

        strategy, best = min(smaller, key=lambda item: item[1].size)
        note = "PNG optimized with reduced dimensions" if strategy == 'smaller_dimensions' else "PNG optimized"
        return self._result(run, best, note=note)

    def _lossless_quality(self, run: _Run) -> CompressionResult:
        lossless = self._lossless_reencode(run)
        if run.request.output_format is OutputFormat.ORIGINAL:
            return self._advise_lossy(run, lossless)
        return lossless

    def _advise_lossy(self, run: _Run, lossless: CompressionResult) -> CompressionResult:
        """Compare the lossless result against a JPEG and switch only on a clear win"""
        source_size = run.source.size_bytes
        should_try = (
            lossless.savings_percent < ADVISOR_MIN_SAVINGS
            or lossless.compressed_size_bytes >= source_size
            or source_size > ADVISOR_LARGE_ORIGINAL
        )
        if not should_try:
            return lossless

        quality = min(run.request.quality, ADVISOR_QUALITY_CAP)
        attempt = self._encode(run.working, ImageFormat.JPEG, run.width, run.height, quality)
        lossy_savings = savings_percent(source_size, attempt.size)

        if attempt.size < lossless.compressed_size_bytes and lossy_savings > lossless.savings_percent + ADVISOR_MARGIN:
            return self._result(
                run, attempt,
                note=f"Auto-converted to JPEG for better compression "
                     f"({lossy_savings:.1f}% vs {lossless.savings_percent:.1f}% as PNG)",
            )

        if lossless.data is run.source.data:
            return replace(lossless, note="PNG kept (no significant benefit from JPEG conversion)")
        return lossless

    def _lossless_target_size(self, run: _Run) -> CompressionResult:
        target = run.request.target_size_bytes

        if run.source.size_bytes <= target:
            result = self._lossless_reencode(run)
            return replace(result, note=f"{result.note}, already within {run.target_kb} KB target, no scaling needed")

        attempts: List[CompressionAttempt] = []
        for scale in SCALE_LADDER:
            if scale == 1.0:
                attempt = self._encode(run.working, run.output_format, run.width, run.height)
            else:
                attempt = self._encode_scaled(run, scale)
            if attempt.size <= target:
                return self._result(run, attempt, note=f"PNG compressed to {run.target_kb} KB ({scale:.0%} scale)")
            attempts.append(attempt)

        # Lossless output has a hard size floor; photographic content may only fit as JPEG
        if (run.request.output_format is OutputFormat.ORIGINAL
                and run.source.size_bytes > LOSSY_SUBSTITUTION_MIN_ORIGINAL):
            quality = SIZE_MODE_START_QUALITY * LOSSY_SUBSTITUTION_FACTOR
            attempt = self._encode(run.working, ImageFormat.JPEG, run.width, run.height, quality)
            if attempt.size <= target:
                return self._result(run, attempt, note=f"Auto-converted to JPEG to reach {run.target_kb} KB target")

        best = min(attempts, key=lambda a: a.size)
        if best.size < run.source.size_bytes:
            return self._result(
                run, best,
                note=f"Best PNG compression at {best.scale:.0%} scale (target {run.target_kb} KB not achievable)",
            )
        return CompressionResult.keep_original(run.source, note=f"Original kept ({run.target_kb} KB target not achievable)")


def compress(source: SourceImage, request: CompressionRequest, codec: Optional[ImageCodec] = None) -> CompressionResult:
    """Compress one decoded image with a throwaway controller"""
    return SizeTargetingController(codec).compress(source, request)
