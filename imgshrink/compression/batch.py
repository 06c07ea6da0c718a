"""Batch compression with a bounded worker pool."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from tqdm import tqdm

from imgshrink.compression.controller import SizeTargetingController
from imgshrink.compression.errors import DecodeError, InvalidTarget
from imgshrink.compression.result import CompressionResult
from imgshrink.compression.types import CompressionRequest, ImageUpload, Method, SourceImage

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 4

CANCELLED = "Cancelled"


@dataclass(frozen=True)
class BatchItem:
    """One slot of a batch: either a result or an error tag, never both"""
    name: str
    result: Optional[CompressionResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


def _compress_one(controller: SizeTargetingController, upload: ImageUpload, request: CompressionRequest,
                  cancel_event: Optional[threading.Event]) -> BatchItem:
    if cancel_event is not None and cancel_event.is_set():
        return BatchItem(name=upload.name, error=CANCELLED)
    try:
        source = SourceImage.from_upload(upload, controller.codec)
    except DecodeError as e:
        logger.warning(f"Skipping {upload.name}: {e.reason}")
        return BatchItem(name=upload.name, error=f"DecodeError: {e.reason}")
    return BatchItem(name=upload.name, result=controller.compress(source, request))


def compress_all(
    uploads: Sequence[ImageUpload],
    request: CompressionRequest,
    controller: Optional[SizeTargetingController] = None,
    max_workers: int = DEFAULT_WORKERS,
    on_progress: Optional[Callable[[float], None]] = None,
    cancel_event: Optional[threading.Event] = None,
    show_progress: bool = False,
) -> List[BatchItem]:
    """
    Compress a batch of images

    Args:
        uploads: Undecoded images, in the order results should come back
        request: Applied to every image
        controller: Shared controller (a Pillow-backed one by default)
        max_workers: Upper bound on images processed at the same time
        on_progress: Called with the completed fraction (0.0-1.0) after each image
        cancel_event: When set, images that have not started are tagged as cancelled
        show_progress: Show a tqdm progress bar

    Returns:
        list: One BatchItem per upload, in input order

    Raises:
        InvalidTarget: if the request carries an unusable byte budget (before any image is touched)
    """
    if request.method is Method.TARGET_SIZE and (request.target_size_bytes or 0) <= 0:
        raise InvalidTarget(request.target_size_bytes)

    if not uploads:
        return []
    controller = controller or SizeTargetingController()
    items: List[Optional[BatchItem]] = [None] * len(uploads)

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        futures = {
            executor.submit(_compress_one, controller, upload, request, cancel_event): index
            for index, upload in enumerate(uploads)
        }
        completed = 0
        for future in tqdm(as_completed(futures), total=len(futures), desc="Compressing", disable=not show_progress):
            index = futures[future]
            try:
                items[index] = future.result()
            except Exception as e:
                # Anything but a decode failure is unexpected, but it stays in its slot
                logger.error(f"Error compressing {uploads[index].name}: {e}")
                items[index] = BatchItem(name=uploads[index].name, error=f"{type(e).__name__}: {e}")
            completed += 1
            if on_progress is not None:
                on_progress(completed / len(uploads))

    done = sum(1 for item in items if item.ok)
    logger.info(f"Batch finished: {done}/{len(uploads)} images compressed")
    return items
