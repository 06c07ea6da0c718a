import threading

import pytest

from conftest import make_image_bytes
from imgshrink.compression.batch import CANCELLED, compress_all
from imgshrink.compression.codec import PillowCodec
from imgshrink.compression.controller import SizeTargetingController
from imgshrink.compression.errors import InvalidTarget
from imgshrink.compression.types import CompressionRequest, ImageUpload, Method


def make_uploads(count, corrupt_at=()):
    uploads = []
    for i in range(count):
        if i in corrupt_at:
            uploads.append(ImageUpload(name=f"img{i}.png", data=b"definitely not a png", media_type="image/png"))
        else:
            data = make_image_bytes(48, 32, 'PNG', seed=i)
            uploads.append(ImageUpload(name=f"img{i}.png", data=data, media_type="image/png"))
    return uploads


class CancellingCodec(PillowCodec):
    """Sets the cancel event as soon as the first image is decoded"""

    def __init__(self, event):
        self.event = event

    def decode(self, data, name='image'):
        decoded = super().decode(data, name)
        self.event.set()
        return decoded


def test_corrupt_image_only_fails_its_own_slot():
    uploads = make_uploads(10, corrupt_at={3})
    items = compress_all(uploads, CompressionRequest(), max_workers=4)

    assert [item.name for item in items] == [upload.name for upload in uploads]
    assert sum(1 for item in items if item.ok) == 9
    assert not items[3].ok
    assert items[3].error.startswith("DecodeError")
    assert items[3].result is None


def test_progress_is_monotonic_and_completes():
    progress = []
    compress_all(make_uploads(6), CompressionRequest(), max_workers=3, on_progress=progress.append)

    assert len(progress) == 6
    assert progress == sorted(progress)
    assert progress[-1] == pytest.approx(1.0)


def test_empty_batch():
    progress = []
    assert compress_all([], CompressionRequest(), on_progress=progress.append) == []
    assert progress == []


def test_cancel_before_start_tags_every_image():
    event = threading.Event()
    event.set()
    items = compress_all(make_uploads(3), CompressionRequest(), cancel_event=event)

    assert [item.error for item in items] == [CANCELLED] * 3


def test_cancel_mid_run_keeps_finished_results():
    event = threading.Event()
    controller = SizeTargetingController(CancellingCodec(event))
    items = compress_all(make_uploads(4), CompressionRequest(), controller=controller,
                         max_workers=1, cancel_event=event)

    assert items[0].ok
    assert [item.error for item in items[1:]] == [CANCELLED] * 3


def test_invalid_target_rejected_before_any_image():
    class Exploding:
        codec = None

        def compress(self, source, request):
            raise AssertionError("should not be called")

    request = CompressionRequest(method=Method.TARGET_SIZE, target_size_bytes=1)
    object.__setattr__(request, 'target_size_bytes', 0)
    with pytest.raises(InvalidTarget):
        compress_all(make_uploads(2), request, controller=Exploding())


def test_unexpected_errors_stay_in_their_slot():
    class Flaky(SizeTargetingController):
        def compress(self, source, request):
            if source.name == "img1.png":
                raise RuntimeError("boom")
            return super().compress(source, request)

    items = compress_all(make_uploads(3), CompressionRequest(), controller=Flaky())

    assert items[0].ok and items[2].ok
    assert items[1].error == "RuntimeError: boom"


def test_target_size_batch_results_report_notes():
    request = CompressionRequest.from_options(method="targetSize", max_file_size_kb=2)
    items = compress_all(make_uploads(2), request)

    for item in items:
        assert item.ok
        assert item.result.note
        assert item.result.compressed_size_bytes == len(item.result.data)
