import io

import pytest
from PIL import Image

from conftest import make_image_bytes
from imgshrink.compression.codec import PillowCodec, to_pil_quality
from imgshrink.compression.controller import SizeTargetingController
from imgshrink.compression.errors import DecodeError
from imgshrink.compression.types import CompressionRequest, ImageFormat, SourceImage


@pytest.fixture
def codec():
    return PillowCodec()


@pytest.mark.parametrize("fmt,expected", [
    ('PNG', ImageFormat.PNG),
    ('JPEG', ImageFormat.JPEG),
    ('WEBP', ImageFormat.WEBP),
    ('GIF', ImageFormat.GIF),
    ('BMP', ImageFormat.BMP),
])
def test_decode_detects_format_and_size(codec, fmt, expected):
    decoded = codec.decode(make_image_bytes(40, 30, fmt), name=f"a.{fmt.lower()}")

    assert decoded.format is expected
    assert (decoded.width, decoded.height) == (40, 30)


@pytest.mark.parametrize("data", [b"", b"not an image at all", b"\x89PNG\r\n\x1a\n"])
def test_decode_rejects_garbage(codec, data):
    with pytest.raises(DecodeError) as excinfo:
        codec.decode(data, name="broken.png")
    assert excinfo.value.name == "broken.png"


def test_decode_rejects_truncated_jpeg(codec, jpeg_bytes):
    with pytest.raises(DecodeError):
        codec.decode(jpeg_bytes[:len(jpeg_bytes) // 3], name="cut.jpg")


def test_decode_applies_exif_orientation(codec):
    image = Image.new('RGB', (40, 20), (200, 10, 10))
    exif = image.getexif()
    exif[0x0112] = 6  # rotate 90 on display
    buffer = io.BytesIO()
    image.save(buffer, format='JPEG', exif=exif)

    decoded = codec.decode(buffer.getvalue())
    assert (decoded.width, decoded.height) == (20, 40)


def test_resize_with_and_without_smoothing(codec, png_bytes):
    pixels = codec.decode(png_bytes).pixels

    assert codec.resize(pixels, 32, 24).size == (32, 24)
    assert codec.resize(pixels, 32, 24, smoothing=False).size == (32, 24)
    assert codec.resize(pixels, 64, 48) is pixels


def test_encode_jpeg_flattens_alpha(codec, rgba_png_bytes):
    pixels = codec.decode(rgba_png_bytes).pixels
    data = codec.encode(pixels, ImageFormat.JPEG, 0.8)

    with Image.open(io.BytesIO(data)) as image:
        assert image.format == 'JPEG'
        assert image.mode == 'RGB'


@pytest.mark.parametrize("image_format", [ImageFormat.JPEG, ImageFormat.WEBP, ImageFormat.PNG, ImageFormat.TIFF])
def test_encode_round_trips_through_decode(codec, png_bytes, image_format):
    pixels = codec.decode(png_bytes).pixels
    decoded = codec.decode(codec.encode(pixels, image_format, 0.7))

    assert decoded.format is image_format
    assert (decoded.width, decoded.height) == (64, 48)


def test_lower_quality_gives_smaller_jpeg(codec, png_bytes):
    pixels = codec.decode(png_bytes).pixels
    assert len(codec.encode(pixels, ImageFormat.JPEG, 0.2)) < len(codec.encode(pixels, ImageFormat.JPEG, 0.9))


def test_encode_rejects_unsupported_format(codec, png_bytes):
    pixels = codec.decode(png_bytes).pixels
    with pytest.raises(ValueError):
        codec.encode(pixels, ImageFormat.GIF)


@pytest.mark.parametrize("quality,expected", [(None, 75), (0.0, 1), (0.8, 80), (0.555, 56), (1.0, 100), (1.5, 100)])
def test_to_pil_quality(quality, expected):
    assert to_pil_quality(quality) == expected


def test_large_photo_is_bounded_and_shrunk(codec):
    data = make_image_bytes(3000, 2000, 'JPEG', quality=95)
    source = SourceImage.from_bytes("big.jpg", data, codec)

    result = SizeTargetingController(codec).compress(source, CompressionRequest(quality=0.8))

    assert (result.width, result.height) == (1620, 1080)
    assert result.format is ImageFormat.JPEG
    assert result.filename == "big.jpg"
    assert result.savings_percent > 0
    assert codec.decode(result.data).width == 1620


def test_png_target_size_end_to_end(codec):
    data = make_image_bytes(400, 300, 'PNG')
    source = SourceImage.from_bytes("noise.png", data, codec)
    request = CompressionRequest.from_options(method="targetSize", max_file_size_kb=100, output_format="png")

    result = SizeTargetingController(codec).compress(source, request)

    assert result.format is ImageFormat.PNG
    assert result.compressed_size_bytes == len(result.data)
    assert result.compressed_size_bytes <= 100 * 1024 or "not achievable" in result.note
