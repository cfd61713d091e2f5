import io
import os

import pytest
from PIL import Image

from pricelist_automation.domain.errors import CompressionFailure, UnsupportedMediaType
from pricelist_automation.domain.models import RawImage
from pricelist_automation.pipeline.normalize import (
    CompressionOptions,
    _encode,
    compress,
    fit_within,
    normalize,
)


def _image_bytes(width, height, *, fmt="JPEG", mode="RGB", quality=90, exif=None, noise=False):
    if noise:
        img = Image.frombytes("RGB", (width, height), os.urandom(width * height * 3))
    else:
        color = (200, 120, 40, 128) if mode == "RGBA" else (200, 120, 40)
        img = Image.new(mode, (width, height), color)
        for x in range(0, width, 7):
            for y in range(0, height, 11):
                img.putpixel((x, y), (0, 0, 0, 255) if mode == "RGBA" else (0, 0, 0))
    buf = io.BytesIO()
    kwargs = {}
    if fmt == "JPEG":
        kwargs["quality"] = quality
    if exif is not None:
        kwargs["exif"] = exif
    img.save(buf, format=fmt, **kwargs)
    return buf.getvalue()


def _open(data):
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


@pytest.mark.parametrize(
    "size, box, expected",
    [
        ((4000, 3000), (1920, 1920), (1920, 1440)),
        ((3000, 4000), (1920, 1920), (1440, 1920)),
        ((800, 600), (1920, 1920), (800, 600)),
        ((1000, 1000), (300, 100), (100, 100)),
    ],
)
def test_fit_within(size, box, expected):
    assert fit_within(*size, *box) == expected


@pytest.mark.parametrize(
    "size, options",
    [
        ((4000, 3000), CompressionOptions()),
        ((1200, 5000), CompressionOptions()),
        ((641, 479), CompressionOptions(max_width=100, max_height=50)),
        ((333, 777), CompressionOptions(max_width=128, max_height=128)),
    ],
)
def test_normalized_image_within_bounds_and_keeps_aspect_ratio(size, options):
    width, height = size
    raw = RawImage(data=_image_bytes(width, height), media_type="image/jpeg")

    out = normalize(raw, options)
    decoded = _open(out.data)

    assert decoded.size == (out.width, out.height)
    assert out.width <= options.max_width
    assert out.height <= options.max_height
    # within one pixel of rounding on the scaled side
    assert abs(out.width / out.height - width / height) <= (width / height) / min(out.width, out.height)


def test_large_png_is_converted_to_jpeg():
    data = _image_bytes(200, 200, fmt="PNG", noise=True)
    raw = RawImage(data=data, media_type="image/png")
    options = CompressionOptions(convert_size=1000)

    out = normalize(raw, options)

    assert out.media_type == "image/jpeg"
    assert _open(out.data).format == "JPEG"


def test_small_png_is_not_converted():
    data = _image_bytes(120, 80, fmt="PNG")
    raw = RawImage(data=data, media_type="image/png")

    out = normalize(raw, CompressionOptions())

    assert out.media_type == "image/png"
    assert _open(out.data).format == "PNG"


def test_type_not_in_convert_set_keeps_its_format():
    data = _image_bytes(200, 200, fmt="WEBP", noise=True)
    raw = RawImage(data=data, media_type="image/webp")

    out = normalize(raw, CompressionOptions(convert_size=10))

    assert out.media_type == "image/webp"


def test_transparent_png_converted_to_jpeg_is_flattened():
    data = _image_bytes(64, 64, fmt="PNG", mode="RGBA")
    raw = RawImage(data=data, media_type="image/png")

    out = normalize(raw, CompressionOptions(convert_size=1))

    assert out.media_type == "image/jpeg"
    assert _open(out.data).mode == "RGB"


def test_compliant_image_maps_to_itself():
    data = _image_bytes(320, 240, quality=40)
    raw = RawImage(data=data, media_type="image/jpeg")

    out = normalize(raw, CompressionOptions())

    assert out.data == data
    assert (out.width, out.height) == (320, 240)


def test_exif_orientation_is_applied_before_bounds():
    exif = Image.Exif()
    exif[0x0112] = 6  # rotate 90 degrees clockwise on display
    data = _image_bytes(400, 200, exif=exif.tobytes())
    raw = RawImage(data=data, media_type="image/jpeg")

    out = normalize(raw, CompressionOptions(max_width=1000, max_height=1000))

    assert (out.width, out.height) == (200, 400)


def test_media_type_guessed_from_filename():
    raw = RawImage(data=_image_bytes(50, 50), media_type=None, filename="menu.jpg")

    out = normalize(raw)

    assert out.media_type == "image/jpeg"


def test_non_image_raises_unsupported_media_type():
    raw = RawImage(data=b"%PDF-1.7 ...", media_type="application/pdf", filename="menu.pdf")

    with pytest.raises(UnsupportedMediaType):
        normalize(raw)
    with pytest.raises(UnsupportedMediaType):
        compress(raw)


def test_corrupt_image_raises_compression_failure():
    raw = RawImage(data=b"\x89PNG\r\n\x1a\nthis is not really a png", media_type="image/png")

    with pytest.raises(CompressionFailure):
        normalize(raw)


def test_compress_falls_back_to_original_bytes_on_failure():
    data = b"\xff\xd8\xff\xe0 truncated jpeg"
    raw = RawImage(data=data, media_type="image/jpeg")

    result = compress(raw)

    assert result.fallback is True
    assert result.image.data == data
    assert result.image.media_type == "image/jpeg"
    assert result.warning
    assert result.original_size == len(data)


def test_compress_success_is_not_a_fallback():
    raw = RawImage(data=_image_bytes(3000, 1000), media_type="image/jpeg")

    result = compress(raw)

    assert result.fallback is False
    assert result.warning is None
    assert result.image.width == 1920


def test_byte_budget_lowers_quality():
    data = _image_bytes(300, 300, quality=100)
    budget = len(_encode(_open(data), "image/jpeg", 0.5))
    raw = RawImage(data=data, media_type="image/jpeg")

    out = normalize(raw, CompressionOptions(max_bytes=budget))

    assert out.size <= budget


@pytest.mark.parametrize("quality", [0, -0.1, 1.5])
def test_invalid_quality_rejected(quality):
    with pytest.raises(ValueError):
        CompressionOptions(quality=quality)


def test_convert_types_are_normalized_to_lowercase():
    options = CompressionOptions(convert_types=["Image/PNG", " image/bmp "])

    assert options.convert_types == frozenset({"image/png", "image/bmp"})
