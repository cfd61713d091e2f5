"""Resize and recompress user images before they are sent to the model.

Proportional downscale into a bounding box, lossy re-encode at a fixed
quality, and PNG -> JPEG conversion for large files.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional, Tuple

from PIL import Image, ImageOps

from ..domain.errors import CompressionFailure, UnsupportedMediaType
from ..domain.models import CompressionResult, NormalizedImage, RawImage, guess_media_type
from ..logging import get_logger

LOG = get_logger("pipeline-normalize")

ALLOWED_MEDIA_TYPES: Tuple[str, ...] = ("image/jpeg", "image/png", "image/webp")
LOSSY_MEDIA_TYPES: FrozenSet[str] = frozenset({"image/jpeg", "image/webp"})
_PIL_FORMATS = {"image/jpeg": "JPEG", "image/png": "PNG", "image/webp": "WEBP"}
_EXIF_ORIENTATION = 0x0112
_MIN_BUDGET_QUALITY = 0.5


@dataclass(frozen=True)
class CompressionOptions:
    quality: float = 0.95
    max_width: int = 1920
    max_height: int = 1920
    convert_size: int = 1_000_000
    convert_types: FrozenSet[str] = frozenset({"image/png"})
    convert_to: str = "image/jpeg"
    max_bytes: Optional[int] = None

    def __post_init__(self) -> None:
        if not 0 < self.quality <= 1:
            raise ValueError(f"quality must be in (0, 1], got {self.quality}")
        if self.max_width <= 0 or self.max_height <= 0:
            raise ValueError("max_width and max_height must be positive")
        if self.convert_to not in ALLOWED_MEDIA_TYPES:
            raise ValueError(f"convert_to must be one of {ALLOWED_MEDIA_TYPES}")
        if self.max_bytes is not None and self.max_bytes <= 0:
            raise ValueError("max_bytes must be positive")
        object.__setattr__(self, "convert_types", _lower_set(self.convert_types))


def _lower_set(values: Iterable[str]) -> FrozenSet[str]:
    return frozenset(v.strip().lower() for v in values if v and v.strip())


def fit_within(width: int, height: int, max_width: int, max_height: int) -> Tuple[int, int]:
    """Scale (width, height) down proportionally to fit the box; never upscale."""
    scale = min(max_width / width, max_height / height, 1.0)
    if scale >= 1.0:
        return width, height
    return max(1, round(width * scale)), max(1, round(height * scale))


def _resolve_media_type(image: RawImage) -> str:
    media_type = (image.media_type or guess_media_type(image.filename) or "").strip().lower()
    if not media_type.startswith("image/"):
        raise UnsupportedMediaType(f"Expected an image, got {media_type or 'an unknown file type'}")
    return media_type


def _prepare_mode(img: Image.Image, target: str) -> Image.Image:
    has_alpha = img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info)
    if target == "image/jpeg":
        if has_alpha:
            rgba = img.convert("RGBA")
            canvas = Image.new("RGB", rgba.size, (255, 255, 255))
            canvas.paste(rgba, mask=rgba.getchannel("A"))
            return canvas
        if img.mode not in ("RGB", "L"):
            return img.convert("RGB")
        return img
    if target == "image/webp":
        if has_alpha:
            return img.convert("RGBA") if img.mode != "RGBA" else img
        return img.convert("RGB") if img.mode != "RGB" else img
    if img.mode not in ("1", "L", "LA", "P", "RGB", "RGBA", "I", "I;16"):
        return img.convert("RGBA" if has_alpha else "RGB")
    return img


def _encode(img: Image.Image, target: str, quality: float) -> bytes:
    buf = io.BytesIO()
    prepared = _prepare_mode(img, target)
    if target in LOSSY_MEDIA_TYPES:
        q = max(1, min(100, round(quality * 100)))
        prepared.save(buf, format=_PIL_FORMATS[target], quality=q, optimize=True)
    else:
        prepared.save(buf, format=_PIL_FORMATS[target], optimize=True)
    return buf.getvalue()


def _fit_budget(img: Image.Image, target: str, data: bytes, options: CompressionOptions) -> Tuple[bytes, str]:
    """Lower quality (and leave lossless formats) until the byte budget is met."""
    budget = options.max_bytes
    if budget is None or len(data) <= budget:
        return data, target
    if target not in LOSSY_MEDIA_TYPES:
        target = options.convert_to if options.convert_to in LOSSY_MEDIA_TYPES else "image/jpeg"
        data = _encode(img, target, options.quality)
    quality = options.quality
    while len(data) > budget and quality > _MIN_BUDGET_QUALITY:
        quality = max(_MIN_BUDGET_QUALITY, round(quality - 0.1, 2))
        data = _encode(img, target, quality)
        LOG.debug("Budget pass: quality=%.2f bytes=%d budget=%d", quality, len(data), budget)
    if len(data) > budget:
        LOG.warning("Could not meet byte budget %d (best effort %d bytes)", budget, len(data))
    return data, target


def normalize(image: RawImage, options: Optional[CompressionOptions] = None) -> NormalizedImage:
    """Return a bounded, re-encoded copy of ``image``.

    Raises UnsupportedMediaType for non-image input and CompressionFailure
    when the bytes cannot be decoded or re-encoded.
    """
    options = options or CompressionOptions()
    media_type = _resolve_media_type(image)

    target = media_type if media_type in ALLOWED_MEDIA_TYPES else "image/png"
    if image.size > options.convert_size and media_type in options.convert_types:
        target = options.convert_to

    try:
        with Image.open(io.BytesIO(image.data)) as src:
            src.load()
            orientation = src.getexif().get(_EXIF_ORIENTATION, 1)
            img = ImageOps.exif_transpose(src)

        width, height = img.size
        new_width, new_height = fit_within(width, height, options.max_width, options.max_height)
        resized = (new_width, new_height) != (width, height)
        if resized:
            img = img.resize((new_width, new_height), Image.Resampling.LANCZOS)

        data = _encode(img, target, options.quality)
        data, target = _fit_budget(img, target, data, options)
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as exc:
        raise CompressionFailure(f"Could not re-encode {media_type} image: {exc}") from exc

    untouched = not resized and target == media_type and orientation == 1
    if untouched and len(data) >= image.size:
        LOG.debug("Re-encoding would not shrink the image; keeping original bytes")
        return NormalizedImage(data=image.data, media_type=media_type, width=new_width, height=new_height)

    LOG.info(
        "Compressed image %s %dx%d (%d bytes) -> %s %dx%d (%d bytes)",
        media_type, width, height, image.size, target, new_width, new_height, len(data),
    )
    return NormalizedImage(data=data, media_type=target, width=new_width, height=new_height)


def passthrough(image: RawImage) -> CompressionResult:
    """Skip compression but keep the media-type check."""
    original = NormalizedImage(data=image.data, media_type=_resolve_media_type(image))
    return CompressionResult(image=original, original_size=image.size)


def compress(image: RawImage, options: Optional[CompressionOptions] = None) -> CompressionResult:
    """Best-effort ``normalize``: compression failures fall back to the original bytes.

    UnsupportedMediaType is not recovered.
    """
    try:
        normalized = normalize(image, options)
    except CompressionFailure as exc:
        warning = f"{exc.user_message} ({exc.detail})"
        LOG.warning("Compression failed; using original image: %s", exc.detail)
        original = NormalizedImage(data=image.data, media_type=_resolve_media_type(image))
        return CompressionResult(image=original, original_size=image.size, fallback=True, warning=warning)
    return CompressionResult(image=normalized, original_size=image.size)
