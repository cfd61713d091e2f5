"""Base64 transport encoding for images sent inside chat requests."""

from __future__ import annotations

import base64
import binascii
import re

from ..domain.models import EncodedPayload, NormalizedImage

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.*)$", re.DOTALL)


def encode(image: NormalizedImage) -> EncodedPayload:
    return EncodedPayload(data=base64.b64encode(image.data).decode("ascii"), media_type=image.media_type)


def decode(payload: EncodedPayload) -> bytes:
    """Exact inverse of :func:`encode`; rejects non-base64 input."""
    try:
        return base64.b64decode(payload.data.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise ValueError(f"Invalid base64 payload: {exc}") from exc


def parse_data_url(url: str) -> EncodedPayload:
    match = _DATA_URL_RE.match(url or "")
    if not match:
        raise ValueError("Not a base64 data URL")
    return EncodedPayload(data=match.group("data"), media_type=match.group("mime"))
