from __future__ import annotations

import json
import mimetypes
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


# ---------- images ----------


@dataclass(frozen=True)
class RawImage:
    """Image bytes as supplied by the user, before any processing."""

    data: bytes
    media_type: Optional[str]
    filename: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, path: str, media_type: Optional[str] = None) -> "RawImage":
        with open(path, "rb") as f:
            data = f.read()
        filename = os.path.basename(path)
        return cls(data=data, media_type=media_type or guess_media_type(filename), filename=filename)


def guess_media_type(filename: Optional[str]) -> Optional[str]:
    if not filename:
        return None
    mime, _ = mimetypes.guess_type(filename)
    if not mime:
        ext = os.path.splitext(filename)[1].lower()
        if ext in {".jpg", ".jpeg", ".jpe", ".jfif"}:
            mime = "image/jpeg"
        elif ext == ".webp":
            mime = "image/webp"
    return mime


@dataclass(frozen=True)
class NormalizedImage:
    """Image ready for encoding; dimensions are unknown for fallback images."""

    data: bytes
    media_type: str
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class CompressionResult:
    """Outcome of best-effort compression.

    ``image`` is always usable. When ``fallback`` is true it holds the original
    bytes and ``warning`` explains why compression was skipped.
    """

    image: NormalizedImage
    original_size: int
    fallback: bool = False
    warning: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "media_type": self.image.media_type,
            "width": self.image.width,
            "height": self.image.height,
            "original_bytes": self.original_size,
            "bytes": self.image.size,
            "fallback": self.fallback,
        }


@dataclass(frozen=True)
class EncodedPayload:
    data: str
    media_type: str

    def data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.data}"


@dataclass(frozen=True)
class ExtractionPrompt:
    """One instruction-text part followed by one image part."""

    version: str
    instruction: str
    image: EncodedPayload

    def content_parts(self) -> List[Dict[str, Any]]:
        return [
            {"type": "text", "text": self.instruction},
            {"type": "image_url", "image_url": {"url": self.image.data_url()}},
        ]

    def messages(self) -> List[Dict[str, Any]]:
        return [{"role": "user", "content": self.content_parts()}]


# ---------- price list ----------


@dataclass(frozen=True)
class PriceItem:
    name: str
    price: str
    original_price: Optional[str] = None
    group: Optional[str] = None

    def as_dict(self) -> Dict[str, str]:
        out = {"name": self.name, "price": self.price}
        if self.original_price is not None:
            out["originalPrice"] = self.original_price
        if self.group is not None:
            out["group"] = self.group
        return out


@dataclass(frozen=True)
class PriceList:
    category: str
    service: Tuple[PriceItem, ...]
    analyzed_at: str

    def as_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "service": [item.as_dict() for item in self.service],
            "analyzedAt": self.analyzed_at,
        }

    def to_json(self, *, indent: Optional[int] = None) -> str:
        return json.dumps(self.as_dict(), ensure_ascii=False, indent=indent)


@dataclass(frozen=True)
class Recovery:
    price_list: PriceList
    strategy: str
    analyzed_at_defaulted: bool = False


@dataclass
class AnalysisResult:
    price_list: PriceList
    compression: CompressionResult
    strategy: str
    warnings: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "result": self.price_list.as_dict(),
            "compression": self.compression.as_dict(),
            "strategy": self.strategy,
            "warnings": list(self.warnings),
        }
