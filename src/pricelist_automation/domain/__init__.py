"""Domain types, validation, and the error taxonomy."""

from .errors import (
    BackendError,
    BackendUnavailable,
    Cancelled,
    CompressionFailure,
    ConfigurationError,
    MalformedJson,
    NoJsonFound,
    PriceListError,
    RecoveryError,
    SchemaViolation,
    UnsupportedMediaType,
)
from .models import (
    AnalysisResult,
    CompressionResult,
    EncodedPayload,
    ExtractionPrompt,
    NormalizedImage,
    PriceItem,
    PriceList,
    RawImage,
    Recovery,
)

__all__ = [
    "AnalysisResult",
    "BackendError",
    "BackendUnavailable",
    "Cancelled",
    "CompressionFailure",
    "CompressionResult",
    "ConfigurationError",
    "EncodedPayload",
    "ExtractionPrompt",
    "MalformedJson",
    "NoJsonFound",
    "NormalizedImage",
    "PriceItem",
    "PriceList",
    "PriceListError",
    "RawImage",
    "Recovery",
    "RecoveryError",
    "SchemaViolation",
    "UnsupportedMediaType",
]
