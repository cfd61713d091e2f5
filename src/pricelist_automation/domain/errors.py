"""Error taxonomy for the extraction pipeline.

Every failure a caller can see is a :class:`PriceListError` subclass with a
stable ``code`` and a ``user_message`` suitable for showing next to a
"try again" action. Only :class:`CompressionFailure` is recovered inside the
pipeline; the rest propagate unchanged.
"""

from __future__ import annotations


class PriceListError(Exception):
    code = "error"
    user_message = "Something went wrong while analyzing the image. Please try again."
    retryable = True

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.user_message)
        self.detail = detail or self.user_message

    def as_dict(self) -> dict:
        return {
            "error": self.code,
            "detail": self.detail,
            "message": self.user_message,
            "retryable": self.retryable,
        }


class UnsupportedMediaType(PriceListError):
    code = "unsupported_media_type"
    user_message = "Please choose an image file."
    retryable = False


class CompressionFailure(PriceListError):
    code = "compression_failure"
    user_message = "Image compression failed; the original image will be used."


class BackendUnavailable(PriceListError):
    code = "backend_unavailable"
    user_message = "The analysis service could not be reached. Please try again."


class BackendError(PriceListError):
    code = "backend_error"
    user_message = "The analysis service reported an error. Please try again."


class RecoveryError(PriceListError):
    """Base for failures turning a model reply into a price list."""

    code = "recovery_error"
    user_message = "The AI response was not in the expected format. Please try again."


class NoJsonFound(RecoveryError):
    code = "no_json_found"


class MalformedJson(RecoveryError):
    code = "malformed_json"


class SchemaViolation(RecoveryError):
    code = "schema_violation"


class Cancelled(PriceListError):
    code = "cancelled"
    user_message = "The analysis was cancelled."


class ConfigurationError(PriceListError):
    """Settings that cannot build a working analyzer (e.g. quality=0)."""

    code = "configuration_error"
    user_message = "The analysis service is misconfigured. Please check its settings."
    retryable = False


__all__ = [
    "PriceListError",
    "UnsupportedMediaType",
    "CompressionFailure",
    "BackendUnavailable",
    "BackendError",
    "RecoveryError",
    "NoJsonFound",
    "MalformedJson",
    "SchemaViolation",
    "Cancelled",
    "ConfigurationError",
]
