"""End-to-end analysis of one price-list image."""

from __future__ import annotations

from typing import List, Optional

from ..config import Settings
from ..domain.errors import BackendUnavailable, ConfigurationError
from ..domain.models import AnalysisResult, RawImage
from ..logging import get_logger
from ..pipeline.encode import encode
from ..pipeline.normalize import CompressionOptions, compress, passthrough
from ..pipeline.prompt import PROMPT_TEMPLATE
from ..pipeline.recover import recover_detailed
from ..pipeline.request import CancelToken, ExtractionRequester, build_openai_client

LOG = get_logger("orchestrator-analyze")


class PriceListAnalyzer:
    """Wires compress -> encode -> request -> recover for a single image.

    Holds no per-analysis state; every call owns its intermediates. A
    compression failure degrades to the original image, every other failure
    propagates as its PriceListError subclass and no partial result is kept.
    """

    def __init__(
        self,
        requester: ExtractionRequester,
        *,
        options: Optional[CompressionOptions] = None,
        compress_images: bool = True,
        prompt_template: str = PROMPT_TEMPLATE,
    ) -> None:
        self.requester = requester
        self.options = options or CompressionOptions()
        self.compress_images = compress_images
        self.prompt_template = prompt_template

    def analyze(self, image: RawImage, *, cancel: Optional[CancelToken] = None) -> AnalysisResult:
        warnings: List[str] = []
        LOG.info("Analyzing %s (%s, %d bytes)", image.filename or "upload", image.media_type, image.size)

        if self.compress_images:
            compression = compress(image, self.options)
        else:
            compression = passthrough(image)
        if compression.fallback and compression.warning:
            warnings.append(compression.warning)

        payload = encode(compression.image)
        reply = self.requester.request(payload, self.prompt_template, cancel=cancel)
        recovery = recover_detailed(reply)
        if recovery.analyzed_at_defaulted:
            warnings.append("analyzedAt was missing or invalid and was set to the processing time.")

        LOG.info(
            "Analysis finished: category=%r items=%d strategy=%s warnings=%d",
            recovery.price_list.category, len(recovery.price_list.service), recovery.strategy, len(warnings),
        )
        return AnalysisResult(
            price_list=recovery.price_list,
            compression=compression,
            strategy=recovery.strategy,
            warnings=warnings,
        )


def build_analyzer(settings: Settings, *, compress_images: bool = True) -> PriceListAnalyzer:
    """Create an analyzer backed by the OpenAI API from resolved settings."""
    if not settings.api_key:
        LOG.error("OPENAI_API_KEY missing in env/.env; cannot run analysis")
        raise BackendUnavailable("OPENAI_API_KEY is not configured")
    try:
        options = settings.compression_options()
    except ValueError as exc:
        LOG.error("Invalid compression settings: %s", exc)
        raise ConfigurationError(f"Invalid compression settings: {exc}") from exc
    client = build_openai_client(
        settings.api_key,
        base_url=settings.base_url,
        timeout_seconds=settings.timeout_seconds,
    )
    requester = ExtractionRequester(client, model=settings.model, timeout=settings.timeout_seconds)
    LOG.info("Analyzer ready (model=%s, base_url=%s)", settings.model, settings.base_url or "default")
    return PriceListAnalyzer(
        requester,
        options=options,
        compress_images=compress_images,
    )
