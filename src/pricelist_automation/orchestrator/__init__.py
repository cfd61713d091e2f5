"""High-level orchestration for the price-list extraction pipeline."""

from .analyze import PriceListAnalyzer, build_analyzer

__all__ = [
    "PriceListAnalyzer",
    "build_analyzer",
]
