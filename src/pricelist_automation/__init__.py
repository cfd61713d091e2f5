"""
Price-list automation: photographed price list in, structured JSON out.

The pipeline compresses the image, sends it to a vision chat model with a
fixed extraction prompt, and recovers a validated PriceList from the reply.
"""

__version__ = "0.2.0"

__all__ = [
    "config",
    "logging",
    "domain",
    "pipeline",
    "orchestrator",
]
