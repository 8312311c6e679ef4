"""
Shipwatch agents.

- model_client: google-adk backed completion client and its error types
- shipment_extractor: generative fallback extraction for emails and screenshots
"""

from shipwatch.agents.model_client import (
    AgentModelClient,
    GenerativeExtractionError,
    ModelClient,
    RateLimitedError,
)
from shipwatch.agents.shipment_extractor import (
    GenerativeExtraction,
    combine_results,
    extract_from_image,
    extract_generative,
    generate_shipment_summary,
)

__all__ = [
    "AgentModelClient",
    "GenerativeExtractionError",
    "ModelClient",
    "RateLimitedError",
    "GenerativeExtraction",
    "combine_results",
    "extract_from_image",
    "extract_generative",
    "generate_shipment_summary",
]
