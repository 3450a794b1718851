from .capabilities import (
    LlmCapabilities,
    SimilarityScorer,
    TextGenerator,
    Verifier,
    clamp_score,
)
from .router import ProviderSettings, call_json

__all__ = [
    "LlmCapabilities",
    "ProviderSettings",
    "SimilarityScorer",
    "TextGenerator",
    "Verifier",
    "call_json",
    "clamp_score",
]
