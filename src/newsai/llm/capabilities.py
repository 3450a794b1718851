from __future__ import annotations

import logging
from typing import Any, Callable, Protocol

import jsonschema

from ..config import LlmConfig
from ..errors import GenerationError
from ..models import FactCheck, GeneratedContent
from ..utils import log_event, truncate_text
from .router import ProviderSettings, call_json
from .schemas import (
    FACT_CHECKS_SCHEMA,
    GENERATED_CONTENT_SCHEMA,
    SIMILARITY_SCHEMA,
    provider_schema,
)

Transport = Callable[..., Any]

GENERATE_SYSTEM_PROMPT = """You are a precise, neutral news editor. Only use the provided article text. Do not invent facts. If a fact is missing, say 'Not stated in article.' Preserve quoted text and attribute sources.

Output a JSON object with these fields:
- tldr: string (2 concise sentences summarizing the key points)
- bullets: string[] (4-8 factual bullet points)
- rendered_body: string (150-400 words, well-structured HTML with paragraphs)
- plain_body: string (same content as plain text)
- entities: object with orgs[], persons[], places[] arrays
- confidence: number (0-100, your confidence in the accuracy)

Guidelines:
- Add context and interpretation without inventing facts
- Use natural, engaging language while preserving factual accuracy
- Include proper attribution and quotes
- Structure content for readability
- Extract named entities accurately"""

VERIFY_SYSTEM_PROMPT = """You are a fact-checking expert. Compare the humanized text with the original article and identify any factual discrepancies.

Output a JSON array of fact-check objects with these fields:
- claim: string (the specific claim being checked)
- verified: boolean (true if the claim matches the original)
- confidence: number (0-100, confidence in the verification)

Focus on:
- Numbers, dates, and statistics
- Names of people and organizations
- Specific quotes and attributions
- Key facts and events"""

SIMILARITY_SYSTEM_PROMPT = """You are a text similarity analyzer. Compare the two texts and return a similarity score from 0-100.

0-30: Completely different content or meaning
31-60: Some similar themes but significantly different
61-80: Similar content with moderate rewording
81-95: Very similar with minor changes
96-100: Nearly identical text

Consider:
- Semantic meaning and key facts
- Structure and flow
- Specific details and examples
- Overall message and tone

Return only a JSON object with a "similarity" field containing the score."""


class TextGenerator(Protocol):
    def generate(self, title: str, text: str, source_url: str) -> GeneratedContent:
        ...


class SimilarityScorer(Protocol):
    def score(self, text_a: str, text_b: str) -> int:
        ...


class Verifier(Protocol):
    def verify(self, original: str, derived: str) -> list[FactCheck]:
        ...


def clamp_score(value: Any, default: int = 0) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:
        return default
    return max(0, min(100, int(round(number))))


class LlmCapabilities:
    """Generation, similarity and verification backed by one HTTP provider.

    ``generate`` raises GenerationError on any failure. ``score`` and
    ``verify`` degrade to the configured default similarity and to an empty
    list respectively, and never raise.
    """

    def __init__(
        self,
        config: LlmConfig,
        api_key: str | None,
        logger: logging.Logger,
        transport: Transport = call_json,
    ) -> None:
        self.config = config
        self.logger = logger
        self.settings = ProviderSettings(
            provider_type=config.provider,
            base_url=config.base_url,
            api_key=api_key,
            timeout_seconds=config.timeout_seconds,
        )
        self._transport = transport

    def generate(self, title: str, text: str, source_url: str) -> GeneratedContent:
        user = (
            f"Title: {title}\n\n"
            f"Source URL: {source_url}\n\n"
            f"Article Text:\n{text}\n\n"
            "Please humanize this article following the guidelines above."
        )
        try:
            parsed = self._transport(
                self.settings,
                self.config.generate_model,
                GENERATE_SYSTEM_PROMPT,
                user,
                provider_schema(GENERATED_CONTENT_SCHEMA),
            )
        except GenerationError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise GenerationError(f"generation_failed: {exc}") from exc
        try:
            jsonschema.validate(parsed, GENERATED_CONTENT_SCHEMA)
        except jsonschema.ValidationError as exc:
            raise GenerationError(f"incomplete_generation: {exc.message}") from exc
        entities = parsed["entities"]
        return GeneratedContent(
            tldr=parsed["tldr"],
            bullets=list(parsed["bullets"]),
            rendered_body=parsed["rendered_body"],
            plain_body=parsed["plain_body"],
            entities={
                "persons": list(entities.get("persons") or []),
                "orgs": list(entities.get("orgs") or []),
                "places": list(entities.get("places") or []),
            },
            confidence=float(parsed["confidence"]),
        )

    def score(self, text_a: str, text_b: str) -> int:
        limit = self.config.similarity_max_chars
        user = (
            f"Original Text:\n{truncate_text(text_a, limit)}\n\n"
            f"Humanized Text:\n{truncate_text(text_b, limit)}\n\n"
            "What is the similarity score?"
        )
        default = self.config.default_similarity
        try:
            parsed = self._transport(
                self.settings,
                self.config.check_model,
                SIMILARITY_SYSTEM_PROMPT,
                user,
                provider_schema(SIMILARITY_SCHEMA),
            )
            jsonschema.validate(parsed, SIMILARITY_SCHEMA)
        except Exception as exc:  # noqa: BLE001
            log_event(self.logger, logging.WARNING, "similarity_degraded", error=str(exc))
            return default
        return clamp_score(parsed["similarity"] or default, default)

    def verify(self, original: str, derived: str) -> list[FactCheck]:
        limit = self.config.fact_check_max_chars
        user = (
            f"Original Article:\n{truncate_text(original, limit)}\n\n"
            f"Humanized Version:\n{truncate_text(derived, limit)}\n\n"
            "Please fact-check the humanized version against the original."
        )
        try:
            parsed = self._transport(
                self.settings,
                self.config.check_model,
                VERIFY_SYSTEM_PROMPT,
                user,
                provider_schema(FACT_CHECKS_SCHEMA),
            )
            jsonschema.validate(parsed, FACT_CHECKS_SCHEMA)
        except Exception as exc:  # noqa: BLE001
            log_event(self.logger, logging.WARNING, "verification_degraded", error=str(exc))
            return []
        return [
            FactCheck(
                claim=item["claim"],
                verified=bool(item["verified"]),
                confidence=clamp_score(item["confidence"]),
            )
            for item in parsed
        ]
