from __future__ import annotations

from typing import Any

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

GENERATED_CONTENT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "tldr": {"type": "string", "minLength": 1},
        "bullets": {"type": "array", "items": {"type": "string"}, "minItems": 1},
        "rendered_body": {"type": "string", "minLength": 1},
        "plain_body": {"type": "string", "minLength": 1},
        "entities": {
            "type": "object",
            "properties": {
                "orgs": _STRING_LIST,
                "persons": _STRING_LIST,
                "places": _STRING_LIST,
            },
            "required": ["orgs", "persons", "places"],
        },
        "confidence": {"type": "number"},
    },
    "required": ["tldr", "bullets", "rendered_body", "plain_body", "entities", "confidence"],
}

SIMILARITY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {"similarity": {"type": "number"}},
    "required": ["similarity"],
}

FACT_CHECKS_SCHEMA: dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "claim": {"type": "string"},
            "verified": {"type": "boolean"},
            "confidence": {"type": "number"},
        },
        "required": ["claim", "verified", "confidence"],
    },
}

# Keywords the provider's structured-output schema understands.
_PROVIDER_KEYWORDS = {"type", "properties", "items", "required", "enum", "description"}


def provider_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Strip validation-only keywords before sending ``schema`` to a provider."""
    result: dict[str, Any] = {}
    for key, value in schema.items():
        if key not in _PROVIDER_KEYWORDS:
            continue
        if key == "properties":
            result[key] = {name: provider_schema(child) for name, child in value.items()}
        elif key == "items":
            result[key] = provider_schema(value)
        else:
            result[key] = value
    return result
