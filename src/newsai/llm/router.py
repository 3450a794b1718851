from __future__ import annotations

import json
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any

from ..errors import GenerationError


@dataclass(frozen=True)
class ProviderSettings:
    provider_type: str
    base_url: str
    api_key: str | None
    timeout_seconds: int


def call_json(
    settings: ProviderSettings,
    model_name: str,
    system: str,
    user: str,
    schema: dict[str, Any] | None = None,
) -> Any:
    """Run one prompt against the provider and decode its JSON reply."""
    raw = _call_provider(settings, model_name, system, user, schema)
    if not raw.strip():
        raise GenerationError("empty_response")
    try:
        return json.loads(_strip_code_fence(raw))
    except json.JSONDecodeError as exc:
        raise GenerationError(f"invalid_json: {exc}") from exc


def _call_provider(
    settings: ProviderSettings,
    model_name: str,
    system: str,
    user: str,
    schema: dict[str, Any] | None,
) -> str:
    base_url = settings.base_url or _default_base_url(settings.provider_type)
    if settings.provider_type == "openai_compatible":
        path = _join_url(base_url, "/chat/completions")
        payload: dict[str, Any] = {
            "model": model_name,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "response_format": {"type": "json_object"},
        }
        headers = _auth_headers(settings.provider_type, settings.api_key)
        response = _http_request("POST", path, headers, payload, settings.timeout_seconds)
        return _read_openai(response)
    if settings.provider_type == "google":
        path = _join_url(
            base_url,
            f"/models/{urllib.parse.quote(model_name)}:generateContent",
        )
        path = _append_key(path, settings.api_key)
        generation_config: dict[str, Any] = {"responseMimeType": "application/json"}
        if schema:
            generation_config["responseSchema"] = schema
        payload = {
            "systemInstruction": {"parts": [{"text": system}]},
            "contents": [{"role": "user", "parts": [{"text": user}]}],
            "generationConfig": generation_config,
        }
        response = _http_request("POST", path, {}, payload, settings.timeout_seconds)
        return _read_google(response)
    raise GenerationError(f"unsupported_provider_type {settings.provider_type}")


def _http_request(
    method: str,
    url: str,
    headers: dict[str, str],
    payload: dict[str, Any] | None,
    timeout: int,
) -> dict[str, Any]:
    data = json.dumps(payload).encode("utf-8") if payload is not None else None
    request = urllib.request.Request(url, data=data, method=method)
    request.add_header("Content-Type", "application/json")
    for key, value in headers.items():
        request.add_header(key, value)
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        raw = exc.read().decode("utf-8", errors="ignore")
        raise GenerationError(f"http_error {exc.code}: {raw[:500]}") from exc
    except urllib.error.URLError as exc:
        raise GenerationError(f"network_error: {exc}") from exc
    except (TimeoutError, OSError) as exc:
        raise GenerationError(f"network_error: {exc}") from exc
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise GenerationError(f"invalid_provider_response: {raw[:200]}") from exc


def _read_openai(response: dict[str, Any]) -> str:
    choices = response.get("choices") or []
    if not choices:
        raise GenerationError("openai_missing_choices")
    return choices[0].get("message", {}).get("content") or ""


def _read_google(response: dict[str, Any]) -> str:
    candidates = response.get("candidates") or []
    if not candidates:
        raise GenerationError("google_missing_candidates")
    parts = candidates[0].get("content", {}).get("parts", [])
    if not parts:
        raise GenerationError("google_missing_parts")
    return "".join(part.get("text") or "" for part in parts)


def _auth_headers(provider_type: str, api_key: str | None) -> dict[str, str]:
    if not api_key:
        return {}
    if provider_type == "openai_compatible":
        return {"Authorization": f"Bearer {api_key}"}
    return {}


def _default_base_url(provider_type: str) -> str:
    if provider_type == "openai_compatible":
        return "https://api.openai.com/v1"
    if provider_type == "google":
        return "https://generativelanguage.googleapis.com/v1beta"
    return ""


def _append_key(url: str, api_key: str | None) -> str:
    if not api_key:
        return url
    parsed = urllib.parse.urlsplit(url)
    query = urllib.parse.parse_qsl(parsed.query, keep_blank_values=True)
    query.append(("key", api_key))
    return urllib.parse.urlunsplit(
        (parsed.scheme, parsed.netloc, parsed.path, urllib.parse.urlencode(query), parsed.fragment)
    )


def _join_url(base: str, path: str) -> str:
    return base.rstrip("/") + path


def _strip_code_fence(raw: str) -> str:
    text = raw.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()
