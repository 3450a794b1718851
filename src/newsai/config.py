from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any

import yaml


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class PathsConfig:
    data_dir: str
    state_db: str


@dataclass(frozen=True)
class HttpConfig:
    timeout_seconds: int
    user_agent: str


@dataclass(frozen=True)
class UrlNormalizationConfig:
    strip_tracking_params: bool
    tracking_params: list[str]


@dataclass(frozen=True)
class IngestConfig:
    http: HttpConfig
    max_entries: int
    url_normalization: UrlNormalizationConfig


@dataclass(frozen=True)
class ExtractionConfig:
    http: HttpConfig
    min_text_length: int


@dataclass(frozen=True)
class JobsConfig:
    max_attempts: int
    batch_size: int
    poll_interval_seconds: float
    error_backoff_seconds: float
    processing_timeout_seconds: int


@dataclass(frozen=True)
class SchedulerConfig:
    fetch_interval_minutes: int
    initial_delay_seconds: float
    cleanup_interval_hours: int
    raw_text_retention_days: int
    job_retention_days: int


@dataclass(frozen=True)
class LlmConfig:
    provider: str
    base_url: str
    generate_model: str
    check_model: str
    timeout_seconds: int
    max_input_chars: int
    fact_check_max_chars: int
    similarity_max_chars: int
    default_similarity: int


@dataclass(frozen=True)
class Config:
    paths: PathsConfig
    ingest: IngestConfig
    extraction: ExtractionConfig
    jobs: JobsConfig
    scheduler: SchedulerConfig
    llm: LlmConfig


DEFAULT_CONFIG: dict[str, Any] = {
    "paths": {
        "data_dir": "/data",
        "state_db": "/data/state.sqlite3",
    },
    "ingest": {
        "http": {
            "timeout_seconds": 20,
            "user_agent": "NewsAI Bot 1.0 (contact@newsai.com)",
        },
        "max_entries": 20,
        "url_normalization": {
            "strip_tracking_params": True,
            "tracking_params": [
                "utm_source",
                "utm_medium",
                "utm_campaign",
                "utm_term",
                "utm_content",
            ],
        },
    },
    "extraction": {
        "http": {
            "timeout_seconds": 30,
            "user_agent": "Mozilla/5.0 (compatible; NewsAI Bot/1.0; +https://newsai.com/bot)",
        },
        "min_text_length": 200,
    },
    "jobs": {
        "max_attempts": 3,
        "batch_size": 10,
        "poll_interval_seconds": 5.0,
        "error_backoff_seconds": 10.0,
        "processing_timeout_seconds": 900,
    },
    "scheduler": {
        "fetch_interval_minutes": 30,
        "initial_delay_seconds": 5.0,
        "cleanup_interval_hours": 24,
        "raw_text_retention_days": 7,
        "job_retention_days": 30,
    },
    "llm": {
        "provider": "google",
        "base_url": "",
        "generate_model": "gemini-2.5-pro",
        "check_model": "gemini-2.5-flash",
        "timeout_seconds": 60,
        "max_input_chars": 12000,
        "fact_check_max_chars": 8000,
        "similarity_max_chars": 6000,
        "default_similarity": 50,
    },
}

LLM_API_KEY_ENV = ("NEWSAI_LLM_API_KEY", "GEMINI_API_KEY", "GOOGLE_AI_API_KEY")


def load_config(path: str | None = None) -> Config:
    cfg = _deep_copy(DEFAULT_CONFIG)
    path = path or os.environ.get("NEWSAI_CONFIG") or None
    if path:
        cfg = _deep_merge(cfg, _read_yaml(path))
    _apply_env_overrides(cfg)
    errors = validate_config(cfg)
    if errors:
        raise ConfigError("Invalid config: " + "; ".join(errors))
    return _build_config(cfg)


def resolve_llm_api_key() -> str | None:
    for name in LLM_API_KEY_ENV:
        value = os.environ.get(name, "").strip()
        if value:
            return value
    return None


def _read_yaml(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except OSError as exc:
        raise ConfigError(f"Unable to read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def _apply_env_overrides(cfg: dict[str, Any]) -> None:
    data_dir = os.environ.get("NEWSAI_DATA_DIR", "").strip()
    if data_dir:
        cfg["paths"]["data_dir"] = data_dir
        cfg["paths"]["state_db"] = os.path.join(data_dir, "state.sqlite3")
    base_url = os.environ.get("NEWSAI_LLM_BASE_URL", "").strip()
    if base_url:
        cfg["llm"]["base_url"] = base_url


def validate_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config", errors)
    if not errors:
        if cfg["jobs"]["max_attempts"] < 1:
            errors.append("config.jobs.max_attempts must be at least 1")
        if cfg["jobs"]["batch_size"] < 1:
            errors.append("config.jobs.batch_size must be at least 1")
        if cfg["jobs"]["processing_timeout_seconds"] < 1:
            errors.append("config.jobs.processing_timeout_seconds must be at least 1")
        if cfg["llm"]["provider"] not in {"google", "openai_compatible"}:
            errors.append("config.llm.provider must be google or openai_compatible")
    return errors


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, list):
        if not isinstance(value, list):
            errors.append(f"{path} must be a list")
            return
        for item in value:
            if not isinstance(item, str):
                errors.append(f"{path} must be a list of strings")
                break
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{path} must be an integer")
        return
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"{path} must be a number")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")


def _build_config(cfg: dict[str, Any]) -> Config:
    paths_cfg = cfg["paths"]
    ingest_cfg = cfg["ingest"]
    extraction_cfg = cfg["extraction"]
    jobs_cfg = cfg["jobs"]
    scheduler_cfg = cfg["scheduler"]
    llm_cfg = cfg["llm"]

    paths = PathsConfig(
        data_dir=str(paths_cfg["data_dir"]),
        state_db=str(paths_cfg["state_db"]),
    )

    url_norm_cfg = ingest_cfg["url_normalization"]
    ingest = IngestConfig(
        http=_build_http(ingest_cfg["http"]),
        max_entries=int(ingest_cfg["max_entries"]),
        url_normalization=UrlNormalizationConfig(
            strip_tracking_params=bool(url_norm_cfg["strip_tracking_params"]),
            tracking_params=list(url_norm_cfg["tracking_params"]),
        ),
    )

    extraction = ExtractionConfig(
        http=_build_http(extraction_cfg["http"]),
        min_text_length=int(extraction_cfg["min_text_length"]),
    )

    jobs = JobsConfig(
        max_attempts=int(jobs_cfg["max_attempts"]),
        batch_size=int(jobs_cfg["batch_size"]),
        poll_interval_seconds=float(jobs_cfg["poll_interval_seconds"]),
        error_backoff_seconds=float(jobs_cfg["error_backoff_seconds"]),
        processing_timeout_seconds=int(jobs_cfg["processing_timeout_seconds"]),
    )

    scheduler = SchedulerConfig(
        fetch_interval_minutes=int(scheduler_cfg["fetch_interval_minutes"]),
        initial_delay_seconds=float(scheduler_cfg["initial_delay_seconds"]),
        cleanup_interval_hours=int(scheduler_cfg["cleanup_interval_hours"]),
        raw_text_retention_days=int(scheduler_cfg["raw_text_retention_days"]),
        job_retention_days=int(scheduler_cfg["job_retention_days"]),
    )

    llm = LlmConfig(
        provider=str(llm_cfg["provider"]),
        base_url=str(llm_cfg["base_url"]),
        generate_model=str(llm_cfg["generate_model"]),
        check_model=str(llm_cfg["check_model"]),
        timeout_seconds=int(llm_cfg["timeout_seconds"]),
        max_input_chars=int(llm_cfg["max_input_chars"]),
        fact_check_max_chars=int(llm_cfg["fact_check_max_chars"]),
        similarity_max_chars=int(llm_cfg["similarity_max_chars"]),
        default_similarity=int(llm_cfg["default_similarity"]),
    )

    return Config(
        paths=paths,
        ingest=ingest,
        extraction=extraction,
        jobs=jobs,
        scheduler=scheduler,
        llm=llm,
    )


def _build_http(http_cfg: dict[str, Any]) -> HttpConfig:
    return HttpConfig(
        timeout_seconds=int(http_cfg["timeout_seconds"]),
        user_agent=str(http_cfg["user_agent"]),
    )


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _deep_copy(value: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(value))
