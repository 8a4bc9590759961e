"""Runtime settings.

Values come from the environment (a local .env file is loaded first), and an
optional YAML file overrides them. YAML keys are the Settings field names:

    agent_model: gemini-3-flash-preview
    max_tool_calls: 8
    cache_ttl_seconds: 3600
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from priorauth.coverage.cms_client import CMS_API_BASE
from priorauth.coverage.guidelines_client import GUIDELINES_BASE
from priorauth.models.gemini import DEFAULT_MODEL


@dataclass(slots=True)
class Settings:
    google_api_key: str = ""
    agent_model: str = DEFAULT_MODEL
    extraction_model: str = DEFAULT_MODEL
    cms_base_url: str = CMS_API_BASE
    guidelines_base_url: str = GUIDELINES_BASE
    search_timeout: float = 30.0
    llm_timeout: float = 60.0
    max_tool_calls: int = 12
    cache_ttl_seconds: float | None = None
    usage_url: str = ""
    log_level: str = "INFO"
    log_json: bool = False


_ENV_VARS: dict[str, str] = {
    "google_api_key": "GOOGLE_API_KEY",
    "agent_model": "PRIORAUTH_AGENT_MODEL",
    "extraction_model": "PRIORAUTH_EXTRACTION_MODEL",
    "cms_base_url": "PRIORAUTH_CMS_BASE_URL",
    "guidelines_base_url": "PRIORAUTH_GUIDELINES_BASE_URL",
    "search_timeout": "PRIORAUTH_SEARCH_TIMEOUT",
    "llm_timeout": "PRIORAUTH_LLM_TIMEOUT",
    "max_tool_calls": "PRIORAUTH_MAX_TOOL_CALLS",
    "cache_ttl_seconds": "PRIORAUTH_CACHE_TTL_SECONDS",
    "usage_url": "PRIORAUTH_USAGE_URL",
    "log_level": "PRIORAUTH_LOG_LEVEL",
    "log_json": "PRIORAUTH_LOG_JSON",
}

_FLOAT_FIELDS = {"search_timeout", "llm_timeout"}
_INT_FIELDS = {"max_tool_calls"}
_OPTIONAL_FLOAT_FIELDS = {"cache_ttl_seconds"}
_BOOL_FIELDS = {"log_json"}


def _is_truthy(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _coerce(name: str, raw: Any) -> Any:
    if name in _BOOL_FIELDS:
        return raw if isinstance(raw, bool) else _is_truthy(str(raw))
    if name in _OPTIONAL_FLOAT_FIELDS:
        if raw is None or str(raw).strip().lower() in {"", "none", "null"}:
            return None
        return float(raw)
    if name in _FLOAT_FIELDS:
        return float(raw)
    if name in _INT_FIELDS:
        return int(raw)
    return str(raw)


def load_settings(
    config_path: str | Path | None = None,
    environ: dict[str, str] | None = None,
    load_env_file: bool = True,
) -> Settings:
    """Build Settings from environment variables, then YAML overrides.

    Raises ValueError for unknown YAML keys or values that cannot be coerced.
    """
    if load_env_file and environ is None:
        load_dotenv()
    env = os.environ if environ is None else environ

    values: dict[str, Any] = {}
    for name, var in _ENV_VARS.items():
        raw = env.get(var)
        if raw is not None and raw != "":
            values[name] = _coerce(name, raw)

    if config_path:
        with open(config_path) as f:
            overrides = yaml.safe_load(f) or {}
        if not isinstance(overrides, dict):
            raise ValueError(f"{config_path}: expected a mapping at the top level")
        known = {f.name for f in fields(Settings)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValueError(f"{config_path}: unknown settings {', '.join(unknown)}")
        for name, raw in overrides.items():
            values[name] = _coerce(name, raw)

    return Settings(**values)
