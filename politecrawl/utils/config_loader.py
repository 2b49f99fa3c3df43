from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from politecrawl.errors import ConfigurationError
from politecrawl.models import SchedulerConfig


DEFAULT_USER_AGENT = "PoliteCrawl/1.0 (+https://github.com/politecrawl)"

PathLike = Union[str, Path]

# legacy variable name -> Config field
ENV_ALIASES = {
    "CONCURRENCY": "global_concurrency",
    "PER_DOMAIN_CONCURRENCY": "per_origin_concurrency",
    "REQUEST_DELAY_MS": "min_spacing_ms",
    "MAX_RETRIES": "max_retries",
    "BACKOFF_BASE_MS": "backoff_base_ms",
    "EXPONENTIAL_BACKOFF_BASE": "backoff_multiplier",
    "CRAWLER_USER_AGENT": "crawler_user_agent",
    "LOG_LEVEL": "log_level",
}


class Config(BaseSettings):
    global_concurrency: int = Field(3, gt=0)
    per_origin_concurrency: int = Field(1, gt=0)
    min_spacing_ms: int = Field(2000, ge=0)
    max_retries: int = Field(3, ge=0)
    backoff_base_ms: int = Field(2000, ge=0)
    backoff_multiplier: float = Field(2.0, ge=1)
    backoff_jitter: bool = False

    crawler_user_agent: str = DEFAULT_USER_AGENT
    request_timeout: float = Field(30.0, gt=0)
    robots_timeout: float = Field(5.0, gt=0)
    run_timeout: Optional[float] = Field(None, gt=0)

    urls_file: Optional[str] = None
    metrics_port: int = 8000
    log_level: str = "INFO"
    log_path: str = "data/logs/politecrawl.log"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def scheduler_config(self) -> SchedulerConfig:
        return SchedulerConfig(
            global_concurrency=self.global_concurrency,
            per_origin_concurrency=self.per_origin_concurrency,
            min_spacing_ms=self.min_spacing_ms,
            max_retries=self.max_retries,
            backoff_base_ms=self.backoff_base_ms,
            backoff_multiplier=self.backoff_multiplier,
        )


def load_environment(dotenv_path: PathLike | None = None, *, override: bool = False) -> bool:
    """Load variables from a .env file.

    The file is ``dotenv_path`` when given, else ``$POLITECRAWL_ENV_FILE``, else
    the first .env found walking up from the working directory. Returns True
    when a file was found and loaded.
    """

    path = dotenv_path or os.getenv("POLITECRAWL_ENV_FILE") or find_dotenv(usecwd=True)
    if not path or not Path(path).is_file():
        return False

    return load_dotenv(dotenv_path=path, override=override)


def _config_path() -> str:
    explicit = os.getenv("POLITECRAWL_CONFIG")
    if explicit:
        return explicit
    return os.path.join(os.path.dirname(__file__), "../config/config.yaml")


def _load_yaml_config(path: Optional[str] = None) -> Dict[str, Any]:
    config_path = path or _config_path()
    if not os.path.exists(config_path):
        return {}

    with open(config_path, "r") as f:
        return yaml.safe_load(f) or {}


def _field_env_values() -> Dict[str, str]:
    """Environment variables named after Config fields, e.g. BACKOFF_JITTER."""
    values: Dict[str, str] = {}
    for field_name in Config.model_fields:
        raw = os.getenv(field_name.upper())
        if raw not in (None, ""):
            values[field_name] = raw
    return values


def load_config(config_path: Optional[str] = None) -> Config:
    load_environment()
    file_data = _load_yaml_config(config_path)
    crawler_settings: Dict[str, Any] = file_data.get("crawler") or {}

    # precedence: legacy env names -> field-named env -> YAML crawler section -> defaults
    values: Dict[str, Any] = {
        key: value for key, value in crawler_settings.items() if value is not None
    }
    values.update(_field_env_values())
    for env_name, field_name in ENV_ALIASES.items():
        raw = os.getenv(env_name)
        if raw not in (None, ""):
            values[field_name] = raw

    timeout_ms = os.getenv("TIMEOUT_MS")
    if timeout_ms:
        try:
            values["request_timeout"] = float(timeout_ms) / 1000
        except ValueError as exc:
            raise ConfigurationError(f"TIMEOUT_MS must be a number, got {timeout_ms!r}") from exc

    try:
        return Config(**values)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid crawler configuration: {exc}") from exc

