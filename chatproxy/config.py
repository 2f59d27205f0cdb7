"""Configuration loading and validation"""

import os
import re
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, field_validator


class ServeConfig(BaseModel):
    """Server configuration"""

    host: str = "0.0.0.0"
    port: int = 8800
    debug: bool = False


class UpstreamConfig(BaseModel):
    """The single upstream chat-completion endpoint"""

    url: str
    timeout: Optional[float] = 600.0  # seconds; None disables the timeout

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        parts = urlsplit(value.strip())
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"upstream url must be an absolute http(s) URL: {value!r}")
        return value.strip()


class TranscriptConfig(BaseModel):
    """Transcript persistence settings"""

    log_dir: str = "./logs"
    queue_size: int = 1000  # pending transcripts before new ones are dropped
    workers: int = 4


class Config(BaseModel):
    """Main configuration"""

    serve: ServeConfig = ServeConfig()
    upstream: UpstreamConfig
    transcripts: TranscriptConfig = TranscriptConfig()


def substitute_env_vars(value: Any) -> Any:
    """Recursively substitute environment variables in configuration values

    Supports ${VAR_NAME} syntax for environment variable substitution
    """
    if isinstance(value, str):
        pattern = r"\$\{([^}]+)\}"
        matches = re.findall(pattern, value)

        for var_name in matches:
            env_value = os.getenv(var_name, "")
            value = value.replace(f"${{{var_name}}}", env_value)

        return value
    elif isinstance(value, dict):
        return {k: substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [substitute_env_vars(item) for item in value]
    else:
        return value


def merge_overrides(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Deep-merge override sections into base, skipping None values."""
    merged = dict(base)
    for key, value in overrides.items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_overrides(merged[key], value)
        elif isinstance(value, dict):
            merged[key] = merge_overrides({}, value)
        else:
            merged[key] = value
    return merged


def load_config(
    config_path: Optional[str] = None,
    env_file: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Config:
    """Load and validate configuration from an optional YAML file

    Args:
        config_path: Optional path to YAML configuration file
        env_file: Optional path to dotenv file
        overrides: Nested values (e.g. from CLI flags) applied over the file

    Returns:
        Validated Config object

    Raises:
        FileNotFoundError: If an explicitly given file doesn't exist
        ValueError: If configuration is invalid
    """
    if env_file:
        env_file = os.path.expanduser(env_file)
        if not os.path.exists(env_file):
            raise FileNotFoundError(f"Environment file not found: {env_file}")
        load_dotenv(dotenv_path=env_file)
    else:
        cwd_env_file = find_dotenv(usecwd=True)
        if cwd_env_file:
            load_dotenv(dotenv_path=cwd_env_file)

    raw_config: Dict[str, Any] = {}
    if config_path:
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        with open(config_path, "r") as f:
            raw_config = yaml.safe_load(f) or {}

    config_data = substitute_env_vars(raw_config)
    config_data = merge_overrides(config_data, overrides or {})

    try:
        return Config(**config_data)
    except Exception as e:
        raise ValueError(f"Invalid configuration: {e}")
