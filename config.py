"""
Runtime configuration for the policy server.

Every value comes from the environment (optionally seeded from a .env file).
Required values are validated eagerly so misconfiguration stops startup
instead of surfacing mid-request.
"""

import logging
import math
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from ai_services.exceptions import ConfigError

# Required Azure OpenAI settings
API_KEY_VAR = "PCheck_AOAI_APIKEY"
ENDPOINT_VAR = "PCheck_AOAI_ENDPOINT"
DEPLOYMENT_VAR = "PCheck_AOAI_EMBEDDINGDEPLOYMENTNAME"

# Policy data folder, e.g. PCheck_POLICY_DATA_FOLDER=../../preloaded_policies/
DATA_FOLDER_VAR = "PCheck_POLICY_DATA_FOLDER"

_TRUE_VALUES = {"true", "1", "yes", "on"}
_FALSE_VALUES = {"false", "0", "no", "off"}

# Embedding provider + model defaults
DEFAULT_EMBED_PROVIDER = "azure"  # azure|hash
DEFAULT_API_VERSION = "2024-02-01"
DEFAULT_EMBED_BATCH_SIZE = 16

# Define a dimensions override here (None = use model default).
# For OpenAI v3 embeddings: must be <= model's default dims
DEFAULT_EMBED_DIMENSIONS = None

DEFAULT_REQUEST_TIMEOUT_SEC = 30.0
DEFAULT_LOG_LEVEL = "INFO"


@dataclass(frozen=True)
class Settings:
    """Validated process configuration."""
    data_folder: str
    api_key: str = ""
    endpoint: str = ""
    deployment_name: str = ""
    api_version: str = DEFAULT_API_VERSION
    embed_provider: str = DEFAULT_EMBED_PROVIDER
    embed_dimensions: Optional[int] = DEFAULT_EMBED_DIMENSIONS
    embed_batch_size: int = DEFAULT_EMBED_BATCH_SIZE
    strict_parsing: bool = False
    strict_embedding: bool = False
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SEC
    match_timeout: Optional[float] = None
    requests_per_minute: Optional[int] = None
    tokens_per_minute: int = 90000
    log_level: str = DEFAULT_LOG_LEVEL


def get_required_config(key: str, environ: Optional[Mapping[str, str]] = None) -> str:
    """Return a required setting or fail naming the missing key."""
    env = os.environ if environ is None else environ
    value = (env.get(key) or "").strip()
    if not value:
        raise ConfigError(f'Missing configuration "{key}"')
    return value


def _get_bool(env: Mapping[str, str], key: str, default: bool = False) -> bool:
    raw = (env.get(key) or "").strip().lower()
    if not raw:
        return default
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ConfigError(f'Invalid value for configuration "{key}": {raw!r} (expected true or false)')


def _get_number(env: Mapping[str, str], key: str, cast, default=None):
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigError(f'Invalid value for configuration "{key}": {raw!r}') from None
    if not math.isfinite(value):
        raise ConfigError(f'Configuration "{key}" must be a finite number, got {raw!r}')
    if value <= 0:
        raise ConfigError(f'Configuration "{key}" must be positive, got {raw!r}')
    return value


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from the environment.

    When ``environ`` is None the process environment is used, after loading
    a .env file if one exists. The three Azure values are only required for
    the azure provider.
    """
    if environ is None:
        load_dotenv()
        env = os.environ
    else:
        env = environ

    provider = (env.get("PCheck_EMBED_PROVIDER") or DEFAULT_EMBED_PROVIDER).strip().lower()

    if provider == "azure":
        api_key = get_required_config(API_KEY_VAR, env)
        endpoint = get_required_config(ENDPOINT_VAR, env)
        deployment_name = get_required_config(DEPLOYMENT_VAR, env)
    else:
        api_key = (env.get(API_KEY_VAR) or "").strip()
        endpoint = (env.get(ENDPOINT_VAR) or "").strip()
        deployment_name = (env.get(DEPLOYMENT_VAR) or "").strip()

    data_folder = get_required_config(DATA_FOLDER_VAR, env)

    return Settings(
        data_folder=data_folder,
        api_key=api_key,
        endpoint=endpoint,
        deployment_name=deployment_name,
        api_version=(env.get("PCheck_AOAI_APIVERSION") or DEFAULT_API_VERSION).strip(),
        embed_provider=provider,
        embed_dimensions=_get_number(env, "PCheck_EMBED_DIMENSIONS", int),
        embed_batch_size=_get_number(env, "PCheck_EMBED_BATCH_SIZE", int, DEFAULT_EMBED_BATCH_SIZE),
        strict_parsing=_get_bool(env, "PCheck_STRICT_PARSING"),
        strict_embedding=_get_bool(env, "PCheck_STRICT_EMBEDDING"),
        request_timeout=_get_number(env, "PCheck_REQUEST_TIMEOUT_SEC", float, DEFAULT_REQUEST_TIMEOUT_SEC),
        match_timeout=_get_number(env, "PCheck_MATCH_TIMEOUT_SEC", float),
        requests_per_minute=_get_number(env, "PCheck_REQUESTS_PER_MINUTE", int),
        tokens_per_minute=_get_number(env, "PCheck_TOKENS_PER_MINUTE", int, 90000),
        log_level=(env.get("PCheck_LOG_LEVEL") or DEFAULT_LOG_LEVEL).strip().upper(),
    )


def configure_logging(level: str = DEFAULT_LOG_LEVEL):
    """Configure root logging for the entry points."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
