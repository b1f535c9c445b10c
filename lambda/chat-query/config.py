"""
Configuration for the chat-query Lambda.

Settings come from environment variables. Secrets that are not present in the
environment can be read from SSM Parameter Store under /{ENV}/{APP_NAME}/...
Settings are loaded once per container and reused by later invocations.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

import boto3
from botocore.exceptions import ClientError

from errors import ConfigurationError

logger = logging.getLogger()

# Environment variables
ENV = os.environ.get("ENV", "dev")
APP_NAME = os.environ.get("APP_NAME", "chat-query")

# Accepted names for the MongoDB connection string, checked in order
MONGODB_URI_ENV_VARS = ("MONGODB_URI", "MONGO_URI", "DATABASE_URL")

DEFAULT_BEDROCK_MODEL_ID = "us.anthropic.claude-sonnet-4-5-20250929-v1:0"
DEFAULT_OPENAI_MODEL_ID = "gpt-4"

LLM_PROVIDERS = ("bedrock", "openai")
RESPONSE_SHAPES = ("full", "insightsOnly")
STORE_ACCESS_MODES = ("raw", "schema")

_ssm_client = None
_settings = None


@dataclass(frozen=True)
class Settings:
    """Resolved configuration for one Lambda container."""

    env: str
    app_name: str
    mongodb_uri: str
    mongodb_db_name: Optional[str]
    mongodb_collection: str
    mongodb_timeout_ms: int
    llm_provider: str
    llm_model_id: str
    llm_temperature: float
    llm_max_tokens: int
    llm_min_interval_ms: int
    openai_api_key: Optional[str]
    response_shape: str
    store_access: str
    max_results: int


# ============================================================================
# SSM Parameter Store
# ============================================================================


def _get_ssm_client():
    global _ssm_client
    if _ssm_client is None:
        _ssm_client = boto3.client("ssm")
    return _ssm_client


def get_ssm_parameter(param_name: str) -> str:
    """
    Fetch a SecureString parameter from SSM Parameter Store.

    Args:
        param_name: Full parameter name (e.g., '/dev/chat-query/mongodb/uri')

    Returns:
        str: Decrypted parameter value

    Raises:
        ConfigurationError: If the parameter is missing or empty
    """
    try:
        response = _get_ssm_client().get_parameter(
            Name=param_name,
            WithDecryption=True
        )
    except ClientError as e:
        logger.error(f"[config] Failed to retrieve SSM parameter {param_name}: {e}")
        raise ConfigurationError(f"Unable to read SSM parameter {param_name}") from e

    value = response.get("Parameter", {}).get("Value")
    if not value:
        raise ConfigurationError(f"SSM parameter {param_name} is empty")

    logger.info(f"[config] Retrieved parameter from SSM: {param_name}")
    return value


# ============================================================================
# Environment parsing
# ============================================================================


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")
    if value < 0:
        raise ConfigurationError(f"{name} must not be negative, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _env_choice(name: str, default: str, choices: tuple) -> str:
    value = os.environ.get(name, "").strip() or default
    if value not in choices:
        raise ConfigurationError(
            f"{name} must be one of {', '.join(choices)}, got {value!r}"
        )
    return value


def resolve_mongodb_uri(env: str = ENV, app_name: str = APP_NAME) -> str:
    """
    Find the MongoDB connection string.

    Environment variables win. When none is set and USE_SSM_SECRETS is on,
    the URI is read from /{env}/{app_name}/mongodb/uri.

    Returns:
        str: Connection string, or "" when nothing is configured. Validation
        of the value happens when the connection is opened.
    """
    for name in MONGODB_URI_ENV_VARS:
        value = os.environ.get(name, "").strip()
        if value:
            return value

    if _env_flag("USE_SSM_SECRETS"):
        return get_ssm_parameter(f"/{env}/{app_name}/mongodb/uri").strip()

    return ""


def resolve_openai_api_key(env: str = ENV, app_name: str = APP_NAME) -> str:
    """Find the OpenAI API key in the environment, falling back to SSM."""
    value = os.environ.get("OPENAI_API_KEY", "").strip()
    if value:
        return value

    if _env_flag("USE_SSM_SECRETS"):
        return get_ssm_parameter(f"/{env}/{app_name}/openai/api-key").strip()

    raise ConfigurationError(
        "OPENAI_API_KEY is not set and USE_SSM_SECRETS is disabled"
    )


def load_settings() -> Settings:
    """
    Build Settings from the environment (cached per container).

    Raises:
        ConfigurationError: If a value is malformed or a required secret is missing
    """
    global _settings
    if _settings is not None:
        return _settings

    env = os.environ.get("ENV", ENV)
    app_name = os.environ.get("APP_NAME", APP_NAME)

    llm_provider = _env_choice("LLM_PROVIDER", "bedrock", LLM_PROVIDERS)
    default_model = DEFAULT_OPENAI_MODEL_ID if llm_provider == "openai" else DEFAULT_BEDROCK_MODEL_ID

    openai_api_key = None
    if llm_provider == "openai":
        openai_api_key = resolve_openai_api_key(env, app_name)

    _settings = Settings(
        env=env,
        app_name=app_name,
        mongodb_uri=resolve_mongodb_uri(env, app_name),
        mongodb_db_name=os.environ.get("MONGODB_DB_NAME", "").strip() or None,
        mongodb_collection=os.environ.get("MONGODB_COLLECTION", "").strip() or "events",
        mongodb_timeout_ms=_env_int("MONGODB_TIMEOUT_MS", 5000),
        llm_provider=llm_provider,
        llm_model_id=os.environ.get("LLM_MODEL_ID", "").strip() or default_model,
        llm_temperature=_env_float("LLM_TEMPERATURE", 0.3),
        llm_max_tokens=_env_int("LLM_MAX_TOKENS", 4000),
        llm_min_interval_ms=_env_int("LLM_MIN_INTERVAL_MS", 0),
        openai_api_key=openai_api_key,
        response_shape=_env_choice("RESPONSE_SHAPE", "full", RESPONSE_SHAPES),
        store_access=_env_choice("STORE_ACCESS", "raw", STORE_ACCESS_MODES),
        max_results=_env_int("MAX_RESULTS", 0),
    )

    logger.info(
        f"[config] Loaded settings: env={env}, provider={llm_provider}, "
        f"model={_settings.llm_model_id}, collection={_settings.mongodb_collection}, "
        f"response_shape={_settings.response_shape}, store_access={_settings.store_access}"
    )
    return _settings


def reset_settings() -> None:
    """Forget cached settings and the SSM client."""
    global _settings, _ssm_client
    _settings = None
    _ssm_client = None
