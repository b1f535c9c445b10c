"""
Pytest configuration and shared fixtures for all tests.

This file is automatically loaded by pytest and makes fixtures
available to all test files.
"""

import sys
import os

import pytest

# Set AWS region for tests (required by boto3 clients even with moto mocking)
os.environ.setdefault('AWS_DEFAULT_REGION', 'us-west-2')
os.environ.setdefault('AWS_REGION', 'us-west-2')

# Add the chat-query function directory to path so tests can import its modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'chat-query')))

# Add tests directory to path for shared fixtures
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))

import config  # noqa: E402
import llm_client  # noqa: E402
import store  # noqa: E402
from fixtures.sample_data import *  # noqa: E402,F401,F403

CONFIG_ENV_VARS = (
    "MONGODB_URI", "MONGO_URI", "DATABASE_URL", "MONGODB_DB_NAME", "MONGODB_COLLECTION",
    "MONGODB_TIMEOUT_MS", "LLM_PROVIDER", "LLM_MODEL_ID", "LLM_TEMPERATURE", "LLM_MAX_TOKENS",
    "LLM_MIN_INTERVAL_MS", "OPENAI_API_KEY", "RESPONSE_SHAPE", "STORE_ACCESS", "MAX_RESULTS",
    "USE_SSM_SECRETS",
)


@pytest.fixture(autouse=True)
def setup_environment(monkeypatch):
    """Give every test a clean, valid configuration and empty caches."""
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)

    monkeypatch.setenv("ENV", "dev")
    monkeypatch.setenv("APP_NAME", "chat-query")
    monkeypatch.setenv("MONGODB_URI", "mongodb://localhost:27017/analytics")
    monkeypatch.setenv("MONGODB_DB_NAME", "analytics")

    config.reset_settings()
    llm_client.reset_llm_client()
    store.connection_cache = store.ConnectionCache()

    yield

    config.reset_settings()
    llm_client.reset_llm_client()


@pytest.fixture
def make_settings():
    """Build a Settings object with test defaults."""
    def _make(**overrides):
        values = {
            "env": "dev",
            "app_name": "chat-query",
            "mongodb_uri": "mongodb://localhost:27017/analytics",
            "mongodb_db_name": "analytics",
            "mongodb_collection": "events",
            "mongodb_timeout_ms": 5000,
            "llm_provider": "bedrock",
            "llm_model_id": "test-model",
            "llm_temperature": 0.3,
            "llm_max_tokens": 4000,
            "llm_min_interval_ms": 0,
            "openai_api_key": None,
            "response_shape": "full",
            "store_access": "raw",
            "max_results": 0,
        }
        values.update(overrides)
        return config.Settings(**values)
    return _make
