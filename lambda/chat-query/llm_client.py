"""
Language model client for the chat-query Lambda.

Handles communication with the model provider (Claude via AWS Bedrock by
default, or OpenAI chat completions) and extraction of JSON from replies.
"""

import json
import logging
import re
import threading
import time
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import ClientError
from openai import OpenAI, OpenAIError

from config import Settings, load_settings
from errors import ConfigurationError, LanguageModelError

logger = logging.getLogger()

MAX_RETRIES = 3

_llm_client = None
_llm_client_lock = threading.Lock()


# ============================================================================
# Throttle
# ============================================================================


class MinIntervalThrottle:
    """
    Process-wide minimum gap between successive model calls.

    wait() blocks the caller until at least min_interval seconds have passed
    since the previous call was released. Callers are released in the order
    they acquire the lock.
    """

    def __init__(self, min_interval: float, clock=time.monotonic, sleep=time.sleep):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_call: Optional[float] = None

    def wait(self) -> float:
        """
        Block until the next call is allowed.

        Returns:
            float: Seconds spent waiting
        """
        if self.min_interval <= 0:
            return 0.0

        with self._lock:
            waited = 0.0
            now = self._clock()
            if self._last_call is not None:
                remaining = self.min_interval - (now - self._last_call)
                if remaining > 0:
                    logger.info(f"[llm] Throttling model call for {remaining:.3f}s")
                    self._sleep(remaining)
                    waited = remaining
                    now = self._clock()
            self._last_call = now
            return waited


# ============================================================================
# Providers
# ============================================================================


class LanguageModelClient:
    """Text-completion interface shared by all providers."""

    def __init__(self, settings: Settings, throttle: Optional[MinIntervalThrottle] = None):
        self.model_id = settings.llm_model_id
        self.temperature = settings.llm_temperature
        self.max_tokens = settings.llm_max_tokens
        self.throttle = throttle or MinIntervalThrottle(settings.llm_min_interval_ms / 1000.0)

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        """
        Send one system + user exchange and return the reply text.

        Raises:
            LanguageModelError: If the provider call fails
        """
        self.throttle.wait()
        logger.info(f"[llm] Invoking {self.model_id} with {len(user_prompt)} chars")
        return self._complete(system_prompt, user_prompt)

    def _complete(self, system_prompt: str, user_prompt: str) -> str:
        raise NotImplementedError


class BedrockLanguageModel(LanguageModelClient):
    """Claude through the Bedrock Converse API."""

    def __init__(self, settings: Settings, throttle: Optional[MinIntervalThrottle] = None, bedrock_client=None):
        super().__init__(settings, throttle)
        self.bedrock_client = bedrock_client or boto3.client("bedrock-runtime")

    def _complete(self, system_prompt: str, user_prompt: str) -> str:
        request_params = {
            "modelId": self.model_id,
            "messages": [
                {
                    "role": "user",
                    "content": [{"text": user_prompt}]
                }
            ],
            "inferenceConfig": {
                "temperature": self.temperature,
                "maxTokens": self.max_tokens,
            },
        }

        if system_prompt:
            request_params["system"] = [{"text": system_prompt}]

        # Retry logic with exponential backoff
        for attempt in range(MAX_RETRIES):
            try:
                response = self.bedrock_client.converse(**request_params)
            except ClientError as e:
                error_code = e.response.get("Error", {}).get("Code", "")

                if error_code == "ThrottlingException":
                    wait_time = 2 ** attempt  # 1s, 2s, 4s
                    logger.warning(
                        f"[llm] Throttled by Bedrock API, retrying in {wait_time}s "
                        f"(attempt {attempt + 1}/{MAX_RETRIES})"
                    )
                    time.sleep(wait_time)
                    continue

                logger.error(f"[llm] Bedrock API error: {e}")
                raise LanguageModelError(f"Bedrock API error: {e}") from e

            content_blocks = response.get("output", {}).get("message", {}).get("content", [])
            if not content_blocks:
                raise LanguageModelError("No content in model response")

            response_text = content_blocks[0].get("text", "")
            usage = response.get("usage", {})
            logger.info(
                f"[llm] Bedrock response: {len(response_text)} chars, "
                f"{usage.get('inputTokens', 0)} input tokens, "
                f"{usage.get('outputTokens', 0)} output tokens, "
                f"stop_reason={response.get('stopReason', 'end_turn')}"
            )
            return response_text

        raise LanguageModelError(f"Failed to invoke model after {MAX_RETRIES} retries")


class OpenAILanguageModel(LanguageModelClient):
    """OpenAI chat completions."""

    def __init__(self, settings: Settings, throttle: Optional[MinIntervalThrottle] = None, openai_client=None):
        super().__init__(settings, throttle)
        if openai_client is None:
            if not settings.openai_api_key:
                raise ConfigurationError("OpenAI API key is not configured")
            openai_client = OpenAI(api_key=settings.openai_api_key)
        self.openai_client = openai_client

    def _complete(self, system_prompt: str, user_prompt: str) -> str:
        try:
            completion = self.openai_client.chat.completions.create(
                model=self.model_id,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            )
        except OpenAIError as e:
            logger.error(f"[llm] OpenAI API error: {e}")
            raise LanguageModelError(f"OpenAI API error: {e}") from e

        if not completion.choices:
            raise LanguageModelError("No choices in model response")

        response_text = completion.choices[0].message.content or ""
        logger.info(f"[llm] OpenAI response: {len(response_text)} chars")
        return response_text


PROVIDERS = {
    "bedrock": BedrockLanguageModel,
    "openai": OpenAILanguageModel,
}


def get_llm_client() -> LanguageModelClient:
    """Return the provider client for this container, creating it on first use."""
    global _llm_client
    if _llm_client is None:
        with _llm_client_lock:
            if _llm_client is None:
                settings = load_settings()
                _llm_client = PROVIDERS[settings.llm_provider](settings)
                logger.info(f"[llm] Initialized {settings.llm_provider} client")
    return _llm_client


def reset_llm_client() -> None:
    global _llm_client
    with _llm_client_lock:
        _llm_client = None


# ============================================================================
# JSON Extraction
# ============================================================================


def extract_json_from_response(response_text: str) -> Dict[str, Any]:
    """
    Extract a JSON object from a model reply.

    Handles replies wrapped in markdown code fences or surrounded by prose.

    Args:
        response_text: Raw reply from the model

    Returns:
        dict: Parsed JSON object

    Raises:
        ValueError: If no valid JSON object is found
    """
    if not response_text:
        raise ValueError("Empty model response")

    markdown_match = re.search(r'```(?:json)?\s*([\s\S]*?)```', response_text)
    if markdown_match:
        json_text = markdown_match.group(1).strip()
    else:
        json_text = response_text

    json_match = re.search(r'\{[\s\S]*\}', json_text)
    if not json_match:
        raise ValueError("No JSON found in model response")

    try:
        return json.loads(json_match.group(0))
    except json.JSONDecodeError as e:
        logger.error(f"[llm] Failed to parse JSON: {e}")
        logger.error(f"[llm] JSON text: {json_match.group(0)[:500]}")
        raise ValueError(f"Invalid JSON in response: {e}")
