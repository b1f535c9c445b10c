"""
Unit tests for the language model client.

Tests cover:
- Bedrock Converse invocation, throttling retry and errors
- OpenAI chat completion invocation and errors
- Minimum-interval throttle between model calls
- Provider selection and caching
- JSON extraction from model replies
"""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError
from openai import OpenAIError

import llm_client
from errors import ConfigurationError, LanguageModelError
from llm_client import (
    BedrockLanguageModel,
    MinIntervalThrottle,
    OpenAILanguageModel,
    extract_json_from_response,
    get_llm_client,
)


class FakeClock:
    """Monotonic clock advanced by the fake sleep."""

    def __init__(self, start=100.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class TestMinIntervalThrottle:
    """Test the process-wide minimum gap between calls."""

    def test_disabled_never_sleeps(self):
        """Test: Zero interval does not wait"""
        # Arrange
        clock = FakeClock()
        throttle = MinIntervalThrottle(0, clock=clock, sleep=clock.sleep)

        # Act
        throttle.wait()
        throttle.wait()

        # Assert
        assert clock.sleeps == []

    def test_first_call_does_not_wait(self):
        """Test: The first call goes straight through"""
        # Arrange
        clock = FakeClock()
        throttle = MinIntervalThrottle(1.0, clock=clock, sleep=clock.sleep)

        # Act
        waited = throttle.wait()

        # Assert
        assert waited == 0.0
        assert clock.sleeps == []

    def test_back_to_back_calls_wait_for_gap(self):
        """Test: Second call waits for the rest of the interval"""
        # Arrange
        clock = FakeClock()
        throttle = MinIntervalThrottle(1.0, clock=clock, sleep=clock.sleep)
        throttle.wait()
        clock.now += 0.25

        # Act
        waited = throttle.wait()

        # Assert
        assert waited == pytest.approx(0.75)
        assert clock.sleeps == [pytest.approx(0.75)]

    def test_no_wait_after_gap_elapsed(self):
        """Test: No wait when enough time has already passed"""
        # Arrange
        clock = FakeClock()
        throttle = MinIntervalThrottle(1.0, clock=clock, sleep=clock.sleep)
        throttle.wait()
        clock.now += 5.0

        # Act
        waited = throttle.wait()

        # Assert
        assert waited == 0.0
        assert clock.sleeps == []


class TestBedrockLanguageModel:
    """Test Claude invocation through Bedrock."""

    def test_complete_success(self, make_settings, sample_bedrock_response):
        """Test: Converse request is built and reply text returned"""
        # Arrange
        bedrock = MagicMock()
        bedrock.converse.return_value = sample_bedrock_response
        llm = BedrockLanguageModel(make_settings(), bedrock_client=bedrock)

        # Act
        text = llm.complete("system prompt", "How many signups?")

        # Assert
        assert text == '{"needsClarification": false}'
        bedrock.converse.assert_called_once_with(
            modelId="test-model",
            messages=[{"role": "user", "content": [{"text": "How many signups?"}]}],
            inferenceConfig={"temperature": 0.3, "maxTokens": 4000},
            system=[{"text": "system prompt"}]
        )

    def test_complete_without_system_prompt(self, make_settings, sample_bedrock_response):
        """Test: Empty system prompt is left out of the request"""
        # Arrange
        bedrock = MagicMock()
        bedrock.converse.return_value = sample_bedrock_response
        llm = BedrockLanguageModel(make_settings(), bedrock_client=bedrock)

        # Act
        llm.complete("", "hello")

        # Assert
        assert "system" not in bedrock.converse.call_args.kwargs

    @patch('llm_client.time.sleep')
    def test_throttling_is_retried(self, mock_sleep, make_settings, sample_bedrock_response):
        """Test: ThrottlingException is retried with backoff"""
        # Arrange
        bedrock = MagicMock()
        bedrock.converse.side_effect = [
            ClientError({"Error": {"Code": "ThrottlingException"}}, "converse"),
            sample_bedrock_response
        ]
        llm = BedrockLanguageModel(make_settings(), bedrock_client=bedrock)

        # Act
        text = llm.complete("system", "hello")

        # Assert
        assert text == '{"needsClarification": false}'
        assert bedrock.converse.call_count == 2
        mock_sleep.assert_called_once_with(1)

    @patch('llm_client.time.sleep')
    def test_throttling_exhausts_retries(self, mock_sleep, make_settings):
        """Test: Persistent throttling raises after MAX_RETRIES"""
        # Arrange
        bedrock = MagicMock()
        bedrock.converse.side_effect = ClientError(
            {"Error": {"Code": "ThrottlingException"}}, "converse"
        )
        llm = BedrockLanguageModel(make_settings(), bedrock_client=bedrock)

        # Act & Assert
        with pytest.raises(LanguageModelError, match="after 3 retries"):
            llm.complete("system", "hello")
        assert bedrock.converse.call_count == llm_client.MAX_RETRIES

    def test_other_client_error_raises(self, make_settings):
        """Test: Non-throttling errors are not retried"""
        # Arrange
        bedrock = MagicMock()
        bedrock.converse.side_effect = ClientError(
            {"Error": {"Code": "AccessDeniedException", "Message": "denied"}}, "converse"
        )
        llm = BedrockLanguageModel(make_settings(), bedrock_client=bedrock)

        # Act & Assert
        with pytest.raises(LanguageModelError, match="AccessDeniedException"):
            llm.complete("system", "hello")
        assert bedrock.converse.call_count == 1

    def test_empty_content_raises(self, make_settings):
        """Test: Reply without content blocks is an error"""
        # Arrange
        bedrock = MagicMock()
        bedrock.converse.return_value = {"output": {"message": {"content": []}}}
        llm = BedrockLanguageModel(make_settings(), bedrock_client=bedrock)

        # Act & Assert
        with pytest.raises(LanguageModelError, match="No content"):
            llm.complete("system", "hello")

    def test_throttle_applied_before_each_call(self, make_settings, sample_bedrock_response):
        """Test: Every call goes through the throttle"""
        # Arrange
        bedrock = MagicMock()
        bedrock.converse.return_value = sample_bedrock_response
        throttle = MagicMock()
        llm = BedrockLanguageModel(make_settings(), throttle=throttle, bedrock_client=bedrock)

        # Act
        llm.complete("system", "one")
        llm.complete("system", "two")

        # Assert
        assert throttle.wait.call_count == 2

    def test_throttle_interval_from_settings(self, make_settings):
        """Test: LLM_MIN_INTERVAL_MS is converted to seconds"""
        llm = BedrockLanguageModel(make_settings(llm_min_interval_ms=1500), bedrock_client=MagicMock())

        assert llm.throttle.min_interval == 1.5


class TestOpenAILanguageModel:
    """Test OpenAI chat completion invocation."""

    def test_complete_success(self, make_settings):
        """Test: System and user messages are sent and reply returned"""
        # Arrange
        client = MagicMock()
        completion = MagicMock()
        completion.choices[0].message.content = '{"query": {}}'
        client.chat.completions.create.return_value = completion
        llm = OpenAILanguageModel(
            make_settings(llm_provider="openai", llm_model_id="gpt-4"),
            openai_client=client
        )

        # Act
        text = llm.complete("Convert natural language to MongoDB query", "signups for Acme")

        # Assert
        assert text == '{"query": {}}'
        client.chat.completions.create.assert_called_once_with(
            model="gpt-4",
            temperature=0.3,
            max_tokens=4000,
            messages=[
                {"role": "system", "content": "Convert natural language to MongoDB query"},
                {"role": "user", "content": "signups for Acme"},
            ]
        )

    def test_api_error_raises(self, make_settings):
        """Test: OpenAI errors map to LanguageModelError"""
        # Arrange
        client = MagicMock()
        client.chat.completions.create.side_effect = OpenAIError("rate limited")
        llm = OpenAILanguageModel(make_settings(llm_provider="openai"), openai_client=client)

        # Act & Assert
        with pytest.raises(LanguageModelError, match="rate limited"):
            llm.complete("system", "hello")

    def test_no_choices_raises(self, make_settings):
        """Test: Completion without choices is an error"""
        # Arrange
        client = MagicMock()
        client.chat.completions.create.return_value.choices = []
        llm = OpenAILanguageModel(make_settings(llm_provider="openai"), openai_client=client)

        # Act & Assert
        with pytest.raises(LanguageModelError, match="No choices"):
            llm.complete("system", "hello")

    def test_missing_key_raises(self, make_settings):
        """Test: Building a real client requires an API key"""
        with pytest.raises(ConfigurationError):
            OpenAILanguageModel(make_settings(llm_provider="openai", openai_api_key=None))

    @patch('llm_client.OpenAI')
    def test_client_built_with_key(self, mock_openai, make_settings):
        """Test: API key from settings is passed to the OpenAI client"""
        # Act
        OpenAILanguageModel(make_settings(llm_provider="openai", openai_api_key="sk-test"))

        # Assert
        mock_openai.assert_called_once_with(api_key="sk-test")


class TestGetLlmClient:
    """Test provider selection and per-container caching."""

    @patch('llm_client.boto3.client')
    def test_bedrock_is_default_and_cached(self, mock_boto_client):
        """Test: Bedrock client is created once and reused"""
        # Act
        first = get_llm_client()
        second = get_llm_client()

        # Assert
        assert isinstance(first, BedrockLanguageModel)
        assert first is second
        mock_boto_client.assert_called_once_with("bedrock-runtime")

    @patch('llm_client.OpenAI')
    def test_openai_provider(self, mock_openai, monkeypatch):
        """Test: LLM_PROVIDER=openai selects the OpenAI client"""
        # Arrange
        monkeypatch.setenv("LLM_PROVIDER", "openai")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

        # Act
        client = get_llm_client()

        # Assert
        assert isinstance(client, OpenAILanguageModel)
        assert client.model_id == "gpt-4"


class TestExtractJsonFromResponse:
    """Test JSON extraction from model replies."""

    def test_plain_json(self):
        """Test: Bare JSON object"""
        assert extract_json_from_response('{"needsClarification": true}') == {"needsClarification": True}

    def test_markdown_fence(self):
        """Test: JSON inside a ```json fence"""
        text = 'Here you go:\n```json\n{"query": {"organization_name": "Acme"}}\n```'

        assert extract_json_from_response(text) == {"query": {"organization_name": "Acme"}}

    def test_surrounding_prose(self):
        """Test: JSON with text before and after"""
        text = 'Sure! {"explanation": "all events"} Let me know if you need more.'

        assert extract_json_from_response(text) == {"explanation": "all events"}

    def test_no_json_raises(self):
        """Test: Reply without an object raises ValueError"""
        with pytest.raises(ValueError, match="No JSON"):
            extract_json_from_response("The question is clear.")

    def test_invalid_json_raises(self):
        """Test: Malformed object raises ValueError"""
        with pytest.raises(ValueError, match="Invalid JSON"):
            extract_json_from_response("{needsClarification: yes}")

    def test_empty_reply_raises(self):
        """Test: Empty reply raises ValueError"""
        with pytest.raises(ValueError, match="Empty"):
            extract_json_from_response("")
