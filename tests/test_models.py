"""Tests for the completion provider adapters."""
import unittest
from unittest.mock import MagicMock, patch

import httpx

from roundtable.config import Config
from roundtable.errors import (
    API_KEY_INVALID,
    ConfigError,
    PROVIDER_CONNECTION_FAILED,
    ProviderConnectionError,
    RateLimitError,
    TIMEOUT_EXCEEDED,
)
from roundtable.models import build_provider
from roundtable.models.gemini import GeminiClient
from roundtable.models.ollama import OllamaClient
from roundtable.models.openai_compat import OpenAIClient


def mock_http(mock_client_cls, response=None, error=None):
    mock_client = MagicMock()
    mock_client.__enter__ = MagicMock(return_value=mock_client)
    mock_client.__exit__ = MagicMock(return_value=False)
    if error is not None:
        mock_client.post.side_effect = error
    else:
        mock_client.post.return_value = response
    mock_client_cls.return_value = mock_client
    return mock_client


def http_response(status_code=200, payload=None, text="", headers=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload or {}
    response.text = text
    response.headers = headers or {}
    return response


class TestOpenAIClient(unittest.TestCase):
    @patch("roundtable.models.openai_compat.httpx.Client")
    def test_successful_completion(self, mock_client_cls):
        mock_client = mock_http(mock_client_cls, http_response(payload={
            "choices": [{"message": {"content": "Use a queue."}}],
            "usage": {"prompt_tokens": 12, "completion_tokens": 4},
        }))

        client = OpenAIClient(api_key="sk-test", base_url="http://llm.local/v1/")
        result = client.complete("You are terse.", "What now?", 256, 0.2)

        self.assertEqual(result.text, "Use a queue.")
        self.assertEqual(result.input_tokens, 12)
        self.assertEqual(result.output_tokens, 4)
        url = mock_client.post.call_args.args[0]
        kwargs = mock_client.post.call_args.kwargs
        self.assertEqual(url, "http://llm.local/v1/chat/completions")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer sk-test")
        self.assertEqual(kwargs["json"]["messages"][0], {"role": "system", "content": "You are terse."})
        self.assertEqual(kwargs["json"]["max_tokens"], 256)

    @patch("roundtable.models.openai_compat.httpx.Client")
    def test_missing_usage_falls_back_to_estimate(self, mock_client_cls):
        mock_http(mock_client_cls, http_response(payload={"choices": [{"message": {"content": "abcdefgh"}}]}))
        result = OpenAIClient(api_key="k").complete("", "abcd", 10, 0.0)
        self.assertEqual(result.input_tokens, 1)
        self.assertEqual(result.output_tokens, 2)

    @patch("roundtable.models.openai_compat.httpx.Client")
    def test_rate_limit(self, mock_client_cls):
        mock_http(mock_client_cls, http_response(429, text="slow down", headers={"retry-after": "2"}))
        with self.assertRaises(RateLimitError) as caught:
            OpenAIClient(api_key="k").complete("s", "u", 10, 0.0)
        self.assertEqual(caught.exception.retry_after_ms, 2000)
        self.assertTrue(caught.exception.recoverable)

    @patch("roundtable.models.openai_compat.httpx.Client")
    def test_timeout(self, mock_client_cls):
        mock_http(mock_client_cls, error=httpx.ReadTimeout("timed out"))
        with self.assertRaises(ProviderConnectionError) as caught:
            OpenAIClient(api_key="k", timeout_seconds=3).complete("s", "u", 10, 0.0)
        self.assertEqual(caught.exception.code, TIMEOUT_EXCEEDED)

    @patch("roundtable.models.openai_compat.httpx.Client")
    def test_bad_key(self, mock_client_cls):
        mock_http(mock_client_cls, http_response(401, text="Unauthorized"))
        with self.assertRaises(ProviderConnectionError) as caught:
            OpenAIClient(api_key="bad").complete("s", "u", 10, 0.0)
        self.assertEqual(caught.exception.code, API_KEY_INVALID)

    @patch("roundtable.models.openai_compat.httpx.Client")
    def test_server_error(self, mock_client_cls):
        mock_http(mock_client_cls, http_response(503, text="overloaded"))
        with self.assertRaises(ProviderConnectionError) as caught:
            OpenAIClient(api_key="k").complete("s", "u", 10, 0.0)
        self.assertEqual(caught.exception.code, PROVIDER_CONNECTION_FAILED)
        self.assertEqual(caught.exception.status_code, 503)

    @patch("roundtable.models.openai_compat.httpx.Client")
    def test_malformed_payload(self, mock_client_cls):
        mock_http(mock_client_cls, http_response(payload={"choices": []}))
        with self.assertRaises(ProviderConnectionError):
            OpenAIClient(api_key="k").complete("s", "u", 10, 0.0)


class TestOllamaClient(unittest.TestCase):
    @patch("roundtable.models.ollama.httpx.Client")
    def test_successful_completion(self, mock_client_cls):
        mock_client = mock_http(mock_client_cls, http_response(payload={
            "response": "Shard by tenant.",
            "prompt_eval_count": 30,
            "eval_count": 5,
        }))

        result = OllamaClient(model="llama3").complete("sys", "user", 128, 0.5)

        self.assertEqual(result.text, "Shard by tenant.")
        self.assertEqual(result.input_tokens, 30)
        body = mock_client.post.call_args.kwargs["json"]
        self.assertEqual(body["system"], "sys")
        self.assertEqual(body["options"], {"temperature": 0.5, "num_predict": 128})
        self.assertFalse(body["stream"])

    @patch("roundtable.models.ollama.httpx.Client")
    def test_connection_refused(self, mock_client_cls):
        mock_http(mock_client_cls, error=httpx.ConnectError("refused"))
        with self.assertRaises(ProviderConnectionError) as caught:
            OllamaClient().complete("s", "u", 10, 0.0)
        self.assertEqual(caught.exception.provider, "ollama")

    @patch("roundtable.models.ollama.httpx.Client")
    def test_missing_text(self, mock_client_cls):
        mock_http(mock_client_cls, http_response(payload={"done": True}))
        with self.assertRaises(ProviderConnectionError):
            OllamaClient().complete("s", "u", 10, 0.0)


class TestGeminiClient(unittest.TestCase):
    def test_no_api_key_returns_error(self):
        client = GeminiClient(api_key="")
        result = client.generate("Hello")
        self.assertFalse(result.ok)
        self.assertIn("GEMINI_API_KEY", result.error)
        self.assertFalse(client.available)

    def test_complete_without_key_raises(self):
        with self.assertRaises(ProviderConnectionError) as caught:
            GeminiClient(api_key="").complete("s", "u", 10, 0.0)
        self.assertEqual(caught.exception.code, API_KEY_INVALID)

    @patch("roundtable.models.gemini.httpx.Client")
    def test_successful_completion(self, mock_client_cls):
        mock_client = mock_http(mock_client_cls, http_response(payload={
            "candidates": [{"content": {"parts": [{"text": "Hello "}, {"text": "there!"}]}}],
            "usageMetadata": {"promptTokenCount": 5, "candidatesTokenCount": 3, "totalTokenCount": 8},
        }))

        result = GeminiClient(api_key="test-key").complete("Be brief.", "Say hello", 64, 0.1)

        self.assertEqual(result.text, "Hello there!")
        self.assertEqual(result.input_tokens, 5)
        self.assertEqual(result.output_tokens, 3)
        url = mock_client.post.call_args.args[0]
        body = mock_client.post.call_args.kwargs["json"]
        self.assertIn("models/gemini-2.5-flash:generateContent", url)
        self.assertEqual(body["systemInstruction"], {"parts": [{"text": "Be brief."}]})
        self.assertEqual(body["generationConfig"]["maxOutputTokens"], 64)

    @patch("roundtable.models.gemini.httpx.Client")
    def test_rate_limit(self, mock_client_cls):
        mock_http(mock_client_cls, http_response(429, text="quota", headers={"retry-after": "1.5"}))
        client = GeminiClient(api_key="test-key")
        with self.assertLogs("roundtable.models.gemini", level="WARNING"):
            with self.assertRaises(RateLimitError) as caught:
                client.complete("s", "u", 10, 0.0)
        self.assertEqual(caught.exception.retry_after_ms, 1500)

    @patch("roundtable.models.gemini.httpx.Client")
    def test_rejected_key(self, mock_client_cls):
        mock_http(mock_client_cls, http_response(401, text="Unauthorized"))
        with self.assertLogs("roundtable.models.gemini", level="WARNING"):
            with self.assertRaises(ProviderConnectionError) as caught:
                GeminiClient(api_key="bad-key").complete("s", "u", 10, 0.0)
        self.assertEqual(caught.exception.code, API_KEY_INVALID)

    @patch("roundtable.models.gemini.httpx.Client")
    def test_no_candidates(self, mock_client_cls):
        mock_http(mock_client_cls, http_response(payload={"candidates": []}))
        result = GeminiClient(api_key="test-key").generate("test")
        self.assertFalse(result.ok)
        self.assertIn("No candidates", result.error)

    @patch("roundtable.models.gemini.httpx.Client")
    def test_timeout(self, mock_client_cls):
        mock_http(mock_client_cls, error=httpx.TimeoutException("timed out"))
        client = GeminiClient(api_key="test-key", timeout_seconds=5)
        with self.assertLogs("roundtable.models.gemini", level="WARNING"):
            with self.assertRaises(ProviderConnectionError) as caught:
                client.complete("s", "u", 10, 0.0)
        self.assertEqual(caught.exception.code, TIMEOUT_EXCEEDED)

    def test_model_mapping(self):
        self.assertEqual(GeminiClient.MODEL_MAP["2.5-pro"], "gemini-2.5-pro")


class TestProviderRegistry(unittest.TestCase):
    def test_builds_each_kind(self):
        self.assertIsInstance(build_provider(Config({"provider": {"kind": "openai", "api_key": "k"}})), OpenAIClient)
        self.assertIsInstance(build_provider(Config({"provider": {"kind": "gemini", "api_key": "k"}})), GeminiClient)
        ollama = build_provider(Config({"provider": {"kind": "Ollama", "model": "llama3"}}))
        self.assertIsInstance(ollama, OllamaClient)
        self.assertEqual(ollama.model, "llama3")

    def test_openai_default_url_not_reused_for_other_kinds(self):
        provider = build_provider(Config({
            "provider": {"kind": "ollama", "base_url": "https://api.openai.com/v1"},
        }))
        self.assertEqual(provider.base_url, "http://localhost:11434")

    def test_gemini_without_key_warns(self):
        with self.assertLogs("roundtable.models.registry", level="WARNING") as logs:
            client = build_provider(Config({"provider": {"kind": "gemini", "api_key": ""}}))
        self.assertFalse(client.available)
        self.assertIn("GEMINI_API_KEY not set", logs.output[0])

    def test_unknown_kind(self):
        with self.assertRaises(ConfigError):
            build_provider(Config({"provider": {"kind": "carrier-pigeon"}}))


if __name__ == "__main__":
    unittest.main()
