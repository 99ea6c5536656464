"""Tests for providers.py and llm_clients.py: HTTP caller, errors, token usage."""

import io
import json
import socket
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from prism.config import PrismConfig
from prism.lib.llm_clients import (
    caller_from_provider,
    create_caller_from_config,
    create_http_caller,
    get_token_usage,
    reset_token_usage,
)
from prism.lib.providers import (
    ApiError,
    LLMResult,
    OpenAICompatibleLLMProvider,
    TestLLMProvider,
)


def _mock_response(payload, status=200):
    mock_resp = MagicMock()
    mock_resp.status = status
    body = payload if isinstance(payload, str) else json.dumps(payload)
    mock_resp.read.return_value = body.encode("utf-8")
    mock_resp.__enter__ = lambda s: s
    mock_resp.__exit__ = MagicMock(return_value=False)
    return mock_resp


def _completion(content, finish_reason="stop"):
    return {
        "model": "served-model",
        "choices": [{"message": {"role": "assistant", "content": content},
                     "finish_reason": finish_reason}],
        "usage": {"prompt_tokens": 12, "completion_tokens": 7},
    }


class TestOpenAICompatibleProvider:

    def test_request_shape(self):
        provider = OpenAICompatibleLLMProvider("http://host:8000/v1/", api_key="sk-x", model="m1")
        with patch("prism.lib.providers.urllib.request.urlopen",
                   return_value=_mock_response(_completion("hello"))) as mock_open:
            result = provider.llm_call([{"role": "user", "content": "hi"}],
                                       max_tokens=100, temperature=0.1, timeout=5)

        req = mock_open.call_args[0][0]
        assert req.full_url == "http://host:8000/v1/chat/completions"
        assert req.get_header("Authorization") == "Bearer sk-x"
        body = json.loads(req.data.decode("utf-8"))
        assert body == {"model": "m1", "messages": [{"role": "user", "content": "hi"}],
                        "temperature": 0.1, "max_tokens": 100}
        assert mock_open.call_args[1]["timeout"] == 5
        assert result.text == "hello"
        assert (result.input_tokens, result.output_tokens) == (12, 7)
        assert result.model == "served-model"
        assert result.truncated is False

    def test_no_auth_header_without_key(self):
        provider = OpenAICompatibleLLMProvider("http://host/v1", model="m1")
        with patch("prism.lib.providers.urllib.request.urlopen",
                   return_value=_mock_response(_completion("x"))) as mock_open:
            provider.llm_call([{"role": "user", "content": "hi"}])
        assert mock_open.call_args[0][0].get_header("Authorization") is None

    def test_think_block_stripped(self):
        provider = OpenAICompatibleLLMProvider(model="m1")
        content = "<think>internal reasoning</think>\n# Answer"
        with patch("prism.lib.providers.urllib.request.urlopen",
                   return_value=_mock_response(_completion(content))):
            assert provider.llm_call([]).text == "# Answer"

    def test_truncated_flag(self):
        provider = OpenAICompatibleLLMProvider(model="m1")
        with patch("prism.lib.providers.urllib.request.urlopen",
                   return_value=_mock_response(_completion("partial", "length"))):
            assert provider.llm_call([]).truncated is True

    def test_http_error(self):
        provider = OpenAICompatibleLLMProvider(model="m1")
        err = urllib.error.HTTPError("http://x", 503, "Service Unavailable", {},
                                     io.BytesIO(b"model loading"))
        with patch("prism.lib.providers.urllib.request.urlopen", side_effect=err):
            with pytest.raises(ApiError) as exc_info:
                provider.llm_call([])
        assert exc_info.value.status == 503
        assert "model loading" in str(exc_info.value)

    @pytest.mark.parametrize("payload", [
        "not json",
        "[1, 2]",
        {"choices": []},
        _completion(""),
        _completion("<think>only thinking</think>"),
    ])
    def test_unusable_body(self, payload):
        provider = OpenAICompatibleLLMProvider(model="m1")
        with patch("prism.lib.providers.urllib.request.urlopen",
                   return_value=_mock_response(payload)):
            with pytest.raises(ApiError):
                provider.llm_call([])

    def test_timeout(self):
        provider = OpenAICompatibleLLMProvider(model="m1")
        with patch("prism.lib.providers.urllib.request.urlopen",
                   side_effect=socket.timeout("timed out")):
            with pytest.raises(TimeoutError, match="timed out after 2s"):
                provider.llm_call([], timeout=2)

    def test_url_error_wrapping_timeout(self):
        provider = OpenAICompatibleLLMProvider(model="m1")
        with patch("prism.lib.providers.urllib.request.urlopen",
                   side_effect=urllib.error.URLError(socket.timeout("timed out"))):
            with pytest.raises(TimeoutError):
                provider.llm_call([], timeout=2)

    def test_connection_refused_propagates(self):
        provider = OpenAICompatibleLLMProvider(model="m1")
        with patch("prism.lib.providers.urllib.request.urlopen",
                   side_effect=urllib.error.URLError(ConnectionRefusedError(111, "refused"))):
            with pytest.raises(urllib.error.URLError):
                provider.llm_call([])


class TestTestLLMProvider:

    def test_responses_in_order_then_repeat(self):
        provider = TestLLMProvider(["one", "two"])
        texts = [provider.llm_call([]).text for _ in range(3)]
        assert texts == ["one", "two", "two"]
        assert len(provider.calls) == 3

    def test_exception_response_raised(self):
        provider = TestLLMProvider([ApiError("nope", status=500)])
        with pytest.raises(ApiError):
            provider.llm_call([])


class TestCallerFromProvider:

    def test_messages_and_settings(self):
        provider = TestLLMProvider(["answer"])
        logs = []
        call = caller_from_provider(provider, system_prompt="SYS", temperature=0.7,
                                    max_tokens=64, timeout_ms=2500, log=logs.append)
        assert call("the prompt") == "answer"
        recorded = provider.calls[0]
        assert recorded["messages"] == [{"role": "system", "content": "SYS"},
                                        {"role": "user", "content": "the prompt"}]
        assert recorded["temperature"] == 0.7
        assert recorded["max_tokens"] == 64
        assert recorded["timeout"] == 2.5
        assert logs[0].startswith("Calling model (prompt 10 chars, model=test-model)")
        assert logs[-1] == "Model returned 6 chars"

    def test_token_usage_accumulates(self):
        reset_token_usage()
        call = caller_from_provider(TestLLMProvider(["a"]), log=lambda m: None)
        call("x")
        call("y")
        assert get_token_usage() == {"calls": 2, "input_tokens": 200, "output_tokens": 100}
        reset_token_usage()
        assert get_token_usage()["calls"] == 0

    def test_empty_text_raises(self):
        class EmptyProvider(TestLLMProvider):
            def llm_call(self, messages, **kwargs):
                return LLMResult(text="", duration=0.0)

        call = caller_from_provider(EmptyProvider(), log=lambda m: None)
        with pytest.raises(ApiError):
            call("x")


class TestHttpCaller:

    def test_create_http_caller_end_to_end(self):
        call = create_http_caller("http://host/v1", "key", "m1", log=lambda m: None)
        with patch("prism.lib.providers.urllib.request.urlopen",
                   return_value=_mock_response(_completion("# Done"))) as mock_open:
            assert call("prompt") == "# Done"
        body = json.loads(mock_open.call_args[0][0].data.decode("utf-8"))
        assert body["messages"][0]["role"] == "system"
        assert body["messages"][1]["content"] == "prompt"

    def test_from_config(self):
        config = PrismConfig()
        config.api.base_url = "http://cfg/v1"
        config.process.timeout_ms = 4000
        call = create_caller_from_config(config, log=lambda m: None)
        with patch("prism.lib.providers.urllib.request.urlopen",
                   return_value=_mock_response(_completion("ok"))) as mock_open:
            call("p")
        assert mock_open.call_args[0][0].full_url == "http://cfg/v1/chat/completions"
        assert mock_open.call_args[1]["timeout"] == 4.0
