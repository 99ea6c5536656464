"""LLM provider ABC and the implementations the pipeline ships with.

Providers are the lowest-level abstraction for calling a model. The
pipeline itself only ever sees a ``call_agent(prompt) -> str`` callable
(see ``prism.lib.llm_clients``); providers sit underneath it.

  OpenAICompatibleLLMProvider: POST {base_url}/chat/completions over urllib
  TestLLMProvider: canned responses and call recording for tests
"""

import abc
import json
import logging
import re
import socket
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

logger = logging.getLogger(__name__)

BODY_SNIPPET_CHARS = 500


class ApiError(RuntimeError):
    """The endpoint answered, but not with a usable completion."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body[:BODY_SNIPPET_CHARS]


@dataclass
class LLMResult:
    """Result from an LLM call."""
    text: str
    duration: float
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""
    truncated: bool = False


class LLMProvider(abc.ABC):
    """Abstract chat-completion provider."""

    @abc.abstractmethod
    def llm_call(self, messages: list, max_tokens: int = 8192,
                 temperature: float = 0.3, timeout: float = 1800) -> LLMResult:
        """Make one chat-completion call.

        Args:
            messages: List of dicts with 'role' and 'content' keys.
            max_tokens: Maximum output tokens.
            temperature: Sampling temperature.
            timeout: Request timeout in seconds.

        Returns:
            LLMResult with the completion text and usage metadata.

        Raises:
            ApiError: non-200 status, unparsable body or empty completion.
            TimeoutError: the request exceeded ``timeout``.
        """
        ...

    @property
    @abc.abstractmethod
    def model_name(self) -> str:
        ...


class OpenAICompatibleLLMProvider(LLMProvider):
    """Calls any OpenAI-compatible API (vLLM, Ollama chat, LiteLLM, etc.)."""

    def __init__(self, base_url: str = "http://localhost:8888/v1",
                 api_key: str = "", model: str = ""):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._model = model

    @property
    def model_name(self) -> str:
        return self._model

    def llm_call(self, messages, max_tokens=8192, temperature=0.3, timeout=1800):
        url = f"{self._base_url}/chat/completions"
        payload = {
            "model": self._model,
            "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        req = urllib.request.Request(
            url,
            data=json.dumps(payload).encode("utf-8"),
            headers=headers,
            method="POST",
        )

        t0 = time.time()
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:
                status = getattr(resp, "status", 200)
                raw = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace") if e.fp else ""
            logger.error("Chat completion failed model=%s status=%s", self._model, e.code)
            raise ApiError(f"API error {e.code}: {body[:BODY_SNIPPET_CHARS]}",
                           status=e.code, body=body) from e
        except (socket.timeout, TimeoutError) as e:
            raise TimeoutError(f"Request timed out after {timeout:g}s") from e
        except urllib.error.URLError as e:
            if isinstance(e.reason, (socket.timeout, TimeoutError)):
                raise TimeoutError(f"Request timed out after {timeout:g}s") from e
            raise
        elapsed = time.time() - t0

        if status != 200:
            raise ApiError(f"API error {status}: {raw[:BODY_SNIPPET_CHARS]}",
                           status=status, body=raw)
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise ApiError(f"Non-JSON response: {raw[:BODY_SNIPPET_CHARS]}",
                           status=status, body=raw) from e
        if not isinstance(data, dict):
            raise ApiError(f"Response must be a JSON object, got {type(data).__name__}",
                           status=status, body=raw)

        choices = data.get("choices")
        first = choices[0] if isinstance(choices, list) and choices else {}
        message = first.get("message") if isinstance(first, dict) else {}
        content = message.get("content") if isinstance(message, dict) else None
        if not content or not isinstance(content, str):
            raise ApiError(f"Empty response: {raw[:BODY_SNIPPET_CHARS]}",
                           status=status, body=raw)

        # Strip thinking tags (Qwen3 and similar models)
        text = re.sub(r"<think>[\s\S]*?</think>\s*", "", content).strip()
        if not text:
            raise ApiError("Empty response after removing reasoning block",
                           status=status, body=raw)

        usage = data.get("usage") if isinstance(data.get("usage"), dict) else {}
        return LLMResult(
            text=text,
            duration=elapsed,
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
            model=data.get("model", self._model),
            truncated=isinstance(first, dict) and first.get("finish_reason") == "length",
        )


class TestLLMProvider(LLMProvider):
    """Canned responses and call recording for tests.

    Responses are consumed in order; once exhausted the last one repeats.
    A response that is an exception instance is raised instead of returned.
    """
    __test__ = False  # Not a pytest test class

    def __init__(self, responses: Optional[Sequence[Union[str, BaseException]]] = None):
        self.calls: List[dict] = []
        self._responses = list(responses or ["(empty test response)"])

    @property
    def model_name(self) -> str:
        return "test-model"

    def llm_call(self, messages, max_tokens=8192, temperature=0.3, timeout=1800):
        self.calls.append({
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "timeout": timeout,
        })
        idx = min(len(self.calls) - 1, len(self._responses) - 1)
        response = self._responses[idx]
        if isinstance(response, BaseException):
            raise response
        return LLMResult(
            text=response,
            duration=0.01,
            input_tokens=100,
            output_tokens=50,
            model="test-model",
        )
