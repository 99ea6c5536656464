"""
Model caller factory for the pipeline.

The pipeline and the perspective operations only depend on a plain
``call_agent(prompt) -> str`` callable. ``create_http_caller`` builds one on
top of ``OpenAICompatibleLLMProvider``; tests pass their own callable or a
``TestLLMProvider`` through ``caller_from_provider``.

Failures are never retried here: the orchestrator skips the unit, records a
warning and moves on.
"""

import logging
import threading
from typing import Callable, Dict, Optional

from prism.lib.logger import console_log
from prism.lib.providers import ApiError, LLMProvider, LLMResult, OpenAICompatibleLLMProvider

logger = logging.getLogger(__name__)

__all__ = [
    "ApiError",
    "DEFAULT_SYSTEM_PROMPT",
    "CallAgent",
    "caller_from_provider",
    "create_http_caller",
    "create_caller_from_config",
    "get_token_usage",
    "reset_token_usage",
]

CallAgent = Callable[[str], str]

DEFAULT_SYSTEM_PROMPT = (
    "You are a knowledge-management expert who extracts structured knowledge "
    "from technical notes.\n"
    "Follow the output format in the user's instructions exactly. "
    "Do not add explanations."
)

DEFAULT_TIMEOUT_MS = 1_800_000

# Token usage accumulator for the current process
_usage_lock = threading.Lock()
_usage: Dict[str, int] = {"calls": 0, "input_tokens": 0, "output_tokens": 0}


def _track_usage(result: LLMResult) -> None:
    with _usage_lock:
        _usage["calls"] += 1
        _usage["input_tokens"] += result.input_tokens or 0
        _usage["output_tokens"] += result.output_tokens or 0


def get_token_usage() -> Dict[str, int]:
    with _usage_lock:
        return dict(_usage)


def reset_token_usage() -> None:
    with _usage_lock:
        for key in _usage:
            _usage[key] = 0


def caller_from_provider(provider: LLMProvider,
                         system_prompt: str = DEFAULT_SYSTEM_PROMPT,
                         temperature: float = 0.3,
                         max_tokens: int = 8192,
                         timeout_ms: int = DEFAULT_TIMEOUT_MS,
                         log: Optional[Callable[[str], None]] = None) -> CallAgent:
    """Wrap a provider into a ``call_agent(prompt) -> str`` callable."""
    log = log or console_log
    timeout_s = max(0.001, timeout_ms / 1000.0)

    def call_agent(prompt: str) -> str:
        log(f"Calling model (prompt {len(prompt)} chars, model={provider.model_name})...")
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt},
        ]
        result = provider.llm_call(
            messages,
            max_tokens=max_tokens,
            temperature=temperature,
            timeout=timeout_s,
        )
        if not result.text:
            raise ApiError("Empty response from provider")
        _track_usage(result)
        if result.truncated:
            logger.warning("Completion hit max_tokens=%d and may be truncated", max_tokens)
        logger.debug(
            "model=%s duration=%.1fs in=%d out=%d",
            result.model, result.duration, result.input_tokens, result.output_tokens,
        )
        log(f"Model returned {len(result.text)} chars")
        return result.text

    return call_agent


def create_http_caller(base_url: str,
                       api_key: str,
                       model: str,
                       system_prompt: str = DEFAULT_SYSTEM_PROMPT,
                       temperature: float = 0.3,
                       max_tokens: int = 8192,
                       timeout_ms: int = DEFAULT_TIMEOUT_MS,
                       log: Optional[Callable[[str], None]] = None) -> CallAgent:
    """Create a ``call_agent`` backed by an OpenAI-compatible HTTP endpoint.

    Raises (from the returned callable):
        ApiError: non-200 response or an empty completion.
        TimeoutError: no answer within ``timeout_ms``.
    """
    provider = OpenAICompatibleLLMProvider(base_url=base_url, api_key=api_key, model=model)
    return caller_from_provider(
        provider,
        system_prompt=system_prompt,
        temperature=temperature,
        max_tokens=max_tokens,
        timeout_ms=timeout_ms,
        log=log,
    )


def create_caller_from_config(config, log: Optional[Callable[[str], None]] = None) -> CallAgent:
    """Build the HTTP caller from a loaded ``PrismConfig``."""
    return create_http_caller(
        base_url=config.api.base_url,
        api_key=config.api.api_key,
        model=config.api.model,
        temperature=config.process.temperature,
        max_tokens=config.process.max_tokens,
        timeout_ms=config.process.timeout_ms,
        log=log,
    )
