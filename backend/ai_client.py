"""
Timewise - Scheduling Model Client
Thin wrapper over the openai SDK for any OpenAI-compatible chat completions gateway.
"""

import json
import time
from functools import wraps
from typing import List, Dict, Any, Optional, Callable, Union

from openai import OpenAI, APIError, APIConnectionError, RateLimitError

from config import get_ai_config, AIConfig
from logger import get_logger

logger = get_logger("ai_client")

TRANSIENT_ERRORS = (RateLimitError, APIConnectionError)


# ============================================
# RETRY DECORATOR
# ============================================

def retry_transient(func: Callable):
    """
    Retry a client method on rate limits and dropped connections.

    Attempts and the first delay come from the client instance; the delay
    doubles after every failed attempt. Any other APIError is raised at once.
    """
    @wraps(func)
    def wrapper(self, *args, **kwargs):
        for attempt in range(1, self.max_attempts + 1):
            try:
                return func(self, *args, **kwargs)
            except TRANSIENT_ERRORS as e:
                if attempt == self.max_attempts:
                    logger.error(f"Giving up after {attempt} attempts: {e}")
                    raise
                wait_time = self.retry_delay * (2 ** (attempt - 1))
                logger.warning(f"{type(e).__name__}, retrying in {wait_time}s ({attempt}/{self.max_attempts})")
                time.sleep(wait_time)
    return wrapper


def normalize_completion(response) -> Dict[str, Any]:
    """Flatten an SDK ChatCompletion into the dict the scheduler consumes."""
    choice = response.choices[0]
    message = choice.message
    usage = response.usage

    return {
        "content": message.content,
        "tool_calls": [
            {
                "id": tc.id,
                "type": "function",
                "function": {"name": tc.function.name, "arguments": tc.function.arguments},
            }
            for tc in message.tool_calls or []
        ],
        "finish_reason": choice.finish_reason,
        "usage": {
            "prompt_tokens": usage.prompt_tokens if usage else 0,
            "completion_tokens": usage.completion_tokens if usage else 0,
            "total_tokens": usage.total_tokens if usage else 0,
        },
    }


# ============================================
# AI CLIENT
# ============================================

class AIClient:
    """
    Chat completions client used by schedule generation.

    Usage:
        client = AIClient()
        response = client.chat(messages, tools=[SCHEDULE_TASKS_TOOL], tool_choice=FORCED_TOOL_CHOICE)
        response["tool_calls"][0]["function"]["arguments"]  # JSON string
    """

    def __init__(self, config: Optional[AIConfig] = None, client: Optional[OpenAI] = None):
        cfg = config or get_ai_config()

        self.base_url = cfg.api_base_url
        self.model = cfg.model_name
        self.default_temperature = cfg.temperature
        self.default_max_tokens = cfg.max_tokens
        self.max_attempts = cfg.max_attempts
        self.retry_delay = cfg.retry_delay_seconds

        # SDK retries are off; retry_transient owns the backoff
        self._client = client or OpenAI(
            base_url=self.base_url,
            api_key=cfg.api_key or "not-set",
            timeout=cfg.request_timeout_seconds,
            max_retries=0,
        )

        logger.info(f"AIClient ready: base_url={self.base_url}, model={self.model}")

    @retry_transient
    def chat(
        self,
        messages: List[Dict[str, str]],
        tools: Optional[List[Dict]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        tool_choice: Union[str, Dict[str, Any]] = "auto"
    ) -> Dict[str, Any]:
        """
        Send one chat completion request.

        Returns:
            Dict with content, tool_calls, finish_reason and usage
        """
        kwargs = {
            "model": self.model,
            "messages": messages,
            "temperature": self.default_temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.default_max_tokens,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = tool_choice

        result = normalize_completion(self._client.chat.completions.create(**kwargs))

        logger.debug(f"Completion: finish_reason={result['finish_reason']}, "
                     f"tool_calls={len(result['tool_calls'])}, usage={json.dumps(result['usage'])}")
        return result

    def is_available(self) -> bool:
        """Whether the gateway answers a model listing."""
        try:
            self._client.models.list()
            return True
        except APIError as e:
            logger.warning(f"AI gateway unavailable: {e}")
            return False


# ============================================
# SINGLETON INSTANCE
# ============================================

_client: Optional[AIClient] = None


def get_ai_client() -> AIClient:
    """Shared client built from the current AIConfig."""
    global _client
    if _client is None:
        _client = AIClient()
    return _client


def reset_ai_client():
    """Drop the shared client so the next call picks up new config."""
    global _client
    _client = None
