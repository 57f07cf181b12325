"""
Completion API Client
=====================

Async HTTP client for OpenAI-compatible chat completion endpoints
(OpenAI, OpenRouter, DeepSeek, local gateways).

Never raises: every failure is reported in LLMCallResult with an
`error_kind` the caller can map to its own failure categories.
"""

import httpx
import logging
from typing import Optional, Dict, Any, List
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# error_kind values
ERROR_CONFIG = "config"
ERROR_TIMEOUT = "timeout"
ERROR_HTTP = "http"
ERROR_TRANSPORT = "transport"
ERROR_RESPONSE = "response"


@dataclass
class LLMCallResult:
    """Result from an LLM API call"""
    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    raw_response: Optional[Dict] = None
    success: bool = True
    error: Optional[str] = None
    error_kind: Optional[str] = None


class CompletionClient:
    """
    Base async client for chat completions.

    The underlying httpx.AsyncClient is created lazily and reused.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        base_url: str = "https://api.openai.com/v1",
        timeout: int = 60,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client"""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self):
        """Close the HTTP client"""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _failure(self, kind: str, error: str, raw: Optional[Dict] = None) -> LLMCallResult:
        return LLMCallResult(
            content="",
            model=self.model,
            success=False,
            error=error,
            error_kind=kind,
            raw_response=raw,
        )

    async def call(
        self,
        messages: List[Dict[str, str]],
        response_format: Optional[Dict] = None,
        temperature: float = 0,
        max_tokens: int = 4096
    ) -> LLMCallResult:
        """
        Make a chat completion call.

        Args:
            messages: List of message dicts with role and content
            response_format: Optional format spec (e.g., {"type": "json_object"})
            temperature: Sampling temperature (0 = lowest variance)
            max_tokens: Maximum response tokens

        Returns:
            LLMCallResult with content or error
        """
        if not self.api_key:
            return self._failure(ERROR_CONFIG, "API key not configured")

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        if response_format:
            payload["response_format"] = response_format

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            client = await self._get_client()
            response = await client.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers=headers
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            logger.error(f"Completion request timed out after {self.timeout}s")
            return self._failure(ERROR_TIMEOUT, f"Timeout: {type(e).__name__}")
        except httpx.HTTPStatusError as e:
            logger.error(f"Completion API error: {e.response.status_code}")
            return self._failure(ERROR_HTTP, f"HTTP {e.response.status_code}")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Completion request failed: {type(e).__name__}: {e}")
            return self._failure(ERROR_TRANSPORT, str(e))

        # Extract content
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            logger.error(f"Completion response missing content: {e}")
            return self._failure(ERROR_RESPONSE, f"Response missing content: {e}", raw=data)

        if content is None:
            content = ""

        usage = data.get("usage") or {}

        return LLMCallResult(
            content=content,
            model=data.get("model", self.model),
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
            raw_response=data,
            success=True
        )
