"""LLM client wrapping both Anthropic and OpenAI SDKs.

This is the only place that knows about SDK exception types. Every failure
leaving ``LLMClient.complete`` is one of the tagged ``LLMServiceError``
subclasses, so retry decisions downstream never inspect message text.
The SDKs' own retries are disabled; retrying is the caller's policy.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from types import ModuleType

from qadigest.core.config import LLMConfig
from qadigest.core.errors import (
    LLMAuthenticationError,
    LLMError,
    LLMRateLimitError,
    LLMServiceError,
    LLMTimeoutError,
)

logger = logging.getLogger(__name__)

DEEPSEEK_BASE_URL = "https://api.deepseek.com"
_RETRY_AFTER_RE = re.compile(r"retry after (\d+(?:\.\d+)?)", re.I)


@dataclass
class LLMResponse:
    """Response from an LLM completion call."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


def _parse_retry_after(exc: BaseException) -> float | None:
    """Read a retry hint from the ``retry-after`` header, else the message."""
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if headers is not None:
        try:
            value = headers.get("retry-after")
        except AttributeError:
            value = None
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                pass
    match = _RETRY_AFTER_RE.search(str(exc))
    if match:
        return float(match.group(1))
    return None


def classify_error(exc: BaseException, sdk: ModuleType) -> LLMServiceError:
    """Map an SDK exception onto the tagged error taxonomy.

    ``sdk`` is the ``anthropic`` or ``openai`` module; both expose the same
    exception class names. Order matters: APITimeoutError subclasses
    APIConnectionError, and the status errors subclass APIError.
    """
    if isinstance(exc, LLMServiceError):
        return exc
    if isinstance(exc, sdk.APITimeoutError):
        return LLMTimeoutError(str(exc) or "LLM request timed out", cause=exc)
    if isinstance(exc, sdk.RateLimitError):
        return LLMRateLimitError(str(exc), retry_after=_parse_retry_after(exc), cause=exc)
    if isinstance(exc, (sdk.AuthenticationError, sdk.PermissionDeniedError)):
        return LLMAuthenticationError(str(exc), cause=exc)
    return LLMError(f"LLM invocation failed: {exc}", cause=exc)


class LLMClient:
    """LLM client that dispatches to Anthropic or OpenAI SDKs.

    Supports four providers:
    - "anthropic": Uses the anthropic SDK
    - "openai": Uses the openai SDK with OpenAI's default base URL
    - "deepseek": Uses the openai SDK with the DeepSeek base URL
    - "openai-compatible": Uses the openai SDK with a custom base_url
      (for Ollama, vLLM, etc.)
    """

    def __init__(self, config: LLMConfig) -> None:
        self.config = config
        self._client = self._create_client()

    def _create_client(self):
        """Create the underlying SDK client based on provider."""
        api_key = self.config.resolve_api_key()
        kwargs: dict = {"max_retries": 0}
        if api_key:
            kwargs["api_key"] = api_key

        if self.config.provider == "anthropic":
            import anthropic

            if self.config.base_url:
                kwargs["base_url"] = self.config.base_url
            return anthropic.Anthropic(**kwargs)

        elif self.config.provider in ("openai", "openai-compatible", "deepseek"):
            import openai

            if self.config.base_url:
                kwargs["base_url"] = self.config.base_url
            elif self.config.provider == "deepseek":
                kwargs["base_url"] = DEEPSEEK_BASE_URL
            elif self.config.provider == "openai-compatible":
                raise ValueError(
                    "openai-compatible provider requires base_url to be set"
                )
            return openai.OpenAI(**kwargs)

        else:
            raise ValueError(
                f"Unknown LLM provider: {self.config.provider!r}. "
                f"Supported: 'anthropic', 'openai', 'deepseek', 'openai-compatible'"
            )

    def complete(
        self,
        messages: list[dict],
        max_tokens: int | None = None,
        temperature: float | None = None,
        artifact_desc: str = "request",
    ) -> LLMResponse:
        """Send one completion request. No retries happen here.

        Args:
            messages: List of message dicts with 'role' and 'content' keys.
            max_tokens: Override max_tokens from config.
            temperature: Override temperature from config.
            artifact_desc: Human-readable description for log messages.

        Returns:
            LLMResponse with content and token usage.

        Raises:
            LLMServiceError: classified failure (timeout, rate limit,
                authentication, or generic).
        """
        resolved_max_tokens = max_tokens if max_tokens is not None else self.config.max_tokens
        resolved_temperature = temperature if temperature is not None else self.config.temperature

        logger.debug(
            "LLM request for %s: provider=%s model=%s messages=%d",
            artifact_desc, self.config.provider, self.config.model, len(messages),
        )
        if self.config.provider == "anthropic":
            response = self._complete_anthropic(messages, resolved_max_tokens, resolved_temperature)
        else:
            response = self._complete_openai(messages, resolved_max_tokens, resolved_temperature)
        logger.debug(
            "LLM response for %s: tokens=%d+%d, content_len=%d",
            artifact_desc, response.input_tokens, response.output_tokens, len(response.content),
        )
        return response

    def _complete_anthropic(
        self,
        messages: list[dict],
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        import anthropic

        try:
            response = self._client.messages.create(
                model=self.config.model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=messages,
                timeout=self.config.request_timeout,
            )
        except anthropic.APIError as exc:
            raise classify_error(exc, anthropic) from exc

        input_tokens = getattr(response.usage, "input_tokens", 0)
        output_tokens = getattr(response.usage, "output_tokens", 0)
        return LLMResponse(
            content=response.content[0].text if response.content else "",
            model=getattr(response, "model", None) or self.config.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

    def _complete_openai(
        self,
        messages: list[dict],
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        import openai

        try:
            response = self._client.chat.completions.create(
                model=self.config.model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=messages,
                timeout=self.config.request_timeout,
            )
        except openai.APIError as exc:
            raise classify_error(exc, openai) from exc

        choice = response.choices[0]
        usage = response.usage
        return LLMResponse(
            content=choice.message.content or "",
            model=response.model if response.model else self.config.model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )
