"""LiteLLM streaming transport.

Opens streaming chat-completion requests against any provider LiteLLM
supports and yields the text deltas. LiteLLM's exception types are
mapped onto the stream session taxonomy here, so the controller never
has to know about them.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator, Sequence

import litellm

# Suppress LiteLLM's "Give Feedback / Get Help" and "Provider List" banners
litellm.suppress_debug_info = True

from stream_session.errors import TerminalServiceError, TransientTransportError
from stream_session.providers.base import Transport
from stream_session.retry import RETRYABLE_LITELLM_ERRORS, short_error_reason
from stream_session.schemas.config import ModelConfig
from stream_session.schemas.messages import ChatTurn

logger = logging.getLogger(__name__)

# Failures no amount of retrying will fix
_TERMINAL_LITELLM_ERRORS: tuple[type[BaseException], ...] = (
    litellm.AuthenticationError,
    litellm.BadRequestError,
    litellm.NotFoundError,
    litellm.PermissionDeniedError,
    litellm.ContextWindowExceededError,
)


class LiteLLMTransport(Transport):
    """Streaming transport powered by ``litellm.acompletion(stream=True)``.

    Each ``open`` call issues a fresh request; there is no server-side
    resume, so a retried request starts generating from scratch.
    """

    def __init__(self, config: ModelConfig, *, request_timeout: float = 120.0) -> None:
        self._config = config
        self._request_timeout = request_timeout
        # Resolve API key from environment
        self._api_key = os.environ.get(config.api_key_env, "")

    @property
    def name(self) -> str:
        return self._config.display_name

    @property
    def config(self) -> ModelConfig:
        return self._config

    async def open(self, turns: Sequence[ChatTurn]) -> AsyncIterator[str]:
        kwargs = self._build_completion_kwargs(turns)
        try:
            response = await litellm.acompletion(**kwargs)
            async for chunk in response:
                delta = ""
                if chunk.choices and chunk.choices[0].delta:
                    delta = chunk.choices[0].delta.content or ""
                if delta:
                    yield delta
        except _TERMINAL_LITELLM_ERRORS as e:
            raise TerminalServiceError(
                f"{self._config.display_name} rejected the request: {e}"
            ) from e
        except RETRYABLE_LITELLM_ERRORS as e:
            raise TransientTransportError(
                f"{self._config.display_name} stream interrupted "
                f"({short_error_reason(e)})"
            ) from e

    def _build_completion_kwargs(self, turns: Sequence[ChatTurn]) -> dict:
        """Build the kwargs dict for litellm.acompletion."""
        messages = [turn.to_openai() for turn in turns]
        if self._config.system_prompt:
            messages.insert(0, {"role": "system", "content": self._config.system_prompt})

        kwargs: dict = {
            "model": self._config.model,
            "messages": messages,
            "stream": True,
            "timeout": float(self._request_timeout),
        }

        # Set API key if available
        if self._api_key:
            kwargs["api_key"] = self._api_key

        # Set custom API base if configured
        if self._config.api_base:
            kwargs["api_base"] = self._config.api_base

        if self._config.temperature is not None:
            kwargs["temperature"] = self._config.temperature
        if self._config.max_tokens is not None:
            kwargs["max_tokens"] = self._config.max_tokens

        return kwargs
