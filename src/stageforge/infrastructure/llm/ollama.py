"""
Ollama provider implementation.

Connects to Ollama instances via the OpenAI-compatible API. Works against
any OpenAI-compatible endpoint by changing base_url and api_key.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from stageforge.domain.context import ProviderCall
from stageforge.domain.exceptions import ProviderError, RateLimited, Timeout
from stageforge.domain.interfaces import ProviderInterface
from stageforge.domain.models import ProviderConfig, ProviderResponse
from stageforge.infrastructure.llm.messages import (
    build_messages,
    parse_retry_after,
    usage_from_response,
)

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434/v1"


@dataclass
class OllamaProviderOptions:
    """Adapter options read from ProviderConfig.options.

    This typed config ensures unknown fields are rejected at construction time.
    """

    base_url: str = DEFAULT_OLLAMA_URL
    api_key: str = "ollama"  # required by the client but unused by Ollama
    temperature: float = 0.7
    max_tokens: int | None = None
    system_prompt: str = ""


class OllamaProvider(ProviderInterface):
    """Connects to Ollama instance using OpenAI-compatible API."""

    options_class = OllamaProviderOptions

    def __init__(self, config: ProviderConfig):
        super().__init__(config)
        self._options = OllamaProviderOptions(**dict(config.options))

        try:
            import openai
        except ImportError as err:
            raise ImportError("openai library required: pip install openai") from err

        self._openai = openai
        self._client = openai.OpenAI(
            base_url=self._options.base_url,
            api_key=self._options.api_key,
            timeout=config.timeout,
            max_retries=0,  # retries belong to the orchestrator's policy
        )

    def send(
        self,
        call: ProviderCall,
        rendered_prompt: str,
        params: Mapping[str, Any],
    ) -> ProviderResponse:
        messages = build_messages(
            self._options.system_prompt, call.history, rendered_prompt
        )
        request: dict[str, Any] = {
            "model": call.model,
            "messages": messages,
            "temperature": params.get("temperature", self._options.temperature),
            "timeout": call.timeout,
        }
        max_tokens = params.get("max_tokens", self._options.max_tokens)
        if max_tokens is not None:
            request["max_tokens"] = max_tokens

        call.cancel_token.raise_if_cancelled()
        errors = self._openai
        try:
            response = self._client.chat.completions.create(**request)
        except errors.RateLimitError as e:
            raise RateLimited(
                self.name, parse_retry_after(getattr(e.response, "headers", None))
            ) from e
        except errors.APITimeoutError as e:
            raise Timeout(f"{self.name} timed out", call.timeout) from e
        except errors.APIError as e:
            raise ProviderError(self.name, str(e)) from e

        content = response.choices[0].message.content or ""
        logger.debug(
            "[%s] %s returned %d chars", call.session_id, self.name, len(content)
        )
        return ProviderResponse(
            text=content,
            usage=usage_from_response(response.usage, messages, content),
            model=getattr(response, "model", None) or call.model,
        )
