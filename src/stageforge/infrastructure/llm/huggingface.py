"""
HuggingFace Inference API provider implementation.

Connects to HuggingFace Inference Providers via the huggingface_hub
InferenceClient for chat completion.
"""

import logging
import os
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


@dataclass
class HuggingFaceProviderOptions:
    """Adapter options read from ProviderConfig.options.

    This typed config ensures unknown fields are rejected at construction time.
    """

    api_key: str | None = None  # Auto-detects from HF_TOKEN env var
    provider: str | None = None  # e.g. "auto", "hf-inference", "together"
    temperature: float = 0.7
    max_tokens: int = 4096
    system_prompt: str = ""


class HuggingFaceProvider(ProviderInterface):
    """Connects to HuggingFace Inference API using huggingface_hub."""

    options_class = HuggingFaceProviderOptions

    def __init__(self, config: ProviderConfig) -> None:
        super().__init__(config)
        self._options = HuggingFaceProviderOptions(**dict(config.options))

        try:
            from huggingface_hub import InferenceClient, InferenceTimeoutError
            from huggingface_hub.errors import HfHubHTTPError
        except ImportError as err:
            raise ImportError(
                "huggingface_hub library required: pip install huggingface_hub"
            ) from err

        api_key = self._options.api_key
        if api_key is None:
            api_key = os.environ.get("HF_TOKEN")
            if not api_key:
                raise ValueError(
                    "HuggingFace API key required: set HF_TOKEN environment "
                    "variable or pass api_key in provider options"
                )

        client_kwargs: dict[str, Any] = {
            "api_key": api_key,
            "timeout": config.timeout,
        }
        if self._options.provider is not None:
            client_kwargs["provider"] = self._options.provider

        self._client = InferenceClient(**client_kwargs)
        self._timeout_error = InferenceTimeoutError
        self._http_error = HfHubHTTPError

    def send(
        self,
        call: ProviderCall,
        rendered_prompt: str,
        params: Mapping[str, Any],
    ) -> ProviderResponse:
        messages = build_messages(
            self._options.system_prompt, call.history, rendered_prompt
        )

        call.cancel_token.raise_if_cancelled()
        try:
            response = self._client.chat_completion(
                messages=messages,
                model=call.model,
                temperature=params.get("temperature", self._options.temperature),
                max_tokens=params.get("max_tokens", self._options.max_tokens),
            )
        except self._timeout_error as e:
            raise Timeout(f"{self.name} timed out", call.timeout) from e
        except self._http_error as e:
            http_response = getattr(e, "response", None)
            status = getattr(http_response, "status_code", None)
            if status == 429:
                raise RateLimited(
                    self.name,
                    parse_retry_after(getattr(http_response, "headers", None)),
                ) from e
            raise ProviderError(self.name, str(e)) from e

        content = response.choices[0].message.content or ""
        logger.debug(
            "[%s] %s returned %d chars", call.session_id, self.name, len(content)
        )
        return ProviderResponse(
            text=content,
            usage=usage_from_response(
                getattr(response, "usage", None), messages, content
            ),
            model=call.model,
        )
