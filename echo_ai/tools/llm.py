"""
OpenAI chat-completions backend.

Implements the LanguageBackend protocol. Every prompt passes through
optimize_prompt before it is sent; every client failure surfaces as BackendError.
"""

from typing import Any, Optional
import logging

from openai import AsyncOpenAI, OpenAIError

from echo_ai.core.errors import BackendError
from echo_ai.core.guardrails import optimize_prompt
from echo_ai.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class OpenAIBackend:
    def __init__(self, config: Settings = default_settings, client: Any = None):
        self.config = config
        self.model = config.openai_model
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            if not self.config.openai_api_key:
                raise BackendError("OPENAI_API_KEY is not configured")
            self._client = AsyncOpenAI(api_key=self.config.openai_api_key)
        return self._client

    async def complete(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": optimize_prompt(prompt, self.config.prompt_max_chars)})

        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.config.openai_temperature if temperature is None else temperature,
                max_tokens=max_tokens or self.config.openai_max_tokens,
            )
        except OpenAIError as e:
            logger.error(f"OpenAI completion failed: {e}")
            raise BackendError(f"Language backend request failed: {e}") from e

        try:
            content = completion.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise BackendError("Malformed completion response") from e
        if not content:
            raise BackendError("Empty completion response")
        return content.strip()
