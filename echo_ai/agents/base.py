from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Type, TypeVar, Union
import logging

from pydantic import BaseModel

from echo_ai.agents.config import AgentConfig
from echo_ai.agents.prompts import PromptTemplateEngine
from echo_ai.core.errors import BackendError, ParsingError
from echo_ai.core.helpers import parse_structured
from echo_ai.core.state import AgentResponse
from echo_ai.settings import settings
from echo_ai.tools.base import LanguageBackend

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class BaseAgent(ABC):
    """
    Contract shared by every capability agent.

    ``can_handle`` is a cheap keyword predicate with no side effects;
    ``process`` does the work and always returns an AgentResponse.
    """

    def __init__(
        self,
        backend: LanguageBackend,
        prompts: PromptTemplateEngine,
        config: AgentConfig,
        bot_name: Optional[str] = None,
    ):
        self.backend = backend
        self.prompts = prompts
        self.config = config
        self.bot_name = bot_name or settings.bot_name

    @property
    def name(self) -> str:
        return self.config.name

    async def can_handle(self, message: str) -> bool:
        return False

    @abstractmethod
    async def process(
        self, message: str, user_id: str, context: Optional[Dict[str, Any]] = None
    ) -> AgentResponse: ...

    async def _complete(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """One backend call with this agent's persona and sampling defaults. Raises BackendError."""
        return await self.backend.complete(
            prompt,
            system_prompt=system_prompt if system_prompt is not None else self.config.system_prompt(self.bot_name),
            temperature=temperature if temperature is not None else self.config.temperature,
            max_tokens=max_tokens if max_tokens is not None else self.config.max_tokens,
        )

    async def _complete_structured(
        self,
        prompt: str,
        schema: Type[T],
        fallback: Union[T, Callable[[], T]],
        *,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = 0.2,
        max_tokens: Optional[int] = None,
    ) -> T:
        """Ask for JSON matching ``schema``; on backend or parse failure return ``fallback``."""
        try:
            raw = await self._complete(
                prompt, system_prompt=system_prompt, temperature=temperature, max_tokens=max_tokens
            )
            return parse_structured(raw, schema)
        except (BackendError, ParsingError) as e:
            logger.warning(f"{self.name}: structured {schema.__name__} unavailable, using fallback ({e})")
            return fallback() if callable(fallback) else fallback
