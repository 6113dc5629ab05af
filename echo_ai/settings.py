import logging
from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings
from pydantic import Field


DEFAULT_PROMPT_PATH = str(Path(__file__).parent / "agents" / "templates")


class Settings(BaseSettings):
    app_env: str = Field("dev", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    bot_name: str = Field("Echo", alias="BOT_NAME")

    # OpenAI
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    openai_model: str = Field("gpt-4o-mini", alias="OPENAI_MODEL")
    openai_temperature: float = Field(0.7, alias="OPENAI_TEMPERATURE")
    openai_max_tokens: int = Field(1500, alias="OPENAI_MAX_TOKENS")
    # Prompts longer than this are collapsed and truncated before sending
    prompt_max_chars: int = Field(8000, alias="PROMPT_MAX_CHARS")

    # Web search
    tavily_api_key: str | None = Field(default=None, alias="TAVILY_API_KEY")
    search_timeout_seconds: float = Field(10.0, alias="SEARCH_TIMEOUT_SECONDS")
    search_max_attempts: int = Field(3, alias="SEARCH_MAX_ATTEMPTS")
    search_backoff_base: float = Field(1.0, alias="SEARCH_BACKOFF_BASE")
    research_result_limit: int = Field(7, alias="RESEARCH_RESULT_LIMIT")

    # LangSmith / LangChain tracing
    langsmith_api_key: str | None = Field(default=None, alias="LANGSMITH_API_KEY")
    langsmith_tracing: str | None = Field(default=None, alias="LANGSMITH_TRACING")
    langsmith_project: str | None = Field(default=None, alias="LANGSMITH_PROJECT")
    langsmith_endpoint: str | None = Field(default=None, alias="LANGSMITH_ENDPOINT")

    # Orchestration
    request_timeout_seconds: float = Field(60.0, alias="REQUEST_TIMEOUT_SECONDS")
    chunk_max_length: int = Field(1900, alias="CHUNK_MAX_LENGTH")
    history_limit: int = Field(10, alias="HISTORY_LIMIT")
    history_max_per_user: int = Field(100, alias="HISTORY_MAX_PER_USER")
    background_research: bool = Field(True, alias="BACKGROUND_RESEARCH")
    # Names the conversation agent recognises in messages (JSON list in the environment)
    known_entities: List[str] = Field(default_factory=list, alias="KNOWN_ENTITIES")

    # Prompt templates
    prompt_path: str = Field(DEFAULT_PROMPT_PATH, alias="PROMPT_PATH")
    prompt_cache_size: int = Field(200, alias="PROMPT_CACHE_SIZE")
    prompt_cache_ttl: int = Field(600, alias="PROMPT_CACHE_TTL")

    # Cache Manager Configuration
    general_cache_size: int = Field(500, alias="GENERAL_CACHE_SIZE")
    general_cache_ttl: int = Field(3600, alias="GENERAL_CACHE_TTL")
    knowledge_cache_ttl: int = Field(300, alias="KNOWLEDGE_CACHE_TTL")
    research_cache_size: int = Field(100, alias="RESEARCH_CACHE_SIZE")
    research_cache_ttl: int = Field(3600, alias="RESEARCH_CACHE_TTL")

    # Rate limiting (max requests, window seconds)
    knowledge_creation_limit: int = Field(10, alias="KNOWLEDGE_CREATION_LIMIT")
    knowledge_creation_window: float = Field(3600, alias="KNOWLEDGE_CREATION_WINDOW")
    knowledge_rating_limit: int = Field(5, alias="KNOWLEDGE_RATING_LIMIT")
    knowledge_rating_window: float = Field(300, alias="KNOWLEDGE_RATING_WINDOW")
    conversation_burst_limit: int = Field(3, alias="CONVERSATION_BURST_LIMIT")
    conversation_burst_window: float = Field(5, alias="CONVERSATION_BURST_WINDOW")
    conversation_sustained_limit: int = Field(10, alias="CONVERSATION_SUSTAINED_LIMIT")
    conversation_sustained_window: float = Field(60, alias="CONVERSATION_SUSTAINED_WINDOW")

    # Ticketing
    support_role_id: str | None = Field(default=None, alias="SUPPORT_ROLE_ID")
    ticket_log_channel_id: str | None = Field(default=None, alias="TICKET_LOG_CHANNEL_ID")

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    """Apply the configured log level to the root logger."""
    logging.basicConfig(
        level=(level or settings.log_level or "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
