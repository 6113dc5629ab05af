from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Category(str, Enum):
    TICKET = "ticket"
    KNOWLEDGE = "knowledge"
    SUPPORT = "support"
    CODE = "code"
    RESEARCH = "research"
    CONVERSATION = "conversation"


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    RATE_LIMIT = "rate_limit"
    BACKEND = "backend"
    SEARCH = "search"
    PARSING = "parsing"
    TIMEOUT = "timeout"
    PERMISSION = "permission"
    INTERNAL = "internal"


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    sender_id: str
    guild_context: Optional[Dict[str, Any]] = None


class ClassificationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: Category
    # rule | short | backend | default
    source: str

    @property
    def inconclusive(self) -> bool:
        return self.source == "default"


class AgentResponse(BaseModel):
    content: str = ""
    error: bool = False
    error_kind: Optional[ErrorKind] = None

    # Research augmentation
    needs_research: bool = False
    search_query: Optional[str] = None
    source_results: List[Dict[str, Any]] = Field(default_factory=list)

    needs_more_context: bool = False
    suggested_topics: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def failure(cls, content: str, kind: ErrorKind, **metadata: Any) -> "AgentResponse":
        return cls(content=content, error=True, error_kind=kind, metadata=metadata)


class PromptContext(BaseModel):
    """Inputs for rendering a prompt template. Never mutated; use extend()."""

    model_config = ConfigDict(frozen=True)

    message: str = ""
    message_type: str = "conversation"
    variables: Dict[str, Any] = Field(default_factory=dict)

    def extend(self, **variables: Any) -> "PromptContext":
        return PromptContext(
            message=self.message,
            message_type=variables.pop("message_type", self.message_type),
            variables={**self.variables, **variables},
        )

    def as_variables(self) -> Dict[str, Any]:
        return {"message": self.message, "message_type": self.message_type, **self.variables}


class RequestState(BaseModel):
    """State carried through the orchestration graph for one request."""

    # Core input
    request_id: str
    user_id: str
    text: str
    context: Dict[str, Any] = {}

    # Routing
    category: Optional[Category] = None
    route_source: Optional[str] = None  # prefix | follow_up | rule | short | backend | fallback

    # Agent workflow data
    response: Optional[AgentResponse] = None
    research: Optional[AgentResponse] = None
    research_augmented: bool = False
