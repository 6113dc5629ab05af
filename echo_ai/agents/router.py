from typing import Callable, List, Tuple
import logging

from langsmith import traceable

from echo_ai.agents.config import ROUTER_AGENT
from echo_ai.agents.prompts import PromptTemplateEngine
from echo_ai.core.errors import BackendError
from echo_ai.core.guardrails import system_prompt
from echo_ai.core.state import Category, ClassificationResult
from echo_ai.tools.base import LanguageBackend

logger = logging.getLogger(__name__)

# Messages shorter than this never reach the backend
SHORT_MESSAGE_LENGTH = 50

GREETING_HINTS = ("hi", "hello", "hey", "thanks", "ok", "yes", "no", "sure")

RESEARCH_PREFIXES = ("look up", "search for")
TICKET_HINTS = ("ticket", "support request", "help desk")
SUPPORT_PROBLEM_HINTS = ("error", "issue", "problem", "not working")
SUPPORT_ACTION_HINTS = ("help", "fix", "solve")
KNOWLEDGE_HINTS = ("how to", "what is", "explain", "guide", "tutorial")

# Order in which category names are looked for in a backend reply
BACKEND_PARSE_ORDER = (
    Category.RESEARCH,
    Category.TICKET,
    Category.KNOWLEDGE,
    Category.SUPPORT,
    Category.CODE,
    Category.CONVERSATION,
)


def _is_research(msg: str) -> bool:
    return (
        ("research" in msg and ("find" in msg or "search" in msg))
        or msg.startswith(RESEARCH_PREFIXES)
        or "find information about" in msg
    )


def _is_ticket(msg: str) -> bool:
    return (
        any(h in msg for h in TICKET_HINTS)
        or ("help" in msg and "staff" in msg)
        or ("urgent" in msg and ("issue" in msg or "problem" in msg))
    )


def _is_code(msg: str) -> bool:
    words = set(msg.replace("=", " = ").split())
    return (
        "```" in msg
        or ("function" in msg and "{" in msg)
        or ("class" in msg and "{" in msg)
        or (("const" in words or "var" in words) and "=" in msg)
    )


def _is_support(msg: str) -> bool:
    return any(h in msg for h in SUPPORT_PROBLEM_HINTS) and any(h in msg for h in SUPPORT_ACTION_HINTS)


def _is_knowledge(msg: str) -> bool:
    return any(h in msg for h in KNOWLEDGE_HINTS)


# First match wins
RULES: List[Tuple[Category, Callable[[str], bool]]] = [
    (Category.RESEARCH, _is_research),
    (Category.TICKET, _is_ticket),
    (Category.CODE, _is_code),
    (Category.SUPPORT, _is_support),
    (Category.KNOWLEDGE, _is_knowledge),
]


def _starts_with_greeting(msg: str) -> bool:
    first = msg.split(maxsplit=1)[0].strip(",.!?") if msg else ""
    return first in GREETING_HINTS


def classify_by_rules(message: str) -> ClassificationResult | None:
    """Deterministic part of classification; None when the backend has to decide."""
    msg = (message or "").lower().strip()
    for category, matches in RULES:
        if matches(msg):
            return ClassificationResult(category=category, source="rule")
    if len(msg) < SHORT_MESSAGE_LENGTH or _starts_with_greeting(msg):
        return ClassificationResult(category=Category.CONVERSATION, source="short")
    return None


def parse_category(reply: str) -> Category | None:
    lowered = (reply or "").lower()
    for category in BACKEND_PARSE_ORDER:
        if category.value in lowered:
            return category
    return None


class IntentClassifier:
    def __init__(self, backend: LanguageBackend, prompts: PromptTemplateEngine):
        self.backend = backend
        self.prompts = prompts

    @traceable(name="IntentClassifier", metadata={"agent": "IntentClassifier", "tags": ["agent", "router"]})
    async def classify_detailed(self, message: str) -> ClassificationResult:
        result = classify_by_rules(message)
        if result is not None:
            logger.debug(f"Router: {result.category.value.upper()} via {result.source} for '{message[:50]}'")
            return result

        try:
            reply = await self.backend.complete(
                self.prompts.render("classification", message=message),
                system_prompt=system_prompt("classifier"),
                temperature=ROUTER_AGENT.temperature,
                max_tokens=ROUTER_AGENT.max_tokens,
            )
        except BackendError as e:
            logger.warning(f"Router: backend classification failed, defaulting to conversation ({e})")
            return ClassificationResult(category=Category.CONVERSATION, source="default")
        except Exception as e:  # noqa: BLE001
            logger.error(f"Router: unexpected classification failure: {e}")
            return ClassificationResult(category=Category.CONVERSATION, source="default")

        category = parse_category(reply)
        if category is None:
            logger.warning(f"Router: unparseable classification reply '{reply[:50]}'")
            return ClassificationResult(category=Category.CONVERSATION, source="default")

        logger.debug(f"Router: {category.value.upper()} via backend for '{message[:50]}'")
        return ClassificationResult(category=category, source="backend")

    async def classify(self, message: str) -> Category:
        return (await self.classify_detailed(message)).category
