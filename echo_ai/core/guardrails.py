from __future__ import annotations

import re

from echo_ai.settings import settings

TRUNCATION_NOTE = "\n[Note: The prompt was truncated due to length.]"

_HORIZONTAL_SPACE = re.compile(r"[ \t\f\v]+")
_BLANK_LINES = re.compile(r"\n\s*\n\s*\n+")


def sanitize_user_message(message: str) -> str:
    # Remove obvious tracking params and suspicious long tokens
    msg = re.sub(r"utm_[a-zA-Z0-9_=-]+", "", message or "")
    msg = re.sub(r"(?<![\w/.-])[A-Za-z0-9_-]{32,}(?![\w/.-])", "[REDACTED]", msg)
    return msg.strip()


def optimize_prompt(prompt: str, max_chars: int | None = None) -> str:
    """Collapse redundant whitespace and cap the prompt length before it reaches the backend."""
    limit = max_chars if max_chars is not None else settings.prompt_max_chars
    # Newlines survive so code blocks keep their shape
    optimized = _HORIZONTAL_SPACE.sub(" ", (prompt or "").strip())
    optimized = _BLANK_LINES.sub("\n\n", optimized)
    if len(optimized) > limit:
        optimized = optimized[:limit] + TRUNCATION_NOTE
    return optimized


def system_prompt(agent: str, bot_name: str | None = None) -> str:
    # Guardrails and scope per agent
    name = bot_name or settings.bot_name
    base = (
        f"You are {name}, a helpful community assistant. Do not request or output secrets;"
        " if you lack context, say so rather than guessing."
    )
    if agent == "research":
        return base + " Ground every claim in the supplied sources and cite them inline as [n]."
    if agent == "support":
        return (
            base
            + " Keep answers concise and actionable; give numbered steps and offer escalation"
            " to human support when the issue is beyond self-service."
        )
    if agent == "classifier":
        return "Only classify the request into one category and do not fabricate content."
    if agent == "analysis":
        return base + " You are an expert code reviewer. Be specific and reference the code you were given."
    return base
