import asyncio
import json
import logging
import re
from typing import Any, Awaitable, List, Optional, Set, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from echo_ai.core.errors import ParsingError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

STOP_WORDS = {
    "a", "an", "the", "and", "or", "but", "is", "are", "was", "were", "to", "of",
    "in", "for", "with", "how", "what", "why", "when", "where", "does", "do",
    "can", "you", "your", "this", "that", "about", "please", "there", "have",
}

# Strong references to fire-and-forget tasks so they are not garbage collected mid-flight
_background_tasks: Set[asyncio.Task] = set()


def extract_keywords(message: str, limit: int = 5) -> List[str]:
    """Lowercased content words longer than three characters, in order of appearance."""
    words = re.sub(r"[^\w\s-]", "", (message or "").lower()).split()
    seen: List[str] = []
    for word in words:
        if len(word) > 3 and word not in STOP_WORDS and word not in seen:
            seen.append(word)
    return seen[:limit]


def parse_structured(text: str, schema: Type[T]) -> T:
    """
    Parse backend text into ``schema``.

    Accepts a bare JSON object or one embedded in prose/code fences.
    Raises ParsingError when nothing valid can be extracted.
    """
    if not text:
        raise ParsingError("empty response")
    match = _JSON_OBJECT.search(text)
    payload = match.group(0) if match else text
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise ParsingError(f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ParsingError("expected a JSON object")
    try:
        return schema.model_validate(data)
    except SchemaError as e:
        raise ParsingError(f"schema mismatch for {schema.__name__}: {e}") from e


def spawn_background(coro: Awaitable[Any], description: str) -> Optional[asyncio.Task]:
    """Run ``coro`` detached from the caller. Failures are logged, never raised."""
    try:
        task = asyncio.get_running_loop().create_task(coro)
    except RuntimeError:
        # No running loop; drop the coroutine cleanly
        if hasattr(coro, "close"):
            coro.close()
        logger.warning(f"No event loop for background task: {description}")
        return None

    _background_tasks.add(task)

    def _done(t: asyncio.Task) -> None:
        _background_tasks.discard(t)
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            logger.error(f"Background task failed ({description}): {exc}")

    task.add_done_callback(_done)
    return task


async def drain_background_tasks() -> None:
    """Await every pending background task. Used by tests and on shutdown."""
    while True:
        pending = [t for t in _background_tasks if not t.done()]
        if not pending:
            return
        await asyncio.gather(*pending, return_exceptions=True)
