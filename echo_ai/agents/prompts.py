"""
Agent Prompts - File-backed prompt templates

Templates live as ``<name>.echo``, ``<name>.md`` or ``<name>.txt`` files and use a
small mustache-like syntax:

- ``{{var}}`` substitution (unknown variables are left untouched)
- ``{{#if var}}...{{/if}}`` and ``{{#if var}}...{{else}}...{{/if}}``
- ``{{#each list}}...{{/each}}`` with item fields, or ``{{this}}`` for scalars

Only whitelisted template names can be rendered. Rendered output is cached.
"""

import hashlib
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from echo_ai.core.cache_manager import CacheManager
from echo_ai.core.errors import UnknownTemplateError
from echo_ai.core.state import PromptContext
from echo_ai.settings import settings

logger = logging.getLogger(__name__)

TEMPLATE_NAMES = (
    "default",
    "dm",
    "persona",
    "entity_mentions",
    "technical",
    "conversation",
    "knowledge_synthesis",
    "research_synthesis",
    "technical_support",
    "code_analysis",
    "classification",
)

PROMPT_EXTENSIONS = (".echo", ".md", ".txt")

# message_type -> template
MESSAGE_TYPE_TEMPLATES = {
    "technical": "technical",
    "support": "technical",
    "knowledge": "knowledge_synthesis",
    "research": "research_synthesis",
    "code": "code_analysis",
    "conversation": "conversation",
}

_EACH_BLOCK = re.compile(r"{{#each (\w+)}}([\s\S]*?){{/each}}")
# Bodies may not contain another {{#if}} or {{/if}}, so the innermost block resolves first
_IF_BODY = r"((?:(?!{{#if |{{/if}}|{{else}})[\s\S])*)"
_IF_ELSE_BLOCK = re.compile(r"{{#if (\w+)}}" + _IF_BODY + r"{{else}}" + _IF_BODY + r"{{/if}}")
_IF_BLOCK = re.compile(r"{{#if (\w+)}}" + _IF_BODY + r"{{/if}}")
_VARIABLE = re.compile(r"{{(\w+)}}")
_PLACEHOLDER = re.compile(r"\x00(\d+)\x00")


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def process_template(template: str, variables: Mapping[str, Any]) -> str:
    """Render ``template`` against ``variables``. Blocks resolve before plain variables."""
    if not template:
        return ""

    # Substituted values are never parsed again; rendered each-blocks wait behind placeholders
    each_output: List[str] = []

    def lookup(fields: Mapping[str, Any], m: re.Match) -> str:
        name = m.group(1)
        if name in fields:
            return _text(fields[name])
        if name in variables:
            return _text(variables[name])
        return m.group(0)

    def render_each(match: re.Match) -> str:
        items = variables.get(match.group(1))
        if not isinstance(items, (list, tuple)):
            return ""
        body = match.group(2)
        rendered: List[str] = []
        for item in items:
            if isinstance(item, Mapping):
                fields = item
            elif hasattr(item, "model_dump"):
                fields = item.model_dump()
            else:
                fields = {"this": item}
            rendered.append(_VARIABLE.sub(lambda m: lookup(fields, m), body))
        each_output.append("\n".join(rendered))
        return f"\x00{len(each_output) - 1}\x00"

    processed = _EACH_BLOCK.sub(render_each, template)
    while True:
        previous = processed
        processed = _IF_ELSE_BLOCK.sub(
            lambda m: m.group(2) if variables.get(m.group(1)) else m.group(3), processed
        )
        processed = _IF_BLOCK.sub(lambda m: m.group(2) if variables.get(m.group(1)) else "", processed)
        if processed == previous:
            break
    processed = _VARIABLE.sub(lambda m: lookup({}, m), processed)
    return _PLACEHOLDER.sub(lambda m: each_output[int(m.group(1))], processed)


class FileTemplateStore:
    """Loads raw template text from a directory, trying each supported extension in order."""

    def __init__(self, base_path: Optional[str] = None, extensions: Iterable[str] = PROMPT_EXTENSIONS):
        self.base_path = Path(base_path or settings.prompt_path)
        self.extensions = tuple(extensions)
        self._raw: Dict[str, Optional[str]] = {}

    def load(self, name: str) -> Optional[str]:
        if name in self._raw:
            return self._raw[name]
        template = None
        for extension in self.extensions:
            path = self.base_path / f"{name}{extension}"
            if path.is_file():
                template = path.read_text(encoding="utf-8")
                break
        if template is None:
            logger.warning(f"Prompt template {name} not found with any supported extension in {self.base_path}")
        self._raw[name] = template
        return template

    def clear(self) -> None:
        self._raw.clear()


class PromptTemplateEngine:
    def __init__(
        self,
        store: Optional[FileTemplateStore] = None,
        cache: Optional[CacheManager] = None,
        bot_name: Optional[str] = None,
    ):
        self.store = store or FileTemplateStore()
        self.cache = cache or CacheManager(
            max_size=settings.prompt_cache_size, default_ttl=settings.prompt_cache_ttl, name="prompt"
        )
        self.bot_name = bot_name or settings.bot_name

    def _fallback_prompt(self) -> str:
        return f"You are {self.bot_name}, a helpful community assistant. Be helpful and knowledgeable."

    @staticmethod
    def _cache_key(name: str, variables: Mapping[str, Any]) -> str:
        payload = json.dumps({"t": name, "v": variables}, sort_keys=True, default=str)
        return f"prompt:{hashlib.md5(payload.encode('utf-8')).hexdigest()}"

    def render(self, name: str, context: Optional[PromptContext] = None, **variables: Any) -> str:
        """Render a whitelisted template with the context's variables plus ``variables``."""
        if name not in TEMPLATE_NAMES:
            raise UnknownTemplateError(f"Unknown prompt template: {name}")

        values: Dict[str, Any] = {"bot_name": self.bot_name}
        if context is not None:
            values.update(context.as_variables())
        values.update(variables)

        key = self._cache_key(name, values)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        template = self.store.load(name)
        if template is None and name != "default":
            template = self.store.load("default")
        rendered = process_template(template, values) if template is not None else self._fallback_prompt()

        self.cache.set(key, rendered)
        return rendered

    def template_for_context(
        self,
        context: PromptContext,
        is_dm: bool = False,
        is_persona: bool = False,
        detected_entities: Optional[List[str]] = None,
    ) -> str:
        if is_dm:
            return "dm"
        if is_persona:
            return "persona"
        if detected_entities:
            return "entity_mentions"
        return MESSAGE_TYPE_TEMPLATES.get(context.message_type, "default")

    def get_prompt_for_context(
        self,
        context: PromptContext,
        is_dm: bool = False,
        is_persona: bool = False,
        detected_entities: Optional[List[str]] = None,
    ) -> str:
        name = self.template_for_context(context, is_dm, is_persona, detected_entities)
        extra: Dict[str, Any] = {}
        if detected_entities:
            extra["entities"] = list(detected_entities)
        return self.render(name, context, **extra)
