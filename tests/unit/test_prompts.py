import pytest

from echo_ai.agents.prompts import (
    FileTemplateStore,
    PromptTemplateEngine,
    TEMPLATE_NAMES,
    process_template,
)
from echo_ai.core.cache_manager import CacheManager
from echo_ai.core.errors import UnknownTemplateError
from echo_ai.core.state import PromptContext


def test_process_template_substitutes_and_leaves_unknown():
    out = process_template("Hi {{name}}, {{missing}} {{empty}}!", {"name": "Ana", "empty": None})
    assert out == "Hi Ana, {{missing}} !"


def test_process_template_if_else_and_nested_if():
    template = "{{#if a}}A{{#if b}}B{{/if}}{{else}}no-a{{/if}}|{{#if c}}C{{/if}}"
    assert process_template(template, {"a": True, "b": True}) == "AB|"
    assert process_template(template, {"a": True, "b": False, "c": 1}) == "A|C"
    assert process_template(template, {"a": False}) == "no-a|"


def test_process_template_each_with_fields_and_scalars():
    template = "{{#each items}}- {{title}}: {{score}}{{/each}}\n{{#each tags}}#{{this}}{{/each}}"
    out = process_template(
        template,
        {"items": [{"title": "One", "score": 1.0}, {"title": "Two", "score": 2.5}], "tags": ["a", "b"]},
    )
    assert out == "- One: 1\n- Two: 2.5\n#a\n#b"


def test_process_template_does_not_expand_substituted_text():
    template = "{{#each results}}[{{title}}] {{snippet}}{{/each}}\nQ: {{message}}"
    out = process_template(
        template,
        {
            "results": [{"title": "Hooks", "snippet": "use {{message}} and {{#if x}}X{{/if}} here"}],
            "message": "real question",
            "x": True,
        },
    )
    assert out == "[Hooks] use {{message}} and {{#if x}}X{{/if}} here\nQ: real question"


def test_render_rejects_unknown_template(prompts):
    with pytest.raises(UnknownTemplateError):
        prompts.render("not_a_template")
    with pytest.raises(LookupError):
        prompts.render("../secrets")


def test_all_whitelisted_templates_are_packaged():
    store = FileTemplateStore()
    for name in TEMPLATE_NAMES:
        assert store.load(name), name


def test_render_injects_bot_name_and_caches(prompts):
    first = prompts.render("default", PromptContext(message="hello there"))
    assert "You are Echo" in first
    assert "hello there" in first
    second = prompts.render("default", PromptContext(message="hello there"))
    assert second == first
    assert prompts.cache.stats()["hits"] == 1


def test_missing_template_falls_back_to_default(tmp_path):
    (tmp_path / "default.md").write_text("DEFAULT {{message}}", encoding="utf-8")
    engine = PromptTemplateEngine(FileTemplateStore(str(tmp_path)), CacheManager(10, 60), bot_name="Echo")
    assert engine.render("dm", message="yo") == "DEFAULT yo"


def test_missing_default_uses_basic_prompt(tmp_path):
    engine = PromptTemplateEngine(FileTemplateStore(str(tmp_path)), CacheManager(10, 60), bot_name="Nova")
    assert engine.render("technical", message="x").startswith("You are Nova")


def test_store_prefers_echo_extension(tmp_path):
    (tmp_path / "dm.echo").write_text("from echo", encoding="utf-8")
    (tmp_path / "dm.md").write_text("from md", encoding="utf-8")
    assert FileTemplateStore(str(tmp_path)).load("dm") == "from echo"


def test_template_for_context_selection(prompts):
    ctx = PromptContext(message="m", message_type="support")
    assert prompts.template_for_context(ctx, is_dm=True) == "dm"
    assert prompts.template_for_context(ctx, is_persona=True) == "persona"
    assert prompts.template_for_context(ctx, detected_entities=["Ada"]) == "entity_mentions"
    assert prompts.template_for_context(ctx) == "technical"
    assert prompts.template_for_context(ctx.extend(message_type="unknown")) == "default"


def test_get_prompt_for_context_renders_entities(prompts):
    out = prompts.get_prompt_for_context(PromptContext(message="hi"), detected_entities=["Ada", "Linus"])
    assert "- Ada\n- Linus" in out


def test_prompt_context_extend_is_copy():
    base = PromptContext(message="m", variables={"a": 1})
    extended = base.extend(b=2)
    assert base.variables == {"a": 1}
    assert extended.as_variables()["b"] == 2
