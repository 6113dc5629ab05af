import asyncio
from types import SimpleNamespace

import pytest
from openai import OpenAIError

from echo_ai.core.errors import BackendError
from echo_ai.settings import Settings
from echo_ai.tools.llm import OpenAIBackend


class FakeCompletions:
    def __init__(self, content="  Hello!  ", error=None):
        self.content = content
        self.error = error
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def make_backend(completions):
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAIBackend(Settings(), client=client)


def test_complete_sends_system_and_optimized_prompt():
    completions = FakeCompletions()
    backend = make_backend(completions)

    reply = asyncio.run(backend.complete("Hello    there\n\n\n\nfriend", system_prompt="be nice", temperature=0.0))

    assert reply == "Hello!"
    messages = completions.kwargs["messages"]
    assert messages[0] == {"role": "system", "content": "be nice"}
    assert messages[1] == {"role": "user", "content": "Hello there\n\nfriend"}
    assert completions.kwargs["temperature"] == 0.0
    assert completions.kwargs["max_tokens"] == backend.config.openai_max_tokens


@pytest.mark.parametrize(
    "completions",
    [FakeCompletions(error=OpenAIError("quota")), FakeCompletions(content=""), FakeCompletions(content=None)],
)
def test_failures_surface_as_backend_error(completions):
    with pytest.raises(BackendError):
        asyncio.run(make_backend(completions).complete("hi"))


def test_missing_api_key_is_backend_error(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    backend = OpenAIBackend(Settings(_env_file=None))
    with pytest.raises(BackendError):
        asyncio.run(backend.complete("hi"))
