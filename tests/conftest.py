"""Shared fixtures for AgentScript tests."""

import pytest

from agentscript.credentials import SecretResolver
from agentscript.dsl import AgentOrchestrator, StepKind
from agentscript.providers import CallableProvider, ProviderRegistry


HELLO_TERSE = '''@agent hi v1
trigger http POST /hi
var m = input.message
step s:
  kind llm
  provider openai
  model gpt-4o
  prompt """Hello {m}"""
  save r
output r
@end
'''

HELLO_DECLARATIVE = '''@agent hi v1
trigger:
  type: http
  method: POST
  path: /hi
vars:
  m: input.message
steps:
  - id: s
    kind: llm
    provider: openai
    model: gpt-4o
    prompt: Hello {m}
    save: r
outputs:
  result: "{r}"
@end
'''


class RecordingProvider:
    """Collects provider calls and answers with a fixed reply."""

    def __init__(self, reply="Hello world!"):
        self.reply = reply
        self.calls = []

    def __call__(self, kind, model, rendered_input, context):
        self.calls.append({"kind": kind, "model": model, "input": rendered_input})
        return self.reply


@pytest.fixture
def hello_terse():
    return HELLO_TERSE


@pytest.fixture
def hello_declarative():
    return HELLO_DECLARATIVE


@pytest.fixture
def recorder():
    return RecordingProvider()


@pytest.fixture
def registry(recorder):
    registry = ProviderRegistry()
    registry.register(
        "openai",
        CallableProvider(recorder, name="openai", kinds=[StepKind.LLM, StepKind.VISION]),
        default_for=[StepKind.LLM, StepKind.VISION],
    )
    return registry


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def orchestrator(registry, sleeps):
    async def fake_sleep(delay):
        sleeps.append(delay)

    return AgentOrchestrator(
        registry=registry,
        resolver=SecretResolver(environ={}),
        sleep=fake_sleep,
    )
