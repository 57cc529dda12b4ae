from types import SimpleNamespace

import httpx
import pytest
from openai import APIConnectionError, AuthenticationError

import ai_client
from ai_client import AIClient
from config import AIConfig

REQUEST = httpx.Request("POST", "https://ai.test/v1/chat/completions")


def completion(content=None, tool_calls=None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    usage = SimpleNamespace(prompt_tokens=120, completion_tokens=30, total_tokens=150)
    return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason="tool_calls")], usage=usage)


class FakeCompletions:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def make_client(*outcomes, attempts=3):
    completions = FakeCompletions(outcomes)
    sdk = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    config = AIConfig(model_name="test-model", temperature=0.3, max_attempts=attempts, retry_delay_seconds=0)
    return AIClient(config=config, client=sdk), completions


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr(ai_client.time, "sleep", lambda seconds: None)


def test_chat_flattens_tool_calls():
    call = SimpleNamespace(id="call_1", function=SimpleNamespace(name="schedule_tasks", arguments='{"schedules": []}'))
    client, completions = make_client(completion(tool_calls=[call]))

    result = client.chat([{"role": "user", "content": "plan"}], tools=[{"type": "function"}],
                         tool_choice={"type": "function", "function": {"name": "schedule_tasks"}})

    assert result["tool_calls"] == [{"id": "call_1", "type": "function",
                                     "function": {"name": "schedule_tasks", "arguments": '{"schedules": []}'}}]
    assert result["usage"]["total_tokens"] == 150
    sent = completions.calls[0]
    assert sent["model"] == "test-model"
    assert sent["temperature"] == 0.3
    assert sent["tool_choice"]["function"]["name"] == "schedule_tasks"


def test_chat_without_tools_sends_no_tool_choice():
    client, completions = make_client(completion(content="hello"))

    result = client.chat([{"role": "user", "content": "hi"}], temperature=0)

    assert result["content"] == "hello"
    assert result["tool_calls"] == []
    assert "tool_choice" not in completions.calls[0]
    assert completions.calls[0]["temperature"] == 0


def test_connection_errors_are_retried():
    client, completions = make_client(APIConnectionError(request=REQUEST), completion(content="ok"))

    assert client.chat([{"role": "user", "content": "hi"}])["content"] == "ok"
    assert len(completions.calls) == 2


def test_gives_up_after_max_attempts():
    client, completions = make_client(*[APIConnectionError(request=REQUEST)] * 2, attempts=2)

    with pytest.raises(APIConnectionError):
        client.chat([{"role": "user", "content": "hi"}])
    assert len(completions.calls) == 2


def test_auth_errors_are_not_retried():
    error = AuthenticationError("bad key", response=httpx.Response(401, request=REQUEST), body=None)
    client, completions = make_client(error, completion(content="never"))

    with pytest.raises(AuthenticationError):
        client.chat([{"role": "user", "content": "hi"}])
    assert len(completions.calls) == 1
