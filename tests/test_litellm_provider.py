import json
import threading
import time
from types import SimpleNamespace

import pytest

from common import llm
from common.cancel import CancelToken
from fakes import RecordingCallbacks
from vwork.config import LLMConfig
from vwork.errors import AbortedError, ProviderError
from vwork.llm.litellm_provider import LiteLLMProvider, messages_to_api
from vwork.llm.provider import LLMResponse, LLMTool, Message, StopReason, ToolCall, ToolResult

TOOLS = [LLMTool(name="demo__echo", input_schema={"type": "object", "properties": {}}, description="echo")]


def _chunk(content=None, tool_calls=None, finish_reason=None):
    delta = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)])


def _tc(index, id=None, name=None, arguments=None):
    return SimpleNamespace(index=index, id=id, function=SimpleNamespace(name=name, arguments=arguments))


@pytest.fixture
def provider(vwork_home, monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    return LiteLLMProvider(LLMConfig(model="sonnet"))


def test_model_alias_is_resolved(provider):
    assert provider.model == "claude-sonnet-4-5-20250929"
    assert provider.provider_name == "anthropic"


def test_chat_parses_tool_calls(provider, monkeypatch):
    captured = {}

    def fake_completion(**kwargs):
        captured.update(kwargs)
        message = SimpleNamespace(
            content="looking",
            tool_calls=[
                SimpleNamespace(id="c1", function=SimpleNamespace(name="demo__echo", arguments='{"x": 1}'))
            ],
        )
        return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason="tool_calls")])

    monkeypatch.setattr(llm, "completion", fake_completion)

    response = provider.chat("sys", [Message(role="user", content="hi")], TOOLS)

    assert response.stop_reason == StopReason.TOOL_USE
    assert response.text == "looking"
    assert response.tool_calls == (ToolCall(id="c1", name="demo__echo", input={"x": 1}),)
    assert captured["api_key"] == "sk-test"
    assert captured["stream"] is False
    assert captured["messages"][0] == {"role": "system", "content": "sys"}
    assert captured["tools"][0]["function"]["name"] == "demo__echo"


def test_chat_wraps_transport_errors(provider, monkeypatch):
    def failing(**kwargs):
        raise RuntimeError("429 rate limited")

    monkeypatch.setattr(llm, "completion", failing)

    with pytest.raises(ProviderError, match="rate limited"):
        provider.chat("sys", [Message(role="user", content="hi")], [])


def test_stream_accumulates_text_and_tool_calls(provider, monkeypatch):
    chunks = [
        SimpleNamespace(choices=[]),
        _chunk(content="Hel"),
        _chunk(content="lo"),
        _chunk(tool_calls=[_tc(0, id="c1", name="demo__echo", arguments='{"x"')]),
        _chunk(tool_calls=[_tc(0, arguments=": 1}")]),
        _chunk(tool_calls=[_tc(1, id="c2", name="demo__echo", arguments="{}")]),
        _chunk(finish_reason="tool_calls"),
    ]
    monkeypatch.setattr(llm, "completion", lambda **kwargs: iter(chunks))
    recorder = RecordingCallbacks()

    response = provider.chat_stream("sys", [Message(role="user", content="hi")], TOOLS, recorder.as_callbacks())

    assert recorder.text == ["Hel", "lo"]
    assert recorder.started == ["c1", "c2"]
    assert response == LLMResponse(
        stop_reason=StopReason.TOOL_USE,
        text="Hello",
        tool_calls=(
            ToolCall(id="c1", name="demo__echo", input={"x": 1}),
            ToolCall(id="c2", name="demo__echo", input={}),
        ),
    )


def test_stream_and_chat_agree_on_end_turn(provider, monkeypatch):
    monkeypatch.setattr(
        llm, "completion", lambda **kwargs: iter([_chunk(content="done"), _chunk(finish_reason="stop")])
    )

    response = provider.chat_stream("sys", [], [], RecordingCallbacks().as_callbacks())

    assert response.stop_reason == StopReason.END_TURN
    assert not response.wants_tools


def test_stream_cancel_raises_aborted(provider, monkeypatch):
    cancel = CancelToken()
    closed = []

    class Stream:
        def __iter__(self):
            yield _chunk(content="a")
            cancel.cancel()
            yield _chunk(content="b")

        def close(self):
            closed.append(True)

    monkeypatch.setattr(llm, "completion", lambda **kwargs: Stream())
    recorder = RecordingCallbacks()

    with pytest.raises(AbortedError):
        provider.chat_stream("sys", [], [], recorder.as_callbacks(), cancel)

    assert recorder.text == ["a"]
    assert closed == [True]
    assert recorder.errors == []


def test_stream_failure_reports_error_once(provider, monkeypatch):
    def broken_stream():
        yield _chunk(content="a")
        raise ConnectionError("connection reset")

    monkeypatch.setattr(llm, "completion", lambda **kwargs: broken_stream())
    recorder = RecordingCallbacks()

    with pytest.raises(ProviderError, match="connection reset"):
        provider.chat_stream("sys", [], [], recorder.as_callbacks())

    assert len(recorder.errors) == 1


def test_invalid_tool_arguments_become_empty_input(provider, monkeypatch):
    monkeypatch.setattr(
        llm,
        "completion",
        lambda **kwargs: iter([_chunk(tool_calls=[_tc(0, id="c1", name="demo__echo", arguments="{oops")])]),
    )

    response = provider.chat_stream("sys", [], TOOLS, RecordingCallbacks().as_callbacks())

    assert response.tool_calls == (ToolCall(id="c1", name="demo__echo", input={}),)
    assert response.stop_reason == StopReason.TOOL_USE


def test_messages_round_trip_to_openai_format(provider):
    response = LLMResponse(
        stop_reason=StopReason.TOOL_USE,
        text="checking",
        tool_calls=(ToolCall(id="c1", name="demo__echo", input={"x": 1}),),
    )
    transcript = [
        Message(role="user", content="hi"),
        provider.make_assistant_message(response),
        provider.make_tool_result_message([ToolResult(tool_call_id="c1", content='{"x":1}')]),
        provider.make_assistant_message(LLMResponse(stop_reason=StopReason.END_TURN, text="done")),
    ]

    api = messages_to_api("sys", transcript)

    assert api == [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "hi"},
        {
            "role": "assistant",
            "content": "checking",
            "tool_calls": [
                {
                    "id": "c1",
                    "type": "function",
                    "function": {"name": "demo__echo", "arguments": json.dumps({"x": 1})},
                }
            ],
        },
        {"role": "tool", "tool_call_id": "c1", "content": '{"x":1}'},
        {"role": "assistant", "content": "done"},
    ]


def test_tool_result_message_keeps_order_and_error_flags(provider):
    message = provider.make_tool_result_message(
        [ToolResult("b", "Error: nope", True), ToolResult("a", "fine")]
    )
    assert message.role == "user"
    assert [(b["tool_use_id"], b["is_error"]) for b in message.content] == [("b", True), ("a", False)]


def test_cancel_closes_a_stalled_stream(provider, monkeypatch):
    cancel = CancelToken()
    closed = threading.Event()

    class StalledStream:
        def __iter__(self):
            yield _chunk(content="hel")
            # Waits for the next chunk until the connection is closed.
            if closed.wait(timeout=3):
                raise ConnectionError("stream closed")
            yield _chunk(content="lo")

        def close(self):
            closed.set()

    monkeypatch.setattr(llm, "completion", lambda **kwargs: StalledStream())
    recorder = RecordingCallbacks()
    timer = threading.Timer(0.2, cancel.cancel)
    timer.start()

    started = time.monotonic()
    with pytest.raises(AbortedError):
        provider.chat_stream("sys", [], [], recorder.as_callbacks(), cancel)
    elapsed = time.monotonic() - started
    timer.cancel()

    assert elapsed < 1.0
    assert closed.is_set()
    assert recorder.text == ["hel"]
    assert recorder.errors == []


def test_corrupt_token_file_falls_back_to_env(vwork_home, monkeypatch, caplog):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-env")
    auth_dir = vwork_home / "auth"
    auth_dir.mkdir(parents=True)
    (auth_dir / "anthropic.json").write_text("{not json", encoding="utf-8")
    captured = {}

    def fake_completion(**kwargs):
        captured.update(kwargs)
        return iter([_chunk(content="ok"), _chunk(finish_reason="stop")])

    monkeypatch.setattr(llm, "completion", fake_completion)
    provider = LiteLLMProvider(LLMConfig(model="sonnet"))

    response = provider.chat_stream("sys", [], [], RecordingCallbacks().as_callbacks())

    assert response.text == "ok"
    assert captured["api_key"] == "sk-env"
    assert "Ignoring malformed token file" in caplog.text


def test_credential_failure_becomes_provider_error(provider, monkeypatch):
    def broken_refresh():
        raise OSError("permission denied")

    monkeypatch.setattr(provider.credentials, "refresh", broken_refresh)
    recorder = RecordingCallbacks()

    with pytest.raises(ProviderError, match="permission denied"):
        provider.chat_stream("sys", [], [], recorder.as_callbacks())

    assert len(recorder.errors) == 1
