import json
import threading
import time

from vwork.errors import AbortedError, ToolServerError
from vwork.llm.provider import (
    LLMProvider,
    LLMResponse,
    LLMTool,
    Message,
    StopReason,
    StreamCallbacks,
    ToolCall,
)
from vwork.llm.litellm_provider import LiteLLMProvider


def text_response(text: str) -> LLMResponse:
    return LLMResponse(stop_reason=StopReason.END_TURN, text=text)


def tool_response(*calls: ToolCall, text: str = "") -> LLMResponse:
    return LLMResponse(stop_reason=StopReason.TOOL_USE, text=text, tool_calls=tuple(calls))


class FakeProvider(LLMProvider):
    """Replays scripted responses. The last one repeats once the script runs out."""

    def __init__(self, responses, *, chunk_size: int = 2, before_chunk=None):
        self.responses = list(responses)
        self.chunk_size = chunk_size
        self.before_chunk = before_chunk
        self.model = "fake-model"
        self.calls: list[dict] = []

    def _next(self, system_prompt, messages, tools):
        self.calls.append({"system_prompt": system_prompt, "messages": list(messages), "tools": list(tools)})
        index = min(len(self.calls), len(self.responses)) - 1
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        return response

    def chat(self, system_prompt, messages, tools):
        return self._next(system_prompt, messages, tools)

    def chat_stream(self, system_prompt, messages, tools, callbacks, cancel=None):
        response = self._next(system_prompt, messages, tools)
        text = response.text
        for i in range(0, len(text), self.chunk_size):
            if self.before_chunk is not None:
                self.before_chunk(i)
            if cancel is not None and cancel.cancelled:
                raise AbortedError("aborted during stream")
            callbacks.on_text(text[i : i + self.chunk_size])
        if cancel is not None and cancel.cancelled:
            raise AbortedError("aborted during stream")
        for call in response.tool_calls:
            callbacks.on_tool_start(ToolCall(id=call.id, name=call.name))
        return response

    # Same message encoding the real provider uses.
    def make_assistant_message(self, response):
        return LiteLLMProvider.make_assistant_message(self, response)

    def make_tool_result_message(self, results):
        return LiteLLMProvider.make_tool_result_message(self, results)


class FakeToolServer:
    """Tool server with ``demo__*`` tools: echo, slow (sleeps ``delay``) and fail."""

    def __init__(self, extra_tools=()):
        self.calls: list[tuple[str, dict]] = []
        self._lock = threading.Lock()
        self.extra_tools = list(extra_tools)

    def get_all_tools(self):
        schema = {"type": "object", "properties": {}}
        return [
            LLMTool(name="demo__echo", input_schema=schema, description="[demo] echo"),
            LLMTool(name="demo__slow", input_schema=schema, description="[demo] slow"),
            LLMTool(name="demo__fail", input_schema=schema, description="[demo] fail"),
            *self.extra_tools,
        ]

    def call_tool(self, name, arguments, cancel=None):
        with self._lock:
            self.calls.append((name, arguments))
        if name == "demo__echo":
            return json.dumps(arguments, separators=(",", ":"))
        if name == "demo__slow":
            time.sleep(arguments.get("delay", 0))
            return arguments.get("tag", "")
        if name == "demo__fail":
            raise ToolServerError(arguments.get("message", "boom"))
        if name == "demo__structured":
            return {"ok": True, "items": [1, 2]}
        raise ToolServerError(f"Unknown tool: {name}")


class RecordingCallbacks:
    def __init__(self):
        self.text: list[str] = []
        self.started: list[str] = []
        self.ended: list[tuple[str, str, bool]] = []
        self.completed = 0
        self.errors: list[Exception] = []
        self._lock = threading.Lock()

    def as_callbacks(self):
        return StreamCallbacks(
            on_text=self.text.append,
            on_tool_start=self._start,
            on_tool_end=self._end,
            on_complete=self._complete,
            on_error=self.errors.append,
        )

    def _start(self, call):
        with self._lock:
            self.started.append(call.id)

    def _end(self, call, content, is_error):
        with self._lock:
            self.ended.append((call.id, content, is_error))

    def _complete(self):
        self.completed += 1


def user(text: str) -> Message:
    return Message(role="user", content=text)
