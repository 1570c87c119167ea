from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Literal

from common.cancel import CancelToken


class StopReason(str, Enum):
    END_TURN = "end_turn"
    TOOL_USE = "tool_use"
    MAX_TOKENS = "max_tokens"


@dataclass(frozen=True, slots=True)
class LLMTool:
    name: str
    input_schema: dict[str, Any]
    description: str = ""


@dataclass(frozen=True, slots=True)
class ToolCall:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolResult:
    tool_call_id: str
    content: str
    is_error: bool = False


@dataclass(frozen=True, slots=True)
class LLMResponse:
    # StopReason for the known cases, the raw provider string otherwise.
    stop_reason: StopReason | str
    text: str = ""
    tool_calls: tuple[ToolCall, ...] = ()

    @property
    def wants_tools(self) -> bool:
        return self.stop_reason != StopReason.END_TURN and bool(self.tool_calls)


@dataclass(frozen=True, slots=True)
class Message:
    role: Literal["user", "assistant"]
    # Plain text or a provider-specific list of content blocks.
    content: Any


def _noop(*_args, **_kwargs) -> None:
    return None


@dataclass
class StreamCallbacks:
    on_text: Callable[[str], None] = _noop
    on_tool_start: Callable[[ToolCall], None] = _noop
    on_tool_end: Callable[[ToolCall, str, bool], None] = _noop
    on_complete: Callable[[], None] = _noop
    on_error: Callable[[Exception], None] = _noop


class LLMProvider(ABC):
    """Contract every LLM backend implements for the agent loop."""

    model: str

    @abstractmethod
    def chat(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: list[LLMTool],
    ) -> LLMResponse:
        """Run a single non-streaming turn. Raises ProviderError on failure."""

    @abstractmethod
    def chat_stream(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: list[LLMTool],
        callbacks: StreamCallbacks,
        cancel: CancelToken | None = None,
    ) -> LLMResponse:
        """Stream one turn through ``callbacks`` and return the aggregate response.

        Raises AbortedError when ``cancel`` fires, ProviderError on failure.
        """

    @abstractmethod
    def make_assistant_message(self, response: LLMResponse) -> Message:
        ...

    @abstractmethod
    def make_tool_result_message(self, results: list[ToolResult]) -> Message:
        ...

    def set_model(self, model: str) -> None:
        self.model = model
