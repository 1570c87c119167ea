from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass
from enum import Enum

from common.cancel import CancelToken, is_cancelled
from vwork.errors import AbortedError, MaxRoundsExceeded
from vwork.llm.provider import (
    LLMProvider,
    LLMResponse,
    LLMTool,
    Message,
    StopReason,
    StreamCallbacks,
    ToolCall,
)
from vwork.tools.dispatcher import ABORTED_CONTENT, ToolDispatcher

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROUNDS = 20
ABORTED_MARKER = "[aborted]"
NOT_EXECUTED_CONTENT = "Not executed: the model ended its turn"


class TurnStatus(str, Enum):
    COMPLETED = "completed"
    MAX_ROUNDS = "max_rounds"


@dataclass(frozen=True, slots=True)
class TurnResult:
    status: TurnStatus
    rounds: int
    text: str = ""
    error: MaxRoundsExceeded | None = None

    @property
    def completed(self) -> bool:
        return self.status == TurnStatus.COMPLETED


class _TurnCallbacks:
    """Wraps caller callbacks for one turn.

    Tool start/end fire exactly once per call id, and on_error at most once.
    Callbacks may arrive from dispatch worker threads.
    """

    def __init__(self, callbacks: StreamCallbacks):
        self.callbacks = callbacks
        self._lock = threading.Lock()
        self._started: dict[str, ToolCall] = {}
        self._ended: set[str] = set()
        self._errored = False
        self.streamed: list[str] = []

    def on_text(self, delta: str) -> None:
        self.streamed.append(delta)
        self.callbacks.on_text(delta)

    def on_tool_start(self, call: ToolCall) -> None:
        with self._lock:
            if call.id in self._started:
                return
            self._started[call.id] = call
        self.callbacks.on_tool_start(call)

    def on_tool_end(self, call: ToolCall, content: str, is_error: bool) -> None:
        with self._lock:
            if call.id in self._ended:
                return
            self._ended.add(call.id)
            announced = call.id in self._started
            self._started.setdefault(call.id, call)
        if not announced:
            self.callbacks.on_tool_start(call)
        self.callbacks.on_tool_end(call, content, is_error)

    def on_error(self, error: Exception) -> None:
        with self._lock:
            if self._errored:
                return
            self._errored = True
        self.callbacks.on_error(error)

    def on_complete(self) -> None:
        self.callbacks.on_complete()

    def settle_unfinished(self, content: str, is_error: bool) -> None:
        """Close out calls that were announced but never dispatched."""
        with self._lock:
            pending = [call for call_id, call in self._started.items() if call_id not in self._ended]
        for call in pending:
            self.on_tool_end(call, content, is_error)

    def for_provider(self) -> StreamCallbacks:
        # on_complete belongs to the turn, not to a single model call.
        return StreamCallbacks(
            on_text=self.on_text,
            on_tool_start=self.on_tool_start,
            on_tool_end=self.on_tool_end,
            on_error=self.on_error,
        )

    def for_dispatch(self) -> StreamCallbacks:
        return StreamCallbacks(on_tool_start=self.on_tool_start, on_tool_end=self.on_tool_end)


class AgentLoop:
    """Round loop shared by the interactive session and the one-shot agent.

    A turn appends the user message, then alternates model calls and
    concurrent tool dispatch until the model ends its turn or ``max_rounds``
    is reached. The transcript list passed to ``run`` is mutated in place and
    never left with an unanswered tool call.
    """

    def __init__(
        self,
        provider: LLMProvider,
        dispatcher: ToolDispatcher,
        system_prompt: str,
        tools: list[LLMTool],
        *,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        stream: bool = True,
    ):
        self.provider = provider
        self.dispatcher = dispatcher
        self.system_prompt = system_prompt
        self.tools = list(tools)
        self.max_rounds = max_rounds
        self.stream = stream

    def _call_model(
        self,
        messages: list[Message],
        turn: _TurnCallbacks,
        cancel: CancelToken | None,
    ) -> LLMResponse:
        if is_cancelled(cancel):
            raise AbortedError("aborted before model call")
        if not self.stream:
            return self.provider.chat(self.system_prompt, list(messages), self.tools)

        turn.streamed.clear()
        try:
            return self.provider.chat_stream(
                self.system_prompt, list(messages), self.tools, turn.for_provider(), cancel
            )
        except AbortedError:
            partial = "".join(turn.streamed)
            if partial:
                messages.append(
                    self.provider.make_assistant_message(
                        LLMResponse(stop_reason=StopReason.END_TURN, text=f"{partial}\n{ABORTED_MARKER}")
                    )
                )
            raise

    def run(
        self,
        messages: list[Message],
        user_text: str,
        callbacks: StreamCallbacks | None = None,
        cancel: CancelToken | None = None,
    ) -> TurnResult:
        turn = _TurnCallbacks(callbacks or StreamCallbacks())
        messages.append(Message(role="user", content=user_text))

        last_text = ""
        try:
            for round_no in range(1, self.max_rounds + 1):
                logger.debug(f"Round {round_no}/{self.max_rounds}")
                response = self._call_model(messages, turn, cancel)
                last_text = response.text or last_text

                if not response.wants_tools:
                    if response.tool_calls:
                        # Tool calls without a tool-use stop would never get results.
                        response = dataclasses.replace(response, tool_calls=())
                    messages.append(self.provider.make_assistant_message(response))
                    turn.settle_unfinished(NOT_EXECUTED_CONTENT, is_error=False)
                    turn.on_complete()
                    return TurnResult(status=TurnStatus.COMPLETED, rounds=round_no, text=response.text)

                messages.append(self.provider.make_assistant_message(response))
                logger.debug(f"Dispatching {len(response.tool_calls)} tool call(s)")
                results = self.dispatcher.dispatch_all(list(response.tool_calls), turn.for_dispatch(), cancel)
                messages.append(self.provider.make_tool_result_message(results))

                if is_cancelled(cancel):
                    raise AbortedError("aborted during tool dispatch")
        except AbortedError:
            logger.info("Turn aborted")
            turn.settle_unfinished(ABORTED_CONTENT, is_error=True)
            raise
        except Exception as e:
            turn.settle_unfinished(f"Error: {e}", is_error=True)
            turn.on_error(e)
            raise

        error = MaxRoundsExceeded(self.max_rounds)
        logger.error(f"Agent loop stopped: {error}")
        turn.settle_unfinished(NOT_EXECUTED_CONTENT, is_error=False)
        turn.on_complete()
        return TurnResult(status=TurnStatus.MAX_ROUNDS, rounds=self.max_rounds, text=last_text, error=error)
