from __future__ import annotations

import logging
import threading

from common.cancel import CancelToken
from vwork.agent.loop import AgentLoop, TurnResult
from vwork.config import Config
from vwork.llm.provider import LLMProvider, LLMTool, Message, StreamCallbacks
from vwork.mcp.client import ToolServerClient
from vwork.prompts import Prompts, build_chat_system_prompt
from vwork.tools.context import ToolContext
from vwork.tools.dispatcher import ToolDispatcher
from vwork.tools.registry import build_catalog, namespace_of

logger = logging.getLogger(__name__)


class ChatSession:
    """Streaming, stateful conversation used by the interactive surfaces.

    The system prompt and tool catalog are fixed at construction; only the
    transcript changes, and only through ``send`` and ``clear``.
    """

    def __init__(
        self,
        provider: LLMProvider,
        config: Config,
        tool_server: ToolServerClient | None = None,
        *,
        dispatcher: ToolDispatcher | None = None,
    ):
        self.provider = provider
        self.config = config
        self.tool_server = tool_server

        remote_tools = tool_server.get_all_tools() if tool_server is not None else []
        self._tools = tuple(build_catalog(config, remote_tools))
        server_names = sorted({ns for ns in (namespace_of(t.name) for t in remote_tools) if ns})
        self._system_prompt = build_chat_system_prompt(config, server_names)

        self.dispatcher = dispatcher or ToolDispatcher(
            ToolContext(config=config, provider=provider, tool_server=tool_server),
            max_workers=config.chat.max_parallel_tools,
        )
        self.loop = AgentLoop(
            provider,
            self.dispatcher,
            self._system_prompt,
            list(self._tools),
            max_rounds=config.chat.max_rounds,
            stream=True,
        )
        self._messages: list[Message] = []
        # One provider exchange at a time per session.
        self._turn_lock = threading.Lock()
        logger.debug(f"Chat session ready with {len(self._tools)} tools")

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    @property
    def tools(self) -> tuple[LLMTool, ...]:
        return self._tools

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def model(self) -> str:
        return self.provider.model

    def set_model(self, model: str) -> None:
        self.provider.set_model(model)

    def send(
        self,
        text: str,
        callbacks: StreamCallbacks | None = None,
        cancel: CancelToken | None = None,
    ) -> TurnResult:
        with self._turn_lock:
            return self.loop.run(self._messages, text, callbacks, cancel)

    def clear(self) -> None:
        with self._turn_lock:
            self._messages.clear()

    def postprocess_report(
        self,
        report: str,
        callbacks: StreamCallbacks | None = None,
        cancel: CancelToken | None = None,
    ) -> str:
        """Condense a report into bullets with one tool-less call. The transcript is left alone."""
        if not self.config.chat.report_postprocess_enabled or not report.strip():
            return report
        with self._turn_lock:
            response = self.provider.chat_stream(
                Prompts.report_postprocess,
                [Message(role="user", content=report)],
                [],
                callbacks or StreamCallbacks(),
                cancel,
            )
        return response.text.strip() or report
