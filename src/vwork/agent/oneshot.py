from __future__ import annotations

import logging

from common.cancel import CancelToken
from vwork.agent.loop import AgentLoop
from vwork.config import Config
from vwork.llm.provider import LLMProvider, LLMTool, Message
from vwork.mcp.client import ToolServerClient
from vwork.tools.context import ToolContext
from vwork.tools.dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)

MAX_ROUNDS_MESSAGE = "Report generation stopped: too many tool calls. Partial results may be incomplete."


class OneShotAgent:
    """Non-streaming agent with a fresh transcript per run (reports, ``vwork ask``)."""

    def __init__(
        self,
        provider: LLMProvider,
        config: Config,
        system_prompt: str,
        tools: list[LLMTool],
        tool_server: ToolServerClient | None = None,
        *,
        max_rounds: int | None = None,
        dispatcher: ToolDispatcher | None = None,
    ):
        self.provider = provider
        self.config = config
        self.tool_server = tool_server
        self.dispatcher = dispatcher or ToolDispatcher(
            ToolContext(config=config, provider=provider, tool_server=tool_server),
            max_workers=config.chat.max_parallel_tools,
        )
        self.loop = AgentLoop(
            provider,
            self.dispatcher,
            system_prompt,
            tools,
            max_rounds=max_rounds or config.chat.max_rounds,
            stream=False,
        )
        self.messages: list[Message] = []

    def run(self, user_message: str, cancel: CancelToken | None = None) -> str:
        self.messages = []
        result = self.loop.run(self.messages, user_message, cancel=cancel)
        if not result.completed:
            return MAX_ROUNDS_MESSAGE
        logger.debug(f"One-shot run finished in {result.rounds} round(s)")
        return result.text
