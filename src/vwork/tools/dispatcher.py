from __future__ import annotations

import logging
from typing import Any, Callable

from common.cancel import CancelToken, is_cancelled
from common.jsonio import to_pretty_text
from common.parallel import DEFAULT_MAX_WORKERS, ParallelExecutor
from vwork.errors import ToolExecutionError, ToolServerError
from vwork.llm.provider import StreamCallbacks, ToolCall, ToolResult
from vwork.mcp.client import ToolServerClient
from vwork.tools import files, report, search, todo, web
from vwork.tools.context import ToolContext
from vwork.tools.registry import BuiltinTool, is_first_party

logger = logging.getLogger(__name__)

ERROR_PREFIX = "Error: "
ABORTED_CONTENT = f"{ERROR_PREFIX}aborted"

Handler = Callable[[ToolCall, ToolContext], Any]

HANDLERS: dict[BuiltinTool, Handler] = {
    BuiltinTool.READ_FILE: files.read_file,
    BuiltinTool.WRITE_FILE: files.write_file,
    BuiltinTool.LIST_FILES: files.list_files,
    BuiltinTool.GLOB: search.glob_files,
    BuiltinTool.GREP: search.grep_files,
    BuiltinTool.WEBFETCH: web.webfetch,
    BuiltinTool.WEB_SEARCH: web.web_search_tool,
    BuiltinTool.TODO_READ: todo.todo_read,
    BuiltinTool.TODO_WRITE: todo.todo_write,
    BuiltinTool.GENERATE_REPORT: report.generate_report,
}


def error_text(exc: BaseException) -> str:
    message = str(exc).strip() or exc.__class__.__name__
    return f"{ERROR_PREFIX}{message}"


class ToolDispatcher:
    """Executes tool calls, in-process for ``vwork__`` tools and remotely otherwise.

    Every call yields exactly one ToolResult; failures become error-flagged
    results instead of exceptions.
    """

    def __init__(
        self,
        context: ToolContext,
        *,
        handlers: dict[BuiltinTool, Handler] | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        self.context = context
        self.handlers = dict(HANDLERS if handlers is None else handlers)
        self.executor: ParallelExecutor[ToolCall, ToolResult] = ParallelExecutor(
            max_workers=max_workers, thread_name_prefix="vwork-tool"
        )

    @property
    def tool_server(self) -> ToolServerClient | None:
        return self.context.tool_server

    def _execute(self, call: ToolCall, ctx: ToolContext) -> str:
        if is_first_party(call.name):
            tool = BuiltinTool.lookup(call.name)
            handler = self.handlers.get(tool) if tool is not None else None
            if handler is None:
                raise ToolExecutionError(f"Unknown built-in tool: {call.name}")
            return to_pretty_text(handler(call, ctx))

        if self.tool_server is None:
            raise ToolServerError(f"No tool server connected for: {call.name}")
        return to_pretty_text(self.tool_server.call_tool(call.name, dict(call.input), cancel=ctx.cancel))

    def dispatch(
        self,
        call: ToolCall,
        callbacks: StreamCallbacks | None = None,
        cancel: CancelToken | None = None,
    ) -> ToolResult:
        if is_cancelled(cancel):
            return ToolResult(tool_call_id=call.id, content=ABORTED_CONTENT, is_error=True)

        callbacks = callbacks or StreamCallbacks()
        callbacks.on_tool_start(call)
        logger.info(f"Calling tool: {call.name}")

        try:
            content = self._execute(call, self.context.with_cancel(cancel))
            is_error = False
        except Exception as e:
            content = error_text(e)
            is_error = True
            logger.error(f"Tool {call.name} failed: {content[len(ERROR_PREFIX):]}")

        callbacks.on_tool_end(call, content, is_error)
        return ToolResult(tool_call_id=call.id, content=content, is_error=is_error)

    def dispatch_all(
        self,
        calls: list[ToolCall],
        callbacks: StreamCallbacks | None = None,
        cancel: CancelToken | None = None,
    ) -> list[ToolResult]:
        """Run every call concurrently; results come back in call-issue order."""
        outcomes = self.executor.run_ordered(
            list(calls), lambda call: self.dispatch(call, callbacks, cancel)
        )
        results = []
        for outcome in outcomes:
            if outcome.success:
                results.append(outcome.value)
            else:
                # Only a raising callback gets here; the call still needs an answer.
                logger.error(f"Dispatch of {outcome.task.name} failed: {outcome.error}")
                results.append(
                    ToolResult(tool_call_id=outcome.task.id, content=error_text(outcome.error), is_error=True)
                )
        return results
