from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from common.cancel import CancelToken, is_cancelled
from vwork.config import Config
from vwork.errors import AbortedError, ToolExecutionError

if TYPE_CHECKING:
    from vwork.llm.provider import LLMProvider
    from vwork.mcp.client import ToolServerClient


@dataclass(frozen=True)
class ToolContext:
    """Read-only collaborators a first-party tool handler may use."""

    config: Config
    provider: LLMProvider | None = None
    tool_server: ToolServerClient | None = None
    cancel: CancelToken | None = None

    @property
    def home(self) -> Path:
        return self.config.home

    def check_cancelled(self) -> None:
        if is_cancelled(self.cancel):
            raise AbortedError("aborted")

    def with_cancel(self, cancel: CancelToken | None) -> ToolContext:
        return ToolContext(
            config=self.config,
            provider=self.provider,
            tool_server=self.tool_server,
            cancel=cancel,
        )


def require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ToolExecutionError(f"'{key}' is required and must be a non-empty string")
    return value


def optional_int(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ToolExecutionError(f"'{key}' must be a number")
    return int(value)
