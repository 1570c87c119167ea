from __future__ import annotations

import logging
from enum import Enum

from vwork.config import Config
from vwork.llm.provider import LLMTool
from vwork.tools import files, report, search, todo, web

logger = logging.getLogger(__name__)

FIRST_PARTY_PREFIX = "vwork__"
NAMESPACE_SEP = "__"

# Read-only, report-relevant tools per third-party namespace. Namespaces not
# listed here pass through unfiltered.
READ_ONLY_ALLOW_LISTS: dict[str, frozenset[str]] = {
    "github": frozenset(
        {
            "github__get_the_authenticated_user",
            "github__get_me",
            "github__search_issues",
            "github__get_pull_request",
            "github__list_commits",
            "github__get_issue",
            "github__list_pull_requests_for_repo",
            "github__list_pull_requests",
        }
    ),
    "slack": frozenset(
        {
            "slack__slack_list_channels",
            "slack__slack_get_channel_history",
            "slack__slack_get_thread_replies",
            "slack__slack_get_users",
            "slack__slack_get_user_profile",
            "slack__slack_search_messages",
        }
    ),
}


class BuiltinTool(str, Enum):
    READ_FILE = "vwork__read_file"
    WRITE_FILE = "vwork__write_file"
    LIST_FILES = "vwork__list_files"
    GLOB = "vwork__glob"
    GREP = "vwork__grep"
    WEBFETCH = "vwork__webfetch"
    WEB_SEARCH = "vwork__web_search"
    TODO_READ = "vwork__todo_read"
    TODO_WRITE = "vwork__todo_write"
    GENERATE_REPORT = "vwork__generate_report"

    @classmethod
    def lookup(cls, name: str) -> BuiltinTool | None:
        try:
            return cls(name)
        except ValueError:
            return None


def is_first_party(name: str) -> bool:
    return name.startswith(FIRST_PARTY_PREFIX)


def namespace_of(name: str) -> str | None:
    sep = name.find(NAMESPACE_SEP)
    if sep <= 0:
        return None
    return name[:sep]


def is_allowed(name: str) -> bool:
    if is_first_party(name):
        return True
    allow_list = READ_ONLY_ALLOW_LISTS.get(namespace_of(name) or "")
    if allow_list is None:
        return True
    return name in allow_list


def filter_tools(candidates: list[LLMTool]) -> list[LLMTool]:
    allowed = [tool for tool in candidates if is_allowed(tool.name)]
    dropped = len(candidates) - len(allowed)
    if dropped:
        logger.debug(f"Filtered out {dropped} tools not on a read-only allow-list")
    return allowed


def _tool_definitions() -> dict[BuiltinTool, LLMTool]:
    return {
        BuiltinTool.READ_FILE: files.READ_FILE_TOOL,
        BuiltinTool.WRITE_FILE: files.WRITE_FILE_TOOL,
        BuiltinTool.LIST_FILES: files.LIST_FILES_TOOL,
        BuiltinTool.GLOB: search.GLOB_TOOL,
        BuiltinTool.GREP: search.GREP_TOOL,
        BuiltinTool.WEBFETCH: web.WEBFETCH_TOOL,
        BuiltinTool.WEB_SEARCH: web.WEB_SEARCH_TOOL,
        BuiltinTool.TODO_READ: todo.TODO_READ_TOOL,
        BuiltinTool.TODO_WRITE: todo.TODO_WRITE_TOOL,
        BuiltinTool.GENERATE_REPORT: report.GENERATE_REPORT_TOOL,
    }


def enabled_builtins(config: Config) -> list[BuiltinTool]:
    enabled = [
        BuiltinTool.READ_FILE,
        BuiltinTool.WRITE_FILE,
        BuiltinTool.LIST_FILES,
        BuiltinTool.GLOB,
        BuiltinTool.GREP,
        BuiltinTool.WEBFETCH,
    ]
    if config.web.search_enabled:
        enabled.append(BuiltinTool.WEB_SEARCH)
    if config.todo.enabled:
        enabled.extend([BuiltinTool.TODO_READ, BuiltinTool.TODO_WRITE])
    enabled.append(BuiltinTool.GENERATE_REPORT)
    return enabled


def builtin_tools(config: Config) -> list[LLMTool]:
    definitions = _tool_definitions()
    return [definitions[tool] for tool in enabled_builtins(config)]


def build_catalog(config: Config, remote_tools: list[LLMTool]) -> list[LLMTool]:
    """Filtered remote tools followed by the first-party tools."""
    return filter_tools(remote_tools) + builtin_tools(config)
