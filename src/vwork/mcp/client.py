from __future__ import annotations

import itertools
import json
import logging
import os
import subprocess
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from common.cancel import CancelToken, is_cancelled
from vwork import __version__
from vwork.errors import AbortedError, ToolServerError
from vwork.llm.provider import LLMTool
from vwork.mcp.registry import HttpServerEntry, ServerEntry, StdioServerEntry

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2025-06-18"
REQUEST_TIMEOUT_S = 120.0
POLL_INTERVAL_S = 0.1
NAMESPACE_SEP = "__"


class ToolServerClient(Protocol):
    def get_all_tools(self) -> list[LLMTool]: ...

    def call_tool(self, name: str, arguments: dict[str, Any], cancel: CancelToken | None = None) -> Any: ...


def _rpc_result(message: dict[str, Any]) -> Any:
    if "error" in message:
        error = message["error"] or {}
        raise ToolServerError(error.get("message") or json.dumps(error))
    return message.get("result")


class StdioConnection:
    """JSON-RPC over a subprocess's stdin/stdout, one JSON message per line."""

    def __init__(self, entry: StdioServerEntry):
        self.entry = entry
        self._ids = itertools.count(1)
        self._pending: dict[int, Future] = {}
        self._write_lock = threading.Lock()
        self._pending_lock = threading.Lock()
        self._proc = subprocess.Popen(
            [entry.command, *entry.args],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            env={**os.environ, **entry.env},
            text=True,
            bufsize=1,
        )
        self._reader = threading.Thread(target=self._read_loop, name=f"mcp-{entry.name}", daemon=True)
        self._reader.start()

    def _read_loop(self) -> None:
        assert self._proc.stdout is not None
        for line in self._proc.stdout:
            line = line.strip()
            if not line:
                continue
            try:
                message = json.loads(line)
            except json.JSONDecodeError:
                logger.debug(f"{self.entry.name}: ignoring non-JSON output: {line[:200]}")
                continue
            msg_id = message.get("id") if isinstance(message, dict) else None
            with self._pending_lock:
                future = self._pending.pop(msg_id, None) if msg_id is not None else None
            if future is not None:
                future.set_result(message)

        with self._pending_lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for future in pending:
            future.set_exception(ToolServerError(f"{self.entry.name} server exited"))

    def _send(self, payload: dict[str, Any]) -> None:
        if self._proc.poll() is not None:
            raise ToolServerError(f"{self.entry.name} server is not running")
        assert self._proc.stdin is not None
        with self._write_lock:
            self._proc.stdin.write(json.dumps(payload) + "\n")
            self._proc.stdin.flush()

    def request(self, method: str, params: dict[str, Any] | None = None, cancel: CancelToken | None = None) -> Any:
        msg_id = next(self._ids)
        future: Future = Future()
        with self._pending_lock:
            self._pending[msg_id] = future
        self._send({"jsonrpc": "2.0", "id": msg_id, "method": method, "params": params or {}})

        waited = 0.0
        while True:
            if is_cancelled(cancel):
                with self._pending_lock:
                    self._pending.pop(msg_id, None)
                raise AbortedError("tool call aborted")
            try:
                return _rpc_result(future.result(timeout=POLL_INTERVAL_S))
            except FutureTimeout:
                waited += POLL_INTERVAL_S
                if waited >= REQUEST_TIMEOUT_S:
                    with self._pending_lock:
                        self._pending.pop(msg_id, None)
                    raise ToolServerError(f"{self.entry.name}: {method} timed out")

    def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        self._send({"jsonrpc": "2.0", "method": method, "params": params or {}})

    def close(self) -> None:
        if self._proc.poll() is None:
            self._proc.terminate()
            try:
                self._proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._proc.kill()


class HttpConnection:
    """JSON-RPC over HTTP POST (streamable HTTP transport)."""

    def __init__(self, entry: HttpServerEntry, client: httpx.Client | None = None):
        self.entry = entry
        self._ids = itertools.count(1)
        self._session_id: str | None = None
        self._client = client or httpx.Client(timeout=REQUEST_TIMEOUT_S, follow_redirects=True)

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json, text/event-stream",
            "Content-Type": "application/json",
            **self.entry.headers,
        }
        if self._session_id:
            headers["Mcp-Session-Id"] = self._session_id
        return headers

    def _post(self, payload: dict[str, Any]) -> httpx.Response:
        try:
            response = self._client.post(self.entry.url, json=payload, headers=self._headers())
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ToolServerError(f"{self.entry.name}: HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise ToolServerError(f"{self.entry.name}: {e}") from e
        session_id = response.headers.get("mcp-session-id")
        if session_id:
            self._session_id = session_id
        return response

    @staticmethod
    def _parse_sse(text: str, msg_id: int) -> dict[str, Any]:
        for line in text.splitlines():
            if not line.startswith("data:"):
                continue
            try:
                message = json.loads(line[5:].strip())
            except json.JSONDecodeError:
                continue
            if isinstance(message, dict) and message.get("id") == msg_id:
                return message
        raise ToolServerError(f"no response for request {msg_id} in event stream")

    def request(self, method: str, params: dict[str, Any] | None = None, cancel: CancelToken | None = None) -> Any:
        if is_cancelled(cancel):
            raise AbortedError("tool call aborted")
        msg_id = next(self._ids)
        response = self._post({"jsonrpc": "2.0", "id": msg_id, "method": method, "params": params or {}})
        if is_cancelled(cancel):
            raise AbortedError("tool call aborted")

        if "text/event-stream" in response.headers.get("content-type", ""):
            return _rpc_result(self._parse_sse(response.text, msg_id))
        return _rpc_result(response.json())

    def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        self._post({"jsonrpc": "2.0", "method": method, "params": params or {}})

    def close(self) -> None:
        self._client.close()


Connection = StdioConnection | HttpConnection


@dataclass
class ConnectedServer:
    name: str
    connection: Connection
    tools: list[LLMTool] = field(default_factory=list)


def open_connection(entry: ServerEntry) -> Connection:
    if isinstance(entry, HttpServerEntry):
        return HttpConnection(entry)
    return StdioConnection(entry)


def _content_to_result(result: Any) -> Any:
    if not isinstance(result, dict):
        return result
    content = result.get("content")
    texts = None
    if isinstance(content, list) and content and all(
        isinstance(item, dict) and item.get("type") == "text" for item in content
    ):
        texts = "\n".join(item.get("text", "") for item in content)

    if result.get("isError"):
        raise ToolServerError(texts or json.dumps(content))
    if texts is not None:
        return texts
    if "structuredContent" in result:
        return result["structuredContent"]
    return result


class ToolServerManager:
    """Aggregates the tools of every connected server under ``<server>__<tool>`` names."""

    def __init__(self, github_orgs: tuple[str, ...] | list[str] = (), connector=open_connection):
        self.github_orgs = list(github_orgs)
        self.connector = connector
        self.servers: list[ConnectedServer] = []

    def connect(self, entries: list[ServerEntry]) -> None:
        for entry in entries:
            connection = None
            try:
                logger.info(f"Connecting to {entry.name} tool server...")
                connection = self.connector(entry)
                connection.request(
                    "initialize",
                    {
                        "protocolVersion": PROTOCOL_VERSION,
                        "capabilities": {},
                        "clientInfo": {"name": "vwork", "version": __version__},
                    },
                )
                connection.notify("notifications/initialized")
                tools = self._list_tools(entry.name, connection)
            except Exception as e:
                logger.error(f"Failed to connect to {entry.name}: {e}")
                if connection is not None:
                    connection.close()
                continue

            self.servers.append(ConnectedServer(name=entry.name, connection=connection, tools=tools))
            logger.info(f"{entry.name}: {len(tools)} tools available")
            logger.debug(f"{entry.name} tools: {', '.join(t.name for t in tools)}")

    @staticmethod
    def _list_tools(server_name: str, connection: Connection) -> list[LLMTool]:
        tools: list[LLMTool] = []
        cursor = None
        while True:
            result = connection.request("tools/list", {"cursor": cursor} if cursor else {}) or {}
            for raw in result.get("tools", []):
                tools.append(
                    LLMTool(
                        name=f"{server_name}{NAMESPACE_SEP}{raw['name']}",
                        description=f"[{server_name}] {raw.get('description') or raw['name']}",
                        input_schema=raw.get("inputSchema") or {"type": "object", "properties": {}},
                    )
                )
            cursor = result.get("nextCursor")
            if not cursor:
                return tools

    @property
    def server_names(self) -> list[str]:
        return [server.name for server in self.servers]

    def get_all_tools(self) -> list[LLMTool]:
        return [tool for server in self.servers for tool in server.tools]

    def _inject_github_orgs(self, tool_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        if tool_name != "search_issues" or not self.github_orgs:
            return arguments
        query = arguments.get("q")
        if not isinstance(query, str) or not query or "org:" in query:
            return arguments
        org_filter = " ".join(f"org:{org}" for org in self.github_orgs)
        return {**arguments, "q": f"{org_filter} {query}"}

    def call_tool(self, name: str, arguments: dict[str, Any], cancel: CancelToken | None = None) -> Any:
        sep = name.find(NAMESPACE_SEP)
        if sep == -1:
            raise ToolServerError(f"Invalid tool name: {name}")

        server_name = name[:sep]
        tool_name = name[sep + len(NAMESPACE_SEP):]
        server = next((s for s in self.servers if s.name == server_name), None)
        if server is None:
            raise ToolServerError(f"No server connected for: {server_name}")

        if server_name == "github":
            arguments = self._inject_github_orgs(tool_name, arguments)

        logger.debug(f"Calling {server_name}/{tool_name} with {json.dumps(arguments, default=str)}")
        result = server.connection.request(
            "tools/call", {"name": tool_name, "arguments": arguments}, cancel=cancel
        )
        return _content_to_result(result)

    def close(self) -> None:
        for server in self.servers:
            try:
                server.connection.close()
            except Exception as e:
                logger.debug(f"Error closing {server.name}: {e}")
        self.servers = []
