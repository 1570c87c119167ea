from __future__ import annotations

from pathlib import Path

from vwork.errors import ToolExecutionError
from vwork.llm.provider import LLMTool, ToolCall
from vwork.tools.context import ToolContext, optional_int, require_str

MAX_READ_LINES = 2000
BINARY_SNIFF_BYTES = 512


def resolve_path(path: str) -> Path:
    """Resolve an absolute, ``~/`` or cwd-relative path for reading."""
    return Path(path).expanduser().resolve()


def safe_path(home: Path, path: str) -> Path:
    """Resolve ``path`` under ``home`` and reject anything that escapes it."""
    root = home.expanduser().resolve()
    cleaned = path.strip()
    for prefix in ("~/vwork/", "~/vwork"):
        if cleaned.startswith(prefix):
            cleaned = cleaned[len(prefix):]
            break
    resolved = (root / cleaned).resolve()
    if resolved != root and root not in resolved.parents:
        raise ToolExecutionError(f"Access denied: path must be within {root}")
    return resolved


def _is_binary(path: Path) -> bool:
    with open(path, "rb") as handle:
        return b"\x00" in handle.read(BINARY_SNIFF_BYTES)


def read_file(call: ToolCall, ctx: ToolContext) -> str:
    raw_path = require_str(call.input, "path")
    path = resolve_path(raw_path)
    if not path.exists():
        raise ToolExecutionError(f"file not found: {raw_path}")
    if path.is_dir():
        raise ToolExecutionError(f"path is a directory, not a file: {raw_path}")
    if _is_binary(path):
        raise ToolExecutionError(f"binary file, cannot display: {raw_path}")

    offset = max(1, optional_int(call.input, "offset", 1))
    limit = min(MAX_READ_LINES, max(1, optional_int(call.input, "limit", MAX_READ_LINES)))

    lines = path.read_text(encoding="utf-8", errors="replace").split("\n")
    sliced = lines[offset - 1 : offset - 1 + limit]
    numbered = "\n".join(f"{offset + i}\t{line}" for i, line in enumerate(sliced))
    if len(lines) > offset - 1 + limit:
        return f"{numbered}\n\n... ({len(lines)} total lines)"
    return numbered


def write_file(call: ToolCall, ctx: ToolContext) -> str:
    raw_path = require_str(call.input, "path")
    content = call.input.get("content")
    if not isinstance(content, str):
        raise ToolExecutionError("'content' must be a string")

    path = safe_path(ctx.home, raw_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return f"Written to {raw_path}"


def list_files(call: ToolCall, ctx: ToolContext) -> str:
    raw_path = call.input.get("path") or ""
    if not isinstance(raw_path, str):
        raise ToolExecutionError("'path' must be a string")

    path = safe_path(ctx.home, raw_path)
    if not path.is_dir():
        raise ToolExecutionError(f"directory not found: {raw_path or '/'}")

    entries = sorted(path.iterdir(), key=lambda p: p.name)
    if not entries:
        return "(empty)"
    return "\n".join(f"{entry.name}/" if entry.is_dir() else entry.name for entry in entries)


READ_FILE_TOOL = LLMTool(
    name="vwork__read_file",
    description=(
        "Read a file from the filesystem. Supports absolute paths and ~/. "
        "Returns numbered lines. Use offset/limit for large files."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Absolute file path or ~/relative path"},
            "offset": {
                "type": "integer",
                "description": "Line number to start reading from (1-based, default: 1)",
            },
            "limit": {
                "type": "integer",
                "description": "Maximum number of lines to return (default: 2000)",
            },
        },
        "required": ["path"],
    },
)

WRITE_FILE_TOOL = LLMTool(
    name="vwork__write_file",
    description="Write content to a file in ~/vwork/. Creates directories as needed. Path is relative to ~/vwork/.",
    input_schema={
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "File path relative to ~/vwork/"},
            "content": {"type": "string", "description": "File content to write"},
        },
        "required": ["path", "content"],
    },
)

LIST_FILES_TOOL = LLMTool(
    name="vwork__list_files",
    description="List files and directories under ~/vwork/. Path is relative to ~/vwork/ (defaults to root).",
    input_schema={
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Directory path relative to ~/vwork/ (default: root)"},
        },
        "required": [],
    },
)
