from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path

from vwork.errors import ToolExecutionError
from vwork.llm.provider import LLMTool, ToolCall
from vwork.tools.context import ToolContext, optional_int, require_str

logger = logging.getLogger(__name__)

MAX_OUTPUT = 30_000
GREP_TIMEOUT_S = 30
MAX_GLOB_RESULTS = 500


def _search_root(raw: str | None) -> Path:
    if raw is not None and not isinstance(raw, str):
        raise ToolExecutionError("'path' must be a string")
    return Path(raw or "~").expanduser()


def glob_files(call: ToolCall, ctx: ToolContext) -> str:
    pattern = require_str(call.input, "pattern")
    root = _search_root(call.input.get("path"))
    limit = min(MAX_GLOB_RESULTS, max(1, optional_int(call.input, "limit", 100)))
    if not root.is_dir():
        raise ToolExecutionError(f"directory not found: {root}")

    matches: list[tuple[float, Path]] = []
    for path in root.glob(pattern):
        ctx.check_cancelled()
        if any(part.startswith(".") for part in path.relative_to(root).parts):
            continue
        try:
            if path.is_file():
                matches.append((path.stat().st_mtime, path.resolve()))
        except OSError:
            continue
        # Gather extra for sorting, then trim.
        if len(matches) >= limit * 2:
            break

    if not matches:
        return f'No files found matching "{pattern}" in {root}'

    matches.sort(key=lambda m: m[0], reverse=True)
    result = "\n".join(str(path) for _, path in matches[:limit])
    if len(matches) > limit:
        return f"{result}\n\n... ({len(matches)}+ matches, showing first {limit})"
    return result


def _grep_command(pattern: str, target: Path, include: str | None, case_insensitive: bool) -> list[str]:
    if shutil.which("rg") is not None:
        cmd = ["rg", "-n", "--no-heading", "--max-count=100"]
        if case_insensitive:
            cmd.append("-i")
        if include:
            cmd.extend(["--glob", include])
        cmd.extend(["--", pattern, str(target)])
        return cmd

    cmd = ["grep", "-R", "-n", "--max-count=100"]
    if case_insensitive:
        cmd.append("-i")
    if include:
        cmd.append(f"--include={include}")
    cmd.extend(["--", pattern, str(target)])
    return cmd


def grep_files(call: ToolCall, ctx: ToolContext) -> str:
    pattern = require_str(call.input, "pattern")
    target = _search_root(call.input.get("path"))
    include = call.input.get("glob") or None
    case_insensitive = bool(call.input.get("case_insensitive", False))

    cmd = _grep_command(pattern, target, include, case_insensitive)
    logger.debug(f"grep: {' '.join(cmd)}")
    proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, stdin=subprocess.DEVNULL, text=True)
    if ctx.cancel is not None:
        ctx.cancel.on_cancel(proc.terminate)

    try:
        stdout, stderr = proc.communicate(timeout=GREP_TIMEOUT_S)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.communicate()
        raise ToolExecutionError(f"search timed out after {GREP_TIMEOUT_S}s")

    ctx.check_cancelled()
    if proc.returncode == 1 or (proc.returncode == 0 and not stdout.strip()):
        return f'No matches found for "{pattern}" in {target}'
    if proc.returncode != 0:
        raise ToolExecutionError(stderr.strip() or "Search failed")

    if len(stdout) > MAX_OUTPUT:
        return stdout[:MAX_OUTPUT] + f"\n\n... (output truncated at {MAX_OUTPUT} bytes)"
    return stdout


GLOB_TOOL = LLMTool(
    name="vwork__glob",
    description=(
        "Find files matching a glob pattern. Returns absolute paths sorted by modification time "
        '(newest first). Supports patterns like "**/*.pdf", "*.txt", "src/**/*.py".'
    ),
    input_schema={
        "type": "object",
        "properties": {
            "pattern": {"type": "string", "description": 'Glob pattern to match (e.g. "**/*.pdf", "*.txt")'},
            "path": {
                "type": "string",
                "description": "Directory to search in (default: home directory). Supports ~/.",
            },
            "limit": {"type": "integer", "description": "Maximum number of results (default: 100)"},
        },
        "required": ["pattern"],
    },
)

GREP_TOOL = LLMTool(
    name="vwork__grep",
    description="Search file contents for a pattern. Returns matching lines with file paths and line numbers.",
    input_schema={
        "type": "object",
        "properties": {
            "pattern": {"type": "string", "description": "Search pattern (regular expression)"},
            "path": {
                "type": "string",
                "description": "Directory or file to search in (default: home directory). Supports ~/.",
            },
            "glob": {"type": "string", "description": 'File pattern filter (e.g. "*.txt", "*.md")'},
            "case_insensitive": {"type": "boolean", "description": "Case-insensitive search (default: false)"},
        },
        "required": ["pattern"],
    },
)
