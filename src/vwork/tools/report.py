from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Literal

from vwork.errors import ToolExecutionError
from vwork.llm.provider import LLMTool, ToolCall
from vwork.tools.context import ToolContext
from vwork.tools.report_runs import STORE_FILENAME, ReportRunStore, RunSource

logger = logging.getLogger(__name__)

ReportKind = Literal["daily", "weekly", "custom"]
KINDS = ("daily", "weekly", "custom")
DEFAULT_LOOKBACK = {"daily": 1, "weekly": 7}


@dataclass(frozen=True, slots=True)
class ReportRequest:
    kind: ReportKind
    lookback_days: int
    prompt: str
    save: bool = True
    source: RunSource = "chat"


@dataclass(frozen=True, slots=True)
class ReportResult:
    content: str
    kind: ReportKind
    lookback_days: int
    saved_path: str | None = None
    save_error: str | None = None
    run_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "saved_path": self.saved_path,
            "save_error": self.save_error,
            "kind": self.kind,
            "lookback_days": self.lookback_days,
            "run_id": self.run_id,
        }


def normalize_request(data: dict[str, Any], default_lookback: int, source: RunSource = "chat") -> ReportRequest:
    kind = data.get("kind") if data.get("kind") in KINDS else "custom"

    lookback = data.get("lookback_days")
    if isinstance(lookback, (int, float)) and not isinstance(lookback, bool):
        lookback_days = max(1, int(lookback))
    else:
        lookback_days = DEFAULT_LOOKBACK.get(kind, default_lookback)

    prompt = data.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        prompt = f"Generate my {kind} work report."

    save = data.get("save")
    return ReportRequest(
        kind=kind,
        lookback_days=lookback_days,
        prompt=prompt,
        save=save if isinstance(save, bool) else True,
        source=source,
    )


def save_report(output_dir: str | Path, content: str, kind: str, day: date | None = None) -> Path:
    day = day or date.today()
    target = Path(output_dir).expanduser() / f"{day.isoformat()}-{kind}.md"
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content.rstrip() + "\n", encoding="utf-8")
    return target


def run_report(request: ReportRequest, ctx: ToolContext) -> ReportResult:
    from vwork.agent.oneshot import OneShotAgent
    from vwork.prompts import build_report_prompt
    from vwork.tools.registry import filter_tools

    if ctx.provider is None:
        raise ToolExecutionError("report generation needs an LLM provider")

    remote_tools = ctx.tool_server.get_all_tools() if ctx.tool_server is not None else []
    agent = OneShotAgent(
        provider=ctx.provider,
        tool_server=ctx.tool_server,
        config=ctx.config,
        system_prompt=build_report_prompt(ctx.config, request.kind, request.lookback_days),
        tools=filter_tools(remote_tools),
    )

    user_message = f"{request.prompt.strip()}\n\nLook back {request.lookback_days} day(s)."
    runs = ReportRunStore(ctx.home / STORE_FILENAME)
    run_id = runs.start(request.source, request.kind, request.lookback_days, request.prompt)
    logger.info(f"Generating {request.kind} report ({request.lookback_days} day lookback, run {run_id})")

    try:
        content = agent.run(user_message, cancel=ctx.cancel)
    except Exception as e:
        runs.finish_failure(run_id, str(e))
        raise
    runs.append_event(run_id, "generated", "Reporter generated report content.")

    saved_path = None
    save_error = None
    if request.save:
        try:
            saved_path = str(save_report(ctx.config.report.output_dir, content, request.kind))
            logger.info(f"Saved report to {saved_path}")
            runs.append_event(run_id, "saved", f"Saved report to {saved_path}", saved_path=saved_path)
        except OSError as e:
            save_error = str(e)
            logger.error(f"Failed to save report: {save_error}")
            runs.append_event(run_id, "save_failed", f"Failed to save report: {save_error}", error=save_error)

    runs.finish_success(run_id, saved_path, save_error)
    return ReportResult(
        content=content,
        kind=request.kind,
        lookback_days=request.lookback_days,
        saved_path=saved_path,
        save_error=save_error,
        run_id=run_id,
    )


def generate_report(call: ToolCall, ctx: ToolContext) -> str:
    request = normalize_request(call.input, ctx.config.report.lookback_days)
    return json.dumps(run_report(request, ctx).to_dict(), indent=2)


GENERATE_REPORT_TOOL = LLMTool(
    name="vwork__generate_report",
    description="Generate a work report using the report subagent. Returns report content and save result.",
    input_schema={
        "type": "object",
        "properties": {
            "kind": {"type": "string", "enum": list(KINDS), "description": "Report type"},
            "lookback_days": {"type": "integer", "description": "Days of history to include"},
            "prompt": {"type": "string", "description": "Custom report instruction"},
            "save": {"type": "boolean", "description": "Whether to persist report to file"},
        },
        "required": ["kind", "prompt"],
    },
)
