from __future__ import annotations

import json
import re
import uuid
from datetime import date
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

from common.jsonio import atomic_write_json, load_json
from vwork.config import TodoConfig
from vwork.errors import ToolExecutionError
from vwork.llm.provider import LLMTool, ToolCall
from vwork.tools.context import ToolContext

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
OPEN_STATUSES = ("pending", "in_progress")


class TodoError(ToolExecutionError):
    pass


class TodoItem(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    content: str
    status: Literal["pending", "in_progress", "completed", "cancelled"]
    priority: Literal["high", "medium", "low"] = "medium"

    @field_validator("id", mode="before")
    @classmethod
    def _default_id(cls, value: Any) -> str:
        if isinstance(value, str) and value.strip():
            return value.strip()
        return str(uuid.uuid4())

    @field_validator("content")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        value = " ".join(value.split())
        if not value:
            raise ValueError("todo content cannot be empty")
        return value


class TodoStore:
    """Daily JSON todo lists at ``<dir>/store/<YYYY-MM-DD>.json``."""

    def __init__(self, config: TodoConfig):
        self.root = Path(config.dir).expanduser()

    def path_for(self, day: str) -> Path:
        return self.root / "store" / f"{day}.json"

    def load(self, day: str) -> list[TodoItem]:
        path = self.path_for(day)
        if not path.exists():
            return []
        raw = load_json(path)
        if not isinstance(raw, list):
            raise TodoError(f"Invalid todo store format in {path}")
        return parse_todos(raw)

    def save(self, day: str, todos: list[TodoItem]) -> None:
        atomic_write_json(self.path_for(day), [todo.model_dump() for todo in todos])


def parse_todos(raw: Any) -> list[TodoItem]:
    if not isinstance(raw, list):
        raise TodoError("todos must be an array")
    try:
        return [TodoItem.model_validate(item) for item in raw]
    except ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(p) for p in first.get("loc", ()))
        raise TodoError(f"invalid todo item ({where}): {first.get('msg')}") from e


def _day(data: dict[str, Any]) -> str:
    raw = data.get("date")
    if isinstance(raw, str) and DATE_RE.match(raw):
        return raw
    return date.today().isoformat()


def _summary(day: str, todos: list[TodoItem]) -> dict[str, Any]:
    open_count = sum(1 for t in todos if t.status in OPEN_STATUSES)
    return {
        "date": day,
        "todos": [t.model_dump() for t in todos],
        "open_count": open_count,
    }


def todo_read(call: ToolCall, ctx: ToolContext) -> str:
    day = _day(call.input)
    todos = TodoStore(ctx.config.todo).load(day)
    return json.dumps(_summary(day, todos), indent=2)


def todo_write(call: ToolCall, ctx: ToolContext) -> str:
    day = _day(call.input)
    todos = parse_todos(call.input.get("todos"))
    store = TodoStore(ctx.config.todo)
    store.save(day, todos)
    canonical = store.load(day)
    payload = _summary(day, canonical)
    payload["summary"] = f"{payload['open_count']} open todos"
    return json.dumps(payload, indent=2)


TODO_READ_TOOL = LLMTool(
    name="vwork__todo_read",
    description=(
        "Read the current todo list. Use this before todo updates so you can preserve untouched items and ids."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "date": {"type": "string", "description": "Day to read, YYYY-MM-DD (default: today)"},
        },
        "required": [],
    },
)

TODO_WRITE_TOOL = LLMTool(
    name="vwork__todo_write",
    description=(
        "Replace the current todo list with the provided full list. Keep untouched items from vwork__todo_read."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "date": {"type": "string", "description": "Day to write, YYYY-MM-DD (default: today)"},
            "todos": {
                "type": "array",
                "description": "Full updated todo list",
                "items": {
                    "type": "object",
                    "properties": {
                        "id": {"type": "string"},
                        "content": {"type": "string"},
                        "status": {
                            "type": "string",
                            "enum": ["pending", "in_progress", "completed", "cancelled"],
                        },
                        "priority": {"type": "string", "enum": ["high", "medium", "low"]},
                    },
                    "required": ["id", "content", "status", "priority"],
                },
            },
        },
        "required": ["todos"],
    },
)
