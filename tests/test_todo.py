import json

import pytest

from vwork.llm.provider import ToolCall
from vwork.tools.context import ToolContext
from vwork.tools.todo import TodoError, TodoStore, parse_todos, todo_read, todo_write


@pytest.fixture
def ctx(config):
    return ToolContext(config=config)


def _write(ctx, todos, day="2026-03-02"):
    return json.loads(todo_write(ToolCall(id="w", name="vwork__todo_write", input={"date": day, "todos": todos}), ctx))


def test_write_then_read_round_trip(ctx, vwork_home):
    written = _write(
        ctx,
        [
            {"id": "a", "content": "  review   PR  ", "status": "pending", "priority": "high"},
            {"id": "b", "content": "deploy", "status": "completed"},
            {"id": "c", "content": "write notes", "status": "in_progress", "priority": "low"},
        ],
    )

    assert written["summary"] == "2 open todos"
    assert written["open_count"] == 2
    assert written["todos"][0]["content"] == "review PR"
    assert written["todos"][1]["priority"] == "medium"
    assert (vwork_home / "todos" / "store" / "2026-03-02.json").exists()

    read = json.loads(todo_read(ToolCall(id="r", name="vwork__todo_read", input={"date": "2026-03-02"}), ctx))
    assert [t["id"] for t in read["todos"]] == ["a", "b", "c"]
    assert "summary" not in read


def test_read_empty_day(ctx):
    out = json.loads(todo_read(ToolCall(id="r", name="vwork__todo_read", input={"date": "2026-01-01"}), ctx))
    assert out == {"date": "2026-01-01", "todos": [], "open_count": 0}


def test_missing_id_gets_generated(ctx):
    written = _write(ctx, [{"id": "", "content": "call bank", "status": "pending"}])
    assert written["todos"][0]["id"]


@pytest.mark.parametrize(
    "todos, message",
    [
        ("not a list", "todos must be an array"),
        ([{"id": "a", "content": "   ", "status": "pending"}], "content"),
        ([{"id": "a", "content": "x", "status": "done"}], "status"),
        ([{"id": "a", "content": "x", "status": "pending", "priority": "urgent"}], "priority"),
    ],
)
def test_invalid_todos_rejected(todos, message):
    with pytest.raises(TodoError, match=message):
        parse_todos(todos)


def test_corrupt_store_is_reported(config):
    store = TodoStore(config.todo)
    path = store.path_for("2026-03-02")
    path.parent.mkdir(parents=True)
    path.write_text('{"oops": true}', encoding="utf-8")

    with pytest.raises(TodoError, match="Invalid todo store format"):
        store.load("2026-03-02")


def test_unparseable_store_is_reported(config):
    store = TodoStore(config.todo)
    path = store.path_for("2026-03-02")
    path.parent.mkdir(parents=True)
    path.write_text("[{broken", encoding="utf-8")

    with pytest.raises(TodoError, match="Invalid todo store format"):
        store.load("2026-03-02")
