from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from common.jsonio import atomic_write_json, load_json

logger = logging.getLogger(__name__)

RunSource = Literal["chat", "cli"]
RunEventType = Literal["started", "generated", "saved", "save_failed", "completed", "failed"]

STORE_FILENAME = "report-runs.json"

# Writers in one process share the lock; the file itself is replaced atomically.
_store_lock = threading.Lock()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _make_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class ReportRunStore:
    """Ledger of report runs and their lifecycle events in ``report-runs.json``."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _load(self) -> dict[str, list[dict[str, Any]]]:
        data = load_json(self.path)
        if not isinstance(data, dict):
            if data is not None:
                logger.warning(f"Ignoring malformed report run store {self.path}")
            return {"runs": [], "events": []}
        runs = data.get("runs")
        events = data.get("events")
        return {
            "runs": runs if isinstance(runs, list) else [],
            "events": events if isinstance(events, list) else [],
        }

    def _find(self, store: dict, run_id: str) -> dict[str, Any] | None:
        return next((run for run in store["runs"] if run.get("run_id") == run_id), None)

    def _event(self, run: dict[str, Any], event_type: RunEventType, message: str, **extra: Any) -> dict[str, Any]:
        event = {
            "event_id": _make_id("evt"),
            "run_id": run["run_id"],
            "source": run["source"],
            "type": event_type,
            "timestamp": _now(),
            "message": message,
        }
        event.update({key: value for key, value in extra.items() if value is not None})
        return event

    def start(self, source: RunSource, kind: str, lookback_days: int, prompt: str) -> str:
        run = {
            "run_id": _make_id("run"),
            "source": source,
            "kind": kind,
            "lookback_days": lookback_days,
            "prompt": prompt,
            "status": "running",
            "started_at": _now(),
        }
        with _store_lock:
            store = self._load()
            store["runs"].append(run)
            store["events"].append(self._event(run, "started", f"vwork executing {kind} report."))
            atomic_write_json(self.path, store)
        return run["run_id"]

    def append_event(
        self,
        run_id: str,
        event_type: RunEventType,
        message: str,
        *,
        saved_path: str | None = None,
        error: str | None = None,
    ) -> None:
        with _store_lock:
            store = self._load()
            run = self._find(store, run_id)
            if run is None:
                logger.warning(f"Unknown report run {run_id}")
                return
            store["events"].append(self._event(run, event_type, message, saved_path=saved_path, error=error))
            atomic_write_json(self.path, store)

    def finish_success(self, run_id: str, saved_path: str | None, save_error: str | None) -> None:
        with _store_lock:
            store = self._load()
            run = self._find(store, run_id)
            if run is None:
                logger.warning(f"Unknown report run {run_id}")
                return
            run.update(status="completed", ended_at=_now(), saved_path=saved_path, save_error=save_error)
            store["events"].append(
                self._event(
                    run,
                    "completed",
                    f"vwork completed {run['kind']} report.",
                    saved_path=saved_path,
                    error=save_error,
                )
            )
            atomic_write_json(self.path, store)

    def finish_failure(self, run_id: str, error: str) -> None:
        with _store_lock:
            store = self._load()
            run = self._find(store, run_id)
            if run is None:
                logger.warning(f"Unknown report run {run_id}")
                return
            run.update(status="failed", ended_at=_now(), error=error)
            store["events"].append(self._event(run, "failed", f"vwork failed: {error}", error=error))
            atomic_write_json(self.path, store)

    def recent_runs(self, limit: int = 50) -> list[dict[str, Any]]:
        runs = sorted(self._load()["runs"], key=lambda run: run.get("started_at", ""), reverse=True)
        return runs[:limit]

    def events_for(self, run_id: str) -> list[dict[str, Any]]:
        return [event for event in self._load()["events"] if event.get("run_id") == run_id]
