from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from prassist.config import STATE_DIRNAME

RUNS_DIRNAME = "runs"


def _utcnow_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


def new_run_id() -> str:
    return f"run-{datetime.now(UTC).strftime('%Y%m%d%H%M%S')}-{uuid4().hex[:8]}"


class RunLog:
    """Append-only JSON lines record of the events emitted during one run."""

    def __init__(
        self,
        path: Path,
        *,
        echo: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        self.path = path
        self.echo = echo

    @classmethod
    def for_run(cls, repo_root: Path, run_id: str, **kwargs: Any) -> RunLog:
        return cls(repo_root / STATE_DIRNAME / RUNS_DIRNAME / f"{run_id}.jsonl", **kwargs)

    @classmethod
    def latest(cls, repo_root: Path) -> RunLog | None:
        runs_dir = repo_root / STATE_DIRNAME / RUNS_DIRNAME
        if not runs_dir.is_dir():
            return None
        candidates = sorted(runs_dir.glob("*.jsonl"), key=lambda item: item.stat().st_mtime)
        return cls(candidates[-1]) if candidates else None

    @property
    def run_id(self) -> str:
        return self.path.stem

    def record(self, payload: dict[str, Any]) -> None:
        entry = {"at": _utcnow_iso(), **payload}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
        if self.echo is not None:
            self.echo(entry)

    __call__ = record

    def read(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        events: list[dict[str, Any]] = []
        for line in self.path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(payload, dict):
                events.append(payload)
        return events
