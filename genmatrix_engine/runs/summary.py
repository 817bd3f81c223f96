"""Session summary generation."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..utils import now_utc_iso, write_json


@dataclass
class SessionSummary:
    session_id: str
    started_at: str
    finished_at: str
    steps: tuple[int, int, int]
    subject: str
    counts: dict[str, int] = field(default_factory=dict)

    @property
    def total_cells(self) -> int:
        return sum(self.counts.values())

    @property
    def failed(self) -> int:
        return self.counts.get("error", 0)


def write_summary(path: Path, summary: SessionSummary, extra: dict[str, Any] | None = None) -> None:
    payload = {
        "session_id": summary.session_id,
        "started_at": summary.started_at,
        "finished_at": summary.finished_at,
        "steps": list(summary.steps),
        "subject": summary.subject,
        "total_cells": summary.total_cells,
        "counts": dict(summary.counts),
        "ts": now_utc_iso(),
    }
    if extra:
        payload.update(extra)
    write_json(path, payload)
