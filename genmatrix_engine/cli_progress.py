"""CLI progress helpers."""

from __future__ import annotations

import os
import shutil
import sys
import time
from typing import Any, TextIO

_BOLD = "\x1b[1m"
_GREY = "\x1b[38;2;150;157;165m"
_RED = "\x1b[38;2;248;113;113m"
_RESET = "\x1b[0m"


def progress_line(label: str, completed: int, total: int, start: float | None = None) -> tuple[str, float]:
    now = time.monotonic()
    origin = now if start is None else start
    elapsed = _format_duration(int(max(0, now - origin)))
    return f"• {label} {completed}/{total} ({elapsed} • ctrl-c to stop)", origin


def elapsed_line(label: str, seconds: float, width: int | None = None, stream: TextIO | None = None) -> str:
    duration = _format_duration(int(max(0, seconds)))
    resolved_width = width if width is not None else _resolve_terminal_width(stream or sys.stdout, 100)
    line = _separator_line(f"{label} {duration}", resolved_width)
    return f"{_GREY}{line}{_RESET}"


class QueueProgress:
    """Prints one progress line per finished cell from scheduler events."""

    def __init__(self, total: int, stream: TextIO | None = None, label: str = "Generating cells") -> None:
        self.total = total
        self.label = label
        self.stream = stream or sys.stdout
        self.completed = 0
        self.failed = 0
        self.start: float | None = None
        self._tty = bool(getattr(self.stream, "isatty", lambda: False)())

    def __call__(self, event: dict[str, Any]) -> None:
        event_type = event.get("type")
        if event_type == "cell_started" and self.start is None:
            _, self.start = progress_line(self.label, self.completed, self.total)
            return
        if event_type == "cell_succeeded":
            self.completed += 1
            self._write(f"{event.get('cell_id')} ok")
        elif event_type == "cell_failed":
            self.completed += 1
            self.failed += 1
            self._write(f"{event.get('cell_id')} failed: {event.get('error')}", error=True)
        elif event_type == "backoff_started":
            self._write(f"rate limited, cooling down {event.get('delay_s')}s", error=True)

    def finish(self) -> None:
        elapsed = time.monotonic() - (self.start or time.monotonic())
        suffix = f" ({self.failed} failed)" if self.failed else ""
        self.stream.write(f"{elapsed_line(f'Generated {self.completed} cells{suffix} in', elapsed, stream=self.stream)}\n")
        self.stream.flush()

    def _write(self, detail: str, error: bool = False) -> None:
        line, self.start = progress_line(self.label, self.completed, self.total, self.start)
        color = _RED if error else _BOLD
        text = f"{color}{line}{_RESET} {detail}"
        if self._tty:
            self.stream.write(f"\r{text}\033[K\n")
        else:
            self.stream.write(f"{text}\n")
        self.stream.flush()


def _format_duration(seconds: int) -> str:
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


def _separator_line(label: str, width: int) -> str:
    content = f" {label} "
    if width <= len(content) + 2:
        return content.strip()
    remaining = width - len(content)
    left = remaining // 2
    right = remaining - left
    return f"{'─' * left}{content}{'─' * right}"


def _resolve_terminal_width(stream: TextIO | None, fallback: int) -> int:
    if stream and hasattr(stream, "fileno"):
        try:
            return os.get_terminal_size(stream.fileno()).columns
        except (OSError, ValueError, AttributeError):
            pass
    try:
        return shutil.get_terminal_size(fallback=(fallback, 20)).columns
    except Exception:
        return fallback
