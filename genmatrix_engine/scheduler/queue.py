"""Single-flight generation queue.

All grid and queue mutation happens on the event loop thread. The only
suspension points are the provider calls (run in a worker thread so the loop
stays responsive to stop/enqueue) and the fixed delays between requests.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable

from ..axes import DEFAULT_SUBJECT, AxisConfiguration, axis_descriptors
from ..grid.model import Cell, CellStatus, Coordinate, Grid
from ..grid.prompts import build_prompt
from ..providers.base import (
    DescriptorProvider,
    DescriptorRequest,
    EmptyResponseError,
    GeneratedArtifact,
    ImageProvider,
    ImageRequest,
)
from ..runs.events import EventWriter
from ..settings import SchedulerSettings
from .failures import FailureKind, classify_failure, describe_failure

Sleep = Callable[[float], Awaitable[None]]

# Batch size stays at one to respect backend request-rate limits.
BATCH_SIZE = 1


@dataclass(frozen=True)
class AttemptOutcome:
    prompt: str
    artifact: GeneratedArtifact
    character_description: str | None = None


def needs_character_description(subject: str) -> bool:
    stripped = str(subject or "").strip()
    return not stripped or stripped == DEFAULT_SUBJECT


class GenerationScheduler:
    """Owns the grid, the pending queue and the drain loop."""

    def __init__(
        self,
        grid: Grid,
        descriptor_provider: DescriptorProvider,
        image_provider: ImageProvider,
        events: EventWriter,
        *,
        subject: str = DEFAULT_SUBJECT,
        settings: SchedulerSettings | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self.grid = grid
        self.subject = subject
        self.descriptor_provider = descriptor_provider
        self.image_provider = image_provider
        self.events = events
        self.settings = settings or SchedulerSettings()
        self._sleep: Sleep = sleep or asyncio.sleep
        self._queue: list[str] = []
        self._processing = False
        self._in_flight: str | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def queue(self) -> tuple[str, ...]:
        return tuple(self._queue)

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def processing(self) -> bool:
        return self._processing

    @property
    def in_flight(self) -> str | None:
        return self._in_flight

    def enqueue(self, cell_ids: Iterable[str]) -> list[str]:
        added: list[str] = []
        for cell_id in cell_ids:
            cell = self.grid.get(cell_id)
            if cell is None or cell_id in self._queue:
                continue
            # Finished or in-flight cells need an explicit regenerate.
            if cell.status in (CellStatus.SUCCESS, CellStatus.LOADING):
                continue
            self._queue.append(cell_id)
            cell.status = CellStatus.QUEUED
            added.append(cell_id)
        if added:
            self.events.emit("cells_enqueued", cell_ids=added, queue_length=len(self._queue))
        self.kick()
        return added

    def requeue(self, cell_id: str) -> bool:
        cell = self.grid.get(cell_id)
        if cell is None:
            raise KeyError(cell_id)
        if cell.status in (CellStatus.LOADING, CellStatus.QUEUED):
            return False
        self._queue.append(cell_id)
        cell.status = CellStatus.QUEUED
        self.events.emit("cells_enqueued", cell_ids=[cell_id], queue_length=len(self._queue), regenerate=True)
        self.kick()
        return True

    def stop(self) -> list[str]:
        reverted = self._clear_queue()
        self.events.emit("queue_stopped", reverted=reverted, in_flight=self._in_flight)
        return reverted

    def reset(self) -> None:
        self._queue.clear()
        # The running drain task, if any, keeps the execution right until its
        # in-flight attempt and delay have elapsed.
        self._processing = False
        self.grid.reset()
        self.events.emit("grid_reset", epoch=self.grid.epoch, cells=len(self.grid), in_flight=self._in_flight)

    def replace_grid(self, grid: Grid) -> None:
        self._queue.clear()
        self._processing = False
        self.grid = grid
        config = grid.config
        self.events.emit(
            "grid_rebuilt",
            epoch=grid.epoch,
            steps=list(config.as_tuple()),
            cells=len(grid),
            in_flight=self._in_flight,
        )

    def kick(self) -> asyncio.Task[None] | None:
        """Start the drain loop if it is not running and work is pending."""
        if self._task is not None and not self._task.done():
            return self._task
        if self._processing or not self._queue:
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; wait_idle() starts draining.
            return None
        self._task = loop.create_task(self._drain())
        return self._task

    async def wait_idle(self) -> None:
        while True:
            task = self.kick()
            if task is None:
                return
            await task

    async def _drain(self) -> None:
        while not self._processing and self._queue:
            self._processing = True
            try:
                await self._process_next()
            finally:
                self._processing = False
        self.events.emit("scheduler_idle", counts=self.grid.status_counts())

    async def _process_next(self) -> None:
        batch = self._queue[:BATCH_SIZE]
        del self._queue[:BATCH_SIZE]
        for cell_id in batch:
            cell = self.grid.get(cell_id)
            if cell is None:
                continue
            await self._process_cell(cell)

    async def _process_cell(self, cell: Cell) -> None:
        grid = self.grid
        epoch = grid.epoch
        cell_id = cell.cell_id
        cell.status = CellStatus.LOADING
        cell.attempts += 1
        self._in_flight = cell_id
        self.events.emit("cell_started", cell_id=cell_id, epoch=epoch, attempt=cell.attempts)
        started = time.monotonic()
        try:
            outcome = await self._attempt(cell_id, cell.coord, grid.config, self.subject)
        except asyncio.CancelledError:
            self._in_flight = None
            if self._is_current(grid, epoch, cell_id):
                cell.status = CellStatus.IDLE
            self.events.emit("cell_cancelled", cell_id=cell_id, elapsed_s=time.monotonic() - started)
            raise
        except Exception as exc:
            self._in_flight = None
            kind = classify_failure(exc)
            message = describe_failure(exc)
            if self._is_current(grid, epoch, cell_id):
                cell.status = CellStatus.ERROR
                cell.error = message
            else:
                self._emit_stale(cell_id, epoch, "error")
            self.events.emit(
                "cell_failed",
                cell_id=cell_id,
                failure_kind=kind.value,
                error=message,
                elapsed_s=time.monotonic() - started,
            )
            if kind is FailureKind.RATE_LIMIT:
                delay = self.settings.rate_limit_cooldown_s
                self.events.emit("backoff_started", cell_id=cell_id, reason=kind.value, delay_s=delay)
            else:
                delay = self.settings.error_delay_s
            await self._sleep(delay)
            return

        self._in_flight = None
        if self._is_current(grid, epoch, cell_id):
            cell.status = CellStatus.SUCCESS
            cell.image_url = outcome.artifact.uri
            cell.prompt = outcome.prompt
            cell.error = None
            # Cleared when the subject was explicit.
            cell.character_description = outcome.character_description
        else:
            self._emit_stale(cell_id, epoch, "success")
        self.events.emit(
            "cell_succeeded",
            cell_id=cell_id,
            prompt_chars=len(outcome.prompt),
            image_url=outcome.artifact.uri,
            mime_type=outcome.artifact.mime_type,
            elapsed_s=time.monotonic() - started,
        )
        await self._sleep(self.settings.success_delay_s)

    async def _attempt(
        self,
        cell_id: str,
        coord: Coordinate,
        config: AxisConfiguration,
        subject: str,
    ) -> AttemptOutcome:
        subject_text = str(subject or "").strip()
        description: str | None = None
        include_axis_detail = True
        if needs_character_description(subject):
            style, energy, physical = axis_descriptors(coord, config)
            request = DescriptorRequest(style=style, energy=energy, physical=physical)
            description = await asyncio.to_thread(self.descriptor_provider.describe, request)
            description = str(description or "").strip()
            if not description:
                raise EmptyResponseError("Descriptor provider returned an empty description.")
            self.events.emit("descriptor_generated", cell_id=cell_id, description=description)
            subject_text = description
            include_axis_detail = False
            # Second round trip for the same cell follows.
            await self._sleep(self.settings.descriptor_settle_s)

        prompt = build_prompt(coord, config, subject_text, include_axis_detail)
        artifact = await asyncio.to_thread(self.image_provider.generate, ImageRequest(prompt=prompt))
        if artifact is None or not artifact.uri:
            raise EmptyResponseError("Image provider returned no artifact.")
        return AttemptOutcome(prompt=prompt, artifact=artifact, character_description=description)

    def _is_current(self, grid: Grid, epoch: int, cell_id: str) -> bool:
        return self.grid is grid and grid.epoch == epoch and cell_id in grid

    def _emit_stale(self, cell_id: str, epoch: int, outcome: str) -> None:
        self.events.emit(
            "stale_result_discarded",
            cell_id=cell_id,
            attempt_epoch=epoch,
            current_epoch=self.grid.epoch,
            outcome=outcome,
        )

    def _clear_queue(self) -> list[str]:
        reverted: list[str] = []
        for cell_id in self._queue:
            cell = self.grid.get(cell_id)
            if cell is not None and cell.status is CellStatus.QUEUED:
                cell.status = CellStatus.IDLE
                reverted.append(cell_id)
        self._queue.clear()
        return reverted
