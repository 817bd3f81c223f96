"""Grid session: the control surface consumed by a UI or the CLI."""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Any, Iterable

from .axes import DEFAULT_SUBJECT, AxisConfiguration
from .grid.model import Grid
from .providers import default_provider_name, default_registry
from .providers.base import DescriptorProvider, ImageProvider
from .runs.events import EventWriter
from .runs.summary import SessionSummary, write_summary
from .scheduler.queue import GenerationScheduler, Sleep
from .settings import SchedulerSettings
from .utils import now_utc_iso


class GridSession:
    def __init__(
        self,
        *,
        config: AxisConfiguration | None = None,
        subject: str = DEFAULT_SUBJECT,
        descriptor_provider: DescriptorProvider | None = None,
        image_provider: ImageProvider | None = None,
        provider_name: str | None = None,
        settings: SchedulerSettings | None = None,
        events: EventWriter | None = None,
        events_path: Path | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self.session_id = uuid.uuid4().hex[:12]
        self.events = events or EventWriter(events_path, self.session_id)
        self.config = config or AxisConfiguration()
        self.z_level = 0
        if descriptor_provider is None or image_provider is None:
            provider = default_registry().require(provider_name or default_provider_name())
            descriptor_provider = descriptor_provider or provider
            image_provider = image_provider or provider
        self.scheduler = GenerationScheduler(
            Grid.rebuild(self.config),
            descriptor_provider,
            image_provider,
            self.events,
            subject=subject,
            settings=settings or SchedulerSettings.from_env(),
            sleep=sleep,
        )
        self.started_at = now_utc_iso()
        self.events.emit(
            "session_started",
            steps=list(self.config.as_tuple()),
            subject=subject,
            descriptor_provider=getattr(descriptor_provider, "name", None),
            image_provider=getattr(image_provider, "name", None),
        )

    @property
    def grid(self) -> Grid:
        return self.scheduler.grid

    @property
    def subject(self) -> str:
        return self.scheduler.subject

    @property
    def queue_length(self) -> int:
        return self.scheduler.queue_length

    @property
    def processing(self) -> bool:
        return self.scheduler.processing

    def set_subject(self, subject: str) -> None:
        # Picked up by the next attempt; queued cells are not rebuilt.
        self.scheduler.subject = str(subject or "")

    def set_axis_config(self, config: AxisConfiguration) -> Grid:
        self.config = config
        self.scheduler.replace_grid(Grid.rebuild(config, epoch=self.grid.epoch + 1))
        if self.z_level >= config.z:
            self.z_level = config.z - 1
        return self.grid

    def select_slice(self, z: int) -> None:
        if not 0 <= z < self.config.z:
            raise ValueError(f"Slice z={z} out of range 0..{self.config.z - 1}.")
        self.z_level = z

    def enqueue(self, cell_ids: Iterable[str]) -> list[str]:
        return self.scheduler.enqueue(cell_ids)

    def regenerate(self, cell_id: str) -> bool:
        return self.scheduler.requeue(cell_id)

    def generate_slice(self, z: int | None = None) -> list[str]:
        target = self.z_level if z is None else z
        return self.enqueue(self.grid.slice_ids(target))

    def generate_all(self) -> list[str]:
        return self.enqueue(self.grid.ids())

    def stop(self) -> list[str]:
        return self.scheduler.stop()

    def reset_all(self) -> None:
        self.scheduler.reset()

    async def wait_idle(self) -> None:
        await self.scheduler.wait_idle()

    def snapshot(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "steps": {"x": self.config.x, "y": self.config.y, "z": self.config.z},
            "subject": self.subject,
            "z_level": self.z_level,
            "epoch": self.grid.epoch,
            "queue": list(self.scheduler.queue),
            "processing": self.processing,
            "in_flight": self.scheduler.in_flight,
            "counts": self.grid.status_counts(),
            "cells": [cell.to_dict() for cell in self.grid],
        }

    def finish(self, summary_path: Path | None = None) -> SessionSummary:
        summary = SessionSummary(
            session_id=self.session_id,
            started_at=self.started_at,
            finished_at=now_utc_iso(),
            steps=self.config.as_tuple(),
            subject=self.subject,
            counts=self.grid.status_counts(),
        )
        if summary_path is not None:
            write_summary(summary_path, summary)
        self.events.emit("session_finished", counts=summary.counts, summary_path=summary_path)
        return summary
