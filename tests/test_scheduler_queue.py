from __future__ import annotations

import asyncio
import threading

from genmatrix_engine.axes import DEFAULT_SUBJECT, X_AXIS, Y_AXIS, Z_AXIS, AxisConfiguration, axis_descriptors
from genmatrix_engine.grid.model import CellStatus, Coordinate
from genmatrix_engine.providers.base import DescriptorRequest, GeneratedArtifact, ImageRequest
from genmatrix_engine.session import GridSession
from genmatrix_engine.settings import SchedulerSettings

SETTINGS = SchedulerSettings(
    success_delay_s=4.0,
    error_delay_s=1.0,
    rate_limit_cooldown_s=30.0,
    descriptor_settle_s=2.0,
)


class RecordingProvider:
    name = "recording"

    def __init__(self, log: list[str] | None = None, fail_on: dict[int, Exception] | None = None) -> None:
        self.log = log if log is not None else []
        self.fail_on = fail_on or {}
        self.describe_requests: list[DescriptorRequest] = []
        self.prompts: list[str] = []

    def describe(self, request: DescriptorRequest) -> str:
        self.describe_requests.append(request)
        self.log.append("describe")
        return f"A generated hero number {len(self.describe_requests)}"

    def generate(self, request: ImageRequest) -> GeneratedArtifact:
        self.prompts.append(request.prompt)
        self.log.append("generate")
        error = self.fail_on.get(len(self.prompts))
        if error is not None:
            raise error
        return GeneratedArtifact(uri=f"data:image/png;base64,aW1n{len(self.prompts)}", mime_type="image/png")


class BlockingProvider(RecordingProvider):
    """Blocks inside generate until released; tracks concurrent calls."""

    def __init__(self) -> None:
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0

    def generate(self, request: ImageRequest) -> GeneratedArtifact:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            self.started.set()
            self.release.wait(timeout=5)
            return super().generate(request)
        finally:
            with self._lock:
                self.active -= 1


def _recording_sleep(log: list[str]):
    async def fake_sleep(seconds: float) -> None:
        log.append(f"sleep:{seconds}")

    return fake_sleep


def _session(provider, config: AxisConfiguration, subject: str = DEFAULT_SUBJECT, log: list[str] | None = None):
    sleep_log = log if log is not None else provider.log
    return GridSession(
        config=config,
        subject=subject,
        descriptor_provider=provider,
        image_provider=provider,
        settings=SETTINGS,
        sleep=_recording_sleep(sleep_log),
    )


def test_enqueue_twice_keeps_single_entry() -> None:
    session = _session(RecordingProvider(), AxisConfiguration(2, 2, 2))
    session.enqueue(["0-0-0"])
    session.enqueue(["0-0-0"])

    assert session.scheduler.queue == ("0-0-0",)
    assert session.grid.get("0-0-0").status is CellStatus.QUEUED


def test_enqueue_ignores_unknown_ids() -> None:
    session = _session(RecordingProvider(), AxisConfiguration(2, 2, 2))
    assert session.enqueue(["9-9-9", "1-1-1"]) == ["1-1-1"]
    assert session.queue_length == 1


def test_enqueue_does_not_touch_success_cell() -> None:
    session = _session(RecordingProvider(), AxisConfiguration(2, 2, 2))
    cell = session.grid.get("1-0-0")
    cell.status = CellStatus.SUCCESS
    cell.image_url = "data:image/png;base64,AAAA"

    session.enqueue(["1-0-0"])

    assert cell.status is CellStatus.SUCCESS
    assert cell.image_url == "data:image/png;base64,AAAA"
    assert session.queue_length == 0


def test_stop_before_drain_returns_cells_to_idle() -> None:
    session = _session(RecordingProvider(), AxisConfiguration(2, 2, 2))
    session.enqueue(["0-0-0", "1-0-0"])

    reverted = session.stop()

    assert reverted == ["0-0-0", "1-0-0"]
    assert session.queue_length == 0
    assert session.grid.get("0-0-0").status is CellStatus.IDLE
    assert session.grid.get("1-0-0").status is CellStatus.IDLE


def test_default_subject_synthesizes_descriptor_per_cell() -> None:
    provider = RecordingProvider()
    session = _session(provider, AxisConfiguration(2, 1, 1))

    async def scenario() -> None:
        session.enqueue(["0-0-0", "1-0-0"])
        await session.wait_idle()

    asyncio.run(scenario())

    assert provider.log == [
        "describe",
        "sleep:2.0",
        "generate",
        "sleep:4.0",
        "describe",
        "sleep:2.0",
        "generate",
        "sleep:4.0",
    ]
    assert len(provider.describe_requests) == 2
    first = provider.describe_requests[0]
    assert (first.style, first.energy, first.physical) == (X_AXIS.levels[0], Y_AXIS.levels[0], Z_AXIS.levels[0])
    assert provider.describe_requests[1].style == X_AXIS.levels[4]

    all_levels = X_AXIS.levels + Y_AXIS.levels + Z_AXIS.levels
    for idx, cell_id in enumerate(["0-0-0", "1-0-0"], start=1):
        cell = session.grid.get(cell_id)
        assert cell.status is CellStatus.SUCCESS
        assert cell.image_url
        assert cell.character_description == f"A generated hero number {idx}"
        assert cell.prompt.startswith(f"A generated hero number {idx}.")
        assert not any(level in cell.prompt for level in all_levels)
    assert session.queue_length == 0
    assert not session.processing


def test_explicit_subject_skips_descriptor_and_embeds_levels() -> None:
    provider = RecordingProvider()
    config = AxisConfiguration(3, 2, 2)
    session = _session(provider, config, subject="A red robot")

    async def scenario() -> None:
        session.generate_slice(1)
        await session.wait_idle()

    asyncio.run(scenario())

    assert provider.describe_requests == []
    assert "describe" not in provider.log
    assert provider.log.count("generate") == 6
    for cell_id in session.grid.slice_ids(1):
        cell = session.grid.get(cell_id)
        assert cell.status is CellStatus.SUCCESS
        assert "A red robot" in cell.prompt
        for descriptor in axis_descriptors(cell.coord, config):
            assert descriptor in cell.prompt
        assert cell.character_description is None
    assert session.grid.status_counts()["idle"] == 6


def test_cells_are_served_in_fifo_order() -> None:
    provider = RecordingProvider()
    session = _session(provider, AxisConfiguration(2, 2, 1), subject="A red robot")
    order = ["1-1-0", "0-0-0", "1-0-0"]

    async def scenario() -> None:
        session.enqueue(order)
        await session.wait_idle()

    asyncio.run(scenario())

    started = [event["cell_id"] for event in session.events.recent("cell_started")]
    assert started == order


def test_rate_limit_failure_triggers_cooldown_before_next_cell() -> None:
    provider = RecordingProvider(fail_on={1: RuntimeError("429 RESOURCE_EXHAUSTED: quota exceeded")})
    session = _session(provider, AxisConfiguration(2, 2, 2), subject="A red robot")

    async def scenario() -> None:
        session.enqueue(["0-0-0", "1-0-0"])
        await session.wait_idle()

    asyncio.run(scenario())

    assert provider.log == ["generate", "sleep:30.0", "generate", "sleep:4.0"]
    first = session.grid.get("0-0-0")
    assert first.status is CellStatus.ERROR
    assert "429" in (first.error or "")
    assert session.grid.get("1-0-0").status is CellStatus.SUCCESS
    failed = session.events.recent("cell_failed")
    assert failed[0]["failure_kind"] == "rate_limit"
    assert session.events.recent("backoff_started")[0]["delay_s"] == 30.0


def test_generic_failure_uses_short_delay() -> None:
    provider = RecordingProvider(fail_on={1: ValueError("backend exploded")})
    session = _session(provider, AxisConfiguration(2, 2, 2), subject="A red robot")

    async def scenario() -> None:
        session.enqueue(["0-0-0", "1-0-0"])
        await session.wait_idle()

    asyncio.run(scenario())

    assert provider.log == ["generate", "sleep:1.0", "generate", "sleep:4.0"]
    assert session.grid.get("0-0-0").status is CellStatus.ERROR
    assert session.events.recent("cell_failed")[0]["failure_kind"] == "generic"
    assert session.events.recent("backoff_started") == []


def test_descriptor_failure_aborts_image_call() -> None:
    class FailingDescriber(RecordingProvider):
        def describe(self, request: DescriptorRequest) -> str:
            self.log.append("describe")
            raise RuntimeError("text model unavailable")

    provider = FailingDescriber()
    session = _session(provider, AxisConfiguration(2, 2, 2), subject="  ")

    async def scenario() -> None:
        session.enqueue(["0-0-0"])
        await session.wait_idle()

    asyncio.run(scenario())

    assert provider.log == ["describe", "sleep:1.0"]
    assert session.grid.get("0-0-0").status is CellStatus.ERROR


def test_empty_descriptor_is_a_generic_failure() -> None:
    class EmptyDescriber(RecordingProvider):
        def describe(self, request: DescriptorRequest) -> str:
            self.log.append("describe")
            return "   "

    provider = EmptyDescriber()
    session = _session(provider, AxisConfiguration(2, 2, 2))

    async def scenario() -> None:
        session.enqueue(["0-0-0"])
        await session.wait_idle()

    asyncio.run(scenario())

    assert provider.log == ["describe", "sleep:1.0"]
    assert session.grid.get("0-0-0").error.startswith("EmptyResponseError")


def test_reset_all_after_success_clears_everything() -> None:
    provider = RecordingProvider()
    session = _session(provider, AxisConfiguration(2, 2, 2), subject="A red robot")

    async def scenario() -> None:
        session.enqueue(["0-0-0", "1-0-0", "0-1-0"])
        await session.wait_idle()

    asyncio.run(scenario())
    assert session.grid.status_counts()["success"] == 3

    session.reset_all()

    assert session.queue_length == 0
    assert not session.processing
    for cell in session.grid:
        assert cell.status is CellStatus.IDLE
        assert cell.image_url is None
        assert cell.prompt == ""


def test_regenerate_requeues_finished_cell() -> None:
    provider = RecordingProvider(fail_on={1: RuntimeError("boom")})
    session = _session(provider, AxisConfiguration(2, 2, 2), subject="A red robot")

    async def scenario() -> None:
        session.enqueue(["0-0-0", "1-0-0"])
        await session.wait_idle()
        # Failed cells may be bulk-enqueued again, finished ones need regenerate.
        assert session.enqueue(["0-0-0", "1-0-0"]) == ["0-0-0"]
        await session.wait_idle()
        assert session.regenerate("1-0-0") is True
        assert session.grid.get("1-0-0").status is CellStatus.QUEUED
        await session.wait_idle()

    asyncio.run(scenario())

    assert provider.log.count("generate") == 4
    assert session.grid.get("0-0-0").status is CellStatus.SUCCESS
    cell = session.grid.get("1-0-0")
    assert cell.status is CellStatus.SUCCESS
    assert cell.image_url == "data:image/png;base64,aW1n4"
    assert cell.attempts == 2


def test_regenerate_with_explicit_subject_clears_generated_description() -> None:
    provider = RecordingProvider()
    session = _session(provider, AxisConfiguration(2, 2, 2))

    async def scenario() -> None:
        session.enqueue(["0-0-0"])
        await session.wait_idle()
        assert session.grid.get("0-0-0").character_description == "A generated hero number 1"
        session.set_subject("A red robot")
        assert session.regenerate("0-0-0") is True
        await session.wait_idle()

    asyncio.run(scenario())

    cell = session.grid.get("0-0-0")
    assert cell.status is CellStatus.SUCCESS
    assert cell.prompt.startswith("A red robot.")
    assert cell.character_description is None
    assert cell.to_dict()["character_description"] is None


def test_raising_listener_does_not_strand_queue() -> None:
    provider = RecordingProvider()
    session = _session(provider, AxisConfiguration(2, 2, 2), subject="A red robot")

    def broken_listener(event: dict) -> None:
        if event["type"] in ("cell_started", "cell_succeeded"):
            raise OSError("broken pipe")

    session.events.add_listener(broken_listener)

    async def scenario() -> None:
        session.enqueue(["0-0-0", "1-0-0"])
        await session.wait_idle()

    asyncio.run(scenario())

    assert session.grid.get("0-0-0").status is CellStatus.SUCCESS
    assert session.grid.get("1-0-0").status is CellStatus.SUCCESS
    assert not session.processing
    assert len(session.events.sink_errors) == 4
    assert "broken pipe" in session.events.sink_errors[0]


def test_cancelled_drain_returns_in_flight_cell_to_idle() -> None:
    provider = BlockingProvider()
    session = _session(provider, AxisConfiguration(2, 2, 2), subject="A red robot")

    async def scenario() -> None:
        session.enqueue(["0-0-0", "1-0-0"])
        waiter = asyncio.create_task(session.wait_idle())
        await asyncio.to_thread(provider.started.wait, 5)
        assert session.grid.get("0-0-0").status is CellStatus.LOADING
        waiter.cancel()
        try:
            await waiter
        except asyncio.CancelledError:
            pass
        provider.release.set()
        session.stop()

    asyncio.run(scenario())

    assert session.grid.get("0-0-0").status is CellStatus.IDLE
    assert session.grid.get("1-0-0").status is CellStatus.IDLE
    assert session.scheduler.in_flight is None
    assert not session.processing
    assert session.events.recent("cell_cancelled")[0]["cell_id"] == "0-0-0"


def test_stop_does_not_interrupt_in_flight_cell() -> None:
    provider = BlockingProvider()
    session = _session(provider, AxisConfiguration(2, 2, 2), subject="A red robot")

    async def scenario() -> None:
        session.enqueue(["0-0-0", "1-0-0", "0-1-0"])
        await asyncio.to_thread(provider.started.wait, 5)
        assert session.grid.get("0-0-0").status is CellStatus.LOADING
        assert session.processing

        assert session.stop() == ["1-0-0", "0-1-0"]
        provider.release.set()
        await session.wait_idle()

    asyncio.run(scenario())

    assert session.grid.get("0-0-0").status is CellStatus.SUCCESS
    assert session.grid.get("1-0-0").status is CellStatus.IDLE
    assert session.grid.get("0-1-0").status is CellStatus.IDLE
    assert provider.log == ["generate", "sleep:4.0"]


def test_axis_change_discards_result_of_in_flight_cell() -> None:
    provider = BlockingProvider()
    session = _session(provider, AxisConfiguration(2, 2, 2), subject="A red robot")

    async def scenario() -> None:
        session.enqueue(["0-0-0", "1-0-0"])
        await asyncio.to_thread(provider.started.wait, 5)
        session.set_axis_config(AxisConfiguration(3, 3, 3))
        assert session.queue_length == 0
        assert not session.processing
        provider.release.set()
        await session.wait_idle()

    asyncio.run(scenario())

    assert len(session.grid) == 27
    assert session.grid.epoch == 1
    fresh = session.grid.get("0-0-0")
    assert fresh.status is CellStatus.IDLE
    assert fresh.image_url is None
    assert all(cell.status is CellStatus.IDLE for cell in session.grid)
    stale = session.events.recent("stale_result_discarded")
    assert [event["cell_id"] for event in stale] == ["0-0-0"]
    assert provider.log == ["generate", "sleep:4.0"]


def test_reset_during_flight_keeps_single_flight() -> None:
    provider = BlockingProvider()
    session = _session(provider, AxisConfiguration(2, 2, 2), subject="A red robot")

    async def scenario() -> None:
        session.enqueue(["0-0-0"])
        await asyncio.to_thread(provider.started.wait, 5)
        session.reset_all()
        assert not session.processing
        # The running drain loop picks this up once the old attempt finishes.
        session.enqueue(["1-1-1"])
        assert session.grid.get("1-1-1").status is CellStatus.QUEUED
        provider.release.set()
        await session.wait_idle()

    asyncio.run(scenario())

    assert provider.max_active == 1
    assert session.grid.get("0-0-0").status is CellStatus.IDLE
    assert session.grid.get("0-0-0").image_url is None
    assert session.grid.get("1-1-1").status is CellStatus.SUCCESS
    assert provider.log == ["generate", "sleep:4.0", "generate", "sleep:4.0"]


def test_generate_all_visits_every_cell_once() -> None:
    provider = RecordingProvider()
    session = _session(provider, AxisConfiguration(2, 2, 2), subject="A red robot")

    async def scenario() -> None:
        session.generate_all()
        session.generate_all()
        await session.wait_idle()

    asyncio.run(scenario())

    assert provider.log.count("generate") == 8
    assert session.grid.status_counts()["success"] == 8
    snapshot = session.snapshot()
    assert snapshot["queue"] == []
    assert snapshot["counts"]["success"] == 8
    assert all(cell["has_image"] for cell in snapshot["cells"])


def test_select_slice_is_clamped_on_shrink() -> None:
    session = _session(RecordingProvider(), AxisConfiguration(2, 2, 4))
    session.select_slice(3)
    session.set_axis_config(AxisConfiguration(2, 2, 2))
    assert session.z_level == 1
    assert session.generate_slice() == [Coordinate(x, y, 1).cell_id for y in range(2) for x in range(2)]
