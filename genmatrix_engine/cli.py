"""GenMatrix CLI entrypoints."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from .axes import AXES, DEFAULT_SUBJECT, MAX_STEPS, MIN_STEPS, AxisConfiguration, map_index_to_level
from .cli_progress import QueueProgress
from .providers import default_provider_name, default_registry
from .runs.export import export_html, export_images, write_manifest
from .session import GridSession
from .settings import SchedulerSettings
from .utils import load_dotenv


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="genmatrix", description="3D prompt-grid image batcher")
    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Generate images for grid cells")
    run.add_argument("--out", required=True, help="Session output directory")
    run.add_argument("--events", help="Path to events.jsonl")
    run.add_argument(
        "--steps",
        nargs=3,
        type=int,
        metavar=("X", "Y", "Z"),
        default=[5, 5, 5],
        help=f"Steps per axis ({MIN_STEPS}..{MAX_STEPS})",
    )
    run.add_argument(
        "--subject",
        default=DEFAULT_SUBJECT,
        help="Subject text; leave empty or default to synthesize a character per cell",
    )
    run.add_argument("--provider", help="Provider name (default: gemini when a key is set, else dryrun)")
    target = run.add_mutually_exclusive_group()
    target.add_argument("--slice", type=int, dest="z_slice", help="Generate one Z slice")
    target.add_argument("--all", action="store_true", dest="all_cells", help="Generate every cell")
    target.add_argument("--cell", action="append", dest="cells", metavar="ID", help="Generate a cell by id (x-y-z)")

    export = sub.add_parser("export", help="Render an HTML contact sheet for a session")
    export.add_argument("--session", required=True, help="Session directory")
    export.add_argument("--out", required=True, help="Output HTML path")

    sub.add_parser("axes", help="Show axis definitions")
    return parser


def _config_from_steps(steps: list[int]) -> AxisConfiguration:
    return AxisConfiguration(x=steps[0], y=steps[1], z=steps[2]).validate_interactive()


def _enqueue_targets(session: GridSession, args: argparse.Namespace) -> list[str]:
    if args.cells:
        return session.enqueue(args.cells)
    if args.all_cells:
        return session.generate_all()
    z = args.z_slice if args.z_slice is not None else 0
    session.select_slice(z)
    return session.generate_slice()


def _handle_run(args: argparse.Namespace) -> int:
    try:
        config = _config_from_steps(args.steps)
        provider = default_registry().require(args.provider or default_provider_name())
        settings = SchedulerSettings.from_env()
    except ValueError as exc:
        print(f"Invalid arguments: {exc}")
        return 2

    session_dir = Path(args.out)
    session_dir.mkdir(parents=True, exist_ok=True)
    events_path = Path(args.events) if args.events else session_dir / "events.jsonl"
    session = GridSession(
        config=config,
        subject=args.subject,
        descriptor_provider=provider,
        image_provider=provider,
        settings=settings,
        events_path=events_path,
    )
    try:
        queued = _enqueue_targets(session, args)
    except ValueError as exc:
        print(f"Invalid arguments: {exc}")
        return 2
    if not queued:
        print("Nothing to generate.")
        return 0

    print(f"Plan: {len(queued)} cells via {provider.name} steps={config.as_tuple()} subject={session.subject!r}")
    progress = QueueProgress(len(queued))
    session.events.add_listener(progress)
    interrupted = False
    try:
        asyncio.run(session.wait_idle())
    except KeyboardInterrupt:
        interrupted = True
        session.stop()
    progress.finish()

    image_paths = export_images(session.grid, session_dir / "images")
    write_manifest(session_dir, session.snapshot(), image_paths)
    html_path = export_html(session_dir, session_dir / "index.html")
    summary = session.finish(session_dir / "summary.json")
    print(f"Exported {len(image_paths)} images to {html_path}")
    if session.events.sink_errors:
        print(f"Warning: {len(session.events.sink_errors)} event sink failures; first: {session.events.sink_errors[0]}")
    if interrupted:
        print("Stopped before the queue drained.")
        return 130
    return 1 if summary.failed else 0


def _handle_export(args: argparse.Namespace) -> int:
    session_dir = Path(args.session)
    out_path = Path(args.out)
    if not (session_dir / "manifest.json").exists():
        print(f"No manifest.json in {session_dir}")
        return 1
    export_html(session_dir, out_path)
    print(f"Exported to {out_path}")
    return 0


def _handle_axes(args: argparse.Namespace) -> int:
    for axis in AXES:
        print(f"{axis.name}: {axis.description}")
        for idx, level in enumerate(axis.levels):
            print(f"  [{idx}] {level}")
    print("Grid index -> level:")
    for steps in range(MIN_STEPS, MAX_STEPS + 1):
        levels = [map_index_to_level(idx, steps) for idx in range(steps)]
        print(f"  {steps} steps: {levels}")
    return 0


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.command == "run":
        raise SystemExit(_handle_run(args))
    if args.command == "export":
        raise SystemExit(_handle_export(args))
    if args.command == "axes":
        raise SystemExit(_handle_axes(args))
    parser.print_help(sys.stdout)
    raise SystemExit(1)


if __name__ == "__main__":
    main()
