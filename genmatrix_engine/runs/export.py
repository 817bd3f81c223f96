"""Export a session's images, manifest and HTML contact sheet."""

from __future__ import annotations

import html
import os
from pathlib import Path
from typing import Any, Mapping

from ..axes import X_AXIS, Y_AXIS, Z_AXIS
from ..grid.model import CellStatus, Grid
from ..utils import decode_data_uri, extension_for_mime, now_utc_iso, read_json, write_json

MANIFEST_NAME = "manifest.json"
MANIFEST_SCHEMA_VERSION = 1


def image_filename(x: int, y: int, z: int, ext: str = "png") -> str:
    return f"gen-x{x}-y{y}-z{z}.{ext}"


def export_images(grid: Grid, out_dir: Path) -> dict[str, Path]:
    out_dir.mkdir(parents=True, exist_ok=True)
    written: dict[str, Path] = {}
    for cell in grid:
        if cell.status is not CellStatus.SUCCESS or not cell.image_url:
            continue
        data, mime_type = decode_data_uri(cell.image_url)
        path = out_dir / image_filename(cell.coord.x, cell.coord.y, cell.coord.z, extension_for_mime(mime_type))
        path.write_bytes(data)
        written[cell.cell_id] = path
    return written


def write_manifest(session_dir: Path, snapshot: Mapping[str, Any], image_paths: Mapping[str, Path]) -> Path:
    cells: list[dict[str, Any]] = []
    for cell in snapshot.get("cells", []):
        entry = dict(cell)
        entry.pop("has_image", None)
        path = image_paths.get(str(entry.get("id")))
        entry["image_file"] = os.path.relpath(path, session_dir) if path else None
        cells.append(entry)
    payload = {
        "schema_version": MANIFEST_SCHEMA_VERSION,
        "session_id": snapshot.get("session_id"),
        "steps": snapshot.get("steps"),
        "subject": snapshot.get("subject"),
        "counts": snapshot.get("counts"),
        "exported_at": now_utc_iso(),
        "cells": cells,
    }
    manifest_path = session_dir / MANIFEST_NAME
    write_json(manifest_path, payload)
    return manifest_path


def export_html(session_dir: Path, out_path: Path) -> Path:
    manifest = read_json(session_dir / MANIFEST_NAME, {})
    if not isinstance(manifest, dict):
        manifest = {}
    steps = manifest.get("steps") if isinstance(manifest.get("steps"), dict) else {}
    cells = manifest.get("cells", []) if isinstance(manifest.get("cells", []), list) else []
    by_coord: dict[tuple[int, int, int], dict[str, Any]] = {}
    for cell in cells:
        if not isinstance(cell, dict) or not isinstance(cell.get("coord"), dict):
            continue
        coord = cell["coord"]
        by_coord[(int(coord.get("x", 0)), int(coord.get("y", 0)), int(coord.get("z", 0)))] = cell

    x_steps = int(steps.get("x", 0) or 0)
    y_steps = int(steps.get("y", 0) or 0)
    z_steps = int(steps.get("z", 0) or 0)
    sections: list[str] = []
    for z in range(z_steps):
        rows: list[str] = []
        # Highest energy on top, as in the grid view.
        for y in range(y_steps - 1, -1, -1):
            tds = [_cell_html(by_coord.get((x, y, z)), session_dir, out_path) for x in range(x_steps)]
            rows.append(f"<tr><th class='axis'>y={y}</th>{''.join(tds)}</tr>")
        header = "".join(f"<th class='axis'>x={x}</th>" for x in range(x_steps))
        sections.append(
            f"<section><h2>{html.escape(Z_AXIS.name)}: z={z}</h2>"
            f"<table><tr><th></th>{header}</tr>{''.join(rows)}</table></section>"
        )

    subject = html.escape(str(manifest.get("subject") or ""))
    html_doc = f"""
<!doctype html>
<html>
<head>
  <meta charset='utf-8'>
  <title>GenMatrix Export</title>
  <style>
    body {{ font-family: Arial, sans-serif; background: #111827; color: #e5e7eb; margin: 0; padding: 20px; }}
    table {{ border-collapse: collapse; margin-bottom: 24px; }}
    td {{ width: 180px; height: 240px; background: #1f2937; border: 1px solid #374151; text-align: center; vertical-align: middle; }}
    td img {{ max-width: 100%; max-height: 100%; }}
    td.error {{ color: #f87171; font-size: 12px; }}
    td.empty {{ color: #6b7280; font-size: 12px; }}
    th.axis {{ font-size: 11px; color: #9ca3af; padding: 4px; }}
    .axes {{ font-size: 13px; color: #9ca3af; }}
  </style>
</head>
<body>
  <h1>GenMatrix Export</h1>
  <p>Subject: {subject}</p>
  <p class='axes'>X: {html.escape(X_AXIS.name)} &middot; Y: {html.escape(Y_AXIS.name)} &middot; Z: {html.escape(Z_AXIS.name)}</p>
  {''.join(sections)}
</body>
</html>
"""
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(html_doc, encoding="utf-8")
    return out_path


def _cell_html(cell: Mapping[str, Any] | None, session_dir: Path, out_path: Path) -> str:
    if not cell:
        return "<td class='empty'></td>"
    title = html.escape(str(cell.get("character_description") or cell.get("prompt") or ""), quote=True)
    image_file = cell.get("image_file")
    if image_file:
        src = os.path.relpath(session_dir / str(image_file), out_path.parent)
        return f"<td title='{title}'><img src='{html.escape(src, quote=True)}' alt='{html.escape(str(cell.get('id')))}'></td>"
    status = str(cell.get("status") or "idle")
    if status == "error":
        error = html.escape(str(cell.get("error") or "error"))
        return f"<td class='error'>{error}</td>"
    return f"<td class='empty'>{html.escape(status)}</td>"
