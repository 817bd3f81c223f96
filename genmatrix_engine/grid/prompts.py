"""Prompt composition for grid cells."""

from __future__ import annotations

from ..axes import PROMPT_SUFFIX, AxisConfiguration, axis_descriptors
from .model import Coordinate


def build_prompt(
    coord: Coordinate,
    config: AxisConfiguration,
    subject: str,
    include_axis_detail: bool = True,
) -> str:
    subject = str(subject or "").strip()
    # A generated character description already encodes the axis semantics.
    if not include_axis_detail:
        return f"{subject}. {PROMPT_SUFFIX}"

    style, energy, physical = axis_descriptors(coord, config)
    return (
        f"{subject}.\n"
        f"Style: {style}.\n"
        f"Pose/Energy: {energy}.\n"
        f"Physical details: {physical}.\n"
        f"{PROMPT_SUFFIX}"
    )


def build_descriptor_instruction(style: str, energy: str, physical: str) -> str:
    return (
        "Invent ONE original character for a full-body reference image. "
        "Describe who they are and what they look like in one or two sentences. "
        "The character must embody all three of these traits:\n"
        f"- Visual style: {style}\n"
        f"- Pose and energy: {energy}\n"
        f"- Physical form and props: {physical}\n"
        "Do not mention backgrounds, cameras or lighting. Do not include lists, headings or quotes. "
        "Output only the description."
    )
