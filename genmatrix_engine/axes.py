"""Axis definitions and grid-index to descriptor-level mapping."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .grid.model import Coordinate

# Number of descriptor texts defined per axis below.
SOURCE_LEVELS = 5

# Range offered for interactive configuration. A single-step axis is still a
# valid grid (it pins that axis to level 0) but is not offered to users.
MIN_STEPS = 2
MAX_STEPS = 5


@dataclass(frozen=True)
class AxisDefinition:
    key: str
    name: str
    description: str
    levels: tuple[str, ...]


X_AXIS = AxisDefinition(
    key="x",
    name="Stylization (X)",
    description="From Realistic Human to Abstract/Fictional Character",
    levels=(
        "Hyper-realistic photography, 8k resolution, raw photo, pores visible, unedited real life",
        "Realistic portrait, soft cinematic lighting, professional photography",
        "Semi-realistic digital art, smooth texture, concept art style, detailed shading",
        "Stylized character design, illustrative style, cel-shaded, bold lines, 2D/3D hybrid",
        "Abstract, highly stylized, avant-garde art, surreal features, distorted proportions, dreamlike",
    ),
)

Y_AXIS = AxisDefinition(
    key="y",
    name="Energy / Laban Effort (Y)",
    description="From Restrained/Shy to Dynamic/Powerful",
    levels=(
        "Sitting quietly, shy, restrained pose, looking down, low energy, folded hands, introverted",
        "Standing still, calm, neutral expression, relaxed posture, steady breathing",
        "Walking purposefully, confident gesture, active engagement, interacting with environment",
        "Running, jumping, dynamic action pose, high energy, wind blowing hair, tense muscles",
        "Explosive movement, god-like power, screaming energy, motion blur, extreme perspective, warping reality",
    ),
)

Z_AXIS = AxisDefinition(
    key="z",
    name="Physical Constraints (Z)",
    description="From Standard Body to Complex Morphology/Props",
    levels=(
        "Standard human anatomy, casual minimal clothing, no accessories",
        "Wearing distinct fashion, holding a small everyday object (phone, book, cup)",
        "Holding large tools or weapons, wearing heavy armor or elaborate historical costume",
        "Cyborg parts, mechanical limbs, glowing tech integration, or large wings",
        "Non-human morphology, multiple arms, floating magical objects, elemental body transformation, ethereal form",
    ),
)

AXES = (X_AXIS, Y_AXIS, Z_AXIS)

DEFAULT_SUBJECT = "A character"

PROMPT_SUFFIX = """
Full body shot showing the complete character from head to toe.
Standing upright in a neutral pose (arms relaxed at sides if applicable).
Front view, eye-level perspective, facing directly forward.
Isolated on pure white background, no props, no shadows, no other objects.
Neutral, even lighting with no dramatic shadows.
Professional reference image style, high resolution, clean and crisp.
"""


@dataclass(frozen=True)
class AxisConfiguration:
    """Number of grid steps along each axis."""

    x: int = 5
    y: int = 5
    z: int = 5

    def __post_init__(self) -> None:
        for axis, value in (("x", self.x), ("y", self.y), ("z", self.z)):
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValueError(f"Axis {axis} steps must be an integer, got {value!r}.")
            if not 1 <= value <= MAX_STEPS:
                raise ValueError(f"Axis {axis} steps must be within 1..{MAX_STEPS}, got {value}.")

    def validate_interactive(self) -> AxisConfiguration:
        for axis, value in (("x", self.x), ("y", self.y), ("z", self.z)):
            if value < MIN_STEPS:
                raise ValueError(f"Axis {axis} steps must be within {MIN_STEPS}..{MAX_STEPS}, got {value}.")
        return self

    @property
    def total_cells(self) -> int:
        return self.x * self.y * self.z

    def as_tuple(self) -> tuple[int, int, int]:
        return (self.x, self.y, self.z)


def map_index_to_level(index: int, total_steps: int, level_count: int = SOURCE_LEVELS) -> int:
    """Rescale a grid index in ``[0, total_steps-1]`` onto ``[0, level_count-1]``.

    Rounds half up, so a 4-step axis maps to levels 0, 1, 3, 4.
    """
    if total_steps <= 1 or level_count <= 1:
        return 0
    scaled = index * (level_count - 1) / (total_steps - 1)
    level = math.floor(scaled + 0.5)
    return max(0, min(level_count - 1, level))


def axis_levels(coord: Coordinate, config: AxisConfiguration) -> tuple[int, int, int]:
    return (
        map_index_to_level(coord.x, config.x, len(X_AXIS.levels)),
        map_index_to_level(coord.y, config.y, len(Y_AXIS.levels)),
        map_index_to_level(coord.z, config.z, len(Z_AXIS.levels)),
    )


def axis_descriptors(coord: Coordinate, config: AxisConfiguration) -> tuple[str, str, str]:
    x_level, y_level, z_level = axis_levels(coord, config)
    return X_AXIS.levels[x_level], Y_AXIS.levels[y_level], Z_AXIS.levels[z_level]
