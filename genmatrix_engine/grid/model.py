"""Grid of generation cells."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator

from ..axes import AxisConfiguration


class CellStatus(Enum):
    IDLE = "idle"
    QUEUED = "queued"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class Coordinate:
    x: int
    y: int
    z: int

    @property
    def cell_id(self) -> str:
        return f"{self.x}-{self.y}-{self.z}"

    @classmethod
    def parse(cls, cell_id: str) -> Coordinate:
        parts = str(cell_id).strip().split("-")
        if len(parts) != 3:
            raise ValueError(f"Invalid cell id {cell_id!r}; expected 'x-y-z'.")
        try:
            x, y, z = (int(part) for part in parts)
        except ValueError as exc:
            raise ValueError(f"Invalid cell id {cell_id!r}; expected 'x-y-z'.") from exc
        if min(x, y, z) < 0:
            raise ValueError(f"Invalid cell id {cell_id!r}; indices must be non-negative.")
        return cls(x, y, z)

    def within(self, config: AxisConfiguration) -> bool:
        return 0 <= self.x < config.x and 0 <= self.y < config.y and 0 <= self.z < config.z


@dataclass
class Cell:
    cell_id: str
    coord: Coordinate
    status: CellStatus = CellStatus.IDLE
    prompt: str = ""
    image_url: str | None = None
    character_description: str | None = None
    error: str | None = None
    attempts: int = 0

    def clear_results(self) -> None:
        self.status = CellStatus.IDLE
        self.prompt = ""
        self.image_url = None
        self.character_description = None
        self.error = None
        self.attempts = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.cell_id,
            "coord": {"x": self.coord.x, "y": self.coord.y, "z": self.coord.z},
            "status": self.status.value,
            "prompt": self.prompt,
            "has_image": self.image_url is not None,
            "character_description": self.character_description,
            "error": self.error,
            "attempts": self.attempts,
        }


@dataclass
class Grid:
    config: AxisConfiguration
    epoch: int = 0
    cells: dict[str, Cell] = field(default_factory=dict)

    @classmethod
    def rebuild(cls, config: AxisConfiguration, epoch: int = 0) -> Grid:
        cells: dict[str, Cell] = {}
        for z in range(config.z):
            for y in range(config.y):
                for x in range(config.x):
                    coord = Coordinate(x, y, z)
                    cells[coord.cell_id] = Cell(cell_id=coord.cell_id, coord=coord)
        return cls(config=config, epoch=epoch, cells=cells)

    def reset(self) -> Grid:
        for cell in self.cells.values():
            cell.clear_results()
        # Results from attempts started before the reset must not land.
        self.epoch += 1
        return self

    def get(self, cell_id: str) -> Cell | None:
        return self.cells.get(cell_id)

    def __contains__(self, cell_id: object) -> bool:
        return cell_id in self.cells

    def __len__(self) -> int:
        return len(self.cells)

    def __iter__(self) -> Iterator[Cell]:
        return iter(self.cells.values())

    def ids(self) -> list[str]:
        return list(self.cells.keys())

    def slice_ids(self, z: int) -> list[str]:
        self._check_slice(z)
        return [Coordinate(x, y, z).cell_id for y in range(self.config.y) for x in range(self.config.x)]

    def slice_rows(self, z: int) -> list[list[Cell]]:
        """Cells of one Z slice as display rows, highest energy (y) first."""
        self._check_slice(z)
        rows: list[list[Cell]] = []
        for y in range(self.config.y - 1, -1, -1):
            rows.append([self.cells[Coordinate(x, y, z).cell_id] for x in range(self.config.x)])
        return rows

    def status_counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in CellStatus}
        for cell in self.cells.values():
            counts[cell.status.value] += 1
        return counts

    def _check_slice(self, z: int) -> None:
        if not 0 <= z < self.config.z:
            raise ValueError(f"Slice z={z} out of range 0..{self.config.z - 1}.")
