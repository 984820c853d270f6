"""Rectangular tile grid and its registration edges.

Tiles are stored row-major. Only horizontal and vertical neighbours are
registered; diagonal pairs are never considered.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence

import numpy as np
import pandas as pd

from ._typing_utils import FloatArray, NumArray, TileIndex, VectorLike

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Tile:
    """One image of the grid plus where the stage says it is.

    Attributes:
        image: Pixel data, indexed ``[row, col]`` (``[z, y, x]`` in 3-D). Stored
            as a read-only view.
        index: Grid index ``(col, row)``
        stage_position: Physical origin ``(x, y[, z])`` reported by the stage
        spacing: Physical pixel size ``(x, y[, z])``
    """
    image: NumArray
    index: TileIndex
    stage_position: FloatArray
    spacing: FloatArray = field(default=None)  # type: ignore[assignment]

    def __post_init__(self) -> None:
        image = np.asarray(self.image).view()
        image.flags.writeable = False
        self.image = image
        if image.ndim not in (2, 3):
            raise ValueError(f"Tile {self.index}: images must be 2D or 3D, got shape {image.shape}")

        if self.spacing is None:
            self.spacing = np.ones(image.ndim)
        self.spacing = np.asarray(self.spacing, dtype=np.float64)
        self.stage_position = np.asarray(self.stage_position, dtype=np.float64)
        self.index = (int(self.index[0]), int(self.index[1]))

        if self.spacing.shape != (image.ndim,):
            raise ValueError(f"Tile {self.index}: spacing must have {image.ndim} components, got {self.spacing}")
        if np.any(self.spacing <= 0):
            raise ValueError(f"Tile {self.index}: spacing must be positive, got {self.spacing}")
        if self.stage_position.shape != (image.ndim,):
            raise ValueError(
                f"Tile {self.index}: stage position must have {image.ndim} components, got {self.stage_position}"
            )

    @property
    def ndim(self) -> int:
        return self.image.ndim


@dataclass(frozen=True)
class GridEdge:
    """A registration-eligible pair of adjacent tiles.

    ``direction`` follows the moving tile's point of view: ``"left"`` means the
    fixed tile is its left neighbour, ``"top"`` means the fixed tile is above it.
    """
    fixed: TileIndex
    moving: TileIndex
    direction: str
    stage_offset: tuple

    @property
    def stage_offset_array(self) -> FloatArray:
        return np.asarray(self.stage_offset, dtype=np.float64)


class GridTopology:
    """Ordered ``rows x cols`` arrangement of tiles."""

    def __init__(self, rows: int, cols: int, tiles: Sequence[Tile]):
        if rows < 1 or cols < 1:
            raise ValueError(f"Grid dimensions must be positive, got {rows}x{cols}")
        if len(tiles) != rows * cols:
            raise ValueError(f"Grid of {rows}x{cols} needs {rows * cols} tiles, got {len(tiles)}")

        for flat_idx, tile in enumerate(tiles):
            expected = (flat_idx % cols, flat_idx // cols)
            if tile.index != expected:
                raise ValueError(f"Tile at position {flat_idx} has index {tile.index}, expected {expected}")

        first = tiles[0]
        for tile in tiles[1:]:
            if tile.ndim != first.ndim:
                raise ValueError(f"Tile {tile.index} is {tile.ndim}D but tile {first.index} is {first.ndim}D")
            if not np.allclose(tile.spacing, first.spacing):
                raise ValueError(f"Tile {tile.index} spacing {tile.spacing} differs from {first.spacing}")

        self.rows = rows
        self.cols = cols
        self._tiles: List[Tile] = list(tiles)
        logger.debug(f"Tile grid {rows}x{cols}, {first.ndim}D tiles, spacing {first.spacing}")

    @classmethod
    def from_arrays(
        cls,
        images: Sequence[NumArray],
        stage_positions: Sequence[VectorLike],
        rows: int,
        cols: int,
        spacing: Optional[VectorLike] = None,
    ) -> "GridTopology":
        """Build a grid from row-major images and their stage positions."""
        if len(images) != len(stage_positions):
            raise ValueError(f"Got {len(images)} images but {len(stage_positions)} stage positions")
        if len(images) != rows * cols:
            raise ValueError(f"Grid of {rows}x{cols} needs {rows * cols} tiles, got {len(images)}")
        tiles = [
            Tile(image=image, index=(i % cols, i // cols), stage_position=position, spacing=spacing)
            for i, (image, position) in enumerate(zip(images, stage_positions))
        ]
        return cls(rows, cols, tiles)

    @property
    def tiles(self) -> List[Tile]:
        return list(self._tiles)

    @property
    def ndim(self) -> int:
        return self._tiles[0].ndim

    @property
    def spacing(self) -> FloatArray:
        return self._tiles[0].spacing

    @property
    def expected_edge_count(self) -> int:
        return self.rows * (self.cols - 1) + self.cols * (self.rows - 1)

    def __len__(self) -> int:
        return len(self._tiles)

    def __iter__(self) -> Iterator[Tile]:
        return iter(self._tiles)

    def contains(self, index: TileIndex) -> bool:
        col, row = index
        return 0 <= col < self.cols and 0 <= row < self.rows

    def flat_index(self, index: TileIndex) -> int:
        if not self.contains(index):
            raise ValueError(f"Tile index {index} outside {self.cols}x{self.rows} (cols x rows) grid")
        col, row = index
        return row * self.cols + col

    def tile(self, index: TileIndex) -> Tile:
        return self._tiles[self.flat_index(index)]

    def stage_positions(self) -> FloatArray:
        """Stage positions of all tiles, row-major, shape ``(n_tiles, ndim)``."""
        return np.array([tile.stage_position for tile in self._tiles])

    def _edge(self, fixed: TileIndex, moving: TileIndex, direction: str) -> GridEdge:
        offset = self.tile(moving).stage_position - self.tile(fixed).stage_position
        return GridEdge(fixed, moving, direction, tuple(float(v) for v in offset))

    def edges(self) -> List[GridEdge]:
        """All horizontal edges (row-major), then all vertical edges (row-major)."""
        edges = []
        for row in range(self.rows):
            for col in range(1, self.cols):
                edges.append(self._edge((col - 1, row), (col, row), "left"))
        for row in range(1, self.rows):
            for col in range(self.cols):
                edges.append(self._edge((col, row - 1), (col, row), "top"))
        return edges

    def to_dataframe(self) -> pd.DataFrame:
        """One row per tile with stage coordinates and flat neighbour indices.

        ``left``/``top`` hold the flat index of the left/top neighbour, or
        ``<NA>`` on the grid border.
        """
        axes = "xyz"[: self.ndim]
        records = []
        for flat_idx, tile in enumerate(self._tiles):
            col, row = tile.index
            record = {"col": col, "row": row}
            for axis, value in zip(axes, tile.stage_position):
                record[f"stage_{axis}"] = float(value)
            record["left"] = flat_idx - 1 if col > 0 else None
            record["top"] = flat_idx - self.cols if row > 0 else None
            records.append(record)
        grid = pd.DataFrame.from_records(records)
        for direction in ("left", "top"):
            grid[direction] = grid[direction].astype("Int32")
        return grid
