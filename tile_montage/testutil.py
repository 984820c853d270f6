from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import numpy as np
from scipy import ndimage

from .registration import GridTopology
from .registration._typing_utils import FloatArray, TileIndex

# Border kept around all tiles so sub-pixel shifts never wrap canvas content
CANVAS_MARGIN = 32


@dataclass
class SyntheticGrid:
    """Tiles cut from one textured canvas at known positions.

    Positions are physical ``(x, y)`` with unit spacing, row-major.
    """
    rows: int
    cols: int
    images: List[np.ndarray]
    stage_positions: FloatArray
    actual_positions: FloatArray

    def topology(self) -> GridTopology:
        return GridTopology.from_arrays(self.images, self.stage_positions, self.rows, self.cols)


def textured_canvas(shape: Tuple[int, ...], seed: int = 0, sigma: float = 0.7) -> np.ndarray:
    """Smooth random texture with zero mean and unit variance."""
    rng = np.random.default_rng(seed)
    canvas = ndimage.gaussian_filter(rng.standard_normal(shape), sigma=sigma, mode="wrap")
    return (canvas - canvas.mean()) / canvas.std()


def cut_tile(canvas_fft: np.ndarray, position_xy: FloatArray, tile_shape: Tuple[int, int]) -> np.ndarray:
    """Sample the canvas at a sub-pixel position (x, y) by Fourier shifting."""
    position = np.asarray(position_xy, dtype=np.float64)[::-1] + CANVAS_MARGIN
    whole = np.floor(position).astype(int)
    fraction = position - whole
    shifted = np.fft.ifftn(ndimage.fourier_shift(canvas_fft, -fraction)).real
    region = tuple(slice(start, start + size) for start, size in zip(whole, tile_shape))
    return shifted[region].copy()


def synthetic_tile_grid(
    rows: int,
    cols: int,
    tile_shape: Tuple[int, int] = (100, 100),
    overlap: int = 20,
    column_shift: Tuple[float, float] = (0.0, 0.0),
    row_shift: Tuple[float, float] = (0.0, 0.0),
    jitter: float = 0.0,
    blank_tiles: Iterable[TileIndex] = (),
    seed: int = 0,
    canvas: Optional[np.ndarray] = None,
) -> SyntheticGrid:
    """Cut a grid of overlapping tiles out of a random texture.

    Stage positions sit on the nominal grid (tile size minus overlap). Actual
    positions add ``column_shift`` per column step, ``row_shift`` per row step
    and uniform random jitter of up to ``jitter`` pixels.
    """
    height, width = tile_shape
    step = np.array([width - overlap, height - overlap], dtype=np.float64)
    rng = np.random.default_rng(seed + 1)

    stage = []
    actual = []
    for row in range(rows):
        for col in range(cols):
            nominal = np.array([col, row], dtype=np.float64) * step
            true_position = (
                nominal
                + col * np.asarray(column_shift, dtype=np.float64)
                + row * np.asarray(row_shift, dtype=np.float64)
                + rng.uniform(-jitter, jitter, size=2)
            )
            stage.append(nominal)
            actual.append(true_position)
    stage_arr = np.array(stage)
    actual_arr = np.array(actual)

    if canvas is None:
        extent = actual_arr.max(axis=0) - np.minimum(actual_arr.min(axis=0), 0)
        # Odd extents keep the Fourier shift free of a Nyquist bin
        canvas_shape = tuple(
            n + 1 - n % 2
            for n in (
                int(np.ceil(extent[1])) + height + 2 * CANVAS_MARGIN,
                int(np.ceil(extent[0])) + width + 2 * CANVAS_MARGIN,
            )
        )
        canvas = textured_canvas(canvas_shape, seed=seed)
    canvas_fft = np.fft.fftn(canvas)

    # Keep every tile inside the canvas when actual positions go negative
    origin = np.minimum(actual_arr.min(axis=0), 0)
    blank = set(blank_tiles)
    images = []
    for flat_idx, position in enumerate(actual_arr):
        index = (flat_idx % cols, flat_idx // cols)
        if index in blank:
            images.append(np.full(tile_shape, 100.0))
        else:
            images.append(cut_tile(canvas_fft, position - origin, tile_shape))

    return SyntheticGrid(rows, cols, images, stage_arr, actual_arr)
