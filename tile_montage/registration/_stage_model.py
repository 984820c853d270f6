"""Stage model for microscope tile registration.

Stage coordinates tell us roughly where each tile sits. This module turns a
stage-implied offset between two tiles into:

- the pixel offset in numpy axis order
- the pair of regions that overlap under that offset
- the overlap fraction implied by any candidate offset, used to reject
  physically implausible registrations
"""
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from ._typing_utils import FloatArray, VectorLike


@dataclass(frozen=True)
class OverlapRegions:
    """Matching regions of a fixed and a moving tile.

    Attributes:
        fixed_slices: Region of the fixed tile, one slice per numpy axis
        moving_slices: Region of the moving tile, one slice per numpy axis
        shape: Common shape of both regions
    """
    fixed_slices: Tuple[slice, ...]
    moving_slices: Tuple[slice, ...]
    shape: Tuple[int, ...]


def stage_offset_to_pixels(offset: VectorLike, spacing: VectorLike) -> FloatArray:
    """Convert a physical ``(x, y[, z])`` offset to pixels in numpy axis order."""
    offset = np.asarray(offset, dtype=np.float64)
    spacing = np.asarray(spacing, dtype=np.float64)
    if offset.shape != spacing.shape:
        raise ValueError(f"Offset {offset.shape} and spacing {spacing.shape} dimensions differ")
    if np.any(spacing <= 0):
        raise ValueError(f"Spacing must be positive, got {spacing}")
    return (offset / spacing)[::-1].copy()


def pixels_to_stage_offset(pixels: VectorLike, spacing: VectorLike) -> FloatArray:
    """Convert a numpy-ordered pixel offset to a physical ``(x, y[, z])`` offset."""
    pixels = np.asarray(pixels, dtype=np.float64)
    return pixels[::-1] * np.asarray(spacing, dtype=np.float64)


def _axis_overlap(fixed_size: float, moving_size: float, offset: float) -> Tuple[float, float]:
    """Start/end, in fixed-tile coordinates, of the overlap along one axis."""
    return max(0.0, offset), min(float(fixed_size), offset + moving_size)


def compute_overlap_regions(
    fixed_shape: Sequence[int],
    moving_shape: Sequence[int],
    pixel_offset: Sequence[int],
) -> Optional[OverlapRegions]:
    """Regions of two tiles that overlap when ``moving`` sits at ``pixel_offset``.

    Args:
        fixed_shape: Shape of the fixed tile
        moving_shape: Shape of the moving tile
        pixel_offset: Integer offset of the moving tile origin in the fixed
            tile, numpy axis order

    Returns:
        The overlapping regions, or None if the tiles do not overlap
    """
    if not len(fixed_shape) == len(moving_shape) == len(pixel_offset):
        raise ValueError("Shapes and offset must have the same dimensionality")

    fixed_slices = []
    moving_slices = []
    shape = []
    for n_fixed, n_moving, d in zip(fixed_shape, moving_shape, pixel_offset):
        d = int(d)
        start, end = _axis_overlap(n_fixed, n_moving, d)
        if end <= start:
            return None
        start, end = int(start), int(end)
        fixed_slices.append(slice(start, end))
        moving_slices.append(slice(start - d, end - d))
        shape.append(end - start)

    return OverlapRegions(tuple(fixed_slices), tuple(moving_slices), tuple(shape))


def overlap_fraction(
    fixed_shape: Sequence[int],
    moving_shape: Sequence[int],
    pixel_offset: Sequence[float],
) -> FloatArray:
    """Overlap extent along each axis as a fraction of the smaller tile extent.

    Values outside ``(0, 1]`` (including negative ones) mean the tiles do not
    overlap under the given offset.
    """
    fractions = []
    for n_fixed, n_moving, d in zip(fixed_shape, moving_shape, pixel_offset):
        start, end = _axis_overlap(n_fixed, n_moving, float(d))
        fractions.append((end - start) / min(n_fixed, n_moving))
    return np.asarray(fractions, dtype=np.float64)


def is_plausible_offset(
    fixed_shape: Sequence[int],
    moving_shape: Sequence[int],
    pixel_offset: Sequence[float],
) -> bool:
    """Whether an offset leaves an overlap fraction in ``(0, 1]`` on every axis."""
    fractions = overlap_fraction(fixed_shape, moving_shape, pixel_offset)
    return bool(np.all((fractions > 0.0) & (fractions <= 1.0)))
