"""Tests for stage-derived overlap regions."""
import numpy as np
import pytest

from .._stage_model import (
    compute_overlap_regions,
    is_plausible_offset,
    overlap_fraction,
    pixels_to_stage_offset,
    stage_offset_to_pixels,
)


def test_stage_offset_to_pixels_reverses_axes_and_scales():
    pixels = stage_offset_to_pixels((80.0, 10.0), (0.5, 2.0))
    np.testing.assert_allclose(pixels, (5.0, 160.0))
    np.testing.assert_allclose(pixels_to_stage_offset(pixels, (0.5, 2.0)), (80.0, 10.0))


def test_stage_offset_to_pixels_rejects_bad_spacing():
    with pytest.raises(ValueError):
        stage_offset_to_pixels((1.0, 1.0), (0.0, 1.0))
    with pytest.raises(ValueError):
        stage_offset_to_pixels((1.0, 1.0, 1.0), (1.0, 1.0))


def test_overlap_regions_for_right_neighbour():
    regions = compute_overlap_regions((100, 100), (100, 100), (3, 80))
    assert regions.shape == (97, 20)
    assert regions.fixed_slices == (slice(3, 100), slice(80, 100))
    assert regions.moving_slices == (slice(0, 97), slice(0, 20))


def test_overlap_regions_for_negative_offset():
    regions = compute_overlap_regions((50, 60), (40, 60), (-10, -5))
    assert regions.shape == (30, 55)
    assert regions.fixed_slices == (slice(0, 30), slice(0, 55))
    assert regions.moving_slices == (slice(10, 40), slice(5, 60))


def test_no_overlap_returns_none():
    assert compute_overlap_regions((100, 100), (100, 100), (0, 100)) is None
    assert compute_overlap_regions((100, 100), (100, 100), (-120, 0)) is None


def test_overlap_fraction_and_plausibility():
    np.testing.assert_allclose(overlap_fraction((100, 100), (100, 100), (0.0, 85.3)), (1.0, 0.147))
    assert is_plausible_offset((100, 100), (100, 100), (0.0, 85.3))
    assert not is_plausible_offset((100, 100), (100, 100), (0.0, 100.0))
    assert not is_plausible_offset((100, 100), (100, 100), (0.0, -130.0))
