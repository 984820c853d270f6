"""Tests for the tile grid and its edges."""
import numpy as np
import pandas as pd
import pytest

from .._grid_topology import GridTopology, Tile


def make_grid(rows, cols, step=(80.0, 80.0), spacing=None):
    images = [np.full((10, 10), i, dtype=np.uint16) for i in range(rows * cols)]
    positions = [(c * step[0], r * step[1]) for r in range(rows) for c in range(cols)]
    return GridTopology.from_arrays(images, positions, rows, cols, spacing)


def test_edge_count_matches_grid():
    grid = make_grid(3, 4)
    edges = grid.edges()
    assert len(edges) == grid.expected_edge_count == 3 * 3 + 4 * 2


def test_edges_are_horizontal_then_vertical():
    edges = make_grid(2, 2).edges()
    assert [(e.fixed, e.moving, e.direction) for e in edges] == [
        ((0, 0), (1, 0), "left"),
        ((0, 1), (1, 1), "left"),
        ((0, 0), (0, 1), "top"),
        ((1, 0), (1, 1), "top"),
    ]


def test_edges_carry_stage_offsets():
    edges = make_grid(2, 3, step=(90.0, 75.0)).edges()
    for edge in edges:
        expected = (90.0, 0.0) if edge.direction == "left" else (0.0, 75.0)
        assert edge.stage_offset == pytest.approx(expected)


def test_single_tile_grid_has_no_edges():
    assert make_grid(1, 1).edges() == []


def test_tile_lookup_by_index():
    grid = make_grid(2, 3)
    assert grid.tile((2, 1)).image[0, 0] == 5
    assert grid.flat_index((1, 1)) == 4
    with pytest.raises(ValueError):
        grid.flat_index((3, 0))


def test_rejects_wrong_tile_count():
    images = [np.zeros((10, 10))] * 3
    with pytest.raises(ValueError):
        GridTopology.from_arrays(images, [(0, 0)] * 3, 2, 2)


def test_rejects_misplaced_tiles():
    tiles = [Tile(np.zeros((4, 4)), (0, 0), (0, 0)), Tile(np.zeros((4, 4)), (0, 1), (0, 0))]
    with pytest.raises(ValueError):
        GridTopology(1, 2, tiles)


def test_rejects_inconsistent_tiles():
    tiles = [
        Tile(np.zeros((4, 4)), (0, 0), (0, 0), spacing=(1.0, 1.0)),
        Tile(np.zeros((4, 4)), (1, 0), (3, 0), spacing=(0.5, 1.0)),
    ]
    with pytest.raises(ValueError):
        GridTopology(1, 2, tiles)
    with pytest.raises(ValueError):
        Tile(np.zeros((4, 4)), (0, 0), (0, 0, 0))
    with pytest.raises(ValueError):
        Tile(np.zeros(4), (0, 0), (0,))


def test_tile_images_are_read_only():
    source = np.zeros((4, 4))
    tile = Tile(source, (0, 0), (0, 0))
    with pytest.raises(ValueError):
        tile.image[0, 0] = 1
    # The caller's array is left writable
    source[0, 0] = 1
    assert tile.image[0, 0] == 1


def test_to_dataframe_lists_neighbours():
    grid = make_grid(2, 2, spacing=(0.5, 0.5))
    df = grid.to_dataframe()
    assert isinstance(df, pd.DataFrame)
    assert list(df["stage_x"]) == [0.0, 80.0, 0.0, 80.0]
    assert df["left"].isna().tolist() == [True, False, True, False]
    assert df["top"].isna().tolist() == [True, True, False, False]
    assert df.loc[3, "left"] == 2
    assert df.loc[3, "top"] == 1
