"""Tests for the parallel registration pipeline."""
import pytest

from ...parameters import RegistrationParameters
from ...testutil import synthetic_tile_grid
from .. import tile_registration
from ..tile_registration import register_edges, register_tiles


@pytest.fixture
def progress_bars(monkeypatch):
    """Record the ``disable`` flag of every progress bar created."""
    disabled = []

    def fake_tqdm(iterable, **kwargs):
        disabled.append(kwargs["disable"])
        return iterable

    monkeypatch.setattr(tile_registration, "tqdm", fake_tqdm)
    return disabled


@pytest.fixture(scope="module")
def topology():
    return synthetic_tile_grid(2, 2, jitter=1.0, seed=8).topology()


@pytest.mark.parametrize("verbose", [False, True])
def test_progress_bar_follows_verbose(topology, progress_bars, verbose):
    register_tiles(topology, RegistrationParameters(verbose=verbose))
    assert progress_bars == [not verbose]


def test_explicit_show_progress_wins(topology, progress_bars):
    register_tiles(topology, RegistrationParameters(verbose=True), show_progress=False)
    register_edges(topology, RegistrationParameters(verbose=False), show_progress=True)
    assert progress_bars == [True, False]


def test_results_follow_edge_order(topology):
    results = register_edges(topology, RegistrationParameters(max_workers=3))
    assert [r.edge for r in results] == topology.edges()


def test_progress_callback_counts_edges(topology):
    calls = []
    register_edges(topology, RegistrationParameters(), progress=lambda done, total: calls.append((done, total)))
    assert calls == [(1, 4), (2, 4), (3, 4), (4, 4)]
