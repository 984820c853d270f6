"""Tests for the global least-squares placement of tiles."""
import logging

import numpy as np
import pytest

from .._global_optimization import GlobalPositionSolver
from .._grid_topology import GridTopology
from .._pairwise_registration import CorrelationCandidate, PairwiseResult


def make_topology(rows, cols, step=80.0):
    images = [np.zeros((10, 10)) for _ in range(rows * cols)]
    positions = [(c * step, r * step) for r in range(rows) for c in range(cols)]
    return GridTopology.from_arrays(images, positions, rows, cols)


def exact_results(topology, actual, confidence=100.0, skip=()):
    """One candidate per edge matching ``actual`` positions exactly."""
    results = []
    for edge in topology.edges():
        if edge.moving in skip or edge.fixed in skip:
            results.append(PairwiseResult(edge, ()))
            continue
        offset = actual[topology.flat_index(edge.moving)] - actual[topology.flat_index(edge.fixed)]
        candidate = CorrelationCandidate(tuple(float(v) for v in offset), confidence)
        results.append(PairwiseResult(edge, (candidate,)))
    return results


def offsets(transforms):
    return np.array([t.offset for t in transforms])


def test_exact_measurements_are_recovered():
    topology = make_topology(3, 3)
    rng = np.random.default_rng(0)
    actual = topology.stage_positions() + rng.uniform(-4, 4, size=(9, 2))
    transforms, diagnostics = GlobalPositionSolver().solve(topology, exact_results(topology, actual))
    np.testing.assert_allclose(offsets(transforms), actual - actual[0], atol=1e-6)
    assert [t.index for t in transforms] == [tile.index for tile in topology]
    assert not any(t.from_stage_prior for t in transforms)
    assert all(d.residual < 1e-6 for d in diagnostics)
    assert all(d.candidate_rank == 0 for d in diagnostics)


def test_loop_residual_is_shared():
    topology = make_topology(2, 2)
    actual = topology.stage_positions()
    results = exact_results(topology, actual)
    biased = results[0].best
    results[0] = PairwiseResult(
        results[0].edge,
        (CorrelationCandidate((biased.offset[0] + 1.0, biased.offset[1]), biased.confidence),),
    )
    _, diagnostics = GlobalPositionSolver().solve(topology, results)
    for diag in diagnostics:
        assert diag.residual == pytest.approx(0.25)


def test_reference_tile_is_origin():
    topology = make_topology(2, 3)
    actual = topology.stage_positions() + np.arange(12, dtype=float).reshape(6, 2) * 0.1
    transforms, _ = GlobalPositionSolver().solve(
        topology, exact_results(topology, actual), reference=(2, 1)
    )
    ref = topology.flat_index((2, 1))
    np.testing.assert_allclose(transforms[ref].offset, (0.0, 0.0), atol=1e-9)
    np.testing.assert_allclose(offsets(transforms), actual - actual[ref], atol=1e-6)


def test_fallback_edge_uses_stage_offset():
    topology = make_topology(2, 2)
    actual = topology.stage_positions() + np.array([[0, 0], [2, 1], [-1, 3], [1, 4]], dtype=float)
    results = exact_results(topology, actual)
    results[1] = PairwiseResult(results[1].edge, ())
    transforms, diagnostics = GlobalPositionSolver().solve(topology, results)

    # The three registered edges pin every tile; the weak fallback barely moves them
    np.testing.assert_allclose(offsets(transforms), actual - actual[0], atol=0.05)
    fallback = diagnostics[1]
    assert fallback.used_fallback
    assert fallback.chosen_offset is None
    assert fallback.candidate_rank is None
    assert fallback.stage_offset == (80.0, 0.0)
    assert not any(t.from_stage_prior for t in transforms)


def test_unregistered_tile_is_pinned_to_stage(caplog):
    topology = make_topology(2, 2)
    actual = topology.stage_positions() + np.array([[0, 0], [2, 1], [-1, 3], [9, 9]], dtype=float)
    results = exact_results(topology, actual, skip=[(1, 1)])
    with caplog.at_level(logging.WARNING):
        transforms, diagnostics = GlobalPositionSolver().solve(topology, results)

    assert transforms[3].from_stage_prior
    np.testing.assert_allclose(transforms[3].offset, (80.0, 80.0))
    np.testing.assert_allclose(offsets(transforms)[:3], (actual - actual[0])[:3], atol=1e-6)
    assert sum(d.used_fallback for d in diagnostics) == 2
    assert "stage coordinates" in caplog.text


def test_disconnected_group_is_anchored_by_prior(caplog):
    topology = make_topology(2, 3)
    actual = topology.stage_positions() + 0.5
    # Every edge touching the middle column is lost
    results = exact_results(topology, actual, skip=[(1, 0), (1, 1)])
    with caplog.at_level(logging.WARNING):
        transforms, _ = GlobalPositionSolver().solve(topology, results)

    assert "not connected to the reference tile" in caplog.text
    assert transforms[topology.flat_index((1, 0))].from_stage_prior
    right = offsets(transforms)[[topology.flat_index((2, 0)), topology.flat_index((2, 1))]]
    np.testing.assert_allclose(right[1] - right[0], (0.0, 80.0), atol=1e-3)
    np.testing.assert_allclose(right.mean(axis=0), (160.0, 40.0), atol=1e-3)


def test_reselection_switches_to_consistent_candidate():
    topology = make_topology(2, 2)
    actual = topology.stage_positions()
    results = exact_results(topology, actual, confidence=1000.0)
    good = results[0].best
    results[0] = PairwiseResult(
        results[0].edge,
        (
            CorrelationCandidate((good.offset[0] + 30.0, good.offset[1]), 10.0),
            CorrelationCandidate(good.offset, 9.0),
        ),
    )
    transforms, diagnostics = GlobalPositionSolver().solve(topology, results)
    assert diagnostics[0].candidate_rank == 1
    assert diagnostics[0].chosen_offset == good.offset
    np.testing.assert_allclose(offsets(transforms), actual, atol=1e-6)

    _, diagnostics = GlobalPositionSolver(reselection_iterations=0).solve(topology, results)
    assert diagnostics[0].candidate_rank == 0
    assert diagnostics[0].residual > 2.0


def test_single_tile():
    topology = make_topology(1, 1)
    transforms, diagnostics = GlobalPositionSolver().solve(topology, [])
    assert transforms[0].offset == (0.0, 0.0)
    assert diagnostics == []


def test_results_must_cover_every_edge():
    topology = make_topology(2, 2)
    results = exact_results(topology, topology.stage_positions())
    with pytest.raises(ValueError):
        GlobalPositionSolver().solve(topology, results[:-1])
    with pytest.raises(ValueError):
        GlobalPositionSolver().solve(topology, results[:-1] + results[:1])


def test_invalid_reference():
    topology = make_topology(2, 2)
    with pytest.raises(ValueError):
        GlobalPositionSolver().solve(topology, exact_results(topology, topology.stage_positions()), reference=(5, 5))


def test_invalid_solver_settings():
    with pytest.raises(ValueError):
        GlobalPositionSolver(fallback_weight=0.0)
    with pytest.raises(ValueError):
        GlobalPositionSolver(residual_tolerance=-1.0)
    with pytest.raises(ValueError):
        GlobalPositionSolver(reselection_iterations=-1)
