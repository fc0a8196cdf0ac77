"""Test-statistic histogrammer: cuts, counters, p-values."""

import math

import numpy as np
import pytest

from _models import toy_table
from _tolerances import COUNTER_PVALUE_ATOL, PVALUE_NSIGMA, ROUNDED_PVALUE_ATOL
from pluginscan import TestStatisticHistogrammer, ToyTable
from pluginscan.histogram import edges_from_points


def _rows(n, **kw):
    return [dict(kw) for _ in range(n)]


def test_numeric_example():
    """100 toys, 5 failing the quality cut, 7 of the remaining 95 better."""
    rows = (
        _rows(5, scanpoint1=1.0, chi2min=2.0, chi2min_toy=3.0, status_scan=1)
        + _rows(7, scanpoint1=1.0, chi2min=2.0, chi2min_toy=3.0)
        + _rows(88, scanpoint1=1.0, chi2min=2.0, chi2min_toy=1.0)
    )
    curve = TestStatisticHistogrammer().analyse(toy_table(rows))
    assert curve.n_bins == 1
    assert curve.total[0] == 95 and curve.better[0] == 7 and curve.failed[0] == 5
    assert curve.pvalue[0] == pytest.approx(7 / 95, abs=COUNTER_PVALUE_ATOL)
    assert curve.pvalue[0] == pytest.approx(0.0737, abs=ROUNDED_PVALUE_ATOL)
    assert curve.error[0] == pytest.approx(0.0270, abs=ROUNDED_PVALUE_ATOL)
    assert curve.pvalue_at(1.0) == curve.pvalue[0]


def test_chi2_distributed_toys_recover_nominal_pvalue():
    rng = np.random.default_rng(0)
    n = 10_000
    deltas = rng.chisquare(1, size=n)
    rows = [
        {"scanpoint1": 0.0, "chi2min": 3.84, "chi2min_toy": 1.0 + d, "chi2min_global_toy": 1.0}
        for d in deltas
    ]
    curve = TestStatisticHistogrammer().analyse(toy_table(rows))
    se = math.sqrt(0.05 * 0.95 / n)
    assert abs(curve.pvalue[0] - 0.05) < PVALUE_NSIGMA * se


def test_quality_cut():
    rows = [
        {"scanpoint1": 0.0, "chi2min_toy": 600.0, "chi2min_global_toy": 1.0},
        {"scanpoint1": 0.0, "chi2min_toy": 2.0, "chi2min_global_toy": -501.0},
        {"scanpoint1": 0.0, "chi2min_toy": 2.0, "status_free": 1},
        {"scanpoint1": 0.0, "chi2min_toy": float("nan")},
        {"scanpoint1": 0.0, "chi2min_toy": 2.0},
    ]
    curve = TestStatisticHistogrammer().analyse(toy_table(rows))
    assert curve.n_failed == 4
    assert curve.total[0] == 1
    assert TestStatisticHistogrammer(quality_bound=1000.0).analyse(toy_table(rows)).n_failed == 2


def test_physical_background_and_gof():
    rows = [
        {"scanpoint1": 0.0, "chi2min": 1.0, "chi2min_global": 0.5, "chi2min_toy": 3.0, "chi2min_global_toy": 1.0},
        {"scanpoint1": 0.0, "chi2min": 1.0, "chi2min_global": 0.5, "chi2min_toy": 1.0, "chi2min_global_toy": 0.8},
        {"scanpoint1": 0.0, "chi2min": 1.0, "chi2min_global": 0.5, "chi2min_toy": 1.0, "chi2min_global_toy": 1.2},
    ]
    curve = TestStatisticHistogrammer().analyse(toy_table(rows))
    assert curve.total[0] == 2
    assert curve.better[0] == 1
    assert curve.background[0] == 1
    assert curve.gof[0] == 2  # the non-physical toy never counts
    assert curve.fit_probability == pytest.approx(1.0)
    assert curve.fit_probability_error == 0.0
    assert curve.best_fit_point == 0.0


def test_binning_one_bin_per_point():
    assert edges_from_points([0.5]).tolist() == [-0.5, 1.5]
    np.testing.assert_allclose(edges_from_points([3.0, 1.0, 2.0, 2.0]), [0.5, 1.5, 2.5, 3.5])
    assert edges_from_points([]).size == 0


def test_empty_bin_is_nan():
    rows = _rows(3, scanpoint1=0.0, chi2min_toy=2.0) + _rows(2, scanpoint1=1.0, chi2min_toy=2.0, status_scan=1)
    curve = TestStatisticHistogrammer().analyse(toy_table(rows))
    assert curve.n_bins == 2
    assert not math.isnan(curve.pvalue[0])
    assert math.isnan(curve.pvalue[1]) and math.isnan(curve.error[1])
    assert curve.failed.tolist() == [0, 2]


def test_bounds_hold_in_every_bin():
    rng = np.random.default_rng(5)
    rows = [
        {
            "scanpoint1": float(rng.integers(0, 6)),
            "chi2min": float(rng.uniform(0, 5)),
            "chi2min_toy": float(rng.uniform(-1, 6)),
            "chi2min_global_toy": 0.0,
            "status_scan": int(rng.random() < 0.1),
        }
        for _ in range(600)
    ]
    curve = TestStatisticHistogrammer().analyse(toy_table(rows))
    ok = curve.total > 0
    assert np.all((curve.pvalue[ok] >= 0) & (curve.pvalue[ok] <= 1))
    np.testing.assert_allclose(curve.error[ok], np.sqrt(curve.pvalue[ok] * (1 - curve.pvalue[ok]) / curve.total[ok]))
    assert int((curve.total + curve.background + curve.failed).sum()) == 600


def test_batch_id_selection():
    rows = _rows(4, id=0, scanpoint1=0.0, chi2min_toy=5.0, chi2min=1.0) + _rows(6, id=1, scanpoint1=0.0, chi2min_toy=0.5, chi2min=1.0)
    h = TestStatisticHistogrammer()
    assert h.analyse(toy_table(rows), batch_id=0).pvalue[0] == 1.0
    assert h.analyse(toy_table(rows), batch_id=1).pvalue[0] == 0.0
    assert h.analyse(toy_table(rows), batch_id=1).fit_probability is None
    assert h.analyse(toy_table(rows)).pvalue[0] == pytest.approx(0.4)


def test_plot_range_is_strict():
    rows = [{"scanpoint1": x, "chi2min_toy": 2.0} for x in (0.0, 1.0, 2.0)]
    curve = TestStatisticHistogrammer(plot_range=(0.0, 2.0)).analyse(toy_table(rows))
    assert curve.total.tolist() == [0, 1, 0]
    assert curve.n_outside == 2


def test_external_chi2_replaces_data_statistic():
    rows = _rows(4, scanpoint1=1.0, chi2min=0.0, chi2min_toy=2.0)
    curve = TestStatisticHistogrammer(external_chi2=lambda x: 10.0).analyse(toy_table(rows))
    assert curve.pvalue[0] == 0.0


def test_coverage_corrector_and_clip():
    rows = _rows(4, scanpoint1=0.0, chi2min_toy=2.0, chi2min=1.0) + _rows(4, scanpoint1=0.0, chi2min_toy=0.5, chi2min=1.0)
    curve = TestStatisticHistogrammer(coverage_corrector=lambda p: 2.0 * p).analyse(toy_table(rows))
    assert curve.pvalue[0] == 1.0
    curve = TestStatisticHistogrammer(coverage_corrector=lambda p: p - 1.0).analyse(toy_table(rows))
    assert curve.pvalue[0] == 0.0


def test_background_subtraction():
    rows = (
        _rows(3, scanpoint1=0.0, chi2min_toy=2.0, chi2min=1.0)
        + _rows(5, scanpoint1=0.0, chi2min_toy=0.5, chi2min=1.0)
        + _rows(1, scanpoint1=0.0, chi2min_toy=-0.5, chi2min=1.0)
    )
    plain = TestStatisticHistogrammer().analyse(toy_table(rows))
    sub = TestStatisticHistogrammer(subtract_background=True).analyse(toy_table(rows))
    assert plain.pvalue[0] == pytest.approx(3 / 8)
    assert sub.pvalue[0] == pytest.approx(2 / 7)


def test_empty_table():
    curve = TestStatisticHistogrammer().analyse(ToyTable({}))
    assert curve.n_bins == 0 and curve.n_toys == 0


def test_2d_grid():
    rows = (
        _rows(4, scanpoint1=0.5, scanpoint2=0.5, chi2min_toy=2.0, chi2min=1.0)
        + _rows(4, scanpoint1=1.5, scanpoint2=0.5, chi2min_toy=0.5, chi2min=1.0)
        + _rows(2, scanpoint1=1.5, scanpoint2=1.5, chi2min_toy=2.0, status_free=1)
    )
    grid = TestStatisticHistogrammer().analyse_2d(toy_table(rows, dim=2), [0.0, 1.0, 2.0], [0.0, 1.0, 2.0])
    assert grid.pvalue.shape == (2, 2)
    assert grid.pvalue[0, 0] == 1.0
    assert grid.pvalue[1, 0] == 0.0
    assert math.isnan(grid.pvalue[1, 1]) and math.isnan(grid.pvalue[0, 1])
    assert grid.failed[1, 1] == 2
    assert grid.pvalue_at(0.2, 0.7) == 1.0
