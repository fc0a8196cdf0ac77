"""Importance sampling fraction and toy counts."""

import numpy as np
import pytest
from scipy.stats import chi2

from pluginscan import ImportanceSampler, expected_pvalue, importance


def test_zero_below_cutoff():
    assert importance(0.0) == 0.0
    assert importance(9.9e-6) == 0.0
    assert importance(1e-5) == 1.0


@pytest.mark.parametrize("p", np.linspace(1e-5, 1.0, 97))
def test_range(p):
    assert 0.05 <= importance(p) <= 1.0


def test_non_increasing_towards_one():
    ps = np.linspace(1e-5, 1.0, 2000)
    f = np.array([importance(p) for p in ps])
    assert np.all(np.diff(f) <= 0.0)


def test_formula_between_clamps():
    p = 0.1
    assert importance(p) == pytest.approx((1 - p) / p / 30)
    assert importance(0.5) == 0.05
    assert importance(0.01) == 1.0


def test_expected_pvalue():
    assert expected_pvalue(5.0, 1.16) == pytest.approx(chi2.sf(3.84, 1))
    assert expected_pvalue(1.0, 2.0) == 1.0


def test_sampler_counts():
    assert ImportanceSampler(False).n_toys(100, 0.5) == (100, 0)
    assert ImportanceSampler(True).n_toys(100, 0.5) == (5, 95)
    assert ImportanceSampler(True).n_toys(100, 1e-7) == (0, 100)
    n, skipped = ImportanceSampler(True).n_toys(7, 0.2)
    assert n == int(7 * (0.8 / 0.2 / 30)) and n + skipped == 7
