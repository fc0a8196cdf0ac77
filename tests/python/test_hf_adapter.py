"""pyhf adapter: naming, fits and toy generation on a two-bin model."""

import numpy as np
import pytest

pyhf = pytest.importorskip("pyhf")

from pluginscan import FitStatus, PluginScan1D, ScanConfig, profile_likelihood_scan  # noqa: E402
from pluginscan.hf import PyhfModel  # noqa: E402


def _workspace():
    return {
        "channels": [
            {
                "name": "sr",
                "samples": [
                    {
                        "name": "signal",
                        "data": [5.0, 10.0],
                        "modifiers": [{"name": "mu", "type": "normfactor", "data": None}],
                    },
                    {
                        "name": "background",
                        "data": [50.0, 60.0],
                        "modifiers": [{"name": "bkg_uncert", "type": "shapesys", "data": [5.0, 12.0]}],
                    },
                ],
            }
        ],
        "observations": [{"name": "sr", "data": [53.0, 65.0]}],
        "measurements": [{"name": "meas", "config": {"poi": "mu", "parameters": []}}],
        "version": "1.0.0",
    }


@pytest.fixture
def hf_model():
    pyhf.set_backend("numpy")
    return PyhfModel.from_workspace(_workspace())


def test_names(hf_model):
    assert hf_model.poi_name == "mu"
    assert set(hf_model.new_space().parameter_names) == {"mu", "bkg_uncert[0]", "bkg_uncert[1]"}
    assert hf_model.observable_names == ("sr[0]", "sr[1]", "aux[0]", "aux[1]")
    assert hf_model.observed["sr[1]"] == 65.0


def test_fit_free_and_fixed(hf_model):
    space = hf_model.new_space()
    space.load_observables(hf_model.observed)
    free = hf_model.fit(space, [None])
    assert free.status == FitStatus.CONVERGED
    assert np.isfinite(free.chi2)

    space.set("mu", 3.0, constant=True)
    fixed = hf_model.fit(space, [None, free.parameters])
    assert fixed.parameters["mu"] == 3.0
    assert fixed.chi2 >= free.chi2 - 1e-6


def test_generate_follows_rng(hf_model):
    space = hf_model.new_space()
    a = hf_model.generate(space, 4, np.random.default_rng(3))
    b = hf_model.generate(space, 4, np.random.default_rng(3))
    assert a.shape == (4, 4)
    np.testing.assert_array_equal(a, b)
    assert np.all(a[:, :2] >= 0)


def test_generate_leaves_global_numpy_state_alone(hf_model):
    np.random.seed(12345)
    expected = np.random.random(3)
    np.random.seed(12345)
    hf_model.generate(hf_model.new_space(), 4, np.random.default_rng(7))
    np.testing.assert_array_equal(np.random.random(3), expected)


def test_small_plugin_scan(hf_model, scan_dir):
    space = hf_model.new_space()
    space.load_observables(hf_model.observed)
    curve = profile_likelihood_scan(hf_model, space, "mu", 0.0, 2.0, 2)
    scan = PluginScan1D(hf_model, curve, ScanConfig(ntoys=3, npoints1d=2, output_dir=str(scan_dir), name="hf"))
    run = scan.run(1, space=space)
    assert run.n_toys == 6
    table = scan.read(1)
    assert "bkg_uncert[0]_free" in table and "aux[1]" in table
