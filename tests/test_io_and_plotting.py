"""
===========================================================
CSV I/O, results table and plotting
===========================================================
"""

from pathlib import Path

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from psf_fit import (load_patch, save_residual_map, results_table, save_results_csv,
                     fit_aniso_gaussian_2d, gaussian_patch)
from psf_fit.plotting import plot_fit


TRUE = [0.1, 0.2, 5.0, 1.2, 1.6, 0.3, 0.5]


def _fit(seed):
    patch = gaussian_patch(11, TRUE, noise_std=0.05, rng=seed)
    patch[0, 0] = np.nan
    return patch, fit_aniso_gaussian_2d(patch, TRUE, "xyarstc")


def test_load_patch_keeps_nan(tmp_path: Path):
    patch, _ = _fit(0)
    path = tmp_path / "patch.csv"
    np.savetxt(path, patch, delimiter=",")
    loaded = load_patch(path)
    assert loaded.shape == (11, 11)
    assert np.array_equal(loaded, patch, equal_nan=True)


def test_load_patch_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_patch(tmp_path / "nope.csv")


def test_residual_map_csv(tmp_path: Path):
    _, res = _fit(1)
    path = tmp_path / "res.csv"
    save_residual_map(path, res.residuals)
    back = np.loadtxt(path, delimiter=",")
    assert np.isnan(back[0, 0])
    assert np.allclose(back[1:, 1:], res.residuals[1:, 1:], rtol=1e-8)


def test_results_table(tmp_path: Path):
    results = [_fit(s)[1] for s in (2, 3)]
    df = results_table(results)
    assert len(df) == 2
    for col in ("x", "sigma_y", "std_x", "std_theta", "noise_variance", "n_iter", "converged", "conditions"):
        assert col in df.columns
    assert np.isclose(df.loc[0, "A"], results[0].params[2])

    path = tmp_path / "fits.csv"
    save_results_csv(path, results)
    assert len(pd.read_csv(path)) == 2


def test_plot_fit_smoke():
    patch, res = _fit(4)
    fig = plot_fit(patch, res)
    assert len(fig.axes) >= 3
    plt.close(fig)
