"""
===========================================================
Post-fit statistics (variance, covariance, standard errors)
===========================================================
"""

import numpy as np
import pytest

from psf_fit import FitCondition, InvalidArgument
from psf_fit.core import (
    fit_statistics,
    jacobian_output,
    fit_aniso_gaussian_2d,
    gaussian_patch,
)


def _problem(n=60, m=3, seed=0):
    rng = np.random.default_rng(seed)
    return rng.normal(size=(n, m)), rng.normal(size=n)


def test_variance_uses_dof_correction():
    J, r = _problem()
    st = fit_statistics(J, r)
    assert np.isclose(st.noise_variance, np.sum(r * r) / (60 - 3 - 1))
    expected = st.noise_variance * np.linalg.inv(J.T @ J)
    assert np.allclose(st.covariance, expected)
    assert np.allclose(st.covariance, st.covariance.T)
    assert np.allclose(st.std_errors, np.sqrt(np.diag(expected)))
    assert st.conditions == ()


def test_std_errors_scale_with_residual_amplitude():
    """Same Jacobian, residuals ×2 -> variance ×4 -> standard errors ×2."""
    J, r = _problem(seed=3)
    a = fit_statistics(J, r)
    b = fit_statistics(J, 2.0 * r)
    assert np.isclose(b.noise_variance, 4.0 * a.noise_variance)
    assert np.allclose(b.std_errors, 2.0 * a.std_errors)


def test_insufficient_data_boundary():
    J, r = _problem(n=4, m=3)  # dof = 0
    st = fit_statistics(J, r)
    assert st.conditions == (FitCondition.INSUFFICIENT_DATA,)
    assert st.std_errors is None and st.covariance is None

    J, r = _problem(n=5, m=3)  # dof = 1
    assert fit_statistics(J, r).conditions == ()


def test_zero_column_keeps_partial_covariance():
    J, r = _problem()
    J[:, 1] = 0.0
    st = fit_statistics(J, r)
    assert st.conditions == (FitCondition.NUMERICAL_DEGENERACY,)
    assert st.noise_variance is not None
    assert np.isnan(st.std_errors[1])
    assert np.isnan(st.covariance[1]).all() and np.isnan(st.covariance[:, 1]).all()

    # the other parameters are computed as if the dead column were absent
    Jk = J[:, [0, 2]]
    expected = st.noise_variance * np.linalg.inv(Jk.T @ Jk)
    assert np.allclose(st.covariance[np.ix_([0, 2], [0, 2])], expected)
    assert np.allclose(st.std_errors[[0, 2]], np.sqrt(np.diag(expected)))


def test_collinear_columns_drop_one():
    J, r = _problem(m=4)
    J[:, 3] = 2.0 * J[:, 0]
    st = fit_statistics(J, r)
    assert st.conditions == (FitCondition.NUMERICAL_DEGENERACY,)
    assert np.isnan(st.std_errors).sum() == 1
    assert np.isfinite(st.std_errors[[1, 2]]).all()


def test_all_zero_jacobian():
    J, r = _problem()
    st = fit_statistics(np.zeros_like(J), r)
    assert st.conditions == (FitCondition.NUMERICAL_DEGENERACY,)
    assert np.isnan(st.std_errors).all()


def test_std_errors_are_root_of_covariance_diagonal():
    J, r = _problem(m=5, seed=7)
    J[:, 2] *= 1e-4  # badly scaled but independent
    st = fit_statistics(J, r)
    assert st.conditions == ()
    assert np.all(np.diag(st.covariance) > 0)
    assert np.allclose(st.std_errors, np.sqrt(np.diag(st.covariance)))


def test_round_spot_fixed_widths_reports_partial_errors():
    """theta has no effect when sigma_x == sigma_y; x, y, A, C keep their errors."""
    true = [0.3, -0.2, 5.0, 1.3, 1.3, 0.0, 1.0]
    patch = gaussian_patch(15, true, noise_std=0.05, rng=11)
    res = fit_aniso_gaussian_2d(patch, [0.0, 0.0, 4.0, 1.3, 1.3, 0.2, 0.8], "xyatc")
    assert res.active == ("x", "y", "A", "theta", "C")
    assert FitCondition.NUMERICAL_DEGENERACY in res.conditions
    assert np.isnan(res.std_errors[3])
    stds = res.std_errors[[0, 1, 2, 4]]
    assert np.all(np.isfinite(stds)) and np.all(stds > 0)
    assert np.allclose(res.params[[0, 1, 2, 6]], [0.3, -0.2, 5.0, 1.0], atol=0.1)

    row = res.as_dict()
    assert np.isfinite(row["std_A"]) and np.isnan(row["std_theta"])


def test_jacobian_output_transposes_parameter_major_storage():
    param_major = np.arange(6.0).reshape(2, 3)  # 2 params, 3 pixels
    J = jacobian_output(param_major)
    assert J.shape == (3, 2)
    assert np.array_equal(J, param_major.T)
    assert J.flags["C_CONTIGUOUS"]
    assert jacobian_output(np.empty((0, 5))).shape == (5, 0)
    with pytest.raises(InvalidArgument):
        jacobian_output(np.arange(3.0))


def test_standard_errors_match_noise_level():
    """Empirical scatter over repeated noisy fits ≈ reported standard errors."""
    true = [0.2, -0.1, 8.0, 1.4, 2.0, 0.3, 1.0]
    rng = np.random.default_rng(21)
    fits = [fit_aniso_gaussian_2d(gaussian_patch(15, true, noise_std=0.2, rng=rng), true)
            for _ in range(60)]
    params = np.array([f.params for f in fits])
    reported = np.mean([f.std_errors for f in fits], axis=0)
    empirical = params.std(axis=0, ddof=1)
    assert np.all(empirical / reported > 0.6)
    assert np.all(empirical / reported < 1.6)
    assert np.isclose(np.mean([f.noise_variance for f in fits]), 0.04, rtol=0.1)
