"""
===========================================================
psf_fit — anisotropic 2D Gaussian PSF fitting
===========================================================

A small NumPy-based toolkit for localizing and characterizing point-like
sources (spots) in pixel patches with a rotated elliptical Gaussian model,
fitted by Levenberg–Marquardt with a closed-form Jacobian.

Main functions
--------------
- fit_aniso_gaussian_2d(patch, params, mode="xyarstc")
- fit_patches(patches, inits, mode)
- gaussian_model(nx, params) / gaussian_patch(nx, params, noise_std, rng)
- load_patch(path), save_results_csv(path, results)
- max_curvature_bezier(control_points, t0, t1)
- matrix_add(a, b, out)

Typical workflow
----------------
    from psf_fit import *
    patch = load_patch("spot.csv")
    res = fit_aniso_gaussian_2d(patch, [0, 0, 5, 1.5, 1.5, 0, 0], "xyarstc")
    x, y, A, sx, sy, theta, C = res.params
    res.std_errors, res.conditions
"""

# --- Public Imports -------------------------------------------------------

from .errors import InvalidArgument, FitCondition
from .core import (
    REFMODE,
    PARAM_NAMES,
    FitResult,
    fit_aniso_gaussian_2d,
    fit_patches,
    gaussian_model,
    gaussian_patch,
    gaussian_jacobian,
)
from .io import load_patch, save_residual_map, results_table, save_results_csv
from .bezier import max_curvature_bezier, bezier_curvature
from .matrix import matrix_add

__all__ = [
    "InvalidArgument",
    "FitCondition",
    "REFMODE",
    "PARAM_NAMES",
    "FitResult",
    "fit_aniso_gaussian_2d",
    "fit_patches",
    "gaussian_model",
    "gaussian_patch",
    "gaussian_jacobian",
    "load_patch",
    "save_residual_map",
    "results_table",
    "save_results_csv",
    "max_curvature_bezier",
    "bezier_curvature",
    "matrix_add",
]
