"""
===========================================================
psf_fit.bezier — maximum curvature of 3D Bezier curves
===========================================================

  - bezier_curvature()      : curvature κ(t) = |B'×B''| / |B'|³
  - max_curvature_bezier()  : max κ over [t0, t1] for 2, 3 or 4 control points

Linear curves have zero curvature. Quadratic curves reach their maximum
where |B'| is minimal (closed form). For cubic curves the critical points
of κ² are the real roots of a degree-7 polynomial, N'S - 3NS', with
N = |B'×B''|² and S = |B'|².
"""

# --- Imports --------------------------------------------------------------

from math import comb

import numpy as np
from numpy.polynomial import Polynomial

from .errors import InvalidArgument


_IMAG_TOL = 1e-10


# --- Polynomial form ------------------------------------------------------

def _check_control_points(control_points) -> np.ndarray:
    P = np.asarray(control_points, dtype=float)
    if P.ndim != 2 or P.shape[1] != 3 or not 2 <= P.shape[0] <= 4:
        raise InvalidArgument("Only 2, 3 or 4 3D control points supported (shape (n, 3)).")
    if not np.all(np.isfinite(P)):
        raise InvalidArgument("Control points must be finite.")
    return P


def _power_coefficients(P: np.ndarray) -> np.ndarray:
    """
    Bernstein -> power basis: B(t) = sum_k coef[k] t^k, coef shape (n, 3).
    """
    n = P.shape[0] - 1
    coef = np.zeros_like(P)
    for k in range(n + 1):
        acc = sum((-1) ** (k - i) * comb(k, i) * P[i] for i in range(k + 1))
        coef[k] = comb(n, k) * acc
    return coef


def _derivatives(P: np.ndarray):
    coef = _power_coefficients(P)
    B = [Polynomial(coef[:, d]) for d in range(3)]
    d1 = [b.deriv(1) for b in B]
    d2 = [b.deriv(2) for b in B]
    return coef, d1, d2


def _cross(u, v):
    return [u[1] * v[2] - u[2] * v[1],
            u[2] * v[0] - u[0] * v[2],
            u[0] * v[1] - u[1] * v[0]]


def _numerator_and_speed(d1, d2):
    """N = |B'×B''|² and S = |B'|² as polynomials."""
    w = _cross(d1, d2)
    N = w[0] * w[0] + w[1] * w[1] + w[2] * w[2]
    S = d1[0] * d1[0] + d1[1] * d1[1] + d1[2] * d1[2]
    return N, S


def _kappa(N, S, t):
    t = np.asarray(t, dtype=float)
    n, s = N(t), S(t)
    with np.errstate(divide="ignore", invalid="ignore"):
        k = np.sqrt(np.maximum(n, 0.0) / s ** 3)
    # cusp (B' = 0): unbounded if the curve turns, flat otherwise
    return np.where(s > 0, k, np.where(n > 0, np.inf, 0.0))


# --- Public API -----------------------------------------------------------

def bezier_curvature(control_points, t):
    """
    Curvature of the Bezier curve at parameter value(s) t.

    Parameters
    ----------
    control_points : array-like, shape (n, 3), n in {2, 3, 4}
    t : float or array-like

    Returns
    -------
    float or np.ndarray
    """
    P = _check_control_points(control_points)
    _, d1, d2 = _derivatives(P)
    N, S = _numerator_and_speed(d1, d2)
    k = _kappa(N, S, t)
    return float(k) if k.ndim == 0 else k


def max_curvature_bezier(control_points, t0: float = 0.0, t1: float = 1.0):
    """
    Maximum curvature of a linear, quadratic or cubic 3D Bezier curve
    over [t0, t1], and the parameter where it occurs.

    Ties between the interval ends resolve to t0; interior critical points
    replace the best end only when strictly higher.

    Returns
    -------
    (kappa_max, t_max) : tuple of float
    """
    P = _check_control_points(control_points)
    t0, t1 = float(t0), float(t1)
    if not (np.isfinite(t0) and np.isfinite(t1)) or t0 > t1:
        raise InvalidArgument("Need finite t0 <= t1.")

    if P.shape[0] == 2:
        return 0.0, t0

    coef, d1, d2 = _derivatives(P)
    N, S = _numerator_and_speed(d1, d2)

    k0, k1 = float(_kappa(N, S, t0)), float(_kappa(N, S, t1))
    best_k, best_t = (k1, t1) if k0 < k1 else (k0, t0)

    if P.shape[0] == 3:
        # B(t) = a t² + b t + c: |B'| is smallest at t = -(a·b) / (2|a|²)
        a, b = coef[2], coef[1]
        aa = float(a @ a)
        candidates = [-(a @ b) / (2.0 * aa)] if aa > 0 else []
    else:
        crit = N.deriv() * S - 3.0 * N * S.deriv()
        roots = crit.roots() if crit.degree() > 0 else np.empty(0)
        candidates = [r.real for r in np.atleast_1d(roots)
                      if abs(r.imag) <= _IMAG_TOL * max(1.0, abs(r.real))]

    for t in candidates:
        if t0 < t < t1:
            k = float(_kappa(N, S, t))
            if best_k < k:
                best_k, best_t = k, float(t)

    return best_k, best_t
