"""
===========================================================
psf_fit.core — anisotropic 2D Gaussian PSF fitting (NumPy)
===========================================================

Implements the computational parts of the library:
  - gaussian_model()        : evaluate the rotated elliptical Gaussian on a patch
  - gaussian_jacobian()     : closed-form derivatives on a full patch
  - parse_mode()            : mode string -> active parameter indices
  - valid_pixel_index()     : column-major indices of non-NaN pixels
  - levenberg_marquardt()   : damped Gauss-Newton solver
  - fit_statistics()        : noise variance, covariance, standard errors
  - fit_aniso_gaussian_2d() : full fit of one pixel patch
  - fit_patches()           : sequential fits over many patches

Conventions
-----------
- Parameter vector: [x, y, A, sigma_x, sigma_y, theta, C]
- Mode letters "xyarstc" (r = sigma_x, s = sigma_y); the reduced vector
  follows this order whatever the order of the input string.
- Pixels are enumerated column-major: idx = row + col * nx, and
  xi = col - nx//2 - x, yi = row - nx//2 - y.
- After a fit, theta lies in [-π/2, π/2) when it was estimated and the
  estimated widths are positive.
"""

# --- Imports --------------------------------------------------------------

from typing import Callable, NamedTuple, Optional, Tuple

import numpy as np

from ._logger import _get_logger
from .errors import FitCondition, InvalidArgument


# --- Constants / defaults -------------------------------------------------

NPARAMS = 7
REFMODE = "xyarstc"
PARAM_NAMES = ("x", "y", "A", "sigma_x", "sigma_y", "theta", "C")

MAX_ITER = 500
EPS_ABS = 1e-8
EPS_REL = 1e-8
INITIAL_DAMPING = 1e-3
DAMPING_UP = 2.5
DAMPING_DOWN = 0.7
MIN_DAMPING = 1e-6
MAX_DAMPING = 1e16
DEGENERACY_TOL = float(np.sqrt(np.finfo(float).eps))


# --- Result types ---------------------------------------------------------

class LMOutput(NamedTuple):
    """Raw solver output (active parameters only)."""
    params: np.ndarray
    residuals: np.ndarray
    jacobian: np.ndarray
    n_iter: int
    status: str  # "converged" | "max_iter" | "failed"


class FitStatistics(NamedTuple):
    noise_variance: Optional[float]
    std_errors: Optional[np.ndarray]
    covariance: Optional[np.ndarray]
    conditions: Tuple[FitCondition, ...]


class FitResult(NamedTuple):
    """
    Outcome of fit_aniso_gaussian_2d().

    params      : (7,) fitted vector, fixed entries equal to the input
    std_errors  : (n_active,) standard errors, None on INSUFFICIENT_DATA,
                  NaN for parameters left undetermined on NUMERICAL_DEGENERACY
    covariance  : (n_active, n_active) covariance, None / NaN as std_errors
    residuals   : (nx, nx) model - data, NaN where the input was NaN
    jacobian    : (n_valid, n_active) d(residual)/d(param), rows follow
                  the column-major valid-pixel order. The x and y columns
                  are derivatives w.r.t. the centre, i.e. +2·A·g·(a·xi + b·yi)
                  and +2·A·g·(b·xi + c·yi); they are opposite in sign to the
                  derivatives w.r.t. the offsets xi, yi, and so are the
                  covariance terms pairing x or y with A, sigma, theta or C.
    active      : names of the estimated parameters, in "xyarstc" order
    n_iter      : solver iterations
    noise_variance : residual variance estimate, None if unavailable
    conditions  : FitCondition values raised during the fit
    """
    params: np.ndarray
    std_errors: Optional[np.ndarray]
    covariance: Optional[np.ndarray]
    residuals: np.ndarray
    jacobian: np.ndarray
    active: Tuple[str, ...]
    n_iter: int
    noise_variance: Optional[float]
    conditions: Tuple[FitCondition, ...]

    @property
    def converged(self) -> bool:
        return FitCondition.FIT_DID_NOT_CONVERGE not in self.conditions

    def as_dict(self) -> dict:
        """Flat record (one row of a results table)."""
        row = {name: float(v) for name, v in zip(PARAM_NAMES, self.params)}
        for k, name in enumerate(self.active):
            row[f"std_{name}"] = (np.nan if self.std_errors is None
                                  else float(self.std_errors[k]))
        row["noise_variance"] = (np.nan if self.noise_variance is None
                                 else float(self.noise_variance))
        row["n_iter"] = int(self.n_iter)
        row["converged"] = self.converged
        row["conditions"] = ";".join(str(c) for c in self.conditions)
        return row


# --- Model ----------------------------------------------------------------

class _Shape(NamedTuple):
    """Trigonometric and quadratic-form terms shared by a parameter vector."""
    A: float
    ct: float
    st: float
    c2t: float
    sx2: float
    sy2: float
    sx3: float
    sy3: float
    a: float
    b: float
    c: float


def _shape_terms(prm: np.ndarray) -> _Shape:
    A, sx, sy, t = prm[2], prm[3], prm[4], prm[5]
    ct, st = np.cos(t), np.sin(t)
    s2t = np.sin(2.0 * t)
    sx2, sy2 = sx * sx, sy * sy
    a = ct * ct / (2.0 * sx2) + st * st / (2.0 * sy2)
    b = -s2t / (4.0 * sx2) + s2t / (4.0 * sy2)
    c = st * st / (2.0 * sx2) + ct * ct / (2.0 * sy2)
    return _Shape(A, ct, st, np.cos(2.0 * t), sx2, sy2,
                  sx2 * sx, sy2 * sy, a, b, c)


def _offsets(gx: np.ndarray, gy: np.ndarray, prm: np.ndarray):
    """Pixel offsets (xi, yi) from the Gaussian center."""
    return gx - prm[0], gy - prm[1]


def _grid(index: np.ndarray, nx: int):
    """Centered grid coordinates of column-major linear indices."""
    col, row = np.divmod(index, nx)
    half = nx // 2
    return (col - half).astype(float), (row - half).astype(float)


def _gaussian(xi, yi, s: _Shape):
    """Unscaled Gaussian shape g."""
    return np.exp(-s.a * xi * xi - yi * (2.0 * s.b * xi + s.c * yi))


def _residuals(prm, gx, gy, data):
    xi, yi = _offsets(gx, gy, prm)
    s = _shape_terms(prm)
    return s.A * _gaussian(xi, yi, s) + prm[6] - data


def gaussian_model(nx: int, params) -> np.ndarray:
    """
    Evaluate A*exp(-a xi^2 - yi (2 b xi + c yi)) + C on an nx × nx grid.

    Returns an array indexed [row, col]; x runs along columns, y along rows
    and (x, y) = (0, 0) is the pixel (nx//2, nx//2).
    """
    prm = np.asarray(params, float).ravel()
    index = np.arange(nx * nx)
    gx, gy = _grid(index, nx)
    values = _residuals(prm, gx, gy, 0.0)
    return values.reshape((nx, nx), order="F")


def gaussian_patch(nx: int, params, noise_std: float = 0.0, rng=None) -> np.ndarray:
    """
    Synthetic spot: gaussian_model() plus optional white Gaussian noise.

    rng may be a numpy Generator or a seed; no global random state is used.
    """
    patch = gaussian_model(nx, params)
    if noise_std > 0:
        rng = np.random.default_rng(rng)
        patch = patch + rng.normal(0.0, noise_std, size=patch.shape)
    return patch


# --- Analytic Jacobian ----------------------------------------------------
# Each derivative maps (xi, yi, g, shape) to d(model)/d(param) per pixel.
# xi = col - nx//2 - x, so d/dx and d/dy carry the opposite sign of d/dxi, d/dyi.

def _df_dx(xi, yi, g, s):
    return 2.0 * s.A * g * (s.a * xi + s.b * yi)


def _df_dy(xi, yi, g, s):
    return 2.0 * s.A * g * (s.b * xi + s.c * yi)


def _df_dA(xi, yi, g, s):
    return g


def _df_dsx(xi, yi, g, s):
    r = xi * s.ct - yi * s.st
    return s.A * g * r * r / s.sx3


def _df_dsy(xi, yi, g, s):
    r = yi * s.ct + xi * s.st
    return s.A * g * r * r / s.sy3


def _df_dt(xi, yi, g, s):
    return -(s.A * g * (s.sx2 - s.sy2)
             * (xi * yi * s.c2t + (xi * xi - yi * yi) * s.ct * s.st)
             / (s.sx2 * s.sy2))


def _df_dC(xi, yi, g, s):
    return np.ones_like(g)


_DERIVATIVES = {
    "x": _df_dx,
    "y": _df_dy,
    "a": _df_dA,
    "r": _df_dsx,
    "s": _df_dsy,
    "t": _df_dt,
    "c": _df_dC,
}


def _jacobian(prm, gx, gy, letters) -> np.ndarray:
    """
    Derivatives stacked parameter-major: shape (n_active, n_valid).
    g is computed once and shared by every derivative.
    """
    xi, yi = _offsets(gx, gy, prm)
    s = _shape_terms(prm)
    g = _gaussian(xi, yi, s)
    J = np.empty((len(letters), g.size), dtype=float)
    for k, letter in enumerate(letters):
        J[k] = _DERIVATIVES[letter](xi, yi, g, s)
    return J


def jacobian_output(param_major: np.ndarray) -> np.ndarray:
    """
    Convert a parameter-major (n_active, n_pixels) Jacobian into the
    exposed layout: rows = pixels, columns = active parameters.
    """
    J = np.asarray(param_major, dtype=float)
    if J.ndim != 2:
        raise InvalidArgument("Jacobian must be 2D.")
    return np.ascontiguousarray(J.T)


def gaussian_jacobian(nx: int, params, mode: str = REFMODE) -> np.ndarray:
    """
    Closed-form derivatives of the model at every pixel of an nx × nx grid.
    Shape (nx*nx, n_active), rows in column-major pixel order.
    """
    prm = np.asarray(params, float).ravel()
    letters = [REFMODE[i] for i in parse_mode(mode)]
    gx, gy = _grid(np.arange(nx * nx), nx)
    return jacobian_output(_jacobian(prm, gx, gy, letters))


# --- Parameter selection / masking ---------------------------------------

def parse_mode(mode: str) -> list:
    """
    Indices of the active parameters, ordered as in "xyarstc".
    Case-insensitive; unknown letters and duplicates are ignored.
    """
    if not isinstance(mode, str):
        raise InvalidArgument("mode must be a string, e.g. 'xyarstc'.")
    m = mode.lower()
    return [i for i, letter in enumerate(REFMODE) if letter in m]


def valid_pixel_index(patch: np.ndarray) -> np.ndarray:
    """Column-major linear indices of the non-NaN pixels."""
    flat = np.asarray(patch, float).ravel(order="F")
    return np.flatnonzero(~np.isnan(flat))


# --- Levenberg–Marquardt solver --------------------------------------------

def levenberg_marquardt(residual_fn: Callable, jacobian_fn: Callable, p0,
                        max_iter: int = MAX_ITER,
                        epsabs: float = EPS_ABS, epsrel: float = EPS_REL,
                        damping: float = INITIAL_DAMPING) -> LMOutput:
    """
    Minimize sum(residual_fn(p)**2) with a scaled Levenberg–Marquardt loop.

    Each iteration solves (JᵀJ + λ D) δ = -Jᵀr, where D holds the largest
    diagonal of JᵀJ seen so far (1 for columns that were always zero).
    A step is accepted when it lowers the cost; λ then shrinks, otherwise
    it grows. The fit has converged once |δ_i| < epsabs + epsrel*|p_i| for
    every component. A singular system, a non-finite step or λ beyond
    MAX_DAMPING stops the loop with status "failed"; the best parameters
    found so far are returned in every case.

    Parameters
    ----------
    residual_fn : callable
        p -> (n,) residual vector.
    jacobian_fn : callable
        p -> (n, m) Jacobian of residual_fn.
    p0 : array-like
        (m,) starting point. m = 0 returns immediately.
    max_iter : int
        Hard cap on iterations (one damped solve each).

    Returns
    -------
    LMOutput
    """
    p = np.array(p0, dtype=float).ravel()
    with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
        r = residual_fn(p)
        J = jacobian_fn(p)
    cost = float(r @ r)
    if p.size == 0:
        return LMOutput(p, r, J, 0, "converged")

    scale = np.zeros(p.size)
    lam = float(damping)
    status = "max_iter"
    n_iter = 0
    while n_iter < max_iter:
        n_iter += 1
        JtJ = J.T @ J
        grad = J.T @ r
        scale = np.maximum(scale, np.diag(JtJ))
        D = np.where(scale > 0, scale, 1.0)
        try:
            delta = -np.linalg.solve(JtJ + lam * np.diag(D), grad)
        except np.linalg.LinAlgError:
            status = "failed"
            break
        if not np.all(np.isfinite(delta)):
            status = "failed"
            break

        small = bool(np.all(np.abs(delta) < epsabs + epsrel * np.abs(p)))
        p_new = p + delta
        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            r_new = residual_fn(p_new)
        cost_new = float(r_new @ r_new)

        if cost_new < cost:
            # accept step, relax damping
            p, r, cost = p_new, r_new, cost_new
            with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
                J = jacobian_fn(p)
            lam = max(MIN_DAMPING, lam * DAMPING_DOWN)
            if small:
                status = "converged"
                break
        else:
            # the correction is already below tolerance: nothing left to gain
            if small:
                status = "converged"
                break
            lam *= DAMPING_UP
            if lam > MAX_DAMPING:
                status = "failed"
                break

    return LMOutput(p, r, J, n_iter, status)


# --- Post-fit statistics --------------------------------------------------

def _determined_columns(J: np.ndarray, tol: float = DEGENERACY_TOL) -> list:
    """
    Indices of the Jacobian columns that are numerically independent.

    Greedy column-pivoted Gram-Schmidt on unit-norm columns: a column is
    dropped when its norm is below tol times the largest column norm, or
    when what is left of it after projecting out the kept columns is
    below tol.
    """
    norms = np.linalg.norm(J, axis=0)
    if norms.size == 0 or not norms.max() > 0.0:
        return []
    cand = np.flatnonzero(norms > tol * norms.max())
    R = J[:, cand] / norms[cand]
    keep = []
    free = np.ones(cand.size, dtype=bool)
    while free.any():
        rest = np.where(free, np.linalg.norm(R, axis=0), 0.0)
        k = int(np.argmax(rest))
        if rest[k] <= tol:
            break
        q = R[:, k] / rest[k]
        R = R - np.outer(q, q @ R)
        free[k] = False
        keep.append(int(cand[k]))
    return sorted(keep)


def fit_statistics(jacobian: np.ndarray, residuals: np.ndarray) -> FitStatistics:
    """
    Noise variance, covariance and standard errors from a final fit.

    variance   = sum(r²) / (n_valid - n_active - 1)
    covariance = variance * (JᵀJ)⁻¹
    std_errors = sqrt(diag(covariance))

    Returns INSUFFICIENT_DATA when n_valid <= n_active + 1, with
    std_errors and covariance set to None.

    Returns NUMERICAL_DEGENERACY when some columns of J are zero or
    linearly dependent on the others. The covariance is then computed over
    the well-determined parameters only, and the rows/columns and standard
    errors of the undetermined ones are NaN.
    """
    J = np.asarray(jacobian, dtype=float)
    r = np.asarray(residuals, dtype=float).ravel()
    n_valid, n_active = J.shape
    dof = n_valid - n_active - 1
    if dof <= 0:
        return FitStatistics(None, None, None, (FitCondition.INSUFFICIENT_DATA,))

    variance = float(r @ r) / dof
    if n_active == 0:
        return FitStatistics(variance, np.empty(0), np.empty((0, 0)), ())

    covariance = np.full((n_active, n_active), np.nan)
    std_errors = np.full(n_active, np.nan)
    keep = _determined_columns(J) if np.isfinite(J).all() else []
    if keep:
        Jk = J[:, keep]
        scale = np.linalg.norm(Jk, axis=0)
        try:
            _, R = np.linalg.qr(Jk / scale)
            Rinv = np.linalg.inv(R)
        except np.linalg.LinAlgError:
            keep = []
        else:
            unscaled = (Rinv @ Rinv.T) / np.outer(scale, scale)
            unscaled = 0.5 * (unscaled + unscaled.T)
            covariance[np.ix_(keep, keep)] = variance * unscaled
            std_errors[keep] = np.sqrt(variance * np.diag(unscaled))

    conditions = () if len(keep) == n_active else (FitCondition.NUMERICAL_DEGENERACY,)
    return FitStatistics(variance, std_errors, covariance, conditions)


def residual_map(residuals: np.ndarray, index: np.ndarray, nx: int) -> np.ndarray:
    """Scatter valid-pixel residuals into a NaN-filled nx × nx map."""
    out = np.full(nx * nx, np.nan)
    out[index] = residuals
    return out.reshape((nx, nx), order="F")


# --- Input validation -----------------------------------------------------

def _check_inputs(patch, params, mode):
    if np.iscomplexobj(patch) or np.iscomplexobj(params):
        raise InvalidArgument("patch and params must be real-valued.")
    try:
        patch = np.asarray(patch, dtype=float)
        prm = np.asarray(params, dtype=float).ravel()
    except (TypeError, ValueError) as exc:
        raise InvalidArgument(f"patch and params must be numeric: {exc}") from exc

    if patch.ndim != 2 or patch.shape[0] != patch.shape[1] or patch.size == 0:
        raise InvalidArgument(f"patch must be a non-empty square 2D array, got shape {patch.shape}.")
    if np.isinf(patch).any():
        raise InvalidArgument("patch contains infinite values (use NaN for missing pixels).")
    if prm.size != NPARAMS:
        raise InvalidArgument(f"params must have {NPARAMS} entries [x, y, A, sigma_x, sigma_y, theta, C], got {prm.size}.")
    if not np.all(np.isfinite(prm)):
        raise InvalidArgument("params must be finite.")
    if prm[3] == 0 or prm[4] == 0:
        raise InvalidArgument("sigma_x and sigma_y must be non-zero.")
    parse_mode(mode)
    return patch, prm.copy()


# --- Fit ------------------------------------------------------------------

def fit_aniso_gaussian_2d(patch, params, mode: str = REFMODE, *,
                          max_iter: int = MAX_ITER,
                          epsabs: float = EPS_ABS,
                          epsrel: float = EPS_REL) -> FitResult:
    """
    Least-squares fit of an anisotropic 2D Gaussian to a square pixel patch.

    Parameters
    ----------
    patch : array-like, shape (nx, nx)
        Pixel values; NaN pixels are left out of the fit.
    params : array-like, shape (7,)
        Initial [x, y, A, sigma_x, sigma_y, theta, C]. Entries that are
        not estimated are returned unchanged.
    mode : str
        Letters of "xyarstc" to estimate (r = sigma_x, s = sigma_y).
    max_iter, epsabs, epsrel
        Solver controls (see levenberg_marquardt).

    Returns
    -------
    FitResult

    Raises
    ------
    InvalidArgument
        On malformed inputs, before any computation.
    """
    log = _get_logger()
    patch, prm = _check_inputs(patch, params, mode)
    nx = patch.shape[0]

    est_idx = np.asarray(parse_mode(mode), dtype=int)
    letters = [REFMODE[i] for i in est_idx]
    index = valid_pixel_index(patch)
    data = patch.ravel(order="F")[index]
    gx, gy = _grid(index, nx)
    log.debug("fit: nx=%d, n_valid=%d, active=%s", nx, index.size, "".join(letters) or "-")

    def _expand(p):
        full = prm.copy()
        full[est_idx] = p
        return full

    lm = levenberg_marquardt(
        lambda p: _residuals(_expand(p), gx, gy, data),
        lambda p: jacobian_output(_jacobian(_expand(p), gx, gy, letters)),
        prm[est_idx],
        max_iter=max_iter, epsabs=epsabs, epsrel=epsrel,
    )

    fitted = _expand(lm.params)
    J = lm.jacobian.copy()
    # model depends on sigma² only and theta mod π
    for k, letter in enumerate(letters):
        if letter in "rs" and fitted[est_idx[k]] < 0:
            fitted[est_idx[k]] = -fitted[est_idx[k]]
            J[:, k] = -J[:, k]
        elif letter == "t":
            fitted[5] = (fitted[5] + np.pi / 2.0) % np.pi - np.pi / 2.0

    conditions = []
    if lm.status != "converged":
        conditions.append(FitCondition.FIT_DID_NOT_CONVERGE)
    stats = fit_statistics(J, lm.residuals)
    conditions.extend(stats.conditions)

    for cond in conditions:
        log.warning("fit: %s (status=%s, n_iter=%d, n_valid=%d, n_active=%d)",
                    cond, lm.status, lm.n_iter, index.size, len(letters))
    log.debug("fit: status=%s after %d iterations", lm.status, lm.n_iter)

    return FitResult(
        params=fitted,
        std_errors=stats.std_errors,
        covariance=stats.covariance,
        residuals=residual_map(lm.residuals, index, nx),
        jacobian=J,
        active=tuple(PARAM_NAMES[i] for i in est_idx),
        n_iter=lm.n_iter,
        noise_variance=stats.noise_variance,
        conditions=tuple(conditions),
    )


def fit_patches(patches, inits, mode: str = REFMODE, **kwargs) -> list:
    """
    Fit independent patches one after the other.
    `inits` is either one 7-vector shared by all patches or one per patch.
    """
    patches = list(patches)
    inits = np.asarray(inits, dtype=float)
    if inits.ndim == 1:
        inits = np.broadcast_to(inits, (len(patches), inits.size))
    if inits.ndim != 2 or inits.shape[0] != len(patches):
        raise InvalidArgument("inits must be one 7-vector or one per patch.")
    return [fit_aniso_gaussian_2d(p, q, mode, **kwargs) for p, q in zip(patches, inits)]
