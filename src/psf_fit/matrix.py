"""
===========================================================
psf_fit.matrix — elementwise matrix addition
===========================================================
"""

import numpy as np

from ._logger import _get_logger


def matrix_add(a, b, out: np.ndarray) -> np.ndarray:
    """
    Write a + b elementwise into the caller-provided `out` and return it.

    A dimension mismatch between a, b and out is logged as a warning and
    only the overlapping block is written; no exception is raised.
    """
    A = np.atleast_2d(np.asarray(a, dtype=float))
    B = np.atleast_2d(np.asarray(b, dtype=float))
    if A.shape != B.shape or out.shape != A.shape:
        _get_logger().warning("matrix dimension mismatch! a=%s, b=%s, out=%s",
                              A.shape, B.shape, out.shape)
    m = min(A.shape[0], B.shape[0], out.shape[0])
    n = min(A.shape[1], B.shape[1], out.shape[1])
    np.add(A[:m, :n], B[:m, :n], out=out[:m, :n])
    return out
