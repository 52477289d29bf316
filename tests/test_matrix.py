"""
===========================================================
Elementwise matrix addition
===========================================================
"""

import numpy as np
from psf_fit.matrix import matrix_add


def test_add_into_caller_buffer():
    a = np.arange(6.0).reshape(2, 3)
    b = np.ones((2, 3))
    out = np.zeros((2, 3))
    ret = matrix_add(a, b, out)
    assert ret is out
    assert np.array_equal(out, a + b)


def test_dimension_mismatch_warns_without_raising(caplog):
    a = np.ones((2, 3))
    b = np.ones((3, 2))
    out = np.full((2, 3), -1.0)
    with caplog.at_level("WARNING", logger="psf_fit"):
        matrix_add(a, b, out)
    assert "matrix dimension mismatch" in caplog.text
    assert np.array_equal(out[:, :2], np.full((2, 2), 2.0))
    assert np.array_equal(out[:, 2], [-1.0, -1.0])
