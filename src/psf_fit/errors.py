"""
===========================================================
psf_fit.errors — error taxonomy
===========================================================

InvalidArgument is raised before any computation starts.
The other conditions never raise: they are attached to the FitResult
next to the best partial result and logged as warnings.
"""

from enum import Enum


class InvalidArgument(ValueError):
    """Malformed input shape, type or value."""


class FitCondition(str, Enum):
    FIT_DID_NOT_CONVERGE = "FitDidNotConverge"
    INSUFFICIENT_DATA = "InsufficientData"
    NUMERICAL_DEGENERACY = "NumericalDegeneracy"

    def __str__(self):
        return self.value
