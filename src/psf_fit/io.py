from pathlib import Path
import numpy as np
import pandas as pd


def load_patch(path: str, delimiter: str = ",", skiprows: int = 0) -> np.ndarray:
    """
    Load a square pixel patch from a CSV file.

    Parameters
    ----------
    path : str
        CSV file path.
    delimiter : str
        CSV delimiter (default ",").
    skiprows : int
        Number of initial rows to skip (useful if the CSV has a header line).

    Notes
    -----
    Masked pixels are written as "nan" and come back as NaN.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"File not found: {p}")
    return np.loadtxt(p, delimiter=delimiter, skiprows=skiprows, ndmin=2)


def save_residual_map(path: str, residuals):
    """
    Save a residual map to CSV; masked pixels are written as "nan".
    """
    np.savetxt(path, np.asarray(residuals, float), delimiter=",", fmt="%.10g")


def results_table(results) -> pd.DataFrame:
    """
    One row per FitResult: fitted parameters, standard errors of the
    estimated ones, noise variance, iteration count and conditions.
    """
    return pd.DataFrame([r.as_dict() for r in results])


def save_results_csv(path: str, results):
    """
    Save fit results to a CSV (see results_table).
    """
    results_table(results).to_csv(path, index=False)
