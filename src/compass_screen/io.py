"""
Reading count tables and writing fit results.

Functions
---------
load_counts_matrix
    Individual x category count table from CSV or Excel.
load_categories
    Categories matrix (one 0/1 column per marker plus 'Counts').
load_compass_data
    Both count tables and the categories matrix as CompassData.
write_fit_results
    Response probabilities, acceptance rates and posterior tables as CSV.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import pandas as pd

from .data import COUNTS_COL, CompassData
from .diagnostics import acceptance_summary, responder_flip_summary
from .errors import InvalidInputError
from .posterior import posterior_diff, posterior_log_diff, posterior_ps, posterior_pu

if TYPE_CHECKING:
    from .engine import CompassFit

logger = logging.getLogger(__name__)


def _read_table(path: Path, sheet_name: str | int = 0) -> pd.DataFrame:
    if path.suffix.lower() in (".xlsx", ".xls"):
        df = pd.read_excel(path, sheet_name=sheet_name)
    else:
        df = pd.read_csv(path)
    return _norm_cols(df)


def load_counts_matrix(
    path: str | Path,
    individual_id_col: Optional[str] = "individual",
    sheet_name: str | int = 0,
) -> pd.DataFrame:
    """
    Reads an individual x category count table (CSV or Excel).

    Expected:
      - one column holding individual IDs (default 'individual'; the first
        column is used if it is missing).
      - remaining columns are category names, last one the null category,
        values are raw integer counts.

    Raises
    ------
    InvalidInputError
        If any count cell is blank.
    """
    path = Path(path)
    df = _read_table(path, sheet_name)

    id_col = individual_id_col if individual_id_col in df.columns else df.columns[0]
    df[id_col] = df[id_col].astype(str)
    df = df.set_index(id_col)
    df.index.name = "individual"

    df = df.apply(pd.to_numeric, errors="raise")
    missing = df.isna()
    if missing.any().any():
        rows = list(df.index[missing.any(axis=1)])
        cols = list(df.columns[missing.any(axis=0)])
        raise InvalidInputError(
            f"{path} has missing counts for individuals {rows} in columns {cols}."
        )
    df = df.astype(int)

    return df


def load_categories(path: str | Path, sheet_name: str | int = 0) -> pd.DataFrame:
    """
    Reads a categories matrix: one 0/1 column per marker plus an optional
    'Counts' column; one row per category, null category last.
    """
    path = Path(path)
    cats = _read_table(path, sheet_name)
    cats = cats.loc[:, [c for c in cats.columns if not c.startswith("Unnamed")]]

    markers = [c for c in cats.columns if c != COUNTS_COL]
    bad = [m for m in markers if not cats[m].isin([0, 1]).all()]
    if bad:
        raise ValueError(f"{path} has non-binary marker columns: {bad}")
    if COUNTS_COL not in cats.columns:
        cats[COUNTS_COL] = cats[markers].sum(axis=1)

    return cats.astype(int)


def load_compass_data(
    n_s_path: str | Path,
    n_u_path: str | Path,
    categories_path: Optional[str | Path] = None,
    individual_id_col: Optional[str] = "individual",
) -> CompassData:
    """Load stimulated/unstimulated counts (and optional categories) into CompassData."""
    n_s = load_counts_matrix(n_s_path, individual_id_col)
    n_u = load_counts_matrix(n_u_path, individual_id_col)
    categories = load_categories(categories_path) if categories_path is not None else None
    return CompassData.from_frames(n_s, n_u, categories)


def _norm_col(c: object) -> str:
    # strip whitespace; preserve internal chars
    return str(c).strip()


def _norm_cols(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [_norm_col(c) for c in df.columns]
    return df


def write_fit_results(fit: "CompassFit", results_path: str | Path) -> dict[str, Path]:
    """Write mean_gamma, acceptance and posterior tables as CSV files.

    Returns a mapping from table name to written path.
    """
    results_path = Path(results_path)
    results_path.mkdir(parents=True, exist_ok=True)

    tables = {
        "mean_gamma": fit.mean_gamma,
        "acceptance": acceptance_summary(fit),
        "responder_flips": responder_flip_summary(fit),
    }
    if fit.posterior is not None:
        tables.update({
            "posterior_ps": posterior_ps(fit),
            "posterior_pu": posterior_pu(fit),
            "posterior_diff": posterior_diff(fit),
            "posterior_log_diff": posterior_log_diff(fit),
        })

    written = {}
    for name, df in tables.items():
        out = results_path / f"{name}.csv"
        df.to_csv(out)
        written[name] = out
    logger.info(f"Results saved to {results_path}")
    return written
