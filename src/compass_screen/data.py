"""
Input container for the COMPASS sampler.

Classes
-------
CompassData
    Validated, read-only stimulated/unstimulated count matrices plus the
    categories matrix describing each column.

Functions
---------
category_names
    Build "A&!B&C" style names from a categories matrix.
default_categories
    Categories matrix for count data without marker information.
simulate_compass_data
    Generate synthetic data from the responder mixture model.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import InvalidInputError

COUNTS_COL = "Counts"


def marker_columns(categories: pd.DataFrame) -> List[str]:
    """Return the marker columns of a categories matrix (everything but Counts)."""
    return [c for c in categories.columns if c != COUNTS_COL]


def category_names(categories: pd.DataFrame) -> List[str]:
    """Name each category by its marker combination.

    Expressed markers appear as-is, absent markers are prefixed with "!", and
    markers are joined with "&", e.g. ``"IFNg&!IL2&TNFa"``.
    """
    markers = marker_columns(categories)
    values = categories[markers].to_numpy().astype(bool)
    return ["&".join(m if v else f"!{m}" for m, v in zip(markers, row)) for row in values]


def default_categories(n_categories: int) -> pd.DataFrame:
    """One marker per non-null category, plus the all-negative null row."""
    markers = [f"M{k + 1}" for k in range(n_categories - 1)]
    values = np.vstack([np.eye(n_categories - 1, dtype=int),
                        np.zeros((1, n_categories - 1), dtype=int)])
    cats = pd.DataFrame(values, columns=markers)
    cats[COUNTS_COL] = values.sum(axis=1)
    return cats


def _as_count_matrix(x, name: str) -> np.ndarray:
    arr = np.asarray(x)
    if arr.ndim != 2:
        raise InvalidInputError(f"{name} must be a 2-D individuals x categories matrix, got ndim={arr.ndim}.")
    try:
        arr_f = arr.astype(float)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"{name} must be numeric.") from e
    if not np.all(np.isfinite(arr_f)):
        raise InvalidInputError(f"{name} contains NaN or infinite counts.")
    if np.any(arr_f < 0):
        raise InvalidInputError(f"{name} contains negative counts.")
    if np.any(arr_f != np.round(arr_f)):
        raise InvalidInputError(f"{name} contains non-integer counts.")
    out = arr_f.astype(np.int64)
    out.flags.writeable = False
    return out


@dataclass
class CompassData:
    """Paired count data for the COMPASS sampler.

    Attributes
    ----------
    n_s : np.ndarray
        Stimulated counts, shape (I, K), non-negative integers. The last
        column is the null category.
    n_u : np.ndarray
        Unstimulated counts with the same shape and ordering as ``n_s``.
    categories : pd.DataFrame, optional
        K x M binary marker matrix plus a ``Counts`` (degree) column. The
        last row must be the all-negative null combination. If None, a
        one-marker-per-category matrix is generated.
    individual_ids : list of str, optional
        Row labels. Defaults to ``"ind_0" ... "ind_{I-1}"``.

    Notes
    -----
    Arrays are stored read-only; the sampler never mutates its inputs.
    """
    n_s: np.ndarray
    n_u: np.ndarray
    categories: Optional[pd.DataFrame] = None
    individual_ids: Optional[List[str]] = None
    category_names: List[str] = field(init=False)

    def __post_init__(self):
        self.n_s = _as_count_matrix(self.n_s, "n_s")
        self.n_u = _as_count_matrix(self.n_u, "n_u")

        if self.n_s.shape != self.n_u.shape:
            raise InvalidInputError(
                f"n_s and n_u must have the same shape, got {self.n_s.shape} and {self.n_u.shape}."
            )
        I, K = self.n_s.shape
        if K < 2:
            raise InvalidInputError(
                f"At least 2 categories (including the null category) are required, got {K}."
            )
        if I < 1:
            raise InvalidInputError("Count matrices contain no individuals.")

        empty_s = np.where(self.n_s.sum(axis=1) == 0)[0]
        empty_u = np.where(self.n_u.sum(axis=1) == 0)[0]
        if empty_s.size or empty_u.size:
            raise InvalidInputError(
                f"Individuals with zero total cells (rows n_s={empty_s.tolist()}, "
                f"n_u={empty_u.tolist()}) must be dropped before sampling."
            )

        if self.categories is None:
            self.categories = default_categories(K)
        else:
            self.categories = self.categories.copy()
            if COUNTS_COL not in self.categories.columns:
                self.categories[COUNTS_COL] = self.categories[marker_columns(self.categories)].sum(axis=1)
        if len(self.categories) != K:
            raise InvalidInputError(
                f"categories has {len(self.categories)} rows but counts have {K} columns."
            )
        markers = marker_columns(self.categories)
        if markers and np.any(self.categories[markers].iloc[-1].to_numpy() != 0):
            raise InvalidInputError("The last row of categories must be the null (all-negative) category.")

        if self.individual_ids is None:
            self.individual_ids = [f"ind_{i}" for i in range(I)]
        else:
            self.individual_ids = [str(x) for x in self.individual_ids]
        if len(self.individual_ids) != I:
            raise InvalidInputError(
                f"Got {len(self.individual_ids)} individual_ids for {I} rows."
            )

        self.category_names = category_names(self.categories)

    @classmethod
    def from_frames(
        cls,
        n_s: pd.DataFrame,
        n_u: pd.DataFrame,
        categories: Optional[pd.DataFrame] = None,
    ) -> "CompassData":
        """Build from labelled count frames (index = individuals).

        ``n_u`` is reindexed to the rows and columns of ``n_s``.
        """
        missing = sorted(set(n_s.index) - set(n_u.index))
        if missing:
            raise InvalidInputError(f"Individuals missing from n_u: {missing}")
        if set(n_s.columns) != set(n_u.columns):
            raise InvalidInputError("n_s and n_u have different category columns.")
        n_u = n_u.loc[n_s.index, n_s.columns]
        return cls(
            n_s=n_s.to_numpy(),
            n_u=n_u.to_numpy(),
            categories=categories,
            individual_ids=[str(x) for x in n_s.index],
        )

    @property
    def n_individuals(self) -> int:
        return self.n_s.shape[0]

    @property
    def n_categories(self) -> int:
        return self.n_s.shape[1]

    @property
    def responder_categories(self) -> List[str]:
        """Category names excluding the null category."""
        return self.category_names[:-1]

    def to_frames(self) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """Return (n_s, n_u) as labelled DataFrames."""
        kw = dict(index=pd.Index(self.individual_ids, name="individual"), columns=self.category_names)
        return pd.DataFrame(self.n_s, **kw), pd.DataFrame(self.n_u, **kw)


def simulate_compass_data(
    n_individuals: int = 20,
    alpha_u: Optional[np.ndarray] = None,
    alpha_s: Optional[np.ndarray] = None,
    response_prob: Optional[Sequence[float]] = None,
    total_cells_mean: float = 10000.0,
    total_cells_cv: float = 0.3,
    seed: int = 42,
) -> Tuple[CompassData, Dict]:
    """Generate synthetic data from the responder mixture model.

    Parameters
    ----------
    n_individuals : int
        Number of individuals.
    alpha_u : np.ndarray, optional
        Baseline concentration, shape (K,). Defaults to a 4-category vector
        dominated by the null category.
    alpha_s : np.ndarray, optional
        Responder concentration, shape (K,). Defaults to ``alpha_u`` with
        the non-null entries inflated 20-fold.
    response_prob : sequence of float, optional
        Probability of responding in each non-null category.
    total_cells_mean : float
        Mean total cell count per sample.
    total_cells_cv : float
        Log-normal CV of the total cell count.
    seed : int
        Random seed.

    Returns
    -------
    data : CompassData
        Simulated data.
    truth : dict
        ``gamma``, ``p_s``, ``p_u``, ``alpha_s``, ``alpha_u``.
    """
    rng = np.random.default_rng(seed)

    if alpha_u is None:
        alpha_u = np.array([2.0, 1.0, 0.5, 200.0])
    alpha_u = np.asarray(alpha_u, dtype=float)
    K = alpha_u.size
    if alpha_s is None:
        alpha_s = alpha_u.copy()
        alpha_s[:-1] *= 20.0
    alpha_s = np.asarray(alpha_s, dtype=float)
    if response_prob is None:
        response_prob = np.full(K - 1, 0.5)
    response_prob = np.asarray(response_prob, dtype=float)

    gamma = rng.binomial(1, response_prob, size=(n_individuals, K - 1)).astype(np.uint8)
    p_u = rng.dirichlet(alpha_u, size=n_individuals)
    p_s = np.empty_like(p_u)

    for i in range(n_individuals):
        R = np.append(gamma[i].astype(bool), False)
        C = ~R
        q = p_u[i, C] / p_u[i, C].sum()
        split = rng.dirichlet(np.append(alpha_s[R], alpha_u[C].sum()))
        p_s[i, R] = split[:-1]
        p_s[i, C] = split[-1] * q

    def _totals():
        log_total = np.log(total_cells_mean) + rng.normal(0, total_cells_cv, size=n_individuals)
        return np.maximum(100, np.exp(log_total).astype(int))

    N_u = _totals()
    N_s = _totals()
    n_u = np.array([rng.multinomial(N_u[i], p_u[i]) for i in range(n_individuals)])
    n_s = np.array([rng.multinomial(N_s[i], p_s[i]) for i in range(n_individuals)])

    data = CompassData(n_s=n_s, n_u=n_u)

    truth = {
        "gamma": gamma,
        "p_s": p_s,
        "p_u": p_u,
        "alpha_s": alpha_s,
        "alpha_u": alpha_u,
    }

    return data, truth
