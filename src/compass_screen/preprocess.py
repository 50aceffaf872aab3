"""
Data preparation: from per-cell marker tables to paired count matrices.

Each sample is a cells x markers table of intensities; a marker is counted as
expressed when its value is > 0. Categories are the observed combinations of
expressed markers, and a sample's count vector is the number of cells in each
combination plus a null entry for every other cell.

Functions
---------
select_markers
    Drop the least frequently expressed and explicitly excluded markers.
generate_categories
    Unique expressed-marker combinations, ordered by degree, null row last.
count_categories
    Cell counts per category for one cell table.
filter_categories
    Keep categories passing a filter on the stimulated counts.
drop_degree_one
    Merge degree-one categories into the null category.
prepare_compass_data
    Pair treatment and control samples per individual and build CompassData.

Classes
-------
DegreeOneFilter
    Which degree-one categories to drop (none, all, or those of given markers).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .data import COUNTS_COL, CompassData, category_names, marker_columns
from .errors import InvalidInputError

logger = logging.getLogger(__name__)

CategoryFilter = Callable[[pd.DataFrame], Union[pd.Series, np.ndarray]]


def default_category_filter(n_s: pd.DataFrame) -> pd.Series:
    """Keep categories with more than 5 stimulated cells in at least 3 individuals."""
    return (n_s > 5).sum(axis=0) > 2


def select_markers(
    cell_tables: Mapping[str, pd.DataFrame],
    markers: Optional[Sequence[str]] = None,
    filter_lowest_frequency: int = 0,
    filter_specific_markers: Optional[Sequence[str]] = None,
) -> List[str]:
    """Return the markers to model.

    Parameters
    ----------
    cell_tables : mapping of str to DataFrame
        Cell x marker intensity tables (typically the stimulated samples).
    markers : sequence of str, optional
        Candidate markers. Defaults to the columns of the first table.
    filter_lowest_frequency : int, default 0
        Number of least frequently expressed markers to drop. Ignored unless
        it leaves at least 3 markers.
    filter_specific_markers : sequence of str, optional
        Markers to drop explicitly.
    """
    if not cell_tables:
        raise InvalidInputError("No cell tables supplied.")
    if markers is None:
        markers = list(next(iter(cell_tables.values())).columns)
    markers = list(markers)

    stacked = pd.concat([tbl[markers] for tbl in cell_tables.values()], ignore_index=True)
    proportions = (stacked > 0).mean(axis=0)

    drop = set(filter_specific_markers or [])
    if 0 < filter_lowest_frequency < len(markers) - 2:
        lowest = proportions.sort_values(kind="stable").index[:filter_lowest_frequency]
        logger.info(f"Dropping least expressed markers: {list(lowest)}")
        drop.update(lowest)

    keep = [m for m in markers if m not in drop]
    if not keep:
        raise InvalidInputError("Marker filtering removed every marker.")
    return keep


def _expressed(table: pd.DataFrame, markers: Sequence[str]) -> pd.DataFrame:
    return (table[list(markers)] > 0).astype(int)


def generate_categories(
    cell_tables: Mapping[str, pd.DataFrame],
    markers: Sequence[str],
) -> pd.DataFrame:
    """Build the categories matrix from every observed marker combination.

    Rows are sorted by degree (``Counts``) and then by marker pattern; the
    all-negative null row is appended last.
    """
    markers = list(markers)
    combos = pd.concat([_expressed(tbl, markers) for tbl in cell_tables.values()], ignore_index=True)
    combos = combos.drop_duplicates()
    combos = combos[combos.sum(axis=1) > 0].copy()
    combos[COUNTS_COL] = combos[markers].sum(axis=1)
    combos = combos.sort_values([COUNTS_COL] + markers[::-1], kind="stable")

    null = pd.DataFrame([[0] * (len(markers) + 1)], columns=markers + [COUNTS_COL])
    return pd.concat([combos, null], ignore_index=True)


def count_categories(
    cell_table: pd.DataFrame,
    categories: pd.DataFrame,
    total_cells: Optional[int] = None,
) -> np.ndarray:
    """Count cells per category for one sample.

    Parameters
    ----------
    cell_table : pd.DataFrame
        Cell x marker intensities.
    categories : pd.DataFrame
        Categories matrix (null row last).
    total_cells : int, optional
        Total number of cells acquired for the sample. The null count is
        ``total_cells`` minus the cells matched to a non-null category.
        Defaults to the number of rows in ``cell_table``.

    Returns
    -------
    np.ndarray
        Counts, shape (K,).
    """
    markers = marker_columns(categories)
    expr = _expressed(cell_table, markers).to_numpy()
    patterns = categories[markers].to_numpy()[:-1].astype(int)

    counts = np.zeros(len(categories), dtype=np.int64)
    if expr.shape[0] and patterns.shape[0]:
        match = (expr[:, None, :] == patterns[None, :, :]).all(axis=2)
        counts[:-1] = match.sum(axis=0)

    total = len(cell_table) if total_cells is None else int(total_cells)
    counts[-1] = total - counts[:-1].sum()
    if counts[-1] < 0:
        raise InvalidInputError(
            f"total_cells={total} is smaller than the {counts[:-1].sum()} cells matched to categories."
        )
    return counts


def _merge_into_null(
    n_s: pd.DataFrame,
    n_u: pd.DataFrame,
    categories: pd.DataFrame,
    drop: np.ndarray,
) -> Tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    drop = np.asarray(drop, dtype=bool).copy()
    drop[-1] = False
    if not drop.any():
        return n_s, n_u, categories
    cols = n_s.columns
    dropped = cols[drop]
    keep = cols[~drop]
    null_col = cols[-1]

    out = []
    for n in (n_s, n_u):
        n = n.copy()
        n[null_col] = n[null_col] + n[dropped].sum(axis=1)
        out.append(n[keep])
    return out[0], out[1], categories.loc[~drop].reset_index(drop=True)


def filter_categories(
    n_s: pd.DataFrame,
    n_u: pd.DataFrame,
    categories: pd.DataFrame,
    category_filter: Optional[CategoryFilter] = default_category_filter,
) -> Tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    """Drop categories failing ``category_filter`` on the stimulated counts.

    Cells from dropped categories are moved to the null category. The null
    category itself is always kept.
    """
    if category_filter is None:
        return n_s, n_u, categories
    keep = np.asarray(category_filter(n_s), dtype=bool)
    if keep.shape != (n_s.shape[1],):
        raise InvalidInputError(
            f"category_filter must return one boolean per category, got shape {keep.shape}."
        )
    n_drop = int((~keep[:-1]).sum())
    if n_drop:
        logger.info(f"Category filter merged {n_drop} categories into the null category")
    return _merge_into_null(n_s, n_u, categories, ~keep)


@dataclass(frozen=True)
class DegreeOneFilter:
    """Which degree-one categories to merge into the null category.

    Attributes
    ----------
    kind : str
        ``"none"``, ``"all"``, or ``"markers"``.
    markers : tuple of str
        Markers whose single-positive categories are dropped (``"markers"`` only).
    """
    kind: str = "none"
    markers: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.kind not in ("none", "all", "markers"):
            raise ValueError(f"Unknown DegreeOneFilter kind: {self.kind!r}")

    @classmethod
    def from_value(cls, value: Union[bool, str, Sequence[str], "DegreeOneFilter", None]) -> "DegreeOneFilter":
        """Resolve ``True``/``False``, a marker name, or marker names."""
        if isinstance(value, DegreeOneFilter):
            return value
        if value is None or value is False:
            return cls("none")
        if value is True:
            return cls("all")
        if isinstance(value, str):
            return cls("markers", (value,))
        return cls("markers", tuple(value))

    def drop_mask(self, categories: pd.DataFrame) -> np.ndarray:
        """Boolean mask of categories to drop."""
        degree_one = categories[COUNTS_COL].to_numpy() == 1
        if self.kind == "none":
            return np.zeros(len(categories), dtype=bool)
        if self.kind == "all":
            return degree_one

        unknown = [m for m in self.markers if m not in categories.columns]
        if unknown:
            raise InvalidInputError(f"Invalid marker name(s): {','.join(unknown)}")
        marker_hit = categories[list(self.markers)].sum(axis=1).to_numpy() == 1
        return degree_one & marker_hit


def drop_degree_one(
    n_s: pd.DataFrame,
    n_u: pd.DataFrame,
    categories: pd.DataFrame,
    drop: Union[bool, str, Sequence[str], DegreeOneFilter] = True,
) -> Tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    """Merge degree-one categories (all, or those of given markers) into the null category."""
    mask = DegreeOneFilter.from_value(drop).drop_mask(categories)
    if mask.any():
        logger.info(f"Merging {int(mask.sum())} degree-one categories into the null category")
    return _merge_into_null(n_s, n_u, categories, mask)


def _samples_by_individual(
    meta: pd.DataFrame,
    expr: str,
    sample_id: str,
    individual_id: str,
    available: Sequence[str],
) -> Dict[str, List[str]]:
    selected = meta.query(expr)
    selected = selected[selected[sample_id].astype(str).isin(available)]
    out: Dict[str, List[str]] = {}
    for ind, smp in zip(selected[individual_id].astype(str), selected[sample_id].astype(str)):
        out.setdefault(ind, []).append(smp)
    return out


def prepare_compass_data(
    cell_data: Mapping[str, pd.DataFrame],
    meta: pd.DataFrame,
    treatment: str,
    control: str,
    sample_id: str = "name",
    individual_id: str = "individual",
    cell_totals: Optional[Mapping[str, int]] = None,
    markers: Optional[Sequence[str]] = None,
    filter_lowest_frequency: int = 0,
    filter_specific_markers: Optional[Sequence[str]] = None,
    category_filter: Optional[CategoryFilter] = default_category_filter,
    degree_one: Union[bool, str, Sequence[str], DegreeOneFilter] = False,
) -> CompassData:
    """Build paired count matrices from per-cell marker tables.

    Parameters
    ----------
    cell_data : mapping of str to DataFrame
        Cell x marker intensity table per sample id.
    meta : pd.DataFrame
        Sample metadata with ``sample_id`` and ``individual_id`` columns.
    treatment, control : str
        :meth:`pandas.DataFrame.query` expressions selecting stimulated and
        unstimulated samples, e.g. ``"trt == 'Antigen'"``.
    sample_id, individual_id : str
        Metadata column names.
    cell_totals : mapping of str to int, optional
        Total cells acquired per sample. Defaults to the cell table sizes.
    markers : sequence of str, optional
        Markers to consider. Defaults to the columns of the first table.
    filter_lowest_frequency : int, default 0
        Number of least expressed markers to drop.
    filter_specific_markers : sequence of str, optional
        Markers to drop explicitly.
    category_filter : callable or None
        Applied to the stimulated counts; categories where it is False are
        merged into the null category. Pass None to keep every category.
    degree_one : bool, str, sequence of str or DegreeOneFilter
        Degree-one categories to merge into the null category.

    Returns
    -------
    CompassData

    Raises
    ------
    InvalidInputError
        If filtering leaves no paired individuals or fewer than 2 categories.
    """
    for col in (sample_id, individual_id):
        if col not in meta.columns:
            raise InvalidInputError(f"meta is missing the '{col}' column.")

    available = [str(s) for s in cell_data]
    cell_data = {str(k): v for k, v in cell_data.items()}
    stim = _samples_by_individual(meta, treatment, sample_id, individual_id, available)
    unstim = _samples_by_individual(meta, control, sample_id, individual_id, available)

    paired = [ind for ind in stim if ind in unstim]
    unpaired = sorted((set(stim) | set(unstim)) - set(paired))
    if unpaired:
        logger.info(f"Dropping {len(unpaired)} individuals without both treatment and control samples: {unpaired}")
    if not paired:
        raise InvalidInputError("Filtering has removed all samples.")

    def _tables(groups):
        return {ind: pd.concat([cell_data[s] for s in groups[ind]], ignore_index=True) for ind in paired}

    def _totals(groups, tables):
        if cell_totals is None:
            return {ind: len(tables[ind]) for ind in paired}
        return {ind: int(sum(cell_totals[s] for s in groups[ind])) for ind in paired}

    tables_s = _tables(stim)
    tables_u = _tables(unstim)
    keep_markers = select_markers(tables_s, markers, filter_lowest_frequency, filter_specific_markers)
    totals_s = _totals(stim, tables_s)
    totals_u = _totals(unstim, tables_u)

    categories = generate_categories({**{f"s_{k}": v for k, v in tables_s.items()},
                                      **{f"u_{k}": v for k, v in tables_u.items()}},
                                     keep_markers)
    names = category_names(categories)

    n_s = pd.DataFrame([count_categories(tables_s[ind], categories, totals_s[ind]) for ind in paired],
                       index=paired, columns=names)
    n_u = pd.DataFrame([count_categories(tables_u[ind], categories, totals_u[ind]) for ind in paired],
                       index=paired, columns=names)

    empty = n_s.index[(n_s.sum(axis=1) < 1) | (n_u.sum(axis=1) < 1)]
    if len(empty):
        logger.info(f"Individuals with no cells in one condition will be removed: {list(empty)}")
        n_s = n_s.drop(index=empty)
        n_u = n_u.drop(index=empty)
    if n_s.empty:
        raise InvalidInputError("No individuals with cells in both conditions remain.")
    logger.info(f"The model will be run on {len(n_s)} paired samples.")

    n_s, n_u, categories = filter_categories(n_s, n_u, categories, category_filter)
    n_s, n_u, categories = drop_degree_one(n_s, n_u, categories, degree_one)

    if len(categories) < 2:
        raise InvalidInputError(
            "Filtering left fewer than 2 categories (including the null category); "
            "relax category_filter or the marker filters."
        )
    logger.info(f"There are a total of {len(categories)} categories to be tested.")

    return CompassData.from_frames(n_s, n_u, categories)
