from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from compass_screen.config import SamplerConfig
from compass_screen.data import CompassData, category_names, simulate_compass_data
from compass_screen.errors import CompassError, InvalidInputError


def _categories():
    return pd.DataFrame({"IFNg": [1, 0, 1, 0], "IL2": [0, 1, 1, 0], "Counts": [1, 1, 2, 0]})


def test_valid_data_is_read_only_and_labelled():
    n_s = np.array([[5, 3, 1, 91], [2, 2, 2, 94]])
    n_u = np.array([[1, 1, 0, 98], [1, 2, 1, 96]])
    data = CompassData(n_s=n_s, n_u=n_u, categories=_categories(), individual_ids=["a", "b"])

    assert data.category_names == ["IFNg&!IL2", "!IFNg&IL2", "IFNg&IL2", "!IFNg&!IL2"]
    assert data.responder_categories == data.category_names[:-1]
    assert data.n_individuals == 2 and data.n_categories == 4
    with pytest.raises(ValueError):
        data.n_s[0, 0] = 10


def test_negative_counts_rejected():
    with pytest.raises(InvalidInputError, match="negative"):
        CompassData(n_s=np.array([[1, -1, 5]]), n_u=np.array([[1, 1, 5]]))


def test_single_category_rejected():
    with pytest.raises(InvalidInputError, match="At least 2 categories"):
        CompassData(n_s=np.array([[10], [4]]), n_u=np.array([[3], [8]]))


def test_shape_mismatch_rejected():
    with pytest.raises(InvalidInputError, match="same shape"):
        CompassData(n_s=np.ones((2, 3), dtype=int), n_u=np.ones((3, 3), dtype=int))


def test_zero_row_rejected():
    with pytest.raises(InvalidInputError, match="zero total cells"):
        CompassData(n_s=np.array([[1, 4], [0, 0]]), n_u=np.array([[1, 4], [2, 2]]))


def test_non_integer_and_nan_counts_rejected():
    with pytest.raises(InvalidInputError, match="non-integer"):
        CompassData(n_s=np.array([[1.5, 4]]), n_u=np.array([[1, 4]]))
    with pytest.raises(InvalidInputError, match="NaN"):
        CompassData(n_s=np.array([[np.nan, 4]]), n_u=np.array([[1, 4]]))


def test_categories_must_match_and_end_with_null():
    n = np.array([[5, 3, 1, 91]])
    with pytest.raises(InvalidInputError, match="rows"):
        CompassData(n_s=n, n_u=n, categories=_categories().iloc[:3])
    bad = _categories().iloc[[3, 0, 1, 2]].reset_index(drop=True)
    with pytest.raises(InvalidInputError, match="null"):
        CompassData(n_s=n, n_u=n, categories=bad)


def test_invalid_input_is_a_value_error():
    assert issubclass(InvalidInputError, ValueError)
    assert issubclass(InvalidInputError, CompassError)


def test_from_frames_aligns_rows_and_columns():
    cols = ["A", "!A"]
    n_s = pd.DataFrame([[5, 95], [7, 93]], index=["x", "y"], columns=cols)
    n_u = pd.DataFrame([[90, 2], [99, 1]], index=["y", "x"], columns=cols[::-1])
    data = CompassData.from_frames(n_s, n_u)
    np.testing.assert_array_equal(data.n_u, [[1, 99], [2, 90]])
    assert data.individual_ids == ["x", "y"]


def test_default_categories_give_marker_names():
    data = CompassData(n_s=np.array([[1, 2, 3]]), n_u=np.array([[3, 2, 1]]))
    assert data.category_names == ["M1&!M2", "!M1&M2", "!M1&!M2"]
    assert category_names(data.categories) == data.category_names


def test_simulation_returns_consistent_truth():
    data, truth = simulate_compass_data(n_individuals=12, seed=3)
    assert data.n_s.shape == (12, 4)
    assert truth["gamma"].shape == (12, 3)
    np.testing.assert_allclose(truth["p_s"].sum(axis=1), 1.0)
    # non-responders share the baseline composition within the non-responder set
    i, k = np.argwhere(truth["gamma"] == 0)[0]
    ratio_s = truth["p_s"][i, k] / truth["p_s"][i, -1]
    ratio_u = truth["p_u"][i, k] / truth["p_u"][i, -1]
    assert ratio_s == pytest.approx(ratio_u)


def test_config_validation():
    with pytest.raises(ValueError, match="iterations"):
        SamplerConfig(iterations=0)
    with pytest.raises(ValueError, match="p_var"):
        SamplerConfig(p_var=1.5)
    with pytest.raises(ValueError, match="var_1"):
        SamplerConfig(var_1=-1.0)
    with pytest.raises(ValueError, match="pb1"):
        SamplerConfig(pb1=0.0)


def test_config_replace_validates_and_rejects_unknown_fields():
    cfg = SamplerConfig()
    assert cfg.replace(iterations=10).iterations == 10
    assert cfg.iterations == 40000
    with pytest.raises(ValueError, match="Unknown"):
        cfg.replace(n_iter=10)
    with pytest.raises(ValueError):
        cfg.replace(replications=0)
