from collections.abc import Sequence

import numpy as np


def binarize_features(X: np.ndarray, borders: Sequence[np.ndarray]) -> np.ndarray:
    """Map float features to int32 bins using a model's per-feature borders.

    The bin of a value is the number of borders strictly below it, so a split
    on border index ``b`` sends a document right when its bin is above ``b``.
    Non-finite values fall into bin 0.
    """
    X = np.asarray(X, dtype=np.float64)
    if X.ndim != 2:
        raise ValueError("X must be a 2D array")
    if X.shape[1] != len(borders):
        raise ValueError("borders length must match number of features")

    n_samples, n_features = X.shape
    X_bin = np.zeros((n_samples, n_features), dtype=np.int32)

    for feature_idx in range(n_features):
        column = X[:, feature_idx]
        finite_mask = np.isfinite(column)
        if not np.any(finite_mask):
            continue

        feature_borders = np.asarray(borders[feature_idx], dtype=np.float64)
        if feature_borders.size == 0:
            continue

        X_bin[finite_mask, feature_idx] = np.searchsorted(
            feature_borders,
            column[finite_mask],
            side="left",
        ).astype(np.int32)

    return np.ascontiguousarray(X_bin)
