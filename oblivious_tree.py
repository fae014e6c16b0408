from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class ObliviousSplit:
    feature: int
    border: int


class ObliviousTree:
    """Symmetric tree: every level applies the same split to all of its nodes."""

    def __init__(self, splits: Sequence[ObliviousSplit | tuple[int, int]]) -> None:
        self.splits: tuple[ObliviousSplit, ...] = tuple(
            s if isinstance(s, ObliviousSplit) else ObliviousSplit(int(s[0]), int(s[1]))
            for s in splits
        )
        for split in self.splits:
            if split.feature < 0 or split.border < 0:
                raise ValueError("split feature and border indices must be non-negative")

    def __repr__(self) -> str:
        return f"ObliviousTree(splits={list(self.splits)!r})"

    @property
    def depth(self) -> int:
        return len(self.splits)

    @property
    def leaf_count(self) -> int:
        return 1 << self.depth

    def leaf_indices(self, X_bin: np.ndarray) -> np.ndarray:
        """Leaf of every document: bit ``k`` is set when split ``k`` goes right."""
        X_bin = np.asarray(X_bin, dtype=np.int32)
        if X_bin.ndim != 2:
            raise ValueError("X_bin must be a 2D array")

        leaves = np.zeros(X_bin.shape[0], dtype=np.int32)
        for level, split in enumerate(self.splits):
            if split.feature >= X_bin.shape[1]:
                raise ValueError(f"split feature {split.feature} is out of range for X_bin")
            go_right = X_bin[:, split.feature] > split.border
            leaves |= go_right.astype(np.int32) << level
        return leaves
