from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
import json
from typing import Any

import numpy as np

from binning import binarize_features
from oblivious_tree import ObliviousTree


class _ParsableEnum(str, Enum):
    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(member.value for member in cls)
            raise ValueError(
                f"Unsupported {cls.__name__}: {value!r} (expected one of: {allowed})"
            ) from None


class LossFunction(_ParsableEnum):
    RMSE = "RMSE"
    LOGLOSS = "Logloss"
    CROSS_ENTROPY = "CrossEntropy"


class LeafEstimationMethod(_ParsableEnum):
    GRADIENT = "Gradient"
    NEWTON = "Newton"


def _lookup(blob: Mapping[str, Any], *path: str) -> Any:
    node: Any = blob
    for key in path:
        if not isinstance(node, Mapping) or key not in node:
            raise ValueError(f"model params are missing '{'.'.join(path)}'")
        node = node[key]
    return node


def _lookup_float(blob: Mapping[str, Any], *path: str) -> float:
    value = _lookup(blob, *path)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"model params '{'.'.join(path)}' must be a number, got {value!r}")
    return float(value)


@dataclass(frozen=True)
class ModelParams:
    """Training hyperparameters that leaf estimation has to replay."""

    loss_function: LossFunction = LossFunction.RMSE
    leaf_estimation_method: LeafEstimationMethod = LeafEstimationMethod.GRADIENT
    leaf_estimation_iterations: int = 1
    learning_rate: float = 0.03
    l2_leaf_reg: float = 3.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "loss_function", LossFunction.parse(self.loss_function))
        object.__setattr__(
            self,
            "leaf_estimation_method",
            LeafEstimationMethod.parse(self.leaf_estimation_method),
        )
        iterations = self.leaf_estimation_iterations
        if (
            isinstance(iterations, bool)
            or not isinstance(iterations, (int, float, np.integer, np.floating))
            or not float(iterations).is_integer()
        ):
            raise ValueError("leaf_estimation_iterations must be an integer")
        object.__setattr__(self, "leaf_estimation_iterations", int(self.leaf_estimation_iterations))
        if self.leaf_estimation_iterations < 1:
            raise ValueError("leaf_estimation_iterations must be >= 1")
        if not np.isfinite(self.learning_rate) or self.learning_rate < 0.0:
            raise ValueError("learning_rate must be a finite non-negative number")
        if not np.isfinite(self.l2_leaf_reg) or self.l2_leaf_reg < 0.0:
            raise ValueError("l2_leaf_reg must be a finite non-negative number")

    @classmethod
    def from_json(cls, blob: str | Mapping[str, Any]) -> "ModelParams":
        """Read the params blob stored alongside a trained model.

        ``blob`` is either the serialized JSON string or its decoded mapping,
        laid out as ``loss_function.type``, ``boosting_options.learning_rate``
        and ``tree_learner_options.{leaf_estimation_method,
        leaf_estimation_iterations, l2_leaf_reg}``.
        """
        if isinstance(blob, (str, bytes)):
            blob = json.loads(blob)
        if not isinstance(blob, Mapping):
            raise ValueError("model params must be a JSON object")

        return cls(
            loss_function=_lookup(blob, "loss_function", "type"),
            leaf_estimation_method=_lookup(
                blob, "tree_learner_options", "leaf_estimation_method"
            ),
            leaf_estimation_iterations=_lookup(
                blob, "tree_learner_options", "leaf_estimation_iterations"
            ),
            learning_rate=_lookup_float(blob, "boosting_options", "learning_rate"),
            l2_leaf_reg=_lookup_float(blob, "tree_learner_options", "l2_leaf_reg"),
        )

    def to_json(self) -> str:
        return json.dumps(
            {
                "loss_function": {"type": self.loss_function.value},
                "boosting_options": {"learning_rate": self.learning_rate},
                "tree_learner_options": {
                    "leaf_estimation_method": self.leaf_estimation_method.value,
                    "leaf_estimation_iterations": self.leaf_estimation_iterations,
                    "l2_leaf_reg": self.l2_leaf_reg,
                },
            }
        )


@dataclass
class ObliviousModel:
    """Trained ensemble of oblivious trees over float features."""

    trees: Sequence[ObliviousTree]
    borders: Sequence[np.ndarray]
    params: ModelParams = field(default_factory=ModelParams)

    def __post_init__(self) -> None:
        self.trees = list(self.trees)
        self.borders = [np.asarray(b, dtype=np.float64) for b in self.borders]
        for feature, feature_borders in enumerate(self.borders):
            if feature_borders.ndim != 1:
                raise ValueError(f"borders of feature {feature} must be a 1D array")
            if feature_borders.size > 1 and np.any(np.diff(feature_borders) <= 0.0):
                raise ValueError(f"borders of feature {feature} must be strictly increasing")

        for tree_id, tree in enumerate(self.trees):
            for split in tree.splits:
                if not 0 <= split.feature < len(self.borders):
                    raise ValueError(f"tree {tree_id} splits on unknown feature {split.feature}")
                if not 0 <= split.border < self.borders[split.feature].size:
                    raise ValueError(
                        f"tree {tree_id} splits on unknown border {split.border} "
                        f"of feature {split.feature}"
                    )

    @property
    def tree_count(self) -> int:
        return len(self.trees)

    @property
    def tree_sizes(self) -> list[int]:
        return [tree.depth for tree in self.trees]

    def binarize(self, features: np.ndarray) -> np.ndarray:
        return binarize_features(features, self.borders)

    def leaf_indices(self, tree_id: int, features_bin: np.ndarray) -> np.ndarray:
        return self.trees[tree_id].leaf_indices(features_bin)


@dataclass
class Pool:
    """Documents the statistics are evaluated on."""

    features: np.ndarray
    target: np.ndarray
    weights: np.ndarray | None = None

    def __post_init__(self) -> None:
        self.target = np.asarray(self.target, dtype=np.float64)
        if self.target.ndim != 1:
            raise ValueError("target must be a 1D array")

        features = np.asarray(self.features, dtype=np.float64)
        if features.ndim == 1 and features.size == 0:
            features = features.reshape(self.target.shape[0], 0)
        if features.ndim != 2:
            raise ValueError("features must be a 2D array")
        if features.shape[0] != self.target.shape[0]:
            raise ValueError("features must have the same number of rows as target")
        self.features = features

        if self.weights is not None:
            # Stored in single precision, as the trained model saw them.
            weights = np.asarray(self.weights, dtype=np.float32)
            if weights.shape != self.target.shape:
                raise ValueError("weights must be a 1D array with one entry per document")
            if np.any(~np.isfinite(weights)) or np.any(weights < 0.0):
                raise ValueError("weights must be finite and non-negative")
            self.weights = weights

    @property
    def doc_count(self) -> int:
        return int(self.target.shape[0])
