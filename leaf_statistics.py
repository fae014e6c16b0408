from __future__ import annotations

from dataclasses import dataclass
import logging

import numpy as np

from grad_hess import LossDerivatives
from model import LeafEstimationMethod

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeafStatisticsContext:
    """State of one leaf-estimation iteration, shared by the formula methods."""

    leaf_count: int
    leaf_indices: np.ndarray
    derivatives: LossDerivatives
    leaf_values: np.ndarray | None = None

    def __post_init__(self) -> None:
        leaf_indices = np.asarray(self.leaf_indices)
        if leaf_indices.ndim != 1:
            raise ValueError("leaf_indices must be a 1D array")
        if self.derivatives.doc_count != leaf_indices.shape[0]:
            raise ValueError("derivatives must have one entry per document")
        if leaf_indices.size and (
            leaf_indices.min() < 0 or leaf_indices.max() >= self.leaf_count
        ):
            raise ValueError(f"leaf_indices must lie in [0, {self.leaf_count})")
        object.__setattr__(self, "leaf_indices", leaf_indices)

        if self.leaf_values is not None:
            leaf_values = np.asarray(self.leaf_values, dtype=np.float64)
            if leaf_values.shape != (self.leaf_count,):
                raise ValueError("leaf_values must have one entry per leaf")
            object.__setattr__(self, "leaf_values", leaf_values)

    @property
    def doc_count(self) -> int:
        return int(self.leaf_indices.shape[0])

    def with_leaf_values(self, leaf_values: np.ndarray) -> "LeafStatisticsContext":
        return LeafStatisticsContext(
            leaf_count=self.leaf_count,
            leaf_indices=self.leaf_indices,
            derivatives=self.derivatives,
            leaf_values=leaf_values,
        )

    def doc_leaf_values(self) -> np.ndarray:
        """Value of each document's leaf."""
        if self.leaf_values is None:
            raise ValueError("leaf values are not known yet for this iteration")
        return self.leaf_values[self.leaf_indices]


def _check_weights(ctx: LeafStatisticsContext, weights: np.ndarray | None) -> np.ndarray | None:
    if weights is None:
        return None
    weights = np.asarray(weights)
    if weights.shape != (ctx.doc_count,):
        raise ValueError("weights must have one entry per document")
    return weights


def _sum_by_leaf(ctx: LeafStatisticsContext, values: np.ndarray | None) -> np.ndarray:
    # bincount accumulates in document order, like a plain per-document loop.
    return np.bincount(ctx.leaf_indices, weights=values, minlength=ctx.leaf_count).astype(
        np.float64
    )


class _LeafStatistics:
    method: LeafEstimationMethod

    @staticmethod
    def compute_leaf_numerators(
        ctx: LeafStatisticsContext,
        weights: np.ndarray | None = None,
    ) -> np.ndarray:
        weights = _check_weights(ctx, weights)
        first = ctx.derivatives.first
        return _sum_by_leaf(ctx, first if weights is None else weights * first)


class GradientLeafStatistics(_LeafStatistics):
    """First-order leaf estimation: denominators are regularized document counts."""

    method = LeafEstimationMethod.GRADIENT

    @staticmethod
    def compute_leaf_denominators(
        ctx: LeafStatisticsContext,
        weights: np.ndarray | None,
        l2_leaf_reg: float,
    ) -> np.ndarray:
        weights = _check_weights(ctx, weights)
        denominators = _sum_by_leaf(
            ctx, None if weights is None else weights.astype(np.float64)
        )
        return denominators + l2_leaf_reg

    @staticmethod
    def compute_formula_numerator_adding(ctx: LeafStatisticsContext) -> np.ndarray:
        return ctx.doc_leaf_values() + ctx.derivatives.first

    @staticmethod
    def compute_formula_numerator_multiplier(
        ctx: LeafStatisticsContext,
        weights: np.ndarray | None = None,
    ) -> np.ndarray:
        weights = _check_weights(ctx, weights)
        second = ctx.derivatives.second
        if weights is None:
            return second.copy()
        return weights * second


class NewtonLeafStatistics(_LeafStatistics):
    """Second-order leaf estimation: denominators are regularized curvature sums."""

    method = LeafEstimationMethod.NEWTON

    @staticmethod
    def compute_leaf_denominators(
        ctx: LeafStatisticsContext,
        weights: np.ndarray | None,
        l2_leaf_reg: float,
    ) -> np.ndarray:
        weights = _check_weights(ctx, weights)
        second = ctx.derivatives.second
        denominators = _sum_by_leaf(ctx, second if weights is None else weights * second)
        return denominators + l2_leaf_reg

    @staticmethod
    def compute_formula_numerator_adding(ctx: LeafStatisticsContext) -> np.ndarray:
        return ctx.doc_leaf_values() * ctx.derivatives.second + ctx.derivatives.first

    @staticmethod
    def compute_formula_numerator_multiplier(
        ctx: LeafStatisticsContext,
        weights: np.ndarray | None = None,
    ) -> np.ndarray:
        weights = _check_weights(ctx, weights)
        third = ctx.derivatives.third
        if third is None:
            raise ValueError("Newton leaf statistics need third derivatives")
        multiplier = ctx.doc_leaf_values() * third + ctx.derivatives.second
        if weights is None:
            return multiplier
        return weights * multiplier


_STRATEGIES: dict[LeafEstimationMethod, type[_LeafStatistics]] = {
    LeafEstimationMethod.GRADIENT: GradientLeafStatistics,
    LeafEstimationMethod.NEWTON: NewtonLeafStatistics,
}


def leaf_statistics_for(method: LeafEstimationMethod | str) -> type[_LeafStatistics]:
    return _STRATEGIES[LeafEstimationMethod.parse(method)]


def compute_leaf_values(numerators: np.ndarray, denominators: np.ndarray) -> np.ndarray:
    """Fitted leaf values ``-numerator / denominator``.

    A zero denominator is not repaired: the leaf gets ``inf`` or ``nan`` and a
    warning is logged, leaving the policy to whoever consumes the statistics.
    """
    numerators = np.asarray(numerators, dtype=np.float64)
    denominators = np.asarray(denominators, dtype=np.float64)
    if numerators.shape != denominators.shape:
        raise ValueError("numerators and denominators must have the same shape")

    with np.errstate(divide="ignore", invalid="ignore"):
        leaf_values = -numerators / denominators

    non_finite = np.flatnonzero(~np.isfinite(leaf_values))
    if non_finite.size:
        logger.warning(
            "Non-finite leaf values for leaves %s (denominators %s)",
            non_finite.tolist(),
            denominators[non_finite].tolist(),
        )
    return leaf_values
