from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
import logging
import time

import numpy as np

from grad_hess import DerivativeEvaluator, LossDerivatives
from leaf_statistics import LeafStatisticsContext, compute_leaf_values, leaf_statistics_for
from model import ObliviousModel, Pool

logger = logging.getLogger(__name__)

DerivativeFn = Callable[[np.ndarray], LossDerivatives]
LeafRouter = Callable[[int], np.ndarray]


def _frozen(array: np.ndarray) -> np.ndarray:
    array = np.array(array, copy=True)
    array.flags.writeable = False
    return array


@dataclass(frozen=True)
class TreeStatistics:
    """Leaf assignment and leaf-estimation intermediates of one tree.

    Per-iteration arrays are stacked along the first axis: ``leaf_values`` and
    ``formula_denominators`` are ``(iterations, leaf_count)``, the two formula
    terms are ``(iterations, doc_count)``. Leaf values are already scaled by
    the learning rate.
    """

    leaf_count: int
    leaf_indices: np.ndarray
    leaves_doc_ids: tuple[np.ndarray, ...]
    leaf_values: np.ndarray
    formula_denominators: np.ndarray
    formula_numerator_adding: np.ndarray
    formula_numerator_multiplier: np.ndarray

    def __post_init__(self) -> None:
        for name in (
            "leaf_indices",
            "leaf_values",
            "formula_denominators",
            "formula_numerator_adding",
            "formula_numerator_multiplier",
        ):
            object.__setattr__(self, name, _frozen(getattr(self, name)))
        object.__setattr__(
            self, "leaves_doc_ids", tuple(_frozen(doc_ids) for doc_ids in self.leaves_doc_ids)
        )

    @property
    def doc_count(self) -> int:
        return int(self.leaf_indices.shape[0])

    @property
    def iteration_count(self) -> int:
        return int(self.leaf_values.shape[0])

    @property
    def has_non_finite_leaf_values(self) -> bool:
        return not bool(np.all(np.isfinite(self.leaf_values)))


def group_docs_by_leaf(leaf_indices: np.ndarray, leaf_count: int) -> tuple[np.ndarray, ...]:
    """Document ids of every leaf, ascending within a leaf."""
    order = np.argsort(leaf_indices, kind="stable").astype(np.int32)
    bounds = np.cumsum(np.bincount(leaf_indices, minlength=leaf_count))
    return tuple(np.split(order, bounds[:-1]))


class TreeStatisticsEvaluator:
    """Replays leaf estimation tree by tree and records its intermediates."""

    def __init__(
        self,
        model: ObliviousModel,
        pool: Pool,
        derivative_fn: DerivativeFn | None = None,
        leaf_router: LeafRouter | None = None,
    ) -> None:
        self.model = model
        self.pool = pool
        self.params = model.params
        self.strategy = leaf_statistics_for(self.params.leaf_estimation_method)

        if derivative_fn is None:
            derivative_fn = DerivativeEvaluator(
                self.params.loss_function,
                self.params.leaf_estimation_method,
                pool.target,
            )
        self.derivative_fn = derivative_fn
        self.leaf_router = leaf_router

        # Trained models keep both as single precision.
        self.learning_rate = float(np.float32(self.params.learning_rate))
        self.l2_leaf_reg = float(np.float32(self.params.l2_leaf_reg))

    @property
    def doc_count(self) -> int:
        return self.pool.doc_count

    def _make_leaf_router(self) -> LeafRouter:
        if self.leaf_router is not None:
            return self.leaf_router
        features_bin = self.model.binarize(self.pool.features)
        return lambda tree_id: self.model.leaf_indices(tree_id, features_bin)

    def _route(self, router: LeafRouter, tree_id: int, leaf_count: int) -> np.ndarray:
        leaf_indices = np.asarray(router(tree_id))
        if leaf_indices.shape != (self.doc_count,):
            raise ValueError(
                f"leaf router returned shape {leaf_indices.shape} for tree {tree_id}, "
                f"expected ({self.doc_count},)"
            )
        if not np.issubdtype(leaf_indices.dtype, np.integer):
            raise ValueError("leaf indices must be integers")
        if leaf_indices.size and (leaf_indices.min() < 0 or leaf_indices.max() >= leaf_count):
            raise ValueError(f"leaf indices of tree {tree_id} must lie in [0, {leaf_count})")
        return leaf_indices.astype(np.int32)

    def _derivatives(self, approx: np.ndarray) -> LossDerivatives:
        derivatives = self.derivative_fn(approx)
        if derivatives.doc_count != self.doc_count:
            raise ValueError(
                f"derivatives have {derivatives.doc_count} entries, expected {self.doc_count}"
            )
        return derivatives

    def _evaluate_tree(
        self,
        tree_id: int,
        router: LeafRouter,
        approx: np.ndarray,
    ) -> TreeStatistics:
        leaf_count = self.model.trees[tree_id].leaf_count
        leaf_indices = self._route(router, tree_id, leaf_count)
        leaves_doc_ids = group_docs_by_leaf(leaf_indices, leaf_count)

        iterations = self.params.leaf_estimation_iterations
        weights = self.pool.weights
        leaf_values = np.empty((iterations, leaf_count), dtype=np.float64)
        denominators = np.empty((iterations, leaf_count), dtype=np.float64)
        numerator_adding = np.empty((iterations, self.doc_count), dtype=np.float64)
        numerator_multiplier = np.empty((iterations, self.doc_count), dtype=np.float64)

        local_approx = approx.copy()
        for it in range(iterations):
            ctx = LeafStatisticsContext(
                leaf_count=leaf_count,
                leaf_indices=leaf_indices,
                derivatives=self._derivatives(local_approx),
            )
            numerators = self.strategy.compute_leaf_numerators(ctx, weights)
            denominators[it] = self.strategy.compute_leaf_denominators(
                ctx, weights, self.l2_leaf_reg
            )
            leaf_values[it] = compute_leaf_values(numerators, denominators[it])

            ctx = ctx.with_leaf_values(leaf_values[it])
            numerator_adding[it] = self.strategy.compute_formula_numerator_adding(ctx)
            numerator_multiplier[it] = self.strategy.compute_formula_numerator_multiplier(
                ctx, weights
            )

            local_approx += leaf_values[it][leaf_indices]

        leaf_values *= self.learning_rate
        for it in range(iterations):
            approx += leaf_values[it][leaf_indices]

        return TreeStatistics(
            leaf_count=leaf_count,
            leaf_indices=leaf_indices,
            leaves_doc_ids=leaves_doc_ids,
            leaf_values=leaf_values,
            formula_denominators=denominators,
            formula_numerator_adding=numerator_adding,
            formula_numerator_multiplier=numerator_multiplier,
        )

    def iter_tree_statistics(self) -> Iterator[TreeStatistics]:
        """Yield one record per tree in model order.

        Closing the generator between trees stops the evaluation; records are
        only produced once a tree is complete.
        """
        tree_count = self.model.tree_count
        logger.info(
            "Processing trees: %d trees, %d documents, %s leaf estimation x%d",
            tree_count,
            self.doc_count,
            self.strategy.method.value,
            self.params.leaf_estimation_iterations,
        )

        router = self._make_leaf_router()
        approx = np.zeros(self.doc_count, dtype=np.float64)
        start = time.perf_counter()

        for tree_id in range(tree_count):
            tree_start = time.perf_counter()
            statistics = self._evaluate_tree(tree_id, router, approx)
            logger.debug(
                "Trees processed %d/%d (%.3f sec)",
                tree_id + 1,
                tree_count,
                time.perf_counter() - tree_start,
            )
            yield statistics

        logger.info("Processed %d trees in %.3f sec", tree_count, time.perf_counter() - start)

    def evaluate(self) -> list[TreeStatistics]:
        return list(self.iter_tree_statistics())


def evaluate_tree_statistics(
    model: ObliviousModel,
    pool: Pool,
    derivative_fn: DerivativeFn | None = None,
    leaf_router: LeafRouter | None = None,
) -> list[TreeStatistics]:
    """Per-tree statistics for document importance, one record per tree."""
    return TreeStatisticsEvaluator(
        model,
        pool,
        derivative_fn=derivative_fn,
        leaf_router=leaf_router,
    ).evaluate()
