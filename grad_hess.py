from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from model import LeafEstimationMethod, LossFunction


@dataclass
class LossDerivatives:
    first: np.ndarray
    second: np.ndarray
    third: np.ndarray | None = None

    def __post_init__(self) -> None:
        self.first = np.asarray(self.first, dtype=np.float64)
        self.second = np.asarray(self.second, dtype=np.float64)
        if self.third is not None:
            self.third = np.asarray(self.third, dtype=np.float64)

        if self.first.ndim != 1:
            raise ValueError("derivatives must be 1D arrays")
        if self.second.shape != self.first.shape:
            raise ValueError("second derivatives must match first derivatives in length")
        if self.third is not None and self.third.shape != self.first.shape:
            raise ValueError("third derivatives must match first derivatives in length")

    @property
    def doc_count(self) -> int:
        return int(self.first.shape[0])


def _sigmoid(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-x))


def evaluate_derivatives(
    loss_function: LossFunction | str,
    leaf_estimation_method: LeafEstimationMethod | str,
    approx: np.ndarray,
    target: np.ndarray,
) -> LossDerivatives:
    """Per-document derivatives of the loss with respect to ``approx``.

    The third derivative is only needed by Newton leaf estimation and is left
    as ``None`` for the gradient method.
    """
    loss_function = LossFunction.parse(loss_function)
    leaf_estimation_method = LeafEstimationMethod.parse(leaf_estimation_method)

    approx = np.asarray(approx, dtype=np.float64)
    target = np.asarray(target, dtype=np.float64)
    if approx.shape != target.shape:
        raise ValueError("approx and target must have the same shape")

    need_third = leaf_estimation_method is LeafEstimationMethod.NEWTON

    if loss_function is LossFunction.RMSE:
        first = approx - target
        second = np.ones_like(first)
        third = np.zeros_like(first) if need_third else None
    elif loss_function in (LossFunction.LOGLOSS, LossFunction.CROSS_ENTROPY):
        p = _sigmoid(approx)
        first = p - target
        second = p * (1.0 - p)
        third = second * (1.0 - 2.0 * p) if need_third else None
    else:
        raise ValueError(f"Unsupported loss: {loss_function}")

    return LossDerivatives(first=first, second=second, third=third)


class DerivativeEvaluator:
    """Derivative oracle bound to one pool's target."""

    def __init__(
        self,
        loss_function: LossFunction | str,
        leaf_estimation_method: LeafEstimationMethod | str,
        target: np.ndarray,
    ) -> None:
        self.loss_function = LossFunction.parse(loss_function)
        self.leaf_estimation_method = LeafEstimationMethod.parse(leaf_estimation_method)
        self.target = np.asarray(target, dtype=np.float64)
        if self.target.ndim != 1:
            raise ValueError("target must be a 1D array")

    def __call__(self, approx: np.ndarray) -> LossDerivatives:
        return evaluate_derivatives(
            self.loss_function,
            self.leaf_estimation_method,
            approx,
            self.target,
        )
