import numpy as np
import pytest

from model import ModelParams, ObliviousModel, Pool
from oblivious_tree import ObliviousTree


@pytest.fixture
def two_leaf_model():
    """Depth-1 tree over one feature that sends documents with value > 0.5 to leaf 1."""

    def _build(**params) -> ObliviousModel:
        return ObliviousModel(
            trees=[ObliviousTree([(0, 0)])],
            borders=[np.array([0.5])],
            params=ModelParams(**params),
        )

    return _build


@pytest.fixture
def two_leaf_features():
    # Leaf assignment [0, 0, 1, 1].
    return np.array([[0.0], [0.0], [1.0], [1.0]])


@pytest.fixture
def random_model_and_pool():
    def _build(n_docs: int = 60, weighted: bool = False, **params):
        rng = np.random.default_rng(7)
        X = rng.normal(size=(n_docs, 3))
        borders = [np.array([-0.5, 0.0, 0.5]), np.array([0.0]), np.array([-1.0, 1.0])]
        trees = [
            ObliviousTree([(0, 1), (1, 0)]),
            ObliviousTree([(2, 0), (0, 2), (1, 0)]),
            ObliviousTree([]),
            ObliviousTree([(2, 1)]),
        ]
        model = ObliviousModel(trees=trees, borders=borders, params=ModelParams(**params))

        if params.get("loss_function", "RMSE") == "RMSE":
            y = 1.5 * X[:, 0] - X[:, 1] + 0.1 * rng.normal(size=n_docs)
        else:
            y = (X[:, 0] + 0.5 * rng.normal(size=n_docs) > 0.0).astype(np.float64)

        weights = rng.uniform(0.5, 2.0, size=n_docs) if weighted else None
        return model, Pool(features=X, target=y, weights=weights)

    return _build
