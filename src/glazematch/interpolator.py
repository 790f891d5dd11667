"""
k-nearest-neighbor recipe interpolation with inverse-distance weighting.

Two directions share the weighting scheme but not the metric space:

    forward  recipe → Lab   neighbors found by distance between recipes
    reverse  Lab → recipe   neighbors found by distance between measured colors

Both short-circuit to the stored test point when the query sits on it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from .dataset import Lab, Model, Recipe, validate_recipe
from .errors import EmptyDatasetError, InvalidColorError, NotLoadedError

DEFAULT_FORWARD_K = 5
DEFAULT_REVERSE_K = 8
DEFAULT_EPSILON = 1e-6


@dataclass(frozen=True)
class Neighbor:
    """A test point selected by k-NN, with its distance and normalised weight."""
    index: int
    distance: float
    weight: float


@dataclass(frozen=True)
class ForwardPrediction:
    lab: Lab
    neighbors: Tuple[Neighbor, ...]
    exact: bool = False


@dataclass(frozen=True)
class ReverseMatch:
    recipe: Recipe
    lab: Lab
    distance: float
    neighbors: Tuple[Neighbor, ...]
    exact: bool = False


def idw_weights(distances, epsilon: float = DEFAULT_EPSILON) -> np.ndarray:
    """Inverse-distance weights ``1 / (d + epsilon)`` normalised to sum to 1."""
    distances = np.asarray(distances, dtype=np.float64)
    if distances.size == 0:
        raise EmptyDatasetError("Cannot weight an empty neighbor set")
    weights = 1.0 / (distances + epsilon)
    return weights / weights.sum()


def _require_points(model: Model):
    if model is None:
        raise NotLoadedError("No model loaded; call load() first")
    if model.point_count == 0:
        raise EmptyDatasetError(f"Model for {model.condition} has no test points")


def _k_nearest(matrix: np.ndarray, query: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
    """Indices and Euclidean distances of the ``k`` rows closest to ``query``."""
    distances = np.linalg.norm(matrix - query, axis=1)
    k = min(k, len(distances))
    order = np.argsort(distances, kind="stable")[:k]
    return order, distances[order]


def _neighbors(order: np.ndarray, distances: np.ndarray, weights: np.ndarray) -> Tuple[Neighbor, ...]:
    return tuple(
        Neighbor(int(i), float(d), float(w)) for i, d, w in zip(order, distances, weights)
    )


def predict_lab_from_recipe(model: Model, recipe: Sequence[float], k: int = DEFAULT_FORWARD_K,
                            epsilon: float = DEFAULT_EPSILON) -> ForwardPrediction:
    """Predict the fired Lab of ``recipe`` from its nearest tested recipes."""
    _require_points(model)
    query = np.array(validate_recipe(recipe, model.arity, model.max_pct), dtype=np.float64)

    order, distances = _k_nearest(model.recipe_matrix, query, k)

    if distances[0] < epsilon:
        nearest = int(order[0])
        neighbor = Neighbor(nearest, float(distances[0]), 1.0)
        return ForwardPrediction(model.points[nearest].lab, (neighbor,), exact=True)

    weights = idw_weights(distances, epsilon)
    lab = weights @ model.lab_matrix[order]
    return ForwardPrediction(
        (float(lab[0]), float(lab[1]), float(lab[2])),
        _neighbors(order, distances, weights),
    )


def interpolate_recipe(model: Model, target_lab: Sequence[float], k: int = DEFAULT_REVERSE_K,
                       epsilon: float = DEFAULT_EPSILON) -> ReverseMatch:
    """
    Synthesize a recipe for ``target_lab`` from the nearest measured colors.

    The neighbors' recipes are averaged with inverse-distance weights taken
    from Lab distances, then every channel is clamped to ``[0, max_pct]``.
    """
    _require_points(model)
    target = np.asarray(target_lab, dtype=np.float64)
    if target.shape != (3,) or not np.all(np.isfinite(target)):
        raise InvalidColorError(f"Target Lab must be three finite values, got {target_lab}")

    order, distances = _k_nearest(model.lab_matrix, target, k)
    nearest_distance = float(distances[0])

    if nearest_distance < epsilon:
        nearest = int(order[0])
        point = model.points[nearest]
        recipe = tuple(float(v) for v in np.clip(point.recipe, 0.0, model.max_pct))
        neighbors = _neighbors(order, distances, np.eye(1, len(order)).ravel())
        return ReverseMatch(recipe, point.lab, nearest_distance, neighbors, exact=True)

    weights = idw_weights(distances, epsilon)
    recipe = np.clip(weights @ model.recipe_matrix[order], 0.0, model.max_pct)
    lab = weights @ model.lab_matrix[order]
    return ReverseMatch(
        tuple(float(v) for v in recipe),
        (float(lab[0]), float(lab[1]), float(lab[2])),
        nearest_distance,
        _neighbors(order, distances, weights),
    )
