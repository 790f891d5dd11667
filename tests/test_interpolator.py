import numpy as np
import pytest
from pathlib import Path
import sys

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from glazematch.dataset import FiringCondition, TestPoint, build_model, load_dataset_csv
from glazematch.errors import (
    EmptyDatasetError,
    InvalidColorError,
    InvalidRecipeError,
    NotLoadedError,
    RecipeArityError,
)
from glazematch.interpolator import idw_weights, interpolate_recipe, predict_lab_from_recipe

DATA_CSV = PROJECT_ROOT / "data" / "glaze_tests.csv"
CONE6_OX = FiringCondition(6, "oxidation")


def _cone6_model():
    dataset = load_dataset_csv(str(DATA_CSV))
    return build_model(dataset.points_for(CONE6_OX), CONE6_OX, dataset.stain_codes)


def _two_point_model():
    return build_model(
        [TestPoint((4, 0), (60, 30, 20)), TestPoint((0, 4), (40, -10, -30))],
        CONE6_OX,
    )


@pytest.mark.parametrize("distances", [[0.5], [1.0, 2.0, 3.0], [0.0, 7.3, 7.3, 100.0], [1e-9, 1e-3]])
def test_idw_weights_sum_to_one(distances):
    weights = idw_weights(distances, 1e-6)
    assert abs(weights.sum() - 1.0) < 1e-9
    assert np.all(weights > 0)
    assert np.all(np.diff(weights) <= 0)


def test_idw_weights_empty_is_an_error():
    with pytest.raises(EmptyDatasetError):
        idw_weights([])


def test_forward_exact_match_returns_stored_lab():
    model = _cone6_model()
    prediction = predict_lab_from_recipe(model, (3, 0, 5, 0, 0))
    assert prediction.exact
    assert prediction.lab == (65.0, 20.0, 45.0)

    nudged = predict_lab_from_recipe(model, (3 + 5e-7, 0, 5, 0, 0))
    assert nudged.exact
    assert nudged.lab == (65.0, 20.0, 45.0)


def test_forward_interpolates_between_equidistant_neighbors():
    prediction = predict_lab_from_recipe(_two_point_model(), (2, 2))
    assert not prediction.exact
    assert prediction.lab == pytest.approx((50.0, 10.0, -5.0))
    assert len(prediction.neighbors) == 2
    assert sum(n.weight for n in prediction.neighbors) == pytest.approx(1.0, abs=1e-9)


def test_forward_uses_at_most_five_neighbors():
    prediction = predict_lab_from_recipe(_cone6_model(), (1, 1, 1, 1, 1))
    assert len(prediction.neighbors) == 5
    distances = [n.distance for n in prediction.neighbors]
    assert distances == sorted(distances)
    assert sum(n.weight for n in prediction.neighbors) == pytest.approx(1.0, abs=1e-9)


def test_forward_prediction_stays_within_neighbor_hull():
    model = _cone6_model()
    prediction = predict_lab_from_recipe(model, (4, 1, 0, 0, 0))
    labs = np.array([model.points[n.index].lab for n in prediction.neighbors])
    assert np.all(prediction.lab >= labs.min(axis=0) - 1e-9)
    assert np.all(prediction.lab <= labs.max(axis=0) + 1e-9)


def test_forward_rejects_wrong_arity():
    with pytest.raises(RecipeArityError):
        predict_lab_from_recipe(_cone6_model(), (5, 0, 0))


@pytest.mark.parametrize("recipe", [(-50, 99), (-0.5, 2), (2, 15.5), (float("nan"), 1), (1, float("inf"))])
def test_forward_rejects_recipes_outside_channel_range(recipe):
    with pytest.raises(InvalidRecipeError):
        predict_lab_from_recipe(_two_point_model(), recipe)


def test_forward_accepts_recipe_on_channel_bounds():
    prediction = predict_lab_from_recipe(_two_point_model(), (15, 0))
    assert not prediction.exact
    assert len(prediction.neighbors) == 2


def test_reverse_exact_match_returns_stored_recipe():
    model = _cone6_model()
    match = interpolate_recipe(model, (50, 40, 25))
    assert match.exact
    assert match.recipe == (5.0, 0.0, 0.0, 0.0, 0.0)
    assert match.distance == 0.0
    assert match.neighbors[0].weight == 1.0
    assert len(match.neighbors) == 8


def test_reverse_blends_recipes_of_nearest_colors():
    match = interpolate_recipe(_two_point_model(), (50, 10, -5))
    assert not match.exact
    assert match.recipe == pytest.approx((2.0, 2.0))
    assert match.lab == pytest.approx((50.0, 10.0, -5.0))
    assert match.distance == pytest.approx(np.linalg.norm([10, 20, 25]))


@pytest.mark.parametrize("target", [(50, 10), (50, 10, -5, 0), (float("nan"), 0, 0), (50, float("inf"), 0)])
def test_reverse_rejects_malformed_target_lab(target):
    with pytest.raises(InvalidColorError):
        interpolate_recipe(_two_point_model(), target)


def test_reverse_uses_at_most_eight_neighbors():
    match = interpolate_recipe(_cone6_model(), (55, 10, 10))
    assert len(match.neighbors) == 8
    assert sum(n.weight for n in match.neighbors) == pytest.approx(1.0, abs=1e-9)
    assert match.distance == match.neighbors[0].distance


def test_reverse_recipe_channels_are_clamped():
    model = build_model(
        [TestPoint((15, 0, 0), (40, 60, 40)), TestPoint((15, 15, 0), (30, 20, -30)),
         TestPoint((0, 15, 15), (50, -40, 0))],
        CONE6_OX,
        max_pct=15.0,
    )
    for target in [(0, 0, 0), (100, 127, 127), (100, -128, -128), (45, 10, 5)]:
        recipe = interpolate_recipe(model, target).recipe
        assert all(0.0 <= v <= 15.0 for v in recipe)


def test_empty_model_raises_before_dividing():
    model = build_model([], CONE6_OX)
    with pytest.raises(EmptyDatasetError):
        predict_lab_from_recipe(model, ())
    with pytest.raises(EmptyDatasetError):
        interpolate_recipe(model, (50, 0, 0))


def test_missing_model_raises_not_loaded():
    with pytest.raises(NotLoadedError):
        interpolate_recipe(None, (50, 0, 0))
    with pytest.raises(NotLoadedError):
        predict_lab_from_recipe(None, (1, 2))
