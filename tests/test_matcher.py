import json

import pytest
from pathlib import Path
import sys

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from glazematch.color_math import hex_to_lab, lab_to_hex
from glazematch.config import Config
from glazematch.dataset import FiringCondition, ModelManager, TestPoint, build_model, load_dataset_csv
from glazematch.delta_e import delta_e2000
from glazematch.errors import EmptyDatasetError, InvalidColorError, NotLoadedError
from glazematch.matcher import ColorMatcher, match_color, match_hex

DATA_CSV = PROJECT_ROOT / "data" / "glaze_tests.csv"
CONE6_OX = FiringCondition(6, "oxidation")
CONE10_RED = FiringCondition(10, "reduction")


@pytest.fixture
def dataset():
    return load_dataset_csv(str(DATA_CSV))


@pytest.fixture
def cone6_model(dataset):
    return build_model(dataset.points_for(CONE6_OX), CONE6_OX, dataset.stain_codes)


def test_single_point_exact_lab_match():
    model = build_model([TestPoint((5, 0, 0, 0, 0), (50, 40, 25))], CONE6_OX)
    result = match_color(model, (50, 40, 25))

    assert result.primary.delta_e == 0.0
    assert result.primary.confidence == 1.0
    assert result.primary.recipe == (5.0, 0.0, 0.0, 0.0, 0.0)
    assert result.primary.predicted_lab == (50.0, 40.0, 25.0)
    assert not result.out_of_gamut
    assert result.gamut_explanation == ""
    assert len(result.alternatives) == 1
    assert result.primary.explanation == "Exact match to a tested color."


def test_replicate_tile_match_is_not_reported_as_exact():
    model = build_model(
        [TestPoint((5, 0, 0, 0, 0), (50, 40, 25)), TestPoint((5, 0, 0, 0, 0), (52, 38, 27))],
        CONE6_OX,
    )
    result = match_color(model, (52, 38, 27))

    assert result.primary.recipe == (5.0, 0.0, 0.0, 0.0, 0.0)
    assert result.primary.predicted_lab == (50.0, 40.0, 25.0)
    assert result.primary.delta_e > 0.0
    assert not result.primary.explanation.startswith("Exact match")
    assert "same recipe" in result.primary.explanation
    assert f"{result.primary.delta_e:.1f}" in result.primary.explanation


def test_single_point_exact_hex_match():
    tile_lab = hex_to_lab("#c0604a")
    model = build_model([TestPoint((5, 0, 0, 0, 0), tile_lab)], CONE6_OX)
    result = match_hex(model, "#C0604A")

    assert result.primary.delta_e == 0.0
    assert result.primary.confidence == 1.0
    assert result.primary.recipe == (5.0, 0.0, 0.0, 0.0, 0.0)
    assert result.primary.predicted_hex == "#c0604a"
    assert result.target_hex == "#c0604a"


def test_target_between_distant_clusters_is_out_of_gamut():
    red = TestPoint((5, 0, 0, 0, 0), (50, 40, 25))
    blue = TestPoint((0, 5, 0, 0, 0), (50, -10, -40))
    model = build_model([red, blue], CONE6_OX)
    result = match_color(model, (40, 50, -50))

    assert result.primary.delta_e > 5.0
    assert result.out_of_gamut
    assert "ΔE" in result.gamut_explanation
    assert f"{result.primary.delta_e:.1f}" in result.gamut_explanation

    alt_labs = {alt.predicted_lab for alt in result.alternatives}
    assert alt_labs == {red.lab, blue.lab}
    # Blended recipe sits between the two tested recipes
    assert 0 < result.primary.recipe[0] < 5
    assert 0 < result.primary.recipe[1] < 5


def test_alternatives_are_real_tiles_sorted_by_delta_e(cone6_model):
    result = ColorMatcher().match_hex(cone6_model, "#e4533d")
    tested = {p.lab: p.recipe for p in cone6_model.points}

    assert 1 <= len(result.alternatives) <= 4
    deltas = [alt.delta_e for alt in result.alternatives]
    assert deltas == sorted(deltas)
    for alt in result.alternatives:
        assert tested[alt.predicted_lab] == alt.recipe
        assert alt.delta_e == pytest.approx(delta_e2000(result.target_lab, alt.predicted_lab))
        assert alt.explanation.startswith("Tested color #")


def test_primary_prediction_is_consistent(cone6_model):
    result = ColorMatcher().match_hex(cone6_model, "#4a7a9c")
    primary = result.primary

    assert primary.predicted_hex == lab_to_hex(primary.predicted_lab)
    assert primary.delta_e == pytest.approx(delta_e2000(result.target_lab, primary.predicted_lab))
    assert 0.1 <= primary.confidence <= 1.0
    assert all(0.0 <= v <= cone6_model.max_pct for v in primary.recipe)
    assert result.out_of_gamut == (primary.delta_e > 5.0)
    assert result.condition == CONE6_OX


def test_confidence_is_clamped():
    matcher = ColorMatcher()
    assert matcher.confidence(0.0) == 1.0
    assert matcher.confidence(25.0) == pytest.approx(0.5)
    assert matcher.confidence(49.0) == pytest.approx(0.1)
    assert matcher.confidence(500.0) == 0.1


def test_far_target_gets_minimum_confidence(cone6_model):
    result = match_color(cone6_model, (95, -120, 120))
    assert result.primary.confidence == 0.1
    assert result.out_of_gamut


def test_gamut_threshold_comes_from_config():
    red = TestPoint((5, 0), (50, 40, 25))
    blue = TestPoint((0, 5), (50, -10, -40))
    model = build_model([red, blue], CONE6_OX)
    lenient = Config()
    lenient.matching.gamut_threshold = 500.0
    assert not ColorMatcher(lenient).match_lab(model, (40, 50, -50)).out_of_gamut


def test_match_before_load_raises_not_loaded():
    manager = ModelManager()
    with pytest.raises(NotLoadedError):
        ColorMatcher().match_active(manager, "#e4533d")
    with pytest.raises(NotLoadedError):
        match_hex(None, "#e4533d")


def test_match_on_empty_model_raises_empty_dataset():
    manager = ModelManager()
    manager.load([], CONE6_OX)
    with pytest.raises(EmptyDatasetError):
        ColorMatcher().match_active(manager, "#e4533d")


def test_malformed_hex_is_rejected(cone6_model):
    with pytest.raises(InvalidColorError):
        match_hex(cone6_model, "e4533d")


def test_model_switch_does_not_leak_points(dataset):
    manager = ModelManager()
    manager.load_from_dataset(dataset, CONE6_OX)
    manager.load_from_dataset(dataset, CONE10_RED)
    result = ColorMatcher().match_active(manager, "#c0604a")

    cone10_labs = {p.lab for p in dataset.points_for(CONE10_RED)}
    assert result.condition == CONE10_RED
    assert all(alt.predicted_lab in cone10_labs for alt in result.alternatives)


def test_in_flight_snapshot_survives_reload(dataset):
    manager = ModelManager()
    snapshot = manager.load_from_dataset(dataset, CONE6_OX)
    manager.load_from_dataset(dataset, CONE10_RED)
    result = ColorMatcher().match_hex(snapshot, "#c0604a")
    assert result.condition == CONE6_OX


def test_result_to_dict_is_json_serialisable(cone6_model):
    result = ColorMatcher().match_hex(cone6_model, "#e4533d")
    payload = json.loads(json.dumps(result.to_dict()))
    assert payload["target_hex"] == "#e4533d"
    assert payload["firing"] == {"cone": 6, "atmosphere": "oxidation"}
    assert payload["primary_match"]["recipe"][0]["code"] in cone6_model.stain_codes
    assert len(payload["alternatives"]) == len(result.alternatives)


def test_explain_reports_neighbors_and_component_estimate(cone6_model):
    report = ColorMatcher().explain(cone6_model, "#e4533d")

    assert report.target_hex == "#e4533d"
    assert len(report.neighbors) == 8
    assert sum(n.weight for n in report.neighbors) == pytest.approx(1.0, abs=1e-9)
    assert report.component_lab is not None
    assert report.component_hex == lab_to_hex(report.component_lab)
    assert report.base_lab == (90.0, -1.0, 5.0)
    assert {code for code, _, _ in report.stain_contributions} <= set(cone6_model.stain_codes)

    payload = json.loads(json.dumps(report.to_dict()))
    assert payload["knn_prediction"]["hex"] == report.knn_hex
    assert len(payload["nearest_neighbors"]) == 8
