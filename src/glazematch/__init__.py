"""
Glaze Color Matcher

Finds stain recipes for a target glaze color from fired test tiles, predicts
the fired color, scores it with CIEDE2000 and flags colors the loaded
materials cannot reach.
"""

__version__ = "1.0.0"
__author__ = "Glaze Color Matcher"

from .color_math import hex_to_lab, hex_to_rgb, lab_to_hex, lab_to_rgb, rgb_to_hex, rgb_to_lab
from .config import Config
from .dataset import (
    Atmosphere,
    FiringCondition,
    Model,
    ModelManager,
    StainComponent,
    TestDataset,
    TestPoint,
    build_model,
    load_dataset_csv,
    stain_display_name,
)
from .delta_e import delta_e2000
from .errors import (
    DatasetFormatError,
    EmptyDatasetError,
    GlazeMatchError,
    InvalidColorError,
    InvalidRecipeError,
    NotLoadedError,
    RecipeArityError,
)
from .interpolator import ForwardPrediction, ReverseMatch, interpolate_recipe, predict_lab_from_recipe
from .matcher import ColorMatch, ColorMatcher, ColorMatchResult, MatchReport, match_color, match_hex

__all__ = [
    "hex_to_rgb",
    "rgb_to_hex",
    "rgb_to_lab",
    "lab_to_rgb",
    "hex_to_lab",
    "lab_to_hex",
    "delta_e2000",
    "Config",
    "Atmosphere",
    "FiringCondition",
    "TestPoint",
    "TestDataset",
    "StainComponent",
    "Model",
    "ModelManager",
    "build_model",
    "load_dataset_csv",
    "stain_display_name",
    "ForwardPrediction",
    "ReverseMatch",
    "predict_lab_from_recipe",
    "interpolate_recipe",
    "ColorMatch",
    "ColorMatchResult",
    "ColorMatcher",
    "MatchReport",
    "match_hex",
    "match_color",
    "GlazeMatchError",
    "NotLoadedError",
    "EmptyDatasetError",
    "InvalidColorError",
    "InvalidRecipeError",
    "RecipeArityError",
    "DatasetFormatError",
]
