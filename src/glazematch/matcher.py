"""
Match ranking and gamut evaluation.

Turns a target color into one interpolated primary recipe, up to four real
tested alternatives, a confidence score and an out-of-gamut flag. Every call
works against the ``Model`` it is given and keeps no state between calls.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .color_math import hex_to_lab, lab_to_hex
from .components import build_component_model
from .config import Config
from .dataset import FiringCondition, Lab, Model, ModelManager, Recipe, StainComponent, recipe_components
from .delta_e import delta_e2000
from .errors import NotLoadedError
from .interpolator import ReverseMatch, interpolate_recipe, predict_lab_from_recipe


def _components_dict(components: Sequence[StainComponent]) -> List[dict]:
    return [{'code': c.code, 'name': c.name, 'pct': c.pct} for c in components]


def _lab_list(lab: Lab, ndigits: int = 2) -> List[float]:
    return [round(float(v), ndigits) for v in lab]


@dataclass(frozen=True)
class ColorMatch:
    """A recipe with the color it is expected to fire to."""
    recipe: Recipe
    components: Tuple[StainComponent, ...]
    predicted_lab: Lab
    predicted_hex: str
    delta_e: float
    confidence: float
    explanation: str

    def to_dict(self) -> dict:
        return {
            'recipe': _components_dict(self.components),
            'predicted_lab': _lab_list(self.predicted_lab),
            'predicted_hex': self.predicted_hex,
            'delta_e': round(self.delta_e, 2),
            'confidence': round(self.confidence, 3),
            'explanation': self.explanation,
        }


@dataclass(frozen=True)
class ColorMatchResult:
    primary: ColorMatch
    alternatives: Tuple[ColorMatch, ...]
    out_of_gamut: bool
    gamut_explanation: str
    condition: FiringCondition
    target_lab: Lab
    target_hex: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'target_hex': self.target_hex,
            'target_lab': _lab_list(self.target_lab),
            'firing': {'cone': self.condition.cone, 'atmosphere': self.condition.atmosphere.value},
            'primary_match': self.primary.to_dict(),
            'alternatives': [alt.to_dict() for alt in self.alternatives],
            'out_of_gamut': self.out_of_gamut,
            'gamut_explanation': self.gamut_explanation,
        }


@dataclass(frozen=True)
class NeighborDetail:
    tile_id: str
    components: Tuple[StainComponent, ...]
    lab: Lab
    hex: str
    lab_distance: float
    delta_e: float
    weight: float


@dataclass(frozen=True)
class MatchReport:
    """Everything behind a match, for calibration review."""
    target_hex: str
    target_lab: Lab
    condition: FiringCondition
    stain_codes: Tuple[str, ...]
    interpolated_recipe: Tuple[StainComponent, ...]
    knn_lab: Lab
    knn_hex: str
    component_lab: Optional[Lab]
    component_hex: Optional[str]
    additive_lab: Lab
    base_lab: Lab
    stain_contributions: Tuple[Tuple[str, float, Lab], ...]
    neighbors: Tuple[NeighborDetail, ...]

    def to_dict(self) -> dict:
        return {
            'target_hex': self.target_hex,
            'target_lab': _lab_list(self.target_lab),
            'firing': str(self.condition),
            'stain_codes': list(self.stain_codes),
            'interpolated_recipe': _components_dict(self.interpolated_recipe),
            'knn_prediction': {'lab': _lab_list(self.knn_lab), 'hex': self.knn_hex},
            'component_prediction': (
                {'lab': _lab_list(self.component_lab), 'hex': self.component_hex}
                if self.component_lab is not None else None
            ),
            'additive_prediction': {'lab': _lab_list(self.additive_lab), 'hex': lab_to_hex(self.additive_lab)},
            'base_lab': _lab_list(self.base_lab),
            'stain_contributions': [
                {'code': code, 'pct': round(pct, 2), 'delta_L': round(shift[0], 2),
                 'delta_a': round(shift[1], 2), 'delta_b': round(shift[2], 2)}
                for code, pct, shift in self.stain_contributions
            ],
            'nearest_neighbors': [
                {'tile_id': n.tile_id, 'recipe': _components_dict(n.components),
                 'lab': _lab_list(n.lab), 'hex': n.hex, 'lab_distance': round(n.lab_distance, 2),
                 'delta_e': round(n.delta_e, 2), 'weight': round(n.weight, 3)}
                for n in self.neighbors
            ],
        }


class ColorMatcher:
    """Finds the best achievable recipe for a target color within one model."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()

    def confidence(self, lab_distance: float) -> float:
        """Map the Lab distance to the closest test tile onto [min_confidence, 1]."""
        m = self.config.matching
        return max(m.min_confidence, min(1.0, 1.0 - lab_distance / m.confidence_scale))

    def match_hex(self, model: Model, target_hex: str) -> ColorMatchResult:
        """Match a ``#RRGGBB`` target against ``model``."""
        return self.match_lab(model, hex_to_lab(target_hex), target_hex=target_hex.lower())

    def match_active(self, manager: ModelManager, target_hex: str) -> ColorMatchResult:
        """Match against whatever model ``manager`` holds when the call starts."""
        return self.match_hex(manager.snapshot(), target_hex)

    def match_lab(self, model: Model, target_lab: Sequence[float],
                  target_hex: Optional[str] = None) -> ColorMatchResult:
        """Match a Lab target against ``model``."""
        m = self.config.matching
        target = tuple(float(v) for v in target_lab)

        if model is None:
            raise NotLoadedError("No model loaded; call load() first")

        reverse = interpolate_recipe(model, target, k=m.reverse_k, epsilon=m.epsilon)
        primary_recipe = reverse.recipe

        forward = predict_lab_from_recipe(model, primary_recipe, k=m.forward_k, epsilon=m.epsilon)
        delta = delta_e2000(target, forward.lab)

        if reverse.exact and forward.lab == reverse.lab:
            explanation = "Exact match to a tested color."
        elif reverse.exact:
            # Replicate tiles share the recipe; forward prediction lands on the first one fired
            explanation = (
                f"Recipe of a tested color, but another tile fired with the same recipe "
                f"measured ΔE {delta:.1f} from the target."
            )
        else:
            explanation = f"Interpolated blend of the {len(reverse.neighbors)} nearest tested colors."

        primary = ColorMatch(
            recipe=primary_recipe,
            components=tuple(recipe_components(model, primary_recipe)),
            predicted_lab=forward.lab,
            predicted_hex=lab_to_hex(forward.lab),
            delta_e=delta,
            confidence=self.confidence(reverse.distance),
            explanation=explanation,
        )

        out_of_gamut = delta > m.gamut_threshold
        gamut_explanation = ""
        if out_of_gamut:
            gamut_explanation = (
                f"Closest achievable color is ΔE {delta:.1f} from the target, beyond the "
                f"{m.gamut_threshold:.1f} tolerance for {model.condition}."
            )

        return ColorMatchResult(
            primary=primary,
            alternatives=tuple(self._alternatives(model, target, reverse)),
            out_of_gamut=out_of_gamut,
            gamut_explanation=gamut_explanation,
            condition=model.condition,
            target_lab=target,
            target_hex=target_hex,
        )

    def _alternatives(self, model: Model, target: Lab, reverse: ReverseMatch) -> List[ColorMatch]:
        """Real tested tiles near the target, best ΔE first."""
        m = self.config.matching
        scored = []
        for neighbor in reverse.neighbors[:m.alternative_pool]:
            point = model.points[neighbor.index]
            scored.append((delta_e2000(target, point.lab), neighbor, point))
        scored.sort(key=lambda item: item[0])

        alternatives = []
        for rank, (delta, neighbor, point) in enumerate(scored[:m.max_alternatives], start=1):
            alternatives.append(ColorMatch(
                recipe=point.recipe,
                components=tuple(recipe_components(model, point.recipe)),
                predicted_lab=point.lab,
                predicted_hex=lab_to_hex(point.lab),
                delta_e=delta,
                confidence=self.confidence(neighbor.distance),
                explanation=f"Tested color #{rank} (ΔE={delta:.1f})",
            ))
        return alternatives

    def explain(self, model: Model, target_hex: str) -> MatchReport:
        """Detailed breakdown of how ``target_hex`` would be matched."""
        m = self.config.matching
        target = hex_to_lab(target_hex)
        if model is None:
            raise NotLoadedError("No model loaded; call load() first")

        reverse = interpolate_recipe(model, target, k=m.reverse_k, epsilon=m.epsilon)
        forward = predict_lab_from_recipe(model, reverse.recipe, k=m.forward_k, epsilon=m.epsilon)

        components = build_component_model(model, self.config.recipe.base_lab)
        component_lab = components.predict_lab(reverse.recipe) if components.has_curves() else None
        shifts = components.shifts(reverse.recipe)
        pct_by_code = dict(zip(model.stain_codes, reverse.recipe))

        neighbors = []
        for neighbor in reverse.neighbors:
            point = model.points[neighbor.index]
            neighbors.append(NeighborDetail(
                tile_id=point.tile_id,
                components=tuple(recipe_components(model, point.recipe)),
                lab=point.lab,
                hex=lab_to_hex(point.lab),
                lab_distance=neighbor.distance,
                delta_e=delta_e2000(target, point.lab),
                weight=neighbor.weight,
            ))

        return MatchReport(
            target_hex=target_hex.lower(),
            target_lab=target,
            condition=model.condition,
            stain_codes=model.stain_codes,
            interpolated_recipe=tuple(recipe_components(model, reverse.recipe)),
            knn_lab=forward.lab,
            knn_hex=lab_to_hex(forward.lab),
            component_lab=component_lab,
            component_hex=lab_to_hex(component_lab) if component_lab is not None else None,
            additive_lab=components.additive_lab(reverse.recipe),
            base_lab=components.base_lab,
            stain_contributions=tuple(
                (code, pct_by_code[code], tuple(float(v) for v in shift)) for code, shift in shifts.items()
            ),
            neighbors=tuple(neighbors),
        )


def match_hex(model: Model, target_hex: str, config: Optional[Config] = None) -> ColorMatchResult:
    """Match ``target_hex`` against ``model`` with the given or default configuration."""
    return ColorMatcher(config).match_hex(model, target_hex)


def match_color(model: Model, target_lab: Sequence[float], config: Optional[Config] = None) -> ColorMatchResult:
    return ColorMatcher(config).match_lab(model, target_lab)
