"""
Per-stain contribution estimate.

Learns, from single-stain test tiles, how far each stain pushes the base glaze
in Lab as a function of percentage, and from two-stain tiles, the correction
needed on top of the summed single contributions. This lets the calibration
report show a second opinion for blends that have no close neighbor in recipe
space. It is a lookup over measured shifts, not a mixing model.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .dataset import Lab, Model

EXACT_PCT_TOLERANCE = 0.01
INTERACTION_EPSILON = 0.1


@dataclass(frozen=True)
class CurvePoint:
    pct: float
    shift: Tuple[float, float, float]


@dataclass(frozen=True)
class InteractionPoint:
    pct_a: float
    pct_b: float
    correction: Tuple[float, float, float]


@dataclass
class ComponentModel:
    """Single-stain curves and pairwise interaction corrections for one model."""
    stain_codes: Tuple[str, ...]
    base_lab: Lab
    curves: Dict[str, List[CurvePoint]] = field(default_factory=dict)
    interactions: Dict[Tuple[str, str], List[InteractionPoint]] = field(default_factory=dict)

    def has_curves(self) -> bool:
        return any(self.curves.values())

    def contribution(self, code: str, pct: float) -> Optional[np.ndarray]:
        """Lab shift from the base glaze for ``pct`` of stain ``code``, if it has a curve."""
        curve = self.curves.get(code)
        if not curve:
            return None

        for point in curve:
            if abs(point.pct - pct) < EXACT_PCT_TOLERANCE:
                return np.array(point.shift)

        # Outside the tested range the nearest end point holds
        if pct <= curve[0].pct:
            return np.array(curve[0].shift)
        if pct >= curve[-1].pct:
            return np.array(curve[-1].shift)

        below = max((p for p in curve if p.pct <= pct), key=lambda p: p.pct)
        above = min((p for p in curve if p.pct >= pct), key=lambda p: p.pct)
        if above.pct == below.pct:
            return np.array(below.shift)
        t = (pct - below.pct) / (above.pct - below.pct)
        return np.array(below.shift) + t * (np.array(above.shift) - np.array(below.shift))

    def interaction(self, code_a: str, pct_a: float, code_b: str, pct_b: float) -> Optional[np.ndarray]:
        """IDW-interpolated correction for a stain pair, in 2-D percentage space."""
        (code_a, pct_a), (code_b, pct_b) = sorted([(code_a, pct_a), (code_b, pct_b)])
        points = self.interactions.get((code_a, code_b))
        if not points:
            return None
        distances = np.array([np.hypot(p.pct_a - pct_a, p.pct_b - pct_b) for p in points])
        weights = 1.0 / (distances + INTERACTION_EPSILON)
        corrections = np.array([p.correction for p in points])
        return (weights @ corrections) / weights.sum()

    def shifts(self, recipe: Sequence[float]) -> Dict[str, np.ndarray]:
        """Per-stain Lab shifts for the non-zero channels of ``recipe`` that have curves."""
        result = {}
        for code, pct in zip(self.stain_codes, recipe):
            if pct > 0:
                shift = self.contribution(code, pct)
                if shift is not None:
                    result[code] = shift
        return result

    def predict_lab(self, recipe: Sequence[float]) -> Optional[Lab]:
        """
        Base glaze plus summed stain shifts plus pairwise corrections.

        Returns ``None`` when none of the recipe's stains has a curve; an
        empty recipe is the base glaze.
        """
        active = [(code, pct) for code, pct in zip(self.stain_codes, recipe) if pct > 0]
        if not active:
            return self.base_lab

        shifts = self.shifts(recipe)
        if not shifts:
            return None

        total = np.sum(list(shifts.values()), axis=0)
        for i in range(len(active)):
            for j in range(i + 1, len(active)):
                correction = self.interaction(*active[i], *active[j])
                if correction is not None:
                    total = total + correction

        L = float(np.clip(self.base_lab[0] + total[0], 0.0, 100.0))
        return L, float(self.base_lab[1] + total[1]), float(self.base_lab[2] + total[2])

    def additive_lab(self, recipe: Sequence[float]) -> Lab:
        """Prediction without interaction corrections."""
        shifts = self.shifts(recipe)
        total = np.sum(list(shifts.values()), axis=0) if shifts else np.zeros(3)
        L = float(np.clip(self.base_lab[0] + total[0], 0.0, 100.0))
        return L, float(self.base_lab[1] + total[1]), float(self.base_lab[2] + total[2])


def build_component_model(model: Model, base_lab: Lab = (90.0, -1.0, 5.0)) -> ComponentModel:
    """Learn stain curves and pair corrections from the points of ``model``."""
    base = np.array(base_lab, dtype=np.float64)
    components = ComponentModel(tuple(model.stain_codes), tuple(float(v) for v in base_lab))

    pairs = []
    for point in model.points:
        active = [(code, pct) for code, pct in zip(model.stain_codes, point.recipe) if pct > 0]
        if len(active) == 1:
            code, pct = active[0]
            shift = tuple(float(v) for v in np.array(point.lab) - base)
            components.curves.setdefault(code, []).append(CurvePoint(pct, shift))
        elif len(active) == 2:
            pairs.append((sorted(active), point.lab))

    for curve in components.curves.values():
        curve.sort(key=lambda p: p.pct)

    for ((code_a, pct_a), (code_b, pct_b)), lab in pairs:
        shift_a = components.contribution(code_a, pct_a)
        shift_b = components.contribution(code_b, pct_b)
        if shift_a is None or shift_b is None:
            continue
        correction = np.array(lab) - (base + shift_a + shift_b)
        components.interactions.setdefault((code_a, code_b), []).append(
            InteractionPoint(pct_a, pct_b, tuple(float(v) for v in correction))
        )

    return components
