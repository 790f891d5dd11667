"""
Fired test-tile data: test points, firing conditions and the active model.

A model is bound to exactly one firing condition. Points fired under
different conditions live in separate partitions of a ``TestDataset`` and are
never searched together.
"""

import csv
import logging
import math
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .color_math import hex_to_lab
from .config import Config
from .errors import (
    DatasetFormatError,
    GlazeMatchError,
    InvalidRecipeError,
    NotLoadedError,
    RecipeArityError,
)

logger = logging.getLogger(__name__)

Lab = Tuple[float, float, float]
Recipe = Tuple[float, ...]

DEFAULT_MAX_PCT = 15.0

STAIN_NAMES: Dict[str, str] = {
    '6026': 'Lobster',
    '6388': 'Mazzerine',
    '6450': 'Praseodymium',
    '6600': 'Black',
    'zircopax': 'Zircopax',
}


def stain_display_name(code: str) -> str:
    """Human-readable name for a stain code; unknown codes display as-is."""
    return STAIN_NAMES.get(code, code)


class Atmosphere(str, Enum):
    OXIDATION = "oxidation"
    REDUCTION = "reduction"

    @classmethod
    def parse(cls, value) -> "Atmosphere":
        """Accept the enum, its value, or the short forms used on order forms."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower().rstrip('.')
        aliases = {
            'oxidation': cls.OXIDATION, 'ox': cls.OXIDATION, 'oxi': cls.OXIDATION,
            'reduction': cls.REDUCTION, 'red': cls.REDUCTION, 'reduc': cls.REDUCTION,
        }
        if text not in aliases:
            raise ValueError(f"Unknown atmosphere '{value}'. Use oxidation or reduction")
        return aliases[text]


@dataclass(frozen=True)
class FiringCondition:
    """Kiln temperature class (cone) and atmosphere."""
    cone: int
    atmosphere: Atmosphere = Atmosphere.OXIDATION

    def __post_init__(self):
        object.__setattr__(self, 'cone', int(self.cone))
        object.__setattr__(self, 'atmosphere', Atmosphere.parse(self.atmosphere))

    def __str__(self) -> str:
        return f"cone {self.cone} {self.atmosphere.value}"


@dataclass(frozen=True)
class TestPoint:
    """One fired and measured test tile."""
    __test__ = False

    recipe: Recipe
    lab: Lab
    tile_id: str = ""

    def __post_init__(self):
        recipe = tuple(float(v) for v in self.recipe)
        lab = tuple(float(v) for v in self.lab)
        if len(lab) != 3:
            raise ValueError(f"Measured Lab must have three components, got {len(lab)}")
        if not all(math.isfinite(v) for v in lab):
            raise ValueError(f"Measured Lab must be finite, got {lab}")
        object.__setattr__(self, 'recipe', recipe)
        object.__setattr__(self, 'lab', lab)


@dataclass(frozen=True)
class StainComponent:
    code: str
    pct: float

    @property
    def name(self) -> str:
        return stain_display_name(self.code)


def validate_recipe(recipe: Sequence[float], arity: int, max_pct: Optional[float] = None) -> Recipe:
    """Check channel count, finiteness and (optionally) the per-channel range."""
    values = tuple(float(v) for v in recipe)
    if len(values) != arity:
        raise RecipeArityError(f"Recipe has {len(values)} channels, model expects {arity}")
    for i, v in enumerate(values):
        if not math.isfinite(v):
            raise InvalidRecipeError(f"Recipe channel {i} is not finite: {v}")
        if max_pct is not None and not (0.0 <= v <= max_pct):
            raise InvalidRecipeError(f"Recipe channel {i} = {v} outside [0, {max_pct}]")
    return values


@dataclass(frozen=True)
class Model:
    """
    The active, read-only set of test points for one firing condition.

    Recipe and Lab matrices are built once at construction and marked
    read-only so every match against this model sees the same data.
    """
    condition: FiringCondition
    points: Tuple[TestPoint, ...]
    stain_codes: Tuple[str, ...] = ()
    max_pct: float = DEFAULT_MAX_PCT
    recipe_matrix: np.ndarray = field(init=False, repr=False, compare=False)
    lab_matrix: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        points = tuple(self.points)
        codes = tuple(self.stain_codes)
        if not codes and points:
            codes = tuple(f"stain_{i + 1}" for i in range(len(points[0].recipe)))
        arity = len(codes)

        for point in points:
            validate_recipe(point.recipe, arity, self.max_pct)

        recipes = np.array([p.recipe for p in points], dtype=np.float64).reshape(len(points), arity)
        labs = np.array([p.lab for p in points], dtype=np.float64).reshape(len(points), 3)
        recipes.setflags(write=False)
        labs.setflags(write=False)

        object.__setattr__(self, 'points', points)
        object.__setattr__(self, 'stain_codes', codes)
        object.__setattr__(self, 'recipe_matrix', recipes)
        object.__setattr__(self, 'lab_matrix', labs)

    @property
    def point_count(self) -> int:
        return len(self.points)

    @property
    def arity(self) -> int:
        return len(self.stain_codes)

    def recipe_from_components(self, components: Mapping[str, float]) -> Recipe:
        """Build a dense recipe vector from ``{stain_code: pct}``."""
        unknown = set(components) - set(self.stain_codes)
        if unknown:
            raise InvalidRecipeError(f"Unknown stain codes for {self.condition}: {sorted(unknown)}")
        return tuple(float(components.get(code, 0.0)) for code in self.stain_codes)


def build_model(points: Iterable[TestPoint], condition, stain_codes: Optional[Sequence[str]] = None,
                max_pct: float = DEFAULT_MAX_PCT) -> Model:
    """Create an immutable model for ``condition``."""
    if not isinstance(condition, FiringCondition):
        cone, atmosphere = condition
        condition = FiringCondition(cone, atmosphere)
    return Model(condition=condition, points=tuple(points),
                 stain_codes=tuple(stain_codes or ()), max_pct=max_pct)


def recipe_components(model: Model, recipe: Sequence[float]) -> List[StainComponent]:
    """Sparse view of a recipe: stains above 0.01%, largest first."""
    components = []
    for code, pct in zip(model.stain_codes, recipe):
        if pct > 0.01:
            components.append(StainComponent(code, round(min(max(pct, 0.0), model.max_pct), 3)))
    components.sort(key=lambda c: c.pct, reverse=True)
    return components


class TestDataset:
    """Test points partitioned by firing condition, sharing one set of stain codes."""
    __test__ = False

    def __init__(self, stain_codes: Sequence[str],
                 partitions: Mapping[FiringCondition, Sequence[TestPoint]]):
        self.stain_codes: Tuple[str, ...] = tuple(stain_codes)
        self._partitions: Dict[FiringCondition, Tuple[TestPoint, ...]] = {
            condition: tuple(points) for condition, points in partitions.items()
        }

    def conditions(self) -> List[FiringCondition]:
        return sorted(self._partitions, key=lambda c: (c.cone, c.atmosphere.value))

    def points_for(self, condition: FiringCondition) -> Tuple[TestPoint, ...]:
        """Points fired under ``condition``; an unknown condition has none."""
        return self._partitions.get(condition, ())

    def __len__(self) -> int:
        return sum(len(points) for points in self._partitions.values())

    def __contains__(self, condition) -> bool:
        return condition in self._partitions

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]],
                     max_pct: float = DEFAULT_MAX_PCT) -> "TestDataset":
        """
        Build a dataset from record dicts.

        Each record holds ``cone``, ``atmosphere``, a ``recipe`` mapping of
        stain code to percentage, and either ``lab`` or ``hex``. Stain codes
        are discovered from the records and sorted.
        """
        records = list(records)
        codes = sorted({code for record in records for code in record.get('recipe', {})})
        partitions: Dict[FiringCondition, List[TestPoint]] = {}
        for record in records:
            condition = FiringCondition(record['cone'], record['atmosphere'])
            recipe = validate_recipe(
                [record['recipe'].get(code, 0.0) for code in codes], len(codes), max_pct
            )
            lab = record['lab'] if record.get('lab') is not None else hex_to_lab(record['hex'])
            point = TestPoint(recipe, lab, str(record.get('tile_id', '')))
            partitions.setdefault(condition, []).append(point)
        return cls(codes, partitions)


_RESERVED_COLUMNS = {'cone', 'atmosphere', 'tile_id', 'l', 'a', 'b', 'hex', 'notes'}


def load_dataset_csv(csv_path: str, max_pct: float = DEFAULT_MAX_PCT) -> TestDataset:
    """
    Load fired test tiles from CSV.

    Required columns are ``cone`` and ``atmosphere`` plus the measured color,
    either as ``L``, ``a``, ``b`` or as ``hex``. Every other column (apart from
    ``tile_id`` and ``notes``) is a stain channel named by its header. Rows
    that cannot be parsed are skipped with a warning.
    """
    with open(csv_path, 'r', encoding='utf-8', newline='') as f:
        reader = csv.DictReader(f)
        header = [name.strip() for name in (reader.fieldnames or [])]
        lowered = {name.lower(): name for name in header}

        has_lab = all(col in lowered for col in ('l', 'a', 'b'))
        if 'cone' not in lowered or 'atmosphere' not in lowered:
            raise DatasetFormatError(f"{csv_path}: header needs 'cone' and 'atmosphere' columns")
        if not has_lab and 'hex' not in lowered:
            raise DatasetFormatError(f"{csv_path}: header needs L,a,b or hex columns")

        codes = sorted(name for name in header if name.lower() not in _RESERVED_COLUMNS)
        partitions: Dict[FiringCondition, List[TestPoint]] = {}
        skipped = 0

        for line_no, raw in enumerate(reader, start=2):
            row = {k.strip(): (v or '').strip() for k, v in raw.items() if k is not None}
            if not any(row.values()):
                continue
            try:
                condition = FiringCondition(int(row[lowered['cone']]), row[lowered['atmosphere']])
                recipe = validate_recipe(
                    [float(row[code]) if row.get(code) else 0.0 for code in codes],
                    len(codes), max_pct,
                )
                if has_lab and row.get(lowered['l']):
                    lab = tuple(float(row[lowered[c]]) for c in ('l', 'a', 'b'))
                else:
                    lab = hex_to_lab(row[lowered['hex']])
                point = TestPoint(recipe, lab, row.get(lowered.get('tile_id', ''), ''))
            except (ValueError, KeyError, GlazeMatchError) as e:
                skipped += 1
                logger.warning("Skipping invalid test tile at %s:%d - %s", csv_path, line_no, e)
                continue
            partitions.setdefault(condition, []).append(point)

    dataset = TestDataset(codes, partitions)
    logger.info("Loaded %d test tiles across %d firing conditions from %s (%d skipped)",
                len(dataset), len(partitions), csv_path, skipped)
    return dataset


class ModelManager:
    """
    Holds the active model.

    ``load`` builds a fresh ``Model`` and swaps it in under a lock; callers
    should keep the returned model (or ``snapshot()``) for the duration of a
    request rather than re-reading ``model`` mid-computation.
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()
        self._lock = threading.Lock()
        self._model: Optional[Model] = None

    def load(self, points: Iterable[TestPoint], condition,
             stain_codes: Optional[Sequence[str]] = None, force: bool = False) -> Model:
        """Replace the active model with ``points`` fired under ``condition``."""
        if not isinstance(condition, FiringCondition):
            condition = FiringCondition(*condition)

        with self._lock:
            current = self._model
            if not force and current is not None and current.condition == condition:
                logger.debug("Model for %s already loaded, skipping reload", condition)
                return current

            model = build_model(points, condition, stain_codes, self.config.recipe.max_pct)
            self._model = model

        logger.info("Loaded %d test points for %s", model.point_count, condition)
        return model

    def load_from_dataset(self, dataset: TestDataset, condition, force: bool = False) -> Model:
        """Load the partition of ``dataset`` fired under ``condition``."""
        if not isinstance(condition, FiringCondition):
            condition = FiringCondition(*condition)
        return self.load(dataset.points_for(condition), condition, dataset.stain_codes, force=force)

    def snapshot(self) -> Model:
        model = self._model
        if model is None:
            raise NotLoadedError("No model loaded; call load() first")
        return model

    @property
    def model(self) -> Model:
        return self.snapshot()

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    @property
    def point_count(self) -> int:
        return self.snapshot().point_count

    @property
    def condition(self) -> FiringCondition:
        return self.snapshot().condition
