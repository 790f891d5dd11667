"""
Configuration management for the glaze color-matching engine.
"""

import os
import yaml
from dataclasses import dataclass, field
from typing import Literal, Optional, Tuple


@dataclass
class MatchingConfig:
    """k-NN, weighting and gamut parameters."""
    forward_k: int = 5
    reverse_k: int = 8
    epsilon: float = 1e-6
    gamut_threshold: float = 5.0
    confidence_scale: float = 50.0
    min_confidence: float = 0.1
    alternative_pool: int = 5
    max_alternatives: int = 4


@dataclass
class RecipeConfig:
    """Recipe channel limits and the unstained base glaze."""
    max_pct: float = 15.0
    base_lab: Tuple[float, float, float] = (90.0, -1.0, 5.0)

    def __post_init__(self):
        """YAML hands sequences back as lists."""
        self.base_lab = tuple(float(v) for v in self.base_lab)


@dataclass
class DatasetConfig:
    """Where the fired test tiles live and which firing to load by default."""
    path: str = "data/glaze_tests.csv"
    cone: int = 6
    atmosphere: Literal["oxidation", "reduction"] = "oxidation"


@dataclass
class Config:
    """Main configuration class."""
    config_file: Optional[str] = None

    matching: MatchingConfig = field(default_factory=MatchingConfig)
    recipe: RecipeConfig = field(default_factory=RecipeConfig)
    dataset: DatasetConfig = field(default_factory=DatasetConfig)

    @classmethod
    def from_yaml(cls, config_path: str, **overrides) -> "Config":
        """Load configuration from YAML file with optional overrides."""
        if not os.path.exists(config_path):
            config = cls()
            config.config_file = config_path
            config._apply_overrides(overrides)
            config.validate()
            return config

        with open(config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        config = cls(
            config_file=config_path,
            matching=MatchingConfig(**data.get('matching', {})),
            recipe=RecipeConfig(**data.get('recipe', {})),
            dataset=DatasetConfig(**data.get('dataset', {})),
        )
        config._apply_overrides(overrides)
        config.validate()
        return config

    def _apply_overrides(self, overrides: dict):
        """Apply CLI-style keyword overrides to whichever section owns the key."""
        for key, value in overrides.items():
            if value is None:
                continue
            for section in (self.matching, self.recipe, self.dataset):
                if hasattr(section, key):
                    setattr(section, key, value)
                    break
            else:
                raise ValueError(f"Unknown configuration key: {key}")

    def validate(self):
        """Validate configuration parameters."""
        m = self.matching
        if m.forward_k < 1 or m.reverse_k < 1:
            raise ValueError("Neighbor counts must be at least 1")

        if m.epsilon <= 0:
            raise ValueError("Epsilon must be positive")

        if m.gamut_threshold <= 0:
            raise ValueError("Gamut threshold must be positive")

        if m.confidence_scale <= 0:
            raise ValueError("Confidence scale must be positive")

        if not (0 <= m.min_confidence <= 1):
            raise ValueError("Minimum confidence must be between 0 and 1")

        if m.alternative_pool < 0 or m.max_alternatives < 0:
            raise ValueError("Alternative counts must be non-negative")

        if m.alternative_pool > m.reverse_k:
            raise ValueError("Alternatives are drawn from the reverse neighbors; alternative_pool must not exceed reverse_k")

        if self.recipe.max_pct <= 0:
            raise ValueError("Maximum stain percentage must be positive")

        if len(self.recipe.base_lab) != 3:
            raise ValueError("Base Lab must have three components")

        if self.dataset.atmosphere not in ("oxidation", "reduction"):
            raise ValueError(f"Unknown atmosphere '{self.dataset.atmosphere}'")

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        return {
            'matching': {
                'forward_k': self.matching.forward_k,
                'reverse_k': self.matching.reverse_k,
                'epsilon': self.matching.epsilon,
                'gamut_threshold': self.matching.gamut_threshold,
                'confidence_scale': self.matching.confidence_scale,
                'min_confidence': self.matching.min_confidence,
                'alternative_pool': self.matching.alternative_pool,
                'max_alternatives': self.matching.max_alternatives,
            },
            'recipe': {
                'max_pct': self.recipe.max_pct,
                'base_lab': list(self.recipe.base_lab),
            },
            'dataset': {
                'path': self.dataset.path,
                'cone': self.dataset.cone,
                'atmosphere': self.dataset.atmosphere,
            },
        }

    def save_yaml(self, path: Optional[str] = None):
        """Save configuration to YAML file."""
        if path is None:
            path = self.config_file or "glazematch.yaml"

        dir_path = os.path.dirname(path)
        if dir_path:
            os.makedirs(dir_path, exist_ok=True)

        with open(path, 'w', encoding='utf-8') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, indent=2)
