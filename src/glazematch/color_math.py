"""
Color space conversion used throughout the matching engine.

Provides:
    - ``#RRGGBB`` parsing and formatting
    - sRGB ↔ CIE L*a*b* conversion (D65 white point, 2° observer)

Conversions accept NumPy arrays of shape ``(..., 3)`` so whole datasets can be
converted in one call, and plain tuples for single colors.
"""

from __future__ import annotations

import re
from typing import Sequence, Tuple

import numpy as np

from .errors import InvalidColorError

SRGB_TO_XYZ = np.array(
    [
        [0.4124564, 0.3575761, 0.1804375],
        [0.2126729, 0.7151522, 0.0721750],
        [0.0193339, 0.1191920, 0.9503041],
    ],
    dtype=np.float64,
)

XYZ_TO_SRGB = np.array(
    [
        [3.2404542, -1.5371385, -0.4985314],
        [-0.9692660, 1.8760108, 0.0415560],
        [0.0556434, -0.2040259, 1.0572252],
    ],
    dtype=np.float64,
)

D65_WHITE = np.array([0.95047, 1.0, 1.08883], dtype=np.float64)

# CIE linear-segment constants in their classic published form
LAB_EPSILON = 0.008856
LAB_KAPPA_SLOPE = 7.787
LAB_OFFSET = 16 / 116

_HEX_PATTERN = re.compile(r"#([0-9a-fA-F]{2})([0-9a-fA-F]{2})([0-9a-fA-F]{2})")


def _to_ndarray(color) -> np.ndarray:
    arr = np.asarray(color, dtype=np.float64)
    if arr.ndim == 0 or arr.shape[-1] != 3:
        raise ValueError("Input color must have three channels")
    return arr


def _round_half_up(values: np.ndarray) -> np.ndarray:
    return np.floor(values + 0.5)


def hex_to_rgb(hex_str: str) -> Tuple[int, int, int]:
    """Parse ``#RRGGBB`` (case-insensitive, no surrounding whitespace) into an ``(r, g, b)`` tuple."""
    if not isinstance(hex_str, str):
        raise InvalidColorError(f"Hex color must be a string, got {type(hex_str).__name__}")
    match = _HEX_PATTERN.fullmatch(hex_str)
    if match is None:
        raise InvalidColorError(f"Invalid hex color '{hex_str}': expected #RRGGBB")
    r, g, b = (int(part, 16) for part in match.groups())
    return r, g, b


def rgb_to_hex(rgb: Sequence[float]) -> str:
    """Format an RGB triple as lower-case ``#rrggbb``, rounding and clamping each channel."""
    arr = _to_ndarray(rgb)
    if arr.ndim != 1:
        raise ValueError("rgb_to_hex expects a single RGB triple")
    if not np.all(np.isfinite(arr)):
        raise InvalidColorError(f"RGB channels must be finite, got {tuple(arr)}")
    channels = np.clip(_round_half_up(arr), 0, 255).astype(int)
    return "#" + "".join(f"{int(c):02x}" for c in channels)


def srgb_to_linear(rgb) -> np.ndarray:
    """Convert sRGB in the 0-255 range to linear RGB in 0-1."""
    rgb = _to_ndarray(rgb)
    if not np.all(np.isfinite(rgb)) or rgb.min() < 0 or rgb.max() > 255:
        raise InvalidColorError("RGB channels must lie in [0, 255]")
    c = rgb / 255.0
    return np.where(c <= 0.04045, c / 12.92, ((c + 0.055) / 1.055) ** 2.4)


def linear_to_srgb(linear_rgb) -> np.ndarray:
    """Convert linear RGB back to gamma-encoded sRGB in 0-1, clipped."""
    linear_rgb = np.clip(_to_ndarray(linear_rgb), 0.0, 1.0)
    encoded = np.where(
        linear_rgb <= 0.0031308,
        12.92 * linear_rgb,
        1.055 * np.power(linear_rgb, 1 / 2.4) - 0.055,
    )
    return np.clip(encoded, 0.0, 1.0)


def rgb_to_xyz(rgb) -> np.ndarray:
    """Convert sRGB (0-255) to CIE XYZ, D65."""
    linear = srgb_to_linear(rgb)
    return linear @ SRGB_TO_XYZ.T


def xyz_to_lab(xyz) -> np.ndarray:
    """Convert XYZ to Lab relative to the D65 white."""
    xyz = _to_ndarray(xyz) / D65_WHITE

    def f(t):
        return np.where(t > LAB_EPSILON, np.cbrt(t), LAB_KAPPA_SLOPE * t + LAB_OFFSET)

    fx = f(xyz[..., 0])
    fy = f(xyz[..., 1])
    fz = f(xyz[..., 2])

    L = 116 * fy - 16
    a = 500 * (fx - fy)
    b = 200 * (fy - fz)
    return np.stack([L, a, b], axis=-1)


def lab_to_xyz(lab) -> np.ndarray:
    """Invert :func:`xyz_to_lab`."""
    lab = _to_ndarray(lab)
    L, a, b = lab[..., 0], lab[..., 1], lab[..., 2]

    fy = (L + 16) / 116
    fx = fy + a / 500
    fz = fy - b / 200

    def finv(t):
        t3 = t**3
        return np.where(t3 > LAB_EPSILON, t3, (t - LAB_OFFSET) / LAB_KAPPA_SLOPE)

    xyz = np.stack([finv(fx), finv(fy), finv(fz)], axis=-1)
    return xyz * D65_WHITE


def rgb_to_lab(rgb) -> np.ndarray:
    """sRGB (0-255) → Lab."""
    return xyz_to_lab(rgb_to_xyz(rgb))


def lab_to_rgb(lab) -> np.ndarray:
    """Lab → sRGB, rounded and clamped to integers in [0, 255]."""
    linear = lab_to_xyz(lab) @ XYZ_TO_SRGB.T
    srgb = linear_to_srgb(linear) * 255.0
    return np.clip(_round_half_up(srgb), 0, 255).astype(int)


def hex_to_lab(hex_str: str) -> Tuple[float, float, float]:
    """Parse a hex color and convert it straight to a Lab tuple."""
    L, a, b = rgb_to_lab(hex_to_rgb(hex_str))
    return float(L), float(a), float(b)


def lab_to_hex(lab: Sequence[float]) -> str:
    return rgb_to_hex(lab_to_rgb(lab))
