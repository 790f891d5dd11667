"""
CIEDE2000 color difference.

Follows Sharma, Wu & Dalal (2005), "The CIEDE2000 Color-Difference Formula:
Implementation Notes, Supplementary Test Data, and Mathematical Observations",
including the mean-hue branching their test pairs exercise.
"""

from __future__ import annotations

from typing import Union

import numpy as np

from .color_math import _to_ndarray

_POW25_7 = 25.0**7


def _hue_angle(a_prime: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Hue angle in degrees, normalised to [0, 360)."""
    angle = np.degrees(np.arctan2(b, a_prime))
    return np.where(angle < 0, angle + 360.0, angle)


def delta_e2000(lab1, lab2, kL: float = 1.0, kC: float = 1.0, kH: float = 1.0) -> Union[float, np.ndarray]:
    """
    CIEDE2000 difference between Lab colors, with NumPy broadcasting.

    ``lab1`` and ``lab2`` may be single triples or ``(..., 3)`` arrays that
    broadcast against each other. A single pair returns a ``float``; arrays
    return an ndarray over the broadcast leading dimensions.
    """
    lab1 = _to_ndarray(lab1)
    lab2 = _to_ndarray(lab2)

    L1, a1, b1 = lab1[..., 0], lab1[..., 1], lab1[..., 2]
    L2, a2, b2 = lab2[..., 0], lab2[..., 1], lab2[..., 2]

    C1 = np.sqrt(a1**2 + b1**2)
    C2 = np.sqrt(a2**2 + b2**2)
    C_mean7 = ((C1 + C2) / 2) ** 7

    G = 0.5 * (1 - np.sqrt(C_mean7 / (C_mean7 + _POW25_7)))
    a1_prime = (1 + G) * a1
    a2_prime = (1 + G) * a2
    C1_prime = np.sqrt(a1_prime**2 + b1**2)
    C2_prime = np.sqrt(a2_prime**2 + b2**2)

    h1_prime = _hue_angle(a1_prime, b1)
    h2_prime = _hue_angle(a2_prime, b2)

    chroma_product = C1_prime * C2_prime
    achromatic = chroma_product == 0

    # Hue difference, wrapped into (-180, 180]
    dh = h2_prime - h1_prime
    dh = np.where(dh > 180, dh - 360, np.where(dh < -180, dh + 360, dh))
    dh = np.where(achromatic, 0.0, dh)

    delta_L = L2 - L1
    delta_C = C2_prime - C1_prime
    delta_H = 2 * np.sqrt(chroma_product) * np.sin(np.radians(dh / 2))

    L_mean = (L1 + L2) / 2
    C_mean_prime = (C1_prime + C2_prime) / 2

    h_sum = h1_prime + h2_prime
    h_mean = np.where(
        np.abs(h1_prime - h2_prime) <= 180,
        h_sum / 2,
        np.where(h_sum < 360, (h_sum + 360) / 2, (h_sum - 360) / 2),
    )
    h_mean = np.where(achromatic, h_sum, h_mean)

    T = (
        1
        - 0.17 * np.cos(np.radians(h_mean - 30))
        + 0.24 * np.cos(np.radians(2 * h_mean))
        + 0.32 * np.cos(np.radians(3 * h_mean + 6))
        - 0.20 * np.cos(np.radians(4 * h_mean - 63))
    )

    L_offset2 = (L_mean - 50) ** 2
    S_L = 1 + (0.015 * L_offset2) / np.sqrt(20 + L_offset2)
    S_C = 1 + 0.045 * C_mean_prime
    S_H = 1 + 0.015 * C_mean_prime * T

    C_mean_prime7 = C_mean_prime**7
    R_C = 2 * np.sqrt(C_mean_prime7 / (C_mean_prime7 + _POW25_7))
    R_T = -R_C * np.sin(np.radians(60 * np.exp(-(((h_mean - 275) / 25) ** 2))))

    term_L = delta_L / (kL * S_L)
    term_C = delta_C / (kC * S_C)
    term_H = delta_H / (kH * S_H)

    delta_E = np.sqrt(term_L**2 + term_C**2 + term_H**2 + R_T * term_C * term_H)

    if np.ndim(delta_E) == 0:
        return float(delta_E)
    return delta_E
