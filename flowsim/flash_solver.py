"""
Rachford-Rice vapor-fraction solver.

Solves  sum_i z_i (K_i - 1) / (1 + V (K_i - 1)) = 0  for V in [0, 1] by
Newton-Raphson and back-calculates the phase compositions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Tuple


# Vapor fractions closer than this to 0 or 1 are treated as single phase
PHASE_BOUNDARY = 0.001
# Flow (kmol/h) given to the suppressed phase of a single-phase flash
TRACE_FLOW = 0.001

DEFAULT_K = 1.0


@dataclass
class RachfordRiceResult:
    vapor_fraction: float
    converged: bool
    iterations: int
    residual: float


def rachford_rice_residual(
    z: Mapping[str, float], K: Mapping[str, float], V: float
) -> float:
    f = 0.0
    for comp, z_i in z.items():
        k_m1 = K.get(comp, DEFAULT_K) - 1.0
        f += z_i * k_m1 / (1.0 + V * k_m1)
    return f


def rachford_rice(
    z: Mapping[str, float],
    K: Mapping[str, float],
    max_iterations: int = 50,
    tolerance: float = 1e-6,
) -> RachfordRiceResult:
    """
    Newton-Raphson on the Rachford-Rice equation starting from V = 0.5.

    V is clamped into [0, 1] after every step. When V sits on a bound and
    the residual keeps pushing outward the mixture is single phase and the
    bound is the solution, so that case is reported as converged.
    Components missing from ``K`` use K = 1.
    """
    V = 0.5
    f = 0.0
    iterations = 0

    for iterations in range(1, max_iterations + 1):
        f = 0.0
        df = 0.0
        for comp, z_i in z.items():
            k_m1 = K.get(comp, DEFAULT_K) - 1.0
            denom = 1.0 + V * k_m1
            f += z_i * k_m1 / denom
            df -= z_i * k_m1 ** 2 / denom ** 2

        if abs(f) < tolerance:
            return RachfordRiceResult(V, True, iterations, f)
        if (V >= 1.0 and f > 0.0) or (V <= 0.0 and f < 0.0):
            return RachfordRiceResult(V, True, iterations, f)
        if df == 0.0:
            break

        V = min(max(V - f / df, 0.0), 1.0)

    f = rachford_rice_residual(z, K, V)
    converged = abs(f) < tolerance or (V >= 1.0 and f > 0.0) or (V <= 0.0 and f < 0.0)
    return RachfordRiceResult(V, converged, iterations, f)


def flash_composition(
    z: Mapping[str, float], K: Mapping[str, float], V: float
) -> Tuple[Dict[str, float], Dict[str, float]]:
    """Return (liquid, vapor) mole fractions for vapor fraction ``V``.

    x_i = z_i / (1 + V (K_i - 1)),  y_i = K_i x_i.  Not renormalised, so
    z = V y + (1 - V) x holds exactly for any V.
    """
    liquid: Dict[str, float] = {}
    vapor: Dict[str, float] = {}
    for comp, z_i in z.items():
        K_i = K.get(comp, DEFAULT_K)
        liquid[comp] = z_i / (1.0 + V * (K_i - 1.0))
        vapor[comp] = K_i * liquid[comp]
    return liquid, vapor


def normalize(fractions: Mapping[str, float]) -> Dict[str, float]:
    """Scale non-negative fractions to sum to one."""
    cleaned = {k: max(v, 0.0) for k, v in fractions.items()}
    total = sum(cleaned.values())
    if total <= 0.0:
        return dict(cleaned)
    return {k: v / total for k, v in cleaned.items()}
