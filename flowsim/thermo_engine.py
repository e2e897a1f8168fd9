"""
Ideal-gas property model.

Provides the property calls every block relies on:
  - Cp polynomial and enthalpy (heat of formation + closed-form Cp integral)
  - Clausius-Clapeyron vapor pressure anchored at the normal boiling point
  - Raoult's-law K-values, phase classification and PT flash
  - ideal-gas vapor density with a constant liquid density

Unknown component ids never raise: they contribute nothing to enthalpy or
molecular weight and get K = 1.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from loguru import logger

from .components import Component, ComponentRegistry, get_registry
from .flash_solver import (
    DEFAULT_K,
    PHASE_BOUNDARY,
    RachfordRiceResult,
    flash_composition,
    normalize,
    rachford_rice,
)


R_GAS = 8.314  # J/(mol K)
T_REF = 298.15  # K
P_ATM = 101325.0  # Pa
TROUTON_CONSTANT = 85.0  # J/(mol K)
LIQUID_DENSITY = 1000.0  # kg/m³
VAPOR_PRESSURE_BOUNDS = (1.0, 1e9)  # Pa

VAPOR = "V"
LIQUID = "L"
TWO_PHASE = "VL"
SOLID = "S"
PHASES = (VAPOR, LIQUID, TWO_PHASE, SOLID)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class StreamState:
    """Resolved state of one stream edge."""

    temperature: float  # K
    pressure: float  # Pa
    molar_flow: float  # kmol/h
    composition: Dict[str, float]  # mole fractions
    phase: str = VAPOR
    enthalpy: Optional[float] = None  # kJ/mol
    vapor_fraction: Optional[float] = None

    def copy(self, **changes) -> "StreamState":
        """Return a new state; the composition dict is never shared."""
        composition = changes.pop("composition", self.composition)
        return replace(self, composition=dict(composition), **changes)


@dataclass
class FlashResult:
    temperature: float
    pressure: float
    vapor_fraction: float
    converged: bool
    iterations: int
    phase: str
    k_values: Dict[str, float]
    liquid: Dict[str, float] = field(default_factory=dict)
    vapor: Dict[str, float] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Pure-component correlations
# ---------------------------------------------------------------------------

def heat_capacity(component: Component, T: float) -> float:
    """Ideal-gas Cp in J/(mol K). Extrapolation outside the fit is allowed."""
    a, b, c, d, e = component.cp_coefficients
    return a + b * T + c * T ** 2 + d * T ** 3 + e * T ** 4


def enthalpy(component: Component, T: float) -> float:
    """Hf(298.15 K) + integral of Cp from 298.15 K to T, in kJ/mol."""
    a, b, c, d, e = component.cp_coefficients
    T0 = T_REF
    delta_h = (
        a * (T - T0)
        + b / 2.0 * (T ** 2 - T0 ** 2)
        + c / 3.0 * (T ** 3 - T0 ** 3)
        + d / 4.0 * (T ** 4 - T0 ** 4)
        + e / 5.0 * (T ** 5 - T0 ** 5)
    )
    return component.heat_of_formation + delta_h / 1000.0


def vapor_pressure(component: Component, T: float) -> float:
    """Clausius-Clapeyron through (Tb, 1 atm) with Trouton's dHvap = 85 Tb.

    Clamped to [1 Pa, 1e9 Pa].
    """
    Tb = component.boiling_point
    h_vap = TROUTON_CONSTANT * Tb  # J/mol
    exponent = h_vap / R_GAS * (1.0 / Tb - 1.0 / T)
    lo, hi = VAPOR_PRESSURE_BOUNDS
    # exp() overflows well above ln(1e9 / 1 atm); clamp the exponent first
    exponent = min(max(exponent, math.log(lo / P_ATM)), math.log(hi / P_ATM))
    return min(max(P_ATM * math.exp(exponent), lo), hi)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ThermoEngine:
    """Mixture property calls over an immutable component registry."""

    def __init__(
        self,
        component_ids: Optional[Iterable[str]] = None,
        registry: Optional[ComponentRegistry] = None,
    ) -> None:
        self.registry = registry or get_registry()
        self.component_ids: List[str] = list(component_ids or [])
        unknown = [c for c in self.component_ids if c not in self.registry]
        if unknown:
            logger.warning(
                "Components not in reference table (default K = 1): {}", unknown
            )
        logger.info(
            "ThermoEngine initialised with {} components: {}",
            len(self.component_ids),
            self.component_ids,
        )

    @property
    def n(self) -> int:
        return len(self.component_ids)

    def component(self, component_id: str) -> Optional[Component]:
        return self.registry.get(component_id)

    # ------------------------------------------------------------------
    # Mixture properties
    # ------------------------------------------------------------------

    def mixture_enthalpy(
        self, composition: Mapping[str, float], T: float, P: Optional[float] = None
    ) -> float:
        """Mole-fraction weighted enthalpy in kJ/mol. ``P`` is not used."""
        h = 0.0
        for comp_id, frac in composition.items():
            comp = self.registry.get(comp_id)
            if comp is not None:
                h += frac * enthalpy(comp, T)
        return h

    def mixture_heat_capacity(self, composition: Mapping[str, float], T: float) -> float:
        cp = 0.0
        for comp_id, frac in composition.items():
            comp = self.registry.get(comp_id)
            if comp is not None:
                cp += frac * heat_capacity(comp, T)
        return cp

    def molecular_weight(self, composition: Mapping[str, float]) -> float:
        mw = 0.0
        for comp_id, frac in composition.items():
            comp = self.registry.get(comp_id)
            if comp is not None:
                mw += frac * comp.molecular_weight
        return mw

    def k_value(self, component_id: str, T: float, P: float) -> float:
        comp = self.registry.get(component_id)
        if comp is None:
            return DEFAULT_K
        return vapor_pressure(comp, T) / P

    def k_values(self, component_ids: Iterable[str], T: float, P: float) -> Dict[str, float]:
        return {cid: self.k_value(cid, T, P) for cid in component_ids}

    def density(
        self, composition: Mapping[str, float], T: float, P: float, phase: str
    ) -> float:
        """kg/m³: ideal gas for vapor, constant placeholder otherwise."""
        if phase == VAPOR:
            return P * self.molecular_weight(composition) / (R_GAS * T * 1000.0)
        return LIQUID_DENSITY

    # ------------------------------------------------------------------
    # Phase equilibrium
    # ------------------------------------------------------------------

    def pt_flash(self, composition: Mapping[str, float], T: float, P: float) -> FlashResult:
        """Isothermal flash of ``composition`` at (T, P)."""
        K = self.k_values(composition.keys(), T, P)
        rr: RachfordRiceResult = rachford_rice(composition, K)
        V = rr.vapor_fraction
        liquid, vapor = flash_composition(composition, K, V)
        return FlashResult(
            temperature=T,
            pressure=P,
            vapor_fraction=V,
            converged=rr.converged,
            iterations=rr.iterations,
            phase=self._classify(V),
            k_values=K,
            liquid=normalize(liquid),
            vapor=normalize(vapor),
        )

    @staticmethod
    def _classify(V: float) -> str:
        if V <= PHASE_BOUNDARY:
            return LIQUID
        if V >= 1.0 - PHASE_BOUNDARY:
            return VAPOR
        return TWO_PHASE

    def equilibrium(
        self, composition: Mapping[str, float], T: float, P: float
    ) -> Tuple[str, float, bool]:
        """Return (phase, vapor_fraction, converged) at (T, P)."""
        K = self.k_values(composition.keys(), T, P)
        if K and all(k > 1.0 for k in K.values()):
            return VAPOR, 1.0, True
        if K and all(k < 1.0 for k in K.values()):
            return LIQUID, 0.0, True
        rr = rachford_rice(composition, K)
        phase = self._classify(rr.vapor_fraction)
        if phase == VAPOR:
            return phase, 1.0, rr.converged
        if phase == LIQUID:
            return phase, 0.0, rr.converged
        return phase, rr.vapor_fraction, rr.converged

    def determine_phase(self, composition: Mapping[str, float], T: float, P: float) -> str:
        return self.equilibrium(composition, T, P)[0]

    def stream(
        self,
        composition: Mapping[str, float],
        T: float,
        P: float,
        molar_flow: float,
        phase: Optional[str] = None,
    ) -> StreamState:
        """Build a fully populated StreamState at (T, P)."""
        if phase is None:
            phase, vf, _ = self.equilibrium(composition, T, P)
        else:
            vf = {VAPOR: 1.0, LIQUID: 0.0, SOLID: 0.0}.get(phase)
            if vf is None:
                vf = self.equilibrium(composition, T, P)[1]
        return StreamState(
            temperature=T,
            pressure=P,
            molar_flow=molar_flow,
            composition=dict(composition),
            phase=phase,
            enthalpy=self.mixture_enthalpy(composition, T, P),
            vapor_fraction=vf,
        )
