"""
Boundary unit conversion.

The kernel computes in K, Pa, kmol/h, kJ/mol and kW. User-facing quantities
are converted here when feed specifications and block parameters are read,
and again when results are formatted.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional

from .errors import ParameterError


TEMPERATURE = "temperature"
TEMPERATURE_DIFFERENCE = "temperature_difference"
PRESSURE = "pressure"
PRESSURE_DIFFERENCE = "pressure_difference"
MOLAR_FLOW = "molar_flow"
POWER = "power"
DIMENSIONLESS = "dimensionless"

PA_PER_BAR = 1e5


def _key(unit: str) -> str:
    return unit.strip().replace(" ", "").replace("°", "deg").lower()


# Temperature: conversion to K
_TEMPERATURE: Dict[str, Callable[[float], float]] = {
    "k": lambda v: v,
    "kelvin": lambda v: v,
    "c": lambda v: v + 273.15,
    "degc": lambda v: v + 273.15,
    "celsius": lambda v: v + 273.15,
    "f": lambda v: (v - 32.0) * 5.0 / 9.0 + 273.15,
    "degf": lambda v: (v - 32.0) * 5.0 / 9.0 + 273.15,
    "fahrenheit": lambda v: (v - 32.0) * 5.0 / 9.0 + 273.15,
}

# Temperature differences: multiplier to K
_TEMPERATURE_DIFFERENCE: Dict[str, float] = {
    "k": 1.0, "kelvin": 1.0, "c": 1.0, "degc": 1.0, "celsius": 1.0,
    "f": 5.0 / 9.0, "degf": 5.0 / 9.0, "fahrenheit": 5.0 / 9.0,
}

# Pressure: multiplier to Pa
_PRESSURE: Dict[str, float] = {
    "pa": 1.0,
    "kpa": 1e3,
    "mpa": 1e6,
    "bar": PA_PER_BAR,
    "bara": PA_PER_BAR,
    "mbar": 100.0,
    "atm": 101325.0,
    "psi": 6894.76,
    "psia": 6894.76,
    "mmhg": 133.322,
    "torr": 133.322,
}

# Molar flow: multiplier to kmol/h
_MOLAR_FLOW: Dict[str, float] = {
    "kmol/h": 1.0,
    "kmol/hr": 1.0,
    "mol/h": 1e-3,
    "mol/hr": 1e-3,
    "mol/s": 3.6,
    "kmol/s": 3600.0,
}

# Mass flow: multiplier to kg/h, converted to kmol/h with the molecular weight
_MASS_FLOW: Dict[str, float] = {
    "kg/h": 1.0,
    "kg/hr": 1.0,
    "kg/s": 3600.0,
    "t/h": 1000.0,
    "tonne/h": 1000.0,
}

# Power / duty: multiplier to kW
_POWER: Dict[str, float] = {
    "kw": 1.0,
    "w": 1e-3,
    "mw": 1e3,
}


def _lookup(table: Dict, unit: str, dimension: str):
    try:
        return table[_key(unit)]
    except KeyError:
        raise ParameterError(f"Unsupported {dimension.replace('_', ' ')} unit '{unit}'") from None


def to_kelvin(value: float, unit: str) -> float:
    return _lookup(_TEMPERATURE, unit, TEMPERATURE)(value)


def to_pascal(value: float, unit: str) -> float:
    return value * _lookup(_PRESSURE, unit, PRESSURE)


def to_kmol_per_h(value: float, unit: str, molecular_weight: Optional[float] = None) -> float:
    """Convert a molar or mass flow to kmol/h.

    Mass flows need the mixture molecular weight in g/mol (= kg/kmol).
    """
    key = _key(unit)
    if key in _MOLAR_FLOW:
        return value * _MOLAR_FLOW[key]
    if key in _MASS_FLOW:
        if not molecular_weight or molecular_weight <= 0:
            raise ParameterError(
                f"Mass flow unit '{unit}' needs a known molecular weight to convert to kmol/h"
            )
        return value * _MASS_FLOW[key] / molecular_weight
    raise ParameterError(f"Unsupported flow unit '{unit}'")


def to_internal(
    value: float,
    unit: str,
    dimension: str,
    molecular_weight: Optional[float] = None,
) -> float:
    """Convert ``value`` in ``unit`` to the kernel's unit for ``dimension``."""
    if dimension == TEMPERATURE:
        return to_kelvin(value, unit)
    if dimension == TEMPERATURE_DIFFERENCE:
        return value * _lookup(_TEMPERATURE_DIFFERENCE, unit, dimension)
    if dimension in (PRESSURE, PRESSURE_DIFFERENCE):
        return to_pascal(value, unit)
    if dimension == MOLAR_FLOW:
        return to_kmol_per_h(value, unit, molecular_weight)
    if dimension == POWER:
        return value * _lookup(_POWER, unit, dimension)
    if dimension == DIMENSIONLESS:
        if unit and _key(unit) in ("%", "percent"):
            return value / 100.0
        return value
    raise ValueError(f"Unknown dimension '{dimension}'")


def pa_to_bar(value: float) -> float:
    return value / PA_PER_BAR
