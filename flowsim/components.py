"""
Static component reference table and read-only registry.

Constants follow DIPPR / NIST / Perry's values. The heat-capacity polynomial
is Cp = a + bT + cT^2 + dT^3 + eT^4 in J/(mol K), fitted for roughly
200-1500 K. Critical pressure is stored in bar.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from loguru import logger


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Component:
    """Immutable physical record for one chemical species."""

    id: str
    name: str
    formula: str
    cas: str
    molecular_weight: float  # g/mol
    critical_temperature: float  # K
    critical_pressure: float  # bar
    acentric_factor: float
    boiling_point: float  # K at 1 atm
    heat_of_formation: float  # kJ/mol at 298.15 K
    cp_coefficients: Tuple[float, float, float, float, float]
    category: str


CATEGORY_LABELS: Dict[str, str] = {
    "gas": "Gases",
    "hydrocarbon": "Hydrocarbons",
    "alcohol": "Alcohols",
    "amine": "Amines",
    "acid": "Acids",
    "organic": "Other Organics",
    "inorganic": "Inorganics",
}

CATEGORY_ORDER: Tuple[str, ...] = (
    "gas",
    "hydrocarbon",
    "alcohol",
    "amine",
    "acid",
    "organic",
    "inorganic",
)


# ---------------------------------------------------------------------------
# Reference table
# ---------------------------------------------------------------------------

_COMPONENT_TABLE: Tuple[Component, ...] = (
    # light gases
    Component("H2", "Hydrogen", "H2", "1333-74-0", 2.016, 33.19, 13.13, -0.216, 20.28, 0.0, (27.14, 9.274e-3, -1.381e-5, 7.645e-9, 0), "gas"),
    Component("He", "Helium", "He", "7440-59-7", 4.003, 5.19, 2.27, -0.39, 4.22, 0.0, (20.786, 0, 0, 0, 0), "gas"),
    Component("Ar", "Argon", "Ar", "7440-37-1", 39.948, 150.86, 48.98, 0.0, 87.30, 0.0, (20.786, 0, 0, 0, 0), "gas"),
    Component("CH4", "Methane", "CH4", "74-82-8", 16.043, 190.56, 45.99, 0.011, 111.66, -74.52, (19.25, 5.213e-2, 1.197e-5, -1.132e-8, 0), "gas"),
    Component("C2H6", "Ethane", "C2H6", "74-84-0", 30.070, 305.32, 48.72, 0.099, 184.55, -83.82, (6.90, 1.730e-1, -6.406e-5, 7.285e-9, 0), "gas"),
    Component("C2H4", "Ethylene", "C2H4", "74-85-1", 28.054, 282.34, 50.41, 0.087, 169.42, 52.47, (3.95, 1.564e-1, -8.348e-5, 1.755e-8, 0), "gas"),
    Component("C3H8", "Propane", "C3H8", "74-98-6", 44.097, 369.83, 42.48, 0.152, 231.02, -104.68, (-4.22, 3.063e-1, -1.586e-4, 3.215e-8, 0), "gas"),
    Component("C3H6", "Propylene", "C3H6", "115-07-1", 42.081, 364.90, 46.00, 0.142, 225.45, 19.71, (3.71, 2.345e-1, -1.160e-4, 2.205e-8, 0), "gas"),

    # air components
    Component("N2", "Nitrogen", "N2", "7727-37-9", 28.014, 126.20, 33.96, 0.037, 77.35, 0.0, (31.15, -1.357e-2, 2.680e-5, -1.168e-8, 0), "inorganic"),
    Component("O2", "Oxygen", "O2", "7782-44-7", 31.999, 154.58, 50.43, 0.022, 90.20, 0.0, (25.46, 1.520e-2, -7.155e-6, 1.312e-9, 0), "inorganic"),
    Component("CO2", "Carbon Dioxide", "CO2", "124-38-9", 44.010, 304.13, 73.77, 0.228, 194.65, -393.51, (19.80, 7.344e-2, -5.602e-5, 1.715e-8, 0), "inorganic"),
    Component("H2O", "Water", "H2O", "7732-18-5", 18.015, 647.10, 220.64, 0.345, 373.15, -241.82, (33.46, 6.880e-3, 7.604e-6, -3.593e-9, 0), "inorganic"),
    Component("CO", "Carbon Monoxide", "CO", "630-08-0", 28.010, 132.85, 34.94, 0.045, 81.65, -110.53, (30.87, -1.285e-2, 2.789e-5, -1.272e-8, 0), "inorganic"),
    Component("NO", "Nitric Oxide", "NO", "10102-43-9", 30.006, 180.00, 64.80, 0.588, 121.38, 90.25, (29.34, -9.395e-4, 9.747e-6, -4.187e-9, 0), "inorganic"),
    Component("NO2", "Nitrogen Dioxide", "NO2", "10102-44-0", 46.006, 431.00, 101.33, 0.834, 294.30, 33.10, (24.89, 6.394e-2, -4.169e-5, 1.009e-8, 0), "inorganic"),
    Component("SO2", "Sulfur Dioxide", "SO2", "7446-09-5", 64.066, 430.80, 78.84, 0.251, 263.00, -296.83, (25.72, 5.786e-2, -3.812e-5, 8.612e-9, 0), "inorganic"),
    Component("H2S", "Hydrogen Sulfide", "H2S", "7783-06-4", 34.082, 373.53, 89.63, 0.094, 212.84, -20.60, (31.94, 1.436e-3, 2.432e-5, -1.176e-8, 0), "inorganic"),

    # hydrocarbons
    Component("C6H6", "Benzene", "C6H6", "71-43-2", 78.114, 562.05, 48.98, 0.210, 353.24, 49.08, (-36.19, 4.840e-1, -3.142e-4, 7.659e-8, 0), "hydrocarbon"),
    Component("C7H8", "Toluene", "C7H8", "108-88-3", 92.141, 591.75, 41.08, 0.264, 383.78, 12.00, (-43.33, 5.853e-1, -3.827e-4, 9.335e-8, 0), "hydrocarbon"),
    Component("C10H8", "Naphthalene", "C10H8", "91-20-3", 128.174, 748.40, 40.51, 0.302, 491.14, 78.53, (-68.27, 8.175e-1, -5.570e-4, 1.414e-7, 0), "hydrocarbon"),
    Component("C6H12", "Cyclohexane", "C6H12", "110-82-7", 84.161, 553.58, 40.73, 0.211, 353.87, -123.14, (-54.47, 6.111e-1, -3.789e-4, 9.082e-8, 0), "hydrocarbon"),

    # alcohols
    Component("CH3OH", "Methanol", "CH3OH", "67-56-1", 32.042, 512.64, 80.97, 0.565, 337.69, -200.66, (21.15, 7.092e-2, 2.587e-5, -2.852e-8, 0), "alcohol"),
    Component("C2H5OH", "Ethanol", "C2H5OH", "64-17-5", 46.069, 513.92, 61.48, 0.644, 351.44, -234.95, (9.01, 2.141e-1, -8.390e-5, 1.373e-9, 0), "alcohol"),
    Component("EG", "Ethylene Glycol", "C2H6O2", "107-21-1", 62.068, 719.00, 77.00, 0.487, 470.45, -392.20, (35.54, 2.509e-1, -1.228e-4, 2.361e-8, 0), "alcohol"),
    Component("Glycerol", "Glycerol", "C3H8O3", "56-81-5", 92.094, 850.00, 75.00, 0.513, 563.15, -577.90, (48.20, 3.850e-1, -2.100e-4, 4.500e-8, 0), "alcohol"),

    # amines
    Component("NH3", "Ammonia", "NH3", "7664-41-7", 17.031, 405.40, 113.53, 0.256, 239.82, -45.94, (27.31, 2.383e-2, 1.707e-5, -1.185e-8, 0), "amine"),
    Component("MEA", "Monoethanolamine", "C2H7NO", "141-43-5", 61.084, 678.20, 80.00, 0.545, 443.45, -302.50, (61.50, 2.800e-1, -1.600e-4, 3.500e-8, 0), "amine"),
    Component("DEA", "Diethanolamine", "C4H11NO2", "111-42-2", 105.137, 736.60, 42.70, 0.953, 541.50, -496.10, (47.20, 4.950e-1, -2.850e-4, 6.500e-8, 0), "amine"),
    Component("MDEA", "Methyldiethanolamine", "C5H13NO2", "105-59-9", 119.164, 741.90, 38.70, 0.628, 520.15, -380.00, (52.30, 5.420e-1, -3.120e-4, 7.100e-8, 0), "amine"),
    Component("PZ", "Piperazine", "C4H10N2", "110-85-0", 86.137, 638.00, 55.30, 0.310, 419.15, -45.80, (38.50, 3.650e-1, -2.100e-4, 4.800e-8, 0), "amine"),
    Component("TEA", "Triethanolamine", "C6H15NO3", "102-71-6", 149.190, 787.00, 32.40, 1.284, 608.55, -664.20, (55.80, 6.850e-1, -3.950e-4, 9.000e-8, 0), "amine"),
    Component("DGA", "Diglycolamine", "C4H11NO2", "929-06-6", 105.137, 696.00, 44.50, 0.845, 494.15, -365.00, (48.50, 4.780e-1, -2.750e-4, 6.250e-8, 0), "amine"),
    Component("Methylamine", "Methylamine", "CH5N", "74-89-5", 31.058, 430.05, 74.60, 0.281, 266.82, -22.97, (28.20, 8.950e-2, -3.450e-5, 5.200e-9, 0), "amine"),
    Component("Dimethylamine", "Dimethylamine", "C2H7N", "124-40-3", 45.084, 437.65, 53.40, 0.302, 280.03, -18.83, (22.50, 1.720e-1, -8.500e-5, 1.600e-8, 0), "amine"),

    # acids
    Component("HCOOH", "Formic Acid", "HCOOH", "64-18-6", 46.026, 588.00, 58.10, 0.473, 373.90, -378.70, (11.02, 1.213e-1, -6.178e-5, 1.158e-8, 0), "acid"),
    Component("CH3COOH", "Acetic Acid", "CH3COOH", "64-19-7", 60.052, 591.95, 57.86, 0.467, 391.05, -432.80, (8.00, 2.008e-1, -1.095e-4, 2.206e-8, 0), "acid"),
    Component("HCl", "Hydrogen Chloride", "HCl", "7647-01-0", 36.461, 324.70, 83.10, 0.132, 188.15, -92.31, (29.13, -2.215e-3, 9.456e-6, -4.186e-9, 0), "acid"),
    Component("HNO3", "Nitric Acid", "HNO3", "7697-37-2", 63.013, 520.00, 68.90, 0.714, 356.15, -133.90, (26.80, 1.050e-1, -6.200e-5, 1.400e-8, 0), "acid"),

    # other organics
    Component("CH3COCH3", "Acetone", "C3H6O", "67-64-1", 58.080, 508.20, 47.01, 0.307, 329.22, -217.15, (6.30, 2.606e-1, -1.253e-4, 2.038e-8, 0), "organic"),
    Component("CH3CHO", "Acetaldehyde", "C2H4O", "75-07-0", 44.053, 466.00, 55.70, 0.291, 293.25, -166.19, (7.71, 1.820e-1, -9.240e-5, 1.837e-8, 0), "organic"),
    Component("EO", "Ethylene Oxide", "C2H4O", "75-21-8", 44.053, 469.15, 71.90, 0.200, 283.60, -52.63, (-10.30, 2.210e-1, -1.337e-4, 3.205e-8, 0), "organic"),
    Component("DME", "Dimethyl Ether", "C2H6O", "115-10-6", 46.069, 400.10, 53.70, 0.200, 248.31, -184.10, (17.02, 1.791e-1, -5.234e-5, -1.919e-9, 0), "organic"),
    Component("HCHO", "Formaldehyde", "HCHO", "50-00-0", 30.026, 408.00, 65.90, 0.282, 254.05, -108.57, (23.48, 4.695e-2, 9.837e-6, -1.371e-8, 0), "organic"),
    Component("C2H3Cl", "Vinyl Chloride", "C2H3Cl", "75-01-4", 62.499, 432.00, 56.70, 0.100, 259.25, 28.45, (5.94, 1.560e-1, -9.550e-5, 2.230e-8, 0), "organic"),
    Component("CHCl3", "Chloroform", "CHCl3", "67-66-3", 119.378, 536.40, 54.72, 0.222, 334.32, -103.14, (24.00, 1.888e-1, -1.841e-4, 6.657e-8, 0), "organic"),
    Component("CCl4", "Carbon Tetrachloride", "CCl4", "56-23-5", 153.823, 556.35, 45.60, 0.193, 349.79, -95.98, (40.92, 2.064e-1, -2.277e-4, 9.020e-8, 0), "organic"),
    Component("THF", "Tetrahydrofuran", "C4H8O", "109-99-9", 72.107, 540.15, 51.90, 0.225, 339.12, -184.10, (-29.35, 4.198e-1, -2.605e-4, 6.297e-8, 0), "organic"),
    Component("NMP", "N-Methyl-2-pyrrolidone", "C5H9NO", "872-50-4", 99.133, 721.80, 45.20, 0.355, 475.15, -262.00, (-15.20, 5.520e-1, -3.420e-4, 8.350e-8, 0), "organic"),
    Component("DMSO", "Dimethyl Sulfoxide", "C2H6OS", "67-68-5", 78.133, 729.00, 56.50, 0.281, 462.15, -203.40, (25.30, 2.165e-1, -1.050e-4, 1.850e-8, 0), "organic"),
    Component("DiethylEther", "Diethyl Ether", "C4H10O", "60-29-7", 74.123, 466.70, 36.40, 0.281, 307.58, -252.20, (16.50, 3.420e-1, -1.890e-4, 4.050e-8, 0), "organic"),
    Component("MethylAcetate", "Methyl Acetate", "C3H6O2", "79-20-9", 74.079, 506.55, 47.50, 0.326, 330.02, -411.50, (15.40, 2.850e-1, -1.650e-4, 3.750e-8, 0), "organic"),
    Component("EthylAcetate", "Ethyl Acetate", "C4H8O2", "141-78-6", 88.106, 523.30, 38.80, 0.366, 350.21, -443.90, (12.80, 3.680e-1, -2.150e-4, 4.950e-8, 0), "organic"),
    Component("Styrene", "Styrene", "C8H8", "100-42-5", 104.152, 636.00, 38.40, 0.297, 418.31, 103.80, (-38.50, 6.250e-1, -4.180e-4, 1.050e-7, 0), "organic"),
    Component("Aniline", "Aniline", "C6H7N", "62-53-3", 93.129, 699.00, 53.10, 0.382, 457.32, 31.09, (-42.80, 5.650e-1, -3.750e-4, 9.450e-8, 0), "organic"),
    Component("Phenol", "Phenol", "C6H6O", "108-95-2", 94.113, 694.25, 61.30, 0.444, 455.02, -96.40, (-35.20, 5.380e-1, -3.580e-4, 9.050e-8, 0), "organic"),
    Component("MEK", "Methyl Ethyl Ketone", "C4H8O", "78-93-3", 72.107, 535.50, 41.50, 0.323, 352.79, -238.50, (9.20, 3.450e-1, -1.920e-4, 4.200e-8, 0), "organic"),

    # additional inorganics
    Component("Cl2", "Chlorine", "Cl2", "7782-50-5", 70.906, 417.15, 77.10, 0.069, 239.11, 0.0, (33.95, 1.230e-2, -1.234e-5, 4.862e-9, 0), "inorganic"),
    Component("F2", "Fluorine", "F2", "7782-41-4", 37.997, 144.41, 52.15, 0.054, 85.03, 0.0, (31.30, 7.400e-3, -5.400e-6, 1.350e-9, 0), "inorganic"),
    Component("N2O", "Nitrous Oxide", "N2O", "10024-97-2", 44.013, 309.57, 72.45, 0.141, 184.67, 82.05, (21.62, 7.281e-2, -5.778e-5, 1.831e-8, 0), "inorganic"),
    Component("COS", "Carbonyl Sulfide", "COS", "463-58-1", 60.075, 378.80, 63.49, 0.099, 222.87, -138.41, (29.17, 6.075e-2, -4.381e-5, 1.218e-8, 0), "inorganic"),
    Component("CS2", "Carbon Disulfide", "CS2", "75-15-0", 76.143, 552.00, 79.00, 0.109, 319.37, 89.70, (29.57, 7.200e-2, -5.580e-5, 1.630e-8, 0), "inorganic"),
    Component("HF", "Hydrogen Fluoride", "HF", "7664-39-3", 20.006, 461.00, 64.80, 0.372, 292.67, -273.30, (29.10, -5.200e-4, 6.200e-6, -2.800e-9, 0), "inorganic"),
    Component("HBr", "Hydrogen Bromide", "HBr", "10035-10-6", 80.912, 363.20, 85.50, 0.070, 206.43, -36.29, (29.14, -1.100e-3, 7.800e-6, -3.500e-9, 0), "inorganic"),
)

# Common names that do not match a table name, formula or id
_COMPONENT_ALIASES: Dict[str, str] = {
    "steam": "H2O",
    "ethanolamine": "MEA",
    "monoethanol amine": "MEA",
    "meg": "EG",
    "mono ethylene glycol": "EG",
    "glycerin": "Glycerol",
    "methyl alcohol": "CH3OH",
    "ethyl alcohol": "C2H5OH",
    "hydrogen chloride gas": "HCl",
}


def _normalize_key(key: str) -> str:
    """Lower-case a lookup key and collapse underscores/hyphens to spaces."""
    return " ".join(key.replace("_", " ").replace("-", " ").lower().split())


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ComponentRegistry:
    """Read-only view over a component table.

    The mapping is exposed through ``MappingProxyType`` so callers cannot
    add, replace or remove entries after construction.
    """

    def __init__(self, components: Tuple[Component, ...] = _COMPONENT_TABLE) -> None:
        by_id: Dict[str, Component] = {}
        for comp in components:
            if comp.id in by_id:
                raise ValueError(f"Duplicate component id '{comp.id}' in reference table")
            by_id[comp.id] = comp
        self._components: Mapping[str, Component] = MappingProxyType(by_id)

        # Lookup indexes for resolve(); first entry wins on duplicate formulas
        index: Dict[str, str] = {}
        for comp in components:
            for key in (comp.formula, comp.name, comp.cas):
                index.setdefault(_normalize_key(key), comp.id)
        for comp in components:
            index[_normalize_key(comp.id)] = comp.id
        for alias, comp_id in _COMPONENT_ALIASES.items():
            if comp_id in by_id:
                index.setdefault(_normalize_key(alias), comp_id)
        self._index: Mapping[str, str] = MappingProxyType(index)

    @property
    def components(self) -> Mapping[str, Component]:
        return self._components

    def __contains__(self, component_id: object) -> bool:
        return component_id in self._components

    def __len__(self) -> int:
        return len(self._components)

    def __iter__(self):
        return iter(self._components.values())

    def get(self, component_id: str) -> Optional[Component]:
        return self._components.get(component_id)

    def search(self, term: str) -> List[Component]:
        """Match name or formula case-insensitively, CAS as a plain substring."""
        lower = term.lower()
        return [
            comp
            for comp in self._components.values()
            if lower in comp.name.lower()
            or lower in comp.formula.lower()
            or term in comp.cas
        ]

    def by_category(self, category: str) -> List[Component]:
        return [c for c in self._components.values() if c.category == category]

    def categories(self) -> List[str]:
        present = {c.category for c in self._components.values()}
        return [cat for cat in CATEGORY_ORDER if cat in present]

    def count_by_category(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for comp in self._components.values():
            counts[comp.category] = counts.get(comp.category, 0) + 1
        return counts

    def resolve(self, key: Optional[str]) -> Optional[str]:
        """Map an id, formula, name, CAS number or alias to a registry id."""
        if not key:
            return None
        if key in self._components:
            return key
        return self._index.get(_normalize_key(key))


def reduced_properties(component: Component, T: float, P_bar: float) -> Tuple[float, float]:
    """Return (Tr, Pr) for temperature in K and pressure in bar."""
    return T / component.critical_temperature, P_bar / component.critical_pressure


@lru_cache(maxsize=1)
def get_registry() -> ComponentRegistry:
    """Process-wide registry built from the static table on first use."""
    registry = ComponentRegistry()
    logger.debug("Component registry loaded with {} components", len(registry))
    return registry
