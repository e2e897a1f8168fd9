"""
Equipment sizing and purchase-cost estimates.

Preliminary sizing from solved block results (duty, power, flow) with
Guthrie/Turton-style power-law cost correlations:

  heat exchanger  32800 (A / 100 m²)^0.65
  pump            9840 (P / 10 kW)^0.55
  vessel          17640 (V / 1 m³)^0.62
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger

from . import schemas
from .thermo_engine import StreamState
from .unit_operations import BlockResult


U_DEFAULT = 500.0  # W/(m² K), shell-and-tube, liquid both sides
MIN_LMTD = 5.0  # K
CROSS_LMTD = 10.0  # K, used when the temperature profile crosses
MIN_HX_AREA = 1.0  # m²
MIN_PUMP_POWER = 0.1  # kW
MIN_VESSEL_VOLUME = 0.1  # m³

STEAM_TEMPERATURE = 453.0  # K, condensing
COOLING_WATER_IN = 298.0  # K
COOLING_WATER_OUT = 308.0  # K

FLASH_MOLECULAR_WEIGHT = 50.0  # kg/kmol
FLASH_LIQUID_DENSITY = 800.0  # kg/m³
FLASH_RESIDENCE_TIME_H = 5.0 / 60.0
FLASH_LIQUID_HOLDUP = 0.5

COLUMN_DIAMETER = 2.0  # m
COLUMN_HEIGHT = 10.0  # m
COLUMN_INTERNALS_FACTOR = 3.0


@dataclass
class SizedBlock:
    """What the sizing routines need to know about one solved block."""
    block_id: str
    block_type: str
    result: BlockResult
    inlets: Dict[str, StreamState] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Individual correlations
# ---------------------------------------------------------------------------


def lmtd(dT1: float, dT2: float) -> float:
    """Counter-current log-mean temperature difference with practical floors."""
    if abs(dT1 - dT2) < 0.1:
        value = (dT1 + dT2) / 2.0
    elif dT1 <= 0 or dT2 <= 0:
        value = CROSS_LMTD
    else:
        value = (dT1 - dT2) / math.log(dT1 / dT2)
    return max(value, MIN_LMTD)


def size_heat_exchanger(
    duty_kw: float,
    Th_in: float,
    Th_out: float,
    Tc_in: float,
    Tc_out: float,
    U_assumed: float = U_DEFAULT,
) -> Dict[str, float]:
    """
    Size a shell-and-tube heat exchanger.

    Returns:
      - area_m2: required heat transfer area (at least 1 m²)
      - lmtd_k: log-mean temperature difference
      - duty_kw: absolute heat duty
      - cost_usd: purchase cost
    """
    Q = abs(duty_kw) * 1000.0  # W
    dT = lmtd(Th_in - Tc_out, Th_out - Tc_in)
    area = max(Q / (U_assumed * dT), MIN_HX_AREA)
    return {
        "area_m2": area,
        "U_assumed_w_per_m2k": U_assumed,
        "lmtd_k": dT,
        "duty_kw": abs(duty_kw),
        "cost_usd": 32800.0 * (area / 100.0) ** 0.65,
    }


def size_utility_exchanger(duty_kw: float, T_in: float, T_out: float) -> Dict[str, float]:
    """Heater against condensing steam, cooler against cooling water."""
    if duty_kw > 0:
        return size_heat_exchanger(duty_kw, STEAM_TEMPERATURE, STEAM_TEMPERATURE, T_in, T_out)
    return size_heat_exchanger(duty_kw, T_in, T_out, COOLING_WATER_IN, COOLING_WATER_OUT)


def size_pump(
    power_kw: float,
    inlet: Optional[StreamState] = None,
    outlet: Optional[StreamState] = None,
    density: float = 1000.0,
) -> Dict[str, float]:
    """
    Size a centrifugal pump from shaft power.

    Returns:
      - power_kw: sizing power (at least 0.1 kW)
      - head_m: differential head, when inlet and outlet are known
      - cost_usd: purchase cost
    """
    P = max(abs(power_kw), MIN_PUMP_POWER)
    sizing = {"power_kw": P, "cost_usd": 9840.0 * (P / 10.0) ** 0.55}
    if inlet is not None and outlet is not None:
        sizing["head_m"] = (outlet.pressure - inlet.pressure) / (density * 9.81)
    return sizing


def size_vessel(volume_m3: float) -> Dict[str, float]:
    V = max(abs(volume_m3), MIN_VESSEL_VOLUME)
    return {"volume_m3": V, "cost_usd": 17640.0 * V ** 0.62}


def estimate_flash_volume(liquid_flow_m3_per_h: float) -> float:
    """Drum volume for 5 min liquid residence at 50 % holdup."""
    volume = liquid_flow_m3_per_h * FLASH_RESIDENCE_TIME_H / FLASH_LIQUID_HOLDUP
    return max(volume, MIN_VESSEL_VOLUME)


def size_column() -> Dict[str, float]:
    """Fixed 2 m x 10 m shell; internals triple the vessel cost."""
    volume = math.pi * (COLUMN_DIAMETER / 2.0) ** 2 * COLUMN_HEIGHT
    vessel = size_vessel(volume)
    return {
        "volume_m3": vessel["volume_m3"],
        "diameter_m": COLUMN_DIAMETER,
        "height_m": COLUMN_HEIGHT,
        "cost_usd": vessel["cost_usd"] * COLUMN_INTERNALS_FACTOR,
    }


# ---------------------------------------------------------------------------
# Flowsheet CAPEX
# ---------------------------------------------------------------------------


def _first(states: Dict[str, StreamState]) -> Optional[StreamState]:
    return next(iter(states.values()), None)


def size_block(block: SizedBlock) -> Optional[schemas.EquipmentCost]:
    """Equipment cost for one block, or None when the block is not sized."""
    result = block.result
    if result.skipped:
        return None
    inlet = _first(block.inlets)
    outlet = _first(result.outlets)

    if block.block_type in ("Heater", "Cooler"):
        if not result.duty_kw or inlet is None or outlet is None:
            return None
        s = size_utility_exchanger(result.duty_kw, inlet.temperature, outlet.temperature)
        return schemas.EquipmentCost(
            block_id=block.block_id, block_type=block.block_type,
            sizing_param="area", value=s["area_m2"], unit="m²", cost_usd=s["cost_usd"],
        )

    if block.block_type == "HeatExchanger":
        hot_in, cold_in = block.inlets.get("hot-in"), block.inlets.get("cold-in")
        hot_out, cold_out = result.outlets.get("hot-out"), result.outlets.get("cold-out")
        duty = result.extra.get("exchanged_duty_kw")
        if None in (hot_in, cold_in, hot_out, cold_out) or not duty:
            return None
        s = size_heat_exchanger(
            duty, hot_in.temperature, hot_out.temperature, cold_in.temperature, cold_out.temperature
        )
        return schemas.EquipmentCost(
            block_id=block.block_id, block_type=block.block_type,
            sizing_param="area", value=s["area_m2"], unit="m²", cost_usd=s["cost_usd"],
        )

    if block.block_type == "Pump":
        if not result.power_kw:
            return None
        s = size_pump(result.power_kw, inlet, outlet)
        return schemas.EquipmentCost(
            block_id=block.block_id, block_type=block.block_type,
            sizing_param="power", value=s["power_kw"], unit="kW", cost_usd=s["cost_usd"],
        )

    if block.block_type == "Flash":
        if inlet is None:
            return None
        vol_flow = inlet.molar_flow * FLASH_MOLECULAR_WEIGHT / FLASH_LIQUID_DENSITY  # m³/h
        s = size_vessel(estimate_flash_volume(vol_flow))
        return schemas.EquipmentCost(
            block_id=block.block_id, block_type=block.block_type,
            sizing_param="volume", value=s["volume_m3"], unit="m³", cost_usd=s["cost_usd"],
        )

    if block.block_type in ("Absorber", "Stripper"):
        if inlet is None:
            return None
        s = size_column()
        return schemas.EquipmentCost(
            block_id=block.block_id, block_type=block.block_type,
            sizing_param="volume", value=s["volume_m3"], unit="m³", cost_usd=s["cost_usd"],
        )

    return None


def calculate_equipment_capex(
    blocks: Iterable[SizedBlock],
) -> Tuple[List[schemas.EquipmentCost], float]:
    """Return (equipment list, total purchase cost in USD)."""
    equipment: List[schemas.EquipmentCost] = []
    for block in blocks:
        cost = size_block(block)
        if cost is not None:
            equipment.append(cost)
    total = sum(e.cost_usd for e in equipment)
    logger.debug("Equipment CAPEX: {} items, ${:.0f}", len(equipment), total)
    return equipment, total
