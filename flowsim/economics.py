"""
Utility, emission and cost KPIs.

All hourly figures share one basis: steam and cooling in GJ/h, electricity in
kW (= kWh per hour), emissions in t/h, and COM in USD/h. The CAPEX term of
COM is the annual capital charge spread over the operating hours.
"""

from __future__ import annotations

import math
from typing import Dict, Iterable, Optional

from . import schemas
from .unit_operations import BlockResult


KW_TO_GJ_PER_H = 3.6 / 1000.0
OPERATORS_PER_POSITION = 4.8  # shifts to staff one position around the clock


def utility_kpis(results: Iterable[BlockResult]) -> Dict[str, float]:
    """Sum block power and split duties into steam (heating) and cooling."""
    heating_kw = 0.0
    cooling_kw = 0.0
    power_kw = 0.0
    for r in results:
        if r.skipped:
            continue
        if r.power_kw:
            power_kw += r.power_kw
        if r.duty_kw and r.duty_kw > 0:
            heating_kw += r.duty_kw
        elif r.duty_kw and r.duty_kw < 0:
            cooling_kw += -r.duty_kw
    return {
        "electricity": power_kw,
        "steam": heating_kw * KW_TO_GJ_PER_H,
        "cooling": cooling_kw * KW_TO_GJ_PER_H,
    }


def co2_emissions(steam: float, electricity: float, config: schemas.EconomicConfig) -> float:
    """Indirect emissions in t/h from steam (GJ/h) and electricity (kW)."""
    return steam * config.steam_emission_factor + electricity * config.grid_emission_factor


def compute_com(kpis: Dict[str, float], config: Optional[schemas.EconomicConfig] = None) -> float:
    """Cost of manufacturing in USD/h; missing KPIs count as zero."""
    config = config or schemas.EconomicConfig()
    return (
        kpis.get("steam", 0.0) * config.steam_price
        + kpis.get("electricity", 0.0) * config.electricity_price
        + kpis.get("CO2_emissions", 0.0) * config.co2_price
        + kpis.get("cooling", 0.0) * config.cooling_price
        + kpis.get("CAPEX_proxy", 0.0) * config.capex_factor / config.operating_hours
    )


def compute_kpis(
    results: Iterable[BlockResult],
    capex: float,
    config: Optional[schemas.EconomicConfig] = None,
) -> Dict[str, float]:
    """steam, cooling, electricity, CO2_emissions, CAPEX_proxy and COM."""
    config = config or schemas.EconomicConfig()
    kpis = utility_kpis(results)
    kpis["CO2_emissions"] = co2_emissions(kpis["steam"], kpis["electricity"], config)
    kpis["CAPEX_proxy"] = capex
    kpis["COM"] = compute_com(kpis, config)
    return kpis


def calculate_total_annual_cost(
    kpis: Dict[str, float],
    equipment_capex: float,
    config: Optional[schemas.EconomicConfig] = None,
) -> Dict[str, float]:
    """
    Total annual cost (TAC) = annualized installed CAPEX + OPEX.

    Installed CAPEX applies the installation (Lang) and contingency factors
    to the purchase cost. OPEX is utilities over the operating hours, labor
    and maintenance.
    """
    config = config or schemas.EconomicConfig()
    installed = equipment_capex * config.installation_factor * (1.0 + config.contingency_factor)
    annualized = installed * config.annualization_factor

    hours = config.operating_hours
    utility = (
        kpis.get("steam", 0.0) * config.steam_price * hours
        + kpis.get("electricity", 0.0) * config.electricity_price * hours
        + kpis.get("cooling", 0.0) * config.cooling_price * hours
    )
    labor = config.operators_per_shift * OPERATORS_PER_POSITION * config.labor_cost
    maintenance = installed * config.maintenance_factor
    opex = utility + labor + maintenance

    return {
        "installed_capex": installed,
        "annualized_capex": annualized,
        "utility_cost": utility,
        "labor_cost": labor,
        "maintenance_cost": maintenance,
        "total_opex": opex,
        "total_annual_cost": annualized + opex,
    }


def calculate_payback_period(installed_capex: float, annual_savings: float) -> float:
    """Simple payback in years; infinite when there are no savings."""
    if annual_savings <= 0:
        return math.inf
    return installed_capex / annual_savings


def calculate_npv(
    installed_capex: float,
    annual_cash_flow: float,
    discount_rate: float = 0.10,
    project_life: int = 20,
) -> float:
    npv = -installed_capex
    for year in range(1, project_life + 1):
        npv += annual_cash_flow / (1.0 + discount_rate) ** year
    return npv


def summarize_economics(
    kpis: Dict[str, float],
    equipment_capex: float,
    config: Optional[schemas.EconomicConfig] = None,
) -> schemas.EconomicSummary:
    """TAC breakdown, plus payback and NPV when an annual revenue is given."""
    config = config or schemas.EconomicConfig()
    tac = calculate_total_annual_cost(kpis, equipment_capex, config)
    if config.annual_revenue is None:
        return schemas.EconomicSummary(**tac)

    cash_flow = config.annual_revenue - tac["total_opex"]
    payback = calculate_payback_period(tac["installed_capex"], cash_flow)
    return schemas.EconomicSummary(
        **tac,
        annual_cash_flow=cash_flow,
        payback_years=None if math.isinf(payback) else payback,
        npv=calculate_npv(tac["installed_capex"], cash_flow, config.discount_rate, config.project_life),
    )
