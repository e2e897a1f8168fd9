"""
CSV export of simulation results.

Stream tables follow the spreadsheet-workbook layout: columns are streams,
rows are properties, with the composition block below a blank row.
"""

from __future__ import annotations

import csv
import io
from typing import List

from . import schemas


def export_stream_table_csv(result: schemas.SimulationResult) -> str:
    """
    Generate a stream summary table in CSV format.

    Columns = streams, rows = properties.
    """
    streams = result.streams
    if not streams:
        return ""

    # Collect all component names across all streams, first-seen order
    all_components: List[str] = []
    seen = set()
    for s in streams:
        for comp in s.composition:
            if comp not in seen:
                seen.add(comp)
                all_components.append(comp)

    output = io.StringIO()
    writer = csv.writer(output)

    # Header rows: Property | Unit | stream1 | stream2 | ...
    writer.writerow(["Property", "Unit"] + [s.id for s in streams])
    _write_row(writer, "Name", "", streams, lambda s: s.name, is_text=True)

    _write_row(writer, "Temperature", "K", streams, lambda s: s.temperature_k)
    _write_row(writer, "Pressure", "bar", streams, lambda s: s.pressure_bar)
    _write_row(writer, "Molar Flow", "kmol/h", streams, lambda s: s.molar_flow_kmol_per_h)
    _write_row(writer, "Mass Flow", "kg/h", streams, lambda s: s.mass_flow_kg_per_h)
    _write_row(writer, "Vapor Fraction", "", streams, lambda s: s.vapor_fraction)
    _write_row(writer, "Phase", "", streams, lambda s: s.phase, is_text=True)
    _write_row(writer, "Enthalpy", "kJ/mol", streams, lambda s: s.enthalpy_kj_per_mol)
    _write_row(writer, "Tear Stream", "", streams, lambda s: "yes" if s.is_tear else "", is_text=True)

    # Blank separator row
    writer.writerow([])
    writer.writerow(["--- Overall Composition (mole frac) ---"])
    for comp in all_components:
        writer.writerow(
            [comp, "mol frac"] + [_fmt(s.composition.get(comp)) for s in streams]
        )

    return output.getvalue()


def export_unit_operations_csv(result: schemas.SimulationResult) -> str:
    """Generate a unit operations summary in CSV format."""
    units = result.units
    if not units:
        return ""

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(["Unit ID", "Name", "Type", "Status", "Duty (kW)", "Power (kW)"])
    for u in units:
        writer.writerow([u.id, u.name, u.type, u.status, _fmt(u.duty_kw), _fmt(u.power_kw)])
    return output.getvalue()


def export_combined_csv(result: schemas.SimulationResult) -> str:
    """Run header, KPIs, stream table and unit operations in one document."""
    parts = [
        f"Flowsheet: {result.flowsheet_name}",
        f"Status: {result.status}",
        f"Converged: {result.converged}",
        f"Iterations: {result.iterations}",
        "",
    ]

    if result.kpis:
        parts.append("=== KPIs ===")
        for name, value in result.kpis.items():
            parts.append(f"{name},{_fmt(value)}")
        parts.append("")

    parts.append("=== STREAM SUMMARY ===")
    parts.append(export_stream_table_csv(result))

    parts.append("=== UNIT OPERATIONS ===")
    parts.append(export_unit_operations_csv(result))

    return "\n".join(parts)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _fmt(v, decimals: int = 6) -> str:
    if v is None:
        return ""
    if isinstance(v, float):
        return f"{v:.{decimals}f}"
    return str(v)


def _write_row(writer, label, unit, streams, getter, is_text=False):
    if is_text:
        values = [getter(s) or "" for s in streams]
    else:
        values = [_fmt(getter(s)) for s in streams]
    writer.writerow([label, unit] + values)
