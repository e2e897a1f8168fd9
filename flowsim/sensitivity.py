"""
Sensitivity analysis: parameter sweep runner.

Sweeps a single block parameter (or stream-spec field) across N values,
re-solves the flowsheet at each point, and collects stream properties and
KPIs for charting.
"""

from __future__ import annotations

import copy
from typing import Dict, List, Optional

from loguru import logger

from . import schemas
from .simulation_client import SimulationClient


_STREAM_SPEC_FIELDS = ("T", "P", "flow")


def _apply_value(
    payload: schemas.FlowsheetPayload,
    target_id: str,
    param: str,
    value: float,
    unit: Optional[str],
) -> bool:
    """Write the swept value into ``payload``; False if the target is unknown."""
    for block in payload.graph.blocks:
        if block.id == target_id:
            if unit:
                block.params[param] = schemas.QuantityParam(q=schemas.Quantity(value=value, unit=unit))
            else:
                block.params[param] = schemas.NumberParam(x=value)
            return True

    # Maybe the variable is on a stream specification
    if param not in _STREAM_SPEC_FIELDS:
        return False
    for edge in payload.graph.streams:
        if edge.id == target_id:
            if edge.spec is None:
                edge.spec = schemas.StreamSpec()
            current = getattr(edge.spec, param)
            q_unit = unit or (current.unit if current is not None else None)
            if q_unit is None:
                return False
            setattr(edge.spec, param, schemas.Quantity(value=value, unit=q_unit))
            return True
    return False


def run_sensitivity(
    request: schemas.SensitivityRequest,
    client: Optional[SimulationClient] = None,
) -> schemas.SensitivityResult:
    """
    Sweep a parameter and collect output properties.

    The variable is applied to `variable_block_id`.params[`variable_param`]
    across `n_points` linearly spaced values between `variable_min` and
    `variable_max`. At each point the flowsheet is re-solved;
    `output_properties` are read from `output_stream_id` (stream fields or
    component mole fractions) and `output_kpis` from the KPI mapping.
    """
    warnings: List[str] = []
    client = client or SimulationClient()

    n = max(request.n_points, 2)
    param_values = [
        request.variable_min + i * (request.variable_max - request.variable_min) / (n - 1)
        for i in range(n)
    ]

    # Prepare results dict: output name -> list of values
    outputs = list(request.output_properties) + list(request.output_kpis)
    results: Dict[str, List[Optional[float]]] = {name: [] for name in outputs}

    def _skip_point() -> None:
        for name in outputs:
            results[name].append(None)

    for point, value in enumerate(param_values):
        payload = copy.deepcopy(request.flowsheet)

        if not _apply_value(payload, request.variable_block_id, request.variable_param,
                            value, request.variable_unit):
            warnings.append(
                f"Block/stream '{request.variable_block_id}' with parameter "
                f"'{request.variable_param}' not found in flowsheet"
            )
            _skip_point()
            continue

        run = client.simulate_flowsheet(payload)
        if run.status == "error":
            reason = run.errors[-1].message if run.errors else "unknown error"
            warnings.append(f"Point {point} ({request.variable_param}={value:.4g}) failed: {reason}")
            _skip_point()
            continue
        if not run.converged:
            warnings.append(f"Point {point} ({request.variable_param}={value:.4g}) did not converge")

        target_stream = None
        if request.output_stream_id is not None:
            target_stream = next(
                (s for s in run.streams if s.id == request.output_stream_id), None
            )
            if target_stream is None and request.output_properties:
                warnings.append(f"Output stream '{request.output_stream_id}' not found at point {point}")

        for prop in request.output_properties:
            found = None
            if target_stream is not None:
                found = getattr(target_stream, prop, None)
                if found is None:
                    found = target_stream.composition.get(prop)
            results[prop].append(found if isinstance(found, (int, float)) else None)

        for kpi in request.output_kpis:
            results[kpi].append(run.kpis.get(kpi))

    logger.info(
        "Sensitivity sweep of {}.{}: {} points, {} warnings",
        request.variable_block_id, request.variable_param, n, len(warnings),
    )
    return schemas.SensitivityResult(
        parameter_values=param_values,
        results=results,
        warnings=warnings,
    )
