"""
Constraint, stream-bound and product-spec evaluation on a solved flowsheet.

Metric values are read from the solved state in kernel units: stream T in K,
P in Pa, flow in kmol/h; unit duty and power in kW, dP in Pa.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from . import schemas, units
from .thermo_engine import StreamState
from .unit_operations import BlockResult, param_to_float


@dataclass
class MetricContext:
    """Solved values that metric references can point at."""
    streams: Dict[str, StreamState] = field(default_factory=dict)
    unit_results: Dict[str, BlockResult] = field(default_factory=dict)
    unit_params: Dict[str, Mapping[str, schemas.ParamValue]] = field(default_factory=dict)
    # unit id -> (first inlet pressure, first outlet pressure) in Pa
    unit_pressures: Dict[str, Tuple[Optional[float], Optional[float]]] = field(default_factory=dict)
    kpis: Dict[str, float] = field(default_factory=dict)
    feed_streams: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Metric references
# ---------------------------------------------------------------------------


def evaluate_metric(ref: schemas.MetricRef, ctx: MetricContext) -> Optional[float]:
    """Value of ``ref`` in the solved flowsheet, or None if unavailable."""
    if isinstance(ref, schemas.StreamMetricRef):
        state = ctx.streams.get(ref.stream_id)
        if state is None:
            return None
        if ref.metric == "T":
            return state.temperature
        if ref.metric == "P":
            return state.pressure
        if ref.metric == "flow":
            return state.molar_flow
        return state.vapor_fraction

    if isinstance(ref, schemas.UnitMetricRef):
        result = ctx.unit_results.get(ref.block_id)
        params = ctx.unit_params.get(ref.block_id, {})
        if ref.metric == "duty":
            return result.duty_kw if result is not None else None
        if ref.metric == "power":
            return result.power_kw if result is not None else None
        if ref.metric == "stages":
            value = params.get("stages")
            return param_to_float(value) if value is not None else None
        # dP: the block's own parameter, else the solved inlet-outlet drop
        value = params.get("dP")
        if value is not None:
            return param_to_float(value, units.PRESSURE_DIFFERENCE)
        p_in, p_out = ctx.unit_pressures.get(ref.block_id, (None, None))
        if p_in is None or p_out is None:
            return None
        return p_in - p_out

    if isinstance(ref, schemas.KpiMetricRef):
        return ctx.kpis.get(ref.metric)

    raise TypeError(f"Unsupported metric reference {ref!r}")


def _describe(ref: schemas.MetricRef) -> str:
    if isinstance(ref, schemas.StreamMetricRef):
        return f"stream '{ref.stream_id}' {ref.metric}"
    if isinstance(ref, schemas.UnitMetricRef):
        return f"unit '{ref.block_id}' {ref.metric}"
    return f"KPI '{ref.metric}'"


# ---------------------------------------------------------------------------
# Constraints
# ---------------------------------------------------------------------------


def evaluate_constraints(
    constraints: List[schemas.Constraint], ctx: MetricContext
) -> List[schemas.ConstraintViolation]:
    violations: List[schemas.ConstraintViolation] = []
    for c in constraints:
        value = evaluate_metric(c.ref, ctx)
        if value is None:
            continue
        what = _describe(c.ref)
        message = None
        if isinstance(c, schemas.MaxConstraint) and value > c.limit:
            message = f"{what} = {value:.4g} exceeds maximum {c.limit:.4g}"
        elif isinstance(c, schemas.MinConstraint) and value < c.limit:
            message = f"{what} = {value:.4g} is below minimum {c.limit:.4g}"
        elif isinstance(c, schemas.RangeConstraint) and not c.min <= value <= c.max:
            message = f"{what} = {value:.4g} is outside [{c.min:.4g}, {c.max:.4g}]"
        if message is not None:
            violations.append(schemas.ConstraintViolation(
                constraint_id=c.id, value=value, message=message, hard=c.hard,
            ))
    return violations


_BOUND_FIELDS = (
    ("T", units.TEMPERATURE, "temperature"),
    ("P", units.PRESSURE, "pressure"),
    ("flow", units.MOLAR_FLOW, "flow"),
)


def evaluate_stream_bounds(
    edges: List[schemas.StreamEdge], ctx: MetricContext
) -> List[schemas.ConstraintViolation]:
    """Soft violations for solved streams outside their declared bounds."""
    violations: List[schemas.ConstraintViolation] = []
    for edge in edges:
        state = ctx.streams.get(edge.id)
        if edge.bounds is None or state is None:
            continue
        values = {"T": state.temperature, "P": state.pressure, "flow": state.molar_flow}
        for attr, dimension, label in _BOUND_FIELDS:
            bounds = getattr(edge.bounds, attr)
            if bounds is None:
                continue
            lo = units.to_internal(bounds.min.value, bounds.min.unit, dimension)
            hi = units.to_internal(bounds.max.value, bounds.max.unit, dimension)
            value = values[attr]
            if not lo <= value <= hi:
                violations.append(schemas.ConstraintViolation(
                    constraint_id=f"{edge.id}.{attr}",
                    value=value,
                    message=f"Stream '{edge.name or edge.id}' {label} {value:.4g} is outside [{lo:.4g}, {hi:.4g}]",
                    hard=False,
                ))
    return violations


# ---------------------------------------------------------------------------
# Product specifications
# ---------------------------------------------------------------------------


def _component_flow(state: Optional[StreamState], component: str) -> Optional[float]:
    if state is None:
        return None
    return state.molar_flow * state.composition.get(component, 0.0)


def evaluate_specs(
    specs: List[schemas.ProductSpec], ctx: MetricContext
) -> List[schemas.SpecResult]:
    results: List[schemas.SpecResult] = []
    for spec in specs:
        value: Optional[float] = None
        if isinstance(spec, schemas.PuritySpec):
            state = ctx.streams.get(spec.stream_id)
            if state is not None:
                value = state.composition.get(spec.component, 0.0)
            target = spec.target
        elif isinstance(spec, schemas.RecoverySpec):
            fed = _component_flow(ctx.streams.get(spec.feed_stream_id), spec.component)
            recovered = _component_flow(ctx.streams.get(spec.product_stream_id), spec.component)
            if fed and recovered is not None:
                value = recovered / fed
            target = spec.target
        elif isinstance(spec, schemas.CaptureSpec):
            fed = sum(
                _component_flow(ctx.streams.get(sid), spec.component) or 0.0
                for sid in ctx.feed_streams
            )
            vented = _component_flow(ctx.streams.get(spec.vent_stream_id), spec.component)
            if fed > 0 and vented is not None:
                value = 1.0 - vented / fed
            target = spec.target_removal
        else:
            raise TypeError(f"Unsupported product spec {spec!r}")

        results.append(schemas.SpecResult(
            spec_id=spec.id,
            type=spec.type,
            value=value,
            target=target,
            met=value is not None and value >= target,
        ))
    return results


# ---------------------------------------------------------------------------
# Fix suggestions
# ---------------------------------------------------------------------------

MAX_SUGGESTIONS = 2
STRIPPER_PRESSURE_STEP = 1.2
STRIPPER_DEFAULT_PRESSURE_BAR = 2.0
STRIPPER_MAX_PRESSURE_BAR = 5.0
ABSORBER_STAGE_STEP = 5
ABSORBER_DEFAULT_STAGES = 20
ABSORBER_MAX_STAGES = 50


def _first_block(blocks: List[schemas.BlockSpec], block_type: str) -> Optional[schemas.BlockSpec]:
    return next((b for b in blocks if b.type == block_type), None)


def _stripper_pressure_fix(stripper: schemas.BlockSpec) -> schemas.FixSuggestion:
    current = stripper.params.get("P")
    if isinstance(current, schemas.QuantityParam):
        bar = units.pa_to_bar(param_to_float(current, units.PRESSURE)) * STRIPPER_PRESSURE_STEP
    else:
        bar = STRIPPER_DEFAULT_PRESSURE_BAR
    bar = min(bar, STRIPPER_MAX_PRESSURE_BAR)
    return schemas.FixSuggestion(
        block_id=stripper.id,
        param="P",
        value=schemas.QuantityParam(q=schemas.Quantity(value=bar, unit="bar")),
        reason=f"Raise stripper '{stripper.id}' pressure to {bar:.2f} bar to cut reboiler steam",
    )


def _absorber_stages_fix(absorber: schemas.BlockSpec) -> schemas.FixSuggestion:
    current = absorber.params.get("stages")
    if isinstance(current, schemas.IntParam):
        stages = current.n + ABSORBER_STAGE_STEP
    elif isinstance(current, schemas.NumberParam):
        stages = int(math.floor(current.x)) + ABSORBER_STAGE_STEP
    else:
        stages = ABSORBER_DEFAULT_STAGES
    stages = min(stages, ABSORBER_MAX_STAGES)
    return schemas.FixSuggestion(
        block_id=absorber.id,
        param="stages",
        value=schemas.IntParam(n=stages),
        reason=f"Add stages to absorber '{absorber.id}' ({stages}) to meet the product specs",
    )


def suggest_fixes(
    blocks: List[schemas.BlockSpec],
    constraints: List[schemas.Constraint],
    violations: List[schemas.ConstraintViolation],
    spec_results: List[schemas.SpecResult],
) -> List[schemas.FixSuggestion]:
    """
    Rule-based parameter changes for a run that missed its targets.

    A violated steam KPI constraint suggests a higher stripper pressure; an
    unmet product spec suggests more absorber stages. At most two
    suggestions are returned.
    """
    suggestions: List[schemas.FixSuggestion] = []

    violated = {v.constraint_id for v in violations}
    steam_violated = any(
        c.id in violated and isinstance(c.ref, schemas.KpiMetricRef) and c.ref.metric == "steam"
        for c in constraints
    )
    stripper = _first_block(blocks, "Stripper")
    if steam_violated and stripper is not None:
        suggestions.append(_stripper_pressure_fix(stripper))

    absorber = _first_block(blocks, "Absorber")
    if any(not r.met for r in spec_results) and absorber is not None:
        suggestions.append(_absorber_stages_fix(absorber))

    return suggestions[:MAX_SUGGESTIONS]
