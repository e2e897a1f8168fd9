"""
Pre-run flowsheet validation.

Checks the graph before anything is solved so structural problems come back
as a list of diagnostics instead of an exception halfway through a run.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, List, Mapping, Optional

from . import schemas, units
from .components import ComponentRegistry, get_registry
from .thermo_engine import StreamState
from .errors import COMPOSITION, CONNECTIVITY, PARAMETER, PHYSICAL, ParameterError
from .unit_operations import (
    COMPOSITION_TOLERANCE,
    UNIT_OP_REGISTRY,
    canonical_unit_type,
    is_annotation,
    param_to_float,
)


def _error(category: str, message: str, block_id: Optional[str] = None,
           stream_id: Optional[str] = None) -> schemas.Diagnostic:
    return schemas.Diagnostic(
        category=category, severity="error", message=message,
        block_id=block_id, stream_id=stream_id,
    )


def _warning(category: str, message: str, block_id: Optional[str] = None,
             stream_id: Optional[str] = None) -> schemas.Diagnostic:
    return schemas.Diagnostic(
        category=category, severity="warning", message=message,
        block_id=block_id, stream_id=stream_id,
    )


def validate_flowsheet(
    payload: schemas.FlowsheetPayload,
    registry: Optional[ComponentRegistry] = None,
) -> List[schemas.Diagnostic]:
    """Return every finding for ``payload``; error severity blocks the run."""
    registry = registry or get_registry()
    graph = payload.graph
    findings: List[schemas.Diagnostic] = []

    blocks = [b for b in graph.blocks if not is_annotation(b.type)]
    if not blocks:
        return [_error(CONNECTIVITY, "Flowsheet is empty - add at least one unit operation")]

    if not payload.components:
        findings.append(_error(PARAMETER, "No components defined - add components to the flowsheet"))

    by_id: Dict[str, schemas.BlockSpec] = {}
    for block in blocks:
        if block.id in by_id:
            findings.append(_error(CONNECTIVITY, f"Duplicate block id '{block.id}'", block_id=block.id))
        by_id[block.id] = block

    annotation_ids = {b.id for b in graph.blocks if is_annotation(b.type)}
    inlets: Dict[str, List[schemas.StreamEdge]] = defaultdict(list)
    outlets: Dict[str, List[schemas.StreamEdge]] = defaultdict(list)
    for edge in graph.streams:
        label = edge.name or edge.id
        dangling = False
        for end, endpoint in (("source", edge.source), ("target", edge.target)):
            if endpoint.block not in by_id and endpoint.block not in annotation_ids:
                findings.append(_warning(
                    CONNECTIVITY,
                    f"Stream '{label}' {end} block '{endpoint.block}' not found; stream ignored",
                    stream_id=edge.id,
                ))
                dangling = True
        if dangling or edge.source.block in annotation_ids or edge.target.block in annotation_ids:
            continue
        outlets[edge.source.block].append(edge)
        inlets[edge.target.block].append(edge)

    for block in blocks:
        findings.extend(_validate_block(block, inlets[block.id], outlets[block.id]))

    if not any(canonical_unit_type(b.type) == "Feed" for b in blocks):
        findings.append(_error(
            CONNECTIVITY, "No Feed blocks found - flowsheet needs at least one input stream"
        ))

    for key in sorted(_composition_keys(graph)):
        if key not in registry:
            findings.append(_warning(
                PARAMETER, f"Component '{key}' is not in the reference table; K = 1.0 will be used"
            ))

    return findings


def _composition_keys(graph: schemas.FlowsheetGraph) -> set:
    keys = set()
    for edge in graph.streams:
        if edge.spec is not None and edge.spec.composition:
            keys.update(edge.spec.composition)
    return keys


def _validate_block(
    block: schemas.BlockSpec,
    inlets: List[schemas.StreamEdge],
    outlets: List[schemas.StreamEdge],
) -> List[schemas.Diagnostic]:
    findings: List[schemas.Diagnostic] = []
    unit_type = canonical_unit_type(block.type)
    label = block.name or block.id
    if unit_type is None:
        return [_error(PARAMETER, f"Unsupported block type '{block.type}'", block_id=block.id)]

    if not inlets and not outlets:
        findings.append(_warning(
            CONNECTIVITY, f"Block '{label}' is not connected to any streams", block_id=block.id
        ))

    if unit_type == "Feed":
        findings.extend(_validate_feed(block, outlets))
        return findings
    if unit_type == "Sink":
        return findings

    if not inlets:
        findings.append(_error(
            CONNECTIVITY, f"{unit_type} '{label}' has no inlet stream", block_id=block.id
        ))

    if unit_type == "Flash" and len(outlets) < 2:
        findings.append(_warning(
            CONNECTIVITY,
            f"Flash '{label}' has fewer than 2 outlet streams (vapor & liquid)",
            block_id=block.id,
        ))
    elif unit_type == "Pump":
        dP = _numeric_param(block, "dP", units.PRESSURE_DIFFERENCE, findings)
        if dP is None or dP <= 0:
            findings.append(_error(
                PARAMETER, f"Pump '{label}' needs a positive pressure rise 'dP'", block_id=block.id
            ))
    elif unit_type in ("Heater", "Cooler"):
        if "outletT" not in block.params:
            findings.append(_error(
                PARAMETER, f"{unit_type} '{label}' needs outlet temperature 'outletT'", block_id=block.id
            ))
    elif unit_type == "Splitter":
        split = _numeric_param(block, "split1", units.DIMENSIONLESS, findings)
        if split is not None and not 0.0 <= split <= 1.0:
            findings.append(_error(
                PARAMETER, f"Splitter '{label}' split fraction {split} is outside [0, 1]", block_id=block.id
            ))
    elif unit_type in ("Absorber", "HeatExchanger"):
        expected = len(UNIT_OP_REGISTRY[unit_type].inlet_ports)
        if len(inlets) < expected:
            findings.append(_warning(
                CONNECTIVITY,
                f"{unit_type} '{label}' has {len(inlets)} of {expected} inlet streams; it will be skipped",
                block_id=block.id,
            ))
    return findings


def _validate_feed(block: schemas.BlockSpec, outlets: List[schemas.StreamEdge]) -> List[schemas.Diagnostic]:
    label = block.name or block.id
    if not outlets:
        return [_error(
            CONNECTIVITY,
            f"Feed '{label}' has no outlet stream - connect to downstream equipment",
            block_id=block.id,
        )]

    findings: List[schemas.Diagnostic] = []
    for edge in outlets:
        name = edge.name or edge.id
        spec = edge.spec or schemas.StreamSpec()
        for attr, what in (("T", "temperature"), ("P", "pressure"), ("flow", "flow rate")):
            if getattr(spec, attr) is None and attr not in block.params:
                findings.append(_error(
                    PARAMETER, f"Stream '{name}' from '{label}' has no {what} specified",
                    block_id=block.id, stream_id=edge.id,
                ))
        if spec.flow is not None and spec.flow.value < 0:
            findings.append(_error(
                PARAMETER, f"Stream '{name}' from '{label}' has a negative flow rate",
                block_id=block.id, stream_id=edge.id,
            ))
        if not spec.composition:
            findings.append(_error(
                COMPOSITION, f"Stream '{name}' from '{label}' has no composition specified",
                block_id=block.id, stream_id=edge.id,
            ))
            continue
        total = sum(spec.composition.values())
        if abs(total - 1.0) > COMPOSITION_TOLERANCE:
            findings.append(_error(
                COMPOSITION, f"Stream '{name}' composition sums to {total:.3f}, must equal 1.0",
                block_id=block.id, stream_id=edge.id,
            ))
        if any(z < 0 for z in spec.composition.values()):
            findings.append(_error(
                COMPOSITION, f"Stream '{name}' has negative mole fractions",
                block_id=block.id, stream_id=edge.id,
            ))
    return findings


def _numeric_param(
    block: schemas.BlockSpec,
    key: str,
    dimension: str,
    findings: List[schemas.Diagnostic],
) -> Optional[float]:
    value = block.params.get(key)
    if value is None:
        return None
    try:
        return param_to_float(value, dimension)
    except ParameterError as exc:
        findings.append(_error(PARAMETER, f"Block '{block.name or block.id}' parameter '{key}': {exc.message}",
                               block_id=block.id))
        return None


def check_port_phases(
    graph: schemas.FlowsheetGraph,
    streams: Mapping[str, StreamState],
) -> List[schemas.Diagnostic]:
    """Warn where a solved stream's phase differs from its declared port phase."""
    findings: List[schemas.Diagnostic] = []
    for block in graph.blocks:
        for port in block.ports:
            if port.phase is None:
                continue
            for edge in graph.streams:
                end = edge.source if port.direction == "out" else edge.target
                if end.block != block.id or end.port not in (port.id, port.name):
                    continue
                state = streams.get(edge.id)
                if state is None or state.phase == port.phase:
                    continue
                findings.append(_warning(
                    PHYSICAL,
                    f"Port '{port.name}' of block '{block.id}' expects phase {port.phase}, "
                    f"stream '{edge.id}' is {state.phase}",
                    block_id=block.id, stream_id=edge.id,
                ))
    return findings
