"""
Run assembler.

Turns a FlowsheetPayload into a SimulationResult: resolves component
references, validates, builds and solves the graph, then assembles the
stream table, unit results, KPIs, equipment costs, constraint violations,
spec results and a run log. Every failure stage returns an ``error`` result
with one fatal diagnostic instead of raising.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from loguru import logger

from . import schemas, units
from .components import ComponentRegistry, get_registry, reduced_properties
from .economics import compute_kpis, summarize_economics
from .equipment_sizing import SizedBlock, calculate_equipment_capex
from .errors import PHYSICAL, SimulationError
from .flash_solver import normalize
from .flowsheet_solver import FlowsheetSolver, SolverResult
from .metrics import MetricContext, evaluate_constraints, evaluate_specs, evaluate_stream_bounds, suggest_fixes
from .thermo_engine import StreamState, ThermoEngine
from .unit_operations import COMPOSITION_TOLERANCE, AbsorberOp, SinkOp, is_annotation
from .validation import check_port_phases, validate_flowsheet


class SimulationClient:
    """In-process flowsheet simulator."""

    def __init__(self, registry: Optional[ComponentRegistry] = None) -> None:
        self.registry = registry or get_registry()

    # ------------------------------------------------------------------
    # Flowsheet simulation
    # ------------------------------------------------------------------

    def simulate_flowsheet(
        self, payload: schemas.FlowsheetPayload
    ) -> schemas.SimulationResult:
        """
        Run a full flowsheet simulation.

        1. Resolve component references and re-key compositions
        2. Validate the graph; error findings stop the run
        3. Build the flowsheet graph and solve
        4. Convert results to the API response schema
        """
        payload = self.resolve_components(payload)

        findings = validate_flowsheet(payload, self.registry)
        if any(f.severity == "error" for f in findings):
            n_errors = sum(1 for f in findings if f.severity == "error")
            logger.warning("Flowsheet '{}' failed validation with {} error(s)", payload.name, n_errors)
            return schemas.SimulationResult(
                flowsheet_name=payload.name,
                status="error",
                diagnostics=findings,
                log=[f"Validation failed: {n_errors} error(s)"]
                + [f"  [{f.category}] {f.message}" for f in findings if f.severity == "error"],
            )

        engine = ThermoEngine(self._component_ids(payload), registry=self.registry)
        solver = FlowsheetSolver(engine)
        try:
            solver.build_from_payload(payload.graph)
            result = solver.solve(
                max_iterations=payload.solver.max_iterations,
                tolerance=payload.solver.tolerance,
            )
        except SimulationError as exc:
            logger.warning("Simulation of '{}' aborted: {}", payload.name, exc.message)
            fatal = schemas.Diagnostic(
                category=exc.category,
                message=exc.message,
                block_id=exc.block_id,
                stream_id=exc.stream_id,
            )
            return self._error_result(payload, findings, fatal)
        except Exception as exc:
            logger.exception("Solver failed")
            fatal = schemas.Diagnostic(category=PHYSICAL, message=f"Solver failed: {exc}")
            return self._error_result(payload, findings, fatal)

        return self._assemble(payload, findings, engine, solver, result)

    @staticmethod
    def _error_result(
        payload: schemas.FlowsheetPayload,
        findings: List[schemas.Diagnostic],
        fatal: schemas.Diagnostic,
    ) -> schemas.SimulationResult:
        where = f" (block '{fatal.block_id}')" if fatal.block_id else ""
        return schemas.SimulationResult(
            flowsheet_name=payload.name,
            status="error",
            diagnostics=[f for f in findings if f.severity != "error"] + [fatal],
            log=[f"SOLVER FAILED{where}: [{fatal.category}] {fatal.message}"],
        )

    # ------------------------------------------------------------------
    # Component resolution
    # ------------------------------------------------------------------

    def resolve_components(self, payload: schemas.FlowsheetPayload) -> schemas.FlowsheetPayload:
        """Return a copy whose composition keys are registry ids where possible."""
        aliases: Dict[str, str] = {}
        for ref in payload.components:
            target = None
            for key in (ref.id, ref.formula, ref.name, ref.cas):
                target = self.registry.resolve(key)
                if target is not None:
                    break
            if target is None:
                continue
            for key in (ref.id, ref.formula, ref.name, ref.cas):
                if key:
                    aliases[key] = target

        resolved = payload.model_copy(deep=True)
        for edge in resolved.graph.streams:
            if edge.spec is not None and edge.spec.composition:
                edge.spec.composition = self._rekey(edge.spec.composition, aliases)
        return resolved

    def _rekey(self, composition: Dict[str, float], aliases: Dict[str, str]) -> Dict[str, float]:
        rekeyed: Dict[str, float] = {}
        for key, frac in composition.items():
            target = aliases.get(key) or self.registry.resolve(key) or key
            rekeyed[target] = rekeyed.get(target, 0.0) + frac
        return rekeyed

    def _component_ids(self, payload: schemas.FlowsheetPayload) -> List[str]:
        ids: List[str] = []
        for ref in payload.components:
            cid = self.registry.resolve(ref.id) or self.registry.resolve(ref.name) or ref.id
            if cid not in ids:
                ids.append(cid)
        for edge in payload.graph.streams:
            if edge.spec is not None and edge.spec.composition:
                ids.extend(k for k in edge.spec.composition if k not in ids)
        return ids

    # ------------------------------------------------------------------
    # Result assembly
    # ------------------------------------------------------------------

    def _assemble(
        self,
        payload: schemas.FlowsheetPayload,
        findings: List[schemas.Diagnostic],
        engine: ThermoEngine,
        solver: FlowsheetSolver,
        result: SolverResult,
    ) -> schemas.SimulationResult:
        economics = payload.economics
        tears = set(result.tear_streams)

        streams: List[schemas.StreamResult] = []
        for i, edge in enumerate(payload.graph.streams):
            state = result.streams.get(edge.id)
            if state is None:
                continue
            streams.append(self._state_to_stream_result(
                edge.id, edge.name or f"S{i + 1}", state, engine, is_tear=edge.id in tears
            ))

        unit_results = self._convert_units(payload, solver, result)

        sized = []
        for uid, block_result in result.unit_results.items():
            inlets, _ = solver.unit_streams(uid)
            sized.append(SizedBlock(uid, solver.unit_types[uid], block_result, inlets))
        equipment, capex = calculate_equipment_capex(sized)

        kpis = compute_kpis(result.unit_results.values(), capex, economics)
        kpis.update(self._capture_kpis(solver, result, economics.solute))

        ctx = MetricContext(
            streams=result.streams,
            unit_results=result.unit_results,
            unit_params={uid: u.params for uid, u in solver.units.items()},
            unit_pressures=self._unit_pressures(solver),
            kpis=kpis,
            feed_streams=list(solver.feed_streams),
        )
        violations = evaluate_constraints(payload.constraints, ctx)
        violations += evaluate_stream_bounds(payload.graph.streams, ctx)
        spec_results = evaluate_specs(payload.specs, ctx)
        suggestions = suggest_fixes(payload.graph.blocks, payload.constraints, violations, spec_results)
        summary = summarize_economics(kpis, capex, economics)

        diagnostics = findings + result.diagnostics + check_port_phases(payload.graph, result.streams)
        log = self._run_log(payload, result, kpis, equipment, capex, summary)
        logger.info(
            "Flowsheet '{}' solved: converged={} iterations={} streams={}",
            payload.name, result.converged, result.iterations, len(streams),
        )

        return schemas.SimulationResult(
            flowsheet_name=payload.name,
            status="success",
            converged=result.converged,
            iterations=result.iterations,
            kpis=kpis,
            streams=streams,
            units=unit_results,
            diagnostics=diagnostics,
            violations=violations,
            spec_results=spec_results,
            equipment=equipment,
            economics=summary,
            suggestions=suggestions,
            tear_streams=result.tear_streams,
            execution_order=result.execution_order,
            mass_balance_error=result.mass_balance_error,
            energy_balance_error=result.energy_balance_error,
            log=log,
        )

    @staticmethod
    def _state_to_stream_result(
        sid: str, name: str, state: StreamState, engine: ThermoEngine, is_tear: bool = False
    ) -> schemas.StreamResult:
        mw = engine.molecular_weight(state.composition)
        return schemas.StreamResult(
            id=sid,
            name=name,
            temperature_k=state.temperature,
            pressure_pa=state.pressure,
            pressure_bar=units.pa_to_bar(state.pressure),
            molar_flow_kmol_per_h=state.molar_flow,
            mass_flow_kg_per_h=state.molar_flow * mw if mw > 0 else None,
            composition=dict(state.composition),
            phase=state.phase,
            enthalpy_kj_per_mol=state.enthalpy,
            vapor_fraction=state.vapor_fraction,
            is_tear=is_tear,
        )

    @staticmethod
    def _convert_units(
        payload: schemas.FlowsheetPayload,
        solver: FlowsheetSolver,
        result: SolverResult,
    ) -> List[schemas.UnitResult]:
        results = []
        for block in payload.graph.blocks:
            unit = solver.units.get(block.id)
            if unit is None or is_annotation(block.type):
                continue
            block_result = result.unit_results.get(block.id)
            if block_result is not None:
                status = "skipped" if block_result.skipped else "ok"
            else:
                status = "ok" if isinstance(unit, SinkOp) else "not-run"
            results.append(schemas.UnitResult(
                id=block.id,
                name=unit.name,
                type=solver.unit_types[block.id],
                status=status,
                duty_kw=block_result.duty_kw if block_result else None,
                power_kw=block_result.power_kw if block_result else None,
                extra=dict(block_result.extra) if block_result else {},
            ))
        return results

    @staticmethod
    def _unit_pressures(solver: FlowsheetSolver) -> Dict[str, Tuple[Optional[float], Optional[float]]]:
        pressures = {}
        for uid in solver.units:
            inlets, outlets = solver.unit_streams(uid)
            p_in = next(iter(inlets.values())).pressure if inlets else None
            p_out = next(iter(outlets.values())).pressure if outlets else None
            pressures[uid] = (p_in, p_out)
        return pressures

    def _capture_kpis(self, solver: FlowsheetSolver, result: SolverResult, solute: str) -> Dict[str, float]:
        """Solute absorbed (t/h) and its fraction of the solute fed."""
        fed = sum(s.molar_flow * s.composition.get(solute, 0.0) for s in solver.feed_streams.values())
        absorbed = 0.0
        ran = False
        for uid, unit in solver.units.items():
            block_result = result.unit_results.get(uid)
            if isinstance(unit, AbsorberOp) and block_result is not None and not block_result.skipped:
                if block_result.extra.get("solute") == solute:
                    absorbed += block_result.extra.get("absorbed_kmol_per_h", 0.0)
                    ran = True
        if not ran or fed <= 0:
            return {}
        component = self.registry.get(solute)
        mw = component.molecular_weight if component is not None else 0.0
        return {
            "CO2_captured": absorbed * mw / 1000.0,
            "capture_efficiency": absorbed / fed,
        }

    @staticmethod
    def _run_log(
        payload: schemas.FlowsheetPayload,
        result: SolverResult,
        kpis: Dict[str, float],
        equipment: List[schemas.EquipmentCost],
        capex: float,
        summary: schemas.EconomicSummary,
    ) -> List[str]:
        log = [
            f"Flowsheet '{payload.name}': {len(result.execution_order)} blocks executed",
            f"Execution order: {' -> '.join(result.execution_order)}",
        ]
        if result.tear_streams:
            log.append(f"Tear streams: {', '.join(result.tear_streams)}")
        if result.tears_converged:
            log.append(f"Converged in {result.iterations} iteration(s)")
        else:
            log.append(f"Did not converge after {result.iterations} iteration(s)")
        log.append("")
        log.append("KPIs:")
        log.append(f"  Steam:       {kpis['steam']:.4f} GJ/h")
        log.append(f"  Cooling:     {kpis['cooling']:.4f} GJ/h")
        log.append(f"  Electricity: {kpis['electricity']:.4f} kW")
        log.append(f"  CO2:         {kpis['CO2_emissions']:.4f} t/h")
        log.append(f"  COM:         {kpis['COM']:.2f} USD/h")
        if equipment:
            log.append("")
            log.append("Equipment Sizing & CAPEX:")
            for e in equipment:
                log.append(f"  {e.block_id}: {e.sizing_param} = {e.value:.2f} {e.unit}, Cost = ${e.cost_usd:.0f}")
            log.append(f"  Total Equipment CAPEX: ${capex:.0f}")
        log.append("")
        log.append(f"Total Annual Cost: ${summary.total_annual_cost:.0f}/yr (OPEX ${summary.total_opex:.0f}/yr)")
        if summary.payback_years is not None:
            log.append(f"  Payback: {summary.payback_years:.1f} years, NPV: ${summary.npv:.0f}")
        return log

    # ------------------------------------------------------------------
    # Single-stream property calculation
    # ------------------------------------------------------------------

    def _request_state(
        self, request: schemas.PropertyRequest
    ) -> Tuple[ThermoEngine, Dict[str, float], float, float, List[str]]:
        warnings: List[str] = []
        composition = self._rekey(request.composition, {})
        total = sum(composition.values())
        if total <= 0:
            raise SimulationError("All composition fractions are zero")
        if abs(total - 1.0) > COMPOSITION_TOLERANCE:
            warnings.append(f"Composition sums to {total:.4f}; normalised to 1.0")
        composition = normalize(composition)
        unknown = [c for c in composition if c not in self.registry]
        if unknown:
            warnings.append(f"Components not in reference table (K = 1.0): {', '.join(unknown)}")

        T = units.to_kelvin(request.temperature.value, request.temperature.unit)
        P = units.to_pascal(request.pressure.value, request.pressure.unit)
        if T <= 0 or P <= 0:
            raise SimulationError("Temperature and pressure must be positive")
        engine = ThermoEngine(list(composition), registry=self.registry)
        return engine, composition, T, P, warnings

    def calculate_properties(
        self, request: schemas.PropertyRequest
    ) -> schemas.PropertyResult:
        """Calculate thermodynamic properties for a single stream."""
        engine, composition, T, P, warnings = self._request_state(request)
        phase, vf, converged = engine.equilibrium(composition, T, P)
        if request.phase is not None:
            phase = request.phase
        if not converged:
            warnings.append("Phase equilibrium did not converge; vapor fraction is approximate")

        reduced = {}
        for cid in composition:
            comp = self.registry.get(cid)
            if comp is not None:
                Tr, Pr = reduced_properties(comp, T, units.pa_to_bar(P))
                reduced[cid] = {"Tr": Tr, "Pr": Pr}

        props = {
            "temperature_k": T,
            "pressure_pa": P,
            "pressure_bar": units.pa_to_bar(P),
            "phase": phase,
            "vapor_fraction": vf,
            "enthalpy_kj_per_mol": engine.mixture_enthalpy(composition, T, P),
            "heat_capacity_j_per_mol_k": engine.mixture_heat_capacity(composition, T),
            "molecular_weight": engine.molecular_weight(composition),
            "density_kg_per_m3": engine.density(composition, T, P, "V" if phase == "V" else "L"),
            "k_values": engine.k_values(composition, T, P),
            "reduced_properties": reduced,
            "composition": composition,
        }
        return schemas.PropertyResult(properties=props, warnings=warnings)

    # ------------------------------------------------------------------
    # Flash calculation
    # ------------------------------------------------------------------

    def flash(self, request: schemas.FlashRequest) -> schemas.FlashResponse:
        """Isothermal flash of the request composition at its T and P."""
        engine, composition, T, P, _ = self._request_state(request)
        res = engine.pt_flash(composition, T, P)
        return schemas.FlashResponse(
            vapor_fraction=res.vapor_fraction,
            converged=res.converged,
            iterations=res.iterations,
            phase=res.phase,
            k_values=res.k_values,
            liquid=res.liquid,
            vapor=res.vapor,
        )
