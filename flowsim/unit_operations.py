"""
Unit operation models.

Each unit operation takes its named inlet StreamStates and typed parameters,
calls back into the ThermoEngine for properties, and returns a BlockResult
with the outlet StreamStates plus duty / power / diagnostics. Inlets are
never mutated.

Absorber, Stripper and HeatExchanger are fixed-efficiency black boxes; their
constants are module-level and deliberately not stage-wise models.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from loguru import logger

from . import schemas, units
from .errors import (
    CONVERGENCE,
    PHYSICAL,
    CompositionError,
    ConnectivityError,
    ParameterError,
    PhysicalError,
)
from .flash_solver import PHASE_BOUNDARY, TRACE_FLOW, flash_composition, normalize, rachford_rice
from .thermo_engine import LIQUID, VAPOR, StreamState, ThermoEngine


COMPOSITION_TOLERANCE = 0.01
KJ_PER_MOL_KMOL_PER_H_TO_KW = 1000.0 / 3600.0

# Mixer energy balance
MIXER_MAX_ITERATIONS = 20
MIXER_TOLERANCE = 0.001  # kJ/mol
MIXER_DT = 0.1  # K, finite-difference step
MIXER_T_BOUNDS = (100.0, 1000.0)  # K

DEFAULT_SPLIT_FRACTION = 0.5
DEFAULT_PUMP_EFFICIENCY = 0.75
DEFAULT_MOLECULAR_WEIGHT = 30.0  # g/mol, used when no component is known

ABSORBER_CAPTURE_EFFICIENCY = 0.90
ABSORBER_GAS_TEMPERATURE_RISE = 5.0  # K
ABSORBER_LIQUID_TEMPERATURE_RISE = 10.0  # K
ABSORBER_GAS_PRESSURE_DROP = 5000.0  # Pa (0.05 bar)

STRIPPER_EFFICIENCY = 0.95
STRIPPER_OVERHEAD_PURITY = 0.995
STRIPPER_OVERHEAD_TEMPERATURE_RISE = 80.0  # K
STRIPPER_BOTTOMS_TEMPERATURE_RISE = 70.0  # K

HX_EFFECTIVENESS = 0.80
HX_ENTHALPY_OFFSET = 30.0  # kJ/mol

DEFAULT_SOLUTE = "CO2"
WATER = "H2O"


# ---------------------------------------------------------------------------
# Results and parameter interpretation
# ---------------------------------------------------------------------------


@dataclass
class BlockResult:
    """Outcome of one block evaluation."""

    outlets: Dict[str, StreamState] = field(default_factory=dict)
    duty_kw: Optional[float] = None
    power_kw: Optional[float] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    warnings: List[schemas.Diagnostic] = field(default_factory=list)
    skipped: bool = False


def param_to_float(value: schemas.ParamValue, dimension: str = units.DIMENSIONLESS) -> float:
    """Interpret a tagged parameter value as a number in internal units.

    Quantities are converted from their unit; plain numbers and integers are
    taken to be in internal units already.
    """
    if isinstance(value, schemas.QuantityParam):
        return units.to_internal(value.q.value, value.q.unit, dimension)
    if isinstance(value, schemas.NumberParam):
        return value.x
    if isinstance(value, schemas.IntParam):
        return float(value.n)
    if isinstance(value, schemas.StringParam):
        return _parse_float(value.s)
    if isinstance(value, schemas.EnumParam):
        return _parse_float(value.e)
    if isinstance(value, schemas.BooleanParam):
        raise ParameterError("Boolean parameter cannot be used as a number")
    raise TypeError(f"Unsupported parameter value {value!r}")


def param_to_text(value: schemas.ParamValue) -> str:
    if isinstance(value, schemas.StringParam):
        return value.s
    if isinstance(value, schemas.EnumParam):
        return value.e
    if isinstance(value, schemas.BooleanParam):
        return "true" if value.b else "false"
    if isinstance(value, schemas.IntParam):
        return str(value.n)
    if isinstance(value, schemas.NumberParam):
        return repr(value.x)
    if isinstance(value, schemas.QuantityParam):
        return f"{value.q.value} {value.q.unit}"
    raise TypeError(f"Unsupported parameter value {value!r}")


def _parse_float(text: str) -> float:
    try:
        return float(text)
    except ValueError:
        raise ParameterError(f"Expected a number, got '{text}'") from None


def total_flows(stream: StreamState) -> Dict[str, float]:
    """Component molar flows (kmol/h) of a stream."""
    return {c: z * stream.molar_flow for c, z in stream.composition.items()}


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------


class UnitOpBase(ABC):
    """Abstract base for all unit operations."""

    inlet_ports: Tuple[str, ...] = ("in",)
    outlet_ports: Tuple[str, ...] = ("out",)
    # Simplified models warn and skip on missing inlets instead of failing
    tolerates_missing_inlets = False
    # Streams beyond the named inlet ports get synthetic port names
    accepts_extra_inlets = False

    def __init__(
        self,
        id: str,
        name: str,
        params: Mapping[str, schemas.ParamValue],
        engine: ThermoEngine,
    ) -> None:
        self.id = id
        self.name = name
        self.params = dict(params)
        self.engine = engine
        # Outlet ports with a downstream edge; empty means "not known"
        self.connected_outlets: Set[str] = set()

    @property
    def type_name(self) -> str:
        cls = type(self)
        return next((key for key, op in UNIT_OP_REGISTRY.items() if op is cls), cls.__name__)

    @abstractmethod
    def calculate(self, inlets: Dict[str, StreamState]) -> BlockResult:
        """
        Calculate outlet streams from inlet streams.

        Parameters
        ----------
        inlets : dict mapping port name -> StreamState

        Returns
        -------
        BlockResult with outlets keyed by port name
        """

    # ------------------------------------------------------------------
    # Parameter helpers
    # ------------------------------------------------------------------

    def _get_param(self, key: str) -> Optional[schemas.ParamValue]:
        return self.params.get(key)

    def _quantity(
        self,
        key: str,
        dimension: str,
        default: Optional[float] = None,
        required: bool = False,
    ) -> Optional[float]:
        value = self._get_param(key)
        if value is None:
            if required:
                raise ParameterError(
                    f"{self.type_name} '{self.id}' requires parameter '{key}'", block_id=self.id
                )
            return default
        try:
            return param_to_float(value, dimension)
        except ParameterError as exc:
            raise ParameterError(
                f"{self.type_name} '{self.id}' parameter '{key}': {exc.message}", block_id=self.id
            ) from exc

    def _number(self, key: str, default: Optional[float] = None) -> Optional[float]:
        return self._quantity(key, units.DIMENSIONLESS, default=default)

    def _text(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self._get_param(key)
        return default if value is None else param_to_text(value)

    # ------------------------------------------------------------------
    # Stream helpers
    # ------------------------------------------------------------------

    def _first_inlet(self, inlets: Dict[str, StreamState]) -> StreamState:
        """Return the first (or only) inlet stream."""
        if not inlets:
            raise ConnectivityError(f"{self.type_name} '{self.id}' has no inlet stream", block_id=self.id)
        return next(iter(inlets.values()))

    def _inlet_enthalpy(self, stream: StreamState) -> float:
        """Enthalpy carried by the stream, else H(T, P) of its composition."""
        if stream.enthalpy is not None:
            return stream.enthalpy
        return self._state_enthalpy(stream)

    def _state_enthalpy(self, stream: StreamState) -> float:
        return self.engine.mixture_enthalpy(stream.composition, stream.temperature, stream.pressure)

    def _diagnostic(
        self,
        message: str,
        category: str = PHYSICAL,
        stream_id: Optional[str] = None,
    ) -> schemas.Diagnostic:
        return schemas.Diagnostic(
            category=category,
            severity="warning",
            message=message,
            block_id=self.id,
            stream_id=stream_id,
        )

    def _skip(self, message: str) -> BlockResult:
        logger.warning("{} '{}' skipped: {}", self.type_name, self.id, message)
        return BlockResult(skipped=True, warnings=[self._diagnostic(message)])


# ---------------------------------------------------------------------------
# Feed
# ---------------------------------------------------------------------------


class FeedOp(UnitOpBase):
    """
    Boundary source.

    Conditions come from the outlet stream specification, falling back to
    the block's own ``T`` / ``P`` / ``flow`` parameters. Composition comes
    from the stream specification only.
    """

    inlet_ports = ()
    outlet_ports = ("out",)

    def __init__(self, id, name, params, engine, spec: Optional[schemas.StreamSpec] = None) -> None:
        super().__init__(id, name, params, engine)
        self.spec = spec

    def _spec_or_param(
        self, attr: str, dimension: str, molecular_weight: Optional[float] = None
    ) -> Optional[float]:
        q = getattr(self.spec, attr, None) if self.spec is not None else None
        if q is not None:
            return units.to_internal(q.value, q.unit, dimension, molecular_weight)
        value = self._get_param(attr)
        if value is None:
            return None
        if isinstance(value, schemas.QuantityParam):
            return units.to_internal(value.q.value, value.q.unit, dimension, molecular_weight)
        return param_to_float(value, dimension)

    def calculate(self, inlets: Dict[str, StreamState]) -> BlockResult:
        composition = dict(self.spec.composition or {}) if self.spec is not None else {}
        if not composition:
            raise ParameterError(f"Feed '{self.id}' has no composition", block_id=self.id)
        if any(z < 0 for z in composition.values()):
            raise CompositionError(
                f"Feed '{self.id}' has negative mole fractions", block_id=self.id
            )
        total = sum(composition.values())
        if abs(total - 1.0) > COMPOSITION_TOLERANCE:
            raise CompositionError(
                f"Feed '{self.id}' composition sums to {total:.4f}, expected 1.0 ± {COMPOSITION_TOLERANCE}",
                block_id=self.id,
            )

        T = self._spec_or_param("T", units.TEMPERATURE)
        P = self._spec_or_param("P", units.PRESSURE)
        flow = self._spec_or_param(
            "flow", units.MOLAR_FLOW, self.engine.molecular_weight(composition)
        )
        missing = [label for label, v in (("temperature", T), ("pressure", P), ("flow", flow)) if v is None]
        if missing:
            raise ParameterError(
                f"Feed '{self.id}' is missing {', '.join(missing)}", block_id=self.id
            )
        if T <= 0:
            raise ParameterError(f"Feed '{self.id}' temperature must be positive", block_id=self.id)
        if P <= 0:
            raise ParameterError(f"Feed '{self.id}' pressure must be positive", block_id=self.id)
        if flow < 0:
            raise ParameterError(f"Feed '{self.id}' flow cannot be negative", block_id=self.id)

        phase = self.spec.phase if self.spec is not None else None
        outlet = self.engine.stream(composition, T, P, flow, phase=phase)
        return BlockResult(outlets={"out": outlet})


# ---------------------------------------------------------------------------
# Mixer
# ---------------------------------------------------------------------------


class MixerOp(UnitOpBase):
    """
    Adiabatic mixer.

      - Total molar flow = sum of inlets
      - Overall composition = flow-weighted blend
      - Outlet enthalpy from sum(H_i F_i) / F_out
      - Outlet T by Newton on mixture_enthalpy(T) = H_mix
      - Outlet P = min(inlet pressures)
    """

    inlet_ports = ("in1", "in2", "in3", "in4", "in5", "in6")
    accepts_extra_inlets = True

    def calculate(self, inlets: Dict[str, StreamState]) -> BlockResult:
        if not inlets:
            raise ConnectivityError(f"Mixer '{self.id}' has no inlet streams", block_id=self.id)

        streams = list(inlets.values())
        if len(streams) == 1:
            return BlockResult(outlets={"out": streams[0].copy()}, duty_kw=0.0)

        total_flow = sum(s.molar_flow for s in streams)
        P_out = min(s.pressure for s in streams)
        if total_flow <= 0:
            out = streams[0].copy(pressure=P_out, molar_flow=0.0)
            return BlockResult(
                outlets={"out": out},
                duty_kw=0.0,
                warnings=[self._diagnostic("Mixer has zero total flow")],
            )

        # Blend compositions (mole-fraction weighted by molar flow)
        composition: Dict[str, float] = {}
        for s in streams:
            for comp, z in s.composition.items():
                composition[comp] = composition.get(comp, 0.0) + z * s.molar_flow
        composition = {c: v / total_flow for c, v in composition.items()}
        if abs(sum(composition.values()) - 1.0) > COMPOSITION_TOLERANCE:
            composition = normalize(composition)

        H_mix = sum(self._inlet_enthalpy(s) * s.molar_flow for s in streams) / total_flow
        T_guess = sum(s.temperature * s.molar_flow for s in streams) / total_flow

        T_out, converged, iterations = self._solve_temperature(composition, H_mix, T_guess, P_out)

        warnings: List[schemas.Diagnostic] = []
        if not converged:
            warnings.append(
                self._diagnostic(
                    f"Mixer energy balance did not converge in {iterations} iterations; "
                    f"outlet temperature {T_out:.2f} K is approximate",
                    category=CONVERGENCE,
                )
            )

        outlet = self.engine.stream(composition, T_out, P_out, total_flow)
        outlet.enthalpy = H_mix
        return BlockResult(
            outlets={"out": outlet},
            duty_kw=0.0,
            extra={"energy_balance_converged": converged, "energy_balance_iterations": iterations},
            warnings=warnings,
        )

    def _solve_temperature(
        self, composition: Dict[str, float], H_target: float, T: float, P: float
    ) -> Tuple[float, bool, int]:
        lo, hi = MIXER_T_BOUNDS
        T = min(max(T, lo), hi)
        iterations = 0
        for iterations in range(1, MIXER_MAX_ITERATIONS + 1):
            f = self.engine.mixture_enthalpy(composition, T, P) - H_target
            if abs(f) < MIXER_TOLERANCE:
                return T, True, iterations
            dfdT = (self.engine.mixture_enthalpy(composition, T + MIXER_DT, P) - (f + H_target)) / MIXER_DT
            if dfdT == 0.0:
                break
            T = min(max(T - f / dfdT, lo), hi)
        f = self.engine.mixture_enthalpy(composition, T, P) - H_target
        return T, abs(f) < MIXER_TOLERANCE, iterations


# ---------------------------------------------------------------------------
# Splitter
# ---------------------------------------------------------------------------


class SplitterOp(UnitOpBase):
    """Splits one inlet into two outlets at the same T, P, composition."""

    outlet_ports = ("out1", "out2")

    def calculate(self, inlets: Dict[str, StreamState]) -> BlockResult:
        inlet = self._first_inlet(inlets)
        fraction = self._number("split1", DEFAULT_SPLIT_FRACTION)
        if not 0.0 <= fraction <= 1.0:
            raise ParameterError(
                f"Splitter '{self.id}' split fraction {fraction} is outside [0, 1]", block_id=self.id
            )
        return BlockResult(
            outlets={
                "out1": inlet.copy(molar_flow=inlet.molar_flow * fraction),
                "out2": inlet.copy(molar_flow=inlet.molar_flow * (1.0 - fraction)),
            },
            extra={"split1": fraction},
        )


# ---------------------------------------------------------------------------
# Heater / Cooler
# ---------------------------------------------------------------------------


class HeaterCoolerOp(UnitOpBase):
    """
    Heater or cooler with specified outlet temperature.

    duty = F (H(T_out) - H_in) * 1000 / 3600  [kW]
    """

    heating = True

    def calculate(self, inlets: Dict[str, StreamState]) -> BlockResult:
        inlet = self._first_inlet(inlets)
        T_out = self._quantity("outletT", units.TEMPERATURE, required=True)
        dP = self._quantity("pressureDrop", units.PRESSURE_DIFFERENCE, default=0.0)

        T_in = inlet.temperature
        if self.heating and T_out <= T_in:
            raise PhysicalError(
                f"Heater '{self.id}' outlet temperature {T_out:.2f} K must be above inlet {T_in:.2f} K",
                block_id=self.id,
            )
        if not self.heating and T_out >= T_in:
            raise PhysicalError(
                f"Cooler '{self.id}' outlet temperature {T_out:.2f} K must be below inlet {T_in:.2f} K",
                block_id=self.id,
            )
        if dP < 0:
            raise ParameterError(f"{self.type_name} '{self.id}' pressure drop cannot be negative", block_id=self.id)
        P_out = inlet.pressure - dP
        if P_out <= 0:
            raise PhysicalError(
                f"{self.type_name} '{self.id}' pressure drop exceeds inlet pressure", block_id=self.id
            )

        outlet = self.engine.stream(inlet.composition, T_out, P_out, inlet.molar_flow)
        duty_kw = inlet.molar_flow * (outlet.enthalpy - self._state_enthalpy(inlet)) * KJ_PER_MOL_KMOL_PER_H_TO_KW
        return BlockResult(outlets={"out": outlet}, duty_kw=duty_kw)


class HeaterOp(HeaterCoolerOp):
    heating = True


class CoolerOp(HeaterCoolerOp):
    heating = False


# ---------------------------------------------------------------------------
# Pump
# ---------------------------------------------------------------------------


class PumpOp(UnitOpBase):
    """
    Liquid pump.

    power = Q * dP / efficiency, with Q = F * MW / (rho * 3600) in m³/s.
    """

    def calculate(self, inlets: Dict[str, StreamState]) -> BlockResult:
        inlet = self._first_inlet(inlets)
        dP = self._quantity("dP", units.PRESSURE_DIFFERENCE, required=True)
        if dP <= 0:
            raise ParameterError(f"Pump '{self.id}' pressure rise must be positive", block_id=self.id)
        efficiency = self._number("efficiency", DEFAULT_PUMP_EFFICIENCY)
        if not 0.0 < efficiency <= 1.0:
            raise ParameterError(f"Pump '{self.id}' efficiency must be in (0, 1]", block_id=self.id)

        rho = self.engine.density(inlet.composition, inlet.temperature, inlet.pressure, LIQUID)
        mw = self.engine.molecular_weight(inlet.composition) or DEFAULT_MOLECULAR_WEIGHT
        vol_flow = inlet.molar_flow * mw / (rho * 3600.0)  # m³/s
        power_kw = vol_flow * dP / 1000.0 / efficiency

        outlet = inlet.copy(pressure=inlet.pressure + dP, phase=LIQUID, vapor_fraction=0.0)
        return BlockResult(
            outlets={"out": outlet},
            power_kw=power_kw,
            extra={
                "efficiency": efficiency,
                "volumetric_flow_m3_per_h": vol_flow * 3600.0,
                "head_m": dP / (rho * 9.81),
            },
        )


# ---------------------------------------------------------------------------
# Flash drum
# ---------------------------------------------------------------------------


class FlashDrumOp(UnitOpBase):
    """
    Isothermal flash at specified T and P via Rachford-Rice.

    Single-phase results keep a trace stream on the suppressed side so both
    outlets exist; the trace is taken out of the dominant side.
    """

    outlet_ports = ("vapor", "liquid")

    def calculate(self, inlets: Dict[str, StreamState]) -> BlockResult:
        inlet = self._first_inlet(inlets)
        T = self._quantity("T", units.TEMPERATURE, required=True)
        P = self._quantity("P", units.PRESSURE, required=True)
        if T <= 0 or P <= 0:
            raise ParameterError(f"Flash '{self.id}' T and P must be positive", block_id=self.id)

        z = inlet.composition
        F = inlet.molar_flow
        K = self.engine.k_values(z.keys(), T, P)
        rr = rachford_rice(z, K)
        V = rr.vapor_fraction
        x, y = flash_composition(z, K, V)

        warnings: List[schemas.Diagnostic] = []
        if not rr.converged:
            warnings.append(
                self._diagnostic(
                    f"Rachford-Rice did not converge in {rr.iterations} iterations "
                    f"(residual {rr.residual:.2e}); vapor fraction {V:.4f} is approximate",
                    category=CONVERGENCE,
                )
            )

        trace = min(TRACE_FLOW, 0.5 * F)
        if V < PHASE_BOUNDARY:
            vapor_flow, liquid_flow = trace, F - trace
            y_out, x_out = normalize(y), dict(z)
        elif V > 1.0 - PHASE_BOUNDARY:
            vapor_flow, liquid_flow = F - trace, trace
            y_out, x_out = dict(z), normalize(x)
        else:
            vapor_flow, liquid_flow = F * V, F * (1.0 - V)
            y_out, x_out = normalize(y), normalize(x)

        vapor = self.engine.stream(y_out, T, P, vapor_flow, phase=VAPOR)
        liquid = self.engine.stream(x_out, T, P, liquid_flow, phase=LIQUID)

        h_out = vapor_flow * vapor.enthalpy + liquid_flow * liquid.enthalpy
        duty_kw = (h_out - F * self._state_enthalpy(inlet)) * KJ_PER_MOL_KMOL_PER_H_TO_KW

        return BlockResult(
            outlets={"vapor": vapor, "liquid": liquid},
            duty_kw=duty_kw,
            extra={
                "vapor_fraction": V,
                "rachford_rice_converged": rr.converged,
                "rachford_rice_iterations": rr.iterations,
                "k_values": K,
            },
            warnings=warnings,
        )


# ---------------------------------------------------------------------------
# Absorber (fixed capture efficiency)
# ---------------------------------------------------------------------------


class AbsorberOp(UnitOpBase):
    """
    Gas-liquid absorber.

    Moves 90 % of the solute in the gas into the liquid. The gas leaves 5 K
    warmer and 0.05 bar lower, the liquid 10 K warmer.
    """

    inlet_ports = ("gas-in", "liquid-in")
    outlet_ports = ("gas-out", "liquid-out")
    tolerates_missing_inlets = True

    def calculate(self, inlets: Dict[str, StreamState]) -> BlockResult:
        gas_in = inlets.get("gas-in")
        liquid_in = inlets.get("liquid-in")
        if gas_in is None or liquid_in is None:
            missing = [p for p, s in (("gas-in", gas_in), ("liquid-in", liquid_in)) if s is None]
            return self._skip(f"Absorber inlet(s) unresolved: {', '.join(missing)}")

        solute = self._text("solute", DEFAULT_SOLUTE)
        gas_flows = total_flows(gas_in)
        liquid_flows = total_flows(liquid_in)

        absorbed = ABSORBER_CAPTURE_EFFICIENCY * gas_flows.get(solute, 0.0)
        gas_flows[solute] = gas_flows.get(solute, 0.0) - absorbed
        liquid_flows[solute] = liquid_flows.get(solute, 0.0) + absorbed

        gas_flow = gas_in.molar_flow - absorbed
        liquid_flow = liquid_in.molar_flow + absorbed
        P_gas = gas_in.pressure - ABSORBER_GAS_PRESSURE_DROP
        if P_gas <= 0:
            raise PhysicalError(
                f"Absorber '{self.id}' gas pressure drop exceeds inlet pressure", block_id=self.id
            )

        gas_out = self.engine.stream(
            normalize(gas_flows), gas_in.temperature + ABSORBER_GAS_TEMPERATURE_RISE,
            P_gas, gas_flow, phase=VAPOR,
        )
        liquid_out = self.engine.stream(
            normalize(liquid_flows), liquid_in.temperature + ABSORBER_LIQUID_TEMPERATURE_RISE,
            liquid_in.pressure, liquid_flow, phase=LIQUID,
        )
        return BlockResult(
            outlets={"gas-out": gas_out, "liquid-out": liquid_out},
            extra={
                "solute": solute,
                "absorbed_kmol_per_h": absorbed,
                "capture_efficiency": ABSORBER_CAPTURE_EFFICIENCY,
            },
        )


# ---------------------------------------------------------------------------
# Stripper (fixed stripping efficiency)
# ---------------------------------------------------------------------------


class StripperOp(UnitOpBase):
    """
    Solvent regenerator.

    Strips 95 % of the solute into a near-pure overhead (99.5 % solute,
    balance water) at feed T + 80 K; bottoms leave at feed T + 70 K. The
    reboil duty is the enthalpy gained across the column.
    """

    inlet_ports = ("feed",)
    outlet_ports = ("overhead", "bottoms")
    tolerates_missing_inlets = True

    def calculate(self, inlets: Dict[str, StreamState]) -> BlockResult:
        feed = inlets.get("feed")
        if feed is None:
            return self._skip("Stripper feed unresolved")

        solute = self._text("solute", DEFAULT_SOLUTE)
        P = self._quantity("P", units.PRESSURE, default=feed.pressure)
        if P <= 0:
            raise ParameterError(f"Stripper '{self.id}' pressure must be positive", block_id=self.id)

        flows = total_flows(feed)
        stripped = STRIPPER_EFFICIENCY * flows.get(solute, 0.0)
        flows[solute] = flows.get(solute, 0.0) - stripped

        if solute == WATER:
            overhead_comp = {solute: 1.0}
        else:
            overhead_comp = {solute: STRIPPER_OVERHEAD_PURITY, WATER: 1.0 - STRIPPER_OVERHEAD_PURITY}

        overhead = self.engine.stream(
            overhead_comp, feed.temperature + STRIPPER_OVERHEAD_TEMPERATURE_RISE, P, stripped, phase=VAPOR
        )
        bottoms = self.engine.stream(
            normalize(flows), feed.temperature + STRIPPER_BOTTOMS_TEMPERATURE_RISE,
            P, feed.molar_flow - stripped, phase=LIQUID,
        )

        h_out = overhead.molar_flow * overhead.enthalpy + bottoms.molar_flow * bottoms.enthalpy
        duty_kw = (h_out - feed.molar_flow * self._state_enthalpy(feed)) * KJ_PER_MOL_KMOL_PER_H_TO_KW
        return BlockResult(
            outlets={"overhead": overhead, "bottoms": bottoms},
            duty_kw=duty_kw,
            extra={
                "solute": solute,
                "stripped_kmol_per_h": stripped,
                "stripping_efficiency": STRIPPER_EFFICIENCY,
                "reboiler_duty_kw": duty_kw,
            },
        )


# ---------------------------------------------------------------------------
# Heat exchanger (fixed effectiveness)
# ---------------------------------------------------------------------------


class HeatExchangerOp(UnitOpBase):
    """
    Two-stream exchanger with 80 % effectiveness on the inlet temperature gap.

    The exchanged heat is internal to the process, so it is reported in
    ``extra`` and not as a utility duty.
    """

    inlet_ports = ("hot-in", "cold-in")
    outlet_ports = ("hot-out", "cold-out")
    tolerates_missing_inlets = True

    def calculate(self, inlets: Dict[str, StreamState]) -> BlockResult:
        hot_in = inlets.get("hot-in")
        cold_in = inlets.get("cold-in")
        missing = [p for p, s in (("hot-in", hot_in), ("cold-in", cold_in)) if s is None]
        if self.connected_outlets:
            missing += [p for p in self.outlet_ports if p not in self.connected_outlets]
        if missing:
            return self._skip(f"Heat exchanger stream(s) missing: {', '.join(missing)}")

        warnings: List[schemas.Diagnostic] = []
        if hot_in.temperature < cold_in.temperature:
            warnings.append(
                self._diagnostic(
                    f"Hot inlet ({hot_in.temperature:.2f} K) is colder than cold inlet "
                    f"({cold_in.temperature:.2f} K)"
                )
            )

        dT = (hot_in.temperature - cold_in.temperature) * HX_EFFECTIVENESS
        hot_out = hot_in.copy(
            temperature=hot_in.temperature - dT,
            enthalpy=self._inlet_enthalpy(hot_in) - HX_ENTHALPY_OFFSET,
        )
        cold_out = cold_in.copy(
            temperature=cold_in.temperature + dT,
            enthalpy=self._inlet_enthalpy(cold_in) + HX_ENTHALPY_OFFSET,
        )
        exchanged_kw = hot_in.molar_flow * HX_ENTHALPY_OFFSET * KJ_PER_MOL_KMOL_PER_H_TO_KW
        return BlockResult(
            outlets={"hot-out": hot_out, "cold-out": cold_out},
            extra={
                "effectiveness": HX_EFFECTIVENESS,
                "temperature_change_k": dT,
                "exchanged_duty_kw": exchanged_kw,
            },
            warnings=warnings,
        )


# ---------------------------------------------------------------------------
# Sink
# ---------------------------------------------------------------------------


class SinkOp(UnitOpBase):
    """Terminal consumer."""

    outlet_ports = ()

    def calculate(self, inlets: Dict[str, StreamState]) -> BlockResult:
        return BlockResult()


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

UNIT_OP_REGISTRY: Dict[str, type] = {
    "Feed": FeedOp,
    "Mixer": MixerOp,
    "Splitter": SplitterOp,
    "Heater": HeaterOp,
    "Cooler": CoolerOp,
    "Pump": PumpOp,
    "Flash": FlashDrumOp,
    "Absorber": AbsorberOp,
    "Stripper": StripperOp,
    "HeatExchanger": HeatExchangerOp,
    "Sink": SinkOp,
}

# Display-only nodes that carry no streams
ANNOTATION_TYPES = frozenset({"TextBox", "Note", "Label"})

_TYPE_ALIASES: Dict[str, str] = {key.lower(): key for key in UNIT_OP_REGISTRY}
_TYPE_ALIASES.update({
    "flashdrum": "Flash",
    "heat_exchanger": "HeatExchanger",
    "heatexchangerop": "HeatExchanger",
    "product": "Sink",
})


def canonical_unit_type(unit_type: str) -> Optional[str]:
    """Map a block type tag to its registry key, or None if unsupported."""
    if unit_type in UNIT_OP_REGISTRY:
        return unit_type
    return _TYPE_ALIASES.get(unit_type.strip().lower())


def is_annotation(unit_type: str) -> bool:
    return unit_type in ANNOTATION_TYPES or unit_type.strip().lower() in {
        t.lower() for t in ANNOTATION_TYPES
    }
