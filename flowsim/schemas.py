from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


Phase = Literal["V", "L", "VL", "S"]
Severity = Literal["error", "warning", "info"]
Category = Literal["connectivity", "parameter", "composition", "physical", "convergence"]


# ---------------------------------------------------------------------------
# Parameter values (closed tagged union on ``kind``)
# ---------------------------------------------------------------------------


class Quantity(BaseModel):
    value: float
    unit: str


class QuantityParam(BaseModel):
    kind: Literal["quantity"] = "quantity"
    q: Quantity


class NumberParam(BaseModel):
    kind: Literal["number"] = "number"
    x: float


class IntParam(BaseModel):
    kind: Literal["int"] = "int"
    n: int


class StringParam(BaseModel):
    kind: Literal["string"] = "string"
    s: str


class BooleanParam(BaseModel):
    kind: Literal["boolean"] = "boolean"
    b: bool


class EnumParam(BaseModel):
    kind: Literal["enum"] = "enum"
    e: str


ParamValue = Annotated[
    Union[QuantityParam, NumberParam, IntParam, StringParam, BooleanParam, EnumParam],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Flowsheet graph
# ---------------------------------------------------------------------------


class PortSpec(BaseModel):
    id: str
    name: str
    direction: Literal["in", "out"]
    phase: Optional[Phase] = None


class BlockSpec(BaseModel):
    id: str
    type: str
    name: Optional[str] = None
    params: Dict[str, ParamValue] = Field(default_factory=dict)
    ports: List[PortSpec] = Field(default_factory=list)


class StreamEndpoint(BaseModel):
    block: str
    port: str


class StreamSpec(BaseModel):
    T: Optional[Quantity] = None
    P: Optional[Quantity] = None
    flow: Optional[Quantity] = None
    composition: Optional[Dict[str, float]] = None
    phase: Optional[Phase] = None


class Bounds(BaseModel):
    min: Quantity
    max: Quantity


class StreamBounds(BaseModel):
    T: Optional[Bounds] = None
    P: Optional[Bounds] = None
    flow: Optional[Bounds] = None


class StreamEdge(BaseModel):
    id: str
    name: Optional[str] = None
    source: StreamEndpoint
    target: StreamEndpoint
    spec: Optional[StreamSpec] = None
    bounds: Optional[StreamBounds] = None


class FlowsheetGraph(BaseModel):
    blocks: List[BlockSpec] = Field(default_factory=list)
    streams: List[StreamEdge] = Field(default_factory=list)
    layout: Optional[Dict[str, Any]] = None


class ComponentRef(BaseModel):
    id: str
    name: str
    formula: Optional[str] = None
    cas: Optional[str] = None
    role: Optional[Literal["solute", "solvent", "inert"]] = None


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class SolverConfig(BaseModel):
    max_iterations: int = Field(default=50, ge=1)
    tolerance: float = Field(default=1e-6, gt=0)


class EconomicConfig(BaseModel):
    steam_price: float = 10.0  # $/GJ
    electricity_price: float = 0.1  # $/kWh
    co2_price: float = 50.0  # $/t
    cooling_price: float = 2.0  # $/GJ
    capex_factor: float = 0.1  # fraction of CAPEX per year
    operating_hours: float = Field(default=8000.0, gt=0)
    steam_emission_factor: float = 0.066  # t CO2 / GJ steam
    grid_emission_factor: float = 0.0004  # t CO2 / kWh
    solute: str = "CO2"

    annualization_factor: float = 0.15
    installation_factor: float = 3.0
    contingency_factor: float = 0.15
    labor_cost: float = 75000.0  # $/year per operator
    operators_per_shift: float = 2.0
    maintenance_factor: float = 0.03
    annual_revenue: Optional[float] = None  # $/year, enables payback and NPV
    discount_rate: float = 0.10
    project_life: int = Field(default=20, ge=1)  # years


# ---------------------------------------------------------------------------
# Constraints and product specifications
# ---------------------------------------------------------------------------


class StreamMetricRef(BaseModel):
    kind: Literal["stream"] = "stream"
    stream_id: str
    metric: Literal["T", "P", "flow", "vaporFrac"]


class UnitMetricRef(BaseModel):
    kind: Literal["unit"] = "unit"
    block_id: str
    metric: Literal["dP", "duty", "power", "stages"]


class KpiMetricRef(BaseModel):
    kind: Literal["kpi"] = "kpi"
    metric: str


MetricRef = Annotated[
    Union[StreamMetricRef, UnitMetricRef, KpiMetricRef],
    Field(discriminator="kind"),
]


class MaxConstraint(BaseModel):
    id: str
    type: Literal["max"] = "max"
    ref: MetricRef
    limit: float
    hard: bool = True


class MinConstraint(BaseModel):
    id: str
    type: Literal["min"] = "min"
    ref: MetricRef
    limit: float
    hard: bool = True


class RangeConstraint(BaseModel):
    id: str
    type: Literal["range"] = "range"
    ref: MetricRef
    min: float
    max: float
    hard: bool = True


Constraint = Annotated[
    Union[MaxConstraint, MinConstraint, RangeConstraint],
    Field(discriminator="type"),
]


class PuritySpec(BaseModel):
    id: str
    type: Literal["purity"] = "purity"
    stream_id: str
    component: str
    target: float


class RecoverySpec(BaseModel):
    id: str
    type: Literal["recovery"] = "recovery"
    component: str
    feed_stream_id: str
    product_stream_id: str
    target: float


class CaptureSpec(BaseModel):
    id: str
    type: Literal["capture"] = "capture"
    component: str
    vent_stream_id: str
    target_removal: float


ProductSpec = Annotated[
    Union[PuritySpec, RecoverySpec, CaptureSpec],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Payload
# ---------------------------------------------------------------------------


class FlowsheetPayload(BaseModel):
    name: str = Field(default="flowsheet")
    graph: FlowsheetGraph = Field(default_factory=FlowsheetGraph)
    components: List[ComponentRef] = Field(default_factory=list)
    economics: EconomicConfig = Field(default_factory=EconomicConfig)
    solver: SolverConfig = Field(default_factory=SolverConfig)
    constraints: List[Constraint] = Field(default_factory=list)
    specs: List[ProductSpec] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class Diagnostic(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: Category
    message: str
    severity: Severity = "error"
    block_id: Optional[str] = None
    stream_id: Optional[str] = None


class StreamResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    temperature_k: float
    pressure_pa: float
    pressure_bar: float
    molar_flow_kmol_per_h: float
    mass_flow_kg_per_h: Optional[float] = None
    composition: Dict[str, float] = Field(default_factory=dict)
    phase: Phase
    enthalpy_kj_per_mol: Optional[float] = None
    vapor_fraction: Optional[float] = None
    is_tear: bool = False


class UnitResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    type: str
    status: Literal["ok", "skipped", "not-run"] = "not-run"
    duty_kw: Optional[float] = None
    power_kw: Optional[float] = None
    extra: Dict[str, Any] = Field(default_factory=dict)


class EquipmentCost(BaseModel):
    model_config = ConfigDict(frozen=True)

    block_id: str
    block_type: str
    sizing_param: str
    value: float
    unit: str
    cost_usd: float


class ConstraintViolation(BaseModel):
    model_config = ConfigDict(frozen=True)

    constraint_id: str
    value: Optional[float] = None
    message: str
    hard: bool


class SpecResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    spec_id: str
    type: str
    value: Optional[float] = None
    target: float
    met: bool


class FixSuggestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    block_id: str
    param: str
    value: ParamValue
    reason: str


class EconomicSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    installed_capex: float
    annualized_capex: float
    utility_cost: float
    labor_cost: float
    maintenance_cost: float
    total_opex: float
    total_annual_cost: float
    annual_cash_flow: Optional[float] = None
    payback_years: Optional[float] = None
    npv: Optional[float] = None


class SimulationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    flowsheet_name: str
    status: Literal["success", "error"]
    converged: bool = False
    iterations: int = 0
    kpis: Dict[str, float] = Field(default_factory=dict)
    streams: List[StreamResult] = Field(default_factory=list)
    units: List[UnitResult] = Field(default_factory=list)
    diagnostics: List[Diagnostic] = Field(default_factory=list)
    violations: List[ConstraintViolation] = Field(default_factory=list)
    spec_results: List[SpecResult] = Field(default_factory=list)
    equipment: List[EquipmentCost] = Field(default_factory=list)
    economics: Optional[EconomicSummary] = None
    suggestions: List[FixSuggestion] = Field(default_factory=list)
    tear_streams: List[str] = Field(default_factory=list)
    execution_order: List[str] = Field(default_factory=list)
    mass_balance_error: Optional[float] = None
    energy_balance_error: Optional[float] = None
    log: List[str] = Field(default_factory=list)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == "error"]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == "warning"]


# ---------------------------------------------------------------------------
# Property / flash / component requests
# ---------------------------------------------------------------------------


class PropertyRequest(BaseModel):
    temperature: Quantity
    pressure: Quantity
    composition: Dict[str, float]
    phase: Optional[Phase] = None

    @field_validator("composition")
    @classmethod
    def _non_empty(cls, value: Dict[str, float]) -> Dict[str, float]:
        if not value:
            raise ValueError("composition must contain at least one component")
        return value


class PropertyResult(BaseModel):
    properties: Dict[str, Any]
    warnings: List[str] = Field(default_factory=list)


class FlashRequest(PropertyRequest):
    pass


class FlashResponse(BaseModel):
    vapor_fraction: float
    converged: bool
    iterations: int
    phase: Phase
    k_values: Dict[str, float]
    liquid: Dict[str, float]
    vapor: Dict[str, float]


class ComponentInfo(BaseModel):
    id: str
    name: str
    formula: str
    cas: str
    category: str
    molecular_weight: float
    critical_temperature_k: float
    critical_pressure_bar: float
    acentric_factor: float
    boiling_point_k: float
    heat_of_formation_kj_per_mol: float


class ComponentCategory(BaseModel):
    id: str
    label: str
    count: int


# ---------------------------------------------------------------------------
# Sensitivity
# ---------------------------------------------------------------------------


class SensitivityRequest(BaseModel):
    flowsheet: FlowsheetPayload
    variable_block_id: str
    variable_param: str
    variable_unit: Optional[str] = None
    variable_min: float
    variable_max: float
    n_points: int = Field(default=5, ge=2)
    output_stream_id: Optional[str] = None
    output_properties: List[str] = Field(default_factory=list)
    output_kpis: List[str] = Field(default_factory=list)


class SensitivityResult(BaseModel):
    parameter_values: List[float]
    results: Dict[str, List[Optional[float]]]
    warnings: List[str] = Field(default_factory=list)
