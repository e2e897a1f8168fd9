"""
Tests for metric references, constraints, stream bounds and product specs.
"""

import pytest
from pydantic import TypeAdapter

from flowsim import schemas
from flowsim.metrics import (
    MetricContext,
    evaluate_constraints,
    evaluate_metric,
    evaluate_specs,
    evaluate_stream_bounds,
    suggest_fixes,
)
from flowsim.thermo_engine import StreamState
from flowsim.unit_operations import BlockResult


_constraints = TypeAdapter(list[schemas.Constraint])
_specs = TypeAdapter(list[schemas.ProductSpec])


def _state(T=313.15, P=101325.0, flow=100.0, composition=None, vf=None):
    return StreamState(
        temperature=T,
        pressure=P,
        molar_flow=flow,
        composition=composition or {"CO2": 0.1, "N2": 0.9},
        vapor_fraction=vf,
    )


@pytest.fixture
def ctx():
    return MetricContext(
        streams={
            "flue": _state(flow=1000.0, composition={"CO2": 0.13, "N2": 0.87}),
            "vent": _state(flow=883.0, composition={"CO2": 13.0 / 883.0, "N2": 870.0 / 883.0}),
            "product": _state(T=393.15, flow=111.15, composition={"CO2": 0.995, "H2O": 0.005}, vf=1.0),
        },
        unit_results={
            "pump": BlockResult(power_kw=0.6),
            "heater": BlockResult(duty_kw=1500.0),
        },
        unit_params={
            "pump": {"dP": schemas.QuantityParam(q=schemas.Quantity(value=1.0, unit="bar"))},
            "column": {"stages": schemas.NumberParam(x=12.0)},
        },
        unit_pressures={"valve": (300000.0, 120000.0)},
        kpis={"steam": 5.4},
        feed_streams=["flue"],
    )


class TestEvaluateMetric:
    @pytest.mark.parametrize("metric,expected", [
        ("T", 393.15), ("P", 101325.0), ("flow", 111.15), ("vaporFrac", 1.0),
    ])
    def test_stream_metrics(self, ctx, metric, expected):
        ref = schemas.StreamMetricRef(stream_id="product", metric=metric)
        assert evaluate_metric(ref, ctx) == pytest.approx(expected)

    def test_unit_metrics(self, ctx):
        assert evaluate_metric(schemas.UnitMetricRef(block_id="heater", metric="duty"), ctx) == 1500.0
        assert evaluate_metric(schemas.UnitMetricRef(block_id="pump", metric="power"), ctx) == 0.6
        assert evaluate_metric(schemas.UnitMetricRef(block_id="pump", metric="dP"), ctx) == pytest.approx(1e5)
        assert evaluate_metric(schemas.UnitMetricRef(block_id="column", metric="stages"), ctx) == 12.0

    def test_pressure_drop_from_solved_streams(self, ctx):
        ref = schemas.UnitMetricRef(block_id="valve", metric="dP")
        assert evaluate_metric(ref, ctx) == pytest.approx(180000.0)

    def test_kpi(self, ctx):
        assert evaluate_metric(schemas.KpiMetricRef(metric="steam"), ctx) == 5.4

    def test_unavailable(self, ctx):
        assert evaluate_metric(schemas.StreamMetricRef(stream_id="ghost", metric="T"), ctx) is None
        assert evaluate_metric(schemas.UnitMetricRef(block_id="ghost", metric="duty"), ctx) is None
        assert evaluate_metric(schemas.KpiMetricRef(metric="COM"), ctx) is None


class TestConstraints:
    def test_violations(self, ctx):
        constraints = _constraints.validate_python([
            {"id": "max-duty", "type": "max", "ref": {"kind": "unit", "block_id": "heater", "metric": "duty"},
             "limit": 1000.0},
            {"id": "min-T", "type": "min", "ref": {"kind": "stream", "stream_id": "product", "metric": "T"},
             "limit": 300.0},
            {"id": "steam-window", "type": "range", "ref": {"kind": "kpi", "metric": "steam"},
             "min": 0.0, "max": 5.0, "hard": False},
        ])
        violations = evaluate_constraints(constraints, ctx)

        assert [v.constraint_id for v in violations] == ["max-duty", "steam-window"]
        assert violations[0].hard is True
        assert "exceeds maximum" in violations[0].message
        assert violations[1].hard is False
        assert "outside" in violations[1].message

    def test_unavailable_metric_is_skipped(self, ctx):
        constraints = _constraints.validate_python([
            {"id": "c", "type": "max", "ref": {"kind": "stream", "stream_id": "ghost", "metric": "T"},
             "limit": 0.0},
        ])
        assert evaluate_constraints(constraints, ctx) == []


class TestStreamBounds:
    def _edge(self, bounds):
        return schemas.StreamEdge.model_validate({
            "id": "product",
            "name": "CO2 product",
            "source": {"block": "stripper", "port": "overhead"},
            "target": {"block": "sink", "port": "in"},
            "bounds": bounds,
        })

    def test_bounds_in_declared_units(self, ctx):
        edge = self._edge({
            "T": {"min": {"value": 20.0, "unit": "C"}, "max": {"value": 100.0, "unit": "C"}},
            "P": {"min": {"value": 1.0, "unit": "bar"}, "max": {"value": 2.0, "unit": "bar"}},
        })
        violations = evaluate_stream_bounds([edge], ctx)

        assert [v.constraint_id for v in violations] == ["product.T"]
        assert violations[0].hard is False
        assert "CO2 product" in violations[0].message

    def test_unbounded_edge(self, ctx):
        assert evaluate_stream_bounds([self._edge(None)], ctx) == []


class TestSpecs:
    def test_purity_recovery_capture(self, ctx):
        specs = _specs.validate_python([
            {"id": "purity", "type": "purity", "stream_id": "product", "component": "CO2", "target": 0.99},
            {"id": "recovery", "type": "recovery", "component": "CO2",
             "feed_stream_id": "flue", "product_stream_id": "product", "target": 0.9},
            {"id": "capture", "type": "capture", "component": "CO2",
             "vent_stream_id": "vent", "target_removal": 0.85},
        ])
        results = {r.spec_id: r for r in evaluate_specs(specs, ctx)}

        assert results["purity"].value == pytest.approx(0.995)
        assert results["purity"].met is True
        assert results["recovery"].value == pytest.approx(111.15 * 0.995 / 130.0)
        assert results["recovery"].met is False
        assert results["capture"].value == pytest.approx(0.9)
        assert results["capture"].met is True

    def test_missing_stream_is_not_met(self, ctx):
        specs = _specs.validate_python([
            {"id": "purity", "type": "purity", "stream_id": "ghost", "component": "CO2", "target": 0.5},
        ])
        result = evaluate_specs(specs, ctx)[0]
        assert result.value is None
        assert result.met is False


# ---------------------------------------------------------------------------
# Fix suggestions
# ---------------------------------------------------------------------------


def _blocks(stripper_params=None, absorber_params=None):
    return [
        schemas.BlockSpec.model_validate({"id": "abs", "type": "Absorber", "params": absorber_params or {}}),
        schemas.BlockSpec.model_validate({"id": "regen", "type": "Stripper", "params": stripper_params or {}}),
    ]


_steam_limit = _constraints.validate_python([
    {"id": "steam-cap", "type": "max", "ref": {"kind": "kpi", "metric": "steam"}, "limit": 1.0},
])
_steam_violation = [schemas.ConstraintViolation(constraint_id="steam-cap", value=5.0, message="", hard=True)]
_unmet = [schemas.SpecResult(spec_id="capture", type="capture", value=0.6, target=0.9, met=False)]


class TestSuggestFixes:
    def test_nothing_to_fix(self):
        assert suggest_fixes(_blocks(), _steam_limit, [], []) == []

    def test_steam_violation_raises_stripper_pressure(self):
        stripper = {"P": {"kind": "quantity", "q": {"value": 1.5, "unit": "bar"}}}
        fixes = suggest_fixes(_blocks(stripper_params=stripper), _steam_limit, _steam_violation, [])

        assert len(fixes) == 1
        assert (fixes[0].block_id, fixes[0].param) == ("regen", "P")
        assert fixes[0].value.q.value == pytest.approx(1.8)
        assert fixes[0].value.q.unit == "bar"

    def test_stripper_pressure_is_capped(self):
        stripper = {"P": {"kind": "quantity", "q": {"value": 4.5, "unit": "bar"}}}
        fixes = suggest_fixes(_blocks(stripper_params=stripper), _steam_limit, _steam_violation, [])
        assert fixes[0].value.q.value == pytest.approx(5.0)

    def test_other_violations_are_ignored(self):
        power = [schemas.ConstraintViolation(constraint_id="max-power", value=5.0, message="", hard=True)]
        assert suggest_fixes(_blocks(), _steam_limit, power, []) == []

    def test_unmet_spec_adds_absorber_stages(self):
        fixes = suggest_fixes(_blocks(absorber_params={"stages": {"kind": "int", "n": 10}}), [], [], _unmet)
        assert [(f.block_id, f.param, f.value.n) for f in fixes] == [("abs", "stages", 15)]

    def test_absorber_stages_are_capped(self):
        fixes = suggest_fixes(_blocks(absorber_params={"stages": {"kind": "number", "x": 48.7}}), [], [], _unmet)
        assert fixes[0].value.n == 50

    def test_no_matching_block(self):
        assert suggest_fixes([], _steam_limit, _steam_violation, _unmet) == []
