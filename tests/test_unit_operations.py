"""
Tests for the unit operation models.

Each block is called directly with hand-built inlet StreamStates so the
balances can be checked without the orchestrator.
"""

import pytest

from flowsim import schemas
from flowsim.errors import (
    CompositionError,
    ConnectivityError,
    ParameterError,
    PhysicalError,
)
from flowsim.thermo_engine import LIQUID, VAPOR, ThermoEngine
from flowsim.unit_operations import (
    UNIT_OP_REGISTRY,
    AbsorberOp,
    CoolerOp,
    FeedOp,
    FlashDrumOp,
    HeaterOp,
    HeatExchangerOp,
    MixerOp,
    PumpOp,
    SinkOp,
    SplitterOp,
    StripperOp,
    canonical_unit_type,
    is_annotation,
    param_to_float,
    param_to_text,
)


# ---------------------------------------------------------------------------
# Fixtures and helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def engine():
    return ThermoEngine(["CO2", "N2", "H2O", "MEA"])


def _q(value, unit):
    return schemas.QuantityParam(q=schemas.Quantity(value=value, unit=unit))


def _x(value):
    return schemas.NumberParam(x=value)


def _make_unit(cls, engine, params=None, uid="u1"):
    return cls(id=uid, name=uid, params=params or {}, engine=engine)


def _water(engine, T=300.0, P=101325.0, flow=100.0):
    return engine.stream({"H2O": 1.0}, T, P, flow)


def _flue_gas(engine, T=313.15, P=105000.0, flow=1000.0):
    return engine.stream({"CO2": 0.13, "N2": 0.87}, T, P, flow)


# ---------------------------------------------------------------------------
# Parameter values
# ---------------------------------------------------------------------------


class TestParamValues:
    def test_quantity_is_converted(self):
        assert param_to_float(_q(1.0, "bar"), "pressure") == pytest.approx(1e5)

    def test_number_is_taken_as_internal(self):
        assert param_to_float(_x(350.0), "temperature") == 350.0

    def test_int_and_string(self):
        assert param_to_float(schemas.IntParam(n=3)) == 3.0
        assert param_to_float(schemas.StringParam(s="0.25")) == 0.25

    def test_non_numeric_string_is_parameter_error(self):
        with pytest.raises(ParameterError):
            param_to_float(schemas.StringParam(s="lots"))

    def test_boolean_is_not_a_number(self):
        with pytest.raises(ParameterError):
            param_to_float(schemas.BooleanParam(b=True))

    def test_text(self):
        assert param_to_text(schemas.EnumParam(e="CO2")) == "CO2"
        assert param_to_text(schemas.BooleanParam(b=True)) == "true"

    def test_tagged_union_parses_from_json(self):
        block = schemas.BlockSpec.model_validate({
            "id": "h1",
            "type": "Heater",
            "params": {
                "outletT": {"kind": "quantity", "q": {"value": 80, "unit": "C"}},
                "note": {"kind": "string", "s": "preheat"},
            },
        })
        assert isinstance(block.params["outletT"], schemas.QuantityParam)
        assert isinstance(block.params["note"], schemas.StringParam)

    def test_unknown_kind_is_rejected(self):
        with pytest.raises(ValueError):
            schemas.BlockSpec.model_validate({
                "id": "h1", "type": "Heater", "params": {"outletT": {"kind": "complex", "z": 1}},
            })


# ---------------------------------------------------------------------------
# Feed
# ---------------------------------------------------------------------------


class TestFeed:
    def _feed(self, engine, composition, flow=(100.0, "kmol/h")):
        spec = schemas.StreamSpec(
            T=schemas.Quantity(value=40.0, unit="C"),
            P=schemas.Quantity(value=1.05, unit="bar"),
            flow=schemas.Quantity(value=flow[0], unit=flow[1]),
            composition=composition,
        )
        feed = _make_unit(FeedOp, engine, uid="feed")
        feed.spec = spec
        return feed

    def test_feed_converts_units(self, engine):
        out = self._feed(engine, {"CO2": 0.13, "N2": 0.87}).calculate({}).outlets["out"]
        assert out.temperature == pytest.approx(313.15)
        assert out.pressure == pytest.approx(105000.0)
        assert out.molar_flow == pytest.approx(100.0)
        assert out.phase == VAPOR

    def test_mass_flow_feed(self, engine):
        out = self._feed(engine, {"H2O": 1.0}, flow=(1801.5, "kg/h")).calculate({}).outlets["out"]
        assert out.molar_flow == pytest.approx(100.0)

    @pytest.mark.parametrize("composition", [{"CO2": 0.5, "N2": 0.3}, {"CO2": 0.7, "N2": 0.4}])
    def test_composition_must_sum_to_one(self, engine, composition):
        with pytest.raises(CompositionError) as excinfo:
            self._feed(engine, composition).calculate({})
        assert excinfo.value.category == "composition"
        assert excinfo.value.block_id == "feed"

    def test_tolerance_is_one_percent(self, engine):
        out = self._feed(engine, {"CO2": 0.13, "N2": 0.875}).calculate({}).outlets["out"]
        assert out.molar_flow == pytest.approx(100.0)

    def test_negative_fraction_is_composition_error(self, engine):
        with pytest.raises(CompositionError):
            self._feed(engine, {"CO2": -0.1, "N2": 1.1}).calculate({})

    def test_missing_conditions_fall_back_to_params(self, engine):
        feed = _make_unit(FeedOp, engine, {"T": _x(300.0), "P": _q(1.0, "atm"), "flow": _x(5.0)})
        feed.spec = schemas.StreamSpec(composition={"H2O": 1.0})
        out = feed.calculate({}).outlets["out"]
        assert out.temperature == 300.0
        assert out.pressure == pytest.approx(101325.0)

    def test_missing_conditions_are_parameter_error(self, engine):
        feed = _make_unit(FeedOp, engine)
        feed.spec = schemas.StreamSpec(composition={"H2O": 1.0})
        with pytest.raises(ParameterError, match="temperature, pressure, flow"):
            feed.calculate({})


# ---------------------------------------------------------------------------
# Mixer
# ---------------------------------------------------------------------------


class TestMixer:
    def test_mass_conservation(self, engine):
        a = engine.stream({"CO2": 0.13, "N2": 0.87}, 313.15, 105000.0, 600.0)
        b = engine.stream({"H2O": 1.0}, 350.0, 120000.0, 400.0)
        out = _make_unit(MixerOp, engine).calculate({"in1": a, "in2": b}).outlets["out"]

        assert out.molar_flow == pytest.approx(1000.0, abs=1e-6)
        assert out.composition["CO2"] == pytest.approx(0.13 * 0.6, abs=1e-6)
        assert out.composition["N2"] == pytest.approx(0.87 * 0.6, abs=1e-6)
        assert out.composition["H2O"] == pytest.approx(0.4, abs=1e-6)
        assert out.pressure == 105000.0

    def test_energy_conservation(self, engine):
        a = engine.stream({"N2": 1.0}, 300.0, 1e5, 50.0)
        b = engine.stream({"N2": 1.0}, 500.0, 1e5, 150.0)
        result = _make_unit(MixerOp, engine).calculate({"in1": a, "in2": b})
        out = result.outlets["out"]

        H_mix = (a.enthalpy * 50.0 + b.enthalpy * 150.0) / 200.0
        assert engine.mixture_enthalpy(out.composition, out.temperature, out.pressure) == pytest.approx(
            H_mix, abs=0.01
        )
        assert 300.0 < out.temperature < 500.0
        assert result.extra["energy_balance_converged"] is True
        assert result.duty_kw == 0.0

    def test_single_inlet_passes_through(self, engine):
        a = _water(engine)
        out = _make_unit(MixerOp, engine).calculate({"in1": a}).outlets["out"]
        assert out == a
        assert out is not a

    def test_no_inlets_raises(self, engine):
        with pytest.raises(ConnectivityError):
            _make_unit(MixerOp, engine).calculate({})

    def test_zero_flow_warns(self, engine):
        result = _make_unit(MixerOp, engine).calculate(
            {"in1": _water(engine, flow=0.0), "in2": _water(engine, flow=0.0)}
        )
        assert result.outlets["out"].molar_flow == 0.0
        assert result.warnings


# ---------------------------------------------------------------------------
# Splitter
# ---------------------------------------------------------------------------


class TestSplitter:
    def test_split_fraction(self, engine):
        result = _make_unit(SplitterOp, engine, {"split1": _x(0.25)}).calculate({"in": _water(engine)})
        assert result.outlets["out1"].molar_flow == pytest.approx(25.0)
        assert result.outlets["out2"].molar_flow == pytest.approx(75.0)
        assert result.outlets["out1"].temperature == 300.0

    def test_default_is_half(self, engine):
        result = _make_unit(SplitterOp, engine).calculate({"in": _water(engine)})
        assert result.outlets["out1"].molar_flow == pytest.approx(50.0)

    def test_percent_quantity(self, engine):
        result = _make_unit(SplitterOp, engine, {"split1": _q(40.0, "%")}).calculate({"in": _water(engine)})
        assert result.outlets["out1"].molar_flow == pytest.approx(40.0)

    def test_out_of_range_fraction(self, engine):
        with pytest.raises(ParameterError):
            _make_unit(SplitterOp, engine, {"split1": _x(1.5)}).calculate({"in": _water(engine)})


# ---------------------------------------------------------------------------
# Heater / Cooler
# ---------------------------------------------------------------------------


class TestHeaterCooler:
    @pytest.mark.parametrize("T_in, T_out", [(300.0, 301.0), (300.0, 450.0), (350.0, 900.0)])
    def test_heater_duty_is_positive(self, engine, T_in, T_out):
        result = _make_unit(HeaterOp, engine, {"outletT": _x(T_out)}).calculate(
            {"in": _water(engine, T=T_in)}
        )
        assert result.duty_kw >= 0
        assert result.outlets["out"].temperature == T_out

    @pytest.mark.parametrize("T_in, T_out", [(301.0, 300.0), (450.0, 300.0), (900.0, 350.0)])
    def test_cooler_duty_is_negative(self, engine, T_in, T_out):
        result = _make_unit(CoolerOp, engine, {"outletT": _x(T_out)}).calculate(
            {"in": _water(engine, T=T_in)}
        )
        assert result.duty_kw <= 0

    def test_duty_formula(self, engine):
        inlet = _water(engine, T=300.0, flow=36.0)
        result = _make_unit(HeaterOp, engine, {"outletT": _x(350.0)}).calculate({"in": inlet})
        dH = engine.mixture_enthalpy({"H2O": 1.0}, 350.0) - inlet.enthalpy
        assert result.duty_kw == pytest.approx(36.0 * dH * 1000.0 / 3600.0)

    def test_phase_is_rederived(self, engine):
        result = _make_unit(HeaterOp, engine, {"outletT": _q(200.0, "C")}).calculate({"in": _water(engine)})
        assert result.outlets["out"].phase == VAPOR

    def test_heater_target_below_inlet_is_physical_error(self, engine):
        with pytest.raises(PhysicalError) as excinfo:
            _make_unit(HeaterOp, engine, {"outletT": _x(290.0)}).calculate({"in": _water(engine)})
        assert excinfo.value.category == "physical"

    def test_cooler_target_above_inlet_is_physical_error(self, engine):
        with pytest.raises(PhysicalError):
            _make_unit(CoolerOp, engine, {"outletT": _x(310.0)}).calculate({"in": _water(engine)})

    def test_missing_outlet_temperature(self, engine):
        with pytest.raises(ParameterError, match="outletT"):
            _make_unit(HeaterOp, engine).calculate({"in": _water(engine)})

    def test_pressure_drop(self, engine):
        result = _make_unit(
            CoolerOp, engine, {"outletT": _x(290.0), "pressureDrop": _q(0.2, "bar")}
        ).calculate({"in": _water(engine)})
        assert result.outlets["out"].pressure == pytest.approx(81325.0)


# ---------------------------------------------------------------------------
# Pump
# ---------------------------------------------------------------------------


class TestPump:
    def test_outlet_pressure_exact_and_power_positive(self, engine):
        inlet = _water(engine, P=101325.0)
        result = _make_unit(PumpOp, engine, {"dP": _x(50000.0), "efficiency": _x(0.75)}).calculate(
            {"in": inlet}
        )
        out = result.outlets["out"]
        assert out.pressure == 101325.0 + 50000.0
        assert out.phase == LIQUID
        assert result.power_kw > 0

    def test_power_formula(self, engine):
        inlet = _water(engine, flow=200.0)
        result = _make_unit(PumpOp, engine, {"dP": _q(5.0, "bar")}).calculate({"in": inlet})
        Q = 200.0 * 18.015 / (1000.0 * 3600.0)  # m³/s
        assert result.power_kw == pytest.approx(Q * 5e5 / 1000.0 / 0.75)
        assert result.extra["efficiency"] == 0.75

    @pytest.mark.parametrize("params", [{}, {"dP": _x(0.0)}, {"dP": _x(-100.0)}])
    def test_pressure_rise_required(self, engine, params):
        with pytest.raises(ParameterError):
            _make_unit(PumpOp, engine, params).calculate({"in": _water(engine)})

    def test_efficiency_domain(self, engine):
        with pytest.raises(ParameterError):
            _make_unit(PumpOp, engine, {"dP": _x(1e5), "efficiency": _x(1.5)}).calculate(
                {"in": _water(engine)}
            )


# ---------------------------------------------------------------------------
# Flash drum
# ---------------------------------------------------------------------------


class TestFlash:
    def test_flue_gas_flash_conserves_flow(self, engine):
        flash = _make_unit(FlashDrumOp, engine, {"T": _x(313.15), "P": _x(101000.0)})
        result = flash.calculate({"in": _flue_gas(engine)})
        vapor = result.outlets["vapor"]
        liquid = result.outlets["liquid"]

        assert vapor.molar_flow + liquid.molar_flow == pytest.approx(1000.0, abs=1e-6)
        assert vapor.phase == "V"
        assert liquid.phase == "L"
        assert result.extra["rachford_rice_converged"] is True

    def test_two_phase_split(self, engine):
        feed = engine.stream({"N2": 0.5, "H2O": 0.5}, 330.0, 101325.0, 100.0)
        flash = _make_unit(FlashDrumOp, engine, {"T": _x(330.0), "P": _q(1.0, "atm")})
        result = flash.calculate({"in": feed})
        vapor = result.outlets["vapor"]
        liquid = result.outlets["liquid"]

        V = result.extra["vapor_fraction"]
        assert 0.0 < V < 1.0
        assert vapor.molar_flow == pytest.approx(100.0 * V)
        # component balance
        for comp in ("N2", "H2O"):
            total = vapor.molar_flow * vapor.composition[comp] + liquid.molar_flow * liquid.composition[comp]
            assert total == pytest.approx(50.0, rel=1e-4)

    def test_missing_conditions(self, engine):
        with pytest.raises(ParameterError):
            _make_unit(FlashDrumOp, engine, {"T": _x(300.0)}).calculate({"in": _flue_gas(engine)})


# ---------------------------------------------------------------------------
# Absorber / Stripper
# ---------------------------------------------------------------------------


class TestAbsorberStripper:
    def test_absorber_moves_ninety_percent(self, engine):
        gas = _flue_gas(engine, flow=1000.0)
        solvent = engine.stream({"MEA": 0.3, "H2O": 0.7}, 313.15, 105000.0, 500.0, phase=LIQUID)
        result = _make_unit(AbsorberOp, engine).calculate({"gas-in": gas, "liquid-in": solvent})
        gas_out = result.outlets["gas-out"]
        liquid_out = result.outlets["liquid-out"]

        assert result.extra["absorbed_kmol_per_h"] == pytest.approx(0.9 * 130.0)
        assert gas_out.molar_flow * gas_out.composition["CO2"] == pytest.approx(13.0)
        assert gas_out.molar_flow + liquid_out.molar_flow == pytest.approx(1500.0)
        assert gas_out.temperature == pytest.approx(318.15)
        assert liquid_out.temperature == pytest.approx(323.15)
        assert gas_out.pressure == pytest.approx(100000.0)

    def test_absorber_missing_inlet_is_skipped(self, engine):
        result = _make_unit(AbsorberOp, engine).calculate({"gas-in": _flue_gas(engine)})
        assert result.skipped is True
        assert result.outlets == {}
        assert "liquid-in" in result.warnings[0].message

    def test_stripper_overhead(self, engine):
        rich = engine.stream({"CO2": 0.1, "MEA": 0.3, "H2O": 0.6}, 320.0, 2e5, 1000.0, phase=LIQUID)
        result = _make_unit(StripperOp, engine).calculate({"feed": rich})
        overhead = result.outlets["overhead"]
        bottoms = result.outlets["bottoms"]

        assert overhead.molar_flow == pytest.approx(95.0)
        assert overhead.composition["CO2"] == pytest.approx(0.995)
        assert overhead.temperature == pytest.approx(400.0)
        assert bottoms.temperature == pytest.approx(390.0)
        assert overhead.molar_flow + bottoms.molar_flow == pytest.approx(1000.0)
        assert result.duty_kw == result.extra["reboiler_duty_kw"]

    def test_stripper_missing_feed_is_skipped(self, engine):
        assert _make_unit(StripperOp, engine).calculate({}).skipped is True


# ---------------------------------------------------------------------------
# Heat exchanger
# ---------------------------------------------------------------------------


class TestHeatExchanger:
    def test_effectiveness(self, engine):
        hot = _water(engine, T=400.0, flow=36.0)
        cold = _water(engine, T=300.0)
        result = _make_unit(HeatExchangerOp, engine).calculate({"hot-in": hot, "cold-in": cold})
        assert result.outlets["hot-out"].temperature == pytest.approx(320.0)
        assert result.outlets["cold-out"].temperature == pytest.approx(380.0)
        assert result.duty_kw is None
        assert result.extra["exchanged_duty_kw"] == pytest.approx(36.0 * 30.0 * 1000.0 / 3600.0)

    def test_reversed_temperatures_warn(self, engine):
        result = _make_unit(HeatExchangerOp, engine).calculate(
            {"hot-in": _water(engine, T=300.0), "cold-in": _water(engine, T=350.0)}
        )
        assert len(result.warnings) == 1
        assert result.skipped is False

    def test_missing_stream_skips(self, engine):
        hx = _make_unit(HeatExchangerOp, engine)
        assert hx.calculate({"hot-in": _water(engine)}).skipped is True

        hx.connected_outlets = {"hot-out"}
        result = hx.calculate({"hot-in": _water(engine, T=400.0), "cold-in": _water(engine)})
        assert result.skipped is True
        assert "cold-out" in result.warnings[0].message


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestRegistry:
    def test_all_block_types_registered(self):
        assert set(UNIT_OP_REGISTRY) == {
            "Feed", "Mixer", "Splitter", "Heater", "Cooler", "Pump",
            "Flash", "Absorber", "Stripper", "HeatExchanger", "Sink",
        }

    @pytest.mark.parametrize(
        "tag, expected",
        [("Mixer", "Mixer"), ("mixer", "Mixer"), ("flashdrum", "Flash"), ("product", "Sink"), ("Reactor", None)],
    )
    def test_canonical_unit_type(self, tag, expected):
        assert canonical_unit_type(tag) == expected

    def test_annotations(self):
        assert is_annotation("TextBox")
        assert is_annotation("note")
        assert not is_annotation("Mixer")

    def test_type_name(self, engine):
        assert _make_unit(FlashDrumOp, engine).type_name == "Flash"
        assert _make_unit(SinkOp, engine).calculate({}).outlets == {}
