"""
End-to-end tests for the run assembler.

Solves small flowsheets through SimulationClient and checks the assembled
result: stream table, unit results, KPIs, equipment costs, constraint and
spec evaluation, diagnostics and the run log.
"""

import pytest

from flowsim import schemas
from flowsim.errors import SimulationError
from flowsim.simulation_client import SimulationClient


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def client():
    return SimulationClient()


def _x(value):
    return {"kind": "number", "x": value}


def _q(value, unit):
    return {"kind": "quantity", "q": {"value": value, "unit": unit}}


def _edge(sid, src, src_port, dst, dst_port, spec=None, **extra):
    edge = {
        "id": sid,
        "source": {"block": src, "port": src_port},
        "target": {"block": dst, "port": dst_port},
        **extra,
    }
    if spec is not None:
        edge["spec"] = spec
    return edge


def _feed_spec(composition, T=313.15, P=1.05, flow=1000.0):
    return {
        "T": {"value": T, "unit": "K"},
        "P": {"value": P, "unit": "bar"},
        "flow": {"value": flow, "unit": "kmol/h"},
        "composition": composition,
    }


def _make_payload(name, components, blocks, streams, **extra) -> schemas.FlowsheetPayload:
    return schemas.FlowsheetPayload.model_validate({
        "name": name,
        "components": [{"id": c, "name": c} for c in components],
        "graph": {"blocks": blocks, "streams": streams},
        **extra,
    })


def _capture_payload(**extra) -> schemas.FlowsheetPayload:
    """
    Flue gas ──► Absorber ──► vent
    Solvent ─► Pump ─┘  └──► Stripper ──► CO2 product
                                └──► Cooler ──► lean solvent
    """
    return _make_payload(
        name="amine-capture",
        components=["CO2", "N2", "MEA", "H2O"],
        blocks=[
            {"id": "f-gas", "type": "Feed"},
            {"id": "solvent", "type": "Feed"},
            {"id": "pump", "type": "Pump", "params": {"dP": _q(1.0, "bar")}},
            {"id": "absorber", "type": "Absorber"},
            {"id": "stripper", "type": "Stripper"},
            {"id": "cooler", "type": "Cooler", "params": {"outletT": _q(40.0, "C")}},
            {"id": "vent", "type": "Sink"},
            {"id": "co2", "type": "Sink"},
            {"id": "lean", "type": "Sink"},
        ],
        streams=[
            _edge("flue-gas", "f-gas", "out", "absorber", "gas-in",
                  _feed_spec({"CO2": 0.13, "N2": 0.87}), name="Flue gas"),
            _edge("s-solvent", "solvent", "out", "pump", "in",
                  _feed_spec({"MEA": 0.3, "H2O": 0.7}, flow=500.0)),
            _edge("s-pumped", "pump", "out", "absorber", "liquid-in"),
            _edge("vent-gas", "absorber", "gas-out", "vent", "in"),
            _edge("rich", "absorber", "liquid-out", "stripper", "feed"),
            _edge("co2-product", "stripper", "overhead", "co2", "in"),
            _edge("hot-lean", "stripper", "bottoms", "cooler", "in"),
            _edge("cool-lean", "cooler", "out", "lean", "in",
                  bounds={"T": {"min": {"value": 280.0, "unit": "K"}, "max": {"value": 310.0, "unit": "K"}}}),
        ],
        **extra,
    )


def _recycle_payload(**extra) -> schemas.FlowsheetPayload:
    return _make_payload(
        name="recycle",
        components=["water"],
        blocks=[
            {"id": "feed", "type": "Feed"},
            {"id": "mix", "type": "Mixer"},
            {"id": "split", "type": "Splitter", "params": {"split1": _x(0.5)}},
            {"id": "product", "type": "Sink"},
        ],
        streams=[
            _edge("s-feed", "feed", "out", "mix", "in1",
                  _feed_spec({"water": 1.0}, T=300.0, P=1.01325, flow=100.0)),
            _edge("s-mixed", "mix", "out", "split", "in"),
            _edge("recycle", "split", "out1", "mix", "in2"),
            _edge("s-product", "split", "out2", "product", "in"),
        ],
        **extra,
    )


def _stream(result, sid):
    return next(s for s in result.streams if s.id == sid)


def _unit(result, uid):
    return next(u for u in result.units if u.id == uid)


# ---------------------------------------------------------------------------
# Successful runs
# ---------------------------------------------------------------------------


class TestCaptureFlowsheet:
    def test_run_succeeds(self, client):
        result = client.simulate_flowsheet(_capture_payload())

        assert result.status == "success"
        assert result.converged is True
        assert result.errors == []
        assert result.execution_order == ["f-gas", "solvent", "pump", "absorber", "stripper", "cooler"]
        assert {u.status for u in result.units} == {"ok"}

    def test_stream_table(self, client):
        result = client.simulate_flowsheet(_capture_payload())

        flue = _stream(result, "flue-gas")
        assert flue.name == "Flue gas"
        assert flue.pressure_pa == pytest.approx(105000.0)
        assert flue.pressure_bar == pytest.approx(1.05)
        assert flue.mass_flow_kg_per_h == pytest.approx(1000.0 * (0.13 * 44.010 + 0.87 * 28.014))
        assert _stream(result, "s-pumped").pressure_pa == pytest.approx(205000.0)
        assert _stream(result, "vent-gas").molar_flow_kmol_per_h == pytest.approx(883.0)
        assert _stream(result, "co2-product").composition["CO2"] == pytest.approx(0.995)
        assert _stream(result, "cool-lean").temperature_k == pytest.approx(313.15)

    def test_kpi_formulas(self, client):
        result = client.simulate_flowsheet(_capture_payload())
        kpis = result.kpis
        econ = schemas.EconomicConfig()

        stripper = _unit(result, "stripper")
        cooler = _unit(result, "cooler")
        pump = _unit(result, "pump")
        assert stripper.duty_kw > 0
        assert cooler.duty_kw < 0

        assert kpis["steam"] == pytest.approx(stripper.duty_kw * 3.6 / 1000.0)
        assert kpis["cooling"] == pytest.approx(-cooler.duty_kw * 3.6 / 1000.0)
        assert kpis["electricity"] == pytest.approx(pump.power_kw)
        assert kpis["CO2_emissions"] == pytest.approx(
            kpis["steam"] * econ.steam_emission_factor + kpis["electricity"] * econ.grid_emission_factor
        )
        assert kpis["COM"] == pytest.approx(
            kpis["steam"] * econ.steam_price
            + kpis["electricity"] * econ.electricity_price
            + kpis["CO2_emissions"] * econ.co2_price
            + kpis["cooling"] * econ.cooling_price
            + kpis["CAPEX_proxy"] * econ.capex_factor / econ.operating_hours
        )

    def test_capture_kpis(self, client):
        kpis = client.simulate_flowsheet(_capture_payload()).kpis
        assert kpis["capture_efficiency"] == pytest.approx(0.9)
        assert kpis["CO2_captured"] == pytest.approx(117.0 * 44.010 / 1000.0)

    def test_equipment_costs(self, client):
        result = client.simulate_flowsheet(_capture_payload())
        by_block = {e.block_id: e for e in result.equipment}

        assert set(by_block) == {"pump", "absorber", "stripper", "cooler"}
        assert by_block["pump"].sizing_param == "power"
        assert by_block["cooler"].sizing_param == "area"
        assert result.kpis["CAPEX_proxy"] == pytest.approx(sum(e.cost_usd for e in result.equipment))

    def test_specs(self, client):
        payload = _capture_payload(specs=[
            {"id": "purity", "type": "purity", "stream_id": "co2-product", "component": "CO2", "target": 0.99},
            {"id": "capture", "type": "capture", "component": "CO2", "vent_stream_id": "vent-gas",
             "target_removal": 0.85},
            {"id": "recovery", "type": "recovery", "component": "CO2", "feed_stream_id": "flue-gas",
             "product_stream_id": "co2-product", "target": 0.9},
        ])
        specs = {s.spec_id: s for s in client.simulate_flowsheet(payload).spec_results}

        assert specs["purity"].met is True
        assert specs["capture"].value == pytest.approx(0.9)
        assert specs["capture"].met is True
        # 90 % absorbed, 95 % of that stripped, 99.5 % pure overhead
        assert specs["recovery"].value == pytest.approx(0.9 * 0.95 * 0.995)
        assert specs["recovery"].met is False

    def test_constraints_and_bounds(self, client):
        payload = _capture_payload(constraints=[
            {"id": "max-power", "type": "max", "ref": {"kind": "kpi", "metric": "electricity"}, "limit": 0.01},
            {"id": "min-T", "type": "min", "ref": {"kind": "stream", "stream_id": "cool-lean", "metric": "T"},
             "limit": 300.0},
            {"id": "pump-dP", "type": "range", "ref": {"kind": "unit", "block_id": "pump", "metric": "dP"},
             "min": 0.5e5, "max": 2e5},
        ])
        violations = {v.constraint_id: v for v in client.simulate_flowsheet(payload).violations}

        assert set(violations) == {"max-power", "cool-lean.T"}
        assert violations["max-power"].hard is True
        assert "exceeds maximum" in violations["max-power"].message
        assert violations["cool-lean.T"].hard is False

    def test_run_log(self, client):
        log = client.simulate_flowsheet(_capture_payload()).log
        assert log[0] == "Flowsheet 'amine-capture': 6 blocks executed"
        assert "Converged in 1 iteration(s)" in log
        assert any(line.startswith("  Steam:") for line in log)
        assert any("Total Equipment CAPEX" in line for line in log)
        assert any(line.startswith("Total Annual Cost:") for line in log)

    def test_total_annual_cost(self, client):
        result = client.simulate_flowsheet(_capture_payload())
        econ = result.economics
        config = schemas.EconomicConfig()

        assert econ.installed_capex == pytest.approx(
            result.kpis["CAPEX_proxy"] * config.installation_factor * (1.0 + config.contingency_factor)
        )
        assert econ.total_annual_cost == pytest.approx(econ.annualized_capex + econ.total_opex)
        assert econ.utility_cost > 0
        assert econ.payback_years is None
        assert econ.npv is None

    def test_payback_and_npv_with_revenue(self, client):
        result = client.simulate_flowsheet(_capture_payload(economics={"annual_revenue": 1e9}))
        econ = result.economics

        assert econ.annual_cash_flow == pytest.approx(1e9 - econ.total_opex)
        assert econ.payback_years == pytest.approx(econ.installed_capex / econ.annual_cash_flow)
        assert econ.npv > 0
        assert any(line.startswith("  Payback:") for line in result.log)

    def test_fix_suggestions(self, client):
        payload = _capture_payload(
            constraints=[{"id": "max-steam", "type": "max", "ref": {"kind": "kpi", "metric": "steam"}, "limit": 0.0}],
            specs=[{"id": "recovery", "type": "recovery", "component": "CO2", "feed_stream_id": "flue-gas",
                    "product_stream_id": "co2-product", "target": 0.9}],
        )
        suggestions = client.simulate_flowsheet(payload).suggestions

        assert [(s.block_id, s.param) for s in suggestions] == [("stripper", "P"), ("absorber", "stages")]
        assert suggestions[0].value.q.value == pytest.approx(2.0)
        assert suggestions[1].value.n == 20

    def test_no_suggestions_when_targets_met(self, client):
        assert client.simulate_flowsheet(_capture_payload()).suggestions == []

    def test_port_phase_mismatch_is_a_warning(self, client):
        payload = _capture_payload()
        stripper = next(b for b in payload.graph.blocks if b.id == "stripper")
        stripper.ports = [
            schemas.PortSpec(id="overhead", name="overhead", direction="out", phase="L"),
            schemas.PortSpec(id="bottoms", name="bottoms", direction="out", phase="L"),
        ]
        result = client.simulate_flowsheet(payload)

        assert result.status == "success"
        mismatches = [d for d in result.warnings if "expects phase" in d.message]
        assert [(d.block_id, d.stream_id) for d in mismatches] == [("stripper", "co2-product")]
        assert mismatches[0].category == "physical"


class TestRecycleThroughClient:
    def test_component_names_are_resolved(self, client):
        result = client.simulate_flowsheet(_recycle_payload())
        assert _stream(result, "s-feed").composition == {"H2O": 1.0}

    def test_tear_is_flagged(self, client):
        result = client.simulate_flowsheet(_recycle_payload())
        assert result.converged is True
        assert result.tear_streams == ["recycle"]
        assert _stream(result, "recycle").is_tear is True
        assert _stream(result, "s-mixed").molar_flow_kmol_per_h == pytest.approx(200.0)

    def test_non_convergence_is_a_warning(self, client):
        result = client.simulate_flowsheet(_recycle_payload(solver={"max_iterations": 1}))
        assert result.status == "success"
        assert result.converged is False
        assert any(d.category == "convergence" for d in result.warnings)
        assert "Did not converge after 1 iteration(s)" in result.log


# ---------------------------------------------------------------------------
# Failed runs
# ---------------------------------------------------------------------------


class TestErrors:
    def test_validation_errors_stop_the_run(self, client):
        payload = _recycle_payload()
        payload.graph.streams[0].spec.composition = {"water": 0.6}
        result = client.simulate_flowsheet(payload)

        assert result.status == "error"
        assert result.streams == []
        assert [e.category for e in result.errors] == ["composition"]
        assert result.log[0] == "Validation failed: 1 error(s)"

    def test_physical_error_names_the_block(self, client):
        payload = _make_payload(
            name="bad-heater",
            components=["H2O"],
            blocks=[
                {"id": "feed", "type": "Feed"},
                {"id": "heater", "type": "Heater", "params": {"outletT": _x(280.0)}},
                {"id": "out", "type": "Sink"},
            ],
            streams=[
                _edge("s1", "feed", "out", "heater", "in", _feed_spec({"H2O": 1.0}, T=300.0)),
                _edge("s2", "heater", "out", "out", "in"),
            ],
        )
        result = client.simulate_flowsheet(payload)

        assert result.status == "error"
        fatal = result.errors[-1]
        assert fatal.category == "physical"
        assert fatal.block_id == "heater"
        assert result.log[0].startswith("SOLVER FAILED (block 'heater'): [physical]")

    def test_missing_flash_condition_is_parameter_error(self, client):
        payload = _make_payload(
            name="bad-flash",
            components=["CO2", "N2"],
            blocks=[
                {"id": "feed", "type": "Feed"},
                {"id": "flash", "type": "Flash", "params": {"T": _x(313.15)}},
            ],
            streams=[
                _edge("s1", "feed", "out", "flash", "in", _feed_spec({"CO2": 0.13, "N2": 0.87})),
            ],
        )
        result = client.simulate_flowsheet(payload)
        assert result.status == "error"
        assert result.errors[-1].category == "parameter"
        assert result.errors[-1].block_id == "flash"


# ---------------------------------------------------------------------------
# Single-stream calculations
# ---------------------------------------------------------------------------


class TestProperties:
    def _request(self, composition, T=25.0, P=1.0):
        return schemas.PropertyRequest(
            temperature=schemas.Quantity(value=T, unit="C"),
            pressure=schemas.Quantity(value=P, unit="atm"),
            composition=composition,
        )

    def test_water_properties(self, client):
        res = client.calculate_properties(self._request({"water": 1.0}))
        props = res.properties

        assert props["phase"] == "L"
        assert props["temperature_k"] == pytest.approx(298.15)
        assert props["pressure_bar"] == pytest.approx(1.01325)
        assert props["molecular_weight"] == pytest.approx(18.015)
        assert props["density_kg_per_m3"] == 1000.0
        assert props["reduced_properties"]["H2O"]["Tr"] == pytest.approx(298.15 / 647.10)
        assert res.warnings == []

    def test_composition_is_normalised_with_warning(self, client):
        res = client.calculate_properties(self._request({"N2": 2.0}))
        assert res.properties["composition"] == {"N2": 1.0}
        assert any("normalised" in w for w in res.warnings)

    def test_unknown_component_warns(self, client):
        res = client.calculate_properties(self._request({"N2": 0.5, "Unobtainium": 0.5}))
        assert any("Unobtainium" in w for w in res.warnings)

    def test_zero_composition_raises(self, client):
        with pytest.raises(SimulationError):
            client.calculate_properties(self._request({"N2": 0.0}))

    def test_flash(self, client):
        res = client.flash(schemas.FlashRequest(
            temperature=schemas.Quantity(value=330.0, unit="K"),
            pressure=schemas.Quantity(value=1.0, unit="atm"),
            composition={"N2": 0.5, "H2O": 0.5},
        ))
        assert res.converged is True
        assert res.phase == "VL"
        assert 0.0 < res.vapor_fraction < 1.0
        assert res.vapor["N2"] > res.liquid["N2"]
