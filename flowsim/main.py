from __future__ import annotations

from typing import List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse

from . import schemas
from .errors import SimulationError
from .simulation_service import SimulationService

app = FastAPI(title="Flowsheet Simulation API", version="0.1.0")
service = SimulationService()


@app.get("/healthz")
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/simulate", response_model=schemas.SimulationResult)
def run_simulation(payload: schemas.FlowsheetPayload) -> schemas.SimulationResult:
    try:
        return service.simulate(payload)
    except Exception as exc:  # pragma: no cover - the client reports failures in the result
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@app.post("/simulate/csv", response_class=PlainTextResponse)
def run_simulation_csv(payload: schemas.FlowsheetPayload) -> str:
    try:
        return service.simulate_csv(payload)
    except Exception as exc:  # pragma: no cover
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@app.post("/properties", response_model=schemas.PropertyResult)
def calculate_properties(request: schemas.PropertyRequest) -> schemas.PropertyResult:
    try:
        return service.thermo_properties(request)
    except SimulationError as exc:
        raise HTTPException(status_code=422, detail=exc.message) from exc


@app.post("/flash", response_model=schemas.FlashResponse)
def flash(request: schemas.FlashRequest) -> schemas.FlashResponse:
    try:
        return service.flash(request)
    except SimulationError as exc:
        raise HTTPException(status_code=422, detail=exc.message) from exc


@app.get("/components", response_model=List[schemas.ComponentInfo])
def list_components(
    search: Optional[str] = None, category: Optional[str] = None
) -> List[schemas.ComponentInfo]:
    return service.list_components(search=search, category=category)


@app.get("/components/categories", response_model=List[schemas.ComponentCategory])
def list_component_categories() -> List[schemas.ComponentCategory]:
    return service.list_categories()


@app.get("/components/{component_id}", response_model=schemas.ComponentInfo)
def get_component(component_id: str) -> schemas.ComponentInfo:
    try:
        return service.get_component(component_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/sensitivity", response_model=schemas.SensitivityResult)
def run_sensitivity(request: schemas.SensitivityRequest) -> schemas.SensitivityResult:
    try:
        return service.sensitivity(request)
    except Exception as exc:  # pragma: no cover
        raise HTTPException(status_code=500, detail=str(exc)) from exc
