from __future__ import annotations

from typing import List, Optional

from . import schemas
from .components import CATEGORY_LABELS, Component, get_registry
from .export_csv import export_combined_csv
from .sensitivity import run_sensitivity
from .simulation_client import SimulationClient


class SimulationService:
    def __init__(self) -> None:
        self._client = SimulationClient()
        self._registry = get_registry()

    def simulate(self, payload: schemas.FlowsheetPayload) -> schemas.SimulationResult:
        return self._client.simulate_flowsheet(payload)

    def simulate_csv(self, payload: schemas.FlowsheetPayload) -> str:
        return export_combined_csv(self.simulate(payload))

    def thermo_properties(self, request: schemas.PropertyRequest) -> schemas.PropertyResult:
        return self._client.calculate_properties(request)

    def flash(self, request: schemas.FlashRequest) -> schemas.FlashResponse:
        return self._client.flash(request)

    def sensitivity(self, request: schemas.SensitivityRequest) -> schemas.SensitivityResult:
        return run_sensitivity(request, client=self._client)

    def list_components(
        self, search: Optional[str] = None, category: Optional[str] = None
    ) -> List[schemas.ComponentInfo]:
        if search:
            found = self._registry.search(search)
            if category:
                found = [c for c in found if c.category == category]
        elif category:
            found = self._registry.by_category(category)
        else:
            found = list(self._registry)
        return [_component_info(c) for c in found]

    def list_categories(self) -> List[schemas.ComponentCategory]:
        counts = self._registry.count_by_category()
        return [
            schemas.ComponentCategory(id=cat, label=CATEGORY_LABELS.get(cat, cat.title()), count=counts[cat])
            for cat in self._registry.categories()
        ]

    def get_component(self, component_id: str) -> schemas.ComponentInfo:
        cid = self._registry.resolve(component_id)
        if cid is None:
            raise KeyError(f"Component {component_id} not found")
        return _component_info(self._registry.get(cid))


def _component_info(c: Component) -> schemas.ComponentInfo:
    return schemas.ComponentInfo(
        id=c.id,
        name=c.name,
        formula=c.formula,
        cas=c.cas,
        category=c.category,
        molecular_weight=c.molecular_weight,
        critical_temperature_k=c.critical_temperature,
        critical_pressure_bar=c.critical_pressure,
        acentric_factor=c.acentric_factor,
        boiling_point_k=c.boiling_point,
        heat_of_formation_kj_per_mol=c.heat_of_formation,
    )
