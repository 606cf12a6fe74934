from fastapi import APIRouter, Depends, status

from fieldservice.api.auth import get_ready_dashboard
from fieldservice.schemas import ReagentTypeCreate
from fieldservice.services.dashboard import Dashboard

router = APIRouter()


@router.get("/reagent-types")
def get_reagent_types(dashboard: Dashboard = Depends(get_ready_dashboard)):
    return sorted(dashboard.store.reagent_types, key=lambda r: (r.get("name") or "").lower())


@router.post("/reagent-types", status_code=status.HTTP_201_CREATED)
def create_reagent_type(reagent: ReagentTypeCreate, dashboard: Dashboard = Depends(get_ready_dashboard)):
    return dashboard.mutations.add_reagent_type(reagent.name, reagent.sizes)
