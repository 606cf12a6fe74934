from typing import Optional

from fastapi import APIRouter, Depends, Query

from fieldservice.api.auth import get_ready_dashboard
from fieldservice.schemas import RouteRequest
from fieldservice.services.dashboard import Dashboard
from fieldservice.services.routes import route_clients, route_for_clients

router = APIRouter()


@router.get("/routes/clients")
def get_route_clients(
    search: Optional[str] = Query(None, description="Search by name or address"),
    dashboard: Dashboard = Depends(get_ready_dashboard)
):
    return route_clients(dashboard.store.clients, search)


@router.post("/routes/plan")
def plan_route(route: RouteRequest, dashboard: Dashboard = Depends(get_ready_dashboard)):
    return route_for_clients(dashboard.store.clients, route.client_ids)
