"""Monthly statistics (aggregation views)"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from fieldservice.api.auth import get_ready_dashboard
from fieldservice.services.aggregations import ALL_CLIENTS
from fieldservice.services.dashboard import Dashboard

router = APIRouter()


def _month(year: Optional[int], month: Optional[int]):
    today = date.today()
    return year or today.year, month or today.month


@router.get("/stats/visits")
def visits_by_client(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    dashboard: Dashboard = Depends(get_ready_dashboard)
):
    year, month = _month(year, month)
    return {"year": year, "month": month, "data": dashboard.views.visits_by_client(year, month)}


@router.get("/stats/reagents")
def reagent_consumption(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    client: str = Query(ALL_CLIENTS, description="Client name, or Todos"),
    dashboard: Dashboard = Depends(get_ready_dashboard)
):
    """Per-client matrix with every catalog reagent (zero baseline) plus the month totals"""
    year, month = _month(year, month)
    response = {
        "year": year,
        "month": month,
        "client": client,
        "reagents": [r["name"] for r in dashboard.store.reagent_types],
        "by_client": dashboard.views.reagent_consumption_by_client(year, month, client),
        "total": dashboard.views.total_reagent_consumption(year, month),
    }
    if client != ALL_CLIENTS:
        response["client_totals"] = dashboard.views.reagent_consumption_for_client(year, month, client)
    return response


@router.get("/stats/service-reasons")
def service_reasons(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    dashboard: Dashboard = Depends(get_ready_dashboard)
):
    year, month = _month(year, month)
    return {"year": year, "month": month, **dashboard.views.service_reasons_by_client(year, month)}
