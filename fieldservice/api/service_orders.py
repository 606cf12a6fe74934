import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from fieldservice.api.auth import get_current_user, get_ready_dashboard
from fieldservice.models import User
from fieldservice.schemas import ServiceOrderSave
from fieldservice.services.dashboard import Dashboard
from fieldservice.services.filters import (
    OrderFilterCriteria, filter_orders, technician_options, update_query_string
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/service-orders")
def list_service_orders(
    search: Optional[str] = Query(None, description="Client, model, serial, issue or technician"),
    status_filter: Optional[str] = Query(None, alias="status"),
    order_type: Optional[str] = Query(None, alias="type"),
    period: Optional[str] = Query(None, description="this_week, this_month or last_3_months"),
    technician: Optional[str] = Query(None),
    equipment_serial: Optional[str] = Query(None, description="Exclusive filter: one unit's history"),
    dashboard: Dashboard = Depends(get_ready_dashboard)
):
    criteria = OrderFilterCriteria.from_query_params({
        "search": search,
        "status": status_filter,
        "type": order_type,
        "period": period,
        "technician": technician,
        "equipment_serial": equipment_serial,
    })
    orders = dashboard.store.service_orders
    result = filter_orders(orders, criteria)
    return {
        "view": "service_orders",
        "filters": criteria.to_query_params(),
        "total": len(result),
        "technicians": technician_options(orders),
        "orders": result,
    }


@router.get("/service-orders/filter-link")
def filter_link(
    key: str = Query(..., description="Filter parameter to set"),
    value: Optional[str] = Query(None),
    current: str = Query("", description="Current query string"),
    current_user: User = Depends(get_current_user)
):
    """Query string after setting one filter; defaults remove the parameter"""
    try:
        query = update_query_string(current, key, value)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return {"query": query, "url": f"/?{query}" if query else "/"}


@router.get("/service-orders/{order_id}")
def get_service_order(order_id: str, dashboard: Dashboard = Depends(get_ready_dashboard)):
    for order in dashboard.store.service_orders:
        if order["id"] == order_id:
            return order
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Service order not found")


@router.post("/service-orders", status_code=status.HTTP_201_CREATED)
def create_service_order(
    order: ServiceOrderSave,
    current_user: User = Depends(get_current_user),
    dashboard: Dashboard = Depends(get_ready_dashboard)
):
    saved = dashboard.mutations.save_service_order(order.model_dump(mode="json"))
    dashboard.workflow_for(current_user.id).close()
    return saved


@router.put("/service-orders/{order_id}")
def update_service_order(
    order_id: str,
    order: ServiceOrderSave,
    current_user: User = Depends(get_current_user),
    dashboard: Dashboard = Depends(get_ready_dashboard)
):
    saved = dashboard.mutations.save_service_order({**order.model_dump(mode="json"), "id": order_id})
    dashboard.workflow_for(current_user.id).close()
    return saved


@router.delete("/service-orders/{order_id}")
def delete_service_order(order_id: str, dashboard: Dashboard = Depends(get_ready_dashboard)):
    dashboard.mutations.delete_service_order(order_id)
    return {"success": True, "message": "Service order deleted"}
