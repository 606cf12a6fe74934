from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from fieldservice.api.auth import get_current_user, get_ready_dashboard
from fieldservice.models import User
from fieldservice.schemas import ReagentDeliverySave, PendingDeliveryUpdate
from fieldservice.services.dashboard import Dashboard
from fieldservice.services.filters import as_date, filter_pending_deliveries

router = APIRouter()


# ============ Reagent deliveries ============

@router.get("/deliveries")
def get_deliveries(
    client_name: Optional[str] = Query(None),
    dashboard: Dashboard = Depends(get_ready_dashboard)
):
    deliveries = dashboard.store.deliveries
    if client_name:
        deliveries = [d for d in deliveries if d.get("client_name") == client_name]
    return sorted(deliveries, key=lambda d: str(as_date(d.get("delivery_date")) or ""), reverse=True)


@router.post("/deliveries", status_code=status.HTTP_201_CREATED)
def create_delivery(
    delivery: ReagentDeliverySave,
    current_user: User = Depends(get_current_user),
    dashboard: Dashboard = Depends(get_ready_dashboard)
):
    return dashboard.mutations.save_reagent_delivery(delivery.model_dump(mode="json"), user_id=current_user.id)


@router.put("/deliveries/{delivery_id}")
def update_delivery(
    delivery_id: str,
    delivery: ReagentDeliverySave,
    current_user: User = Depends(get_current_user),
    dashboard: Dashboard = Depends(get_ready_dashboard)
):
    return dashboard.mutations.save_reagent_delivery(
        {**delivery.model_dump(mode="json"), "id": delivery_id}, user_id=current_user.id
    )


@router.delete("/deliveries/{delivery_id}")
def delete_delivery(delivery_id: str, dashboard: Dashboard = Depends(get_ready_dashboard)):
    dashboard.mutations.delete_reagent_delivery(delivery_id)
    return {"success": True, "message": "Delivery deleted"}


# ============ Pending reagent deliveries ============

@router.get("/pending-deliveries")
def get_pending_deliveries(
    status_filter: str = Query("Pendiente", alias="status", description="Status, or Todas for all"),
    dashboard: Dashboard = Depends(get_ready_dashboard)
):
    return filter_pending_deliveries(dashboard.store.pending_deliveries, status_filter)


@router.put("/pending-deliveries/{delivery_id}")
def update_pending_delivery(
    delivery_id: str,
    changes: PendingDeliveryUpdate,
    dashboard: Dashboard = Depends(get_ready_dashboard)
):
    return dashboard.mutations.update_pending_delivery(delivery_id, changes.model_dump(mode="json", exclude_unset=True))
