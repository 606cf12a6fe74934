import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from fieldservice.api.auth import get_ready_dashboard
from fieldservice.schemas import EquipmentCreate, EquipmentUpdate, EquipmentMove
from fieldservice.services.dashboard import Dashboard
from fieldservice.services.filters import equipment_history_link

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/equipment")
def get_equipment(
    client_id: Optional[str] = Query(None),
    dashboard: Dashboard = Depends(get_ready_dashboard)
):
    """Equipment units with their derived status"""
    units = dashboard.views.equipment_with_status()
    if client_id:
        units = [u for u in units if u.get("client_id") == client_id]
    return units


@router.get("/equipment/types")
def get_equipment_types(dashboard: Dashboard = Depends(get_ready_dashboard)):
    return dashboard.equipment_types()


@router.get("/equipment/{equipment_id}")
def get_equipment_unit(equipment_id: str, dashboard: Dashboard = Depends(get_ready_dashboard)):
    for unit in dashboard.views.equipment_with_status():
        if unit["id"] == equipment_id:
            return {**unit, "history_link": equipment_history_link(unit["serial_number"])}
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Equipment not found")


@router.get("/equipment/{equipment_id}/history-link")
def get_history_link(equipment_id: str, dashboard: Dashboard = Depends(get_ready_dashboard)):
    for unit in dashboard.store.equipment:
        if unit["id"] == equipment_id:
            return {"url": equipment_history_link(unit["serial_number"]), "view": "service_orders"}
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Equipment not found")


@router.post("/equipment", status_code=status.HTTP_201_CREATED)
def create_equipment(unit: EquipmentCreate, dashboard: Dashboard = Depends(get_ready_dashboard)):
    return dashboard.mutations.add_equipment(unit.model_dump(mode="json"))


@router.put("/equipment/{equipment_id}")
def update_equipment(equipment_id: str, unit: EquipmentUpdate, dashboard: Dashboard = Depends(get_ready_dashboard)):
    return dashboard.mutations.update_equipment(equipment_id, unit.model_dump(mode="json", exclude_unset=True))


@router.post("/equipment/{equipment_id}/move")
def move_equipment(equipment_id: str, move: EquipmentMove, dashboard: Dashboard = Depends(get_ready_dashboard)):
    return dashboard.mutations.move_equipment(equipment_id, move.client_id)


@router.delete("/equipment/{equipment_id}")
def delete_equipment(equipment_id: str, dashboard: Dashboard = Depends(get_ready_dashboard)):
    dashboard.mutations.delete_equipment(equipment_id)
    return {"success": True, "message": "Equipment deleted"}
