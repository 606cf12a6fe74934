from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from fieldservice.api.auth import get_ready_dashboard
from fieldservice.schemas import ReminderSave, ReminderStatusUpdate
from fieldservice.services.dashboard import Dashboard
from fieldservice.services.filters import filter_reminders

router = APIRouter()


@router.get("/reminders")
def get_reminders(
    status_filter: Optional[str] = Query(None, alias="status"),
    reminder_type: Optional[str] = Query(None, alias="type"),
    dashboard: Dashboard = Depends(get_ready_dashboard)
):
    return filter_reminders(dashboard.store.reminders, status_filter, reminder_type)


@router.post("/reminders", status_code=status.HTTP_201_CREATED)
def create_reminder(reminder: ReminderSave, dashboard: Dashboard = Depends(get_ready_dashboard)):
    """A reagent delivery reminder is stored as a pending reagent delivery instead"""
    return dashboard.mutations.save_reminder(reminder.model_dump(mode="json"))


@router.put("/reminders/{reminder_id}")
def update_reminder(reminder_id: str, reminder: ReminderSave, dashboard: Dashboard = Depends(get_ready_dashboard)):
    return dashboard.mutations.save_reminder(reminder.model_dump(mode="json"), reminder_id=reminder_id)


@router.patch("/reminders/{reminder_id}/status")
def update_reminder_status(reminder_id: str, update: ReminderStatusUpdate, dashboard: Dashboard = Depends(get_ready_dashboard)):
    return dashboard.mutations.update_reminder_status(reminder_id, update.status)


@router.delete("/reminders/{reminder_id}")
def delete_reminder(reminder_id: str, dashboard: Dashboard = Depends(get_ready_dashboard)):
    dashboard.mutations.delete_reminder(reminder_id)
    return {"success": True, "message": "Reminder deleted"}
