from fastapi import APIRouter, Depends, HTTPException, status

from fieldservice.api.auth import get_current_user, get_ready_dashboard
from fieldservice.models import User
from fieldservice.schemas import WorkflowAction
from fieldservice.services.dashboard import Dashboard

router = APIRouter()


@router.get("/workflow")
def get_workflow(current_user: User = Depends(get_current_user), dashboard: Dashboard = Depends(get_ready_dashboard)):
    return dashboard.workflow_for(current_user.id).state.to_dict()


@router.post("/workflow")
def apply_workflow_action(
    action: WorkflowAction,
    current_user: User = Depends(get_current_user),
    dashboard: Dashboard = Depends(get_ready_dashboard)
):
    """Opening a dialog replaces whichever one is open"""
    workflow = dashboard.workflow_for(current_user.id)
    if action.action == "new":
        return workflow.open_new().to_dict()
    if action.action == "close":
        return workflow.close().to_dict()

    if not action.order_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="order_id is required")
    order = next((o for o in dashboard.store.service_orders if o["id"] == action.order_id), None)
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Service order not found")
    if action.action == "edit":
        return workflow.open_edit(order).to_dict()
    return workflow.open_details(order).to_dict()
