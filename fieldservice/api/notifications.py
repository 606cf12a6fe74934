from fastapi import APIRouter, Depends, Query

from fieldservice.api.auth import get_current_user
from fieldservice.models import User
from fieldservice.services.dashboard import get_dashboard

router = APIRouter()


@router.get("/notifications")
def get_notifications(
    keep: bool = Query(False, description="Return without clearing"),
    current_user: User = Depends(get_current_user)
):
    """Recent success / error notifications, oldest first"""
    notifier = get_dashboard().notifier
    items = notifier.recent() if keep else notifier.drain()
    return [n.to_dict() for n in items]


@router.get("/status")
def get_status(current_user: User = Depends(get_current_user)):
    """Loading flag and collection sizes; never blocks on the initial load"""
    store = get_dashboard().store
    snapshot = store.snapshot()
    return {
        "session": store.session is not None,
        "loading": store.loading,
        "collections": {name: len(records) for name, records in snapshot.items()},
    }
