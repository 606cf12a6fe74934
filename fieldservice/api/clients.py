import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from fieldservice.api.auth import get_ready_dashboard
from fieldservice.schemas import ClientCreate, ClientUpdate, SubClientCreate, SubClientUpdate
from fieldservice.services.dashboard import Dashboard

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/clients")
def get_clients(
    search: Optional[str] = Query(None, description="Search by name"),
    dashboard: Dashboard = Depends(get_ready_dashboard)
):
    clients = dashboard.store.clients
    if search:
        term = search.lower()
        clients = [c for c in clients if term in (c.get("name") or "").lower()]
    return sorted(clients, key=lambda c: (c.get("name") or "").lower())


@router.get("/clients/{client_id}")
def get_client(client_id: str, dashboard: Dashboard = Depends(get_ready_dashboard)):
    for client in dashboard.store.clients:
        if client["id"] == client_id:
            return {
                **client,
                "sub_clients": dashboard.sub_clients(client_id),
                "equipment": [e for e in dashboard.store.equipment if e.get("client_id") == client_id],
            }
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")


@router.post("/clients", status_code=status.HTTP_201_CREATED)
def create_client(client: ClientCreate, dashboard: Dashboard = Depends(get_ready_dashboard)):
    return dashboard.mutations.add_client(client.name, client.address)


@router.put("/clients/{client_id}")
def update_client(client_id: str, client: ClientUpdate, dashboard: Dashboard = Depends(get_ready_dashboard)):
    return dashboard.mutations.update_client(client_id, client.model_dump(exclude_unset=True))


@router.delete("/clients/{client_id}")
def delete_client(client_id: str, dashboard: Dashboard = Depends(get_ready_dashboard)):
    """Deletes the client's equipment first; the client stays when that fails"""
    result = dashboard.mutations.delete_client(client_id)
    return {"success": True, **result}


# ============ Sub-clients (laboratories) ============

@router.get("/clients/{client_id}/sub-clients")
def get_sub_clients(client_id: str, dashboard: Dashboard = Depends(get_ready_dashboard)):
    return dashboard.sub_clients(client_id)


@router.post("/clients/{client_id}/sub-clients", status_code=status.HTTP_201_CREATED)
def create_sub_client(client_id: str, sub_client: SubClientCreate, dashboard: Dashboard = Depends(get_ready_dashboard)):
    return dashboard.mutations.add_sub_client(client_id, sub_client.name, sub_client.address)


@router.put("/sub-clients/{sub_client_id}")
def update_sub_client(sub_client_id: str, sub_client: SubClientUpdate, dashboard: Dashboard = Depends(get_ready_dashboard)):
    return dashboard.mutations.update_sub_client(sub_client_id, sub_client.model_dump(exclude_unset=True))


@router.delete("/sub-clients/{sub_client_id}")
def delete_sub_client(sub_client_id: str, dashboard: Dashboard = Depends(get_ready_dashboard)):
    dashboard.mutations.delete_sub_client(sub_client_id)
    return {"success": True, "message": "Laboratory deleted"}
