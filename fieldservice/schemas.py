from pydantic import BaseModel, EmailStr, Field
from datetime import datetime, date
from typing import Optional, List, Literal, Union

# Form values may arrive as text; the mutation layer parses them.
NumberInput = Optional[Union[float, str]]


class UserBase(BaseModel):
    email: EmailStr
    name: Optional[str] = None


class UserCreate(UserBase):
    password: str
    name: str
    role: Optional[str] = None


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class User(UserBase):
    id: str
    is_active: bool
    role: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserInfo(BaseModel):
    """User info returned with login token"""
    id: str
    email: str
    name: Optional[str] = None
    role: Optional[str] = None
    is_active: bool


class Token(BaseModel):
    access_token: str
    token_type: str
    expires_in: int  # Access token expiry in seconds
    user: Optional[UserInfo] = None


# ============ Clients ============

class ClientCreate(BaseModel):
    name: str
    address: Optional[str] = None


class ClientUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None


class SubClientCreate(BaseModel):
    name: str
    address: Optional[str] = None


class SubClientUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None


# ============ Equipment ============

class EquipmentCreate(BaseModel):
    client_id: str
    sub_client_id: Optional[str] = None
    type_id: Optional[str] = None
    type_name: Optional[str] = None
    brand: str
    model_name: str
    serial_number: str
    installation_date: Optional[date] = None
    notes: Optional[str] = None


class EquipmentUpdate(BaseModel):
    serial_number: Optional[str] = None
    installation_date: Optional[date] = None
    notes: Optional[str] = None
    sub_client_id: Optional[str] = None
    brand: Optional[str] = None
    model_name: Optional[str] = None


class EquipmentMove(BaseModel):
    client_id: str


# ============ Service orders ============

class PartUsed(BaseModel):
    id: Optional[str] = None
    part_name: Optional[str] = None
    quantity: NumberInput = None
    unit_cost: NumberInput = None
    total_cost: NumberInput = None


class ServiceOrderSave(BaseModel):
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    sub_client_id: Optional[str] = None
    sub_client_name: Optional[str] = None
    client_contact: Optional[str] = None
    client_location: Optional[str] = None
    equipment_id: Optional[str] = None
    equipment_type: Optional[str] = None
    equipment_brand: Optional[str] = None
    equipment_model: Optional[str] = None
    equipment_serial: Optional[str] = None
    reported_issue: Optional[str] = None
    work_summary: Optional[str] = None
    task_time: NumberInput = None
    parts_used: List[PartUsed] = []
    labor_hours: NumberInput = None
    labor_rate: NumberInput = None
    transport_cost: NumberInput = None
    # Accepted for compatibility; always recomputed
    parts_cost: NumberInput = None
    labor_cost: NumberInput = None
    total_cost: NumberInput = None
    status: Optional[str] = None
    order_type: Optional[str] = None
    assigned_technician: Optional[str] = None
    creation_date: Optional[date] = None
    date_received: Optional[date] = None
    date_completed: Optional[date] = None


# ============ Reagents ============

class ReagentTypeCreate(BaseModel):
    name: str
    sizes: List[str] = []


class DeliveryItem(BaseModel):
    id: Optional[str] = None
    reagent_type_id: Optional[str] = None
    reagent_name: Optional[str] = None
    reagent_size: Optional[str] = None
    quantity: Optional[Union[int, str]] = None
    is_pending: bool = False
    pending_notes: Optional[str] = None


class ReagentDeliverySave(BaseModel):
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    delivery_date: Optional[date] = None
    notes: Optional[str] = None
    delivery_items: List[DeliveryItem] = []


class PendingDeliveryUpdate(BaseModel):
    notes: Optional[str] = None
    target_delivery_date: Optional[date] = None
    status: Optional[str] = None


# ============ Reminders ============

class ReminderSave(BaseModel):
    description: Optional[str] = None
    reminder_type: Optional[str] = None
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    equipment_id: Optional[str] = None
    due_date: Optional[date] = None
    status: Optional[str] = None


class ReminderStatusUpdate(BaseModel):
    status: str


# ============ Routes / workflow ============

class RouteRequest(BaseModel):
    client_ids: List[str] = Field(..., min_length=1)


class WorkflowAction(BaseModel):
    action: Literal["new", "edit", "details", "close"]
    order_id: Optional[str] = None
