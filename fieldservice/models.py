import uuid

from sqlalchemy import Column, String, DateTime, Text, Boolean, ForeignKey, Float, Integer, Date, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from fieldservice.database import Base


def generate_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Dashboard operator (technician or office staff)"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_id)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)
    role = Column(String, default="technician")  # admin, technician
    hashed_password = Column(String, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())


class Client(Base):
    """Business customer (clinic / hospital network)"""
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String, unique=True, nullable=False)  # Display key
    address = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now())

    # Relationships
    sub_clients = relationship("SubClient", back_populates="client", passive_deletes=True)
    equipment = relationship("EquipmentUnit", back_populates="client")


class SubClient(Base):
    """Lab / clinic location under a client"""
    __tablename__ = "sub_clients"
    __table_args__ = (UniqueConstraint("client_id", "name", name="uq_sub_clients_client_name"),)

    id = Column(String(36), primary_key=True, default=generate_id)
    client_id = Column(String(36), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    address = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now())

    client = relationship("Client", back_populates="sub_clients")


class EquipmentType(Base):
    """Equipment classification (analyzer, centrifuge, ...)"""
    __tablename__ = "equipment_types"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String, unique=True, nullable=False)


class EquipmentModel(Base):
    """(type, brand, model name) classification shared by many units"""
    __tablename__ = "equipment_models"
    __table_args__ = (UniqueConstraint("type_id", "brand", "model_name", name="uq_equipment_models_triple"),)

    id = Column(String(36), primary_key=True, default=generate_id)
    type_id = Column(String(36), ForeignKey("equipment_types.id"), nullable=False)
    brand = Column(String, nullable=False)
    model_name = Column(String, nullable=False)

    type = relationship("EquipmentType")


class EquipmentUnit(Base):
    """One physical serialized instrument. Status is derived, not stored."""
    __tablename__ = "equipment_inventory"

    id = Column(String(36), primary_key=True, default=generate_id)
    model_id = Column(String(36), ForeignKey("equipment_models.id"), nullable=False)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False, index=True)
    sub_client_id = Column(String(36), ForeignKey("sub_clients.id"), nullable=True)
    serial_number = Column(String, unique=True, nullable=False, index=True)
    installation_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now())

    # Relationships
    model = relationship("EquipmentModel")
    client = relationship("Client", back_populates="equipment")
    sub_client = relationship("SubClient")


class ServiceOrder(Base):
    """Maintenance / repair / installation job"""
    __tablename__ = "service_orders"

    id = Column(String(36), primary_key=True, default=generate_id)  # Generated before insert
    client_id = Column(String(36), ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)
    client_name = Column(String, nullable=True)  # Snapshot for display
    sub_client_id = Column(String(36), ForeignKey("sub_clients.id", ondelete="SET NULL"), nullable=True)
    sub_client_name = Column(String, nullable=True)
    client_contact = Column(String, nullable=True)
    client_location = Column(Text, nullable=True)

    # Equipment snapshot, copied at creation
    equipment_id = Column(String(36), ForeignKey("equipment_inventory.id", ondelete="SET NULL"), nullable=True)
    equipment_type = Column(String, nullable=True)
    equipment_brand = Column(String, nullable=True)
    equipment_model = Column(String, nullable=True)
    equipment_serial = Column(String, nullable=True, index=True)

    reported_issue = Column(Text, nullable=True)
    work_summary = Column(Text, nullable=True)

    task_time = Column(Float, nullable=True)
    labor_hours = Column(Float, nullable=True)
    labor_rate = Column(Float, nullable=True)
    parts_cost = Column(Float, nullable=True)
    labor_cost = Column(Float, nullable=True)
    transport_cost = Column(Float, nullable=True)
    total_cost = Column(Float, nullable=True)  # parts + labor + transport, never edited directly
    parts_used = Column(JSON, default=list)  # [{part_name, quantity, unit_cost, total_cost}]

    status = Column(String, default="Pendiente")
    order_type = Column(String, default="Service")
    assigned_technician = Column(String, nullable=True)

    creation_date = Column(Date, nullable=True)
    date_received = Column(Date, nullable=True)
    date_completed = Column(Date, nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    client = relationship("Client")


class ReagentType(Base):
    """Reagent catalog entry"""
    __tablename__ = "reagent_types"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String, unique=True, nullable=False)
    sizes = Column(JSON, default=list)  # ["500ml", "1L"]
    created_at = Column(DateTime, default=func.now())


class ReagentDelivery(Base):
    """Completed drop-off of reagents to a client"""
    __tablename__ = "reagent_deliveries"

    id = Column(String(36), primary_key=True, default=generate_id)
    client_id = Column(String(36), ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)
    client_name = Column(String, nullable=True)  # Snapshot; current name resolved on read
    delivery_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    # [{id, reagent_type_id, reagent_name, reagent_size, quantity, is_pending, pending_notes}]
    delivery_items = Column(JSON, default=list)

    # Summary of the first item, kept for simple queries
    reagent_name = Column(String, nullable=True)
    reagent_size = Column(String, nullable=True)
    quantity = Column(Integer, nullable=True)

    user_id = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=func.now())

    client = relationship("Client")


class PendingReagentDelivery(Base):
    """Requested-but-not-yet-fulfilled reagent drop-off"""
    __tablename__ = "pending_reagent_deliveries"

    id = Column(String(36), primary_key=True, default=generate_id)
    client_id = Column(String(36), ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)
    client_name = Column(String, nullable=True)
    requested_items = Column(JSON, default=list)  # [{reagent_name, reagent_size, quantity}]
    requested_date = Column(Date, nullable=True)
    target_delivery_date = Column(Date, nullable=True)
    status = Column(String, default="Pendiente")  # Pendiente, En Ruta, Entregado, Cancelado
    notes = Column(Text, nullable=True)
    source_reminder_ids = Column(JSON, default=list)  # Reminders migrated into this delivery
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class Reminder(Base):
    """Scheduled follow-up task"""
    __tablename__ = "reminders"

    id = Column(String(36), primary_key=True, default=generate_id)
    description = Column(Text, nullable=False)
    client_id = Column(String(36), ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)
    client_name = Column(String, nullable=True)
    equipment_id = Column(String(36), ForeignKey("equipment_inventory.id", ondelete="SET NULL"), nullable=True)
    reminder_type = Column(String, nullable=False)
    due_date = Column(Date, nullable=True)
    status = Column(String, default="Pendiente")  # Pendiente, Completado
    created_at = Column(DateTime, default=func.now())

    equipment = relationship("EquipmentUnit")
