"""
Record Mutation Operations.

Every operation validates its input, writes through the data backend and
then asks the synchronization layer to refresh the affected collections.
Validation errors are raised before any write. Failures are reported to
the user through the notifier and re-raised; multi-step operations stop
before their destructive second step when the first one fails.
"""
import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fieldservice.constants import (
    ORDER_STATUSES, ORDER_TYPES, DEFAULT_ORDER_STATUS, DEFAULT_ORDER_TYPE,
    REMINDER_TYPES, REMINDER_STATUSES, REAGENT_DELIVERY_REMINDER, MISSING_PART_REMINDER_TYPES,
    PENDING_DELIVERY_STATUSES, UNKNOWN_REAGENT_SIZE, can_transition_delivery
)
from fieldservice.exceptions import (
    BackendError, ConflictError, InvalidTransitionError, RecordNotFoundError, ValidationError
)
from fieldservice.models import generate_id
from fieldservice.services.backend import DataBackend
from fieldservice.services.notifications import Notifier
from fieldservice.services.order_costs import parse_integer, sanitize_order_numbers

logger = logging.getLogger(__name__)

SERVICE_ORDER_FIELDS = (
    "client_id", "client_name", "sub_client_id", "sub_client_name", "client_contact", "client_location",
    "equipment_id", "equipment_type", "equipment_brand", "equipment_model", "equipment_serial",
    "reported_issue", "work_summary", "task_time", "parts_used", "labor_hours", "labor_rate",
    "transport_cost", "status", "order_type", "assigned_technician",
    "creation_date", "date_received", "date_completed",
)
EQUIPMENT_UNIT_FIELDS = ("serial_number", "installation_date", "notes", "sub_client_id")
EQUIPMENT_MODEL_FIELDS = ("brand", "model_name")
PENDING_DELIVERY_FIELDS = ("notes", "target_delivery_date", "status")


def _clean(value) -> str:
    return (value or "").strip() if isinstance(value, str) or value is None else str(value).strip()


def _today() -> str:
    return date.today().isoformat()


class RecordMutations:
    """Validate, write, refresh"""

    def __init__(self, backend: DataBackend, store, notifier: Notifier, default_technician: Optional[str] = None):
        self.backend = backend
        self.store = store
        self.notifier = notifier
        self.default_technician = default_technician

    # ============ Helpers ============

    def _invalid(self, message: str, title: str = "Validation error") -> ValidationError:
        self.notifier.error(title, message)
        return ValidationError(message)

    def _report(self, title: str, error: BackendError) -> BackendError:
        self.notifier.error(title, error.message)
        return error

    def _find(self, collection: str, table: str, record_id: str) -> Dict[str, Any]:
        """Record from the synchronized store, falling back to the backend"""
        for record in self.store.get(collection):
            if record.get("id") == record_id:
                return record
        try:
            rows = self.backend.fetch(table, {"id": record_id})
        except BackendError as e:
            raise self._report("Error loading record", e)
        if not rows:
            error = RecordNotFoundError(f"{table} {record_id} not found")
            raise self._report("Not found", error)
        return rows[0]

    def _client_by_id(self, client_id: str) -> Optional[Dict[str, Any]]:
        for client in self.store.clients:
            if client.get("id") == client_id:
                return client
        rows = self.backend.fetch("clients", {"id": client_id})
        return rows[0] if rows else None

    def _client_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        wanted = name.lower()
        for client in self.store.clients:
            if (client.get("name") or "").strip().lower() == wanted:
                return client
        return None

    def _reagent_type_id(self, reagent_name: str) -> Optional[str]:
        wanted = reagent_name.lower()
        for reagent in self.store.reagent_types:
            if (reagent.get("name") or "").strip().lower() == wanted:
                return reagent["id"]
        return None

    def _refresh(self, *names: str):
        self.store.refresh_many(*names)

    # ============ Service orders ============

    def save_service_order(self, order: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a new order (id generated here) or update an existing one.

        The client reference is required. A sub-client name is upserted on
        (client_id, name), updating its address from the order location.
        Numeric input is sanitized and every cost field recomputed.
        """
        order_id = order.get("id")
        client_id = order.get("client_id")
        if not client_id:
            raise self._invalid("A client must be selected.")

        status = order.get("status") or DEFAULT_ORDER_STATUS
        if status not in ORDER_STATUSES:
            raise self._invalid(f"Invalid status '{status}'. Must be one of: {', '.join(ORDER_STATUSES)}")
        order_type = order.get("order_type") or DEFAULT_ORDER_TYPE
        if order_type not in ORDER_TYPES:
            raise self._invalid(f"Invalid order type '{order_type}'. Must be one of: {', '.join(ORDER_TYPES)}")

        payload = {key: order.get(key) for key in SERVICE_ORDER_FIELDS}
        payload.update(status=status, order_type=order_type)
        payload = sanitize_order_numbers(payload)

        if not payload.get("client_name"):
            try:
                client = self._client_by_id(client_id)
            except BackendError as e:
                raise self._report("Error saving order", e)
            if client is None:
                raise self._invalid(f"Client {client_id} does not exist.")
            payload["client_name"] = client["name"]

        sub_client_name = _clean(payload.get("sub_client_name"))
        if sub_client_name:
            try:
                sub_client = self.backend.upsert(
                    "sub_clients",
                    {"client_id": client_id, "name": sub_client_name, "address": payload.get("client_location")},
                    conflict_keys=("client_id", "name"),
                )
            except BackendError as e:
                raise self._report("Error saving laboratory", e)
            payload["sub_client_id"] = sub_client["id"]
            payload["sub_client_name"] = sub_client_name
        else:
            payload["sub_client_id"] = None
            payload["sub_client_name"] = None

        payload["equipment_id"] = payload.get("equipment_id") or None
        payload["assigned_technician"] = payload.get("assigned_technician") or self.default_technician
        payload["creation_date"] = payload.get("creation_date") or _today()

        try:
            if order_id:
                saved = self.backend.update("service_orders", order_id, payload)
            else:
                payload["id"] = generate_id()
                saved = self.backend.insert("service_orders", payload)
        except BackendError as e:
            raise self._report("Error updating order" if order_id else "Error creating order", e)

        self._refresh("service_orders")
        if order_id:
            self.notifier.success("Order updated", "The service order was updated.")
        else:
            self.notifier.success("Order created", "New service order added.")
        return saved

    def delete_service_order(self, order_id: str) -> bool:
        try:
            deleted = self.backend.delete("service_orders", order_id)
        except BackendError as e:
            raise self._report("Error deleting order", e)
        if not deleted:
            raise self._report("Error deleting order", RecordNotFoundError(f"Service order {order_id} not found"))
        self._refresh("service_orders")
        self.notifier.success("Order deleted", "The service order was deleted.")
        return True

    # ============ Reagent deliveries ============

    def _delivery_items(self, items: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
        valid = []
        for item in items or []:
            name = _clean(item.get("reagent_name"))
            size = _clean(item.get("reagent_size"))
            quantity = parse_integer(item.get("quantity"))
            if not name or not size or quantity is None or quantity <= 0:
                continue
            valid.append({
                "id": item.get("id") or generate_id(),
                "reagent_type_id": item.get("reagent_type_id") or self._reagent_type_id(name),
                "reagent_name": name,
                "reagent_size": size,
                "quantity": quantity,
                "is_pending": bool(item.get("is_pending")),
                "pending_notes": item.get("pending_notes") or "",
            })
        return valid

    def save_reagent_delivery(self, delivery: Dict[str, Any], user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Keep only items with a reagent name, a size and a positive integer
        quantity; at least one is required. The first item and the total
        quantity are mirrored into the summary columns.
        """
        client_id = delivery.get("client_id")
        client_name = _clean(delivery.get("client_name"))
        client = None
        if client_id:
            try:
                client = self._client_by_id(client_id)
            except BackendError as e:
                raise self._report("Error saving delivery", e)
            if client is None:
                raise self._invalid(f"Client {client_id} does not exist.")
        elif client_name:
            client = self._client_by_name(client_name)
        if client is None and not client_name:
            raise self._invalid("Please select a client.")

        items = self._delivery_items(delivery.get("delivery_items"))
        if not items:
            raise self._invalid("Add at least one valid item to the delivery.")

        payload = {
            "client_id": client["id"] if client else None,
            "client_name": client["name"] if client else client_name,
            "delivery_date": delivery.get("delivery_date") or _today(),
            "notes": delivery.get("notes"),
            "delivery_items": items,
            "user_id": user_id or delivery.get("user_id") or "system",
            "reagent_name": items[0]["reagent_name"],
            "reagent_size": items[0]["reagent_size"],
            "quantity": sum(item["quantity"] for item in items),
        }

        delivery_id = delivery.get("id")
        try:
            if delivery_id:
                saved = self.backend.update("reagent_deliveries", delivery_id, payload)
            else:
                saved = self.backend.insert("reagent_deliveries", {"id": generate_id(), **payload})
        except BackendError as e:
            raise self._report("Error saving delivery", e)

        self._refresh("deliveries")
        self.notifier.success("Delivery saved", f"Reagent delivery for {payload['client_name']} saved.")
        return saved

    def delete_reagent_delivery(self, delivery_id: str) -> bool:
        try:
            deleted = self.backend.delete("reagent_deliveries", delivery_id)
        except BackendError as e:
            raise self._report("Error deleting delivery", e)
        if not deleted:
            raise self._report("Error deleting delivery", RecordNotFoundError(f"Reagent delivery {delivery_id} not found"))
        self._refresh("deliveries")
        self.notifier.success("Delivery deleted", "The reagent delivery was deleted.")
        return True

    # ============ Pending reagent deliveries ============

    def update_pending_delivery(self, delivery_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        current = self._find("pending_deliveries", "pending_reagent_deliveries", delivery_id)
        updates = {key: changes[key] for key in PENDING_DELIVERY_FIELDS if key in changes}
        if "target_delivery_date" in updates:
            updates["target_delivery_date"] = updates["target_delivery_date"] or None

        new_status = updates.get("status")
        if new_status is not None:
            if new_status not in PENDING_DELIVERY_STATUSES:
                raise self._invalid(f"Invalid status '{new_status}'. Must be one of: {', '.join(PENDING_DELIVERY_STATUSES)}")
            if not can_transition_delivery(current.get("status"), new_status):
                message = f"Cannot change delivery status from {current.get('status')} to {new_status}"
                self.notifier.error("Invalid status change", message)
                raise InvalidTransitionError(message)

        try:
            saved = self.backend.update("pending_reagent_deliveries", delivery_id, updates)
        except BackendError as e:
            raise self._report("Error updating pending delivery", e)

        self._refresh("pending_deliveries")
        if new_status and new_status != current.get("status"):
            self.notifier.success("Delivery status updated", f"Delivery status changed to {new_status}.")
        else:
            self.notifier.success("Pending delivery updated", "The pending delivery was updated.")
        return saved

    # ============ Reminders ============

    def save_reminder(self, reminder: Dict[str, Any], reminder_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Save a reminder. A reagent delivery reminder becomes a pending
        reagent delivery instead; when an existing reminder is converted,
        it is deleted only after the delivery has been written.

        Returns {"kind": "reminder" | "pending_delivery", "record": ...}.
        """
        description = _clean(reminder.get("description"))
        if not description:
            raise self._invalid("The description is required.")
        reminder_type = reminder.get("reminder_type") or REMINDER_TYPES[0]
        if reminder_type not in REMINDER_TYPES and reminder_type not in MISSING_PART_REMINDER_TYPES:
            raise self._invalid(f"Invalid reminder type '{reminder_type}'. Must be one of: {', '.join(REMINDER_TYPES)}")
        status = reminder.get("status") or "Pendiente"
        if status not in REMINDER_STATUSES:
            raise self._invalid(f"Invalid status '{status}'. Must be one of: {', '.join(REMINDER_STATUSES)}")

        client_id = reminder.get("client_id") or None
        client_name = reminder.get("client_name")
        if client_id and not client_name:
            try:
                client = self._client_by_id(client_id)
            except BackendError as e:
                raise self._report("Error saving reminder", e)
            client_name = client["name"] if client else None

        if reminder_type == REAGENT_DELIVERY_REMINDER:
            return self._reminder_to_pending_delivery(
                reminder_id, description, client_id, client_name, reminder.get("due_date") or None
            )

        payload = {
            "description": description,
            "client_id": client_id,
            "client_name": client_name,
            "equipment_id": reminder.get("equipment_id") or None,
            "reminder_type": reminder_type,
            "due_date": reminder.get("due_date") or None,
            "status": status,
        }
        try:
            if reminder_id:
                saved = self.backend.update("reminders", reminder_id, payload)
            else:
                saved = self.backend.insert("reminders", payload)
        except BackendError as e:
            raise self._report("Error saving reminder", e)

        self._refresh("reminders")
        self.notifier.success("Reminder saved", f"Reminder {'updated' if reminder_id else 'created'}.")
        return {"kind": "reminder", "record": saved}

    def _reminder_to_pending_delivery(self, reminder_id, description, client_id, client_name, due_date):
        delivery = {
            "client_id": client_id,
            "client_name": client_name,
            "requested_items": [{"reagent_name": description, "reagent_size": UNKNOWN_REAGENT_SIZE, "quantity": 1}],
            "notes": f"Generated from reminder: {description}",
            "status": "Pendiente",
            "requested_date": _today(),
            "target_delivery_date": due_date,
            "source_reminder_ids": [reminder_id] if reminder_id else [],
        }
        try:
            saved = self.backend.insert("pending_reagent_deliveries", delivery)
        except BackendError as e:
            raise self._report("Error creating delivery order", e)
        self.notifier.success("Delivery order created", "Added to pending deliveries.")

        if reminder_id:
            try:
                self.backend.delete("reminders", reminder_id)
            except BackendError as e:
                # The delivery lists the reminder, so the next migration deletes it
                self._refresh("pending_deliveries")
                raise self._report("Error deleting converted reminder", e)

        self._refresh("pending_deliveries", "reminders")
        return {"kind": "pending_delivery", "record": saved}

    def update_reminder_status(self, reminder_id: str, status: str) -> Dict[str, Any]:
        if status not in REMINDER_STATUSES:
            raise self._invalid(f"Invalid status '{status}'. Must be one of: {', '.join(REMINDER_STATUSES)}")
        try:
            saved = self.backend.update("reminders", reminder_id, {"status": status})
        except BackendError as e:
            raise self._report("Error updating status", e)
        self._refresh("reminders")
        self.notifier.success("Status updated", f"Reminder marked {status}.")
        return saved

    def delete_reminder(self, reminder_id: str) -> bool:
        try:
            deleted = self.backend.delete("reminders", reminder_id)
        except BackendError as e:
            raise self._report("Error deleting reminder", e)
        if not deleted:
            raise self._report("Error deleting reminder", RecordNotFoundError(f"Reminder {reminder_id} not found"))
        self._refresh("reminders")
        self.notifier.success("Reminder deleted", "The reminder was deleted.")
        return True

    # ============ Clients ============

    def add_client(self, name: str, address: Optional[str] = None) -> Dict[str, Any]:
        name = _clean(name)
        if not name:
            raise self._invalid("The client name is required.")
        try:
            saved = self.backend.insert("clients", {"name": name, "address": _clean(address) or None})
        except ConflictError:
            raise self._report("Error adding client", ConflictError(f"A client named '{name}' already exists."))
        except BackendError as e:
            raise self._report("Error adding client", e)
        self._refresh("clients")
        self.notifier.success("Client added", f"Client \"{name}\" was created.")
        return saved

    def update_client(self, client_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        updates = {}
        if "name" in changes:
            updates["name"] = _clean(changes["name"])
            if not updates["name"]:
                raise self._invalid("The client name cannot be empty.")
        if "address" in changes:
            updates["address"] = _clean(changes["address"]) or None
        try:
            saved = self.backend.update("clients", client_id, updates)
        except BackendError as e:
            raise self._report("Error updating client", e)
        self._refresh("clients", "deliveries")
        self.notifier.success("Client updated", f"Client \"{saved['name']}\" was updated.")
        return saved

    def delete_client(self, client_id: str) -> Dict[str, Any]:
        """
        Delete every equipment unit owned by the client, then the client.
        The client row is left in place when the equipment step fails.
        """
        try:
            removed = self.backend.delete_where("equipment_inventory", {"client_id": client_id})
        except BackendError as e:
            raise self._report("Error deleting client equipment", e)
        logger.info(f"Deleted {removed} equipment unit(s) of client {client_id}")

        try:
            deleted = self.backend.delete("clients", client_id)
        except BackendError as e:
            self._refresh("equipment")
            raise self._report("Error deleting client", e)
        self._refresh("clients", "equipment", "service_orders")
        if not deleted:
            raise self._report("Error deleting client", RecordNotFoundError(f"Client {client_id} not found"))
        self.notifier.success("Client deleted", f"The client and {removed} equipment unit(s) were deleted.")
        return {"equipment_deleted": removed, "client_deleted": True}

    # ============ Sub-clients ============

    def add_sub_client(self, client_id: str, name: str, address: Optional[str] = None) -> Dict[str, Any]:
        name = _clean(name)
        if not client_id:
            raise self._invalid("A client must be selected.")
        if not name:
            raise self._invalid("The laboratory name cannot be empty.")
        try:
            saved = self.backend.insert("sub_clients", {"client_id": client_id, "name": name, "address": _clean(address) or None})
        except ConflictError:
            raise self._report("Error adding laboratory", ConflictError(f"Laboratory '{name}' already exists for this client."))
        except BackendError as e:
            raise self._report("Error adding laboratory", e)
        self._refresh("clients")
        self.notifier.success("Laboratory added", f"Laboratory \"{name}\" was added.")
        return saved

    def update_sub_client(self, sub_client_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        updates = {}
        if "name" in changes:
            updates["name"] = _clean(changes["name"])
            if not updates["name"]:
                raise self._invalid("The laboratory name cannot be empty.")
        if "address" in changes:
            updates["address"] = _clean(changes["address"]) or None
        try:
            saved = self.backend.update("sub_clients", sub_client_id, updates)
        except BackendError as e:
            raise self._report("Error updating laboratory", e)
        self._refresh("clients")
        self.notifier.success("Laboratory updated", f"Laboratory \"{saved['name']}\" was updated.")
        return saved

    def delete_sub_client(self, sub_client_id: str) -> bool:
        try:
            deleted = self.backend.delete("sub_clients", sub_client_id)
        except BackendError as e:
            raise self._report("Error deleting laboratory", BackendError(
                f"Could not delete the laboratory. Check whether it still has equipment. ({e.message})"
            ))
        if not deleted:
            raise self._report("Error deleting laboratory", RecordNotFoundError(f"Laboratory {sub_client_id} not found"))
        self._refresh("clients")
        self.notifier.success("Laboratory deleted", "The laboratory was deleted.")
        return True

    # ============ Equipment ============

    def add_equipment(self, unit: Dict[str, Any]) -> Dict[str, Any]:
        """
        Add an equipment unit. The equipment type is upserted by name when
        only a name is given; the model is upserted on (type, brand, model).
        """
        client_id = unit.get("client_id")
        type_id = unit.get("type_id")
        type_name = _clean(unit.get("type_name"))
        brand = _clean(unit.get("brand"))
        model_name = _clean(unit.get("model_name"))
        serial_number = _clean(unit.get("serial_number"))
        if not client_id or not (type_id or type_name) or not brand or not model_name or not serial_number:
            raise self._invalid("Client, type, brand, model and serial number are required.")

        try:
            if not type_id:
                type_id = self.backend.upsert("equipment_types", {"name": type_name}, conflict_keys=("name",))["id"]
            model = self.backend.upsert(
                "equipment_models",
                {"type_id": type_id, "brand": brand, "model_name": model_name},
                conflict_keys=("type_id", "brand", "model_name"),
            )
        except BackendError as e:
            raise self._report("Error saving equipment model", e)

        payload = {
            "client_id": client_id,
            "sub_client_id": unit.get("sub_client_id") or None,
            "model_id": model["id"],
            "serial_number": serial_number,
            "installation_date": unit.get("installation_date") or _today(),
            "notes": unit.get("notes"),
        }
        try:
            saved = self.backend.insert("equipment_inventory", payload)
        except ConflictError:
            raise self._report("Error adding equipment", ConflictError(f"Serial number {serial_number} is already registered."))
        except BackendError as e:
            raise self._report("Error adding equipment", e)

        self._refresh("equipment")
        self.notifier.success("Equipment added", f"Unit {serial_number} added to the inventory.")
        return saved

    def update_equipment(self, equipment_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Unit fields update the unit; brand / model name update its model row"""
        unit = self._find("equipment", "equipment_inventory", equipment_id)
        unit_updates = {key: changes[key] for key in EQUIPMENT_UNIT_FIELDS if key in changes}
        model_updates = {key: _clean(changes[key]) for key in EQUIPMENT_MODEL_FIELDS if key in changes}
        if "serial_number" in unit_updates:
            unit_updates["serial_number"] = _clean(unit_updates["serial_number"])
            if not unit_updates["serial_number"]:
                raise self._invalid("The serial number cannot be empty.")
        if any(not value for value in model_updates.values()):
            raise self._invalid("Brand and model cannot be empty.")

        try:
            if model_updates:
                self.backend.update("equipment_models", unit["model_id"], model_updates)
            saved = self.backend.update("equipment_inventory", equipment_id, unit_updates) if unit_updates else unit
        except BackendError as e:
            raise self._report("Error updating equipment", e)

        self._refresh("equipment")
        self.notifier.success("Equipment updated", "Field updated.")
        return saved

    def delete_equipment(self, equipment_id: str) -> bool:
        try:
            deleted = self.backend.delete("equipment_inventory", equipment_id)
        except BackendError as e:
            raise self._report("Error deleting equipment", e)
        if not deleted:
            raise self._report("Error deleting equipment", RecordNotFoundError(f"Equipment {equipment_id} not found"))
        self._refresh("equipment", "clients", "service_orders")
        self.notifier.success("Equipment deleted", "The unit was removed from the inventory.")
        return True

    def move_equipment(self, equipment_id: str, target_client_id: str) -> Dict[str, Any]:
        """Reassign a unit to another client; the target must differ from the current owner"""
        unit = self._find("equipment", "equipment_inventory", equipment_id)
        if not target_client_id:
            raise self._invalid("A target client is required.")
        if unit.get("client_id") == target_client_id:
            raise self._invalid("The equipment already belongs to that client.")
        try:
            saved = self.backend.update("equipment_inventory", equipment_id, {"client_id": target_client_id})
        except BackendError as e:
            raise self._report("Error moving equipment", e)
        self._refresh("equipment", "clients", "service_orders")
        self.notifier.success("Equipment moved", "The unit was assigned to the new client.")
        return saved

    # ============ Reagent types ============

    def add_reagent_type(self, name: str, sizes: Optional[List[str]] = None) -> Dict[str, Any]:
        name = _clean(name)
        if not name:
            raise self._invalid("The reagent name is required.")
        clean_sizes = []
        for size in sizes or []:
            size = _clean(size)
            if size and size not in clean_sizes:
                clean_sizes.append(size)
        try:
            saved = self.backend.insert("reagent_types", {"name": name, "sizes": clean_sizes})
        except ConflictError:
            raise self._report("Error adding reagent", ConflictError(f"A reagent named '{name}' already exists."))
        except BackendError as e:
            raise self._report("Error adding reagent", e)
        self._refresh("reagent_types")
        self.notifier.success("Reagent added", f"{name} was added to the list.")
        return saved
