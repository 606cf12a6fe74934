import pytest

from fieldservice.exceptions import (
    BackendError, ConflictError, InvalidTransitionError, RecordNotFoundError, ValidationError
)


@pytest.fixture
def client(backend, ready_store):
    record = backend.seed("clients", name="Hospital Norte", address="Av. Siempre Viva 123")
    ready_store.refresh("clients")
    return record


def writes(backend):
    return [call for call in backend.calls if call[0] != "fetch"]


def last_notification(notifier):
    return notifier.recent()[-1]


# ============ Service orders ============

def test_new_order_costs_are_recomputed(mutations, client, ready_store, notifier):
    saved = mutations.save_service_order({
        "client_id": client["id"], "labor_hours": "2", "labor_rate": "500", "transport_cost": "100",
        "parts_used": [], "total_cost": 5, "reported_issue": "No enciende",
    })

    assert saved["labor_cost"] == 1000
    assert saved["parts_cost"] == 0
    assert saved["total_cost"] == 1100
    assert saved["client_name"] == "Hospital Norte"
    assert saved["status"] == "Pendiente"
    assert saved["order_type"] == "Service"
    assert saved["creation_date"]
    assert [o["id"] for o in ready_store.service_orders] == [saved["id"]]
    assert last_notification(notifier).title == "Order created"


def test_order_without_client_is_rejected_before_writing(mutations, backend, notifier):
    backend.calls.clear()
    with pytest.raises(ValidationError):
        mutations.save_service_order({"reported_issue": "Error de lectura"})

    assert writes(backend) == []
    assert last_notification(notifier).variant == "destructive"


@pytest.mark.parametrize("field, value", [("status", "Abierta"), ("order_type", "Garantia")])
def test_order_rejects_unknown_enums(mutations, client, backend, field, value):
    backend.calls.clear()
    with pytest.raises(ValidationError):
        mutations.save_service_order({"client_id": client["id"], field: value})
    assert writes(backend) == []


def test_order_upserts_sub_client(mutations, client, backend):
    order = {"client_id": client["id"], "sub_client_name": " Lab Central ", "client_location": "Piso 2"}
    first = mutations.save_service_order(order)
    second = mutations.save_service_order({**order, "client_location": "Piso 3"})

    assert len(backend.rows["sub_clients"]) == 1
    sub_client = backend.rows["sub_clients"][0]
    assert sub_client["name"] == "Lab Central"
    assert sub_client["address"] == "Piso 3"
    assert first["sub_client_id"] == second["sub_client_id"] == sub_client["id"]


def test_order_update_keeps_id(mutations, client, ready_store, notifier):
    saved = mutations.save_service_order({"client_id": client["id"], "reported_issue": "Ruido"})
    updated = mutations.save_service_order({**saved, "status": "Completada"})

    assert updated["id"] == saved["id"]
    assert [o["status"] for o in ready_store.service_orders] == ["Completada"]
    assert last_notification(notifier).title == "Order updated"


def test_order_defaults_technician(backend, ready_store, notifier, client):
    from fieldservice.services.mutations import RecordMutations
    mutations = RecordMutations(backend, ready_store, notifier, default_technician="Dimma")

    saved = mutations.save_service_order({"client_id": client["id"]})
    assert saved["assigned_technician"] == "Dimma"


def test_order_write_failure_is_notified_and_raised(mutations, client, backend, notifier):
    backend.fail("insert", "service_orders")
    with pytest.raises(BackendError):
        mutations.save_service_order({"client_id": client["id"]})
    assert last_notification(notifier).title == "Error creating order"


def test_delete_missing_order(mutations):
    with pytest.raises(RecordNotFoundError):
        mutations.delete_service_order("missing")


# ============ Reagent deliveries ============

def test_delivery_summary_fields(mutations, client, backend, ready_store):
    reagent = backend.seed("reagent_types", name="Diluyente", sizes=["500ml"])
    ready_store.refresh("reagent_types")

    saved = mutations.save_reagent_delivery({
        "client_id": client["id"],
        "delivery_items": [{"reagent_name": "Diluyente", "reagent_size": "500ml", "quantity": "3"}],
    }, user_id="user-1")

    assert saved["reagent_name"] == "Diluyente"
    assert saved["reagent_size"] == "500ml"
    assert saved["quantity"] == 3
    assert saved["client_name"] == "Hospital Norte"
    assert saved["user_id"] == "user-1"
    assert saved["delivery_items"][0]["reagent_type_id"] == reagent["id"]
    assert len(ready_store.deliveries) == 1


def test_delivery_drops_invalid_items(mutations, client):
    saved = mutations.save_reagent_delivery({
        "client_name": "hospital norte",
        "delivery_items": [
            {"reagent_name": "Lisante", "reagent_size": "1L", "quantity": 2},
            {"reagent_name": "", "reagent_size": "1L", "quantity": 2},
            {"reagent_name": "Control", "reagent_size": "", "quantity": 2},
            {"reagent_name": "Control", "reagent_size": "5ml", "quantity": 0},
            {"reagent_name": "Control", "reagent_size": "5ml", "quantity": "x"},
        ],
    })

    assert [i["reagent_name"] for i in saved["delivery_items"]] == ["Lisante"]
    assert saved["client_id"] == client["id"]
    assert saved["user_id"] == "system"


def test_delivery_without_valid_items_is_rejected(mutations, client, backend):
    backend.calls.clear()
    with pytest.raises(ValidationError):
        mutations.save_reagent_delivery({
            "client_id": client["id"],
            "delivery_items": [{"reagent_name": "Lisante", "reagent_size": "1L", "quantity": -1}],
        })
    assert writes(backend) == []


def test_delivery_with_unknown_client_id(mutations, ready_store):
    with pytest.raises(ValidationError):
        mutations.save_reagent_delivery({
            "client_id": "ghost",
            "delivery_items": [{"reagent_name": "Lisante", "reagent_size": "1L", "quantity": 1}],
        })


# ============ Pending deliveries ============

@pytest.fixture
def pending(backend, ready_store):
    record = backend.seed("pending_reagent_deliveries", client_name="Hospital Norte", status="Pendiente",
                          requested_items=[], created_at="2024-06-01T10:00:00")
    ready_store.refresh("pending_deliveries")
    return record


def test_pending_delivery_forward_transitions(mutations, pending, ready_store):
    mutations.update_pending_delivery(pending["id"], {"status": "En Ruta"})
    saved = mutations.update_pending_delivery(pending["id"], {"status": "Entregado", "notes": "Recibido"})

    assert saved["status"] == "Entregado"
    assert ready_store.pending_deliveries[0]["notes"] == "Recibido"


def test_pending_delivery_rejects_backwards_transition(mutations, pending, backend):
    mutations.update_pending_delivery(pending["id"], {"status": "Cancelado"})
    backend.calls.clear()

    with pytest.raises(InvalidTransitionError):
        mutations.update_pending_delivery(pending["id"], {"status": "Pendiente"})
    assert writes(backend) == []


def test_pending_delivery_unknown_status(mutations, pending):
    with pytest.raises(ValidationError):
        mutations.update_pending_delivery(pending["id"], {"status": "Perdido"})


def test_pending_delivery_blank_target_date_is_cleared(mutations, pending):
    saved = mutations.update_pending_delivery(pending["id"], {"target_delivery_date": ""})
    assert saved["target_delivery_date"] is None


def test_pending_delivery_not_found(mutations):
    with pytest.raises(RecordNotFoundError):
        mutations.update_pending_delivery("missing", {"status": "En Ruta"})


# ============ Reminders ============

def test_plain_reminder_is_saved(mutations, client, ready_store):
    result = mutations.save_reminder({"description": "Visita anual", "reminder_type": "Visita", "client_id": client["id"]})

    assert result["kind"] == "reminder"
    assert result["record"]["client_name"] == "Hospital Norte"
    assert len(ready_store.reminders) == 1


def test_legacy_missing_part_type_is_accepted(mutations):
    result = mutations.save_reminder({"description": "Falta bomba", "reminder_type": "Faltante"})
    assert result["record"]["reminder_type"] == "Faltante"


def test_reminder_requires_description(mutations, backend):
    backend.calls.clear()
    with pytest.raises(ValidationError):
        mutations.save_reminder({"description": "  ", "reminder_type": "Visita"})
    assert writes(backend) == []


def test_reagent_reminder_becomes_pending_delivery(mutations, client, ready_store):
    result = mutations.save_reminder({
        "description": "Diluyente x2", "reminder_type": "Entrega de reactivo",
        "client_id": client["id"], "due_date": "2024-07-01",
    })

    assert result["kind"] == "pending_delivery"
    delivery = result["record"]
    assert delivery["requested_items"] == [{"reagent_name": "Diluyente x2", "reagent_size": "N/A", "quantity": 1}]
    assert delivery["target_delivery_date"] == "2024-07-01"
    assert delivery["client_name"] == "Hospital Norte"
    assert ready_store.reminders == ()
    assert len(ready_store.pending_deliveries) == 1


def test_editing_reminder_into_reagent_delivery_deletes_it(mutations, backend, ready_store):
    existing = backend.seed("reminders", description="Lisante", reminder_type="Visita", status="Pendiente")

    result = mutations.save_reminder({"description": "Lisante", "reminder_type": "Entrega de reactivo"}, existing["id"])

    assert result["record"]["source_reminder_ids"] == [existing["id"]]
    assert backend.rows["reminders"] == []
    assert ready_store.reminders == ()


def test_failed_conversion_keeps_reminder(mutations, backend):
    existing = backend.seed("reminders", description="Lisante", reminder_type="Visita", status="Pendiente")
    backend.fail("insert", "pending_reagent_deliveries")

    with pytest.raises(BackendError):
        mutations.save_reminder({"description": "Lisante", "reminder_type": "Entrega de reactivo"}, existing["id"])

    assert ("delete", "reminders") not in backend.calls
    assert len(backend.rows["reminders"]) == 1


def test_converted_reminder_left_behind_is_cleaned_up_by_migration(mutations, backend, ready_store):
    existing = backend.seed("reminders", description="Lisante", reminder_type="Visita", status="Pendiente")
    backend.fail("delete", "reminders", times=1)

    with pytest.raises(BackendError):
        mutations.save_reminder({"description": "Lisante", "reminder_type": "Entrega de reactivo"}, existing["id"])
    assert len(backend.rows["reminders"]) == 1
    assert len(backend.rows["pending_reagent_deliveries"]) == 1

    result = ready_store.migrate_reagent_reminders()

    assert result.stale_reminders_deleted == 1
    assert backend.rows["reminders"] == []
    assert len(backend.rows["pending_reagent_deliveries"]) == 1


def test_reminder_status_update(mutations, backend, ready_store):
    existing = backend.seed("reminders", description="Visita", reminder_type="Visita", status="Pendiente")

    mutations.update_reminder_status(existing["id"], "Completado")
    assert ready_store.reminders[0]["status"] == "Completado"

    with pytest.raises(ValidationError):
        mutations.update_reminder_status(existing["id"], "Cerrado")


# ============ Clients ============

def test_add_client_conflict_has_friendly_message(mutations, backend, notifier):
    backend.fail("insert", "clients", ConflictError("UNIQUE constraint failed: clients.name"))

    with pytest.raises(ConflictError) as exc:
        mutations.add_client("Hospital Norte")
    assert exc.value.message == "A client named 'Hospital Norte' already exists."
    assert last_notification(notifier).description == exc.value.message


def test_update_client_refreshes_clients_and_deliveries(mutations, client, backend, ready_store):
    backend.calls.clear()
    mutations.update_client(client["id"], {"name": "Hospital Norte II"})

    assert ("fetch", "reagent_deliveries") in backend.calls
    assert ready_store.clients[0]["name"] == "Hospital Norte II"


def test_delete_client_removes_equipment_first(mutations, client, backend, ready_store):
    backend.seed("equipment_inventory", client_id=client["id"], serial_number="SN-1")
    backend.seed("equipment_inventory", client_id=client["id"], serial_number="SN-2")
    backend.calls.clear()

    result = mutations.delete_client(client["id"])

    assert result == {"equipment_deleted": 2, "client_deleted": True}
    assert writes(backend)[:2] == [("delete_where", "equipment_inventory"), ("delete", "clients")]
    assert ready_store.clients == ()
    assert ready_store.equipment == ()


def test_delete_client_stops_when_equipment_step_fails(mutations, client, backend):
    backend.seed("equipment_inventory", client_id=client["id"], serial_number="SN-1")
    backend.fail("delete_where", "equipment_inventory")

    with pytest.raises(BackendError):
        mutations.delete_client(client["id"])

    assert ("delete", "clients") not in backend.calls
    assert len(backend.rows["clients"]) == 1


def test_delete_client_failure_after_equipment_refreshes_equipment(mutations, client, backend, ready_store):
    backend.seed("equipment_inventory", client_id=client["id"], serial_number="SN-1")
    ready_store.refresh("equipment")
    backend.fail("delete", "clients")

    with pytest.raises(BackendError):
        mutations.delete_client(client["id"])

    assert ready_store.equipment == ()
    assert len(ready_store.clients) == 1


def test_delete_sub_client_in_use(mutations, backend):
    backend.fail("delete", "sub_clients", BackendError("FOREIGN KEY constraint failed"))
    with pytest.raises(BackendError) as exc:
        mutations.delete_sub_client("lab-1")
    assert "still has equipment" in exc.value.message


# ============ Equipment ============

def test_add_equipment_upserts_type_and_model(mutations, client, backend, ready_store):
    unit = {"client_id": client["id"], "type_name": "Hematologia", "brand": "Sysmex", "model_name": "XN-350"}
    mutations.add_equipment({**unit, "serial_number": "SN-1"})
    mutations.add_equipment({**unit, "serial_number": "SN-2"})

    assert len(backend.rows["equipment_types"]) == 1
    assert len(backend.rows["equipment_models"]) == 1
    assert {e["serial_number"] for e in ready_store.equipment} == {"SN-1", "SN-2"}
    assert ready_store.equipment[0]["model"]["type"]["name"] == "Hematologia"


def test_add_equipment_requires_fields(mutations, client, backend):
    backend.calls.clear()
    with pytest.raises(ValidationError):
        mutations.add_equipment({"client_id": client["id"], "type_name": "Hematologia", "brand": "Sysmex"})
    assert writes(backend) == []


def test_add_equipment_duplicate_serial(mutations, client, backend):
    backend.fail("insert", "equipment_inventory", ConflictError("UNIQUE constraint failed"))
    with pytest.raises(ConflictError) as exc:
        mutations.add_equipment({
            "client_id": client["id"], "type_name": "Hematologia", "brand": "Sysmex",
            "model_name": "XN-350", "serial_number": "SN-1",
        })
    assert "SN-1" in exc.value.message


@pytest.fixture
def unit(mutations, client, ready_store):
    mutations.add_equipment({
        "client_id": client["id"], "type_name": "Hematologia", "brand": "Sysmex",
        "model_name": "XN-350", "serial_number": "SN-1",
    })
    return ready_store.equipment[0]


def test_update_equipment_splits_unit_and_model_fields(mutations, unit, backend, ready_store):
    mutations.update_equipment(unit["id"], {"brand": "Mindray", "notes": "Calibrado"})

    assert backend.rows["equipment_models"][0]["brand"] == "Mindray"
    refreshed = ready_store.equipment[0]
    assert refreshed["notes"] == "Calibrado"
    assert refreshed["model"]["brand"] == "Mindray"


def test_update_equipment_rejects_blank_serial(mutations, unit):
    with pytest.raises(ValidationError):
        mutations.update_equipment(unit["id"], {"serial_number": " "})


def test_move_equipment(mutations, unit, backend, ready_store):
    other = backend.seed("clients", name="Clinica Sur")

    mutations.move_equipment(unit["id"], other["id"])
    assert ready_store.equipment[0]["client"]["name"] == "Clinica Sur"


def test_move_equipment_to_same_client_is_rejected(mutations, unit, backend):
    backend.calls.clear()
    with pytest.raises(ValidationError):
        mutations.move_equipment(unit["id"], unit["client_id"])
    assert writes(backend) == []


def test_delete_equipment(mutations, unit, ready_store):
    assert mutations.delete_equipment(unit["id"])
    assert ready_store.equipment == ()
    with pytest.raises(RecordNotFoundError):
        mutations.delete_equipment(unit["id"])


# ============ Reagent types ============

def test_add_reagent_type_dedupes_sizes(mutations, ready_store):
    saved = mutations.add_reagent_type(" Lisante ", ["1L", " 1L", "", "5L"])
    assert saved["name"] == "Lisante"
    assert saved["sizes"] == ["1L", "5L"]
    assert len(ready_store.reagent_types) == 1


def test_add_reagent_type_conflict(mutations, backend):
    backend.fail("insert", "reagent_types", ConflictError("duplicate"))
    with pytest.raises(ConflictError):
        mutations.add_reagent_type("Lisante")
