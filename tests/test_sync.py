import pytest

from fieldservice.exceptions import BackendError
from fieldservice.services.sync import COLLECTIONS, SessionInfo, resolve_delivery_names


def seed_basics(backend):
    client = backend.seed("clients", name="Hospital Norte", address="Av. Siempre Viva 123")
    reagent = backend.seed("reagent_types", name="Diluyente", sizes=["500ml"])
    type_ = backend.seed("equipment_types", name="Hematologia")
    model = backend.seed("equipment_models", type_id=type_["id"], brand="Sysmex", model_name="XN-350")
    unit = backend.seed("equipment_inventory", client_id=client["id"], model_id=model["id"], serial_number="SN-1")
    backend.seed("service_orders", client_id=client["id"], client_name="Hospital Norte", status="Pendiente",
                 equipment_serial="SN-1", creation_date="2024-03-01")
    return client, reagent, unit


# ============ Session gate ============

def test_nothing_is_fetched_before_session(backend, store):
    assert store.loading
    assert store.refresh("clients") is False
    assert store.load_all() is False
    assert backend.calls == []


def test_session_triggers_one_bulk_load(backend, store, session):
    seed_basics(backend)
    store.set_session(session)

    fetches = [c for c in backend.calls if c[0] == "fetch"]
    assert not store.loading
    assert store.is_ready
    assert len(store.clients) == 1
    assert len(store.service_orders) == 1
    # Migration reads + one fetch per collection
    assert fetches.count(("fetch", "clients")) == 1
    assert ("fetch", "reminders") in fetches

    store.set_session(session)
    assert [c for c in backend.calls if c[0] == "fetch"] == fetches


def test_collections_are_enriched(backend, ready_store):
    client, _, _ = seed_basics(backend)
    ready_store.refresh("equipment")

    unit = ready_store.equipment[0]
    assert unit["model"]["brand"] == "Sysmex"
    assert unit["model"]["type"]["name"] == "Hematologia"
    assert unit["client"]["name"] == "Hospital Norte"


def test_end_session_clears_and_unsubscribes(backend, ready_store):
    seed_basics(backend)
    ready_store.refresh("clients")
    assert backend.feed.subscriber_count > 0

    ready_store.end_session()

    assert ready_store.clients == ()
    assert ready_store.loading
    assert backend.feed.subscriber_count == 0


def test_switching_user_restarts_session(backend, ready_store):
    other = SessionInfo(user_id="user-2", email="other@example.com")
    ready_store.set_session(other)
    assert ready_store.session == other
    assert not ready_store.loading


# ============ Refresh ============

def test_refresh_replaces_collection_wholesale(backend, ready_store):
    before = ready_store.clients
    backend.seed("clients", name="Clinica Sur")

    assert ready_store.refresh("clients")
    assert ready_store.clients is not before
    assert [c["name"] for c in ready_store.clients] == ["Clinica Sur"]


def test_refresh_is_idempotent(backend, ready_store):
    seed_basics(backend)
    ready_store.refresh("service_orders")
    first = ready_store.snapshot()
    ready_store.refresh("service_orders")
    second = ready_store.snapshot()

    assert first == second


def test_refresh_unknown_collection(ready_store):
    with pytest.raises(ValueError):
        ready_store.refresh("invoices")


def test_read_failure_keeps_last_value_and_notifies(backend, ready_store, notifier):
    seed_basics(backend)
    ready_store.refresh("clients")
    before = ready_store.clients

    backend.fail("fetch", "clients")
    assert ready_store.refresh("clients") is False

    assert ready_store.clients is before
    errors = [n for n in notifier.recent() if n.variant == "destructive"]
    assert errors and errors[-1].title == "Error loading clients"


def test_transient_failures_are_retried_with_backoff(backend, ready_store, sleeps):
    backend.fail("fetch", "clients", BackendError("timeout", transient=True), times=2)

    assert ready_store.refresh("clients")
    assert sleeps == [0.5, 1.0]


def test_retries_are_bounded(backend, ready_store, sleeps, notifier):
    backend.fail("fetch", "clients", BackendError("timeout", transient=True))

    assert ready_store.refresh("clients") is False
    assert sleeps == [0.5, 1.0]
    assert notifier.recent()[-1].description == "timeout"


def test_permanent_failures_are_not_retried(backend, ready_store, sleeps):
    backend.fail("fetch", "clients", BackendError("permission denied"))
    ready_store.refresh("clients")
    assert sleeps == []


def test_bulk_load_failure_of_one_collection_does_not_abort(backend, store, session, notifier):
    seed_basics(backend)
    backend.fail("fetch", "service_orders")

    store.set_session(session)

    assert not store.loading
    assert len(store.clients) == 1
    assert store.service_orders == ()
    assert any(n.title == "Error loading service orders" for n in notifier.recent())


def test_stale_results_are_discarded_after_session_end(backend, ready_store):
    seed_basics(backend)
    generation = ready_store._generation
    ready_store.end_session()

    assert ready_store._publish({"clients": ({"id": "x"},)}, generation) is False
    assert ready_store.clients == ()


# ============ Change notifications ============

def test_change_event_refreshes_mapped_collection(backend, ready_store):
    backend.insert("clients", {"name": "Clinica Sur"})
    assert [c["name"] for c in ready_store.clients] == ["Clinica Sur"]


def test_equipment_change_refreshes_dependent_views(ready_store):
    assert ready_store.apply_change_notification("equipment_inventory") == ["equipment", "clients", "service_orders"]
    assert ready_store.apply_change_notification("sub_clients") == ["clients"]
    assert ready_store.apply_change_notification("users") == []


def test_duplicate_notifications_are_harmless(backend, ready_store):
    backend.seed("reminders", description="Visita anual", reminder_type="Visita", status="Pendiente")
    ready_store.apply_change_notification("reminders")
    first = ready_store.reminders
    ready_store.apply_change_notification("reminders")
    ready_store.apply_change_notification("reminders")

    assert ready_store.reminders == first


def test_listeners_are_told_which_collection_changed(backend, ready_store):
    changed = []
    ready_store.add_listener(changed.append)
    ready_store.refresh("reminders")
    ready_store.remove_listener(changed.append)
    ready_store.refresh("reminders")

    assert changed == ["reminders"]


# ============ Delivery names ============

def test_delivery_names_resolved_from_current_records():
    records = [{
        "client_name": "Old name",
        "client": {"id": "c1", "name": "New name"},
        "delivery_items": [{"reagent_type_id": "r1", "reagent_name": "Old reagent", "quantity": 1},
                           {"reagent_type_id": None, "reagent_name": "Free text", "quantity": 2}],
    }]
    resolved = resolve_delivery_names(records, [{"id": "r1", "name": "Diluyente"}])[0]

    assert resolved["client_name"] == "New name"
    assert "client" not in resolved
    assert [i["reagent_name"] for i in resolved["delivery_items"]] == ["Diluyente", "Free text"]


# ============ Reminder migration ============

def seed_reagent_reminders(backend, client):
    first = backend.seed("reminders", description="Falta reactivo X", reminder_type="Entrega de reactivo",
                         status="Pendiente", client_id=client["id"], client_name=client["name"], due_date="2024-07-01")
    second = backend.seed("reminders", description="Falta reactivo Y", reminder_type="Entrega de reactivo",
                          status="Pendiente", client_id=client["id"], client_name=client["name"], due_date="2024-07-09")
    general = backend.seed("reminders", description="Control general", reminder_type="Entrega de reactivo",
                           status="Pendiente", client_id=None)
    backend.seed("reminders", description="Visita", reminder_type="Visita", status="Pendiente")
    return first, second, general


def test_migration_groups_reminders_by_client(backend, store, session, notifier):
    client = backend.seed("clients", name="Hospital Norte")
    first, second, _ = seed_reagent_reminders(backend, client)

    store.set_session(session)

    deliveries = {d["client_name"]: d for d in store.pending_deliveries}
    assert set(deliveries) == {"Hospital Norte", "General"}
    hospital = deliveries["Hospital Norte"]
    assert hospital["requested_items"] == [
        {"reagent_name": "Falta reactivo X", "reagent_size": "N/A", "quantity": 1},
        {"reagent_name": "Falta reactivo Y", "reagent_size": "N/A", "quantity": 1},
    ]
    assert hospital["notes"] == "Generated from reminders: Falta reactivo X; Falta reactivo Y"
    assert hospital["target_delivery_date"] == "2024-07-01"
    assert hospital["source_reminder_ids"] == [first["id"], second["id"]]
    assert [r["reminder_type"] for r in store.reminders] == ["Visita"]
    assert any(n.title == "Migration complete" for n in notifier.recent())


def test_migration_without_reminders_is_silent(backend, store, session, notifier):
    store.set_session(session)
    assert ("insert", "pending_reagent_deliveries") not in backend.calls
    assert notifier.recent() == []


def test_failed_insert_keeps_reminders(backend, store, session, notifier):
    client = backend.seed("clients", name="Hospital Norte")
    seed_reagent_reminders(backend, client)
    backend.fail("insert", "pending_reagent_deliveries")

    store.set_session(session)

    assert ("delete_where", "reminders") not in backend.calls
    assert len(backend.rows["reminders"]) == 4
    assert any(n.title == "Migration error" for n in notifier.recent())
    # The rest of the load still happened
    assert not store.loading
    assert len(store.clients) == 1


def test_migration_runs_once_per_reminder(backend, store):
    client = backend.seed("clients", name="Hospital Norte")
    seed_reagent_reminders(backend, client)

    result = store.migrate_reagent_reminders()
    again = store.migrate_reagent_reminders()

    assert result.reminders_migrated == 3
    assert result.deliveries_created == 2
    assert again.deliveries_created == 0
    assert len(backend.rows["pending_reagent_deliveries"]) == 2


def test_marked_reminder_is_deleted_not_migrated_again(backend, store, notifier):
    client = backend.seed("clients", name="Hospital Norte")
    seed_reagent_reminders(backend, client)
    # Delivery written, reminder deletion failed last time
    backend.fail("delete_where", "reminders", times=2)
    store.migrate_reagent_reminders()
    assert len(backend.rows["pending_reagent_deliveries"]) == 2
    assert len(backend.rows["reminders"]) == 4
    errors = [n for n in notifier.recent() if n.title == "Migration error"]
    assert len(errors) == 2
    assert "could not be deleted" in errors[0].description

    result = store.migrate_reagent_reminders()

    assert result.deliveries_created == 0
    assert result.stale_reminders_deleted == 3
    assert len(backend.rows["pending_reagent_deliveries"]) == 2
    assert [r["reminder_type"] for r in backend.rows["reminders"]] == ["Visita"]


def test_failed_cleanup_of_marked_reminders_is_reported(backend, store, notifier):
    reminder = backend.seed("reminders", description="Lisante", reminder_type="Entrega de reactivo", status="Pendiente")
    backend.seed("pending_reagent_deliveries", client_name="General", status="Pendiente",
                 source_reminder_ids=[reminder["id"]])
    backend.fail("delete_where", "reminders")

    result = store.migrate_reagent_reminders()

    assert result.stale_reminders_deleted == 0
    assert result.deliveries_created == 0
    assert len(backend.rows["reminders"]) == 1
    assert notifier.recent()[-1].title == "Migration error"


def test_marked_reminder_of_another_type_is_deleted(backend, store):
    # Edited into a reagent delivery, but its deletion failed at the time
    reminder = backend.seed("reminders", description="Lisante", reminder_type="Visita", status="Completado")
    backend.seed("reminders", description="Visita anual", reminder_type="Visita", status="Pendiente")
    backend.seed("pending_reagent_deliveries", client_name="General", status="Pendiente",
                 source_reminder_ids=[reminder["id"]])

    result = store.migrate_reagent_reminders()

    assert result.stale_reminders_deleted == 1
    assert result.deliveries_created == 0
    assert [r["description"] for r in backend.rows["reminders"]] == ["Visita anual"]
    assert len(backend.rows["pending_reagent_deliveries"]) == 1


def test_collection_names_cover_the_dashboard():
    assert set(COLLECTIONS) >= {"clients", "service_orders", "deliveries", "equipment", "reminders"}
