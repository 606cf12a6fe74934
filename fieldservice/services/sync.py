"""
Data Synchronization Layer

Owns the canonical in-memory copies of the dashboard collections and keeps
them consistent with the data backend:

- Nothing is fetched until a session is established. Establishing one runs
  the reagent-reminder migration, bulk-fetches every collection, publishes
  them together as one snapshot and subscribes to table change events.
- refresh(name) re-fetches exactly one collection and replaces it
  wholesale. Change events map to refreshes of the affected collections,
  so duplicate or out-of-order notifications are harmless.
- Read failures are notified and logged; the collection keeps its last
  known value. Transient failures are retried with exponential backoff.
- This class is the only writer of the collections. Readers get tuples
  and request changes indirectly (write to the backend, then refresh).
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Optional, Tuple

from fieldservice.constants import REAGENT_DELIVERY_REMINDER, UNKNOWN_REAGENT_SIZE
from fieldservice.exceptions import BackendError
from fieldservice.services.backend import DataBackend
from fieldservice.services.notifications import Notifier
from fieldservice.services.realtime import ChangeEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CollectionSpec:
    table: str
    expand: Tuple[str, ...] = ()


COLLECTIONS: Dict[str, CollectionSpec] = {
    "reagent_types": CollectionSpec("reagent_types"),
    "clients": CollectionSpec("clients"),
    "service_orders": CollectionSpec("service_orders", expand=("client",)),
    "deliveries": CollectionSpec("reagent_deliveries", expand=("client",)),
    "equipment": CollectionSpec("equipment_inventory", expand=("model.type", "client", "sub_client")),
    "reminders": CollectionSpec("reminders"),
    "pending_deliveries": CollectionSpec("pending_reagent_deliveries"),
}

CORE_COLLECTIONS = ("clients", "service_orders", "deliveries", "equipment", "reminders")

# Backing table -> collections to re-fetch when it changes.
# Equipment status badges derive from clients and service orders as well.
TABLE_REFRESHES: Dict[str, Tuple[str, ...]] = {
    "service_orders": ("service_orders",),
    "clients": ("clients",),
    "sub_clients": ("clients",),
    "reagent_deliveries": ("deliveries",),
    "equipment_inventory": ("equipment", "clients", "service_orders"),
    "reminders": ("reminders",),
    "pending_reagent_deliveries": ("pending_deliveries",),
    "reagent_types": ("reagent_types", "deliveries"),
}


@dataclass(frozen=True)
class SessionInfo:
    """Authenticated session that gates fetching"""
    user_id: str
    email: str
    name: Optional[str] = None
    role: Optional[str] = None


@dataclass
class MigrationResult:
    reminders_migrated: int = 0
    deliveries_created: int = 0
    stale_reminders_deleted: int = 0
    failed_groups: List[str] = field(default_factory=list)


def resolve_delivery_names(records: List[dict], reagent_types) -> List[dict]:
    """Replace name snapshots with the current client / reagent names"""
    names = {reagent["id"]: reagent["name"] for reagent in reagent_types}
    for record in records:
        client = record.pop("client", None)
        if client:
            record["client_name"] = client["name"]
        items = []
        for item in record.get("delivery_items") or []:
            type_id = item.get("reagent_type_id")
            if type_id in names:
                item = {**item, "reagent_name": names[type_id]}
            items.append(item)
        record["delivery_items"] = items
    return records


class DataSyncLayer:
    def __init__(
        self,
        backend: DataBackend,
        notifier: Notifier,
        retry_attempts: int = 3,
        retry_backoff_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._backend = backend
        self._notifier = notifier
        self._retry_attempts = max(1, retry_attempts)
        self._retry_backoff = retry_backoff_seconds
        self._sleep = sleep

        self._lock = threading.RLock()
        self._collections: Dict[str, tuple] = {name: () for name in COLLECTIONS}
        self._loading = True
        self._session: Optional[SessionInfo] = None
        # Bumped whenever the session starts or ends; results fetched under
        # an older generation are discarded.
        self._generation = 0
        self._subscriptions = []
        self._listeners: List[Callable[[str], None]] = []

    # ============ State ============

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def session(self) -> Optional[SessionInfo]:
        return self._session

    @property
    def is_ready(self) -> bool:
        return self._session is not None and not self._loading

    def get(self, name: str) -> tuple:
        if name not in COLLECTIONS:
            raise ValueError(f"Unknown collection '{name}'")
        return self._collections[name]

    def snapshot(self) -> Dict[str, tuple]:
        with self._lock:
            return dict(self._collections)

    @property
    def clients(self) -> tuple:
        return self._collections["clients"]

    @property
    def service_orders(self) -> tuple:
        return self._collections["service_orders"]

    @property
    def deliveries(self) -> tuple:
        return self._collections["deliveries"]

    @property
    def equipment(self) -> tuple:
        return self._collections["equipment"]

    @property
    def reminders(self) -> tuple:
        return self._collections["reminders"]

    @property
    def pending_deliveries(self) -> tuple:
        return self._collections["pending_deliveries"]

    @property
    def reagent_types(self) -> tuple:
        return self._collections["reagent_types"]

    def add_listener(self, callback: Callable[[str], None]):
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[str], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    # ============ Session gate ============

    def set_session(self, session: Optional[SessionInfo]):
        """Session-ready signal: a session starts loading, None ends it"""
        if session is None:
            self.end_session()
            return
        if self._session is not None:
            if self._session.user_id == session.user_id:
                return
            self.end_session()

        with self._lock:
            self._session = session
            self._generation += 1
        logger.info(f"Session ready for {session.email}; loading dashboard data")
        self.load_all()
        self._subscribe()

    def end_session(self):
        self._release_subscriptions()
        with self._lock:
            had_session = self._session is not None
            self._session = None
            self._generation += 1
            self._collections = {name: () for name in COLLECTIONS}
            self._loading = True
        if had_session:
            logger.info("Session ended; collections cleared")

    # ============ Fetching ============

    def _fetch(self, name: str) -> List[dict]:
        spec = COLLECTIONS[name]
        for attempt in range(1, self._retry_attempts + 1):
            try:
                return self._backend.fetch(spec.table, expand=spec.expand)
            except BackendError as e:
                if not e.transient or attempt == self._retry_attempts:
                    raise
                delay = self._retry_backoff * (2 ** (attempt - 1))
                logger.warning(f"Transient error fetching {spec.table} (attempt {attempt}/{self._retry_attempts}), retrying in {delay:.2f}s: {e}")
                self._sleep(delay)

    def _prepare(self, name: str, records: List[dict], reagent_types) -> tuple:
        if name == "deliveries":
            records = resolve_delivery_names(records, reagent_types)
        return tuple(records)

    def _publish(self, updates: Dict[str, tuple], generation: int) -> bool:
        with self._lock:
            if generation != self._generation or self._session is None:
                logger.debug(f"Discarding stale results for {', '.join(updates)}")
                return False
            collections = dict(self._collections)
            collections.update(updates)
            self._collections = collections
            self._loading = False
        for name in updates:
            self._notify_listeners(name)
        return True

    def _notify_listeners(self, name: str):
        for callback in list(self._listeners):
            try:
                callback(name)
            except Exception as e:
                logger.error(f"Collection listener failed for {name}: {e}")

    def load_all(self) -> bool:
        """Migrate reagent reminders, then fetch every collection as one snapshot"""
        if self._session is None:
            logger.debug("No session; skipping bulk load")
            return False
        generation = self._generation
        self._loading = True
        updates: Dict[str, tuple] = {}
        try:
            self.migrate_reagent_reminders()
            for name in COLLECTIONS:
                try:
                    records = self._fetch(name)
                except BackendError as e:
                    self._notifier.error(f"Error loading {name.replace('_', ' ')}", e.message)
                    continue
                reagent_types = updates.get("reagent_types", self._collections["reagent_types"])
                updates[name] = self._prepare(name, records, reagent_types)
        finally:
            published = self._publish(updates, generation)
        if published:
            logger.info(f"Loaded {', '.join(f'{name}={len(updates[name])}' for name in updates)}")
        return published

    def refresh(self, name: str) -> bool:
        """Re-fetch one collection and replace it wholesale"""
        if name not in COLLECTIONS:
            raise ValueError(f"Unknown collection '{name}'")
        if self._session is None:
            logger.debug(f"No session; not refreshing {name}")
            return False
        generation = self._generation
        try:
            records = self._fetch(name)
        except BackendError as e:
            self._notifier.error(f"Error loading {name.replace('_', ' ')}", e.message)
            return False
        return self._publish({name: self._prepare(name, records, self._collections["reagent_types"])}, generation)

    def refresh_many(self, *names: str) -> List[str]:
        return [name for name in names if self.refresh(name)]

    # ============ Change notifications ============

    def apply_change_notification(self, table: str) -> List[str]:
        """Entry point for backend change events: refresh the affected collections"""
        names = TABLE_REFRESHES.get(table)
        if not names:
            logger.debug(f"Ignoring change on untracked table {table}")
            return []
        return self.refresh_many(*names)

    def _on_change(self, change: ChangeEvent):
        logger.debug(f"Change event {change.event} on {change.table}")
        self.apply_change_notification(change.table)

    def _subscribe(self):
        if self._session is None or self._subscriptions:
            return
        for table in TABLE_REFRESHES:
            try:
                self._subscriptions.append(self._backend.subscribe_changes(table, "*", self._on_change))
            except BackendError as e:
                self._notifier.error("Realtime subscription failed", f"{table}: {e.message}")
        logger.info(f"Subscribed to changes on {len(self._subscriptions)} table(s)")

    def _release_subscriptions(self):
        for handle in self._subscriptions:
            try:
                self._backend.unsubscribe(handle)
            except BackendError as e:
                logger.error(f"Failed to release subscription on {handle.table}: {e}")
        self._subscriptions = []

    # ============ Reminder migration ============

    def migrate_reagent_reminders(self) -> MigrationResult:
        """
        Turn pending "Entrega de reactivo" reminders into pending reagent
        deliveries, one per client. A reminder is deleted only after the
        delivery listing it in source_reminder_ids has been written; any
        reminder already listed by an existing delivery is deleted without
        being migrated again, whatever its current type or status.
        """
        result = MigrationResult()
        try:
            reminders = self._backend.fetch(
                "reminders", {"reminder_type": REAGENT_DELIVERY_REMINDER, "status": "Pendiente"}
            )
        except BackendError as e:
            self._notifier.error("Migration error", f"Could not read reagent reminders: {e.message}")
            return result

        try:
            existing = self._backend.fetch("pending_reagent_deliveries")
        except BackendError as e:
            self._notifier.error("Migration error", f"Could not read pending deliveries: {e.message}")
            return result
        migrated_ids = {rid for delivery in existing for rid in (delivery.get("source_reminder_ids") or [])}

        if migrated_ids:
            result.stale_reminders_deleted = self._delete_migrated_reminders(migrated_ids)

        groups: Dict[str, dict] = {}
        for reminder in reminders:
            if reminder["id"] in migrated_ids:
                continue
            key = reminder.get("client_id") or "general"
            group = groups.setdefault(key, {
                "client_id": reminder.get("client_id"),
                "client_name": reminder.get("client_name") or "General",
                "reminders": [],
            })
            group["reminders"].append(reminder)

        for key, group in groups.items():
            batch = group["reminders"]
            descriptions = [r["description"] for r in batch]
            delivery = {
                "client_id": group["client_id"],
                "client_name": group["client_name"],
                "requested_items": [
                    {"reagent_name": d, "reagent_size": UNKNOWN_REAGENT_SIZE, "quantity": 1} for d in descriptions
                ],
                "notes": f"Generated from reminders: {'; '.join(descriptions)}",
                "status": "Pendiente",
                "requested_date": date.today().isoformat(),
                "target_delivery_date": batch[0].get("due_date"),
                "source_reminder_ids": [r["id"] for r in batch],
            }
            try:
                self._backend.insert("pending_reagent_deliveries", delivery)
            except BackendError as e:
                result.failed_groups.append(key)
                self._notifier.error("Migration error", f"Could not migrate reagent reminders for {group['client_name']}: {e.message}")
                continue
            result.deliveries_created += 1
            try:
                self._backend.delete_where("reminders", {"id": [r["id"] for r in batch]})
            except BackendError as e:
                # The marker on the delivery prevents a duplicate on the next run
                self._notifier.error(
                    "Migration error",
                    f"Migrated reminders for {group['client_name']} could not be deleted: {e.message}"
                )
                continue
            result.reminders_migrated += len(batch)

        if result.reminders_migrated:
            self._notifier.success(
                "Migration complete",
                f"{result.reminders_migrated} reagent reminder(s) moved to pending deliveries."
            )
        return result

    def _delete_migrated_reminders(self, migrated_ids) -> int:
        """Delete reminders that a pending delivery already lists as its source"""
        try:
            leftover = self._backend.fetch("reminders", {"id": sorted(migrated_ids)})
            if not leftover:
                return 0
            return self._backend.delete_where("reminders", {"id": [r["id"] for r in leftover]})
        except BackendError as e:
            self._notifier.error("Migration error", f"Could not delete already-migrated reminders: {e.message}")
            return 0
