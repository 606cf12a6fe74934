"""
Aggregation Views over the synchronized collections.

Each view is a pure function of (collections, year, month[, client]).
Reported issues are grouped by their literal trimmed text; differently
worded descriptions of the same problem count separately.

AggregationCache memoizes results on the identity of the input
collections plus the selection, so unrelated re-renders do not recompute.
The synchronization layer replaces collections wholesale, which makes
identity a safe change signal.
"""
import calendar
from collections import OrderedDict
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from fieldservice.constants import (
    EQUIPMENT_ALERT, EQUIPMENT_OK, MISSING_PART_REMINDER_TYPES, OPEN_ORDER_STATUSES
)
from fieldservice.services.filters import as_date

ALL_CLIENTS = "Todos"


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    """First and last day of the month, both inclusive"""
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month {month}")
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


def _in_month(value, start: date, end: date) -> bool:
    day = as_date(value)
    return day is not None and start <= day <= end


def visits_by_client(service_orders: Iterable[Mapping], year: int, month: int) -> List[Dict[str, Any]]:
    """Service orders created in the month, counted per client name"""
    start, end = month_bounds(year, month)
    counts: Dict[str, int] = {}
    for order in service_orders:
        if not _in_month(order.get("creation_date"), start, end):
            continue
        name = order.get("client_name")
        if name:
            counts[name] = counts.get(name, 0) + 1
    return [{"name": name, "value": visits} for name, visits in counts.items()]


def _reagent_baseline(reagent_types: Iterable[Mapping]) -> Dict[str, int]:
    return {reagent["name"]: 0 for reagent in reagent_types}


def _add_items(totals: Dict[str, int], delivery: Mapping):
    for item in delivery.get("delivery_items") or []:
        name = item.get("reagent_name")
        if name in totals:
            totals[name] += item.get("quantity") or 0


def reagent_consumption_for_client(
    deliveries: Iterable[Mapping], reagent_types: Iterable[Mapping], client_name: str, year: int, month: int
) -> List[Dict[str, Any]]:
    """Quantity per catalog reagent delivered to one client in the month; zero totals omitted"""
    start, end = month_bounds(year, month)
    totals = _reagent_baseline(reagent_types)
    for delivery in deliveries:
        if delivery.get("client_name") == client_name and _in_month(delivery.get("delivery_date"), start, end):
            _add_items(totals, delivery)
    return [{"name": name, "value": quantity} for name, quantity in totals.items() if quantity > 0]


def reagent_consumption_by_client(
    deliveries: Iterable[Mapping],
    clients: Iterable[Mapping],
    reagent_types: Iterable[Mapping],
    year: int,
    month: int,
    client_name: str = ALL_CLIENTS,
) -> List[Dict[str, Any]]:
    """
    One row per client with every catalog reagent present (zero baseline),
    so every chart shares the same legend. With all clients selected,
    clients without consumption that month are left out; a single selected
    client is always returned.
    """
    start, end = month_bounds(year, month)
    selected = [c for c in clients if client_name == ALL_CLIENTS or c.get("name") == client_name]
    rows: Dict[str, Dict[str, int]] = {c["name"]: _reagent_baseline(reagent_types) for c in selected}

    for delivery in deliveries:
        totals = rows.get(delivery.get("client_name"))
        if totals is not None and _in_month(delivery.get("delivery_date"), start, end):
            _add_items(totals, delivery)

    result = []
    for name, totals in rows.items():
        if client_name != ALL_CLIENTS or any(quantity > 0 for quantity in totals.values()):
            result.append({"name": name, **totals})
    return result


def total_reagent_consumption(
    deliveries: Iterable[Mapping], reagent_types: Iterable[Mapping], year: int, month: int
) -> List[Dict[str, Any]]:
    start, end = month_bounds(year, month)
    totals = _reagent_baseline(reagent_types)
    for delivery in deliveries:
        if _in_month(delivery.get("delivery_date"), start, end):
            _add_items(totals, delivery)
    return [{"name": name, "value": quantity} for name, quantity in totals.items() if quantity > 0]


def service_reasons_by_client(service_orders: Iterable[Mapping], year: int, month: int) -> Dict[str, Any]:
    """
    Per client, count of service orders by literal reported issue text.

    Returns {"rows": [{"name": client, <reason>: count, ...}], "reasons": [...]}
    where "reasons" lists every distinct reason of the month (chart legend).
    """
    start, end = month_bounds(year, month)
    counts: Dict[str, Dict[str, int]] = {}
    reasons: List[str] = []
    for order in service_orders:
        if not _in_month(order.get("creation_date"), start, end):
            continue
        reason = (order.get("reported_issue") or "").strip()
        if reason and reason not in reasons:
            reasons.append(reason)
        client = order.get("client_name")
        if not client or not reason:
            continue
        per_client = counts.setdefault(client, {})
        per_client[reason] = per_client.get(reason, 0) + 1
    return {
        "rows": [{"name": client, **per_client} for client, per_client in counts.items()],
        "reasons": reasons,
    }


def equipment_status(unit: Mapping, service_orders: Iterable[Mapping], reminders: Iterable[Mapping]) -> Dict[str, str]:
    """
    Derived health of one equipment unit: an open service order on its
    serial number, or a pending missing-part reminder on the unit, raises
    an alert. There is no stored status.
    """
    for order in service_orders:
        if order.get("equipment_serial") == unit.get("serial_number") and order.get("status") in OPEN_ORDER_STATUSES:
            return {"status": EQUIPMENT_ALERT, "message": f"Service order is {order['status']}", "color": "orange"}
    for reminder in reminders:
        if (
            reminder.get("equipment_id") == unit.get("id")
            and reminder.get("reminder_type") in MISSING_PART_REMINDER_TYPES
            and reminder.get("status") == "Pendiente"
        ):
            return {"status": EQUIPMENT_ALERT, "message": reminder.get("description") or "", "color": "orange"}
    return {"status": EQUIPMENT_OK, "message": "Equipment is operational.", "color": "green"}


class AggregationCache:
    """
    Memoize views on (view, selection) plus the identity of their inputs.
    Keeps at most max_entries, evicting the least recently used.
    """

    def __init__(self, max_entries: int = 128):
        self._entries: "OrderedDict[tuple, Tuple[tuple, Any]]" = OrderedDict()
        self.max_entries = max_entries
        self.hits = 0
        self.misses = 0

    def get(self, view: str, inputs: tuple, selection: tuple, compute: Callable[[], Any]) -> Any:
        key = (view,) + selection
        cached = self._entries.get(key)
        if cached is not None:
            cached_inputs, value = cached
            if len(cached_inputs) == len(inputs) and all(a is b for a, b in zip(cached_inputs, inputs)):
                self.hits += 1
                self._entries.move_to_end(key)
                return value
        self.misses += 1
        value = compute()
        self._entries[key] = (inputs, value)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
        return value

    def __len__(self):
        return len(self._entries)

    def clear(self):
        self._entries.clear()


class AggregationViews:
    """The views bound to a synchronized store, memoized"""

    def __init__(self, store, cache: Optional[AggregationCache] = None):
        self._store = store
        self.cache = cache or AggregationCache()

    def visits_by_client(self, year: int, month: int):
        orders = self._store.service_orders
        return self.cache.get("visits", (orders,), (year, month),
                              lambda: visits_by_client(orders, year, month))

    def reagent_consumption_by_client(self, year: int, month: int, client_name: str = ALL_CLIENTS):
        deliveries, clients, reagent_types = self._store.deliveries, self._store.clients, self._store.reagent_types
        return self.cache.get(
            "reagents_by_client", (deliveries, clients, reagent_types), (year, month, client_name),
            lambda: reagent_consumption_by_client(deliveries, clients, reagent_types, year, month, client_name)
        )

    def reagent_consumption_for_client(self, year: int, month: int, client_name: str):
        deliveries, reagent_types = self._store.deliveries, self._store.reagent_types
        return self.cache.get(
            "reagents_for_client", (deliveries, reagent_types), (year, month, client_name),
            lambda: reagent_consumption_for_client(deliveries, reagent_types, client_name, year, month)
        )

    def total_reagent_consumption(self, year: int, month: int):
        deliveries, reagent_types = self._store.deliveries, self._store.reagent_types
        return self.cache.get(
            "reagents_total", (deliveries, reagent_types), (year, month),
            lambda: total_reagent_consumption(deliveries, reagent_types, year, month)
        )

    def service_reasons_by_client(self, year: int, month: int):
        orders = self._store.service_orders
        return self.cache.get("reasons", (orders,), (year, month),
                              lambda: service_reasons_by_client(orders, year, month))

    def equipment_with_status(self) -> List[Dict[str, Any]]:
        equipment, orders, reminders = self._store.equipment, self._store.service_orders, self._store.reminders

        def compute():
            return [{**unit, "derived_status": equipment_status(unit, orders, reminders)} for unit in equipment]

        return self.cache.get("equipment_status", (equipment, orders, reminders), (), compute)
