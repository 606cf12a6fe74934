"""
Service order Filter Engine

filter_orders() is a pure derivation: a collection plus OrderFilterCriteria
in, a new list sorted by creation date (newest first) out.

The criteria round-trip through the navigable query string:

    search, status, type, period, technician, equipment_serial

A parameter that is absent means "unfiltered", and setting a criterion to
its no-op default removes the parameter instead of storing it. Setting
equipment_serial clears every other parameter; while it is set it is the
only criterion applied.
"""
import calendar
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional
from urllib.parse import parse_qsl, urlencode

ALL_STATUSES = "Todos"
ALL_TYPES = "Todas"
ALL_TECHNICIANS = "Todos"
ALL_PERIODS = "all"

PERIODS = ("this_week", "this_month", "last_3_months")

# criteria attribute -> query parameter
QUERY_PARAMS = {
    "search": "search",
    "status": "status",
    "order_type": "type",
    "period": "period",
    "technician": "technician",
    "equipment_serial": "equipment_serial",
}
NO_OP_VALUES = {"", ALL_STATUSES, ALL_TYPES, ALL_TECHNICIANS, ALL_PERIODS}


@dataclass(frozen=True)
class OrderFilterCriteria:
    search: str = ""
    status: str = ALL_STATUSES
    order_type: str = ALL_TYPES
    technician: str = ALL_TECHNICIANS
    period: str = ALL_PERIODS
    equipment_serial: str = ""

    @classmethod
    def from_query_params(cls, params: Mapping[str, Optional[str]]) -> "OrderFilterCriteria":
        return cls(
            search=params.get("search") or "",
            status=params.get("status") or ALL_STATUSES,
            order_type=params.get("type") or ALL_TYPES,
            technician=params.get("technician") or ALL_TECHNICIANS,
            period=params.get("period") or ALL_PERIODS,
            equipment_serial=params.get("equipment_serial") or "",
        )

    def to_query_params(self) -> Dict[str, str]:
        params = {}
        for attr, key in QUERY_PARAMS.items():
            value = getattr(self, attr)
            if value and value not in NO_OP_VALUES:
                params[key] = value
        return params

    @property
    def is_default(self) -> bool:
        return not self.to_query_params()


def update_query_string(query_string: str, key: str, value: Optional[str]) -> str:
    """
    Set one filter parameter on a query string. No-op defaults remove the
    parameter; equipment_serial replaces every other parameter.
    """
    if key not in QUERY_PARAMS.values():
        raise ValueError(f"Unknown filter parameter '{key}'")
    params = dict(parse_qsl(query_string.lstrip("?"), keep_blank_values=False))
    if key == "equipment_serial":
        params = {}
    if value and value not in NO_OP_VALUES:
        params[key] = value
    else:
        params.pop(key, None)
    return urlencode(params)


def with_filter(criteria: OrderFilterCriteria, key: str, value: Optional[str]) -> OrderFilterCriteria:
    """Criteria-level twin of update_query_string()"""
    query = update_query_string(urlencode(criteria.to_query_params()), key, value)
    return OrderFilterCriteria.from_query_params(dict(parse_qsl(query)))


def equipment_history_link(serial_number: str) -> str:
    """Jump-to-history link for one equipment unit; forces the orders view"""
    return "/?" + update_query_string("", "equipment_serial", serial_number)


def as_date(value) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def subtract_months(day: date, months: int) -> date:
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def period_start(period: str, today: Optional[date] = None) -> Optional[date]:
    """Earliest creation date included by a period, or None when unrestricted"""
    today = today or date.today()
    if period == "this_week":
        return today - timedelta(weeks=1)
    if period == "this_month":
        return subtract_months(today, 1)
    if period == "last_3_months":
        return subtract_months(today, 3)
    return None


def _matches_search(order: Mapping, term: str) -> bool:
    for key in ("client_name", "equipment_model", "equipment_serial", "reported_issue", "assigned_technician"):
        value = order.get(key)
        if value and term in str(value).lower():
            return True
    return False


def sort_newest_first(orders: Iterable[Mapping]) -> List[Mapping]:
    # Orders without a creation date go last
    return sorted(orders, key=lambda o: as_date(o.get("creation_date")) or date.min, reverse=True)


def filter_orders(orders: Iterable[Mapping], criteria: OrderFilterCriteria, today: Optional[date] = None) -> List[Mapping]:
    if not orders:
        return []
    filtered = list(orders)

    if criteria.equipment_serial:
        return sort_newest_first(o for o in filtered if o.get("equipment_serial") == criteria.equipment_serial)

    if criteria.search:
        term = criteria.search.lower()
        filtered = [o for o in filtered if _matches_search(o, term)]

    if criteria.status and criteria.status != ALL_STATUSES:
        filtered = [o for o in filtered if o.get("status") == criteria.status]

    if criteria.order_type and criteria.order_type != ALL_TYPES:
        filtered = [o for o in filtered if o.get("order_type") == criteria.order_type]

    if criteria.technician and criteria.technician != ALL_TECHNICIANS:
        filtered = [o for o in filtered if o.get("assigned_technician") == criteria.technician]

    start = period_start(criteria.period, today)
    if start:
        filtered = [o for o in filtered if (as_date(o.get("creation_date")) or date.min) >= start]

    return sort_newest_first(filtered)


def technician_options(orders: Iterable[Mapping]) -> List[str]:
    """Distinct assigned technicians, alphabetical"""
    return sorted({o["assigned_technician"] for o in orders if o.get("assigned_technician")})


# ============ Pending deliveries / reminders ============

ALL_DELIVERY_STATUSES = "Todas"


def filter_pending_deliveries(deliveries: Iterable[Mapping], status: Optional[str] = "Pendiente") -> List[Mapping]:
    """
    Pending reagent deliveries with the given status ("Todas" for all),
    soonest target date first; deliveries without a target date go last,
    ties newest created first.
    """
    selected = [d for d in deliveries if not status or status == ALL_DELIVERY_STATUSES or d.get("status") == status]
    selected.sort(key=lambda d: str(d.get("created_at") or ""), reverse=True)
    selected.sort(key=lambda d: (as_date(d.get("target_delivery_date")) is None,
                                 as_date(d.get("target_delivery_date")) or date.min))
    return selected


def filter_reminders(reminders: Iterable[Mapping], status: Optional[str] = None,
                     reminder_type: Optional[str] = None) -> List[Mapping]:
    """Reminders by status and type (None or "Todos" = any), earliest due date first"""
    result = []
    for reminder in reminders:
        if status and status != ALL_STATUSES and reminder.get("status") != status:
            continue
        if reminder_type and reminder_type not in (ALL_STATUSES, ALL_TYPES) and reminder.get("reminder_type") != reminder_type:
            continue
        result.append(reminder)
    return sorted(result, key=lambda r: (as_date(r.get("due_date")) is None, as_date(r.get("due_date")) or date.min))
