"""
Service order numeric sanitization and cost derivation.

Form input arrives as text. Malformed numbers become None (never NaN and
never an exception) and the cost fields are always recomputed from their
inputs before an order is persisted:

- part total      = quantity * unit_cost (falls back to the given total)
- parts_cost      = sum of part totals
- labor_cost      = labor_hours * labor_rate
- total_cost      = parts_cost + labor_cost + transport_cost

A derived value that overflows the float range is stored as None, and so
is every total built on top of it.
"""
import math
from typing import Any, Dict, Iterable, List, Optional

NUMERIC_FIELDS = ("task_time", "labor_hours", "labor_rate", "transport_cost")


def _finite(number: float) -> Optional[float]:
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def parse_number(value: Any) -> Optional[float]:
    """Parse a float with fallback to None"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace(",", ".")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    return _finite(number)


def parse_integer(value: Any) -> Optional[int]:
    """Parse an integer with fallback to None; decimals are truncated"""
    number = parse_number(value)
    if number is None:
        return None
    return int(number)


def _rounded(number: Optional[float]) -> Optional[float]:
    if number is None:
        return None
    return _finite(round(number, 2))


def sanitize_part(part: Dict[str, Any]) -> Dict[str, Any]:
    quantity = parse_integer(part.get("quantity"))
    unit_cost = parse_number(part.get("unit_cost"))
    if quantity is not None and unit_cost is not None:
        total_cost = _rounded(_finite(quantity * unit_cost))
    else:
        total_cost = parse_number(part.get("total_cost"))
    return {
        **part,
        "part_name": (part.get("part_name") or "").strip(),
        "quantity": quantity,
        "unit_cost": unit_cost,
        "total_cost": total_cost,
    }


def sanitize_parts(parts: Optional[Iterable[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    return [sanitize_part(part) for part in (parts or [])]


def compute_costs(parts: List[Dict[str, Any]], labor_hours: Optional[float],
                  labor_rate: Optional[float], transport_cost: Optional[float]) -> Dict[str, Optional[float]]:
    """Derive parts, labor and total cost from already-sanitized inputs"""
    parts_cost = _finite(sum(part.get("total_cost") or 0 for part in parts))
    labor_cost = _finite((labor_hours or 0) * (labor_rate or 0))
    if parts_cost is None or labor_cost is None:
        total_cost = None
    else:
        total_cost = _finite(parts_cost + labor_cost + (transport_cost or 0))
    return {
        "parts_cost": _rounded(parts_cost),
        "labor_cost": _rounded(labor_cost),
        "total_cost": _rounded(total_cost),
    }


def sanitize_order_numbers(order: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a copy of the order with every numeric field parsed, parts
    sanitized and the cost fields recomputed. Submitted cost totals are
    ignored.
    """
    result = dict(order)
    for key in NUMERIC_FIELDS:
        result[key] = parse_number(order.get(key))
    result["parts_used"] = sanitize_parts(order.get("parts_used"))
    result.update(compute_costs(
        result["parts_used"], result["labor_hours"], result["labor_rate"], result["transport_cost"]
    ))
    return result
