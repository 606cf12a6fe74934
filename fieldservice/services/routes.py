"""Route planning over clients with a street address"""
from typing import Iterable, List, Mapping, Optional, Sequence
from urllib.parse import quote, urlencode

MAPS_SEARCH_URL = "https://www.google.com/maps/search/?api=1&query="
MAPS_DIRECTIONS_URL = "https://www.google.com/maps/dir/?api=1&"


def maps_search_link(address: str) -> Optional[str]:
    if not address or not address.strip():
        return None
    return MAPS_SEARCH_URL + quote(address.strip(), safe="")


def route_clients(clients: Iterable[Mapping], search: Optional[str] = None) -> List[dict]:
    """Clients with a non-blank address matching the search by name or address, with a map link"""
    term = (search or "").strip().lower()
    result = []
    for client in clients:
        address = (client.get("address") or "").strip()
        if not address:
            continue
        if term and term not in (client.get("name") or "").lower() and term not in address.lower():
            continue
        result.append({
            "id": client.get("id"),
            "name": client.get("name"),
            "address": address,
            "maps_url": maps_search_link(address),
        })
    return sorted(result, key=lambda c: (c["name"] or "").lower())


def directions_link(addresses: Sequence[str]) -> Optional[str]:
    """
    Multi-stop driving directions: the first address is the origin, the
    last the destination and everything in between a waypoint.
    """
    stops = [a.strip() for a in addresses if a and a.strip()]
    if not stops:
        return None
    if len(stops) == 1:
        return maps_search_link(stops[0])
    params = {"origin": stops[0], "destination": stops[-1], "travelmode": "driving"}
    if len(stops) > 2:
        params["waypoints"] = "|".join(stops[1:-1])
    return MAPS_DIRECTIONS_URL + urlencode(params, quote_via=quote)


def route_for_clients(clients: Iterable[Mapping], client_ids: Sequence[str]) -> dict:
    """Directions through the given clients in the given order; unknown or address-less ids are skipped"""
    by_id = {c.get("id"): c for c in clients}
    stops = []
    skipped = []
    for client_id in client_ids:
        client = by_id.get(client_id)
        address = (client.get("address") or "").strip() if client else ""
        if address:
            stops.append({"id": client_id, "name": client.get("name"), "address": address})
        else:
            skipped.append(client_id)
    return {
        "stops": stops,
        "skipped": skipped,
        "directions_url": directions_link([s["address"] for s in stops]),
    }
