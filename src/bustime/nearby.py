import logging
from typing import Any, Dict, List, Optional

from .geo import distance_miles
from .models import BusStop, ClosestStop, NearbyBusLine, StopMatch
from .naming import normalize_into_streets, streets_match
from .route_rules import filter_stops

logger = logging.getLogger(__name__)

EXACT_MATCH = "exact street match"
CLOSEST_MATCH = "closest by distance"


def find_matching_stop(
    stops: List[BusStop],
    target_name: Optional[str],
    lat: float,
    lon: float,
    line_id: str,
) -> Optional[StopMatch]:
    """
    Pick the stop of ``line_id`` that best corresponds to ``target_name``.

    The line's route rule narrows the candidates first. A stop whose cross
    streets match the target's (in either order) wins outright, the first one
    in input order; otherwise the stop nearest to (lat, lon) is returned.
    Returns None when no candidate survives the route rule.
    """
    candidates = filter_stops(line_id, stops)
    if not candidates:
        return None

    if target_name:
        target = normalize_into_streets(target_name)
        for stop in candidates:
            if streets_match(target, normalize_into_streets(stop.name)):
                return StopMatch(
                    stop=stop,
                    match_reason=EXACT_MATCH,
                    distance=distance_miles(lat, lon, stop.lat, stop.lon),
                )
        logger.debug("No stop of %s matches %r by name, using distance", line_id, target_name)

    closest = candidates[0]
    min_distance = distance_miles(lat, lon, closest.lat, closest.lon)
    for stop in candidates[1:]:
        d = distance_miles(lat, lon, stop.lat, stop.lon)
        if d < min_distance:
            closest, min_distance = stop, d
    return StopMatch(stop=closest, match_reason=CLOSEST_MATCH, distance=min_distance)


def _route_line(route: Dict[str, Any]) -> Dict[str, Any]:
    agency = route.get("agency") or {}
    return {
        "id": route.get("id", ""),
        "short_name": route.get("shortName") or "",
        "long_name": route.get("longName") or "",
        "description": route.get("description") or "",
        "agency_id": route.get("agencyId") or agency.get("id") or "",
    }


def _stop_routes(stop: Dict[str, Any], route_refs: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
    routes = stop.get("routes")
    if isinstance(routes, list):
        return [r for r in routes if isinstance(r, dict) and r.get("id")]
    return [route_refs[rid] for rid in stop.get("routeIds") or [] if rid in route_refs]


def summarize_nearby_lines(payload: Dict[str, Any], lat: float, lon: float, limit: int = 5) -> List[NearbyBusLine]:
    """
    Closest stop per route from a stops-for-location response.

    Accepts stops with embedded ``routes`` objects, or with ``routeIds``
    resolved against ``references.routes``.
    """
    payload = payload or {}
    stops = payload.get("stops") or payload.get("list") or []
    route_refs = {
        r["id"]: r
        for r in (payload.get("references") or {}).get("routes") or []
        if isinstance(r, dict) and r.get("id")
    }

    lines: Dict[str, Dict[str, Any]] = {}
    closest: Dict[str, ClosestStop] = {}
    for stop in stops:
        try:
            d = distance_miles(lat, lon, float(stop["lat"]), float(stop["lon"]))
        except (KeyError, TypeError, ValueError):
            logger.warning("Skipping nearby stop without usable coordinates: %r", stop)
            continue
        for route in _stop_routes(stop, route_refs):
            route_id = route["id"]
            lines.setdefault(route_id, _route_line(route))
            if route_id not in closest or d < closest[route_id].distance:
                closest[route_id] = ClosestStop(name=stop.get("name") or "Unknown Stop", distance=d)

    nearby = [
        NearbyBusLine(**lines[route_id], distance=stop.distance, closest_stop=stop)
        for route_id, stop in closest.items()
    ]
    nearby.sort(key=lambda line: line.distance)
    return nearby[:limit]
