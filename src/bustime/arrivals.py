"""Real-time arrivals from SIRI stop-monitoring visits.

Each visit at the origin stop is turned into a ``VehicleArrival``. The
arrival at the destination stop comes, in order of preference, from the
vehicle's onward calls, from the same vehicle in the destination stop's own
monitoring feed, or from a fixed trip-duration estimate.
"""
import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .models import VehicleArrival

logger = logging.getLogger(__name__)

DEFAULT_TRIP_ESTIMATE = timedelta(minutes=15)

_LEADING_STOP_COUNT = re.compile(r"^\s*(\d+)\s+stops?\b", re.IGNORECASE)

Visit = Dict[str, Any]


def monitored_visits(siri: Dict[str, Any]) -> List[Visit]:
    """``Siri.ServiceDelivery.StopMonitoringDelivery[0].MonitoredStopVisit``, or []."""
    delivery = ((siri or {}).get("Siri") or {}).get("ServiceDelivery") or {}
    monitoring = delivery.get("StopMonitoringDelivery") or []
    if not isinstance(monitoring, list) or not monitoring:
        return []
    visits = (monitoring[0] or {}).get("MonitoredStopVisit") or []
    return visits if isinstance(visits, list) else []


def parse_timestamp(value) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.warning("Unparseable arrival time %r", value)
        return None


def _journey(visit: Visit) -> Dict[str, Any]:
    return (visit or {}).get("MonitoredVehicleJourney") or {}


def _call_time(call: Dict[str, Any]) -> Optional[datetime]:
    return parse_timestamp(call.get("ExpectedArrivalTime")) or parse_timestamp(call.get("AimedArrivalTime"))


def _as_stop_count(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return None


def _stops_from_text(text) -> Optional[int]:
    if not isinstance(text, str):
        return None
    if "at stop" in text.lower():
        return 0
    match = _LEADING_STOP_COUNT.match(text)
    return int(match.group(1)) if match else None


def stops_away(call: Dict[str, Any]) -> int:
    distances = (call.get("Extensions") or {}).get("Distances") or {}
    for count in (
        _as_stop_count(call.get("NumberOfStopsAway")),
        _as_stop_count(distances.get("StopsFromCall")),
        _stops_from_text(distances.get("PresentableDistance")),
        _stops_from_text(call.get("ArrivalProximityText")),
    ):
        if count is not None:
            return count
    return 0


def proximity_label(count: int) -> str:
    if count <= 0:
        return "at stop"
    if count == 1:
        return "1 stop away"
    return f"{count} stops away"


def destination_name(journey: Dict[str, Any]) -> str:
    name = journey.get("DestinationName")
    if isinstance(name, list):
        name = name[0] if name else ""
    return name if isinstance(name, str) else ""


def is_out_of_service(journey: Dict[str, Any]) -> bool:
    return bool(journey.get("ProgressStatus"))


def onward_arrival(journey: Dict[str, Any], stop_id: str) -> Optional[datetime]:
    calls = (journey.get("OnwardCalls") or {}).get("OnwardCall") or []
    if isinstance(calls, dict):
        calls = [calls]
    for call in calls:
        if isinstance(call, dict) and call.get("StopPointRef") == stop_id:
            return _call_time(call)
    return None


def _arrivals_by_vehicle(visits: List[Visit]) -> Dict[str, datetime]:
    found: Dict[str, datetime] = {}
    for visit in visits or []:
        journey = _journey(visit)
        vehicle_id = journey.get("VehicleRef")
        arrival = _call_time(journey.get("MonitoredCall") or {})
        if vehicle_id and arrival and vehicle_id not in found:
            found[vehicle_id] = arrival
    return found


def match_arrivals(
    origin_visits: List[Visit],
    destination_stop_id: str,
    destination_visits: Optional[List[Visit]] = None,
    trip_estimate: timedelta = DEFAULT_TRIP_ESTIMATE,
) -> List[VehicleArrival]:
    """
    Pair vehicles approaching the origin stop with their destination arrival.

    Visits carrying a ``ProgressStatus`` are dropped; every other visit yields
    one ``VehicleArrival`` in upstream order, even when its times can't be
    parsed.
    """
    observed_at_destination = _arrivals_by_vehicle(destination_visits or [])
    arrivals: List[VehicleArrival] = []

    for visit in origin_visits or []:
        journey = _journey(visit)
        vehicle_id = journey.get("VehicleRef") or "unknown"
        if is_out_of_service(journey):
            logger.debug("Skipping vehicle %s with progress status %r", vehicle_id, journey.get("ProgressStatus"))
            continue

        call = journey.get("MonitoredCall") or {}
        origin_arrival = _call_time(call)
        count = stops_away(call)

        destination_arrival = onward_arrival(journey, destination_stop_id)
        if destination_arrival is None:
            destination_arrival = observed_at_destination.get(vehicle_id)
        is_estimated = False
        if destination_arrival is None and origin_arrival is not None:
            destination_arrival = origin_arrival + trip_estimate
            is_estimated = True

        arrivals.append(
            VehicleArrival(
                vehicle_id=vehicle_id,
                origin_arrival=origin_arrival,
                stops_away=count,
                destination_arrival=destination_arrival,
                destination=destination_name(journey),
                is_estimated=is_estimated,
                proximity=proximity_label(count),
            )
        )

    return arrivals
