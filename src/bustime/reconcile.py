"""Turn a stops-for-route response into direction-tagged, ordered stops.

Bus Time groups stop ids by direction (``stopGroupings[].stopGroups[]``) and
only sometimes includes the stop details in ``references``. Stops missing from
the references are fetched one by one, in small concurrent batches, and kept
in a ``StopLookup`` that lives for a single reconciliation.
"""
import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from .errors import BusTimeError, UpstreamDataShapeError
from .models import BusStop, Direction, StopInfo

logger = logging.getLogger(__name__)

UNKNOWN_STOP = "Unknown Stop"
DEFAULT_BATCH_SIZE = 5
DEFAULT_BATCH_DELAY = 0.5
DEFAULT_FETCH_TIMEOUT = 8.0

StopReference = Dict[str, Any]
FetchStop = Callable[[str], Awaitable[Optional[StopReference]]]


@dataclass
class DirectionGroup:
    id: str
    name: str
    stop_ids: List[str]


@dataclass
class StopLookup:
    """Stops fetched individually while reconciling one route."""

    stops: Dict[str, StopReference] = field(default_factory=dict)
    unresolved: Set[str] = field(default_factory=set)

    def get(self, stop_id: str) -> Optional[StopReference]:
        return self.stops.get(stop_id)

    def __contains__(self, stop_id: str) -> bool:
        return stop_id in self.stops or stop_id in self.unresolved


@dataclass
class ReconciledStops:
    directions: List[Direction]
    stops: List[BusStop]
    unresolved: List[str] = field(default_factory=list)


# -------------------------------------------------------------------
# Field resolvers: each rule returns a value or None, first hit wins
# -------------------------------------------------------------------
def _text(raw):
    return raw.strip() if isinstance(raw, str) else None


def _number_text(raw):
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return str(raw)
    return None


def _object_id(raw):
    return _text(raw.get("id")) if isinstance(raw, dict) else None


def _object_name(raw):
    return _text(raw.get("name")) if isinstance(raw, dict) else None


def _object_first_name(raw):
    if isinstance(raw, dict):
        names = raw.get("names")
        if isinstance(names, list) and names:
            return _text(names[0])
    return None


def _id_list(raw):
    if isinstance(raw, list):
        return [stop_id for stop_id in (_text(x) for x in raw) if stop_id]
    return None


def _single_id(raw):
    text = _text(raw)
    return [text] if text else None


DIRECTION_ID_RULES = (_text, _object_id, _number_text)
DIRECTION_NAME_RULES = (_text, _object_name, _object_first_name)
STOP_IDS_RULES = (_id_list, _single_id)


def resolve(raw, rules, default=None):
    for rule in rules:
        value = rule(raw)
        if value:
            return value
    return default


# -------------------------------------------------------------------
# Upstream payload shape
# -------------------------------------------------------------------
def stop_groups_from_payload(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Flatten ``data.entry.stopGroupings[].stopGroups[]``."""
    entry = (payload or {}).get("entry")
    if not isinstance(entry, dict):
        raise UpstreamDataShapeError("Missing entry in API response")
    groupings = entry.get("stopGroupings")
    if not isinstance(groupings, list) or not groupings:
        raise UpstreamDataShapeError("Missing stopGroupings in API response")

    groups: List[Dict[str, Any]] = []
    for grouping in groupings:
        stop_groups = grouping.get("stopGroups") if isinstance(grouping, dict) else None
        if not stop_groups:
            logger.warning("Stop grouping without stopGroups, skipping")
            continue
        groups.extend(g for g in stop_groups if isinstance(g, dict))
    return groups


def stop_references(payload: Dict[str, Any]) -> Dict[str, StopReference]:
    """Stop details keyed by id, from entry.references or data.references."""
    payload = payload or {}
    candidates = [
        ((payload.get("entry") or {}).get("references") or {}).get("stops"),
        (payload.get("references") or {}).get("stops"),
    ]
    for stops in candidates:
        if isinstance(stops, list) and stops:
            return {s["id"]: s for s in stops if isinstance(s, dict) and s.get("id")}
    return {}


def parse_direction_group(raw: Dict[str, Any], position: int) -> Optional[DirectionGroup]:
    name = resolve(raw.get("name"), DIRECTION_NAME_RULES)
    stop_ids = resolve(raw.get("stopIds"), STOP_IDS_RULES)
    if not name or not stop_ids:
        logger.warning(
            "Invalid direction group at position %d (name=%r, %d stop ids), skipping",
            position, name, len(stop_ids or []),
        )
        return None
    # Bus Time sometimes omits the group id; the position stands in for it.
    direction_id = resolve(raw.get("id"), DIRECTION_ID_RULES, default=str(position))
    return DirectionGroup(id=direction_id, name=name, stop_ids=stop_ids)


# -------------------------------------------------------------------
# Stop records
# -------------------------------------------------------------------
_TRAILING_DIGITS = re.compile(r"(\d+)$")


def code_from_id(stop_id: str) -> str:
    match = _TRAILING_DIGITS.search(stop_id or "")
    return match.group(1) if match else ""


def _as_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def build_bus_stop(stop_id: str, record: StopReference, direction: str, sequence: int) -> BusStop:
    return BusStop(
        id=stop_id,
        code=str(record.get("code") or code_from_id(stop_id)),
        name=record.get("name") or UNKNOWN_STOP,
        direction=direction,
        sequence=sequence,
        lat=_as_float(record.get("lat")),
        lon=_as_float(record.get("lon")),
    )


def stop_info_from_record(stop_id: str, record: StopReference) -> StopInfo:
    return StopInfo(
        id=record.get("id") or stop_id,
        code=str(record.get("code") or code_from_id(stop_id)),
        name=record.get("name") or UNKNOWN_STOP,
        lat=_as_float(record.get("lat")),
        lon=_as_float(record.get("lon")),
        direction=record.get("direction") or "",
    )


# -------------------------------------------------------------------
# Fetching
# -------------------------------------------------------------------
async def _fetch_one(stop_id: str, fetch_stop: FetchStop, lookup: StopLookup, timeout: float) -> None:
    try:
        record = await asyncio.wait_for(fetch_stop(stop_id), timeout)
    except asyncio.TimeoutError:
        logger.warning("Timed out fetching stop %s after %.1fs", stop_id, timeout)
        record = None
    except BusTimeError as e:
        logger.warning("Failed to fetch stop %s: %s", stop_id, e.message)
        record = None

    if record:
        lookup.stops[stop_id] = record
    else:
        lookup.unresolved.add(stop_id)


async def fetch_missing_stops(
    stop_ids: List[str],
    fetch_stop: FetchStop,
    lookup: StopLookup,
    batch_size: int = DEFAULT_BATCH_SIZE,
    batch_delay: float = DEFAULT_BATCH_DELAY,
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT,
) -> None:
    """Fetch stops concurrently within a batch, one batch after another."""
    batch_size = max(1, batch_size)
    for start in range(0, len(stop_ids), batch_size):
        if start and batch_delay > 0:
            await asyncio.sleep(batch_delay)
        batch = stop_ids[start:start + batch_size]
        await asyncio.gather(*(_fetch_one(s, fetch_stop, lookup, fetch_timeout) for s in batch))

    if stop_ids:
        fetched = len(stop_ids) - len(lookup.unresolved.intersection(stop_ids))
        logger.info("Fetched %d/%d individual stops", fetched, len(stop_ids))


async def reconcile_stops(
    groups: List[Dict[str, Any]],
    references: Dict[str, StopReference],
    fetch_stop: FetchStop,
    lookup: Optional[StopLookup] = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    batch_delay: float = DEFAULT_BATCH_DELAY,
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT,
) -> ReconciledStops:
    """Directions in first-seen order, stops sorted by (direction, sequence)."""
    if lookup is None:
        lookup = StopLookup()

    directions: List[Direction] = []
    placements: List[Tuple[str, str, int]] = []
    for position, raw in enumerate(groups):
        group = parse_direction_group(raw, position)
        if group is None:
            continue
        directions.append(Direction(id=group.id, name=group.name))
        placements.extend((stop_id, group.name, seq) for seq, stop_id in enumerate(group.stop_ids))

    # ordered and unique; a stop can appear in more than one direction
    missing = list(dict.fromkeys(
        stop_id for stop_id, _, _ in placements if stop_id not in references and stop_id not in lookup
    ))
    if missing:
        logger.info("%d stops missing from references, fetching individually", len(missing))
        await fetch_missing_stops(missing, fetch_stop, lookup, batch_size, batch_delay, fetch_timeout)

    stops: List[BusStop] = []
    for stop_id, direction, sequence in placements:
        record = references.get(stop_id) or lookup.get(stop_id)
        if record is None:
            logger.warning("Stop %s not resolved for direction %s, skipping", stop_id, direction)
            continue
        stops.append(build_bus_stop(stop_id, record, direction, sequence))

    stops.sort(key=lambda s: (s.direction, s.sequence))
    logger.info("Reconciled %d directions, %d stops", len(directions), len(stops))

    if not stops:
        raise UpstreamDataShapeError("No stops could be extracted for this route")
    return ReconciledStops(directions=directions, stops=stops, unresolved=sorted(lookup.unresolved))
