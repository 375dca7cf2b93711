"""Bus lines whose stop lists need narrowing before stops can be matched.

New exceptions are added to ``ROUTE_RULES``; the matching code only ever asks
``get_filter_for_route`` for a predicate.
"""
from dataclasses import dataclass
from typing import Callable, List, Tuple

from .models import BusStop

StopFilter = Callable[[BusStop], bool]


def _direction_contains(*needles: str) -> StopFilter:
    def stop_filter(stop: BusStop) -> bool:
        return any(needle in stop.direction for needle in needles)

    return stop_filter


def allow_all(stop: BusStop) -> bool:
    return True


@dataclass(frozen=True)
class RouteRule:
    id_patterns: Tuple[str, ...]
    stop_filter: StopFilter
    description: str

    def applies_to(self, line_id: str) -> bool:
        return any(pattern in line_id for pattern in self.id_patterns)


ROUTE_RULES: List[RouteRule] = [
    RouteRule(
        id_patterns=("B44+",),
        stop_filter=_direction_contains("SBS"),
        description="B44 Select Bus Service - only match SBS stops",
    ),
    RouteRule(
        id_patterns=("B48",),
        stop_filter=_direction_contains("LEFFERTS GARDENS", "GREENPOINT"),
        description="B48 - match Lefferts Gardens or Greenpoint direction stops",
    ),
]


def get_filter_for_route(line_id: str) -> StopFilter:
    """Stop predicate for ``line_id``; lines without a rule accept every stop."""
    for rule in ROUTE_RULES:
        if rule.applies_to(line_id or ""):
            return rule.stop_filter
    return allow_all


def filter_stops(line_id: str, stops: List[BusStop]) -> List[BusStop]:
    stop_filter = get_filter_for_route(line_id)
    return [stop for stop in stops if stop_filter(stop)]
