"""Per-request orchestration: fetch from the provider, hand raw data to the core."""
import asyncio
import logging
from datetime import timedelta
from typing import List, Optional

from .arrivals import match_arrivals
from .config import DEFAULT_STOP_NAMES, Settings
from .errors import BusTimeError, NotFound, ValidationError
from .models import BusData, BusLine, NearbyBusLine, RouteStops, StopInfo, StopMatch
from .nearby import find_matching_stop, summarize_nearby_lines
from .providers.base import Provider
from .reconcile import StopLookup, reconcile_stops, stop_groups_from_payload, stop_info_from_record, stop_references

logger = logging.getLogger(__name__)


def _bus_line(route) -> BusLine:
    return BusLine(
        id=route["id"],
        short_name=route.get("shortName") or "",
        long_name=route.get("longName") or "",
        description=route.get("description") or "",
        agency_id=route.get("agencyId") or "",
    )


class BusTimeService:
    def __init__(self, provider: Provider, settings: Optional[Settings] = None):
        self.provider = provider
        self.settings = settings or Settings()

    # ---------------------------------------------------------------
    # Lines
    # ---------------------------------------------------------------
    async def search_lines(self, query: str = "") -> List[BusLine]:
        lines = [_bus_line(r) for r in await self.provider.get_routes()]
        q = query.lower()
        if q:
            lines = [
                line for line in lines
                if q in line.short_name.lower() or q in line.long_name.lower() or q in line.description.lower()
            ]
        lines.sort(key=lambda line: line.short_name)
        return lines

    async def get_line(self, line_id: str) -> BusLine:
        for route in await self.provider.get_routes():
            if route.get("id") == line_id:
                return _bus_line(route)
        raise NotFound("Bus line not found")

    async def nearby_lines(self, lat: float, lon: float, limit: int = 5) -> List[NearbyBusLine]:
        payload = await self.provider.get_stops_for_location(lat, lon, radius=500)
        return summarize_nearby_lines(payload, lat, lon, limit=limit)

    # ---------------------------------------------------------------
    # Stops
    # ---------------------------------------------------------------
    async def get_stops(self, line_id: str) -> RouteStops:
        payload = await self.provider.get_stops_for_route(line_id)
        references = stop_references(payload)
        if not references:
            logger.warning("No stops in references for %s, will fetch individually", line_id)

        result = await reconcile_stops(
            stop_groups_from_payload(payload),
            references,
            self.provider.get_stop,
            lookup=StopLookup(),
            batch_size=self.settings.stop_batch_size,
            batch_delay=self.settings.stop_batch_delay,
            fetch_timeout=self.settings.stop_fetch_timeout,
        )
        if result.unresolved:
            logger.warning("%s: %d stops could not be resolved: %s",
                           line_id, len(result.unresolved), ", ".join(result.unresolved))
        return RouteStops(route_id=line_id, directions=result.directions, stops=result.stops)

    async def get_stop_info(self, stop_id: str) -> StopInfo:
        return stop_info_from_record(stop_id, await self.provider.get_stop(stop_id))

    async def match_stop(
        self,
        line_id: str,
        lat: float,
        lon: float,
        stop_name: Optional[str] = None,
        direction: Optional[str] = None,
    ) -> StopMatch:
        """Stop of ``line_id`` in one direction matching ``stop_name`` or nearest to the user."""
        route = await self.get_stops(line_id)
        if direction:
            chosen = next((d for d in route.directions if direction in (d.name, d.id)), None)
            if chosen is None:
                raise NotFound(f"Direction {direction!r} not found for this line")
        elif route.directions:
            chosen = route.directions[0]
        else:
            raise NotFound("No directions found for this line")

        stops = [s for s in route.stops if s.direction == chosen.name]
        match = find_matching_stop(stops, stop_name, lat, lon, line_id)
        if match is None:
            raise NotFound("No matching stop found for this line")
        logger.info("%s: matched %s (%s)", line_id, match.stop.id, match.match_reason)
        return match

    # ---------------------------------------------------------------
    # Arrivals
    # ---------------------------------------------------------------
    async def _stop_name(self, stop_id: str) -> str:
        try:
            record = await self.provider.get_stop(stop_id)
        except BusTimeError as e:
            logger.warning("Could not look up name of stop %s: %s", stop_id, e.message)
            return DEFAULT_STOP_NAMES.get(stop_id, stop_id)
        return record.get("name") or DEFAULT_STOP_NAMES.get(stop_id, stop_id)

    async def bus_times(self, line_id: str, origin_id: str, destination_id: str) -> BusData:
        if origin_id == destination_id:
            raise ValidationError("origin and destination must be different stops", "destinationId")

        monitoring = asyncio.gather(
            self.provider.get_stop_monitoring(origin_id, line_id),
            self.provider.get_stop_monitoring(destination_id, line_id),
            return_exceptions=True,
        )
        names = asyncio.gather(self._stop_name(origin_id), self._stop_name(destination_id))
        (origin_visits, destination_visits), (origin_name, destination_name) = await asyncio.gather(monitoring, names)

        if isinstance(origin_visits, BaseException):
            raise origin_visits
        if isinstance(destination_visits, BaseException):
            if not isinstance(destination_visits, BusTimeError):
                raise destination_visits
            logger.warning("Destination monitoring for %s failed, estimating arrivals: %s",
                           destination_id, destination_visits.message)
            destination_visits = []

        buses = match_arrivals(
            origin_visits,
            destination_id,
            destination_visits,
            trip_estimate=timedelta(minutes=self.settings.trip_estimate_minutes),
        )
        logger.info("%s %s -> %s: %d buses (%d origin visits, %d destination visits)",
                    line_id, origin_id, destination_id, len(buses), len(origin_visits), len(destination_visits))

        data = BusData(origin_name=origin_name, destination_name=destination_name, buses=buses)
        if not buses:
            data.has_error = True
            data.error_message = f"No buses are currently approaching {origin_name} on this line"
        return data
