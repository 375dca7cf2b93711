# src/bustime/providers/mta.py
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from ..arrivals import monitored_visits
from ..cache import ttl_cache
from ..config import MTA_BASE
from ..errors import NotFound, ServiceUnavailable, UpstreamDataShapeError, UpstreamUnavailable

logger = logging.getLogger(__name__)

AGENCY_ID = "MTA NYCT"
HTTP_HEADERS = {"User-Agent": "bustime/0.1", "Cache-Control": "no-cache"}


class MtaProvider:
    """MTA Bus Time: OneBusAway ``/api/where`` plus SIRI ``/api/siri``."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 10.0,
        max_stop_visits: int = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **_,
    ):
        self.api_key = api_key
        self.base_url = (base_url or MTA_BASE).rstrip("/")
        self.timeout = timeout
        self.max_stop_visits = max_stop_visits
        self._transport = transport

    async def _get_json(self, path: str, params: Dict[str, Any], what: str) -> Dict[str, Any]:
        if not self.api_key:
            logger.error("MTA_API_KEY environment variable is not set")
            raise ServiceUnavailable()

        query = {"key": self.api_key, **params}
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout), headers=HTTP_HEADERS, transport=self._transport
            ) as client:
                r = await client.get(f"{self.base_url}{path}", params=query)
                r.raise_for_status()
                data = r.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning("Bus Time HTTP %s for %s", status, what)
            if status == 404:
                raise NotFound(f"{what} not found") from e
            raise UpstreamUnavailable(f"Bus Time returned HTTP {status} for {what}", upstream_status=status) from e
        except httpx.HTTPError as e:
            # str(e) can carry the request URL, key included
            logger.warning("Bus Time request for %s failed: %s", what, type(e).__name__)
            raise UpstreamUnavailable(f"Bus Time request for {what} failed") from e
        except ValueError as e:
            raise UpstreamDataShapeError(f"Bus Time returned invalid JSON for {what}") from e

        if not isinstance(data, dict):
            raise UpstreamDataShapeError(f"Unexpected Bus Time response for {what}")
        return data

    async def _where(self, path: str, params: Dict[str, Any], what: str) -> Dict[str, Any]:
        payload = await self._get_json(path, params, what)
        code = payload.get("code")
        if code is not None and code != 200:
            logger.warning("Bus Time API error %s for %s: %s", code, what, payload.get("text"))
            if code == 404:
                raise NotFound(f"{what} not found")
            raise UpstreamUnavailable(f"Bus Time API error for {what}", upstream_status=code)
        data = payload.get("data")
        if not isinstance(data, dict):
            raise UpstreamDataShapeError(f"Missing data in API response for {what}")
        return data

    @ttl_cache(1800)
    async def get_routes(self) -> List[Dict[str, Any]]:
        data = await self._where(f"/api/where/routes-for-agency/{quote(AGENCY_ID, safe='')}.json", {}, "bus lines")
        routes = data.get("list") or []
        return [r for r in routes if isinstance(r, dict) and r.get("id")]

    async def get_stops_for_route(self, line_id: str) -> Dict[str, Any]:
        return await self._where(
            f"/api/where/stops-for-route/{quote(line_id, safe='')}.json",
            {"includePolylines": "false", "includeReferences": "true", "version": "2"},
            f"stops for {line_id}",
        )

    async def get_stop(self, stop_id: str) -> Dict[str, Any]:
        data = await self._where(f"/api/where/stop/{quote(stop_id, safe='')}.json", {"version": "2"}, f"stop {stop_id}")
        # version 2 wraps the stop in "entry", version 1 returns it bare
        entry = data.get("entry") if isinstance(data.get("entry"), dict) else data
        if not entry.get("id") and not entry.get("name"):
            raise NotFound(f"stop {stop_id} not found")
        return entry

    async def get_stop_monitoring(self, stop_id: str, line_id: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {
            "version": "2",
            "OperatorRef": "MTA",
            "MonitoringRef": stop_id,
            "MaximumStopVisits": str(self.max_stop_visits),
            "MinimumStopVisitsPerLine": "1",
            "StopMonitoringDetailLevel": "calls",
        }
        if line_id:
            params["LineRef"] = line_id
        siri = await self._get_json("/api/siri/stop-monitoring.json", params, f"arrivals at {stop_id}")

        deliveries = ((siri.get("Siri") or {}).get("ServiceDelivery") or {}).get("StopMonitoringDelivery") or []
        condition = deliveries[0].get("ErrorCondition") if deliveries and isinstance(deliveries[0], dict) else None
        if condition:
            description = condition.get("Description") if isinstance(condition, dict) else condition
            logger.warning("Stop monitoring error for %s: %s", stop_id, description)
            raise UpstreamUnavailable(f"Bus Time could not monitor stop {stop_id}")

        visits = monitored_visits(siri)
        logger.info("Stop %s: %d monitored visits", stop_id, len(visits))
        return visits

    async def get_stops_for_location(self, lat: float, lon: float, radius: int = 500) -> Dict[str, Any]:
        return await self._where(
            "/api/where/stops-for-location.json",
            {"lat": lat, "lon": lon, "radius": radius},
            "nearby stops",
        )
