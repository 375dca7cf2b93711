from typing import Any, Dict, List, Optional, Protocol


class Provider(Protocol):
    """Read-only access to Bus Time shaped data.

    Methods return the upstream ``data`` objects (OneBusAway) or visit lists
    (SIRI) untouched; reshaping is done by the callers. Unknown ids raise
    ``NotFound``, transport failures ``UpstreamUnavailable``.
    """

    async def get_routes(self) -> List[Dict[str, Any]]:
        ...

    async def get_stops_for_route(self, line_id: str) -> Dict[str, Any]:
        ...

    async def get_stop(self, stop_id: str) -> Dict[str, Any]:
        ...

    async def get_stop_monitoring(self, stop_id: str, line_id: Optional[str] = None) -> List[Dict[str, Any]]:
        ...

    async def get_stops_for_location(self, lat: float, lon: float, radius: int = 500) -> Dict[str, Any]:
        ...
