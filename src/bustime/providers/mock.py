from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta, timezone

from ..errors import NotFound

ROUTES = [
    {"id": "MTA NYCT_B52", "shortName": "B52", "longName": "Downtown Brooklyn - Ridgewood",
     "description": "via Gates Av", "agencyId": "MTA NYCT"},
    {"id": "MTA NYCT_B44+", "shortName": "B44-SBS", "longName": "Williamsburg - Sheepshead Bay",
     "description": "Select Bus Service via Nostrand Av", "agencyId": "MTA NYCT"},
    {"id": "MTA NYCT_B48", "shortName": "B48", "longName": "Greenpoint - Lefferts Gardens",
     "description": "via Classon Av", "agencyId": "MTA NYCT"},
]

STOPS = {
    "MTA_304213": {"id": "MTA_304213", "code": "304213", "name": "GATES AV/BEDFORD AV",
                   "lat": 40.686221, "lon": -73.955163, "direction": "W"},
    "MTA_304214": {"id": "MTA_304214", "code": "304214", "name": "GATES AV/FRANKLIN AV",
                   "lat": 40.685404, "lon": -73.957512, "direction": "W"},
    "MTA_302434": {"id": "MTA_302434", "code": "302434", "name": "JORALEMON ST/COURT ST",
                   "lat": 40.692628, "lon": -73.990761, "direction": "W"},
    "MTA_302435": {"id": "MTA_302435", "code": "302435", "name": "COURT ST/JORALEMON ST",
                   "lat": 40.692911, "lon": -73.990512, "direction": "E"},
    "MTA_304220": {"id": "MTA_304220", "code": "304220", "name": "GATES AV/FRANKLIN AV",
                   "lat": 40.685601, "lon": -73.957302, "direction": "E"},
    "MTA_304221": {"id": "MTA_304221", "code": "304221", "name": "GATES AV/BEDFORD AV",
                   "lat": 40.686402, "lon": -73.954901, "direction": "E"},
}

STOP_GROUPS = {
    "MTA NYCT_B52": [
        {"id": {"id": "0"}, "name": {"name": "DOWNTOWN BROOKLYN FULTON MALL"},
         "stopIds": ["MTA_304213", "MTA_304214", "MTA_302434"]},
        {"id": "1", "name": {"names": ["RIDGEWOOD MYRTLE AV"]},
         "stopIds": ["MTA_302435", "MTA_304220", "MTA_304221"]},
    ],
}

# Stops left out of the references have to be fetched one by one
UNREFERENCED = {"MTA_302434"}


def _iso(dt: datetime) -> str:
    return dt.isoformat(timespec="milliseconds")


class MockProvider:
    def __init__(self, **kwargs):
        # kwargs may contain provider options; unused here
        pass

    async def get_routes(self) -> List[Dict[str, Any]]:
        return [dict(r) for r in ROUTES]

    async def get_stops_for_route(self, line_id: str) -> Dict[str, Any]:
        groups = STOP_GROUPS.get(line_id)
        if groups is None:
            raise NotFound(f"stops for {line_id} not found")
        stop_ids = {sid for g in groups for sid in g["stopIds"]}
        return {
            "entry": {"routeId": line_id, "stopGroupings": [{"type": "direction", "stopGroups": groups}]},
            "references": {"stops": [dict(STOPS[s]) for s in sorted(stop_ids - UNREFERENCED)]},
        }

    async def get_stop(self, stop_id: str) -> Dict[str, Any]:
        if stop_id not in STOPS:
            raise NotFound(f"stop {stop_id} not found")
        return dict(STOPS[stop_id])

    async def get_stop_monitoring(self, stop_id: str, line_id: Optional[str] = None) -> List[Dict[str, Any]]:
        now = datetime.now(timezone.utc)
        # A few deterministic vehicles on the B52 for demo
        if stop_id == "MTA_304213":
            return [
                _visit("MTA NYCT_7581", now + timedelta(minutes=1), stops_away=0,
                       onward={"MTA_302434": now + timedelta(minutes=17)}),
                _visit("MTA NYCT_7575", now + timedelta(minutes=6), presentable="2 stops away"),
                _visit("MTA NYCT_7590", now + timedelta(minutes=12), stops_from_call=5),
                _visit("MTA NYCT_7602", now + timedelta(minutes=20), stops_away=9, progress="layover"),
            ]
        if stop_id == "MTA_302434":
            return [_visit("MTA NYCT_7575", now + timedelta(minutes=19), stops_away=14)]
        return []

    async def get_stops_for_location(self, lat: float, lon: float, radius: int = 500) -> Dict[str, Any]:
        b52 = {**ROUTES[0], "agency": {"id": "MTA NYCT"}}
        b44 = {**ROUTES[1], "agency": {"id": "MTA NYCT"}}
        return {
            "stops": [
                {**STOPS["MTA_304213"], "routes": [b52]},
                {**STOPS["MTA_304221"], "routes": [b52]},
                {"id": "MTA_303241", "name": "NOSTRAND AV/GATES AV", "lat": 40.686012,
                 "lon": -73.950903, "routes": [b44]},
            ]
        }


def _visit(vehicle, arrival, stops_away=None, presentable=None, stops_from_call=None, onward=None, progress=None):
    call: Dict[str, Any] = {"ExpectedArrivalTime": _iso(arrival), "AimedArrivalTime": _iso(arrival)}
    if stops_away is not None:
        call["NumberOfStopsAway"] = stops_away
    distances: Dict[str, Any] = {}
    if presentable is not None:
        distances["PresentableDistance"] = presentable
    if stops_from_call is not None:
        distances["StopsFromCall"] = stops_from_call
    if distances:
        call["Extensions"] = {"Distances": distances}

    journey: Dict[str, Any] = {
        "LineRef": "MTA NYCT_B52",
        "VehicleRef": vehicle,
        "DestinationName": ["DOWNTOWN BROOKLYN FULTON MALL"],
        "MonitoredCall": call,
    }
    if onward:
        journey["OnwardCalls"] = {
            "OnwardCall": [{"StopPointRef": sid, "ExpectedArrivalTime": _iso(t)} for sid, t in onward.items()]
        }
    if progress:
        journey["ProgressStatus"] = [progress]
    return {"MonitoredVehicleJourney": journey}
