from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Optional
from datetime import datetime


class CamelModel(BaseModel):
    # Field names stay snake_case in Python; JSON uses the camelCase the UI expects.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BusLine(CamelModel):
    id: str = Field(..., description="Agency-qualified route id, e.g. 'MTA NYCT_B52'")
    short_name: str = ""
    long_name: str = ""
    description: str = ""
    agency_id: str = ""


class ClosestStop(CamelModel):
    name: str
    distance: float = Field(..., ge=0, description="Miles from the requested location")


class NearbyBusLine(BusLine):
    distance: float = Field(..., ge=0)
    closest_stop: ClosestStop


class Direction(CamelModel):
    id: str
    name: str = Field(..., description="Display name; the key stops are matched on")


class BusStop(CamelModel):
    id: str
    code: str = ""
    name: str = "Unknown Stop"
    direction: str = Field("", description="Direction name, not id")
    sequence: int = Field(0, ge=0, description="Position along the route within its direction")
    lat: float = 0.0
    lon: float = 0.0


class StopInfo(CamelModel):
    id: str
    code: str = ""
    name: str = "Unknown Stop"
    lat: float = 0.0
    lon: float = 0.0
    direction: str = ""


class RouteStops(CamelModel):
    route_id: str
    directions: List[Direction]
    stops: List[BusStop]


class VehicleArrival(CamelModel):
    vehicle_id: str = Field(..., description="Provider vehicle reference")
    origin_arrival: Optional[datetime] = Field(None, description="Expected (or aimed) arrival at the origin stop")
    stops_away: int = Field(0, ge=0)
    destination_arrival: Optional[datetime] = None
    destination: str = ""
    is_estimated: bool = Field(False, description="destination_arrival was inferred, not observed")
    proximity: str = "at stop"


class BusData(CamelModel):
    origin_name: str
    destination_name: str
    buses: List[VehicleArrival] = Field(default_factory=list)
    has_error: bool = False
    error_message: Optional[str] = None


class StopMatch(CamelModel):
    stop: BusStop
    match_reason: str = Field(..., description="'exact street match' or 'closest by distance'")
    distance: Optional[float] = None
