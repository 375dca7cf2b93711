import importlib
import logging
from typing import Any, Optional

from fastapi import FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import DEFAULT_DESTINATION_ID, DEFAULT_LINE_ID, DEFAULT_ORIGIN_ID, Settings
from .errors import BusTimeError
from .ratelimit import RateLimiter, client_id
from .service import BusTimeService

# Bus Time ids look like "MTA NYCT_B52" or "MTA_304213"
ID_PATTERN = r"^[A-Za-z0-9_\-+\s]+$"
SEARCH_PATTERN = r"^[A-Za-z0-9\s\-+]*$"
STOP_NAME_PATTERN = r"^[A-Za-z0-9\s\-+/&'.,()]*$"

# =========================
# App & CORS
# =========================
settings = Settings.from_env()

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger("bustime")

app = FastAPI(title="bustime", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_origin],
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["*"],
)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=(self), payment=(), usb=()",
}


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


# =========================
# Provider loader
# =========================
def load_provider(name: Optional[str] = None, opts: Optional[dict] = None):
    provider_name = name or settings.provider
    # credentials come from Settings; PROVIDER_OPTS or explicit opts override them
    merged = {"api_key": settings.mta_api_key, "base_url": settings.mta_base_url}
    merged.update(settings.provider_opts if opts is None else opts)
    try:
        module = importlib.import_module(f"bustime.providers.{provider_name}")
    except ModuleNotFoundError as e:
        raise RuntimeError(f"Provider module not found: {provider_name}") from e
    class_name = f"{provider_name.capitalize()}Provider"
    if not hasattr(module, class_name):
        class_name = "Provider"
    ProviderClass = getattr(module, class_name, None)
    if ProviderClass is None:
        raise RuntimeError(f"Provider class not found in module '{provider_name}'")
    logger.info("Using provider %s", ProviderClass.__name__)
    return ProviderClass(**merged)


service = BusTimeService(load_provider(), settings)

limiter = RateLimiter(limit=settings.rate_limit_per_minute)
nearby_limiter = RateLimiter(limit=settings.nearby_rate_limit_per_minute)


# =========================
# Envelopes & errors
# =========================
def ok(data: Any) -> JSONResponse:
    return JSONResponse({"success": True, "data": jsonable_encoder(data, by_alias=True)})


def fail(status_code: int, message: str, category: str) -> JSONResponse:
    # 500s are rendered outside the http middleware, so the headers go on here too
    return JSONResponse(
        {"success": False, "error": message, "category": category},
        status_code=status_code,
        headers=SECURITY_HEADERS,
    )


@app.exception_handler(BusTimeError)
async def bustime_error(request: Request, exc: BusTimeError):
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.category)
    return fail(exc.status_code, exc.message, exc.category)


@app.exception_handler(RequestValidationError)
async def request_validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = first.get("loc") or ("request",)
    return fail(400, f"{loc[-1]}: {first.get('msg', 'invalid value')}", "validation")


@app.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error in %s %s", request.method, request.url.path)
    return fail(500, "Internal server error", "internal")


def _client(request: Request) -> str:
    return client_id(request.headers, request.client.host if request.client else None)


def _line_id(default=...):
    return Query(default, min_length=1, max_length=100, pattern=ID_PATTERN, description="Bus Time line id")


def _stop_id(default=...):
    return Query(default, min_length=1, max_length=100, pattern=ID_PATTERN, description="Bus Time stop id")


# =========================
# Basic endpoints
# =========================
@app.get("/health")
async def health():
    return {"status": "ok"}


# =========================
# Bus lines
# =========================
@app.get("/api/bus-lines")
async def bus_lines(
    request: Request,
    q: Optional[str] = Query(None, max_length=50, pattern=SEARCH_PATTERN, description="Search text"),
):
    limiter.check(_client(request))
    return ok({"busLines": await service.search_lines((q or "").strip())})


@app.get("/api/bus-lines/info")
async def bus_line_info(request: Request, lineId: str = _line_id()):
    limiter.check(_client(request))
    return ok({"busLine": await service.get_line(lineId.strip())})


@app.get("/api/bus-lines/nearby")
async def bus_lines_nearby(
    request: Request,
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
):
    nearby_limiter.check(_client(request))
    return ok({"busLines": await service.nearby_lines(lat, lon)})


# =========================
# Stops
# =========================
@app.get("/api/bus-stops")
async def bus_stops(request: Request, lineId: str = _line_id()):
    limiter.check(_client(request))
    return ok(await service.get_stops(lineId.strip()))


@app.get("/api/bus-stops/info")
async def bus_stop_info(request: Request, stopId: str = _stop_id()):
    limiter.check(_client(request))
    return ok(await service.get_stop_info(stopId.strip()))


@app.get("/api/bus-stops/match")
async def bus_stop_match(
    request: Request,
    lineId: str = _line_id(),
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    stopName: Optional[str] = Query(
        None, max_length=100, pattern=STOP_NAME_PATTERN,
        description="Stop name to match, e.g. from /api/bus-lines/nearby",
    ),
    direction: Optional[str] = Query(None, max_length=100, description="Direction name or id; first direction when omitted"),
):
    nearby_limiter.check(_client(request))
    name = (stopName or "").strip() or None
    match = await service.match_stop(lineId.strip(), lat, lon, name, direction or None)
    return ok(match)


# =========================
# Arrivals
# =========================
@app.get("/api/bus-times")
async def bus_times(
    request: Request,
    busLine: str = _line_id(DEFAULT_LINE_ID),
    originId: str = _stop_id(DEFAULT_ORIGIN_ID),
    destinationId: str = _stop_id(DEFAULT_DESTINATION_ID),
):
    limiter.check(_client(request))
    return ok(await service.bus_times(busLine.strip(), originId.strip(), destinationId.strip()))
