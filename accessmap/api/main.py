"""
AccessMap - REST API

FastAPI application for crowdsourced accessibility reports: submitting,
confirming and removing features, moderating photos, and the contributor
leaderboard.

Run with: uvicorn accessmap.api.main:app --reload
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from accessmap import __version__
from accessmap.core.config import settings
from accessmap.core.exceptions import AccessMapError, StorageUnavailable
from accessmap.core.geo_utils import Point, haversine_meters
from accessmap.core.logging import get_logger, setup_logging
from accessmap.crowdsource.geo_index import GeoIndex
from accessmap.crowdsource.lifecycle import LifecycleResult, ReportLifecycleEngine
from accessmap.crowdsource.locks import KeyedLock
from accessmap.crowdsource.photo_moderation import PhotoModerationLedger
from accessmap.crowdsource.points import PointsLedger
from accessmap.crowdsource.reaper import ExpiryReaper, ReaperScheduler
from accessmap.database.connection import DatabaseConnection, init_db
from accessmap.database.models import Report, User, utcnow

logger = get_logger(__name__)


# ============================================================================
# Services
# ============================================================================

@dataclass
class Services:
    """Long-lived components shared by every request."""
    db: DatabaseConnection
    engine: ReportLifecycleEngine
    points: PointsLedger
    reaper: ExpiryReaper


def build_services(
    db: DatabaseConnection,
    clock: Callable[[], datetime] = utcnow
) -> Services:
    """
    Wire the lifecycle engine, points ledger and reaper over one store.

    Args:
        db: Report store
        clock: Source of "now" shared by the engine and the reaper

    Returns:
        Services instance
    """
    locks = KeyedLock()
    engine = ReportLifecycleEngine(
        db,
        geo_index=GeoIndex(
            merge_radius_m=settings.duplicate_merge_radius_m,
            default_radius_m=settings.nearby_default_radius_m,
        ),
        moderation=PhotoModerationLedger(),
        locks=locks,
        clock=clock,
        retry_attempts=settings.mutation_retry_attempts,
    )
    return Services(
        db=db,
        engine=engine,
        points=PointsLedger(db, locks=locks),
        reaper=ExpiryReaper(db, retention_days=settings.removed_retention_days, clock=clock),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()

    db = init_db()
    app.state.services = build_services(db)

    scheduler = None
    if settings.reaper_enabled:
        scheduler = ReaperScheduler(
            app.state.services.reaper,
            interval_minutes=settings.reaper_interval_minutes,
        )
        scheduler.start()

    logger.info(f"AccessMap API {__version__} started ({settings.app_env})")
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()
        db.close()


# FastAPI app
app = FastAPI(
    title="AccessMap",
    description="Crowdsourced map of accessibility features: ramps, elevators, accessible restrooms and more",
    version=__version__,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Pydantic Models
# ============================================================================

class Location(BaseModel):
    """WGS84 position."""
    longitude: float
    latitude: float


class ReportCreateRequest(BaseModel):
    """Request to report an accessibility feature."""
    type: str = Field(description="Feature type, e.g. ramp, elevator, accessible_restroom")
    longitude: float
    latitude: float
    photo_url: Optional[str] = Field(default=None, description="Reference to an uploaded photo")


class ConfirmRequest(BaseModel):
    """Request to confirm a report."""
    photo_url: Optional[str] = None


class AddPhotoRequest(BaseModel):
    """Request to attach a photo to a report."""
    photo_url: str


class PhotoReportRequest(BaseModel):
    """Request to flag a photo."""
    photo_index: int = Field(description="0-based index in the report's photo list")
    reason: Optional[str] = Field(default=None, max_length=500)


class ReportActionResponse(BaseModel):
    """Report state after a lifecycle operation."""
    id: str
    type: str
    location: Location
    status: str
    confirmation_count: int
    is_permanent: bool
    expires_at: Optional[str] = None
    created: bool
    points_earned: int


class RemovalResponse(BaseModel):
    """Report state after a removal report."""
    id: str
    status: str
    removal_report_count: int
    expires_at: Optional[str] = None


class ReportSummaryResponse(BaseModel):
    """Report as shown on the map."""
    id: str
    type: str
    location: Location
    status: str
    confirmation_count: int
    is_permanent: bool
    expires_at: Optional[str] = None
    photo: Optional[str] = None
    distance_m: Optional[float] = None
    created_at: str
    updated_at: str


class ReportListResponse(BaseModel):
    """Reports around a point."""
    count: int
    radius_m: float
    reports: List[ReportSummaryResponse]


class PhotoResponse(BaseModel):
    """Visible photo of a report."""
    index: int
    url: str
    created_at: Optional[str] = None


class ReportDetailResponse(ReportSummaryResponse):
    """Full report view."""
    creator_id: str
    removal_report_count: int
    photos: List[PhotoResponse]


class PhotoReportResponse(BaseModel):
    """Photo moderation state after a flag."""
    report_id: str
    photo_index: int
    report_count: int
    is_hidden: bool


class UserResponse(BaseModel):
    """Points profile of a contributor."""
    id: str
    points: int
    level: str
    points_breakdown: Dict[str, int]
    stats: Dict[str, int]


class LeaderboardResponse(BaseModel):
    """Top contributors."""
    count: int
    users: List[UserResponse]


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    timestamp: str
    database: bool


# ============================================================================
# Helper Functions
# ============================================================================

def get_services(request: Request) -> Services:
    """Services built by the lifespan."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise StorageUnavailable("Service is starting up")
    return services


def get_actor_id(
    request: Request,
    x_user_id: Optional[str] = Header(default=None),
    x_device_id: Optional[str] = Header(default=None),
) -> str:
    """Identify the caller: user id, then device id, then client address."""
    for candidate in (x_user_id, x_device_id):
        if candidate and candidate.strip():
            return candidate.strip()
    if request.client and request.client.host:
        return request.client.host
    return "anonymous"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _summary(
    report: Report,
    moderation: PhotoModerationLedger,
    distance_m: Optional[float] = None
) -> Dict[str, Any]:
    primary = moderation.primary_photo(report)
    return {
        "id": report.id,
        "type": report.type,
        "location": Location(longitude=report.longitude, latitude=report.latitude),
        "status": report.status.value,
        "confirmation_count": report.confirmation_count,
        "is_permanent": report.is_permanent,
        "expires_at": _iso(report.expires_at),
        "photo": primary.public_url(settings.public_base_url) if primary else None,
        "distance_m": round(distance_m, 1) if distance_m is not None else None,
        "created_at": report.created_at.isoformat(),
        "updated_at": report.updated_at.isoformat(),
    }


def _action_response(services: Services, result: LifecycleResult, actor_id: str) -> ReportActionResponse:
    """
    Apply the operation's point grants and describe the resulting report.

    The report change is already committed, so a ledger failure is logged
    and reported as zero points earned instead of failing the request.
    """
    points_earned = result.points_for(actor_id)
    try:
        services.points.apply(result.grants)
    except StorageUnavailable as e:
        logger.error(f"Points not credited for report {result.report.id}: {e.message}")
        points_earned = 0

    report = result.report
    return ReportActionResponse(
        id=report.id,
        type=report.type,
        location=Location(longitude=report.longitude, latitude=report.latitude),
        status=report.status.value,
        confirmation_count=report.confirmation_count,
        is_permanent=report.is_permanent,
        expires_at=_iso(report.expires_at),
        created=result.created,
        points_earned=points_earned,
    )


def _user_response(user: User) -> UserResponse:
    data = user.to_dict()
    return UserResponse(
        id=data["id"],
        points=data["points"],
        level=data["level"],
        points_breakdown=data["points_breakdown"],
        stats=data["stats"],
    )


# ============================================================================
# Error Handlers
# ============================================================================

@app.exception_handler(AccessMapError)
async def access_map_error_handler(request: Request, exc: AccessMapError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


# ============================================================================
# System Routes
# ============================================================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
def health_check(services: Services = Depends(get_services)):
    """Check API health and database connectivity."""
    database_ok = services.db.check_connection()

    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        version=__version__,
        timestamp=utcnow().isoformat(),
        database=database_ok,
    )


# ============================================================================
# Report Routes
# ============================================================================

@app.get("/api/v1/reports", response_model=ReportListResponse, tags=["Reports"])
def list_nearby_reports(
    longitude: float = Query(..., description="Longitude of the map center"),
    latitude: float = Query(..., description="Latitude of the map center"),
    radius: Optional[float] = Query(None, description="Search radius in meters"),
    services: Services = Depends(get_services),
):
    """
    Get reports around a point, nearest first.

    Removed reports are never listed.
    """
    engine = services.engine
    reports = engine.find_nearby(longitude, latitude, radius)

    center = Point(latitude=latitude, longitude=longitude)
    summaries = [
        ReportSummaryResponse(**_summary(
            r,
            engine.moderation,
            haversine_meters(center, Point(r.latitude, r.longitude)),
        ))
        for r in reports
    ]

    return ReportListResponse(
        count=len(summaries),
        radius_m=radius if radius is not None else engine.geo_index.default_radius_m,
        reports=summaries,
    )


@app.get("/api/v1/reports/{report_id}", response_model=ReportDetailResponse, tags=["Reports"])
def get_report(report_id: str, services: Services = Depends(get_services)):
    """Get a report with its visible photos."""
    engine = services.engine
    report = engine.get(report_id)

    photos = [
        PhotoResponse(index=i, url=p.public_url(settings.public_base_url), created_at=_iso(p.created_at))
        for i, p in engine.moderation.visible_photos(report)
    ]

    return ReportDetailResponse(
        **_summary(report, engine.moderation),
        creator_id=report.creator_id,
        removal_report_count=report.removal_report_count,
        photos=photos,
    )


@app.post("/api/v1/reports", response_model=ReportActionResponse, status_code=201, tags=["Reports"])
def submit_report(
    request: ReportCreateRequest,
    response: Response,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
):
    """
    Report an accessibility feature.

    A report of the same type within 20 meters of an existing one confirms
    that report instead of creating a new one (200 instead of 201).
    """
    result = services.engine.submit(
        feature_type=request.type,
        longitude=request.longitude,
        latitude=request.latitude,
        actor_id=actor_id,
        photo_url=request.photo_url,
    )
    if not result.created:
        response.status_code = 200

    return _action_response(services, result, actor_id)


@app.post("/api/v1/reports/{report_id}/confirm", response_model=ReportActionResponse, tags=["Reports"])
def confirm_report(
    report_id: str,
    request: Optional[ConfirmRequest] = None,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
):
    """Confirm that a feature is still there, optionally with a photo."""
    photo_url = request.photo_url if request else None
    result = services.engine.confirm(report_id, actor_id, photo_url=photo_url)
    return _action_response(services, result, actor_id)


@app.post("/api/v1/reports/{report_id}/photos", response_model=ReportActionResponse, tags=["Reports"])
def add_report_photo(
    report_id: str,
    request: AddPhotoRequest,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
):
    """Attach a photo to a report."""
    result = services.engine.add_photo(report_id, actor_id, request.photo_url)
    return _action_response(services, result, actor_id)


@app.post("/api/v1/reports/{report_id}/remove", response_model=RemovalResponse, tags=["Reports"])
def report_removal(
    report_id: str,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
):
    """Report that a feature no longer exists."""
    report = services.engine.report_removal(report_id, actor_id).report

    return RemovalResponse(
        id=report.id,
        status=report.status.value,
        removal_report_count=report.removal_report_count,
        expires_at=_iso(report.expires_at),
    )


@app.post("/api/v1/reports/{report_id}/report-photo", response_model=PhotoReportResponse, tags=["Reports"])
def report_photo(
    report_id: str,
    request: PhotoReportRequest,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services),
):
    """Flag a photo as inappropriate or incorrect."""
    result = services.engine.report_photo(report_id, request.photo_index, actor_id, request.reason)
    return PhotoReportResponse(**result.to_dict())


# ============================================================================
# User Routes
# ============================================================================

@app.get("/api/v1/users/leaderboard", response_model=LeaderboardResponse, tags=["Users"])
def get_leaderboard(
    limit: int = Query(10, ge=1, le=100, description="Number of users"),
    services: Services = Depends(get_services),
):
    """Top contributors by points."""
    users = [_user_response(u) for u in services.points.leaderboard(limit)]
    return LeaderboardResponse(count=len(users), users=users)


@app.get("/api/v1/users/{user_id}", response_model=UserResponse, tags=["Users"])
def get_user(user_id: str, services: Services = Depends(get_services)):
    """Points, level and stats of a contributor."""
    return _user_response(services.points.get(user_id))


def run() -> None:
    """Serve the API with uvicorn on the configured host and port."""
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    run()
