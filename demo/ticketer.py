# Grievance Lifecycle Service
# FastAPI + MongoDB

import uuid
import logging
from datetime import datetime, timezone
from typing import List, Optional
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Depends, Header, HTTPException, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from lifecycle import config
from lifecycle.engine import LifecycleEngine
from lifecycle.errors import GrievanceError, NotFoundError, TransientError
from lifecycle.models import (
    ActorRole, ActionResponse, GrievanceCreate, GrievanceRecord, SubmitResponse,
    SweepResponse, TimeLimitRequest,
)
from lifecycle.notary import HttpNotary, LoggingNotary
from lifecycle.service import GrievanceService
from lifecycle.store import GrievanceStore, InMemoryGrievanceStore, MongoGrievanceStore, StoreRunner
from lifecycle.sweeper import ReconciliationSweeper, SweepScheduler

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App & Globals
# ---------------------------------------------------------------------------
app = FastAPI(title="Grievance Lifecycle Service")
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter

store: Optional[GrievanceStore] = None
service: Optional[GrievanceService] = None
sweeper: Optional[ReconciliationSweeper] = None
scheduler: Optional[SweepScheduler] = None

# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        return response

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

# ---------------------------------------------------------------------------
# Error responses: every failure renders as {"error": <message>}
# ---------------------------------------------------------------------------
@app.exception_handler(GrievanceError)
async def grievance_error_handler(request: Request, exc: GrievanceError):
    if isinstance(exc, TransientError):
        logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                        content={"error": f"Rate limit exceeded: {exc.detail}"})

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "Server error"})

# ---------------------------------------------------------------------------
# Startup / Shutdown
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    await startup_store()
    startup_sweeper()
    yield
    if scheduler:
        await scheduler.stop()
    if store:
        store.close()

app.router.lifespan_context = lifespan

async def startup_store():
    global store, service
    if config.STORE_BACKEND == "memory":
        store = InMemoryGrievanceStore()
        logger.info("Using in-memory grievance store")
    else:
        store = MongoGrievanceStore.connect(config.MONGODB_URL, config.MONGODB_DB)
        await StoreRunner(store, config.STORE_TIMEOUT_SECONDS).call(store.create_indexes)
        logger.info("Database initialized: %s/%s", config.MONGODB_URL, config.MONGODB_DB)
    service = GrievanceService(store, LifecycleEngine())

def startup_sweeper():
    global sweeper, scheduler
    if config.NOTARY_URL:
        notary = HttpNotary(config.NOTARY_URL, timeout=config.NOTARY_TIMEOUT_SECONDS,
                            max_retries=config.NOTARY_MAX_RETRIES)
    else:
        notary = LoggingNotary()
    sweeper = ReconciliationSweeper(store, service.engine, notary=notary)
    scheduler = SweepScheduler(sweeper, config.SWEEP_INTERVAL_SECONDS)
    if config.SWEEP_ENABLED:
        scheduler.start()
    else:
        logger.info("Sweep scheduler disabled")

# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
async def get_service():
    return service

async def get_sweeper():
    return sweeper

async def get_scheduler():
    return scheduler

# ---------------------------------------------------------------------------
# Actor capability check. Credentials are verified upstream; the caller's
# role arrives already authenticated and is trusted as given.
# ---------------------------------------------------------------------------
async def get_actor_role(x_actor_role: Optional[str] = Header(None)) -> ActorRole:
    if x_actor_role is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        return ActorRole(x_actor_role.strip().lower())
    except ValueError:
        raise HTTPException(status_code=401, detail="Unknown actor role")

def require_role(*roles):
    async def role_checker(role: ActorRole = Depends(get_actor_role)):
        if role not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return role
    return role_checker

CITIZEN_ROLES = (ActorRole.USER, ActorRole.ADMIN)
OFFICIAL_ROLES = (ActorRole.OFFICIAL, ActorRole.ADMIN)

def validate_grievance_id(value: str) -> str:
    """Ids are UUIDs; anything else cannot name a stored grievance."""
    try:
        uuid.UUID(value)
    except (ValueError, AttributeError):
        raise NotFoundError()
    return value

# ---------------------------------------------------------------------------
# GRIEVANCE ENDPOINTS
# ---------------------------------------------------------------------------
@app.post("/api/grievance/submit", response_model=SubmitResponse, status_code=201)
@limiter.limit(config.SUBMIT_RATE_LIMIT)
async def submit_grievance(request: Request, data: GrievanceCreate,
                           role=Depends(require_role(*CITIZEN_ROLES)),
                           service: GrievanceService = Depends(get_service)):
    record = await service.submit(data)
    return SubmitResponse(status="Grievance submitted", grievance_id=record.id)

@app.get("/api/grievance/user", response_model=List[GrievanceRecord])
async def user_grievances(role=Depends(get_actor_role),
                          service: GrievanceService = Depends(get_service)):
    # Ownership is resolved by the identity layer; this view lists everything.
    return await service.list_view("user")

@app.get("/api/grievance/official", response_model=List[GrievanceRecord])
async def official_grievances(role=Depends(require_role(*OFFICIAL_ROLES)),
                              service: GrievanceService = Depends(get_service)):
    return await service.list_view("official")

@app.get("/api/grievance/community", response_model=List[GrievanceRecord])
async def community_grievances(role=Depends(get_actor_role),
                               service: GrievanceService = Depends(get_service)):
    return await service.list_view("community")

@app.get("/api/grievance/{grievance_id}", response_model=GrievanceRecord)
async def get_grievance(grievance_id: str, role=Depends(get_actor_role),
                        service: GrievanceService = Depends(get_service)):
    return await service.get(validate_grievance_id(grievance_id))

@app.post("/api/grievance/accept/{grievance_id}", response_model=ActionResponse,
          response_model_exclude_none=True)
async def accept_grievance(grievance_id: str, role=Depends(require_role(*OFFICIAL_ROLES)),
                           service: GrievanceService = Depends(get_service)):
    await service.accept(validate_grievance_id(grievance_id))
    return ActionResponse(status="Grievance accepted")

@app.post("/api/grievance/set-time/{grievance_id}", response_model=ActionResponse)
async def set_time_limit(grievance_id: str, body: Optional[TimeLimitRequest] = None,
                         role=Depends(require_role(*OFFICIAL_ROLES)),
                         service: GrievanceService = Depends(get_service)):
    time_in_days = body.time_in_days if body is not None else None
    grievance = await service.set_resolution_deadline(
        validate_grievance_id(grievance_id), time_in_days)
    return ActionResponse(status="Time limit set", grievance=grievance)

@app.post("/api/grievance/resolve/{grievance_id}", response_model=ActionResponse)
async def resolve_grievance(grievance_id: str, role=Depends(require_role(*OFFICIAL_ROLES)),
                            service: GrievanceService = Depends(get_service)):
    grievance = await service.resolve(validate_grievance_id(grievance_id))
    return ActionResponse(status="Pending Verification", grievance=grievance)

@app.post("/api/grievance/dispute/{grievance_id}", response_model=ActionResponse)
async def dispute_grievance(grievance_id: str, role=Depends(require_role(*CITIZEN_ROLES)),
                            service: GrievanceService = Depends(get_service)):
    grievance = await service.dispute(validate_grievance_id(grievance_id))
    return ActionResponse(status="Disputed", grievance=grievance)

# ---------------------------------------------------------------------------
# ADMIN ENDPOINTS
# ---------------------------------------------------------------------------
@app.get("/api/admin/disputed", response_model=List[GrievanceRecord])
async def disputed_grievances(role=Depends(require_role(ActorRole.ADMIN)),
                              service: GrievanceService = Depends(get_service)):
    return await service.list_view("disputed")

@app.get("/api/admin/overdue", response_model=List[GrievanceRecord])
async def overdue_grievances(role=Depends(require_role(ActorRole.ADMIN)),
                             service: GrievanceService = Depends(get_service)):
    # The sweep sets the status; this only lists it.
    return await service.list_view("overdue")

@app.post("/api/admin/sweep", response_model=SweepResponse)
async def run_sweep(role=Depends(require_role(ActorRole.ADMIN)),
                    sweeper: ReconciliationSweeper = Depends(get_sweeper)):
    report = await sweeper.tick()
    return SweepResponse(**report.as_dict())

# ---------------------------------------------------------------------------
# HEALTH
# ---------------------------------------------------------------------------
@app.get("/health")
async def health(service: GrievanceService = Depends(get_service),
                 scheduler: SweepScheduler = Depends(get_scheduler)):
    store_ok = False
    if service is not None:
        try:
            store_ok = await service.runner.call(service.store.ping)
        except TransientError:
            store_ok = False
    return {"status": "healthy" if store_ok else "degraded",
            "system": "Grievance Lifecycle Service",
            "store": "ok" if store_ok else "unavailable",
            "sweeper": "running" if scheduler is not None and scheduler.running else "stopped",
            "timestamp": datetime.now(timezone.utc)}

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
