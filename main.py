from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
import logging

from fieldservice.api import auth, service_orders, clients, equipment, deliveries, reminders, reagent_types, stats, routes, workflow, notifications
from fieldservice.config import settings
from fieldservice.database import engine
from fieldservice.exceptions import (
    FieldServiceError, ValidationError, BackendError, RecordNotFoundError, ConflictError, DataNotReadyError
)
from fieldservice.models import Base
from fieldservice.services.dashboard import get_dashboard
from fieldservice.utils.rate_limiter import limiter, rate_limit_exceeded_handler

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

app = FastAPI(title="Field Service Dashboard API", version="1.0.0")

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


# ============ Error taxonomy -> HTTP ============

def _status_for(exc: FieldServiceError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, RecordNotFoundError):
        return 404
    if isinstance(exc, ConflictError):
        return 409
    if isinstance(exc, DataNotReadyError):
        return 503
    if isinstance(exc, BackendError):
        return 502
    return 500


@app.exception_handler(FieldServiceError)
async def field_service_error_handler(request: Request, exc: FieldServiceError):
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    content = {"detail": exc.message, "error": type(exc).__name__}
    headers = {"Retry-After": "2"} if isinstance(exc, DataNotReadyError) else None
    return JSONResponse(status_code=status_code, content=content, headers=headers)


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(service_orders.router, prefix="/api", tags=["Service Orders"])
app.include_router(clients.router, prefix="/api", tags=["Clients"])
app.include_router(equipment.router, prefix="/api", tags=["Equipment"])
app.include_router(deliveries.router, prefix="/api", tags=["Reagent Deliveries"])
app.include_router(reminders.router, prefix="/api", tags=["Reminders"])
app.include_router(reagent_types.router, prefix="/api", tags=["Reagent Types"])
app.include_router(stats.router, prefix="/api", tags=["Statistics"])
app.include_router(routes.router, prefix="/api", tags=["Route Planning"])
app.include_router(workflow.router, prefix="/api", tags=["Workflow"])
app.include_router(notifications.router, prefix="/api", tags=["Notifications"])


@app.get("/")
async def root():
    return {"message": "Field Service Dashboard API is running"}


@app.get("/api/health")
async def health_check():
    store = get_dashboard().store
    return {
        "status": "healthy",
        "services": {
            "session": store.session is not None,
            "loading": store.loading,
        }
    }
