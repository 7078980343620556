# Meal Plan API Main Entry Point
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from .errors import (
    ClaimConflict,
    JobNotFound,
    JobOwnershipError,
    QuotaExceeded,
    ValidationError,
)
from .settings import settings
from .services.pipeline import get_pipeline
from .worker import JobDispatcher
from .routers.ready import router as ready_router
from .routers.meal_plan import router as meal_plan_router
from .routers.usage import router as usage_router

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger("mealplanner")

# Rate limiter (per-IP)
limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit_default])


@asynccontextmanager
async def lifespan(app: FastAPI):
    dispatcher = JobDispatcher(get_pipeline(), settings.worker_concurrency)
    dispatcher.start()
    app.state.dispatcher = dispatcher
    try:
        yield
    finally:
        await dispatcher.stop()
        app.state.dispatcher = None


app = FastAPI(title="Meal Plan API", version="0.1.0", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"error": str(exc), "details": exc.details})


@app.exception_handler(QuotaExceeded)
async def quota_exceeded_handler(request: Request, exc: QuotaExceeded):
    check = exc.check
    return JSONResponse(
        status_code=429,
        content={
            "error": str(exc),
            "code": exc.code,
            "currentUsage": check.current_usage,
            "limit": check.limit,
            "remaining": check.remaining,
            "planTier": check.plan_tier,
            "periodResetDate": check.period_reset_date.isoformat() if check.period_reset_date else None,
        },
    )


@app.exception_handler(JobNotFound)
async def job_not_found_handler(request: Request, exc: JobNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(JobOwnershipError)
async def job_ownership_handler(request: Request, exc: JobOwnershipError):
    return JSONResponse(status_code=403, content={"detail": "Not allowed to access this job"})


@app.exception_handler(ClaimConflict)
async def claim_conflict_handler(request: Request, exc: ClaimConflict):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


app.include_router(ready_router, prefix="/api", tags=["ready"])
app.include_router(meal_plan_router, prefix="/api", tags=["meal-plan"])
app.include_router(usage_router, prefix="/api", tags=["usage"])


def serve():
    """Run the API under uvicorn (the `mealplanner-api` script)."""
    import uvicorn

    uvicorn.run("mealplanner.main:app", host=settings.api_host, port=settings.api_port)
