import logging
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.exc import SQLAlchemyError

from ..deps import get_current_user, get_dispatcher, get_job_pipeline
from ..errors import ValidationError
from ..infra.idempotency import idempotency_precheck, idempotency_store_result, idempotency_clear_key
from ..infra.redis_cache import cache_job_status, get_cached_job_status
from ..schemas import (
    CancelResponse,
    JobCreatedResponse,
    MealPlanRequest,
    ProcessRequest,
    ProcessResponse,
    RecentJobResponse,
)
from ..services.pipeline import JobPipeline
from ..settings import settings

logger = logging.getLogger("mealplanner.api")

router = APIRouter()
limiter = Limiter(key_func=get_remote_address)


def _require_uuid(job_id: str) -> str:
    try:
        return str(uuid.UUID(job_id))
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid job id format")


def _parse_request(body) -> MealPlanRequest:
    try:
        return MealPlanRequest.model_validate(body)
    except PydanticValidationError as e:
        details = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError("Invalid meal plan request", details)


@router.post("/meal-plan", status_code=202, response_model=JobCreatedResponse)
@limiter.limit(settings.rate_limit_create)
async def create_meal_plan(
    request: Request,
    user_id: str = Depends(get_current_user),
    pipeline: JobPipeline = Depends(get_job_pipeline),
    dispatcher=Depends(get_dispatcher),
):
    """Queue a new generation job. The plan arrives via the status endpoint."""
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON")
    meal_request = _parse_request(body)

    pre = await idempotency_precheck(request, user_id=user_id, route_key="meal_plan_create")
    if isinstance(pre, JSONResponse):
        return pre

    try:
        job = await run_in_threadpool(pipeline.create_job, user_id, meal_request)
    except SQLAlchemyError as e:
        if pre:
            await idempotency_clear_key(pre[0])
        logger.error(f"Failed to create job for user {user_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to create meal plan job")
    except Exception:
        if pre:
            await idempotency_clear_key(pre[0])
        raise

    # Automatic trigger; the explicit /process route covers a lost one
    dispatcher.submit(job.id)

    content = JobCreatedResponse(job_id=job.id).model_dump(mode="json", by_alias=True)
    if pre:
        redis_key, req_hash = pre
        await idempotency_store_result(redis_key, req_hash, status=202, body=content)
    return JSONResponse(status_code=202, content=content)


@router.get("/meal-plan/status/{job_id}")
async def get_meal_plan_status(
    job_id: str,
    user_id: str = Depends(get_current_user),
    pipeline: JobPipeline = Depends(get_job_pipeline),
):
    job_id = _require_uuid(job_id)

    cached = await get_cached_job_status(job_id)
    if cached:
        if cached["userId"] != user_id:
            raise HTTPException(status_code=403, detail="Not allowed to view this job")
        return JSONResponse(content=cached["payload"])

    status = await run_in_threadpool(pipeline.get_status, user_id, job_id)
    payload = status.model_dump(mode="json", by_alias=True, exclude_none=True)

    if status.status in ("completed", "failed"):
        await cache_job_status(
            job_id, {"userId": user_id, "payload": payload}, settings.status_cache_ttl_seconds
        )
    return JSONResponse(content=payload)


@router.post("/meal-plan/process", status_code=202, response_model=ProcessResponse)
async def process_meal_plan(
    body: Optional[ProcessRequest] = Body(None),
    user_id: str = Depends(get_current_user),
    pipeline: JobPipeline = Depends(get_job_pipeline),
    dispatcher=Depends(get_dispatcher),
):
    """Claim a pending job now (named, or the oldest one) and hand it to the workers."""
    job_id = body.job_id if body else None
    if job_id:
        job_id = _require_uuid(job_id)

    job = await run_in_threadpool(pipeline.claim_for_processing, user_id, job_id)
    if job is None:
        return Response(status_code=204)

    dispatcher.submit_claimed(job)
    content = ProcessResponse(
        processed=True, job_id=job.id, status="processing", message="Job claimed for processing"
    ).model_dump(mode="json", by_alias=True, exclude_none=True)
    return JSONResponse(status_code=202, content=content)


@router.delete("/meal-plan/{job_id}", response_model=CancelResponse)
async def cancel_meal_plan(
    job_id: str,
    user_id: str = Depends(get_current_user),
    pipeline: JobPipeline = Depends(get_job_pipeline),
):
    job_id = _require_uuid(job_id)
    cancelled = await run_in_threadpool(pipeline.cancel, user_id, job_id)
    if cancelled:
        return CancelResponse(success=True, message="Job cancelled")
    return CancelResponse(success=False, message="Job already finished")


@router.get("/meal-plan/recent", response_model=RecentJobResponse)
async def recent_meal_plan(
    since: Optional[datetime] = Query(None),
    user_id: str = Depends(get_current_user),
    pipeline: JobPipeline = Depends(get_job_pipeline),
):
    """Most recent completed plan, for clients whose polling timed out."""
    return await run_in_threadpool(pipeline.recent, user_id, since)
