"""Meal plan generation job pipeline.

Lifecycle:
1. create_job: quota gate -> pending row
2. claim: pending -> processing (atomic, single winner)
3. process: prompt -> generate -> parse -> shopping list -> completed
4. any failure in (3) -> failed with a readable message

Store and quota calls are synchronous (SQLAlchemy); the async entry points
push them to the threadpool so the event loop only waits on generation.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from ..errors import (
    ClaimConflict,
    GenerationServiceError,
    JobNotFound,
    JobOwnershipError,
    MealPlanError,
    QuotaExceeded,
)
from ..parsing import parse_meal_plan_response
from ..schemas import (
    JobRecord,
    JobStatusResponse,
    MealPlanRequest,
    MealPlanResult,
    RecentJobResponse,
)
from ..settings import settings
from .generator import MealPlanGenerator
from .job_store import JobStore, get_job_store
from .prompt_builder import build_meal_plan_prompt
from .quota import check_generation_allowed, increment_generation_count, reset_generation_period
from .shopping_list import build_shopping_list

logger = logging.getLogger("mealplanner.jobs")

CANCELLED_MESSAGE = "Cancelled by user"
FAIL_WRITE_ATTEMPTS = 3


def fail_write_backoff(attempt: int) -> float:
    """Exponential backoff between fail writes: 0.5s, 1s, 2s..."""
    return 0.5 * (2 ** attempt)


class JobPipeline:
    def __init__(
        self,
        store: JobStore,
        generator: MealPlanGenerator,
        session_factory: Callable[[], Session],
        generation_timeout: Optional[float] = None,
    ):
        self.store = store
        self.generator = generator
        self._session_factory = session_factory
        self.generation_timeout = generation_timeout or settings.generation_timeout_seconds

    # --- creation ---

    def create_job(self, user_id: str, request: MealPlanRequest) -> JobRecord:
        """Gate on quota and persist a pending job. Raises QuotaExceeded."""
        with self._session_factory() as db:
            check = check_generation_allowed(db, user_id)
            if check.reason == "period_reset_needed":
                reset_generation_period(db, user_id)

        if not check.allowed:
            logger.info(f"Generation rejected for user {user_id}: {check.reason}")
            raise QuotaExceeded(check)

        job = self.store.create(user_id, request.model_dump(mode="json", by_alias=True))
        logger.info(f"Created meal plan job {job.id} for user {user_id}")
        return job

    # --- lookup helpers ---

    def _owned_job(self, user_id: str, job_id: str) -> JobRecord:
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFound(f"Job {job_id} not found")
        if job.user_id != user_id:
            raise JobOwnershipError(f"Job {job_id} belongs to another user")
        return job

    def get_status(self, user_id: str, job_id: str) -> JobStatusResponse:
        job = self._owned_job(user_id, job_id)
        response = JobStatusResponse(job_id=job.id, status=job.status, created_at=job.created_at)
        if job.status == "completed" and job.result is not None:
            response.result = MealPlanResult.model_validate(job.result)
        elif job.status == "failed":
            response.error = job.error
        elif job.status == "processing":
            response.started_at = job.processing_started_at
        return response

    def recent(self, user_id: str, since: Optional[datetime] = None) -> RecentJobResponse:
        """Latest completed job, for clients that gave up polling."""
        if since is not None and since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        job = self.store.latest_completed(user_id, since)
        if job is None or job.result is None:
            return RecentJobResponse()
        return RecentJobResponse(
            job_id=job.id,
            result=MealPlanResult.model_validate(job.result),
            completed_at=job.completed_at,
        )

    def cancel(self, user_id: str, job_id: str) -> bool:
        """Advisory cancel: pending/processing -> failed. False if already terminal.

        An in-flight generation keeps running; its completion then loses the
        conditional write and is discarded.
        """
        job = self._owned_job(user_id, job_id)
        if job.is_terminal:
            return False
        cancelled = self.store.fail(job_id, CANCELLED_MESSAGE)
        if cancelled:
            logger.info(f"Job {job_id} cancelled by user {user_id}")
        return cancelled

    # --- claiming ---

    def claim_for_processing(self, user_id: str, job_id: Optional[str] = None) -> Optional[JobRecord]:
        """Claim a specific job (must be the caller's and pending) or the oldest pending one.

        Returns None only when no job id was given and nothing is pending.
        Raises JobNotFound, JobOwnershipError, or ClaimConflict.
        """
        if job_id:
            job = self._owned_job(user_id, job_id)
            if job.status != "pending":
                raise ClaimConflict(f"Job {job_id} is {job.status}, not pending")
            claimed = self.store.claim(job_id)
            if claimed is None:
                raise ClaimConflict(f"Job {job_id} was claimed by another worker")
            return claimed

        claimed, found = self.store.claim_oldest()
        if not found:
            return None
        if claimed is None:
            raise ClaimConflict("Oldest pending job was claimed by another worker")
        return claimed

    # --- processing ---

    async def run(self, job_id: str) -> None:
        """Claim then process. Losing the claim is a silent no-op."""
        job = await run_in_threadpool(self.store.claim, job_id)
        if job is None:
            logger.info(f"Job {job_id} not claimable (already claimed or finished), skipping")
            return
        await self.process(job)

    async def process(self, job: JobRecord) -> None:
        """Produce a plan for a claimed job and record the terminal status."""
        if job.status != "processing":
            logger.warning(f"Refusing to process job {job.id} in status {job.status}")
            return

        logger.info(f"Processing job {job.id}")
        try:
            result = await self._generate_result(job)
            completed = await run_in_threadpool(
                self.store.complete, job.id, result.model_dump(mode="json", by_alias=True)
            )
        except asyncio.CancelledError:
            await self._record_failure(job.id, "Generation was interrupted", attempts=1)
            raise
        except Exception as e:
            message = str(e) if isinstance(e, MealPlanError) else f"Meal plan generation failed: {e}"
            logger.error(f"Job {job.id} failed: {e.__class__.__name__}: {e}")
            await self._record_failure(job.id, message)
            return

        if not completed:
            # Cancelled while generating; no quota consumed
            logger.info(f"Job {job.id} no longer processing, result discarded")
            return

        logger.info(f"Job {job.id} completed")
        await run_in_threadpool(self._count_generation, job.user_id, job.id)

    async def _record_failure(self, job_id: str, message: str, attempts: int = FAIL_WRITE_ATTEMPTS) -> None:
        """Write the failed status, retrying transient store errors."""
        for attempt in range(attempts):
            try:
                await run_in_threadpool(self.store.fail, job_id, message)
                return
            except Exception as e:
                logger.warning(f"Fail write for job {job_id} errored (attempt {attempt + 1}/{attempts}): {e}")
                if attempt + 1 < attempts:
                    await asyncio.sleep(fail_write_backoff(attempt))
        logger.error(f"Job {job_id} left in processing: could not record failure \"{message}\"")

    async def _generate_result(self, job: JobRecord) -> MealPlanResult:
        request = MealPlanRequest.model_validate(job.params)
        prompt = build_meal_plan_prompt(request)

        try:
            raw = await asyncio.wait_for(
                self.generator.generate(prompt, request), timeout=self.generation_timeout
            )
        except asyncio.TimeoutError as e:
            raise GenerationServiceError(
                f"Generation timed out after {self.generation_timeout:g} seconds"
            ) from e

        daily_plans = parse_meal_plan_response(raw, request.days, request.meals_per_day)

        return MealPlanResult(
            id=f"plan_{uuid.uuid4().hex}",
            name=f"{request.days}-day meal plan",
            days=request.days,
            meals_per_day=request.meals_per_day,
            people=request.people,
            daily_plans=daily_plans,
            shopping_list=build_shopping_list(daily_plans),
            created_at=datetime.now(timezone.utc),
        )

    def _count_generation(self, user_id: str, job_id: str) -> None:
        # The plan is already delivered; a lost counter update is only logged
        try:
            with self._session_factory() as db:
                increment_generation_count(db, user_id)
        except Exception as e:
            logger.error(f"Quota increment failed for user {user_id} after job {job_id}: {e}")


_pipeline: Optional[JobPipeline] = None


def get_pipeline() -> JobPipeline:
    global _pipeline
    if _pipeline is None:
        from ..db import SessionLocal

        _pipeline = JobPipeline(
            store=get_job_store(),
            generator=MealPlanGenerator(),
            session_factory=SessionLocal(),
        )
    return _pipeline


def set_pipeline(pipeline: Optional[JobPipeline]) -> None:
    global _pipeline
    _pipeline = pipeline
