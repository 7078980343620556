"""Durable job records with compare-and-swap status transitions.

Every status change is a conditional write on the current status:
- claim:    pending -> processing
- complete: processing -> completed
- fail:     pending|processing -> failed

A write that matches zero rows means someone else moved the job first; the
caller gets None/False and must not apply side effects. That conditional
update is the only concurrency control in the pipeline.
"""
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..models import MealPlanJob
from ..schemas import JobRecord

logger = logging.getLogger("mealplanner.jobs")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobStore(ABC):
    @abstractmethod
    def create(self, user_id: str, params: dict) -> JobRecord: ...

    @abstractmethod
    def get(self, job_id: str) -> Optional[JobRecord]: ...

    @abstractmethod
    def claim(self, job_id: str) -> Optional[JobRecord]:
        """pending -> processing. None if the job was not pending."""

    @abstractmethod
    def oldest_pending(self) -> Optional[JobRecord]: ...

    @abstractmethod
    def complete(self, job_id: str, result: dict) -> bool:
        """processing -> completed. False if the job was no longer processing."""

    @abstractmethod
    def fail(self, job_id: str, error: str) -> bool:
        """pending|processing -> failed. False if already terminal."""

    @abstractmethod
    def latest_completed(self, user_id: str, since: Optional[datetime] = None) -> Optional[JobRecord]: ...

    def claim_oldest(self) -> tuple[Optional[JobRecord], bool]:
        """Claim the oldest pending job.

        Returns (job, found): found is False when nothing was pending; a found
        job that lost the claim race comes back as (None, True).
        """
        candidate = self.oldest_pending()
        if candidate is None:
            return None, False
        return self.claim(candidate.id), True


class SqlJobStore(JobStore):
    """SQLAlchemy-backed store; one short session per operation."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def create(self, user_id: str, params: dict) -> JobRecord:
        with self._session_factory() as db:
            job = MealPlanJob(user_id=user_id, status="pending", params=params, created_at=_utc_now())
            db.add(job)
            db.commit()
            db.refresh(job)
            return JobRecord.model_validate(job)

    def get(self, job_id: str) -> Optional[JobRecord]:
        with self._session_factory() as db:
            job = db.get(MealPlanJob, job_id)
            return JobRecord.model_validate(job) if job else None

    def _transition(self, job_id: str, from_statuses: tuple[str, ...], values: dict) -> bool:
        with self._session_factory() as db:
            result = db.execute(
                update(MealPlanJob)
                .where(MealPlanJob.id == job_id, MealPlanJob.status.in_(from_statuses))
                .values(**values)
            )
            db.commit()
            return result.rowcount == 1

    def claim(self, job_id: str) -> Optional[JobRecord]:
        ok = self._transition(
            job_id, ("pending",), {"status": "processing", "processing_started_at": _utc_now()}
        )
        if not ok:
            return None
        return self.get(job_id)

    def oldest_pending(self) -> Optional[JobRecord]:
        with self._session_factory() as db:
            job = db.execute(
                select(MealPlanJob)
                .where(MealPlanJob.status == "pending")
                .order_by(MealPlanJob.created_at)
                .limit(1)
            ).scalar_one_or_none()
            return JobRecord.model_validate(job) if job else None

    def complete(self, job_id: str, result: dict) -> bool:
        return self._transition(
            job_id, ("processing",), {"status": "completed", "result": result, "completed_at": _utc_now()}
        )

    def fail(self, job_id: str, error: str) -> bool:
        return self._transition(
            job_id, ("pending", "processing"), {"status": "failed", "error": error, "completed_at": _utc_now()}
        )

    def latest_completed(self, user_id: str, since: Optional[datetime] = None) -> Optional[JobRecord]:
        with self._session_factory() as db:
            stmt = select(MealPlanJob).where(
                MealPlanJob.user_id == user_id, MealPlanJob.status == "completed"
            )
            if since is not None:
                stmt = stmt.where(MealPlanJob.completed_at >= since)
            job = db.execute(
                stmt.order_by(MealPlanJob.completed_at.desc()).limit(1)
            ).scalar_one_or_none()
            return JobRecord.model_validate(job) if job else None


class InMemoryJobStore(JobStore):
    """Process-local store for tests and single-process dev runs.

    The mutex makes each conditional transition atomic, standing in for the
    database's row-level atomicity.
    """

    def __init__(self):
        self._jobs: dict[str, JobRecord] = {}
        self._lock = threading.Lock()

    def create(self, user_id: str, params: dict) -> JobRecord:
        job = JobRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            status="pending",
            params=params,
            created_at=_utc_now(),
        )
        with self._lock:
            self._jobs[job.id] = job
        return job

    def get(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            return self._jobs.get(job_id)

    def _transition(self, job_id: str, from_statuses: tuple[str, ...], **changes) -> Optional[JobRecord]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status not in from_statuses:
                return None
            updated = job.model_copy(update=changes)
            self._jobs[job_id] = updated
            return updated

    def claim(self, job_id: str) -> Optional[JobRecord]:
        return self._transition(
            job_id, ("pending",), status="processing", processing_started_at=_utc_now()
        )

    def oldest_pending(self) -> Optional[JobRecord]:
        with self._lock:
            pending = [j for j in self._jobs.values() if j.status == "pending"]
        return min(pending, key=lambda j: j.created_at) if pending else None

    def complete(self, job_id: str, result: dict) -> bool:
        return self._transition(
            job_id, ("processing",), status="completed", result=result, completed_at=_utc_now()
        ) is not None

    def fail(self, job_id: str, error: str) -> bool:
        return self._transition(
            job_id, ("pending", "processing"), status="failed", error=error, completed_at=_utc_now()
        ) is not None

    def latest_completed(self, user_id: str, since: Optional[datetime] = None) -> Optional[JobRecord]:
        with self._lock:
            done = [
                j for j in self._jobs.values()
                if j.user_id == user_id and j.status == "completed"
                and (since is None or j.completed_at >= since)
            ]
        return max(done, key=lambda j: j.completed_at) if done else None


_store: Optional[JobStore] = None


def get_job_store() -> JobStore:
    """Process-wide store selected by settings.job_store_backend."""
    global _store
    if _store is None:
        from ..db import SessionLocal
        from ..settings import settings

        if settings.job_store_backend == "memory":
            _store = InMemoryJobStore()
        else:
            _store = SqlJobStore(SessionLocal())
        logger.info(f"Job store backend: {settings.job_store_backend}")
    return _store
