"""Error taxonomy for the generation job pipeline.

Server-side errors map onto HTTP statuses in the routers; the client-side
ones (TransportError, JobFailedError, PollTimeoutError) are raised by
`mealplanner.client.poller`.
"""

from typing import Optional


class MealPlanError(Exception):
    """Base class for all domain errors."""


class ValidationError(MealPlanError):
    """Malformed request (400). Never retried."""

    def __init__(self, message: str, details: Optional[list] = None):
        super().__init__(message)
        self.details = details or []


class AuthError(MealPlanError):
    """Missing or unresolvable bearer credential (401)."""


class QuotaExceeded(MealPlanError):
    """Quota gate rejected a new generation (429)."""

    CODES = {
        "monthly_limit": "MONTHLY_LIMIT_REACHED",
        "daily_limit": "DAILY_LIMIT_REACHED",
    }

    def __init__(self, check):
        self.check = check
        super().__init__(f"Generation limit reached ({check.reason})")

    @property
    def code(self) -> str:
        return self.CODES.get(self.check.reason, "LIMIT_REACHED")


class JobNotFound(MealPlanError):
    """No job with that id (404)."""


class JobOwnershipError(MealPlanError):
    """Job belongs to another user (403)."""


class ClaimConflict(MealPlanError):
    """The job was not pending when we tried to claim it."""


class GenerationServiceError(MealPlanError):
    """The text-generation call failed or timed out."""


class ParseError(MealPlanError):
    """The generation output could not be turned into a meal plan."""


# --- client side ---

class TransportError(MealPlanError):
    """Network or server-side failure while polling; retried by the client."""


class JobFailedError(MealPlanError):
    """The job reached status=failed. Terminal."""

    def __init__(self, job_id: str, message: str):
        super().__init__(message)
        self.job_id = job_id


class PollTimeoutError(MealPlanError, TimeoutError):
    """Polling budget exhausted; the job itself is left untouched."""

    def __init__(self, job_id: str, attempts: int):
        super().__init__(
            f"Meal plan generation is taking longer than usual (job {job_id}). "
            "Refresh later to pick up the result."
        )
        self.job_id = job_id
        self.attempts = attempts


class PollCancelled(MealPlanError):
    """Polling was cancelled locally."""


class RequestRejected(MealPlanError):
    """The server refused a request outright (4xx other than polling noise)."""

    def __init__(self, status_code: int, payload: Optional[dict] = None):
        payload = payload or {}
        message = payload.get("error") or payload.get("detail") or f"Request rejected ({status_code})"
        super().__init__(str(message))
        self.status_code = status_code
        self.payload = payload
