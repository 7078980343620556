"""HTTP client for the meal plan API, including the status polling loop.

Polling contract:
- one status request every `poll_interval` seconds, at most `max_polls` times
- transport errors, non-2xx answers and unreadable bodies are retried silently
- the first `failed` status stops polling and raises JobFailedError
- an exhausted budget raises PollTimeoutError; the job keeps running
  server-side and can be picked up later through `recover_recent`
"""
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

import httpx
from pydantic import ValidationError

from ..errors import (
    JobFailedError,
    PollCancelled,
    PollTimeoutError,
    RequestRejected,
    TransportError,
)
from ..schemas import MealPlanRequest, MealPlanResult

logger = logging.getLogger("mealplanner.client")

POLL_INTERVAL_SECONDS = 3.0
MAX_POLLS = 60
RECENT_WINDOW = timedelta(minutes=10)


class MealPlanClient:
    def __init__(
        self,
        base_url: str = "",
        token: Optional[str] = None,
        http: Optional[httpx.Client] = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        max_polls: int = MAX_POLLS,
        sleep: Callable[[float], None] = time.sleep,
        timeout: float = 30.0,
    ):
        self._http = http or httpx.Client(base_url=base_url, timeout=timeout)
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self._sleep = sleep
        self._cancelled: set[str] = set()

    def close(self) -> None:
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # --- requests ---

    def create_job(
        self,
        request: Union[MealPlanRequest, dict],
        idempotency_key: Optional[str] = None,
    ) -> str:
        """Submit a generation request and return the job id.

        Raises RequestRejected for 4xx answers (validation, auth, quota).
        """
        if isinstance(request, MealPlanRequest):
            body = request.model_dump(mode="json", by_alias=True, exclude_none=True)
        else:
            body = request
        headers = dict(self._headers)
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        try:
            resp = self._http.post("/api/meal-plan", json=body, headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(f"Could not reach the meal plan service: {e}") from e

        if resp.status_code != 202:
            raise RequestRejected(resp.status_code, _json_or_empty(resp))
        return resp.json()["jobId"]

    def trigger_processing(self, job_id: Optional[str] = None) -> bool:
        """Ask the server to claim a pending job now. Never raises.

        Losing the claim (409) is normal when the automatic trigger got there
        first.
        """
        body = {"jobId": job_id} if job_id else {}
        try:
            resp = self._http.post("/api/meal-plan/process", json=body, headers=self._headers)
        except httpx.HTTPError as e:
            logger.info(f"Process trigger for {job_id} failed: {e}")
            return False
        return resp.status_code == 202

    def fetch_status(self, job_id: str) -> dict:
        try:
            resp = self._http.get(f"/api/meal-plan/status/{job_id}", headers=self._headers)
        except httpx.HTTPError as e:
            raise TransportError(str(e)) from e
        if not resp.is_success:
            raise TransportError(f"Status request returned {resp.status_code}")
        try:
            payload = resp.json()
        except ValueError as e:
            raise TransportError(f"Status response is not JSON: {e}") from e
        if not isinstance(payload, dict):
            raise TransportError("Status response is not a JSON object")
        return payload

    def poll(self, job_id: str) -> MealPlanResult:
        """Poll until the job is terminal or the attempt budget runs out."""
        self._cancelled.discard(job_id)

        for attempt in range(1, self.max_polls + 1):
            self._sleep(self.poll_interval)
            if job_id in self._cancelled:
                raise PollCancelled(f"Polling for job {job_id} was cancelled")

            try:
                payload = self.fetch_status(job_id)
            except TransportError as e:
                logger.debug(f"Poll {attempt}/{self.max_polls} for {job_id} failed: {e}")
                continue

            status = payload.get("status")
            if status == "completed" and payload.get("result"):
                try:
                    return MealPlanResult.model_validate(payload["result"])
                except ValidationError as e:
                    logger.debug(f"Poll {attempt}/{self.max_polls} for {job_id} got a malformed plan: {e}")
                    continue
            if status == "failed":
                raise JobFailedError(job_id, payload.get("error") or "Meal plan generation failed")

        raise PollTimeoutError(job_id, self.max_polls)

    def cancel(self, job_id: str) -> bool:
        """Stop polling locally and best-effort cancel on the server."""
        self._cancelled.add(job_id)
        try:
            resp = self._http.delete(f"/api/meal-plan/{job_id}", headers=self._headers)
        except httpx.HTTPError as e:
            logger.info(f"Cancel request for {job_id} failed: {e}")
            return False
        return resp.is_success and bool(_json_or_empty(resp).get("success"))

    def recover_recent(self, since: Optional[datetime] = None) -> Optional[MealPlanResult]:
        """Fetch the latest completed plan (default: last 10 minutes)."""
        since = since or datetime.now(timezone.utc) - RECENT_WINDOW
        try:
            resp = self._http.get(
                "/api/meal-plan/recent",
                params={"since": since.isoformat()},
                headers=self._headers,
            )
        except httpx.HTTPError as e:
            logger.info(f"Recent plan lookup failed: {e}")
            return None
        if not resp.is_success:
            return None
        result = _json_or_empty(resp).get("result")
        return MealPlanResult.model_validate(result) if result else None

    def generate(
        self,
        request: Union[MealPlanRequest, dict],
        idempotency_key: Optional[str] = None,
    ) -> MealPlanResult:
        """Create a job, nudge processing, and wait for the plan."""
        job_id = self.create_job(request, idempotency_key=idempotency_key)
        self.trigger_processing(job_id)
        return self.poll(job_id)


def _json_or_empty(resp: httpx.Response) -> dict:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
