import time

import httpx
import pytest

from mealplanner.client.poller import MealPlanClient
from mealplanner.errors import JobFailedError, PollCancelled, PollTimeoutError, RequestRejected

JOB_ID = "5f0c8a4e-1d2b-4c3a-9e8f-7a6b5c4d3e2f"


def _plan():
    return {
        "id": "plan_abc",
        "name": "1-day meal plan",
        "days": 1,
        "mealsPerDay": 2,
        "people": 1,
        "dailyPlans": [],
        "shoppingList": [],
        "createdAt": "2026-03-15T12:00:00Z",
    }


def scripted_client(responses, sleeps=None, **kwargs):
    """MealPlanClient whose status calls return `responses` in order.

    Each item is a dict (JSON body, 200), an int (bare status code), a
    ready httpx.Response or an exception instance raised by the transport.
    """
    calls = []
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append((request.method, request.url.path))
        if request.url.path.startswith("/api/meal-plan/status/"):
            item = queue.pop(0)
            if isinstance(item, Exception):
                raise item
            if isinstance(item, httpx.Response):
                return item
            if isinstance(item, int):
                return httpx.Response(item)
            return httpx.Response(200, json=item)
        if request.method == "DELETE":
            return httpx.Response(200, json={"success": True, "message": "Job cancelled"})
        if request.url.path == "/api/meal-plan/process":
            return httpx.Response(202, json={"processed": True, "jobId": JOB_ID, "status": "processing"})
        if request.url.path == "/api/meal-plan":
            return httpx.Response(202, json={"jobId": JOB_ID, "status": "pending"})
        return httpx.Response(404)

    http = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://test")
    recorded = sleeps if sleeps is not None else []
    client = MealPlanClient(http=http, token="t", sleep=recorded.append, **kwargs)
    return client, calls


def _status_calls(calls):
    return [c for c in calls if c[1].startswith("/api/meal-plan/status/")]


def test_poll_until_completed():
    sleeps = []
    client, calls = scripted_client([
        {"jobId": JOB_ID, "status": "pending"},
        {"jobId": JOB_ID, "status": "processing"},
        {"jobId": JOB_ID, "status": "completed", "result": _plan()},
    ], sleeps=sleeps)

    plan = client.poll(JOB_ID)

    assert plan.id == "plan_abc"
    assert len(_status_calls(calls)) == 3
    assert sleeps == [3.0, 3.0, 3.0]


def test_poll_stops_on_first_failed():
    client, calls = scripted_client([
        {"jobId": JOB_ID, "status": "processing"},
        {"jobId": JOB_ID, "status": "failed", "error": "Generation service error: quota"},
        {"jobId": JOB_ID, "status": "completed", "result": _plan()},
    ])

    with pytest.raises(JobFailedError) as exc:
        client.poll(JOB_ID)

    assert str(exc.value) == "Generation service error: quota"
    assert exc.value.job_id == JOB_ID
    assert len(_status_calls(calls)) == 2


def test_poll_retries_transient_errors():
    client, calls = scripted_client([
        httpx.ConnectError("connection refused"),
        500,
        404,
        {"jobId": JOB_ID, "status": "completed", "result": _plan()},
    ])

    assert client.poll(JOB_ID).name == "1-day meal plan"
    assert len(_status_calls(calls)) == 4



def test_poll_retries_unreadable_bodies():
    client, calls = scripted_client([
        httpx.Response(200, text="<html>502 Bad Gateway</html>"),
        httpx.Response(200, json=["not", "an", "object"]),
        {"jobId": JOB_ID, "status": "completed", "result": {"id": "plan_abc"}},
        {"jobId": JOB_ID, "status": "completed", "result": _plan()},
    ])

    plan = client.poll(JOB_ID)

    assert plan.id == "plan_abc"
    assert len(_status_calls(calls)) == 4


def test_poll_timeout_leaves_job_alone():
    client, calls = scripted_client(
        [{"jobId": JOB_ID, "status": "processing"}] * 5,
        max_polls=5,
    )

    with pytest.raises(PollTimeoutError) as exc:
        client.poll(JOB_ID)

    assert exc.value.attempts == 5
    assert isinstance(exc.value, TimeoutError)
    assert not [c for c in calls if c[0] == "DELETE"]


def test_cancel_stops_polling():
    client, calls = scripted_client([{"jobId": JOB_ID, "status": "processing"}] * 3)

    sleeps = []

    def cancel_on_second_sleep(seconds):
        sleeps.append(seconds)
        if len(sleeps) == 2:
            assert client.cancel(JOB_ID) is True

    client._sleep = cancel_on_second_sleep

    with pytest.raises(PollCancelled):
        client.poll(JOB_ID)

    assert ("DELETE", f"/api/meal-plan/{JOB_ID}") in calls
    assert len(_status_calls(calls)) == 1


def test_generate_creates_triggers_and_polls():
    client, calls = scripted_client([{"jobId": JOB_ID, "status": "completed", "result": _plan()}])

    plan = client.generate({"days": 1, "mealsPerDay": 2, "people": 1, "targetCalories": 1800})

    assert plan.days == 1
    assert calls[0] == ("POST", "/api/meal-plan")
    assert calls[1] == ("POST", "/api/meal-plan/process")


def test_create_job_rejected():
    def handler(request):
        return httpx.Response(429, json={"error": "Generation limit reached (monthly_limit)", "code": "MONTHLY_LIMIT_REACHED"})

    http = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://test")
    client = MealPlanClient(http=http, token="t")

    with pytest.raises(RequestRejected) as exc:
        client.create_job({"days": 1})

    assert exc.value.status_code == 429
    assert exc.value.payload["code"] == "MONTHLY_LIMIT_REACHED"


def test_trigger_processing_tolerates_failures():
    def handler(request):
        raise httpx.ConnectError("down")

    http = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://test")
    client = MealPlanClient(http=http)

    assert client.trigger_processing(JOB_ID) is False
    assert client.recover_recent() is None


# --- Against the real app ---

def test_client_against_api(client, auth_headers, plan_request):
    token = auth_headers["Authorization"].split(" ", 1)[1]
    api = MealPlanClient(http=client, token=token, poll_interval=0.02, max_polls=200, sleep=time.sleep)

    plan = api.generate(plan_request)

    assert plan.days == 2
    assert len(plan.daily_plans) == 2
    assert api.recover_recent().id == plan.id
