"""Parse raw generation output into typed meal plan days.

The response is untrusted text. Anything that does not validate into the
exact requested shape raises ParseError; no partial recovery is attempted.
"""
import json
import logging
import re

from pydantic import ValidationError as PydanticValidationError

from ..errors import ParseError
from ..schemas import MealPlanDay

logger = logging.getLogger("mealplanner.parsing")

PARSE_FAILURE_MESSAGE = (
    "Failed to parse meal plan: the generated response was not in the expected format. "
    "Please try again."
)

_FENCED_RE = re.compile(r"(?:^|\n)```(?:json)?[ \t]*\n?(.*)```", re.IGNORECASE | re.DOTALL)
_OPEN_FENCE_RE = re.compile(r"^```(?:json)?[ \t]*\n?", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Unwrap a ```json ... ``` block, leaving backticks inside the JSON alone."""
    text = text.strip()
    match = _FENCED_RE.search(text)
    if match:
        return match.group(1).strip()
    # Truncated output: opening fence with no closing one
    return _OPEN_FENCE_RE.sub("", text).strip()


def _extract_object(text: str) -> str:
    # Tolerate chatter around the JSON object
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        return text
    return text[start:end + 1]


def parse_meal_plan_response(raw: str, days: int, meals_per_day: int) -> list[MealPlanDay]:
    """Decode and validate the plan; return exactly `days` days of `meals_per_day` meals."""
    if not raw or not raw.strip():
        raise ParseError(PARSE_FAILURE_MESSAGE)

    cleaned = _extract_object(strip_code_fences(raw))

    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.error(f"Meal plan response is not valid JSON: {e}; raw head={raw[:200]!r}")
        raise ParseError(PARSE_FAILURE_MESSAGE) from e

    if not isinstance(payload, dict):
        raise ParseError(PARSE_FAILURE_MESSAGE)

    daily = payload.get("daily_plans", payload.get("dailyPlans"))
    if not isinstance(daily, list):
        logger.error("Meal plan response has no daily_plans list")
        raise ParseError(PARSE_FAILURE_MESSAGE)

    try:
        plan_days = [MealPlanDay.model_validate(d) for d in daily]
    except PydanticValidationError as e:
        logger.error(f"Meal plan response failed schema validation: {e.error_count()} errors")
        raise ParseError(PARSE_FAILURE_MESSAGE) from e

    if len(plan_days) != days:
        logger.error(f"Meal plan has {len(plan_days)} days, expected {days}")
        raise ParseError(PARSE_FAILURE_MESSAGE)

    for plan_day in plan_days:
        if len(plan_day.meals) != meals_per_day:
            logger.error(
                f"Day {plan_day.day} has {len(plan_day.meals)} meals, expected {meals_per_day}"
            )
            raise ParseError(PARSE_FAILURE_MESSAGE)

    return plan_days
