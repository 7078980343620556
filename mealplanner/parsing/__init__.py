from .plan_response import parse_meal_plan_response, strip_code_fences, PARSE_FAILURE_MESSAGE

__all__ = ["parse_meal_plan_response", "strip_code_fences", "PARSE_FAILURE_MESSAGE"]
