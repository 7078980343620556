import json
import pytest

from mealplanner.errors import ParseError
from mealplanner.parsing import PARSE_FAILURE_MESSAGE, parse_meal_plan_response, strip_code_fences


def _recipe(name="Omelette"):
    return {
        "name": name,
        "description": "Quick and filling",
        "cookingTime": 10,
        "servings": 2,
        "difficulty": "easy",
        "cuisine": "french",
        "mealType": "breakfast",
        "ingredients": [{"name": "egg", "amount": 3, "unit": "pcs"}],
        "instructions": [{"step": 1, "instruction": "Whisk and fry"}],
        "nutrition": {"calories": 400, "protein": 25, "carbs": 2, "fats": 30},
    }


def _plan(days=2, meals=2, key="daily_plans"):
    return {
        key: [
            {"day": d, "meals": [{"type": "breakfast", "recipe": _recipe()} for _ in range(meals)]}
            for d in range(1, days + 1)
        ]
    }


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('{"a": 1}') == '{"a": 1}'
    assert strip_code_fences('Here you go:\n```json\n{"a": 1}\n```\nEnjoy') == '{"a": 1}'
    assert strip_code_fences('```json\n{"a": 1') == '{"a": 1'


def test_parse_fenced_plan():
    raw = "```json\n" + json.dumps(_plan()) + "\n```"

    days = parse_meal_plan_response(raw, days=2, meals_per_day=2)

    assert len(days) == 2
    assert all(len(d.meals) == 2 for d in days)
    ingredient = days[0].meals[0].recipe.ingredients[0]
    assert ingredient.amount == "3"  # numbers are coerced to text
    assert ingredient.unit == "pcs"


def test_parse_keeps_backticks_inside_values():
    plan = _plan(days=1, meals=2)
    tip = "Run ```make prep``` the night before"
    plan["daily_plans"][0]["meals"][0]["recipe"]["description"] = tip
    raw = "```json\n" + json.dumps(plan) + "\n```"

    days = parse_meal_plan_response(raw, days=1, meals_per_day=2)

    assert days[0].meals[0].recipe.description == tip


def test_parse_tolerates_surrounding_chatter():
    raw = "Here is your plan:\n" + json.dumps(_plan(days=1, meals=2)) + "\nEnjoy!"
    assert len(parse_meal_plan_response(raw, days=1, meals_per_day=2)) == 1


def test_parse_accepts_camel_case_key():
    raw = json.dumps(_plan(days=1, meals=2, key="dailyPlans"))
    assert len(parse_meal_plan_response(raw, days=1, meals_per_day=2)) == 1


@pytest.mark.parametrize("raw", [
    "",
    "not json at all",
    "[1, 2, 3]",
    json.dumps({"plans": []}),
    json.dumps({"daily_plans": "nope"}),
])
def test_parse_rejects_malformed(raw):
    with pytest.raises(ParseError) as exc:
        parse_meal_plan_response(raw, days=1, meals_per_day=2)
    assert str(exc.value) == PARSE_FAILURE_MESSAGE


def test_parse_rejects_missing_recipe_fields():
    plan = _plan(days=1, meals=2)
    del plan["daily_plans"][0]["meals"][0]["recipe"]["ingredients"]

    with pytest.raises(ParseError):
        parse_meal_plan_response(json.dumps(plan), days=1, meals_per_day=2)


def test_parse_rejects_wrong_day_count():
    with pytest.raises(ParseError):
        parse_meal_plan_response(json.dumps(_plan(days=2, meals=2)), days=3, meals_per_day=2)


def test_parse_rejects_wrong_meal_count():
    with pytest.raises(ParseError):
        parse_meal_plan_response(json.dumps(_plan(days=2, meals=2)), days=2, meals_per_day=3)
