"""Turn a validated MealPlanRequest into a single generation prompt.

The prompt is deterministic for a given request so jobs can be replayed.
"""
from ..schemas import MealPlanRequest

# Display vocabulary (UI) -> vocabulary the model is prompted with
RESTRICTION_MAP = {
    "Vegetarian": "vegetarian",
    "Vegan": "vegan",
    "Gluten-free": "gluten-free",
    "Gluten free": "gluten-free",
    "Lactose-free": "dairy-free",
    "Dairy-free": "dairy-free",
    "Low-carb": "low-carb",
    "Keto": "keto",
    "Ketogenic": "keto",
    "Paleo": "paleo",
    # Legacy Czech labels still stored in older profiles
    "Vegetariánské": "vegetarian",
    "Veganské": "vegan",
    "Bezlepkové": "gluten-free",
    "Bez laktózy": "dairy-free",
    "Nízkosacharidové": "low-carb",
    "Ketogenní": "keto",
}

MEAL_TYPES = {
    2: ["breakfast", "dinner"],
    3: ["breakfast", "lunch", "dinner"],
    4: ["breakfast", "lunch", "snack", "dinner"],
    5: ["breakfast", "snack", "lunch", "snack", "dinner"],
}


def meal_types_for(meals_per_day: int) -> list[str]:
    return MEAL_TYPES.get(meals_per_day, MEAL_TYPES[3])


def convert_restrictions(restrictions: list[str]) -> list[str]:
    return [RESTRICTION_MAP.get(r, r.lower()) for r in restrictions]


def calories_per_meal(target_calories: int, meals_per_day: int) -> int:
    # Half-up like the client-side display
    return int(target_calories / meals_per_day + 0.5)


def _inventory_section(request: MealPlanRequest) -> str:
    if request.inventory_mode == "priority":
        priority_items = [item.name for item in request.inventory if item.priority]
        if not priority_items:
            return ""
        lines = "\n".join(f"- {name}" for name in priority_items)
        return (
            "\n\n## INGREDIENTS YOU MUST USE EXCLUSIVELY:\n"
            f"{lines}\n"
            "Build every recipe exclusively from the ingredients listed above. "
            "Do not add any other main ingredient; only basic seasonings "
            "(salt, pepper, oil, water) are allowed on top of them."
        )

    if not request.inventory:
        return ""
    lines = "\n".join(f"- {item.name}" for item in request.inventory)
    return (
        "\n\n## INGREDIENTS ALREADY AT HOME:\n"
        f"{lines}\n"
        "Prefer recipes that use these ingredients so less has to be bought. "
        "You may add other ingredients where needed."
    )


def build_meal_plan_prompt(request: MealPlanRequest) -> str:
    """Compose the full instruction set for one plan."""
    meal_types = meal_types_for(request.meals_per_day)
    per_meal = calories_per_meal(request.target_calories, request.meals_per_day)
    restrictions = convert_restrictions(request.restrictions)

    prompt = (
        "You are a professional chef and nutritionist. Create a complete "
        f"{request.days}-day meal plan that meets the following requirements:\n\n"
        "## MEAL PLAN REQUIREMENTS:\n"
        f"- Days: {request.days}\n"
        f"- Meals per day: {request.meals_per_day} ({', '.join(meal_types)})\n"
        f"- Servings per recipe: {request.people}\n"
        f"- Daily calorie target: {request.target_calories} (about {per_meal} per meal)"
    )

    goals = request.macro_goals
    if goals and (goals.protein or goals.carbs or goals.fats):
        parts = []
        if goals.protein:
            parts.append(f"{goals.protein:g}g protein")
        if goals.carbs:
            parts.append(f"{goals.carbs:g}g carbs")
        if goals.fats:
            parts.append(f"{goals.fats:g}g fats")
        prompt += f"\n- Daily macros: {', '.join(parts)}"

    if restrictions:
        prompt += f"\n- Dietary restrictions: {', '.join(restrictions)}"

    if request.allergies:
        prompt += (
            f"\n- Allergies (MUST AVOID, hard constraint): {', '.join(request.allergies)}"
        )

    if request.cuisine_preferences:
        prompt += f"\n- Preferred cuisines: {', '.join(request.cuisine_preferences)}"

    prompt += _inventory_section(request)

    prompt += f"""

## INSTRUCTIONS:
1. Create a complete plan for {request.days} days with exactly {request.meals_per_day} meals per day
2. Every meal must contain a complete recipe with ingredients and steps
3. Respect every dietary restriction and never use an allergen
4. Aim for the calorie and macro targets
5. Keep every day varied and balanced
6. Give ingredient amounts as plain numbers in "amount" and the unit in "unit"

## OUTPUT FORMAT:
Return a valid JSON object with this structure:

```json
{{
  "daily_plans": [
    {{
      "day": 1,
      "meals": [
        {{
          "type": "{meal_types[0]}",
          "recipe": {{
            "name": "Recipe name",
            "description": "Short description",
            "cookingTime": 15,
            "servings": {request.people},
            "difficulty": "easy",
            "cuisine": "italian",
            "mealType": "{meal_types[0]}",
            "ingredients": [
              {{"name": "ingredient", "amount": "2", "unit": "pcs"}}
            ],
            "instructions": [
              {{"step": 1, "instruction": "What to do", "timeMinutes": 5}}
            ],
            "nutrition": {{
              "calories": {per_meal},
              "protein": 20,
              "carbs": 30,
              "fats": 15,
              "fiber": 5
            }},
            "tips": ["Optional tip"],
            "tags": ["quick", "healthy"]
          }}
        }}
      ]
    }}
  ]
}}
```

IMPORTANT: Return ONLY the JSON object covering all {request.days} days with {request.meals_per_day} meals each."""

    return prompt
