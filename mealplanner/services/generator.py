import json
import logging
from typing import Optional

from ..core.ai_client import ai_client, AIClient
from ..schemas import MealPlanRequest
from ..settings import settings
from .prompt_builder import meal_types_for, calories_per_meal

logger = logging.getLogger("mealplanner.ai")

SYSTEM_INSTRUCTION = (
    "You are a meal planning assistant. Output ONLY the JSON object described in the request. "
    "No prose before or after it."
)

# Rotated per meal so the mock plan still has a realistic shopping list
_MOCK_RECIPES = [
    ("Oat porridge with berries", "british", [("oats", "60", "g"), ("milk", "200", "ml"), ("berries", "80", "g")]),
    ("Chicken rice bowl", "asian", [("chicken breast", "150", "g"), ("rice", "80", "g"), ("broccoli", "100", "g")]),
    ("Lentil tomato soup", "mediterranean", [("lentils", "70", "g"), ("tomato", "2", "pcs"), ("onion", "1", "pcs")]),
    ("Greek yogurt with apple", "greek", [("yogurt", "150", "g"), ("apple", "1", "pcs")]),
    ("Salmon with potatoes", "nordic", [("salmon", "140", "g"), ("potato", "200", "g"), ("olive oil", "1", "tbsp")]),
]


class MealPlanGenerator:
    """Prompt -> raw plan text, either via Gemini or an offline mock."""

    def __init__(self, client: Optional[AIClient] = None, mode: Optional[str] = None):
        self.client = client or ai_client
        self.mode = mode or settings.ai_mode

    async def generate(self, prompt: str, request: MealPlanRequest) -> str:
        if self.mode == "mock":
            return self._mock_plan(request)

        logger.info(
            f"Generating meal plan: {request.days} days x {request.meals_per_day} meals "
            f"(prompt {len(prompt)} chars)"
        )
        return await self.client.generate_text(prompt, system_instruction=SYSTEM_INSTRUCTION)

    def _mock_plan(self, request: MealPlanRequest) -> str:
        """Return a well-formed plan for the requested shape, fenced like model output."""
        per_meal = calories_per_meal(request.target_calories, request.meals_per_day)
        meal_types = meal_types_for(request.meals_per_day)
        counter = 0
        daily_plans = []

        for day in range(1, request.days + 1):
            meals = []
            for meal_type in meal_types:
                name, cuisine, ingredients = _MOCK_RECIPES[counter % len(_MOCK_RECIPES)]
                counter += 1
                meals.append({
                    "type": meal_type,
                    "recipe": {
                        "name": name,
                        "description": f"Mock {meal_type} for day {day}",
                        "cookingTime": 20,
                        "servings": request.people,
                        "difficulty": "easy",
                        "cuisine": cuisine,
                        "mealType": meal_type,
                        "ingredients": [
                            {"name": n, "amount": a, "unit": u} for n, a, u in ingredients
                        ],
                        "instructions": [
                            {"step": 1, "instruction": "Prepare the ingredients", "timeMinutes": 5},
                            {"step": 2, "instruction": "Cook and serve", "timeMinutes": 15},
                        ],
                        "nutrition": {
                            "calories": per_meal,
                            "protein": 25,
                            "carbs": 40,
                            "fats": 15,
                            "fiber": 5,
                        },
                        "tags": ["mock"],
                    },
                })
            daily_plans.append({"day": day, "meals": meals})

        return "```json\n" + json.dumps({"daily_plans": daily_plans}, indent=2) + "\n```"
