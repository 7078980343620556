"""Consolidate recipe ingredients into a categorized shopping list.

Rules:
- Key is the case-insensitive ingredient name
- Amounts are summed; unparsable amounts count as 1
- The unit of the first entry seen for a key is kept (no unit conversion)
- Display quantity is ceiling-rounded
- Category = first keyword table entry whose keyword is a substring of the name
"""
import math
import re
from typing import Iterable

from ..schemas import Ingredient, MealPlanDay, ShoppingItem

OTHER_CATEGORY = "other"

# Order matters: first match wins
CATEGORY_KEYWORDS: list[tuple[str, list[str]]] = [
    ("meat", ["chicken", "beef", "pork", "turkey", "lamb", "veal", "duck", "bacon", "ham", "sausage", "mince"]),
    ("fish", ["fish", "salmon", "tuna", "cod", "trout", "mackerel", "sardine", "shrimp", "prawn", "seafood"]),
    ("dairy", ["milk", "cheese", "yogurt", "yoghurt", "butter", "cream", "mozzarella", "parmesan", "feta", "ricotta"]),
    ("eggs", ["egg"]),
    ("vegetables", [
        "broccoli", "carrot", "onion", "garlic", "tomato", "potato", "pepper", "spinach",
        "lettuce", "cucumber", "zucchini", "cabbage", "celery", "mushroom", "kale", "cauliflower",
    ]),
    ("fruit", ["apple", "banana", "berry", "berries", "lemon", "lime", "orange", "mango", "grape", "avocado", "pear"]),
    ("grains", ["rice", "pasta", "bread", "flour", "oats", "quinoa", "noodle", "couscous", "barley", "tortilla"]),
    ("legumes", ["bean", "lentil", "chickpea", "tofu", "hummus"]),
    ("oils", ["oil", "ghee", "lard"]),
    ("spices", [
        "salt", "pepper", "herbs", "spice", "basil", "oregano", "cumin", "paprika",
        "cinnamon", "thyme", "rosemary", "parsley", "chili", "curry",
    ]),
]

_MIXED_RE = re.compile(r"^\s*(\d+)\s+(\d+)\s*/\s*(\d+)")
_FRACTION_RE = re.compile(r"^\s*(\d+)\s*/\s*(\d+)")
_NUMBER_RE = re.compile(r"^\s*[-+]?(\d+(?:[.,]\d+)?|[.,]\d+)")


def parse_amount(raw: str) -> float:
    """Leading numeric value of an amount string; 1 when absent or zero."""
    if raw is None:
        return 1.0
    text = str(raw)

    m = _MIXED_RE.match(text)
    if m and int(m.group(3)):
        value = int(m.group(1)) + int(m.group(2)) / int(m.group(3))
        return value or 1.0

    m = _FRACTION_RE.match(text)
    if m and int(m.group(2)):
        value = int(m.group(1)) / int(m.group(2))
        return value or 1.0

    m = _NUMBER_RE.match(text)
    if not m:
        return 1.0
    value = float(m.group(0).strip().replace(",", "."))
    return value if value > 0 else 1.0


def categorize_ingredient(name: str) -> str:
    lower = name.lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in lower for keyword in keywords):
            return category
    return OTHER_CATEGORY


def format_quantity(amount: float, unit: str) -> str:
    return f"{math.ceil(amount)} {unit}".strip()


def consolidate_ingredients(ingredients: Iterable[Ingredient]) -> list[ShoppingItem]:
    aggregated: dict[str, dict] = {}  # name_lower -> {amount, unit}

    for ing in ingredients:
        key = ing.name.strip().lower()
        if not key:
            continue
        amount = parse_amount(ing.amount)
        if key in aggregated:
            aggregated[key]["amount"] += amount
        else:
            aggregated[key] = {"amount": amount, "unit": ing.unit}

    items = [
        ShoppingItem(
            name=key[:1].upper() + key[1:],
            quantity=format_quantity(data["amount"], data["unit"]),
            category=categorize_ingredient(key),
        )
        for key, data in aggregated.items()
    ]
    return sorted(items, key=lambda item: (item.category, item.name))


def collect_ingredients(daily_plans: Iterable[MealPlanDay]) -> list[Ingredient]:
    """Flatten every ingredient of every recipe in the plan."""
    return [
        ing
        for day in daily_plans
        for meal in day.meals
        for ing in meal.recipe.ingredients
    ]


def build_shopping_list(daily_plans: Iterable[MealPlanDay]) -> list[ShoppingItem]:
    return consolidate_ingredients(collect_ingredients(daily_plans))
