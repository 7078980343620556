"""Pydantic schemas for the meal plan API.

Request/response models for:
- Meal plan requests (job params snapshot)
- Generated plans (recipes, days, shopping list)
- Job records and status polling payloads
- Usage stats

Wire format is camelCase; Python attributes are snake_case.
"""

from datetime import datetime
from typing import Optional, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


JobStatus = Literal["pending", "processing", "completed", "failed"]
TERMINAL_STATUSES = ("completed", "failed")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Request ---

class MacroGoals(CamelModel):
    protein: Optional[float] = None
    carbs: Optional[float] = None
    fats: Optional[float] = None
    calories: Optional[float] = None


class InventoryItem(CamelModel):
    name: str = Field(..., min_length=1, max_length=120)
    priority: bool = False


class MealPlanRequest(CamelModel):
    days: int = Field(..., ge=1, le=14)
    meals_per_day: int = Field(..., ge=2, le=5)
    people: int = Field(..., ge=1, le=10)
    target_calories: int = Field(..., ge=500, le=5000)
    restrictions: list[str] = []
    allergies: list[str] = []
    macro_goals: Optional[MacroGoals] = None
    cuisine_preferences: list[str] = []
    inventory: list[InventoryItem] = []
    inventory_mode: Literal["all", "priority"] = "all"


# --- Generated plan ---

class Ingredient(CamelModel):
    name: str = Field(..., min_length=1)
    amount: str
    unit: str = ""

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_as_text(cls, v):
        # The model sometimes emits numbers instead of strings
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return f"{v:g}"
        return v

    @field_validator("unit", mode="before")
    @classmethod
    def _unit_or_blank(cls, v):
        return "" if v is None else v


class InstructionStep(CamelModel):
    step: int
    instruction: str
    time_minutes: Optional[float] = None


class Nutrition(CamelModel):
    calories: float
    protein: float
    carbs: float
    fats: float
    fiber: Optional[float] = None


class Recipe(CamelModel):
    name: str = Field(..., min_length=1)
    description: str
    cooking_time: int
    servings: int
    difficulty: str
    cuisine: str
    meal_type: str
    ingredients: list[Ingredient]
    instructions: list[InstructionStep]
    nutrition: Nutrition
    tips: Optional[list[str]] = None
    tags: Optional[list[str]] = None


class PlannedMeal(CamelModel):
    type: str
    recipe: Recipe


class MealPlanDay(CamelModel):
    day: int
    meals: list[PlannedMeal]


class ShoppingItem(CamelModel):
    name: str
    quantity: str
    category: str


class MealPlanResult(CamelModel):
    id: str
    name: str
    days: int
    meals_per_day: int
    people: int
    daily_plans: list[MealPlanDay]
    shopping_list: list[ShoppingItem]
    created_at: datetime


# --- Job records ---

class JobRecord(BaseModel):
    """Immutable snapshot of a job row, independent of the store backend."""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    user_id: str
    status: JobStatus
    params: dict
    result: Optional[dict] = None
    error: Optional[str] = None
    created_at: datetime
    processing_started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class JobCreatedResponse(CamelModel):
    job_id: str
    status: Literal["pending"] = "pending"
    message: str = "Meal plan generation started"


class JobStatusResponse(CamelModel):
    job_id: str
    status: JobStatus
    created_at: Optional[datetime] = None
    result: Optional[MealPlanResult] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None


class ProcessRequest(CamelModel):
    job_id: Optional[str] = None


class ProcessResponse(CamelModel):
    processed: bool
    job_id: Optional[str] = None
    status: Optional[JobStatus] = None
    message: Optional[str] = None


class CancelResponse(CamelModel):
    success: bool
    message: str


class RecentJobResponse(CamelModel):
    job_id: Optional[str] = None
    result: Optional[MealPlanResult] = None
    completed_at: Optional[datetime] = None


# --- Usage ---

class GenerationUsageOut(CamelModel):
    used: int
    limit: Optional[int]
    remaining: Optional[int]
    is_unlimited: bool


class DailyUsageOut(CamelModel):
    used: int
    limit: Optional[int]
    is_unlimited: bool


class UsageStatsOut(CamelModel):
    plan_tier: str
    plan_name: str
    generations: GenerationUsageOut
    daily: DailyUsageOut
    period_reset_date: Optional[datetime] = None
    total_lifetime: int
