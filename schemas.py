from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import TransactionType

MIN_GOAL_YEAR = 2000
MAX_GOAL_YEAR = 3000


class UserIn(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=200)

    @field_validator("username", "email")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class LoginIn(BaseModel):
    # Accepts either the email address or the username.
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=200)


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    date: date
    type: TransactionType
    amount_cents: int = Field(..., ge=0)
    category: str = Field(..., min_length=1, max_length=100)
    note: Optional[str] = Field(default=None, max_length=200)

    @field_validator("category")
    @classmethod
    def _strip_category(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Category must not be blank")
        return value


class BudgetGoalIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category: str = Field(..., min_length=1, max_length=100)
    amount_cents: int = Field(..., ge=0)
    month: int = Field(..., ge=0, le=11)
    year: int = Field(..., ge=MIN_GOAL_YEAR, le=MAX_GOAL_YEAR)

    @field_validator("category")
    @classmethod
    def _strip_category(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Category must not be blank")
        return value
