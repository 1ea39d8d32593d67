from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from csv_utils import parse_amount
from dates import parse_occurred_at


class CategoryIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)


class ExpenseIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., alias="amount", ge=0)
    category_id: int = Field(..., alias="categoryId")
    occurred_at: Optional[datetime] = Field(default=None, alias="date")
    description: Optional[str] = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        return _not_blank(value)

    @field_validator("amount_cents", mode="before")
    @classmethod
    def _parse_amount(cls, value: Any) -> int:
        return parse_amount(value)

    @field_validator("occurred_at", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> Optional[datetime]:
        if value is None:
            return None
        return parse_occurred_at(value)


class ExpenseUpdate(BaseModel):
    """Partial update; only fields present in the payload are applied.

    Use ``changes()`` rather than reading attributes directly so absent fields
    stay distinguishable from fields explicitly set.
    """

    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount_cents: Optional[int] = Field(default=None, alias="amount", ge=0)
    category_id: Optional[int] = Field(default=None, alias="categoryId")
    occurred_at: Optional[datetime] = Field(default=None, alias="date")
    description: Optional[str] = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return _not_blank(value)

    @field_validator("amount_cents", mode="before")
    @classmethod
    def _parse_amount(cls, value: Any) -> Optional[int]:
        if value is None:
            return None
        return parse_amount(value)

    @field_validator("occurred_at", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> Optional[datetime]:
        if value is None:
            return None
        return parse_occurred_at(value)

    @model_validator(mode="after")
    def _reject_null_required(self) -> "ExpenseUpdate":
        for name in ("title", "amount_cents", "category_id", "occurred_at"):
            if name in self.model_fields_set and getattr(self, name) is None:
                alias = type(self).model_fields[name].alias or name
                raise ValueError(f"{alias} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        data = self.model_dump(exclude_unset=True)
        if "description" in data and not (data["description"] or "").strip():
            data["description"] = None
        return data


def _not_blank(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be blank")
    return value


class PageParams(BaseModel):
    page: int = 1
    page_size: int = 10

    @classmethod
    def from_query(
        cls, page: Optional[str], page_size: Optional[str], default_size: int
    ) -> "PageParams":
        return cls(
            page=max(_to_int(page, 1), 1),
            page_size=min(max(_to_int(page_size, default_size), 1), 100),
        )


def _to_int(raw: Optional[str], default: int) -> int:
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default
