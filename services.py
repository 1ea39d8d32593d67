from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from csv_utils import export_expenses
from database import MAX_ROW_ID
from dates import month_label, utc_now
from models import Category, Expense
from schemas import CategoryIn, ExpenseIn, ExpenseUpdate

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class InvalidInputError(ValueError):
    pass


class NotFoundError(ValueError):
    pass


class ForbiddenError(ValueError):
    pass


class ConflictError(ValueError):
    pass


@dataclass
class Page:
    items: list[Expense]
    page: int
    page_size: int
    total: int

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total / self.page_size))


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Category]:
        stmt = select(Category).order_by(Category.name, Category.id)
        return list(self.session.scalars(stmt).all())

    def exists(self, category_id: int) -> bool:
        if not 0 < category_id <= MAX_ROW_ID:
            return False
        return self.session.get(Category, category_id) is not None

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        if not name:
            raise InvalidInputError("Name is required")
        existing = self.session.scalar(
            select(Category).where(func.lower(Category.name) == name.lower())
        )
        if existing:
            raise ConflictError("Category with this name already exists")
        category = Category(name=name)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        logger.info(f"category_created: id={category.id} name={category.name!r}")
        return category


class ExpenseService:
    """Expense records owned by a single user.

    Lookups by id distinguish a missing record (``NotFoundError``) from one
    that belongs to somebody else (``ForbiddenError``).
    """

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _require_category(self, category_id: int) -> None:
        if not CategoryService(self.session).exists(category_id):
            raise NotFoundError("Category not found")

    def _owned(self, expense_id: int) -> Expense:
        if not 0 < expense_id <= MAX_ROW_ID:
            raise NotFoundError("Expense not found")
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.id == expense_id)
        )
        expense = self.session.scalar(stmt)
        if not expense:
            raise NotFoundError("Expense not found")
        if expense.user_id != self.user_id:
            raise ForbiddenError("Forbidden")
        return expense

    def create(self, data: ExpenseIn) -> Expense:
        if not data.title.strip():
            raise InvalidInputError("Title is required")
        self._require_category(data.category_id)
        expense = Expense(
            user_id=self.user_id,
            title=data.title,
            amount_cents=data.amount_cents,
            occurred_at=data.occurred_at or utc_now(),
            description=(
                data.description
                if data.description and data.description.strip()
                else None
            ),
            category_id=data.category_id,
        )
        self.session.add(expense)
        self.session.commit()
        logger.info(
            f"expense_created: id={expense.id} user_id={self.user_id} "
            f"category_id={expense.category_id}"
        )
        return self.get(expense.id)

    def get(self, expense_id: int) -> Expense:
        return self._owned(expense_id)

    def update(self, expense_id: int, data: ExpenseUpdate) -> Expense:
        expense = self._owned(expense_id)
        changes = data.changes()
        if "category_id" in changes:
            self._require_category(changes["category_id"])
        if "title" in changes and not changes["title"].strip():
            raise InvalidInputError("Title cannot be empty")

        for field, value in changes.items():
            setattr(expense, field, value)
        self.session.commit()
        logger.info(
            f"expense_updated: id={expense.id} user_id={self.user_id} "
            f"fields={sorted(changes)}"
        )
        self.session.expire(expense, ["category"])
        return self._owned(expense_id)

    def delete(self, expense_id: int) -> None:
        expense = self._owned(expense_id)
        self.session.delete(expense)
        self.session.commit()
        logger.info(f"expense_deleted: id={expense_id} user_id={self.user_id}")

    def _ordered(self):
        return (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.user_id == self.user_id)
            .order_by(Expense.occurred_at.desc(), Expense.id.desc())
        )

    def list_page(self, page: int = 1, page_size: int = 10) -> Page:
        page = max(page, 1)
        page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
        total = self.session.execute(
            select(func.count(Expense.id)).where(Expense.user_id == self.user_id)
        ).scalar_one()
        offset = (page - 1) * page_size
        items: list[Expense] = []
        if offset < total:
            stmt = self._ordered().offset(offset).limit(page_size)
            items = list(self.session.scalars(stmt).all())
        return Page(items=items, page=page, page_size=page_size, total=int(total))

    def all_for_export(self) -> list[Expense]:
        return list(self.session.scalars(self._ordered()).all())


class ReportService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def by_category(self) -> list[dict[str, object]]:
        total = func.sum(Expense.amount_cents)
        stmt = (
            select(
                Expense.category_id.label("category_id"),
                Category.name.label("name"),
                total.label("total"),
            )
            .outerjoin(Category, Category.id == Expense.category_id)
            .where(Expense.user_id == self.user_id)
            .group_by(Expense.category_id, Category.name)
            .order_by(total.desc(), Expense.category_id.asc())
        )
        return [
            {
                "category_id": row.category_id,
                "category": row.name if row.name is not None else "Unknown",
                "total_cents": int(row.total or 0),
            }
            for row in self.session.execute(stmt)
        ]

    def by_month(self) -> list[dict[str, object]]:
        # occurred_at is stored as naive UTC, so these are UTC calendar months
        stmt = select(Expense.occurred_at, Expense.amount_cents).where(
            Expense.user_id == self.user_id
        )
        totals: dict[str, int] = {}
        for row in self.session.execute(stmt):
            key = month_label(row.occurred_at)
            totals[key] = totals.get(key, 0) + int(row.amount_cents)
        return [
            {"month": month, "total_cents": totals[month]}
            for month in sorted(totals, reverse=True)
        ]

    def summary(self) -> dict[str, list[dict[str, object]]]:
        return {
            "by_category": self.by_category(),
            "by_month": self.by_month(),
        }


class CSVService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def export(self) -> str:
        expenses = ExpenseService(self.session, self.user_id).all_for_export()
        logger.info(f"expenses_exported: user_id={self.user_id} rows={len(expenses)}")
        return export_expenses(expenses)
