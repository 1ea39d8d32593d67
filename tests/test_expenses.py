from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from models import Expense
from schemas import CategoryIn, ExpenseIn, ExpenseUpdate
from services import CategoryService, ExpenseService, ForbiddenError, NotFoundError

OWNER = 1
OTHER = 2


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def add_expense(session, category_id: int, **overrides) -> Expense:
    payload = {
        "title": "Lunch",
        "amount": "12.50",
        "categoryId": category_id,
        "date": "2024-03-05",
    }
    payload.update(overrides)
    user_id = payload.pop("user_id", OWNER)
    return ExpenseService(session, user_id).create(ExpenseIn.model_validate(payload))


def test_create_sets_owner_and_loads_category() -> None:
    session = make_session()
    food = CategoryService(session).create(CategoryIn(name="Food"))

    expense = add_expense(session, food.id, description="Team lunch")

    assert expense.user_id == OWNER
    assert expense.title == "Lunch"
    assert expense.amount_cents == 1250
    assert expense.occurred_at == datetime(2024, 3, 5)
    assert expense.description == "Team lunch"
    assert expense.category.name == "Food"


def test_create_defaults_date_to_now_and_description_to_none() -> None:
    session = make_session()
    food = CategoryService(session).create(CategoryIn(name="Food"))
    before = datetime.utcnow() - timedelta(seconds=1)

    expense = ExpenseService(session, OWNER).create(
        ExpenseIn(title="Coffee", amount_cents="3", category_id=food.id, description="")
    )

    assert expense.occurred_at >= before
    assert expense.occurred_at <= datetime.utcnow() + timedelta(seconds=1)
    assert expense.description is None
    assert expense.amount_cents == 300


def test_create_with_unknown_category_is_not_found() -> None:
    session = make_session()

    with pytest.raises(NotFoundError, match="Category not found"):
        add_expense(session, 42)
    assert session.query(Expense).count() == 0


@pytest.mark.parametrize(
    "overrides",
    [
        {"title": ""},
        {"amount": "abc"},
        {"amount": -1},
        {"amount": "1.005"},
        {"amount": "NaN"},
        {"amount": True},
        {"date": "not-a-date"},
    ],
)
def test_create_rejects_invalid_payloads(overrides) -> None:
    payload = {"title": "Lunch", "amount": 1, "categoryId": 1}
    payload.update(overrides)
    with pytest.raises(ValidationError):
        ExpenseIn.model_validate(payload)


@pytest.mark.parametrize("missing", ["title", "amount", "categoryId"])
def test_create_requires_title_amount_and_category(missing) -> None:
    payload = {"title": "Lunch", "amount": 1, "categoryId": 1}
    payload.pop(missing)
    with pytest.raises(ValidationError):
        ExpenseIn.model_validate(payload)


def test_get_distinguishes_missing_from_foreign() -> None:
    session = make_session()
    food = CategoryService(session).create(CategoryIn(name="Food"))
    expense = add_expense(session, food.id)

    with pytest.raises(ForbiddenError):
        ExpenseService(session, OTHER).get(expense.id)
    with pytest.raises(NotFoundError):
        ExpenseService(session, OTHER).get(expense.id + 100)
    with pytest.raises(NotFoundError):
        ExpenseService(session, OWNER).get(expense.id + 100)

    assert ExpenseService(session, OWNER).get(expense.id).id == expense.id


def test_non_owner_cannot_update_or_delete() -> None:
    session = make_session()
    food = CategoryService(session).create(CategoryIn(name="Food"))
    expense = add_expense(session, food.id)
    intruder = ExpenseService(session, OTHER)

    with pytest.raises(ForbiddenError):
        intruder.update(expense.id, ExpenseUpdate.model_validate({"title": "Mine"}))
    with pytest.raises(ForbiddenError):
        intruder.delete(expense.id)

    stored = ExpenseService(session, OWNER).get(expense.id)
    assert stored.title == "Lunch"


def test_partial_update_only_touches_present_fields() -> None:
    session = make_session()
    food = CategoryService(session).create(CategoryIn(name="Food"))
    expense = add_expense(session, food.id, description="Team lunch")

    updated = ExpenseService(session, OWNER).update(
        expense.id, ExpenseUpdate.model_validate({"amount": 20})
    )

    assert updated.amount_cents == 2000
    assert updated.title == "Lunch"
    assert updated.category_id == food.id
    assert updated.occurred_at == datetime(2024, 3, 5)
    assert updated.description == "Team lunch"
    assert updated.user_id == OWNER


def test_update_with_empty_description_clears_it() -> None:
    session = make_session()
    food = CategoryService(session).create(CategoryIn(name="Food"))
    expense = add_expense(session, food.id, description="Team lunch")

    updated = ExpenseService(session, OWNER).update(
        expense.id, ExpenseUpdate.model_validate({"description": ""})
    )

    assert updated.description is None


def test_update_moves_expense_to_another_category() -> None:
    session = make_session()
    categories = CategoryService(session)
    food = categories.create(CategoryIn(name="Food"))
    travel = categories.create(CategoryIn(name="Travel"))
    expense = add_expense(session, food.id)

    updated = ExpenseService(session, OWNER).update(
        expense.id,
        ExpenseUpdate.model_validate({"categoryId": travel.id, "date": "2024-04-01"}),
    )

    assert updated.category_id == travel.id
    assert updated.category.name == "Travel"
    assert updated.occurred_at == datetime(2024, 4, 1)


def test_update_with_unknown_category_changes_nothing() -> None:
    session = make_session()
    food = CategoryService(session).create(CategoryIn(name="Food"))
    expense = add_expense(session, food.id)

    with pytest.raises(NotFoundError, match="Category not found"):
        ExpenseService(session, OWNER).update(
            expense.id,
            ExpenseUpdate.model_validate(
                {"title": "Dinner", "amount": 99, "categoryId": 999}
            ),
        )

    session.expire_all()
    stored = ExpenseService(session, OWNER).get(expense.id)
    assert stored.title == "Lunch"
    assert stored.amount_cents == 1250
    assert stored.category_id == food.id


def test_update_rejects_explicit_null_for_required_fields() -> None:
    with pytest.raises(ValidationError, match="title cannot be null"):
        ExpenseUpdate.model_validate({"title": None})
    with pytest.raises(ValidationError, match="amount cannot be null"):
        ExpenseUpdate.model_validate({"amount": None})

    update = ExpenseUpdate.model_validate({"description": None})
    assert update.changes() == {"description": None}


def test_delete_is_permanent() -> None:
    session = make_session()
    food = CategoryService(session).create(CategoryIn(name="Food"))
    expense = add_expense(session, food.id)
    service = ExpenseService(session, OWNER)

    service.delete(expense.id)

    with pytest.raises(NotFoundError):
        service.get(expense.id)
    with pytest.raises(NotFoundError):
        service.delete(expense.id)


def test_pages_cover_every_expense_once_in_descending_date_order() -> None:
    session = make_session()
    food = CategoryService(session).create(CategoryIn(name="Food"))
    for day in [3, 1, 7, 5, 2, 6, 4]:
        add_expense(session, food.id, title=f"Day {day}", date=f"2024-01-0{day}")
    add_expense(session, food.id, title="Someone else", user_id=OTHER)
    service = ExpenseService(session, OWNER)

    first = service.list_page(1, 3)
    assert first.total == 7
    assert first.total_pages == 3

    titles = []
    for page in range(1, first.total_pages + 1):
        titles.extend(e.title for e in service.list_page(page, 3).items)

    assert titles == [f"Day {day}" for day in [7, 6, 5, 4, 3, 2, 1]]
    assert service.list_page(4, 3).items == []


def test_page_arguments_are_clamped() -> None:
    session = make_session()
    service = ExpenseService(session, OWNER)

    empty = service.list_page(0, 0)
    assert empty.page == 1
    assert empty.page_size == 1
    assert empty.total == 0
    assert empty.total_pages == 1

    assert service.list_page(-3, 1000).page_size == 100


def test_export_listing_is_unpaginated_and_owner_scoped() -> None:
    session = make_session()
    food = CategoryService(session).create(CategoryIn(name="Food"))
    for day in range(1, 4):
        add_expense(session, food.id, date=f"2024-02-0{day}")
    add_expense(session, food.id, user_id=OTHER)

    rows = ExpenseService(session, OWNER).all_for_export()

    assert len(rows) == 3
    assert [r.occurred_at.day for r in rows] == [3, 2, 1]
    assert all(r.user_id == OWNER for r in rows)


def test_ids_beyond_storage_range_are_not_found() -> None:
    session = make_session()
    food = CategoryService(session).create(CategoryIn(name="Food"))
    add_expense(session, food.id)
    service = ExpenseService(session, OWNER)
    huge = 2**64

    assert CategoryService(session).exists(huge) is False
    with pytest.raises(NotFoundError):
        service.get(huge)
    with pytest.raises(NotFoundError):
        service.delete(huge)
    with pytest.raises(NotFoundError, match="Category not found"):
        add_expense(session, huge)

    far = service.list_page(huge, 10)
    assert far.items == []
    assert far.total == 1


def test_title_and_description_keep_surrounding_whitespace() -> None:
    session = make_session()
    food = CategoryService(session).create(CategoryIn(name="Food"))

    expense = add_expense(session, food.id, title=" Lunch ", description=" note ")

    assert expense.title == " Lunch "
    assert expense.description == " note "
    with pytest.raises(ValidationError):
        ExpenseIn.model_validate({"title": "  ", "amount": 1, "categoryId": food.id})
    assert ExpenseUpdate.model_validate({"description": "  "}).changes() == {
        "description": None
    }
