import logging
from importlib import metadata
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from auth import user_id_from_authorization
from config import get_settings
from csv_utils import cents_to_amount, format_timestamp
from database import SessionLocal
from models import Category, Expense
from schemas import CategoryIn, ExpenseIn, ExpenseUpdate, PageParams
from services import (
    CategoryService,
    ConflictError,
    CSVService,
    ExpenseService,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    ReportService,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        return metadata.version("expense-ledger")
    except metadata.PackageNotFoundError:
        pass
    try:
        import tomllib

        with open(Path(__file__).with_name("pyproject.toml"), "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except (OSError, ValueError):
        return "unknown"


APP_VERSION = _load_app_version()

app = FastAPI(title="Expense Ledger", version=APP_VERSION)
logger.info(f"app_started: version={APP_VERSION}")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_user_id(authorization: Optional[str] = Header(default=None)) -> int:
    user_id = user_id_from_authorization(authorization)
    if user_id is None:
        raise HTTPException(
            status_code=401,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id


def _requires_auth(method: str, path: str) -> bool:
    if path.startswith("/api/expenses"):
        return True
    return path == "/api/categories" and method == "POST"


@app.middleware("http")
async def reject_anonymous_requests(request: Request, call_next):
    # Checked before the request body is parsed.
    if _requires_auth(request.method, request.url.path):
        if user_id_from_authorization(request.headers.get("authorization")) is None:
            return JSONResponse(
                status_code=401,
                content={"detail": "Unauthorized"},
                headers={"WWW-Authenticate": "Bearer"},
            )
    response = await call_next(request)
    response.headers["X-App-Version"] = APP_VERSION
    return response


_STATUS_BY_ERROR: list[tuple[type[ValueError], int]] = [
    (InvalidInputError, 400),
    (ForbiddenError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
]


def http_error(exc: ValueError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        loc = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        msg = str(error.get("msg", "Invalid input"))
        messages.append(f"{loc}: {msg}" if loc else msg)
    return JSONResponse(
        status_code=400, content={"detail": "; ".join(messages) or "Invalid input"}
    )


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(
        f"storage_error: method={request.method} path={request.url.path}",
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def category_payload(category: Category) -> dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "createdAt": format_timestamp(category.created_at),
        "updatedAt": format_timestamp(category.updated_at),
    }


def expense_payload(expense: Expense) -> dict[str, object]:
    return {
        "id": expense.id,
        "title": expense.title,
        "amount": cents_to_amount(expense.amount_cents),
        "date": format_timestamp(expense.occurred_at),
        "description": expense.description,
        "ownerId": expense.user_id,
        "categoryId": expense.category_id,
        "category": (
            {"id": expense.category.id, "name": expense.category.name}
            if expense.category
            else None
        ),
        "createdAt": format_timestamp(expense.created_at),
        "updatedAt": format_timestamp(expense.updated_at),
    }


@app.get("/api/categories")
def list_categories(db: Session = Depends(get_db)):
    return [category_payload(c) for c in CategoryService(db).list_all()]


@app.post(
    "/api/categories", status_code=201, dependencies=[Depends(current_user_id)]
)
def create_category(payload: CategoryIn, db: Session = Depends(get_db)):
    try:
        category = CategoryService(db).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return category_payload(category)


@app.get("/api/expenses")
def list_expenses(
    page: Optional[str] = Query(default=None),
    page_size: Optional[str] = Query(default=None, alias="pageSize"),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    params = PageParams.from_query(page, page_size, get_settings().default_page_size)
    result = ExpenseService(db, user_id).list_page(params.page, params.page_size)
    return {
        "data": [expense_payload(e) for e in result.items],
        "meta": {
            "page": result.page,
            "pageSize": result.page_size,
            "total": result.total,
            "totalPages": result.total_pages,
        },
    }


@app.post("/api/expenses", status_code=201)
def create_expense(
    payload: ExpenseIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        expense = ExpenseService(db, user_id).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return expense_payload(expense)


@app.get("/api/expenses/export")
def export_expenses_endpoint(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    csv_text = CSVService(db, user_id).export()
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="expenses.csv"'},
    )


@app.get("/api/expenses/summary")
def summarize_expenses(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    summary = ReportService(db, user_id).summary()
    return {
        "byCategory": [
            {
                "categoryId": row["category_id"],
                "category": row["category"],
                "total": cents_to_amount(row["total_cents"]),
            }
            for row in summary["by_category"]
        ],
        "monthlyBreakdown": [
            {"month": row["month"], "total": cents_to_amount(row["total_cents"])}
            for row in summary["by_month"]
        ],
    }


@app.get("/api/expenses/{expense_id}")
def get_expense(
    expense_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        expense = ExpenseService(db, user_id).get(expense_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return expense_payload(expense)


@app.put("/api/expenses/{expense_id}")
def update_expense(
    expense_id: int,
    payload: ExpenseUpdate,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        expense = ExpenseService(db, user_id).update(expense_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return expense_payload(expense)


@app.delete("/api/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        ExpenseService(db, user_id).delete(expense_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"message": "Expense deleted successfully"}
