import csv
from datetime import datetime
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Sequence, Union

from models import Expense

MAX_AMOUNT_CENTS = 10_000_000_000_000

CSV_HEADER = ["Date", "Title", "Category", "Amount", "Description"]

AmountInput = Union[str, int, float, Decimal]


def parse_amount(value: AmountInput) -> int:
    """Convert a user supplied amount into integer cents.

    Accepts JSON numbers and numeric strings ("12.5", "12,50", "$12.50").
    Anything that is not a finite number with at most two decimal places
    raises ``ValueError``.
    """
    if isinstance(value, bool):
        raise ValueError("Invalid amount")
    if isinstance(value, float):
        # repr keeps 12.5 as 12.5 rather than the binary expansion
        clean = repr(value)
    elif isinstance(value, (int, Decimal)):
        clean = str(value)
    elif isinstance(value, str):
        clean = value.strip().replace("€", "").replace("$", "").replace(" ", "")
        clean = clean.replace(",", ".")
        if clean.count(".") > 1:
            parts = clean.split(".")
            clean = "".join(parts[:-1]) + "." + parts[-1]
    else:
        raise ValueError("Invalid amount")
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    if abs(amount) * 100 > MAX_AMOUNT_CENTS:
        raise ValueError("Amount is too large")
    cents = amount * 100
    if cents != cents.to_integral_value():
        raise ValueError("Amount cannot have more than two decimal places")
    cents_int = int(cents)
    if cents_int < 0:
        raise ValueError("Amount cannot be negative")
    return cents_int


def cents_to_amount(cents: int) -> float:
    return cents / 100


def format_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%S") + f".{value.microsecond // 1000:03d}Z"


def export_expenses(expenses: Sequence[Expense]) -> str:
    output = StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for expense in expenses:
        writer.writerow(
            [
                format_timestamp(expense.occurred_at),
                expense.title,
                expense.category.name if expense.category else "",
                f"{expense.amount_cents / 100:.2f}",
                expense.description or "",
            ]
        )
    return output.getvalue()
