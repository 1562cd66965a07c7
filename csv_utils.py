import csv
import re
from io import StringIO
from typing import Any, Sequence

from models import Transaction


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    if value.startswith(("=", "+", "-", "@", "\t", "\r")):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^http[s]?://",
    ]
    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def format_cents(cents: int) -> str:
    return f"{cents / 100:.2f}"


def export_month_csv(transactions: Sequence[Transaction]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(["Date", "Type", "Category", "Amount", "Note", "Recurring"])
    for txn in transactions:
        writer.writerow(
            [
                txn.date.isoformat(),
                txn.category.type.value if txn.category else "",
                sanitize_csv_value(txn.category.name if txn.category else ""),
                format_cents(txn.amount_cents),
                sanitize_csv_value(txn.note or ""),
                "1" if txn.origin_template_id else "0",
            ]
        )
    return output.getvalue()


def export_trends_csv(points: Sequence[dict[str, Any]]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(["Month", "Income", "Expenses", "Balance", "SavingsGoal"])
    for point in points:
        writer.writerow(
            [
                point["month_key"],
                format_cents(point["income_cents"]),
                format_cents(point["expenses_cents"]),
                format_cents(point["balance_cents"]),
                format_cents(point["savings_goal_cents"]),
            ]
        )
    return output.getvalue()
