from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from errors import ConflictError, NotFoundError, StorageError, ValidationError
from models import (
    Budget,
    Category,
    Month,
    MonthlyGoal,
    RecurringApplication,
    RecurringTemplate,
    Transaction,
    TransactionType,
)
from months import MonthKey, parse_month_key
from recurrence import (
    ApplicationLedger,
    ApplyResult,
    RecurringEngine,
    ensure_goal_row,
    ensure_month,
)
from schemas import (
    BudgetCopyIn,
    BudgetIn,
    CategoryIn,
    ExportCategory,
    GoalIn,
    MonthExport,
    MonthImportIn,
    RecurringTemplateIn,
    RecurringTemplateUpdate,
    TransactionIn,
)

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    ("Salary", TransactionType.income, "#08F850"),
    ("Side Gigs", TransactionType.income, "#58D8B0"),
    ("Groceries", TransactionType.expense, "#E82888"),
    ("Transport", TransactionType.expense, "#7028F8"),
    ("Eating Out", TransactionType.expense, "#F0A810"),
    ("Misc", TransactionType.expense, "#E02020"),
]


def seed_default_categories(session: Session) -> int:
    count = session.execute(select(func.count(Category.id))).scalar_one() or 0
    if count:
        return 0
    for name, type_, color in DEFAULT_CATEGORIES:
        session.add(Category(name=name, type=type_, color=color))
    session.commit()
    logger.info(f"seed_categories: created={len(DEFAULT_CATEGORIES)}")
    return len(DEFAULT_CATEGORIES)


def category_payload(category: Category) -> dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "color": category.color,
    }


def transaction_payload(txn: Transaction) -> dict[str, Any]:
    return {
        "id": txn.id,
        "month_key": txn.month.month_key if txn.month else None,
        "category_id": txn.category_id,
        "category_name": txn.category.name if txn.category else None,
        "category_type": txn.category.type.value if txn.category else None,
        "category_color": txn.category.color if txn.category else None,
        "amount_cents": txn.amount_cents,
        "date": txn.date.isoformat(),
        "note": txn.note,
        "origin_template_id": txn.origin_template_id,
    }


def template_payload(
    template: RecurringTemplate, applied: Optional[bool] = None
) -> dict[str, Any]:
    data = {
        "id": template.id,
        "category_id": template.category_id,
        "category_name": template.category.name if template.category else None,
        "category_type": template.category.type.value if template.category else None,
        "category_color": template.category.color if template.category else None,
        "amount_cents": template.amount_cents,
        "day_of_month": template.day_of_month,
        "note": template.note,
        "enabled": template.enabled,
        "variable": template.variable,
    }
    if applied is not None:
        data["applied"] = applied
    return data


class MonthService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_keys(self) -> list[str]:
        stmt = select(Month.month_key).order_by(Month.month_key.desc())
        return list(self.session.scalars(stmt).all())

    def ensure(self, month_key: str) -> Month:
        month = ensure_month(self.session, month_key)
        self.session.commit()
        return month

    def get(self, month_key: str) -> Month:
        key = parse_month_key(month_key).key
        month = self.session.scalar(select(Month).where(Month.month_key == key))
        if not month:
            raise NotFoundError(f"Month {key} not found")
        return month

    def has_data(self, month: Month) -> bool:
        txn_count = self.session.execute(
            select(func.count(Transaction.id)).where(Transaction.month_id == month.id)
        ).scalar_one()
        budget_count = self.session.execute(
            select(func.count(Budget.id)).where(Budget.month_id == month.id)
        ).scalar_one()
        return bool(txn_count or budget_count)

    def reset(self, month_key: str, *, commit: bool = True) -> dict[str, int]:
        """Remove everything recorded for a month, keeping the month itself."""
        month = self.get(month_key)
        removed_txns = self.session.execute(
            delete(Transaction).where(Transaction.month_id == month.id)
        ).rowcount
        removed_budgets = self.session.execute(
            delete(Budget).where(Budget.month_id == month.id)
        ).rowcount
        self.session.execute(delete(MonthlyGoal).where(MonthlyGoal.month_id == month.id))
        removed_runs = self.session.execute(
            delete(RecurringApplication).where(
                RecurringApplication.month_key == month.month_key
            )
        ).rowcount
        self.session.expire_all()
        if commit:
            self.session.commit()
        logger.info(
            f"month_reset: month={month.month_key} transactions={removed_txns} "
            f"budgets={removed_budgets} recurring_runs={removed_runs}"
        )
        return {
            "transactions": removed_txns or 0,
            "budgets": removed_budgets or 0,
            "recurring_applications": removed_runs or 0,
        }


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Category]:
        stmt = select(Category).order_by(Category.type, Category.name)
        return list(self.session.scalars(stmt).all())

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFoundError("Category not found")
        return category

    def find(self, name: str, type_: TransactionType) -> Optional[Category]:
        return self.session.scalar(
            select(Category).where(
                Category.type == type_,
                func.lower(Category.name) == name.strip().lower(),
            )
        )

    def create(self, data: CategoryIn) -> Category:
        if self.find(data.name, data.type):
            raise ConflictError("Category with this name already exists")
        category = Category(name=data.name, type=data.type, color=data.color)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self.get(category_id)
        existing = self.find(data.name, data.type)
        if existing and existing.id != category.id:
            raise ConflictError("Category with this name already exists")
        if data.type != category.type:
            in_use = self.session.execute(
                select(func.count(Transaction.id)).where(
                    Transaction.category_id == category.id
                )
            ).scalar_one()
            if in_use:
                raise ConflictError("Category in use. Its type cannot change.")
        category.name = data.name
        category.type = data.type
        category.color = data.color
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        txn_count = self.session.execute(
            select(func.count(Transaction.id)).where(
                Transaction.category_id == category.id
            )
        ).scalar_one()
        if txn_count:
            raise ConflictError("Category in use. Delete related transactions first.")
        template_count = self.session.execute(
            select(func.count(RecurringTemplate.id)).where(
                RecurringTemplate.category_id == category.id
            )
        ).scalar_one()
        if template_count:
            raise ConflictError(
                "Category in use by recurring templates. Delete them first."
            )
        self.session.execute(delete(Budget).where(Budget.category_id == category.id))
        self.session.delete(category)
        self.session.commit()


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_for_month(self, month_key: str) -> list[Transaction]:
        month = ensure_month(self.session, month_key)
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category), joinedload(Transaction.month))
            .where(Transaction.month_id == month.id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        transactions = list(self.session.scalars(stmt).all())
        self.session.commit()
        return transactions

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def _check(self, data: TransactionIn) -> MonthKey:
        month = parse_month_key(data.month_key)
        if not month.contains(data.date):
            raise ValidationError(
                f"Transaction date {data.date.isoformat()} is outside {month.key}"
            )
        if not self.session.get(Category, data.category_id):
            raise NotFoundError("Category not found")
        return month

    def create(self, data: TransactionIn) -> Transaction:
        month = self._check(data)
        month_row = ensure_month(self.session, month.key)
        txn = Transaction(
            month_id=month_row.id,
            category_id=data.category_id,
            amount_cents=data.amount_cents,
            date=data.date,
            note=data.note,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        month = self._check(data)
        month_row = ensure_month(self.session, month.key)
        txn.month_id = month_row.id
        txn.category_id = data.category_id
        txn.amount_cents = data.amount_cents
        txn.date = data.date
        txn.note = data.note
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()


class BudgetService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_for_month(self, month_key: str) -> list[Budget]:
        month = ensure_month(self.session, month_key)
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.month_id == month.id)
            .order_by(Budget.category_id)
        )
        budgets = list(self.session.scalars(stmt).all())
        self.session.commit()
        return budgets

    def set(self, data: BudgetIn) -> Budget:
        category = self.session.get(Category, data.category_id)
        if not category:
            raise NotFoundError("Category not found")
        if category.type != TransactionType.expense:
            raise ValidationError("Budgets can only be set for expense categories")
        month = ensure_month(self.session, data.month_key)
        budget = self.session.scalar(
            select(Budget).where(
                Budget.month_id == month.id, Budget.category_id == category.id
            )
        )
        if budget:
            budget.amount_cents = data.amount_cents
        else:
            budget = Budget(
                month_id=month.id,
                category_id=category.id,
                amount_cents=data.amount_cents,
            )
            self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def clear(self, month_key: str, category_id: int) -> None:
        month = MonthService(self.session).get(month_key)
        result = self.session.execute(
            delete(Budget).where(
                Budget.month_id == month.id, Budget.category_id == category_id
            )
        )
        if not result.rowcount:
            raise NotFoundError("Budget not found")
        self.session.commit()

    def copy(self, data: BudgetCopyIn) -> int:
        if data.from_month == data.to_month:
            raise ValidationError("Source and target month must differ")
        source = ensure_month(self.session, data.from_month)
        target = ensure_month(self.session, data.to_month)
        source_budgets = self.session.scalars(
            select(Budget).where(Budget.month_id == source.id)
        ).all()
        existing = {
            b.category_id: b
            for b in self.session.scalars(
                select(Budget).where(Budget.month_id == target.id)
            ).all()
        }
        for budget in source_budgets:
            current = existing.get(budget.category_id)
            if current:
                current.amount_cents = budget.amount_cents
            else:
                self.session.add(
                    Budget(
                        month_id=target.id,
                        category_id=budget.category_id,
                        amount_cents=budget.amount_cents,
                    )
                )
        self.session.commit()
        return len(source_budgets)


class GoalService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, month_key: str) -> int:
        month = ensure_month(self.session, month_key)
        goal = ensure_goal_row(self.session, month)
        self.session.commit()
        return goal.savings_goal_cents

    def set(self, data: GoalIn) -> MonthlyGoal:
        month = ensure_month(self.session, data.month_key)
        goal = ensure_goal_row(self.session, month)
        goal.savings_goal_cents = data.savings_goal_cents
        self.session.commit()
        return goal


class SummaryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _totals_by_month(self, month_ids: list[int]) -> dict[int, tuple[int, int]]:
        if not month_ids:
            return {}
        income = func.coalesce(
            func.sum(
                case(
                    (Category.type == TransactionType.income, Transaction.amount_cents),
                    else_=0,
                )
            ),
            0,
        )
        expenses = func.coalesce(
            func.sum(
                case(
                    (Category.type == TransactionType.expense, Transaction.amount_cents),
                    else_=0,
                )
            ),
            0,
        )
        rows = self.session.execute(
            select(Transaction.month_id, income, expenses)
            .join(Category, Category.id == Transaction.category_id)
            .where(Transaction.month_id.in_(month_ids))
            .group_by(Transaction.month_id)
        ).all()
        return {row[0]: (int(row[1] or 0), int(row[2] or 0)) for row in rows}

    def month_summary(self, month_key: str) -> dict[str, Any]:
        month = ensure_month(self.session, month_key)
        goal = ensure_goal_row(self.session, month)
        income, expenses = self._totals_by_month([month.id]).get(month.id, (0, 0))

        amount = func.sum(Transaction.amount_cents).label("amount")
        breakdown_rows = self.session.execute(
            select(Category.id, Category.name, Category.type, Category.color, amount)
            .join(Transaction, Transaction.category_id == Category.id)
            .where(Transaction.month_id == month.id)
            .group_by(Category.id, Category.name, Category.type, Category.color)
            .order_by(Category.type, amount.desc())
        ).all()
        breakdown = [
            {
                "id": row.id,
                "name": row.name,
                "type": row.type.value,
                "color": row.color,
                "amount_cents": int(row.amount or 0),
            }
            for row in breakdown_rows
        ]
        expense_rows = [b for b in breakdown if b["type"] == TransactionType.expense.value]
        highest = max(expense_rows, key=lambda b: b["amount_cents"], default=None)
        self.session.commit()
        return {
            "month_key": month.month_key,
            "total_income_cents": income,
            "total_expenses_cents": expenses,
            "balance_cents": income - expenses,
            "savings_goal_cents": goal.savings_goal_cents,
            "highest_spend": highest,
            "breakdown": breakdown,
        }

    def trends(self, months: int = 6) -> list[dict[str, Any]]:
        months = min(max(months, 1), 120)
        rows = self.session.scalars(
            select(Month)
            .options(joinedload(Month.goal))
            .order_by(Month.month_key.desc())
            .limit(months)
        ).all()
        rows = list(reversed(rows))
        totals = self._totals_by_month([m.id for m in rows])
        points = []
        for month in rows:
            income, expenses = totals.get(month.id, (0, 0))
            points.append(
                {
                    "month_key": month.month_key,
                    "income_cents": income,
                    "expenses_cents": expenses,
                    "balance_cents": income - expenses,
                    "savings_goal_cents": month.goal.savings_goal_cents
                    if month.goal
                    else 0,
                }
            )
        return points


class RecurringTemplateService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, template_id: int) -> RecurringTemplate:
        template = self.session.get(RecurringTemplate, template_id)
        if not template:
            raise NotFoundError("Recurring template not found")
        return template

    def list_all(self) -> list[RecurringTemplate]:
        stmt = (
            select(RecurringTemplate)
            .options(joinedload(RecurringTemplate.category))
            .order_by(RecurringTemplate.id)
        )
        return list(self.session.scalars(stmt).all())

    def list_enabled(self) -> list[RecurringTemplate]:
        return RecurringEngine(self.session).enabled_templates()

    def applied_ids(self, month_key: str) -> set[int]:
        key = parse_month_key(month_key).key
        return ApplicationLedger(self.session).applied_template_ids(key)

    def _require_category(self, category_id: int) -> None:
        if not self.session.get(Category, category_id):
            raise NotFoundError("Category not found")

    def create(self, data: RecurringTemplateIn) -> RecurringTemplate:
        self._require_category(data.category_id)
        template = RecurringTemplate(
            category_id=data.category_id,
            amount_cents=data.amount_cents,
            day_of_month=data.day_of_month,
            note=(data.note or "").strip() or None,
            enabled=data.enabled,
            variable=data.variable,
        )
        self.session.add(template)
        self.session.commit()
        self.session.refresh(template)
        logger.info(
            f"recurring_template_created: id={template.id} variable={template.variable}"
        )
        return template

    def update(self, template_id: int, data: RecurringTemplateUpdate) -> RecurringTemplate:
        template = self.get(template_id)
        changes = data.model_dump(exclude_unset=True)
        for name in ("category_id", "amount_cents", "day_of_month", "enabled", "variable"):
            if name in changes and changes[name] is None:
                raise ValidationError(f"{name} cannot be null")
        if "category_id" in changes and changes["category_id"] != template.category_id:
            self._require_category(changes["category_id"])

        variable = changes.get("variable", template.variable)
        amount_cents = changes.get("amount_cents", template.amount_cents)
        if not variable and amount_cents <= 0:
            raise ValidationError("Fixed recurring templates need an amount above zero")

        if "note" in changes:
            changes["note"] = (changes["note"] or "").strip() or None
        for name, value in changes.items():
            setattr(template, name, value)
        self.session.commit()
        self.session.refresh(template)
        return template

    def delete(self, template_id: int) -> None:
        template = self.get(template_id)
        # Generated transactions stay; only their link to the template goes.
        self.session.execute(
            update(Transaction)
            .where(Transaction.origin_template_id == template.id)
            .values(origin_template_id=None)
        )
        self.session.execute(
            delete(RecurringApplication).where(
                RecurringApplication.template_id == template.id
            )
        )
        self.session.delete(template)
        self.session.commit()
        logger.info(f"recurring_template_deleted: id={template_id}")

    def applications(self, template_id: int) -> list[dict[str, Any]]:
        template = self.get(template_id)
        rows = self.session.scalars(
            select(RecurringApplication)
            .where(RecurringApplication.template_id == template.id)
            .order_by(RecurringApplication.month_key.desc())
        ).all()
        return [
            {"month_key": row.month_key, "applied_at": row.applied_at.isoformat()}
            for row in rows
        ]

    def apply(
        self, month_key: str, overrides: Optional[Mapping[Any, Any]] = None
    ) -> ApplyResult:
        try:
            result = RecurringEngine(self.session).apply(month_key, overrides)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageError(f"Applying recurring templates to {month_key} failed") from exc
        except Exception:
            self.session.rollback()
            raise
        return result


@dataclass
class ImportSummary:
    month_key: str
    transactions: int
    budgets: int
    categories_created: int
    overwritten: bool


class MonthTransferService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def export(self, month_key: str) -> dict[str, Any]:
        month = ensure_month(self.session, month_key)
        goal = ensure_goal_row(self.session, month)
        transactions = self.session.scalars(
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.month_id == month.id)
            .order_by(Transaction.date, Transaction.id)
        ).all()
        budgets = self.session.scalars(
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.month_id == month.id)
            .order_by(Budget.category_id)
        ).all()
        self.session.commit()

        def category(c: Category) -> dict[str, str]:
            return {"name": c.name, "type": c.type.value, "color": c.color}

        return {
            "month_key": month.month_key,
            "savings_goal_cents": goal.savings_goal_cents,
            "transactions": [
                {
                    "date": t.date.isoformat(),
                    "amount_cents": t.amount_cents,
                    "note": t.note,
                    "category": category(t.category),
                }
                for t in transactions
            ],
            "budgets": [
                {"amount_cents": b.amount_cents, "category": category(b.category)}
                for b in budgets
            ],
        }

    def export_transactions(self, month_key: str) -> list[Transaction]:
        month = ensure_month(self.session, month_key)
        transactions = list(
            self.session.scalars(
                select(Transaction)
                .options(joinedload(Transaction.category))
                .where(Transaction.month_id == month.id)
                .order_by(Transaction.date, Transaction.id)
            ).all()
        )
        self.session.commit()
        return transactions

    def _resolve_category(
        self, data: ExportCategory, cache: dict[tuple[str, TransactionType], Category]
    ) -> tuple[Category, bool]:
        cache_key = (data.name.strip().lower(), data.type)
        if cache_key in cache:
            return cache[cache_key], False
        categories = CategoryService(self.session)
        category = categories.find(data.name, data.type)
        created = False
        if not category:
            category = Category(name=data.name.strip(), type=data.type, color=data.color)
            self.session.add(category)
            self.session.flush()
            created = True
        cache[cache_key] = category
        return category, created

    def import_month(self, data: MonthImportIn) -> ImportSummary:
        payload: MonthExport = data.payload
        month_key = parse_month_key(payload.month_key)
        for item in payload.transactions:
            if not month_key.contains(item.date):
                raise ValidationError(
                    f"Transaction date {item.date.isoformat()} is outside {month_key.key}"
                )
        for item in payload.budgets:
            if item.category.type != TransactionType.expense:
                raise ValidationError("Budgets can only be set for expense categories")

        month = ensure_month(self.session, month_key.key)
        months = MonthService(self.session)
        overwritten = False
        if months.has_data(month):
            if not data.overwrite:
                self.session.rollback()
                raise ConflictError(
                    f"Month {month_key.key} already has data. Import with overwrite to replace it."
                )
            months.reset(month_key.key, commit=False)
            overwritten = True
            month = ensure_month(self.session, month_key.key)

        cache: dict[tuple[str, TransactionType], Category] = {}
        created = 0
        for item in payload.transactions:
            category, was_created = self._resolve_category(item.category, cache)
            created += int(was_created)
            self.session.add(
                Transaction(
                    month_id=month.id,
                    category_id=category.id,
                    amount_cents=item.amount_cents,
                    date=item.date,
                    note=item.note,
                )
            )
        budget_ids: set[int] = set()
        for item in payload.budgets:
            category, was_created = self._resolve_category(item.category, cache)
            created += int(was_created)
            if category.id in budget_ids:
                raise ValidationError(f"Duplicate budget for category {category.name}")
            budget_ids.add(category.id)
            self.session.add(
                Budget(
                    month_id=month.id,
                    category_id=category.id,
                    amount_cents=item.amount_cents,
                )
            )
        goal = ensure_goal_row(self.session, month)
        goal.savings_goal_cents = payload.savings_goal_cents
        self.session.commit()
        logger.info(
            f"month_import: month={month_key.key} transactions={len(payload.transactions)} "
            f"budgets={len(payload.budgets)} overwritten={overwritten}"
        )
        return ImportSummary(
            month_key=month_key.key,
            transactions=len(payload.transactions),
            budgets=len(payload.budgets),
            categories_created=created,
            overwritten=overwritten,
        )
