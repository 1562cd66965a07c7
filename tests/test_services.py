from datetime import date

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from errors import ConflictError, NotFoundError, ValidationError
from models import Budget, Category, Month, RecurringApplication, Transaction, TransactionType
from schemas import (
    BudgetCopyIn,
    BudgetIn,
    CategoryIn,
    GoalIn,
    MonthExport,
    MonthImportIn,
    RecurringTemplateIn,
    TransactionIn,
)
from services import (
    BudgetService,
    CategoryService,
    GoalService,
    MonthService,
    MonthTransferService,
    RecurringTemplateService,
    SummaryService,
    TransactionService,
    seed_default_categories,
)


def _categories(session: Session) -> tuple[Category, Category]:
    service = CategoryService(session)
    salary = service.create(CategoryIn(name="Salary", type=TransactionType.income))
    food = service.create(CategoryIn(name="Groceries", type=TransactionType.expense))
    return salary, food


def test_seed_default_categories_runs_once(engine):
    with Session(engine) as session:
        assert seed_default_categories(session) == 6
        assert seed_default_categories(session) == 0
        assert session.scalar(select(func.count(Category.id))) == 6


def test_category_names_unique_per_type_case_insensitive(engine):
    with Session(engine) as session:
        service = CategoryService(session)
        service.create(CategoryIn(name="Misc", type=TransactionType.expense))
        with pytest.raises(ConflictError):
            service.create(CategoryIn(name="  misc ", type=TransactionType.expense))
        other = service.create(CategoryIn(name="Misc", type=TransactionType.income))
        assert other.id


def test_category_delete_blocked_while_referenced(engine):
    with Session(engine) as session:
        salary, food = _categories(session)
        TransactionService(session).create(
            TransactionIn(
                month_key="2024-03", category_id=salary.id, amount_cents=100, date=date(2024, 3, 1)
            )
        )
        RecurringTemplateService(session).create(
            RecurringTemplateIn(category_id=food.id, amount_cents=500, day_of_month=3)
        )
        categories = CategoryService(session)
        with pytest.raises(ConflictError):
            categories.delete(salary.id)
        with pytest.raises(ConflictError):
            categories.delete(food.id)
        with pytest.raises(NotFoundError):
            categories.delete(9999)


def test_transaction_date_must_fall_in_month(engine):
    with Session(engine) as session:
        salary, _ = _categories(session)
        service = TransactionService(session)
        with pytest.raises(ValidationError):
            service.create(
                TransactionIn(
                    month_key="2024-03",
                    category_id=salary.id,
                    amount_cents=100,
                    date=date(2024, 4, 1),
                )
            )
        with pytest.raises(NotFoundError):
            service.create(
                TransactionIn(
                    month_key="2024-03", category_id=999, amount_cents=100, date=date(2024, 3, 1)
                )
            )


def test_transaction_crud(engine):
    with Session(engine) as session:
        salary, food = _categories(session)
        service = TransactionService(session)
        txn = service.create(
            TransactionIn(
                month_key="2024-03",
                category_id=food.id,
                amount_cents=4200,
                date=date(2024, 3, 9),
                note="market",
            )
        )
        service.update(
            txn.id,
            TransactionIn(
                month_key="2024-04",
                category_id=food.id,
                amount_cents=4300,
                date=date(2024, 4, 2),
            ),
        )
        assert service.list_for_month("2024-03") == []
        (moved,) = service.list_for_month("2024-04")
        assert moved.amount_cents == 4300
        assert moved.note is None

        service.delete(txn.id)
        with pytest.raises(NotFoundError):
            service.get(txn.id)


def test_budgets_only_for_expense_categories(engine):
    with Session(engine) as session:
        salary, food = _categories(session)
        budgets = BudgetService(session)
        with pytest.raises(ValidationError):
            budgets.set(BudgetIn(month_key="2024-03", category_id=salary.id, amount_cents=10))
        budgets.set(BudgetIn(month_key="2024-03", category_id=food.id, amount_cents=10))
        budgets.set(BudgetIn(month_key="2024-03", category_id=food.id, amount_cents=25))
        (budget,) = budgets.list_for_month("2024-03")
        assert budget.amount_cents == 25

        budgets.clear("2024-03", food.id)
        assert budgets.list_for_month("2024-03") == []
        with pytest.raises(NotFoundError):
            budgets.clear("2024-03", food.id)


def test_copy_budgets_overwrites_target(engine):
    with Session(engine) as session:
        _, food = _categories(session)
        transport = CategoryService(session).create(
            CategoryIn(name="Transport", type=TransactionType.expense)
        )
        budgets = BudgetService(session)
        budgets.set(BudgetIn(month_key="2024-03", category_id=food.id, amount_cents=300))
        budgets.set(BudgetIn(month_key="2024-03", category_id=transport.id, amount_cents=80))
        budgets.set(BudgetIn(month_key="2024-04", category_id=food.id, amount_cents=1))

        copied = budgets.copy(BudgetCopyIn(from_month="2024-03", to_month="2024-04"))

        assert copied == 2
        amounts = {b.category_id: b.amount_cents for b in budgets.list_for_month("2024-04")}
        assert amounts == {food.id: 300, transport.id: 80}
        with pytest.raises(ValidationError):
            budgets.copy(BudgetCopyIn(from_month="2024-04", to_month="2024-04"))


def test_summary_and_trends(engine):
    with Session(engine) as session:
        salary, food = _categories(session)
        txns = TransactionService(session)
        for month_key, day, category, cents in [
            ("2024-02", date(2024, 2, 1), salary, 200000),
            ("2024-02", date(2024, 2, 3), food, 50000),
            ("2024-03", date(2024, 3, 1), salary, 210000),
            ("2024-03", date(2024, 3, 4), food, 12000),
            ("2024-03", date(2024, 3, 5), food, 3000),
        ]:
            txns.create(
                TransactionIn(
                    month_key=month_key, category_id=category.id, amount_cents=cents, date=day
                )
            )
        GoalService(session).set(GoalIn(month_key="2024-03", savings_goal_cents=50000))

        summary = SummaryService(session).month_summary("2024-03")
        assert summary["total_income_cents"] == 210000
        assert summary["total_expenses_cents"] == 15000
        assert summary["balance_cents"] == 195000
        assert summary["savings_goal_cents"] == 50000
        assert summary["highest_spend"]["name"] == "Groceries"
        assert summary["highest_spend"]["amount_cents"] == 15000

        points = SummaryService(session).trends(6)
        assert [p["month_key"] for p in points] == ["2024-02", "2024-03"]
        assert points[0]["balance_cents"] == 150000
        assert points[0]["savings_goal_cents"] == 0
        assert points[1]["savings_goal_cents"] == 50000


def test_month_reset_clears_month_data(engine):
    with Session(engine) as session:
        _, food = _categories(session)
        TransactionService(session).create(
            TransactionIn(month_key="2024-03", category_id=food.id, amount_cents=5, date=date(2024, 3, 2))
        )
        BudgetService(session).set(BudgetIn(month_key="2024-03", category_id=food.id, amount_cents=9))
        template = RecurringTemplateService(session).create(
            RecurringTemplateIn(category_id=food.id, amount_cents=100, day_of_month=1)
        )
        RecurringTemplateService(session).apply("2024-03")

        removed = MonthService(session).reset("2024-03")

        assert removed == {"transactions": 2, "budgets": 1, "recurring_applications": 1}
        assert MonthService(session).list_keys() == ["2024-03"]
        result = RecurringTemplateService(session).apply("2024-03")
        assert result.applied == [template.id]
        with pytest.raises(NotFoundError):
            MonthService(session).reset("1999-01")


def test_export_import_round_trip(engine):
    with Session(engine) as session:
        salary, food = _categories(session)
        TransactionService(session).create(
            TransactionIn(
                month_key="2024-03",
                category_id=salary.id,
                amount_cents=1000,
                date=date(2024, 3, 1),
                note="pay",
            )
        )
        BudgetService(session).set(BudgetIn(month_key="2024-03", category_id=food.id, amount_cents=400))
        GoalService(session).set(GoalIn(month_key="2024-03", savings_goal_cents=250))

        transfer = MonthTransferService(session)
        exported = transfer.export("2024-03")
        assert exported["savings_goal_cents"] == 250
        assert exported["transactions"][0]["category"] == {
            "name": "Salary",
            "type": "income",
            "color": "#08F850",
        }

        payload = MonthExport.model_validate(exported)
        with pytest.raises(ConflictError):
            transfer.import_month(MonthImportIn(payload=payload))

        summary = transfer.import_month(MonthImportIn(payload=payload, overwrite=True))
        assert summary.overwritten is True
        assert summary.transactions == 1
        assert summary.categories_created == 0
        assert transfer.export("2024-03") == exported


def test_import_creates_missing_categories(engine):
    with Session(engine) as session:
        payload = MonthExport.model_validate(
            {
                "month_key": "2024-05",
                "savings_goal_cents": 10,
                "transactions": [
                    {
                        "date": "2024-05-02",
                        "amount_cents": 700,
                        "note": None,
                        "category": {"name": "Books", "type": "expense", "color": "#123456"},
                    }
                ],
                "budgets": [
                    {"amount_cents": 900, "category": {"name": "books", "type": "expense"}}
                ],
            }
        )
        summary = MonthTransferService(session).import_month(MonthImportIn(payload=payload))

        assert summary.categories_created == 1
        assert session.scalar(select(func.count(Budget.id))) == 1
        assert session.scalar(select(func.count(Transaction.id))) == 1


def test_import_rejects_dates_outside_month(engine):
    with Session(engine) as session:
        payload = MonthExport.model_validate(
            {
                "month_key": "2024-05",
                "transactions": [
                    {
                        "date": "2024-06-02",
                        "amount_cents": 700,
                        "category": {"name": "Books", "type": "expense"},
                    }
                ],
            }
        )
        with pytest.raises(ValidationError):
            MonthTransferService(session).import_month(MonthImportIn(payload=payload))
        assert session.scalar(select(func.count(Month.id))) == 0
        assert session.scalar(select(func.count(RecurringApplication.id))) == 0


def test_copy_defaults_to_previous_month():
    payload = BudgetCopyIn(to_month="2024-01")
    assert payload.from_month == "2023-12"
