from datetime import date

import pytest
from pydantic import ValidationError as SchemaError
from sqlalchemy import select
from sqlalchemy.orm import Session

from errors import NotFoundError, ValidationError
from models import Category, RecurringApplication, Transaction, TransactionType
from schemas import RecurringTemplateIn, RecurringTemplateUpdate
from services import RecurringTemplateService


def _category(session: Session) -> Category:
    category = Category(name="Subscriptions", type=TransactionType.expense, color="#000000")
    session.add(category)
    session.commit()
    return category


def test_template_schema_rules():
    with pytest.raises(SchemaError):
        RecurringTemplateIn(category_id=1, amount_cents=0, day_of_month=1)
    with pytest.raises(SchemaError):
        RecurringTemplateIn(category_id=1, amount_cents=100, day_of_month=32)
    with pytest.raises(SchemaError):
        RecurringTemplateIn(category_id=1, amount_cents=-1, day_of_month=1, variable=True)
    variable = RecurringTemplateIn(category_id=1, day_of_month=28, variable=True)
    assert variable.amount_cents == 0


def test_create_requires_existing_category(engine):
    with Session(engine) as session:
        with pytest.raises(NotFoundError):
            RecurringTemplateService(session).create(
                RecurringTemplateIn(category_id=42, amount_cents=100, day_of_month=1)
            )


def test_partial_update_keeps_unsent_fields(engine):
    with Session(engine) as session:
        category = _category(session)
        service = RecurringTemplateService(session)
        template = service.create(
            RecurringTemplateIn(
                category_id=category.id, amount_cents=999, day_of_month=5, note=" Netflix "
            )
        )
        assert template.note == "Netflix"

        service.update(template.id, RecurringTemplateUpdate(enabled=False))
        updated = service.get(template.id)
        assert updated.enabled is False
        assert updated.amount_cents == 999
        assert updated.day_of_month == 5
        assert updated.note == "Netflix"
        assert service.list_enabled() == []


def test_update_revalidates_merged_state(engine):
    with Session(engine) as session:
        category = _category(session)
        service = RecurringTemplateService(session)
        template = service.create(
            RecurringTemplateIn(category_id=category.id, day_of_month=5, variable=True)
        )
        with pytest.raises(ValidationError):
            service.update(template.id, RecurringTemplateUpdate(variable=False))
        with pytest.raises(ValidationError):
            service.update(template.id, RecurringTemplateUpdate(day_of_month=None))
        with pytest.raises(NotFoundError):
            service.update(template.id, RecurringTemplateUpdate(category_id=777))

        service.update(
            template.id, RecurringTemplateUpdate(variable=False, amount_cents=1500)
        )
        assert service.get(template.id).variable is False


def test_edits_only_affect_future_months(engine):
    with Session(engine) as session:
        category = _category(session)
        service = RecurringTemplateService(session)
        template = service.create(
            RecurringTemplateIn(category_id=category.id, amount_cents=1000, day_of_month=10)
        )
        service.apply("2024-01")
        service.update(template.id, RecurringTemplateUpdate(amount_cents=1200, day_of_month=20))
        service.apply("2024-02")

        txns = session.scalars(select(Transaction).order_by(Transaction.date)).all()
        assert [(t.date, t.amount_cents) for t in txns] == [
            (date(2024, 1, 10), 1000),
            (date(2024, 2, 20), 1200),
        ]


def test_delete_keeps_transactions_and_drops_run_records(engine):
    with Session(engine) as session:
        category = _category(session)
        service = RecurringTemplateService(session)
        template = service.create(
            RecurringTemplateIn(category_id=category.id, amount_cents=1000, day_of_month=10)
        )
        template_id = template.id
        service.apply("2024-01")
        assert [a["month_key"] for a in service.applications(template_id)] == ["2024-01"]

        service.delete(template_id)

        (txn,) = session.scalars(select(Transaction)).all()
        assert txn.origin_template_id is None
        assert session.scalars(select(RecurringApplication)).all() == []
        with pytest.raises(NotFoundError):
            service.get(template_id)


def test_list_reports_applied_months(engine):
    with Session(engine) as session:
        category = _category(session)
        service = RecurringTemplateService(session)
        fixed = service.create(
            RecurringTemplateIn(category_id=category.id, amount_cents=1000, day_of_month=10)
        )
        variable = service.create(
            RecurringTemplateIn(category_id=category.id, day_of_month=11, variable=True)
        )
        service.apply("2024-01")

        assert service.applied_ids("2024-01") == {fixed.id}
        assert service.applied_ids("2024-02") == set()
        assert [t.id for t in service.list_all()] == [fixed.id, variable.id]
