import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from database import session_scope
from errors import StorageError
from models import (
    Month,
    MonthlyGoal,
    RecurringApplication,
    RecurringTemplate,
    Transaction,
)
from months import parse_month_key

logger = logging.getLogger(__name__)

SKIP_VARIABLE_WITHOUT_AMOUNT = "variable_without_amount"
SKIP_NON_POSITIVE_AMOUNT = "non_positive_amount"
SKIP_ALREADY_APPLIED = "already_applied"

# Largest amount an INTEGER column holds.
MAX_AMOUNT_CENTS = 2**63 - 1


def _coerce_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            return None
        return int(number) if math.isfinite(number) else None
    return None


def _template_id(key: Any) -> Optional[int]:
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key
    if isinstance(key, str) and key.strip().isdigit():
        return int(key.strip())
    return None


def normalize_overrides(overrides: Optional[Mapping[Any, Any]]) -> dict[int, int]:
    """Map template ids to positive override amounts.

    Keys arrive as ints from Python callers and as strings from JSON bodies;
    both collapse onto the integer template id. Fractional amounts are
    floored. Entries whose key is not an id, or whose amount is missing,
    unparseable, not positive or too large to store, are dropped, which
    callers treat as "no override".
    """
    normalized: dict[int, int] = {}
    if not overrides:
        return normalized
    for raw_key, raw_amount in overrides.items():
        template_id = _template_id(raw_key)
        if template_id is None:
            logger.debug(f"recurring_override_ignored: key={raw_key!r}")
            continue
        amount = _coerce_int(raw_amount)
        if amount is None or amount <= 0:
            continue
        if amount > MAX_AMOUNT_CENTS:
            logger.debug(f"recurring_override_ignored: key={raw_key!r} reason=too_large")
            continue
        normalized[template_id] = amount
    return normalized


def resolve_amount(
    template: RecurringTemplate, overrides: Mapping[int, int]
) -> Optional[int]:
    override = overrides.get(template.id)
    if override is not None and override > 0:
        return override
    if not template.variable:
        return template.amount_cents
    return None


def ensure_month(session: Session, month_key: str) -> Month:
    key = parse_month_key(month_key).key
    month = session.scalar(select(Month).where(Month.month_key == key))
    if month:
        return month
    month = Month(month_key=key)
    try:
        with session.begin_nested():
            session.add(month)
            session.flush()
    except IntegrityError:
        # Registered concurrently by another session.
        month = session.scalar(select(Month).where(Month.month_key == key))
        if month is None:
            raise
    return month


def ensure_goal_row(session: Session, month: Month) -> MonthlyGoal:
    goal = session.scalar(select(MonthlyGoal).where(MonthlyGoal.month_id == month.id))
    if goal:
        return goal
    goal = MonthlyGoal(month_id=month.id, savings_goal_cents=0)
    try:
        with session.begin_nested():
            session.add(goal)
            session.flush()
    except IntegrityError:
        goal = session.scalar(
            select(MonthlyGoal).where(MonthlyGoal.month_id == month.id)
        )
        if goal is None:
            raise
    return goal


@dataclass
class ApplyResult:
    month_key: str
    applied: list[int] = field(default_factory=list)
    skipped: list[dict[str, Any]] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)

    @property
    def applied_count(self) -> int:
        return len(self.applied)

    def skip(self, template_id: int, reason: str) -> None:
        self.skipped.append({"template_id": template_id, "reason": reason})

    def as_dict(self) -> dict[str, Any]:
        return {
            "month_key": self.month_key,
            "applied_count": self.applied_count,
            "applied": list(self.applied),
            "skipped": list(self.skipped),
            "failed": list(self.failed),
        }


class ApplicationLedger:
    """Run records: one row per (month, template) that has been materialized."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def is_applied(self, month_key: str, template_id: int) -> bool:
        stmt = (
            select(RecurringApplication.id)
            .where(
                RecurringApplication.month_key == month_key,
                RecurringApplication.template_id == template_id,
            )
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none() is not None

    def applied_template_ids(self, month_key: str) -> set[int]:
        stmt = select(RecurringApplication.template_id).where(
            RecurringApplication.month_key == month_key
        )
        return set(self.session.scalars(stmt).all())

    def try_mark_applied(self, month_key: str, template_id: int) -> bool:
        """Insert the run record; False when another call already holds it."""
        record = RecurringApplication(
            month_key=month_key,
            template_id=template_id,
            applied_at=datetime.utcnow(),
        )
        try:
            with self.session.begin_nested():
                self.session.add(record)
                self.session.flush()
        except IntegrityError:
            if self.is_applied(month_key, template_id):
                return False
            raise
        return True


class RecurringEngine:
    def __init__(self, session: Session, default_note: Optional[str] = None) -> None:
        self.session = session
        self.ledger = ApplicationLedger(session)
        self.default_note = default_note or get_settings().default_note

    def enabled_templates(self) -> list[RecurringTemplate]:
        stmt = (
            select(RecurringTemplate)
            .where(RecurringTemplate.enabled.is_(True))
            .order_by(RecurringTemplate.id)
        )
        return list(self.session.scalars(stmt).all())

    def apply(
        self, month_key: str, overrides: Optional[Mapping[Any, Any]] = None
    ) -> ApplyResult:
        month = parse_month_key(month_key)
        amounts = normalize_overrides(overrides)
        try:
            month_row = ensure_month(self.session, month.key)
            ensure_goal_row(self.session, month_row)
            templates = self.enabled_templates()
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not prepare month {month.key}") from exc

        result = ApplyResult(month.key)
        for template in templates:
            amount = resolve_amount(template, amounts)
            if amount is None:
                result.skip(template.id, SKIP_VARIABLE_WITHOUT_AMOUNT)
                continue
            if amount <= 0:
                result.skip(template.id, SKIP_NON_POSITIVE_AMOUNT)
                continue
            occurrence_date = month.day(template.day_of_month)
            try:
                txn = self._apply_template(month_row, template, amount, occurrence_date)
            except SQLAlchemyError as exc:
                logger.exception(
                    f"recurring_apply_failed: month={month.key} template={template.id}"
                )
                result.failed.append(
                    {"template_id": template.id, "error": exc.__class__.__name__}
                )
                continue
            if txn is None:
                result.skip(template.id, SKIP_ALREADY_APPLIED)
                continue
            result.applied.append(template.id)

        logger.info(
            f"recurring_apply: month={month.key} applied={result.applied_count} "
            f"skipped={len(result.skipped)} failed={len(result.failed)}"
        )
        return result

    def _apply_template(
        self,
        month_row: Month,
        template: RecurringTemplate,
        amount: int,
        occurrence_date: date,
    ) -> Optional[Transaction]:
        # Run record and transaction commit or roll back together.
        with self.session.begin_nested():
            if not self.ledger.try_mark_applied(month_row.month_key, template.id):
                return None
            txn = self._build_transaction(month_row, template, amount, occurrence_date)
            self.session.add(txn)
            self.session.flush()
        return txn

    def _build_transaction(
        self,
        month_row: Month,
        template: RecurringTemplate,
        amount: int,
        occurrence_date: date,
    ) -> Transaction:
        note = (template.note or "").strip() or self.default_note
        return Transaction(
            month_id=month_row.id,
            category_id=template.category_id,
            amount_cents=amount,
            date=occurrence_date,
            note=note,
            origin_template_id=template.id,
        )


def apply_month(
    month_key: str, overrides: Optional[Mapping[Any, Any]] = None
) -> ApplyResult:
    """Apply recurring templates to a month in a session of its own."""
    with session_scope() as session:
        return RecurringEngine(session).apply(month_key, overrides)