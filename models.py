from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Month(Base, TimestampMixin):
    __tablename__ = "months"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    month_key: Mapped[str] = mapped_column(String(7), nullable=False, unique=True)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="month"
    )
    budgets: Mapped[list["Budget"]] = relationship("Budget", back_populates="month")
    goal: Mapped[Optional["MonthlyGoal"]] = relationship(
        "MonthlyGoal", back_populates="month", uselist=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    color: Mapped[str] = mapped_column(String(9), nullable=False, default="#08F850")

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )
    recurring_templates: Mapped[list["RecurringTemplate"]] = relationship(
        "RecurringTemplate", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint("type", "name", name="uq_category_type_name"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    month_id: Mapped[int] = mapped_column(ForeignKey("months.id"), nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)
    origin_template_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_templates.id", ondelete="SET NULL")
    )

    month: Mapped["Month"] = relationship("Month", back_populates="transactions")
    category: Mapped["Category"] = relationship(
        "Category", back_populates="transactions"
    )
    origin_template: Mapped[Optional["RecurringTemplate"]] = relationship(
        "RecurringTemplate", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_month_date", "month_id", "date"),
        Index("ix_transactions_category", "category_id"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    month_id: Mapped[int] = mapped_column(ForeignKey("months.id"), nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    month: Mapped["Month"] = relationship("Month", back_populates="budgets")
    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        UniqueConstraint("month_id", "category_id", name="uq_budget_month_category"),
        CheckConstraint("amount_cents >= 0", name="ck_budget_amount_positive"),
    )


class MonthlyGoal(Base, TimestampMixin):
    __tablename__ = "monthly_goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    month_id: Mapped[int] = mapped_column(
        ForeignKey("months.id"), nullable=False, unique=True
    )
    savings_goal_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    month: Mapped["Month"] = relationship("Month", back_populates="goal")

    __table_args__ = (
        CheckConstraint("savings_goal_cents >= 0", name="ck_goal_amount_positive"),
    )


class RecurringTemplate(Base, TimestampMixin):
    __tablename__ = "recurring_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    day_of_month: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    note: Mapped[Optional[str]] = mapped_column(String(200))
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    variable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    category: Mapped["Category"] = relationship(
        "Category", back_populates="recurring_templates"
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="origin_template"
    )

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_template_amount_positive"),
        CheckConstraint(
            "day_of_month BETWEEN 1 AND 31", name="ck_template_day_of_month"
        ),
        CheckConstraint(
            "variable OR amount_cents > 0", name="ck_template_fixed_amount"
        ),
        Index("ix_recurring_templates_enabled", "enabled", "id"),
    )


class RecurringApplication(Base):
    __tablename__ = "recurring_applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    month_key: Mapped[str] = mapped_column(String(7), nullable=False)
    template_id: Mapped[int] = mapped_column(
        ForeignKey("recurring_templates.id", ondelete="CASCADE"), nullable=False
    )
    applied_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "month_key",
            "template_id",
            name="uq_recurring_application_month_template",
        ),
    )
