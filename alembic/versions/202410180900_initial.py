"""initial schema

Revision ID: 202410180900
Revises:
Create Date: 2024-10-18 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202410180900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "months",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("month_key", sa.String(length=7), nullable=False, unique=True),
        *_timestamps(),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("color", sa.String(length=9), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("type", "name", name="uq_category_type_name"),
    )

    op.create_table(
        "recurring_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("day_of_month", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("note", sa.String(length=200)),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("variable", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_template_amount_positive"),
        sa.CheckConstraint(
            "day_of_month BETWEEN 1 AND 31", name="ck_template_day_of_month"
        ),
        sa.CheckConstraint(
            "variable OR amount_cents > 0", name="ck_template_fixed_amount"
        ),
    )
    op.create_index(
        "ix_recurring_templates_enabled", "recurring_templates", ["enabled", "id"]
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("month_id", sa.Integer(), sa.ForeignKey("months.id"), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("note", sa.Text()),
        sa.Column(
            "origin_template_id",
            sa.Integer(),
            sa.ForeignKey("recurring_templates.id", ondelete="SET NULL"),
        ),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_month_date", "transactions", ["month_id", "date"])
    op.create_index("ix_transactions_category", "transactions", ["category_id"])

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("month_id", sa.Integer(), sa.ForeignKey("months.id"), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("month_id", "category_id", name="uq_budget_month_category"),
        sa.CheckConstraint("amount_cents >= 0", name="ck_budget_amount_positive"),
    )

    op.create_table(
        "monthly_goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "month_id",
            sa.Integer(),
            sa.ForeignKey("months.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            "savings_goal_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        *_timestamps(),
        sa.CheckConstraint("savings_goal_cents >= 0", name="ck_goal_amount_positive"),
    )

    op.create_table(
        "recurring_applications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("month_key", sa.String(length=7), nullable=False),
        sa.Column(
            "template_id",
            sa.Integer(),
            sa.ForeignKey("recurring_templates.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("applied_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "month_key",
            "template_id",
            name="uq_recurring_application_month_template",
        ),
    )


def downgrade():
    op.drop_table("recurring_applications")
    op.drop_table("monthly_goals")
    op.drop_table("budgets")
    op.drop_index("ix_transactions_category", table_name="transactions")
    op.drop_index("ix_transactions_month_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_recurring_templates_enabled", table_name="recurring_templates")
    op.drop_table("recurring_templates")
    op.drop_table("categories")
    op.drop_table("months")
