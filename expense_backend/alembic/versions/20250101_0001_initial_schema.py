"""Initial expense schema with reference data."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.sql import column, table


revision = "20250101_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "Roles",
        sa.Column("RoleId", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("RoleName", sa.String(length=50), nullable=False, unique=True),
        sa.Column("Description", sa.String(length=250), nullable=True),
    )

    op.create_table(
        "Users",
        sa.Column("UserId", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("UserName", sa.String(length=100), nullable=False),
        sa.Column("Email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("RoleId", sa.Integer(), sa.ForeignKey("Roles.RoleId"), nullable=False),
        sa.Column("ManagerId", sa.Integer(), sa.ForeignKey("Users.UserId"), nullable=True),
        sa.Column("IsActive", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column(
            "CreatedAt",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "ManagerId IS NULL OR ManagerId <> UserId", name="ck_users_manager_not_self"
        ),
    )

    op.create_table(
        "ExpenseCategories",
        sa.Column("CategoryId", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("CategoryName", sa.String(length=100), nullable=False, unique=True),
        sa.Column("IsActive", sa.Boolean(), nullable=False, server_default=sa.text("1")),
    )

    op.create_table(
        "ExpenseStatus",
        sa.Column("StatusId", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("StatusName", sa.String(length=50), nullable=False, unique=True),
    )

    op.create_table(
        "Expenses",
        sa.Column("ExpenseId", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("UserId", sa.Integer(), sa.ForeignKey("Users.UserId"), nullable=False),
        sa.Column(
            "CategoryId",
            sa.Integer(),
            sa.ForeignKey("ExpenseCategories.CategoryId"),
            nullable=False,
        ),
        sa.Column(
            "StatusId", sa.Integer(), sa.ForeignKey("ExpenseStatus.StatusId"), nullable=False
        ),
        sa.Column("AmountMinor", sa.Integer(), nullable=False),
        sa.Column("Currency", sa.String(length=3), nullable=False, server_default="GBP"),
        sa.Column("ExpenseDate", sa.Date(), nullable=False),
        sa.Column("Description", sa.String(length=1000), nullable=True),
        sa.Column("ReceiptFile", sa.String(length=500), nullable=True),
        sa.Column("SubmittedAt", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ReviewedBy", sa.Integer(), sa.ForeignKey("Users.UserId"), nullable=True),
        sa.Column("ReviewedAt", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "CreatedAt",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("AmountMinor >= 0", name="ck_expenses_amount_non_negative"),
        sa.CheckConstraint(
            "(ReviewedBy IS NULL AND ReviewedAt IS NULL) "
            "OR (ReviewedBy IS NOT NULL AND ReviewedAt IS NOT NULL)",
            name="ck_expenses_review_pair",
        ),
    )
    op.create_index("IX_Expenses_UserId", "Expenses", ["UserId"])
    op.create_index("IX_Expenses_StatusId", "Expenses", ["StatusId"])
    op.create_index("IX_Expenses_CreatedAt", "Expenses", ["CreatedAt"])

    # Identity values follow insertion order, so the seed IDs are 1..n.
    roles_table = table(
        "Roles",
        column("RoleName", sa.String()),
        column("Description", sa.String()),
    )
    op.bulk_insert(
        roles_table,
        [
            {"RoleName": "Employee", "Description": "Submits expenses"},
            {"RoleName": "Manager", "Description": "Reviews and approves expenses"},
        ],
    )

    statuses_table = table("ExpenseStatus", column("StatusName", sa.String()))
    op.bulk_insert(
        statuses_table,
        [
            {"StatusName": "Draft"},
            {"StatusName": "Submitted"},
            {"StatusName": "Approved"},
            {"StatusName": "Rejected"},
        ],
    )

    categories_table = table("ExpenseCategories", column("CategoryName", sa.String()))
    op.bulk_insert(
        categories_table,
        [
            {"CategoryName": "Travel"},
            {"CategoryName": "Meals"},
            {"CategoryName": "Supplies"},
            {"CategoryName": "Accommodation"},
            {"CategoryName": "Other"},
        ],
    )

    op.execute(
        sa.text(
            """
            INSERT INTO Users (UserName, Email, RoleId)
            SELECT 'Alice Example', 'alice@example.co.uk', RoleId
            FROM Roles WHERE RoleName = 'Employee'
            """
        )
    )
    op.execute(
        sa.text(
            """
            INSERT INTO Users (UserName, Email, RoleId)
            SELECT 'Bob Manager', 'bob.manager@example.co.uk', RoleId
            FROM Roles WHERE RoleName = 'Manager'
            """
        )
    )
    op.execute(
        sa.text(
            """
            UPDATE Users
            SET ManagerId = (SELECT UserId FROM Users WHERE Email = 'bob.manager@example.co.uk')
            WHERE Email = 'alice@example.co.uk'
            """
        )
    )


def downgrade() -> None:
    op.drop_index("IX_Expenses_CreatedAt", table_name="Expenses")
    op.drop_index("IX_Expenses_StatusId", table_name="Expenses")
    op.drop_index("IX_Expenses_UserId", table_name="Expenses")
    op.drop_table("Expenses")
    op.drop_table("ExpenseStatus")
    op.drop_table("ExpenseCategories")
    op.drop_table("Users")
    op.drop_table("Roles")
