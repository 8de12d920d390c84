"""initial schema

Revision ID: 202510180900
Revises:
Create Date: 2025-10-18 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202510180900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
    ]


def upgrade():
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "name",
            sa.Enum("user", "admin", "super_admin", name="rolename"),
            nullable=False,
            unique=True,
        ),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("nickname", sa.String(length=100)),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id")),
        sa.Column(
            "is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
    )

    op.create_table(
        "user_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("device_id", sa.String(length=128), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=False),
        sa.Column("user_agent", sa.String(length=512)),
        sa.Column("ip", sa.String(length=64)),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "last_used_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("revoke", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint("user_id", "device_id", name="uq_user_session_device"),
    )

    op.create_table(
        "password_resets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("token", sa.String(length=512), nullable=False, unique=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tipo", sa.String(length=100), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120)),
        sa.Column("description", sa.Text()),
        sa.Column("money_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        *_timestamps(),
        sa.CheckConstraint("money_cents >= 0", name="ck_accounts_money_non_negative"),
    )
    op.create_index("ix_accounts_user", "accounts", ["user_id"])

    op.create_table(
        "tag_pockets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        *_timestamps(),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("is_income", sa.Boolean(), nullable=False),
        sa.Column("transaction_date", sa.DateTime(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column(
            "tag_id",
            sa.Integer(),
            sa.ForeignKey("tag_pockets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index(
        "ix_transactions_tag_date", "transactions", ["tag_id", "transaction_date"]
    )

    op.create_table(
        "goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("init_date", sa.DateTime(), nullable=False),
        sa.Column("final_date", sa.DateTime(), nullable=False),
        sa.Column("max_money_cents", sa.Integer(), nullable=False),
        sa.Column(
            "actual_progress_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        *_timestamps(),
    )

    op.create_table(
        "goal_targets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "goal_id",
            sa.Integer(),
            sa.ForeignKey("goals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "target_type",
            sa.Enum("account", "tag", name="goaltargettype"),
            nullable=False,
        ),
        sa.Column("target_id", sa.Integer(), nullable=False),
    )
    op.create_index(
        "ix_goal_targets_type_target", "goal_targets", ["target_type", "target_id"]
    )

    op.create_table(
        "chats",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        *_timestamps(),
    )

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "chat_id",
            sa.Integer(),
            sa.ForeignKey("chats.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("message_send", sa.Text(), nullable=False),
        sa.Column("answers_message", sa.Text(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
    )


def downgrade():
    op.drop_table("messages")
    op.drop_table("chats")
    op.drop_index("ix_goal_targets_type_target", table_name="goal_targets")
    op.drop_table("goal_targets")
    op.drop_table("goals")
    op.drop_index("ix_transactions_tag_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("tag_pockets")
    op.drop_index("ix_accounts_user", table_name="accounts")
    op.drop_table("accounts")
    op.drop_table("categories")
    op.drop_table("password_resets")
    op.drop_table("user_sessions")
    op.drop_table("users")
    op.drop_table("roles")
    sa.Enum(name="goaltargettype").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="rolename").drop(op.get_bind(), checkfirst=True)
