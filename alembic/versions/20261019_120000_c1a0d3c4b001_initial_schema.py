"""Initial schema: accounts, boards, tasks, agent runs and costs

Revision ID: c1a0d3c4b001
Revises:
Create Date: 2026-10-19 12:00:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "c1a0d3c4b001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


STATUS_VALUES = ("inbox", "up_next", "in_progress", "in_review", "done", "archived")
PRIORITY_VALUES = ("none", "low", "medium", "high")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade database schema."""

    # ------------------------------------------------------------------
    # Enums (declaration order is the sort order)
    # ------------------------------------------------------------------
    taskstatus = postgresql.ENUM(*STATUS_VALUES, name="taskstatus", create_type=False)
    taskpriority = postgresql.ENUM(*PRIORITY_VALUES, name="taskpriority", create_type=False)
    sa.Enum(*STATUS_VALUES, name="taskstatus").create(op.get_bind(), checkfirst=True)
    sa.Enum(*PRIORITY_VALUES, name="taskpriority").create(op.get_bind(), checkfirst=True)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    op.create_table(
        "users",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("admin", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("last_login", sa.DateTime(timezone=True), nullable=True),
        sa.Column("agent_auto_mode", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("agent_name", sa.String(100), nullable=True),
        sa.Column("agent_emoji", sa.String(20), nullable=True),
        sa.Column("agent_last_active_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("provider", sa.String(50), nullable=True),
        sa.Column("uid", sa.String(255), nullable=True),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index(
        "idx_users_provider_uid",
        "users",
        ["provider", "uid"],
        unique=True,
        postgresql_where=sa.text("provider IS NOT NULL"),
    )

    op.create_table(
        "api_tokens",
        sa.Column("token_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("token_digest", sa.String(64), nullable=False, unique=True),
        sa.Column("token_prefix", sa.String(8), nullable=False),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_api_tokens_user_id", "api_tokens", ["user_id"])

    op.create_table(
        "invite_codes",
        sa.Column("invite_code_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("code", sa.String(8), nullable=False, unique=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column(
            "created_by_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.user_id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_invite_codes_used_at", "invite_codes", ["used_at"])

    op.create_table(
        "email_verification_codes",
        sa.Column("code_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("code_digest", sa.String(64), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_email_code_email_created", "email_verification_codes", ["email", "created_at"])

    # ------------------------------------------------------------------
    # Boards
    # ------------------------------------------------------------------
    op.create_table(
        "boards",
        sa.Column("board_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("icon", sa.String(20), nullable=False),
        sa.Column("color", sa.String(20), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("idx_board_user_position", "boards", ["user_id", "position"])

    op.create_table(
        "task_lists",
        sa.Column("task_list_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "board_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("boards.board_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_task_lists_board_id", "task_lists", ["board_id"])
    op.create_index("ix_task_lists_user_id", "task_lists", ["user_id"])

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------
    op.create_table(
        "tasks",
        sa.Column("task_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "board_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("boards.board_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "task_list_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("task_lists.task_list_id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", taskstatus, nullable=False, server_default="inbox"),
        sa.Column("priority", taskpriority, nullable=False, server_default="none"),
        sa.Column("position", sa.Integer(), nullable=True),
        sa.Column("tags", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("blocked", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("completed", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("assigned_to_agent", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("agent_claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("agent_session_id", sa.String(255), nullable=True),
        sa.Column("agent_session_key", sa.String(255), nullable=True),
        sa.Column("model", sa.String(100), nullable=True),
        sa.Column("output_files", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("original_description", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("run_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_run_id", sa.String(36), nullable=True),
        sa.Column("last_outcome_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_needs_follow_up", sa.Boolean(), nullable=True),
        sa.Column("last_recommended_action", sa.String(50), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_task_user_status", "tasks", ["user_id", "status"])
    op.create_index("idx_task_board_status_position", "tasks", ["board_id", "status", "position"])
    op.create_index("idx_task_session_key", "tasks", ["agent_session_key"])
    op.create_index("idx_task_session_id", "tasks", ["agent_session_id"])
    op.create_index("idx_task_assigned", "tasks", ["assigned_to_agent"])

    op.create_table(
        "task_comments",
        sa.Column("comment_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "task_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("author_type", sa.String(20), nullable=False, server_default="user"),
        sa.Column("actor_name", sa.String(200), nullable=True),
        sa.Column("actor_emoji", sa.String(20), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_comment_task_created", "task_comments", ["task_id", "created_at"])

    op.create_table(
        "task_activities",
        sa.Column("activity_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "task_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.user_id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("source", sa.String(10), nullable=False, server_default="web"),
        sa.Column("actor_type", sa.String(10), nullable=True),
        sa.Column("actor_name", sa.String(200), nullable=True),
        sa.Column("actor_emoji", sa.String(20), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("field_name", sa.String(100), nullable=True),
        sa.Column("old_value", sa.String(1000), nullable=True),
        sa.Column("new_value", sa.String(1000), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("idx_activity_task_created", "task_activities", ["task_id", "created_at"])

    op.create_table(
        "task_runs",
        sa.Column("task_run_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "task_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("run_id", sa.String(36), nullable=False, unique=True),
        sa.Column("run_number", sa.Integer(), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("needs_follow_up", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("recommended_action", sa.String(50), nullable=False),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("achieved", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("evidence", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("remaining", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("next_prompt", sa.Text(), nullable=True),
        sa.Column("model_used", sa.String(100), nullable=True),
        sa.Column("session_id", sa.String(255), nullable=True),
        sa.Column("session_key", sa.String(255), nullable=True),
        sa.Column("raw_payload", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        *_timestamps(),
    )
    op.create_index("ix_task_runs_task_id", "task_runs", ["task_id"])

    op.create_table(
        "notifications",
        sa.Column("notification_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "task_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("idx_notification_user_created", "notifications", ["user_id", "created_at"])
    op.create_index("idx_notification_user_read", "notifications", ["user_id", "read_at"])

    # ------------------------------------------------------------------
    # Costs
    # ------------------------------------------------------------------
    op.create_table(
        "token_usages",
        sa.Column("usage_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "task_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("model", sa.String(100), nullable=False),
        sa.Column("input_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("output_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cost", sa.Float(), nullable=False, server_default="0"),
        sa.Column("session_key", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("idx_token_usage_task", "token_usages", ["task_id"])
    op.create_index("idx_token_usage_created", "token_usages", ["created_at"])
    op.create_index("idx_token_usage_model", "token_usages", ["model"])

    op.create_table(
        "cost_snapshots",
        sa.Column("snapshot_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("period", sa.String(10), nullable=False),
        sa.Column("snapshot_date", sa.Date(), nullable=False),
        sa.Column("total_cost", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_input_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_output_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("api_calls", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cost_by_model", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("tokens_by_model", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("cost_by_source", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("budget_limit", sa.Float(), nullable=True),
        sa.Column("budget_exceeded", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "period", "snapshot_date", name="uq_cost_snapshot_user_period_date"),
        sa.CheckConstraint("budget_limit IS NULL OR budget_limit > 0", name="ck_cost_snapshot_budget_positive"),
    )
    op.create_index("ix_cost_snapshots_user_id", "cost_snapshots", ["user_id"])


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table("cost_snapshots")
    op.drop_table("token_usages")
    op.drop_table("notifications")
    op.drop_table("task_runs")
    op.drop_table("task_activities")
    op.drop_table("task_comments")
    op.drop_table("tasks")
    op.drop_table("task_lists")
    op.drop_table("boards")
    op.drop_table("email_verification_codes")
    op.drop_table("invite_codes")
    op.drop_table("api_tokens")
    op.drop_table("users")

    op.execute("DROP TYPE IF EXISTS taskpriority")
    op.execute("DROP TYPE IF EXISTS taskstatus")
