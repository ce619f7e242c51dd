from __future__ import annotations

"""init schema: conversation logs, execution tracking and oauth tokens"""

from alembic import op
import sqlalchemy as sa


revision = "0001_init_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "conversation_logs",
        sa.Column("conversation_id", sa.String(length=128), primary_key=True),
        sa.Column("user_id", sa.String(length=128)),
        sa.Column("initial_prompt", sa.Text),
        sa.Column("full_history", sa.dialects.postgresql.JSONB, server_default=sa.text("'[]'::jsonb")),
        sa.Column("final_response", sa.Text),
        sa.Column("tool_calls", sa.dialects.postgresql.JSONB, server_default=sa.text("'[]'::jsonb")),
        sa.Column("errors", sa.dialects.postgresql.JSONB, server_default=sa.text("'[]'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()")),
    )
    op.create_index("idx_conversation_logs_user_id", "conversation_logs", ["user_id"])

    op.create_table(
        "agent_executions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=128)),
        sa.Column("agent_id", sa.String(length=128)),
        sa.Column("agent_name", sa.String(length=255), nullable=False),
        sa.Column("conversation_id", sa.String(length=128), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="started"),
        sa.Column("start_time", sa.DateTime(timezone=True), server_default=sa.text("NOW()")),
        sa.Column("end_time", sa.DateTime(timezone=True)),
        sa.Column("tool_calls_count", sa.Integer, server_default=sa.text("0")),
        sa.Column("initial_prompt", sa.Text),
        sa.Column("final_response", sa.Text),
        sa.Column("error", sa.Text),
        sa.Column("provider", sa.String(length=50)),
        sa.Column("model", sa.String(length=100)),
        sa.CheckConstraint(
            "status IN ('started', 'running', 'completed', 'failed')", name="ck_agent_executions_status"
        ),
    )
    op.create_index("idx_agent_executions_user_id", "agent_executions", ["user_id", "start_time"])
    op.create_index("idx_agent_executions_conversation_id", "agent_executions", ["conversation_id"])

    op.create_table(
        "tool_executions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "execution_id",
            sa.String(length=36),
            sa.ForeignKey("agent_executions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("tool_name", sa.String(length=255), nullable=False),
        sa.Column("tool_call_id", sa.String(length=128)),
        sa.Column("start_time", sa.DateTime(timezone=True), server_default=sa.text("NOW()")),
        sa.Column("end_time", sa.DateTime(timezone=True)),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="running"),
        sa.Column("input", sa.dialects.postgresql.JSONB),
        sa.Column("output", sa.dialects.postgresql.JSONB),
        sa.Column("error", sa.Text),
    )
    op.create_index("idx_tool_executions_execution_id", "tool_executions", ["execution_id"])

    op.create_table(
        "oauth_tokens",
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("provider", sa.String(length=100), nullable=False),
        sa.Column("access_token", sa.Text, nullable=False),
        sa.Column("refresh_token", sa.Text),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()")),
        sa.PrimaryKeyConstraint("user_id", "provider", name="pk_oauth_tokens"),
    )


def downgrade() -> None:
    op.drop_table("oauth_tokens")
    op.drop_index("idx_tool_executions_execution_id", table_name="tool_executions")
    op.drop_table("tool_executions")
    op.drop_index("idx_agent_executions_conversation_id", table_name="agent_executions")
    op.drop_index("idx_agent_executions_user_id", table_name="agent_executions")
    op.drop_table("agent_executions")
    op.drop_index("idx_conversation_logs_user_id", table_name="conversation_logs")
    op.drop_table("conversation_logs")
