"""Initial schema: users, tasks, bids, conversations, messages, reviews, payments.

Revision ID: 001
Revises: None
Create Date: 2026-10-19

Databases created with SQLModel's create_all are stamped at this revision
instead of running it.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("email", sa.VARCHAR(), nullable=False),
        sa.Column("password_hash", sa.VARCHAR(), nullable=False),
        sa.Column("first_name", sa.VARCHAR(), nullable=False),
        sa.Column("last_name", sa.VARCHAR(), nullable=False, server_default=""),
        sa.Column("role", sa.VARCHAR(), nullable=False),
        sa.Column("rating", sa.FLOAT(), nullable=False, server_default="0.0"),
        sa.Column("review_count", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("bio", sa.VARCHAR(), nullable=True),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.Column("updated_at", sa.DATETIME(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "tasks",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("title", sa.VARCHAR(), nullable=False),
        sa.Column("description", sa.VARCHAR(), nullable=False),
        sa.Column("category", sa.VARCHAR(), nullable=False),
        sa.Column("location", sa.VARCHAR(), nullable=False),
        sa.Column("location_type", sa.VARCHAR(), nullable=False),
        sa.Column("suggested_price", sa.FLOAT(), nullable=False),
        sa.Column("status", sa.VARCHAR(), nullable=False),
        sa.Column("posted_by", sa.VARCHAR(), nullable=False),
        sa.Column("assigned_to", sa.VARCHAR(), nullable=True),
        sa.Column("due_date", sa.DATETIME(), nullable=True),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.Column("updated_at", sa.DATETIME(), nullable=False),
        sa.Column("completed_at", sa.DATETIME(), nullable=True),
        sa.ForeignKeyConstraint(["posted_by"], ["users.id"]),
        sa.ForeignKeyConstraint(["assigned_to"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tasks_category", "tasks", ["category"])
    op.create_index("ix_tasks_status", "tasks", ["status"])
    op.create_index("ix_tasks_posted_by", "tasks", ["posted_by"])
    op.create_index("ix_tasks_assigned_to", "tasks", ["assigned_to"])
    op.create_index("ix_tasks_created_at", "tasks", ["created_at"])
    op.create_index("ix_tasks_status_created_at", "tasks", ["status", "created_at"])

    op.create_table(
        "bids",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("task_id", sa.VARCHAR(), nullable=False),
        sa.Column("bidder_id", sa.VARCHAR(), nullable=False),
        sa.Column("amount", sa.FLOAT(), nullable=False),
        sa.Column("message", sa.VARCHAR(), nullable=False, server_default=""),
        sa.Column("estimated_duration", sa.FLOAT(), nullable=False),
        sa.Column("status", sa.VARCHAR(), nullable=False),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.Column("updated_at", sa.DATETIME(), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.id"]),
        sa.ForeignKeyConstraint(["bidder_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_bids_task_id", "bids", ["task_id"])
    op.create_index("ix_bids_bidder_id", "bids", ["bidder_id"])
    op.create_index("ix_bids_status", "bids", ["status"])
    op.create_index("ix_bids_task_created", "bids", ["task_id", "created_at"])
    op.create_index(
        "ux_bids_pending_task_bidder",
        "bids",
        ["task_id", "bidder_id"],
        unique=True,
        sqlite_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "conversations",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("participant_key", sa.VARCHAR(), nullable=False),
        sa.Column("task_key", sa.VARCHAR(), nullable=False, server_default=""),
        sa.Column("task_id", sa.VARCHAR(), nullable=True),
        sa.Column("last_message_id", sa.VARCHAR(), nullable=True),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.Column("updated_at", sa.DATETIME(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_conversations_updated_at", "conversations", ["updated_at"])
    op.create_index(
        "ux_conversations_key", "conversations", ["participant_key", "task_key"], unique=True
    )

    op.create_table(
        "conversation_members",
        sa.Column("conversation_id", sa.VARCHAR(), nullable=False),
        sa.Column("user_id", sa.VARCHAR(), nullable=False),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("conversation_id", "user_id"),
    )
    op.create_index("ix_conversation_members_user_id", "conversation_members", ["user_id"])

    op.create_table(
        "messages",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("conversation_id", sa.VARCHAR(), nullable=False),
        sa.Column("sender_id", sa.VARCHAR(), nullable=False),
        sa.Column("content", sa.VARCHAR(), nullable=False, server_default=""),
        sa.Column("media", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"]),
        sa.ForeignKeyConstraint(["sender_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_messages_conversation_created", "messages", ["conversation_id", "created_at"]
    )

    op.create_table(
        "message_reads",
        sa.Column("message_id", sa.VARCHAR(), nullable=False),
        sa.Column("reader_id", sa.VARCHAR(), nullable=False),
        sa.Column("read_at", sa.DATETIME(), nullable=False),
        sa.ForeignKeyConstraint(["message_id"], ["messages.id"]),
        sa.ForeignKeyConstraint(["reader_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("message_id", "reader_id"),
    )
    op.create_index("ix_message_reads_reader_id", "message_reads", ["reader_id"])

    op.create_table(
        "reviews",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("task_id", sa.VARCHAR(), nullable=False),
        sa.Column("reviewer_id", sa.VARCHAR(), nullable=False),
        sa.Column("reviewee_id", sa.VARCHAR(), nullable=False),
        sa.Column("rating", sa.INTEGER(), nullable=False),
        sa.Column("comment", sa.VARCHAR(), nullable=True),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.id"]),
        sa.ForeignKeyConstraint(["reviewer_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["reviewee_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_reviews_task_id", "reviews", ["task_id"])
    op.create_index("ix_reviews_reviewee_id", "reviews", ["reviewee_id"])
    op.create_index(
        "ux_reviews_task_pair", "reviews", ["task_id", "reviewer_id", "reviewee_id"], unique=True
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("task_id", sa.VARCHAR(), nullable=False),
        sa.Column("payer_id", sa.VARCHAR(), nullable=False),
        sa.Column("payee_id", sa.VARCHAR(), nullable=False),
        sa.Column("amount", sa.FLOAT(), nullable=False),
        sa.Column("status", sa.VARCHAR(), nullable=False),
        sa.Column("payment_intent_id", sa.VARCHAR(), nullable=False),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.Column("completed_at", sa.DATETIME(), nullable=True),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.id"]),
        sa.ForeignKeyConstraint(["payer_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["payee_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("task_id"),
    )
    op.create_index("ix_payments_payer_id", "payments", ["payer_id"])
    op.create_index("ix_payments_payee_id", "payments", ["payee_id"])


def downgrade() -> None:
    for table in (
        "payments",
        "reviews",
        "message_reads",
        "messages",
        "conversation_members",
        "conversations",
        "bids",
        "tasks",
        "users",
    ):
        op.drop_table(table)
