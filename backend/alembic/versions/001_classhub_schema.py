"""ClassHub schema.

Revision ID: 001_classhub
Revises:
Create Date: 2026-10-19

- Tables: users, academic_items, resources, timetable, messages, message_reactions
- Resources and reactions cascade with their parent row
- messages.user_id is text: it also holds the assistant's sender id
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_classhub"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ==========================================================================
    # USERS TABLE
    # ==========================================================================
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="STUDENT"),
        sa.Column("student_number", sa.String(20), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("role IN ('STUDENT', 'ADMIN', 'DEV')", name="users_role_check"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # ==========================================================================
    # ACADEMIC ITEMS + RESOURCES
    # ==========================================================================
    op.create_table(
        "academic_items",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("subject_id", sa.String(50), nullable=False),
        sa.Column("type", sa.String(30), nullable=False, server_default="homework"),
        sa.Column("date", sa.String(10), nullable=False),
        sa.Column("time", sa.String(5), nullable=True),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index("idx_academic_items_date", "academic_items", ["date"])

    op.create_table(
        "resources",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "item_id",
            sa.Uuid(),
            sa.ForeignKey("academic_items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("type", sa.String(30), nullable=False, server_default="link"),
        sa.Column("url", sa.Text(), nullable=False),
    )
    op.create_index("ix_resources_item_id", "resources", ["item_id"])

    # ==========================================================================
    # TIMETABLE
    # ==========================================================================
    op.create_table(
        "timetable",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("day", sa.Integer(), nullable=False),
        sa.Column("start_hour", sa.Integer(), nullable=False),
        sa.Column("end_hour", sa.Integer(), nullable=False),
        sa.Column("subject_id", sa.String(50), nullable=False),
        sa.Column("color", sa.String(30), nullable=True),
        sa.Column("room", sa.String(50), nullable=True),
        sa.CheckConstraint("day BETWEEN 0 AND 6", name="timetable_day_check"),
        sa.CheckConstraint("end_hour > start_hour", name="timetable_hours_check"),
    )

    # ==========================================================================
    # CHAT
    # ==========================================================================
    op.create_table(
        "messages",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("type", sa.String(10), nullable=False, server_default="text"),
        sa.Column("media_url", sa.Text(), nullable=True),
        sa.Column("file_name", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("type IN ('text', 'image', 'file', 'audio')", name="messages_type_check"),
    )
    op.create_index("idx_messages_created_at", "messages", ["created_at"])
    op.create_index("ix_messages_user_id", "messages", ["user_id"])

    op.create_table(
        "message_reactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "message_id",
            sa.Uuid(),
            sa.ForeignKey("messages.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("emoji", sa.String(16), nullable=False),
        sa.UniqueConstraint("message_id", "user_id", "emoji", name="unique_message_reaction"),
    )
    op.create_index("ix_message_reactions_message_id", "message_reactions", ["message_id"])


def downgrade() -> None:
    op.drop_table("message_reactions")
    op.drop_table("messages")
    op.drop_table("timetable")
    op.drop_table("resources")
    op.drop_index("idx_academic_items_date", table_name="academic_items")
    op.drop_table("academic_items")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
