"""create chat tables

Revision ID: 20250301_01
Revises: 
Create Date: 2025-03-01 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import mysql


# revision identifiers, used by Alembic.
revision = "20250301_01"
down_revision = None
branch_labels = None
depends_on = None


TIMESTAMP = sa.DateTime(timezone=True).with_variant(mysql.DATETIME(fsp=6), "mysql")
MESSAGE_TYPE = sa.Enum("text", "image", "file", "voice", "system", name="message_type")
ACTIVITY_TYPE = sa.Enum("message", "reaction", "theme", "system", "update", name="activity_type")
CHAT_THEME = sa.Enum(
    "default", "midnight", "ocean", "sunset", "forest", "rose", "lavender", name="chat_theme"
)


def _visibility_table(name: str, message_table: str) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "message_id",
            sa.Integer(),
            sa.ForeignKey(f"{message_table}.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.UniqueConstraint("user_id", "message_id", name=f"uq_{name}"),
        mysql_charset="utf8mb4",
    )
    op.create_index(f"ix_{name}_message", name, ["message_id"])


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("username", sa.String(length=32), nullable=False, unique=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("avatar", sa.String(length=512), nullable=True),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("created_at", TIMESTAMP, nullable=False),
        sa.Column("updated_at", TIMESTAMP, nullable=False),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "conversations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user1_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user2_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("chat_theme", CHAT_THEME, nullable=False, server_default="default"),
        sa.Column("last_message_at", TIMESTAMP, nullable=True),
        sa.Column("last_activity_type", ACTIVITY_TYPE, nullable=True),
        sa.Column("last_activity_summary", sa.String(length=255), nullable=True),
        sa.Column(
            "last_activity_actor_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", TIMESTAMP, nullable=False),
        sa.Column("updated_at", TIMESTAMP, nullable=False),
        sa.UniqueConstraint("user1_id", "user2_id", name="uq_conversation_pair"),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_conversations_last_message_at", "conversations", ["last_message_at"])

    op.create_table(
        "conversation_states",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "conversation_id",
            sa.Integer(),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cleared_at", TIMESTAMP, nullable=True),
        sa.Column("deleted_at", TIMESTAMP, nullable=True),
        sa.Column("updated_at", TIMESTAMP, nullable=False),
        sa.UniqueConstraint("user_id", "conversation_id", name="uq_conversation_state"),
        mysql_charset="utf8mb4",
    )
    op.create_index(
        "ix_conversation_states_user",
        "conversation_states",
        ["user_id", "deleted_at", "is_archived"],
    )

    op.create_table(
        "direct_messages",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "conversation_id",
            sa.Integer(),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sender_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("type", MESSAGE_TYPE, nullable=False, server_default="text"),
        sa.Column("reactions", sa.JSON(), nullable=False),
        sa.Column("created_at", TIMESTAMP, nullable=False),
        mysql_charset="utf8mb4",
    )
    op.create_index(
        "ix_direct_messages_conversation",
        "direct_messages",
        ["conversation_id", "created_at"],
    )
    _visibility_table("direct_message_visibility", "direct_messages")

    op.create_table(
        "chat_rooms",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("title", sa.String(length=128), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("is_private", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("icon", sa.String(length=64), nullable=True),
        sa.Column("member_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("chat_theme", CHAT_THEME, nullable=False, server_default="default"),
        sa.Column("last_activity_at", TIMESTAMP, nullable=True),
        sa.Column("last_activity_type", ACTIVITY_TYPE, nullable=True),
        sa.Column("last_activity_summary", sa.String(length=255), nullable=True),
        sa.Column(
            "last_activity_actor_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", TIMESTAMP, nullable=False),
        sa.Column("updated_at", TIMESTAMP, nullable=False),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_chat_rooms_category", "chat_rooms", ["category"])
    op.create_index("ix_chat_rooms_last_activity", "chat_rooms", ["last_activity_at"])

    op.create_table(
        "room_members",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("room_id", sa.Integer(), sa.ForeignKey("chat_rooms.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("is_creator", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("joined_at", TIMESTAMP, nullable=False),
        sa.UniqueConstraint("room_id", "user_id", name="uq_room_member"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "room_member_states",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("room_id", sa.Integer(), sa.ForeignKey("chat_rooms.id", ondelete="CASCADE"), nullable=False),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cleared_at", TIMESTAMP, nullable=True),
        sa.Column("updated_at", TIMESTAMP, nullable=False),
        sa.UniqueConstraint("user_id", "room_id", name="uq_room_member_state"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "room_messages",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("room_id", sa.Integer(), sa.ForeignKey("chat_rooms.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("type", MESSAGE_TYPE, nullable=False, server_default="text"),
        sa.Column("image_url", sa.String(length=1024), nullable=True),
        sa.Column("file_data", sa.JSON(), nullable=True),
        sa.Column("voice_data", sa.JSON(), nullable=True),
        sa.Column("reactions", sa.JSON(), nullable=False),
        sa.Column("created_at", TIMESTAMP, nullable=False),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_room_messages_room_created_at", "room_messages", ["room_id", "created_at"])
    _visibility_table("room_message_visibility", "room_messages")


def downgrade() -> None:
    op.drop_table("room_message_visibility")
    op.drop_table("room_messages")
    op.drop_table("room_member_states")
    op.drop_table("room_members")
    op.drop_table("chat_rooms")
    op.drop_table("direct_message_visibility")
    op.drop_table("direct_messages")
    op.drop_table("conversation_states")
    op.drop_table("conversations")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_type in (CHAT_THEME, ACTIVITY_TYPE, MESSAGE_TYPE):
        enum_type.drop(bind, checkfirst=True)
