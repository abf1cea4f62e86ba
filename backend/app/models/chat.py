from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, Timestamp, utcnow
from app.models.enums import ActivityType, ChatTheme, MessageType


def _enum_column(enum_cls: type, name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


class User(Base):
    """Application user."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar: Mapped[str | None] = mapped_column(String(512))
    bio: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(Timestamp, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        Timestamp, default=utcnow, onupdate=utcnow, nullable=False
    )

    room_memberships: Mapped[list["RoomMember"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class Conversation(Base):
    """One-to-one direct message channel between two users.

    The pair is stored normalized (``user1_id < user2_id``) so the unique
    constraint guarantees a single conversation per unordered pair.
    """

    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("user1_id", "user2_id", name="uq_conversation_pair"),
        Index("ix_conversations_last_message_at", "last_message_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user1_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    user2_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    chat_theme: Mapped[ChatTheme] = mapped_column(
        _enum_column(ChatTheme, "chat_theme"), default=ChatTheme.DEFAULT, nullable=False
    )
    last_message_at: Mapped[datetime | None] = mapped_column(Timestamp)
    last_activity_type: Mapped[ActivityType | None] = mapped_column(
        _enum_column(ActivityType, "activity_type")
    )
    last_activity_summary: Mapped[str | None] = mapped_column(String(255))
    last_activity_actor_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = mapped_column(Timestamp, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        Timestamp, default=utcnow, onupdate=utcnow, nullable=False
    )

    user1: Mapped[User] = relationship(foreign_keys=[user1_id])
    user2: Mapped[User] = relationship(foreign_keys=[user2_id])
    last_activity_actor: Mapped[User | None] = relationship(foreign_keys=[last_activity_actor_id])
    states: Mapped[list["ConversationState"]] = relationship(
        back_populates="conversation", cascade="all, delete-orphan"
    )
    messages: Mapped[list["DirectMessage"]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="DirectMessage.created_at",
    )

    @property
    def participant_ids(self) -> tuple[int, int]:
        return (self.user1_id, self.user2_id)

    def has_user(self, user_id: int) -> bool:
        return user_id in self.participant_ids

    def other_user_id(self, user_id: int) -> int:
        return self.user2_id if self.user1_id == user_id else self.user1_id


class ConversationState(Base):
    """Per-user archive/clear/delete status of a conversation."""

    __tablename__ = "conversation_states"
    __table_args__ = (
        UniqueConstraint("user_id", "conversation_id", name="uq_conversation_state"),
        Index("ix_conversation_states_user", "user_id", "deleted_at", "is_archived"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    conversation_id: Mapped[int] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cleared_at: Mapped[datetime | None] = mapped_column(Timestamp)
    deleted_at: Mapped[datetime | None] = mapped_column(Timestamp)
    updated_at: Mapped[datetime] = mapped_column(
        Timestamp, default=utcnow, onupdate=utcnow, nullable=False
    )

    conversation: Mapped[Conversation] = relationship(back_populates="states")
    user: Mapped[User] = relationship()


class DirectMessage(Base):
    """Message exchanged inside a conversation. Only its reactions ever change."""

    __tablename__ = "direct_messages"
    __table_args__ = (
        Index("ix_direct_messages_conversation", "conversation_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    conversation_id: Mapped[int] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[MessageType] = mapped_column(
        _enum_column(MessageType, "message_type"), default=MessageType.TEXT, nullable=False
    )
    reactions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(Timestamp, default=utcnow, nullable=False)

    conversation: Mapped[Conversation] = relationship(back_populates="messages")
    sender: Mapped[User] = relationship()
    visibilities: Mapped[list["DirectMessageVisibility"]] = relationship(
        back_populates="message", cascade="all, delete-orphan"
    )


class DirectMessageVisibility(Base):
    """Marks a direct message as readable by one user."""

    __tablename__ = "direct_message_visibility"
    __table_args__ = (
        UniqueConstraint("user_id", "message_id", name="uq_direct_message_visibility"),
        Index("ix_direct_message_visibility_message", "message_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    message_id: Mapped[int] = mapped_column(
        ForeignKey("direct_messages.id", ondelete="CASCADE"), nullable=False
    )

    message: Mapped[DirectMessage] = relationship(back_populates="visibilities")


class ChatRoom(Base):
    """Multi-user chat room."""

    __tablename__ = "chat_rooms"
    __table_args__ = (
        Index("ix_chat_rooms_category", "category"),
        Index("ix_chat_rooms_last_activity", "last_activity_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    is_private: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    icon: Mapped[str | None] = mapped_column(String(64))
    member_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    chat_theme: Mapped[ChatTheme] = mapped_column(
        _enum_column(ChatTheme, "chat_theme"), default=ChatTheme.DEFAULT, nullable=False
    )
    last_activity_at: Mapped[datetime | None] = mapped_column(Timestamp)
    last_activity_type: Mapped[ActivityType | None] = mapped_column(
        _enum_column(ActivityType, "activity_type")
    )
    last_activity_summary: Mapped[str | None] = mapped_column(String(255))
    last_activity_actor_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = mapped_column(Timestamp, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        Timestamp, default=utcnow, onupdate=utcnow, nullable=False
    )

    last_activity_actor: Mapped[User | None] = relationship(foreign_keys=[last_activity_actor_id])
    members: Mapped[list["RoomMember"]] = relationship(
        back_populates="room", cascade="all, delete-orphan", order_by="RoomMember.joined_at"
    )
    states: Mapped[list["RoomMemberState"]] = relationship(
        back_populates="room", cascade="all, delete-orphan"
    )
    messages: Mapped[list["RoomMessage"]] = relationship(
        back_populates="room", cascade="all, delete-orphan", order_by="RoomMessage.created_at"
    )

    @property
    def creator(self) -> "RoomMember | None":
        return next((member for member in self.members if member.is_creator), None)


class RoomMember(Base):
    """Membership of a user in a room; exactly one member carries ``is_creator``."""

    __tablename__ = "room_members"
    __table_args__ = (UniqueConstraint("room_id", "user_id", name="uq_room_member"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("chat_rooms.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    is_creator: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    joined_at: Mapped[datetime] = mapped_column(Timestamp, default=utcnow, nullable=False)

    room: Mapped[ChatRoom] = relationship(back_populates="members")
    user: Mapped[User] = relationship(back_populates="room_memberships")


class RoomMemberState(Base):
    """Per-user archive/clear status of a room."""

    __tablename__ = "room_member_states"
    __table_args__ = (UniqueConstraint("user_id", "room_id", name="uq_room_member_state"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    room_id: Mapped[int] = mapped_column(ForeignKey("chat_rooms.id", ondelete="CASCADE"), nullable=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cleared_at: Mapped[datetime | None] = mapped_column(Timestamp)
    updated_at: Mapped[datetime] = mapped_column(
        Timestamp, default=utcnow, onupdate=utcnow, nullable=False
    )

    room: Mapped[ChatRoom] = relationship(back_populates="states")


class RoomMessage(Base):
    """Message posted in a room, including system notices."""

    __tablename__ = "room_messages"
    __table_args__ = (Index("ix_room_messages_room_created_at", "room_id", "created_at"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("chat_rooms.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    content: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[MessageType] = mapped_column(
        _enum_column(MessageType, "message_type"), default=MessageType.TEXT, nullable=False
    )
    image_url: Mapped[str | None] = mapped_column(String(1024))
    file_data: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    voice_data: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    reactions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(Timestamp, default=utcnow, nullable=False)

    room: Mapped[ChatRoom] = relationship(back_populates="messages")
    user: Mapped[User | None] = relationship()
    visibilities: Mapped[list["RoomMessageVisibility"]] = relationship(
        back_populates="message", cascade="all, delete-orphan"
    )


class RoomMessageVisibility(Base):
    """Marks a room message as readable by one user."""

    __tablename__ = "room_message_visibility"
    __table_args__ = (
        UniqueConstraint("user_id", "message_id", name="uq_room_message_visibility"),
        Index("ix_room_message_visibility_message", "message_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    message_id: Mapped[int] = mapped_column(
        ForeignKey("room_messages.id", ondelete="CASCADE"), nullable=False
    )

    message: Mapped[RoomMessage] = relationship(back_populates="visibilities")
