"""Membership, admin hand-off and per-user visibility for chat rooms."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.config import get_settings
from app.models import (
    USER_ROOM_MESSAGE_TYPES,
    ActivityType,
    ChatRoom,
    MessageType,
    RoomMember,
    RoomMemberState,
    RoomMessage,
    RoomMessageVisibility,
    User,
    utcnow,
)
from app.monitoring.metrics import chat_messages_total
from app.services.common import (
    clean_content,
    clean_emoji,
    page_bounds,
    parse_theme,
    replace_reaction,
    summarize,
)

logger = logging.getLogger(__name__)
settings = get_settings()

ROOM_UPDATABLE_FIELDS = ("title", "description", "category", "tags", "icon")

_ATTACHMENT_SUMMARIES = {
    MessageType.IMAGE: "Sent an image",
    MessageType.FILE: "Sent a file",
    MessageType.VOICE: "Sent a voice message",
}


@dataclass(slots=True)
class MembershipChange:
    """Outcome of a member leaving or being removed from a room."""

    room_id: int
    user_id: int
    kicked: bool
    remaining_member_ids: list[int]
    notices: list[RoomMessage] = field(default_factory=list)
    new_creator_id: int | None = None


@dataclass(slots=True)
class MyRoomEntry:
    room: ChatRoom
    membership: RoomMember
    state: RoomMemberState


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def load_room(room_id: int, db: Session, *, with_members: bool = False) -> ChatRoom:
    stmt = select(ChatRoom).where(ChatRoom.id == room_id)
    if with_members:
        stmt = stmt.options(selectinload(ChatRoom.members).selectinload(RoomMember.user))
    room = db.execute(stmt).scalar_one_or_none()
    if room is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    return room


def get_membership(room_id: int, user_id: int, db: Session) -> RoomMember | None:
    stmt = select(RoomMember).where(RoomMember.room_id == room_id, RoomMember.user_id == user_id)
    return db.execute(stmt).scalar_one_or_none()


def require_member(room_id: int, user_id: int, db: Session) -> RoomMember:
    """Ensure the user belongs to the room, raising HTTP 403 otherwise."""

    membership = get_membership(room_id, user_id, db)
    if membership is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not a room member")
    return membership


def require_creator(room_id: int, user_id: int, db: Session, *, action: str) -> RoomMember:
    membership = require_member(room_id, user_id, db)
    if not membership.is_creator:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Only the room creator can {action}",
        )
    return membership


def member_ids(room_id: int, db: Session) -> list[int]:
    stmt = select(RoomMember.user_id).where(RoomMember.room_id == room_id).order_by(RoomMember.id)
    return list(db.execute(stmt).scalars().all())


def get_state(room_id: int, user_id: int, db: Session) -> RoomMemberState:
    stmt = select(RoomMemberState).where(
        RoomMemberState.room_id == room_id,
        RoomMemberState.user_id == user_id,
    )
    state = db.execute(stmt).scalar_one_or_none()
    if state is None:
        state = RoomMemberState(room_id=room_id, user_id=user_id, is_archived=False)
        db.add(state)
        db.flush()
    return state


def _load_message(room: ChatRoom, message_id: int, db: Session) -> RoomMessage:
    message = db.get(RoomMessage, message_id)
    if message is None or message.room_id != room.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    return message


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


def _touch_activity(
    room: ChatRoom,
    activity: ActivityType,
    summary: str,
    actor_id: int | None,
    at: datetime,
) -> None:
    room.last_activity_at = at
    room.last_activity_type = activity
    room.last_activity_summary = summary
    room.last_activity_actor_id = actor_id


def _adjust_member_count(room: ChatRoom, delta: int, db: Session) -> None:
    """Apply a membership delta in SQL, floored at zero."""

    db.execute(
        update(ChatRoom)
        .where(ChatRoom.id == room.id)
        .values(member_count=case((ChatRoom.member_count + delta < 0, 0), else_=ChatRoom.member_count + delta))
        .execution_options(synchronize_session=False)
    )
    db.refresh(room, attribute_names=["member_count"])


def _after(moment: datetime) -> datetime:
    now = utcnow()
    return now if now > moment else moment + timedelta(microseconds=1)


def _post(
    room: ChatRoom,
    db: Session,
    *,
    content: str,
    message_type: MessageType,
    user_id: int | None,
    summary: str,
    created_at: datetime | None = None,
    extra: dict[str, Any] | None = None,
) -> RoomMessage:
    message = RoomMessage(
        room_id=room.id,
        user_id=user_id,
        content=content,
        type=message_type,
        reactions=[],
        created_at=created_at or utcnow(),
        **(extra or {}),
    )
    db.add(message)
    db.flush()
    for recipient_id in member_ids(room.id, db):
        db.add(RoomMessageVisibility(user_id=recipient_id, message_id=message.id))

    activity = ActivityType.SYSTEM if message_type is MessageType.SYSTEM else ActivityType.MESSAGE
    _touch_activity(room, activity, summarize(summary), user_id, message.created_at)
    db.flush()
    chat_messages_total.labels("room", message_type.value).inc()
    return message


def post_system_message(room: ChatRoom, text: str, db: Session, *, created_at: datetime | None = None) -> RoomMessage:
    """Append a system notice visible to every current member."""

    return _post(
        room,
        db,
        content=text,
        message_type=MessageType.SYSTEM,
        user_id=None,
        summary=text,
        created_at=created_at,
    )


def send_message(
    room: ChatRoom,
    user: User,
    db: Session,
    *,
    content: str | None,
    message_type: MessageType | str = MessageType.TEXT,
    image_url: str | None = None,
    file_data: dict[str, Any] | None = None,
    voice_data: dict[str, Any] | None = None,
) -> RoomMessage:
    """Post a member message and revive the room for everyone who archived it."""

    require_member(room.id, user.id, db)
    try:
        kind = MessageType(message_type)
    except ValueError:
        kind = None
    if kind not in USER_ROOM_MESSAGE_TYPES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid message type")

    extra: dict[str, Any] = {}
    if kind is MessageType.TEXT:
        text = clean_content(content)
        summary = text
    else:
        attachment = {MessageType.IMAGE: image_url, MessageType.FILE: file_data, MessageType.VOICE: voice_data}[kind]
        if not attachment:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Attachment is required for {kind.value} messages",
            )
        text = (content or "").strip()
        if len(text) > settings.chat_message_max_length:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message is too long")
        summary = text or _ATTACHMENT_SUMMARIES[kind]
        extra = {"image_url": image_url, "file_data": file_data, "voice_data": voice_data}

    message = _post(
        room,
        db,
        content=text,
        message_type=kind,
        user_id=user.id,
        summary=summary,
        extra=extra,
    )
    db.execute(
        update(RoomMemberState)
        .where(RoomMemberState.room_id == room.id, RoomMemberState.is_archived.is_(True))
        .values(is_archived=False)
        .execution_options(synchronize_session="fetch")
    )
    db.flush()
    return message


def get_visible_messages(
    room: ChatRoom,
    user_id: int,
    db: Session,
    *,
    limit: int | None = None,
    offset: int | None = None,
) -> list[RoomMessage]:
    """Messages after the user's clear watermark that they hold a visibility row for."""

    require_member(room.id, user_id, db)
    limit, offset = page_bounds(limit, offset)
    stmt = (
        select(RoomMessage)
        .join(
            RoomMessageVisibility,
            and_(
                RoomMessageVisibility.message_id == RoomMessage.id,
                RoomMessageVisibility.user_id == user_id,
            ),
        )
        .outerjoin(
            RoomMemberState,
            and_(
                RoomMemberState.room_id == RoomMessage.room_id,
                RoomMemberState.user_id == user_id,
            ),
        )
        .where(
            RoomMessage.room_id == room.id,
            or_(
                RoomMemberState.cleared_at.is_(None),
                RoomMessage.created_at > RoomMemberState.cleared_at,
            ),
        )
        .order_by(RoomMessage.created_at.asc(), RoomMessage.id.asc())
        .offset(offset)
        .limit(limit)
        .options(selectinload(RoomMessage.user))
    )
    return list(db.execute(stmt).scalars().all())


def react_to_message(room: ChatRoom, message_id: int, user: User, emoji: str, db: Session) -> RoomMessage:
    """Set the user's reaction on a room message; room reactions never toggle off."""

    value = clean_emoji(emoji)
    require_member(room.id, user.id, db)
    message = _load_message(room, message_id, db)
    message.reactions = replace_reaction(message.reactions, user.id, value)
    _touch_activity(room, ActivityType.REACTION, f"Reacted with {value}", user.id, utcnow())
    db.flush()
    return message


def delete_message_for_me(room: ChatRoom, message_id: int, user_id: int, db: Session) -> None:
    require_member(room.id, user_id, db)
    _load_message(room, message_id, db)
    db.execute(
        delete(RoomMessageVisibility)
        .where(
            RoomMessageVisibility.message_id == message_id,
            RoomMessageVisibility.user_id == user_id,
        )
        .execution_options(synchronize_session=False)
    )
    db.flush()


# ---------------------------------------------------------------------------
# Per-user state
# ---------------------------------------------------------------------------


def set_archived(room: ChatRoom, user_id: int, is_archived: bool, db: Session) -> RoomMemberState:
    require_member(room.id, user_id, db)
    state = get_state(room.id, user_id, db)
    state.is_archived = is_archived
    db.flush()
    return state


def clear_chat(room: ChatRoom, user_id: int, db: Session) -> RoomMemberState:
    require_member(room.id, user_id, db)
    state = get_state(room.id, user_id, db)
    state.cleared_at = utcnow()
    db.flush()
    return state


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------


def join_room(room: ChatRoom, user: User, db: Session, *, notice: str | None = None) -> RoomMessage:
    """Add the user to the room.

    The first member of an empty room becomes its creator. History sent before
    the join stays hidden; the join notice is the first message the user sees.
    """

    if get_membership(room.id, user.id, db) is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Already a member of this room")

    now = utcnow()
    is_creator = not member_ids(room.id, db)
    room.members.append(RoomMember(user_id=user.id, is_creator=is_creator, joined_at=now))
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Already a member of this room"
        ) from None
    state = get_state(room.id, user.id, db)
    state.cleared_at = now
    state.is_archived = False
    db.flush()
    _adjust_member_count(room, 1, db)

    text = notice or f"{user.username} joined the room"
    message = post_system_message(room, text, db, created_at=_after(now))
    logger.info("User %s joined room %s (creator=%s)", user.id, room.id, is_creator)
    return message


def create_room(
    user: User,
    db: Session,
    *,
    title: str,
    category: str,
    description: str | None = None,
    tags: list[str] | None = None,
    is_private: bool = False,
    icon: str | None = None,
) -> ChatRoom:
    room = ChatRoom(
        title=title,
        category=category,
        description=description,
        tags=list(tags or []),
        is_private=is_private,
        icon=icon,
        member_count=0,
    )
    db.add(room)
    db.flush()
    join_room(room, user, db, notice=f"{user.username} created the room")
    return room


def _remove_member(
    room: ChatRoom,
    membership: RoomMember,
    departing: User,
    db: Session,
    *,
    kicked: bool,
    rng: random.Random | None,
) -> MembershipChange:
    was_creator = membership.is_creator
    room.members.remove(membership)
    db.execute(
        delete(RoomMemberState)
        .where(RoomMemberState.room_id == room.id, RoomMemberState.user_id == departing.id)
        .execution_options(synchronize_session=False)
    )
    message_ids = select(RoomMessage.id).where(RoomMessage.room_id == room.id)
    db.execute(
        delete(RoomMessageVisibility)
        .where(
            RoomMessageVisibility.user_id == departing.id,
            RoomMessageVisibility.message_id.in_(message_ids),
        )
        .execution_options(synchronize_session=False)
    )
    db.flush()
    _adjust_member_count(room, -1, db)

    remaining = list(room.members)
    change = MembershipChange(
        room_id=room.id,
        user_id=departing.id,
        kicked=kicked,
        remaining_member_ids=[member.user_id for member in remaining],
    )
    if not remaining:
        logger.info("Room %s is now empty after user %s left", room.id, departing.id)
        return change

    verb = "was removed from the room" if kicked else "left the room"
    change.notices.append(post_system_message(room, f"{departing.username} {verb}", db))

    if was_creator:
        successor = (rng or random).choice(remaining)
        successor.is_creator = True
        db.flush()
        change.new_creator_id = successor.user_id
        successor_user = db.get(User, successor.user_id)
        change.notices.append(post_system_message(room, f"{successor_user.username} is now the admin", db))
        logger.info("Room %s creator handed off from %s to %s", room.id, departing.id, successor.user_id)
    return change


def leave_room(room: ChatRoom, user: User, db: Session, *, rng: random.Random | None = None) -> MembershipChange:
    membership = require_member(room.id, user.id, db)
    return _remove_member(room, membership, user, db, kicked=False, rng=rng)


def kick_member(
    room: ChatRoom,
    actor: User,
    target_user_id: int,
    db: Session,
    *,
    rng: random.Random | None = None,
) -> MembershipChange:
    require_creator(room.id, actor.id, db, action="remove members")
    if target_user_id == actor.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot remove yourself")
    membership = get_membership(room.id, target_user_id, db)
    if membership is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found")
    target = db.get(User, target_user_id)
    return _remove_member(room, membership, target, db, kicked=True, rng=rng)


def delete_room(room: ChatRoom, user: User, db: Session) -> list[int]:
    """Delete the room with all dependent rows; returns the former member ids."""

    require_creator(room.id, user.id, db, action="delete the room")
    former_members = member_ids(room.id, db)
    db.delete(room)
    db.flush()
    logger.info("Room %s deleted by %s", room.id, user.id)
    return former_members


def update_room(room: ChatRoom, user: User, changes: dict[str, Any], db: Session) -> ChatRoom:
    require_creator(room.id, user.id, db, action="edit the room")
    updates = {key: value for key, value in changes.items() if key in ROOM_UPDATABLE_FIELDS}
    for key, value in updates.items():
        if key in {"title", "category"} and not (value or "").strip():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Room {key} cannot be empty")
        setattr(room, key, list(value or []) if key == "tags" else value)
    _touch_activity(room, ActivityType.UPDATE, "Updated the room details", user.id, utcnow())
    db.flush()
    return room


def set_room_theme(room: ChatRoom, user: User, theme: str, db: Session) -> ChatRoom:
    value = parse_theme(theme)
    require_member(room.id, user.id, db)
    room.chat_theme = value
    _touch_activity(room, ActivityType.THEME, summarize(f"Changed the theme to {value.value}"), user.id, utcnow())
    db.flush()
    return room


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


def list_rooms(
    db: Session,
    *,
    category: str | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> list[ChatRoom]:
    """Public rooms for discovery, newest first."""

    limit = min(limit or settings.room_list_default_limit, settings.chat_history_max_limit)
    offset = max(offset or 0, 0)
    stmt = select(ChatRoom).where(ChatRoom.is_private.is_(False))
    if category:
        stmt = stmt.where(ChatRoom.category == category)
    stmt = stmt.order_by(ChatRoom.created_at.desc(), ChatRoom.id.desc()).offset(offset).limit(limit)
    return list(db.execute(stmt).scalars().all())


def joinable_count(user_id: int, db: Session) -> int:
    joined = select(RoomMember.room_id).where(RoomMember.user_id == user_id)
    stmt = select(func.count(ChatRoom.id)).where(
        ChatRoom.is_private.is_(False),
        ChatRoom.id.not_in(joined),
    )
    return db.execute(stmt).scalar_one()


def list_my_rooms(user_id: int, db: Session, *, archived: bool = False) -> list[MyRoomEntry]:
    stmt = (
        select(ChatRoom, RoomMember, RoomMemberState)
        .join(RoomMember, and_(RoomMember.room_id == ChatRoom.id, RoomMember.user_id == user_id))
        .join(
            RoomMemberState,
            and_(RoomMemberState.room_id == ChatRoom.id, RoomMemberState.user_id == user_id),
        )
        .where(RoomMemberState.is_archived == archived)
        .order_by(
            ChatRoom.last_activity_at.is_(None),
            ChatRoom.last_activity_at.desc(),
            ChatRoom.created_at.desc(),
        )
    )
    return [
        MyRoomEntry(room=room, membership=membership, state=state)
        for room, membership, state in db.execute(stmt).all()
    ]
