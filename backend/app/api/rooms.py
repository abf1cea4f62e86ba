"""Chat room endpoints: discovery, membership and room history."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.database import get_db
from app.models import ChatRoom, RoomMessage, User
from app.schemas import (
    ArchiveUpdate,
    JoinableCount,
    MyRoomRead,
    PublicUser,
    ReactionRequest,
    RoomCreate,
    RoomDetail,
    RoomMemberRead,
    RoomMembershipResult,
    RoomMessageCreate,
    RoomMessageRead,
    RoomRead,
    RoomUpdate,
    ThemeUpdate,
)
from app.services import rooms as room_service
from app.services.rooms import MembershipChange
from driftzo.realtime.managers import (
    MESSAGE_NEW,
    MESSAGE_REACTION,
    ROOM_ADMIN_CHANGED,
    ROOM_DELETED,
    ROOM_MEMBER_KICKED,
    ROOM_MEMBER_LEFT,
    ROOM_UPDATED,
    THEME_CHANGED,
    USER_ROOM_UPDATED,
    get_broadcaster,
    room_channel,
    user_channel,
)

router = APIRouter(prefix="/rooms", tags=["rooms"])

logger = logging.getLogger(__name__)

broadcaster = get_broadcaster()


def _serialize_message(message: RoomMessage) -> RoomMessageRead:
    user = message.user
    return RoomMessageRead(
        id=message.id,
        room_id=message.room_id,
        user_id=message.user_id,
        user=PublicUser(id=user.id, username=user.username, avatar=user.avatar) if user else None,
        content=message.content,
        type=message.type,
        image_url=message.image_url,
        file_data=message.file_data,
        voice_data=message.voice_data,
        reactions=list(message.reactions or []),
        created_at=message.created_at,
    )


def _serialize_detail(room: ChatRoom, user_id: int) -> RoomDetail:
    members = [RoomMemberRead.model_validate(member) for member in room.members]
    membership = next((member for member in members if member.user.id == user_id), None)
    return RoomDetail(
        **RoomRead.model_validate(room).model_dump(),
        members=members,
        is_member=membership is not None,
        is_creator=bool(membership and membership.is_creator),
    )


async def _emit_new_messages(room_id: int, messages: list[RoomMessageRead]) -> None:
    for message in messages:
        await broadcaster.emit(
            room_channel(room_id),
            MESSAGE_NEW,
            {"room_id": room_id, "message": message.model_dump(mode="json")},
        )


async def _emit_room_updated(room: RoomRead, member_ids: list[int]) -> None:
    data = {"room_id": room.id, "room": room.model_dump(mode="json")}
    await broadcaster.emit(room_channel(room.id), ROOM_UPDATED, data)
    await broadcaster.emit_to_users(member_ids, USER_ROOM_UPDATED, {"room_id": room.id})


async def _emit_membership_change(change: MembershipChange, notices: list[RoomMessageRead], room: RoomRead) -> None:
    # Former members keep no subscription to the room channel.
    await broadcaster.evict(room_channel(change.room_id), [change.user_id])
    await _emit_new_messages(change.room_id, notices)
    event = ROOM_MEMBER_KICKED if change.kicked else ROOM_MEMBER_LEFT
    data = {"room_id": change.room_id, "user_id": change.user_id}
    await broadcaster.emit(room_channel(change.room_id), event, data)
    await broadcaster.emit(user_channel(change.user_id), event, data)
    if change.new_creator_id is not None:
        await broadcaster.emit(
            room_channel(change.room_id),
            ROOM_ADMIN_CHANGED,
            {"room_id": change.room_id, "user_id": change.new_creator_id},
        )
    await _emit_room_updated(room, [*change.remaining_member_ids, change.user_id])


@router.post("", response_model=RoomDetail, status_code=status.HTTP_201_CREATED)
async def create_room(
    payload: RoomCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> RoomDetail:
    room = room_service.create_room(current_user, db, **payload.model_dump())
    result = _serialize_detail(room, current_user.id)
    db.commit()
    logger.info("Room %s created by user %s", result.id, current_user.id)

    await broadcaster.emit_to_users([current_user.id], USER_ROOM_UPDATED, {"room_id": result.id})
    return result


@router.get("", response_model=list[RoomRead])
async def list_rooms(
    category: str | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[ChatRoom]:
    return room_service.list_rooms(db, category=category, limit=limit, offset=offset)


@router.get("/joinable-count", response_model=JoinableCount)
async def joinable_count(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> JoinableCount:
    return JoinableCount(count=room_service.joinable_count(current_user.id, db))


@router.get("/my", response_model=list[MyRoomRead])
async def list_my_rooms(
    archived: bool = Query(default=False),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[MyRoomRead]:
    entries = room_service.list_my_rooms(current_user.id, db, archived=archived)
    return [
        MyRoomRead(
            **RoomRead.model_validate(entry.room).model_dump(),
            is_creator=entry.membership.is_creator,
            is_archived=entry.state.is_archived,
        )
        for entry in entries
    ]


@router.get("/{room_id}", response_model=RoomDetail)
async def get_room(
    room_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> RoomDetail:
    room = room_service.load_room(room_id, db, with_members=True)
    return _serialize_detail(room, current_user.id)


@router.patch("/{room_id}", response_model=RoomRead)
async def update_room(
    room_id: int,
    payload: RoomUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> RoomRead:
    room = room_service.load_room(room_id, db)
    room = room_service.update_room(room, current_user, payload.model_dump(exclude_unset=True), db)
    result = RoomRead.model_validate(room)
    member_ids = room_service.member_ids(room_id, db)
    db.commit()

    await _emit_room_updated(result, member_ids)
    return result


@router.put("/{room_id}/theme", response_model=RoomRead)
async def set_room_theme(
    room_id: int,
    payload: ThemeUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> RoomRead:
    room = room_service.load_room(room_id, db)
    room = room_service.set_room_theme(room, current_user, payload.theme, db)
    result = RoomRead.model_validate(room)
    member_ids = room_service.member_ids(room_id, db)
    db.commit()

    await broadcaster.emit(
        room_channel(room_id),
        THEME_CHANGED,
        {"room_id": room_id, "theme": result.chat_theme.value, "user_id": current_user.id},
    )
    await broadcaster.emit_to_users(member_ids, USER_ROOM_UPDATED, {"room_id": room_id})
    return result


@router.post("/{room_id}/join", response_model=RoomDetail)
async def join_room(
    room_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> RoomDetail:
    room = room_service.load_room(room_id, db)
    notice = room_service.join_room(room, current_user, db)
    result = _serialize_detail(room, current_user.id)
    notice_payload = _serialize_message(notice)
    member_ids = room_service.member_ids(room_id, db)
    db.commit()

    await _emit_new_messages(room_id, [notice_payload])
    await _emit_room_updated(RoomRead.model_validate(result), member_ids)
    return result


@router.post("/{room_id}/leave", response_model=RoomMembershipResult)
async def leave_room(
    room_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> RoomMembershipResult:
    room = room_service.load_room(room_id, db)
    change = room_service.leave_room(room, current_user, db)
    notices = [_serialize_message(notice) for notice in change.notices]
    room_payload = RoomRead.model_validate(room)
    db.commit()

    await _emit_membership_change(change, notices, room_payload)
    return RoomMembershipResult(
        room_id=room_id,
        user_id=current_user.id,
        member_count=room_payload.member_count,
        new_creator_id=change.new_creator_id,
    )


@router.post("/{room_id}/kick/{user_id}", response_model=RoomMembershipResult)
async def kick_member(
    room_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> RoomMembershipResult:
    room = room_service.load_room(room_id, db)
    change = room_service.kick_member(room, current_user, user_id, db)
    notices = [_serialize_message(notice) for notice in change.notices]
    room_payload = RoomRead.model_validate(room)
    db.commit()

    await _emit_membership_change(change, notices, room_payload)
    return RoomMembershipResult(
        room_id=room_id,
        user_id=user_id,
        member_count=room_payload.member_count,
        new_creator_id=change.new_creator_id,
    )


@router.delete("/{room_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_room(
    room_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Response:
    room = room_service.load_room(room_id, db)
    former_members = room_service.delete_room(room, current_user, db)
    db.commit()

    await broadcaster.emit(room_channel(room_id), ROOM_DELETED, {"room_id": room_id})
    await broadcaster.evict(room_channel(room_id))
    await broadcaster.emit_to_users(former_members, USER_ROOM_UPDATED, {"room_id": room_id, "deleted": True})
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{room_id}/messages", response_model=list[RoomMessageRead])
async def get_messages(
    room_id: int,
    limit: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[RoomMessageRead]:
    room = room_service.load_room(room_id, db)
    messages = room_service.get_visible_messages(room, current_user.id, db, limit=limit, offset=offset)
    return [_serialize_message(message) for message in messages]


@router.post("/{room_id}/messages", response_model=RoomMessageRead, status_code=status.HTTP_201_CREATED)
async def send_message(
    room_id: int,
    payload: RoomMessageCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> RoomMessageRead:
    room = room_service.load_room(room_id, db)
    message = room_service.send_message(
        room,
        current_user,
        db,
        content=payload.content,
        message_type=payload.type,
        image_url=payload.image_url,
        file_data=payload.file_data,
        voice_data=payload.voice_data,
    )
    result = _serialize_message(message)
    member_ids = room_service.member_ids(room_id, db)
    db.commit()

    await _emit_new_messages(room_id, [result])
    await broadcaster.emit_to_users(member_ids, USER_ROOM_UPDATED, {"room_id": room_id})
    return result


@router.put("/{room_id}/archive")
async def set_archived(
    room_id: int,
    payload: ArchiveUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, int | bool]:
    room = room_service.load_room(room_id, db)
    room_service.set_archived(room, current_user.id, payload.is_archived, db)
    db.commit()

    await broadcaster.emit_to_users([current_user.id], USER_ROOM_UPDATED, {"room_id": room_id})
    return {"room_id": room_id, "is_archived": payload.is_archived}


@router.post("/{room_id}/clear")
async def clear_chat(
    room_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, int | bool]:
    room = room_service.load_room(room_id, db)
    room_service.clear_chat(room, current_user.id, db)
    db.commit()

    await broadcaster.emit_to_users([current_user.id], USER_ROOM_UPDATED, {"room_id": room_id})
    return {"room_id": room_id, "cleared": True}


@router.delete("/{room_id}/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message_for_me(
    room_id: int,
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Response:
    room = room_service.load_room(room_id, db)
    room_service.delete_message_for_me(room, message_id, current_user.id, db)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{room_id}/messages/{message_id}/react", response_model=RoomMessageRead)
async def react_to_message(
    room_id: int,
    message_id: int,
    payload: ReactionRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> RoomMessageRead:
    room = room_service.load_room(room_id, db)
    message = room_service.react_to_message(room, message_id, current_user, payload.emoji, db)
    result = _serialize_message(message)
    db.commit()

    await broadcaster.emit(
        room_channel(room_id),
        MESSAGE_REACTION,
        {
            "room_id": room_id,
            "message_id": message_id,
            "reactions": [reaction.model_dump() for reaction in result.reactions],
        },
    )
    return result
