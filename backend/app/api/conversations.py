"""Direct conversation endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.database import get_db
from app.models import DirectMessage, User
from app.schemas import (
    ArchiveUpdate,
    ConversationRead,
    DirectMessageCreate,
    DirectMessageRead,
    PublicUser,
    ReactionRequest,
    ThemeUpdate,
)
from app.services import conversations as conversation_service
from app.services.conversations import ConversationView
from driftzo.realtime.managers import (
    CONVERSATION_UPDATED,
    MESSAGE_NEW,
    MESSAGE_REACTION,
    THEME_CHANGED,
    conversation_channel,
    get_broadcaster,
)

router = APIRouter(prefix="/conversations", tags=["conversations"])

broadcaster = get_broadcaster()


def _serialize_public_user(user: User) -> PublicUser:
    return PublicUser(id=user.id, username=user.username, avatar=user.avatar)


def _serialize_message(message: DirectMessage) -> DirectMessageRead:
    return DirectMessageRead(
        id=message.id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        sender=_serialize_public_user(message.sender),
        content=message.content,
        type=message.type,
        reactions=list(message.reactions or []),
        created_at=message.created_at,
    )


def _serialize_view(view: ConversationView) -> ConversationRead:
    conversation = view.conversation
    return ConversationRead(
        id=conversation.id,
        other_user=_serialize_public_user(view.other_user),
        last_message=_serialize_message(view.last_message) if view.last_message else None,
        last_message_at=conversation.last_message_at,
        last_activity_type=conversation.last_activity_type,
        last_activity_summary=conversation.last_activity_summary,
        last_activity_actor_id=conversation.last_activity_actor_id,
        chat_theme=conversation.chat_theme,
        is_archived=view.state.is_archived,
    )


@router.get("", response_model=list[ConversationRead])
async def list_conversations(
    archived: bool = Query(default=False),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[ConversationRead]:
    """Return the caller's inbox, filtered by their archive flag."""

    views = conversation_service.list_conversations(current_user.id, db, archived=archived)
    return [_serialize_view(view) for view in views]


@router.get("/with/{user_id}", response_model=ConversationRead)
async def get_or_create_conversation(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ConversationRead:
    """Open the conversation with another user, creating it on first contact."""

    conversation = conversation_service.get_or_create_conversation(current_user, user_id, db)
    result = _serialize_view(conversation_service.build_view(conversation, current_user.id, db))
    db.commit()
    return result


@router.get("/{conversation_id}/messages", response_model=list[DirectMessageRead])
async def get_messages(
    conversation_id: int,
    limit: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[DirectMessageRead]:
    conversation = conversation_service.load_conversation(conversation_id, current_user.id, db)
    messages = conversation_service.get_visible_messages(
        conversation, current_user.id, db, limit=limit, offset=offset
    )
    return [_serialize_message(message) for message in messages]


@router.post(
    "/{conversation_id}/messages",
    response_model=DirectMessageRead,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: int,
    payload: DirectMessageCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> DirectMessageRead:
    conversation = conversation_service.load_conversation(conversation_id, current_user.id, db)
    participant_ids = conversation.participant_ids
    message = conversation_service.send_message(conversation, current_user, payload.content, db)
    result = _serialize_message(message)
    db.commit()

    await broadcaster.emit(
        conversation_channel(conversation_id),
        MESSAGE_NEW,
        {"conversation_id": conversation_id, "message": result.model_dump(mode="json")},
    )
    await broadcaster.emit_to_users(participant_ids, CONVERSATION_UPDATED, {"conversation_id": conversation_id})
    return result


@router.patch("/{conversation_id}/archive")
async def set_archived(
    conversation_id: int,
    payload: ArchiveUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, int | bool]:
    conversation = conversation_service.load_conversation(conversation_id, current_user.id, db)
    conversation_service.set_archived(conversation, current_user.id, payload.is_archived, db)
    db.commit()

    await broadcaster.emit_to_users([current_user.id], CONVERSATION_UPDATED, {"conversation_id": conversation_id})
    return {"conversation_id": conversation_id, "is_archived": payload.is_archived}


@router.patch("/{conversation_id}/theme")
async def set_theme(
    conversation_id: int,
    payload: ThemeUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, int | str]:
    conversation = conversation_service.load_conversation(conversation_id, current_user.id, db)
    participant_ids = conversation.participant_ids
    conversation = conversation_service.set_theme(conversation, current_user, payload.theme, db)
    theme = conversation.chat_theme.value
    db.commit()

    await broadcaster.emit(
        conversation_channel(conversation_id),
        THEME_CHANGED,
        {"conversation_id": conversation_id, "theme": theme, "user_id": current_user.id},
    )
    await broadcaster.emit_to_users(participant_ids, CONVERSATION_UPDATED, {"conversation_id": conversation_id})
    return {"conversation_id": conversation_id, "chat_theme": theme}


@router.delete("/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Response:
    """Hide the conversation and its history for the caller only."""

    conversation = conversation_service.load_conversation(conversation_id, current_user.id, db)
    conversation_service.delete_for_me(conversation, current_user.id, db)
    db.commit()

    await broadcaster.emit_to_users([current_user.id], CONVERSATION_UPDATED, {"conversation_id": conversation_id})
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/messages/{message_id}/react", response_model=DirectMessageRead)
async def react_to_message(
    message_id: int,
    payload: ReactionRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> DirectMessageRead:
    message = conversation_service.react_to_message(message_id, current_user, payload.emoji, db)
    conversation_id = message.conversation_id
    participant_ids = message.conversation.participant_ids
    result = _serialize_message(message)
    db.commit()

    await broadcaster.emit(
        conversation_channel(conversation_id),
        MESSAGE_REACTION,
        {
            "conversation_id": conversation_id,
            "message_id": message_id,
            "reactions": [reaction.model_dump() for reaction in result.reactions],
        },
    )
    await broadcaster.emit_to_users(participant_ids, CONVERSATION_UPDATED, {"conversation_id": conversation_id})
    return result
