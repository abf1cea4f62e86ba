"""Per-user visibility and state handling for direct conversations.

Each participant owns a :class:`ConversationState` row (archive flag, clear and
delete watermarks) and one :class:`DirectMessageVisibility` row per message it
may read.  Message history is filtered purely by visibility rows, so deleting a
conversation "for me" is a destructive purge of the caller's rows and never
touches the other participant.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from fastapi import HTTPException, status
from sqlalchemy import and_, delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.models import (
    ActivityType,
    ChatTheme,
    Conversation,
    ConversationState,
    DirectMessage,
    DirectMessageVisibility,
    MessageType,
    User,
    utcnow,
)
from app.monitoring.metrics import chat_messages_total
from app.services.common import (
    clean_content,
    clean_emoji,
    page_bounds,
    parse_theme,
    summarize,
    toggle_reaction,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ConversationView:
    """A conversation as seen by one participant."""

    conversation: Conversation
    state: ConversationState
    other_user: User
    last_message: DirectMessage | None


def _normalize_pair(user_id: int, other_id: int) -> tuple[int, int]:
    return (user_id, other_id) if user_id < other_id else (other_id, user_id)


def _find_conversation(user1_id: int, user2_id: int, db: Session) -> Conversation | None:
    stmt = select(Conversation).where(
        Conversation.user1_id == user1_id,
        Conversation.user2_id == user2_id,
    )
    return db.execute(stmt).scalar_one_or_none()


def get_state(conversation_id: int, user_id: int, db: Session) -> ConversationState:
    """Return the caller's state row, creating it on first access."""

    stmt = select(ConversationState).where(
        ConversationState.conversation_id == conversation_id,
        ConversationState.user_id == user_id,
    )
    state = db.execute(stmt).scalar_one_or_none()
    if state is None:
        state = ConversationState(conversation_id=conversation_id, user_id=user_id, is_archived=False)
        db.add(state)
        db.flush()
    return state


def load_conversation(conversation_id: int, user_id: int, db: Session) -> Conversation:
    """Load a conversation the user participates in.

    Non-participants get the same 404 as a missing id so that existence is not
    disclosed.
    """

    conversation = db.get(Conversation, conversation_id)
    if conversation is None or not conversation.has_user(user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    return conversation


def get_or_create_conversation(user: User, other_user_id: int, db: Session) -> Conversation:
    if other_user_id == user.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot start a conversation with yourself",
        )
    if db.get(User, other_user_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    user_id = user.id
    user1_id, user2_id = _normalize_pair(user_id, other_user_id)
    conversation = _find_conversation(user1_id, user2_id, db)
    if conversation is None:
        conversation = Conversation(user1_id=user1_id, user2_id=user2_id)
        db.add(conversation)
        try:
            db.flush()
        except IntegrityError:
            # Another request created the pair first.
            db.rollback()
            conversation = _find_conversation(user1_id, user2_id, db)
            if conversation is None:
                raise
        else:
            logger.info("Created conversation %s for users %s/%s", conversation.id, user1_id, user2_id)

    for participant_id in conversation.participant_ids:
        get_state(conversation.id, participant_id, db)
    get_state(conversation.id, user_id, db).deleted_at = None
    db.flush()
    return conversation


def last_visible_message(conversation_id: int, user_id: int, db: Session) -> DirectMessage | None:
    stmt = (
        select(DirectMessage)
        .join(
            DirectMessageVisibility,
            and_(
                DirectMessageVisibility.message_id == DirectMessage.id,
                DirectMessageVisibility.user_id == user_id,
            ),
        )
        .where(DirectMessage.conversation_id == conversation_id)
        .order_by(DirectMessage.created_at.desc(), DirectMessage.id.desc())
        .limit(1)
        .options(selectinload(DirectMessage.sender))
    )
    return db.execute(stmt).scalar_one_or_none()


def build_view(conversation: Conversation, user_id: int, db: Session) -> ConversationView:
    return ConversationView(
        conversation=conversation,
        state=get_state(conversation.id, user_id, db),
        other_user=db.get(User, conversation.other_user_id(user_id)),
        last_message=last_visible_message(conversation.id, user_id, db),
    )


def list_conversations(user_id: int, db: Session, *, archived: bool = False) -> list[ConversationView]:
    """Conversations in the user's inbox, most recent activity first."""

    stmt = (
        select(Conversation, ConversationState)
        .join(
            ConversationState,
            and_(
                ConversationState.conversation_id == Conversation.id,
                ConversationState.user_id == user_id,
            ),
        )
        .where(
            ConversationState.deleted_at.is_(None),
            ConversationState.is_archived == archived,
        )
        .order_by(
            Conversation.last_message_at.is_(None),
            Conversation.last_message_at.desc(),
            Conversation.id.desc(),
        )
    )
    views: list[ConversationView] = []
    for conversation, state in db.execute(stmt).all():
        views.append(
            ConversationView(
                conversation=conversation,
                state=state,
                other_user=db.get(User, conversation.other_user_id(user_id)),
                last_message=last_visible_message(conversation.id, user_id, db),
            )
        )
    return views


def get_visible_messages(
    conversation: Conversation,
    user_id: int,
    db: Session,
    *,
    limit: int | None = None,
    offset: int | None = None,
) -> list[DirectMessage]:
    """Messages the user still holds a visibility row for, oldest first."""

    limit, offset = page_bounds(limit, offset)
    stmt = (
        select(DirectMessage)
        .join(
            DirectMessageVisibility,
            and_(
                DirectMessageVisibility.message_id == DirectMessage.id,
                DirectMessageVisibility.user_id == user_id,
            ),
        )
        .where(DirectMessage.conversation_id == conversation.id)
        .order_by(DirectMessage.created_at.asc(), DirectMessage.id.asc())
        .offset(offset)
        .limit(limit)
        .options(selectinload(DirectMessage.sender))
    )
    return list(db.execute(stmt).scalars().all())


def _touch_activity(
    conversation: Conversation,
    activity: ActivityType,
    summary: str,
    actor_id: int,
    at: datetime,
) -> None:
    conversation.last_message_at = at
    conversation.last_activity_type = activity
    conversation.last_activity_summary = summary
    conversation.last_activity_actor_id = actor_id


def _revive_for(conversation: Conversation, user_id: int, db: Session) -> None:
    state = get_state(conversation.id, user_id, db)
    state.is_archived = False
    state.deleted_at = None
    state.cleared_at = None


def send_message(conversation: Conversation, sender: User, content: str, db: Session) -> DirectMessage:
    """Persist a text message visible to both participants.

    The recipient's archive, clear and delete markers are reset so the
    conversation resurfaces in their inbox; the sender's state is untouched.
    """

    if not conversation.has_user(sender.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    text = clean_content(content)

    message = DirectMessage(
        conversation_id=conversation.id,
        sender_id=sender.id,
        content=text,
        type=MessageType.TEXT,
        reactions=[],
        created_at=utcnow(),
    )
    db.add(message)
    db.flush()
    for participant_id in conversation.participant_ids:
        db.add(DirectMessageVisibility(user_id=participant_id, message_id=message.id))

    _touch_activity(conversation, ActivityType.MESSAGE, summarize(text), sender.id, message.created_at)
    _revive_for(conversation, conversation.other_user_id(sender.id), db)
    db.flush()
    chat_messages_total.labels("direct", message.type.value).inc()
    return message


def react_to_message(message_id: int, user: User, emoji: str, db: Session) -> DirectMessage:
    """Toggle the user's reaction on a direct message."""

    value = clean_emoji(emoji)
    message = db.get(DirectMessage, message_id)
    if message is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    conversation = load_conversation(message.conversation_id, user.id, db)

    message.reactions = toggle_reaction(message.reactions, user.id, value)
    _touch_activity(conversation, ActivityType.REACTION, f"Reacted with {value}", user.id, utcnow())
    _revive_for(conversation, conversation.other_user_id(user.id), db)
    db.flush()
    return message


def set_archived(conversation: Conversation, user_id: int, is_archived: bool, db: Session) -> ConversationState:
    state = get_state(conversation.id, user_id, db)
    state.is_archived = is_archived
    db.flush()
    return state


def set_theme(conversation: Conversation, user: User, theme: str, db: Session) -> Conversation:
    """Switch the shared theme of a conversation."""

    value: ChatTheme = parse_theme(theme)
    conversation.chat_theme = value
    _touch_activity(
        conversation,
        ActivityType.THEME,
        summarize(f"Changed the theme to {value.value}"),
        user.id,
        utcnow(),
    )
    db.flush()
    return conversation


def delete_for_me(conversation: Conversation, user_id: int, db: Session) -> ConversationState:
    """Hide the conversation for one user and purge their visibility rows."""

    now = utcnow()
    state = get_state(conversation.id, user_id, db)
    state.deleted_at = now
    state.cleared_at = now

    message_ids = select(DirectMessage.id).where(DirectMessage.conversation_id == conversation.id)
    db.execute(
        delete(DirectMessageVisibility)
        .where(
            DirectMessageVisibility.user_id == user_id,
            DirectMessageVisibility.message_id.in_(message_ids),
        )
        .execution_options(synchronize_session=False)
    )
    db.flush()
    logger.debug("User %s deleted conversation %s for themselves", user_id, conversation.id)
    return state
