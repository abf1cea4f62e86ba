"""Unit tests for room membership, admin hand-off and visibility rules."""

from __future__ import annotations

import random

import pytest
from fastapi import HTTPException
from sqlalchemy import func, select

from app.models import (
    ActivityType,
    ChatRoom,
    MessageType,
    RoomMember,
    RoomMemberState,
    RoomMessage,
    RoomMessageVisibility,
    User,
)
from app.services import rooms as room_service


class PickLast:
    """Deterministic stand-in for :class:`random.Random`."""

    def __init__(self) -> None:
        self.seen: list[list[int]] = []

    def choice(self, members):
        self.seen.append([member.user_id for member in members])
        return members[-1]


def _contents(messages) -> list[str]:
    return [message.content for message in messages]


def _creators(db_session, room_id: int) -> list[int]:
    stmt = select(RoomMember.user_id).where(RoomMember.room_id == room_id, RoomMember.is_creator.is_(True))
    return list(db_session.execute(stmt).scalars().all())


def _visibility_count(db_session, user_id: int) -> int:
    stmt = select(func.count(RoomMessageVisibility.id)).where(RoomMessageVisibility.user_id == user_id)
    return db_session.execute(stmt).scalar_one()


@pytest.fixture()
def room_with_members(db_session, make_user):
    owner = make_user("owner")
    guest = make_user("guest")
    room = room_service.create_room(owner, db_session, title="Night owls", category="music")
    room_service.join_room(room, guest, db_session)
    db_session.commit()
    return room, owner, guest


def test_create_and_leave_scenario(db_session, make_user):
    u1 = make_user("u1")
    u2 = make_user("u2")

    room = room_service.create_room(u1, db_session, title="Lobby", category="general")
    db_session.commit()
    assert room.member_count == 1
    assert _creators(db_session, room.id) == [u1.id]

    room_service.join_room(room, u2, db_session)
    db_session.commit()
    assert room.member_count == 2
    for user in (u1, u2):
        assert "u2 joined the room" in _contents(room_service.get_visible_messages(room, user.id, db_session))

    room_service.send_message(room, u1, db_session, content="hello")
    db_session.commit()
    for user in (u1, u2):
        assert "hello" in _contents(room_service.get_visible_messages(room, user.id, db_session))

    change = room_service.leave_room(room, u1, db_session, rng=random.Random(7))
    db_session.commit()

    assert change.new_creator_id == u2.id
    assert change.remaining_member_ids == [u2.id]
    assert room.member_count == 1
    assert _creators(db_session, room.id) == [u2.id]
    assert _contents(room_service.get_visible_messages(room, u2.id, db_session)) == [
        "u2 joined the room",
        "hello",
        "u1 left the room",
        "u2 is now the admin",
    ]
    with pytest.raises(HTTPException) as exc:
        room_service.get_visible_messages(room, u1.id, db_session)
    assert exc.value.status_code == 403


def test_creator_hand_off_uses_injected_random_source(db_session, make_user):
    owner, first, second = make_user("owner"), make_user("first"), make_user("second")
    room = room_service.create_room(owner, db_session, title="Picks", category="games")
    room_service.join_room(room, first, db_session)
    room_service.join_room(room, second, db_session)
    db_session.commit()

    rng = PickLast()
    change = room_service.leave_room(room, owner, db_session, rng=rng)
    db_session.commit()

    assert rng.seen == [[first.id, second.id]]
    assert change.new_creator_id == second.id
    assert _creators(db_session, room.id) == [second.id]
    assert [notice.content for notice in change.notices] == ["owner left the room", "second is now the admin"]


@pytest.mark.parametrize("seed", range(5))
def test_creator_departure_always_leaves_exactly_one_creator(db_session, make_user, seed):
    owner = make_user("owner")
    others = [make_user(f"member{index}") for index in range(4)]
    room = room_service.create_room(owner, db_session, title="Crowd", category="general")
    for user in others:
        room_service.join_room(room, user, db_session)
    db_session.commit()

    change = room_service.leave_room(room, owner, db_session, rng=random.Random(seed))
    db_session.commit()

    creators = _creators(db_session, room.id)
    assert len(creators) == 1
    assert creators[0] == change.new_creator_id
    assert creators[0] in {user.id for user in others}


def test_non_creator_leaving_keeps_creator(room_with_members, db_session):
    room, owner, guest = room_with_members

    change = room_service.leave_room(room, guest, db_session, rng=PickLast())
    db_session.commit()

    assert change.new_creator_id is None
    assert _creators(db_session, room.id) == [owner.id]
    assert [notice.content for notice in change.notices] == ["guest left the room"]


def test_last_member_leaving_leaves_room_without_creator(db_session, make_user):
    owner = make_user("owner")
    room = room_service.create_room(owner, db_session, title="Solo", category="general")
    db_session.commit()

    rng = PickLast()
    change = room_service.leave_room(room, owner, db_session, rng=rng)
    db_session.commit()

    assert rng.seen == []
    assert change.notices == []
    assert change.new_creator_id is None
    assert room.member_count == 0
    assert _creators(db_session, room.id) == []
    assert db_session.get(ChatRoom, room.id) is not None


def test_first_joiner_of_empty_room_becomes_creator(db_session, make_user):
    owner, newcomer = make_user("owner"), make_user("newcomer")
    room = room_service.create_room(owner, db_session, title="Revived", category="general")
    room_service.leave_room(room, owner, db_session)
    db_session.commit()

    room_service.join_room(room, newcomer, db_session)
    db_session.commit()

    assert _creators(db_session, room.id) == [newcomer.id]


def test_late_joiner_only_sees_messages_after_joining(room_with_members, db_session, make_user):
    room, owner, _ = room_with_members
    room_service.send_message(room, owner, db_session, content="before you came")
    db_session.commit()

    latecomer = make_user("latecomer")
    room_service.join_room(room, latecomer, db_session)
    room_service.send_message(room, owner, db_session, content="welcome")
    db_session.commit()

    assert _contents(room_service.get_visible_messages(room, latecomer.id, db_session)) == [
        "latecomer joined the room",
        "welcome",
    ]


def test_join_rejects_existing_members(room_with_members, db_session):
    room, _, guest = room_with_members

    with pytest.raises(HTTPException) as exc:
        room_service.join_room(room, guest, db_session)
    assert exc.value.status_code == 400
    assert room.member_count == 2


def test_concurrent_joins_keep_member_count_in_step(room_with_members, db_session, session_factory, make_user):
    room, _, _ = room_with_members
    first, second = make_user("first"), make_user("second")
    session_a, session_b = session_factory(), session_factory()
    try:
        room_a = room_service.load_room(room.id, session_a)
        room_b = room_service.load_room(room.id, session_b)
        assert room_a.member_count == room_b.member_count == 2

        room_service.join_room(room_a, session_a.get(User, first.id), session_a)
        session_a.commit()
        room_service.join_room(room_b, session_b.get(User, second.id), session_b)
        session_b.commit()
        assert room_b.member_count == 4
    finally:
        session_a.close()
        session_b.close()

    db_session.expire_all()
    stored = db_session.get(ChatRoom, room.id)
    assert stored.member_count == len(room_service.member_ids(room.id, db_session)) == 4


def test_losing_join_race_reports_existing_membership(
    room_with_members, db_session, session_factory, make_user, monkeypatch
):
    room, _, _ = room_with_members
    racer = make_user("racer")
    other = session_factory()
    try:
        room_service.join_room(room_service.load_room(room.id, other), other.get(User, racer.id), other)
        other.commit()
    finally:
        other.close()

    # The membership lookup ran before the other request committed.
    monkeypatch.setattr(room_service, "get_membership", lambda *_args: None)
    with pytest.raises(HTTPException) as exc:
        room_service.join_room(room, racer, db_session)
    assert exc.value.status_code == 400
    assert exc.value.detail == "Already a member of this room"

    stored = db_session.get(ChatRoom, room.id)
    assert stored.member_count == len(room_service.member_ids(room.id, db_session)) == 3


def test_paging_past_the_end_returns_empty_page(room_with_members, db_session):
    room, owner, _ = room_with_members
    for index in range(3):
        room_service.send_message(room, owner, db_session, content=f"message {index}")
    db_session.commit()

    total = len(room_service.get_visible_messages(room, owner.id, db_session, limit=500))
    assert total == 5
    assert room_service.get_visible_messages(room, owner.id, db_session, offset=total) == []
    assert room_service.get_visible_messages(room, owner.id, db_session, limit=10, offset=total + 10) == []


def test_send_message_creates_one_visibility_row_per_member(room_with_members, db_session, make_user):
    room, owner, guest = room_with_members
    third = make_user("third")
    room_service.join_room(room, third, db_session)
    db_session.commit()

    message = room_service.send_message(room, guest, db_session, content="  hi all  ")
    db_session.commit()

    stmt = select(RoomMessageVisibility.user_id).where(RoomMessageVisibility.message_id == message.id)
    assert sorted(db_session.execute(stmt).scalars().all()) == sorted([owner.id, guest.id, third.id])
    assert message.content == "hi all"
    assert room.last_activity_type == ActivityType.MESSAGE
    assert room.last_activity_summary == "hi all"
    assert room.last_activity_actor_id == guest.id


def test_send_message_unarchives_room_for_every_member(room_with_members, db_session):
    room, owner, guest = room_with_members
    room_service.set_archived(room, owner.id, True, db_session)
    room_service.set_archived(room, guest.id, True, db_session)
    db_session.commit()
    assert room_service.list_my_rooms(owner.id, db_session) == []

    room_service.send_message(room, guest, db_session, content="wake up")
    db_session.commit()

    for user in (owner, guest):
        state = db_session.execute(
            select(RoomMemberState).where(RoomMemberState.room_id == room.id, RoomMemberState.user_id == user.id)
        ).scalar_one()
        assert state.is_archived is False
    assert [entry.room.id for entry in room_service.list_my_rooms(owner.id, db_session)] == [room.id]


def test_send_message_validation(room_with_members, db_session, make_user):
    room, owner, _ = room_with_members
    outsider = make_user("outsider")

    with pytest.raises(HTTPException) as exc:
        room_service.send_message(room, outsider, db_session, content="let me in")
    assert exc.value.status_code == 403

    with pytest.raises(HTTPException) as exc:
        room_service.send_message(room, owner, db_session, content="   ")
    assert exc.value.detail == "Message content is required"

    with pytest.raises(HTTPException) as exc:
        room_service.send_message(room, owner, db_session, content="sneaky", message_type="system")
    assert exc.value.detail == "Invalid message type"

    with pytest.raises(HTTPException) as exc:
        room_service.send_message(room, owner, db_session, content=None, message_type="image")
    assert exc.value.detail == "Attachment is required for image messages"


def test_attachment_message_uses_descriptive_summary(room_with_members, db_session):
    room, owner, _ = room_with_members

    message = room_service.send_message(
        room,
        owner,
        db_session,
        content=None,
        message_type="voice",
        voice_data={"url": "https://cdn.example.com/v.ogg", "duration": 3},
    )
    db_session.commit()

    assert message.type == MessageType.VOICE
    assert message.content == ""
    assert room.last_activity_summary == "Sent a voice message"


def test_clear_chat_hides_prior_messages_for_caller_only(room_with_members, db_session):
    room, owner, guest = room_with_members
    room_service.send_message(room, owner, db_session, content="old news")
    db_session.commit()

    room_service.clear_chat(room, guest.id, db_session)
    db_session.commit()
    room_service.send_message(room, owner, db_session, content="fresh")
    db_session.commit()

    assert _contents(room_service.get_visible_messages(room, guest.id, db_session)) == ["fresh"]
    assert "old news" in _contents(room_service.get_visible_messages(room, owner.id, db_session))


def test_delete_message_for_me_only_affects_caller(room_with_members, db_session):
    room, owner, guest = room_with_members
    message = room_service.send_message(room, owner, db_session, content="oops")
    db_session.commit()

    room_service.delete_message_for_me(room, message.id, guest.id, db_session)
    db_session.commit()

    assert "oops" not in _contents(room_service.get_visible_messages(room, guest.id, db_session))
    assert "oops" in _contents(room_service.get_visible_messages(room, owner.id, db_session))

    with pytest.raises(HTTPException) as exc:
        room_service.delete_message_for_me(room, message.id + 100, guest.id, db_session)
    assert exc.value.status_code == 404


def test_room_reactions_replace_but_never_toggle_off(room_with_members, db_session):
    room, owner, guest = room_with_members
    message = room_service.send_message(room, owner, db_session, content="vote")
    db_session.commit()

    room_service.react_to_message(room, message.id, guest, "👍", db_session)
    room_service.react_to_message(room, message.id, guest, "👍", db_session)
    assert message.reactions == [{"user_id": guest.id, "emoji": "👍"}]

    room_service.react_to_message(room, message.id, guest, "🎉", db_session)
    room_service.react_to_message(room, message.id, owner, "👍", db_session)
    assert message.reactions == [
        {"user_id": guest.id, "emoji": "🎉"},
        {"user_id": owner.id, "emoji": "👍"},
    ]
    assert room.last_activity_type == ActivityType.REACTION
    assert room.last_activity_summary == "Reacted with 👍"

    with pytest.raises(HTTPException) as exc:
        room_service.react_to_message(room, message.id, guest, "  ", db_session)
    assert exc.value.detail == "Emoji is required"


def test_kick_member_requires_creator_and_purges_target(room_with_members, db_session, make_user):
    room, owner, guest = room_with_members
    bystander = make_user("bystander")
    room_service.join_room(room, bystander, db_session)
    room_service.send_message(room, owner, db_session, content="house rules")
    db_session.commit()

    with pytest.raises(HTTPException) as exc:
        room_service.kick_member(room, guest, bystander.id, db_session)
    assert exc.value.status_code == 403
    assert exc.value.detail == "Only the room creator can remove members"

    with pytest.raises(HTTPException) as exc:
        room_service.kick_member(room, owner, owner.id, db_session)
    assert exc.value.status_code == 400

    outsider = make_user("outsider")
    with pytest.raises(HTTPException) as exc:
        room_service.kick_member(room, owner, outsider.id, db_session)
    assert exc.value.status_code == 404

    change = room_service.kick_member(room, owner, guest.id, db_session)
    db_session.commit()

    assert change.kicked is True
    assert [notice.content for notice in change.notices] == ["guest was removed from the room"]
    assert room.member_count == 2
    assert room_service.get_membership(room.id, guest.id, db_session) is None
    assert _visibility_count(db_session, guest.id) == 0
    assert _creators(db_session, room.id) == [owner.id]


def test_delete_room_is_creator_only_and_cascades(room_with_members, db_session):
    room, owner, guest = room_with_members
    room_id = room.id
    room_service.send_message(room, guest, db_session, content="bye")
    db_session.commit()

    with pytest.raises(HTTPException) as exc:
        room_service.delete_room(room, guest, db_session)
    assert exc.value.status_code == 403

    former = room_service.delete_room(room, owner, db_session)
    db_session.commit()

    assert sorted(former) == sorted([owner.id, guest.id])
    assert db_session.get(ChatRoom, room_id) is None
    for model in (RoomMember, RoomMemberState, RoomMessage, RoomMessageVisibility):
        assert db_session.execute(select(func.count()).select_from(model)).scalar_one() == 0


def test_update_room_and_theme(room_with_members, db_session):
    room, owner, guest = room_with_members

    with pytest.raises(HTTPException) as exc:
        room_service.update_room(room, guest, {"title": "Hijacked"}, db_session)
    assert exc.value.detail == "Only the room creator can edit the room"

    room_service.update_room(room, owner, {"title": "Early birds", "tags": ["morning"], "member_count": 99}, db_session)
    assert room.title == "Early birds"
    assert room.tags == ["morning"]
    assert room.member_count == 2
    assert room.last_activity_type == ActivityType.UPDATE

    room_service.set_room_theme(room, guest, "forest", db_session)
    assert room.chat_theme.value == "forest"
    assert room.last_activity_summary == "Changed the theme to forest"

    with pytest.raises(HTTPException) as exc:
        room_service.set_room_theme(room, guest, "plaid", db_session)
    assert exc.value.status_code == 400


def test_discovery_skips_private_rooms(db_session, make_user):
    owner, visitor = make_user("owner"), make_user("visitor")
    public = room_service.create_room(owner, db_session, title="Open", category="books")
    room_service.create_room(owner, db_session, title="Secret", category="books", is_private=True)
    other = room_service.create_room(owner, db_session, title="Films", category="movies")
    db_session.commit()

    assert {room.id for room in room_service.list_rooms(db_session)} == {public.id, other.id}
    assert [room.id for room in room_service.list_rooms(db_session, category="books")] == [public.id]
    assert room_service.joinable_count(visitor.id, db_session) == 2
    assert room_service.joinable_count(owner.id, db_session) == 0

    room_service.join_room(public, visitor, db_session)
    db_session.commit()
    assert room_service.joinable_count(visitor.id, db_session) == 1


def test_list_my_rooms_filters_by_archive_flag(room_with_members, db_session):
    room, owner, guest = room_with_members

    entries = room_service.list_my_rooms(guest.id, db_session)
    assert [entry.room.id for entry in entries] == [room.id]
    assert entries[0].membership.is_creator is False

    room_service.set_archived(room, guest.id, True, db_session)
    db_session.commit()

    assert room_service.list_my_rooms(guest.id, db_session) == []
    assert [entry.room.id for entry in room_service.list_my_rooms(guest.id, db_session, archived=True)] == [room.id]
    assert [entry.room.id for entry in room_service.list_my_rooms(owner.id, db_session)] == [room.id]
