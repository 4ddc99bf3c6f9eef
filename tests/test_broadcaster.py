"""
Tests for event fan-out to socket rooms
"""
import asyncio

from chatnotes.api.groups.models import GroupMember
from chatnotes.api.groups.schemas import GroupMessageCreate
from chatnotes.api.groups.service import GroupService
from chatnotes.websocket.broadcaster import Broadcaster, user_room


class FailingTransport:
    def __init__(self):
        self.attempts = 0

    async def emit(self, event, data, room):
        self.attempts += 1
        raise ConnectionError("socket server gone")

    def is_user_online(self, user_id):
        raise RuntimeError("presence unavailable")


class TestBroadcaster:
    """Room targeting and delivery guarantees"""

    def test_emit_deduplicates_rooms(self, broadcaster, transport):
        asyncio.run(broadcaster.emit("ping", {}, ["user_1", "user_2", "user_1"]))
        assert transport.rooms("ping") == ["user_1", "user_2"]

    def test_emit_to_user(self, broadcaster, transport):
        asyncio.run(broadcaster.emit_to_user(7, "hello", {"x": 1}))
        assert transport.events("hello") == [({"x": 1}, "user_7")]

    def test_scenario_d_group_message_reaches_every_member_once(
            self, db_session, make_user, make_group, broadcaster, transport):
        """Five members, one sender: all five personal rooms, each exactly once"""
        members = [make_user(f"member{i}") for i in range(5)]
        group = make_group("five", members)
        sender = members[2]

        asyncio.run(GroupService(db_session, broadcaster).send_group_message(
            sender, group.id, GroupMessageCreate(content="hello all")
        ))

        rooms = transport.rooms("group_message")
        assert sorted(rooms) == sorted(user_room(m.id) for m in members)
        assert len(rooms) == len(set(rooms)) == 5

    def test_emit_to_group_can_exclude(self, make_group, alice, bob, carol, broadcaster, transport):
        group = make_group("team", [alice, bob, carol])
        asyncio.run(broadcaster.emit_to_group(group.id, "typing", {}, exclude=bob.id))
        assert transport.rooms("typing") == [user_room(alice.id), user_room(carol.id)]

    def test_group_membership_is_snapshotted_at_emit(
            self, db_session, make_group, alice, bob, carol, broadcaster, transport):
        group = make_group("team", [alice, bob])
        db_session.add(GroupMember(group_id=group.id, user_id=carol.id))
        db_session.commit()

        asyncio.run(broadcaster.emit_to_group(group.id, "update", {}))

        assert user_room(carol.id) in transport.rooms("update")

    def test_admins_are_targeted_individually(self, make_user, admin, alice, broadcaster, transport):
        second_admin = make_user("ops", role="admin")
        make_user("retired", role="admin", is_active=False)

        asyncio.run(broadcaster.emit_to_admins("admin_dm_created", {"id": 1}))

        assert sorted(transport.rooms("admin_dm_created")) == sorted(
            [user_room(admin.id), user_room(second_admin.id)]
        )

    def test_no_admins_is_a_noop(self, alice, broadcaster, transport):
        asyncio.run(broadcaster.emit_to_admins("admin_dm_created", {}))
        assert transport.emitted == []

    def test_delivery_failures_are_swallowed(self, db_session, caplog):
        failing = FailingTransport()
        broadcaster = Broadcaster(failing, db_session)

        asyncio.run(broadcaster.emit("boom", {}, ["user_1", "user_2"]))

        assert failing.attempts == 2
        assert "Failed to emit boom" in caplog.text
        assert broadcaster.is_user_online(1) is False
