"""
Tests for group creation, invitations, messaging and group read state
"""
from chatnotes.api.groups.models import Group, GroupMember, GroupMessageRead
from chatnotes.api.notifications.models import Notification
from chatnotes.websocket.broadcaster import user_room


def _post_message(client, auth_headers, user, group, content="hello"):
    return client.post(f"/api/v1/groups/{group.id}/messages", json={"content": content},
                       headers=auth_headers(user))


class TestGroupMembership:
    """Creating groups and joining through invitations"""

    def test_create_group_makes_owner_member(self, client, auth_headers, db_session, alice):
        response = client.post("/api/v1/groups/", json={"name": "climbers"}, headers=auth_headers(alice))

        assert response.status_code == 201
        group_id = response.json()["id"]
        membership = db_session.query(GroupMember).filter_by(group_id=group_id, user_id=alice.id).one()
        assert membership.role == "owner"

    def test_invite_and_accept(self, client, auth_headers, db_session, transport, make_group, alice, bob, admin):
        group = make_group("team", [alice])

        invited = client.post(f"/api/v1/groups/{group.id}/invite", json={"user_id": bob.id},
                              headers=auth_headers(alice))
        assert invited.status_code == 200
        assert transport.rooms("group_invite") == [user_room(bob.id)]
        assert transport.rooms("admin_notification_created") == [user_room(admin.id)]

        accepted = client.post(f"/api/v1/groups/{group.id}/accept", headers=auth_headers(bob))
        assert accepted.status_code == 200
        assert sorted(transport.rooms("group_member_joined")) == sorted([user_room(alice.id), user_room(bob.id)])

        invite = db_session.query(Notification).filter_by(user_id=bob.id, type="group_invite").one()
        assert invite.is_read is True

    def test_reinvite_bumps_pending_invitation(self, client, auth_headers, db_session, make_group, alice, bob):
        group = make_group("team", [alice])
        for _ in range(2):
            client.post(f"/api/v1/groups/{group.id}/invite", json={"user_id": bob.id}, headers=auth_headers(alice))

        assert db_session.query(Notification).filter_by(user_id=bob.id, type="group_invite").count() == 1

    def test_accept_without_invitation(self, client, auth_headers, make_group, alice, bob):
        group = make_group("team", [alice])
        response = client.post(f"/api/v1/groups/{group.id}/accept", headers=auth_headers(bob))
        assert response.status_code == 404

    def test_non_member_cannot_invite(self, client, auth_headers, make_group, alice, bob, carol):
        group = make_group("team", [alice])
        response = client.post(f"/api/v1/groups/{group.id}/invite", json={"user_id": carol.id},
                               headers=auth_headers(bob))
        assert response.status_code == 403

    def test_cannot_invite_existing_member(self, client, auth_headers, make_group, alice, bob):
        group = make_group("team", [alice, bob])
        response = client.post(f"/api/v1/groups/{group.id}/invite", json={"user_id": bob.id},
                               headers=auth_headers(alice))
        assert response.status_code == 400

    def test_decline_invite(self, client, auth_headers, db_session, transport, make_group, alice, bob):
        group = make_group("team", [alice])
        client.post(f"/api/v1/groups/{group.id}/invite", json={"user_id": bob.id}, headers=auth_headers(alice))

        declined = client.post(f"/api/v1/groups/{group.id}/decline", headers=auth_headers(bob))

        assert declined.json() == {"group_id": group.id, "declined": 1}
        assert sorted(transport.rooms("group_invite_declined")) == sorted([user_room(alice.id), user_room(bob.id)])
        assert client.post(f"/api/v1/groups/{group.id}/accept", headers=auth_headers(bob)).status_code == 404
        assert client.post(f"/api/v1/groups/{group.id}/decline", headers=auth_headers(bob)).status_code == 404
        badge = client.get("/api/v1/notifications/bell/badge", headers=auth_headers(bob)).json()
        assert badge["inv"] == 0

    def test_removed_member_stops_receiving_group_messages(self, client, auth_headers, transport, make_group,
                                                           alice, bob, carol):
        group = make_group("team", [alice, bob, carol])

        response = client.post(f"/api/v1/groups/{group.id}/members/remove", json={"member_ids": [bob.id]},
                               headers=auth_headers(alice))

        assert response.json() == {"group_id": group.id, "removed": [bob.id]}
        assert transport.rooms("group_member_removed") == [user_room(bob.id)]
        assert sorted(transport.rooms("group_members_removed")) == sorted([user_room(alice.id), user_room(carol.id)])

        _post_message(client, auth_headers, alice, group)

        assert sorted(transport.rooms("group_message")) == sorted([user_room(alice.id), user_room(carol.id)])
        assert _post_message(client, auth_headers, bob, group).status_code == 403

    def test_only_owner_removes_members(self, client, auth_headers, make_group, alice, bob, carol):
        group = make_group("team", [alice, bob, carol])
        response = client.post(f"/api/v1/groups/{group.id}/members/remove", json={"member_ids": [carol.id]},
                               headers=auth_headers(bob))
        assert response.status_code == 403

    def test_owner_cannot_remove_self(self, client, auth_headers, make_group, alice, bob):
        group = make_group("team", [alice, bob])
        response = client.post(f"/api/v1/groups/{group.id}/members/remove", json={"member_ids": [alice.id]},
                               headers=auth_headers(alice))
        assert response.json()["removed"] == []

    def test_owner_leaving_hands_over_ownership(self, client, auth_headers, db_session, transport, make_group,
                                                alice, bob, carol):
        group = make_group("team", [alice, bob, carol])

        response = client.post(f"/api/v1/groups/{group.id}/leave", headers=auth_headers(alice))

        body = response.json()
        assert body["owner_id"] == bob.id
        assert body["group_deleted"] is False
        assert transport.rooms("group_left") == [user_room(alice.id)]
        assert sorted(transport.rooms("group_member_left")) == sorted([user_room(bob.id), user_room(carol.id)])
        notice = transport.events("group_message")
        assert {room for _, room in notice} == {user_room(bob.id), user_room(carol.id)}
        assert notice[0][0]["message_type"] == "system"

        db_session.expire_all()
        successor = db_session.query(GroupMember).filter_by(group_id=group.id, user_id=bob.id).one()
        assert successor.role == "owner"
        unread = client.get(f"/api/v1/groups/{group.id}/unread-count", headers=auth_headers(bob)).json()
        assert unread["unread_count"] == 0

    def test_last_member_leaving_deletes_group(self, client, auth_headers, db_session, make_group, alice):
        group = make_group("solo", [alice])
        group_id = group.id

        body = client.post(f"/api/v1/groups/{group_id}/leave", headers=auth_headers(alice)).json()

        assert body["group_deleted"] is True
        db_session.expire_all()
        assert db_session.get(Group, group_id) is None

    def test_leave_without_membership(self, client, auth_headers, make_group, alice, bob):
        group = make_group("team", [alice])
        assert client.post(f"/api/v1/groups/{group.id}/leave", headers=auth_headers(bob)).status_code == 404


class TestGroupMessaging:
    """Sending, listing, editing and recalling group messages"""

    def test_send_reaches_all_members_and_admins(self, client, auth_headers, transport, make_group,
                                                 alice, bob, carol, admin):
        group = make_group("team", [alice, bob, carol])

        response = _post_message(client, auth_headers, bob, group)

        assert response.status_code == 200
        assert sorted(transport.rooms("group_message")) == sorted(
            user_room(u.id) for u in (alice, bob, carol)
        )
        assert transport.rooms("admin_group_message_created") == [user_room(admin.id)]
        assert transport.events("group_message_delivered") == []

    def test_delivered_when_another_member_online(self, client, auth_headers, transport, make_group, alice, bob):
        group = make_group("team", [alice, bob])
        transport.online.add(alice.id)

        _post_message(client, auth_headers, bob, group)

        assert transport.rooms("group_message_delivered") == [user_room(bob.id)]

    def test_non_member_cannot_post(self, client, auth_headers, make_group, alice, carol):
        group = make_group("team", [alice])
        assert _post_message(client, auth_headers, carol, group).status_code == 403

    def test_admins_only_group(self, client, auth_headers, make_group, alice, bob):
        group = make_group("announcements", [alice, bob], admins_only=True)

        assert _post_message(client, auth_headers, bob, group).status_code == 403
        assert _post_message(client, auth_headers, alice, group).status_code == 200

    def test_messages_list_with_readers(self, client, auth_headers, make_group, alice, bob):
        group = make_group("team", [alice, bob])
        message_id = _post_message(client, auth_headers, alice, group).json()["id"]
        client.put(f"/api/v1/groups/messages/{message_id}/read", headers=auth_headers(bob))

        messages = client.get(f"/api/v1/groups/{group.id}/messages", headers=auth_headers(alice)).json()

        assert len(messages) == 1
        assert messages[0]["read_by"] == [bob.id]

    def test_edit_broadcasts_to_group(self, client, auth_headers, transport, make_group, alice, bob):
        group = make_group("team", [alice, bob])
        message_id = _post_message(client, auth_headers, alice, group).json()["id"]

        response = client.put(f"/api/v1/groups/{group.id}/messages/{message_id}", json={"content": "fixed"},
                              headers=auth_headers(alice))

        assert response.json()["content"] == "fixed"
        assert len(transport.rooms("group_message_edited")) == 2

    def test_recall_for_self(self, client, auth_headers, transport, make_group, alice, bob):
        group = make_group("team", [alice, bob])
        message_id = _post_message(client, auth_headers, alice, group).json()["id"]

        client.post(f"/api/v1/groups/{group.id}/messages/recall",
                    json={"message_ids": [message_id], "scope": "self"}, headers=auth_headers(bob))

        assert client.get(f"/api/v1/groups/{group.id}/messages", headers=auth_headers(bob)).json() == []
        assert len(client.get(f"/api/v1/groups/{group.id}/messages", headers=auth_headers(alice)).json()) == 1
        assert transport.rooms("group_messages_recalled") == [user_room(bob.id)]

    def test_recall_for_all(self, client, auth_headers, transport, make_group, alice, bob):
        group = make_group("team", [alice, bob])
        message_id = _post_message(client, auth_headers, alice, group).json()["id"]

        response = client.post(f"/api/v1/groups/{group.id}/messages/recall",
                               json={"message_ids": [message_id], "scope": "all"}, headers=auth_headers(alice))

        assert response.status_code == 200
        assert client.get(f"/api/v1/groups/{group.id}/messages", headers=auth_headers(bob)).json() == []
        assert len(transport.rooms("group_messages_recalled")) == 2


class TestGroupReadState:
    """Group read endpoints"""

    def test_mark_group_read(self, client, auth_headers, db_session, transport, make_group, alice, bob, carol):
        group = make_group("team", [alice, bob, carol])
        _post_message(client, auth_headers, alice, group, "one")
        _post_message(client, auth_headers, alice, group, "two")

        before = client.get(f"/api/v1/groups/{group.id}/unread-count", headers=auth_headers(bob)).json()
        assert before == {"group_id": group.id, "unread_count": 2}

        response = client.put(f"/api/v1/groups/{group.id}/read", headers=auth_headers(bob))

        assert response.json() == {"group_id": group.id, "marked_count": 2, "read_receipts_count": 2}
        rooms = transport.rooms("group_message_read")
        assert user_room(bob.id) not in rooms
        assert set(rooms) == {user_room(alice.id), user_room(carol.id)}

        after = client.get(f"/api/v1/groups/{group.id}/unread-count", headers=auth_headers(bob)).json()
        assert after["unread_count"] == 0
        assert db_session.query(GroupMessageRead).count() == 2

    def test_read_receipts_hidden_when_sender_opted_out(self, client, auth_headers, transport, make_user,
                                                        make_group, alice):
        private = make_user("private", read_status_enabled=False)
        group = make_group("team", [private, alice])
        _post_message(client, auth_headers, private, group)

        response = client.put(f"/api/v1/groups/{group.id}/read", headers=auth_headers(alice))

        assert response.json()["marked_count"] == 1
        assert response.json()["read_receipts_count"] == 0
        assert transport.events("group_message_read") == []

    def test_unread_count_requires_membership(self, client, auth_headers, make_group, alice, carol):
        group = make_group("team", [alice])
        response = client.get(f"/api/v1/groups/{group.id}/unread-count", headers=auth_headers(carol))
        assert response.status_code == 403
