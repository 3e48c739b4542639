# =============================================================================
# tests/unit/test_models.py
# Unit Tests for wire conversion of users, messages and groups
# =============================================================================

import pytest

from connect_core.models import Group, Message, User, is_local_id, status_rank


class TestUser:
    def test_from_wire_format(self):
        user = User.from_dict({
            "id": "u1", "username": "Ana", "email": "ana@x.com",
            "lastSeen": 5, "isAdmin": True,
        })

        assert user.last_seen == 5
        assert user.is_admin
        assert not user.is_banned
        assert user.to_dict()["lastSeen"] == 5


class TestMessage:
    """Test payload/type consistency and wire conversion"""

    def test_to_dict_omits_unset_payloads(self):
        message = Message(id="m1", sender_id="a", receiver_id="b", type="text", timestamp=1, text="hi")

        wire = message.to_dict()

        assert wire["senderId"] == "a"
        assert "imageUrl" not in wire
        assert "groupId" not in wire

    def test_from_dict_reads_camel_case(self):
        message = Message.from_dict({
            "id": "m1", "senderId": "a", "receiverId": "g1", "groupId": "g1",
            "type": "image", "imageUrl": "i.png", "timestamp": 9, "status": "delivered",
        })

        assert message.is_group_message
        assert message.image_url == "i.png"
        assert message.natural_key == ("a", "g1", 9)

    @pytest.mark.parametrize("kwargs,expected", [
        ({"type": "text", "text": "hi"}, True),
        ({"type": "image", "image_url": "i.png"}, True),
        ({"type": "image", "text": "hi"}, False),
        ({"type": "text", "text": "hi", "image_url": "i.png"}, False),
        ({"type": "file", "file_url": "f.pdf", "file_name": "f.pdf"}, True),
        ({"type": "video", "text": "hi"}, False),
    ])
    def test_payload_matches_type(self, kwargs, expected):
        message = Message(id="", sender_id="a", receiver_id="b", timestamp=1, **kwargs)

        assert message.payload_matches_type() is expected


class TestHelpers:
    def test_local_ids(self):
        assert is_local_id("local-abc")
        assert not is_local_id("64b000000000000000000001")
        assert not is_local_id(None)
        assert not is_local_id("")

    def test_status_order(self):
        assert status_rank("sent") < status_rank("delivered") < status_rank("read")

    def test_group_membership(self):
        group = Group.from_dict({"id": "g1", "name": "Team", "adminId": "a", "memberIds": ["a", "b"]})

        assert group.is_member("b")
        assert not group.is_member("c")
        assert group.to_dict()["memberIds"] == ["a", "b"]
