# =============================================================================
# tests/unit/test_chat_service.py
# Unit Tests for ChatService
# =============================================================================

from unittest.mock import MagicMock

import pytest

from connect_core.config import SETTING_SESSION_USER
from connect_core.models import Group, Message, User
from connect_core.services.chat_service import ChatService, attachment_payload


class FakeClock:
    def __init__(self, seconds: float = 1_700_000_000.0):
        self.seconds = seconds

    def __call__(self) -> float:
        return self.seconds


@pytest.fixture
def me():
    return User(id="64b0000000000000000000aa", username="Ana", email="ana@x.com")


@pytest.fixture
def fake_gateway(me):
    gateway = MagicMock()
    gateway.register_user.return_value = me
    gateway.send_message.return_value = True
    gateway.is_remote_reachable.return_value = True
    gateway.last_failure = None
    gateway.get_setting.return_value = None
    return gateway


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def chat(fake_gateway, clock):
    return ChatService(fake_gateway, clock=clock)


@pytest.fixture
def logged_in(chat, fake_gateway):
    assert chat.login("Ana", "ana@x.com")
    return chat


class TestLogin:
    """Test login validation and session persistence"""

    def test_login_normalizes_email_and_persists(self, chat, fake_gateway, me):
        result = chat.login("  Ana ", " ANA@X.com ")

        assert result.success
        assert result.data == me
        assert result.metadata == {"offline": False}
        fake_gateway.register_user.assert_called_once_with("Ana", "ana@x.com")
        fake_gateway.set_setting.assert_called_once_with(SETTING_SESSION_USER, me.to_dict())
        assert chat.session_user == me

    def test_offline_login_flagged(self, chat, fake_gateway):
        fake_gateway.register_user.return_value = User(
            id="local-123456789abc", username="Ana", email="ana@x.com"
        )

        result = chat.login("Ana", "ana@x.com")

        assert result.metadata == {"offline": True}

    @pytest.mark.parametrize("username,email,field", [
        ("", "ana@x.com", "username"),
        ("x" * 51, "ana@x.com", "username"),
        ("Ana", "not-an-email", "email"),
    ])
    def test_invalid_input_rejected_before_network(self, chat, fake_gateway, username, email, field):
        result = chat.login(username, email)

        assert not result
        assert result.error_code == "VAL_001"
        assert result.metadata["field"] == field
        fake_gateway.register_user.assert_not_called()

    def test_rejected_login_reports_reason(self, chat, fake_gateway):
        fake_gateway.register_user.return_value = None
        fake_gateway.last_failure = MagicMock(error="Missing required fields")

        result = chat.login("Ana", "ana@x.com")

        assert not result
        assert result.error_code == "REMOTE_001"
        assert "Missing required fields" in result.error
        assert chat.session_user is None


class TestSession:
    def test_restore_saved_session(self, chat, fake_gateway, me):
        fake_gateway.get_setting.return_value = me.to_dict()

        result = chat.restore_session()

        assert result.success
        assert chat.session_user == me

    def test_restore_without_saved_session(self, chat):
        result = chat.restore_session()

        assert not result
        assert result.error_code == "NO_SESSION"

    def test_logout_clears_persisted_session(self, logged_in, fake_gateway):
        logged_in.logout()

        assert logged_in.session_user is None
        fake_gateway.delete_setting.assert_called_once_with(SETTING_SESSION_USER)

    def test_adopt_fresher_copy(self, logged_in, fake_gateway, me):
        fresher = User(id=me.id, username="Ana B", email=me.email)

        logged_in.adopt_session_user(fresher)

        assert logged_in.session_user.username == "Ana B"

    def test_adopt_ignores_other_users(self, logged_in, me):
        logged_in.adopt_session_user(User(id="other", username="Bob", email="bob@x.com"))

        assert logged_in.session_user == me

    def test_update_profile_requires_a_field(self, logged_in, fake_gateway):
        result = logged_in.update_profile()

        assert not result
        fake_gateway.update_user.assert_not_called()

    def test_update_profile(self, logged_in, fake_gateway, me):
        updated = User(id=me.id, username=me.username, email=me.email, status="Busy")
        fake_gateway.update_user.return_value = updated

        result = logged_in.update_profile(status=" Busy ")

        assert result.data == updated
        fake_gateway.update_user.assert_called_once_with(me.id, username=None, avatar=None, status="Busy")
        assert logged_in.session_user.status == "Busy"

    def test_update_profile_can_clear_status(self, logged_in, fake_gateway, me):
        fake_gateway.update_user.return_value = User(id=me.id, username=me.username, email=me.email, status="")

        result = logged_in.update_profile(status="  ")

        assert result
        fake_gateway.update_user.assert_called_once_with(me.id, username=None, avatar=None, status="")

    def test_operations_need_session(self, chat):
        result = chat.send(receiver_id="b", text="hi")

        assert not result
        assert result.error_code == "AUTH_001"


class TestComposeMessage:
    """Test message type derivation"""

    def test_text_message(self, logged_in, me):
        message = logged_in.compose_message(receiver_id="bob", text="hello").data

        assert message.type == "text"
        assert message.sender_id == me.id
        assert message.receiver_id == "bob"
        assert message.status == "sent"
        assert message.payload_matches_type()

    def test_file_wins_over_everything(self, logged_in):
        message = logged_in.compose_message(
            receiver_id="bob", text="caption", image_url="i.png",
            audio_url="a.mp3", file_url="f.pdf", file_name="f.pdf", file_type="application/pdf",
        ).data

        assert message.type == "file"
        assert message.text is None
        assert message.image_url is None
        assert message.file_name == "f.pdf"
        assert message.payload_matches_type()

    def test_audio_wins_over_image(self, logged_in):
        message = logged_in.compose_message(receiver_id="bob", image_url="i.png", audio_url="a.mp3").data

        assert message.type == "audio"
        assert message.image_url is None

    def test_image_wins_over_text(self, logged_in):
        message = logged_in.compose_message(receiver_id="bob", text="look", image_url="i.png").data

        assert message.type == "image"
        assert message.text is None

    def test_group_message_targets_group(self, logged_in):
        message = logged_in.compose_message(receiver_id="bob", text="hi", group_id="g1").data

        assert message.receiver_id == "g1"
        assert message.group_id == "g1"

    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_empty_message_rejected(self, logged_in, text):
        result = logged_in.compose_message(receiver_id="bob", text=text)

        assert not result
        assert result.metadata["field"] == "text"

    def test_too_long_text_rejected(self, logged_in):
        result = logged_in.compose_message(receiver_id="bob", text="x" * 5001)

        assert result.metadata["field"] == "text"

    def test_missing_receiver_rejected(self, logged_in):
        result = logged_in.compose_message(text="hi")

        assert result.metadata["field"] == "receiverId"

    def test_banned_sender_cannot_compose(self, logged_in, me):
        logged_in.adopt_session_user(User(id=me.id, username=me.username, email=me.email, is_banned=True))

        result = logged_in.compose_message(receiver_id="bob", text="hi")

        assert result.error_code == "AUTH_001"


class TestTimestamps:
    """Per-sender timestamps strictly increase"""

    def test_same_millisecond_is_bumped(self, logged_in, clock):
        first = logged_in.next_timestamp("a")
        second = logged_in.next_timestamp("a")
        third = logged_in.next_timestamp("a")

        assert first == 1_700_000_000_000
        assert (second, third) == (first + 1, first + 2)

    def test_clock_going_backwards(self, logged_in, clock):
        first = logged_in.next_timestamp("a")
        clock.seconds -= 10

        assert logged_in.next_timestamp("a") == first + 1

    def test_senders_are_independent(self, logged_in):
        assert logged_in.next_timestamp("a") == logged_in.next_timestamp("b")

    def test_clock_moving_forward_is_used(self, logged_in, clock):
        logged_in.next_timestamp("a")
        clock.seconds += 1

        assert logged_in.next_timestamp("a") == 1_700_000_001_000


class TestSend:
    def test_send_online(self, logged_in, fake_gateway):
        result = logged_in.send(receiver_id="bob", text="hi")

        assert result.success
        assert result.metadata == {"queued": False}
        sent = fake_gateway.send_message.call_args[0][0]
        assert sent.text == "hi"

    def test_send_offline_is_queued(self, logged_in, fake_gateway):
        fake_gateway.is_remote_reachable.return_value = False

        result = logged_in.send(receiver_id="bob", text="hi")

        assert result.success
        assert result.metadata == {"queued": True}

    def test_rejected_send(self, logged_in, fake_gateway):
        fake_gateway.send_message.return_value = False
        fake_gateway.last_failure = MagicMock(error="You are banned and cannot send messages")

        result = logged_in.send(receiver_id="bob", text="hi")

        assert not result
        assert "banned" in result.error

    def test_two_sends_in_same_millisecond_have_distinct_keys(self, logged_in, fake_gateway):
        logged_in.send(receiver_id="bob", text="one")
        logged_in.send(receiver_id="bob", text="two")

        first, second = [c[0][0] for c in fake_gateway.send_message.call_args_list]
        assert first.natural_key != second.natural_key


class TestMarkRead:
    def test_only_incoming_unread_remote_messages(self, logged_in, fake_gateway, me):
        fake_gateway.update_message_status.return_value = MagicMock()
        messages = [
            Message(id="m1", sender_id="bob", receiver_id=me.id, type="text", timestamp=1, text="a"),
            Message(id="m2", sender_id="bob", receiver_id=me.id, type="text", timestamp=2, text="b", status="read"),
            Message(id="m3", sender_id=me.id, receiver_id="bob", type="text", timestamp=3, text="c"),
            Message(id="local-abc", sender_id="bob", receiver_id=me.id, type="text", timestamp=4, text="d"),
        ]

        result = logged_in.mark_read(messages)

        assert result.data == 1
        fake_gateway.update_message_status.assert_called_once_with("m1", "read")


class TestCreateGroup:
    """Test client-side group rules"""

    def test_creator_is_included_and_admin_by_default(self, logged_in, fake_gateway, me):
        fake_gateway.create_group.return_value = Group(id="g1", name="Team", admin_id=me.id)

        result = logged_in.create_group("Team", ["b", "c", "b"])

        assert result.success
        kwargs = fake_gateway.create_group.call_args.kwargs
        assert kwargs["member_ids"] == [me.id, "b", "c"]
        assert kwargs["admin_id"] == me.id
        assert kwargs["avatar"].endswith("seed=Team")

    def test_too_few_members(self, logged_in, fake_gateway):
        result = logged_in.create_group("Pair", ["b"])

        assert result.metadata["field"] == "memberIds"
        fake_gateway.create_group.assert_not_called()

    def test_admin_must_be_member(self, logged_in):
        result = logged_in.create_group("Team", ["b", "c"], admin_id="z")

        assert result.metadata["field"] == "adminId"

    def test_other_member_as_admin(self, logged_in, fake_gateway):
        fake_gateway.create_group.return_value = Group(id="g1", name="Team", admin_id="b")

        result = logged_in.create_group("Team", ["b", "c"], admin_id="b")

        assert result.data.admin_id == "b"

    def test_name_required(self, logged_in):
        assert logged_in.create_group("  ", ["b", "c"]).metadata["field"] == "name"

    def test_remote_rejection(self, logged_in, fake_gateway):
        fake_gateway.create_group.return_value = None
        fake_gateway.last_failure = MagicMock(error="At least 2 members required")

        result = logged_in.create_group("Team", ["b", "c"])

        assert result.error_code == "REMOTE_001"


class TestEditAndDeleteMessage:
    """Test own-message edit and delete"""

    @pytest.fixture
    def mine(self, me):
        return Message(id="64b0000000000000000000m1", sender_id=me.id, receiver_id="bob",
                       type="text", timestamp=1, text="hello")

    def test_edit_own_message(self, logged_in, fake_gateway, mine, me):
        fake_gateway.edit_message.return_value = True

        assert logged_in.edit_message(mine, " hello again ")
        fake_gateway.edit_message.assert_called_once_with(mine.id, "hello again", me.id)

    def test_edit_someone_elses_message(self, logged_in, fake_gateway, mine):
        mine.sender_id = "bob"

        result = logged_in.edit_message(mine, "x")

        assert result.error_code == "AUTH_001"
        fake_gateway.edit_message.assert_not_called()

    def test_edit_needs_text(self, logged_in, mine):
        assert logged_in.edit_message(mine, "   ").metadata["field"] == "text"

    def test_only_text_messages_can_be_edited(self, logged_in, mine):
        mine.type, mine.text, mine.image_url = "image", None, "i.png"

        assert logged_in.edit_message(mine, "x").metadata["field"] == "text"

    def test_queued_message_cannot_be_changed(self, logged_in, fake_gateway, mine):
        mine.id = "local-123"

        assert not logged_in.edit_message(mine, "x")
        assert not logged_in.delete_message(mine)
        fake_gateway.edit_message.assert_not_called()
        fake_gateway.delete_message.assert_not_called()

    def test_delete_own_message(self, logged_in, fake_gateway, mine, me):
        fake_gateway.delete_message.return_value = True

        assert logged_in.delete_message(mine)
        fake_gateway.delete_message.assert_called_once_with(mine.id, me.id)

    def test_rejection_carries_server_reason(self, logged_in, fake_gateway, mine):
        fake_gateway.delete_message.return_value = False
        fake_gateway.last_failure = MagicMock(error="Message not found")

        result = logged_in.delete_message(mine)

        assert result.error_code == "REMOTE_001"
        assert "Message not found" in result.error


class TestAttachmentPayload:
    """Test upload to message payload mapping"""

    def test_image(self):
        assert attachment_payload("a.png", "image/png", b"\x89PNG") == {
            "image_url": "data:image/png;base64,iVBORw==",
        }

    def test_audio(self):
        assert attachment_payload("a.ogg", "audio/ogg", b"abc")["audio_url"].startswith("data:audio/ogg;base64,")

    def test_other_files_keep_name_and_type(self):
        payload = attachment_payload("report.pdf", "application/pdf", b"%PDF")

        assert payload["file_name"] == "report.pdf"
        assert payload["file_type"] == "application/pdf"
        assert payload["file_url"].startswith("data:application/pdf;base64,")

    def test_unknown_type(self):
        assert attachment_payload("blob", None, b"x")["file_type"] == "application/octet-stream"

    def test_sent_as_file_message(self, logged_in, fake_gateway):
        result = logged_in.send(receiver_id="bob", **attachment_payload("r.pdf", "application/pdf", b"x"))

        assert result.data.type == "file"
        assert result.data.file_name == "r.pdf"


class TestGroupAdministration:
    """Test group admin actions"""

    @pytest.fixture
    def team(self, me):
        return Group(id="g1", name="Team", admin_id=me.id, member_ids=[me.id, "b", "c"])

    def test_add_member(self, logged_in, fake_gateway, team, me):
        fake_gateway.add_group_member.return_value = True

        assert logged_in.add_group_member(team, "d")
        fake_gateway.add_group_member.assert_called_once_with("g1", "d", me.id)

    def test_add_existing_member(self, logged_in, fake_gateway, team):
        assert logged_in.add_group_member(team, "b").metadata["field"] == "userId"
        fake_gateway.add_group_member.assert_not_called()

    def test_remove_member(self, logged_in, fake_gateway, team, me):
        fake_gateway.remove_group_member.return_value = True

        assert logged_in.remove_group_member(team, "c")
        fake_gateway.remove_group_member.assert_called_once_with("g1", "c", me.id)

    def test_admin_cannot_be_removed(self, logged_in, fake_gateway, team, me):
        assert not logged_in.remove_group_member(team, me.id)
        fake_gateway.remove_group_member.assert_not_called()

    def test_non_admin_cannot_change_members(self, logged_in, fake_gateway, team):
        team.admin_id = "b"

        assert logged_in.add_group_member(team, "d").error_code == "AUTH_001"
        assert logged_in.remove_group_member(team, "c").error_code == "AUTH_001"

    def test_delete_group(self, logged_in, fake_gateway, team, me):
        fake_gateway.delete_group.return_value = True

        assert logged_in.delete_group(team)
        fake_gateway.delete_group.assert_called_once_with("g1", me.id)

    def test_delete_group_needs_group_admin(self, logged_in, fake_gateway, team):
        team.admin_id = "b"

        assert logged_in.delete_group(team).error_code == "AUTH_001"
        fake_gateway.delete_group.assert_not_called()

    def test_app_admin_may_delete_any_group(self, chat, fake_gateway, team):
        fake_gateway.register_user.return_value = User(id="adm", username="Admin", email="a@x.com", is_admin=True)
        fake_gateway.delete_group.return_value = True
        chat.login("Admin", "a@x.com")

        assert chat.delete_group(team)
