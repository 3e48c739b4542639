# =============================================================================
# tests/unit/test_server_schemas.py
# Unit Tests for request payload checks
# =============================================================================

import pytest

from connect_core.errors import ValidationError
from connect_core.server.schemas import SendMessagePayload, check_message_payload


def payload(**overrides):
    base = {"senderId": "a", "receiverId": "b", "type": "text", "text": "hi", "timestamp": 1}
    base.update(overrides)
    return SendMessagePayload(**base)


class TestCheckMessagePayload:
    def test_valid_text_message(self):
        check_message_payload(payload())

    def test_group_message_without_receiver(self):
        check_message_payload(payload(receiverId=None, groupId="g1"))

    def test_unaddressed_message(self):
        with pytest.raises(ValidationError) as exc_info:
            check_message_payload(payload(receiverId=None))

        assert exc_info.value.details["field"] == "receiverId"

    def test_missing_payload_for_type(self):
        with pytest.raises(ValidationError) as exc_info:
            check_message_payload(payload(type="image", text=None))

        assert exc_info.value.details["field"] == "imageUrl"

    def test_foreign_payload_for_type(self):
        """An image message may not also carry text"""
        with pytest.raises(ValidationError) as exc_info:
            check_message_payload(payload(type="image", imageUrl="i.png"))

        assert exc_info.value.details["field"] == "text"
        assert exc_info.value.http_status == 400
