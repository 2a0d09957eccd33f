"""Tests for notification text, phone numbers and preference checks."""

import pytest

from portal.notifications.messages import (
    FALLBACK_MESSAGE,
    base_type,
    construct_message,
    email_subject,
    format_mentions,
    truncate_body,
)
from portal.notifications.phone import format_phone_number
from portal.notifications.preferences import channel_enabled, is_enabled

SITE = "https://portal.test/"


class TestConstructMessage:
    def test_task_assignment(self):
        msg = construct_message(
            "task_assignment",
            {"project_name": "Gala", "project_slug": "gala", "task_title": "Book venue",
             "assigner_name": "Alice"},
            SITE,
        )
        assert "*Gala*" in msg
        assert "*Book venue*" in msg
        assert "Assigned by: Alice" in msg
        assert "https://portal.test/projects/gala" in msg

    def test_mentions_are_flattened(self):
        msg = construct_message(
            "discussion_mention",
            {"mentioner_name": "Bob", "project_name": "Gala", "project_slug": "gala",
             "comment_text": "Hey @[Alice Anders](u-1), check this"},
            SITE,
        )
        assert '"Hey @Alice Anders, check this"' in msg

    def test_project_status_updated(self):
        msg = construct_message(
            "project_status_updated",
            {"project_name": "Gala", "old_status": "Planning", "new_status": "On Track",
             "updater_name": "Alice"},
            SITE,
        )
        assert "*Planning* ➔ *On Track*" in msg
        # No slug: link falls back to the site root
        assert "View project: https://portal.test\n" in msg or msg.endswith("https://portal.test")

    def test_chat_message_group_suffix(self):
        direct = construct_message("new_chat_message", {"sender_name": "Bob", "preview": "hi"}, SITE)
        group = construct_message(
            "new_chat_message", {"sender_name": "Bob", "group_name": "Crew", "preview": "hi"}, SITE
        )
        assert "from *Bob*." in direct
        assert "from *Bob* in *Crew*." in group
        assert "https://portal.test/chat" in group

    def test_missing_context_renders_empty(self):
        msg = construct_message("task_overdue", {}, SITE)
        assert msg.startswith("Task Overdue: ** in **")

    def test_unknown_type_uses_fallback(self):
        assert construct_message("mood_checkin", {"x": 1}, SITE) == FALLBACK_MESSAGE


class TestTextHelpers:
    def test_format_mentions(self):
        assert format_mentions("@[A B](1) and @[C](2)") == "@A B and @C"
        assert format_mentions(None) == ""

    def test_truncate_body(self):
        assert truncate_body("short") == "short"
        long = "x" * 150
        assert truncate_body(long) == "x" * 100 + "..."
        assert truncate_body("x" * 100) == "x" * 100

    def test_email_types(self):
        assert base_type("task_overdue_email") == "task_overdue"
        assert base_type("task_overdue") == "task_overdue"
        assert email_subject("task_overdue_email", {"task_title": "Call client"}) == \
            "Task overdue: Call client"
        assert email_subject("something_email", {}) == "Portal notification"


class TestPhoneNumbers:
    @pytest.mark.parametrize("raw,expected", [
        ("0812-3456-789", "628123456789"),
        ("+62 813 3333 4444", "6281333334444"),
        ("8123456789", "628123456789"),
        ("(0)21 555 1234", "62215551234"),
    ])
    def test_normalised(self, raw, expected):
        assert format_phone_number(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "12345", "81234", "+1 415 555 0100"])
    def test_unusable(self, raw):
        assert format_phone_number(raw) is None


class TestPreferences:
    def test_missing_prefs_default_enabled(self):
        assert is_enabled(None, "task_overdue")
        assert is_enabled({}, "task_overdue")
        assert channel_enabled({}, "task_overdue", "email")

    def test_bool_toggle(self):
        prefs = {"comment": False}
        assert not is_enabled(prefs, "comment")
        assert not channel_enabled(prefs, "comment", "whatsapp")

    def test_object_toggle(self):
        prefs = {"task_overdue": {"enabled": True, "whatsapp": False}}
        assert is_enabled(prefs, "task_overdue")
        assert not channel_enabled(prefs, "task_overdue", "whatsapp")
        assert channel_enabled(prefs, "task_overdue", "email")

    def test_object_disabled(self):
        prefs = {"billing_reminder": {"enabled": False, "email": True}}
        assert not channel_enabled(prefs, "billing_reminder", "email")
