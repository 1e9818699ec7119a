"""Tests for NotificationInbox recipient actions."""

from uuid import uuid4

import pytest

from fulfillment_kernel.selectors.activity_selector import ActivitySelector
from fulfillment_modules.orders.models import OrderStatus
from fulfillment_services.inbox import NotificationInbox


@pytest.fixture
def inbox(session, clock):
    return NotificationInbox(session, clock)


@pytest.fixture
def activity(session):
    return ActivitySelector(session)


@pytest.fixture
def admin_notes(drive_to, activity):
    drive_to(OrderStatus.HUMAN_CHECK)
    return activity.notifications_for("admin-2")


class TestInbox:
    def test_newest_first(self, admin_notes):
        assert [n.sequence for n in admin_notes] == [3, 2, 1]

    def test_mark_read(self, inbox, activity, admin_notes, clock):
        note = admin_notes[0]
        assert inbox.mark_read(note.id, "admin-2")
        [stored] = [n for n in activity.notifications_for("admin-2") if n.id == note.id]
        assert stored.read
        assert stored.read_at == clock.now()
        assert activity.unread_count("admin-2") == 2

    def test_mark_read_requires_owner(self, inbox, activity, admin_notes):
        assert not inbox.mark_read(admin_notes[0].id, "admin-1x")
        assert not inbox.mark_read(uuid4(), "admin-2")
        assert activity.unread_count("admin-2") == 3

    def test_mark_all_read(self, inbox, activity, admin_notes):
        assert inbox.mark_all_read("admin-2") == 3
        assert inbox.mark_all_read("admin-2") == 0
        assert activity.notifications_for("admin-2", unread_only=True) == []
        assert activity.unread_count("admin-1") == 2

    def test_delete_keeps_activity(self, inbox, activity, admin_notes):
        note = admin_notes[-1]
        assert inbox.delete_notification(note.id, "admin-2")
        assert note.id not in {n.id for n in activity.notifications_for("admin-2")}
        assert activity.get_by_sequence(note.order_id, note.sequence) is not None

    def test_delete_requires_owner(self, inbox, activity, admin_notes):
        assert not inbox.delete_notification(admin_notes[0].id, "editor-1")
        assert len(activity.notifications_for("admin-2")) == 3
