import pytest

from locket_server.messaging.outbox import EventOutbox


def sync_runner(fn, *args, **kwargs):
    return fn(*args, **kwargs)


@pytest.fixture
def outbox_parts(delivery, notifications):
    return delivery, notifications


def test_entries_flush_in_order_on_clean_exit(outbox_parts):
    delivery, notifications = outbox_parts
    ran = []
    with EventOutbox(delivery, notifications, sync_runner) as outbox:
        outbox.publish('room:a', 'first', {})
        outbox.defer(ran.append, 'task')
        outbox.publish('room:a', 'second', {})
        assert delivery.events == []

    assert [e for _, e, _ in delivery.events] == ['first', 'second']
    assert ran == ['task']


def test_outbox_is_discarded_when_operation_raises(outbox_parts):
    delivery, notifications = outbox_parts
    with pytest.raises(KeyError):
        with EventOutbox(delivery, notifications, sync_runner) as outbox:
            outbox.publish('room:a', 'never', {})
            outbox.notify_offline(['bob'], 'message', {})
            raise KeyError('write failed')

    assert delivery.events == []
    assert notifications.created == []


def test_failing_entry_does_not_stop_the_rest(outbox_parts):
    delivery, notifications = outbox_parts
    delivery.fail_on.add('broken')
    with EventOutbox(delivery, notifications, sync_runner) as outbox:
        outbox.publish('room:a', 'broken', {})
        outbox.publish('room:a', 'after', {})

    assert [e for _, e, _ in delivery.events] == ['after']


def test_notify_offline_checks_presence_at_flush(outbox_parts):
    delivery, notifications = outbox_parts
    with EventOutbox(delivery, notifications, sync_runner) as outbox:
        outbox.notify_offline(['bob', 'carol'], 'message', {'text': 'hi'})
        delivery.online.add('bob')

    assert [uid for uid, _, _ in notifications.created] == ['carol']


def test_notify_offline_without_notification_service(delivery):
    with EventOutbox(delivery, None, sync_runner) as outbox:
        outbox.notify_offline(['bob'], 'message', {})
        assert len(outbox) == 0


def test_room_membership_changes(outbox_parts):
    delivery, notifications = outbox_parts
    with EventOutbox(delivery, notifications, sync_runner) as outbox:
        outbox.subscribe('bob', 'conversation:1')
        outbox.unsubscribe('carol', 'conversation:1')

    assert delivery.room_changes == [('join', 'bob', 'conversation:1'), ('leave', 'carol', 'conversation:1')]
