from __future__ import annotations

from pulsarfleet.models.notification import NotificationEntry, NotificationLevel
from pulsarfleet.state.notifications import NotificationAggregator


class _Clock:
    def __init__(self, now: int = 0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


def test_similar_notifications_are_grouped() -> None:
    clock = _Clock(100)
    notifications = NotificationAggregator(clock=clock)

    first = notifications.push(NotificationLevel.WARN, "Device stale", "No data for 5s", "d1")
    clock.now = 200
    second = notifications.push("warn", "device STALE again", "No data for 6s", "d1")

    assert len(notifications) == 1
    assert second.id == first.id
    assert second.count == 2
    assert second.t == 200
    assert second.detail == "No data for 6s"


def test_grouping_is_per_device_and_level() -> None:
    notifications = NotificationAggregator(clock=_Clock())

    notifications.push("warn", "Device stale", device_id="d1")
    notifications.push("warn", "Device stale", device_id="d2")
    notifications.push("bad", "Device offline", device_id="d1")

    assert len(notifications) == 3
    assert [n.count for n in notifications.entries()] == [1, 1, 1]


def test_grouped_entry_moves_to_front() -> None:
    notifications = NotificationAggregator(clock=_Clock())

    notifications.push("ok", "Command acked", device_id="d1")
    notifications.push("info", "Broadcast", "Sending reboot")
    notifications.push("ok", "Command acked", device_id="d1")

    assert [n.title for n in notifications.entries()] == ["Command acked", "Broadcast"]
    assert notifications.entries(limit=1)[0].count == 2


def test_acknowledged_entries_are_not_grouped_into() -> None:
    notifications = NotificationAggregator(clock=_Clock())
    entry = notifications.push("bad", "Device offline", device_id="d1")

    assert notifications.acknowledge(entry.id) is True
    notifications.push("bad", "Device offline", device_id="d1")

    assert len(notifications) == 2
    assert notifications.unacknowledged_count() == 1
    assert notifications.acknowledge("missing") is False
    assert notifications.acknowledge_all() == 1
    assert notifications.unacknowledged() == []


def test_log_is_capped_newest_first() -> None:
    notifications = NotificationAggregator(max_entries=3, clock=_Clock())

    for i in range(5):
        notifications.push("info", f"Event{i}")

    assert [n.title for n in notifications.entries()] == ["Event4", "Event3", "Event2"]


def test_callback_receives_entries_and_failures_are_isolated() -> None:
    seen: list[NotificationEntry] = []

    def on_notify(entry: NotificationEntry) -> None:
        seen.append(entry)
        raise RuntimeError("sink down")

    notifications = NotificationAggregator(clock=_Clock(), on_notify=on_notify)
    entry = notifications.push("ok", "Device online", device_id="d1")

    assert seen == [entry]
    assert notifications.for_device("d1") == [entry]
    notifications.clear()
    assert len(notifications) == 0
