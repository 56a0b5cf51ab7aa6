from __future__ import annotations

from tinymem.events import EventBus, EventKind


def test_publish_fans_out_to_subscribers() -> None:
    bus = EventBus()
    first = bus.subscribe()
    second = bus.subscribe()

    bus.publish(EventKind.NEW_QUESTION, "abc", question="deploy?")

    for queue in (first, second):
        event = queue.get_nowait()
        assert event.kind is EventKind.NEW_QUESTION
        assert event.session_id == "abc"
        assert event.data == {"question": "deploy?"}
    assert bus.published == 1


def test_full_queue_drops_without_blocking() -> None:
    bus = EventBus(maxsize=1)
    queue = bus.subscribe()

    bus.publish(EventKind.REFRESH, "a")
    bus.publish(EventKind.REFRESH, "b")

    assert queue.qsize() == 1
    assert queue.get_nowait().session_id == "a"
    assert bus.dropped == 1


def test_unsubscribe_stops_delivery() -> None:
    bus = EventBus()
    queue = bus.subscribe()
    bus.unsubscribe(queue)

    bus.publish(EventKind.SESSION_DONE, "a")

    assert queue.empty()
    assert bus.published == 1
