from downtube_cli.core.events import EventBus, JobRemoved, QueueStateChanged
from downtube_cli.models.job import QueueState


def test_subscribe_and_unsubscribe() -> None:
    bus = EventBus()
    received = []
    unsubscribe = bus.subscribe(received.append)

    bus.publish(JobRemoved("abc"))
    unsubscribe()
    unsubscribe()
    bus.publish(JobRemoved("def"))

    assert [event.id for event in received] == ["abc"]
    assert bus.listener_count == 0


def test_failing_listener_does_not_block_others() -> None:
    bus = EventBus()
    received = []

    def broken(_event):
        raise RuntimeError("listener bug")

    bus.subscribe(broken)
    bus.subscribe(received.append)
    bus.publish(QueueStateChanged(QueueState(running=False, paused=True)))

    assert len(received) == 1
    assert received[0].type == "queue-state"


def test_listener_may_unsubscribe_while_notified() -> None:
    bus = EventBus()
    calls = []
    handles = {}

    def once(event):
        calls.append(event)
        handles["once"]()

    handles["once"] = bus.subscribe(once)
    bus.subscribe(calls.append)
    bus.publish(JobRemoved("a"))
    bus.publish(JobRemoved("b"))

    assert [event.id for event in calls] == ["a", "a", "b"]
