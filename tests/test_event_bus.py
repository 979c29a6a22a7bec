from dataclasses import dataclass

from services.event_bus import EventBus


@dataclass
class BaseEvent:
    name: str


@dataclass
class ChildEvent(BaseEvent):
    pass


async def test_handlers_receive_events_by_type_and_base():
    bus = EventBus()
    received = []

    async def on_base(event):
        received.append(("base", event.name))

    async def on_child(event):
        received.append(("child", event.name))

    bus.subscribe(BaseEvent, on_base)
    bus.subscribe(ChildEvent, on_child)
    await bus.start()
    try:
        await bus.publish(ChildEvent("a"))
        await bus.publish(BaseEvent("b"))
        await bus.drain()
    finally:
        await bus.stop()

    assert sorted(received) == [("base", "a"), ("base", "b"), ("child", "a")]
    assert not bus.is_running


async def test_failing_handler_does_not_block_others():
    bus = EventBus()
    received = []

    async def broken(event):
        raise RuntimeError("boom")

    async def healthy(event):
        received.append(event.name)

    bus.subscribe(BaseEvent, broken)
    bus.subscribe(BaseEvent, healthy)
    await bus.start()
    try:
        await bus.publish(BaseEvent("x"))
        await bus.publish(BaseEvent("y"))
        await bus.drain()
    finally:
        await bus.stop()

    assert received == ["x", "y"]


async def test_stop_delivers_queued_events():
    bus = EventBus()
    received = []

    async def handler(event):
        received.append(event.name)

    bus.subscribe(BaseEvent, handler)
    await bus.publish(BaseEvent("queued"))
    await bus.start()
    await bus.stop()

    assert received == ["queued"]
