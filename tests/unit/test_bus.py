import asyncio

import pytest

from agentcompose.core.bus import EventBus
from agentcompose.core.contracts import LifecycleStage, StageCompleted


@pytest.mark.asyncio
async def test_publish_and_subscribe_round_trip() -> None:
    bus = EventBus(queue_size=8)
    await bus.start()

    received = asyncio.Event()
    payloads: list[StageCompleted] = []

    async def handler(topic: str, payload: StageCompleted) -> None:
        payloads.append(payload)
        received.set()

    bus.subscribe("lifecycle.test", handler)

    await bus.publish("lifecycle.test", StageCompleted(stage=LifecycleStage.INSTALL))
    await asyncio.wait_for(received.wait(), timeout=0.2)

    await bus.stop()

    assert payloads and payloads[0].stage is LifecycleStage.INSTALL


@pytest.mark.asyncio
async def test_stop_flushes_events_in_publish_order() -> None:
    bus = EventBus()
    seen: list[tuple[str, LifecycleStage]] = []

    async def slow(topic: str, payload: StageCompleted) -> None:
        await asyncio.sleep(0.01 if payload.stage is LifecycleStage.INSTALL else 0)
        seen.append(("slow", payload.stage))

    async def fast(topic: str, payload: StageCompleted) -> None:
        seen.append(("fast", payload.stage))

    bus.subscribe("topic", slow)
    bus.subscribe("topic", fast)
    await bus.start()
    for stage in (LifecycleStage.INSTALL, LifecycleStage.CONFIGURE):
        await bus.publish("topic", StageCompleted(stage=stage))
    await bus.stop()

    assert seen == [
        ("slow", LifecycleStage.INSTALL),
        ("fast", LifecycleStage.INSTALL),
        ("slow", LifecycleStage.CONFIGURE),
        ("fast", LifecycleStage.CONFIGURE),
    ]
    assert not bus.running


@pytest.mark.asyncio
async def test_unsubscribed_and_other_topics_are_not_delivered() -> None:
    bus = EventBus()
    seen: list[str] = []

    async def handler(topic: str, payload: StageCompleted) -> None:
        seen.append(topic)

    subscription = bus.subscribe("topic", handler)
    await bus.start()
    await bus.publish("topic", StageCompleted(stage=LifecycleStage.RUN))
    await bus.publish("other", StageCompleted(stage=LifecycleStage.RUN))
    await bus.stop()
    assert seen == ["topic"]

    bus.unsubscribe(subscription)
    await bus.start()
    await bus.publish("topic", StageCompleted(stage=LifecycleStage.RUN))
    await bus.stop()
    assert seen == ["topic"]


@pytest.mark.asyncio
async def test_failing_handler_does_not_break_delivery(caplog: pytest.LogCaptureFixture) -> None:
    bus = EventBus()
    seen: list[LifecycleStage] = []

    async def broken(topic: str, payload: StageCompleted) -> None:
        raise RuntimeError("boom")

    async def healthy(topic: str, payload: StageCompleted) -> None:
        seen.append(payload.stage)

    bus.subscribe("topic", broken)
    bus.subscribe("topic", healthy)
    await bus.start()
    await bus.publish("topic", StageCompleted(stage=LifecycleStage.RELOAD))
    await bus.stop()

    assert seen == [LifecycleStage.RELOAD]
    assert "boom" in caplog.text
