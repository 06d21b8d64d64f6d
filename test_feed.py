from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone

import pytest
from sqlalchemy import event

from chatroom.db.store import NameConflict, PresenceRow
from chatroom.realtime.feed import MESSAGES, PRESENCE, ChangeEvent, ChangeFeed, ChangeKind


def presence_event(kind=ChangeKind.INSERT, name="alice"):
    return ChangeEvent(kind, PRESENCE, PresenceRow(name, datetime.now(timezone.utc)))


def drain_now(subscription):
    events = []
    while subscription.pending():
        events.append(subscription.queue.get_nowait())
    return events


def test_publish_reaches_every_subscriber_in_order():
    feed = ChangeFeed()
    a, b = feed.subscribe(), feed.subscribe()
    first, second = presence_event(name="one"), presence_event(name="two")

    feed.publish(first)
    feed.publish(second)

    assert drain_now(a) == [first, second]
    assert drain_now(b) == [first, second]


def test_table_filter():
    feed = ChangeFeed()
    messages_only = feed.subscribe(frozenset({MESSAGES}))
    feed.publish(presence_event())
    assert messages_only.pending() == 0


def test_unsubscribe_stops_delivery_and_is_idempotent():
    feed = ChangeFeed()
    sub = feed.subscribe()
    feed.unsubscribe(sub)
    feed.unsubscribe(sub)

    feed.publish(presence_event())
    assert sub.pending() == 0
    assert sub.closed
    assert feed.subscriber_count() == 0


@pytest.mark.asyncio
async def test_subscription_iterates_events():
    feed = ChangeFeed()
    sub = feed.subscribe()
    event = presence_event()
    feed.publish(event)
    async for got in sub:
        assert got == event
        break


@pytest.mark.asyncio
async def test_store_publishes_message_lifecycle(store):
    sub = store.subscribe()
    row = await store.insert_message("alice", "blob")
    updated = await store.update_message(row.id, "blob2")
    deleted = await store.delete_message(row.id)

    events = drain_now(sub)
    assert [(e.kind, e.table) for e in events] == [
        (ChangeKind.INSERT, MESSAGES),
        (ChangeKind.UPDATE, MESSAGES),
        (ChangeKind.DELETE, MESSAGES),
    ]
    assert events[0].row == row
    assert events[1].row == updated
    assert updated.payload == "blob2"
    assert events[2].row.id == deleted.id == row.id


@pytest.mark.asyncio
async def test_store_skips_events_for_missing_rows(store):
    sub = store.subscribe()
    assert await store.update_message("nope", "x") is None
    assert await store.delete_message("nope") is None
    assert await store.touch_presence("ghost") is None
    assert await store.delete_presence("ghost") is None
    assert sub.pending() == 0


@pytest.mark.asyncio
async def test_store_presence_events_and_conflict(store):
    sub = store.subscribe(frozenset({PRESENCE}))
    await store.insert_presence("alice")
    with pytest.raises(NameConflict):
        await store.insert_presence("alice")
    await store.touch_presence("alice")
    await store.delete_presence("alice")

    assert [e.kind for e in drain_now(sub)] == [ChangeKind.INSERT, ChangeKind.UPDATE, ChangeKind.DELETE]


@pytest.mark.asyncio
async def test_select_messages_is_ordered_by_creation(store):
    ids = []
    for i in range(5):
        ids.append((await store.insert_message("alice", f"m{i}")).id)
        await asyncio.sleep(0.002)
    assert [r.id for r in await store.select_messages()] == ids


@pytest.mark.asyncio
async def test_store_calls_do_not_block_the_event_loop(engine, store):
    def slow_statement(*args):
        time.sleep(0.1)

    ticks = 0

    async def ticker():
        nonlocal ticks
        while True:
            await asyncio.sleep(0.01)
            ticks += 1

    event.listen(engine, "before_cursor_execute", slow_statement)
    task = asyncio.create_task(ticker())
    try:
        await store.count_presence()
    finally:
        task.cancel()
        event.remove(engine, "before_cursor_execute", slow_statement)

    assert ticks >= 3
