from __future__ import annotations

import itertools
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from chatroom.crypto.codec import DECRYPT_FAILED, encrypt_message
from chatroom.db.store import MessageRow, PresenceRow
from chatroom.realtime.feed import MESSAGES, PRESENCE, ChangeEvent, ChangeKind
from chatroom.services.reconciler import SyncReconciler

PASS = "secret123"


def row(message_id, text, *, author="bob", assistant=False, params=None, passphrase=PASS):
    payload = text if assistant else encrypt_message(text, passphrase, params)
    return MessageRow(
        id=message_id,
        author=author,
        payload=payload,
        is_assistant=assistant,
        created_at=datetime.now(timezone.utc),
    )


@pytest.fixture()
def reconciler(store, fast_kdf):
    return SyncReconciler(store, PASS, params=fast_kdf)


def texts(reconciler):
    return [(v.id, v.display_text) for v in reconciler.views()]


@pytest.mark.asyncio
async def test_load_decrypts_in_order(reconciler, fast_kdf):
    await reconciler.load([
        row("m1", "first", params=fast_kdf),
        row("m2", "second", params=fast_kdf),
        row("a1", "**plain** reply", assistant=True),
    ])
    assert texts(reconciler) == [("m1", "first"), ("m2", "second"), ("a1", "**plain** reply")]


@pytest.mark.asyncio
async def test_load_isolates_bad_rows(reconciler, fast_kdf):
    await reconciler.load([
        row("m1", "ok", params=fast_kdf),
        row("m2", "other room", params=fast_kdf, passphrase="different"),
        replace(row("m3", "x", params=fast_kdf), payload="garbage"),
        row("m4", "still ok", params=fast_kdf),
    ])
    assert texts(reconciler) == [
        ("m1", "ok"),
        ("m2", DECRYPT_FAILED),
        ("m3", DECRYPT_FAILED),
        ("m4", "still ok"),
    ]
    assert [v.readable for v in reconciler.views()] == [True, False, False, True]


@pytest.mark.asyncio
async def test_insert_appends_by_arrival(reconciler, fast_kdf):
    await reconciler.load([row("m1", "old", params=fast_kdf)])
    late = replace(row("m0", "created earlier", params=fast_kdf), created_at=datetime(2000, 1, 1, tzinfo=timezone.utc))
    assert await reconciler.apply_insert(late) is True
    assert [v.id for v in reconciler.views()] == ["m1", "m0"]


@pytest.mark.asyncio
async def test_duplicate_insert_is_noop(reconciler, fast_kdf):
    r = row("m1", "hi", params=fast_kdf)
    assert await reconciler.apply_insert(r) is True
    snapshot = texts(reconciler)
    assert await reconciler.apply_insert(r) is False
    assert texts(reconciler) == snapshot
    assert len(reconciler) == 1


@pytest.mark.asyncio
async def test_delete_missing_id_is_noop(reconciler, fast_kdf):
    await reconciler.apply_insert(row("m1", "hi", params=fast_kdf))
    snapshot = texts(reconciler)
    assert reconciler.apply_delete("nope") is False
    assert texts(reconciler) == snapshot


@pytest.mark.asyncio
async def test_insert_then_delete_removes_entry(reconciler, fast_kdf):
    await reconciler.apply(ChangeEvent(ChangeKind.INSERT, MESSAGES, row("m1", "hi", params=fast_kdf)))
    assert "m1" in reconciler
    await reconciler.apply(ChangeEvent(ChangeKind.DELETE, MESSAGES, row("m1", "hi", params=fast_kdf)))
    assert "m1" not in reconciler
    assert reconciler.views() == []


@pytest.mark.asyncio
async def test_update_for_unknown_id_is_noop(reconciler):
    assert await reconciler.apply_update(row("a1", "text", assistant=True)) is False
    assert len(reconciler) == 0


@pytest.mark.asyncio
async def test_update_replaces_in_place(reconciler, fast_kdf):
    await reconciler.load([
        row("m1", "one", params=fast_kdf),
        row("a1", "Thinking...", assistant=True),
        row("m2", "two", params=fast_kdf),
    ])
    await reconciler.apply_update(row("a1", "Done!", assistant=True))
    await reconciler.apply_update(row("m1", "one (edited)", params=fast_kdf))
    assert texts(reconciler) == [("m1", "one (edited)"), ("a1", "Done!"), ("m2", "two")]


@pytest.mark.asyncio
async def test_assistant_payload_is_not_decrypted(reconciler):
    blob_looking = encrypt_message("secret", PASS)
    await reconciler.apply_insert(row("a1", blob_looking, assistant=True))
    assert reconciler.get("a1").display_text == blob_looking


@pytest.mark.asyncio
async def test_presence_events_are_ignored(reconciler):
    event = ChangeEvent(ChangeKind.INSERT, PRESENCE, PresenceRow("alice", datetime.now(timezone.utc)))
    assert await reconciler.apply(event) is False
    assert len(reconciler) == 0


@pytest.mark.asyncio
async def test_updates_converge_in_any_interleaving(store, fast_kdf):
    """insert(1), update(1,"a"), update(1,"b") mixed with an unrelated id converge on "b"."""
    own = [
        ChangeEvent(ChangeKind.INSERT, MESSAGES, row("1", "Thinking...", assistant=True)),
        ChangeEvent(ChangeKind.UPDATE, MESSAGES, row("1", "a", assistant=True)),
        ChangeEvent(ChangeKind.UPDATE, MESSAGES, row("1", "b", assistant=True)),
    ]
    other = [
        ChangeEvent(ChangeKind.INSERT, MESSAGES, row("2", "x", params=fast_kdf)),
        ChangeEvent(ChangeKind.DELETE, MESSAGES, row("2", "x", params=fast_kdf)),
    ]
    slots = len(own) + len(other)
    for positions in itertools.combinations(range(slots), len(own)):
        it_own, it_other = iter(own), iter(other)
        sequence = [next(it_own) if i in positions else next(it_other) for i in range(slots)]

        reconciler = SyncReconciler(store, PASS, params=fast_kdf)
        for event in sequence:
            await reconciler.apply(event)
        assert texts(reconciler) == [("1", "b")]


@pytest.mark.asyncio
async def test_apply_progress_round_trips_through_update(reconciler):
    await reconciler.apply_insert(row("a1", "Thinking...", assistant=True))
    assert await reconciler.apply_progress("a1", "Hel") is True
    assert reconciler.get("a1").display_text == "Hel"
    assert reconciler.get("a1").row.payload == "Hel"
    assert await reconciler.apply_progress("missing", "x") is False


@pytest.mark.asyncio
async def test_send_local_writes_blob_without_touching_list(store, reconciler, fast_kdf):
    stored = await reconciler.send_local("alice", "hello", PASS)

    assert len(reconciler) == 0
    assert stored.payload != "hello"
    assert stored.is_assistant is False
    rows = await store.select_messages()
    assert [r.id for r in rows] == [stored.id]

    await reconciler.apply_insert(stored)
    await reconciler.apply_insert(stored)
    assert texts(reconciler) == [(stored.id, "hello")]


@pytest.mark.asyncio
async def test_other_passphrase_sees_sentinel(store, fast_kdf):
    writer = SyncReconciler(store, PASS, params=fast_kdf)
    reader = SyncReconciler(store, "wrongpass", params=fast_kdf)
    stored = await writer.send_local("alice", "hello", PASS)
    await reader.apply_insert(stored)
    assert reader.get(stored.id).display_text == DECRYPT_FAILED
