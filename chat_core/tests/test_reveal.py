import asyncio

import pytest

from chat_core.domain.conversation import Conversation, Message
from chat_core.domain.exceptions import BusinessError
from chat_core.session.reveal import RevealScheduler
from chat_core.session.store import ConversationStore


def _store_with_placeholders(*message_ids):
    conv = Conversation(
        id="c1",
        title="t",
        messages=[Message(id=mid, role="assistant", loading=True) for mid in message_ids],
    )
    return ConversationStore(conversations=[conv])


def _msg(store, message_id):
    return store.get("c1").find_message(message_id)


@pytest.mark.asyncio
async def test_reveal_writes_words_then_settles():
    store = _store_with_placeholders("m1")
    ticks = []
    scheduler = RevealScheduler(
        store,
        interval=0,
        on_tick=lambda: ticks.append((_msg(store, "m1").content, _msg(store, "m1").loading)),
    )
    done = []
    scheduler.start("c1", "m1", "a b c", on_done=lambda: done.append(True))
    assert scheduler.active
    assert _msg(store, "m1").content == ""
    assert _msg(store, "m1").loading is True

    await scheduler.wait()

    assert ticks == [("a", True), ("a b", True), ("a b c", False)]
    assert done == [True]
    assert not scheduler.active


@pytest.mark.asyncio
async def test_reveal_ticks_are_prefixes():
    text = "The quick brown fox jumps over the lazy dog"
    store = _store_with_placeholders("m1")
    seen = []
    scheduler = RevealScheduler(store, interval=0, on_tick=lambda: seen.append(_msg(store, "m1").content))
    scheduler.start("c1", "m1", text)
    await scheduler.wait()

    words = text.split(" ")
    assert seen == [" ".join(words[:n]) for n in range(1, len(words) + 1)]
    assert _msg(store, "m1").content == text
    assert _msg(store, "m1").loading is False


@pytest.mark.asyncio
async def test_reveal_preserves_consecutive_spaces():
    store = _store_with_placeholders("m1")
    scheduler = RevealScheduler(store, interval=0)
    scheduler.start("c1", "m1", "hello  world\nnext line")
    await scheduler.wait()
    assert _msg(store, "m1").content == "hello  world\nnext line"


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "   "])
async def test_reveal_blank_text_settles_immediately(text):
    store = _store_with_placeholders("m1")
    ticks = []
    done = []
    scheduler = RevealScheduler(store, interval=0, on_tick=lambda: ticks.append(1))
    scheduler.start("c1", "m1", text, on_done=lambda: done.append(True))
    assert not scheduler.active
    await asyncio.sleep(0)
    assert _msg(store, "m1").content == ""
    assert _msg(store, "m1").loading is False
    assert ticks == []
    assert done == [True]


@pytest.mark.asyncio
async def test_second_reveal_cancels_first():
    text = "one two three four five six seven eight"
    store = _store_with_placeholders("m1", "m2")
    scheduler = RevealScheduler(store, interval=0)
    first_done = []
    scheduler.start("c1", "m1", text, on_done=lambda: first_done.append(True))
    for _ in range(4):
        await asyncio.sleep(0)

    scheduler.start("c1", "m2", "alpha beta")
    frozen = _msg(store, "m1").content
    await scheduler.wait()
    for _ in range(10):
        await asyncio.sleep(0)

    assert _msg(store, "m2").content == "alpha beta"
    assert _msg(store, "m2").loading is False
    assert _msg(store, "m1").content == frozen
    assert text.startswith(frozen)
    assert _msg(store, "m1").loading is True
    assert first_done == []


@pytest.mark.asyncio
async def test_cancel_is_idempotent_and_leaves_message_partial():
    store = _store_with_placeholders("m1")
    scheduler = RevealScheduler(store, interval=0)
    scheduler.cancel()
    scheduler.start("c1", "m1", "x y z")
    scheduler.cancel()
    scheduler.cancel()
    await scheduler.wait()
    for _ in range(5):
        await asyncio.sleep(0)
    assert _msg(store, "m1").content == ""
    assert _msg(store, "m1").loading is True


@pytest.mark.asyncio
async def test_finish_flushes_full_text():
    store = _store_with_placeholders("m1")
    done = []
    scheduler = RevealScheduler(store, interval=10)
    scheduler.start("c1", "m1", "slow reply here", on_done=lambda: done.append(True))
    scheduler.finish()
    assert _msg(store, "m1").content == "slow reply here"
    assert _msg(store, "m1").loading is False
    assert done == [True]
    assert not scheduler.active
    scheduler.finish()
    assert done == [True]
    await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_reveal_into_deleted_conversation_is_harmless():
    store = ConversationStore(
        conversations=[
            Conversation(id="c1", title="t", messages=[Message(id="m1", role="assistant", loading=True)]),
            Conversation(id="c2", title="u"),
        ]
    )
    done = []
    scheduler = RevealScheduler(store, interval=0)
    scheduler.start("c1", "m1", "a b", on_done=lambda: done.append(True))
    store.delete_conversation("c1")
    await scheduler.wait()
    assert done == [True]
    assert [c.id for c in store.conversations] == ["c2"]


@pytest.mark.asyncio
async def test_settle_leaves_running_reveal_alone():
    store = _store_with_placeholders("m1", "m2")
    scheduler = RevealScheduler(store, interval=0.01)
    revealed = []
    settled = []
    scheduler.start("c1", "m1", "one two three four", on_done=lambda: revealed.append(True))

    scheduler.settle("c1", "m2", "background reply", on_done=lambda: settled.append(True))

    assert _msg(store, "m2").content == "background reply"
    assert _msg(store, "m2").loading is False
    assert settled == [True]
    assert scheduler.active
    assert scheduler.current.message_id == "m1"

    await scheduler.wait()
    assert _msg(store, "m1").content == "one two three four"
    assert _msg(store, "m1").loading is False
    assert revealed == [True]


class FailingPersistence:
    def save(self, state):
        raise BusinessError(code="STORE_WRITE_ERROR", message="disk full")


@pytest.mark.asyncio
async def test_reveal_survives_write_failures():
    conv = Conversation(id="c1", title="t", messages=[Message(id="m1", role="assistant", loading=True)])
    store = ConversationStore(conversations=[conv], persistence=FailingPersistence())
    done = []
    scheduler = RevealScheduler(store, interval=0)
    scheduler.start("c1", "m1", "a b c", on_done=lambda: done.append(True))
    await scheduler.wait()
    assert _msg(store, "m1").content == "a b c"
    assert _msg(store, "m1").loading is False
    assert done == [True]
    assert not scheduler.active
