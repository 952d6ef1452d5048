import pytest

from chat_core.domain.conversation import Conversation, Message
from chat_core.domain.exceptions import BusinessError, ValidationError
from chat_core.infrastructure.storage.json_store import JsonKeyValueStore, StatePersistence
from chat_core.session.store import ConversationStore


def _store(*convs, active_id=None, persistence=None):
    return ConversationStore(conversations=list(convs), active_id=active_id, persistence=persistence)


def test_default_conversation_when_empty():
    store = ConversationStore()
    assert len(store.conversations) == 1
    assert store.get_active().id == "default"


def test_get_active_falls_back_to_first():
    store = _store(Conversation(id="a", title="A"), Conversation(id="b", title="B"), active_id="gone")
    assert store.get_active().id == "a"
    assert store.active_id == "a"


def test_append_to_missing_conversation_is_noop():
    store = _store(Conversation(id="a", title="A"))
    store.append("gone", Message(id="m1", role="user", content="hi"))
    assert store.get("a").messages == []


def test_update_message_touches_only_target():
    conv = Conversation(
        id="a",
        title="A",
        messages=[
            Message(id="m1", role="user", content="hi"),
            Message(id="m2", role="assistant", loading=True),
        ],
    )
    store = _store(conv)
    store.update_message("a", "m2", content="partial")
    assert store.get("a").messages[0].content == "hi"
    assert store.get("a").messages[1].content == "partial"
    assert store.get("a").messages[1].loading is True


def test_update_message_missing_targets_are_noops():
    store = _store(Conversation(id="a", title="A"))
    store.update_message("gone", "m1", content="x")
    store.update_message("a", "m1", content="x")
    assert store.get("a").messages == []


def test_settled_message_is_immutable():
    store = _store(Conversation(id="a", title="A", messages=[Message(id="m1", role="assistant", loading=True)]))
    store.update_message("a", "m1", content="done", loading=False)
    store.update_message("a", "m1", content="changed")
    msg = store.get("a").messages[0]
    assert msg.content == "done"
    assert msg.loading is False


def test_update_message_rejects_unknown_fields():
    store = _store(Conversation(id="a", title="A", messages=[Message(id="m1", role="assistant", loading=True)]))
    with pytest.raises(ValueError):
        store.update_message("a", "m1", role="user")


def test_first_user_message_sets_title():
    store = ConversationStore()
    store.append("default", Message(id="m1", role="user", content="What is asyncio?"))
    store.append("default", Message(id="m2", role="user", content="And tasks?"))
    assert store.get_active().title == "What is asyncio?"


def test_custom_title_is_kept():
    store = _store(Conversation(id="a", title="Mine"))
    store.append("a", Message(id="m1", role="user", content="hello"))
    assert store.get("a").title == "Mine"


def test_delete_only_conversation_creates_fresh_default():
    store = ConversationStore()
    store.append("default", Message(id="m1", role="user", content="hi"))
    store.delete_conversation("default")
    assert len(store.conversations) == 1
    fresh = store.conversations[0]
    assert fresh.messages == []
    assert fresh.title == "New Chat"
    assert store.active_id == fresh.id


def test_delete_active_reassigns_to_remaining():
    store = _store(Conversation(id="a", title="A"), Conversation(id="b", title="B"), active_id="a")
    store.delete_conversation("a")
    assert store.active_id == "b"


def test_delete_inactive_keeps_active():
    store = _store(Conversation(id="a", title="A"), Conversation(id="b", title="B"), active_id="a")
    store.delete_conversation("b")
    assert store.active_id == "a"
    with pytest.raises(BusinessError):
        store.delete_conversation("b")


def test_create_rename_and_switch():
    store = ConversationStore()
    conv = store.create_conversation()
    assert store.active_id == conv.id
    assert store.conversations[0].id == conv.id
    store.rename_conversation(conv.id, "  Renamed ")
    assert store.get(conv.id).title == "Renamed"
    with pytest.raises(ValidationError):
        store.rename_conversation(conv.id, "   ")
    store.set_active("default")
    assert store.active_id == "default"
    with pytest.raises(BusinessError):
        store.set_active("gone")


def test_theme_toggle():
    store = ConversationStore(theme="light")
    assert store.toggle_theme() == "dark"
    assert store.toggle_theme() == "light"
    with pytest.raises(ValidationError):
        store.set_theme("sepia")


def test_listeners_and_unsubscribe():
    store = ConversationStore()
    seen = []
    unsubscribe = store.subscribe(lambda s: seen.append(len(s.get_active().messages)))
    store.append("default", Message(id="m1", role="user", content="hi"))
    unsubscribe()
    store.append("default", Message(id="m2", role="user", content="again"))
    assert seen == [1]


def test_every_mutation_is_persisted(tmp_path):
    persistence = StatePersistence(JsonKeyValueStore(root=tmp_path))
    store = ConversationStore.load(persistence)
    store.append("default", Message(id="m1", role="user", content="hi"))
    store.append("default", Message(id="m2", role="assistant", loading=True))
    store.update_message("default", "m2", content="hel", loading=True)
    store.set_theme("dark")

    reloaded = ConversationStore.load(StatePersistence(JsonKeyValueStore(root=tmp_path)))
    messages = reloaded.get_active().messages
    assert [m.id for m in messages] == ["m1", "m2"]
    assert messages[1].content == "hel"
    assert messages[1].loading is False
    assert reloaded.theme == "dark"
    assert reloaded.get_active().title == "hi"


class FailingPersistence:
    """save 总是失败的持久化协作方，模拟磁盘写满或权限错误。"""

    def __init__(self):
        self.attempts = 0

    def save(self, state):
        self.attempts += 1
        raise BusinessError(code="STORE_WRITE_ERROR", message="disk full")


def test_write_failure_does_not_block_mutations():
    persistence = FailingPersistence()
    store = _store(
        Conversation(id="c1", title="t", messages=[Message(id="m1", role="assistant", loading=True)]),
        persistence=persistence,
    )
    seen = []
    store.subscribe(lambda s: seen.append(s.get("c1").find_message("m1").content))

    store.update_message("c1", "m1", content="partial", loading=True)
    store.update_message("c1", "m1", content="full text", loading=False)

    msg = store.get("c1").find_message("m1")
    assert msg.content == "full text"
    assert msg.loading is False
    assert seen == ["partial", "full text"]
    assert persistence.attempts == 2


def test_explicit_flush_surfaces_write_failure():
    store = _store(persistence=FailingPersistence())
    with pytest.raises(BusinessError) as exc:
        store.flush()
    assert exc.value.code == "STORE_WRITE_ERROR"
