from __future__ import annotations

import pytest

from medassist_core import ChatMessage, MessageTable


def _stored(doc_id: str, role: str, text: str, timestamp: float) -> ChatMessage:
    return ChatMessage(id=doc_id, role=role, text=text, timestamp=timestamp)


def test_optimistic_timestamps_are_strictly_increasing():
    table = MessageTable()
    first = table.add_optimistic("user", "one")
    second = table.add_optimistic("assistant", "", is_streaming=True)
    third = table.add_optimistic("user", "three")
    assert first.timestamp < second.timestamp < third.timestamp
    assert first.client_id != second.client_id
    assert first.client_id.startswith("client-")


def test_finalized_entry_rejects_further_text():
    table = MessageTable()
    entry = table.add_optimistic("assistant", "", is_streaming=True)
    table.append_text(entry.client_id, "partial")
    table.finish_streaming(entry.client_id)
    with pytest.raises(ValueError):
        table.append_text(entry.client_id, " more")
    with pytest.raises(ValueError):
        table.replace_text(entry.client_id, "other")
    assert table.get(entry.client_id).text == "partial"


def test_snapshot_sequence_merges_optimistic_entries():
    table = MessageTable()
    user = table.add_optimistic("user", "hi")
    assistant = table.add_optimistic("assistant", "", is_streaming=True)

    table.mark_persisted(user.client_id, "doc-u")
    view = table.apply_snapshot([_stored("doc-u", "user", "hi", user.timestamp)])
    assert [m.key for m in view] == ["doc-u", assistant.client_id]
    assert len(table) == 2

    table.append_text(assistant.client_id, "hello")
    table.finish_streaming(assistant.client_id)
    table.mark_persisted(assistant.client_id, "doc-a")
    view = table.apply_snapshot(
        [
            _stored("doc-u", "user", "hi", user.timestamp),
            _stored("doc-a", "assistant", "hello", assistant.timestamp),
        ]
    )
    assert [m.key for m in view] == ["doc-u", "doc-a"]
    assert [m.text for m in view] == ["hi", "hello"]
    assert len(table) == 2


def test_persist_ack_after_snapshot_does_not_duplicate():
    table = MessageTable()
    user = table.add_optimistic("user", "hi")
    table.apply_snapshot([_stored("doc-u", "user", "hi", user.timestamp)])
    # Optimistic copy has no id yet, so both are visible until the ack lands.
    assert len(table) == 2
    merged = table.mark_persisted(user.client_id, "doc-u")
    assert merged.id == "doc-u"
    assert len(table) == 1
    assert table.view()[0].client_id is None


def test_snapshot_order_follows_timestamps():
    table = MessageTable()
    view = table.apply_snapshot(
        [
            _stored("b", "assistant", "second", 20.0),
            _stored("a", "user", "first", 10.0),
        ]
    )
    assert [m.id for m in view] == ["a", "b"]
    later = table.add_optimistic("user", "third")
    assert later.timestamp > 20.0


def test_model_role_is_normalized():
    message = ChatMessage.from_document("x", {"role": "model", "text": "ok", "timestamp": 1})
    assert message.role == "assistant"
    with pytest.raises(ValueError):
        ChatMessage(role="system", text="no", timestamp=1.0)


def test_acknowledged_entries_leave_the_optimistic_view():
    table = MessageTable()
    for turn in range(10):
        user = table.add_optimistic("user", f"question {turn}")
        table.mark_persisted(user.client_id, f"doc-u{turn}")
        reply = table.add_optimistic("assistant", "", is_streaming=True)
        table.finish_streaming(reply.client_id)
        table.mark_persisted(reply.client_id, f"doc-a{turn}")

    assert len(table) == 20
    assert all(m.id for m in table.view())
    assert table.get("doc-a9").role == "assistant"
    assert table.get(reply.client_id) is None


def test_stale_snapshot_keeps_locally_acknowledged_entry():
    table = MessageTable()
    user = table.add_optimistic("user", "hi")
    table.mark_persisted(user.client_id, "doc-u")
    view = table.apply_snapshot([])
    assert [m.key for m in view] == ["doc-u"]


def test_discard_removes_unpersisted_entry():
    table = MessageTable()
    entry = table.add_optimistic("assistant", "", is_streaming=True)
    table.discard(entry.client_id)
    assert len(table) == 0
