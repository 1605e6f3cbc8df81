from __future__ import annotations

import asyncio

from fakes import ScriptedStream
from medassist_core import MessageTable, StreamError, StreamingResponseConsumer
from medassist_core.streaming import (
    AWAITING_FIRST_TOKEN,
    ERRORED,
    FINALIZED,
    IDLE,
    STREAMING,
    chunk_text,
)


def _consumer(table: MessageTable):
    entry = table.add_optimistic("assistant", "", is_streaming=True)
    consumer = StreamingResponseConsumer(
        table,
        entry.client_id,
        error_text=lambda exc: f"Sorry, an error occurred: {exc}",
    )
    return entry, consumer


def test_tokens_accumulate_in_order_and_finalize():
    table = MessageTable()
    entry, consumer = _consumer(table)
    deltas: list[str] = []
    consumer.add_token_listener(deltas.append)

    final = asyncio.run(consumer.consume(ScriptedStream(["I'm sorry", " to hear that."])))

    assert final.text == "I'm sorry to hear that."
    assert final.is_streaming is False
    assert deltas == ["I'm sorry", " to hear that."]
    assert consumer.state == FINALIZED
    assert consumer.lifecycle == [IDLE, AWAITING_FIRST_TOKEN, STREAMING, FINALIZED]
    assert table.get(entry.client_id) is final


def test_empty_chunks_are_ignored():
    table = MessageTable()
    _, consumer = _consumer(table)
    final = asyncio.run(consumer.consume(ScriptedStream(["", {"text": "a"}, None, {"other": 1}, "b"])))
    assert final.text == "ab"


def test_stream_with_no_tokens_finalizes_empty():
    table = MessageTable()
    _, consumer = _consumer(table)
    final = asyncio.run(consumer.consume(ScriptedStream([])))
    assert final.text == ""
    assert consumer.lifecycle == [IDLE, AWAITING_FIRST_TOKEN, FINALIZED]


def test_failure_after_partial_text_keeps_partial_and_appends_error():
    table = MessageTable()
    _, consumer = _consumer(table)
    final = asyncio.run(consumer.consume(ScriptedStream(["Partial answer"], error=RuntimeError("quota"))))
    assert consumer.state == ERRORED
    assert isinstance(consumer.error, StreamError)
    assert final.text == "Partial answer\n\nSorry, an error occurred: quota"
    assert final.is_streaming is False


def test_failure_before_first_token_writes_error_only():
    table = MessageTable()
    _, consumer = _consumer(table)
    final = asyncio.run(consumer.consume(ScriptedStream([], error=ConnectionError("network down"))))
    assert final.text == "Sorry, an error occurred: network down"
    assert consumer.lifecycle == [IDLE, AWAITING_FIRST_TOKEN, ERRORED]


def test_cancel_discards_late_tokens():
    table = MessageTable()
    entry, consumer = _consumer(table)
    gate = asyncio.Event()

    async def scenario():
        task = asyncio.create_task(consumer.consume(ScriptedStream(["first", " late"], gate=gate)))
        while not table.get(entry.client_id).text:
            await asyncio.sleep(0)
        consumer.cancel()
        gate.set()
        return await task

    final = asyncio.run(scenario())
    assert consumer.cancelled is True
    assert consumer.state == FINALIZED
    assert final.text == "first"
    assert final.is_streaming is False


def test_chunk_text_accepts_objects_with_text():
    class Chunk:
        text = "x"

    assert chunk_text(Chunk()) == "x"
    assert chunk_text(42) == ""
