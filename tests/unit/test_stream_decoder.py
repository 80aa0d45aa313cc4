import pytest

from outreach.models.domain.stream_domain import StreamEvent
from outreach.services.stream_decoder import (
    SSEDecoder,
    encode_events,
    format_event,
    iter_events,
    parse_record,
)


def _feed_all(decoder: SSEDecoder, chunks) -> list[StreamEvent]:
    events = []
    for chunk in chunks:
        events.extend(decoder.feed(chunk))
    events.extend(decoder.flush())
    return events


def test_parse_record_named_event():
    event = parse_record('event: status\ndata: {"message": "thinking", "type": "thinking"}')

    assert event.event == "status"
    assert event.data == {"message": "thinking", "type": "thinking"}
    assert event.is_raw is False


def test_parse_record_defaults_to_message_event():
    event = parse_record('data: {"content": "hi"}')

    assert event.event == "message"
    assert event.get("content") == "hi"


def test_parse_record_tolerates_reordered_lines():
    event = parse_record('data: {"sessionId": "s-1"}\nevent: session')

    assert event.event == "session"
    assert event.get("sessionId") == "s-1"


def test_parse_record_skips_empty_data_and_comments():
    assert parse_record("event: status") is None
    assert parse_record("data: ") is None
    assert parse_record(": keep-alive") is None


def test_parse_record_done_sentinel():
    event = parse_record("data: [DONE]")

    assert event.is_done
    assert event.data == {}


def test_parse_record_non_json_payload_is_raw():
    event = parse_record("event: content\ndata: not json")

    assert event.event == "content"
    assert event.is_raw is True
    assert event.data == {"raw": "not json"}


def test_decoder_handles_several_records_in_one_chunk():
    decoder = SSEDecoder()
    chunk = (
        b'event: content\ndata: {"content": "Hi "}\n\n'
        b'event: content\ndata: {"content": "there."}\n\n'
    )

    events = decoder.feed(chunk)

    assert [e.get("content") for e in events] == ["Hi ", "there."]


def test_decoder_buffers_partial_record_across_chunks():
    decoder = SSEDecoder()

    assert decoder.feed(b'event: content\ndata: {"cont') == []
    events = decoder.feed(b'ent": "abc"}\n\n')

    assert events == [StreamEvent("content", {"content": "abc"})]


def test_decoder_reassembles_multibyte_characters_split_across_chunks():
    payload = 'data: {"content": "café"}\n\n'.encode("utf-8")
    split_at = payload.index("é".encode("utf-8")) + 1

    events = _feed_all(SSEDecoder(), [payload[:split_at], payload[split_at:]])

    assert events[0].get("content") == "café"


def test_decoder_normalizes_crlf_split_between_chunks():
    decoder = SSEDecoder()

    events = _feed_all(
        decoder,
        [b'event: content\r\ndata: {"content": "x"}\r', b"\n\r\n"],
    )

    assert events == [StreamEvent("content", {"content": "x"})]


def test_flush_emits_final_record_without_delimiter():
    decoder = SSEDecoder()

    assert decoder.feed(b'data: {"a": 1}') == []
    assert decoder.flush() == [StreamEvent("message", {"a": 1})]


def test_encode_then_decode_byte_by_byte_preserves_sequence():
    events = [
        StreamEvent("session", {"sessionId": "s-1"}),
        StreamEvent("status", {"message": "thinking", "type": "thinking"}),
        StreamEvent("content", {"content": "line one\nline two"}),
        StreamEvent("message", {"content": "plain"}),
        StreamEvent("done", {}),
    ]
    encoded = encode_events(events)

    decoded = _feed_all(SSEDecoder(), [encoded[i : i + 1] for i in range(len(encoded))])

    assert decoded == events


def test_format_event_writes_done_sentinel():
    done = parse_record("data: [DONE]")

    assert format_event(done) == b"event: done\ndata: [DONE]\n\n"


@pytest.mark.asyncio
async def test_iter_events_decodes_async_stream():
    async def chunks():
        yield b'event: content\ndata: {"content": "A"}\n'
        yield b"\n"
        yield b"data: [DONE]\n\n"

    events = [event async for event in iter_events(chunks())]

    assert [e.event for e in events] == ["content", "done"]
