"""Event-stream decoder tests."""

import json

from predgrid.ingestion.sse import SSEDecoder


def _frame(event: str, data) -> bytes:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n".encode()


def test_decodes_complete_frames_in_order():
    dec = SSEDecoder()
    out = dec.feed(_frame("tick", {"mid": 0.5}) + _frame("trade", {"size": 3}))
    assert out == [("tick", {"mid": 0.5}), ("trade", {"size": 3})]


def test_buffers_partial_lines_across_arbitrary_splits():
    raw = _frame("tick", {"market_id": "m1", "mid": 0.51}) + _frame("error", {"message": "boom"})
    for size in (1, 2, 3, 7, 13):
        dec = SSEDecoder()
        out = []
        for i in range(0, len(raw), size):
            out.extend(dec.feed(raw[i : i + size]))
        assert out == [("tick", {"market_id": "m1", "mid": 0.51}), ("error", {"message": "boom"})]
        assert dec.pending == ""


def test_multibyte_utf8_split_inside_character():
    raw = _frame("error", {"message": "prix → 0.5"})
    cut = raw.index("→".encode()) + 1
    dec = SSEDecoder()
    assert dec.feed(raw[:cut]) == []
    assert dec.feed(raw[cut:]) == [("error", {"message": "prix → 0.5"})]


def test_trailing_partial_line_not_parsed():
    dec = SSEDecoder()
    assert dec.feed(b'event: tick\ndata: {"mid": 0.5}') == []
    assert dec.pending == 'data: {"mid": 0.5}'
    assert dec.feed(b"\n") == [("tick", {"mid": 0.5})]


def test_data_without_event_is_ignored():
    dec = SSEDecoder()
    assert dec.feed(b'data: {"mid": 0.5}\n\n') == []


def test_keepalive_comments_ignored():
    dec = SSEDecoder()
    out = dec.feed(b": keep-alive\n\n" + _frame("trade", {}) + b": keep-alive\n\n")
    assert out == [("trade", {})]


def test_bad_json_dropped_and_event_disarmed():
    dec = SSEDecoder()
    out = dec.feed(b"event: tick\ndata: {not json\ndata: {\"mid\": 1}\n\n" + _frame("trade", {"x": 1}))
    assert out == [("trade", {"x": 1})]


def test_crlf_line_endings():
    dec = SSEDecoder()
    assert dec.feed(b'event: tick\r\ndata: {"mid": 0.2}\r\n\r\n') == [("tick", {"mid": 0.2})]
