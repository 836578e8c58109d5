import unittest

from models.message import TokenUsage
from relay.events import DeltaEvent, DoneEvent, ErrorEvent, StartEvent
from relay.transport import (
    SSE_MEDIA_TYPE,
    SSEDecoder,
    ServerSentEvent,
    encode_event,
    encode_events,
    event_stream_response,
    iter_stream_events,
    parse_stream_event,
)

TURN = [
    StartEvent(message_id="u-1", session_id="s-1"),
    DeltaEvent(content="héllo ", index=0),
    DeltaEvent(content="wörld ✓\nnext line", index=1),
    DoneEvent(message_id="a-1", usage=TokenUsage(prompt_tokens=5, completion_tokens=3)),
]


def wire(events) -> bytes:
    return "".join(encode_event(e) for e in events).encode("utf-8")


async def chunked(data: bytes, size: int):
    for i in range(0, len(data), size):
        yield data[i:i + size]


class EncodeTests(unittest.TestCase):
    def test_frame_layout(self) -> None:
        frame = encode_event(DeltaEvent(content="Hi", index=0))
        self.assertEqual('event: delta\ndata: {"content": "Hi", "index": 0}\n\n', frame)

    def test_done_frame_reports_usage(self) -> None:
        frame = encode_event(TURN[-1])
        self.assertEqual(
            'event: done\ndata: {"messageId": "a-1", "usage": {"promptTokens": 5, "completionTokens": 3}}\n\n',
            frame,
        )

    def test_newlines_in_content_stay_inside_one_data_line(self) -> None:
        frame = encode_event(TURN[2])
        self.assertEqual(3, frame.count("\n"))

    def test_streaming_response_disables_buffering(self) -> None:
        async def events():
            yield TURN[0]

        response = event_stream_response(events())
        self.assertTrue(response.headers["content-type"].startswith(SSE_MEDIA_TYPE))
        self.assertEqual("no-cache", response.headers["cache-control"])
        self.assertEqual("keep-alive", response.headers["connection"])
        self.assertEqual("no", response.headers["x-accel-buffering"])


class EncodeEventsTests(unittest.IsolatedAsyncioTestCase):
    async def test_closing_the_encoder_closes_the_source(self) -> None:
        closed = []

        async def source():
            try:
                for event in TURN:
                    yield event
            finally:
                closed.append(True)

        frames = encode_events(source())
        first = await frames.__anext__()
        await frames.aclose()

        self.assertTrue(first.startswith("event: start\n"))
        self.assertEqual([True], closed)


class DecoderTests(unittest.TestCase):
    def test_arbitrary_splits_decode_identically(self) -> None:
        data = wire(TURN)
        for size in (1, 2, 3, 7, 64, len(data)):
            decoder = SSEDecoder()
            frames = []
            for i in range(0, len(data), size):
                frames.extend(decoder.feed(data[i:i + size]))
            frames.extend(decoder.flush())
            events = [parse_stream_event(f) for f in frames]
            self.assertEqual(TURN, events, f"chunk size {size}")

    def test_split_multibyte_character_is_held(self) -> None:
        data = encode_event(DeltaEvent(content="✓", index=0)).encode("utf-8")
        cut = data.index("✓".encode("utf-8")) + 1
        decoder = SSEDecoder()

        self.assertEqual([], decoder.feed(data[:cut]))
        frames = decoder.feed(data[cut:])
        self.assertEqual("✓", parse_stream_event(frames[0]).content)

    def test_crlf_and_cr_line_endings(self) -> None:
        decoder = SSEDecoder()
        frames = decoder.feed(b'event: error\r\ndata: {"code": "STREAM_ERROR", "message": "x"}\r\n\r')
        self.assertEqual([], frames)
        frames = decoder.feed(b'\nevent: delta\rdata: {"content": "a", "index": 0}\r\r\n')
        self.assertEqual(["error", "delta"], [f.event for f in frames])

    def test_comments_and_multiline_data(self) -> None:
        decoder = SSEDecoder()
        frames = decoder.feed(b": keep-alive\n\ndata: line one\ndata: line two\n\n")
        self.assertEqual([ServerSentEvent(event="message", data="line one\nline two")], frames)

    def test_incomplete_trailing_frame_is_dropped(self) -> None:
        decoder = SSEDecoder()
        self.assertEqual([], decoder.feed(b'event: delta\ndata: {"content": "a", "index": 0}\n'))
        self.assertEqual([], decoder.flush())

    def test_unknown_events_and_bad_json_are_skipped(self) -> None:
        self.assertIsNone(parse_stream_event(ServerSentEvent(event="ping", data="{}")))
        self.assertIsNone(parse_stream_event(ServerSentEvent(event="delta", data="{not json")))

    def test_frames_with_missing_or_mistyped_fields_are_skipped(self) -> None:
        self.assertIsNone(parse_stream_event(ServerSentEvent(event="delta", data='{"index": 0}')))
        self.assertIsNone(parse_stream_event(ServerSentEvent(event="start", data="[1, 2]")))
        self.assertIsNone(parse_stream_event(ServerSentEvent(event="done", data='{"messageId": "a", "usage": 3}')))

    def test_error_frame_parses(self) -> None:
        event = parse_stream_event(
            ServerSentEvent(event="error", data='{"code": "STREAM_TIMEOUT", "message": "slow"}')
        )
        self.assertEqual(ErrorEvent(code="STREAM_TIMEOUT", message="slow"), event)


class IterStreamEventsTests(unittest.IsolatedAsyncioTestCase):
    async def test_events_arrive_in_order(self) -> None:
        events = [e async for e in iter_stream_events(chunked(wire(TURN), 5))]
        self.assertEqual(TURN, events)

    async def test_malformed_frame_does_not_end_the_stream(self) -> None:
        data = (
            wire(TURN[:2])
            + b'event: delta\ndata: {"index": 1}\n\n'
            + wire(TURN[2:])
        )
        events = [e async for e in iter_stream_events(chunked(data, 9))]
        self.assertEqual(TURN, events)


if __name__ == "__main__":
    unittest.main()
