"""Tests for the clock-carrying message codec."""

import threading

import msgpack
import pytest

from vectrace import (
    CausalityCodec,
    ConfigurationError,
    DecodingError,
    EncodingError,
    MemoryLogSink,
)
from vectrace.codec import CLOCK_KEY, PAYLOAD_KEY
from vectrace.config import CodecConfig
from vectrace.log import ConsoleLogSink, FileLogSink, TeeLogSink, read_log
from vectrace.wire import Array, Integer, Map, String, decode, encode


class TestConstruction:
    @pytest.mark.parametrize("process_id", ["", "two words", "tab\there", None, 42])
    def test_invalid_process_id(self, process_id):
        with pytest.raises(ConfigurationError):
            CausalityCodec(process_id)  # type: ignore[arg-type]

    def test_invalid_sink(self):
        with pytest.raises(ConfigurationError):
            CausalityCodec("p1", object())  # type: ignore[arg-type]

    def test_defaults(self):
        codec = CausalityCodec("p1")
        assert codec.process_id == "p1"
        assert isinstance(codec.log_sink, MemoryLogSink)
        assert codec.snapshot() == {}


class TestPrepare:
    def test_prepare_ticks_own_entry(self, make_codec):
        codec = make_codec("X")
        codec.prepare("send", 42)
        assert codec.snapshot() == {"X": 1}
        codec.prepare("send", 43)
        assert codec.snapshot() == {"X": 2}

    def test_message_shape(self, make_codec):
        codec = make_codec("X")
        message = decode(codec.prepare("send", 42))
        assert message == Map(
            (
                (String(CLOCK_KEY), Map(((String("X"), Integer(1)),))),
                (String(PAYLOAD_KEY), Integer(42)),
            )
        )

    def test_clock_keys_are_sorted(self, make_codec):
        codec = make_codec("m")
        codec.unpack("recv", make_codec("z").prepare("send", 0))
        codec.unpack("recv", make_codec("a").prepare("send", 0))
        raw = msgpack.unpackb(codec.prepare("send", 1))
        assert list(raw["clock"]) == ["a", "m", "z"]

    def test_prepare_logs_snapshot(self, make_codec):
        codec = make_codec("X")
        codec.prepare("first", 1)
        codec.prepare("second", 2)
        records = codec.log_sink.records
        assert [(r.process_id, r.description) for r in records] == [
            ("X", "first"),
            ("X", "second"),
        ]
        assert records[0].clock == {"X": 1}
        assert records[1].clock == {"X": 2}

    @pytest.mark.parametrize("payload", [2**63, -(2**63) - 1, 1.5, "42", True, None])
    def test_invalid_payload_leaves_no_trace(self, make_codec, payload):
        codec = make_codec("X")
        with pytest.raises(EncodingError):
            codec.prepare("send", payload)
        assert codec.snapshot() == {}
        assert codec.log_sink.records == []

    def test_unencodable_value_leaves_no_trace(self, make_codec):
        codec = make_codec("X")
        with pytest.raises(EncodingError):
            codec.prepare_value("send", Array((Integer(2**64),)))
        assert codec.snapshot() == {}
        assert codec.log_sink.records == []


class TestUnpack:
    def test_send_receive_scenario(self, make_codec):
        x = make_codec("X")
        y = make_codec("Y")

        data = x.prepare("send", 42)
        assert x.snapshot() == {"X": 1}

        assert y.unpack("recv", data) == 42
        assert y.snapshot() == {"X": 1, "Y": 1}
        assert y.snapshot().dominates({"X": 1})

    def test_receiver_strictly_dominates_sender_send_event(self, make_codec):
        x = make_codec("X")
        y = make_codec("Y")
        x.log_local_event("work")
        y.log_local_event("work")
        y.log_local_event("work")

        data = x.prepare("send", 7)
        sent = x.snapshot()
        y.unpack("recv", data)
        received = y.snapshot()

        assert received == {"X": 2, "Y": 3}
        assert sent.happened_before(received)

    def test_unrelated_events_are_concurrent(self, make_codec):
        x = make_codec("X")
        y = make_codec("Y")
        x.prepare("send", 1)
        y.prepare("send", 2)
        assert x.snapshot().concurrent_with(y.snapshot())

    def test_round_trip_between_processes(self, make_codec):
        client = make_codec("client")
        server = make_codec("server")

        request = server.unpack("recv", client.prepare("send", 5))
        reply = client.unpack("recv", server.prepare("reply", request * 2))

        assert reply == 10
        assert server.snapshot() == {"client": 1, "server": 2}
        assert client.snapshot() == {"client": 2, "server": 2}

    def test_unpack_logs_merged_snapshot(self, make_codec):
        x = make_codec("X")
        y = make_codec("Y")
        y.unpack("Received message.", x.prepare("send", 1))
        [record] = y.log_sink.records
        assert record.process_id == "Y"
        assert record.description == "Received message."
        assert record.clock.format() == '{"X":1,"Y":1}'

    def test_own_message_round_trip(self, make_codec):
        codec = make_codec("X")
        assert codec.unpack("recv", codec.prepare("send", 99)) == 99
        assert codec.snapshot() == {"X": 2}

    def test_unpack_value(self, make_codec):
        x = make_codec("X")
        y = make_codec("Y")
        payload = Map(((String("k"), Array((Integer(1), String("v")))),))
        assert y.unpack_value("recv", x.prepare_value("send", payload)) == payload
        assert y.snapshot() == {"X": 1, "Y": 1}

    def test_dynamic_join_warning(self, make_codec, log_records):
        x = make_codec("X")
        y = make_codec("Y", warn_on_dynamic_join=True)
        y.unpack("recv", x.prepare("send", 1))
        joined = [r.fields["pid"] for r in log_records if r.getMessage() == "Dynamic join"]
        assert joined == ["X", "Y"]


def _message(**fields) -> bytes:
    return msgpack.packb(fields, use_bin_type=True)


class TestUnpackErrors:
    @pytest.mark.parametrize(
        "data",
        [
            b"",
            b"\x82",
            b"\xde\x00",
            b"\xc1",
            encode(Integer(1)),
            _message(payload=1),
            _message(clock={"X": 1}),
            _message(clock=[1, 2], payload=1),
            _message(clock={"X": "1"}, payload=1),
            _message(clock={"X": 1.0}, payload=1),
            _message(clock={"": 1}, payload=1),
            _message(clock={"X": 1}, payload="text"),
            _message(clock={"X": 1}, payload=None),
            msgpack.packb({1: 1, "clock": {}, "payload": 1})[:-1],
        ],
    )
    def test_malformed_message_leaves_state_untouched(self, make_codec, data):
        codec = make_codec("Y")
        codec.log_local_event("start")
        before = codec.snapshot()

        with pytest.raises(DecodingError):
            codec.unpack("recv", data)

        assert codec.snapshot() == before
        assert len(codec.log_sink.records) == 1

    def test_truncated_prepared_message(self, make_codec):
        data = make_codec("X").prepare("send", 42)
        codec = make_codec("Y")
        with pytest.raises(DecodingError):
            codec.unpack("recv", data[:3])
        assert codec.snapshot() == {}

    def test_non_string_clock_key(self, make_codec):
        data = msgpack.packb({"clock": {1: 1}, "payload": 1}, strict_types=False)
        with pytest.raises(DecodingError):
            make_codec("Y").unpack("recv", data)

    def test_deeply_nested_payload(self, make_codec):
        codec = make_codec("Y")
        codec.log_local_event("start")
        before = codec.snapshot()
        data = (
            b"\x82"
            + msgpack.packb(CLOCK_KEY)
            + msgpack.packb({"X": 1})
            + msgpack.packb(PAYLOAD_KEY)
            + b"\x91" * 600
            + b"\x01"
        )

        for unpack in (codec.unpack, codec.unpack_value):
            with pytest.raises(DecodingError):
                unpack("recv", data)

        assert codec.snapshot() == before
        assert len(codec.log_sink.records) == 1

    def test_unpack_value_accepts_any_payload(self, make_codec):
        value = make_codec("Y").unpack_value("recv", _message(clock={"X": 1}, payload="text"))
        assert value == String("text")


class TestLocalEvents:
    def test_log_local_event(self, make_codec):
        codec = make_codec("X")
        snapshot = codec.log_local_event("checkpoint")
        assert snapshot == {"X": 1}
        assert codec.log_sink.records[0].description == "checkpoint"


class TestConcurrency:
    def test_concurrent_prepares_never_share_a_counter(self, make_codec):
        codec = make_codec("X")
        threads = 8
        per_thread = 200
        barrier = threading.Barrier(threads)
        counters: list[int] = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            for i in range(per_thread):
                message = msgpack.unpackb(codec.prepare("send", i))
                with lock:
                    counters.append(message["clock"]["X"])

        pool = [threading.Thread(target=worker) for _ in range(threads)]
        for t in pool:
            t.start()
        for t in pool:
            t.join()

        total = threads * per_thread
        assert sorted(counters) == list(range(1, total + 1))
        logged = [r.clock["X"] for r in codec.log_sink.records]
        assert sorted(logged) == list(range(1, total + 1))
        assert codec.snapshot() == {"X": total}


class TestFromConfig:
    def test_memory_sink_by_default(self):
        codec = CausalityCodec.from_config(CodecConfig(process_id="p1"))
        assert isinstance(codec.log_sink, MemoryLogSink)

    def test_file_sink(self, tmp_path):
        path = tmp_path / "p1-Log.txt"
        with CausalityCodec.from_config(CodecConfig(process_id="p1", log_path=path)) as codec:
            assert isinstance(codec.log_sink, FileLogSink)
            codec.log_local_event("hello")
        [record] = read_log(path)
        assert record.process_id == "p1"
        assert record.description == "hello"

    def test_file_and_console_sinks(self, tmp_path):
        config = CodecConfig(
            process_id="p1",
            log_path=tmp_path / "p1-Log.txt",
            console=True,
            warn_dynamic_join=True,
        )
        with CausalityCodec.from_config(config) as codec:
            assert isinstance(codec.log_sink, TeeLogSink)
            assert isinstance(codec.log_sink.sinks[1], ConsoleLogSink)

    def test_invalid_process_id_fails_fast(self):
        with pytest.raises(ConfigurationError):
            CausalityCodec.from_config(CodecConfig(process_id=""))
