"""End-to-end tests for the client/server demo and CLI."""

import pytest

from vectrace.__main__ import build_parser, main
from vectrace.demo import FibonacciResponder, run_demo
from vectrace.errors import EncodingError
from vectrace.log import read_log


FIBONACCI = [0, 1, 1, 2, 3, 5, 8, 13, 21, 34]


class TestFibonacciResponder:
    def test_sequence(self):
        responder = FibonacciResponder()
        assert [responder.respond(i) for i in range(10)] == FIBONACCI

    def test_restart(self):
        responder = FibonacciResponder()
        for i in range(5):
            responder.respond(i)
        assert [responder.respond(i) for i in range(4)] == [0, 1, 1, 2]


async def test_demo_in_memory():
    result = await run_demo(10, timeout=2.0)

    assert result.replies == FIBONACCI

    client = result.client_log.records
    server = result.server_log.records
    assert len(client) == len(server) == 20

    assert client[0].description == "Sending message to server."
    assert client[0].clock == {"client": 1}
    assert server[0].description == "Received message from client."
    assert server[0].clock == {"client": 1, "server": 1}
    assert client[-1].clock == {"client": 20, "server": 20}
    assert server[-1].clock == {"client": 19, "server": 20}


async def test_every_receive_follows_its_send():
    result = await run_demo(4, timeout=2.0)
    client = result.client_log.records
    server = result.server_log.records

    for i in range(4):
        request_sent, reply_received = client[2 * i], client[2 * i + 1]
        request_received, reply_sent = server[2 * i], server[2 * i + 1]
        assert request_sent.clock.happened_before(request_received.clock)
        assert reply_sent.clock.happened_before(reply_received.clock)


async def test_demo_writes_log_files(tmp_path):
    result = await run_demo(3, log_dir=tmp_path, timeout=2.0)
    assert result.replies == [0, 1, 1]

    client = read_log(tmp_path / "client-Log.txt")
    server = read_log(tmp_path / "server-Log.txt")
    assert [r.process_id for r in client] == ["client"] * 6
    assert [r.process_id for r in server] == ["server"] * 6
    assert (tmp_path / "client-Log.txt").read_text().startswith(
        'client {"client":1}\nSending message to server.\n'
    )


async def test_demo_respects_datagram_limit():
    with pytest.raises(EncodingError):
        await run_demo(2, max_datagram_size=8, timeout=2.0)


class TestCli:
    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.messages == 10
        assert args.server_port == 8080
        assert args.client_port == 8081

    def test_main_runs_demo(self, tmp_path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.chdir(tmp_path)
        code = main(
            [
                "--messages",
                "3",
                "--server-port",
                "0",
                "--client-port",
                "0",
                "--log-dir",
                str(tmp_path),
                "--log-level",
                "error",
            ]
        )
        assert code == 0
        assert len(read_log(tmp_path / "server-Log.txt")) == 6

    def test_main_reports_bad_config(self, tmp_path):
        config = tmp_path / "vectrace.toml"
        config.write_text("[logging]\nlevel = 'loud'\n")
        assert main(["--config", str(config)]) == 1

    def test_main_reads_transport_config(self, tmp_path):
        config = tmp_path / "vectrace.toml"
        config.write_text("[transport]\nmax_datagram_size = 8\n")
        argv = ["--config", str(config), "--server-port", "0", "--client-port", "0"]
        assert main([*argv, "--log-dir", str(tmp_path), "--log-level", "off"]) == 1
        assert len(read_log(tmp_path / "client-Log.txt")) == 1
