"""Client/server demo: a Fibonacci exchange over UDP with logged clocks.

The client sends ``0, 1, ..., messages - 1``; the server answers each with
the next Fibonacci number.  Both sides write an event log that a causal
visualizer can merge::

    python -m vectrace --messages 10 --log-dir logs/
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

from vectrace import logger
from vectrace.codec import CausalityCodec
from vectrace.config import MAX_UDP_PAYLOAD
from vectrace.log import FileLogSink, LogSink, MemoryLogSink
from vectrace.transport import Address, DatagramEndpoint


__all__ = ["DemoResult", "FibonacciResponder", "run_client", "run_demo", "run_server"]


SERVER_ID = "server"
CLIENT_ID = "client"
DEFAULT_MESSAGES = 10


class FibonacciResponder:
    """Answers request ``i`` with the ``i``-th Fibonacci number.

    Requests ``0`` and ``1`` restart the sequence; any other request moves
    it one step forward.
    """

    def __init__(self) -> None:
        self._n = 0
        self._n_minus_one = 0
        self._n_minus_two = 0

    def respond(self, request: int) -> int:
        match request:
            case 0:
                self._n_minus_two = 0
                self._n = 0
            case 1:
                self._n_minus_one = 0
                self._n = 1
            case _:
                self._n_minus_two = self._n_minus_one
                self._n_minus_one = self._n
                self._n = self._n_minus_one + self._n_minus_two
        return self._n


@dataclass(frozen=True)
class DemoResult:
    replies: list[int]
    server_log: LogSink
    client_log: LogSink


async def run_server(
    endpoint: DatagramEndpoint,
    messages: int,
    *,
    timeout: float | None = None,
) -> None:
    """Answer *messages* requests, replying to whoever sent each one."""
    responder = FibonacciResponder()
    for _ in range(messages):
        request, addr = await endpoint.receive(
            "Received message from client.", timeout=timeout
        )
        reply = responder.respond(request)
        logger.info("Responding to client", value=reply)
        await endpoint.send("Responding to client.", reply, addr)


async def run_client(
    endpoint: DatagramEndpoint,
    server: Address,
    messages: int,
    *,
    timeout: float | None = None,
) -> list[int]:
    """Send ``0 .. messages - 1`` to *server* and collect the replies."""
    replies = []
    for i in range(messages):
        await endpoint.send("Sending message to server.", i, server)
        reply, _ = await endpoint.receive("Received message from server.", timeout=timeout)
        logger.info("Received value from server", value=reply)
        replies.append(reply)
    return replies


def _sink(process_id: str, log_dir: Path | None) -> LogSink:
    if log_dir is None:
        return MemoryLogSink()
    return FileLogSink(log_dir / f"{process_id}-Log.txt")


async def run_demo(
    messages: int = DEFAULT_MESSAGES,
    *,
    host: str = "127.0.0.1",
    server_port: int = 0,
    client_port: int = 0,
    log_dir: Path | None = None,
    timeout: float | None = 5.0,
    warn_on_dynamic_join: bool = False,
    max_datagram_size: int = MAX_UDP_PAYLOAD,
) -> DemoResult:
    """Run the server and client against each other on *host*.

    Parameters
    ----------
    messages : int
        Number of request/response round trips.
    host : str
        Address both endpoints bind to.
    server_port, client_port : int
        Ports to bind; ``0`` picks free ports.
    log_dir : Path | None
        Directory for ``server-Log.txt`` and ``client-Log.txt``.  ``None``
        keeps the logs in memory.
    timeout : float | None
        Per-receive timeout in seconds.
    max_datagram_size : int
        Largest message either endpoint sends or accepts.

    Returns
    -------
    DemoResult
        The client's replies and both log sinks (closed when file-backed).
    """
    server_codec = CausalityCodec(
        SERVER_ID,
        _sink(SERVER_ID, log_dir),
        warn_on_dynamic_join=warn_on_dynamic_join,
    )
    client_codec = CausalityCodec(
        CLIENT_ID,
        _sink(CLIENT_ID, log_dir),
        warn_on_dynamic_join=warn_on_dynamic_join,
    )

    with server_codec, client_codec:
        async with (
            await DatagramEndpoint.open(
                server_codec, host, server_port, max_datagram_size=max_datagram_size
            ) as server,
            await DatagramEndpoint.open(
                client_codec, host, client_port, max_datagram_size=max_datagram_size
            ) as client,
        ):
            server_task = asyncio.create_task(
                run_server(server, messages, timeout=timeout)
            )
            try:
                replies = await run_client(
                    client, server.address, messages, timeout=timeout
                )
            except BaseException:
                server_task.cancel()
                raise
            await server_task

    return DemoResult(
        replies=replies,
        server_log=server_codec.log_sink,
        client_log=client_codec.log_sink,
    )
