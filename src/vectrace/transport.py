"""UDP transport that runs every datagram through a ``CausalityCodec``.

Blocking, timeouts, and retries live here, never in the codec.  A send is
``codec.prepare`` followed by ``sendto``; a receive waits for a datagram
and hands it to ``codec.unpack``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Self

from vectrace import logger
from vectrace.codec import CausalityCodec
from vectrace.config import MAX_UDP_PAYLOAD, TransportConfig
from vectrace.errors import DecodingError, EncodingError
from vectrace.wire import Value


__all__ = ["Address", "DatagramEndpoint"]


type Address = tuple[str, int]


@dataclass(frozen=True, slots=True)
class _Datagram:
    data: bytes
    addr: Address


class _EndpointProtocol(asyncio.DatagramProtocol):
    """Queues incoming datagrams for ``DatagramEndpoint.receive``."""

    def __init__(self, inbox: asyncio.Queue[_Datagram | None]) -> None:
        self.inbox = inbox
        self.transport: asyncio.DatagramTransport | None = None

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport  # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr: Address) -> None:
        self.inbox.put_nowait(_Datagram(data, addr))

    def error_received(self, exc: Exception) -> None:
        logger.error("UDP error", error=str(exc))

    def connection_lost(self, exc: Exception | None) -> None:
        if exc:
            logger.error("UDP connection lost", error=str(exc))
        self.inbox.put_nowait(None)


class DatagramEndpoint:
    """A bound UDP socket that stamps and unstamps vector clocks.

    Create with ``await DatagramEndpoint.open(...)``.

    Examples
    --------
    >>> async def ping(codec, peer):
    ...     async with await DatagramEndpoint.open(codec) as endpoint:
    ...         await endpoint.send("Sending ping.", 1, peer)
    ...         return await endpoint.receive("Received pong.", timeout=1.0)
    """

    def __init__(
        self,
        codec: CausalityCodec,
        transport: asyncio.DatagramTransport,
        inbox: asyncio.Queue[_Datagram | None],
        *,
        max_datagram_size: int = MAX_UDP_PAYLOAD,
    ) -> None:
        self._codec = codec
        self._transport = transport
        self._inbox = inbox
        self._max_datagram_size = max_datagram_size
        self._closed = False

    @classmethod
    async def open(
        cls,
        codec: CausalityCodec,
        host: str = "127.0.0.1",
        port: int = 0,
        *,
        max_datagram_size: int = MAX_UDP_PAYLOAD,
    ) -> DatagramEndpoint:
        """Bind a UDP socket on *host*:*port* (``0`` picks a free port)."""
        loop = asyncio.get_running_loop()
        inbox: asyncio.Queue[_Datagram | None] = asyncio.Queue()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _EndpointProtocol(inbox),
            local_addr=(host, port),
        )
        endpoint = cls(codec, transport, inbox, max_datagram_size=max_datagram_size)
        logger.debug("Endpoint bound", pid=codec.process_id, address=endpoint.address)
        return endpoint

    @classmethod
    async def from_config(
        cls, codec: CausalityCodec, config: TransportConfig
    ) -> DatagramEndpoint:
        return await cls.open(
            codec,
            config.host,
            config.port,
            max_datagram_size=config.max_datagram_size,
        )

    @property
    def codec(self) -> CausalityCodec:
        return self._codec

    @property
    def address(self) -> Address:
        """The actual bound ``(host, port)``."""
        sockname = self._transport.get_extra_info("sockname")
        return sockname[0], sockname[1]

    @property
    def closed(self) -> bool:
        return self._closed

    def _send_bytes(self, data: bytes, addr: Address) -> None:
        if self._closed:
            msg = "Endpoint is closed"
            raise ConnectionError(msg)
        if len(data) > self._max_datagram_size:
            msg = (
                f"Message of {len(data)} bytes exceeds the "
                f"{self._max_datagram_size}-byte datagram limit"
            )
            raise EncodingError(msg)
        self._transport.sendto(data, addr)

    async def send(self, description: str, payload: int, addr: Address) -> None:
        """Prepare an integer payload and send it to *addr*."""
        self._send_bytes(self._codec.prepare(description, payload), addr)

    async def send_value(self, description: str, payload: Value, addr: Address) -> None:
        """Prepare any wire value and send it to *addr*."""
        self._send_bytes(self._codec.prepare_value(description, payload), addr)

    async def _next_datagram(self, timeout: float | None) -> _Datagram:
        if self._closed and self._inbox.empty():
            msg = "Endpoint is closed"
            raise ConnectionError(msg)
        async with asyncio.timeout(timeout):
            datagram = await self._inbox.get()
        if datagram is None:
            self._inbox.put_nowait(None)
            msg = "Endpoint is closed"
            raise ConnectionError(msg)
        if len(datagram.data) > self._max_datagram_size:
            msg = (
                f"Datagram of {len(datagram.data)} bytes from {datagram.addr} "
                f"exceeds the {self._max_datagram_size}-byte limit"
            )
            raise DecodingError(msg)
        return datagram

    async def receive(
        self, description: str, *, timeout: float | None = None
    ) -> tuple[int, Address]:
        """Wait for a datagram and unpack its integer payload.

        Raises
        ------
        TimeoutError
            If nothing arrives within *timeout* seconds.
        DecodingError
            If the datagram is not a well-formed message.
        ConnectionError
            If the endpoint is closed.
        """
        datagram = await self._next_datagram(timeout)
        return self._codec.unpack(description, datagram.data), datagram.addr

    async def receive_value(
        self, description: str, *, timeout: float | None = None
    ) -> tuple[Value, Address]:
        datagram = await self._next_datagram(timeout)
        return self._codec.unpack_value(description, datagram.data), datagram.addr

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._transport.close()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.close()
