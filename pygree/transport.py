# -*- coding: utf-8 -*-
"""
UDP transport for Gree devices.

One unconnected datagram endpoint per session: datagrams go out with
sendto() and replies are queued for the session's receive task.
"""

import asyncio
import logging
import socket
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from .constants import DEFAULT_PORT
from .message import TransportError

_LOGGER = logging.getLogger(__name__)

Datagram = Tuple[bytes, Tuple[str, int]]


class Transport(ABC):
    """Datagram transport used by a device session."""

    @abstractmethod
    async def create(self) -> None:
        """Open the endpoint."""

    @abstractmethod
    def send(self, data: bytes, address: str, port: int = DEFAULT_PORT) -> None:
        """Send one datagram.

        Raises:
            TransportError: If the endpoint is closed or the send fails
        """

    @abstractmethod
    async def receive(self) -> Optional[Datagram]:
        """Wait for the next datagram; None once the transport is closed."""

    @abstractmethod
    async def resolve(self, host: str) -> str:
        """Resolve a host name to an IPv4 address."""

    @abstractmethod
    def close(self) -> None:
        """Close the endpoint and wake up pending receivers."""


class _DatagramQueue(asyncio.DatagramProtocol):
    """Datagram protocol feeding an asyncio.Queue."""

    def __init__(self, queue: asyncio.Queue):
        self.queue = queue

    def datagram_received(self, data: bytes, addr) -> None:
        self.queue.put_nowait((data, addr))

    def error_received(self, exc: Exception) -> None:
        _LOGGER.debug("Socket error received: %s", exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc:
            _LOGGER.debug("Socket closed with error: %s", exc)
        self.queue.put_nowait(None)


class UdpTransport(Transport):
    """asyncio UDP endpoint bound to an ephemeral port, broadcast enabled."""

    def __init__(self, local_addr: Tuple[str, int] = ("0.0.0.0", 0)):
        self.local_addr = local_addr
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._queue: Optional[asyncio.Queue] = None
        self._closed = False

    async def create(self) -> None:
        loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._closed = False

        try:
            self._transport, _ = await loop.create_datagram_endpoint(
                lambda: _DatagramQueue(self._queue),
                local_addr=self.local_addr,
                family=socket.AF_INET,
                allow_broadcast=True,
            )
        except OSError as e:
            raise TransportError(f"Failed to open UDP socket: {e}") from e

        _LOGGER.debug("UDP socket open on %s", self._transport.get_extra_info("sockname"))

    def send(self, data: bytes, address: str, port: int = DEFAULT_PORT) -> None:
        if self._transport is None or self._closed:
            raise TransportError("UDP socket is not open")

        try:
            self._transport.sendto(data, (address, port))
        except OSError as e:
            raise TransportError(f"Failed to send to {address}:{port}: {e}") from e

    async def receive(self) -> Optional[Datagram]:
        if self._queue is None or (self._closed and self._queue.empty()):
            return None
        return await self._queue.get()

    async def resolve(self, host: str) -> str:
        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(
                host, None, family=socket.AF_INET, type=socket.SOCK_DGRAM
            )
        except socket.gaierror as e:
            raise TransportError(f"Failed to resolve {host}: {e}") from e

        if not infos:
            raise TransportError(f"No address found for {host}")
        return infos[0][4][0]

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self._transport is not None:
            self._transport.close()
            self._transport = None

        if self._queue is not None:
            self._queue.put_nowait(None)
