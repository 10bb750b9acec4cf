"""
Shared fixtures for pygree tests.

FakeTransport records what the client sends and queues replies that
FakeHvac encrypts the way a unit does.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from pygree.cipher import Algorithm, CipherSuite
from pygree.constants import DEFAULT_PORT
from pygree.device import GreeDevice, GreeListener
from pygree.message import TransportError
from pygree.options import ClientOptions
from pygree.protocol import pack_message
from pygree.transport import Transport

DEVICE_HOST = "192.168.1.50"
DEVICE_MAC = "f4911e7aca59"
DEVICE_KEY = "St8Vw1Yz4Bc7Ef0H"


async def settle(delay: float = 0.01) -> None:
    """Let the receive task and timers run."""
    await asyncio.sleep(delay)


class FakeTransport(Transport):
    """In-memory stand-in for UdpTransport."""

    def __init__(self):
        self.sent: List[Tuple[bytes, str, int]] = []
        self.queue: Optional[asyncio.Queue] = None
        self.closed = False
        self.fail_send = False
        self.created = 0

    async def create(self) -> None:
        self.created += 1
        self.queue = asyncio.Queue()
        self.closed = False

    def send(self, data: bytes, address: str, port: int = DEFAULT_PORT) -> None:
        if self.fail_send:
            raise TransportError("Network is unreachable")
        self.sent.append((data, address, port))

    async def receive(self):
        if self.queue is None:
            return None
        return await self.queue.get()

    async def resolve(self, host: str) -> str:
        return host

    def close(self) -> None:
        self.closed = True
        if self.queue is not None:
            self.queue.put_nowait(None)

    def feed(self, data: bytes) -> None:
        self.queue.put_nowait((data, (DEVICE_HOST, DEFAULT_PORT)))

    def envelopes(self) -> List[Dict[str, Any]]:
        return [json.loads(data) for data, _, _ in self.sent]


class FakeHvac:
    """Device side of the conversation."""

    def __init__(self, transport: FakeTransport, mac: str = DEVICE_MAC, key: str = DEVICE_KEY):
        self.transport = transport
        self.mac = mac
        self.key = key

    def reply(self, payload: Dict[str, Any], algorithm: Algorithm = Algorithm.ECB, key=None) -> None:
        suite = CipherSuite(algorithm, key)
        self.transport.feed(pack_message(suite, payload, 0))

    def send_dev(self) -> None:
        self.reply({
            "t": "dev",
            "cid": self.mac,
            "mac": self.mac,
            "name": "Living room",
            "ver": "V1.2.1",
        })

    def send_bindok(self, algorithm: Algorithm = Algorithm.ECB, result: int = 200) -> None:
        self.reply({"t": "bindok", "mac": self.mac, "key": self.key, "r": result}, algorithm)

    def send_dat(self, values: Dict[str, Any], algorithm: Algorithm = Algorithm.ECB) -> None:
        self.reply(
            {"t": "dat", "mac": self.mac, "r": 200, "cols": list(values), "dat": list(values.values())},
            algorithm,
            self.key,
        )

    def send_res(self, values: Dict[str, Any], algorithm: Algorithm = Algorithm.ECB, key: str = "val") -> None:
        payload = {"t": "res", "mac": self.mac, "r": 200, "opt": list(values), key: list(values.values())}
        self.reply(payload, algorithm, self.key)

    def decode(self, index: int, algorithm: Algorithm = Algorithm.ECB, key=None) -> Dict[str, Any]:
        """Decrypt the inner payload of the index-th datagram the client sent."""
        envelope = self.transport.envelopes()[index]
        return CipherSuite(algorithm, key).decrypt(envelope)


class RecordingListener(GreeListener):
    """Listener that records every event."""

    def __init__(self):
        self.events: List[Tuple[str, Any]] = []

    def connected(self) -> None:
        self.events.append(("connected", None))

    def status_updated(self, status: Dict[str, Any]) -> None:
        self.events.append(("status_updated", status))

    def no_response(self) -> None:
        self.events.append(("no_response", None))

    def command_acknowledged(self, properties: Dict[str, Any]) -> None:
        self.events.append(("command_acknowledged", properties))

    def disconnected(self) -> None:
        self.events.append(("disconnected", None))

    def error(self, error: Exception) -> None:
        self.events.append(("error", error))

    def named(self, name: str) -> List[Any]:
        return [payload for event, payload in self.events if event == name]


def make_options(**overrides: Any) -> ClientOptions:
    config = {
        "host": DEVICE_HOST,
        "poll": False,
        "connect_timeout": 2.0,
        "polling_timeout": 5.0,
        "bind_retry_delay": 0.5,
    }
    config.update(overrides)
    return ClientOptions.from_dict(config)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def hvac(transport):
    return FakeHvac(transport)


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def device(transport, listener):
    device = GreeDevice(make_options(), transport=transport)
    device.add_listener(listener)
    return device


async def bind(device: GreeDevice, hvac: FakeHvac, algorithm: Algorithm = Algorithm.ECB) -> None:
    """Drive a device through scan and bind."""
    task = asyncio.ensure_future(device.connect())
    await settle()
    hvac.send_dev()
    await settle()
    if algorithm is Algorithm.AEAD:
        await asyncio.sleep(device.options.bind_retry_delay + 0.05)
    hvac.send_bindok(algorithm)
    await asyncio.wait_for(task, timeout=1.0)


@pytest_asyncio.fixture
async def bound_device(device, hvac):
    await bind(device, hvac)
    yield device
    await device.disconnect()
