# -*- coding: utf-8 -*-
"""Discovery of Gree devices on the local network.

A bare {"t": "scan"} is broadcast to port 7000; every unit answers with a
"dev" pack encrypted with the generic ECB key.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional

from .cipher import decrypt_generic
from .constants import DEFAULT_HOST, DEFAULT_PORT, DISCOVERY_TIMEOUT, MSG_DEV
from .message import CryptoError, DeviceInfo, ProtocolError
from .protocol import build_scan, parse_envelope

_LOGGER = logging.getLogger(__name__)


class GreeDiscovery(asyncio.DatagramProtocol):
    """Datagram handler collecting scan replies."""

    def __init__(self, callback: Optional[Callable[[DeviceInfo], None]] = None):
        """Initialize a new GreeDiscovery."""
        self.devices: Dict[str, DeviceInfo] = {}
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._callback = callback

    async def start(self, broadcast: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
        """Open a broadcast socket and send the scan probe."""
        loop = asyncio.get_running_loop()

        self._transport, _ = await loop.create_datagram_endpoint(
            lambda: self, local_addr=("0.0.0.0", 0), allow_broadcast=True
        )
        self._transport.sendto(build_scan(), (broadcast, port))
        _LOGGER.debug("Sent scan to %s:%d", broadcast, port)

    def close(self) -> None:
        """Stop discovery."""
        self._callback = None
        if self._transport is not None:
            self._transport.close()
            self._transport = None

    def datagram_received(self, data, addr):
        """Handle a scan reply."""
        try:
            envelope = parse_envelope(data)
            payload = decrypt_generic(envelope.pack)
        except (ProtocolError, CryptoError) as e:
            _LOGGER.debug("Skipping reply from %s: %s", addr[0], e)
            return

        if payload.get("t") != MSG_DEV:
            _LOGGER.debug("Skipping %s reply from %s", payload.get("t"), addr[0])
            return

        self.device_found(DeviceInfo.from_dict(payload, address=addr[0]))

    def device_found(self, device: DeviceInfo) -> None:
        """Handle discovered device."""
        if not device.mac:
            return

        if device.mac not in self.devices:
            _LOGGER.debug("Discovered device: %s", device)
        self.devices[device.mac] = device

        if self._callback:
            self._callback(device)


async def discover(
    broadcast: str = DEFAULT_HOST,
    timeout: float = DISCOVERY_TIMEOUT,
    port: int = DEFAULT_PORT,
) -> Dict[str, DeviceInfo]:
    """Discover and return devices on local network.

    Args:
        broadcast: Broadcast address of the network to scan
        timeout: How long to collect replies (default 3 seconds)
        port: Device port

    Returns:
        Dictionary of discovered devices {mac: DeviceInfo}
    """
    discovery = GreeDiscovery()
    try:
        await discovery.start(broadcast, port)
        await asyncio.sleep(timeout)
    finally:
        discovery.close()
    return discovery.devices
