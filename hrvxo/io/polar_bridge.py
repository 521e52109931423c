from __future__ import annotations
import asyncio
import logging
import time
from threading import Thread
from typing import List, Optional, Tuple

from bleak import BleakClient, BleakScanner

from hrvxo.io.hr_source import BatchCallback, DisconnectCallback, RRSource, register_source

log = logging.getLogger(__name__)

# Standard Heart Rate service / measurement characteristic
HR_SERVICE_UUID = "0000180d-0000-1000-8000-00805f9b34fb"
HR_CHAR_UUID = "00002a37-0000-1000-8000-00805f9b34fb"
POLAR_DEFAULT_NAME = "Polar"

def parse_hr_measurement(data: bytes) -> Tuple[Optional[int], List[int]]:
    """
    Parse a Bluetooth SIG Heart Rate Measurement value.
    Returns (bpm or None, rr_intervals_ms). RR fields are 1/1024 s units.
    """
    if not data:
        return None, []
    flags = data[0]
    idx = 1
    if flags & 0x01:
        if len(data) < idx + 2:
            return None, []
        bpm = int.from_bytes(data[idx:idx + 2], byteorder="little")
        idx += 2
    else:
        if len(data) < idx + 1:
            return None, []
        bpm = data[idx]
        idx += 1
    if flags & 0x08:
        idx += 2  # energy expended
    rr_ms: List[int] = []
    if flags & 0x10:
        while idx + 1 < len(data):
            raw = int.from_bytes(data[idx:idx + 2], byteorder="little")
            rr_ms.append(int(round(raw * 1000.0 / 1024.0)))
            idx += 2
    return (bpm if 20 <= bpm <= 240 else None), rr_ms


@register_source("polar")
class PolarRRSource(RRSource):
    """
    Persistent-loop wrapper for Bleak so notifications don't target a closed loop.
    Every notification carrying RR fields becomes one batch for `on_batch`.
    """
    def __init__(self, device: Optional[str] = None, scan_timeout: float = 5.0, **kwargs):
        super().__init__(**kwargs)
        self.device_query = device or POLAR_DEFAULT_NAME
        self.scan_timeout = scan_timeout
        self.last_bpm: Optional[int] = None
        self._last_ts: Optional[float] = None

        self._client: Optional[BleakClient] = None
        self._connected: bool = False
        self._on_batch: Optional[BatchCallback] = None
        self._on_disconnect: Optional[DisconnectCallback] = None

        # Dedicated asyncio loop & thread (lazy-started on connect)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[Thread] = None

    # ---------- loop/thread helpers ----------
    def _ensure_loop(self):
        if self._loop is not None:
            return
        self._loop = asyncio.new_event_loop()
        self._thread = Thread(target=self._loop.run_forever, daemon=True)
        self._thread.start()

    def _run(self, coro):
        fut = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return fut.result()

    # ---------- async internals ----------
    async def _a_find_device(self) -> Optional[str]:
        dq = (self.device_query or "").strip()
        if ":" in dq or dq.count("-") >= 4:
            return dq  # looks like an address
        devices = await BleakScanner.discover(timeout=self.scan_timeout)
        dq_lower = dq.lower()
        for d in devices:
            name = (d.name or "").lower()
            if dq_lower and dq_lower in name:
                return d.address
        return None

    def _on_hr_notify(self, sender, data: bytearray):
        bpm, rr_ms = parse_hr_measurement(bytes(data))
        self._last_ts = time.time()
        if bpm is not None:
            self.last_bpm = bpm
        if rr_ms and self._on_batch is not None:
            self._on_batch(rr_ms, int(self._last_ts * 1000))

    def _on_ble_disconnect(self, client):
        was_connected = self._connected
        self._connected = False
        log.info("BLE device %s disconnected", self.device_query)
        if was_connected and self._on_disconnect is not None:
            self._on_disconnect()

    async def _a_connect(self):
        if self._connected:
            return
        address = await self._a_find_device()
        if not address:
            raise RuntimeError(f"HR device '{self.device_query}' not found. Wake it and retry.")
        self._client = BleakClient(address, disconnected_callback=self._on_ble_disconnect)
        await self._client.connect()
        await self._client.start_notify(HR_CHAR_UUID, self._on_hr_notify)
        self._connected = True
        log.info("Streaming RR intervals from %s", address)

    async def _a_disconnect(self):
        client, self._client = self._client, None
        connected, self._connected = self._connected, False
        if client and connected:
            try:
                await client.stop_notify(HR_CHAR_UUID)
            except Exception as e:
                log.debug("stop_notify failed: %s", e)
            await client.disconnect()

    # ---------- public sync API ----------
    def connect(self, on_batch: BatchCallback, on_disconnect: Optional[DisconnectCallback] = None) -> None:
        self._on_batch = on_batch
        self._on_disconnect = on_disconnect
        self._ensure_loop()
        self._run(self._a_connect())

    def disconnect(self):
        if self._loop is None:
            return
        self._on_disconnect = None  # user-initiated; don't report it as a dropout
        self._run(self._a_disconnect())

    def close(self):
        """Fully stop the background loop/thread. Call after disconnect()."""
        if self._loop is None:
            return
        try:
            self.disconnect()
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            if self._thread:
                self._thread.join(timeout=2.0)
            self._thread = None
            self._loop = None

    # ---------- data access ----------
    @property
    def connected(self) -> bool:
        return self._connected

    def last_sample_age_sec(self) -> Optional[float]:
        """Age in seconds of the newest notification; None if none yet."""
        if self._last_ts is None:
            return None
        return float(time.time() - self._last_ts)
