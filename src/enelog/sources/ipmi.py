"""BMC power readings via DCMI "Get Power Reading" over the Linux IPMI device.

The request is a netfn/command pair plus a four byte payload; the response
starts with a completion code.  A nonzero completion code is a soft failure:
the BMC answered, it just had no reading for us this time.
"""

from __future__ import annotations

import ctypes
import errno
import fcntl
import os
import select
import struct
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence, Tuple

from enelog.errors import ReadFailure, SoftStatusFailure, SourceUnavailable
from enelog.sources.base import InstantaneousPowerMeter
from enelog.types import RawReading
from enelog.utils.logging import get_logger

logger = get_logger(__name__)

DCMI_NETFN = 0x2C
DCMI_GET_POWER_READING = 0x02
DCMI_GROUP_EXT = 0xDC
DCMI_MODE_SYSTEM_POWER = 0x01

MIN_RESPONSE_LEN = 16
DEFAULT_DEVICE_PATHS = ("/dev/ipmi0", "/dev/ipmi/0", "/dev/ipmidev/0")

# <linux/ipmi.h>
IPMI_SYSTEM_INTERFACE_ADDR_TYPE = 0x0C
IPMI_BMC_CHANNEL = 0x0F
IPMI_MAX_ADDR_SIZE = 32
IPMI_RESPONSE_RECV_TYPE = 1
_IPMI_IOC_MAGIC = ord("i")


def power_reading_request() -> bytes:
    return bytes([DCMI_GROUP_EXT, DCMI_MODE_SYSTEM_POWER, 0x00, 0x00])


@dataclass(frozen=True, slots=True)
class DcmiPowerReading:
    current_w: int
    minimum_w: int
    maximum_w: int
    average_w: int
    timestamp: Optional[int] = None
    period_ms: Optional[int] = None
    active: Optional[bool] = None


def parse_power_reading(data: bytes) -> DcmiPowerReading:
    """Decode a response whose completion code has already been checked."""
    if len(data) < MIN_RESPONSE_LEN:
        raise ValueError(f"DCMI response too short: {len(data)} bytes")
    current, minimum, maximum, average = struct.unpack_from("<4H", data, 2)
    timestamp = period = None
    active = None
    if len(data) >= 18:
        (timestamp,) = struct.unpack_from("<I", data, 10)
        (period,) = struct.unpack_from("<I", data, 14)
    if len(data) >= 19:
        active = bool(data[18] & 0x40)
    return DcmiPowerReading(
        current_w=current,
        minimum_w=minimum,
        maximum_w=maximum,
        average_w=average,
        timestamp=timestamp,
        period_ms=period,
        active=active,
    )


class IpmiTransport(Protocol):
    def send_command(self, netfn: int, cmd: int, data: bytes) -> bytes:
        ...

    def close(self) -> None:
        ...


class _IpmiSystemInterfaceAddr(ctypes.Structure):
    _fields_ = [
        ("addr_type", ctypes.c_int),
        ("channel", ctypes.c_short),
        ("lun", ctypes.c_ubyte),
    ]


class _IpmiAddr(ctypes.Structure):
    _fields_ = [
        ("addr_type", ctypes.c_int),
        ("channel", ctypes.c_short),
        ("data", ctypes.c_ubyte * IPMI_MAX_ADDR_SIZE),
    ]


class _IpmiMsg(ctypes.Structure):
    _fields_ = [
        ("netfn", ctypes.c_ubyte),
        ("cmd", ctypes.c_ubyte),
        ("data_len", ctypes.c_ushort),
        ("data", ctypes.POINTER(ctypes.c_ubyte)),
    ]


class _IpmiReq(ctypes.Structure):
    _fields_ = [
        ("addr", ctypes.POINTER(ctypes.c_ubyte)),
        ("addr_len", ctypes.c_uint),
        ("msgid", ctypes.c_long),
        ("msg", _IpmiMsg),
    ]


class _IpmiRecv(ctypes.Structure):
    _fields_ = [
        ("recv_type", ctypes.c_int),
        ("addr", ctypes.POINTER(ctypes.c_ubyte)),
        ("addr_len", ctypes.c_uint),
        ("msgid", ctypes.c_long),
        ("msg", _IpmiMsg),
    ]


def _ioc(direction: int, nr: int, size: int) -> int:
    return (direction << 30) | (size << 16) | (_IPMI_IOC_MAGIC << 8) | nr


IPMICTL_RECEIVE_MSG_TRUNC = _ioc(3, 11, ctypes.sizeof(_IpmiRecv))
IPMICTL_SEND_COMMAND = _ioc(2, 13, ctypes.sizeof(_IpmiReq))


class IpmiDeviceTransport:
    """Request/response exchange with the local BMC through ``/dev/ipmi*``."""

    def __init__(self, device_paths: Sequence[str] = DEFAULT_DEVICE_PATHS, timeout_s: float = 1.0) -> None:
        self.device_paths = tuple(device_paths)
        self.timeout_s = timeout_s
        self.device_path: Optional[str] = None
        self._fd: Optional[int] = None
        self._msgid = 0

    def open(self) -> None:
        errors = []
        for path in self.device_paths:
            try:
                self._fd = os.open(path, os.O_RDWR)
            except OSError as exc:
                errors.append(f"{path}: {exc.strerror}")
                continue
            self.device_path = path
            logger.info("IPMI device found: %s", path)
            return
        raise SourceUnavailable("ipmi", "failed to open IPMI device (" + "; ".join(errors) + ")")

    def send_command(self, netfn: int, cmd: int, data: bytes) -> bytes:
        if self._fd is None:
            raise ReadFailure("ipmi", "IPMI device is not open")
        msgid = self._msgid
        self._msgid += 1
        self._send(msgid, netfn, cmd, data)

        # Responses to requests that timed out earlier may still be queued.
        deadline = time.monotonic() + self.timeout_s
        while True:
            remaining = deadline - time.monotonic()
            ready = select.select([self._fd], [], [], remaining)[0] if remaining > 0 else []
            if not ready:
                raise ReadFailure("ipmi", f"no IPMI response within {self.timeout_s}s")
            recv_msgid, response = self._receive()
            if recv_msgid == msgid:
                return response
            logger.debug("Discarding stale IPMI response (msgid %d, expected %d)", recv_msgid, msgid)

    def _send(self, msgid: int, netfn: int, cmd: int, data: bytes) -> None:
        addr = _IpmiSystemInterfaceAddr(
            addr_type=IPMI_SYSTEM_INTERFACE_ADDR_TYPE, channel=IPMI_BMC_CHANNEL, lun=0
        )
        payload = (ctypes.c_ubyte * max(1, len(data))).from_buffer_copy(data or b"\x00")
        req = _IpmiReq(
            addr=ctypes.cast(ctypes.pointer(addr), ctypes.POINTER(ctypes.c_ubyte)),
            addr_len=ctypes.sizeof(addr),
            msgid=msgid,
            msg=_IpmiMsg(
                netfn=netfn,
                cmd=cmd,
                data_len=len(data),
                data=ctypes.cast(payload, ctypes.POINTER(ctypes.c_ubyte)),
            ),
        )
        try:
            fcntl.ioctl(self._fd, IPMICTL_SEND_COMMAND, req)
        except OSError as exc:
            raise ReadFailure("ipmi", f"failed to send IPMI command: {exc}") from exc

    def _receive(self) -> Tuple[int, bytes]:
        recv_addr = _IpmiAddr()
        buf = (ctypes.c_ubyte * 256)()
        recv = _IpmiRecv(
            addr=ctypes.cast(ctypes.pointer(recv_addr), ctypes.POINTER(ctypes.c_ubyte)),
            addr_len=ctypes.sizeof(recv_addr),
            msg=_IpmiMsg(data_len=len(buf), data=ctypes.cast(buf, ctypes.POINTER(ctypes.c_ubyte))),
        )
        try:
            fcntl.ioctl(self._fd, IPMICTL_RECEIVE_MSG_TRUNC, recv, True)
        except OSError as exc:
            # EMSGSIZE: truncated, the leading bytes are still valid
            if exc.errno != errno.EMSGSIZE:
                raise ReadFailure("ipmi", f"failed to receive IPMI response: {exc}") from exc
        if recv.recv_type != IPMI_RESPONSE_RECV_TYPE:
            raise ReadFailure("ipmi", f"unexpected IPMI receive type {recv.recv_type}")
        return recv.msgid, bytes(buf[: recv.msg.data_len])

    def close(self) -> None:
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None


class IpmiPowerMeter(InstantaneousPowerMeter):
    """Whole-system power from the BMC, in watts."""

    def __init__(
        self,
        source_id: str = "ipmi",
        transport: Optional[IpmiTransport] = None,
        device_paths: Sequence[str] = DEFAULT_DEVICE_PATHS,
        mandatory: bool = False,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        super().__init__(source_id, mandatory=mandatory, clock=clock)
        self._transport = transport
        self._device_paths = tuple(device_paths)
        self._owns_transport = transport is None
        self.last_reading: Optional[DcmiPowerReading] = None

    def open(self) -> None:
        if self._transport is None:
            transport = IpmiDeviceTransport(self._device_paths)
            transport.open()
            self._transport = transport

    def read(self) -> RawReading:
        if self._transport is None:
            raise ReadFailure(self.source_id, "source is not open")
        response = self._transport.send_command(
            DCMI_NETFN, DCMI_GET_POWER_READING, power_reading_request()
        )
        if not response:
            raise ReadFailure(self.source_id, "empty IPMI response")
        if response[0] != 0x00:
            raise SoftStatusFailure(self.source_id, response[0])
        try:
            reading = parse_power_reading(response)
        except ValueError as exc:
            raise ReadFailure(self.source_id, str(exc)) from exc
        self.last_reading = reading
        return self._reading(reading.current_w)

    def close(self) -> None:
        if self._transport is not None and self._owns_transport:
            self._transport.close()
            self._transport = None
