#!/usr/bin/env python3
#
#   Copyright 2020 - The Android Open Source Project
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

from abc import abstractmethod
from collections import namedtuple
import ctypes
import enum
import errno
import fcntl
import os
import select
import socket
import struct

from l2cap_tester.closable import Closable
from l2cap_tester.main_loop import IoCondition

# Linux Bluetooth socket option levels and names
SOL_L2CAP = 6
SOL_BLUETOOTH = 274
BT_SECURITY = 4
BT_DEFER_SETUP = 7
BT_SNDMTU = 12
BT_RCVMTU = 13
BT_MODE = 15
BT_SCM_ERROR = 0x04
L2CAP_OPTIONS = 0x01

SO_TIMESTAMPING = 37
SCM_TIMESTAMPING = SO_TIMESTAMPING
MSG_ERRQUEUE = 0x2000
SO_EE_ORIGIN_TIMESTAMPING = 4

BDADDR_ANY = "00:00:00:00:00:00"

SIOCETHTOOL = 0x8946
ETHTOOL_GET_TS_INFO = 0x00000041
IFNAMSIZ = 16
IFREQ_SIZE = 40
# struct ethtool_ts_info: cmd, so_timestamping, phc_index, tx_types,
# tx_reserved[3], rx_filters, rx_reserved[3]
ETHTOOL_TS_INFO_FORMAT = "=IIiI12xI12x"


class BdAddrType(enum.IntEnum):
    BREDR = 0x00
    LE_PUBLIC = 0x01
    LE_RANDOM = 0x02


class SecurityLevel(enum.IntEnum):
    SDP = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    FIPS = 4


class ChannelMode(enum.IntEnum):
    """Values of the BT_MODE socket option"""
    BASIC = 0x00
    EXT_FLOWCTL = 0x04


class SocketKind(enum.Enum):
    SEQPACKET = socket.SOCK_SEQPACKET
    STREAM = socket.SOCK_STREAM


L2capAddress = namedtuple('L2capAddress', ['bdaddr', 'bdaddr_type', 'psm', 'cid'])

ChannelOptions = namedtuple('ChannelOptions', ['imtu', 'omtu'])

# A transmit timestamp report read from the socket error queue. |kind| is one
# of the SCM_TSTAMP_* values, |id| the packet or byte key.
TxTimestamp = namedtuple('TxTimestamp', ['kind', 'id'])

# Timestamping capabilities of a controller, as reported by ETHTOOL_GET_TS_INFO
TimestampingInfo = namedtuple('TimestampingInfo', ['so_timestamping', 'phc_index', 'tx_types', 'rx_filters'])


def bdaddr_to_bytes(address):
    """'00:AA:01:02:03:04' -> little endian wire bytes"""
    return bytes(int(octet, 16) for octet in reversed(address.split(':')))


def bdaddr_from_bytes(data):
    return ':'.join('%02X' % octet for octet in reversed(bytes(data[:6])))


def error_text(err):
    return "%s (%d)" % (os.strerror(err), err)


class IChannelSocket(Closable):
    """
    A local transport channel endpoint. Every failure is reported by raising
    OSError carrying the errno of the underlying stack.
    """

    @abstractmethod
    def fileno(self):
        pass

    @abstractmethod
    def poll(self, condition):
        """Return the subset of |condition| ready now, without blocking"""
        pass

    @abstractmethod
    def bind(self, address):
        pass

    @abstractmethod
    def connect(self, address):
        """Start a non-blocking connect, raising BlockingIOError while in progress"""
        pass

    @abstractmethod
    def listen(self, backlog):
        pass

    @abstractmethod
    def accept(self):
        pass

    @abstractmethod
    def get_error(self):
        """Read and clear the latched socket error, 0 if none"""
        pass

    @abstractmethod
    def set_security(self, level):
        pass

    @abstractmethod
    def set_mode(self, mode):
        pass

    @abstractmethod
    def set_defer_setup(self, enabled):
        pass

    @abstractmethod
    def set_send_timeout(self, seconds):
        pass

    @abstractmethod
    def set_timestamping(self, flags):
        pass

    @abstractmethod
    def get_send_buffer(self):
        pass

    @abstractmethod
    def set_send_buffer(self, size):
        pass

    @abstractmethod
    def get_receive_mtu(self):
        pass

    @abstractmethod
    def get_send_mtu(self):
        pass

    @abstractmethod
    def get_options(self):
        """:return: ChannelOptions of a classic channel"""
        pass

    @abstractmethod
    def getpeername(self):
        pass

    @abstractmethod
    def recv(self, bufsize):
        pass

    @abstractmethod
    def recv_timestamped(self, bufsize):
        """:return: (data, software receive timestamp or None)"""
        pass

    @abstractmethod
    def recv_error_queue(self):
        """:return: the next TxTimestamp from the error queue"""
        pass

    @abstractmethod
    def send(self, data):
        pass

    @abstractmethod
    def shutdown(self, how):
        pass

    @abstractmethod
    def get_ts_info(self, interface):
        """:return: TimestampingInfo of the controller named |interface|, e.g. hci0"""
        pass


def parse_receive_timestamp(ancdata):
    """Software timestamp (seconds, nanoseconds) from recvmsg() ancillary data"""
    for level, kind, data in ancdata:
        if level == socket.SOL_SOCKET and kind == SCM_TIMESTAMPING and len(data) >= 16:
            seconds, nanoseconds = struct.unpack_from('@qq', data)
            if seconds or nanoseconds:
                return (seconds, nanoseconds)
    return None


def parse_error_queue_message(ancdata):
    """
    Extract the TxTimestamp from the ancillary data of an error queue message

    :raises OSError: when the report is incomplete or not a timestamp
    """
    timestamps = None
    extended_error = None
    for level, kind, data in ancdata:
        if level == socket.SOL_SOCKET and kind == SCM_TIMESTAMPING:
            timestamps = data
        elif level == SOL_BLUETOOTH and kind == BT_SCM_ERROR:
            extended_error = data
    if timestamps is None or extended_error is None:
        raise OSError(errno.EBADMSG, "TX timestamp missing")
    _, origin, _, _, info, key = struct.unpack_from('=IBBBxII', extended_error)
    if origin != SO_EE_ORIGIN_TIMESTAMPING:
        raise OSError(errno.EBADMSG, "Not a TX timestamp, origin %d" % origin)
    return TxTimestamp(kind=info, id=key)


class KernelL2capSocket(IChannelSocket):
    """IChannelSocket backed by a Linux AF_BLUETOOTH/BTPROTO_L2CAP socket"""

    def __init__(self, kind, sock=None):
        self._kind = kind
        if sock is None:
            sock = socket.socket(socket.AF_BLUETOOTH, kind.value, socket.BTPROTO_L2CAP)
        sock.setblocking(False)
        self._socket = sock

    def __repr__(self):
        return "KernelL2capSocket(fd=%d)" % self._socket.fileno()

    @staticmethod
    def _sockaddr(address):
        if address.cid or address.bdaddr_type != BdAddrType.BREDR:
            return (address.bdaddr, address.psm, address.cid, int(address.bdaddr_type))
        return (address.bdaddr, address.psm)

    def _call_with_address(self, fn, address):
        try:
            return fn(self._sockaddr(address))
        except TypeError as exp:
            # The interpreter's L2CAP address format lacks CID or address type
            raise OSError(errno.ENOPROTOOPT, "Unsupported L2CAP address %s: %s" % (address, exp))

    def fileno(self):
        return self._socket.fileno()

    def poll(self, condition):
        fd = self._socket.fileno()
        if fd < 0:
            return IoCondition.HUP & condition
        poller = select.poll()
        poller.register(fd, int(condition))
        ready = IoCondition.NONE
        for _, revents in poller.poll(0):
            ready |= IoCondition(revents & int(IoCondition.IN | IoCondition.OUT | IoCondition.ERR | IoCondition.HUP))
        return ready

    def bind(self, address):
        self._call_with_address(self._socket.bind, address)

    def connect(self, address):
        self._call_with_address(self._socket.connect, address)

    def listen(self, backlog):
        self._socket.listen(backlog)

    def accept(self):
        sock, _ = self._socket.accept()
        return KernelL2capSocket(self._kind, sock)

    def get_error(self):
        return self._socket.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)

    def set_security(self, level):
        self._socket.setsockopt(SOL_BLUETOOTH, BT_SECURITY, struct.pack('<BB', int(level), 0))

    def set_mode(self, mode):
        self._socket.setsockopt(SOL_BLUETOOTH, BT_MODE, struct.pack('<B', int(mode)))

    def set_defer_setup(self, enabled):
        self._socket.setsockopt(SOL_BLUETOOTH, BT_DEFER_SETUP, 1 if enabled else 0)

    def set_send_timeout(self, seconds):
        self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_SNDTIMEO, struct.pack('@ll', seconds, 0))

    def set_timestamping(self, flags):
        self._socket.setsockopt(socket.SOL_SOCKET, SO_TIMESTAMPING, flags)

    def get_send_buffer(self):
        return self._socket.getsockopt(socket.SOL_SOCKET, socket.SO_SNDBUF)

    def set_send_buffer(self, size):
        self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_SNDBUF, size)

    def get_receive_mtu(self):
        return struct.unpack('<H', self._socket.getsockopt(SOL_BLUETOOTH, BT_RCVMTU, 2))[0]

    def get_send_mtu(self):
        return struct.unpack('<H', self._socket.getsockopt(SOL_BLUETOOTH, BT_SNDMTU, 2))[0]

    def get_options(self):
        omtu, imtu, _, _, _, _, _ = struct.unpack('<HHHBBBxH', self._socket.getsockopt(SOL_L2CAP, L2CAP_OPTIONS, 12))
        return ChannelOptions(imtu=imtu, omtu=omtu)

    def getpeername(self):
        return self._socket.getpeername()

    def recv(self, bufsize):
        return self._socket.recv(bufsize)

    def recv_timestamped(self, bufsize):
        data, ancdata, _, _ = self._socket.recvmsg(bufsize, socket.CMSG_SPACE(3 * 16))
        return data, parse_receive_timestamp(ancdata)

    def recv_error_queue(self):
        _, ancdata, _, _ = self._socket.recvmsg(1, socket.CMSG_SPACE(3 * 16) + socket.CMSG_SPACE(16), MSG_ERRQUEUE)
        return parse_error_queue_message(ancdata)

    def send(self, data):
        return self._socket.send(data)

    def shutdown(self, how):
        self._socket.shutdown(how)

    def close(self):
        self._socket.close()

    def get_ts_info(self, interface):
        info = ctypes.create_string_buffer(
            struct.pack(ETHTOOL_TS_INFO_FORMAT, ETHTOOL_GET_TS_INFO, 0, 0, 0, 0), struct.calcsize(ETHTOOL_TS_INFO_FORMAT))
        request = struct.pack('%dsP' % IFNAMSIZ, interface.encode(), ctypes.addressof(info)).ljust(IFREQ_SIZE, b'\0')
        fcntl.ioctl(self._socket.fileno(), SIOCETHTOOL, request)
        cmd, so_timestamping, phc_index, tx_types, rx_filters = struct.unpack(ETHTOOL_TS_INFO_FORMAT, info.raw)
        if cmd != ETHTOOL_GET_TS_INFO:
            raise OSError(errno.EBADMSG, "Unexpected ethtool reply 0x%08x" % cmd)
        return TimestampingInfo(so_timestamping, phc_index, tx_types, rx_filters)
