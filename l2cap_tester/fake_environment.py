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

from collections import deque
from datetime import timedelta
import enum
import errno
import logging
import os
import struct
import time

from l2cap_tester.channel_socket import BdAddrType
from l2cap_tester.channel_socket import ChannelMode
from l2cap_tester.channel_socket import ChannelOptions
from l2cap_tester.channel_socket import IChannelSocket
from l2cap_tester.channel_socket import L2capAddress
from l2cap_tester.channel_socket import SecurityLevel
from l2cap_tester.channel_socket import SocketKind
from l2cap_tester.channel_socket import TimestampingInfo
from l2cap_tester.channel_socket import TxTimestamp
from l2cap_tester.channel_socket import bdaddr_to_bytes
from l2cap_tester.channel_socket import bdaddr_from_bytes
from l2cap_tester.closable import safeClose
from l2cap_tester.control_plane import IControlPlane
from l2cap_tester.control_plane import MgmtEvent
from l2cap_tester.control_plane import MgmtEventDispatcher
from l2cap_tester.control_plane import MgmtOp
from l2cap_tester.control_plane import MgmtStatus
from l2cap_tester.environment import IEnvironment
from l2cap_tester.main_loop import IoCondition
from l2cap_tester.matchers import ADVERTISING_TYPE_DIRECT_IND_HIGH_DUTY
from l2cap_tester.matchers import L2capMatchers
from l2cap_tester.simulated_peer import ATT_CID
from l2cap_tester.simulated_peer import BREDR_SIGNALING_CID
from l2cap_tester.simulated_peer import HciCommand
from l2cap_tester.simulated_peer import HciEmulatorType
from l2cap_tester.simulated_peer import HciOpcode
from l2cap_tester.simulated_peer import ISimulatedPeer
from l2cap_tester.simulated_peer import L2capCommandCode
from l2cap_tester.simulated_peer import LE_SIGNALING_CID
from l2cap_tester.simulated_peer import Subscription
from l2cap_tester.timestamping import HWTSTAMP_FILTER_NONE
from l2cap_tester.timestamping import HWTSTAMP_TX_OFF
from l2cap_tester.timestamping import L2CAP_TIMESTAMPING_CAPABILITIES
from l2cap_tester.timestamping import NO_PHC_INDEX
from l2cap_tester.timestamping import TimestampKind
from l2cap_tester.timestamping import TimestampingFlags
from l2cap_tester.timestamping import records_tx
from l2cap_tester.transfer import chunks

SDP_PSM = 0x0001
LE_DYNAMIC_CID_START = 0x0040
LE_DYNAMIC_CID_END = 0x007F
MAX_ECRED_CHANNELS = 5

# Parameters the local stack offers on the channels it accepts
LOCAL_MTU = 672
LOCAL_LE_MPS = 188
LOCAL_LE_CREDITS = 4

# Defaults of a server registered on the simulated peer
DEFAULT_PEER_MTU = 672
DEFAULT_PEER_MPS = 251
DEFAULT_PEER_CREDITS = 4

IO_CAPABILITY_NO_INPUT_NO_OUTPUT = 0x03
PAIRING_PASSKEY = 123456
CONNECT_TIMEOUT_SECONDS = 40
DEFAULT_SEND_BUFFER = 212992
FIRST_HANDLE = 0x002a

HCI_SUCCESS = 0x00
HCI_UNKNOWN_COMMAND = 0x01

SCAN_ENABLE_PAGE = 0x02

SIGNALING_HEADER = struct.Struct('<BBH')
SDU_LENGTH = struct.Struct('<H')


class L2capResult(object):
    SUCCESS = 0x0000
    PENDING = 0x0001
    PSM_NOT_SUPPORTED = 0x0002
    SECURITY_BLOCK = 0x0003
    INSUFFICIENT_AUTHENTICATION = 0x0005
    INSUFFICIENT_AUTHORIZATION = 0x0006
    INSUFFICIENT_ENCRYPTION_KEY_SIZE = 0x0007
    INSUFFICIENT_ENCRYPTION = 0x0008
    INVALID_SCID = 0x0009


class L2capStatus(object):
    NO_INFO = 0x0000
    AUTHORIZATION_PENDING = 0x0002


class RejectReason(object):
    NOT_UNDERSTOOD = 0x0000
    INVALID_CID = 0x0002


class Setting(object):
    """Bits of the current settings word of the management interface"""
    POWERED = 1 << 0
    CONNECTABLE = 1 << 1
    BONDABLE = 1 << 4
    SSP = 1 << 6
    BREDR = 1 << 7
    LE = 1 << 9
    ADVERTISING = 1 << 10


SETTING_OPS = {
    MgmtOp.SET_POWERED: Setting.POWERED,
    MgmtOp.SET_CONNECTABLE: Setting.CONNECTABLE,
    MgmtOp.SET_BONDABLE: Setting.BONDABLE,
    MgmtOp.SET_SSP: Setting.SSP,
    MgmtOp.SET_LE: Setting.LE,
    MgmtOp.SET_ADVERTISING: Setting.ADVERTISING,
}

PAIRING_OPS = (MgmtOp.PIN_CODE_REPLY, MgmtOp.PIN_CODE_NEG_REPLY, MgmtOp.USER_CONFIRM_REPLY,
               MgmtOp.USER_CONFIRM_NEG_REPLY)


def _is_dynamic_le_cid(cid):
    return LE_DYNAMIC_CID_START <= cid <= LE_DYNAMIC_CID_END


def _is_valid_psm(psm, le):
    if le:
        return 0 < psm <= 0x00FF
    return (psm & 0x0101) == 0x0001


def _refusal_errno(result):
    if result in (L2capResult.INSUFFICIENT_AUTHENTICATION, L2capResult.INSUFFICIENT_AUTHORIZATION,
                  L2capResult.INSUFFICIENT_ENCRYPTION_KEY_SIZE, L2capResult.INSUFFICIENT_ENCRYPTION):
        return errno.EACCES
    return errno.ECONNREFUSED


class SocketState(enum.Enum):
    OPEN = "open"
    BOUND = "bound"
    LISTENING = "listening"
    CONNECTING = "connecting"
    # Incoming channel waiting for authorization
    CONNECT2 = "connect2"
    CONNECTED = "connected"
    CLOSED = "closed"


class FakeChannelSocket(IChannelSocket):
    """
    In-process channel endpoint. Its state only changes from scheduler
    callbacks or calls made by the case, so readiness is always observed by
    the next loop iteration.
    """

    def __init__(self, environment, kind):
        self._environment = environment
        self.kind = kind
        self.state = SocketState.OPEN
        self.stack = None
        self.local_address = None
        self.remote_address = None
        self.channel = None
        self.security_level = SecurityLevel.LOW
        self.mode = ChannelMode.BASIC
        self.defer_setup = False
        self.send_timeout = None
        self.timestamping = 0
        self._send_buffer = DEFAULT_SEND_BUFFER
        self._error = 0
        self._released = False
        self._received = deque()
        self._error_queue = deque()
        self._accept_queue = deque()
        self._tx_packets = 0
        self._tx_bytes = 0

    def __repr__(self):
        return "FakeChannelSocket(%s, %s)" % (self.kind.name, self.state.value)

    @property
    def le(self):
        address = self.remote_address or self.local_address
        return address is not None and address.bdaddr_type != BdAddrType.BREDR

    def _check_open(self):
        if self._released:
            raise OSError(errno.EBADF, os.strerror(errno.EBADF))

    def fileno(self):
        return -1

    def poll(self, condition):
        if self._released:
            return IoCondition.NONE
        ready = IoCondition.NONE
        if self.state == SocketState.LISTENING:
            if self._accept_queue:
                ready |= IoCondition.IN
        elif self.state == SocketState.CONNECTED:
            ready |= IoCondition.OUT
            if self._received:
                ready |= IoCondition.IN
        elif self.state == SocketState.CLOSED:
            ready |= IoCondition.IN | IoCondition.OUT | IoCondition.HUP
        if self._error_queue or self._error:
            ready |= IoCondition.ERR
        return ready & condition

    def bind(self, address):
        self._check_open()
        if self.state != SocketState.OPEN:
            raise OSError(errno.EINVAL, "Socket already bound")
        stack = self._environment.find_peer(address.bdaddr)
        if stack is None:
            raise OSError(errno.EADDRNOTAVAIL, "No controller with address %s" % address.bdaddr)
        stack.check_bind(self, address)
        self.stack = stack
        self.local_address = address
        self.state = SocketState.BOUND

    def connect(self, address):
        self._check_open()
        if self.state == SocketState.CONNECTED:
            raise OSError(errno.EISCONN, os.strerror(errno.EISCONN))
        if self.state == SocketState.CONNECTING:
            raise OSError(errno.EALREADY, os.strerror(errno.EALREADY))
        if self.state != SocketState.BOUND:
            raise OSError(errno.EBADFD, "Socket is %s" % self.state.value)
        self.remote_address = address
        self.state = SocketState.CONNECTING
        try:
            self.stack.connect_channel(self)
        except OSError:
            self.state = SocketState.BOUND
            self.remote_address = None
            raise
        raise BlockingIOError(errno.EINPROGRESS, os.strerror(errno.EINPROGRESS))

    def listen(self, backlog):
        self._check_open()
        if self.state != SocketState.BOUND:
            raise OSError(errno.EBADFD, "Socket is %s" % self.state.value)
        if not self.local_address.psm and not self.local_address.cid:
            raise OSError(errno.EINVAL, "Listening needs a PSM or a CID")
        self.state = SocketState.LISTENING
        self.stack.add_listener(self)

    def accept(self):
        self._check_open()
        if self.state != SocketState.LISTENING:
            raise OSError(errno.EINVAL, "Socket is not listening")
        if not self._accept_queue:
            raise BlockingIOError(errno.EAGAIN, os.strerror(errno.EAGAIN))
        return self._accept_queue.popleft()

    def get_error(self):
        err, self._error = self._error, 0
        return err

    def set_security(self, level):
        self._check_open()
        self.security_level = SecurityLevel(level)

    def set_mode(self, mode):
        self._check_open()
        mode = ChannelMode(mode)
        if mode == ChannelMode.EXT_FLOWCTL and not self._environment.ecred_supported:
            raise OSError(errno.ENOPROTOOPT, "Enhanced credit based flow control is disabled")
        self.mode = mode

    def set_defer_setup(self, enabled):
        self._check_open()
        self.defer_setup = bool(enabled)

    def set_send_timeout(self, seconds):
        self._check_open()
        self.send_timeout = seconds

    def set_timestamping(self, flags):
        self._check_open()
        if not self._environment.timestamping_supported:
            raise OSError(errno.ENOPROTOOPT, "Timestamping is not supported")
        if flags & TimestampingFlags.OPT_ID and not self.timestamping & TimestampingFlags.OPT_ID:
            self._tx_packets = 0
            self._tx_bytes = 0
        self.timestamping = flags

    def get_send_buffer(self):
        return self._send_buffer

    def set_send_buffer(self, size):
        self._send_buffer = size * 2

    def _connected_channel(self):
        self._check_open()
        if self.channel is None:
            raise OSError(errno.ENOTCONN, os.strerror(errno.ENOTCONN))
        return self.channel

    def get_receive_mtu(self):
        return self._connected_channel().imtu

    def get_send_mtu(self):
        return self._connected_channel().omtu

    def get_options(self):
        channel = self._connected_channel()
        return ChannelOptions(imtu=channel.imtu, omtu=channel.omtu)

    def getpeername(self):
        self._check_open()
        if self.state != SocketState.CONNECTED:
            raise OSError(errno.ENOTCONN, os.strerror(errno.ENOTCONN))
        address = self.remote_address
        if address.cid or address.bdaddr_type != BdAddrType.BREDR:
            return (address.bdaddr, address.psm, address.cid, int(address.bdaddr_type))
        return (address.bdaddr, address.psm)

    def _pop_received(self, bufsize):
        self._check_open()
        if self.state == SocketState.CONNECT2:
            # Reading authorizes a deferred channel
            self.stack.authorize(self)
            return b'', None
        if not self._received:
            if self.state == SocketState.CLOSED:
                return b'', None
            raise BlockingIOError(errno.EAGAIN, os.strerror(errno.EAGAIN))
        data, timestamp = self._received.popleft()
        if len(data) > bufsize and self.kind == SocketKind.STREAM:
            self._received.appendleft((data[bufsize:], timestamp))
        return data[:bufsize], timestamp

    def recv(self, bufsize):
        data, _ = self._pop_received(bufsize)
        return data

    def recv_timestamped(self, bufsize):
        return self._pop_received(bufsize)

    def recv_error_queue(self):
        self._check_open()
        if not self._error_queue:
            raise BlockingIOError(errno.EAGAIN, os.strerror(errno.EAGAIN))
        return self._error_queue.popleft()

    def _next_tx_key(self, length):
        if self.kind == SocketKind.STREAM:
            self._tx_bytes += length
            return self._tx_bytes - 1
        key = self._tx_packets
        self._tx_packets += 1
        return key

    def _report(self, kind, key):
        report_id = key if self.timestamping & TimestampingFlags.OPT_ID else 0
        self._error_queue.append(TxTimestamp(kind=int(kind), id=report_id))

    def send(self, data):
        self._check_open()
        if self.state == SocketState.CLOSED:
            raise OSError(errno.EPIPE, os.strerror(errno.EPIPE))
        if self.state != SocketState.CONNECTED:
            raise OSError(errno.ENOTCONN, os.strerror(errno.ENOTCONN))
        if not data:
            return 0
        if self.kind == SocketKind.SEQPACKET and len(data) > self.channel.omtu:
            raise OSError(errno.EMSGSIZE, "%d bytes exceed the MTU of %d" % (len(data), self.channel.omtu))
        key = None
        if records_tx(self.timestamping):
            key = self._next_tx_key(len(data))
            if self.timestamping & TimestampingFlags.TX_SCHED:
                self._report(TimestampKind.SCHED, key)
            if self.timestamping & TimestampingFlags.TX_SOFTWARE:
                self._report(TimestampKind.SND, key)
        self.stack.transmit(self.channel, bytes(data), key)
        return len(data)

    def shutdown(self, how):
        self._check_open()
        if self.state == SocketState.CONNECTING:
            self.stack.cancel_connect(self)
            self.hang_up(0)
        elif self.state in (SocketState.CONNECTED, SocketState.CONNECT2):
            self.stack.disconnect(self)
        elif self.state == SocketState.LISTENING:
            self.stack.remove_listener(self)
            self.state = SocketState.CLOSED
        elif self.state != SocketState.CLOSED:
            raise OSError(errno.ENOTCONN, os.strerror(errno.ENOTCONN))

    def get_ts_info(self, interface):
        self._check_open()
        return self._environment.timestamping_info(interface)

    def close(self):
        if self._released:
            return
        if self.stack is not None:
            self.stack.release(self)
        while self._accept_queue:
            self._accept_queue.popleft().close()
        self._released = True
        self.state = SocketState.CLOSED
        self.channel = None

    # Called by the stack

    def spawn_child(self, channel, remote_address, deferred):
        child = FakeChannelSocket(self._environment, self.kind)
        child.stack = self.stack
        child.local_address = self.local_address
        child.remote_address = remote_address
        child.security_level = self.security_level
        child.mode = self.mode
        child.channel = channel
        child.state = SocketState.CONNECT2 if deferred else SocketState.CONNECTED
        channel.sock = child
        self._accept_queue.append(child)
        return child

    def connection_established(self, channel):
        if self._released:
            return
        self.channel = channel
        self.state = SocketState.CONNECTED

    def hang_up(self, err):
        if self._released:
            return
        if err:
            self._error = err
        self.state = SocketState.CLOSED

    def received(self, data):
        if self._released:
            return
        timestamp = None
        if self.timestamping & TimestampingFlags.RX_SOFTWARE:
            timestamp = divmod(time.time_ns(), 1000000000)
        self._received.append((data, timestamp))

    def transmitted(self, key):
        if not self._released and self.timestamping & TimestampingFlags.TX_COMPLETION:
            self._report(TimestampKind.COMPLETION, key)


class _PeerServer(object):

    def __init__(self, psm, mtu, mps, credits, on_connect, on_disconnect):
        self.psm = psm
        self.mtu = mtu or DEFAULT_PEER_MTU
        self.mps = mps or DEFAULT_PEER_MPS
        self.credits = credits if credits is not None else DEFAULT_PEER_CREDITS
        self.on_connect = on_connect
        self.on_disconnect = on_disconnect


class _Channel(object):

    def __init__(self, conn, sock, psm, kernel_cid, mode=ChannelMode.BASIC):
        self.conn = conn
        self.sock = sock
        self.psm = psm
        self.kernel_cid = kernel_cid
        self.peer_cid = None
        self.mode = mode
        self.imtu = LOCAL_MTU
        self.omtu = DEFAULT_PEER_MTU
        self.mps = DEFAULT_PEER_MPS
        self.tx_credits = 0
        self.server = None
        self.deferred = None
        self.tx_queue = deque()
        self.flush_scheduled = False

    @property
    def credit_based(self):
        return self.conn.le and self.psm != 0

    def __repr__(self):
        return "Channel(psm 0x%04x, cid 0x%04x -> 0x%04x)" % (self.psm, self.kernel_cid, self.peer_cid or 0)


class _DeferredSetup(object):
    """An incoming request whose answer waits for the channels to be authorized"""

    def __init__(self, code, ident, on_response, channels):
        self.code = code
        self.ident = ident
        self.on_response = on_response
        self.channels = channels
        self.answered = False


class _Connection(object):

    def __init__(self, handle, address, le):
        self.handle = handle
        self.address = address
        self.le = le
        self.authenticated = False
        self.pairing = False
        self.channels = []
        # Channels waiting for authentication, and deferred ECRED channels
        self.insecure = []
        self.held = []
        # Signaling requests of the local stack, by identifier
        self.requests = {}
        # Servers of the peer by the CID it allocated for them
        self.remote_servers = {}
        self._next_kernel_cid = LE_DYNAMIC_CID_START
        self._next_peer_cid = LE_DYNAMIC_CID_START
        self._next_ident = 1
        self._next_remote_ident = 1

    @property
    def signaling_cid(self):
        return LE_SIGNALING_CID if self.le else BREDR_SIGNALING_CID

    @property
    def address_type(self):
        return BdAddrType.LE_PUBLIC if self.le else BdAddrType.BREDR

    def allocate_kernel_cid(self):
        cid = self._next_kernel_cid
        self._next_kernel_cid += 1
        return cid

    def allocate_peer_cid(self):
        cid = self._next_peer_cid
        self._next_peer_cid += 1
        return cid

    def allocate_ident(self):
        ident = self._next_ident
        self._next_ident = ident % 0xFF + 1
        return ident

    def allocate_remote_ident(self):
        ident = self._next_remote_ident
        self._next_remote_ident = ident % 0xFF + 1
        return ident

    def channel_by_kernel_cid(self, cid):
        for channel in self.channels:
            if channel.kernel_cid == cid:
                return channel
        return None

    def remove_channel(self, channel):
        for channels in (self.channels, self.insecure, self.held):
            if channel in channels:
                channels.remove(channel)


class FakeSimulatedPeer(ISimulatedPeer):
    """
    An emulated controller pair with the local host stack in between.

    The central side behaves like the kernel of the system under test:
    management settings, pairing, LE scanning and connection creation,
    L2CAP signaling and channel data. The client side is the remote host:
    it advertises, pages, serves PSMs and answers signaling unless a CID
    hook takes the signaling channel over.
    """

    def __init__(self, environment, loop, emulator_type, index, central_address, client_address):
        self._environment = environment
        self._loop = loop
        self.emulator_type = emulator_type
        self.index = index
        self._central_address = central_address
        self._client_address = client_address
        self._closed = False

        # Local controller and host
        self._settings = Setting.BREDR if emulator_type == HciEmulatorType.BREDR else 0
        self._le_scan_enabled = False
        self._scanning = False
        self._le_connecting = False
        self._observers = []
        self._pre_event_hooks = {}
        self._pending = []
        self._listeners = []
        self._timers = {}
        self._connections = {}
        self._next_handle = FIRST_HANDLE

        # Remote host
        self._command_complete_callback = None
        self._connect_callback = None
        self._remote_advertising = False
        self._remote_scan_enable = 0
        self._remote_ssp = False
        self._io_capability = IO_CAPABILITY_NO_INPUT_NO_OUTPUT
        self._pin = None
        self._reject_user_confirm = False
        self._servers = {}
        self._cid_hooks = {}

    def __repr__(self):
        return "FakeSimulatedPeer(%s, index %d)" % (self.emulator_type.value, self.index)

    @property
    def central_address(self):
        return self._central_address

    @property
    def client_address(self):
        return self._client_address

    @property
    def central_le_scan_enabled(self):
        return self._le_scan_enabled

    @property
    def le_capable(self):
        return self.emulator_type == HciEmulatorType.LE

    def _setting(self, bit):
        return bool(self._settings & bit)

    # Management interface of the local controller

    def controller_info(self):
        supported = Setting.POWERED | Setting.CONNECTABLE | Setting.BONDABLE
        if self.le_capable:
            supported |= Setting.LE | Setting.ADVERTISING
        else:
            supported |= Setting.SSP | Setting.BREDR
        return (bdaddr_to_bytes(self._central_address) + struct.pack('<BHII', 0x09, 0x05F1, supported, self._settings)
                + bytes(3 + 249 + 11))

    def handle_mgmt_command(self, opcode, params):
        """:return: (status, reply parameters)"""
        if opcode == MgmtOp.READ_INFO:
            return MgmtStatus.SUCCESS, self.controller_info()
        if opcode in SETTING_OPS:
            if len(params) != 1:
                return MgmtStatus.INVALID_PARAMS, b''
            bit = SETTING_OPS[opcode]
            if bit in (Setting.LE, Setting.ADVERTISING) and not self.le_capable:
                return MgmtStatus.NOT_SUPPORTED, b''
            if bit == Setting.SSP and self.le_capable:
                return MgmtStatus.NOT_SUPPORTED, b''
            if params[0]:
                self._settings |= bit
            else:
                self._settings &= ~bit
            logging.debug("%s: settings 0x%08x" % (self, self._settings))
            return MgmtStatus.SUCCESS, struct.pack('<I', self._settings)
        if opcode in PAIRING_OPS:
            if len(params) < 7:
                return MgmtStatus.INVALID_PARAMS, b''
            self._on_pairing_reply(opcode, params)
            return MgmtStatus.SUCCESS, bytes(params[:7])
        return MgmtStatus.NOT_SUPPORTED, b''

    # Central command tap

    def add_central_command_observer(self, callback):
        self._observers.append(callback)
        return Subscription(lambda: self._observers.remove(callback) if callback in self._observers else None)

    def add_pre_event_hook(self, opcode, callback):
        hooks = self._pre_event_hooks.setdefault(opcode, [])
        hooks.append(callback)
        return Subscription(lambda: hooks.remove(callback) if callback in hooks else None)

    def _central_command(self, opcode, params=b'', then=None):
        """Have the central controller process a command; then() runs once it did"""
        self._loop.idle_add(self._process_central_command, HciCommand(opcode, bytes(params)), then)

    def _process_central_command(self, command, then):
        if self._closed:
            return False
        logging.debug("Central command 0x%04x length %d" % (command.opcode, len(command.params)))
        if command.opcode == HciOpcode.LE_SET_SCAN_ENABLE:
            self._le_scan_enabled = command.params[0] != 0
        if then is not None:
            then()
        for observer in list(self._observers):
            observer(command)
        return False

    def _run_pre_event_hooks(self, opcode, params):
        results = [hook(params) for hook in list(self._pre_event_hooks.get(opcode, []))]
        return all(result is not False for result in results)

    # Remote host controls

    def set_command_complete_callback(self, callback):
        self._command_complete_callback = callback

    def set_connect_callback(self, callback):
        self._connect_callback = callback

    def _remote_command(self, opcode, supported):
        status = HCI_SUCCESS if supported else HCI_UNKNOWN_COMMAND
        self._loop.idle_add(self._remote_command_complete, opcode, status)
        return supported

    def _remote_command_complete(self, opcode, status):
        if self._command_complete_callback is not None and not self._closed:
            self._command_complete_callback(opcode, status, struct.pack('<B', status))
        return False

    def set_advertising_enabled(self, enabled):
        if not self._remote_command(HciOpcode.LE_SET_ADVERTISING_ENABLE, self.le_capable):
            return
        self._remote_advertising = bool(enabled)
        if self._remote_advertising and self._scanning and self._le_scan_enabled:
            self._check_advertisers()

    def write_scan_enable(self, scan_enable):
        if self._remote_command(HciOpcode.WRITE_SCAN_ENABLE, not self.le_capable):
            self._remote_scan_enable = scan_enable

    def write_ssp_mode(self, enabled):
        if self._remote_command(HciOpcode.WRITE_SIMPLE_PAIRING_MODE, not self.le_capable):
            self._remote_ssp = bool(enabled)

    def set_io_capability(self, io_capability):
        self._io_capability = io_capability

    def set_pin_code(self, pin):
        self._pin = bytes(pin)

    def set_reject_user_confirm(self, reject):
        self._reject_user_confirm = reject

    def add_l2cap_server(self, psm, mtu=None, mps=None, credits=None, on_connect=None, on_disconnect=None):
        logging.debug("Peer serves PSM 0x%04x" % psm)
        self._servers[psm] = _PeerServer(psm, mtu, mps, credits, on_connect, on_disconnect)

    def add_cid_hook(self, handle, cid, callback):
        self._cid_hooks[(handle, cid)] = callback

    def hci_connect(self, address, address_type):
        self._loop.idle_add(self._remote_connect, address, address_type)

    def _remote_connect(self, address, address_type):
        if self._closed:
            return False
        le = address_type != BdAddrType.BREDR
        reachable = address == self._central_address and self._setting(Setting.POWERED)
        if le:
            reachable = reachable and self._setting(Setting.LE) and self._setting(Setting.ADVERTISING)
        else:
            reachable = reachable and not self.le_capable and self._setting(Setting.CONNECTABLE)
        if not reachable:
            logging.warning("Peer connection to %s failed" % address)
            return False
        self._establish(self._client_address, le)
        return False

    def send_cid(self, handle, cid, data):
        self._loop.idle_add(self._local_receive, handle, cid, bytes(data))

    def l2cap_request(self, handle, code, data, on_response=None):
        conn = self._connections.get(handle)
        if conn is None:
            logging.warning("No connection with handle 0x%04x" % handle)
            return
        ident = conn.allocate_remote_ident()
        self._loop.idle_add(self._local_request, conn, code, ident, bytes(data), on_response)

    # Connections

    def _establish(self, address, le):
        handle = self._next_handle
        self._next_handle += 1
        conn = _Connection(handle, address, le)
        self._connections[handle] = conn
        logging.info("%s connection 0x%04x with %s" % ("LE" if le else "BR/EDR", handle, address))
        if self._connect_callback is not None:
            self._connect_callback(handle)
        if le:
            listener = self._find_listener(le, cid=ATT_CID)
            if listener is not None:
                channel = _Channel(conn, None, 0, ATT_CID)
                channel.peer_cid = ATT_CID
                conn.channels.append(channel)
                listener.spawn_child(channel, L2capAddress(address, conn.address_type, 0, ATT_CID), False)
        return conn

    def _find_connection(self, address, le):
        for conn in self._connections.values():
            if conn.address == address and conn.le == le:
                return conn
        return None

    def _pending_for(self, address, le):
        return [sock for sock in self._pending if sock.remote_address.bdaddr == address and sock.le == le]

    def check_bind(self, sock, address):
        if not address.psm and not address.cid:
            return
        for other in self._listeners:
            local = other.local_address
            if local.psm == address.psm and local.cid == address.cid and other.le == (
                    address.bdaddr_type != BdAddrType.BREDR):
                raise OSError(errno.EADDRINUSE, os.strerror(errno.EADDRINUSE))

    def connect_channel(self, sock):
        if self._closed:
            raise OSError(errno.ENODEV, "Controller removed")
        address = sock.remote_address
        le = address.bdaddr_type != BdAddrType.BREDR
        if le != self.le_capable:
            raise OSError(errno.EOPNOTSUPP, "%s connections are not supported" % ("LE" if le else "BR/EDR"))
        if not self._setting(Setting.POWERED):
            raise OSError(errno.EHOSTUNREACH, "Controller is powered off")
        if not address.cid and not _is_valid_psm(address.psm, le):
            raise OSError(errno.EINVAL, "Invalid PSM 0x%04x" % address.psm)
        if sock.mode == ChannelMode.EXT_FLOWCTL and not le:
            raise OSError(errno.EOPNOTSUPP, "Enhanced credit based channels need LE")

        self._pending.append(sock)
        timeout = sock.send_timeout if sock.send_timeout else CONNECT_TIMEOUT_SECONDS
        self._timers[sock] = self._loop.timeout_add(timedelta(seconds=timeout), self._on_connect_timeout, sock)

        conn = self._find_connection(address.bdaddr, le)
        if conn is not None:
            self._loop.idle_add(self._start_channels, conn)
        elif le:
            self._connect_le(address.bdaddr)
        else:
            self._loop.idle_add(self._page, address.bdaddr)

    def _disarm(self, sock):
        source_id = self._timers.pop(sock, None)
        if source_id is not None:
            self._loop.remove(source_id)

    def _on_connect_timeout(self, sock):
        self._timers.pop(sock, None)
        if sock.state == SocketState.CONNECTING:
            logging.info("Connection attempt of %s timed out" % sock)
            self.cancel_connect(sock)
            sock.hang_up(errno.ETIMEDOUT)
        return False

    def cancel_connect(self, sock):
        self._disarm(sock)
        if sock in self._pending:
            self._pending.remove(sock)
            self._update_le_activity()
        elif sock.channel is not None:
            sock.channel.conn.remove_channel(sock.channel)

    def _update_le_activity(self):
        if any(sock.le for sock in self._pending):
            return
        if self._le_connecting:
            self._le_connecting = False
            self._central_command(HciOpcode.LE_CREATE_CONNECTION_CANCEL)
        elif self._scanning:
            self._scanning = False
            self._central_command(HciOpcode.LE_SET_SCAN_ENABLE, b'\x00\x00')

    def _page(self, address):
        if self._closed or not self._pending_for(address, False):
            return False
        conn = self._find_connection(address, False)
        if conn is None:
            if address != self._client_address or not self._remote_scan_enable & SCAN_ENABLE_PAGE:
                logging.debug("Page to %s not answered" % address)
                return False
            conn = self._establish(address, False)
        self._start_channels(conn)
        return False

    def _connect_le(self, address):
        if self._setting(Setting.ADVERTISING):
            # With advertising on, the local controller advertises directly
            # towards the target and lets it connect
            params = struct.pack('<HHBBB6sBB', 0x0800, 0x0800, ADVERTISING_TYPE_DIRECT_IND_HIGH_DUTY, 0x00, 0x00,
                                 bdaddr_to_bytes(address), 0x07, 0x00)
            self._central_command(HciOpcode.LE_SET_ADVERTISING_PARAMETERS, params,
                                  lambda: self._directed_advertising_started(address))
            return
        if self._le_connecting:
            return
        if self._scanning:
            if self._le_scan_enabled:
                self._check_advertisers()
            return
        self._scanning = True
        self._central_command(HciOpcode.LE_SET_SCAN_ENABLE, b'\x01\x00', self._check_advertisers)

    def _directed_advertising_started(self, address):
        if address != self._client_address or not self._pending_for(address, True):
            return
        conn = self._find_connection(address, True) or self._establish(address, True)
        self._start_channels(conn)

    def _check_advertisers(self):
        if not self._scanning or self._le_connecting:
            return
        if self._remote_advertising and self._pending_for(self._client_address, True):
            self._le_connecting = True
            self._scanning = False
            self._central_command(HciOpcode.LE_SET_SCAN_ENABLE, b'\x00\x00', self._create_le_connection)

    def _create_le_connection(self):
        if not self._le_connecting:
            return
        params = struct.pack('<HHBB6sBHHHHHH', 0x0060, 0x0030, 0x00, 0x00, bdaddr_to_bytes(self._client_address),
                             0x00, 0x0018, 0x0028, 0x0000, 0x002a, 0x0000, 0x0000)
        self._central_command(HciOpcode.LE_CREATE_CONNECTION, params, self._le_connection_complete)

    def _le_connection_complete(self):
        if not self._le_connecting:
            return
        event = struct.pack('<BB6s', HCI_SUCCESS, 0x00, bdaddr_to_bytes(self._client_address))
        if not self._run_pre_event_hooks(HciOpcode.LE_CREATE_CONNECTION, event):
            logging.debug("LE connection to %s held back" % self._client_address)
            return
        self._le_connecting = False
        conn = self._establish(self._client_address, True)
        self._start_channels(conn)

    # Channels initiated by the local stack

    def _start_channels(self, conn):
        if self._closed:
            return False
        ready = []
        for sock in self._pending_for(conn.address, conn.le):
            self._pending.remove(sock)
            address = sock.remote_address
            channel = _Channel(conn, sock, address.psm, address.cid or conn.allocate_kernel_cid(), sock.mode)
            sock.channel = channel
            conn.channels.append(channel)
            if address.cid and not address.psm:
                channel.peer_cid = address.cid
                self._channel_connected(channel)
            elif self._needs_pairing(conn, sock):
                conn.insecure.append(channel)
            else:
                ready.append(channel)
        if conn.insecure and not conn.pairing:
            self._start_pairing(conn)
        self._request_channels(conn, ready)
        return False

    def _needs_pairing(self, conn, sock):
        if conn.le or conn.authenticated or sock.remote_address.psm == SDP_PSM:
            return False
        if self._setting(Setting.SSP) and self._remote_ssp:
            return True
        return sock.security_level >= SecurityLevel.MEDIUM

    def _request_channels(self, conn, channels):
        for channel in channels:
            if channel.mode != ChannelMode.EXT_FLOWCTL:
                self._send_connect_request(conn, [channel])
            elif channel.sock.defer_setup:
                conn.held.append(channel)
            else:
                group = [held for held in conn.held if held.psm == channel.psm] + [channel]
                for held in group[:-1]:
                    conn.held.remove(held)
                self._send_connect_request(conn, group)

    def _send_connect_request(self, conn, channels):
        first = channels[0]
        if first.mode == ChannelMode.EXT_FLOWCTL:
            code = L2capCommandCode.CREDIT_BASED_CONNECTION_REQUEST
            payload = struct.pack('<HHHH', first.psm, LOCAL_MTU, LOCAL_LE_MPS, LOCAL_LE_CREDITS)
            payload += b''.join(struct.pack('<H', channel.kernel_cid) for channel in channels)
        elif conn.le:
            code = L2capCommandCode.LE_CREDIT_BASED_CONNECTION_REQUEST
            payload = struct.pack('<HHHHH', first.psm, first.kernel_cid, LOCAL_MTU, LOCAL_LE_MPS, LOCAL_LE_CREDITS)
        else:
            code = L2capCommandCode.CONNECTION_REQUEST
            payload = struct.pack('<HH', first.psm, first.kernel_cid)
        ident = conn.allocate_ident()
        conn.requests[ident] = channels
        self._send_to_remote_signaling(conn, code, ident, payload)

    def _on_answer(self, conn, pdu):
        channels = conn.requests.pop(pdu.identifier, None)
        if channels is None:
            logging.warning("Answer 0x%02x with unknown identifier %d" % (pdu.code, pdu.identifier))
            return
        channels = [channel for channel in channels if channel in conn.channels]
        code = pdu.code
        payload = pdu.payload

        if code == L2capCommandCode.COMMAND_REJECT:
            for channel in channels:
                self._channel_failed(channel, errno.ECONNREFUSED)
        elif code == L2capCommandCode.CONNECTION_RESPONSE and len(payload) == 8:
            dcid, _, result, _ = struct.unpack('<HHHH', payload)
            if result == L2capResult.PENDING:
                conn.requests[pdu.identifier] = channels
                return
            for channel in channels:
                if result == L2capResult.SUCCESS:
                    self._remote_channel_accepted(channel, dcid)
                else:
                    self._channel_failed(channel, _refusal_errno(result))
        elif code == L2capCommandCode.LE_CREDIT_BASED_CONNECTION_RESPONSE and len(payload) == 10:
            dcid, mtu, mps, credits, result = struct.unpack('<HHHHH', payload)
            for channel in channels:
                if result == L2capResult.SUCCESS:
                    self._remote_channel_accepted(channel, dcid, mtu, mps, credits)
                else:
                    self._channel_failed(channel, _refusal_errno(result))
        elif code == L2capCommandCode.CREDIT_BASED_CONNECTION_RESPONSE and len(payload) >= 8:
            mtu, mps, credits, result = struct.unpack_from('<HHHH', payload)
            dcids = [dcid for (dcid,) in struct.iter_unpack('<H', payload[8:len(payload) & ~1])]
            for position, channel in enumerate(channels):
                dcid = dcids[position] if position < len(dcids) else 0
                if result == L2capResult.SUCCESS and dcid:
                    self._remote_channel_accepted(channel, dcid, mtu, mps, credits)
                else:
                    self._channel_failed(channel, _refusal_errno(result) if result else errno.ECONNREFUSED)
        else:
            logging.warning("Malformed answer 0x%02x, length %d" % (code, len(payload)))
            for channel in channels:
                self._channel_failed(channel, errno.EPROTO)

    def _remote_channel_accepted(self, channel, dcid, mtu=None, mps=None, credits=None):
        conn = channel.conn
        channel.peer_cid = dcid
        channel.server = conn.remote_servers.get(dcid)
        if mtu is not None:
            channel.omtu = mtu
            channel.mps = mps
            channel.tx_credits = credits
        elif channel.server is not None:
            channel.omtu = channel.server.mtu
        self._channel_connected(channel)

    def _channel_connected(self, channel):
        logging.info("%s connected" % channel)
        server = channel.server
        if server is not None and server.on_connect is not None:
            server.on_connect(channel.conn.handle, channel.kernel_cid)
        self._disarm(channel.sock)
        channel.sock.connection_established(channel)

    def _channel_failed(self, channel, err):
        logging.info("%s failed: %s" % (channel, os.strerror(err)))
        channel.conn.remove_channel(channel)
        self._disarm(channel.sock)
        channel.sock.hang_up(err)

    # Pairing

    def _start_pairing(self, conn):
        conn.pairing = True
        address_info = bdaddr_to_bytes(conn.address) + struct.pack('<B', conn.address_type)
        if self._setting(Setting.SSP) and self._remote_ssp:
            mitm = any(channel.sock.security_level >= SecurityLevel.HIGH for channel in conn.insecure)
            if mitm and self._io_capability == IO_CAPABILITY_NO_INPUT_NO_OUTPUT:
                logging.info("Peer cannot provide MITM protection")
                self._loop.idle_add(self._pairing_complete, conn, False)
                return
            confirm_hint = 0 if mitm else 1
            self._environment.emit_mgmt_event(MgmtEvent.USER_CONFIRM_REQUEST, self.index,
                                              address_info + struct.pack('<BI', confirm_hint, PAIRING_PASSKEY))
        else:
            self._environment.emit_mgmt_event(MgmtEvent.PIN_CODE_REQUEST, self.index,
                                              address_info + struct.pack('<B', 0))

    def _on_pairing_reply(self, opcode, params):
        address = bdaddr_from_bytes(params[:6])
        conn = None
        for candidate in self._connections.values():
            if candidate.pairing and candidate.address == address:
                conn = candidate
        if conn is None:
            logging.warning("Pairing reply for %s without pairing in progress" % address)
            return
        if opcode == MgmtOp.USER_CONFIRM_REPLY:
            success = not self._reject_user_confirm
        elif opcode == MgmtOp.PIN_CODE_REPLY and len(params) >= 8:
            pin = bytes(params[8:8 + params[7]])
            success = self._pin is not None and pin == self._pin
        else:
            success = False
        self._loop.idle_add(self._pairing_complete, conn, success)

    def _pairing_complete(self, conn, success):
        conn.pairing = False
        waiting, conn.insecure = conn.insecure, []
        waiting = [channel for channel in waiting if channel in conn.channels]
        logging.info("Pairing with %s %s" % (conn.address, "succeeded" if success else "failed"))
        if success:
            conn.authenticated = True
            self._request_channels(conn, waiting)
        else:
            for channel in waiting:
                self._channel_failed(channel, errno.EACCES)
        return False

    # Signaling towards the remote host

    def _send_to_remote_signaling(self, conn, code, ident, payload):
        frame = SIGNALING_HEADER.pack(code, ident, len(payload)) + bytes(payload)
        self._loop.idle_add(self._remote_receive_signaling, conn, frame)

    def _remote_receive_signaling(self, conn, frame):
        if self._closed or conn.handle not in self._connections:
            return False
        hook = self._cid_hooks.get((conn.handle, conn.signaling_cid))
        if hook is not None:
            hook(frame)
            return False
        pdu = L2capMatchers.ExtractSignalingPdu(frame)
        if pdu is None:
            logging.warning("Peer dropped malformed signaling")
            return False
        answer = self._remote_answer(conn, pdu)
        if answer is not None:
            code, payload = answer
            frame = SIGNALING_HEADER.pack(code, pdu.identifier, len(payload)) + payload
            self._loop.idle_add(self._local_receive, conn.handle, conn.signaling_cid, frame)
        return False

    def _remote_answer(self, conn, pdu):
        """The remote host answering a request of the local stack"""
        code = pdu.code
        payload = pdu.payload
        if code == L2capCommandCode.CONNECTION_REQUEST and len(payload) == 4:
            psm, scid = struct.unpack('<HH', payload)
            server = self._servers.get(psm)
            if server is None:
                return L2capCommandCode.CONNECTION_RESPONSE, struct.pack('<HHHH', 0, scid,
                                                                        L2capResult.PSM_NOT_SUPPORTED, 0)
            dcid = conn.allocate_peer_cid()
            conn.remote_servers[dcid] = server
            return L2capCommandCode.CONNECTION_RESPONSE, struct.pack('<HHHH', dcid, scid, L2capResult.SUCCESS, 0)
        if code == L2capCommandCode.LE_CREDIT_BASED_CONNECTION_REQUEST and len(payload) == 10:
            psm = struct.unpack_from('<H', payload)[0]
            server = self._servers.get(psm)
            if server is None:
                return (L2capCommandCode.LE_CREDIT_BASED_CONNECTION_RESPONSE,
                        struct.pack('<HHHHH', 0, 0, 0, 0, L2capResult.PSM_NOT_SUPPORTED))
            dcid = conn.allocate_peer_cid()
            conn.remote_servers[dcid] = server
            return (L2capCommandCode.LE_CREDIT_BASED_CONNECTION_RESPONSE,
                    struct.pack('<HHHHH', dcid, server.mtu, server.mps, server.credits, L2capResult.SUCCESS))
        if code == L2capCommandCode.CREDIT_BASED_CONNECTION_REQUEST and len(payload) >= 10:
            psm = struct.unpack_from('<H', payload)[0]
            count = (len(payload) - 8) // 2
            server = self._servers.get(psm)
            if server is None:
                return (L2capCommandCode.CREDIT_BASED_CONNECTION_RESPONSE,
                        struct.pack('<HHHH', 0, 0, 0, L2capResult.PSM_NOT_SUPPORTED) + bytes(2 * count))
            dcids = []
            for _ in range(count):
                dcid = conn.allocate_peer_cid()
                conn.remote_servers[dcid] = server
                dcids.append(struct.pack('<H', dcid))
            return (L2capCommandCode.CREDIT_BASED_CONNECTION_RESPONSE,
                    struct.pack('<HHHH', server.mtu, server.mps, server.credits, L2capResult.SUCCESS) + b''.join(dcids))
        if code == L2capCommandCode.DISCONNECTION_REQUEST and len(payload) == 4:
            return L2capCommandCode.DISCONNECTION_RESPONSE, payload
        if code in (L2capCommandCode.COMMAND_REJECT, L2capCommandCode.CONNECTION_RESPONSE,
                    L2capCommandCode.CONFIGURATION_RESPONSE, L2capCommandCode.DISCONNECTION_RESPONSE,
                    L2capCommandCode.LE_CREDIT_BASED_CONNECTION_RESPONSE,
                    L2capCommandCode.CREDIT_BASED_CONNECTION_RESPONSE):
            return None
        return L2capCommandCode.COMMAND_REJECT, struct.pack('<H', RejectReason.NOT_UNDERSTOOD)

    # Traffic from the remote host

    def _local_receive(self, handle, cid, data):
        if self._closed:
            return False
        conn = self._connections.get(handle)
        if conn is None:
            logging.warning("No connection with handle 0x%04x" % handle)
            return False
        if cid == conn.signaling_cid:
            self._local_receive_signaling(conn, data)
            return False
        channel = conn.channel_by_kernel_cid(cid)
        if channel is None or channel.sock is None or channel.sock.state != SocketState.CONNECTED:
            logging.warning("Dropping %d bytes for CID 0x%04x" % (len(data), cid))
            return False
        if len(data) > channel.imtu:
            logging.warning("Dropping %d bytes exceeding the MTU of %s" % (len(data), channel))
            return False
        channel.sock.received(data)
        return False

    def _local_receive_signaling(self, conn, frame):
        pdu = L2capMatchers.ExtractSignalingPdu(frame)
        if pdu is None:
            logging.warning("Malformed signaling frame of %d bytes" % len(frame))
            return
        if pdu.code in (L2capCommandCode.COMMAND_REJECT, L2capCommandCode.CONNECTION_RESPONSE,
                        L2capCommandCode.LE_CREDIT_BASED_CONNECTION_RESPONSE,
                        L2capCommandCode.CREDIT_BASED_CONNECTION_RESPONSE):
            self._on_answer(conn, pdu)
        elif pdu.code in (L2capCommandCode.CONFIGURATION_RESPONSE, L2capCommandCode.DISCONNECTION_RESPONSE):
            logging.debug("Signaling response 0x%02x" % pdu.code)
        else:
            self._local_request(conn, pdu.code, pdu.identifier, pdu.payload, None)

    def _local_request(self, conn, code, ident, payload, on_response):
        """The local stack handling a signaling request of the remote host"""
        if self._closed:
            return False
        answer = self._handle_request(conn, code, ident, payload, on_response)
        if answer is not None:
            self._respond(conn, ident, answer[0], answer[1], on_response)
        return False

    def _respond(self, conn, ident, code, payload, on_response):
        if on_response is not None:
            on_response(code, payload)
        else:
            self._send_to_remote_signaling(conn, code, ident, payload)
        return False

    def _reject(self, reason, data=b''):
        return L2capCommandCode.COMMAND_REJECT, struct.pack('<H', reason) + data

    def _link_secure(self, conn):
        return conn.authenticated or not (self._setting(Setting.SSP) and self._remote_ssp)

    def _handle_request(self, conn, code, ident, payload, on_response):
        """:return: (code, payload) of the answer, None when it is deferred"""
        if code == L2capCommandCode.CONNECTION_REQUEST and not conn.le:
            if len(payload) != 4:
                return self._reject(RejectReason.NOT_UNDERSTOOD)
            psm, scid = struct.unpack('<HH', payload)
            listener = self._find_listener(False, psm=psm)
            if listener is None:
                return code + 1, struct.pack('<HHHH', 0, scid, L2capResult.PSM_NOT_SUPPORTED, L2capStatus.NO_INFO)
            if psm != SDP_PSM and not self._link_secure(conn):
                return code + 1, struct.pack('<HHHH', 0, scid, L2capResult.SECURITY_BLOCK, L2capStatus.NO_INFO)
            channel = self._accept_channel(conn, listener, psm, scid, code, ident, on_response)
            status = L2capStatus.AUTHORIZATION_PENDING if channel.deferred else L2capStatus.NO_INFO
            if not channel.deferred:
                self._loop.idle_add(self._respond, conn, ident, code + 1, self._accept_payload(code, [channel]),
                                    on_response)
            # Success follows once the link is configured or the channel authorized
            return code + 1, struct.pack('<HHHH', channel.kernel_cid, scid, L2capResult.PENDING, status)

        if code == L2capCommandCode.DISCONNECTION_REQUEST:
            if len(payload) != 4:
                return self._reject(RejectReason.NOT_UNDERSTOOD)
            dcid, scid = struct.unpack('<HH', payload)
            channel = conn.channel_by_kernel_cid(dcid)
            if channel is None or channel.peer_cid != scid:
                return self._reject(RejectReason.INVALID_CID, payload)
            conn.remove_channel(channel)
            if channel.sock is not None:
                channel.sock.hang_up(0)
            return L2capCommandCode.DISCONNECTION_RESPONSE, payload

        if code == L2capCommandCode.CONFIGURATION_REQUEST:
            if len(payload) < 4:
                return self._reject(RejectReason.NOT_UNDERSTOOD)
            dcid, _ = struct.unpack_from('<HH', payload)
            channel = conn.channel_by_kernel_cid(dcid)
            if channel is None:
                return self._reject(RejectReason.INVALID_CID, struct.pack('<HH', dcid, 0))
            return L2capCommandCode.CONFIGURATION_RESPONSE, struct.pack('<HHH', channel.peer_cid, 0, 0)

        if code == L2capCommandCode.LE_CREDIT_BASED_CONNECTION_REQUEST and conn.le:
            if len(payload) != 10:
                return self._reject(RejectReason.NOT_UNDERSTOOD)
            psm, scid, mtu, mps, credits = struct.unpack('<HHHHH', payload)
            if not _is_dynamic_le_cid(scid):
                return code + 1, struct.pack('<HHHHH', 0, 0, 0, 0, L2capResult.INVALID_SCID)
            listener = self._find_listener(True, psm=psm)
            if listener is None:
                return code + 1, struct.pack('<HHHHH', 0, 0, 0, 0, L2capResult.PSM_NOT_SUPPORTED)
            channel = self._accept_channel(conn, listener, psm, scid, code, ident, on_response, mtu, mps, credits)
            if channel.deferred:
                return None
            return code + 1, self._accept_payload(code, [channel])

        if code == L2capCommandCode.CREDIT_BASED_CONNECTION_REQUEST and conn.le:
            count = (len(payload) - 8) // 2
            if len(payload) < 10 or len(payload) % 2 or count > MAX_ECRED_CHANNELS:
                return self._reject(RejectReason.NOT_UNDERSTOOD)
            psm, mtu, mps, credits = struct.unpack_from('<HHHH', payload)
            scids = [scid for (scid,) in struct.iter_unpack('<H', payload[8:])]
            if not all(_is_dynamic_le_cid(scid) for scid in scids):
                return code + 1, struct.pack('<HHHH', 0, 0, 0, L2capResult.INVALID_SCID) + bytes(2 * count)
            listener = self._find_listener(True, psm=psm)
            if listener is None:
                return code + 1, struct.pack('<HHHH', 0, 0, 0, L2capResult.PSM_NOT_SUPPORTED) + bytes(2 * count)
            channels = [
                self._accept_channel(conn, listener, psm, scid, code, ident, on_response, mtu, mps, credits)
                for scid in scids
            ]
            if listener.defer_setup:
                deferred = _DeferredSetup(code, ident, on_response, channels)
                for channel in channels:
                    channel.deferred = deferred
                return None
            return code + 1, self._accept_payload(code, channels)

        return self._reject(RejectReason.NOT_UNDERSTOOD)

    def _accept_channel(self, conn, listener, psm, scid, code, ident, on_response, mtu=None, mps=None, credits=None):
        channel = _Channel(conn, None, psm, conn.allocate_kernel_cid(), listener.mode)
        channel.peer_cid = scid
        if mtu is not None:
            channel.omtu = mtu
            channel.mps = mps
            channel.tx_credits = credits
        conn.channels.append(channel)
        if listener.defer_setup:
            channel.deferred = _DeferredSetup(code, ident, on_response, [channel])
        listener.spawn_child(channel, L2capAddress(conn.address, conn.address_type, psm, scid),
                             listener.defer_setup)
        logging.info("Incoming %s" % channel)
        return channel

    def _accept_payload(self, code, channels):
        if code == L2capCommandCode.CONNECTION_REQUEST:
            return struct.pack('<HHHH', channels[0].kernel_cid, channels[0].peer_cid, L2capResult.SUCCESS,
                               L2capStatus.NO_INFO)
        if code == L2capCommandCode.CREDIT_BASED_CONNECTION_REQUEST:
            return (struct.pack('<HHHH', LOCAL_MTU, LOCAL_LE_MPS, LOCAL_LE_CREDITS, L2capResult.SUCCESS) +
                    b''.join(struct.pack('<H', channel.kernel_cid) for channel in channels))
        return struct.pack('<HHHHH', channels[0].kernel_cid, LOCAL_MTU, LOCAL_LE_MPS, LOCAL_LE_CREDITS,
                           L2capResult.SUCCESS)

    def _reject_payload(self, code, channels):
        if code == L2capCommandCode.CONNECTION_REQUEST:
            return struct.pack('<HHHH', 0, channels[0].peer_cid, L2capResult.SECURITY_BLOCK, L2capStatus.NO_INFO)
        result = L2capResult.INSUFFICIENT_AUTHORIZATION
        if code == L2capCommandCode.CREDIT_BASED_CONNECTION_REQUEST:
            return struct.pack('<HHHH', LOCAL_MTU, LOCAL_LE_MPS, LOCAL_LE_CREDITS, result)
        return struct.pack('<HHHHH', 0, LOCAL_MTU, LOCAL_LE_MPS, LOCAL_LE_CREDITS, result)

    def authorize(self, sock):
        deferred = sock.channel.deferred if sock.channel is not None else None
        if deferred is None or deferred.answered:
            return
        deferred.answered = True
        channels = [channel for channel in deferred.channels if channel in channel.conn.channels]
        for channel in channels:
            channel.deferred = None
            if channel.sock is not None and channel.sock.state == SocketState.CONNECT2:
                channel.sock.connection_established(channel)
        logging.info("Authorized deferred setup of %d channel(s)" % len(channels))
        if channels:
            conn = channels[0].conn
            self._loop.idle_add(self._respond, conn, deferred.ident, deferred.code + 1,
                                self._accept_payload(deferred.code, channels), deferred.on_response)

    def _reject_deferred(self, sock):
        deferred = sock.channel.deferred
        if deferred.answered:
            return
        deferred.answered = True
        conn = sock.channel.conn
        for channel in deferred.channels:
            conn.remove_channel(channel)
            if channel.sock is not None and channel.sock is not sock:
                channel.sock.hang_up(errno.ECONNREFUSED)
        logging.info("Rejected deferred setup")
        self._loop.idle_add(self._respond, conn, deferred.ident, deferred.code + 1,
                            self._reject_payload(deferred.code, deferred.channels), deferred.on_response)

    # Listeners and local teardown

    def add_listener(self, sock):
        self._listeners.append(sock)

    def remove_listener(self, sock):
        if sock in self._listeners:
            self._listeners.remove(sock)

    def _find_listener(self, le, psm=None, cid=None):
        for sock in self._listeners:
            if sock.le != le:
                continue
            if psm is not None and sock.local_address.psm == psm:
                return sock
            if cid is not None and not sock.local_address.psm and sock.local_address.cid == cid:
                return sock
        return None

    def disconnect(self, sock):
        channel = sock.channel
        if sock.state == SocketState.CONNECT2 and channel.deferred is not None:
            self._reject_deferred(sock)
            sock.hang_up(0)
            return
        if channel not in channel.conn.channels:
            sock.hang_up(0)
            return
        channel.conn.remove_channel(channel)
        self._loop.idle_add(self._remote_disconnected, channel, sock)

    def _remote_disconnected(self, channel, sock):
        server = channel.server
        if server is not None and server.on_disconnect is not None:
            server.on_disconnect()
        sock.hang_up(0)
        return False

    def release(self, sock):
        if self._closed:
            return
        if sock.state == SocketState.LISTENING:
            self.remove_listener(sock)
        elif sock.state == SocketState.CONNECTING:
            self.cancel_connect(sock)
        elif sock.state in (SocketState.CONNECTED, SocketState.CONNECT2):
            self.disconnect(sock)

    # Channel data towards the remote host

    def _segment(self, channel, sdu):
        if not channel.credit_based:
            return [sdu]
        framed = SDU_LENGTH.pack(len(sdu)) + sdu
        pdus = chunks(framed, channel.mps)
        pdus[0] = pdus[0][SDU_LENGTH.size:]
        return pdus

    def transmit(self, channel, data, key):
        sdus = chunks(data, channel.omtu) if channel.sock.kind == SocketKind.STREAM else [data]
        for position, sdu in enumerate(sdus):
            fragments = self._segment(channel, sdu)
            for fragment in fragments[:-1]:
                channel.tx_queue.append((fragment, None))
            channel.tx_queue.append((fragments[-1], key if position == len(sdus) - 1 else None))
        if not channel.flush_scheduled:
            channel.flush_scheduled = True
            self._loop.idle_add(self._flush, channel)

    def _flush(self, channel):
        channel.flush_scheduled = False
        if self._closed or channel not in channel.conn.channels:
            channel.tx_queue.clear()
            return False
        hook = (self._cid_hooks.get((channel.conn.handle, channel.kernel_cid)) or
                self._cid_hooks.get((channel.conn.handle, channel.peer_cid)))
        while channel.tx_queue:
            if channel.credit_based:
                if channel.tx_credits <= 0:
                    logging.debug("%s out of credits, %d PDUs queued" % (channel, len(channel.tx_queue)))
                    break
                channel.tx_credits -= 1
            fragment, key = channel.tx_queue.popleft()
            if hook is not None:
                hook(fragment)
            if key is not None:
                channel.sock.transmitted(key)
        return False

    def close(self):
        if self._closed:
            return
        self._closed = True
        for sock in list(self._timers):
            self._disarm(sock)
        for sock in self._pending:
            sock.hang_up(errno.ECONNABORTED)
        for conn in self._connections.values():
            for channel in conn.channels:
                if channel.sock is not None:
                    channel.sock.hang_up(errno.ECONNABORTED)
        self._pending = []
        self._connections.clear()
        self._listeners = []
        self._observers = []
        self._pre_event_hooks.clear()
        self._environment.remove_peer(self)


class FakeControlPlane(IControlPlane):
    """Management client answering from the FakeEnvironment on the scheduler"""

    def __init__(self, environment, loop):
        self._environment = environment
        self._loop = loop
        self._dispatcher = MgmtEventDispatcher()
        self._closed = False

    def send(self, opcode, index, params=b'', callback=None):
        logging.debug("mgmt send opcode 0x%04x index 0x%04x length %d" % (opcode, index, len(params)))
        self._loop.idle_add(self._execute, opcode, index, bytes(params), callback)

    def _execute(self, opcode, index, params, callback):
        if self._closed:
            return False
        status, reply = self._environment.handle_mgmt_command(opcode, index, params)
        if callback is not None:
            callback(status, reply)
        return False

    def deliver_event(self, event, index, params):
        if not self._closed:
            self._loop.idle_add(self._dispatch_event, event, index, params)

    def _dispatch_event(self, event, index, params):
        if not self._closed:
            logging.debug("mgmt event 0x%04x index 0x%04x length %d" % (event, index, len(params)))
            self._dispatcher.dispatch(event, index, params)
        return False

    def register(self, event, index, callback):
        return self._dispatcher.register(event, index, callback)

    def unregister(self, registration_id):
        self._dispatcher.unregister(registration_id)

    def unregister_index(self, index):
        self._dispatcher.unregister_index(index)

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._dispatcher.clear()
        self._environment.detach_control_plane(self)


class FakeEnvironment(IEnvironment):
    """
    Everything in process: the management interface, the emulated
    controllers and the channel sockets share the case's scheduler.

    The flags turn stack capabilities off to exercise the failure paths.
    """

    def __init__(self,
                 ecred_supported=True,
                 timestamping_supported=True,
                 emulator_available=True,
                 management_available=True):
        self.ecred_supported = ecred_supported
        self.timestamping_supported = timestamping_supported
        self.emulator_available = emulator_available
        self.management_available = management_available
        self._control_planes = []
        self._peers = {}
        self._next_index = 0

    def __repr__(self):
        return "FakeEnvironment(%d controllers)" % len(self._peers)

    @property
    def peers(self):
        return list(self._peers.values())

    def new_control_plane(self, loop):
        if not self.management_available:
            raise OSError(errno.ENOENT, "Management interface unavailable")
        control_plane = FakeControlPlane(self, loop)
        self._control_planes.append(control_plane)
        return control_plane

    def new_simulated_peer(self, loop, emulator_type):
        if not self.emulator_available:
            logging.warning("Emulator unavailable")
            return None
        index = self._next_index
        self._next_index += 1
        peer = FakeSimulatedPeer(self, loop, emulator_type, index, "00:AA:01:00:00:%02X" % (index & 0xFF),
                                 "00:AA:01:01:00:%02X" % (index & 0xFF))
        self._peers[index] = peer
        self.emit_mgmt_event(MgmtEvent.INDEX_ADDED, index)
        return peer

    def new_channel_socket(self, kind):
        return FakeChannelSocket(self, SocketKind(kind))

    def find_peer(self, address):
        for peer in self._peers.values():
            if peer.central_address == address:
                return peer
        return None

    def remove_peer(self, peer):
        if self._peers.pop(peer.index, None) is not None:
            self.emit_mgmt_event(MgmtEvent.INDEX_REMOVED, peer.index)

    def detach_control_plane(self, control_plane):
        if control_plane in self._control_planes:
            self._control_planes.remove(control_plane)

    def handle_mgmt_command(self, opcode, index, params):
        if opcode == MgmtOp.READ_INDEX_LIST:
            indexes = sorted(self._peers)
            return MgmtStatus.SUCCESS, struct.pack('<H', len(indexes)) + b''.join(
                struct.pack('<H', index) for index in indexes)
        peer = self._peers.get(index)
        if peer is None:
            return MgmtStatus.INVALID_INDEX, b''
        return peer.handle_mgmt_command(opcode, params)

    def emit_mgmt_event(self, event, index, params=b''):
        for control_plane in list(self._control_planes):
            control_plane.deliver_event(event, index, bytes(params))

    def timestamping_info(self, interface):
        if interface not in ["hci%d" % index for index in self._peers]:
            raise OSError(errno.ENODEV, "No such device %s" % interface)
        if not self.timestamping_supported:
            raise OSError(errno.EOPNOTSUPP, "%s has no timestamping support" % interface)
        return TimestampingInfo(
            so_timestamping=int(L2CAP_TIMESTAMPING_CAPABILITIES),
            phc_index=NO_PHC_INDEX,
            tx_types=1 << HWTSTAMP_TX_OFF,
            rx_filters=1 << HWTSTAMP_FILTER_NONE)

    def close(self):
        for peer in list(self._peers.values()):
            safeClose(peer)
        for control_plane in list(self._control_planes):
            safeClose(control_plane)


def create(configs):
    environments = []
    for config in configs:
        environments.append(
            FakeEnvironment(
                ecred_supported=config.get("ecred_supported", True),
                timestamping_supported=config.get("timestamping_supported", True),
                emulator_available=config.get("emulator_available", True),
                management_available=config.get("management_available", True)))
    return environments
