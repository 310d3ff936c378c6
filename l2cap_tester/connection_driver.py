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

import errno
import logging
import socket

from l2cap_tester.channel_socket import BdAddrType
from l2cap_tester.channel_socket import ChannelMode
from l2cap_tester.channel_socket import ChannelOptions
from l2cap_tester.channel_socket import L2capAddress
from l2cap_tester.channel_socket import SocketKind
from l2cap_tester.channel_socket import error_text
from l2cap_tester.main_loop import IoCondition
from l2cap_tester.timestamping import TimestampVerifier
from l2cap_tester.timestamping import records_rx
from l2cap_tester.timestamping import records_tx
from l2cap_tester.transfer import TransferVerifier
from l2cap_tester.transfer import chunks
from l2cap_tester.transfer import write_all

RECEIVE_BUFFER_SIZE = 1024
LISTEN_BACKLOG = 5
# Length prefix of a segmented SDU on credit based channels
SDU_LENGTH_SIZE = 2


class ConnectionDriver(object):
    """
    Opens, connects and accepts local channels for the running case and
    turns their completions into verdicts on its context.
    """

    def __init__(self, context):
        self._context = context

    @property
    def _parameters(self):
        return self._context.parameters

    def abort_or_fail(self, exp, what):
        """Abort when the stack lacks a capability, fail otherwise"""
        err = exp.errno if exp.errno is not None else errno.EIO
        logging.warning("%s: %s" % (what, error_text(err)))
        if err == errno.ENOPROTOOPT:
            self._context.test_abort("%s: %s" % (what, error_text(err)))
        else:
            self._context.test_failed("%s: %s" % (what, error_text(err)))

    def address_type(self):
        if self._parameters.address_type is not None:
            return self._parameters.address_type
        return BdAddrType.LE_PUBLIC if self._context.is_le else BdAddrType.BREDR

    def open_channel(self, psm=0, cid=0, security_level=None, mode=ChannelMode.BASIC):
        """
        Create a non-blocking channel socket bound to the local controller

        :raises OSError: with the errno of the failing step
        """
        central_address = self._context.peer.central_address
        if central_address is None:
            raise OSError(errno.ENODEV, "No central address")
        sock = self._context.track_socket(self._context.environment.new_channel_socket(self._parameters.socket_kind))
        try:
            sock.bind(L2capAddress(central_address, self.address_type(), psm, cid))
            if security_level:
                sock.set_security(security_level)
            if mode != ChannelMode.BASIC:
                sock.set_mode(mode)
        except OSError:
            self._context.close_socket(sock)
            raise
        return sock

    def connect(self, sock, psm=0, cid=0, address=None):
        """
        Start connecting |sock|; completion is reported by write readiness

        :raises OSError: unless the connection is in progress or complete
        """
        if address is None:
            address = self._parameters.client_address or self._context.peer.client_address
        if address is None:
            raise OSError(errno.ENODEV, "No client address")
        try:
            sock.connect(L2capAddress(address, self.address_type(), psm, cid))
        except BlockingIOError:
            pass
        logging.info("Connect in progress")

    def latched_error(self, sock):
        try:
            return sock.get_error()
        except OSError as exp:
            return exp.errno

    def verdict_for_error(self, err):
        expected = self._parameters.expected_error
        if err != expected:
            self._context.test_failed("Expected error %d but got %d" % (expected, err))
        else:
            self._context.test_passed()

    def watch_connect(self, sock):
        return self._context.add_watch(sock, IoCondition.OUT, self.on_connected)

    def on_connected(self, sock, condition):
        err = self.latched_error(sock)
        if err:
            logging.warning("Connect failed: %s" % error_text(err))
            self.verdict_for_error(err)
            return False

        logging.info("Successfully connected to CID 0x%04x" % (self._context.dcid or 0))

        if not self.check_mtu(sock):
            self._context.test_failed("Unable to get MTU")
            return False

        if self._parameters.read_data:
            self.read_data(sock, self._context.dcid)
        elif self._parameters.write_data:
            self.write_data(sock, self._context.dcid)
        elif self._parameters.shutdown_write:
            self.watch_close(sock)
            sock.shutdown(socket.SHUT_WR)
        else:
            self.verdict_for_error(0)
        return False

    def watch_close(self, sock):
        return self._context.add_watch(sock, IoCondition.HUP, self.on_closed)

    def on_closed(self, sock, condition):
        logging.info("Disconnected")
        if self._parameters.shutdown_write:
            if self._context.host_disconnected:
                self._context.test_passed()
            else:
                self._context.test_failed("Socket hung up before the peer saw the disconnection")
            return False

        err = self.latched_error(sock)
        if err:
            logging.warning("Socket closed with error: %s" % error_text(err))
        if self._parameters.send_timeout is None and err != self._parameters.expected_error:
            self._context.test_failed("Expected error %d on close but got %d" % (self._parameters.expected_error, err))
        else:
            self._context.test_passed()
        return False

    def check_mtu(self, sock):
        context = self._context
        try:
            if context.is_le and (self._parameters.client_service_id or self._parameters.server_service_id):
                # Take the SDU length into account
                imtu = sock.get_receive_mtu() - SDU_LENGTH_SIZE
                omtu = sock.get_send_mtu() - SDU_LENGTH_SIZE
                context.options = ChannelOptions(imtu=imtu, omtu=omtu)
            else:
                context.options = sock.get_options()
        except OSError as exp:
            logging.warning("getsockopt(MTU): %s" % error_text(exp.errno))
            return False
        logging.info("Channel MTUs: in %d out %d" % (context.options.imtu, context.options.omtu))
        return True

    def listen(self, sock):
        sock.listen(LISTEN_BACKLOG)
        self._context.add_watch(sock, IoCondition.IN, self.on_incoming)
        logging.info("Listening for connections")

    def on_incoming(self, sock, condition):
        try:
            new_sock = self._context.track_socket(sock.accept())
        except OSError as exp:
            self._context.test_failed("accept failed: %s" % error_text(exp.errno))
            return False

        if self._parameters.deferred_accept:
            if self._parameters.expect_rejection_without_error:
                logging.info("Rejecting deferred setup")
                self._context.close_socket(new_sock)
                return False
            if not self.defer_accept(new_sock):
                self._context.test_failed("Unable to accept deferred setup")
            return False

        return self.on_accepted(new_sock, condition)

    def defer_accept(self, sock):
        """
        Authorize a deferred channel: unless it is already writable, one read
        releases it, then write readiness reports the established channel
        """
        try:
            ready = sock.poll(IoCondition.OUT)
            if not ready & IoCondition.OUT:
                sock.recv(1)
        except OSError as exp:
            logging.warning("Deferred accept: %s" % error_text(exp.errno))
            return False
        self._context.add_watch(sock, IoCondition.OUT, self.on_accepted)
        logging.info("Accept deferred setup")
        return True

    def on_accepted(self, sock, condition):
        if not self.check_mtu(sock):
            self._context.test_failed("Unable to get MTU")
            return False

        if self._parameters.read_data:
            self.read_data(sock, self._context.dcid)
        elif self._parameters.write_data:
            self.write_data(sock, self._context.scid)
        else:
            logging.info("Successfully connected")
            self._context.test_passed()
        return False

    def read_data(self, sock, cid):
        """Have the peer send the reference payload and verify what arrives"""
        context = self._context
        reference = self._parameters.read_data
        flags = self._parameters.timestamping_flags
        context.step = 0

        if records_rx(flags):
            try:
                sock.set_timestamping(flags)
            except OSError as exp:
                context.test_failed("setsockopt(SO_TIMESTAMPING): %s" % error_text(exp.errno))
                return

        verifier = TransferVerifier(context, reference)
        context.transfer = verifier
        bufsize = max(RECEIVE_BUFFER_SIZE, context.options.imtu)

        def on_readable(sock, condition):
            try:
                if records_rx(flags):
                    data, timestamp = sock.recv_timestamped(bufsize)
                    if timestamp is None:
                        context.test_failed("RX timestamp missing")
                        return False
                else:
                    data = sock.recv(bufsize)
            except BlockingIOError:
                return True
            except OSError as exp:
                context.test_failed("Unable to read: %s" % error_text(exp.errno))
                return False
            if not data:
                context.test_failed("Channel closed before the transfer completed")
                return False
            verifier.received(data)
            return context.step != 0

        context.add_watch(sock, IoCondition.IN, on_readable)

        for chunk in chunks(reference, context.options.imtu):
            context.peer.send_cid(context.handle, cid, chunk)
        context.step += 1

    def write_data(self, sock, cid):
        """Send the reference payload and verify what the peer receives"""
        context = self._context
        reference = self._parameters.write_data
        repeat = self._parameters.repeat_count
        context.step = 0

        verifier = TransferVerifier(context, reference)
        context.transfer = verifier
        context.peer.add_cid_hook(context.handle, cid, verifier.received)

        if not self.start_tx_timestamping(sock):
            return

        try:
            size = sock.get_send_buffer()
            sock.set_send_buffer(size + len(reference) * (repeat + 1))
        except OSError as exp:
            logging.warning("Unable to grow the send buffer: %s" % error_text(exp.errno))

        for _ in range(repeat + 1):
            try:
                written = write_all(sock, reference, context.options.omtu)
            except OSError as exp:
                context.test_failed("Unable to write: %s" % error_text(exp.errno))
                return
            if written != len(reference):
                context.test_failed("Short write: %d/%d" % (written, len(reference)))
                return
            context.step += 1

    def start_tx_timestamping(self, sock):
        context = self._context
        flags = self._parameters.timestamping_flags
        if not records_tx(flags):
            return True

        verifier = TimestampVerifier(flags, self._parameters.socket_kind == SocketKind.STREAM)
        context.tx_timestamps = verifier
        for _ in range(self._parameters.repeat_count + 1):
            context.step += verifier.expect(len(self._parameters.write_data))

        try:
            sock.set_timestamping(flags)
        except OSError as exp:
            context.test_failed("setsockopt(SO_TIMESTAMPING): %s" % error_text(exp.errno))
            return False

        context.add_watch(sock, IoCondition.ERR, self.on_error_queue)
        return True

    def on_error_queue(self, sock, condition):
        context = self._context
        context.step -= 1
        try:
            report = sock.recv_error_queue()
        except OSError as exp:
            context.test_failed("Unable to read the error queue: %s" % error_text(exp.errno))
            return False
        outstanding = context.tx_timestamps.received(report)
        if outstanding > 0:
            return True
        if context.step == 0:
            context.test_passed()
        return False

    def connect_socket(self, address, on_connected=None, defer=False):
        """
        Open an LE channel towards |address| for the scan scenarios

        :return: the socket, or None after reporting the verdict
        """
        params = self._parameters
        try:
            sock = self.open_channel(0, params.channel_id or 0, params.security_level, params.mode)
        except OSError as exp:
            self.abort_or_fail(exp, "Error in open_channel")
            return None

        try:
            if defer:
                sock.set_defer_setup(True)
            try:
                sock.connect(L2capAddress(address, BdAddrType.LE_PUBLIC, params.client_service_id or 0,
                                          params.channel_id or 0))
            except BlockingIOError:
                pass
        except OSError as exp:
            self._context.close_socket(sock)
            self._context.test_failed("Error in connect: %s" % error_text(exp.errno))
            return None

        if on_connected is not None:
            self._context.add_watch(sock, IoCondition.OUT, on_connected)
        logging.info("Connect in progress %s" % ("(deferred)" if defer else ""))
        return sock
