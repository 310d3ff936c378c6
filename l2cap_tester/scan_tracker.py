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

import enum
import logging

from l2cap_tester.capture import HciCaptures
from l2cap_tester.channel_socket import error_text
from l2cap_tester.matchers import ADVERTISING_TYPE_DIRECT_IND_HIGH_DUTY
from l2cap_tester.matchers import HciMatchers
from l2cap_tester.simulated_peer import HciOpcode


class ScanState(enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    CLOSE_REQUESTED = "close requested"
    SCAN_STOPPED = "scan stopped"
    CONNECTION_CANCELLED = "connection cancelled"


class CloseSocketTracker(object):
    """
    Closes a pending LE connection attempt and checks the local controller
    gives up on it, following the commands it sends.

    With |expect_scan_stop| the target never shows up: the socket is closed
    while scanning and scanning must stop. Otherwise the target advertises
    once, the connection attempt is held back and closing the socket must
    cancel it.
    """

    def __init__(self, context, expect_scan_stop):
        self._context = context
        self._expect_scan_stop = expect_scan_stop
        self.state = ScanState.IDLE
        self.transitions = [ScanState.IDLE]

    @property
    def terminal_state(self):
        return ScanState.SCAN_STOPPED if self._expect_scan_stop else ScanState.CONNECTION_CANCELLED

    def _move_to(self, state):
        logging.info("Close socket: %s -> %s" % (self.state.value, state.value))
        self.state = state
        self.transitions.append(state)

    def _unexpected(self, what):
        self._context.test_failed("Unexpected %s while %s" % (what, self.state.value))

    def on_command(self, command):
        scan_enable = HciMatchers.ExtractLeSetScanEnable(command)
        if scan_enable is True:
            self._on_scan_enabled()
        elif scan_enable is False:
            self._on_scan_disabled()
        elif HciMatchers.LeCreateConnectionCancel()(command):
            self._on_connection_cancelled()
        elif HciMatchers.LeCreateConnection()(command) and self.state == ScanState.CLOSE_REQUESTED:
            self._unexpected("connection attempt")

    def _on_scan_enabled(self):
        if self.state != ScanState.IDLE:
            self._unexpected("scan enable")
            return
        self._move_to(ScanState.SCANNING)
        if self._expect_scan_stop:
            self._context.idle_add(self._close_while_scanning)
        else:
            self._context.idle_add(self._advertise_once)

    def _on_scan_disabled(self):
        if self._expect_scan_stop:
            self._context.idle_add(self._check_scan_stopped)
        elif self.state == ScanState.SCANNING:
            self._move_to(ScanState.CONNECTING)
            self._context.idle_add(self._close_while_connecting)
        else:
            self._unexpected("scan disable")

    def _on_connection_cancelled(self):
        if self._expect_scan_stop or self.state != ScanState.CLOSE_REQUESTED:
            self._unexpected("connection cancel")
            return
        self._move_to(ScanState.CONNECTION_CANCELLED)
        self._context.test_passed()

    def _close(self):
        sock, self._context.socket = self._context.socket, None
        if sock is None:
            self._context.test_failed("No socket to close")
            return False
        self._context.close_socket(sock)
        self._move_to(ScanState.CLOSE_REQUESTED)
        return True

    def _close_while_scanning(self):
        logging.info("Will close socket during scan phase...")
        # The target was added to the accept list and we should still scan
        if not self._context.peer.central_le_scan_enabled:
            self._context.test_failed("Should be still scanning")
            return False
        self._close()
        return False

    def _check_scan_stopped(self):
        logging.info("Checking whether scan was properly stopped...")
        if self.state != ScanState.CLOSE_REQUESTED:
            self._context.test_failed("Scan stopped before the socket was closed")
            return False
        if self._context.peer.central_le_scan_enabled:
            self._context.test_failed("Delayed check whether scan is off failed")
            return False
        self._move_to(ScanState.SCAN_STOPPED)
        self._context.test_passed()
        return False

    def _advertise_once(self):
        peer = self._context.peer
        # Keep the connection attempt pending
        self._context.add_subscription(
            peer.add_pre_event_hook(HciOpcode.LE_CREATE_CONNECTION, lambda params: False))
        peer.set_advertising_enabled(True)
        peer.set_advertising_enabled(False)
        return False

    def _close_while_connecting(self):
        if self._context.peer.central_le_scan_enabled:
            self._context.test_failed("Should no longer scan")
            return False
        self._close()
        return False


class TwoSocketTracker(object):
    """
    Connects two channels to the same peer. The second one is opened once
    the first connection attempt starts scanning; with |close_first| the
    first one is dropped right away and only the second must connect.
    """

    def __init__(self, context, driver, address):
        self._context = context
        self._driver = driver
        self._address = address
        self.scan_enable_count = 0
        self.connect_count = 0

    @property
    def _close_first(self):
        return self._context.parameters.close_first

    def on_command(self, command):
        logging.debug("HCI Command 0x%04x length %u" % (command.opcode, len(command.params)))
        if HciMatchers.ExtractLeSetScanEnable(command) is not True:
            return
        self.scan_enable_count += 1
        if self.scan_enable_count == 1:
            self._open_second_socket()
        elif self.scan_enable_count == 2:
            self._context.idle_add(self._enable_advertising)

    def _open_second_socket(self):
        context = self._context
        context.second_socket = self._driver.connect_socket(self._address, self.on_connected)
        if self._close_first and context.socket is not None:
            logging.info("Closing first socket")
            context.close_socket(context.socket)
            context.socket = None
        context.idle_add(self._enable_advertising)

    def _enable_advertising(self):
        self._context.peer.set_advertising_enabled(True)
        return False

    def on_connected(self, sock, condition):
        context = self._context
        err = self._driver.latched_error(sock)
        if err:
            context.test_failed("Connect failed: %s" % error_text(err))
            return False

        logging.info("Successfully connected")
        self.connect_count += 1
        if self.connect_count == 2:
            context.close_sockets()
            context.test_passed()
        if self._close_first and self.connect_count == 1:
            context.close_socket(context.second_socket)
            context.second_socket = None
            context.test_passed()
        return False


class DirectAdvertisingCheck(object):
    """Checks the local controller advertises directly to the client"""

    def __init__(self, context):
        self._context = context

    def on_command(self, command):
        capture = HciCaptures.LeSetAdvertisingParameters()
        if not capture(command):
            return
        parameters = capture.get()
        logging.info("Received advertising parameters HCI command")
        if parameters.advertising_type != ADVERTISING_TYPE_DIRECT_IND_HIGH_DUTY:
            self._context.test_failed("Invalid advertising type 0x%02x" % parameters.advertising_type)
            return
        if parameters.direct_address != self._context.peer.client_address:
            self._context.test_failed("Invalid direct address %s" % parameters.direct_address)
            return
        self._context.test_passed()
