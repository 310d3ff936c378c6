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
import enum

from l2cap_tester.closable import Closable


class HciEmulatorType(enum.Enum):
    BREDR = "bredr"
    LE = "le"


class HciOpcode(object):
    WRITE_SCAN_ENABLE = 0x0C1A
    WRITE_SIMPLE_PAIRING_MODE = 0x0C56
    LE_SET_ADVERTISING_PARAMETERS = 0x2006
    LE_SET_ADVERTISING_ENABLE = 0x200A
    LE_SET_SCAN_ENABLE = 0x200C
    LE_CREATE_CONNECTION = 0x200D
    LE_CREATE_CONNECTION_CANCEL = 0x200E


class L2capCommandCode(object):
    COMMAND_REJECT = 0x01
    CONNECTION_REQUEST = 0x02
    CONNECTION_RESPONSE = 0x03
    CONFIGURATION_REQUEST = 0x04
    CONFIGURATION_RESPONSE = 0x05
    DISCONNECTION_REQUEST = 0x06
    DISCONNECTION_RESPONSE = 0x07
    LE_CREDIT_BASED_CONNECTION_REQUEST = 0x14
    LE_CREDIT_BASED_CONNECTION_RESPONSE = 0x15
    CREDIT_BASED_CONNECTION_REQUEST = 0x17
    CREDIT_BASED_CONNECTION_RESPONSE = 0x18


BREDR_SIGNALING_CID = 0x0001
ATT_CID = 0x0004
LE_SIGNALING_CID = 0x0005

# An HCI command sent by the local (central) controller, as seen by the tap
HciCommand = namedtuple('HciCommand', ['opcode', 'params'])


class Subscription(Closable):
    """Cancellable registration of a callback with a collaborator"""

    def __init__(self, cancel_fn):
        self._cancel_fn = cancel_fn

    @property
    def active(self):
        return self._cancel_fn is not None

    def cancel(self):
        if self._cancel_fn is not None:
            cancel_fn = self._cancel_fn
            self._cancel_fn = None
            cancel_fn()

    def close(self):
        self.cancel()


class ISimulatedPeer(Closable):
    """
    The emulated controller pair: the local (central) controller used by the
    system under test, and the remote host driving the client controller.
    Callbacks are always invoked on the scheduler thread.
    """

    @property
    @abstractmethod
    def central_address(self):
        pass

    @property
    @abstractmethod
    def client_address(self):
        pass

    @property
    @abstractmethod
    def central_le_scan_enabled(self):
        pass

    @abstractmethod
    def add_central_command_observer(self, callback):
        """
        Observe every HCI command the central controller processes.
        callback(HciCommand) runs after the command was handled.

        :return: Subscription
        """
        pass

    @abstractmethod
    def add_pre_event_hook(self, opcode, callback):
        """
        callback(event_params) runs before the central controller emits the
        events answering command |opcode|; returning False drops them.

        :return: Subscription
        """
        pass

    @abstractmethod
    def set_command_complete_callback(self, callback):
        """callback(opcode, status, params) for commands sent by the remote host"""
        pass

    @abstractmethod
    def set_connect_callback(self, callback):
        """callback(handle) when the remote host gets a new ACL connection"""
        pass

    @abstractmethod
    def hci_connect(self, address, address_type):
        pass

    @abstractmethod
    def set_advertising_enabled(self, enabled):
        pass

    @abstractmethod
    def write_scan_enable(self, scan_enable):
        pass

    @abstractmethod
    def write_ssp_mode(self, enabled):
        pass

    @abstractmethod
    def set_io_capability(self, io_capability):
        pass

    @abstractmethod
    def set_pin_code(self, pin):
        pass

    @abstractmethod
    def set_reject_user_confirm(self, reject):
        pass

    @abstractmethod
    def add_l2cap_server(self, psm, mtu=None, mps=None, credits=None, on_connect=None, on_disconnect=None):
        """
        Serve |psm| on the remote host. on_connect(handle, cid) when a channel
        is established, on_disconnect() when the local side disconnects it.
        """
        pass

    @abstractmethod
    def add_cid_hook(self, handle, cid, callback):
        """callback(data) for every payload the remote host receives on |cid|"""
        pass

    @abstractmethod
    def send_cid(self, handle, cid, data):
        pass

    @abstractmethod
    def l2cap_request(self, handle, code, data, on_response=None):
        """Send a signaling request; on_response(code, data) with the reply"""
        pass
