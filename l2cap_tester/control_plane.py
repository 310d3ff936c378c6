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
import struct

from l2cap_tester.channel_socket import bdaddr_from_bytes
from l2cap_tester.closable import Closable

MGMT_INDEX_NONE = 0xFFFF


class MgmtOp(object):
    READ_INDEX_LIST = 0x0003
    READ_INFO = 0x0004
    SET_POWERED = 0x0005
    SET_CONNECTABLE = 0x0007
    SET_BONDABLE = 0x0009
    SET_SSP = 0x000B
    SET_LE = 0x000D
    PIN_CODE_REPLY = 0x0016
    PIN_CODE_NEG_REPLY = 0x0017
    USER_CONFIRM_REPLY = 0x001C
    USER_CONFIRM_NEG_REPLY = 0x001D
    SET_ADVERTISING = 0x0029


class MgmtEvent(object):
    COMMAND_COMPLETE = 0x0001
    COMMAND_STATUS = 0x0002
    INDEX_ADDED = 0x0004
    INDEX_REMOVED = 0x0005
    PIN_CODE_REQUEST = 0x000E
    USER_CONFIRM_REQUEST = 0x000F


class MgmtStatus(object):
    SUCCESS = 0x00
    FAILED = 0x03
    NOT_SUPPORTED = 0x0C
    INVALID_PARAMS = 0x0D
    INVALID_INDEX = 0x11


ControllerInfo = namedtuple('ControllerInfo', ['address', 'version', 'manufacturer'])


def parse_controller_info(params):
    """Decode the leading fields of a READ_INFO reply"""
    if len(params) < 9:
        raise ValueError("Controller info too short: %d bytes" % len(params))
    version, manufacturer = struct.unpack_from('<BH', params, 6)
    return ControllerInfo(address=bdaddr_from_bytes(params[:6]), version=version, manufacturer=manufacturer)


class IControlPlane(Closable):
    """
    Client of the controller management protocol.

    Command callbacks are called as callback(status, params) and event
    callbacks as callback(index, params), always on the scheduler thread.
    """

    @abstractmethod
    def send(self, opcode, index, params=b'', callback=None):
        pass

    def reply(self, opcode, index, params=b''):
        """Send a command whose completion nobody waits for"""
        self.send(opcode, index, params)

    @abstractmethod
    def register(self, event, index, callback):
        """:return: registration id usable with unregister()"""
        pass

    @abstractmethod
    def unregister(self, registration_id):
        pass

    @abstractmethod
    def unregister_index(self, index):
        pass


class MgmtEventDispatcher(object):
    """Event registrations of a control plane, keyed by registration id"""

    def __init__(self):
        self._registrations = {}
        self._next_registration_id = 1

    def register(self, event, index, callback):
        if callback is None:
            raise ValueError("callback must not be None")
        registration_id = self._next_registration_id
        self._next_registration_id += 1
        self._registrations[registration_id] = (event, index, callback)
        return registration_id

    def unregister(self, registration_id):
        self._registrations.pop(registration_id, None)

    def unregister_index(self, index):
        for registration_id, (_, registered_index, _) in list(self._registrations.items()):
            if registered_index == index:
                del self._registrations[registration_id]

    def clear(self):
        self._registrations.clear()

    def dispatch(self, event, index, params):
        """
        Call every callback registered for |event| on |index|; registrations
        made with MGMT_INDEX_NONE match any index
        """
        for registered_event, registered_index, callback in list(self._registrations.values()):
            if registered_event != event:
                continue
            if registered_index != MGMT_INDEX_NONE and registered_index != index:
                continue
            callback(index, params)
