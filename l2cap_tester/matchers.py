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

from collections import namedtuple
import struct

from l2cap_tester.channel_socket import bdaddr_from_bytes
from l2cap_tester.control_plane import MgmtEvent
from l2cap_tester.simulated_peer import HciOpcode
from l2cap_tester.simulated_peer import L2capCommandCode

ADVERTISING_TYPE_DIRECT_IND_HIGH_DUTY = 0x01

AdvertisingParameters = namedtuple(
    'AdvertisingParameters', ['advertising_type', 'own_address_type', 'direct_address_type', 'direct_address'])

SignalingPdu = namedtuple('SignalingPdu', ['code', 'identifier', 'payload'])

ConnectionResponse = namedtuple('ConnectionResponse', ['dcid', 'scid', 'result', 'status'])

# Management event frame header: event code, controller index, length
MGMT_EVENT_HEADER = struct.Struct('<HHH')


class HciMatchers(object):

    @staticmethod
    def Command(opcode):
        return lambda command: command.opcode == opcode

    @staticmethod
    def LeSetScanEnable(enable=None):
        return lambda command: HciMatchers._is_matching_scan_enable(command, enable)

    @staticmethod
    def ExtractLeSetScanEnable(command):
        """:return: True/False for an LE Set Scan Enable command, None otherwise"""
        if command.opcode != HciOpcode.LE_SET_SCAN_ENABLE or len(command.params) < 1:
            return None
        return command.params[0] != 0

    @staticmethod
    def _is_matching_scan_enable(command, enable):
        enabled = HciMatchers.ExtractLeSetScanEnable(command)
        if enabled is None:
            return False
        return enable is None or enabled == enable

    @staticmethod
    def LeCreateConnection():
        return HciMatchers.Command(HciOpcode.LE_CREATE_CONNECTION)

    @staticmethod
    def LeCreateConnectionCancel():
        return HciMatchers.Command(HciOpcode.LE_CREATE_CONNECTION_CANCEL)

    @staticmethod
    def LeSetAdvertisingParameters():
        return lambda command: HciMatchers.ExtractLeSetAdvertisingParameters(command) is not None

    @staticmethod
    def ExtractLeSetAdvertisingParameters(command):
        if command.opcode != HciOpcode.LE_SET_ADVERTISING_PARAMETERS or len(command.params) < 13:
            return None
        advertising_type, own_address_type, direct_address_type = struct.unpack_from('<BBB', command.params, 4)
        return AdvertisingParameters(
            advertising_type=advertising_type,
            own_address_type=own_address_type,
            direct_address_type=direct_address_type,
            direct_address=bdaddr_from_bytes(command.params[7:13]))


class L2capMatchers(object):

    @staticmethod
    def SignalingPdu(code=None):
        return lambda data: L2capMatchers._is_matching_signaling_pdu(data, code)

    @staticmethod
    def ExtractSignalingPdu(data):
        if len(data) < 4:
            return None
        code, identifier, length = struct.unpack_from('<BBH', data)
        if len(data) != 4 + length:
            return None
        return SignalingPdu(code=code, identifier=identifier, payload=bytes(data[4:]))

    @staticmethod
    def _is_matching_signaling_pdu(data, code):
        pdu = L2capMatchers.ExtractSignalingPdu(data)
        if pdu is None:
            return False
        return code is None or pdu.code == code

    @staticmethod
    def ConnectionResponse():
        return lambda code, data: L2capMatchers.ExtractConnectionResponse(code, data) is not None

    @staticmethod
    def ExtractConnectionResponse(code, data):
        if code != L2capCommandCode.CONNECTION_RESPONSE or len(data) != 8:
            return None
        return ConnectionResponse(*struct.unpack('<HHHH', data))


class MgmtMatchers(object):
    """Matchers over raw management event frames"""

    @staticmethod
    def Event(code, index=None):
        return lambda frame: MgmtMatchers._is_matching_event(frame, code, index)

    @staticmethod
    def IndexAdded(index=None):
        return MgmtMatchers.Event(MgmtEvent.INDEX_ADDED, index)

    @staticmethod
    def IndexRemoved(index=None):
        return MgmtMatchers.Event(MgmtEvent.INDEX_REMOVED, index)

    @staticmethod
    def _is_matching_event(frame, code, index):
        if len(frame) < MGMT_EVENT_HEADER.size:
            return False
        frame_code, frame_index, _ = MGMT_EVENT_HEADER.unpack_from(frame)
        return frame_code == code and (index is None or frame_index == index)
