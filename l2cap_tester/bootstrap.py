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

import logging
import struct

from l2cap_tester.closable import safeClose
from l2cap_tester.control_plane import MGMT_INDEX_NONE
from l2cap_tester.control_plane import MgmtEvent
from l2cap_tester.control_plane import MgmtOp
from l2cap_tester.control_plane import MgmtStatus
from l2cap_tester.control_plane import parse_controller_info
from l2cap_tester.parameters import AdvertisingMode
from l2cap_tester.simulated_peer import BREDR_SIGNALING_CID
from l2cap_tester.simulated_peer import HciOpcode
from l2cap_tester.simulated_peer import LE_SIGNALING_CID

ENABLE = b'\x01'
# BR/EDR page and inquiry scan
SCAN_ENABLE_PAGE_INQUIRY = 0x03
MGMT_ADDRESS_INFO_SIZE = 7
PIN_CODE_SIZE = 16


def pre_setup(context):
    """Open the control plane and bring up a fresh emulated controller"""
    try:
        context.control_plane = context.environment.new_control_plane(context.loop)
    except OSError as exp:
        context.pre_setup_failed("Failed to setup management interface: %s" % exp)
        return
    if context.control_plane is None:
        context.pre_setup_failed("Failed to setup management interface")
        return

    def on_read_info(status, params):
        logging.info("Read Info callback, status 0x%02x" % status)
        if status != MgmtStatus.SUCCESS or not params:
            context.pre_setup_failed("Read Info failed with status 0x%02x" % status)
            return
        info = parse_controller_info(params)
        logging.info("  Address: %s, version 0x%02x, manufacturer 0x%04x" % (info.address, info.version,
                                                                             info.manufacturer))
        if info.address != context.peer.central_address:
            context.pre_setup_failed("Controller %s is not the emulated one" % info.address)
            return
        context.pre_setup_complete()

    def on_index_added(index, params):
        logging.info("Index Added callback, index 0x%04x" % index)
        context.mgmt_index = index
        context.control_plane.send(MgmtOp.READ_INFO, index, callback=on_read_info)

    def on_index_removed(index, params):
        logging.info("Index Removed callback, index 0x%04x" % index)
        if index != context.mgmt_index:
            return
        context.control_plane.unregister_index(context.mgmt_index)
        context.control_plane.close()
        context.control_plane = None
        context.post_teardown_complete()

    def on_read_index_list(status, params):
        logging.info("Read Index List callback, status 0x%02x" % status)
        if status != MgmtStatus.SUCCESS or params is None:
            context.pre_setup_failed("Read Index List failed with status 0x%02x" % status)
            return
        context.control_plane.register(MgmtEvent.INDEX_ADDED, MGMT_INDEX_NONE, on_index_added)
        context.control_plane.register(MgmtEvent.INDEX_REMOVED, MGMT_INDEX_NONE, on_index_removed)
        try:
            context.peer = context.environment.new_simulated_peer(context.loop, context.emulator_type)
        except OSError as exp:
            logging.warning("Failed to setup HCI emulation: %s" % exp)
            context.peer = None
        if context.peer is None:
            context.pre_setup_failed("Failed to setup HCI emulation")
            return
        logging.info("New emulated controller created")

    context.control_plane.send(MgmtOp.READ_INDEX_LIST, MGMT_INDEX_NONE, callback=on_read_index_list)


def post_teardown(context):
    """Drop the emulated controller and wait for its index to disappear"""
    peer, context.peer = context.peer, None
    if peer is None or context.control_plane is None or context.mgmt_index == MGMT_INDEX_NONE:
        safeClose(peer)
        context.post_teardown_complete()
        return
    peer.close()


def _setup_powered_common(context):
    params = context.parameters
    control_plane = context.control_plane
    peer = context.peer

    def on_user_confirm_request(index, event):
        opcode = MgmtOp.USER_CONFIRM_NEG_REPLY if params.reject_pairing else MgmtOp.USER_CONFIRM_REPLY
        control_plane.reply(opcode, context.mgmt_index, bytes(event[:MGMT_ADDRESS_INFO_SIZE]))

    def on_pin_code_request(index, event):
        address = bytes(event[:MGMT_ADDRESS_INFO_SIZE])
        if not params.pin:
            control_plane.reply(MgmtOp.PIN_CODE_NEG_REPLY, context.mgmt_index, address)
            return
        reply = address + struct.pack('<B', len(params.pin)) + params.pin.ljust(PIN_CODE_SIZE, b'\0')
        control_plane.reply(MgmtOp.PIN_CODE_REPLY, context.mgmt_index, reply)

    control_plane.register(MgmtEvent.USER_CONFIRM_REQUEST, context.mgmt_index, on_user_confirm_request)
    if params.pin or params.expect_pin:
        control_plane.register(MgmtEvent.PIN_CODE_REQUEST, context.mgmt_index, on_pin_code_request)

    if params.client_io_capability is not None:
        peer.set_io_capability(params.client_io_capability)
    if params.client_pin:
        peer.set_pin_code(params.client_pin)
    if params.reject_pairing:
        peer.set_reject_user_confirm(True)

    if context.is_le:
        control_plane.send(MgmtOp.SET_LE, context.mgmt_index, ENABLE)
    if params.enable_pairing:
        control_plane.send(MgmtOp.SET_SSP, context.mgmt_index, ENABLE)
    control_plane.send(MgmtOp.SET_BONDABLE, context.mgmt_index, ENABLE)


def _answer_signaling(context):
    """Check the local signaling request and answer it with the raw reply"""
    params = context.parameters

    def on_signaling_data(data):
        if params.raw_expect_command is not None:
            if len(data) != len(params.raw_expect_command):
                context.test_failed("Unexpected L2CAP request length (%d != %d)" %
                                    (len(data), len(params.raw_expect_command)))
                return
            if bytes(data) != params.raw_expect_command:
                context.test_failed("Unexpected L2CAP request")
                return
        if params.raw_send_command is None:
            return
        context.peer.send_cid(context.handle, context.dcid, params.raw_send_command)

    def on_new_connection(handle):
        logging.info("New connection with handle 0x%04x" % handle)
        context.handle = handle
        context.dcid = LE_SIGNALING_CID if context.is_le else BREDR_SIGNALING_CID
        context.peer.add_cid_hook(handle, context.dcid, on_signaling_data)

    return on_new_connection


def setup_powered_client(context):
    """Power the local controller and make the peer reachable"""
    params = context.parameters
    peer = context.peer
    _setup_powered_common(context)

    logging.info("Powering on controller")

    if params.raw_expect_command is not None or params.raw_send_command is not None:
        peer.set_connect_callback(_answer_signaling(context))

    if params.advertising == AdvertisingMode.DIRECT:
        context.control_plane.send(MgmtOp.SET_ADVERTISING, context.mgmt_index, ENABLE)

    def on_command_complete(opcode, status, event):
        if opcode in (HciOpcode.WRITE_SCAN_ENABLE, HciOpcode.LE_SET_ADVERTISING_ENABLE):
            logging.info("Client set connectable status 0x%02x" % status)
            if not status and params.enable_pairing:
                peer.write_ssp_mode(True)
                return
        elif opcode == HciOpcode.WRITE_SIMPLE_PAIRING_MODE:
            logging.info("Client enable SSP status 0x%02x" % status)
        else:
            return
        if status:
            context.setup_failed("Client setup failed with status 0x%02x" % status)
        else:
            context.setup_complete()

    def on_powered(status, event):
        if status != MgmtStatus.SUCCESS:
            context.setup_failed("Power on failed with status 0x%02x" % status)
            return
        logging.info("Controller powered on")

        if params.send_timeout is not None:
            context.setup_complete()
            return

        peer.set_command_complete_callback(on_command_complete)
        if context.is_le:
            if params.advertising != AdvertisingMode.NONE:
                peer.set_advertising_enabled(True)
            else:
                context.setup_complete()
        else:
            peer.write_scan_enable(SCAN_ENABLE_PAGE_INQUIRY)

    context.control_plane.send(MgmtOp.SET_POWERED, context.mgmt_index, ENABLE, on_powered)


def setup_powered_server(context):
    """Power the local controller as a connectable, advertising server"""
    params = context.parameters
    peer = context.peer
    _setup_powered_common(context)

    logging.info("Powering on controller")

    context.control_plane.send(MgmtOp.SET_CONNECTABLE, context.mgmt_index, ENABLE)
    if context.is_le:
        context.control_plane.send(MgmtOp.SET_ADVERTISING, context.mgmt_index, ENABLE)

    def on_command_complete(opcode, status, event):
        if opcode != HciOpcode.WRITE_SIMPLE_PAIRING_MODE:
            return
        logging.info("Server enable SSP status 0x%02x" % status)
        if status:
            context.setup_failed("Server SSP setup failed with status 0x%02x" % status)
        else:
            context.setup_complete()

    def on_powered(status, event):
        if status != MgmtStatus.SUCCESS:
            context.setup_failed("Power on failed with status 0x%02x" % status)
            return
        logging.info("Controller powered on")

        if not params.enable_pairing:
            context.setup_complete()
            return
        peer.set_command_complete_callback(on_command_complete)
        peer.write_ssp_mode(True)

    context.control_plane.send(MgmtOp.SET_POWERED, context.mgmt_index, ENABLE, on_powered)
