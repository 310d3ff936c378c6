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

from l2cap_tester.capture import L2capCaptures
from l2cap_tester.channel_socket import BdAddrType
from l2cap_tester.channel_socket import ChannelMode
from l2cap_tester.channel_socket import SocketKind
from l2cap_tester.channel_socket import error_text
from l2cap_tester.connection_driver import ConnectionDriver
from l2cap_tester.parameters import AdvertisingMode
from l2cap_tester.scan_tracker import CloseSocketTracker
from l2cap_tester.scan_tracker import DirectAdvertisingCheck
from l2cap_tester.scan_tracker import TwoSocketTracker
from l2cap_tester.simulated_peer import L2capCommandCode
from l2cap_tester.timestamping import HWTSTAMP_FILTER_NONE
from l2cap_tester.timestamping import HWTSTAMP_TX_OFF
from l2cap_tester.timestamping import L2CAP_TIMESTAMPING_CAPABILITIES
from l2cap_tester.timestamping import NO_PHC_INDEX
from l2cap_tester.timestamping import TimestampingFlags


def _open_client_channel(context, driver):
    params = context.parameters
    try:
        return driver.open_channel(0, params.channel_id or 0, params.security_level, params.mode)
    except OSError as exp:
        driver.abort_or_fail(exp, "Can't create socket")
        return None


def _start_connect(context, driver, sock):
    params = context.parameters
    try:
        driver.connect(sock, params.client_service_id or 0, params.channel_id or 0)
    except OSError as exp:
        logging.warning("Can't connect socket: %s" % error_text(exp.errno))
        context.close_socket(sock)
        context.test_failed("Can't connect socket: %s" % error_text(exp.errno))
        return False
    context.socket = sock
    return True


def basic_socket(context):
    """A channel socket can be created and closed"""
    try:
        sock = context.environment.new_channel_socket(SocketKind.SEQPACKET)
    except OSError as exp:
        context.test_failed("Can't create socket: %s" % error_text(exp.errno))
        return
    sock.close()
    context.test_passed()


def getpeername_not_connected(context):
    """getpeername on a bound but unconnected socket fails with ENOTCONN"""
    driver = ConnectionDriver(context)
    try:
        sock = driver.open_channel()
    except OSError as exp:
        context.test_failed("Can't create socket: %s" % error_text(exp.errno))
        return
    try:
        sock.getpeername()
    except OSError as exp:
        if exp.errno == errno.ENOTCONN:
            context.test_passed()
        else:
            context.test_failed("Unexpected getpeername error: %s" % error_text(exp.errno))
        return
    finally:
        context.close_socket(sock)
    context.test_failed("getpeername succeeded on non-connected socket")


def ethtool_get_ts_info(context):
    """The controller advertises software timestamping through ethtool"""
    try:
        sock = context.track_socket(context.environment.new_channel_socket(SocketKind.SEQPACKET))
    except OSError as exp:
        context.test_failed("Can't create socket: %s" % error_text(exp.errno))
        return
    interface = "hci%d" % context.mgmt_index
    try:
        info = sock.get_ts_info(interface)
    except OSError as exp:
        context.test_failed("SIOCETHTOOL(%s): %s" % (interface, error_text(exp.errno)))
        return
    finally:
        context.close_socket(sock)

    logging.info("%s timestamping 0x%08x phc %d" % (interface, info.so_timestamping, info.phc_index))
    if info.so_timestamping != L2CAP_TIMESTAMPING_CAPABILITIES:
        context.test_failed("Unexpected timestamping capabilities %r" % TimestampingFlags(info.so_timestamping))
    elif info.phc_index != NO_PHC_INDEX:
        context.test_failed("Unexpected PHC index %d" % info.phc_index)
    elif info.tx_types != 1 << HWTSTAMP_TX_OFF or info.rx_filters != 1 << HWTSTAMP_FILTER_NONE:
        context.test_failed("Unexpected hardware timestamping 0x%x/0x%x" % (info.tx_types, info.rx_filters))
    else:
        context.test_passed()


def client_connect(context):
    """Connect to the peer and run the configured transfer, if any"""
    params = context.parameters
    peer = context.peer

    if params.server_service_id:
        on_connect = None
        on_disconnect = None

        if params.data_length:

            def on_connect(handle, cid):
                logging.debug("Client connect CID 0x%04x handle 0x%04x" % (cid, handle))
                context.dcid = cid
                context.handle = handle

        if params.shutdown_write:

            def on_disconnect():
                context.host_disconnected = True

        peer.add_l2cap_server(
            params.server_service_id,
            mtu=params.mtu,
            mps=params.mps,
            credits=params.credits,
            on_connect=on_connect,
            on_disconnect=on_disconnect)

    if params.advertising == AdvertisingMode.DIRECT:
        check = DirectAdvertisingCheck(context)
        context.scenario = check
        context.add_subscription(peer.add_central_command_observer(check.on_command))

    driver = ConnectionDriver(context)
    sock = _open_client_channel(context, driver)
    if sock is None:
        return
    if not _start_connect(context, driver, sock):
        return
    driver.watch_connect(sock)


def client_connect_close(context):
    """Shut a connecting socket down; the hang-up carries the expected error"""
    driver = ConnectionDriver(context)
    sock = _open_client_channel(context, driver)
    if sock is None:
        return
    if not _start_connect(context, driver, sock):
        return
    driver.watch_close(sock)
    sock.shutdown(socket.SHUT_RDWR)


def client_connect_timeout(context):
    """Connect with a send timeout and wait for the hang-up"""
    params = context.parameters
    driver = ConnectionDriver(context)
    sock = _open_client_channel(context, driver)
    if sock is None:
        return
    try:
        sock.set_send_timeout(params.send_timeout)
    except OSError as exp:
        logging.warning("Can't set SO_SNDTIMEO: %s" % error_text(exp.errno))
        context.close_socket(sock)
        context.test_failed("Can't set SO_SNDTIMEO: %s" % error_text(exp.errno))
        return
    if not _start_connect(context, driver, sock):
        return
    driver.watch_close(sock)


def client_connect_reject(context):
    """Connecting must be refused synchronously"""
    params = context.parameters
    driver = ConnectionDriver(context)
    try:
        sock = driver.open_channel(0, params.channel_id or 0, params.security_level, params.mode)
    except OSError as exp:
        context.test_failed("Can't create socket: %s" % error_text(exp.errno))
        return
    try:
        driver.connect(sock, params.client_service_id or 0, params.channel_id or 0)
    except OSError as exp:
        logging.info("Connect rejected: %s" % error_text(exp.errno))
        context.test_passed()
    else:
        context.test_failed("Connect was not rejected")
    finally:
        context.close_socket(sock)


def client_close_socket(context):
    """Close a pending LE connection and check the controller gives up"""
    params = context.parameters
    peer = context.peer
    tracker = CloseSocketTracker(context, expect_scan_stop=params.client_address is not None)
    context.scenario = tracker
    context.add_subscription(peer.add_central_command_observer(tracker.on_command))

    address = params.client_address or peer.client_address
    context.socket = ConnectionDriver(context).connect_socket(address)


def client_connect_two(context):
    """Open two LE channels towards the same peer"""
    params = context.parameters
    peer = context.peer
    driver = ConnectionDriver(context)
    tracker = TwoSocketTracker(context, driver, peer.client_address)
    context.scenario = tracker
    context.add_subscription(peer.add_central_command_observer(tracker.on_command))

    if params.server_service_id and not params.data_length:
        peer.add_l2cap_server(params.server_service_id)

    defer = params.mode == ChannelMode.EXT_FLOWCTL
    on_connected = None if params.close_first else tracker.on_connected
    context.socket = driver.connect_socket(peer.client_address, on_connected, defer)


def _on_signaling_response(context):
    params = context.parameters

    def on_response(code, data):
        logging.info("Client received response code 0x%02x" % code)

        if code != params.raw_expect_command_code:
            context.test_failed("Unexpected L2CAP response code 0x%02x (expected 0x%02x)" %
                                (code, params.raw_expect_command_code or 0))
            return

        if code == L2capCommandCode.CONNECTION_RESPONSE:
            capture = L2capCaptures.ConnectionResponse()
            if capture(code, data):
                response = capture.get()
                # The channel itself reports a successful connection
                if not response.result and not response.status:
                    return
                context.dcid = response.dcid
                context.scid = response.scid
            if params.data_length:
                return

        if params.raw_expect_command is None:
            context.test_passed()
            return

        if len(data) != len(params.raw_expect_command):
            context.test_failed("Unexpected L2CAP response length (%d != %d)" %
                                (len(data), len(params.raw_expect_command)))
            return

        if bytes(data) != params.raw_expect_command:
            context.test_failed("Unexpected L2CAP response")
            return

        context.test_passed()

    return on_response


def server_listen(context):
    """
    Listen locally, then have the peer connect and optionally send a raw
    signaling request whose response is checked
    """
    params = context.parameters
    peer = context.peer
    driver = ConnectionDriver(context)

    if params.server_service_id or params.channel_id:
        try:
            sock = driver.open_channel(params.server_service_id or 0, params.channel_id or 0, params.security_level,
                                       params.mode)
        except OSError as exp:
            context.test_failed("Can't create socket: %s" % error_text(exp.errno))
            return
        try:
            if params.deferred_accept:
                sock.set_defer_setup(True)
            driver.listen(sock)
        except OSError as exp:
            logging.warning("Can't listen: %s" % error_text(exp.errno))
            context.close_socket(sock)
            context.test_failed("Can't listen: %s" % error_text(exp.errno))
            return
        context.socket = sock

    central_address = peer.central_address
    if central_address is None:
        context.test_failed("No central address")
        return

    def on_new_connection(handle):
        logging.info("New client connection with handle 0x%04x" % handle)
        context.handle = handle
        if params.raw_send_command is None:
            return
        on_response = None
        if params.raw_expect_command_code:
            on_response = _on_signaling_response(context)
        logging.info("Sending L2CAP Request from client")
        peer.l2cap_request(handle, params.raw_send_command_code, params.raw_send_command, on_response)

    peer.set_connect_callback(on_new_connection)
    peer.hci_connect(central_address, BdAddrType.LE_PUBLIC if context.is_le else BdAddrType.BREDR)
