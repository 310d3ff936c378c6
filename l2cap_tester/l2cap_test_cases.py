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

from l2cap_tester import bootstrap
from l2cap_tester import scenarios
from l2cap_tester.channel_socket import BdAddrType
from l2cap_tester.channel_socket import ChannelMode
from l2cap_tester.channel_socket import SecurityLevel
from l2cap_tester.channel_socket import SocketKind
from l2cap_tester.parameters import AdvertisingMode
from l2cap_tester.parameters import ConnectionParameters
from l2cap_tester.simulated_peer import ATT_CID
from l2cap_tester.simulated_peer import L2capCommandCode
from l2cap_tester.timestamping import TimestampingFlags

BREDR_PSM = 0x1001
LE_PSM = 0x0080
EATT_PSM = 0x0027
# The SDP PSM, never served by the peer
INVALID_PSM = 0x0001
IO_CAPABILITY_KEYBOARD_DISPLAY = 0x04
NONEXISTENT_ADDRESS = "00:03:02:01:AA:00"

PAIRING_PIN = b"0000"

L2_DATA = bytes([0x01, 0x02, 0x03, 0x04, 0x05, 0x06, 0x07, 0x08])
L2_DATA_32K = b"".join(bytes([value]) * 4096 for value in range(8))

RX_TIMESTAMPING = TimestampingFlags.SOFTWARE | TimestampingFlags.RX_SOFTWARE
TX_TIMESTAMPING = (TimestampingFlags.SOFTWARE | TimestampingFlags.OPT_ID | TimestampingFlags.TX_SOFTWARE
                   | TimestampingFlags.TX_COMPLETION)

# Signaling payloads, little endian fields
L2CAP_CONNECT_REQ = bytes([0x01, 0x10, 0x41, 0x00])
L2CAP_SEC_BLOCK_RSP = bytes([
    0x00, 0x00,  # dcid
    0x41, 0x00,  # scid
    0x03, 0x00,  # security block
    0x00, 0x00,  # status
])
L2CAP_NVAL_PSM_RSP = bytes([
    0x00, 0x00,  # dcid
    0x41, 0x00,  # scid
    0x02, 0x00,  # invalid PSM
    0x00, 0x00,  # status
])
L2CAP_NVAL_CONN_REQ = bytes([0x00])
L2CAP_NVAL_PDU_RSP = bytes([0x00, 0x00])
L2CAP_NVAL_DC_REQ = bytes([0x12, 0x34, 0x56, 0x78])
L2CAP_NVAL_CID_RSP = bytes([0x02, 0x00, 0x12, 0x34, 0x56, 0x78])
L2CAP_NVAL_CFG_REQ = bytes([0x12, 0x34, 0x00, 0x00])
L2CAP_NVAL_CFG_RSP = bytes([0x02, 0x00, 0x12, 0x34, 0x00, 0x00])

# Command reject, not understood
CMD_REJECT_RSP = bytes([0x01, 0x01, 0x02, 0x00, 0x00, 0x00])

LE_CONNECT_REQ = bytes([
    0x80, 0x00,  # PSM
    0x41, 0x00,  # SCID
    0x20, 0x00,  # MTU
    0x20, 0x00,  # MPS
    0x05, 0x00,  # credits
])
LE_CONNECT_RSP = bytes([
    0x40, 0x00,  # DCID
    0xa0, 0x02,  # MTU
    0xbc, 0x00,  # MPS
    0x04, 0x00,  # credits
    0x00, 0x00,  # result
])
NVAL_LE_CONNECT_REQ = bytes([
    0x80, 0x00,  # PSM
    0x01, 0x00,  # SCID
    0x20, 0x00,  # MTU
    0x20, 0x00,  # MPS
    0x05, 0x00,  # credits
])
NVAL_LE_CONNECT_RSP = bytes([
    0x00, 0x00,  # DCID
    0x00, 0x00,  # MTU
    0x00, 0x00,  # MPS
    0x00, 0x00,  # credits
    0x09, 0x00,  # result
])

ECRED_CONNECT_REQ = bytes([
    0x80, 0x00,  # PSM
    0x40, 0x00,  # MTU
    0x40, 0x00,  # MPS
    0x05, 0x00,  # credits
    0x41, 0x00,  # SCID 1
    0x42, 0x00,  # SCID 2
    0x43, 0x00,  # SCID 3
    0x44, 0x00,  # SCID 4
    0x45, 0x00,  # SCID 5
])
ECRED_CONNECT_RSP = bytes([
    0xa0, 0x02,  # MTU
    0xbc, 0x00,  # MPS
    0x04, 0x00,  # credits
    0x00, 0x00,  # result
    0x40, 0x00,  # DCID 1
    0x41, 0x00,  # DCID 2
    0x42, 0x00,  # DCID 3
    0x43, 0x00,  # DCID 4
    0x44, 0x00,  # DCID 5
])
NVAL_ECRED_CONNECT_REQ = bytes([
    0x80, 0x00,  # PSM
    0x40, 0x00,  # MTU
    0x40, 0x00,  # MPS
    0x05, 0x00,  # credits
    0x01, 0x00,  # SCID 1
])
NVAL_ECRED_CONNECT_RSP = bytes([
    0x00, 0x00,  # MTU
    0x00, 0x00,  # MPS
    0x00, 0x00,  # credits
    0x09, 0x00,  # result
    0x00, 0x00,  # DCID 1
])

EATT_CONNECT_REQ = bytes([
    0x27, 0x00,  # PSM
    0x40, 0x00,  # MTU
    0x40, 0x00,  # MPS
    0x05, 0x00,  # credits
    0x41, 0x00,  # SCID 1
])
EATT_CONNECT_RSP = bytes([
    0xa0, 0x02,  # MTU
    0xbc, 0x00,  # MPS
    0x04, 0x00,  # credits
    0x00, 0x00,  # result
    0x40, 0x00,  # DCID 1
])
EATT_REJECT_REQ = bytes([0x27, 0x00]) + ECRED_CONNECT_REQ[2:]
EATT_REJECT_RSP = bytes([
    0xa0, 0x02,  # MTU
    0xbc, 0x00,  # MPS
    0x04, 0x00,  # credits
    0x06, 0x00,  # result
])

# 49 SDUs of 672 bytes, each segmented into 3 PDUs of at most 251 bytes
LE_32K_MTU = 672
LE_32K_MPS = 251
LE_32K_CREDITS = 147

CLIENT_CONNECT_SUCCESS = ConnectionParameters(client_service_id=BREDR_PSM, server_service_id=BREDR_PSM)
CLIENT_CONNECT_CLOSE = ConnectionParameters(client_service_id=BREDR_PSM)
CLIENT_CONNECT_TIMEOUT = ConnectionParameters(client_service_id=BREDR_PSM, send_timeout=1)
CLIENT_CONNECT_SSP_SUCCESS_1 = CLIENT_CONNECT_SUCCESS._replace(enable_pairing=True)
CLIENT_CONNECT_SSP_SUCCESS_2 = CLIENT_CONNECT_SUCCESS._replace(
    enable_pairing=True, security_level=SecurityLevel.HIGH, client_io_capability=IO_CAPABILITY_KEYBOARD_DISPLAY)
CLIENT_CONNECT_PIN_SUCCESS = CLIENT_CONNECT_SUCCESS._replace(
    security_level=SecurityLevel.MEDIUM, pin=PAIRING_PIN, client_pin=PAIRING_PIN)
CLIENT_CONNECT_READ_SUCCESS = CLIENT_CONNECT_SUCCESS._replace(read_data=L2_DATA)
CLIENT_CONNECT_READ_32K_SUCCESS = CLIENT_CONNECT_SUCCESS._replace(read_data=L2_DATA_32K)
CLIENT_CONNECT_RX_TIMESTAMPING = CLIENT_CONNECT_READ_SUCCESS._replace(timestamping_flags=RX_TIMESTAMPING)
CLIENT_CONNECT_RX_TIMESTAMPING_32K = CLIENT_CONNECT_READ_32K_SUCCESS._replace(timestamping_flags=RX_TIMESTAMPING)
CLIENT_CONNECT_WRITE_SUCCESS = CLIENT_CONNECT_SUCCESS._replace(write_data=L2_DATA)
CLIENT_CONNECT_WRITE_32K_SUCCESS = CLIENT_CONNECT_SUCCESS._replace(write_data=L2_DATA_32K)
CLIENT_CONNECT_TX_TIMESTAMPING = CLIENT_CONNECT_WRITE_SUCCESS._replace(
    timestamping_flags=TX_TIMESTAMPING, repeat_count=2)
CLIENT_CONNECT_STREAM_TX_TIMESTAMPING = CLIENT_CONNECT_TX_TIMESTAMPING._replace(socket_kind=SocketKind.STREAM)
CLIENT_CONNECT_SHUT_WR_SUCCESS = CLIENT_CONNECT_SUCCESS._replace(shutdown_write=True)
CLIENT_CONNECT_NVAL_PSM_1 = ConnectionParameters(client_service_id=BREDR_PSM, expect_error_code=errno.ECONNREFUSED)
CLIENT_CONNECT_NVAL_PSM_2 = ConnectionParameters(client_service_id=INVALID_PSM, expect_error_code=errno.ECONNREFUSED)
CLIENT_CONNECT_NVAL_PSM_3 = CLIENT_CONNECT_NVAL_PSM_2._replace(enable_pairing=True)

SERVER_SUCCESS = ConnectionParameters(
    server_service_id=BREDR_PSM,
    raw_send_command_code=L2capCommandCode.CONNECTION_REQUEST,
    raw_send_command=L2CAP_CONNECT_REQ,
    raw_expect_command_code=L2capCommandCode.CONNECTION_RESPONSE)
SERVER_READ_SUCCESS = SERVER_SUCCESS._replace(read_data=L2_DATA)
SERVER_READ_32K_SUCCESS = SERVER_SUCCESS._replace(read_data=L2_DATA_32K)
SERVER_WRITE_SUCCESS = SERVER_SUCCESS._replace(write_data=L2_DATA)
SERVER_WRITE_32K_SUCCESS = SERVER_SUCCESS._replace(write_data=L2_DATA_32K)
SERVER_SEC_BLOCK = SERVER_SUCCESS._replace(raw_expect_command=L2CAP_SEC_BLOCK_RSP, enable_pairing=True)
SERVER_NVAL_PSM = SERVER_SUCCESS._replace(server_service_id=None, raw_expect_command=L2CAP_NVAL_PSM_RSP)
SERVER_NVAL_PDU = ConnectionParameters(
    raw_send_command_code=L2capCommandCode.CONNECTION_REQUEST,
    raw_send_command=L2CAP_NVAL_CONN_REQ,
    raw_expect_command_code=L2capCommandCode.COMMAND_REJECT,
    raw_expect_command=L2CAP_NVAL_PDU_RSP)
SERVER_NVAL_DISCONNECT_CID = ConnectionParameters(
    raw_send_command_code=L2capCommandCode.DISCONNECTION_REQUEST,
    raw_send_command=L2CAP_NVAL_DC_REQ,
    raw_expect_command_code=L2capCommandCode.COMMAND_REJECT,
    raw_expect_command=L2CAP_NVAL_CID_RSP)
SERVER_NVAL_CONFIG_CID = ConnectionParameters(
    raw_send_command_code=L2capCommandCode.CONFIGURATION_REQUEST,
    raw_send_command=L2CAP_NVAL_CFG_REQ,
    raw_expect_command_code=L2capCommandCode.COMMAND_REJECT,
    raw_expect_command=L2CAP_NVAL_CFG_RSP)

LE_CLIENT_CONNECT_SUCCESS_1 = ConnectionParameters(client_service_id=LE_PSM, server_service_id=LE_PSM)
LE_CLIENT_CONNECT_CLOSE_1 = ConnectionParameters(client_service_id=LE_PSM)
LE_CLIENT_CONNECT_TIMEOUT_1 = ConnectionParameters(client_service_id=LE_PSM, send_timeout=1)
LE_CLIENT_CONNECT_READ_SUCCESS = LE_CLIENT_CONNECT_SUCCESS_1._replace(read_data=L2_DATA)
LE_CLIENT_CONNECT_READ_32K_SUCCESS = LE_CLIENT_CONNECT_SUCCESS_1._replace(
    mtu=LE_32K_MTU, mps=LE_32K_MPS, credits=LE_32K_CREDITS, read_data=L2_DATA_32K)
LE_CLIENT_CONNECT_RX_TIMESTAMPING = LE_CLIENT_CONNECT_READ_SUCCESS._replace(timestamping_flags=RX_TIMESTAMPING)
LE_CLIENT_CONNECT_RX_TIMESTAMPING_32K = LE_CLIENT_CONNECT_READ_32K_SUCCESS._replace(
    timestamping_flags=RX_TIMESTAMPING)
LE_CLIENT_CONNECT_WRITE_SUCCESS = LE_CLIENT_CONNECT_SUCCESS_1._replace(write_data=L2_DATA)
LE_CLIENT_CONNECT_WRITE_32K_SUCCESS = LE_CLIENT_CONNECT_SUCCESS_1._replace(
    mtu=LE_32K_MTU, mps=LE_32K_MPS, credits=LE_32K_CREDITS, write_data=L2_DATA_32K)
LE_CLIENT_CONNECT_TX_TIMESTAMPING = LE_CLIENT_CONNECT_WRITE_SUCCESS._replace(timestamping_flags=TX_TIMESTAMPING)
LE_CLIENT_CONNECT_ADV_SUCCESS_1 = LE_CLIENT_CONNECT_SUCCESS_1._replace(advertising=AdvertisingMode.DIRECT)
LE_CLIENT_CONNECT_SUCCESS_2 = LE_CLIENT_CONNECT_SUCCESS_1._replace(security_level=SecurityLevel.MEDIUM)
LE_CLIENT_CONNECT_REJECT_1 = ConnectionParameters(
    client_service_id=LE_PSM, raw_send_command=CMD_REJECT_RSP, expect_error_code=errno.ECONNREFUSED)
LE_CLIENT_CONNECT_REJECT_2 = ConnectionParameters(client_service_id=LE_PSM, address_type=BdAddrType.LE_PUBLIC)
LE_CLIENT_CLOSE_SOCKET_1 = ConnectionParameters(client_service_id=LE_PSM, client_address=NONEXISTENT_ADDRESS)
LE_CLIENT_CLOSE_SOCKET_2 = ConnectionParameters(client_service_id=LE_PSM, advertising=AdvertisingMode.NONE)
LE_CLIENT_2_SAME_CLIENT = ConnectionParameters(
    client_service_id=LE_PSM, server_service_id=LE_PSM, advertising=AdvertisingMode.NONE)
LE_CLIENT_2_CLOSE_1 = LE_CLIENT_2_SAME_CLIENT._replace(close_first=True)
LE_CLIENT_CONNECT_NVAL_PSM = ConnectionParameters(client_service_id=LE_PSM, expect_error_code=errno.ECONNREFUSED)

LE_SERVER_SUCCESS = ConnectionParameters(
    server_service_id=LE_PSM,
    raw_send_command_code=L2capCommandCode.LE_CREDIT_BASED_CONNECTION_REQUEST,
    raw_send_command=LE_CONNECT_REQ,
    raw_expect_command_code=L2capCommandCode.LE_CREDIT_BASED_CONNECTION_RESPONSE,
    raw_expect_command=LE_CONNECT_RSP)
LE_SERVER_NVAL_SCID = LE_SERVER_SUCCESS._replace(
    raw_send_command=NVAL_LE_CONNECT_REQ, raw_expect_command=NVAL_LE_CONNECT_RSP)

EXT_FLOWCTL_SERVER_SUCCESS = ConnectionParameters(
    server_service_id=LE_PSM,
    raw_send_command_code=L2capCommandCode.CREDIT_BASED_CONNECTION_REQUEST,
    raw_send_command=ECRED_CONNECT_REQ,
    raw_expect_command_code=L2capCommandCode.CREDIT_BASED_CONNECTION_RESPONSE,
    raw_expect_command=ECRED_CONNECT_RSP)
EXT_FLOWCTL_SERVER_NVAL_SCID = EXT_FLOWCTL_SERVER_SUCCESS._replace(
    raw_send_command=NVAL_ECRED_CONNECT_REQ, raw_expect_command=NVAL_ECRED_CONNECT_RSP)

LE_ATT_CLIENT_CONNECT_SUCCESS_1 = ConnectionParameters(channel_id=ATT_CID, security_level=SecurityLevel.LOW)
LE_ATT_SERVER_SUCCESS_1 = ConnectionParameters(channel_id=ATT_CID)

LE_EATT_CLIENT_CONNECT_SUCCESS_1 = ConnectionParameters(
    client_service_id=EATT_PSM,
    server_service_id=EATT_PSM,
    mode=ChannelMode.EXT_FLOWCTL,
    security_level=SecurityLevel.LOW)
LE_EATT_SERVER_SUCCESS_1 = ConnectionParameters(
    server_service_id=EATT_PSM,
    mode=ChannelMode.EXT_FLOWCTL,
    raw_send_command_code=L2capCommandCode.CREDIT_BASED_CONNECTION_REQUEST,
    raw_send_command=EATT_CONNECT_REQ,
    raw_expect_command_code=L2capCommandCode.CREDIT_BASED_CONNECTION_RESPONSE,
    raw_expect_command=EATT_CONNECT_RSP,
    deferred_accept=True)
LE_EATT_SERVER_REJECT_1 = LE_EATT_SERVER_SUCCESS_1._replace(
    raw_send_command=EATT_REJECT_REQ, raw_expect_command=EATT_REJECT_RSP, expect_rejection_without_error=True)

EXT_FLOWCTL_CLIENT_CONNECT_SUCCESS_1 = LE_CLIENT_CONNECT_SUCCESS_1._replace(mode=ChannelMode.EXT_FLOWCTL)
EXT_FLOWCTL_CLIENT_CONNECT_CLOSE_1 = LE_CLIENT_CONNECT_CLOSE_1._replace(mode=ChannelMode.EXT_FLOWCTL)
EXT_FLOWCTL_CLIENT_CONNECT_TIMEOUT_1 = LE_CLIENT_CONNECT_TIMEOUT_1._replace(mode=ChannelMode.EXT_FLOWCTL)
EXT_FLOWCTL_CLIENT_CONNECT_ADV_SUCCESS_1 = LE_CLIENT_CONNECT_ADV_SUCCESS_1._replace(mode=ChannelMode.EXT_FLOWCTL)
EXT_FLOWCTL_CLIENT_CONNECT_SUCCESS_2 = LE_CLIENT_CONNECT_SUCCESS_2._replace(mode=ChannelMode.EXT_FLOWCTL)
EXT_FLOWCTL_CLIENT_CONNECT_REJECT_1 = LE_CLIENT_CONNECT_REJECT_1._replace(mode=ChannelMode.EXT_FLOWCTL)
EXT_FLOWCTL_CLIENT_2 = LE_CLIENT_2_SAME_CLIENT._replace(mode=ChannelMode.EXT_FLOWCTL)
EXT_FLOWCTL_CLIENT_2_CLOSE_1 = LE_CLIENT_2_CLOSE_1._replace(mode=ChannelMode.EXT_FLOWCTL)


def register_all(registry):
    """Register every L2CAP case, in the order they run"""
    client = bootstrap.setup_powered_client
    server = bootstrap.setup_powered_server

    registry.add_bredr("Basic L2CAP Socket - Success", None, client, scenarios.basic_socket)
    registry.add_bredr("Non-connected getpeername - Failure", None, client, scenarios.getpeername_not_connected)

    registry.add_bredr("L2CAP BR/EDR Client - Success", CLIENT_CONNECT_SUCCESS, client, scenarios.client_connect)
    registry.add_bredr("L2CAP BR/EDR Client - Close", CLIENT_CONNECT_CLOSE, client, scenarios.client_connect_close)
    registry.add_bredr("L2CAP BR/EDR Client - Timeout", CLIENT_CONNECT_TIMEOUT, client,
                       scenarios.client_connect_timeout)
    registry.add_bredr("L2CAP BR/EDR Client SSP - Success 1", CLIENT_CONNECT_SSP_SUCCESS_1, client,
                       scenarios.client_connect)
    registry.add_bredr("L2CAP BR/EDR Client SSP - Success 2", CLIENT_CONNECT_SSP_SUCCESS_2, client,
                       scenarios.client_connect)
    registry.add_bredr("L2CAP BR/EDR Client PIN Code - Success", CLIENT_CONNECT_PIN_SUCCESS, client,
                       scenarios.client_connect)
    registry.add_bredr("L2CAP BR/EDR Client - Read Success", CLIENT_CONNECT_READ_SUCCESS, client,
                       scenarios.client_connect)
    registry.add_bredr("L2CAP BR/EDR Client - Read 32k Success", CLIENT_CONNECT_READ_32K_SUCCESS, client,
                       scenarios.client_connect)
    registry.add_bredr("L2CAP BR/EDR Client - RX Timestamping", CLIENT_CONNECT_RX_TIMESTAMPING, client,
                       scenarios.client_connect)
    registry.add_bredr("L2CAP BR/EDR Client - RX Timestamping 32k", CLIENT_CONNECT_RX_TIMESTAMPING_32K, client,
                       scenarios.client_connect)
    registry.add_bredr("L2CAP BR/EDR Client - Write Success", CLIENT_CONNECT_WRITE_SUCCESS, client,
                       scenarios.client_connect)
    registry.add_bredr("L2CAP BR/EDR Client - Write 32k Success", CLIENT_CONNECT_WRITE_32K_SUCCESS, client,
                       scenarios.client_connect)
    registry.add_bredr("L2CAP BR/EDR Client - TX Timestamping", CLIENT_CONNECT_TX_TIMESTAMPING, client,
                       scenarios.client_connect)
    registry.add_bredr("L2CAP BR/EDR Client - Stream TX Timestamping", CLIENT_CONNECT_STREAM_TX_TIMESTAMPING,
                       client, scenarios.client_connect)
    registry.add_bredr("L2CAP BR/EDR Client - Invalid PSM 1", CLIENT_CONNECT_NVAL_PSM_1, client,
                       scenarios.client_connect)
    registry.add_bredr("L2CAP BR/EDR Client - Invalid PSM 2", CLIENT_CONNECT_NVAL_PSM_2, client,
                       scenarios.client_connect)
    registry.add_bredr("L2CAP BR/EDR Client - Invalid PSM 3", CLIENT_CONNECT_NVAL_PSM_3, client,
                       scenarios.client_connect)
    registry.add_bredr("L2CAP BR/EDR Client - Socket Shut WR Success", CLIENT_CONNECT_SHUT_WR_SUCCESS, client,
                       scenarios.client_connect)

    registry.add_bredr("L2CAP BR/EDR Server - Success", SERVER_SUCCESS, server, scenarios.server_listen)
    registry.add_bredr("L2CAP BR/EDR Server - Read Success", SERVER_READ_SUCCESS, server, scenarios.server_listen)
    registry.add_bredr("L2CAP BR/EDR Server - Read 32k Success", SERVER_READ_32K_SUCCESS, server,
                       scenarios.server_listen)
    registry.add_bredr("L2CAP BR/EDR Server - Write Success", SERVER_WRITE_SUCCESS, server, scenarios.server_listen)
    registry.add_bredr("L2CAP BR/EDR Server - Write 32k Success", SERVER_WRITE_32K_SUCCESS, server,
                       scenarios.server_listen)
    registry.add_bredr("L2CAP BR/EDR Server - Security Block", SERVER_SEC_BLOCK, server, scenarios.server_listen)
    registry.add_bredr("L2CAP BR/EDR Server - Invalid PSM", SERVER_NVAL_PSM, server, scenarios.server_listen)
    registry.add_bredr("L2CAP BR/EDR Server - Invalid PDU", SERVER_NVAL_PDU, server, scenarios.server_listen)
    registry.add_bredr("L2CAP BR/EDR Server - Invalid Disconnect CID", SERVER_NVAL_DISCONNECT_CID, server,
                       scenarios.server_listen)
    registry.add_bredr("L2CAP BR/EDR Server - Invalid Config CID", SERVER_NVAL_CONFIG_CID, server,
                       scenarios.server_listen)

    registry.add_bredr("L2CAP BR/EDR Ethtool Get Ts Info - Success", None, server, scenarios.ethtool_get_ts_info)

    registry.add_le("L2CAP LE Client - Success", LE_CLIENT_CONNECT_SUCCESS_1, client, scenarios.client_connect)
    registry.add_le("L2CAP LE Client - Close", LE_CLIENT_CONNECT_CLOSE_1, client, scenarios.client_connect_close)
    registry.add_le("L2CAP LE Client - Timeout", LE_CLIENT_CONNECT_TIMEOUT_1, client, scenarios.client_connect_timeout)
    registry.add_le("L2CAP LE Client - Read Success", LE_CLIENT_CONNECT_READ_SUCCESS, client, scenarios.client_connect)
    registry.add_le("L2CAP LE Client - Read 32k Success", LE_CLIENT_CONNECT_READ_32K_SUCCESS, client,
                    scenarios.client_connect)
    registry.add_le("L2CAP LE Client - RX Timestamping", LE_CLIENT_CONNECT_RX_TIMESTAMPING, client,
                    scenarios.client_connect)
    registry.add_le("L2CAP LE Client - RX Timestamping 32k", LE_CLIENT_CONNECT_RX_TIMESTAMPING_32K, client,
                    scenarios.client_connect)
    registry.add_le("L2CAP LE Client - Write Success", LE_CLIENT_CONNECT_WRITE_SUCCESS, client,
                    scenarios.client_connect)
    registry.add_le("L2CAP LE Client - Write 32k Success", LE_CLIENT_CONNECT_WRITE_32K_SUCCESS, client,
                    scenarios.client_connect)
    registry.add_le("L2CAP LE Client - TX Timestamping", LE_CLIENT_CONNECT_TX_TIMESTAMPING, client,
                    scenarios.client_connect)
    registry.add_le("L2CAP LE Client, Direct Advertising - Success", LE_CLIENT_CONNECT_ADV_SUCCESS_1, client,
                    scenarios.client_connect)
    registry.add_le("L2CAP LE Client SMP - Success", LE_CLIENT_CONNECT_SUCCESS_2, client, scenarios.client_connect)
    registry.add_le("L2CAP LE Client - Command Reject", LE_CLIENT_CONNECT_REJECT_1, client, scenarios.client_connect)
    # An LE address on a BR/EDR only controller
    registry.add_bredr("L2CAP LE Client - Connection Reject", LE_CLIENT_CONNECT_REJECT_2, client,
                       scenarios.client_connect_reject)
    registry.add_le("L2CAP LE Client - Close socket 1", LE_CLIENT_CLOSE_SOCKET_1, client,
                    scenarios.client_close_socket)
    registry.add_le("L2CAP LE Client - Close socket 2", LE_CLIENT_CLOSE_SOCKET_2, client,
                    scenarios.client_close_socket)
    registry.add_le("L2CAP LE Client - Open two sockets", LE_CLIENT_2_SAME_CLIENT, client,
                    scenarios.client_connect_two)
    registry.add_le("L2CAP LE Client - Open two sockets close one", LE_CLIENT_2_CLOSE_1, client,
                    scenarios.client_connect_two)
    registry.add_le("L2CAP LE Client - Invalid PSM", LE_CLIENT_CONNECT_NVAL_PSM, client, scenarios.client_connect)
    registry.add_le("L2CAP LE Server - Success", LE_SERVER_SUCCESS, server, scenarios.server_listen)
    registry.add_le("L2CAP LE Server - Nval SCID", LE_SERVER_NVAL_SCID, server, scenarios.server_listen)

    registry.add_le("L2CAP Ext-Flowctl Client - Success", EXT_FLOWCTL_CLIENT_CONNECT_SUCCESS_1, client,
                    scenarios.client_connect)
    registry.add_le("L2CAP Ext-Flowctl Client - Close", EXT_FLOWCTL_CLIENT_CONNECT_CLOSE_1, client,
                    scenarios.client_connect_close)
    registry.add_le("L2CAP Ext-Flowctl Client - Timeout", EXT_FLOWCTL_CLIENT_CONNECT_TIMEOUT_1, client,
                    scenarios.client_connect_timeout)
    registry.add_le("L2CAP Ext-Flowctl Client, Direct Advertising - Success", EXT_FLOWCTL_CLIENT_CONNECT_ADV_SUCCESS_1,
                    client, scenarios.client_connect)
    registry.add_le("L2CAP Ext-Flowctl Client SMP - Success", EXT_FLOWCTL_CLIENT_CONNECT_SUCCESS_2, client,
                    scenarios.client_connect)
    registry.add_le("L2CAP Ext-Flowctl Client - Command Reject", EXT_FLOWCTL_CLIENT_CONNECT_REJECT_1, client,
                    scenarios.client_connect)
    registry.add_le("L2CAP Ext-Flowctl Client - Open two sockets", EXT_FLOWCTL_CLIENT_2, client,
                    scenarios.client_connect_two)
    registry.add_le("L2CAP Ext-Flowctl Client - Open two sockets close one", EXT_FLOWCTL_CLIENT_2_CLOSE_1, client,
                    scenarios.client_connect_two)
    registry.add_le("L2CAP Ext-Flowctl Server - Success", EXT_FLOWCTL_SERVER_SUCCESS, server, scenarios.server_listen)
    registry.add_le("L2CAP Ext-Flowctl Server - Nval SCID", EXT_FLOWCTL_SERVER_NVAL_SCID, server,
                    scenarios.server_listen)

    registry.add_le("L2CAP LE ATT Client - Success", LE_ATT_CLIENT_CONNECT_SUCCESS_1, client, scenarios.client_connect)
    registry.add_le("L2CAP LE ATT Server - Success", LE_ATT_SERVER_SUCCESS_1, server, scenarios.server_listen)

    registry.add_le("L2CAP LE EATT Client - Success", LE_EATT_CLIENT_CONNECT_SUCCESS_1, client,
                    scenarios.client_connect)
    registry.add_le("L2CAP LE EATT Server - Success", LE_EATT_SERVER_SUCCESS_1, server, scenarios.server_listen)
    registry.add_le("L2CAP LE EATT Server - Reject", LE_EATT_SERVER_REJECT_1, server, scenarios.server_listen)

    registry.add_le("L2CAP LE Ethtool Get Ts Info - Success", None, server, scenarios.ethtool_get_ts_info)
    return registry
