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
from typing import NamedTuple, Optional

from l2cap_tester.channel_socket import BdAddrType
from l2cap_tester.channel_socket import ChannelMode
from l2cap_tester.channel_socket import SecurityLevel
from l2cap_tester.channel_socket import SocketKind


class AdvertisingMode(enum.Enum):
    # The remote host advertises so the local controller can connect to it
    GENERAL = "general"
    # The remote host stays silent
    NONE = "none"
    # The remote host advertises and the local controller must use directed
    # advertising towards it
    DIRECT = "direct"


class ConnectionParameters(NamedTuple):
    """Everything a scenario may vary, with the value used when it does not"""
    client_service_id: Optional[int] = None
    server_service_id: Optional[int] = None
    channel_id: Optional[int] = None
    mode: ChannelMode = ChannelMode.BASIC
    mtu: Optional[int] = None
    mps: Optional[int] = None
    credits: Optional[int] = None
    security_level: Optional[SecurityLevel] = None
    pin: Optional[bytes] = None
    expect_pin: bool = False
    client_pin: Optional[bytes] = None
    enable_pairing: bool = False
    reject_pairing: bool = False
    client_io_capability: Optional[int] = None
    advertising: AdvertisingMode = AdvertisingMode.GENERAL
    address_type: Optional[BdAddrType] = None
    client_address: Optional[str] = None
    socket_kind: SocketKind = SocketKind.SEQPACKET
    timestamping_flags: int = 0
    repeat_count: int = 0
    deferred_accept: bool = False
    expect_error_code: Optional[int] = None
    expect_rejection_without_error: bool = False
    send_timeout: Optional[int] = None
    close_first: bool = False
    shutdown_write: bool = False
    read_data: Optional[bytes] = None
    write_data: Optional[bytes] = None
    raw_send_command_code: Optional[int] = None
    raw_send_command: Optional[bytes] = None
    raw_expect_command_code: Optional[int] = None
    raw_expect_command: Optional[bytes] = None

    @property
    def data_length(self):
        if self.read_data is not None:
            return len(self.read_data)
        if self.write_data is not None:
            return len(self.write_data)
        return 0

    @property
    def expected_error(self):
        """The errno a completed connect or close must latch, 0 for none"""
        return self.expect_error_code or 0


DEFAULT_PARAMETERS = ConnectionParameters()
