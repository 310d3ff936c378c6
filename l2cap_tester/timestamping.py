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

from collections import OrderedDict, deque
import enum
import logging

from mobly import asserts


class TimestampingFlags(enum.IntFlag):
    """SOF_TIMESTAMPING_* socket option bits"""
    TX_HARDWARE = 1 << 0
    TX_SOFTWARE = 1 << 1
    RX_HARDWARE = 1 << 2
    RX_SOFTWARE = 1 << 3
    SOFTWARE = 1 << 4
    SYS_HARDWARE = 1 << 5
    RAW_HARDWARE = 1 << 6
    OPT_ID = 1 << 7
    TX_SCHED = 1 << 8
    TX_ACK = 1 << 9
    OPT_CMSG = 1 << 10
    OPT_TSONLY = 1 << 11
    TX_COMPLETION = 1 << 18


TX_RECORD_MASK = (TimestampingFlags.TX_HARDWARE | TimestampingFlags.TX_SOFTWARE | TimestampingFlags.TX_SCHED
                  | TimestampingFlags.TX_ACK | TimestampingFlags.TX_COMPLETION)
RX_RECORD_MASK = TimestampingFlags.RX_HARDWARE | TimestampingFlags.RX_SOFTWARE

# What ETHTOOL_GET_TS_INFO reports for an L2CAP capable controller: software
# stamps only, no hardware clock
L2CAP_TIMESTAMPING_CAPABILITIES = (TimestampingFlags.SOFTWARE | TimestampingFlags.TX_SOFTWARE
                                   | TimestampingFlags.RX_SOFTWARE | TimestampingFlags.TX_COMPLETION)
NO_PHC_INDEX = -1
HWTSTAMP_TX_OFF = 0
HWTSTAMP_FILTER_NONE = 0


class TimestampKind(enum.IntEnum):
    """SCM_TSTAMP_* report types"""
    SND = 0
    SCHED = 1
    ACK = 2
    COMPLETION = 3


def records_tx(flags):
    return bool(flags & TX_RECORD_MASK)


def records_rx(flags):
    return bool(flags & RX_RECORD_MASK)


class TimestampVerifier(object):
    """
    Tracks the transmit timestamp reports owed for every send and checks the
    error queue reports against them.

    A unit is keyed by the send counter on message sockets and by the offset
    of its last byte on stream sockets. Its reports must arrive in the order
    SCHED, SND, COMPLETION, skipping kinds that are not enabled.
    """

    def __init__(self, flags, stream):
        self._flags = flags
        self._stream = stream
        self._sent = 0
        self._units = OrderedDict()
        self.received_count = 0

    def _expected_kinds(self):
        kinds = []
        if self._flags & TimestampingFlags.TX_SCHED:
            kinds.append(TimestampKind.SCHED)
        if self._flags & TimestampingFlags.TX_SOFTWARE:
            kinds.append(TimestampKind.SND)
        if self._flags & TimestampingFlags.TX_COMPLETION:
            kinds.append(TimestampKind.COMPLETION)
        return kinds

    def expect(self, length):
        """
        Register a send of |length| bytes

        :return: number of reports it owes
        """
        if self._stream and length:
            self._sent += length - 1
        kinds = self._expected_kinds()
        if kinds:
            self._units.setdefault(self._sent, deque()).extend(kinds)
        if not self._stream or length:
            self._sent += 1
        return len(kinds)

    @property
    def outstanding(self):
        return sum(len(kinds) for kinds in self._units.values())

    def _find_unit(self, report):
        if self._flags & TimestampingFlags.OPT_ID:
            if report.id not in self._units:
                asserts.fail("Bad timestamp id %u" % report.id)
            return report.id
        for key, kinds in self._units.items():
            if kinds[0] == report.kind:
                return key
        asserts.fail("Bad timestamp type %u" % report.kind)

    def received(self, report):
        """
        Check one TxTimestamp report

        :return: number of reports still outstanding
        """
        key = self._find_unit(report)
        kinds = self._units[key]
        if kinds[0] != report.kind:
            asserts.fail("Bad timestamp type %u for id %u, expected %u" % (report.kind, key, kinds[0]))
        kinds.popleft()
        if not kinds:
            del self._units[key]
        self.received_count += 1
        logging.info("Got valid TX timestamp %u (type %u, id %u)" % (self.received_count, report.kind, report.id))
        return self.outstanding
