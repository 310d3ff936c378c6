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

from l2cap_tester.truth import assertThat


def ceil_div(numerator, denominator):
    return -(-numerator // denominator)


def required_credits(length, mtu, mps):
    """
    Credits a flow controlled channel must grant to move |length| bytes when
    SDUs are at most |mtu| bytes and are segmented into PDUs of |mps| bytes

    e.g. 32768 bytes over MTU 672 / MPS 251: 49 SDUs of 3 PDUs, 147 credits
    """
    if mtu <= 0 or mps <= 0:
        raise ValueError("MTU and MPS must be positive: %d/%d" % (mtu, mps))
    return ceil_div(length, mtu) * ceil_div(mtu, mps)


def chunks(data, mtu):
    """Split |data| into consecutive pieces of at most |mtu| bytes"""
    if mtu <= 0:
        raise ValueError("MTU must be positive: %d" % mtu)
    return [data[offset:offset + mtu] for offset in range(0, len(data), mtu)]


def write_all(sock, data, mtu):
    """
    Send |data| in chunks of at most |mtu| bytes, offering the unwritten
    remainder of a chunk again after a short write

    :return: number of bytes written
    :raises OSError: on any socket error, including EAGAIN
    """
    total = 0
    for chunk in chunks(data, mtu):
        remaining = chunk
        while remaining:
            written = sock.send(remaining)
            if written <= 0:
                raise OSError(errno.EIO, "Socket accepted no data")
            total += written
            remaining = remaining[written:]
    return total


class TransferVerifier(object):
    """
    Reassembles fragments of a transfer and compares every complete unit
    against the reference payload.

    Every complete unit consumes one step of the context; the context passes
    once its step counter reaches zero.
    """

    def __init__(self, context, reference):
        if not reference:
            raise ValueError("reference payload must not be empty")
        self._context = context
        self._reference = bytes(reference)
        self._buffer = bytearray()
        self.units_received = 0
        self.fragments_received = 0

    @property
    def buffered(self):
        return len(self._buffer)

    def received(self, data):
        self.fragments_received += 1
        self._buffer.extend(data)
        logging.debug("read: %d/%d" % (len(self._buffer), len(self._reference)))
        if len(self._buffer) < len(self._reference):
            return
        self._context.step -= 1
        self.units_received += 1
        received, self._buffer = bytes(self._buffer), bytearray()
        assertThat(received).isEqualTo(self._reference)
        if self._context.step == 0:
            self._context.test_passed()
