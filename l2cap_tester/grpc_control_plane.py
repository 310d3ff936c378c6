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

import grpc

from l2cap_tester.closable import safeClose
from l2cap_tester.control_plane import IControlPlane
from l2cap_tester.control_plane import MgmtEvent
from l2cap_tester.control_plane import MgmtEventDispatcher
from l2cap_tester.control_plane import MgmtStatus
from l2cap_tester.event_stream import EventStream

# Raw management frames travel as opaque bytes, no protobuf schema involved
MGMT_SERVICE = 'l2cap_tester.MgmtFacade'
SEND_METHOD = '/%s/Send' % MGMT_SERVICE
FETCH_EVENTS_METHOD = '/%s/FetchEvents' % MGMT_SERVICE

MGMT_HEADER = struct.Struct('<HHH')
COMMAND_COMPLETE_HEADER = struct.Struct('<HB')
COMMAND_STATUS_HEADER = struct.Struct('<HB')


def encode_frame(code, index, params=b''):
    """Build a management frame: code, controller index, length, params"""
    return MGMT_HEADER.pack(code, index, len(params)) + bytes(params)


def decode_frame(frame):
    """
    :return: (code, index, params)
    :raises ValueError: when the length field does not match
    """
    if len(frame) < MGMT_HEADER.size:
        raise ValueError("Management frame too short: %d bytes" % len(frame))
    code, index, length = MGMT_HEADER.unpack_from(frame)
    params = bytes(frame[MGMT_HEADER.size:])
    if len(params) != length:
        raise ValueError("Management frame length mismatch: %d != %d" % (len(params), length))
    return code, index, params


def decode_command_reply(frame):
    """
    Decode the command complete or command status frame answering a command

    :return: (opcode, status, return parameters)
    """
    event, _, params = decode_frame(frame)
    if event == MgmtEvent.COMMAND_COMPLETE:
        opcode, status = COMMAND_COMPLETE_HEADER.unpack_from(params)
        return opcode, status, params[COMMAND_COMPLETE_HEADER.size:]
    if event == MgmtEvent.COMMAND_STATUS:
        opcode, status = COMMAND_STATUS_HEADER.unpack_from(params)
        return opcode, status, b''
    raise ValueError("Unexpected reply event 0x%04x" % event)


class GrpcControlPlane(IControlPlane):
    """
    Management client talking to a facade over gRPC.

    Commands are unary calls carrying one frame each way; events arrive on a
    server stream consumed by an EventStream. Completions are handed to the
    scheduler thread, so callbacks never run concurrently with the case.
    """

    def __init__(self, address, loop):
        self._loop = loop
        self._closed = False
        self._dispatcher = MgmtEventDispatcher()
        self._pending = set()

        self._channel = grpc.insecure_channel(address)
        self._send = self._channel.unary_unary(SEND_METHOD)
        fetch_events = self._channel.unary_stream(FETCH_EVENTS_METHOD)
        self._event_stream = EventStream(fetch_events(b''))
        self._event_stream.register_callback(self._on_event_frame)

    def send(self, opcode, index, params=b'', callback=None):
        logging.debug("mgmt send opcode 0x%04x index 0x%04x length %d" % (opcode, index, len(params)))
        future = self._send.future(encode_frame(opcode, index, params))
        self._pending.add(future)
        future.add_done_callback(
            lambda done: self._loop.call_soon_threadsafe(self._on_command_done, done, opcode, callback))

    def _on_command_done(self, future, opcode, callback):
        self._pending.discard(future)
        if self._closed or future.cancelled():
            return False
        exception = future.exception()
        if exception is not None:
            raise exception
        reply_opcode, status, params = decode_command_reply(future.result())
        if reply_opcode != opcode:
            logging.warning("Reply for opcode 0x%04x while waiting for 0x%04x" % (reply_opcode, opcode))
            status = MgmtStatus.FAILED
        if callback is not None:
            callback(status, params)
        return False

    def get_event_stream(self):
        """Raw event frames as they arrive, for assertions on the management traffic"""
        return self._event_stream

    def _on_event_frame(self, frame):
        self._loop.call_soon_threadsafe(self._dispatch_event, frame)

    def _dispatch_event(self, frame):
        if self._closed:
            return False
        event, index, params = decode_frame(frame)
        logging.debug("mgmt event 0x%04x index 0x%04x length %d" % (event, index, len(params)))
        self._dispatcher.dispatch(event, index, params)
        return False

    def register(self, event, index, callback):
        return self._dispatcher.register(event, index, callback)

    def unregister(self, registration_id):
        self._dispatcher.unregister(registration_id)

    def unregister_index(self, index):
        self._dispatcher.unregister_index(index)

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._dispatcher.clear()
        for future in list(self._pending):
            future.cancel()
        self._pending.clear()
        safeClose(self._event_stream)
        self._channel.close()
