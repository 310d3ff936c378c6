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

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
import logging
from queue import Empty, Queue
import struct

import grpc
from mobly import asserts

from l2cap_tester.control_plane import MGMT_INDEX_NONE
from l2cap_tester.control_plane import MgmtEvent
from l2cap_tester.control_plane import MgmtOp
from l2cap_tester.control_plane import MgmtStatus
from l2cap_tester.grpc_control_plane import GrpcControlPlane
from l2cap_tester.grpc_control_plane import MGMT_SERVICE
from l2cap_tester.grpc_control_plane import decode_command_reply
from l2cap_tester.grpc_control_plane import decode_frame
from l2cap_tester.grpc_control_plane import encode_frame
from l2cap_tester.main_loop import MainLoop
from l2cap_tester.matchers import MgmtMatchers
from l2cap_tester.truth import assertThat

RPC_TIMEOUT = timedelta(seconds=5)
SUPPORTED_OPS = (MgmtOp.READ_INDEX_LIST, MgmtOp.READ_INFO, MgmtOp.SET_POWERED)


class MgmtFacadeServicer(object):
    """Answers every supported command with its own parameters"""

    def __init__(self):
        self.commands = Queue()
        self.events = Queue()

    def Send(self, request, context):
        code, index, params = decode_frame(request)
        self.commands.put((code, index, params))
        if code not in SUPPORTED_OPS:
            return encode_frame(MgmtEvent.COMMAND_STATUS, index, struct.pack('<HB', code, MgmtStatus.NOT_SUPPORTED))
        return encode_frame(MgmtEvent.COMMAND_COMPLETE, index, struct.pack('<HB', code, MgmtStatus.SUCCESS) + params)

    def FetchEvents(self, request, context):
        while context.is_active():
            try:
                frame = self.events.get(timeout=0.05)
            except Empty:
                continue
            logging.debug("streaming event frame %s" % frame.hex())
            yield frame


class MgmtFacadeServer(object):

    def __init__(self):
        self.servicer = MgmtFacadeServicer()
        self._server = grpc.server(ThreadPoolExecutor(max_workers=4))
        self._server.add_generic_rpc_handlers((grpc.method_handlers_generic_handler(
            MGMT_SERVICE, {
                'Send': grpc.unary_unary_rpc_method_handler(self.servicer.Send),
                'FetchEvents': grpc.unary_stream_rpc_method_handler(self.servicer.FetchEvents),
            }),))
        self.port = self._server.add_insecure_port('localhost:0')

    def __enter__(self):
        self._server.start()
        return self

    def __exit__(self, type, value, traceback):
        self._server.stop(None)
        return traceback is None


def test_frame_codec_core():
    frame = encode_frame(MgmtOp.SET_POWERED, 0x0001, b'\x01')
    assertThat(frame).isEqualTo(bytes([0x05, 0x00, 0x01, 0x00, 0x01, 0x00, 0x01]))
    assertThat(decode_frame(frame)).isEqualTo((MgmtOp.SET_POWERED, 0x0001, b'\x01'))
    with asserts.assert_raises(ValueError):
        decode_frame(frame[:-1])
    with asserts.assert_raises(ValueError):
        decode_frame(b'\x05\x00')


def test_decode_command_reply_core():
    complete = encode_frame(MgmtEvent.COMMAND_COMPLETE, 0,
                            struct.pack('<HB', MgmtOp.SET_POWERED, MgmtStatus.SUCCESS) + b'\x01\x00\x00\x00')
    assertThat(decode_command_reply(complete)).isEqualTo((MgmtOp.SET_POWERED, MgmtStatus.SUCCESS,
                                                          b'\x01\x00\x00\x00'))
    status = encode_frame(MgmtEvent.COMMAND_STATUS, 0, struct.pack('<HB', MgmtOp.SET_LE, MgmtStatus.NOT_SUPPORTED))
    assertThat(decode_command_reply(status)).isEqualTo((MgmtOp.SET_LE, MgmtStatus.NOT_SUPPORTED, b''))
    with asserts.assert_raises(ValueError):
        decode_command_reply(encode_frame(MgmtEvent.INDEX_ADDED, 0))


def test_command_reply_over_grpc_core():
    replies = []
    loop = MainLoop()
    with MgmtFacadeServer() as server:
        control_plane = GrpcControlPlane('localhost:%d' % server.port, loop)
        try:
            control_plane.send(MgmtOp.READ_INFO, 0x0002, b'\xab', lambda status, params: replies.append(
                (status, params)))
            control_plane.send(MgmtOp.SET_LE, 0x0002, b'\x01', lambda status, params: replies.append(
                (status, params)))
            assertThat(loop.run_until(lambda: len(replies) == 2, RPC_TIMEOUT)).isTrue()
        finally:
            control_plane.close()
            loop.close()
        assertThat(server.servicer.commands.get_nowait()[0]).isIn([MgmtOp.READ_INFO, MgmtOp.SET_LE])
    assertThat((MgmtStatus.SUCCESS, b'\xab') in replies).isTrue()
    assertThat((MgmtStatus.NOT_SUPPORTED, b'') in replies).isTrue()


def test_events_over_grpc_core():
    added = []
    loop = MainLoop()
    with MgmtFacadeServer() as server:
        control_plane = GrpcControlPlane('localhost:%d' % server.port, loop)
        try:
            control_plane.register(MgmtEvent.INDEX_ADDED, MGMT_INDEX_NONE, lambda index, params: added.append(index))
            control_plane.register(MgmtEvent.INDEX_REMOVED, 0x0003, lambda index, params: asserts.fail(
                "Index 3 was never added"))
            server.servicer.events.put(encode_frame(MgmtEvent.INDEX_REMOVED, 0x0004))
            server.servicer.events.put(encode_frame(MgmtEvent.INDEX_ADDED, 0x0004))
            assertThat(loop.run_until(lambda: added, RPC_TIMEOUT)).isTrue()
        finally:
            control_plane.close()
            loop.close()
    assertThat(added).isEqualTo([0x0004])


def test_event_stream_over_grpc_core():
    loop = MainLoop()
    with MgmtFacadeServer() as server:
        control_plane = GrpcControlPlane('localhost:%d' % server.port, loop)
        try:
            server.servicer.events.put(encode_frame(MgmtEvent.INDEX_REMOVED, 0x0004))
            server.servicer.events.put(encode_frame(MgmtEvent.INDEX_ADDED, 0x0005))
            assertThat(control_plane.get_event_stream()).emits(MgmtMatchers.IndexAdded(0x0005))
            assertThat(control_plane.get_event_stream()).emitsNone(
                MgmtMatchers.IndexRemoved(0x0003), timeout=timedelta(milliseconds=200))
        finally:
            control_plane.close()
            loop.close()


def test_reply_without_callback_core():
    loop = MainLoop()
    with MgmtFacadeServer() as server:
        control_plane = GrpcControlPlane('localhost:%d' % server.port, loop)
        try:
            control_plane.reply(MgmtOp.SET_POWERED, 0x0000, b'\x00')
            code, index, params = server.servicer.commands.get(timeout=RPC_TIMEOUT.total_seconds())
            # Let the completion reach the scheduler before closing
            loop.run_until(lambda: False, timedelta(milliseconds=100))
        finally:
            control_plane.close()
            loop.close()
    assertThat((code, index, params)).isEqualTo((MgmtOp.SET_POWERED, 0x0000, b'\x00'))
