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

from datetime import timedelta
import errno
import logging
import select
import socket
import struct
from threading import Timer
import time

from mobly import asserts
from mobly import signals

from l2cap_tester import lifecycle
from l2cap_tester import l2cap_test_cases
from l2cap_tester import registry
from l2cap_tester.capture import HciCaptures
from l2cap_tester.capture import L2capCaptures
from l2cap_tester.channel_socket import TxTimestamp
from l2cap_tester.channel_socket import bdaddr_from_bytes
from l2cap_tester.channel_socket import bdaddr_to_bytes
from l2cap_tester.control_plane import MGMT_INDEX_NONE
from l2cap_tester.control_plane import MgmtEvent
from l2cap_tester.control_plane import MgmtEventDispatcher
from l2cap_tester.control_plane import parse_controller_info
from l2cap_tester.event_stream import EventStream
from l2cap_tester.fake_environment import FakeEnvironment
from l2cap_tester.main_loop import IoCondition
from l2cap_tester.main_loop import MainLoop
from l2cap_tester.matchers import ADVERTISING_TYPE_DIRECT_IND_HIGH_DUTY
from l2cap_tester.matchers import HciMatchers
from l2cap_tester.matchers import L2capMatchers
from l2cap_tester.simulated_peer import HciCommand
from l2cap_tester.simulated_peer import HciOpcode
from l2cap_tester.simulated_peer import L2capCommandCode
from l2cap_tester.simulated_peer import Subscription
from l2cap_tester.timestamping import TimestampKind
from l2cap_tester.timestamping import TimestampVerifier
from l2cap_tester.timestamping import TimestampingFlags
from l2cap_tester.transfer import TransferVerifier
from l2cap_tester.transfer import chunks
from l2cap_tester.transfer import required_credits
from l2cap_tester.transfer import write_all
from l2cap_tester.truth import assertThat


class FetchFrames:

    def __init__(self, frames, delay_ms):
        self.frames_ = frames
        self.sleep_time_ = (delay_ms * 1.0) / 1000
        self.done_ = False

    def __iter__(self):
        for frame in self.frames_:
            time.sleep(self.sleep_time_)
            if self.done_:
                return
            logging.debug("yielding %s" % frame.hex())
            yield frame

    def done(self):
        return self.done_

    def cancel(self):
        logging.debug("cancel")
        self.done_ = True
        return None

    def cancelled(self):
        return self.done_


class PollableHandle(object):
    """A scheduler handle without a descriptor, ready when told so"""

    def __init__(self):
        self.ready = IoCondition.NONE

    def fileno(self):
        return -1

    def poll(self, condition):
        return self.ready & condition


class CountingContext(object):

    def __init__(self):
        self.step = 0
        self.passed = False

    def test_passed(self):
        self.passed = True


class ShortWriteSocket(object):

    def __init__(self, max_write):
        self.max_write = max_write
        self.writes = []

    def send(self, data):
        written = bytes(data[:self.max_write])
        self.writes.append(written)
        return len(written)


class CountingSocketHandle(object):
    """A scheduler handle over a real socket that counts readiness checks"""

    def __init__(self, sock):
        self.sock = sock
        self.polls = 0

    def fileno(self):
        return self.sock.fileno()

    def poll(self, condition):
        self.polls += 1
        poller = select.poll()
        poller.register(self.sock.fileno(), int(condition))
        ready = IoCondition.NONE
        for _, revents in poller.poll(0):
            ready |= IoCondition(revents) & condition
        return ready


def test_main_loop_idle_order_core():
    loop = MainLoop()
    calls = []
    loop.idle_add(calls.append, 1)
    loop.idle_add(calls.append, 2)
    loop.idle_add(calls.append, 3)
    loop.run_until(lambda: len(calls) == 3, timedelta(seconds=1))
    loop.close()
    assertThat(calls).isEqualTo([1, 2, 3])


def test_main_loop_idle_rearms_on_true_core():
    loop = MainLoop()
    calls = []

    def count():
        calls.append(len(calls))
        return len(calls) < 3

    loop.idle_add(count)
    loop.run_until(lambda: False, timedelta(milliseconds=100))
    loop.close()
    assertThat(len(calls)).isEqualTo(3)


def test_main_loop_remove_idle_core():
    loop = MainLoop()
    calls = []
    source_id = loop.idle_add(calls.append, 1)
    assertThat(loop.remove(source_id)).isTrue()
    assertThat(loop.remove(source_id)).isFalse()
    loop.run_until(lambda: False, timedelta(milliseconds=50))
    loop.close()
    assertThat(calls).isEqualTo([])


def test_main_loop_timeout_fires_core():
    loop = MainLoop()
    fired = []
    loop.timeout_add(timedelta(milliseconds=20), lambda: fired.append(True))
    assertThat(loop.run_until(lambda: fired, timedelta(seconds=2))).isTrue()
    assertThat(loop.has_sources()).isFalse()
    loop.close()


def test_main_loop_watch_on_pollable_handle_core():
    loop = MainLoop()
    handle = PollableHandle()
    seen = []

    def become_readable():
        handle.ready = IoCondition.IN | IoCondition.OUT
        return False

    def on_readable(ready_handle, condition):
        seen.append((ready_handle, condition))
        return False

    loop.add_watch(handle, IoCondition.IN, on_readable)
    loop.idle_add(become_readable)
    assertThat(loop.run_until(lambda: seen, timedelta(seconds=1))).isTrue()
    loop.close()
    assertThat(seen[0][0]).isEqualTo(handle)
    assertThat(seen[0][1]).isEqualTo(IoCondition.IN)


def test_main_loop_call_soon_threadsafe_wakes_core():
    loop = MainLoop()
    calls = []
    timer = Timer(0.05, loop.call_soon_threadsafe, args=(calls.append, "woken"))
    timer.start()
    try:
        assertThat(loop.run_until(lambda: calls, timedelta(seconds=2))).isTrue()
    finally:
        timer.cancel()
        loop.close()
    assertThat(calls).isEqualTo(["woken"])


def test_main_loop_run_until_times_out_core():
    loop = MainLoop()
    assertThat(loop.run_until(lambda: False, timedelta(milliseconds=50))).isFalse()
    loop.close()


def test_main_loop_hangup_watch_sleeps_while_readable_core():
    loop = MainLoop()
    a, b = socket.socketpair()
    handle = CountingSocketHandle(a)
    hangups = []
    try:
        b.send(b'\x01')
        loop.add_watch(handle, IoCondition.HUP, lambda h, condition: hangups.append(condition))
        assertThat(loop.run_until(lambda: hangups, timedelta(milliseconds=200))).isFalse()
        assertThat(handle.polls < 10).isTrue()

        b.close()
        assertThat(loop.run_until(lambda: hangups, timedelta(seconds=1))).isTrue()
        assertThat(hangups[0]).isEqualTo(IoCondition.HUP)
    finally:
        loop.close()
        a.close()
        b.close()


def test_main_loop_drops_callbacks_after_close_core():
    loop = MainLoop()
    calls = []
    loop.close()
    loop.call_soon_threadsafe(calls.append, "late")
    assertThat(loop.has_sources()).isFalse()
    assertThat(calls).isEqualTo([])


def test_required_credits_core():
    assertThat(required_credits(32768, 672, 251)).isEqualTo(147)
    assertThat(required_credits(8, 672, 251)).isEqualTo(3)
    with asserts.assert_raises(ValueError):
        required_credits(8, 0, 251)


def test_chunks_core():
    assertThat(chunks(b"abcdefg", 3)).isEqualTo([b"abc", b"def", b"g"])
    assertThat(chunks(b"", 3)).isEqualTo([])


def test_write_all_retries_short_writes_core():
    sock = ShortWriteSocket(max_write=3)
    written = write_all(sock, bytes(range(10)), 4)
    assertThat(written).isEqualTo(10)
    assertThat(b"".join(sock.writes)).isEqualTo(bytes(range(10)))
    # The remainder of a chunk is offered before the next chunk
    assertThat(sock.writes[1]).isEqualTo(bytes([3]))


def test_transfer_verifier_reassembles_core():
    context = CountingContext()
    verifier = TransferVerifier(context, b"12345678")
    context.step = 2
    verifier.received(b"123")
    verifier.received(b"45678")
    assertThat(context.step).isEqualTo(1)
    assertThat(context.passed).isFalse()
    verifier.received(b"12345678")
    assertThat(context.step).isEqualTo(0)
    assertThat(context.passed).isTrue()
    assertThat(verifier.units_received).isEqualTo(2)
    assertThat(verifier.fragments_received).isEqualTo(3)


def test_transfer_verifier_mismatch_fails_core():
    context = CountingContext()
    context.step = 1
    verifier = TransferVerifier(context, b"12345678")
    with asserts.assert_raises(signals.TestFailure):
        verifier.received(b"12345679")


def test_timestamp_verifier_message_keys_core():
    flags = TimestampingFlags.OPT_ID | TimestampingFlags.TX_SOFTWARE | TimestampingFlags.TX_COMPLETION
    verifier = TimestampVerifier(flags, stream=False)
    owed = sum(verifier.expect(8) for _ in range(3))
    assertThat(owed).isEqualTo(6)
    for key in range(3):
        verifier.received(TxTimestamp(kind=TimestampKind.SND, id=key))
    assertThat(verifier.outstanding).isEqualTo(3)
    for key in range(3):
        verifier.received(TxTimestamp(kind=TimestampKind.COMPLETION, id=key))
    assertThat(verifier.outstanding).isEqualTo(0)


def test_timestamp_verifier_stream_keys_core():
    flags = TimestampingFlags.OPT_ID | TimestampingFlags.TX_SOFTWARE
    verifier = TimestampVerifier(flags, stream=True)
    for _ in range(3):
        verifier.expect(8)
    for key in (7, 15, 23):
        verifier.received(TxTimestamp(kind=TimestampKind.SND, id=key))
    assertThat(verifier.received_count).isEqualTo(3)


def test_timestamp_verifier_order_enforced_core():
    flags = (TimestampingFlags.OPT_ID | TimestampingFlags.TX_SCHED | TimestampingFlags.TX_SOFTWARE
             | TimestampingFlags.TX_COMPLETION)
    verifier = TimestampVerifier(flags, stream=False)
    verifier.expect(8)
    with asserts.assert_raises(signals.TestFailure):
        verifier.received(TxTimestamp(kind=TimestampKind.SND, id=0))


def test_timestamp_verifier_unknown_id_core():
    verifier = TimestampVerifier(TimestampingFlags.OPT_ID | TimestampingFlags.TX_SOFTWARE, stream=False)
    verifier.expect(8)
    with asserts.assert_raises(signals.TestFailure):
        verifier.received(TxTimestamp(kind=TimestampKind.SND, id=5))


def test_timestamp_verifier_without_id_matches_kind_core():
    verifier = TimestampVerifier(TimestampingFlags.TX_SOFTWARE | TimestampingFlags.TX_COMPLETION, stream=False)
    verifier.expect(8)
    verifier.expect(8)
    verifier.received(TxTimestamp(kind=TimestampKind.SND, id=0))
    verifier.received(TxTimestamp(kind=TimestampKind.SND, id=0))
    assertThat(verifier.received(TxTimestamp(kind=TimestampKind.COMPLETION, id=0))).isEqualTo(1)


def test_bdaddr_conversion_core():
    assertThat(bdaddr_to_bytes("00:AA:01:02:03:04")).isEqualTo(bytes([0x04, 0x03, 0x02, 0x01, 0xAA, 0x00]))
    assertThat(bdaddr_from_bytes(bytes([0x04, 0x03, 0x02, 0x01, 0xAA, 0x00]))).isEqualTo("00:AA:01:02:03:04")


def test_parse_controller_info_core():
    params = bdaddr_to_bytes("00:AA:01:00:00:01") + struct.pack('<BH', 0x09, 0x05F1) + bytes(8)
    info = parse_controller_info(params)
    assertThat(info.address).isEqualTo("00:AA:01:00:00:01")
    assertThat(info.version).isEqualTo(0x09)
    assertThat(info.manufacturer).isEqualTo(0x05F1)
    with asserts.assert_raises(ValueError):
        parse_controller_info(b"\x00")


def test_signaling_pdu_extraction_core():
    pdu = L2capMatchers.ExtractSignalingPdu(bytes([0x01, 0x07, 0x02, 0x00, 0x00, 0x00]))
    assertThat(pdu.code).isEqualTo(L2capCommandCode.COMMAND_REJECT)
    assertThat(pdu.identifier).isEqualTo(7)
    assertThat(pdu.payload).isEqualTo(b"\x00\x00")
    assertThat(L2capMatchers.ExtractSignalingPdu(bytes([0x01, 0x07, 0x04, 0x00, 0x00]))).isNone()
    assertThat(L2capMatchers.SignalingPdu(L2capCommandCode.COMMAND_REJECT)(b"\x01\x01\x00\x00")).isTrue()
    assertThat(L2capMatchers.SignalingPdu(L2capCommandCode.CONNECTION_REQUEST)(b"\x01\x01\x00\x00")).isFalse()


def test_scan_enable_matchers_core():
    enable = HciCommand(HciOpcode.LE_SET_SCAN_ENABLE, b"\x01\x00")
    disable = HciCommand(HciOpcode.LE_SET_SCAN_ENABLE, b"\x00\x00")
    assertThat(HciMatchers.LeSetScanEnable(True)(enable)).isTrue()
    assertThat(HciMatchers.LeSetScanEnable(True)(disable)).isFalse()
    assertThat(HciMatchers.LeSetScanEnable()(disable)).isTrue()
    assertThat(HciMatchers.ExtractLeSetScanEnable(HciCommand(HciOpcode.LE_CREATE_CONNECTION, b""))).isNone()
    assertThat(HciMatchers.LeCreateConnectionCancel()(HciCommand(HciOpcode.LE_CREATE_CONNECTION_CANCEL,
                                                                 b""))).isTrue()


def test_advertising_parameters_capture_core():
    params = struct.pack('<HHBBB6sBB', 0x0800, 0x0800, ADVERTISING_TYPE_DIRECT_IND_HIGH_DUTY, 0x00, 0x00,
                         bdaddr_to_bytes("00:AA:01:01:00:00"), 0x07, 0x00)
    capture = HciCaptures.LeSetAdvertisingParameters()
    assertThat(capture(HciCommand(HciOpcode.LE_SET_SCAN_ENABLE, b"\x01\x00"))).isFalse()
    assertThat(capture(HciCommand(HciOpcode.LE_SET_ADVERTISING_PARAMETERS, params))).isTrue()
    assertThat(capture.get().advertising_type).isEqualTo(ADVERTISING_TYPE_DIRECT_IND_HIGH_DUTY)
    assertThat(capture.get().direct_address).isEqualTo("00:AA:01:01:00:00")


def test_connection_response_capture_core():
    capture = L2capCaptures.ConnectionResponse()
    assertThat(capture(L2capCommandCode.CONNECTION_REQUEST, bytes(8))).isFalse()
    assertThat(capture(L2capCommandCode.CONNECTION_RESPONSE, struct.pack('<HHHH', 0x40, 0x41, 3, 0))).isTrue()
    response = capture.get()
    assertThat(response.dcid).isEqualTo(0x40)
    assertThat(response.scid).isEqualTo(0x41)
    assertThat(response.result).isEqualTo(3)


def test_assertThat_boolean_core():
    assertThat(True).isTrue()
    assertThat(False).isFalse()
    with asserts.assert_raises(signals.TestFailure):
        assertThat(False).isTrue()


def test_assertThat_object_core():
    assertThat(1).isEqualTo(1)
    assertThat(1).isNotEqualTo(2)
    assertThat(None).isNone()
    assertThat(3).isIn([1, 2, 3])
    assertThat(3).isAtLeast(3)
    with asserts.assert_raises(signals.TestFailure):
        assertThat(None).isNotNone()
    with asserts.assert_raises(signals.TestFailure):
        assertThat(2).isAtLeast(3)


def test_assertThat_bytes_reports_offset_core():
    try:
        assertThat(b"\x01\x02\x03").isEqualTo(b"\x01\x05\x03")
    except signals.TestFailure as exp:
        assertThat("offset 1" in str(exp.details)).isTrue()
    else:
        asserts.fail("Payload mismatch was not reported")
    with asserts.assert_raises(signals.TestFailure):
        assertThat(b"\x01").isEqualTo(b"\x01\x02")


def test_assertThat_eventStream_emits_core():
    with EventStream(FetchFrames(frames=[b"\x01", b"\x02", b"\x03"], delay_ms=20)) as event_stream:
        assertThat(event_stream).emits(lambda frame: frame == b"\x02")


def test_assertThat_eventStream_emits_fails_core():
    with EventStream(FetchFrames(frames=[b"\x01", b"\x02"], delay_ms=20)) as event_stream:
        with asserts.assert_raises(signals.TestFailure):
            assertThat(event_stream).emits(lambda frame: frame == b"\x04", timeout=timedelta(milliseconds=300))


def test_assertThat_eventStream_emitsNone_core():
    with EventStream(FetchFrames(frames=[], delay_ms=0)) as event_stream:
        assertThat(event_stream).emitsNone(timeout=timedelta(milliseconds=200))


def test_assertThat_eventStream_emitsNone_matching_core():
    with EventStream(FetchFrames(frames=[b"\x01", b"\x02"], delay_ms=20)) as event_stream:
        assertThat(event_stream).emitsNone(lambda frame: frame == b"\x03", timeout=timedelta(milliseconds=300))


def test_assertThat_eventStream_emitsNone_matching_fails_core():
    with EventStream(FetchFrames(frames=[b"\x01", b"\x02"], delay_ms=20)) as event_stream:
        with asserts.assert_raises(signals.TestFailure):
            assertThat(event_stream).emitsNone(lambda frame: frame == b"\x02", timeout=timedelta(milliseconds=300))


def test_event_stream_callbacks_core():
    received = []
    with EventStream(FetchFrames(frames=[b"\x01", b"\x02"], delay_ms=20)) as event_stream:
        event_stream.register_callback(received.append, lambda frame: frame == b"\x02")
        assertThat(event_stream).emits(lambda frame: frame == b"\x02")
    assertThat(received).isEqualTo([b"\x02"])


def test_subscription_cancels_once_core():
    cancelled = []
    subscription = Subscription(lambda: cancelled.append(True))
    assertThat(subscription.active).isTrue()
    subscription.cancel()
    subscription.close()
    assertThat(subscription.active).isFalse()
    assertThat(cancelled).isEqualTo([True])


def test_mgmt_dispatcher_index_matching_core():
    dispatcher = MgmtEventDispatcher()
    calls = []
    dispatcher.register(MgmtEvent.INDEX_ADDED, MGMT_INDEX_NONE, lambda index, params: calls.append(("any", index)))
    dispatcher.register(MgmtEvent.INDEX_ADDED, 1, lambda index, params: calls.append(("one", index)))
    dispatcher.register(MgmtEvent.INDEX_REMOVED, 1, lambda index, params: calls.append(("removed", index)))
    dispatcher.dispatch(MgmtEvent.INDEX_ADDED, 2, b"")
    dispatcher.dispatch(MgmtEvent.INDEX_ADDED, 1, b"")
    assertThat(calls).isEqualTo([("any", 2), ("any", 1), ("one", 1)])

    del calls[:]
    dispatcher.unregister_index(1)
    dispatcher.dispatch(MgmtEvent.INDEX_ADDED, 1, b"")
    dispatcher.dispatch(MgmtEvent.INDEX_REMOVED, 1, b"")
    assertThat(calls).isEqualTo([("any", 1)])


def test_mgmt_dispatcher_unregister_core():
    dispatcher = MgmtEventDispatcher()
    calls = []
    registration_id = dispatcher.register(MgmtEvent.INDEX_ADDED, 0, lambda index, params: calls.append(index))
    dispatcher.unregister(registration_id)
    dispatcher.dispatch(MgmtEvent.INDEX_ADDED, 0, b"")
    assertThat(calls).isEqualTo([])
    with asserts.assert_raises(ValueError):
        dispatcher.register(MgmtEvent.INDEX_ADDED, 0, None)


def test_registry_order_and_prefix_core():
    cases = registry.TestRegistry()
    l2cap_test_cases.register_all(cases)
    assertThat(len(cases)).isAtLeast(60)
    assertThat(cases.cases()[0].name).isEqualTo("Basic L2CAP Socket - Success")
    le_clients = cases.cases("L2CAP LE Client")
    assertThat(len(le_clients)).isAtLeast(15)
    for case in le_clients:
        assertThat(case.name.startswith("L2CAP LE Client")).isTrue()
    assertThat("L2CAP LE EATT Server - Reject" in cases).isTrue()


def test_registry_rejects_duplicates_core():
    cases = registry.TestRegistry()
    cases.add_bredr("Duplicate", None, None, None)
    with asserts.assert_raises(ValueError):
        cases.add_le("Duplicate", None, None, None)
    with asserts.assert_raises(ValueError):
        cases.add("", None)


def test_exit_code_ignores_aborted_core():
    Outcome = lifecycle.Outcome
    assertThat(registry.exit_code([("a", Outcome.passed()), ("b", Outcome.aborted("no ECRED"))])).isEqualTo(0)
    assertThat(registry.exit_code([("a", Outcome.passed()), ("b", Outcome.failed("boom"))])).isEqualTo(1)
    assertThat(registry.exit_code([])).isEqualTo(0)


def test_summarize_counts_core():
    Outcome = lifecycle.Outcome
    counts = registry.summarize([("a", Outcome.passed()), ("b", Outcome.failed("boom")), ("c",
                                                                                          Outcome.aborted("skip"))])
    assertThat(counts[lifecycle.OutcomeKind.PASSED]).isEqualTo(1)
    assertThat(counts[lifecycle.OutcomeKind.FAILED]).isEqualTo(1)
    assertThat(counts[lifecycle.OutcomeKind.ABORTED]).isEqualTo(1)
    assertThat(str(Outcome.failed("boom"))).isEqualTo("Failed (boom)")


def test_outcome_of_exception_core():
    kinds = lifecycle.OutcomeKind
    assertThat(lifecycle.outcome_of_exception(signals.TestPass("ok")).kind).isEqualTo(kinds.PASSED)
    assertThat(lifecycle.outcome_of_exception(signals.TestSkip("skip")).kind).isEqualTo(kinds.ABORTED)
    assertThat(lifecycle.outcome_of_exception(signals.TestAbortClass("abort")).kind).isEqualTo(kinds.ABORTED)
    assertThat(lifecycle.outcome_of_exception(signals.TestFailure("fail")).kind).isEqualTo(kinds.FAILED)
    outcome = lifecycle.outcome_of_exception(OSError(errno.EIO, "I/O error"))
    assertThat(outcome.kind).isEqualTo(kinds.FAILED)
    assertThat(outcome.reason.startswith("OSError")).isTrue()


def _run_phases(**phases):
    with FakeEnvironment() as environment:
        controller = lifecycle.LifecycleController(environment, phase_timeout=timedelta(seconds=1))
        return controller.run(lifecycle.TestCase(name="phases", **phases))


def test_lifecycle_pass_core():
    outcome = _run_phases(body=lambda context: context.test_passed())
    assertThat(outcome.kind).isEqualTo(lifecycle.OutcomeKind.PASSED)


def test_lifecycle_first_verdict_wins_core():

    def body(context):
        context.test_passed()
        context.test_failed("too late")

    outcome = _run_phases(body=body)
    assertThat(outcome.kind).isEqualTo(lifecycle.OutcomeKind.PASSED)


def test_lifecycle_setup_failure_skips_body_core():
    ran = []

    def teardown(context):
        ran.append("teardown")
        context.teardown_complete()

    outcome = _run_phases(
        setup=lambda context: context.setup_failed("no power"),
        body=lambda context: ran.append("body"),
        teardown=teardown)
    assertThat(outcome.kind).isEqualTo(lifecycle.OutcomeKind.FAILED)
    assertThat(outcome.reason).isEqualTo("no power")
    assertThat(ran).isEqualTo(["teardown"])


def test_lifecycle_verdict_from_callback_core():

    def body(context):
        context.idle_add(lambda: context.test_passed())

    outcome = _run_phases(body=body)
    assertThat(outcome.kind).isEqualTo(lifecycle.OutcomeKind.PASSED)


def test_lifecycle_timeout_core():
    outcome = _run_phases(body=lambda context: None, timeout=timedelta(milliseconds=200))
    assertThat(outcome.kind).isEqualTo(lifecycle.OutcomeKind.FAILED)
    assertThat(outcome.reason).isEqualTo("Test timed out")


def test_lifecycle_skip_aborts_core():

    def body(context):
        asserts.skip("Not supported by this stack")

    outcome = _run_phases(body=body)
    assertThat(outcome.kind).isEqualTo(lifecycle.OutcomeKind.ABORTED)


def test_lifecycle_exception_fails_core():

    def body(context):
        raise ValueError("unexpected")

    outcome = _run_phases(body=body)
    assertThat(outcome.kind).isEqualTo(lifecycle.OutcomeKind.FAILED)
    assertThat(outcome.reason).isEqualTo("ValueError: unexpected")


def test_lifecycle_rejects_nameless_case_core():
    with FakeEnvironment() as environment:
        controller = lifecycle.LifecycleController(environment)
        outcome = controller.run(lifecycle.TestCase(name=""))
    assertThat(outcome.kind).isEqualTo(lifecycle.OutcomeKind.FAILED)
    assertThat(controller.context).isNone()
