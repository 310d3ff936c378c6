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
from datetime import datetime, timedelta
import enum
import logging
from typing import Callable, NamedTuple, Optional

from grpc import RpcError
from mobly import signals

from l2cap_tester.closable import Closable
from l2cap_tester.closable import safeClose
from l2cap_tester.control_plane import MGMT_INDEX_NONE
from l2cap_tester.main_loop import MainLoop
from l2cap_tester.main_loop import static_remaining_time_delta
from l2cap_tester.parameters import ConnectionParameters
from l2cap_tester.parameters import DEFAULT_PARAMETERS
from l2cap_tester.simulated_peer import HciEmulatorType

DEFAULT_CASE_TIMEOUT = timedelta(seconds=2)
DEFAULT_PHASE_TIMEOUT = timedelta(seconds=10)


class LifecycleState(enum.Enum):
    NOT_STARTED = 0
    PRE_SETUP = 1
    SETUP = 2
    RUNNING = 3
    TEARDOWN = 4
    POST_TEARDOWN = 5
    DONE = 6


class OutcomeKind(enum.Enum):
    PASSED = "Passed"
    FAILED = "Failed"
    ABORTED = "Not Run"


class Outcome(namedtuple('Outcome', ['kind', 'reason'])):

    @staticmethod
    def passed():
        return Outcome(OutcomeKind.PASSED, None)

    @staticmethod
    def failed(reason):
        return Outcome(OutcomeKind.FAILED, reason)

    @staticmethod
    def aborted(reason):
        return Outcome(OutcomeKind.ABORTED, reason)

    def __str__(self):
        if self.reason:
            return "%s (%s)" % (self.kind.value, self.reason)
        return self.kind.value


class TestCase(NamedTuple):
    name: str
    parameters: Optional[ConnectionParameters] = None
    emulator_type: HciEmulatorType = HciEmulatorType.BREDR
    pre_setup: Optional[Callable] = None
    setup: Optional[Callable] = None
    body: Optional[Callable] = None
    teardown: Optional[Callable] = None
    post_teardown: Optional[Callable] = None
    timeout: timedelta = DEFAULT_CASE_TIMEOUT


class TestContext(Closable):
    """
    Mutable state of the running case, handed to every phase function and
    collaborator callback. Phases report progress through the completion
    methods; completions addressed to a phase that is not running are
    ignored.
    """

    def __init__(self, case, environment, loop):
        if not case.name:
            raise ValueError("Test case needs a name")
        self.case = case
        self.name = case.name
        self.parameters = case.parameters if case.parameters is not None else DEFAULT_PARAMETERS
        self.environment = environment
        self.loop = loop
        self.emulator_type = case.emulator_type

        self.control_plane = None
        self.mgmt_index = MGMT_INDEX_NONE
        self.peer = None

        self.socket = None
        self.second_socket = None
        self.handle = None
        self.scid = None
        self.dcid = None
        self.options = None
        self.step = 0
        self.host_disconnected = False
        self.transfer = None
        self.tx_timestamps = None
        self.scenario = None

        self.state = LifecycleState.NOT_STARTED
        self.outcome = None
        self.phase_done = False
        self.phase_failed = False
        self._sockets = []
        self._subscriptions = []

    @property
    def is_le(self):
        return self.emulator_type == HciEmulatorType.LE

    def add_watch(self, handle, condition, callback):
        return self.loop.add_watch(handle, condition, callback)

    def idle_add(self, callback, *args):
        return self.loop.idle_add(callback, *args)

    def timeout_add(self, interval, callback, *args):
        return self.loop.timeout_add(interval, callback, *args)

    def remove_source(self, source_id):
        return self.loop.remove(source_id)

    def add_subscription(self, subscription):
        self._subscriptions.append(subscription)
        return subscription

    def track_socket(self, sock):
        self._sockets.append(sock)
        return sock

    def close_socket(self, sock):
        if sock in self._sockets:
            self._sockets.remove(sock)
        safeClose(sock)

    def close_sockets(self):
        while self._sockets:
            safeClose(self._sockets.pop())
        self.socket = None
        self.second_socket = None

    def enter_phase(self, state):
        self.state = state
        self.phase_done = False
        self.phase_failed = False

    def _finish_phase(self, state, failure=None):
        if self.state != state:
            logging.debug("%s: ignoring %s completion during %s" % (self.name, state.name, self.state.name))
            return
        if self.phase_done:
            logging.debug("%s: %s already completed" % (self.name, state.name))
            return
        self.phase_done = True
        if failure is not None:
            self.phase_failed = True
            if self.outcome is None:
                self.outcome = failure

    def _set_outcome(self, outcome):
        if self.state != LifecycleState.RUNNING:
            logging.debug("%s: ignoring verdict %s during %s" % (self.name, outcome, self.state.name))
            return
        if self.outcome is not None:
            logging.debug("%s: ignoring verdict %s, already %s" % (self.name, outcome, self.outcome))
            return
        self.outcome = outcome
        self.phase_done = True

    def pre_setup_complete(self):
        self._finish_phase(LifecycleState.PRE_SETUP)

    def pre_setup_failed(self, reason="Pre-setup failed"):
        logging.warning("%s: %s" % (self.name, reason))
        self._finish_phase(LifecycleState.PRE_SETUP, Outcome.failed(reason))

    def setup_complete(self):
        self._finish_phase(LifecycleState.SETUP)

    def setup_failed(self, reason="Setup failed"):
        logging.warning("%s: %s" % (self.name, reason))
        self._finish_phase(LifecycleState.SETUP, Outcome.failed(reason))

    def test_passed(self):
        self._set_outcome(Outcome.passed())

    def test_failed(self, reason="Test failed"):
        self._set_outcome(Outcome.failed(reason))

    def test_abort(self, reason="Test aborted"):
        self._set_outcome(Outcome.aborted(reason))

    def teardown_complete(self):
        self._finish_phase(LifecycleState.TEARDOWN)

    def post_teardown_complete(self):
        self._finish_phase(LifecycleState.POST_TEARDOWN)

    def interrupt(self, outcome):
        """Apply the verdict carried by an exception escaping the current phase"""
        if self.state in (LifecycleState.PRE_SETUP, LifecycleState.SETUP):
            self._finish_phase(self.state, None if outcome.kind == OutcomeKind.PASSED else outcome)
        elif self.state == LifecycleState.RUNNING:
            self._set_outcome(outcome)
        else:
            logging.warning("%s: %s interrupted: %s" % (self.name, self.state.name, outcome))
            self._finish_phase(self.state)

    def close(self):
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions = []
        self.close_sockets()
        safeClose(self.peer)
        self.peer = None
        safeClose(self.control_plane)
        self.control_plane = None
        self.loop.close()


def default_teardown(context):
    context.close_sockets()
    context.teardown_complete()


def outcome_of_exception(exp):
    if isinstance(exp, signals.TestPass):
        return Outcome.passed()
    if isinstance(exp, (signals.TestSkip, signals.TestAbortSignal)):
        return Outcome.aborted(str(exp.details))
    if isinstance(exp, signals.TestSignal):
        return Outcome.failed(str(exp.details))
    if isinstance(exp, RpcError):
        return Outcome.failed("RpcError during test\n\nRpcError:\n\n%s" % str(exp))
    logging.exception("Unexpected exception")
    return Outcome.failed("%s: %s" % (type(exp).__name__, exp))


class LifecycleController(object):
    """
    Drives one case at a time through
    PRE_SETUP, SETUP, RUNNING, TEARDOWN, POST_TEARDOWN.

    Pre-setup or setup failure skips straight to teardown; teardown and
    post-teardown always run. RUNNING is bounded by the case timeout, the
    other phases by the phase timeout.
    """

    def __init__(self, environment, phase_timeout=DEFAULT_PHASE_TIMEOUT):
        self._environment = environment
        self._phase_timeout = phase_timeout
        self._context = None

    @property
    def context(self):
        return self._context

    def run(self, case):
        if self._context is not None:
            raise RuntimeError("Cannot run %s while %s is active" % (case.name, self._context.name))
        try:
            context = TestContext(case, self._environment, MainLoop())
        except (MemoryError, ValueError, OSError) as exp:
            logging.error("%s: failed to create test context: %s" % (case.name, exp))
            return Outcome.failed("Failed to create test context: %s" % exp)

        self._context = context
        try:
            self._run_phases(context)
        finally:
            context.state = LifecycleState.DONE
            safeClose(context)
            self._context = None
        if context.outcome is None:
            context.outcome = Outcome.failed("No verdict")
        logging.info("%s: %s" % (case.name, context.outcome))
        return context.outcome

    def _run_phases(self, context):
        case = context.case
        if self._run_phase(context, LifecycleState.PRE_SETUP, case.pre_setup, self._phase_timeout):
            if self._run_phase(context, LifecycleState.SETUP, case.setup, self._phase_timeout):
                self._run_phase(context, LifecycleState.RUNNING, case.body, case.timeout)
        self._run_phase(context, LifecycleState.TEARDOWN, case.teardown or default_teardown, self._phase_timeout)
        self._run_phase(context, LifecycleState.POST_TEARDOWN, case.post_teardown, self._phase_timeout)

    def _run_phase(self, context, state, phase_fn, timeout):
        """:return: True if the phase completed without failure"""
        context.enter_phase(state)
        logging.debug("%s: %s" % (context.name, state.name))
        end_time = datetime.now() + timeout
        if phase_fn is None:
            context.interrupt(Outcome.passed())
        else:
            self._guarded(context, phase_fn, context)
        while not context.phase_done:
            remaining = static_remaining_time_delta(end_time)
            if remaining <= timedelta(0):
                self._timed_out(context)
                break
            self._guarded(context, context.loop.run_until, lambda: context.phase_done, remaining)
        return context.phase_done and not context.phase_failed

    def _guarded(self, context, fn, *args):
        try:
            fn(*args)
        except Exception as exp:
            context.interrupt(outcome_of_exception(exp))

    def _timed_out(self, context):
        if context.state == LifecycleState.RUNNING:
            context.test_failed("Test timed out")
        elif context.state in (LifecycleState.PRE_SETUP, LifecycleState.SETUP):
            context.interrupt(Outcome.failed("%s timed out" % context.state.name))
        else:
            logging.warning("%s: %s timed out" % (context.name, context.state.name))
            context.phase_done = True
