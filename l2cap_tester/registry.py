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

from collections import OrderedDict
import logging

from l2cap_tester import bootstrap
from l2cap_tester.lifecycle import DEFAULT_CASE_TIMEOUT
from l2cap_tester.lifecycle import OutcomeKind
from l2cap_tester.lifecycle import TestCase
from l2cap_tester.os_utils import TerminalColor
from l2cap_tester.simulated_peer import HciEmulatorType

_OUTCOME_COLORS = {
    OutcomeKind.PASSED: TerminalColor.BLUE,
    OutcomeKind.FAILED: TerminalColor.RED,
    OutcomeKind.ABORTED: TerminalColor.YELLOW,
}


class TestRegistry(object):
    """
    Ordered collection of named cases. Cases are immutable once added and
    run in insertion order.
    """

    def __init__(self, case_timeout=DEFAULT_CASE_TIMEOUT):
        self._cases = OrderedDict()
        self._case_timeout = case_timeout

    def __len__(self):
        return len(self._cases)

    def __contains__(self, name):
        return name in self._cases

    def get(self, name):
        return self._cases[name]

    def add(self,
            name,
            parameters=None,
            setup=None,
            body=None,
            emulator_type=HciEmulatorType.BREDR,
            timeout=None,
            pre_setup=bootstrap.pre_setup,
            teardown=None,
            post_teardown=bootstrap.post_teardown):
        if not name:
            raise ValueError("Test case needs a name")
        if name in self._cases:
            raise ValueError("Test case \"%s\" is already registered" % name)
        case = TestCase(
            name=name,
            parameters=parameters,
            emulator_type=emulator_type,
            pre_setup=pre_setup,
            setup=setup,
            body=body,
            teardown=teardown,
            post_teardown=post_teardown,
            timeout=timeout if timeout is not None else self._case_timeout)
        self._cases[name] = case
        return case

    def add_bredr(self, name, parameters, setup, body, **kwargs):
        return self.add(name, parameters, setup, body, emulator_type=HciEmulatorType.BREDR, **kwargs)

    def add_le(self, name, parameters, setup, body, **kwargs):
        return self.add(name, parameters, setup, body, emulator_type=HciEmulatorType.LE, **kwargs)

    def cases(self, prefix=None):
        return [case for name, case in self._cases.items() if not prefix or name.startswith(prefix)]

    def run_all(self, controller, prefix=None):
        """
        Run every matching case, one at a time

        :return: list of (name, outcome) in registration order
        """
        results = []
        for case in self.cases(prefix):
            logging.info("%s%s%s" % (TerminalColor.MAGENTA, case.name, TerminalColor.END))
            results.append((case.name, controller.run(case)))
        return results


def summarize(results):
    """Log one colored line per case and the totals"""
    counts = OrderedDict((kind, 0) for kind in OutcomeKind)
    logging.info("")
    logging.info("Test Summary")
    logging.info("------------")
    for name, outcome in results:
        counts[outcome.kind] += 1
        logging.info("%-60s %s%s%s" % (name, _OUTCOME_COLORS[outcome.kind], outcome, TerminalColor.END))
    logging.info("Total: %d, %s" % (len(results), ", ".join("%s: %d" % (kind.value, count)
                                                             for kind, count in counts.items())))
    return counts


def exit_code(results):
    """0 unless some case failed; aborted cases do not fail the run"""
    for _, outcome in results:
        if outcome.kind == OutcomeKind.FAILED:
            return 1
    return 0
