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

from mobly.asserts import assert_true
from mobly.asserts import assert_false
from mobly import signals

from l2cap_tester.event_stream import IEventStream
from l2cap_tester.event_stream import NOT_FOR_YOU_assert_event_occurs
from l2cap_tester.event_stream import NOT_FOR_YOU_assert_none
from l2cap_tester.event_stream import NOT_FOR_YOU_assert_none_matching


class ObjectSubject(object):

    def __init__(self, value):
        self._value = value

    def isEqualTo(self, other):
        if self._value != other:
            raise signals.TestFailure("Expected \"%s\" to be equal to \"%s\"" % (self._value, other), extras=None)

    def isNotEqualTo(self, other):
        if self._value == other:
            raise signals.TestFailure("Expected \"%s\" to not be equal to \"%s\"" % (self._value, other), extras=None)

    def isNone(self):
        if self._value is not None:
            raise signals.TestFailure("Expected \"%s\" to be None" % self._value, extras=None)

    def isNotNone(self):
        if self._value is None:
            raise signals.TestFailure("Expected \"%s\" to not be None" % self._value, extras=None)

    def isIn(self, values):
        if self._value not in values:
            raise signals.TestFailure("Expected \"%s\" to be one of %s" % (self._value, values), extras=None)

    def isAtLeast(self, other):
        if self._value < other:
            raise signals.TestFailure("Expected \"%s\" to be at least \"%s\"" % (self._value, other), extras=None)


class BytesSubject(ObjectSubject):
    """Compares payloads without dumping kilobytes into the failure message"""

    def __init__(self, value):
        super().__init__(value)

    def isEqualTo(self, other):
        if self._value == other:
            return
        if len(self._value) != len(other):
            raise signals.TestFailure(
                "Expected %d bytes but got %d bytes" % (len(other), len(self._value)), extras=None)
        offset = next(i for i in range(len(other)) if self._value[i] != other[i])
        raise signals.TestFailure(
            "Payload mismatch at offset %d: expected 0x%02x but got 0x%02x" % (offset, other[offset],
                                                                               self._value[offset]),
            extras=None)


DEFAULT_TIMEOUT = timedelta(seconds=3)


class EventStreamSubject(ObjectSubject):

    def __init__(self, value):
        super().__init__(value)

    def emits(self, match_fn, at_least_times=1, timeout=DEFAULT_TIMEOUT):
        NOT_FOR_YOU_assert_event_occurs(self._value, match_fn, at_least_times=at_least_times, timeout=timeout)
        return self

    def emitsNone(self, *match_fns, timeout=DEFAULT_TIMEOUT):
        if len(match_fns) == 0:
            NOT_FOR_YOU_assert_none(self._value, timeout=timeout)
        elif len(match_fns) == 1:
            NOT_FOR_YOU_assert_none_matching(self._value, match_fns[0], timeout=timeout)
        else:
            raise signals.TestFailure("Cannot specify multiple match functions")
        return self


class BooleanSubject(ObjectSubject):

    def __init__(self, value):
        super().__init__(value)

    def isTrue(self, msg=""):
        assert_true(self._value, msg)

    def isFalse(self, msg=""):
        assert_false(self._value, msg)


def assertThat(subject):
    if type(subject) is bool:
        return BooleanSubject(subject)
    elif isinstance(subject, (bytes, bytearray)):
        return BytesSubject(subject)
    elif isinstance(subject, IEventStream):
        return EventStreamSubject(subject)
    else:
        return ObjectSubject(subject)
