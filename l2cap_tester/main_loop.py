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
from datetime import datetime, timedelta
import enum
import logging
import select
import socket
import threading

from l2cap_tester.closable import Closable


class IoCondition(enum.IntFlag):
    """Readiness conditions, numerically equal to the poll(2) event bits"""
    NONE = 0
    IN = 0x01
    OUT = 0x04
    ERR = 0x08
    HUP = 0x10


class _Source(object):

    def __init__(self, source_id, callback, args):
        self.source_id = source_id
        self.callback = callback
        self.args = args
        self.removed = False


class _Watch(_Source):

    def __init__(self, source_id, handle, condition, callback):
        super().__init__(source_id, callback, ())
        self.handle = handle
        self.condition = condition


class _Timeout(_Source):

    def __init__(self, source_id, interval, callback, args):
        super().__init__(source_id, callback, args)
        self.interval = interval
        self.deadline = datetime.now() + interval


def static_remaining_time_delta(end_time):
    remaining = end_time - datetime.now()
    if remaining < timedelta(milliseconds=0):
        remaining = timedelta(milliseconds=0)
    return remaining


class MainLoop(Closable):
    """
    Single threaded cooperative scheduler.

    Sources are readiness watches on handles, idle callbacks and timeouts.
    A source fires once: its callback is invoked and the source is removed,
    unless the callback returns True, in which case the source stays armed.
    Every source can be removed by id before it fires.

    Watched handles implement fileno() (negative when there is no OS level
    descriptor) and poll(condition), which returns the subset of
    |condition| that is ready right now without blocking.
    """

    def __init__(self):
        self._next_id = 1
        self._watches = OrderedDict()
        self._idles = OrderedDict()
        self._timeouts = OrderedDict()
        self._pending = deque()
        self._lock = threading.Lock()
        self._poller = select.poll()
        self._wakeup_reader, self._wakeup_writer = socket.socketpair()
        self._wakeup_reader.setblocking(False)
        self._wakeup_writer.setblocking(False)
        self._poller.register(self._wakeup_reader, select.POLLIN)
        self._current = None
        self._closed = False

    def _allocate_id(self):
        source_id = self._next_id
        self._next_id += 1
        return source_id

    def add_watch(self, handle, condition, callback):
        """
        Invoke callback(handle, ready_condition) once |handle| is ready for
        any of |condition|

        :return: source id usable with remove()
        """
        if callback is None:
            raise ValueError("callback must not be None")
        source_id = self._allocate_id()
        self._watches[source_id] = _Watch(source_id, handle, IoCondition(condition), callback)
        return source_id

    def idle_add(self, callback, *args):
        if callback is None:
            raise ValueError("callback must not be None")
        source_id = self._allocate_id()
        self._idles[source_id] = _Source(source_id, callback, args)
        return source_id

    def timeout_add(self, interval, callback, *args):
        """
        :param interval: a timedelta object
        """
        if callback is None:
            raise ValueError("callback must not be None")
        source_id = self._allocate_id()
        self._timeouts[source_id] = _Timeout(source_id, interval, callback, args)
        return source_id

    def call_soon_threadsafe(self, callback, *args):
        """
        Schedule callback(*args) on the loop from any thread. Callbacks
        arriving after close() are dropped.
        """
        with self._lock:
            if self._closed:
                logging.debug("Loop closed, dropping %s" % callback)
                return
            self._pending.append((callback, args))
        try:
            self._wakeup_writer.send(b'\0')
        except (BlockingIOError, OSError):
            pass

    def remove(self, source_id):
        """
        :return: True if a pending source was removed
        """
        for sources in (self._watches, self._idles, self._timeouts):
            source = sources.pop(source_id, None)
            if source is not None:
                source.removed = True
                return True
        if self._current is not None and self._current.source_id == source_id:
            self._current.removed = True
            return True
        return False

    def remove_all(self):
        for sources in (self._watches, self._idles, self._timeouts):
            for source in sources.values():
                source.removed = True
            sources.clear()
        if self._current is not None:
            self._current.removed = True
        with self._lock:
            self._pending.clear()

    def has_sources(self):
        return bool(self._watches or self._idles or self._timeouts or self._pending)

    def _drain_pending(self):
        with self._lock:
            pending = list(self._pending)
            self._pending.clear()
        for callback, args in pending:
            self.idle_add(callback, *args)

    def _dispatch(self, sources, source, *args):
        sources.pop(source.source_id, None)
        self._current = source
        try:
            keep = source.callback(*args)
        finally:
            self._current = None
        if keep is True and not source.removed:
            sources[source.source_id] = source
            return True
        source.removed = True
        return False

    def _dispatch_timeouts(self):
        dispatched = False
        now = datetime.now()
        for source in list(self._timeouts.values()):
            if source.removed or source.deadline > now:
                continue
            dispatched = True
            if self._dispatch(self._timeouts, source, *source.args):
                source.deadline = datetime.now() + source.interval
        return dispatched

    def _dispatch_idles(self):
        dispatched = False
        for source in list(self._idles.values()):
            if source.removed:
                continue
            dispatched = True
            self._dispatch(self._idles, source, *source.args)
        return dispatched

    def _dispatch_watches(self):
        dispatched = False
        for source in list(self._watches.values()):
            if source.removed:
                continue
            ready = IoCondition(source.handle.poll(source.condition)) & source.condition
            if not ready:
                continue
            dispatched = True
            self._dispatch(self._watches, source, source.handle, ready)
        return dispatched

    def _wait(self, end_time):
        timeout = None
        if end_time is not None:
            timeout = static_remaining_time_delta(end_time)
        for source in self._timeouts.values():
            remaining = static_remaining_time_delta(source.deadline)
            if timeout is None or remaining < timeout:
                timeout = remaining

        # poll(2) reports ERR and HUP whatever the registered mask, so a
        # watch only adds the bits it asked for
        masks = {}
        for source in self._watches.values():
            fd = source.handle.fileno()
            if fd < 0:
                continue
            masks[fd] = masks.get(fd, 0) | int(source.condition)
        for fd, mask in masks.items():
            self._poller.register(fd, mask)
        try:
            events = self._poller.poll(None if timeout is None else timeout.total_seconds() * 1000)
        finally:
            for fd in masks:
                self._poller.unregister(fd)
        for fd, _ in events:
            if fd == self._wakeup_reader.fileno():
                try:
                    while self._wakeup_reader.recv(64):
                        pass
                except BlockingIOError:
                    pass

    def iterate(self, end_time=None):
        """
        Run one loop iteration: dispatch every due timeout, idle callback and
        ready watch. When nothing was ready, block until a descriptor becomes
        ready, the next timeout is due or |end_time| passes.

        :return: True if any callback was dispatched
        """
        self._drain_pending()
        dispatched = self._dispatch_timeouts()
        dispatched = self._dispatch_idles() or dispatched
        dispatched = self._dispatch_watches() or dispatched
        if not dispatched and not self._closed:
            self._wait(end_time)
        return dispatched

    def run_until(self, predicate, timeout):
        """
        Iterate until predicate() is True or |timeout| elapses

        :param timeout: a timedelta object
        :return: True if predicate() became True
        """
        end_time = datetime.now() + timeout
        while not predicate():
            if datetime.now() >= end_time:
                logging.debug("run_until timed out after %fs" % timeout.total_seconds())
                return False
            self.iterate(end_time)
        return True

    def close(self):
        if self._closed:
            return
        with self._lock:
            self._closed = True
        self.remove_all()
        self._wakeup_reader.close()
        self._wakeup_writer.close()
