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

from abc import ABC, abstractmethod
import logging


class Closable(ABC):

    def __enter__(self):
        return self

    def __exit__(self, type, value, traceback):
        self.close()
        return traceback is None

    @abstractmethod
    def close(self):
        pass


def safeClose(closable):
    """Close |closable| if present, logging instead of raising on OSError"""
    if closable is None:
        return
    try:
        closable.close()
    except OSError as exp:
        logging.warning("Failed to close %s: %s" % (closable, exp))
