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

from abc import abstractmethod
import importlib
import logging

from l2cap_tester.closable import Closable
from l2cap_tester.closable import safeClose

MOBLY_CONTROLLER_CONFIG_NAME = "L2capTesterEnvironment"


class IEnvironment(Closable):
    """Factory for the collaborators a test case talks to"""

    @abstractmethod
    def new_control_plane(self, loop):
        """:return: IControlPlane delivering callbacks on |loop|"""
        pass

    @abstractmethod
    def new_simulated_peer(self, loop, emulator_type):
        """:return: ISimulatedPeer, or None when the emulator cannot be created"""
        pass

    @abstractmethod
    def new_channel_socket(self, kind):
        """:return: IChannelSocket of SocketKind |kind|, raising OSError on failure"""
        pass

    def close(self):
        pass


def create(configs):
    """
    Create environments from the L2capTesterEnvironment controller configs

    Each config names the Python module that builds it with "module"; that
    module follows the same create(configs) convention.
    """
    if not configs:
        raise ValueError("Configuration is empty")
    if not isinstance(configs, list):
        raise ValueError("Configuration should be a list")
    environments = []
    for config in configs:
        if "module" not in config:
            raise ValueError("Environment config %s lacks a \"module\"" % config)
        logging.info("Loading environment module %s" % config["module"])
        module = importlib.import_module(config["module"])
        environments.extend(module.create([config]))
    return environments


def destroy(environments):
    for environment in environments:
        safeClose(environment)


def get_info(environments):
    return [environment.__class__.__name__ for environment in environments]
