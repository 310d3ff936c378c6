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

import importlib
import logging

from l2cap_tester.channel_socket import KernelL2capSocket
from l2cap_tester.environment import IEnvironment
from l2cap_tester.grpc_control_plane import GrpcControlPlane


class FacadeEnvironment(IEnvironment):
    """
    Environment of a Linux host: kernel L2CAP sockets, the management
    interface reached through a gRPC facade, and a simulated peer built by a
    pluggable module.

    Config keys:
      "mgmt_facade": host:port of the management facade
      "simulated_peer_module": module providing
          create_simulated_peer(loop, emulator_type, config)
    """

    def __init__(self, config):
        for key in ("mgmt_facade", "simulated_peer_module"):
            if key not in config:
                raise ValueError("Facade environment config lacks \"%s\"" % key)
        self._config = config
        self._peer_module = importlib.import_module(config["simulated_peer_module"])

    def __repr__(self):
        return "FacadeEnvironment(%s)" % self._config["mgmt_facade"]

    def new_control_plane(self, loop):
        logging.info("Connecting to management facade at %s" % self._config["mgmt_facade"])
        return GrpcControlPlane(self._config["mgmt_facade"], loop)

    def new_simulated_peer(self, loop, emulator_type):
        return self._peer_module.create_simulated_peer(loop, emulator_type, self._config)

    def new_channel_socket(self, kind):
        return KernelL2capSocket(kind)


def create(configs):
    return [FacadeEnvironment(config) for config in configs]
