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

from mobly.base_test import BaseTestClass
from mobly import test_runner

from l2cap_tester.grpc_control_plane_test_lib import *


class GrpcControlPlaneSelfTest(BaseTestClass):

    def setup_test(self):
        return True

    def teardown_test(self):
        return True

    def test_frame_codec(self):
        test_frame_codec_core()

    def test_decode_command_reply(self):
        test_decode_command_reply_core()

    def test_command_reply_over_grpc(self):
        test_command_reply_over_grpc_core()

    def test_events_over_grpc(self):
        test_events_over_grpc_core()

    def test_event_stream_over_grpc(self):
        test_event_stream_over_grpc_core()

    def test_reply_without_callback(self):
        test_reply_without_callback_core()


if __name__ == '__main__':
    test_runner.main()
