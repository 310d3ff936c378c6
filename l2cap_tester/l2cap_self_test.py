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

from l2cap_tester.l2cap_self_test_lib import *


class L2capSelfTest(BaseTestClass):

    def setup_test(self):
        return True

    def teardown_test(self):
        return True

    def test_all_registered_cases_pass(self):
        test_all_registered_cases_pass_core()

    def test_bredr_read_32k(self):
        test_bredr_read_32k_core()

    def test_read_takes_one_receive_per_mtu(self):
        test_read_takes_one_receive_per_mtu_core()

    def test_ethtool_ts_info_cases_pass(self):
        test_ethtool_ts_info_cases_pass_core()

    def test_ethtool_ts_info_without_timestamping_fails(self):
        test_ethtool_ts_info_without_timestamping_fails_core()

    def test_fake_ts_info(self):
        test_fake_ts_info_core()

    def test_le_write_32k(self):
        test_le_write_32k_core()

    def test_le_write_32k_starves_without_enough_credits(self):
        test_le_write_32k_starves_without_enough_credits_core()

    def test_stream_tx_timestamping(self):
        test_stream_tx_timestamping_core()

    def test_ssp_rejected_by_user(self):
        test_ssp_rejected_by_user_core()

    def test_mitm_without_io_capability(self):
        test_mitm_without_io_capability_core()

    def test_pin_code_mismatch(self):
        test_pin_code_mismatch_core()

    def test_unexpected_error_fails(self):
        test_unexpected_error_fails_core()

    def test_ext_flowctl_unsupported_aborts(self):
        test_ext_flowctl_unsupported_aborts_core()

    def test_ext_flowctl_unsupported_run_passes(self):
        test_ext_flowctl_unsupported_run_passes_core()

    def test_timestamping_unsupported_fails(self):
        test_timestamping_unsupported_fails_core()

    def test_emulator_unavailable_fails(self):
        test_emulator_unavailable_fails_core()

    def test_management_unavailable_fails(self):
        test_management_unavailable_fails_core()

    def test_failed_run_exit_code(self):
        test_failed_run_exit_code_core()

    def test_fake_mgmt_index_list(self):
        test_fake_mgmt_index_list_core()

    def test_fake_socket_errors(self):
        test_fake_socket_errors_core()

    def test_environment_from_controller_config(self):
        test_environment_from_controller_config_core()

    def test_runner_exit_codes(self):
        test_runner_exit_codes_core()

    def test_deferred_setup_needs_authorization(self):
        test_deferred_setup_needs_authorization_core()


if __name__ == '__main__':
    test_runner.main()
