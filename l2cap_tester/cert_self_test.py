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

from l2cap_tester.cert_self_test_lib import *


class CertSelfTest(BaseTestClass):

    def setup_test(self):
        return True

    def teardown_test(self):
        return True

    def test_main_loop_idle_order(self):
        test_main_loop_idle_order_core()

    def test_main_loop_idle_rearms_on_true(self):
        test_main_loop_idle_rearms_on_true_core()

    def test_main_loop_remove_idle(self):
        test_main_loop_remove_idle_core()

    def test_main_loop_timeout_fires(self):
        test_main_loop_timeout_fires_core()

    def test_main_loop_watch_on_pollable_handle(self):
        test_main_loop_watch_on_pollable_handle_core()

    def test_main_loop_call_soon_threadsafe_wakes(self):
        test_main_loop_call_soon_threadsafe_wakes_core()

    def test_main_loop_run_until_times_out(self):
        test_main_loop_run_until_times_out_core()

    def test_main_loop_hangup_watch_sleeps_while_readable(self):
        test_main_loop_hangup_watch_sleeps_while_readable_core()

    def test_main_loop_drops_callbacks_after_close(self):
        test_main_loop_drops_callbacks_after_close_core()

    def test_required_credits(self):
        test_required_credits_core()

    def test_chunks(self):
        test_chunks_core()

    def test_write_all_retries_short_writes(self):
        test_write_all_retries_short_writes_core()

    def test_transfer_verifier_reassembles(self):
        test_transfer_verifier_reassembles_core()

    def test_transfer_verifier_mismatch_fails(self):
        test_transfer_verifier_mismatch_fails_core()

    def test_timestamp_verifier_message_keys(self):
        test_timestamp_verifier_message_keys_core()

    def test_timestamp_verifier_stream_keys(self):
        test_timestamp_verifier_stream_keys_core()

    def test_timestamp_verifier_order_enforced(self):
        test_timestamp_verifier_order_enforced_core()

    def test_timestamp_verifier_unknown_id(self):
        test_timestamp_verifier_unknown_id_core()

    def test_timestamp_verifier_without_id_matches_kind(self):
        test_timestamp_verifier_without_id_matches_kind_core()

    def test_bdaddr_conversion(self):
        test_bdaddr_conversion_core()

    def test_parse_controller_info(self):
        test_parse_controller_info_core()

    def test_signaling_pdu_extraction(self):
        test_signaling_pdu_extraction_core()

    def test_scan_enable_matchers(self):
        test_scan_enable_matchers_core()

    def test_advertising_parameters_capture(self):
        test_advertising_parameters_capture_core()

    def test_connection_response_capture(self):
        test_connection_response_capture_core()

    def test_assertThat_boolean(self):
        test_assertThat_boolean_core()

    def test_assertThat_object(self):
        test_assertThat_object_core()

    def test_assertThat_bytes_reports_offset(self):
        test_assertThat_bytes_reports_offset_core()

    def test_assertThat_eventStream_emits(self):
        test_assertThat_eventStream_emits_core()

    def test_assertThat_eventStream_emits_fails(self):
        test_assertThat_eventStream_emits_fails_core()

    def test_assertThat_eventStream_emitsNone(self):
        test_assertThat_eventStream_emitsNone_core()

    def test_assertThat_eventStream_emitsNone_matching(self):
        test_assertThat_eventStream_emitsNone_matching_core()

    def test_assertThat_eventStream_emitsNone_matching_fails(self):
        test_assertThat_eventStream_emitsNone_matching_fails_core()

    def test_event_stream_callbacks(self):
        test_event_stream_callbacks_core()

    def test_subscription_cancels_once(self):
        test_subscription_cancels_once_core()

    def test_mgmt_dispatcher_index_matching(self):
        test_mgmt_dispatcher_index_matching_core()

    def test_mgmt_dispatcher_unregister(self):
        test_mgmt_dispatcher_unregister_core()

    def test_registry_order_and_prefix(self):
        test_registry_order_and_prefix_core()

    def test_registry_rejects_duplicates(self):
        test_registry_rejects_duplicates_core()

    def test_exit_code_ignores_aborted(self):
        test_exit_code_ignores_aborted_core()

    def test_summarize_counts(self):
        test_summarize_counts_core()

    def test_outcome_of_exception(self):
        test_outcome_of_exception_core()

    def test_lifecycle_pass(self):
        test_lifecycle_pass_core()

    def test_lifecycle_first_verdict_wins(self):
        test_lifecycle_first_verdict_wins_core()

    def test_lifecycle_setup_failure_skips_body(self):
        test_lifecycle_setup_failure_skips_body_core()

    def test_lifecycle_verdict_from_callback(self):
        test_lifecycle_verdict_from_callback_core()

    def test_lifecycle_timeout(self):
        test_lifecycle_timeout_core()

    def test_lifecycle_skip_aborts(self):
        test_lifecycle_skip_aborts_core()

    def test_lifecycle_exception_fails(self):
        test_lifecycle_exception_fails_core()

    def test_lifecycle_rejects_nameless_case(self):
        test_lifecycle_rejects_nameless_case_core()


if __name__ == '__main__':
    test_runner.main()
