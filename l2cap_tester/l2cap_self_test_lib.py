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
import errno
import logging
import math
import os
import struct
import tempfile

from mobly import asserts

from l2cap_tester import bootstrap
from l2cap_tester import environment
from l2cap_tester import facade_environment
from l2cap_tester import l2cap_test_cases
from l2cap_tester import lifecycle
from l2cap_tester import registry
from l2cap_tester import run_l2cap_tester
from l2cap_tester import scenarios
from l2cap_tester.channel_socket import BdAddrType
from l2cap_tester.channel_socket import ChannelMode
from l2cap_tester.channel_socket import L2capAddress
from l2cap_tester.channel_socket import SecurityLevel
from l2cap_tester.channel_socket import SocketKind
from l2cap_tester.connection_driver import ConnectionDriver
from l2cap_tester.control_plane import MGMT_INDEX_NONE
from l2cap_tester.control_plane import MgmtOp
from l2cap_tester.control_plane import MgmtStatus
from l2cap_tester.fake_environment import FakeEnvironment
from l2cap_tester.main_loop import IoCondition
from l2cap_tester.main_loop import MainLoop
from l2cap_tester.simulated_peer import HciEmulatorType
from l2cap_tester.timestamping import TimestampingFlags
from l2cap_tester.truth import assertThat

PHASE_TIMEOUT = timedelta(seconds=5)


def _registered_cases():
    cases = registry.TestRegistry()
    l2cap_test_cases.register_all(cases)
    return cases


def _run(case, env=None):
    with env or FakeEnvironment() as env:
        controller = lifecycle.LifecycleController(env, phase_timeout=PHASE_TIMEOUT)
        return controller.run(case)


def _run_registered(name, env=None):
    return _run(_registered_cases().get(name), env)


def _custom_case(name, parameters, body=scenarios.client_connect, le=False):
    cases = registry.TestRegistry()
    add = cases.add_le if le else cases.add_bredr
    return add(name, parameters, bootstrap.setup_powered_client, body)


def _assert_passed(outcome):
    assertThat(outcome.kind).isEqualTo(lifecycle.OutcomeKind.PASSED)


def test_all_registered_cases_pass_core():
    cases = _registered_cases()
    env = FakeEnvironment()
    with env:
        controller = lifecycle.LifecycleController(env, phase_timeout=PHASE_TIMEOUT)
        results = cases.run_all(controller)
    registry.summarize(results)
    failures = ["%s: %s" % (name, outcome) for name, outcome in results
                if outcome.kind != lifecycle.OutcomeKind.PASSED]
    assertThat(failures).isEqualTo([])
    assertThat(len(results)).isEqualTo(len(cases))
    assertThat(registry.exit_code(results)).isEqualTo(0)
    # Every case retired its emulated controller
    assertThat(env.peers).isEqualTo([])


def test_bredr_read_32k_core():
    _assert_passed(_run_registered("L2CAP BR/EDR Client - Read 32k Success"))


def _run_keeping_context(name, parameters, le=False):
    contexts = []

    def body(context):
        contexts.append(context)
        scenarios.client_connect(context)

    outcome = _run(_custom_case(name, parameters, body=body, le=le))
    return outcome, contexts[0]


def test_read_takes_one_receive_per_mtu_core():
    for le, parameters in ((False, l2cap_test_cases.CLIENT_CONNECT_READ_SUCCESS),
                           (False, l2cap_test_cases.CLIENT_CONNECT_READ_32K_SUCCESS),
                           (True, l2cap_test_cases.LE_CLIENT_CONNECT_READ_32K_SUCCESS)):
        outcome, context = _run_keeping_context("Read %d bytes" % len(parameters.read_data), parameters, le)
        _assert_passed(outcome)
        minimum = math.ceil(len(parameters.read_data) / context.options.imtu)
        logging.info("%d bytes at MTU %d in %d reads" % (len(parameters.read_data), context.options.imtu,
                                                        context.transfer.fragments_received))
        assertThat(context.transfer.fragments_received >= minimum).isTrue()
        assertThat(context.transfer.units_received).isEqualTo(1)
        assertThat(context.transfer.buffered).isEqualTo(0)


def test_ethtool_ts_info_cases_pass_core():
    _assert_passed(_run_registered("L2CAP BR/EDR Ethtool Get Ts Info - Success"))
    _assert_passed(_run_registered("L2CAP LE Ethtool Get Ts Info - Success"))


def test_ethtool_ts_info_without_timestamping_fails_core():
    outcome = _run_registered("L2CAP BR/EDR Ethtool Get Ts Info - Success", FakeEnvironment(timestamping_supported=False))
    assertThat(outcome.kind).isEqualTo(lifecycle.OutcomeKind.FAILED)
    assertThat(outcome.reason.startswith("SIOCETHTOOL(hci")).isTrue()


def test_fake_ts_info_core():
    loop = MainLoop()
    with FakeEnvironment() as env:
        peer = _new_powered_peer(env, loop)
        sock = env.new_channel_socket(SocketKind.SEQPACKET)

        info = sock.get_ts_info("hci%d" % peer.index)
        assertThat(info.phc_index).isEqualTo(-1)
        assertThat(TimestampingFlags(info.so_timestamping) & TimestampingFlags.TX_COMPLETION).isEqualTo(
            TimestampingFlags.TX_COMPLETION)

        try:
            sock.get_ts_info("hci%d" % (peer.index + 1))
            asserts.fail("Timestamping info for a controller that does not exist")
        except OSError as exp:
            assertThat(exp.errno).isEqualTo(errno.ENODEV)
        sock.close()
    loop.close()


def test_le_write_32k_core():
    _assert_passed(_run_registered("L2CAP LE Client - Write 32k Success"))


def test_le_write_32k_starves_without_enough_credits_core():
    parameters = l2cap_test_cases.LE_CLIENT_CONNECT_WRITE_32K_SUCCESS._replace(
        credits=l2cap_test_cases.LE_32K_CREDITS - 1)
    outcome = _run(_custom_case("LE write with one credit short", parameters, le=True))
    assertThat(outcome.kind).isEqualTo(lifecycle.OutcomeKind.FAILED)
    assertThat(outcome.reason).isEqualTo("Test timed out")


def test_stream_tx_timestamping_core():
    _assert_passed(_run_registered("L2CAP BR/EDR Client - Stream TX Timestamping"))


def test_ssp_rejected_by_user_core():
    parameters = l2cap_test_cases.CLIENT_CONNECT_SSP_SUCCESS_1._replace(
        reject_pairing=True, expect_error_code=errno.EACCES)
    _assert_passed(_run(_custom_case("SSP rejected by the user", parameters)))


def test_mitm_without_io_capability_core():
    parameters = l2cap_test_cases.CLIENT_CONNECT_SUCCESS._replace(
        enable_pairing=True, security_level=SecurityLevel.HIGH, expect_error_code=errno.EACCES)
    _assert_passed(_run(_custom_case("MITM without IO capability", parameters)))


def test_pin_code_mismatch_core():
    parameters = l2cap_test_cases.CLIENT_CONNECT_PIN_SUCCESS._replace(
        client_pin=b"1234", expect_error_code=errno.EACCES)
    _assert_passed(_run(_custom_case("PIN code mismatch", parameters)))


def test_unexpected_error_fails_core():
    parameters = l2cap_test_cases.CLIENT_CONNECT_SUCCESS._replace(server_service_id=None)
    outcome = _run(_custom_case("Nobody listens", parameters))
    assertThat(outcome.kind).isEqualTo(lifecycle.OutcomeKind.FAILED)
    assertThat(outcome.reason).isEqualTo("Expected error 0 but got %d" % errno.ECONNREFUSED)


def test_ext_flowctl_unsupported_aborts_core():
    outcome = _run_registered("L2CAP Ext-Flowctl Client - Success", FakeEnvironment(ecred_supported=False))
    assertThat(outcome.kind).isEqualTo(lifecycle.OutcomeKind.ABORTED)


def test_ext_flowctl_unsupported_run_passes_core():
    with FakeEnvironment(ecred_supported=False) as env:
        controller = lifecycle.LifecycleController(env, phase_timeout=PHASE_TIMEOUT)
        results = _registered_cases().run_all(controller, "L2CAP Ext-Flowctl Client")
    assertThat(len(results)).isAtLeast(1)
    for name, outcome in results:
        logging.info("%s: %s" % (name, outcome))
        assertThat(outcome.kind).isEqualTo(lifecycle.OutcomeKind.ABORTED)
    assertThat(registry.exit_code(results)).isEqualTo(0)


def test_timestamping_unsupported_fails_core():
    outcome = _run_registered("L2CAP BR/EDR Client - TX Timestamping", FakeEnvironment(timestamping_supported=False))
    assertThat(outcome.kind).isEqualTo(lifecycle.OutcomeKind.FAILED)
    assertThat(outcome.reason.startswith("setsockopt(SO_TIMESTAMPING)")).isTrue()


def test_emulator_unavailable_fails_core():
    outcome = _run_registered("L2CAP BR/EDR Client - Success", FakeEnvironment(emulator_available=False))
    assertThat(outcome.kind).isEqualTo(lifecycle.OutcomeKind.FAILED)
    assertThat(outcome.reason).isEqualTo("Failed to setup HCI emulation")


def test_management_unavailable_fails_core():
    outcome = _run_registered("L2CAP LE Client - Success", FakeEnvironment(management_available=False))
    assertThat(outcome.kind).isEqualTo(lifecycle.OutcomeKind.FAILED)
    assertThat(outcome.reason.startswith("Failed to setup management interface")).isTrue()


def test_failed_run_exit_code_core():
    with FakeEnvironment(emulator_available=False) as env:
        controller = lifecycle.LifecycleController(env, phase_timeout=PHASE_TIMEOUT)
        results = _registered_cases().run_all(controller, "Basic L2CAP Socket")
    assertThat(len(results)).isEqualTo(1)
    assertThat(registry.exit_code(results)).isEqualTo(1)


def _new_powered_peer(env, loop, emulator_type=HciEmulatorType.BREDR):
    peer = env.new_simulated_peer(loop, emulator_type)
    status, _ = env.handle_mgmt_command(MgmtOp.SET_POWERED, peer.index, b'\x01')
    assertThat(status).isEqualTo(MgmtStatus.SUCCESS)
    return peer


def test_fake_mgmt_index_list_core():
    loop = MainLoop()
    with FakeEnvironment() as env:
        status, params = env.handle_mgmt_command(MgmtOp.READ_INDEX_LIST, MGMT_INDEX_NONE, b'')
        assertThat(status).isEqualTo(MgmtStatus.SUCCESS)
        assertThat(params).isEqualTo(struct.pack('<H', 0))

        peer = env.new_simulated_peer(loop, HciEmulatorType.BREDR)
        status, params = env.handle_mgmt_command(MgmtOp.READ_INDEX_LIST, MGMT_INDEX_NONE, b'')
        assertThat(params).isEqualTo(struct.pack('<HH', 1, peer.index))

        status, _ = env.handle_mgmt_command(MgmtOp.READ_INFO, peer.index + 1, b'')
        assertThat(status).isEqualTo(MgmtStatus.INVALID_INDEX)
        status, _ = env.handle_mgmt_command(MgmtOp.SET_LE, peer.index, b'\x01')
        assertThat(status).isEqualTo(MgmtStatus.NOT_SUPPORTED)
    loop.close()


def test_fake_socket_errors_core():
    loop = MainLoop()
    with FakeEnvironment(ecred_supported=False) as env:
        peer = _new_powered_peer(env, loop)
        sock = env.new_channel_socket(SocketKind.SEQPACKET)

        try:
            sock.bind(L2capAddress("00:11:22:33:44:55", BdAddrType.BREDR, 0, 0))
            asserts.fail("Bound to an address no controller owns")
        except OSError as exp:
            assertThat(exp.errno).isEqualTo(errno.EADDRNOTAVAIL)

        sock.bind(L2capAddress(peer.central_address, BdAddrType.BREDR, 0, 0))
        try:
            sock.set_mode(ChannelMode.EXT_FLOWCTL)
            asserts.fail("Enhanced credit based mode is disabled")
        except OSError as exp:
            assertThat(exp.errno).isEqualTo(errno.ENOPROTOOPT)

        for call in (sock.getpeername, lambda: sock.accept()):
            try:
                call()
                asserts.fail("Unconnected socket did not fail")
            except OSError as exp:
                assertThat(exp.errno).isIn([errno.ENOTCONN, errno.EINVAL])

        try:
            sock.connect(L2capAddress(peer.client_address, BdAddrType.BREDR, 0x0002, 0))
            asserts.fail("Connected to an even PSM")
        except OSError as exp:
            assertThat(exp.errno).isEqualTo(errno.EINVAL)
        sock.close()
    loop.close()


def test_environment_from_controller_config_core():
    environments = environment.create([{"module": "l2cap_tester.fake_environment", "ecred_supported": False}])
    try:
        assertThat(len(environments)).isEqualTo(1)
        assertThat(isinstance(environments[0], FakeEnvironment)).isTrue()
        assertThat(environments[0].ecred_supported).isFalse()
        assertThat(environment.get_info(environments)).isEqualTo(["FakeEnvironment"])
    finally:
        environment.destroy(environments)
    with asserts.assert_raises(ValueError):
        environment.create([{"ecred_supported": False}])
    with asserts.assert_raises(ValueError):
        environment.create({"module": "l2cap_tester.fake_environment"})
    with asserts.assert_raises(ValueError):
        facade_environment.create([{"mgmt_facade": "localhost:8999"}])


TEST_BED_CONFIG = """
TestBeds:
  - Name: FakeL2capTestBed
    Controllers:
      L2capTesterEnvironment:
        - module: l2cap_tester.fake_environment
          emulator_available: %s
    TestParams:
      verbose_mode: false
      case_timeout_seconds: 2
      test_prefix: "L2CAP BR/EDR Client - Success"
"""


def _run_main(emulator_available):
    with tempfile.TemporaryDirectory() as config_dir:
        config_path = os.path.join(config_dir, "l2cap_tester_config.yaml")
        with open(config_path, "w") as config_file:
            config_file.write(TEST_BED_CONFIG % ("true" if emulator_available else "false"))
        previous = os.environ.get(run_l2cap_tester.CONFIG_ENV)
        os.environ[run_l2cap_tester.CONFIG_ENV] = config_path
        try:
            return run_l2cap_tester.main()
        finally:
            if previous is None:
                del os.environ[run_l2cap_tester.CONFIG_ENV]
            else:
                os.environ[run_l2cap_tester.CONFIG_ENV] = previous


def test_runner_exit_codes_core():
    assertThat(_run_main(emulator_available=True)).isEqualTo(0)
    assertThat(_run_main(emulator_available=False)).isEqualTo(1)


def _listen_without_authorizing(context):
    params = context.parameters
    peer = context.peer
    sock = ConnectionDriver(context).open_channel(params.server_service_id, 0, params.security_level, params.mode)
    sock.set_defer_setup(True)
    sock.listen(1)

    def on_incoming(listener, condition):
        child = context.track_socket(listener.accept())
        context.add_watch(child, IoCondition.IN | IoCondition.OUT, lambda child, condition: context.test_passed())
        return False

    def on_response(code, data):
        context.test_failed("Deferred channel answered before authorization")

    def on_new_connection(handle):
        peer.l2cap_request(handle, params.raw_send_command_code, params.raw_send_command, on_response)

    context.add_watch(sock, IoCondition.IN, on_incoming)
    peer.set_connect_callback(on_new_connection)
    peer.hci_connect(peer.central_address, BdAddrType.LE_PUBLIC)


def test_deferred_setup_needs_authorization_core():
    cases = registry.TestRegistry()
    case = cases.add_le(
        "Deferred setup left unauthorized",
        l2cap_test_cases.LE_EATT_SERVER_SUCCESS_1,
        bootstrap.setup_powered_server,
        _listen_without_authorizing,
        timeout=timedelta(milliseconds=500))
    outcome = _run(case)
    assertThat(outcome.kind).isEqualTo(lifecycle.OutcomeKind.FAILED)
    assertThat(outcome.reason).isEqualTo("Test timed out")
