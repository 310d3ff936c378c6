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
import logging
import os
import sys

from mobly import config_parser

from l2cap_tester import environment
from l2cap_tester import l2cap_test_cases
from l2cap_tester.lifecycle import DEFAULT_CASE_TIMEOUT
from l2cap_tester.lifecycle import DEFAULT_PHASE_TIMEOUT
from l2cap_tester.lifecycle import LifecycleController
from l2cap_tester.registry import TestRegistry
from l2cap_tester.registry import exit_code
from l2cap_tester.registry import summarize

CONFIG_ENV = 'L2CAP_TESTER_CONFIG'
LOG_FORMAT = '%(asctime)s.%(msecs)03d %(levelname)s %(message)s'
LOG_DATE_FORMAT = '%m-%d %H:%M:%S'


def _seconds(user_params, key, default):
    value = user_params.get(key)
    if value is None:
        return default
    return timedelta(seconds=float(value))


def main():
    config_path = os.environ.get(CONFIG_ENV)
    if not config_path:
        print("Please point %s to a test bed config file" % CONFIG_ENV)
        return 1

    test_config = config_parser.load_test_config_file(config_path)[0]
    user_params = test_config.user_params
    verbose_mode = bool(user_params.get('verbose_mode', False))
    logging.basicConfig(
        level=logging.DEBUG if verbose_mode else logging.INFO, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    registry = TestRegistry(case_timeout=_seconds(user_params, 'case_timeout_seconds', DEFAULT_CASE_TIMEOUT))
    l2cap_test_cases.register_all(registry)

    environments = environment.create(test_config.controller_configs.get(environment.MOBLY_CONTROLLER_CONFIG_NAME))
    try:
        controller = LifecycleController(
            environments[0], phase_timeout=_seconds(user_params, 'phase_timeout_seconds', DEFAULT_PHASE_TIMEOUT))
        results = registry.run_all(controller, prefix=user_params.get('test_prefix'))
    finally:
        environment.destroy(environments)

    summarize(results)
    return exit_code(results)


if __name__ == '__main__':
    sys.exit(main())
