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

import os
from setuptools import find_packages
from setuptools import setup

install_requires = [
    'grpcio',
    'mobly',
]

extras_require = {
    'test': ['pytest'],
}


def main():
    # Relative path from calling directory to this file
    our_dir = os.path.dirname(__file__)
    # Must cd into this dir for package resolution to work
    # This won't affect the calling shell
    if our_dir:
        os.chdir(our_dir)
    setup(
        name='l2cap_tester',
        version='1.0',
        author='Android Open Source Project',
        license='Apache2.0',
        description="""L2CAP Conformance Tester Package""",
        packages=find_packages(include=['l2cap_tester', 'l2cap_tester.*']),
        python_requires='>=3.6',
        install_requires=install_requires,
        extras_require=extras_require,
        entry_points={
            'console_scripts': [
                'l2cap-tester=l2cap_tester.run_l2cap_tester:main',
            ],
        })


if __name__ == '__main__':
    main()
