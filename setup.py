#!/usr/bin/python3
# Setup file for gitsync
# Copyright (C) 2026 The gitsync developers
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later

import sys

from setuptools import setup

gevent_requires = []

if "__pypy__" not in sys.modules and sys.platform != "win32":
    gevent_requires.append("gevent")

tests_require = list(gevent_requires)


setup(
    name="gitsync",
    version="0.1.0",
    description="Copy the committed history of one git repository into another",
    license="Apache-2.0 OR GPL-2.0-or-later",
    python_requires=">=3.10",
    packages=["gitsync"],
    package_data={"": ["py.typed"]},
    install_requires=['typing_extensions >=4.0; python_version < "3.12"'],
    extras_require={
        "parallel": gevent_requires,
        "test": tests_require,
    },
    entry_points={"console_scripts": ["gitsync=gitsync.cli:_main"]},
    classifiers=[
        "Development Status :: 3 - Alpha",
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3",
        "Operating System :: POSIX",
        "Topic :: Software Development :: Version Control",
    ],
)
