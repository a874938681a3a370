#!/usr/bin/env python
"""svcmgr setup.py.
"""

import io

import setuptools


def _read_requires(filename):
    reqs = []
    with io.open(filename) as f:
        for line in f:
            line = line.split('#', 1)[0].strip()
            if line:
                reqs.append(line)
    return reqs


setuptools.setup(
    name='svcmgr',
    version='1.0',
    description='Client for the runit, daemontools and s6 supervisors',
    packages=setuptools.find_packages(exclude=['tests', 'tests.*']),
    package_data={
        'svcmgr.logging': ['*.json'],
    },
    python_requires='>=3.5',
    install_requires=_read_requires('requirements.txt'),
    extras_require={
        'test': [
            'mock',
            'pytest',
        ],
    },
)
