#!/usr/bin/env python

"""Setup file and install script for the seqflow workflow engine"""

import os
import subprocess

import setuptools

VERSION = '0.1.0'

# add version number and git commit hash of the current revision to version.py
try:
    git_run = subprocess.run(['git', 'rev-parse', '--short', 'HEAD'], stdout=subprocess.PIPE,
                             stderr=subprocess.DEVNULL)
    git_run.check_returncode()
except (OSError, subprocess.SubprocessError):
    commit_hash = ''
else:
    commit_hash = git_run.stdout.strip().decode()

here = os.path.dirname(os.path.abspath(__file__))
with open(os.path.join(here, 'seqflow', 'pipeline', 'version.py'), 'w') as version_file:
    version_file.writelines([f'__version__ = "{VERSION}"\n',
                             f'__git_revision__ = "{commit_hash}"\n'])

setuptools.setup(name="seqflow",
                 version=VERSION,
                 description="Workflow orchestration for per-sample sequencing alignment and quality control",
                 packages=setuptools.find_packages(exclude=["tests", "tests.*"]),
                 python_requires=">=3.6",
                 install_requires=["toolz", "PyYAML", "logbook", "joblib"],
                 extras_require={"test": ["pytest", "pytest-mock", "mock"]},
                 zip_safe=False)
