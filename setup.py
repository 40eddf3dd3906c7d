# SPDX-License-Identifier: MPL-2.0
"""Setuptools shim for acc-trust.

Project metadata lives in pyproject.toml; this file only exists for tools
that still invoke setup.py directly.
"""
from setuptools import setup

if __name__ == "__main__":
    setup()
