"""
Setup script for the Load Chaos harness

This file is kept for backward compatibility. The project uses pyproject.toml
as the primary configuration file.
"""

from setuptools import setup

# setuptools will automatically read pyproject.toml
setup()
