"""
Setup script for topkapi.
"""

from setuptools import setup, find_packages

setup(
    name="topkapi",
    version="0.1.0",
    packages=find_packages(include=["topkapi", "topkapi.*"]),
    package_data={"topkapi": ["py.typed"]},
    python_requires=">=3.8",
    extras_require={"test": ["pytest"]},
)
