#!/usr/bin/env python3
"""Python packaging configuration."""
import os
from pathlib import Path

from setuptools import find_packages, setup


def read_readme():
    """Read and return text of README.md."""
    pwd = os.path.abspath(os.path.dirname(__file__))
    readme_file = os.path.join(pwd, "README.md")
    with open(readme_file, "r", encoding="utf-8") as readme:
        readme_txt = readme.read()

    return readme_txt


def read_version():
    """Read and return text of VERSION."""
    return (
        Path(__file__)
        .parent.joinpath("VERSION")
        .read_text(encoding="utf-8")
        .strip()
    )


INSTALL_REQUIRES = [
    "boto3 >= 1.28.0",
    "botocore >= 1.31.0",
    "pyyaml >= 5.1",
    "rich >= 13.0",
    "toml >= 0.10",
]

EXTRAS_REQUIRE = {
    "test": [
        "mock",
        "pytest",
        "pytest-mock",
    ],
}

setup(
    name="awsmgr",
    version=read_version(),
    description=(
        "Interactive tool to create and manage EC2 and Lightsail instances"
    ),
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    author="awsmgr-devs",
    license="GNU General Public License v3 (GPLv3)",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=INSTALL_REQUIRES,
    extras_require=EXTRAS_REQUIRE,
    entry_points={
        "console_scripts": ["awsmgr = awsmgr.cli:main"],
    },
    zip_safe=True,
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: System Administrators",
        "Natural Language :: English",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python :: 3 :: Only",
        "Topic :: System :: Systems Administration",
        "Topic :: Utilities",
    ],
)
