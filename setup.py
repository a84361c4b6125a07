#!/usr/bin/env python3
"""
agentwallet Setup
=================

Tool policy and permission enforcement for PKP agents.
"""

from setuptools import setup, find_packages

# Read README for long description
def read_readme():
    with open("README.md", "r", encoding="utf-8") as fh:
        return fh.read()

# Read requirements
def read_requirements():
    with open("requirements.txt", "r", encoding="utf-8") as fh:
        return [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="agentwallet",
    version="1.0.0",
    author="agentwallet contributors",
    description="Tool policy and permission enforcement for PKP agents",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    packages=find_packages(include=["agentwallet", "agentwallet.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: Security",
    ],
    python_requires=">=3.8",
    install_requires=read_requirements(),
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "black>=23.0.0",
            "isort>=5.12.0",
            "flake8>=6.0.0",
            "mypy>=1.0.0",
        ],
    },
    include_package_data=True,
    package_data={
        "agentwallet": ["py.typed"],
    },
    entry_points={
        "console_scripts": [
            "agentwallet=agentwallet.cli:main",
        ],
    },
    keywords="agents pkp policy permissions delegation",
)
