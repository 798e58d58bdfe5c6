#!/usr/bin/env python3
"""
Cron JobManager - Setup configuration
"""
from setuptools import setup, find_namespace_packages
from pathlib import Path

# Read requirements
requirements = []
with open("requirements.txt") as f:
    for line in f:
        line = line.strip()
        if line and not line.startswith("#"):
            requirements.append(line)

# Read README for long description
readme_file = Path("README.md")
long_description = readme_file.read_text() if readme_file.exists() else ""

setup(
    name="cron-jobmanager",
    version="0.1.0",
    description="Cron JobManager - Run-once-at-a-time launcher and auditor for long-running compute jobs",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="JobManager",
    license="MIT",
    python_requires=">=3.9",
    packages=find_namespace_packages(where="src", include=["jobmanager*"]),
    package_dir={"": "src"},
    install_requires=requirements,
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "jobmanager=jobmanager.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
