#!/usr/bin/env python3
"""
Setup configuration for Archive Pipeline.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read the contents of README file
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text()

# Read requirements from requirements.txt
requirements = []
if (this_directory / "requirements.txt").exists():
    requirements = (this_directory / "requirements.txt").read_text().strip().split('\n')
    requirements = [req.strip() for req in requirements if req.strip() and not req.startswith('#')]

setup(
    name="archive-pipeline",
    version="1.0.0",
    author="Project Think",
    author_email="",
    description="Compress and decompress files and directories, picking formats from file names",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/your-username/archive-pipeline",
    packages=find_packages(include=['formats*', 'pipeline*']),
    py_modules=[
        'archive_pipeline',
        'archive_cli',
        'archive_configs',
        'archive_errors',
        'base_classes',
        'secure_utils',
        'run_tests'
    ],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: System Administrators",
        "Topic :: System :: Archiving :: Compression",
        "Topic :: Utilities",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.11",
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=6.0",
            "pytest-cov",
            "pytest-asyncio",
            "black",
            "flake8",
            "mypy",
            "pre-commit",
        ],
        "test": [
            "pytest>=6.0",
            "pytest-cov",
            "pytest-asyncio",
            "pytest-mock",
        ],
    },
    entry_points={
        "console_scripts": [
            "archive-pipeline=archive_cli:main",
            "run-pipeline-tests=run_tests:main",
        ],
    },
    include_package_data=True,
    package_data={
        "": [
            "*.md",
            "*.txt",
        ],
    },
    keywords=[
        "compression",
        "archive",
        "tar",
        "zip",
        "7z",
        "gzip",
        "zstandard",
        "lz4",
    ],
    project_urls={
        "Bug Reports": "https://github.com/your-username/archive-pipeline/issues",
        "Source": "https://github.com/your-username/archive-pipeline",
    },
)
